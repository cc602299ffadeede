"""
Pytest configuration and fixtures for shared module tests.
"""

import pytest

from services.shared.config import Settings


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        environment="development",
        retry_max_attempts=3,
        log_format="text",
    )
