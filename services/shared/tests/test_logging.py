"""
Tests for logging configuration and context binding.
"""

import pytest
import structlog

from services.shared.logging import bound_correlation_id, configure_logging


@pytest.fixture(autouse=True)
def clean_contextvars():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_binds_service_name(self, test_settings):
        configure_logging(test_settings, service_name="embedding-indexer")

        assert structlog.contextvars.get_contextvars()["service"] == "embedding-indexer"

    def test_does_not_bind_correlation_id(self, test_settings):
        configure_logging(test_settings)

        assert "correlation_id" not in structlog.contextvars.get_contextvars()


class TestBoundCorrelationId:
    """Tests for bound_correlation_id."""

    def test_generates_and_unbinds(self):
        with bound_correlation_id() as correlation_id:
            assert correlation_id
            assert structlog.contextvars.get_contextvars()["correlation_id"] == correlation_id

        assert "correlation_id" not in structlog.contextvars.get_contextvars()

    def test_fresh_id_per_block(self):
        with bound_correlation_id() as first:
            pass
        with bound_correlation_id() as second:
            pass

        assert first != second

    def test_explicit_id_and_restore(self):
        with bound_correlation_id("outer"):
            with bound_correlation_id("inner") as inner:
                assert inner == "inner"
                assert structlog.contextvars.get_contextvars()["correlation_id"] == "inner"
            assert structlog.contextvars.get_contextvars()["correlation_id"] == "outer"
