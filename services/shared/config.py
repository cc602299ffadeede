"""
Configuration management for the Biomedical Graph Assistant.

Uses pydantic-settings for environment variable loading with validation.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Environment
    # =========================================================================
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False

    # =========================================================================
    # Neo4j
    # =========================================================================
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_username: str = "neo4j"
    neo4j_password: str = Field(
        default="changeme",
        description="Neo4j password. MUST be configured via environment variable in production.",
    )
    neo4j_database: str = "neo4j"
    neo4j_max_pool_size: int = Field(default=50, ge=1, le=500)
    neo4j_connection_timeout: float = Field(default=30.0, ge=1.0, le=300.0)

    # =========================================================================
    # AWS Configuration
    # =========================================================================
    aws_region: str = "us-east-1"
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_endpoint_url: str | None = Field(
        default=None,
        description="Custom Bedrock endpoint (e.g. a VPC endpoint or local mock)",
    )

    # =========================================================================
    # Bedrock Configuration
    # =========================================================================
    bedrock_embedding_model_id: str = "amazon.titan-embed-text-v1"
    bedrock_llm_model_id: str = "anthropic.claude-3-haiku-20240307-v1:0"
    llm_max_tokens: int = Field(default=500, ge=1, le=4096)
    llm_temperature: float = Field(default=0.7, ge=0.0, le=1.0)

    # =========================================================================
    # Provider timeouts and retry
    # =========================================================================
    provider_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    embedding_batch_timeout_seconds: float = Field(default=30.0, gt=0.0, le=600.0)
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0, le=30.0)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0.0, le=300.0)

    # =========================================================================
    # Conversation store
    # =========================================================================
    conversation_max_count: int = Field(default=100, ge=1, le=100_000)
    conversation_ttl_seconds: float = Field(default=3600.0, gt=0.0)

    # =========================================================================
    # Retrieval Configuration
    # =========================================================================
    retrieval_default_limit: int = Field(default=10, ge=1, le=100)
    retrieval_max_limit: int = Field(default=100, ge=1, le=1000)
    retrieval_default_max_hops: int = Field(default=2, ge=1, le=10)
    retrieval_max_hops_limit: int = Field(default=4, ge=1, le=10)
    retrieval_path_limit: int = Field(default=50, ge=1, le=1000)

    # =========================================================================
    # Embedding job
    # =========================================================================
    embedding_batch_size: int = Field(default=100, ge=1, le=1000)
    embedding_batch_pause_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    embedding_cost_per_million_tokens: float = Field(default=0.1, ge=0.0)

    # =========================================================================
    # Chat
    # =========================================================================
    chat_max_message_length: int = Field(default=2000, ge=1, le=100_000)
    chat_request_timeout_seconds: float = Field(default=60.0, gt=0.0, le=600.0)

    # =========================================================================
    # Logging
    # =========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"

    # =========================================================================
    # Validators
    # =========================================================================
    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Reject default credentials in production and defaults above their ceilings."""
        if self.environment == "production" and self.neo4j_password == "changeme":
            raise ValueError(
                "Default Neo4j credentials detected in production. "
                "Set NEO4J_PASSWORD environment variable with secure credentials."
            )
        if self.retrieval_default_limit > self.retrieval_max_limit:
            raise ValueError("retrieval_default_limit must not exceed retrieval_max_limit")
        if self.retrieval_default_max_hops > self.retrieval_max_hops_limit:
            raise ValueError(
                "retrieval_default_max_hops must not exceed retrieval_max_hops_limit"
            )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
