"""
Exception hierarchy for the Biomedical Graph Assistant.

Every error raised by the core derives from KnowledgeGraphChatError so that
callers can abort a single chat turn without losing the conversation.
"""

from typing import Any


class KnowledgeGraphChatError(Exception):
    """Base exception for all assistant errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(KnowledgeGraphChatError):
    """A conversation lookup missed (absent or evicted)."""


class ValidationError(KnowledgeGraphChatError):
    """Malformed input. Never retried."""


class ConfigurationError(KnowledgeGraphChatError):
    """Missing or invalid configuration, e.g. absent provider credentials."""


# Provider errors


class ProviderError(KnowledgeGraphChatError):
    """An embedding or completion provider call failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class ProviderUnavailableError(ProviderError):
    """Provider unreachable, timed out, or returned a transient 5xx."""


class RateLimitedError(ProviderError):
    """Provider throttled the request."""


# Retrieval errors


class GraphBackendError(KnowledgeGraphChatError):
    """The graph database is unreachable or rejected a query."""


class RetrievalError(KnowledgeGraphChatError):
    """Search or expansion failed. Fatal to the current turn only."""


class RequestTimeoutError(KnowledgeGraphChatError):
    """A chat turn exceeded its overall deadline."""
