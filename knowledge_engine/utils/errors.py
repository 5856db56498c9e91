"""Custom exception hierarchy for the knowledge engine.

All application exceptions inherit from :class:`KnowledgeEngineError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "anthropic", "sqlite") caused the failure.

The hierarchy is organized by pipeline domain:

    KnowledgeEngineError  (base -- catch-all for any engine error)
    +-- UnsupportedContentTypeError (no extractor and not plain text)
    +-- EmptyOrInvalidContentError  (undecodable / unreadable content)
    +-- EmbeddingFailedError        (embedding retries exhausted)
    +-- AlreadyProcessingError      (identity already being ingested)
    +-- NotFoundError               (document / fragment lookup miss)
    +-- PersistenceError            (repository-layer failure)
    +-- RateLimitError              (provider rate-limit exceeded)
    +-- ProviderUnavailableError    (external service down / timed out)
    +-- LLMError                    (text-generation call failed)
    +-- ConfigurationError          (startup / missing config)

Every class exposes a stable ``code`` so the (external) route layer can map
each kind to a distinct response without string matching on messages.
"""


class KnowledgeEngineError(Exception):
    """Base exception for all knowledge engine errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    code = "KNOWLEDGE_ENGINE_ERROR"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Ingestion errors
# ---------------------------------------------------------------------------

class UnsupportedContentTypeError(KnowledgeEngineError):
    """Raised when no extractor handles a MIME type and the content is not text."""

    code = "UNSUPPORTED_CONTENT_TYPE"

    def __init__(
        self,
        message: str = "Unsupported content type",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmptyOrInvalidContentError(KnowledgeEngineError):
    """Raised when content cannot be decoded or parsed (bad base64, corrupt PDF)."""

    code = "EMPTY_OR_INVALID_CONTENT"

    def __init__(
        self,
        message: str = "Content is empty or invalid",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingFailedError(KnowledgeEngineError):
    """Raised when embedding generation fails after all retry attempts."""

    code = "EMBEDDING_FAILED"

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class AlreadyProcessingError(KnowledgeEngineError):
    """Raised under the ``reject`` policy when an identity is already in flight."""

    code = "ALREADY_PROCESSING"

    def __init__(
        self,
        message: str = "Document is already being processed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Storage errors
# ---------------------------------------------------------------------------

class NotFoundError(KnowledgeEngineError):
    """Raised when a document or fragment lookup misses."""

    code = "NOT_FOUND"

    def __init__(
        self,
        message: str = "Resource not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PersistenceError(KnowledgeEngineError):
    """Raised when the persistence layer fails; surfaced to callers as-is."""

    code = "PERSISTENCE_FAILED"

    def __init__(
        self,
        message: str = "Persistence operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service / provider errors
# ---------------------------------------------------------------------------

class RateLimitError(KnowledgeEngineError):
    """Raised when a provider rejects a call with a rate-limit response.

    Transient: the embedding client retries these with exponential backoff.
    """

    code = "RATE_LIMITED"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(KnowledgeEngineError):
    """Raised when an external service is unreachable or times out.

    Transient: retried like :class:`RateLimitError`.
    """

    code = "PROVIDER_UNAVAILABLE"

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(KnowledgeEngineError):
    """Raised when a text-generation call fails or returns no usable text."""

    code = "LLM_FAILED"

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(KnowledgeEngineError):
    """Raised when configuration is invalid or missing at startup."""

    code = "CONFIGURATION_ERROR"

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


TRANSIENT_ERRORS: tuple[type[KnowledgeEngineError], ...] = (
    RateLimitError,
    ProviderUnavailableError,
)
