"""Unit tests for the knowledge engine exception hierarchy."""

from __future__ import annotations

import pytest

from knowledge_engine.utils.errors import (
    TRANSIENT_ERRORS,
    AlreadyProcessingError,
    ConfigurationError,
    EmbeddingFailedError,
    EmptyOrInvalidContentError,
    KnowledgeEngineError,
    LLMError,
    NotFoundError,
    PersistenceError,
    ProviderUnavailableError,
    RateLimitError,
    UnsupportedContentTypeError,
)

_ALL_ERRORS = [
    UnsupportedContentTypeError,
    EmptyOrInvalidContentError,
    EmbeddingFailedError,
    AlreadyProcessingError,
    NotFoundError,
    PersistenceError,
    RateLimitError,
    ProviderUnavailableError,
    LLMError,
    ConfigurationError,
]


class TestKnowledgeEngineError:
    def test_str_without_provider(self) -> None:
        assert str(KnowledgeEngineError("boom")) == "boom"

    def test_str_with_provider(self) -> None:
        err = RateLimitError("Rate limit exceeded", provider_name="openai")
        assert str(err) == "[openai] Rate limit exceeded"
        assert err.message == "Rate limit exceeded"
        assert err.provider_name == "openai"

    @pytest.mark.parametrize("error_cls", _ALL_ERRORS)
    def test_subclasses_base_and_have_default_message(self, error_cls) -> None:
        err = error_cls()
        assert isinstance(err, KnowledgeEngineError)
        assert err.message
        assert err.provider_name is None

    def test_codes_are_distinct(self) -> None:
        codes = [cls.code for cls in _ALL_ERRORS]
        assert len(set(codes)) == len(codes)

    def test_transient_errors(self) -> None:
        assert set(TRANSIENT_ERRORS) == {RateLimitError, ProviderUnavailableError}
        assert not issubclass(LLMError, TRANSIENT_ERRORS)
