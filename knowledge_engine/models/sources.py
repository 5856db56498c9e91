"""Tagged union of ingestion source kinds.

A knowledge source is either a URL to fetch or inline data the caller
already holds.  Each kind has its own extraction path in the engine;
pydantic discriminates them on the ``kind`` field so untyped payloads (for
example JSON from the route layer) validate into the right class.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class UrlSource(BaseModel):
    """A document to be fetched from ``url``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["url"] = "url"
    url: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class InlineDataSource(BaseModel):
    """A document supplied inline: plain text, or base64 for binary formats."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["inline"] = "inline"
    content: str
    content_type: str
    original_filename: str
    client_document_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


KnowledgeSource = Annotated[Union[UrlSource, InlineDataSource], Field(discriminator="kind")]

_SOURCE_ADAPTER: TypeAdapter[KnowledgeSource] = TypeAdapter(KnowledgeSource)


def parse_source(payload: dict[str, Any]) -> UrlSource | InlineDataSource:
    """Validate an untyped mapping into the matching source kind."""
    return _SOURCE_ADAPTER.validate_python(payload)
