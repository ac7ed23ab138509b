"""Response-shape contracts for paginated Bitbucket/Atlassian payloads."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PaginationScheme(StrEnum):
    """Pagination conventions understood by the normalizer."""

    OFFSET = "offset"
    PAGE = "page"
    CURSOR = "cursor"


class OffsetPayload(BaseModel):
    """Offset/limit counters (Jira-style): startAt, maxResults, total."""

    model_config = ConfigDict(extra="allow")

    values: list[Any] = Field(default_factory=list)
    start_at: int | None = Field(default=None, ge=0, alias="startAt")
    max_results: int | None = Field(default=None, ge=0, alias="maxResults")
    total: int | None = Field(default=None, ge=0)
    next_page: str | None = Field(default=None, alias="nextPage")


class PagePayload(BaseModel):
    """Page-number counters (Bitbucket-style): page, pagelen, size, next.

    ``size`` is the total number of items across all pages, while ``pagelen``
    is the number of items per page.
    """

    model_config = ConfigDict(extra="allow")

    values: list[Any] = Field(default_factory=list)
    page: int | None = Field(default=None, ge=1)
    pagelen: int | None = Field(default=None, ge=0)
    size: int | None = Field(default=None, ge=0)
    next: str | None = None


class CursorLinks(BaseModel):
    """Link block carried by cursor-paginated payloads."""

    model_config = ConfigDict(extra="allow")

    next: str | None = None


class CursorPayload(BaseModel):
    """Opaque cursor tokens (Confluence-style): results plus links.next."""

    model_config = ConfigDict(extra="allow")

    results: list[Any] = Field(default_factory=list)
    links: CursorLinks | None = Field(
        default=None,
        validation_alias=AliasChoices("links", "_links"),
    )


class PaginationDescriptor(BaseModel):
    """Uniform pagination summary handed to the rendering layer."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    has_more: bool
    count: int | None = Field(default=None, ge=0)
    next_cursor: str | None = None
    page: int | None = None
    size: int | None = None
    total: int | None = None
