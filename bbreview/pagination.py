"""Normalize offset, page, and cursor pagination payloads into one descriptor."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qs, unquote, urlsplit

from pydantic import ValidationError

from bbreview.schema import (
    CursorPayload,
    OffsetPayload,
    PagePayload,
    PaginationDescriptor,
    PaginationScheme,
)

NEXT_PAGE_AVAILABLE_SENTINEL = "available"
CURSOR_PARAM_PATTERN = re.compile(r"cursor=([^&]+)")
BARE_TOKEN_PATTERN = re.compile(r"^[^\s/?#]+$")


def _list_field(response: Mapping[str, Any], key: str) -> list[Any] | None:
    """Return a list-valued field, or None when absent or not a list."""
    value = response.get(key)
    if isinstance(value, list):
        return value
    return None


def _resolve_scheme(scheme: PaginationScheme | str) -> PaginationScheme | None:
    """Coerce a caller-supplied scheme value to the enum."""
    if isinstance(scheme, PaginationScheme):
        return scheme
    try:
        return PaginationScheme(str(scheme).lower())
    except ValueError:
        return None


def _next_page_cursor(next_value: str, *, page: int) -> tuple[str, str | None]:
    """Derive the next page cursor from a page-scheme ``next`` value.

    Returns the cursor and an optional warning.
    """
    incremented = str(page + 1)
    if next_value == NEXT_PAGE_AVAILABLE_SENTINEL:
        return incremented, None

    try:
        parsed = urlsplit(next_value)
    except ValueError:
        return incremented, f"Failed to parse next URL '{next_value}'; using page {incremented}."

    if parsed.scheme and parsed.netloc:
        page_values = parse_qs(parsed.query).get("page")
        if page_values and page_values[0]:
            return page_values[0], None
        return (
            incremented,
            f"Next URL '{next_value}' has no page parameter; using page {incremented}.",
        )

    if BARE_TOKEN_PATTERN.fullmatch(next_value):
        return next_value, None

    return incremented, f"Unrecognized next value '{next_value}'; using page {incremented}."


def _page_descriptor(
    response: Mapping[str, Any],
    warnings: list[str],
) -> PaginationDescriptor | None:
    """Build a descriptor from page/pagelen/size/next counters."""
    try:
        payload = PagePayload.model_validate(dict(response))
    except ValidationError as error:
        warnings.append(f"Invalid page-scheme payload ({error.error_count()} error(s)).")
        return None

    if payload.page is None or payload.pagelen is None:
        return None

    has_more = bool(payload.next)
    next_cursor: str | None = None
    if payload.next:
        next_cursor, warning = _next_page_cursor(payload.next, page=payload.page)
        if warning:
            warnings.append(warning)

    return PaginationDescriptor(
        has_more=has_more,
        count=len(payload.values),
        next_cursor=next_cursor,
        page=payload.page,
        size=payload.pagelen,
        total=payload.size,
    )


def _offset_descriptor(
    response: Mapping[str, Any],
    warnings: list[str],
) -> PaginationDescriptor | None:
    """Build a descriptor from startAt/maxResults/total counters."""
    try:
        payload = OffsetPayload.model_validate(dict(response))
    except ValidationError as error:
        warnings.append(f"Invalid offset-scheme payload ({error.error_count()} error(s)).")
        return None

    count = len(payload.values)
    if (
        payload.start_at is not None
        and payload.max_results is not None
        and payload.total is not None
        and payload.start_at + payload.max_results < payload.total
    ):
        return PaginationDescriptor(
            has_more=True,
            count=count,
            next_cursor=str(payload.start_at + payload.max_results),
            total=payload.total,
        )

    # nextPage is an API-specific continuation hint independent of the counters.
    if payload.next_page:
        return PaginationDescriptor(
            has_more=True,
            count=count,
            next_cursor=payload.next_page,
            total=payload.total,
        )

    return PaginationDescriptor(has_more=False, count=count, total=payload.total)


def _cursor_descriptor(
    response: Mapping[str, Any],
    warnings: list[str],
) -> PaginationDescriptor | None:
    """Build a descriptor from an opaque ``cursor=`` token in links.next."""
    try:
        payload = CursorPayload.model_validate(dict(response))
    except ValidationError as error:
        warnings.append(f"Invalid cursor-scheme payload ({error.error_count()} error(s)).")
        return None

    count = len(payload.results)
    next_url = payload.links.next if payload.links is not None else None
    if not next_url:
        return PaginationDescriptor(has_more=False, count=count)

    cursor_match = CURSOR_PARAM_PATTERN.search(next_url)
    if cursor_match is None:
        warnings.append(f"No cursor parameter found in next link '{next_url}'.")
        return None

    return PaginationDescriptor(
        has_more=True,
        count=count,
        next_cursor=unquote(cursor_match.group(1)),
    )


def normalize_pagination(
    response: Mapping[str, Any],
    scheme: PaginationScheme | str,
) -> tuple[PaginationDescriptor | None, tuple[str, ...]]:
    """Interpret a raw paginated response under the given scheme.

    Returns the uniform descriptor together with any warnings raised while
    reading the response. Never raises: malformed continuation values fall
    back to page arithmetic or verbatim tokens, and a response that still
    carries a ``values`` or ``results`` list always yields at least a terminal
    descriptor. ``None`` is returned only for payloads that are not a
    recognizable list response.
    """
    warnings: list[str] = []
    if not isinstance(response, Mapping):
        warnings.append(f"Expected a mapping response, got {type(response).__name__}.")
        return None, tuple(warnings)

    if _list_field(response, "values") is None and _list_field(response, "results") is None:
        return None, tuple(warnings)

    descriptor: PaginationDescriptor | None = None
    resolved_scheme = _resolve_scheme(scheme)
    if resolved_scheme is PaginationScheme.PAGE:
        descriptor = _page_descriptor(response, warnings)
    elif resolved_scheme is PaginationScheme.OFFSET:
        descriptor = _offset_descriptor(response, warnings)
    elif resolved_scheme is PaginationScheme.CURSOR:
        descriptor = _cursor_descriptor(response, warnings)
    else:
        warnings.append(f"Unknown pagination scheme '{scheme}'.")

    if descriptor is None:
        items = _list_field(response, "results")
        if items is None:
            items = _list_field(response, "values")
        if items is not None:
            descriptor = PaginationDescriptor(has_more=False, count=len(items))

    return descriptor, tuple(warnings)
