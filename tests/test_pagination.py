"""Unit tests for pagination normalization."""

from __future__ import annotations

import pytest
from bbreview.pagination import normalize_pagination
from bbreview.schema import PaginationDescriptor, PaginationScheme


def make_page_payload(**overrides: object) -> dict[str, object]:
    """Build a minimal page-scheme payload."""
    payload: dict[str, object] = {
        "values": [{"id": 1}, {"id": 2}],
        "page": 2,
        "pagelen": 2,
        "size": 9,
    }
    payload.update(overrides)
    return payload


@pytest.mark.unit
def test_page_scheme_extracts_page_param_from_next_url() -> None:
    payload = make_page_payload(
        next="https://api.bitbucket.org/2.0/repositories/acme/rocket/pullrequests?pagelen=2&page=3"
    )

    descriptor, warnings = normalize_pagination(payload, PaginationScheme.PAGE)

    assert descriptor == PaginationDescriptor(
        has_more=True,
        count=2,
        next_cursor="3",
        page=2,
        size=2,
        total=9,
    )
    assert warnings == ()


@pytest.mark.unit
def test_page_scheme_total_comes_from_size_not_pagelen() -> None:
    descriptor, _warnings = normalize_pagination(
        make_page_payload(pagelen=50, size=120), PaginationScheme.PAGE
    )

    assert descriptor is not None
    assert descriptor.size == 50
    assert descriptor.total == 120


@pytest.mark.unit
def test_page_scheme_available_sentinel_increments_page() -> None:
    descriptor, warnings = normalize_pagination(
        make_page_payload(next="available"), PaginationScheme.PAGE
    )

    assert descriptor is not None
    assert descriptor.has_more is True
    assert descriptor.next_cursor == "3"
    assert warnings == ()


@pytest.mark.unit
def test_page_scheme_without_next_is_terminal() -> None:
    descriptor, warnings = normalize_pagination(make_page_payload(), PaginationScheme.PAGE)

    assert descriptor is not None
    assert descriptor.has_more is False
    assert descriptor.next_cursor is None
    assert warnings == ()


@pytest.mark.unit
def test_page_scheme_empty_next_is_terminal() -> None:
    descriptor, _warnings = normalize_pagination(make_page_payload(next=""), PaginationScheme.PAGE)

    assert descriptor is not None
    assert descriptor.has_more is False
    assert descriptor.next_cursor is None


@pytest.mark.unit
def test_page_scheme_malformed_next_falls_back_to_increment_with_warning() -> None:
    descriptor, warnings = normalize_pagination(
        make_page_payload(next="not a url"), PaginationScheme.PAGE
    )

    assert descriptor is not None
    assert descriptor.has_more is True
    assert descriptor.next_cursor == "3"
    assert len(warnings) == 1
    assert "not a url" in warnings[0]


@pytest.mark.unit
def test_page_scheme_unparseable_url_falls_back_to_increment() -> None:
    descriptor, warnings = normalize_pagination(
        make_page_payload(next="https://[broken/page?page=7"), PaginationScheme.PAGE
    )

    assert descriptor is not None
    assert descriptor.next_cursor == "3"
    assert len(warnings) == 1


@pytest.mark.unit
def test_page_scheme_url_without_page_param_falls_back_to_increment() -> None:
    descriptor, warnings = normalize_pagination(
        make_page_payload(next="https://api.bitbucket.org/2.0/things?pagelen=2"),
        PaginationScheme.PAGE,
    )

    assert descriptor is not None
    assert descriptor.next_cursor == "3"
    assert "no page parameter" in warnings[0]


@pytest.mark.unit
def test_page_scheme_bare_token_is_used_verbatim() -> None:
    descriptor, warnings = normalize_pagination(
        make_page_payload(next="opaque-token-42"), PaginationScheme.PAGE
    )

    assert descriptor is not None
    assert descriptor.next_cursor == "opaque-token-42"
    assert warnings == ()


@pytest.mark.unit
def test_page_scheme_known_fragility_of_continuation_fallback_chain() -> None:
    """Pins the empirically discovered next-value quirks.

    A new upstream pagination variant may not fit any of these rules; update
    this table only when such a variant is observed, not speculatively.
    """
    cases = {
        "https://api.bitbucket.org/2.0/x?page=5": "5",
        "available": "3",
        "17": "17",
        "not a url": "3",
        "/2.0/x?page=5": "3",
    }
    for next_value, expected_cursor in cases.items():
        descriptor, _warnings = normalize_pagination(
            make_page_payload(next=next_value), PaginationScheme.PAGE
        )
        assert descriptor is not None
        assert descriptor.next_cursor == expected_cursor, next_value


@pytest.mark.unit
def test_page_scheme_without_page_counters_falls_through_to_default() -> None:
    payload = {"values": [1, 2, 3], "next": "https://example.com/?page=2"}

    descriptor, _warnings = normalize_pagination(payload, PaginationScheme.PAGE)

    assert descriptor == PaginationDescriptor(has_more=False, count=3)


@pytest.mark.unit
def test_offset_scheme_has_more_when_window_before_total() -> None:
    payload = {"values": list(range(10)), "startAt": 10, "maxResults": 10, "total": 25}

    descriptor, warnings = normalize_pagination(payload, PaginationScheme.OFFSET)

    assert descriptor is not None
    assert descriptor.has_more is True
    assert descriptor.next_cursor == "20"
    assert descriptor.count == 10
    assert descriptor.total == 25
    assert warnings == ()


@pytest.mark.unit
def test_offset_scheme_terminal_when_window_reaches_total() -> None:
    payload = {"values": list(range(5)), "startAt": 20, "maxResults": 10, "total": 25}

    descriptor, _warnings = normalize_pagination(payload, PaginationScheme.OFFSET)

    assert descriptor is not None
    assert descriptor.has_more is False
    assert descriptor.next_cursor is None
    assert descriptor.count == 5


@pytest.mark.unit
def test_offset_scheme_next_page_string_is_used_verbatim() -> None:
    payload = {
        "values": [1],
        "startAt": 0,
        "maxResults": 50,
        "total": 1,
        "nextPage": "https://jira.example.com/rest/api/3/search?token=xyz",
    }

    descriptor, _warnings = normalize_pagination(payload, PaginationScheme.OFFSET)

    assert descriptor is not None
    assert descriptor.has_more is True
    assert descriptor.next_cursor == "https://jira.example.com/rest/api/3/search?token=xyz"


@pytest.mark.unit
def test_offset_scheme_without_counters_is_terminal() -> None:
    descriptor, _warnings = normalize_pagination({"values": [1, 2]}, PaginationScheme.OFFSET)

    assert descriptor is not None
    assert descriptor.has_more is False
    assert descriptor.count == 2


@pytest.mark.unit
def test_cursor_scheme_decodes_cursor_token() -> None:
    payload = {
        "results": [{"id": "a"}],
        "links": {"next": "/wiki/api/v2/pages?cursor=abc%3D&limit=25"},
    }

    descriptor, warnings = normalize_pagination(payload, PaginationScheme.CURSOR)

    assert descriptor == PaginationDescriptor(has_more=True, count=1, next_cursor="abc=")
    assert warnings == ()


@pytest.mark.unit
def test_cursor_scheme_accepts_underscore_links_alias() -> None:
    payload = {"results": [], "_links": {"next": "/rest/api/search?cursor=tok"}}

    descriptor, _warnings = normalize_pagination(payload, PaginationScheme.CURSOR)

    assert descriptor is not None
    assert descriptor.next_cursor == "tok"


@pytest.mark.unit
def test_cursor_scheme_without_next_link_is_terminal() -> None:
    descriptor, _warnings = normalize_pagination(
        {"results": [1, 2], "links": {}}, PaginationScheme.CURSOR
    )

    assert descriptor == PaginationDescriptor(has_more=False, count=2)


@pytest.mark.unit
def test_cursor_scheme_next_without_cursor_falls_through_with_warning() -> None:
    payload = {"results": [1, 2, 3], "links": {"next": "/wiki/api/v2/pages?start=25"}}

    descriptor, warnings = normalize_pagination(payload, PaginationScheme.CURSOR)

    assert descriptor == PaginationDescriptor(has_more=False, count=3)
    assert len(warnings) == 1


@pytest.mark.unit
def test_scheme_accepts_plain_string_value() -> None:
    descriptor, _warnings = normalize_pagination(make_page_payload(next="available"), "page")

    assert descriptor is not None
    assert descriptor.next_cursor == "3"


@pytest.mark.unit
def test_unknown_scheme_falls_back_to_terminal_descriptor() -> None:
    descriptor, warnings = normalize_pagination({"values": [1, 2]}, "keyset")

    assert descriptor == PaginationDescriptor(has_more=False, count=2)
    assert "keyset" in warnings[0]


@pytest.mark.unit
def test_invalid_counter_types_fall_back_without_raising() -> None:
    payload = {"values": [1], "page": "first", "pagelen": 10}

    descriptor, warnings = normalize_pagination(payload, PaginationScheme.PAGE)

    assert descriptor == PaginationDescriptor(has_more=False, count=1)
    assert len(warnings) == 1


@pytest.mark.unit
def test_unrecognized_payload_returns_none() -> None:
    descriptor, _warnings = normalize_pagination({"id": 7, "name": "x"}, PaginationScheme.PAGE)

    assert descriptor is None


@pytest.mark.unit
@pytest.mark.parametrize(
    "scheme",
    [PaginationScheme.PAGE, PaginationScheme.OFFSET, PaginationScheme.CURSOR],
)
@pytest.mark.parametrize("payload", [{}, {"id": 7, "name": "x"}, {"values": "nope"}])
def test_payload_without_item_list_returns_none_for_every_scheme(
    scheme: PaginationScheme, payload: dict[str, object]
) -> None:
    descriptor, _warnings = normalize_pagination(payload, scheme)

    assert descriptor is None


@pytest.mark.unit
def test_non_mapping_payload_returns_none() -> None:
    payload: object = [1, 2, 3]

    descriptor, warnings = normalize_pagination(payload, PaginationScheme.PAGE)  # type: ignore[arg-type]

    assert descriptor is None
    assert len(warnings) == 1


@pytest.mark.unit
def test_normalization_is_idempotent() -> None:
    payload = make_page_payload(next="not a url")

    first = normalize_pagination(payload, PaginationScheme.PAGE)
    second = normalize_pagination(payload, PaginationScheme.PAGE)

    assert first == second
    assert payload["next"] == "not a url"
