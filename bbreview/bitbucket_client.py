"""Bitbucket Cloud API wrapper and auth helpers."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlencode

import httpx
from dotenv import load_dotenv

from bbreview.pagination import normalize_pagination
from bbreview.schema import PaginationDescriptor, PaginationScheme

logger = logging.getLogger(__name__)

BITBUCKET_API_BASE_URL = "https://api.bitbucket.org/2.0"
BITBUCKET_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_PAGE_LENGTH = 25
MAX_PAGE_LENGTH = 100
PULL_REQUEST_STATES = frozenset({"OPEN", "MERGED", "DECLINED", "SUPERSEDED"})
BITBUCKET_USERNAME_ENV_VAR = "ATLASSIAN_BITBUCKET_USERNAME"
BITBUCKET_APP_PASSWORD_ENV_VAR = "ATLASSIAN_BITBUCKET_APP_PASSWORD"
ATLASSIAN_USER_EMAIL_ENV_VAR = "ATLASSIAN_USER_EMAIL"
ATLASSIAN_API_TOKEN_ENV_VAR = "ATLASSIAN_API_TOKEN"
DEFAULT_WORKSPACE_ENV_VAR = "BITBUCKET_DEFAULT_WORKSPACE"


class BitbucketAuthError(RuntimeError):
    """Raised when required Bitbucket credentials are missing."""


class BitbucketInputError(ValueError):
    """Raised when repository, PR, or paging input values are invalid."""


class BitbucketApiError(RuntimeError):
    """Raised when a Bitbucket API request fails."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class BitbucketRateLimitError(BitbucketApiError):
    """Raised when Bitbucket API rate limiting prevents request completion."""


@dataclass(frozen=True, slots=True)
class BitbucketCredentials:
    """Basic-auth credential pair for the Bitbucket API."""

    username: str
    secret: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class PullRequestSummary:
    """Normalized pull request row from the pull request list API."""

    id: int
    title: str
    state: str
    author: str
    source_branch: str
    destination_branch: str
    html_url: str
    created_on: str
    updated_on: str


@dataclass(frozen=True, slots=True)
class InlineAnchor:
    """File and line a pull request comment is attached to."""

    path: str
    from_line: int | None
    to_line: int | None


@dataclass(frozen=True, slots=True)
class PullRequestComment:
    """Normalized pull request comment."""

    id: int
    author: str
    content: str
    created_on: str
    updated_on: str
    deleted: bool = False
    parent_id: int | None = None
    inline: InlineAnchor | None = None
    code_url: str | None = None
    html_url: str | None = None


@dataclass(frozen=True, slots=True)
class PullRequestPage:
    """One page of pull requests with normalized pagination."""

    items: tuple[PullRequestSummary, ...]
    pagination: PaginationDescriptor | None
    warnings: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class CommentPage:
    """One page of pull request comments with normalized pagination."""

    items: tuple[PullRequestComment, ...]
    pagination: PaginationDescriptor | None
    warnings: tuple[str, ...] = field(default_factory=tuple)


def _ensure_mapping(value: object, *, context: str) -> dict[str, Any]:
    """Ensure a response fragment is a JSON object."""
    if not isinstance(value, dict):
        raise BitbucketApiError(
            f"Expected JSON object for {context}.",
            status_code=500,
            endpoint=context,
        )
    return value


def _require_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str:
    """Read a required string field from payload."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise BitbucketApiError(
            f"Expected string field '{key}' in Bitbucket response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_int(payload: dict[str, Any], *, key: str, endpoint: str) -> int:
    """Read a required integer field from payload."""
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise BitbucketApiError(
            f"Expected integer field '{key}' in Bitbucket response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _optional_object(payload: dict[str, Any], *, key: str, endpoint: str) -> dict[str, Any]:
    """Read an optional object field, treating null/missing as empty."""
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise BitbucketApiError(
            f"Expected '{key}' to be an object or null in Bitbucket response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _nested_str(payload: dict[str, Any], *keys: str) -> str | None:
    """Walk nested objects and return the final string value if present."""
    current: Any = payload
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current if isinstance(current, str) else None


def _optional_int(value: object) -> int | None:
    """Return value if it is a real integer, else None."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _display_name(user_payload: dict[str, Any]) -> str:
    """Pick the most readable name from a Bitbucket user object."""
    for key in ("display_name", "nickname", "username"):
        value = user_payload.get(key)
        if isinstance(value, str) and value:
            return value
    return "Unknown"


def _is_retryable_status(status_code: int) -> bool:
    """Return whether a status code is retryable under policy."""
    return status_code == 429 or 500 <= status_code < 600


def _parse_retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse Retry-After header as seconds if present and valid."""
    retry_after = response.headers.get("Retry-After")
    if retry_after is None:
        return None
    try:
        parsed_value = float(retry_after)
    except ValueError:
        return None
    if parsed_value < 0:
        return None
    return parsed_value


def _compute_retry_delay_seconds(response: httpx.Response, *, attempt_number: int) -> float:
    """Compute retry delay from Retry-After header or exponential backoff."""
    retry_after_seconds = _parse_retry_after_seconds(response)
    if retry_after_seconds is not None:
        return retry_after_seconds
    return DEFAULT_RETRY_BACKOFF_SECONDS * (2 ** (attempt_number - 1))


def _sleep_for_retry(seconds: float) -> None:
    """Sleep helper for retry delays (wrapped for deterministic tests)."""
    time.sleep(seconds)


def _raise_http_error(response: httpx.Response, endpoint: str) -> None:
    """Raise a typed error for a non-success Bitbucket API response."""
    message = f"Bitbucket API request failed with status {response.status_code} for '{endpoint}'."
    if response.status_code == 429:
        raise BitbucketRateLimitError(
            message,
            status_code=response.status_code,
            endpoint=endpoint,
        )
    raise BitbucketApiError(
        message,
        status_code=response.status_code,
        endpoint=endpoint,
    )


def _request_with_retries(
    client: httpx.Client,
    endpoint: str,
    *,
    accept_header: str | None = None,
    max_attempts: int = BITBUCKET_MAX_RETRIES,
) -> httpx.Response:
    """Perform a GET request with retry handling for 429/5xx responses."""
    headers = {"Accept": accept_header} if accept_header else None
    for attempt_number in range(1, max_attempts + 1):
        logger.debug("GET %s (attempt %d/%d)", endpoint, attempt_number, max_attempts)
        response = client.get(endpoint, headers=headers)
        if response.status_code < 400:
            return response

        should_retry = _is_retryable_status(response.status_code) and attempt_number < max_attempts
        if not should_retry:
            _raise_http_error(response, endpoint)

        delay_seconds = _compute_retry_delay_seconds(response, attempt_number=attempt_number)
        logger.warning(
            "Bitbucket returned %d for %s; retrying in %.1fs.",
            response.status_code,
            endpoint,
            delay_seconds,
        )
        _sleep_for_retry(delay_seconds)

    raise RuntimeError("Unexpected retry loop exit without a response.")


def _request_json(client: httpx.Client, endpoint: str) -> dict[str, Any]:
    """Perform a JSON request against the Bitbucket API."""
    response = _request_with_retries(client, endpoint, accept_header="application/json")
    return _ensure_mapping(response.json(), context=endpoint)


def _request_page(
    client: httpx.Client,
    endpoint: str,
) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """Fetch one page-scheme response and return its object rows plus raw payload."""
    payload = _request_json(client, endpoint)
    values = payload.get("values")
    if not isinstance(values, list):
        raise BitbucketApiError(
            "Expected 'values' array in Bitbucket response.",
            status_code=500,
            endpoint=endpoint,
        )
    rows: list[dict[str, Any]] = []
    for item in values:
        if not isinstance(item, dict):
            raise BitbucketApiError(
                "Expected all 'values' items to be JSON objects in Bitbucket response.",
                status_code=500,
                endpoint=endpoint,
            )
        rows.append(item)
    return rows, payload


def _normalize_page_pagination(
    payload: dict[str, Any],
    *,
    endpoint: str,
) -> tuple[PaginationDescriptor | None, tuple[str, ...]]:
    """Normalize page-scheme pagination and log any degradation warnings."""
    pagination, warnings = normalize_pagination(payload, PaginationScheme.PAGE)
    for warning in warnings:
        logger.warning("Pagination for %s: %s", endpoint, warning)
    return pagination, warnings


def _page_query(*, page: int | None, pagelen: int, extra: dict[str, str] | None = None) -> str:
    """Build the query string for a page-scheme list request."""
    params: dict[str, str | int] = dict(extra or {})
    params["pagelen"] = pagelen
    if page is not None:
        params["page"] = page
    return urlencode(params)


def parse_repo_full_name(
    repo_full_name: str,
    *,
    default_workspace: str | None = None,
) -> tuple[str, str]:
    """Parse repository input in workspace/repo format.

    A bare repository slug is accepted when a default workspace is supplied.
    """
    value = repo_full_name.strip()
    workspace, separator, repo = value.partition("/")
    if not separator:
        workspace, repo = (default_workspace or "").strip(), value
        if not workspace:
            raise BitbucketInputError(
                f"Invalid repo '{repo_full_name}'. Expected format is workspace/repo, "
                f"or set {DEFAULT_WORKSPACE_ENV_VAR}."
            )
    if not workspace or not repo or "/" in repo:
        raise BitbucketInputError(
            f"Invalid repo '{repo_full_name}'. Expected format is workspace/repo."
        )
    return workspace, repo


def validate_pr_number(pr_number: int) -> int:
    """Validate and normalize pull request number input."""
    if pr_number <= 0:
        raise BitbucketInputError(f"Invalid PR number '{pr_number}'. Expected a positive integer.")
    return pr_number


def validate_page_length(pagelen: int) -> int:
    """Validate page length against the Bitbucket maximum."""
    if not 1 <= pagelen <= MAX_PAGE_LENGTH:
        raise BitbucketInputError(
            f"Invalid page length '{pagelen}'. Expected 1 to {MAX_PAGE_LENGTH}."
        )
    return pagelen


def parse_page_cursor(cursor: str | None) -> int | None:
    """Parse a re-submitted page cursor into a page number."""
    if cursor is None or not cursor.strip():
        return None
    try:
        page = int(cursor.strip())
    except ValueError as error:
        raise BitbucketInputError(
            f"Invalid cursor '{cursor}'. Expected a page number."
        ) from error
    if page <= 0:
        raise BitbucketInputError(f"Invalid cursor '{cursor}'. Expected a positive page number.")
    return page


def _parse_pull_request(row: dict[str, Any], *, endpoint: str) -> PullRequestSummary:
    """Normalize one pull request object."""
    author_payload = _optional_object(row, key="author", endpoint=endpoint)
    return PullRequestSummary(
        id=_require_int(row, key="id", endpoint=endpoint),
        title=_require_str(row, key="title", endpoint=endpoint),
        state=_require_str(row, key="state", endpoint=endpoint),
        author=_display_name(author_payload),
        source_branch=_nested_str(row, "source", "branch", "name") or "",
        destination_branch=_nested_str(row, "destination", "branch", "name") or "",
        html_url=_nested_str(row, "links", "html", "href") or "",
        created_on=_require_str(row, key="created_on", endpoint=endpoint),
        updated_on=_require_str(row, key="updated_on", endpoint=endpoint),
    )


def _parse_comment(row: dict[str, Any], *, endpoint: str) -> PullRequestComment:
    """Normalize one pull request comment object."""
    user_payload = _optional_object(row, key="user", endpoint=endpoint)
    inline_payload = _optional_object(row, key="inline", endpoint=endpoint)
    parent_payload = _optional_object(row, key="parent", endpoint=endpoint)

    inline: InlineAnchor | None = None
    inline_path = inline_payload.get("path")
    if isinstance(inline_path, str) and inline_path:
        inline = InlineAnchor(
            path=inline_path,
            from_line=_optional_int(inline_payload.get("from")),
            to_line=_optional_int(inline_payload.get("to")),
        )

    return PullRequestComment(
        id=_require_int(row, key="id", endpoint=endpoint),
        author=_display_name(user_payload),
        content=_nested_str(row, "content", "raw") or "",
        created_on=_require_str(row, key="created_on", endpoint=endpoint),
        updated_on=_nested_str(row, "updated_on") or "",
        deleted=row.get("deleted") is True,
        parent_id=_optional_int(parent_payload.get("id")),
        inline=inline,
        code_url=_nested_str(row, "links", "code", "href"),
        html_url=_nested_str(row, "links", "html", "href"),
    )


def fetch_pull_requests(
    *,
    client: httpx.Client,
    repo_full_name: str,
    state: str = "OPEN",
    page: int | None = None,
    pagelen: int = DEFAULT_PAGE_LENGTH,
) -> PullRequestPage:
    """Fetch one page of pull requests for a repository."""
    workspace, repo = parse_repo_full_name(repo_full_name)
    normalized_state = state.strip().upper()
    if normalized_state not in PULL_REQUEST_STATES:
        raise BitbucketInputError(
            f"Invalid state '{state}'. Expected one of {', '.join(sorted(PULL_REQUEST_STATES))}."
        )
    query = _page_query(
        page=page,
        pagelen=validate_page_length(pagelen),
        extra={"state": normalized_state},
    )
    endpoint = f"/repositories/{quote(workspace)}/{quote(repo)}/pullrequests?{query}"

    rows, payload = _request_page(client, endpoint)
    items = tuple(_parse_pull_request(row, endpoint=endpoint) for row in rows)
    pagination, warnings = _normalize_page_pagination(payload, endpoint=endpoint)
    return PullRequestPage(items=items, pagination=pagination, warnings=warnings)


def fetch_pull_request_comments(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
    page: int | None = None,
    pagelen: int = DEFAULT_PAGE_LENGTH,
) -> CommentPage:
    """Fetch one page of comments on a pull request."""
    workspace, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    query = _page_query(page=page, pagelen=validate_page_length(pagelen))
    endpoint = (
        f"/repositories/{quote(workspace)}/{quote(repo)}"
        f"/pullrequests/{normalized_pr_number}/comments?{query}"
    )

    rows, payload = _request_page(client, endpoint)
    items = tuple(_parse_comment(row, endpoint=endpoint) for row in rows)
    pagination, warnings = _normalize_page_pagination(payload, endpoint=endpoint)
    return CommentPage(items=items, pagination=pagination, warnings=warnings)


def fetch_pull_request_diff(
    *,
    client: httpx.Client,
    repo_full_name: str,
    pr_number: int,
) -> str:
    """Fetch the unified diff of a pull request."""
    workspace, repo = parse_repo_full_name(repo_full_name)
    normalized_pr_number = validate_pr_number(pr_number)
    endpoint = (
        f"/repositories/{quote(workspace)}/{quote(repo)}"
        f"/pullrequests/{normalized_pr_number}/diff"
    )
    response = _request_with_retries(client, endpoint, accept_header="text/plain")
    return response.text


def fetch_diff_for_url(*, client: httpx.Client, url: str) -> str:
    """Fetch raw diff text from a Bitbucket API diff link."""
    if url.startswith(BITBUCKET_API_BASE_URL):
        endpoint = url[len(BITBUCKET_API_BASE_URL):]
    elif url.startswith("/"):
        endpoint = url
    else:
        raise BitbucketInputError(
            f"Refusing to fetch diff from '{url}'. Expected a {BITBUCKET_API_BASE_URL} link."
        )
    response = _request_with_retries(client, endpoint, accept_header="text/plain")
    return response.text


def get_default_workspace() -> str | None:
    """Read the default workspace from environment or .env."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    workspace = os.getenv(DEFAULT_WORKSPACE_ENV_VAR)
    return workspace.strip() if workspace and workspace.strip() else None


def get_bitbucket_credentials() -> BitbucketCredentials:
    """Read Bitbucket credentials from environment and fail fast if missing."""
    credentials, _source = get_bitbucket_credentials_with_source()
    return credentials


def get_bitbucket_credentials_with_source() -> tuple[BitbucketCredentials, str]:
    """Read Bitbucket credentials and return them with the environment source key."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    username = os.getenv(BITBUCKET_USERNAME_ENV_VAR)
    app_password = os.getenv(BITBUCKET_APP_PASSWORD_ENV_VAR)
    if username and app_password:
        credentials = BitbucketCredentials(username=username, secret=app_password)
        return credentials, BITBUCKET_USERNAME_ENV_VAR

    email = os.getenv(ATLASSIAN_USER_EMAIL_ENV_VAR)
    api_token = os.getenv(ATLASSIAN_API_TOKEN_ENV_VAR)
    if email and api_token:
        credentials = BitbucketCredentials(username=email, secret=api_token)
        return credentials, ATLASSIAN_USER_EMAIL_ENV_VAR

    message = (
        "Missing Bitbucket credentials. Set "
        f"{BITBUCKET_USERNAME_ENV_VAR} and {BITBUCKET_APP_PASSWORD_ENV_VAR} (preferred), "
        f"or {ATLASSIAN_USER_EMAIL_ENV_VAR} and {ATLASSIAN_API_TOKEN_ENV_VAR}."
    )
    raise BitbucketAuthError(message)


def fetch_authenticated_username(*, client: httpx.Client) -> str:
    """Fetch the authenticated Bitbucket user's name for credential validation."""
    endpoint = "/user"
    payload = _request_json(client, endpoint)
    return _display_name(payload)


def build_bitbucket_client(
    timeout_seconds: int = 20,
    *,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an authenticated Bitbucket HTTP client."""
    credentials = get_bitbucket_credentials()
    return httpx.Client(
        base_url=BITBUCKET_API_BASE_URL,
        headers={"Accept": "application/json"},
        auth=(credentials.username, credentials.secret),
        timeout=timeout_seconds,
        trust_env=trust_env,
        follow_redirects=True,
    )
