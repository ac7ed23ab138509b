"""Attach diff snippets to inline pull request comments."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from bbreview.bitbucket_client import (
    BitbucketApiError,
    BitbucketInputError,
    PullRequestComment,
    fetch_diff_for_url,
)
from bbreview.diff_snippet import DEFAULT_CONTEXT_LINES, extract_diff_snippet

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommentWithSnippet:
    """Comment paired with the new-file code it is anchored to, if resolvable."""

    comment: PullRequestComment
    snippet: str | None = None


def enrich_comments_with_snippets(
    *,
    client: httpx.Client,
    comments: tuple[PullRequestComment, ...],
    context_lines: int = DEFAULT_CONTEXT_LINES,
) -> tuple[tuple[CommentWithSnippet, ...], tuple[str, ...]]:
    """Fetch diffs for inline comments and extract the code around each anchor line.

    Each distinct diff URL is fetched once. A failed fetch degrades to a comment
    without a snippet and a warning; it never aborts the listing.
    """
    diff_by_url: dict[str, str | None] = {}
    enriched: list[CommentWithSnippet] = []
    aggregated_warnings: list[str] = []

    for comment in comments:
        inline = comment.inline
        if inline is None or inline.to_line is None or not comment.code_url:
            enriched.append(CommentWithSnippet(comment=comment))
            continue

        if comment.code_url not in diff_by_url:
            try:
                logger.debug("Fetching diff for inline comment %d", comment.id)
                diff_by_url[comment.code_url] = fetch_diff_for_url(
                    client=client,
                    url=comment.code_url,
                )
            except (BitbucketApiError, BitbucketInputError, httpx.HTTPError) as error:
                warning = f"Failed to fetch diff for comment {comment.id}: {error}"
                logger.warning(warning)
                aggregated_warnings.append(warning)
                diff_by_url[comment.code_url] = None

        diff_text = diff_by_url[comment.code_url]
        if diff_text is None:
            enriched.append(CommentWithSnippet(comment=comment))
            continue

        snippet, warnings = extract_diff_snippet(diff_text, inline.to_line, context_lines)
        for warning in warnings:
            logger.warning("Snippet for comment %d: %s", comment.id, warning)
        aggregated_warnings.extend(f"Comment {comment.id}: {warning}" for warning in warnings)
        enriched.append(CommentWithSnippet(comment=comment, snippet=snippet or None))

    return tuple(enriched), tuple(aggregated_warnings)
