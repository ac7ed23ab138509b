"""Markdown rendering for pull request listings, comments, and pagination."""

from __future__ import annotations

from collections import defaultdict

from bbreview.bitbucket_client import PullRequestComment, PullRequestPage
from bbreview.comments import CommentWithSnippet
from bbreview.schema import PaginationDescriptor

SEPARATOR = "---"


def render_pagination_footer(pagination: PaginationDescriptor | None) -> str:
    """Render a one-paragraph pagination summary, or an empty string."""
    if pagination is None:
        return ""

    parts: list[str] = []
    count = pagination.count or 0
    if pagination.total is not None and pagination.total > 0:
        parts.append(f"*Showing {count} of {pagination.total} total items.*")
    elif count > 0:
        parts.append(f"*Showing {count} item{'s' if count != 1 else ''}.*")
    elif pagination.total == 0:
        parts.append("*Showing 0 of 0 total items.*")

    if pagination.has_more:
        parts.append("More results are available.")
        if pagination.next_cursor:
            parts.append(f'\nTo see more results, use --cursor "{pagination.next_cursor}"')

    return " ".join(parts).strip()


def _with_footer(lines: list[str], pagination: PaginationDescriptor | None) -> str:
    footer = render_pagination_footer(pagination)
    if footer:
        lines.extend(["", SEPARATOR, footer])
    return "\n".join(lines)


def render_pull_requests_markdown(page: PullRequestPage, *, repo_full_name: str) -> str:
    """Render one page of pull requests as a Markdown list."""
    lines = [f"# Pull Requests in {repo_full_name}", ""]
    if not page.items:
        lines.append("*No pull requests found.*")
        return _with_footer(lines, page.pagination)

    for pull_request in page.items:
        title = f"#{pull_request.id}: {pull_request.title}"
        if pull_request.html_url:
            title = f"[{title}]({pull_request.html_url})"
        lines.append(f"## {title}")
        lines.append(
            f"- **State**: {pull_request.state}"
            f" | **Author**: {pull_request.author}"
        )
        lines.append(
            f"- **Branches**: `{pull_request.source_branch}` → "
            f"`{pull_request.destination_branch}`"
        )
        lines.append(f"- **Updated**: {pull_request.updated_on}")
        lines.append("")
    return _with_footer(lines[:-1], page.pagination)


def _render_comment(entry: CommentWithSnippet, lines: list[str]) -> None:
    comment = entry.comment
    header = f"Comment by {comment.author}"
    if comment.deleted:
        header = f"[DELETED] {header}"
    lines.append(f"### {header}")
    lines.append(f"*Posted on {comment.created_on}*")
    if comment.updated_on and comment.updated_on != comment.created_on:
        lines.append(f"*Updated on {comment.updated_on}*")

    if comment.inline is not None:
        line_number = comment.inline.to_line or comment.inline.from_line
        location = f"`{comment.inline.path}`"
        if line_number is not None:
            location = f"{location}, line {line_number}"
        lines.append(f"**File**: {location}")
        if entry.snippet:
            lines.extend(["", "```", entry.snippet, "```"])

    lines.append("")
    lines.append(comment.content or "*No content.*")
    if comment.html_url:
        lines.append("")
        lines.append(f"[View comment]({comment.html_url})")


def _thread_root(comment_id: int, parent_by_id: dict[int, int | None]) -> int:
    """Follow parent links within the page to the top-level comment id."""
    seen = {comment_id}
    current = comment_id
    parent_id = parent_by_id.get(current)
    while parent_id is not None and parent_id in parent_by_id:
        if parent_id in seen:
            # Cyclic parent links: keep the comment at top level.
            return comment_id
        seen.add(parent_id)
        current = parent_id
        parent_id = parent_by_id.get(current)
    return current


def _render_reply(reply: PullRequestComment, lines: list[str]) -> None:
    lines.append("")
    lines.append(f"> **{reply.author}** ({reply.created_on})")
    quoted = reply.content.replace("\n", "\n> ") if reply.content else "*No content.*"
    lines.append(f"> {quoted}")


def render_comments_markdown(
    comments: tuple[CommentWithSnippet, ...],
    *,
    pr_number: int,
    pagination: PaginationDescriptor | None = None,
) -> str:
    """Render pull request comments grouped into threads.

    Replies whose parent is not on the current page are rendered as
    top-level comments.
    """
    lines = [f"# Comments on Pull Request #{pr_number}", ""]
    if not comments:
        lines.append("*No comments found on this pull request.*")
        return _with_footer(lines, pagination)

    parent_by_id = {entry.comment.id: entry.comment.parent_id for entry in comments}
    replies: dict[int, list[PullRequestComment]] = defaultdict(list)
    top_level: list[CommentWithSnippet] = []
    for entry in comments:
        root_id = _thread_root(entry.comment.id, parent_by_id)
        if root_id == entry.comment.id:
            top_level.append(entry)
        else:
            replies[root_id].append(entry.comment)

    for index, entry in enumerate(top_level):
        _render_comment(entry, lines)
        thread = replies.get(entry.comment.id, [])
        if thread:
            lines.append("")
            lines.append("**Replies:**")
            for reply in thread:
                _render_reply(reply, lines)
        if index < len(top_level) - 1:
            lines.extend(["", SEPARATOR, ""])

    return _with_footer(lines, pagination)
