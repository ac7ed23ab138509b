"""Unit tests for Markdown rendering."""

from __future__ import annotations

import pytest
from bbreview.bitbucket_client import (
    InlineAnchor,
    PullRequestComment,
    PullRequestPage,
    PullRequestSummary,
)
from bbreview.comments import CommentWithSnippet
from bbreview.output import (
    render_comments_markdown,
    render_pagination_footer,
    render_pull_requests_markdown,
)
from bbreview.schema import PaginationDescriptor


def make_comment(
    comment_id: int,
    *,
    parent_id: int | None = None,
    inline: InlineAnchor | None = None,
    deleted: bool = False,
) -> PullRequestComment:
    """Build a comment for rendering tests."""
    return PullRequestComment(
        id=comment_id,
        author=f"user{comment_id}",
        content=f"body {comment_id}",
        created_on="2024-05-01",
        updated_on="2024-05-01",
        deleted=deleted,
        parent_id=parent_id,
        inline=inline,
    )


@pytest.mark.unit
def test_pagination_footer_with_total_and_cursor() -> None:
    footer = render_pagination_footer(
        PaginationDescriptor(has_more=True, count=25, next_cursor="2", total=60)
    )

    assert footer == (
        '*Showing 25 of 60 total items.* More results are available. \n'
        'To see more results, use --cursor "2"'
    )


@pytest.mark.unit
def test_pagination_footer_terminal_without_total() -> None:
    footer = render_pagination_footer(PaginationDescriptor(has_more=False, count=1))

    assert footer == "*Showing 1 item.*"


@pytest.mark.unit
def test_pagination_footer_empty_for_missing_descriptor() -> None:
    assert render_pagination_footer(None) == ""


@pytest.mark.unit
def test_render_pull_requests_lists_rows_and_footer() -> None:
    page = PullRequestPage(
        items=(
            PullRequestSummary(
                id=42,
                title="Fix launch sequence",
                state="OPEN",
                author="Ada",
                source_branch="feature/launch-fix",
                destination_branch="main",
                html_url="https://bitbucket.org/acme/rocket/pull-requests/42",
                created_on="2024-05-01",
                updated_on="2024-05-02",
            ),
        ),
        pagination=PaginationDescriptor(has_more=True, count=1, next_cursor="2", total=3),
    )

    markdown = render_pull_requests_markdown(page, repo_full_name="acme/rocket")

    assert markdown.startswith("# Pull Requests in acme/rocket")
    expected_title = "[#42: Fix launch sequence](https://bitbucket.org/acme/rocket/pull-requests/42)"
    assert f"## {expected_title}" in markdown
    assert "`feature/launch-fix` → `main`" in markdown
    assert '--cursor "2"' in markdown


@pytest.mark.unit
def test_render_pull_requests_empty_page() -> None:
    page = PullRequestPage(items=(), pagination=PaginationDescriptor(has_more=False, count=0))

    markdown = render_pull_requests_markdown(page, repo_full_name="acme/rocket")

    assert "*No pull requests found.*" in markdown


@pytest.mark.unit
def test_render_comments_includes_snippet_and_threads_replies() -> None:
    inline = InlineAnchor(path="app.py", from_line=None, to_line=3)
    comments = (
        CommentWithSnippet(
            comment=make_comment(1, inline=inline),
            snippet=">    3: def run(env):",
        ),
        CommentWithSnippet(comment=make_comment(2, parent_id=1)),
        CommentWithSnippet(comment=make_comment(3, parent_id=2)),
        CommentWithSnippet(comment=make_comment(4, deleted=True)),
    )

    markdown = render_comments_markdown(comments, pr_number=42)

    assert markdown.startswith("# Comments on Pull Request #42")
    assert "**File**: `app.py`, line 3" in markdown
    assert "```\n>    3: def run(env):\n```" in markdown
    assert "**Replies:**" in markdown
    assert "> **user2** (2024-05-01)" in markdown
    assert "> **user3** (2024-05-01)" in markdown
    assert "### [DELETED] Comment by user4" in markdown
    assert markdown.count("### ") == 2


@pytest.mark.unit
def test_render_comments_orphan_reply_is_top_level() -> None:
    comments = (CommentWithSnippet(comment=make_comment(9, parent_id=1)),)

    markdown = render_comments_markdown(comments, pr_number=42)

    assert "### Comment by user9" in markdown


@pytest.mark.unit
def test_render_comments_empty() -> None:
    markdown = render_comments_markdown((), pr_number=42)

    assert "*No comments found on this pull request.*" in markdown


@pytest.mark.unit
def test_render_comments_cyclic_parents_stay_visible() -> None:
    comments = (
        CommentWithSnippet(comment=make_comment(1, parent_id=2)),
        CommentWithSnippet(comment=make_comment(2, parent_id=1)),
    )

    markdown = render_comments_markdown(comments, pr_number=42)

    assert "### Comment by user1" in markdown
    assert "### Comment by user2" in markdown
