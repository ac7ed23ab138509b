"""Typer CLI for browsing Bitbucket pull requests and review comments."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, NoReturn

import httpx
import typer

from bbreview.bitbucket_client import (
    DEFAULT_PAGE_LENGTH,
    BitbucketApiError,
    BitbucketAuthError,
    BitbucketInputError,
    build_bitbucket_client,
    fetch_authenticated_username,
    fetch_pull_request_comments,
    fetch_pull_request_diff,
    fetch_pull_requests,
    get_bitbucket_credentials_with_source,
    get_default_workspace,
    parse_page_cursor,
    parse_repo_full_name,
)
from bbreview.comments import enrich_comments_with_snippets
from bbreview.diff_snippet import DEFAULT_CONTEXT_LINES, extract_diff_snippet
from bbreview.output import render_comments_markdown, render_pull_requests_markdown

app = typer.Typer(help="Browse Bitbucket pull requests and review comments as Markdown.")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option(help="Enable debug logging on stderr.")] = False,
) -> None:
    """Configure logging before running a command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )


def _resolve_repo(repo: str) -> str:
    """Expand a bare repo slug with the default workspace."""
    workspace, repo_slug = parse_repo_full_name(repo, default_workspace=get_default_workspace())
    return f"{workspace}/{repo_slug}"


def _fail(message: str, error: Exception) -> NoReturn:
    typer.echo(message, err=True)
    raise typer.Exit(code=1) from error


@app.command("ls-prs")
def list_pull_requests_command(
    repo: Annotated[str, typer.Option(help="Repository in workspace/repo format.")],
    state: Annotated[
        str, typer.Option(help="Pull request state: OPEN|MERGED|DECLINED|SUPERSEDED.")
    ] = "OPEN",
    limit: Annotated[int, typer.Option(help="Page length (1-100).")] = DEFAULT_PAGE_LENGTH,
    cursor: Annotated[str | None, typer.Option(help="Page cursor from a previous run.")] = None,
) -> None:
    """List pull requests for a repository."""
    try:
        repo_full_name = _resolve_repo(repo)
        page = parse_page_cursor(cursor)
        with build_bitbucket_client() as client:
            result = fetch_pull_requests(
                client=client,
                repo_full_name=repo_full_name,
                state=state,
                page=page,
                pagelen=limit,
            )
    except (BitbucketAuthError, BitbucketInputError) as error:
        _fail(f"Error: {error}", error)
    except BitbucketApiError as error:
        _fail(f"Error: status={error.status_code} endpoint={error.endpoint}.", error)
    except httpx.HTTPError as error:
        _fail(f"Error: network error ({error}).", error)

    typer.echo(render_pull_requests_markdown(result, repo_full_name=repo_full_name))


@app.command("ls-pr-comments")
def list_pull_request_comments_command(
    repo: Annotated[str, typer.Option(help="Repository in workspace/repo format.")],
    pr: Annotated[int, typer.Option(help="Pull request number.")],
    limit: Annotated[int, typer.Option(help="Page length (1-100).")] = DEFAULT_PAGE_LENGTH,
    cursor: Annotated[str | None, typer.Option(help="Page cursor from a previous run.")] = None,
    context_lines: Annotated[
        int, typer.Option(min=0, help="Lines of code context around inline comments.")
    ] = DEFAULT_CONTEXT_LINES,
) -> None:
    """List comments on a pull request, with code snippets for inline comments."""
    try:
        repo_full_name = _resolve_repo(repo)
        page = parse_page_cursor(cursor)
        with build_bitbucket_client() as client:
            result = fetch_pull_request_comments(
                client=client,
                repo_full_name=repo_full_name,
                pr_number=pr,
                page=page,
                pagelen=limit,
            )
            enriched, _warnings = enrich_comments_with_snippets(
                client=client,
                comments=result.items,
                context_lines=context_lines,
            )
    except (BitbucketAuthError, BitbucketInputError) as error:
        _fail(f"Error: {error}", error)
    except BitbucketApiError as error:
        _fail(f"Error: status={error.status_code} endpoint={error.endpoint}.", error)
    except httpx.HTTPError as error:
        _fail(f"Error: network error ({error}).", error)

    typer.echo(render_comments_markdown(enriched, pr_number=pr, pagination=result.pagination))


@app.command("pr-diff")
def pull_request_diff_command(
    repo: Annotated[str, typer.Option(help="Repository in workspace/repo format.")],
    pr: Annotated[int, typer.Option(help="Pull request number.")],
    line: Annotated[
        int | None,
        typer.Option(min=1, help="Print only the new-file code around this line."),
    ] = None,
    context_lines: Annotated[
        int, typer.Option(min=0, help="Lines of context before and after --line.")
    ] = DEFAULT_CONTEXT_LINES,
) -> None:
    """Print a pull request diff, or the code around one of its new-file lines."""
    try:
        repo_full_name = _resolve_repo(repo)
        with build_bitbucket_client() as client:
            diff_text = fetch_pull_request_diff(
                client=client,
                repo_full_name=repo_full_name,
                pr_number=pr,
            )
    except (BitbucketAuthError, BitbucketInputError) as error:
        _fail(f"Error: {error}", error)
    except BitbucketApiError as error:
        _fail(f"Error: status={error.status_code} endpoint={error.endpoint}.", error)
    except httpx.HTTPError as error:
        _fail(f"Error: network error ({error}).", error)

    if line is None:
        typer.echo(diff_text, nl=not diff_text.endswith("\n"))
        return

    snippet, _warnings = extract_diff_snippet(diff_text, line, context_lines)
    if not snippet:
        typer.echo(f"Line {line} not found in pull request #{pr} diff.", err=True)
        raise typer.Exit(code=1)
    typer.echo(snippet)


@app.command("diff-snippet")
def diff_snippet_command(
    diff_file: Annotated[
        Path,
        typer.Option(exists=True, dir_okay=False, readable=True, help="Unified diff file."),
    ],
    line: Annotated[int, typer.Option(min=1, help="New-file line number to center on.")],
    context_lines: Annotated[
        int, typer.Option(min=0, help="Lines of context before and after the line.")
    ] = DEFAULT_CONTEXT_LINES,
) -> None:
    """Print the new-file code around one line of a local unified diff."""
    diff_text = diff_file.read_text(encoding="utf-8")
    snippet, _warnings = extract_diff_snippet(diff_text, line, context_lines)
    if not snippet:
        typer.echo(f"Line {line} not found in {diff_file}.", err=True)
        raise typer.Exit(code=1)
    typer.echo(snippet)


@app.command("auth-check")
def auth_check_command(
    timeout_seconds: Annotated[
        int, typer.Option(help="Bitbucket API timeout in seconds for the validation call.")
    ] = 20,
    trust_env: Annotated[
        bool,
        typer.Option(
            "--trust-env/--no-trust-env",
            help="Use proxy/SSL environment variables from the current shell.",
        ),
    ] = True,
) -> None:
    """Validate Bitbucket credential setup."""
    try:
        _credentials, source = get_bitbucket_credentials_with_source()
    except BitbucketAuthError as error:
        _fail(f"Bitbucket auth check failed: {error}", error)

    typer.echo(f"Credentials detected in {source}.")

    try:
        with build_bitbucket_client(timeout_seconds=timeout_seconds, trust_env=trust_env) as client:
            username = fetch_authenticated_username(client=client)
    except BitbucketApiError as error:
        _fail(
            "Bitbucket auth check failed: "
            f"status={error.status_code} endpoint={error.endpoint}.",
            error,
        )
    except httpx.HTTPError as error:
        _fail(f"Bitbucket auth check failed: network error ({error}).", error)

    typer.echo(f"Authenticated as Bitbucket user '{username}'.")
    typer.echo("Bitbucket credential setup is valid.")
