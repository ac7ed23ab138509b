"""Shared pytest fixtures and test-run configuration."""

from __future__ import annotations

import os

import pytest


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom pytest options for integration test execution."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked as integration (live Bitbucket API).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly enabled."""
    if config.getoption("--run-integration") or os.getenv("RUN_INTEGRATION_TESTS") == "1":
        return

    skip_marker = pytest.mark.skip(
        reason=(
            "Integration tests are disabled by default. "
            "Use --run-integration or set RUN_INTEGRATION_TESTS=1."
        )
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture(autouse=True)
def isolated_environment(
    request: pytest.FixtureRequest,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path_factory: pytest.TempPathFactory,
) -> None:
    """Keep real credentials and a developer .env out of unit tests."""
    if "integration" in request.keywords:
        return
    for name in (
        "ATLASSIAN_BITBUCKET_USERNAME",
        "ATLASSIAN_BITBUCKET_APP_PASSWORD",
        "ATLASSIAN_USER_EMAIL",
        "ATLASSIAN_API_TOKEN",
        "BITBUCKET_DEFAULT_WORKSPACE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path_factory.mktemp("cwd"))
