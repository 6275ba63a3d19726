from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Generator, Iterator
from pathlib import Path

import pytest

# Register fixture plugins from tests/fixtures/
pytest_plugins = [
    "tests.fixtures.repos",
    "tests.fixtures.runners",
]


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Skip integration tests when no git binary is available."""
    if shutil.which("git") is not None:
        return
    skip_git = pytest.mark.skip(reason="git CLI not installed")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_git)


@pytest.fixture(autouse=True)
def configure_test_logging() -> Generator[None, None, None]:
    """Configure structlog for tests: stderr only, WARNING and above."""
    from gitstate.logging import configure_logging

    configure_logging(level=logging.WARNING)
    yield


@pytest.fixture(autouse=True)
def isolated_git_config(tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    """Keep the user's ~/.gitconfig (signing, hooks, default branch) out of tests."""
    home = tmp_path_factory.mktemp("home")
    saved = os.environ.copy()
    os.environ["HOME"] = str(home)
    os.environ["GIT_CONFIG_NOSYSTEM"] = "1"
    os.environ.pop("GIT_CONFIG_GLOBAL", None)
    for key in list(os.environ):
        if key.startswith("GITSTATE_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(saved)


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory, restoring the cwd afterwards."""
    original_cwd = os.getcwd()
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
    os.chdir(original_cwd)

