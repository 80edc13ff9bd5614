"""Pytest fixtures for rig-workspace tests"""
import os
import tempfile
from pathlib import Path

import pytest
import git

from rig_workspace.config import Config
from rig_workspace.services.repository import Repository
from rig_workspace.services.worker_pool import WorkerPool


def _configure_identity(repo: git.Repo) -> None:
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
        writer.set_value("commit", "gpgsign", "false")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        # git reports resolved paths; keep fixtures comparable on symlinked temp dirs
        yield Path(os.path.realpath(tmpdir))


@pytest.fixture
def git_repo(temp_dir):
    """Create a real rig repository with one commit on main."""
    repo_path = temp_dir / "rig"
    repo_path.mkdir()

    repo = git.Repo.init(repo_path)
    _configure_identity(repo)

    (repo_path / "README.md").write_text("# Test Rig\n")
    repo.index.add(["README.md"])
    repo.index.commit("Initial commit")

    try:
        repo.git.branch('-M', 'main')
    except git.exc.GitCommandError:
        pass

    yield repo

    repo.close()


@pytest.fixture
def empty_repo(temp_dir):
    """Create a repository with no commits (unborn HEAD)."""
    repo_path = temp_dir / "empty"
    repo_path.mkdir()

    repo = git.Repo.init(repo_path)
    _configure_identity(repo)

    yield repo

    repo.close()


@pytest.fixture
def worktree_root(temp_dir):
    """Directory agent worktrees are created in."""
    return temp_dir / "worktrees"


@pytest.fixture
def config(worktree_root):
    """Configuration tuned for fast tests."""
    return Config(
        worktree_root=str(worktree_root),
        command_timeout=30.0,
        busy_retries=3,
        busy_backoff=0.01,
    )


@pytest.fixture
def pool():
    """A private worker pool, shut down after the test."""
    worker_pool = WorkerPool(4)
    yield worker_pool
    worker_pool.shutdown(wait=True)


@pytest.fixture
def open_repo(config, pool):
    """Async factory opening a Repository with the test config and pool."""
    async def _open(path) -> Repository:
        return await Repository.open(str(path), config=config, pool=pool)
    return _open


@pytest.fixture
def commit_file():
    """Write a file into a working tree and commit it with GitPython."""
    def _commit(repo: git.Repo, name: str, content: str, message: str) -> str:
        (Path(repo.working_dir) / name).write_text(content)
        repo.index.add([name])
        return repo.index.commit(message).hexsha
    return _commit
