"""Tests for the repository handle"""

import asyncio
import os
import shutil
import stat
from unittest.mock import patch

import pytest

from rig_workspace.exceptions import CommandFailed, OpenFailed, ResourceBusy
from rig_workspace.models.commit import CommitRequest
from rig_workspace.models.status import StatusEntry, StatusKind
from rig_workspace.services.executor import CommandResult
from rig_workspace.services.git.commits import CommitPipeline
from rig_workspace.services.git.worktrees import WorktreeService
from rig_workspace.services.repository import (
    Repository,
    is_lock_contention,
    parse_status,
    parse_worktree_list,
    resolve_binary,
)

BUSY_STDERR = (
    "fatal: Unable to create '/rig/.git/index.lock': File exists.\n\n"
    "Another git process seems to be running in this repository"
)


def _result(status=0, stdout="", stderr=""):
    return CommandResult(args=("git",), status=status, stdout=stdout, stderr=stderr)


class TestOpen:
    """Test opening repositories."""

    @pytest.mark.asyncio
    async def test_open_working_tree(self, git_repo, open_repo):
        """Test opening a repository by its working tree."""
        repo = await open_repo(git_repo.working_dir)

        assert repo.path == git_repo.working_dir
        assert repo.working_dir == git_repo.working_dir
        assert os.path.isabs(repo.binary)
        assert not repo.is_linked_worktree

    @pytest.mark.asyncio
    async def test_open_git_dir(self, git_repo, open_repo):
        """Test opening a repository by its .git directory."""
        repo = await open_repo(os.path.join(git_repo.working_dir, ".git"))

        assert repo.working_dir == git_repo.working_dir
        assert await repo.head_sha() == git_repo.head.commit.hexsha

    @pytest.mark.asyncio
    async def test_open_plain_directory_fails(self, temp_dir, open_repo):
        """Test a directory that is not a repository raises OpenFailed."""
        plain = temp_dir / "plain"
        plain.mkdir()

        with pytest.raises(OpenFailed) as exc_info:
            await open_repo(plain)
        assert "not a git repository" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_open_missing_path_fails(self, temp_dir, open_repo):
        """Test a path that does not exist raises OpenFailed."""
        with pytest.raises(OpenFailed):
            await open_repo(temp_dir / "missing")

    @pytest.mark.asyncio
    async def test_open_without_binary_fails(self, git_repo, config, pool):
        """Test OpenFailed when neither binary resolves."""
        with pytest.raises(OpenFailed) as exc_info:
            await Repository.open(
                git_repo.working_dir,
                system_binary="definitely-not-a-git-binary",
                config=config,
                pool=pool,
            )
        assert "no usable git binary" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_bundled_binary_preferred(self, git_repo, temp_dir, config, pool):
        """Test an executable bundled binary is used over the system one."""
        wrapper = temp_dir / "bundled-git"
        wrapper.write_text(f'#!/bin/sh\nexec "{shutil.which("git")}" "$@"\n')
        wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR)

        repo = await Repository.open(git_repo.working_dir, bundled_binary=str(wrapper), config=config, pool=pool)

        assert repo.binary == str(wrapper)
        assert await repo.head_sha() == git_repo.head.commit.hexsha

    @pytest.mark.asyncio
    async def test_unusable_bundled_binary_falls_back(self, git_repo, temp_dir, config, pool):
        """Test a non-executable bundled binary falls back to system git."""
        not_executable = temp_dir / "bundled-git"
        not_executable.write_text("not a program\n")
        not_executable.chmod(0o644)

        repo = await Repository.open(
            git_repo.working_dir, bundled_binary=str(not_executable), config=config, pool=pool
        )

        assert repo.binary == shutil.which("git")


class TestResolveBinary:
    """Test binary selection."""

    def test_system_name_looked_up_on_path(self):
        assert resolve_binary(None, "git") == shutil.which("git")

    def test_nothing_resolves(self, temp_dir):
        assert resolve_binary(str(temp_dir / "nope"), str(temp_dir / "also-nope")) is None


class TestHead:
    """Test HEAD resolution."""

    @pytest.mark.asyncio
    async def test_head_sha(self, git_repo, open_repo):
        repo = await open_repo(git_repo.working_dir)
        assert await repo.head_sha() == git_repo.head.commit.hexsha

    @pytest.mark.asyncio
    async def test_head_sha_unborn(self, empty_repo, open_repo):
        """Test an unborn branch reports no HEAD commit."""
        repo = await open_repo(empty_repo.working_dir)
        assert await repo.head_sha() is None


class TestStatus:
    """Test working tree status."""

    @pytest.mark.asyncio
    async def test_clean_tree(self, git_repo, open_repo):
        repo = await open_repo(git_repo.working_dir)

        assert await repo.status() == frozenset()
        assert await repo.is_clean()

    @pytest.mark.asyncio
    async def test_untracked_file(self, git_repo, open_repo):
        with open(os.path.join(git_repo.working_dir, "new.txt"), "w") as f:
            f.write("new\n")
        repo = await open_repo(git_repo.working_dir)

        assert await repo.status() == {StatusEntry("new.txt", StatusKind.UNTRACKED)}
        assert not await repo.is_clean()

    @pytest.mark.asyncio
    async def test_modified_file(self, git_repo, open_repo):
        with open(os.path.join(git_repo.working_dir, "README.md"), "a") as f:
            f.write("more\n")
        repo = await open_repo(git_repo.working_dir)

        assert await repo.status() == {StatusEntry("README.md", StatusKind.MODIFIED)}

    @pytest.mark.asyncio
    async def test_deleted_file(self, git_repo, open_repo):
        os.remove(os.path.join(git_repo.working_dir, "README.md"))
        repo = await open_repo(git_repo.working_dir)

        assert await repo.status() == {StatusEntry("README.md", StatusKind.DELETED)}

    @pytest.mark.asyncio
    async def test_staged_file_is_added(self, git_repo, open_repo):
        with open(os.path.join(git_repo.working_dir, "staged.txt"), "w") as f:
            f.write("staged\n")
        git_repo.index.add(["staged.txt"])
        repo = await open_repo(git_repo.working_dir)

        assert await repo.status() == {StatusEntry("staged.txt", StatusKind.ADDED)}

    @pytest.mark.asyncio
    async def test_pathspec_limits_entries(self, git_repo, open_repo):
        for name in ("a.txt", "b.txt"):
            with open(os.path.join(git_repo.working_dir, name), "w") as f:
                f.write(name)
        repo = await open_repo(git_repo.working_dir)

        assert await repo.status(["a.txt"]) == {StatusEntry("a.txt", StatusKind.UNTRACKED)}

    @pytest.mark.asyncio
    async def test_nested_untracked_files_listed_individually(self, git_repo, open_repo):
        nested = os.path.join(git_repo.working_dir, "dir", "sub")
        os.makedirs(nested)
        with open(os.path.join(nested, "file.txt"), "w") as f:
            f.write("x")
        repo = await open_repo(git_repo.working_dir)

        assert await repo.status() == {StatusEntry("dir/sub/file.txt", StatusKind.UNTRACKED)}


class TestParsing:
    """Test parsing of git's porcelain output."""

    def test_parse_status_codes(self):
        output = "UU conflict.txt\0R  new.txt\0old.txt\0?? loose.txt\0 M changed.txt\0A  added.txt\0 D gone.txt\0"

        assert parse_status(output) == {
            StatusEntry("conflict.txt", StatusKind.CONFLICTED),
            StatusEntry("new.txt", StatusKind.ADDED),
            StatusEntry("old.txt", StatusKind.DELETED),
            StatusEntry("loose.txt", StatusKind.UNTRACKED),
            StatusEntry("changed.txt", StatusKind.MODIFIED),
            StatusEntry("added.txt", StatusKind.ADDED),
            StatusEntry("gone.txt", StatusKind.DELETED),
        }

    def test_parse_status_empty(self):
        assert parse_status("") == frozenset()

    def test_parse_worktree_list(self, git_repo, temp_dir):
        main_path = git_repo.working_dir
        gone_path = str(temp_dir / "worktrees" / "agent-1")
        sha = "a" * 40
        output = (
            f"worktree {main_path}\nHEAD {sha}\nbranch refs/heads/main\n\n"
            f"worktree {gone_path}\nHEAD {'0' * 40}\nbranch refs/heads/agent-1\nlocked\nprunable gitdir file points to non-existent location\n\n"
        )

        main, linked = parse_worktree_list(output, {gone_path: "agent-1-admin"})

        assert main.is_main
        assert main.head_ref == "main"
        assert main.head_sha == sha
        assert main.is_valid

        assert linked.name == "agent-1-admin"
        assert linked.head_ref == "agent-1"
        assert linked.head_sha is None
        assert linked.is_stale
        assert linked.is_locked
        assert not linked.is_valid
        assert not linked.is_main

    def test_parse_worktree_list_detached_without_trailing_blank(self, git_repo):
        sha = "b" * 40
        output = f"worktree {git_repo.working_dir}\nHEAD {sha}\ndetached"

        (main,) = parse_worktree_list(output, {})

        assert main.head_ref == sha

    def test_lock_contention_detection(self):
        assert is_lock_contention(BUSY_STDERR)
        assert not is_lock_contention("fatal: not a git repository")


class TestRetries:
    """Test lock contention handling."""

    @pytest.mark.asyncio
    async def test_busy_then_success_retries(self, git_repo, open_repo):
        repo = await open_repo(git_repo.working_dir)

        with patch.object(repo._executor, "run", side_effect=[_result(128, stderr=BUSY_STDERR), _result(0, "ok")]) as run:
            result = await repo.git("status", "status")

        assert result.stdout == "ok"
        assert run.call_count == 2

    @pytest.mark.asyncio
    async def test_busy_exhausts_retries(self, git_repo, open_repo, config):
        repo = await open_repo(git_repo.working_dir)

        with patch.object(repo._executor, "run", return_value=_result(128, stderr=BUSY_STDERR)) as run:
            with pytest.raises(ResourceBusy):
                await repo.git("status", "status")

        assert run.call_count == config.busy_retries + 1

    @pytest.mark.asyncio
    async def test_busy_without_retry(self, git_repo, open_repo):
        repo = await open_repo(git_repo.working_dir)

        with patch.object(repo._executor, "run", return_value=_result(128, stderr=BUSY_STDERR)) as run:
            with pytest.raises(ResourceBusy):
                await repo.git("commit", "commit", retry_busy=False)

        assert run.call_count == 1

    @pytest.mark.asyncio
    async def test_other_failure_is_not_retried(self, git_repo, open_repo):
        """Test an ordinary failure raises CommandFailed carrying git's stderr."""
        repo = await open_repo(git_repo.working_dir)

        with pytest.raises(CommandFailed) as exc_info:
            await repo.git("show", "show", "no-such-ref")

        assert not isinstance(exc_info.value, ResourceBusy)
        assert exc_info.value.status == 128
        assert "no-such-ref" in exc_info.value.stderr


class TestGate:
    """Test that reads do not wait for mutations."""

    @pytest.mark.asyncio
    async def test_reads_proceed_while_gate_held(self, git_repo, open_repo):
        repo = await open_repo(git_repo.working_dir)
        release = asyncio.Event()
        held = asyncio.Event()

        async def mutation():
            held.set()
            await release.wait()

        mutating = asyncio.ensure_future(repo.serialized("hold", mutation))
        await held.wait()
        try:
            worktrees = await asyncio.wait_for(repo.worktrees(), timeout=10)
            status = await asyncio.wait_for(repo.status(), timeout=10)
        finally:
            release.set()
            await mutating

        assert len(worktrees) == 1
        assert status == frozenset()

    @pytest.mark.asyncio
    async def test_worktree_repos_have_independent_gates(self, git_repo, open_repo):
        repo = await open_repo(git_repo.working_dir)
        worktree = await WorktreeService(repo).create_worktree("agent-1")
        agent_repo = await repo.open_worktree(worktree)

        assert agent_repo.is_linked_worktree
        assert agent_repo._gate is not repo._gate
        assert agent_repo.common_dir == repo.common_dir

    @pytest.mark.asyncio
    async def test_reads_interleaved_with_creates_and_commits(self, git_repo, open_repo):
        """Test dozens of reads racing real worktree creates and commits all succeed."""
        repo = await open_repo(git_repo.working_dir)
        service = WorktreeService(repo)
        start = git_repo.head.commit.hexsha
        names = [f"agent-{i}" for i in range(4)]

        async def spawn_and_commit(name):
            worktree = await service.create_worktree(name)
            with open(os.path.join(worktree.path, f"{name}.txt"), "w") as f:
                f.write(f"{name}\n")
            agent_repo = await repo.open_worktree(worktree)
            return await CommitPipeline(agent_repo).commit(CommitRequest(f"Work from {name}"))

        async def read(i):
            reader = (repo.worktrees, repo.status, repo.head_sha)[i % 3]
            return await asyncio.wait_for(reader(), timeout=30)

        results = await asyncio.wait_for(
            asyncio.gather(
                *(spawn_and_commit(name) for name in names),
                *(read(i) for i in range(48)),
                return_exceptions=True,
            ),
            timeout=120,
        )

        errors = [r for r in results if isinstance(r, BaseException)]
        assert errors == []
        shas = dict(zip(names, results[:len(names)]))
        assert len(set(shas.values())) == len(names)

        worktrees = [wt for wt in await repo.worktrees() if not wt.is_main]
        assert sorted(wt.name for wt in worktrees) == names
        for wt in worktrees:
            assert wt.is_valid
            assert not wt.is_stale
            assert wt.head_ref == wt.name
            assert wt.head_sha == shas[wt.name]
            assert git_repo.commit(wt.name).parents[0].hexsha == start
        assert await repo.head_sha() == start
        assert await repo.status() == frozenset()
