"""Repository handle: one opened git repository and its mutation gate."""

import asyncio
import os
import shutil
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

import git

from rig_workspace.config import Config
from rig_workspace.constants import (
    BRANCH_REF_PREFIX,
    CONFLICT_CODES,
    LOCK_CONTENTION_MARKERS,
    NULL_SHA,
    PORCELAIN_BARE,
    PORCELAIN_BRANCH,
    PORCELAIN_DETACHED,
    PORCELAIN_HEAD,
    PORCELAIN_LOCKED,
    PORCELAIN_PRUNABLE,
    PORCELAIN_WORKTREE,
    WORKTREES_ADMIN_DIR,
)
from rig_workspace.exceptions import CommandFailed, OpenFailed, ResourceBusy
from rig_workspace.logging_config import get_logger
from rig_workspace.models.status import StatusEntry, StatusKind
from rig_workspace.models.worktree import Worktree
from rig_workspace.services.executor import CommandResult, ProcessExecutor
from rig_workspace.services.worker_pool import WorkerPool, get_default_pool

logger = get_logger(__name__)

T = TypeVar("T")


def is_lock_contention(stderr: str) -> bool:
    """Check whether git failed because another process holds one of its locks."""
    return any(marker in stderr for marker in LOCK_CONTENTION_MARKERS)


def resolve_binary(bundled: Optional[str], system: Optional[str]) -> Optional[str]:
    """Pick the git executable: the bundled one when usable, else the system one.

    Returns:
        Absolute path to the binary, or None if neither resolves
    """
    if bundled:
        if os.path.isfile(bundled) and os.access(bundled, os.X_OK):
            return os.path.abspath(bundled)
        logger.warning(f"Bundled git {bundled} is not an executable file; trying system git")

    if system:
        if os.path.sep in system:
            if os.path.isfile(system) and os.access(system, os.X_OK):
                return os.path.abspath(system)
            return None
        return shutil.which(system)

    return None


def parse_status(output: str) -> frozenset:
    """Parse `git status --porcelain=v1 -z` output into StatusEntry values.

    A rename or copy is reported as its new path added; a rename also
    reports the old path deleted.
    """
    entries = set()
    fields = output.split("\0")
    i = 0
    while i < len(fields):
        record = fields[i]
        i += 1
        if len(record) < 4:
            continue

        code, path = record[:2], record[3:]
        index_status, worktree_status = code[0], code[1]

        if code == "??":
            entries.add(StatusEntry(path, StatusKind.UNTRACKED))
        elif code in CONFLICT_CODES:
            entries.add(StatusEntry(path, StatusKind.CONFLICTED))
        elif index_status in "RC":
            # -z puts the source path in the following field
            source = fields[i] if i < len(fields) else ""
            i += 1
            entries.add(StatusEntry(path, StatusKind.ADDED))
            if index_status == "R" and source:
                entries.add(StatusEntry(source, StatusKind.DELETED))
        elif "D" in code:
            entries.add(StatusEntry(path, StatusKind.DELETED))
        elif index_status == "A":
            entries.add(StatusEntry(path, StatusKind.ADDED))
        else:
            entries.add(StatusEntry(path, StatusKind.MODIFIED))

    return frozenset(entries)


def parse_worktree_list(output: str, admin_names: Mapping[str, str]) -> List[Worktree]:
    """Parse `git worktree list --porcelain` output.

    Format:
        worktree /path/to/worktree
        HEAD commit_sha
        branch refs/heads/branch-name   (or "detached" / "bare")
        locked [reason]                 (optional)
        prunable [reason]               (optional)
        (blank line between worktrees)

    Args:
        output: Raw porcelain output
        admin_names: Real worktree path -> administrative entry name

    Returns:
        Worktrees in git's order, main worktree first
    """
    worktrees: List[Worktree] = []
    current: Dict[str, object] = {}

    def flush():
        path = current.get("path")
        if path:
            worktrees.append(_build_worktree(current, admin_names, is_main=not worktrees))

    for line in output.split("\n"):
        line = line.rstrip("\r")
        if not line:
            flush()
            current = {}
            continue

        key, _, value = line.partition(" ")
        if key == PORCELAIN_WORKTREE:
            current["path"] = value
        elif key == PORCELAIN_HEAD:
            current["head"] = value
        elif key == PORCELAIN_BRANCH:
            current["branch"] = value[len(BRANCH_REF_PREFIX):] if value.startswith(BRANCH_REF_PREFIX) else value
        elif key == PORCELAIN_DETACHED:
            current["detached"] = True
        elif key == PORCELAIN_BARE:
            current["bare"] = True
        elif key == PORCELAIN_LOCKED:
            current["locked"] = True
        elif key == PORCELAIN_PRUNABLE:
            current["prunable"] = True

    # Handle last entry if no trailing blank line
    flush()
    return worktrees


def _build_worktree(fields: Dict[str, object], admin_names: Mapping[str, str], is_main: bool) -> Worktree:
    path = str(fields["path"])
    head = str(fields.get("head", "")) or None
    if head == NULL_SHA:
        head = None

    if fields.get("bare"):
        head_ref = "(bare)"
    elif fields.get("branch"):
        head_ref = str(fields["branch"])
    else:
        head_ref = head or "(unborn)"

    is_stale = not os.path.exists(path)
    if is_main:
        name = os.path.basename(path.rstrip(os.sep)) or path
        has_git_link = True
    else:
        name = admin_names.get(os.path.realpath(path), os.path.basename(path.rstrip(os.sep)))
        has_git_link = os.path.isfile(os.path.join(path, ".git"))

    return Worktree(
        name=name,
        path=path,
        head_ref=head_ref,
        head_sha=head,
        is_valid=not is_stale and has_git_link and not fields.get("prunable", False),
        is_stale=is_stale,
        is_main=is_main,
        is_locked=bool(fields.get("locked", False)),
    )


def read_admin_names(common_dir: str) -> Dict[str, str]:
    """Map each linked worktree's real path to its administrative entry name.

    git keeps one directory per linked worktree under <common dir>/worktrees,
    whose `gitdir` file points at the worktree's `.git` link file.
    """
    names: Dict[str, str] = {}
    admin_root = os.path.join(common_dir, WORKTREES_ADMIN_DIR)
    try:
        entries = os.listdir(admin_root)
    except FileNotFoundError:
        return names

    for entry in entries:
        try:
            with open(os.path.join(admin_root, entry, "gitdir"), encoding="utf-8") as f:
                gitdir = f.read().strip()
        except OSError:
            continue
        names[os.path.realpath(os.path.dirname(gitdir))] = entry
    return names


class Repository:
    """One opened git repository.

    The handle is a capability, not a cache: every query asks git. It owns
    the gate that serializes mutations (worktree add/prune/remove, commits)
    against this repository; reads never take it.
    """

    def __init__(
        self,
        git_dir: str,
        common_dir: str,
        working_dir: Optional[str],
        binary: str,
        config: Config,
        pool: WorkerPool,
    ):
        self.git_dir = git_dir
        self.common_dir = common_dir
        self.working_dir = working_dir  # None for a bare repository
        self.binary = binary
        self.config = config
        self.pool = pool
        self._executor = ProcessExecutor(binary)
        self._gate = asyncio.Lock()

    def __repr__(self) -> str:
        return f"Repository({self.path!r}, binary={self.binary!r})"

    @property
    def path(self) -> str:
        """Directory git commands run in."""
        return self.working_dir or self.git_dir

    @property
    def is_linked_worktree(self) -> bool:
        return os.path.realpath(self.git_dir) != os.path.realpath(self.common_dir)

    @classmethod
    async def open(
        cls,
        git_dir: str,
        bundled_binary: Optional[str] = None,
        system_binary: Optional[str] = None,
        config: Optional[Config] = None,
        pool: Optional[WorkerPool] = None,
    ) -> "Repository":
        """Open a repository.

        Args:
            git_dir: A `.git` directory, a working tree, or a linked worktree
            bundled_binary: git shipped with the application, preferred when usable
            system_binary: Fallback git (name looked up on PATH, or a path)
            config: Settings; defaults to Config()
            pool: Worker pool; defaults to the process-wide pool

        Raises:
            OpenFailed: No usable binary, or not a git repository
        """
        config = config or Config()
        pool = pool or get_default_pool(config.workers)
        bundled = bundled_binary if bundled_binary is not None else config.bundled_git
        system = system_binary if system_binary is not None else config.system_git

        binary, git_dir, common_dir, working_dir = await pool.run(
            cls._inspect, str(git_dir), bundled, system
        )
        logger.debug(f"Opened repository {working_dir or git_dir} using {binary}")
        return cls(git_dir, common_dir, working_dir, binary, config, pool)

    @staticmethod
    def _inspect(path: str, bundled: Optional[str], system: Optional[str]):
        binary = resolve_binary(bundled, system)
        if binary is None:
            raise OpenFailed(path, f"no usable git binary (bundled={bundled!r}, system={system!r})")

        try:
            repo = git.Repo(path)
        except git.exc.NoSuchPathError as e:
            raise OpenFailed(path, "path does not exist") from e
        except git.exc.InvalidGitRepositoryError as e:
            raise OpenFailed(path, "not a git repository") from e

        try:
            git_dir = os.path.abspath(repo.git_dir)
            common_dir = os.path.abspath(repo.common_dir)
            working_dir = os.path.abspath(repo.working_tree_dir) if repo.working_tree_dir else None
        finally:
            repo.close()
        return binary, git_dir, common_dir, working_dir

    async def open_worktree(self, worktree: Worktree) -> "Repository":
        """Open a worktree as an independent repository with its own gate."""
        return await Repository.open(
            worktree.path,
            bundled_binary=self.binary,
            system_binary=self.config.system_git,
            config=self.config,
            pool=self.pool,
        )

    async def git(
        self,
        operation: str,
        *args: str,
        target: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        retry_busy: bool = True,
    ) -> CommandResult:
        """Run git in this repository, raising on failure.

        Lock contention is retried with exponential backoff when
        ``retry_busy`` is set; otherwise, or once retries run out, it raises
        ResourceBusy. Any other non-zero exit raises CommandFailed.
        """
        target = target or self.path
        delay = self.config.busy_backoff
        attempt = 0
        while True:
            result = await self.run(operation, *args, env=env)
            if result.ok:
                return result

            if is_lock_contention(result.stderr):
                if retry_busy and attempt < self.config.busy_retries:
                    attempt += 1
                    logger.debug(
                        f"{operation}: git lock held, retry {attempt}/{self.config.busy_retries} in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)
                    delay *= 2
                    continue
                logger.warning(f"{operation} on {target}: lock still held after {attempt} retries")
                raise ResourceBusy(operation, target, result.status, result.stderr, result.stdout)

            raise CommandFailed(operation, target, result.status, result.stderr, result.stdout)

    async def run(self, operation: str, *args: str, env: Optional[Mapping[str, str]] = None) -> CommandResult:
        """Run git in this repository and return the result whatever the exit status."""
        return await self.pool.run(
            self._executor.run,
            args,
            self.path,
            env,
            self.config.command_timeout,
            operation,
        )

    async def serialized(self, operation: str, body: Callable[[], Awaitable[T]]) -> T:
        """Run a mutation while holding this repository's gate."""
        return await self.pool.serialized(self._gate, operation, body)

    async def worktrees(self) -> List[Worktree]:
        """List every worktree git knows about, stale ones included, main first."""
        result = await self.git("list worktrees", "worktree", "list", "--porcelain")
        admin_names = await self.pool.run(read_admin_names, self.common_dir)
        worktrees = parse_worktree_list(result.stdout, admin_names)
        logger.debug(f"Found {len(worktrees)} worktrees")
        for wt in worktrees:
            logger.debug(f"  {wt}")
        return worktrees

    async def status(self, pathspecs: Iterable[str] = ()) -> frozenset:
        """Changed paths in the working directory; empty pathspecs means the whole tree."""
        args = ["status", "--porcelain=v1", "-z", "--untracked-files=all"]
        pathspecs = list(pathspecs)
        if pathspecs:
            args += ["--", *pathspecs]
        result = await self.git("status", *args)
        return parse_status(result.stdout)

    async def is_clean(self) -> bool:
        return not await self.status()

    async def head_sha(self) -> Optional[str]:
        """Commit HEAD points at, or None on an unborn branch."""
        result = await self.run("head sha", "rev-parse", "--verify", "--quiet", "HEAD^{commit}")
        if result.ok:
            return result.stdout.strip()

        # --quiet makes an unresolvable HEAD a silent exit 1
        if result.status == 1 and not result.stderr.strip():
            return None
        raise CommandFailed("head sha", self.path, result.status, result.stderr, result.stdout)
