"""Worktree lifecycle service for rig-workspace."""

import os
import shutil
import tempfile
from typing import List, Optional

from rig_workspace.constants import BRANCH_REF_PREFIX, WORKTREES_ADMIN_DIR
from rig_workspace.exceptions import (
    AlreadyExists,
    CommandFailed,
    CreateFailed,
    NotFound,
    PruneFailed,
    RemoveFailed,
    ResourceBusy,
)
from rig_workspace.logging_config import get_logger
from rig_workspace.models.worktree import Worktree
from rig_workspace.services.repository import Repository

logger = get_logger(__name__)


class WorktreeService:
    """Creates, finds, prunes and removes linked worktrees of one repository.

    Every mutation runs inside the repository's gate. Nothing is cached:
    each lookup lists worktrees from git.
    """

    def __init__(self, repository: Repository):
        """Initialize the worktree service.

        Args:
            repository: The repository (rig) the worktrees belong to
        """
        self.repository = repository

    def default_path(self, name: str) -> str:
        """Where a worktree named ``name`` lives when no path is given."""
        root = self.repository.config.worktree_root
        if root is None:
            base = self.repository.working_dir or self.repository.common_dir
            root = os.path.dirname(os.path.abspath(base))
        return os.path.join(os.path.abspath(root), name)

    async def branch_exists(self, name: str) -> bool:
        result = await self.repository.run(
            "find branch", "rev-parse", "--verify", "--quiet", f"{BRANCH_REF_PREFIX}{name}"
        )
        if result.ok:
            return True
        # --quiet makes a missing ref a silent exit 1
        if result.status == 1 and not result.stderr.strip():
            return False
        raise CommandFailed("find branch", name, result.status, result.stderr, result.stdout)

    async def list_worktrees(self) -> List[Worktree]:
        """Linked worktrees (the main working tree excluded), stale ones included."""
        return [wt for wt in await self.repository.worktrees() if not wt.is_main]

    async def find_worktree(self, name: str) -> Worktree:
        """Look up a linked worktree by name.

        Raises:
            NotFound: No linked worktree is registered under ``name``
        """
        for worktree in await self.list_worktrees():
            if worktree.name == name:
                return worktree
        raise NotFound(name)

    async def create_worktree(
        self,
        name: str,
        target_path: Optional[str] = None,
        from_commit: Optional[str] = None,
    ) -> Worktree:
        """Create a worktree on the branch named ``name``.

        git names the worktree's metadata entry after the last component of
        its path, so ``target_path`` must end in ``name``. Without
        ``from_commit`` an existing branch ``name`` (for instance one left by
        a removed worktree) is checked out as is; otherwise a new branch is
        created at ``from_commit`` or HEAD.

        Args:
            name: Worktree (and branch) name
            target_path: Directory to create; defaults to default_path(name)
            from_commit: Commit-ish to branch from; defaults to HEAD

        Raises:
            AlreadyExists: ``name`` is registered (even if stale) or the path exists
            CreateFailed: git refused to add the worktree, e.g. ``from_commit``
                was given but branch ``name`` already exists
            ResourceBusy: git's locks stayed held through every retry
        """
        if not name or os.sep in name or name in (".", ".."):
            raise ValueError(f"invalid worktree name: '{name}'")

        path = os.path.abspath(target_path) if target_path else self.default_path(name)
        if os.path.basename(path.rstrip(os.sep)) != name:
            raise ValueError(f"worktree path '{path}' must end in its name '{name}'")

        async def create() -> Worktree:
            registered = {wt.name: wt for wt in await self.list_worktrees()}
            if name in registered:
                state = "stale entry" if registered[name].is_stale else "registered"
                raise AlreadyExists(name, path, f"Worktree name already {state}")
            if await self.repository.pool.run(os.path.lexists, path):
                raise AlreadyExists(name, path, "Target path already exists")

            if from_commit is None and await self.branch_exists(name):
                # A branch left behind by an earlier worktree of this name is checked out again
                args = ["worktree", "add", path, name]
            else:
                args = ["worktree", "add", "-b", name, path]
                if from_commit:
                    args.append(from_commit)

            try:
                await self.repository.git("create worktree", *args, target=name, retry_busy=True)
            except ResourceBusy:
                raise
            except CommandFailed as e:
                logger.error(f"Failed to create worktree {name} at {path}: {e}")
                raise CreateFailed(name, path, e.message) from e

            logger.info(f"Created worktree {name} at {path}")
            return await self.find_worktree(name)

        return await self.repository.serialized("create_worktree", create)

    async def prune_worktree(self, name: str) -> None:
        """Remove a worktree's metadata entry.

        Succeeds whether or not the directory still exists. When it does, its
        `.git` link file is removed first; the directory's other contents are
        left alone. Only this entry is touched: other stale entries stay
        registered until they are pruned themselves.

        Raises:
            NotFound: No worktree is registered under ``name``
            PruneFailed: The entry is locked or could not be deleted
        """
        async def prune() -> None:
            await self._prune(await self.find_worktree(name))

        await self.repository.serialized("prune_worktree", prune)

    async def remove_worktree(self, name: str) -> None:
        """Delete a worktree's directory (if present), then prune its metadata.

        If the prune fails after the directory is gone, calling
        prune_worktree alone finishes the teardown.

        Raises:
            NotFound: No worktree is registered under ``name``
            RemoveFailed: The directory could not be deleted
            PruneFailed: The metadata entry could not be pruned
        """
        async def remove() -> None:
            worktree = await self.find_worktree(name)
            if worktree.is_locked:
                raise RemoveFailed(name, worktree.path, "Worktree is locked")

            pool = self.repository.pool
            if await pool.run(os.path.lexists, worktree.path):
                try:
                    await pool.run(shutil.rmtree, worktree.path)
                except OSError as e:
                    logger.error(f"Failed to delete worktree directory {worktree.path}: {e}")
                    raise RemoveFailed(name, worktree.path, str(e)) from e
                logger.info(f"Deleted worktree directory {worktree.path}")
            else:
                logger.debug(f"Worktree directory {worktree.path} already gone")

            await self._prune(worktree)

        await self.repository.serialized("remove_worktree", remove)

    async def prune_stale(self) -> List[str]:
        """Prune every stale (directory-less, unlocked) worktree entry.

        Returns:
            Names of the entries pruned
        """
        async def prune_all() -> List[str]:
            stale = [wt.name for wt in await self.list_worktrees() if wt.is_stale and not wt.is_locked]
            if not stale:
                return []
            try:
                await self.repository.git("prune worktrees", "worktree", "prune", retry_busy=False)
            except ResourceBusy:
                raise
            except CommandFailed as e:
                raise PruneFailed(", ".join(stale), message=e.message) from e
            logger.info(f"Pruned {len(stale)} stale worktree entries")
            return stale

        return await self.repository.serialized("prune_stale", prune_all)

    async def _prune(self, worktree: Worktree) -> None:
        name, path = worktree.name, worktree.path
        if worktree.is_locked:
            raise PruneFailed(name, path, "Worktree is locked")

        pool = self.repository.pool
        if await pool.run(os.path.isdir, path):
            logger.warning(f"Pruning {name} while {path} still exists; detaching it from git")
            try:
                await pool.run(_remove_git_link, path)
            except OSError as e:
                raise PruneFailed(name, path, f"cannot detach directory: {e}") from e

        admin_dir = os.path.join(self.repository.common_dir, WORKTREES_ADMIN_DIR, name)
        try:
            await pool.run(_remove_admin_entry, admin_dir)
        except OSError as e:
            logger.error(f"Failed to delete metadata entry {admin_dir}: {e}")
            raise PruneFailed(name, path, f"cannot delete metadata entry: {e}") from e

        remaining = {wt.name for wt in await self.list_worktrees()}
        if name in remaining:
            raise PruneFailed(name, path, "Entry still registered after prune")
        logger.info(f"Pruned worktree metadata for {name}")


def _remove_admin_entry(admin_dir: str) -> None:
    """Delete one worktree's directory under <common dir>/worktrees.

    The entry is first moved out of the worktrees directory so a concurrent
    `git worktree list` sees it either whole or not at all.
    """
    if not os.path.isdir(admin_dir):
        return
    common_dir = os.path.dirname(os.path.dirname(admin_dir))
    trash = tempfile.mkdtemp(prefix="pruned-worktree-", dir=common_dir)
    try:
        os.rename(admin_dir, os.path.join(trash, os.path.basename(admin_dir)))
    finally:
        shutil.rmtree(trash)


def _remove_git_link(path: str) -> None:
    """Delete the `.git` file tying a linked worktree directory to its repository."""
    try:
        os.remove(os.path.join(path, ".git"))
    except FileNotFoundError:
        pass
