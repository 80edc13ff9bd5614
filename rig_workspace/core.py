"""Core functionality for rig-workspace"""

import asyncio
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Mapping, Optional

from rig_workspace.config import Config
from rig_workspace.exceptions import NoWorkspace, NotFound
from rig_workspace.logging_config import get_logger
from rig_workspace.models.commit import CoAuthorResolver, CommitOptions, CommitRequest, Identity
from rig_workspace.models.worktree import Worktree
from rig_workspace.services.git.commits import CommitPipeline
from rig_workspace.services.git.worktrees import WorktreeService
from rig_workspace.services.repository import Repository
from rig_workspace.services.worker_pool import WorkerPool

logger = get_logger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class RigWorkspace:
    """Agent-facing entry point: spawn, sync and nuke workspaces by agent id.

    Each agent gets one worktree of the rig, named from its id. Calls for
    the same agent run one at a time; calls for different agents only
    contend on the rig's own mutation gate.
    """

    def __init__(self, repository: Repository, config: Optional[Config] = None):
        """Initialize the workspace facade.

        Args:
            repository: The opened rig
            config: Configuration; defaults to the repository's
        """
        self.repository = repository
        self.config = config or repository.config
        self.worktrees = WorktreeService(repository)
        self._agent_locks: Dict[str, asyncio.Lock] = {}
        self._agent_users: Dict[str, int] = {}

    @classmethod
    async def open(
        cls,
        rig_path: str,
        config: Optional[Config] = None,
        pool: Optional[WorkerPool] = None,
    ) -> "RigWorkspace":
        """Open the rig at ``rig_path`` and wrap it."""
        repository = await Repository.open(rig_path, config=config, pool=pool)
        return cls(repository, config)

    def workspace_name(self, agent_id: str) -> str:
        """Worktree name for an agent: the configured prefix plus the sanitized id."""
        if not agent_id or not agent_id.strip():
            raise ValueError("agent_id cannot be empty")
        sanitized = _UNSAFE_NAME_CHARS.sub("-", agent_id.strip())
        if sanitized in (".", ".."):
            raise ValueError(f"invalid agent_id: '{agent_id}'")
        return f"{self.config.worktree_prefix}{sanitized}"

    @asynccontextmanager
    async def _agent_lock(self, name: str) -> AsyncIterator[None]:
        """Hold the per-agent lock; it is dropped once no call waits on it."""
        lock = self._agent_locks.setdefault(name, asyncio.Lock())
        self._agent_users[name] = self._agent_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._agent_users[name] -= 1
            if not self._agent_users[name]:
                del self._agent_users[name]
                del self._agent_locks[name]

    async def workspace_for(self, agent_id: str) -> Optional[Worktree]:
        """The agent's worktree (possibly stale), or None."""
        try:
            return await self.worktrees.find_worktree(self.workspace_name(agent_id))
        except NotFound:
            return None

    async def agents(self) -> Dict[str, Worktree]:
        """Map agent id to worktree for every linked worktree carrying the prefix."""
        prefix = self.config.worktree_prefix
        return {
            wt.name[len(prefix):]: wt
            for wt in await self.worktrees.list_worktrees()
            if wt.name.startswith(prefix) and len(wt.name) > len(prefix)
        }

    async def spawn(self, agent_id: str, base_ref: Optional[str] = None) -> Worktree:
        """Create the agent's worktree, branching from ``base_ref`` (HEAD if None).

        Without ``base_ref``, a branch left by an earlier nuke is picked up again.

        Raises:
            AlreadyExists: The agent already has a workspace
            CreateFailed: ``base_ref`` was given but the agent's branch already exists
        """
        name = self.workspace_name(agent_id)
        async with self._agent_lock(name):
            worktree = await self.worktrees.create_worktree(
                name, self.worktrees.default_path(name), base_ref
            )
        logger.info(f"Spawned workspace for {agent_id} at {worktree.path}")
        return worktree

    async def sync(
        self,
        agent_id: str,
        message: str,
        options: Optional[CommitOptions] = None,
        author: Optional[Identity] = None,
        env: Optional[Mapping[str, str]] = None,
        co_author: Optional[CoAuthorResolver] = None,
    ) -> str:
        """Commit everything the agent changed in its worktree.

        Returns:
            The new commit sha

        Raises:
            NoWorkspace: The agent has no live worktree
            CommitFailed: The commit pipeline failed
        """
        request = CommitRequest(
            message=message,
            author=author,
            options=options or CommitOptions(),
            env=dict(env or {}),
            co_author=co_author,
        )
        name = self.workspace_name(agent_id)
        async with self._agent_lock(name):
            worktree = await self.workspace_for(agent_id)
            if worktree is None or worktree.is_stale:
                raise NoWorkspace(agent_id, "sync")

            agent_repo = await self.repository.open_worktree(worktree)
            sha = await CommitPipeline(agent_repo).commit(request)
        logger.info(f"Synced workspace for {agent_id}: {sha}")
        return sha

    async def nuke(self, agent_id: str) -> None:
        """Delete the agent's worktree directory and prune its metadata.

        A workspace whose directory was already deleted is pruned.

        Raises:
            NoWorkspace: The agent has no workspace
        """
        name = self.workspace_name(agent_id)
        async with self._agent_lock(name):
            worktree = await self.workspace_for(agent_id)
            if worktree is None:
                raise NoWorkspace(agent_id, "nuke")
            await self.worktrees.remove_worktree(worktree.name)
        logger.info(f"Nuked workspace for {agent_id}")
