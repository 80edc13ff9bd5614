"""Workspace data sources consumed by status views.

A view only needs two things from a source: whether it can answer right
now, and a snapshot of the rig's agent workspaces. ``DirectSource`` reads
the rig through a RigWorkspace; ``MockSource`` serves canned snapshots for
demos and tests.
"""

import asyncio
import os
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple, runtime_checkable

from rig_workspace.core import RigWorkspace
from rig_workspace.exceptions import RigWorkspaceError, SourceUnavailable
from rig_workspace.logging_config import get_logger
from rig_workspace.models.worktree import Worktree

logger = get_logger(__name__)


@dataclass(frozen=True)
class AgentWorkspace:
    """One agent's workspace as seen by a view."""

    agent_id: str
    worktree: Worktree
    is_clean: Optional[bool]  # None when the directory is gone


@dataclass(frozen=True)
class WorkspaceSnapshot:
    """Everything a view renders about one rig."""

    rig_path: str
    head_sha: Optional[str]
    agents: Tuple[AgentWorkspace, ...] = ()

    def agent(self, agent_id: str) -> Optional[AgentWorkspace]:
        for entry in self.agents:
            if entry.agent_id == agent_id:
                return entry
        return None


@runtime_checkable
class WorkspaceSource(Protocol):
    """Capability a view uses to read rig state."""

    async def fetch(self) -> WorkspaceSnapshot:
        ...

    def is_available(self) -> bool:
        ...


class DirectSource:
    """Reads snapshots straight from the rig's git metadata."""

    def __init__(self, workspace: RigWorkspace):
        self.workspace = workspace

    def is_available(self) -> bool:
        return os.path.isdir(self.workspace.repository.common_dir)

    async def fetch(self) -> WorkspaceSnapshot:
        repository = self.workspace.repository
        try:
            head_sha = await repository.head_sha()
            agents = await self.workspace.agents()
            ordered = sorted(agents.items())
            clean_flags = await asyncio.gather(*(self._is_clean(wt) for _, wt in ordered))
        except RigWorkspaceError as e:
            raise SourceUnavailable("direct", str(e)) from e

        return WorkspaceSnapshot(
            rig_path=repository.path,
            head_sha=head_sha,
            agents=tuple(
                AgentWorkspace(agent_id, worktree, clean)
                for (agent_id, worktree), clean in zip(ordered, clean_flags)
            ),
        )

    async def _is_clean(self, worktree: Worktree) -> Optional[bool]:
        if worktree.is_stale:
            return None
        agent_repo = await self.workspace.repository.open_worktree(worktree)
        return await agent_repo.is_clean()


@dataclass(frozen=True)
class _Message:
    kind: str
    payload: Any
    reply: asyncio.Future


class MockSource:
    """Canned snapshots served by a single owner task.

    State changes and reads are messages to that task, so concurrent
    callers never touch the snapshot directly. ``is_available`` reads the
    last state the task published.
    """

    def __init__(self, snapshot: Optional[WorkspaceSnapshot] = None, available: bool = True):
        self._initial = (snapshot or WorkspaceSnapshot(rig_path="", head_sha=None), available)
        self._published_available = available
        self._inbox: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "MockSource":
        self._ensure_started()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def is_available(self) -> bool:
        return self._published_available

    async def fetch(self) -> WorkspaceSnapshot:
        return await self._ask("fetch")

    async def set_snapshot(self, snapshot: WorkspaceSnapshot) -> None:
        await self._ask("set_snapshot", snapshot)

    async def set_available(self, available: bool) -> None:
        await self._ask("set_available", available)

    async def fetch_count(self) -> int:
        """How many fetches the source has answered successfully."""
        return await self._ask("fetch_count")

    async def close(self) -> None:
        if self._task is None:
            return
        await self._ask("stop")
        await self._task
        self._task = None
        self._inbox = None

    def _ensure_started(self) -> None:
        if self._task is None:
            self._inbox = asyncio.Queue()
            self._task = asyncio.create_task(self._run())

    async def _ask(self, kind: str, payload: Any = None) -> Any:
        self._ensure_started()
        reply = asyncio.get_running_loop().create_future()
        await self._inbox.put(_Message(kind, payload, reply))
        return await reply

    async def _run(self) -> None:
        snapshot, available = self._initial
        fetches = 0
        while True:
            message = await self._inbox.get()
            if message.reply.cancelled():
                continue

            if message.kind == "fetch":
                if available:
                    fetches += 1
                    message.reply.set_result(snapshot)
                else:
                    message.reply.set_exception(SourceUnavailable("mock", "source marked unavailable"))
            elif message.kind == "set_snapshot":
                snapshot = message.payload
                message.reply.set_result(None)
            elif message.kind == "set_available":
                available = bool(message.payload)
                self._published_available = available
                message.reply.set_result(None)
            elif message.kind == "fetch_count":
                message.reply.set_result(fetches)
            elif message.kind == "stop":
                self._initial = (snapshot, available)
                message.reply.set_result(None)
                return
            else:
                message.reply.set_exception(ValueError(f"unknown message '{message.kind}'"))
