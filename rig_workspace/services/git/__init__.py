"""Git-backed services for rig-workspace."""

from .worktrees import WorktreeService
from .commits import CommitPipeline

__all__ = [
    "WorktreeService",
    "CommitPipeline",
]
