"""Plain data returned by rig-workspace queries."""

from .worktree import Worktree
from .status import StatusEntry, StatusKind
from .commit import CommitOptions, CommitRequest, Identity

__all__ = [
    "Worktree",
    "StatusEntry",
    "StatusKind",
    "CommitOptions",
    "CommitRequest",
    "Identity",
]
