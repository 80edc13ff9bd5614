"""Worktree data models."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Worktree:
    """Snapshot of one git worktree as git's metadata described it when listed."""

    name: str  # git's administrative entry name
    path: str
    head_ref: str  # Branch name, or the commit sha when detached
    head_sha: Optional[str]  # None on an unborn branch
    is_valid: bool  # Metadata and filesystem agree
    is_stale: bool = False  # Directory missing
    is_main: bool = False  # Is this the main working tree?
    is_locked: bool = False

    def __str__(self) -> str:
        """String representation of worktree."""
        if self.is_stale:
            status = "stale"
        elif not self.is_valid:
            status = "invalid"
        else:
            status = "active"
        main_marker = " (main)" if self.is_main else ""
        return f"{self.name}: {self.head_ref} @ {self.path}{main_marker} [{status}]"
