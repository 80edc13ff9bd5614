"""Working tree status models."""

from dataclasses import dataclass
from enum import Enum


class StatusKind(Enum):
    """Classification of a changed path."""
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    UNTRACKED = "untracked"
    CONFLICTED = "conflicted"


@dataclass(frozen=True)
class StatusEntry:
    """One changed path inside a working directory."""
    path: str
    kind: StatusKind

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.path}"
