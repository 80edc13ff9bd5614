"""Configuration handling for rig-workspace"""

import re
from dataclasses import dataclass
from typing import Optional

_SAFE_PREFIX = re.compile(r"^[A-Za-z0-9._-]*$")


@dataclass
class Config:
    """Configuration for rig-workspace with validation."""

    # Process execution
    command_timeout: float = 60.0  # Seconds before a git process is killed
    busy_retries: int = 5  # Retries when a git lock file is held
    busy_backoff: float = 0.05  # First retry delay in seconds, doubled each attempt
    workers: Optional[int] = None  # Worker pool size (None = auto-detect)

    # Workspace layout
    worktree_root: Optional[str] = None  # None = next to the rig's working tree
    worktree_prefix: str = ""  # Prepended to agent ids to form worktree names

    # Git binaries
    bundled_git: Optional[str] = None
    system_git: str = "git"

    # Output
    verbose: bool = False
    debug: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_command_timeout()
        self._validate_busy_retries()
        self._validate_busy_backoff()
        self._validate_workers()
        self._validate_worktree_prefix()
        self._validate_system_git()

    def _validate_command_timeout(self):
        """Validate command_timeout is positive."""
        if self.command_timeout <= 0:
            raise ValueError(f"command_timeout must be positive, got {self.command_timeout}")

    def _validate_busy_retries(self):
        """Validate busy_retries is not negative."""
        if self.busy_retries < 0:
            raise ValueError(f"busy_retries cannot be negative, got {self.busy_retries}")

    def _validate_busy_backoff(self):
        """Validate busy_backoff is positive."""
        if self.busy_backoff <= 0:
            raise ValueError(f"busy_backoff must be positive, got {self.busy_backoff}")

    def _validate_workers(self):
        """Validate workers is positive when given."""
        if self.workers is not None and self.workers <= 0:
            raise ValueError(f"workers must be positive, got {self.workers}")

    def _validate_worktree_prefix(self):
        """Validate worktree_prefix only holds characters safe in a directory name."""
        if not _SAFE_PREFIX.match(self.worktree_prefix):
            raise ValueError(
                f"worktree_prefix may only contain letters, digits, '.', '_' and '-', "
                f"got '{self.worktree_prefix}'"
            )

    def _validate_system_git(self):
        """Validate system_git is not empty."""
        if not self.system_git or not self.system_git.strip():
            raise ValueError("system_git cannot be empty")
        self.system_git = self.system_git.strip()

    def to_dict(self) -> dict:
        """Convert config to dictionary."""
        return {
            "command_timeout": self.command_timeout,
            "busy_retries": self.busy_retries,
            "busy_backoff": self.busy_backoff,
            "workers": self.workers,
            "worktree_root": self.worktree_root,
            "worktree_prefix": self.worktree_prefix,
            "bundled_git": self.bundled_git,
            "system_git": self.system_git,
            "verbose": self.verbose,
            "debug": self.debug,
        }

    def get(self, key: str, default=None):
        """Get config value by key."""
        return getattr(self, key, default)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "Config":
        """Create Config from dictionary, ignoring unknown keys."""
        known_fields = {
            "command_timeout",
            "busy_retries",
            "busy_backoff",
            "workers",
            "worktree_root",
            "worktree_prefix",
            "bundled_git",
            "system_git",
            "verbose",
            "debug",
        }

        filtered = {k: v for k, v in config_dict.items() if k in known_fields}
        return cls(**filtered)
