"""Shared constants for rig-workspace."""

# Substrings git prints when another process holds one of its lock files.
# git runs with LC_ALL=C under GitPython, so the English text is stable.
LOCK_CONTENTION_MARKERS = (
    "index.lock",
    ".lock': File exists",
    "Unable to create",
    "could not lock",
    "cannot lock ref",
    "Another git process seems to be running",
)

# `git worktree list --porcelain` keys
PORCELAIN_WORKTREE = "worktree"
PORCELAIN_HEAD = "HEAD"
PORCELAIN_BRANCH = "branch"
PORCELAIN_DETACHED = "detached"
PORCELAIN_BARE = "bare"
PORCELAIN_LOCKED = "locked"
PORCELAIN_PRUNABLE = "prunable"

BRANCH_REF_PREFIX = "refs/heads/"

# HEAD value git reports for a worktree on an unborn branch
NULL_SHA = "0" * 40

# Two-letter `git status --porcelain` codes that mean an unmerged path
CONFLICT_CODES = frozenset({"DD", "AU", "UD", "UA", "DU", "AA", "UU"})

# Directory under the common git dir holding linked worktree metadata
WORKTREES_ADMIN_DIR = "worktrees"

CO_AUTHOR_TRAILER = "Co-authored-by"

# Column definitions for CLI tables: (key, label)
WORKTREE_COLUMNS = [
    ("name", "Worktree"),
    ("head_ref", "HEAD"),
    ("sha", "Commit"),
    ("state", "State"),
    ("path", "Path"),
]

STATUS_COLUMNS = [
    ("kind", "Change"),
    ("path", "Path"),
]
