"""Custom exceptions for rig-workspace"""

from typing import Optional


class RigWorkspaceError(Exception):
    """Base exception for all rig-workspace errors."""
    pass


class OpenFailed(RigWorkspaceError):
    """Exception raised when a repository cannot be opened."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        self.message = message

        error_msg = f"Cannot open repository at '{path}'"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class GitOperationError(RigWorkspaceError):
    """Exception raised for errors in Git operations."""

    def __init__(self, operation: str, target: Optional[str] = None, message: Optional[str] = None):
        self.operation = operation
        self.target = target
        self.message = message

        error_msg = f"Git operation '{operation}' failed"
        if target:
            error_msg += f" for '{target}'"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class ProcessError(GitOperationError):
    """Process-level failure: the command never produced an exit status we can trust."""
    pass


class LaunchFailed(ProcessError):
    """Exception raised when the git process cannot be started at all."""
    pass


class Timeout(ProcessError):
    """Exception raised when a git process exceeds its time budget and is killed.

    The repository is left in whatever state git left it; callers must
    re-query before retrying a timed-out mutation.
    """

    def __init__(self, operation: str, target: Optional[str] = None, timeout: Optional[float] = None):
        self.timeout = timeout
        message = f"did not complete within {timeout:g}s" if timeout is not None else "timed out"
        super().__init__(operation, target, message)


class CommandFailed(GitOperationError):
    """Exception raised when git exits with a non-zero status."""

    def __init__(
        self,
        operation: str,
        target: Optional[str] = None,
        status: Optional[int] = None,
        stderr: str = "",
        stdout: str = "",
    ):
        self.status = status
        self.stderr = (stderr or "").strip()
        self.stdout = (stdout or "").strip()

        # git reports some failures ("nothing to commit") on stdout only
        detail = self.stderr or self.stdout
        if detail:
            message = f"exit {status}: {detail}"
        else:
            message = f"exit code {status}"

        super().__init__(operation, target, message)


class ResourceBusy(CommandFailed):
    """Exception raised when a git lock stayed held through every retry."""
    pass


class WorktreeError(GitOperationError):
    """Base exception for worktree identity and lifecycle errors."""

    def __init__(
        self,
        operation: str,
        name: str,
        path: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.name = name
        self.path = path
        target = f"{name} @ {path}" if path else name
        super().__init__(operation, target, message)


class AlreadyExists(WorktreeError):
    """Exception raised when a worktree name or target path is already taken."""

    def __init__(self, name: str, path: Optional[str] = None, message: Optional[str] = None):
        super().__init__("create_worktree", name, path, message or "Worktree already exists")


class NotFound(WorktreeError):
    """Exception raised when no worktree is registered under a name."""

    def __init__(self, name: str):
        super().__init__("find_worktree", name, message="Worktree not found")


class CreateFailed(WorktreeError):
    """Exception raised when git refuses to add a worktree."""

    def __init__(self, name: str, path: Optional[str] = None, message: Optional[str] = None):
        super().__init__("create_worktree", name, path, message)


class PruneFailed(WorktreeError):
    """Exception raised when a worktree's metadata entry could not be pruned."""

    def __init__(self, name: str, path: Optional[str] = None, message: Optional[str] = None):
        super().__init__("prune_worktree", name, path, message)


class RemoveFailed(WorktreeError):
    """Exception raised when a worktree's directory could not be deleted."""

    def __init__(self, name: str, path: Optional[str] = None, message: Optional[str] = None):
        super().__init__("remove_worktree", name, path, message)


class CommitFailed(GitOperationError):
    """Exception raised when a step of the commit pipeline fails."""

    def __init__(self, step: str, target: Optional[str] = None, message: Optional[str] = None):
        self.step = step
        super().__init__(f"commit ({step})", target, message)


class NothingToAmend(CommitFailed):
    """Exception raised when amending on a branch with no commits yet."""

    def __init__(self, target: Optional[str] = None):
        super().__init__("amend", target, "HEAD has no commit to amend")


class NoWorkspace(RigWorkspaceError):
    """Exception raised when an agent has no live workspace."""

    def __init__(self, agent_id: str, operation: str):
        self.agent_id = agent_id
        self.operation = operation
        super().__init__(f"Cannot {operation}: agent '{agent_id}' has no workspace")


class SourceUnavailable(RigWorkspaceError):
    """Exception raised when a workspace data source cannot be read."""

    def __init__(self, source: str, message: Optional[str] = None):
        self.source = source
        self.message = message

        error_msg = f"Workspace source '{source}' unavailable"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)
