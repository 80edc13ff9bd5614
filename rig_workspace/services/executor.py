"""Process execution for git commands."""

import os
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

import git
from git.exc import GitCommandNotFound

from rig_workspace.exceptions import LaunchFailed, Timeout
from rig_workspace.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of one finished git process."""

    args: tuple
    status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.status == 0


class ProcessExecutor:
    """Runs a git binary and hands back its output as data.

    A non-zero exit is not an error here; callers decide what it means.
    Only a process that cannot be launched (LaunchFailed) or that had to
    be killed (Timeout) raises.
    """

    def __init__(self, binary: str = "git"):
        """Initialize the executor.

        Args:
            binary: Path or name of the git executable to invoke
        """
        self.binary = binary

    def run(
        self,
        args: Sequence[str],
        cwd: str,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        operation: Optional[str] = None,
    ) -> CommandResult:
        """Run the binary to completion.

        Args:
            args: Arguments after the binary name
            cwd: Working directory for the process
            env: Variables layered over the current environment
            timeout: Seconds before the process is killed (None = unbounded)
            operation: Label used in error messages

        Returns:
            CommandResult with exit status, stdout and stderr
        """
        command = [self.binary, *args]
        label = operation or " ".join(command[:2])

        # GitPython quietly falls back to the current directory for an unusable cwd
        if not os.path.isdir(cwd):
            raise LaunchFailed(label, cwd, "working directory does not exist")

        # A fresh Git object per call keeps output buffers private to the caller
        runner = git.Git(cwd)
        started = time.monotonic()
        try:
            status, stdout, stderr = runner.execute(
                command,
                with_extended_output=True,
                with_exceptions=False,
                kill_after_timeout=timeout,
                env=dict(env) if env else None,
            )
        except GitCommandNotFound as e:
            logger.error(f"Could not launch {self.binary} in {cwd}: {e}")
            raise LaunchFailed(label, cwd, f"cannot launch '{self.binary}': {e}") from e
        except OSError as e:
            logger.error(f"Could not launch {self.binary} in {cwd}: {e}")
            raise LaunchFailed(label, cwd, f"cannot launch '{self.binary}': {e}") from e

        elapsed = time.monotonic() - started
        if timeout is not None and status != 0 and elapsed >= timeout:
            logger.warning(f"{label} killed after {elapsed:.1f}s in {cwd}")
            raise Timeout(label, cwd, timeout)

        logger.debug(f"{' '.join(command)} -> exit {status} ({elapsed:.3f}s)")
        return CommandResult(args=tuple(command), status=status, stdout=stdout, stderr=stderr)
