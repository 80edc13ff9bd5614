"""Commit pipeline: stage everything and record one commit."""

import inspect
from typing import Dict, List, Optional

from rig_workspace.constants import CO_AUTHOR_TRAILER
from rig_workspace.exceptions import CommandFailed, CommitFailed, NothingToAmend, ResourceBusy
from rig_workspace.logging_config import get_logger
from rig_workspace.models.commit import CoAuthorResolver, CommitRequest, Identity
from rig_workspace.services.repository import Repository

logger = get_logger(__name__)


async def resolve_co_author(resolver: Optional[CoAuthorResolver]) -> Optional[Identity]:
    """Call a co-author resolver, awaiting it if it returned an awaitable."""
    if resolver is None:
        return None
    value = resolver()
    if inspect.isawaitable(value):
        value = await value
    if value is not None and not isinstance(value, Identity):
        raise TypeError(f"co-author resolver returned {type(value).__name__}, expected Identity or None")
    return value


def build_message(message: str, co_author: Optional[Identity]) -> str:
    """Commit message with a co-author trailer appended when there is one."""
    if co_author is None:
        return message
    return f"{message.rstrip()}\n\n{CO_AUTHOR_TRAILER}: {co_author}"


def build_commit_args(request: CommitRequest, co_author: Optional[Identity]) -> List[str]:
    args = ["commit", "--quiet", "-m", build_message(request.message, co_author)]
    if request.author is not None:
        args += ["--author", str(request.author)]
    if request.options.amend:
        args.append("--amend")
    if request.options.signoff:
        args.append("--signoff")
    return args


def build_commit_env(request: CommitRequest) -> Dict[str, str]:
    """Process environment for the commit.

    An explicit author also becomes the committer so a sign-off trailer names
    the same identity. Variables in ``request.env`` win over both.
    """
    env: Dict[str, str] = {}
    if request.author is not None:
        env.update({
            "GIT_AUTHOR_NAME": request.author.name,
            "GIT_AUTHOR_EMAIL": request.author.email,
            "GIT_COMMITTER_NAME": request.author.name,
            "GIT_COMMITTER_EMAIL": request.author.email,
        })
    env.update(request.env)
    return env


class CommitPipeline:
    """Stages and commits all pending changes in one repository or worktree."""

    def __init__(self, repository: Repository):
        self.repository = repository

    async def commit(self, request: CommitRequest) -> str:
        """Stage every change and commit it.

        Runs inside the repository's gate. On success HEAD has advanced to
        the returned sha. On failure HEAD is untouched and the index is reset
        to match it.

        Raises:
            NothingToAmend: ``amend`` was requested on an unborn branch
            CommitFailed: Staging, co-author resolution or the commit failed
        """
        return await self.repository.serialized("commit", lambda: self._commit(request))

    async def _commit(self, request: CommitRequest) -> str:
        repo = self.repository
        target = repo.path
        before = await repo.head_sha()
        if request.options.amend and before is None:
            raise NothingToAmend(target)

        try:
            await repo.git("stage changes", "add", "--all", target=target, retry_busy=False)
        except ResourceBusy:
            raise
        except CommandFailed as e:
            raise CommitFailed("stage", target, e.message) from e

        try:
            try:
                co_author = await resolve_co_author(request.co_author)
            except Exception as e:
                raise CommitFailed("resolve co-author", target, str(e)) from e

            try:
                await repo.git(
                    "commit",
                    *build_commit_args(request, co_author),
                    target=target,
                    env=build_commit_env(request),
                    retry_busy=False,
                )
            except ResourceBusy:
                raise
            except CommandFailed as e:
                raise CommitFailed("commit", target, e.message) from e
        except CommitFailed:
            await self._unstage(before)
            raise

        sha = await repo.head_sha()
        logger.info(f"Committed {sha} in {target}" + (" (amend)" if request.options.amend else ""))
        return sha

    async def _unstage(self, head: Optional[str]) -> None:
        """Reset the index to HEAD after a failed commit; the working tree is untouched."""
        repo = self.repository
        if head is None:
            args = ["rm", "-r", "--cached", "--quiet", "--ignore-unmatch", "--", "."]
        else:
            args = ["reset", "--quiet"]
        result = await repo.run("unstage", *args)
        if not result.ok:
            logger.error(f"Could not reset index in {repo.path} after failed commit: {result.stderr.strip()}")
