"""Command-line entry point for rig-workspace"""

import asyncio
import sys
from typing import Optional, Sequence

from rich.console import Console

from rig_workspace.cli.args import parse_args
from rig_workspace.config import Config
from rig_workspace.core import RigWorkspace
from rig_workspace.exceptions import NoWorkspace, RigWorkspaceError
from rig_workspace.logging_config import setup_logging
from rig_workspace.models.commit import CommitOptions, Identity
from rig_workspace.services.display_service import DisplayService
from rig_workspace.utils.threading import get_threading_info

console = Console()


async def run_command(args, config: Config, display: DisplayService) -> None:
    """Execute one parsed subcommand against the rig."""
    workspace = await RigWorkspace.open(args.repo, config=config)

    if args.command == "spawn":
        worktree = await workspace.spawn(args.agent, args.base)
        display.display_message(f"Spawned {worktree.name} at {worktree.path}")

    elif args.command == "sync":
        co_author = Identity.parse(args.co_author) if args.co_author else None
        sha = await workspace.sync(
            args.agent,
            args.message,
            CommitOptions(amend=args.amend, signoff=args.signoff),
            author=Identity.parse(args.author) if args.author else None,
            co_author=(lambda: co_author) if co_author else None,
        )
        display.display_message(f"Committed {sha}")

    elif args.command == "nuke":
        await workspace.nuke(args.agent)
        display.display_message(f"Removed workspace for {args.agent}")

    elif args.command == "list":
        display.display_worktrees(await workspace.repository.worktrees())

    elif args.command == "status":
        repository = workspace.repository
        title = repository.path
        if args.agent:
            worktree = await workspace.workspace_for(args.agent)
            if worktree is None or worktree.is_stale:
                raise NoWorkspace(args.agent, "show status")
            repository = await repository.open_worktree(worktree)
            title = f"{args.agent} ({worktree.path})"
        display.display_status(title, await repository.status(args.paths))

    elif args.command == "prune":
        pruned = await workspace.worktrees.prune_stale()
        if pruned:
            display.display_message(f"Pruned {', '.join(pruned)}")
        else:
            display.display_message("Nothing to prune", style="dim")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the application."""
    parsed_args = None
    try:
        parsed_args = parse_args(argv)

        setup_logging(verbose=parsed_args.verbose, debug=parsed_args.debug)

        config = Config(
            command_timeout=parsed_args.timeout,
            workers=parsed_args.workers,
            worktree_root=parsed_args.worktree_root,
            worktree_prefix=parsed_args.prefix,
            bundled_git=parsed_args.bundled_git,
            verbose=parsed_args.verbose,
            debug=parsed_args.debug,
        )

        if parsed_args.debug:
            console.print("[yellow]Debug mode enabled[/yellow]")
            threading_info = get_threading_info()
            console.print("[yellow]Threading Information:[/yellow]")
            console.print(f"  Python version: {threading_info['python_version']}")
            console.print(f"  Threading mode: {threading_info['mode']}")
            console.print(f"  Optimal workers: {threading_info['optimal_workers']}")
            console.print("[yellow]Configuration:[/yellow]")
            for key, value in config.to_dict().items():
                console.print(f"  {key}: {value}")

        asyncio.run(run_command(parsed_args, config, DisplayService(console)))
        return 0
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return 1
    except (RigWorkspaceError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        if parsed_args is not None and parsed_args.debug:
            console.print_exception()
        return 1


if __name__ == "__main__":
    sys.exit(main())
