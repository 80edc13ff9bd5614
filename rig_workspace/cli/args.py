"""Command-line argument parsing for rig-workspace."""

import argparse
from typing import Optional, Sequence

from rig_workspace.__version__ import __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rig-workspace",
        description="Manage per-agent git worktrees carved out of a shared repository (rig)",
    )
    parser.add_argument("--version", action="version", version=f"rig-workspace {__version__}")
    parser.add_argument("--repo", default=".", help="Path to the rig repository (default: current directory)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument(
        "--debug", action="store_true", help="Show debug information and write a debug log file"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        metavar="SECONDS",
        help="Kill any single git command running longer than this (default: 60)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        metavar="N",
        help="Worker threads for git commands (default: auto-detect based on CPU and threading mode)",
    )
    parser.add_argument("--worktree-root", metavar="DIR", help="Directory agent worktrees are created in")
    parser.add_argument("--prefix", default="", help="Prefix added to agent ids to form worktree names")
    parser.add_argument("--git", dest="bundled_git", metavar="PATH", help="git binary to prefer over the system one")

    subparsers = parser.add_subparsers(dest="command", required=True)

    spawn = subparsers.add_parser("spawn", help="Create an agent's worktree")
    spawn.add_argument("agent", help="Agent id")
    spawn.add_argument("--base", metavar="REF", help="Commit-ish to branch from (default: HEAD)")

    sync = subparsers.add_parser("sync", help="Commit all changes in an agent's worktree")
    sync.add_argument("agent", help="Agent id")
    sync.add_argument("-m", "--message", required=True, help="Commit message")
    sync.add_argument("--amend", action="store_true", help="Rewrite the worktree's HEAD commit")
    sync.add_argument("--signoff", action="store_true", help="Add a Signed-off-by trailer")
    sync.add_argument("--author", metavar='"NAME <EMAIL>"', help="Commit author")
    sync.add_argument("--co-author", metavar='"NAME <EMAIL>"', help="Add a Co-authored-by trailer")

    nuke = subparsers.add_parser("nuke", help="Delete an agent's worktree and its metadata")
    nuke.add_argument("agent", help="Agent id")

    subparsers.add_parser("list", help="List all worktrees of the rig")

    status = subparsers.add_parser("status", help="Show changed files in the rig or an agent's worktree")
    status.add_argument("agent", nargs="?", help="Agent id (default: the rig itself)")
    status.add_argument("paths", nargs="*", help="Limit to these pathspecs")

    subparsers.add_parser("prune", help="Prune metadata of worktrees whose directories are gone")

    return parser


def parse_args(argv: Optional[Sequence[str]] = None):
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)
