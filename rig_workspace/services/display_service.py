"""Display and formatting service for workspace information"""
from typing import Iterable, Optional

from rich.console import Console
from rich.table import Table

from rig_workspace.constants import STATUS_COLUMNS, WORKTREE_COLUMNS
from rig_workspace.models.status import StatusEntry, StatusKind
from rig_workspace.models.worktree import Worktree

STATUS_STYLES = {
    StatusKind.ADDED: "green",
    StatusKind.MODIFIED: "yellow",
    StatusKind.DELETED: "red",
    StatusKind.UNTRACKED: "cyan",
    StatusKind.CONFLICTED: "bold red",
}


def worktree_state(worktree: Worktree) -> str:
    if worktree.is_stale:
        return "stale"
    if not worktree.is_valid:
        return "invalid"
    if worktree.is_locked:
        return "locked"
    return "main" if worktree.is_main else "active"


class DisplayService:
    """Renders rig state as rich tables."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def display_worktrees(self, worktrees: Iterable[Worktree]) -> None:
        """Display a table of worktrees."""
        table = Table()
        for _, label in WORKTREE_COLUMNS:
            table.add_column(label)

        rows = 0
        for wt in worktrees:
            state = worktree_state(wt)
            style = "red" if state in ("stale", "invalid") else ("cyan" if wt.is_main else None)
            table.add_row(
                wt.name,
                wt.head_ref,
                (wt.head_sha or "")[:10],
                state,
                wt.path,
                style=style,
            )
            rows += 1

        if rows:
            self.console.print(table)
        else:
            self.console.print("[dim]No worktrees[/dim]")

    def display_status(self, title: str, entries: Iterable[StatusEntry]) -> None:
        """Display changed paths of one working directory."""
        entries = sorted(entries, key=lambda e: e.path)
        if not entries:
            self.console.print(f"{title}: [green]clean[/green]")
            return

        table = Table(title=title)
        for _, label in STATUS_COLUMNS:
            table.add_column(label)
        for entry in entries:
            table.add_row(entry.kind.value, entry.path, style=STATUS_STYLES.get(entry.kind))
        self.console.print(table)

    def display_message(self, message: str, style: str = "green") -> None:
        self.console.print(f"[{style}]{message}[/{style}]")
