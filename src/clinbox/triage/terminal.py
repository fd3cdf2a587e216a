"""Rich-based terminal presentation surface with single-key input."""

from __future__ import annotations

import time

import typer
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from clinbox.gmail.models import Email
from clinbox.llm.analysis import Analysis, Priority
from clinbox.triage.stats import SessionStats
from clinbox.triage.surface import Action, PresentationSurface, ReplyChoice

ESC = "\x1b"
ENTER = ("\r", "\n")
PREVIEW_CHARS = 600

ACTION_KEYS = {
    "a": Action.ARCHIVE,
    "d": Action.DELETE,
    "t": Action.TASK,
    "r": Action.REPLY,
    "o": Action.OPEN,
    "v": Action.VIEW,
    "s": Action.SKIP,
    "q": Action.QUIT,
    ESC: Action.QUIT,
}
REPLY_KEYS = {
    "s": ReplyChoice.SEND,
    "e": ReplyChoice.EDIT,
    "c": ReplyChoice.CANCEL,
    ESC: ReplyChoice.CANCEL,
}

PRIORITY_STYLES = {
    Priority.URGENT: "bold red",
    Priority.ACTION_REQUIRED: "bold yellow",
    Priority.INFORMATIVE: "bold blue",
    Priority.LOW: "white",
    Priority.SPAM: "dim",
}

HELP_LINE = (
    "[bold]a[/]rchive  [bold]d[/]elete  [bold]t[/]ask  [bold]r[/]eply  "
    "[bold]o[/]pen  [bold]v[/]iew  [bold]s[/]kip  [bold]q[/]uit"
)


class TerminalSurface(PresentationSurface):
    """Draws each screen with rich and reads one key at a time.

    Args:
        console: Output console. Defaults to stdout.
        getchar: Single-key reader. Defaults to ``typer.getchar``.
        pause: Seconds an info message stays up; errors stay twice as long.
    """

    def __init__(self, console: Console | None = None, getchar=None, pause: float = 0.4):
        self.console = console or Console()
        self._getchar = getchar or typer.getchar
        self.pause = pause

    # ---- Drawing ----

    def show_email(
        self,
        email: Email,
        analysis: Analysis | None,
        index: int,
        total: int,
    ) -> None:
        self.console.clear()
        header = Table.grid(padding=(0, 1))
        header.add_column(style="bold cyan", justify="right")
        header.add_column()
        header.add_row("From", Text(email.sender))
        header.add_row("To", Text(email.recipient))
        header.add_row("Date", email.date.astimezone().strftime("%Y-%m-%d %H:%M"))
        header.add_row("Subject", Text(email.subject or "(no subject)", style="bold"))
        if email.attachments:
            names = ", ".join(a.filename for a in email.attachments)
            header.add_row("Attached", Text(names))

        parts = [header]
        if analysis is not None:
            parts.append(Text(""))
            parts.append(self._analysis_block(analysis))
        else:
            parts.append(Text("\nAnalyzing...", style="dim italic"))

        body = email.body_text()
        if len(body) > PREVIEW_CHARS:
            body = body[:PREVIEW_CHARS] + "..."
        parts.append(Text(""))
        parts.append(Text(body))

        title = f"Email {index}/{total}"
        if email.is_unread:
            title += " [bold green]●[/]"
        self.console.print(Panel(Group(*parts), title=title, title_align="left"))
        self.console.print(HELP_LINE)

    def _analysis_block(self, analysis: Analysis) -> Table:
        grid = Table.grid(padding=(0, 1))
        grid.add_column(style="bold magenta", justify="right")
        grid.add_column()
        priority = Text(analysis.priority.label, style=PRIORITY_STYLES[analysis.priority])
        priority.append(f"  {analysis.category.label}", style="cyan")
        priority.append(f"  ~{analysis.estimated_minutes} min", style="dim")
        grid.add_row("AI", priority)
        grid.add_row("Summary", Text(analysis.summary))
        if analysis.suggested_action:
            grid.add_row("Action", Text(analysis.suggested_action))
        return grid

    def show_message(self, text: str, error: bool = False) -> None:
        style = "bold red" if error else "bold green"
        self.console.print(Text(text, style=style))
        time.sleep(self.pause * 2 if error else self.pause)

    def show_full_email(self, email: Email) -> None:
        self.console.clear()
        self.console.print(Panel(
            Text(email.body_text()),
            title=Text(email.subject or "(no subject)"),
            subtitle=Text(email.sender),
        ))
        self.console.print("[dim]Press any key to return[/]")
        self._getchar()

    def confirm_task(self, title: str, description: str, email: Email) -> bool:
        grid = Table.grid(padding=(0, 1))
        grid.add_column(style="bold cyan", justify="right")
        grid.add_column()
        grid.add_row("Title", Text(title))
        if description:
            grid.add_row("Notes", Text(description))
        grid.add_row("Email", Text(email.subject))
        self.console.print(Panel(grid, title="Create task", border_style="yellow"))
        self.console.print("[bold]Enter[/] confirm  [bold]Esc[/] cancel")
        while True:
            key = self._getchar()
            if key in ENTER:
                return True
            if key == ESC:
                return False

    def review_reply(self, email: Email, draft: str) -> ReplyChoice:
        self.console.clear()
        self.console.print(Panel(
            Text(draft),
            title=Text(f"Reply to {email.sender_name()}"),
            subtitle=Text(email.subject),
            border_style="green",
        ))
        self.console.print("[bold]s[/]end  [bold]e[/]dit in browser  [bold]c[/]ancel")
        return self._read_key(REPLY_KEYS)

    def show_summary(self, stats: SessionStats) -> None:
        self.console.clear()
        table = Table(title="Session summary", show_header=False)
        table.add_column(style="bold")
        table.add_column(justify="right")
        table.add_row("Archived", str(stats.archived))
        table.add_row("Deleted", str(stats.deleted))
        table.add_row("Tasks created", str(stats.tasks_created))
        table.add_row("Replied", str(stats.replied))
        table.add_row("Skipped", str(stats.skipped))
        table.add_row("Total", str(stats.total), style="bold cyan")
        self.console.print(table)
        self.console.print("[dim]Press any key to exit[/]")
        self._getchar()

    # ---- Input ----

    def wait_for_action(self) -> Action:
        return self._read_key(ACTION_KEYS)

    def _read_key(self, keymap: dict):
        while True:
            key = self._getchar()
            if key in keymap:
                return keymap[key]
