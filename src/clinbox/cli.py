"""Command-line entry point."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import timezone
from typing import Optional

import typer
from dateutil import parser as date_parser
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from clinbox.config import Account, AppConfig, AppContext, mask_secret
from clinbox.exceptions import ClinboxError, ValidationError
from clinbox.gmail.auth import TokenManager, TokenStore
from clinbox.gmail.client import MailGateway
from clinbox.gmail.query import BatchFilter
from clinbox.llm.analysis import AnalysisGateway
from clinbox.llm.client import build_backend
from clinbox.tasks.store import TaskStore
from clinbox.triage.session import TriageSession
from clinbox.triage.terminal import TerminalSurface

logger = logging.getLogger(__name__)
console = Console()

app = typer.Typer(
    help="A terminal-first email client with AI-powered triage.",
    add_completion=False,
)
accounts_app = typer.Typer(help="Manage authorized Gmail accounts.", add_completion=False)
app.add_typer(accounts_app, name="accounts")
tasks_app = typer.Typer(help="Show and manage tasks created during triage.", add_completion=False)
app.add_typer(tasks_app, name="tasks")


@contextmanager
def _handle_errors():
    """Turn clinbox errors into a red message and exit code 1."""
    try:
        yield
    except ClinboxError as e:
        logger.error(f"{type(e).__name__}: {e}")
        console.print(f"[bold red]Error:[/] {escape(str(e))}")
        raise typer.Exit(code=1)


def _setup_logging(context: AppContext, verbose: bool) -> None:
    context.ensure_dir()
    logging.basicConfig(
        filename=str(context.log_path),
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _open_auth_url(url: str) -> None:
    console.print("\nOpening browser for Gmail authorization...")
    console.print(f"If it doesn't open, visit: {url}\n", soft_wrap=True)
    typer.launch(url)


def _context(ctx: typer.Context) -> AppContext:
    return ctx.find_root().obj


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    max_emails: int = typer.Option(20, "--max-emails", "-n", min=1, max=500, help="Maximum number of emails to fetch"),
    include_all: bool = typer.Option(False, "--all", "-a", help="Include all inbox emails (not just unread)"),
    account_id: Optional[str] = typer.Option(None, "--account", help="Account to triage (default account if omitted)"),
    verbose: bool = typer.Option(False, "--verbose", help="Debug logging to the log file"),
):
    """Triage your inbox one email at a time."""
    with _handle_errors():
        context = AppContext.from_env()
        _setup_logging(context, verbose)
    ctx.obj = context

    if ctx.invoked_subcommand is None:
        with _handle_errors():
            _run_interactive(context, max_emails, include_all, account_id)


def _run_interactive(
    context: AppContext,
    max_emails: int,
    include_all: bool,
    account_id: str | None,
) -> None:
    config = AppConfig.load(context)
    if not config.is_valid():
        console.print("[bold red]Configuration incomplete.[/] Run 'clinbox status' for details.")
        raise typer.Exit(code=1)

    account = config.resolve_account(account_id)
    console.print(f"Connecting to Gmail ({account.email or account.id})...")
    token = TokenManager(context, open_url=_open_auth_url).get_valid_token(account)

    mail = MailGateway(token)
    analyzer = AnalysisGateway(
        build_backend(config.ai), config.ai.model_analysis, config.ai.model_reply,
    )
    tasks = TaskStore.load(context.tasks_path(config))
    session = TriageSession(
        mail, analyzer, tasks, TerminalSurface(console), open_url=typer.launch,
    )

    batch_filter = BatchFilter.INBOX if include_all else BatchFilter.UNREAD
    if include_all:
        console.print(f"Fetching latest {max_emails} emails...")
    else:
        console.print("Fetching unread emails...")
    stats = session.run(batch_filter, max_emails)
    logger.info(f"Session finished: {stats}")


# ---- Accounts ----


@accounts_app.command("add")
def accounts_add(
    ctx: typer.Context,
    account_id: str = typer.Argument(..., help="Short name for the account, e.g. 'work'"),
    client_id: str = typer.Option(..., "--client-id", help="OAuth client id"),
    client_secret: str = typer.Option(..., "--client-secret", help="OAuth client secret"),
):
    """Authorize a Gmail account and remember it."""
    context = _context(ctx)
    with _handle_errors():
        config = AppConfig.load(context)
        account = Account(id=account_id, client_id=client_id, client_secret=client_secret)
        config.add_account(account)

        token = TokenManager(context, open_url=_open_auth_url).get_valid_token(account)
        account.email = MailGateway(token).get_account_email() or None
        config.save(context)
    console.print(f"[green]Added account[/] {account.id} ({account.email or 'unknown address'})")


@accounts_app.command("list")
def accounts_list(ctx: typer.Context):
    """List configured accounts."""
    context = _context(ctx)
    with _handle_errors():
        config = AppConfig.load(context)
        store = TokenStore(context.tokens_dir)
        if not config.accounts:
            console.print("No accounts configured.")
            return
        table = Table("", "Account", "Email", "Token")
        for account in config.accounts:
            marker = "*" if account.id == config.default_account else ""
            has_token = "yes" if store.exists(account.id) else "no"
            table.add_row(marker, account.id, account.email or "-", has_token)
        console.print(table)


@accounts_app.command("remove")
def accounts_remove(ctx: typer.Context, account_id: str):
    """Forget an account and delete its token."""
    context = _context(ctx)
    with _handle_errors():
        config = AppConfig.load(context)
        config.remove_account(account_id)
        TokenStore(context.tokens_dir).delete(account_id)
        config.save(context)
    console.print(f"Removed account {account_id}")


@accounts_app.command("default")
def accounts_default(ctx: typer.Context, account_id: str):
    """Make an account the default for triage."""
    context = _context(ctx)
    with _handle_errors():
        config = AppConfig.load(context)
        config.set_default(account_id)
        config.save(context)
    console.print(f"Default account is now {account_id}")


# ---- Configuration ----


@app.command("config")
def configure(ctx: typer.Context, key: str, value: str):
    """Set a configuration value (ai.provider, ai.api_key, ai.model, ai.model_reply, tasks.file_path)."""
    context = _context(ctx)
    with _handle_errors():
        config = AppConfig.load(context)
        config.set_value(key, value)
        config.save(context)
    console.print(f"[green]Configuration updated:[/] {key} = {mask_secret(value)}")


@app.command()
def status(ctx: typer.Context):
    """Show configuration status."""
    context = _context(ctx)
    with _handle_errors():
        config = AppConfig.load(context)

    def flag(ok: bool) -> str:
        return "[green]set[/]" if ok else "[red]not set[/]"

    console.print(f"Config directory: {context.config_dir}\n")
    console.print("Configuration status:")
    console.print(f"  Accounts: {len(config.accounts)} (default: {config.default_account or '-'})")
    console.print(f"  AI provider: {config.ai.provider}")
    console.print(f"  AI API key: {flag(bool(config.ai.resolved_api_key()))}")
    console.print(f"  AI model: {config.ai.model_analysis} (replies: {config.ai.model_reply})")
    console.print(f"  Tasks file: {context.tasks_path(config)}\n")

    if config.is_valid():
        console.print("[green]Configuration complete.[/] Run 'clinbox' to start.")
        return
    console.print("[yellow]Configuration incomplete. Run:[/]\n")
    if not config.accounts:
        console.print("  clinbox accounts add NAME --client-id ID --client-secret SECRET")
    if not config.ai.resolved_api_key():
        console.print("  clinbox config ai.api_key YOUR_API_KEY")


# ---- Tasks ----


def _task_store(context: AppContext) -> TaskStore:
    return TaskStore.load(context.tasks_path(AppConfig.load(context)))


@tasks_app.callback(invoke_without_command=True)
def tasks_list(ctx: typer.Context):
    """Show pending tasks."""
    if ctx.invoked_subcommand is not None:
        return
    context = _context(ctx)
    with _handle_errors():
        pending = _task_store(context).pending()

    if not pending:
        console.print("No pending tasks")
        return
    console.print(f"Pending tasks ({len(pending)}):\n")
    for task in pending:
        due = f", due {task.due_date:%Y-%m-%d}" if task.due_date else ""
        console.print(f"  [bold]{escape(task.title)}[/] ({task.created_at:%Y-%m-%d}{due})  [dim]{task.id}[/]")
        if task.description:
            console.print(f"    {escape(task.description)}")
        if task.source_email_subject:
            console.print(f"    [dim]From email:[/] {escape(task.source_email_subject)}")
        console.print()


@tasks_app.command("add")
def tasks_add(
    ctx: typer.Context,
    title: str,
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    due: Optional[str] = typer.Option(None, "--due", help="Due date, e.g. 2026-11-01 or 'Nov 1'"),
):
    """Add a task by hand."""
    context = _context(ctx)
    with _handle_errors():
        due_date = _parse_due(due) if due else None
        task = _task_store(context).add(title, description, due_date=due_date)
    console.print(f"Created {task.id}")


@tasks_app.command("done")
def tasks_done(ctx: typer.Context, task_id: str):
    """Mark a task as completed."""
    context = _context(ctx)
    with _handle_errors():
        found = _task_store(context).complete(task_id)
    if not found:
        console.print(f"[red]No task {task_id}[/]")
        raise typer.Exit(code=1)
    console.print(f"Completed {task_id}")


@tasks_app.command("rm")
def tasks_rm(ctx: typer.Context, task_id: str):
    """Delete a task."""
    context = _context(ctx)
    with _handle_errors():
        found = _task_store(context).delete(task_id)
    if not found:
        console.print(f"[red]No task {task_id}[/]")
        raise typer.Exit(code=1)
    console.print(f"Deleted {task_id}")


def _parse_due(value: str):
    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError) as e:
        raise ValidationError(f"Unrecognised due date '{value}'") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


if __name__ == "__main__":
    app()
