"""Command line interface for the marticapp application."""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import HOTKEY_KEYS, ConfigError
from .events import EventBus
from .gateway import ApiGateway
from .models import Credentials, LoginResult
from .operations import UserOperations
from .session import TokenManager
from .startup import apply_launch_on_startup
from .storage import Store, StorageError

app = typer.Typer(add_completion=False, help="Hotkey voice transcription for the desktop.")
console = Console()


def _current_email(store: Store) -> str:
    email = store.last_active_user
    if not email:
        typer.secho("Not logged in. Run `marticapp login` first.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return email


def _operations() -> UserOperations:
    return UserOperations(Store(), launch_on_startup=apply_launch_on_startup)


async def _login(store: Store, credentials: Credentials) -> LoginResult:
    gateway = ApiGateway()
    tokens = TokenManager(gateway, store, EventBus())
    try:
        return await tokens.login(credentials)
    finally:
        tokens.stop_refresh()
        await gateway.aclose()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    daemon: bool = typer.Option(False, "--daemon", "-d", help="Launch the menu bar daemon"),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    if version:
        typer.echo(f"marticapp v{__version__}")
        raise typer.Exit()

    if daemon:
        if ctx.invoked_subcommand is None:
            ctx.invoke(daemon_command)
        return

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def login(
    email: str = typer.Option(..., "--email", prompt=True, help="Account e-mail."),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True, help="Account password."),
) -> None:
    """Log in and store the credentials used for automatic reconnection."""

    operations = _operations()
    store = operations.store
    result = asyncio.run(_login(store, Credentials(email=email, password=password)))
    if not result.success:
        typer.secho(f"Login failed: {result.message or 'unknown error'}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    typer.secho(f"Logged in as {result.user.email if result.user else email}.", fg=typer.colors.BLUE)
    if result.needs_onboarding:
        config = operations.get_config(email)
        console.print(
            Panel(
                f"Press [cyan]{config.smart_transcribe_hotkey}[/cyan] to dictate and "
                f"[cyan]{config.process_text_hotkey}[/cyan] to give an instruction about the "
                "selected text. Press the same shortcut again to stop.\n\n"
                "Start the menu bar app with [cyan]marticapp daemon[/cyan].",
                title="Welcome to MarticApp",
                border_style="cyan",
            )
        )
        operations.complete_onboarding(email)


@app.command()
def logout() -> None:
    """Forget the stored credentials of the active user."""

    store = Store()
    email = _current_email(store)
    store.forget_credentials(email)
    store.set_last_active_user(None)
    typer.secho(f"Logged out {email}.", fg=typer.colors.BLUE)


@app.command(name="daemon")
def daemon_command(
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
) -> None:  # pragma: no cover - interactive
    """Launch the macOS menu bar daemon."""

    from .app import run_daemon

    try:
        run_daemon(verbose=verbose)
    except ImportError as exc:
        typer.secho(
            "Missing dependencies for daemon mode. Install with `pip install "
            '"marticapp[mac]"` or `pip install \'.[mac]\'` if you are using a local checkout.',
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1) from exc
    except RuntimeError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


@app.command()
def config(
    final_action: Optional[str] = typer.Option(None, help="Deliver results by `paste` or `copy`."),
    active_prompt: Optional[str] = typer.Option(None, help="Name of the prompt used to process text."),
    audio_device: Optional[str] = typer.Option(None, help="Input device name, or `default`."),
    transcribe_hotkey: Optional[str] = typer.Option(None, help="Shortcut for smart transcription."),
    process_text_hotkey: Optional[str] = typer.Option(None, help="Shortcut for processing selected text."),
    attenuate_audio: Optional[bool] = typer.Option(
        None, "--attenuate-audio/--no-attenuate-audio", help="Lower system volume while recording."
    ),
    launch_on_startup: Optional[bool] = typer.Option(
        None, "--launch-on-startup/--no-launch-on-startup", help="Start the daemon at login."
    ),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings of the active user."""

    operations = _operations()
    email = _current_email(operations.store)

    updates: Dict[str, Any] = {
        key: value
        for key, value in {
            "final_action": final_action,
            "active_prompt_name": active_prompt,
            "audio_device": audio_device,
            "smart_transcribe_hotkey": transcribe_hotkey,
            "process_text_hotkey": process_text_hotkey,
            "attenuate_audio": attenuate_audio,
            "launch_on_startup": launch_on_startup,
        }.items()
        if value is not None
    }

    if show or not updates:
        typer.echo(json.dumps(asdict(operations.get_config(email)), indent=2, ensure_ascii=False))
        return

    try:
        operations.update_config(email, **updates)
    except (ConfigError, StorageError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    typer.secho("Configuration updated.", fg=typer.colors.BLUE)
    if any(key in updates for key in HOTKEY_KEYS):
        typer.echo("Choose `Reload settings` in the menu bar to apply the new shortcuts.")


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of recent entries to show."),
) -> None:
    """List the most recent results."""

    operations = _operations()
    entries = operations.get_history(_current_email(operations.store))
    if not entries:
        typer.echo("History is empty.")
        return

    table = Table("Date", "Type", "Words", "Output")
    for entry in entries[-limit:]:
        output = entry.output if len(entry.output) <= 60 else entry.output[:57] + "..."
        table.add_row(entry.date, entry.type, str(entry.word_count), output)
    console.print(table)


@app.command(name="export-history")
def export_history(
    destination: Path = typer.Argument(Path("historial.csv"), help="CSV file to write."),
) -> None:
    """Export the history as CSV."""

    operations = _operations()
    result = operations.export_history(_current_email(operations.store), destination)
    if not result.success:
        typer.secho(result.message or "Export failed.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho(result.message, fg=typer.colors.BLUE)


@app.command(name="clear-history")
def clear_history(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete every history entry of the active user."""

    operations = _operations()
    email = _current_email(operations.store)
    if not yes and not typer.confirm("Delete the whole history?"):
        raise typer.Abort()
    try:
        operations.clear_history(email)
    except StorageError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    typer.secho("History cleared.", fg=typer.colors.BLUE)


@app.command()
def stats() -> None:
    """Show usage analytics."""

    operations = _operations()
    email = _current_email(operations.store)
    data = operations.analytics(email)
    counters = operations.get_stats(email)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column()
    table.add_row("Transcriptions:", str(counters.transcription))
    table.add_row("Processing runs:", str(counters.processing))
    table.add_row("Uses this week:", str(data.uses_this_week))
    table.add_row("Total words:", f"{data.total_words:,}")
    table.add_row("Transcription words:", f"{data.transcription_words:,}")
    table.add_row("Processing words:", f"{data.processing_words:,}")
    table.add_row("Average words:", str(data.average_words))
    table.add_row("Days with MarticApp:", str(data.days_with_app))
    console.print(Panel(table, title="Your usage", border_style="green"))
    console.print(data.fun_fact)


if __name__ == "__main__":  # pragma: no cover
    app()
