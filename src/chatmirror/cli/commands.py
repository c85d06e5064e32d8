"""
CLI commands for chatmirror.

Uses Typer for command-line interface.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

import typer

from chatmirror.client.waha import WahaClient
from chatmirror.config import Config, load_config
from chatmirror.connection.manager import build_ws_url, mask_url
from chatmirror.engine import SyncEngine
from chatmirror.errors import ConfigError, ErrorReporter, SyncError
from chatmirror.network import NetworkMonitor
from chatmirror.view.base import ChatListPresenter, ConsoleRenderer, format_row
from chatmirror.view.diff import ChangeType, ChatRow

app = typer.Typer(
    name="chatmirror",
    help="Terminal mirror of a WhatsApp (WAHA) account",
)

logger = logging.getLogger("chatmirror")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _load(config_path: Optional[Path]) -> Config:
    try:
        return load_config(config_path.expanduser() if config_path else None)
    except ConfigError as e:
        typer.echo(f"Error: {e.message}", err=True)
        raise typer.Exit(code=1)


def _build_client(config: Config, network: NetworkMonitor | None = None) -> WahaClient:
    return WahaClient(
        config.server.url,
        api_key=config.server.api_key or None,
        session=config.session,
        timeout=config.server.timeout_s,
        network=network,
    )


ConfigOption = typer.Option(None, "--config", "-c", help="Path to config.json")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Debug logging")


@app.command()
def status(config_path: Optional[Path] = ConfigOption):
    """Show configuration."""
    config = _load(config_path)

    typer.echo("\n=== chatmirror Status ===")
    typer.echo(f"Server: {config.server.url}")
    typer.echo(f"API key: {'set' if config.server.api_key else 'not set'}")
    typer.echo(f"Session: {config.session}")
    typer.echo(f"Events: {mask_url(build_ws_url(config.server.url, config.server.api_key or None))}")

    polling = config.polling
    typer.echo("\nPolling:")
    if polling.enabled:
        typer.echo(f"  chats every {polling.chats_interval_s}s")
        typer.echo(f"  messages every {polling.messages_interval_s}s")
    else:
        typer.echo("  ✗ disabled")

    notifications = config.notifications
    typer.echo("\nNotifications:")
    typer.echo(f"  {'✓ enabled' if notifications.enabled else '✗ disabled'}")
    typer.echo("")


@app.command()
def sessions(
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """List sessions on the server."""
    _setup_logging(verbose)
    config = _load(config_path)

    async def run() -> None:
        client = _build_client(config)
        try:
            for session in await client.list_sessions():
                marker = "*" if session.name == config.session else " "
                me = f"  ({session.me_id})" if session.me_id else ""
                typer.echo(f"{marker} {session.name}: {session.status.value}{me}")
        finally:
            await client.close()

    _run_or_exit(run())


@app.command()
def chats(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of chats to show"),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Print the chat list once."""
    _setup_logging(verbose)
    config = _load(config_path)

    async def run() -> None:
        client = _build_client(config)
        try:
            for chat in await client.get_chats(limit=limit):
                typer.echo(format_row(ChatRow(chat, chat.name or chat.id)))
        finally:
            await client.close()

    _run_or_exit(run())


def _run_or_exit(coro) -> None:
    try:
        asyncio.run(coro)
    except SyncError as e:
        typer.echo(f"Error: {ErrorReporter.user_message(e)}", err=True)
        raise typer.Exit(code=1)


@app.command()
def watch(
    chat: Optional[str] = typer.Option(None, "--chat", help="Chat id to keep in the foreground"),
    session: Optional[str] = typer.Option(None, "--session", "-s", help="Session name"),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """
    Run the sync engine headless until interrupted.

    Prints the chat list, then only the rows that change.
    """
    _setup_logging(verbose)
    config = _load(config_path)
    logger.info("Starting chatmirror watch")

    async def run_watch() -> None:
        shutdown_event = asyncio.Event()
        network = NetworkMonitor()
        client = _build_client(config, network)
        engine = SyncEngine(
            client,
            config,
            presenter=ChatListPresenter(ConsoleRenderer()),
        )

        def _on_change(change: ChangeType) -> None:
            if change in (ChangeType.DATA, ChangeType.VIEW):
                engine.render()

        engine.subscribe(_on_change)
        engine.errors.subscribe(
            lambda error: typer.echo(f"! {ErrorReporter.user_message(error)}", err=True)
        )
        network.subscribe(
            lambda online: typer.echo("Network online" if online else "Network offline", err=True)
        )

        loop = asyncio.get_running_loop()

        def _handle_signal():
            typer.echo("\nShutdown signal received, stopping...")
            shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _handle_signal)

        try:
            await engine.start(session)
            if chat:
                await engine.open_chat(chat)
            await shutdown_event.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await engine.stop()
            await client.close()
            typer.echo("Goodbye!")

    asyncio.run(run_watch())


def main() -> None:
    """Entry point for CLI."""
    app()
