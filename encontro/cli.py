"""Encontro CLI - Main entry point."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.console import Console

from encontro import __version__
from encontro.client import CeremonyTimeline, ConnectionState, NetworkManager, RoomManager
from encontro.config import Settings, get_settings
from encontro.logging import configure_logging
from encontro.protocol.messages import (
    ErrorMessage,
    PhaseChangeMessage,
    RemotePresenceUpdateMessage,
    ServerMessage,
)

app = typer.Typer(
    name="encontro",
    help="Shared real-time ceremony sessions: server and headless client.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold cyan]encontro[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
):
    """Encontro - timed, multi-phase shared presence sessions.

    [bold]Quick Start:[/bold]

        encontro serve              Run the session server
        encontro watch ROOM_ID      Join a room headlessly and print events
    """


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Host to bind to"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on"),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level"),
    log_format: str | None = typer.Option(None, "--log-format", help="'text' or 'json'"),
):
    """Run the session server."""
    import uvicorn

    from encontro.server import create_app

    settings = _with_overrides(
        get_settings(), host=host, port=port, log_level=log_level, log_format=log_format
    )
    configure_logging(settings.log_level, settings.log_format)

    console.print("[cyan]Starting Encontro session server...[/cyan]")
    console.print(f"[bold]WebSocket:[/bold] ws://{settings.host}:{settings.port}{settings.ws_path}")
    console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


@app.command()
def watch(
    room_id: str = typer.Argument(..., help="Room to join"),
    url: str | None = typer.Option(None, "--url", "-u", help="Server WebSocket URL"),
    ready: bool = typer.Option(False, "--ready", help="Send ready once joined"),
    presence: bool = typer.Option(False, "--presence", help="Also print presence updates"),
):
    """Join a room without rendering and print what the server sends."""
    settings = _with_overrides(get_settings(), server_url=url)
    configure_logging(settings.log_level, settings.log_format)

    try:
        failure = asyncio.run(_watch(room_id, settings, ready=ready, presence=presence))
    except KeyboardInterrupt:
        console.print("\n[yellow]Left the room[/yellow]")
        return

    if failure:
        console.print(f"[red]{failure}[/red]")
        raise typer.Exit(1)


async def _watch(room_id: str, settings: Settings, *, ready: bool, presence: bool) -> str | None:
    network = NetworkManager(
        settings.server_url,
        base_delay=settings.reconnect_base_delay_ms / 1000,
        max_attempts=settings.reconnect_max_attempts,
    )
    room = RoomManager(network)
    timeline = CeremonyTimeline()
    gave_up = asyncio.Event()
    pending: set[asyncio.Task] = set()

    def print_message(message: ServerMessage) -> None:
        if isinstance(message, RemotePresenceUpdateMessage) and not presence:
            return
        console.print(describe_message(message))

    def print_state(state: ConnectionState) -> None:
        console.print(f"[dim]connection: {state.value}[/dim]")
        if state is ConnectionState.DISCONNECTED:
            gave_up.set()

    def on_connected(user_id: str, participants: list[str]) -> None:
        if ready:
            task = asyncio.get_running_loop().create_task(room.mark_ready())
            pending.add(task)
            task.add_done_callback(pending.discard)

    network.on_message(timeline.handle_message)
    network.on_message(print_message)
    network.on_state_change(print_state)
    room.on_connected = on_connected

    await room.join_room(room_id)
    try:
        await gave_up.wait()
    finally:
        if network.is_connected:
            await room.leave_room()
        else:
            await network.disconnect()

    return network.failure.message if network.failure else None


def describe_message(message: ServerMessage) -> str:
    """One-line Rich markup for a server message."""
    if isinstance(message, ErrorMessage):
        return f"[red]error[/red] {message.message}"
    if isinstance(message, PhaseChangeMessage):
        duration = "unbounded" if message.duration is None else f"{message.duration / 1000:.0f}s"
        return f"[bold magenta]phase[/bold magenta] {message.phase.value} ({duration})"
    fields = message.model_dump(exclude={"type", "state"})
    details = " ".join(f"{key}={value}" for key, value in fields.items())
    return f"[cyan]{message.type}[/cyan] {details}".rstrip()


def _with_overrides(settings: Settings, **overrides) -> Settings:
    """Return settings with the non-None CLI options applied."""
    update = {key: value for key, value in overrides.items() if value is not None}
    if not update:
        return settings
    return Settings(**{**settings.model_dump(), **update})
