"""
CLI commands that inspect and create relay sessions on a running server.

Usage:
    streamrelay status
    streamrelay create <url> [--session-id ID]
    streamrelay info <session_id>
    streamrelay listen <session_id> [--output FILE] [--max-bytes N]
"""

import sys
from pathlib import Path
from typing import Optional

import typer

from streamrelay.cli._http import _http_get, get_ws_url


def status():
    """List every session registered on the server."""
    data = _http_get("/status")
    sessions = data.get("activeSessions", [])

    if not sessions:
        typer.echo("No relay sessions.")
        return

    typer.echo(f"Relay sessions ({data.get('totalSessions', len(sessions))}):\n")
    for s in sessions:
        marker = "*" if s.get("isActive") else "-"
        typer.echo(
            f"  {marker} {s['id']} [{s.get('state', 'unknown')}]\n"
            f"     Source: {s['sourceUrl']}\n"
            f"     Clients: {s['clientCount']}\n"
        )


def create(
    url: str = typer.Argument(help="Upstream source URL"),
    session_id: Optional[str] = typer.Option(
        None, "--session-id", "-s", help="Session id (generated if omitted)"
    ),
):
    """Create a relay session (or fetch the existing one for the id)."""
    params = {"url": url}
    if session_id:
        params["sessionId"] = session_id

    data = _http_get("/create-relay", params=params)
    typer.echo(f"Session: {data['sessionId']}")
    typer.echo(f"  Relay (WebSocket): {data['relayUrl']}")
    typer.echo(f"  Info:              {data['httpUrl']}")
    typer.echo(f"  Clients:           {data['clientCount']}")


def info(session_id: str = typer.Argument(help="Session id")):
    """Show metadata for an active session."""
    data = _http_get(f"/stream/{session_id}")
    typer.echo(f"Session: {data['sessionId']}")
    typer.echo(f"  Source:  {data['sourceUrl']}")
    typer.echo(f"  Clients: {data['clientCount']}")
    typer.echo(f"  Active:  {'yes' if data['isActive'] else 'no'}")


def listen(
    session_id: str = typer.Argument(help="Session id"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="File to write the stream to (default: stdout)"
    ),
    max_bytes: Optional[int] = typer.Option(
        None, "--max-bytes", help="Stop after this many bytes"
    ),
):
    """Subscribe to a session and write the relayed bytes to a file."""
    from streamrelay.relay.listener import listen as run_listener

    if output is None:
        listener = run_listener(
            session_id, sys.stdout.buffer, base_url=get_ws_url(), max_bytes=max_bytes
        )
    else:
        with open(output, "wb") as f:
            listener = run_listener(
                session_id, f, base_url=get_ws_url(), max_bytes=max_bytes
            )

    if listener.close_code == 1008:
        typer.echo(f"Session not found: {session_id}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Received {listener.bytes_received} bytes", err=True)


def register_commands(app: typer.Typer):
    """Register session commands on the main app."""
    app.command("status")(status)
    app.command("create")(create)
    app.command("info")(info)
    app.command("listen")(listen)
