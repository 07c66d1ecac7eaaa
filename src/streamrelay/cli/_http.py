"""
Shared HTTP helpers for CLI commands that talk to the running server.
"""

import os

import httpx
import typer


def get_server_url() -> str:
    """Get the server URL from environment or default."""
    explicit = os.getenv("RELAY_SERVER_URL")
    if explicit:
        return explicit.rstrip("/")

    host = os.getenv("RELAY_HOST", "localhost")
    if host == "0.0.0.0":
        host = "localhost"
    port = os.getenv("RELAY_PORT", "8000")
    return f"http://{host}:{port}"


def get_ws_url() -> str:
    """WebSocket base URL matching ``get_server_url``."""
    url = get_server_url()
    if url.startswith("https://"):
        return "wss://" + url[len("https://") :]
    if url.startswith("http://"):
        return "ws://" + url[len("http://") :]
    return url


def _http_get(path: str, params: dict = None) -> dict:
    """Make a GET request to the running server."""
    url = f"{get_server_url()}{path}"
    try:
        resp = httpx.get(url, params=params, timeout=10.0)
        resp.raise_for_status()
        return resp.json()
    except httpx.ConnectError:
        typer.echo("Cannot connect to the relay server. Is it running?")
        raise typer.Exit(code=1)
    except httpx.HTTPStatusError as e:
        try:
            detail = e.response.json().get("error", e.response.text)
        except Exception:
            detail = e.response.text or str(e)
        typer.echo(f"Server error ({e.response.status_code}): {detail}")
        raise typer.Exit(code=1)
    except Exception as e:
        typer.echo(f"Error: {e}")
        raise typer.Exit(code=1)
