"""
streamrelay CLI.

Commands:
- start:  run the relay server
- status, create, info, listen: talk to a running server
"""

from typing import Optional

import typer

from streamrelay.cli.sessions import register_commands
from streamrelay.logger import setup_logging

app = typer.Typer(help="streamrelay - share one upstream stream with many clients")


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging (DEBUG level)"
    ),
):
    """
    streamrelay - share one upstream stream with many clients.
    """
    setup_logging(level="DEBUG" if verbose else "WARNING")


@app.command("start")
def start(
    host: Optional[str] = typer.Option(None, "--host", help="Listen address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Listen port"),
):
    """Start the relay server."""
    from streamrelay.server import run

    run(host=host, port=port)


register_commands(app)

if __name__ == "__main__":
    app()
