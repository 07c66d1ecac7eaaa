"""
Starlette-based web server for streamrelay.

This server provides the following endpoints:
- /create-relay: Create or look up a relay session for a source URL
- /relay/{session_id}: WebSocket subscription to a session's byte stream
- /stream/{session_id}: Metadata for an active session
- /status: All registered sessions
- /health: Liveness probe

The session registry and lifecycle controller are created per application
in the lifespan handler and shared with the routes through ``app.state``.
"""

import asyncio
import contextlib
from typing import Optional

import httpx
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route, WebSocketRoute

from streamrelay.config import CONFIG, RelayConfig
from streamrelay.logger import get_logger, setup_logging
from streamrelay.middleware import PermissiveCORSMiddleware, RequestLoggingMiddleware
from streamrelay.relay.lifecycle import LifecycleController
from streamrelay.relay.registry import SessionRegistry
from streamrelay.routes.health_routes import health_check
from streamrelay.routes.relay_routes import (
    create_relay,
    relay_requires_upgrade,
    relay_status,
    relay_websocket_endpoint,
    stream_info,
)

logger = get_logger(__name__)


async def not_found(request: Request, exc: HTTPException) -> PlainTextResponse:
    """Unsupported methods on known paths answer like unknown routes."""
    return PlainTextResponse("Not Found", status_code=404)


def build_upstream_client(config: RelayConfig) -> httpx.AsyncClient:
    """HTTP client used by relay engines to open source streams."""
    timeout = httpx.Timeout(
        connect=config.connect_timeout or None,
        read=config.read_timeout or None,
        write=10.0,
        pool=10.0,
    )
    return httpx.AsyncClient(timeout=timeout, follow_redirects=True)


def create_app(
    config: Optional[RelayConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Starlette:
    """
    Build the relay application.

    Args:
        config: Server settings; defaults to the environment-derived CONFIG.
        client: Upstream HTTP client. When omitted one is created at startup
            and closed at shutdown; a client passed in is left open.
    """
    config = config or CONFIG

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Application startup - initializing relay")
        upstream = client or build_upstream_client(config)
        registry = SessionRegistry(send_timeout=config.send_timeout or None)
        controller = LifecycleController(
            registry,
            upstream,
            eviction_delay=config.eviction_delay,
            chunk_size=config.chunk_size or None,
        )
        app.state.config = config
        app.state.registry = registry
        app.state.controller = controller

        try:
            yield
        finally:
            logger.info("Application shutdown - stopping relays")
            await controller.shutdown()
            if client is None:
                await upstream.aclose()

    return Starlette(
        routes=[
            Route("/create-relay", create_relay, methods=["GET"]),
            Route("/relay/{session_id}", relay_requires_upgrade, methods=["GET"]),
            WebSocketRoute("/relay/{session_id}", relay_websocket_endpoint),
            Route("/stream/{session_id}", stream_info, methods=["GET"]),
            Route("/status", relay_status, methods=["GET"]),
            Route("/health", health_check, methods=["GET"]),
        ],
        middleware=[
            Middleware(PermissiveCORSMiddleware),
            Middleware(RequestLoggingMiddleware),
        ],
        exception_handlers={405: not_found},
        lifespan=lifespan,
    )


def run(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the application with uvicorn until interrupted."""
    import uvicorn

    setup_logging(level=CONFIG.log_level, log_file=CONFIG.log_file)

    host = host or CONFIG.host
    port = port or CONFIG.port
    app = create_app(CONFIG)

    async def main():
        server_config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level=CONFIG.log_level.lower(),
            ws="wsproto",
        )
        server = uvicorn.Server(server_config)
        await server.serve()

    logger.info(f"Starting streamrelay on http://{host}:{port}")
    asyncio.run(main())


if __name__ == "__main__":
    run()
