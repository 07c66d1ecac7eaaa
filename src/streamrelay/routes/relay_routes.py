"""
Routes for stream relaying.

Provides:
- GET /create-relay: create or look up a session for a source URL
- WebSocket /relay/{session_id}: subscribe to a session's byte stream
- GET /stream/{session_id}: metadata for an active session
- GET /status: all registered sessions
"""

import uuid

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.websockets import WebSocket, WebSocketDisconnect

from streamrelay.logger import get_logger
from streamrelay.relay.errors import SessionClosedError, SessionNotFoundError
from streamrelay.relay.models import (
    CreateRelayResponse,
    ErrorResponse,
    SessionStatus,
    StatusResponse,
    StreamInfoResponse,
)
from streamrelay.relay.sinks import WebSocketSink

logger = get_logger(__name__)

CLOSE_POLICY_VIOLATION = 1008


def _get_registry(request_or_ws):
    """Get SessionRegistry from app state."""
    return request_or_ws.app.state.registry


def _get_controller(request_or_ws):
    """Get LifecycleController from app state."""
    return request_or_ws.app.state.controller


async def create_relay(request: Request) -> JSONResponse:
    """
    GET /create-relay?url=...&sessionId=...: Create or fetch a relay session.

    ``sessionId`` is generated when omitted.
    """
    source_url = request.query_params.get("url")
    session_id = request.query_params.get("sessionId") or str(uuid.uuid4())

    if not source_url:
        err = ErrorResponse(error="Stream URL is required")
        return JSONResponse(err.to_json(), status_code=400)

    session = _get_registry(request).get_or_create(session_id, source_url)

    resp = CreateRelayResponse(
        session_id=session.id,
        relay_url=f"/relay/{session.id}",
        http_url=f"/stream/{session.id}",
        client_count=session.client_count,
    )
    return JSONResponse(resp.to_json())


async def relay_requires_upgrade(request: Request) -> PlainTextResponse:
    """Plain HTTP hit on /relay/{session_id}."""
    return PlainTextResponse("WebSocket connection required", status_code=400)


async def relay_websocket_endpoint(websocket: WebSocket):
    """
    WebSocket /relay/{session_id}: Join a session as a subscriber.

    Unknown sessions are closed right after the handshake with 1008.
    Upstream chunks arrive as binary frames; anything the client sends is
    ignored. When the relay stops, the socket is closed with 1000.
    """
    session_id = websocket.path_params["session_id"]
    controller = _get_controller(websocket)

    await websocket.accept()
    sink = WebSocketSink(websocket)

    try:
        session = await controller.join(session_id, sink)
    except (SessionNotFoundError, SessionClosedError) as e:
        logger.info(f"Rejected subscriber: {e}")
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Session not found")
        return

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"Relay WebSocket error in session {session_id}: {e}")
    finally:
        sink.mark_closed()
        await controller.leave(session, sink)


async def stream_info(request: Request) -> Response:
    """GET /stream/{session_id}: Metadata for an active session."""
    session_id = request.path_params["session_id"]
    session = _get_registry(request).get(session_id)

    if session is None or not session.is_active:
        return PlainTextResponse("Stream not available", status_code=404)

    resp = StreamInfoResponse(
        session_id=session.id,
        source_url=session.source_url,
        client_count=session.client_count,
        is_active=session.is_active,
        http_stream_url=f"{request.url.replace(query='')}/m3u8",
    )
    return JSONResponse(resp.to_json())


async def relay_status(request: Request) -> JSONResponse:
    """GET /status: Every registered session."""
    summaries = _get_registry(request).list_all()
    resp = StatusResponse(
        active_sessions=[
            SessionStatus(
                id=s.id,
                source_url=s.source_url,
                client_count=s.client_count,
                is_active=s.is_active,
                state=s.state.value,
            )
            for s in summaries
        ],
        total_sessions=len(summaries),
    )
    return JSONResponse(resp.to_json())
