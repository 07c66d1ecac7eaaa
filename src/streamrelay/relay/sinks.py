"""
WebSocket-backed sink.

Wraps an accepted Starlette WebSocket. Upstream chunks are forwarded as
binary frames exactly as they were read.
"""

import asyncio
from typing import Optional

from starlette.websockets import WebSocket, WebSocketState

from streamrelay.logger import get_logger
from streamrelay.relay.subscribers import CLOSE_NORMAL, SinkBase

logger = get_logger(__name__)


class WebSocketSink(SinkBase):
    """A subscriber connected over WebSocket."""

    def __init__(self, websocket: WebSocket, sink_id: Optional[str] = None):
        super().__init__(sink_id)
        self._ws = websocket
        self._closed = False
        self._close_sent = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._ws.application_state == WebSocketState.CONNECTED
            and self._ws.client_state == WebSocketState.CONNECTED
        )

    def mark_closed(self) -> None:
        """Record that the client side has gone away."""
        self._closed = True

    async def send(self, chunk: bytes) -> None:
        if self._closed:
            raise ConnectionError(f"Sink {self.sink_id} is closed")
        try:
            await self._ws.send_bytes(chunk)
        except (Exception, asyncio.CancelledError):
            self._closed = True
            raise

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        if self._close_sent:
            return
        self._close_sent = True
        self._closed = True
        try:
            if self._ws.application_state == WebSocketState.CONNECTED:
                await self._ws.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing sink {self.sink_id}: {e}")
