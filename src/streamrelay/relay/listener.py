"""
Relay listener: subscribes to a session over WebSocket and writes the
received bytes to a file-like target.

Usage:
    streamrelay listen <session_id> --output capture.ts
"""

import asyncio
from typing import BinaryIO, Optional

import websockets

from streamrelay.logger import get_logger

logger = get_logger(__name__)

DEFAULT_RELAY_BASE = "ws://localhost:8000"


class RelayListener:
    """Consumes one relay session and copies its binary frames to ``output``."""

    def __init__(
        self,
        session_id: str,
        output: BinaryIO,
        base_url: str = DEFAULT_RELAY_BASE,
        max_bytes: Optional[int] = None,
    ):
        self.session_id = session_id
        self.output = output
        self.base_url = base_url.rstrip("/")
        self.max_bytes = max_bytes
        self.bytes_received = 0
        self.frames_received = 0
        self.close_code: Optional[int] = None
        self._stop = False

    @property
    def relay_url(self) -> str:
        return f"{self.base_url}/relay/{self.session_id}"

    async def run(self) -> Optional[int]:
        """
        Receive frames until the server closes the socket, ``max_bytes``
        is reached or ``stop`` is called.

        Returns:
            The close code sent by the server, if any.
        """
        logger.info(f"Connecting to {self.relay_url} ...")

        async with websockets.connect(self.relay_url, max_size=None) as ws:
            try:
                async for message in ws:
                    if self._stop:
                        break
                    if isinstance(message, str):
                        logger.debug(f"Ignoring text frame: {message[:80]}")
                        continue

                    self.output.write(message)
                    self.frames_received += 1
                    self.bytes_received += len(message)

                    if self.max_bytes and self.bytes_received >= self.max_bytes:
                        break
            except websockets.exceptions.ConnectionClosedError as e:
                logger.warning(f"Connection closed abnormally: {e}")

            self.close_code = ws.close_code

        self.output.flush()
        logger.info(
            f"Listener for session {self.session_id} finished: "
            f"{self.frames_received} frames, {self.bytes_received} bytes "
            f"(close code {self.close_code})"
        )
        return self.close_code

    def stop(self) -> None:
        """Signal the listener to stop after the next frame."""
        self._stop = True


def listen(
    session_id: str,
    output: BinaryIO,
    base_url: str = DEFAULT_RELAY_BASE,
    max_bytes: Optional[int] = None,
) -> RelayListener:
    """Run a listener to completion and return it."""
    listener = RelayListener(session_id, output, base_url=base_url, max_bytes=max_bytes)
    asyncio.run(listener.run())
    return listener
