"""WebSocket socket driver built on the ``websockets`` package.

Bridges the callback-driven Connection to an asyncio WebSocket:

- A background task opens the socket and reads frames in delivery order,
  handing each one to ``listener.handle_message`` before reading the next.
- ``send`` is synchronous; frames go onto an outbound queue that a writer
  task drains in order, so the Connection never has to await.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.typing import Subprotocol

from .protocol import SUBPROTOCOL

if TYPE_CHECKING:
    from .connection import SocketListener

logger = logging.getLogger(__name__)


class WebSocketChannel:
    """A single WebSocket connection reporting to a SocketListener.

    Must be created while an asyncio event loop is running.
    """

    def __init__(
        self,
        url: str,
        listener: SocketListener,
        *,
        ping_interval: float | None = 30.0,
        ping_timeout: float | None = 10.0,
    ):
        self.url = url
        self._listener = listener
        self._ping_interval = ping_interval
        self._ping_timeout = ping_timeout
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._ws: Any = None  # websockets ClientConnection while open
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def is_open(self) -> bool:
        """Check if the socket is currently open."""
        return self._ws is not None

    def send(self, text: str) -> None:
        """Queue a text frame for sending.

        Frames sent after the driver has stopped are dropped.
        """
        if self._task.done():
            logger.debug(f"WebSocket to {self.url} is closed, dropping frame: {text[:80]}")
            return
        self._outbox.put_nowait(text)

    async def aclose(self) -> None:
        """Stop the driver and close the socket."""
        if not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _run(self) -> None:
        try:
            async with websockets.connect(
                self.url,
                subprotocols=[Subprotocol(SUBPROTOCOL)],
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_timeout,
            ) as ws:
                self._ws = ws
                logger.info(f"WebSocket connected to {self.url}")
                self._listener.handle_open()

                writer = asyncio.create_task(self._write_loop(ws))
                try:
                    await self._read_loop(ws)
                finally:
                    writer.cancel()
                    with contextlib.suppress(asyncio.CancelledError, ConnectionClosed):
                        await writer
            self._listener.handle_close(ws.close_code, ws.close_reason or "")
        except (OSError, WebSocketException) as e:
            logger.error(f"WebSocket connection to {self.url} failed: {e}")
            self._listener.handle_error(e)
        finally:
            self._ws = None

    async def _read_loop(self, ws: Any) -> None:
        async for frame in ws:
            try:
                self._listener.handle_message(frame)
            except Exception:
                logger.exception("Failed to handle WebSocket message")

    async def _write_loop(self, ws: Any) -> None:
        while True:
            text = await self._outbox.get()
            await ws.send(text)
