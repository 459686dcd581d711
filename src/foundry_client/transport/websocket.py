from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..config import ConnectionState
from ..errors import DisconnectedError, RequestTimeoutError, ServerUnreachableError
from ..protocol.frames import DEFAULT_MAX_PAYLOAD_BYTES, FrameCodec, encode_message

logger = logging.getLogger("foundry_client")

Unsubscribe = Callable[[], None]


class SocketTransport:
    """Socket channel to the game server with keep-alive handling.

    Emits ``open``, ``message`` (type, data), ``close`` (code, reason) and
    ``error`` (exception) events. Never reconnects on its own.

    Application frames larger than *max_payload_bytes* are dropped by the
    codec and the connection stays open. Frames larger than four times that
    limit are refused by the websocket layer itself, which closes the
    connection with code 1009 and emits ``close``. That second limit is a
    hard cap on how much a single frame may buffer in memory.
    """

    def __init__(
        self,
        url: str,
        *,
        connect_timeout_ms: int = 10_000,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
    ) -> None:
        self._url = url
        self._connect_timeout_ms = connect_timeout_ms
        self._max_frame_bytes = max_payload_bytes * 4
        self._ws: ClientConnection | None = None
        self._state: ConnectionState = "disconnected"
        self._listeners: dict[str, list[Callable[..., Any]]] = {}
        self._recv_task: asyncio.Task[None] | None = None
        self._codec = FrameCodec(
            self.send,
            lambda msg_type, data: self._emit("message", msg_type, data),
            max_payload_bytes=max_payload_bytes,
        )

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == "connected"

    # -- Lifecycle --------------------------------------------------------

    async def connect(self, headers: dict[str, str] | None = None) -> None:
        if self._state == "connected":
            return
        if self._state == "connecting":
            raise DisconnectedError("Socket connect already in progress")

        self._state = "connecting"
        try:
            self._ws = await asyncio.wait_for(
                ws_connect(
                    self._url,
                    ping_interval=None,
                    max_size=self._max_frame_bytes,
                    additional_headers=headers,
                ),
                timeout=self._connect_timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            self._state = "disconnected"
            raise RequestTimeoutError(
                f"Socket connect timeout after {self._connect_timeout_ms}ms"
            ) from None
        except (OSError, WebSocketException) as e:
            self._state = "disconnected"
            raise ServerUnreachableError(
                f"Socket connection to {self._url} failed: {e}"
            ) from e
        except asyncio.CancelledError:
            self._state = "disconnected"
            raise

        if self._state != "connecting":
            # disconnect() ran while the handshake was in flight.
            ws, self._ws = self._ws, None
            try:
                await ws.close()
            except (OSError, WebSocketException):
                logger.debug("Socket close handshake failed", exc_info=True)
            raise DisconnectedError("Socket disconnected while connecting")

        self._state = "connected"
        logger.info("Socket connected to %s", self._url)
        self._emit("open")
        self._recv_task = asyncio.create_task(self._receive_loop())

    async def disconnect(
        self, code: int = 1000, reason: str = "Client disconnect"
    ) -> None:
        if self._state == "disconnected" and self._ws is None:
            return

        self._state = "disconnected"

        if self._recv_task is not None:
            self._recv_task.cancel()
            try:
                await self._recv_task
            except asyncio.CancelledError:
                pass
            self._recv_task = None

        if self._ws is not None:
            try:
                await self._ws.close(code, reason)
            except (OSError, WebSocketException):
                logger.debug("Socket close handshake failed", exc_info=True)
            self._ws = None

    # -- Communication ----------------------------------------------------

    def send(self, data: str) -> None:
        if self._ws is None or self._state != "connected":
            raise DisconnectedError("Cannot send - socket is not open")
        # Frames are written from a task so that the codec can answer pings
        # synchronously from inside the receive loop.
        asyncio.get_running_loop().create_task(self._ws.send(data))

    def send_message(self, msg_type: str, data: Any = None) -> None:
        self.send(encode_message(msg_type, data))

    def feed(self, raw: str) -> None:
        """Process one raw inbound frame."""
        self._codec.feed(raw)

    # -- Events -----------------------------------------------------------

    def on(self, event: str, handler: Callable[..., Any]) -> Unsubscribe:
        listeners = self._listeners.setdefault(event, [])
        listeners.append(handler)

        def unsub() -> None:
            try:
                listeners.remove(handler)
            except ValueError:
                pass

        return unsub

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    # -- Private ----------------------------------------------------------

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._listeners.get(event, [])):
            try:
                handler(*args)
            except Exception:
                logger.exception("Event handler error for %s", event)

    async def _receive_loop(self) -> None:
        assert self._ws is not None
        ws = self._ws
        try:
            async for raw in ws:
                data = raw if isinstance(raw, str) else raw.decode("utf-8", "replace")
                self.feed(data)
        except ConnectionClosed as e:
            # A close we initiated (e.g. 1009 for an oversized frame) has no
            # received frame; report the code we sent instead of 1006.
            frame = e.rcvd or e.sent
            if frame is None:
                self._close(1006, "")
            else:
                self._close(frame.code, frame.reason)
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.error("Socket receive error: %s", e)
            self._state = "disconnected"
            self._ws = None
            self._emit("error", e)
        else:
            # Clean close; the async for loop exits normally for code 1000/1001.
            self._close(ws.close_code or 1000, ws.close_reason or "")

    def _close(self, code: int, reason: str) -> None:
        self._state = "disconnected"
        self._ws = None
        logger.info("Socket closed (code=%d, reason=%s)", code, reason)
        self._emit("close", code, reason)
