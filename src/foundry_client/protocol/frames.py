"""Text frame codec for the game server's socket channel.

The server speaks Engine.IO v4 framing. Only three frame kinds matter to
the client: the session-open frame, the keep-alive ping (which must be
answered with a pong straight away or the server drops the connection),
and application messages carrying a ``{"type": ..., "data": ...}`` payload.
Everything else is logged and ignored so that new frame kinds never break
the listener pipeline.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Literal, TypeAlias

logger = logging.getLogger("foundry_client")

OPEN_PREFIX = "0"
PING = "2"
PONG = "3"
NAMESPACE_CONNECT = "40"
MESSAGE_PREFIX = "42"

DEFAULT_MAX_PAYLOAD_BYTES = 1024 * 1024
MAX_TYPE_LENGTH = 256

FrameKind: TypeAlias = Literal["open", "ping", "message", "unknown"]

SendFn = Callable[[str], None]
DispatchFn = Callable[[str, Any], None]


@dataclass(frozen=True)
class Frame:
    kind: FrameKind
    type: str | None = None
    data: Any = None


def decode_frame(
    raw: str, *, max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES
) -> Frame | None:
    """Classify and decode one raw frame.

    Returns ``None`` when the frame is an application message that has to be
    dropped (empty, oversized, unparseable or badly shaped). Never raises.
    """
    if raw == PING:
        return Frame("ping")

    if raw.startswith(MESSAGE_PREFIX):
        return _decode_message(raw[len(MESSAGE_PREFIX):], max_payload_bytes)

    if raw.startswith(OPEN_PREFIX):
        return Frame("open")

    return Frame("unknown")


def encode_message(msg_type: str, data: Any = None) -> str:
    return MESSAGE_PREFIX + json.dumps([msg_type, data])


def validate_payload(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    msg_type = payload.get("type")
    return isinstance(msg_type, str) and 0 < len(msg_type) <= MAX_TYPE_LENGTH


class FrameCodec:
    """Feeds raw frames through ``decode_frame`` and acts on the result.

    Pings are answered through *send* before anything else happens; valid
    application messages are handed to *dispatch* as ``(type, data)``.
    """

    def __init__(
        self,
        send: SendFn,
        dispatch: DispatchFn,
        *,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
    ) -> None:
        self._send = send
        self._dispatch = dispatch
        self._max_payload_bytes = max_payload_bytes

    def feed(self, raw: str) -> None:
        frame = decode_frame(raw, max_payload_bytes=self._max_payload_bytes)
        if frame is None:
            return

        if frame.kind == "ping":
            self._send(PONG)
        elif frame.kind == "open":
            logger.debug("Socket session opened")
            self._send(NAMESPACE_CONNECT)
        elif frame.kind == "message":
            assert frame.type is not None
            self._dispatch(frame.type, frame.data)
        else:
            logger.debug("Ignoring unrecognized frame (%d chars)", len(raw))


def _decode_message(body: str, max_payload_bytes: int) -> Frame | None:
    if not body:
        logger.debug("Dropping empty message frame")
        return None

    size = len(body.encode("utf-8"))
    if size > max_payload_bytes:
        logger.warning(
            "Dropping oversized message frame (%d bytes, limit %d)",
            size,
            max_payload_bytes,
        )
        return None

    try:
        payload = json.loads(body)
    except (ValueError, RecursionError) as e:
        logger.warning("Dropping unparseable message frame: %s", type(e).__name__)
        return None

    # Socket event arrays ["type", data] are normalized to the object form.
    if isinstance(payload, list) and payload and isinstance(payload[0], str):
        payload = {"type": payload[0], "data": payload[1] if len(payload) > 1 else None}

    if not validate_payload(payload):
        logger.warning(
            "Dropping malformed message payload (payload=%s, has_type=%s)",
            type(payload).__name__,
            isinstance(payload, dict) and "type" in payload,
        )
        return None

    return Frame("message", type=payload["type"], data=payload.get("data"))
