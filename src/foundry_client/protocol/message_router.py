from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger("foundry_client")

MessageHandler = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class MessageRouter:
    """Routes decoded socket messages to handlers registered by type."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[MessageHandler]] = {}

    def count(self, msg_type: str | None = None) -> int:
        if msg_type is not None:
            return len(self._handlers.get(msg_type, []))
        return sum(len(h) for h in self._handlers.values())

    def subscribe(self, msg_type: str, handler: MessageHandler) -> Unsubscribe:
        """Register *handler* for *msg_type*. Returns a function to unsubscribe."""
        self._handlers.setdefault(msg_type, []).append(handler)

        def unsub() -> None:
            self.unsubscribe(msg_type, handler)

        return unsub

    def unsubscribe(
        self, msg_type: str, handler: MessageHandler | None = None
    ) -> None:
        """Remove *handler*, or every handler for *msg_type* when omitted."""
        if handler is None:
            self._handlers.pop(msg_type, None)
            return

        handlers = self._handlers.get(msg_type)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            pass
        if not handlers:
            del self._handlers[msg_type]

    def dispatch(self, msg_type: str, data: Any) -> bool:
        """Deliver *data* to the handlers for *msg_type*. Returns True if any
        handler was registered."""
        handlers = self._handlers.get(msg_type)
        if not handlers:
            logger.debug("No handler for socket message %s", msg_type)
            return False

        for handler in list(handlers):
            try:
                handler(data)
            except Exception:
                logger.exception("Message handler error for %s", msg_type)
        return True

    def clear(self) -> None:
        self._handlers.clear()
