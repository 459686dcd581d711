from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from ..errors import FoundryClientError

logger = logging.getLogger("foundry_client")

GetFn = Callable[[str, dict[str, Any] | None], Awaitable[Any]]

LOGS_PATH = "/api/diagnostics/logs"
SEARCH_PATH = "/api/diagnostics/search"
HEALTH_PATH = "/api/diagnostics/health"
ERRORS_PATH = "/api/diagnostics/errors"


class DiagnosticsAPI:
    """Server logs and health, read through the REST diagnostics endpoints."""

    def __init__(self, get: GetFn) -> None:
        self._get = get

    async def get_recent_logs(
        self,
        *,
        lines: int | None = None,
        level: str | None = None,
        since: str | None = None,
        source: str | None = None,
        include_stack: bool | None = None,
    ) -> dict[str, Any]:
        params = {
            "lines": lines,
            "level": level,
            "since": since,
            "source": source,
            "includeStack": _flag(include_stack),
        }
        return await self._fetch("recent logs", LOGS_PATH, params)

    async def search_logs(
        self,
        pattern: str,
        *,
        timeframe: str | None = None,
        level: str | None = None,
        case_sensitive: bool | None = None,
    ) -> dict[str, Any]:
        params = {
            "pattern": pattern,
            "timeframe": timeframe,
            "level": level,
            "caseSensitive": _flag(case_sensitive),
        }
        return await self._fetch("log search", SEARCH_PATH, params)

    async def get_system_health(self) -> dict[str, Any]:
        return await self._fetch("system health", HEALTH_PATH)

    async def diagnose_errors(self, timeframe: int = 3600) -> dict[str, Any]:
        return await self._fetch(
            "error diagnosis", ERRORS_PATH, {"timeframe": timeframe}
        )

    async def get_errors_only(
        self, timeframe: int = 3600, level: str = "error"
    ) -> list[dict[str, Any]]:
        """Log entries of *level* from the last *timeframe* seconds."""
        since = datetime.now(timezone.utc) - timedelta(seconds=timeframe)
        result = await self.get_recent_logs(
            lines=1000,
            level=level,
            since=since.isoformat(),
            include_stack=True,
        )
        return list(result.get("logs") or [])

    async def get_health_status(self) -> dict[str, Any]:
        """Overall status only; an unreachable server reports ``critical``."""
        try:
            health = await self.get_system_health()
        except FoundryClientError as e:
            logger.error("Failed to get health status: %s", e)
            return {"status": "critical"}
        return {"status": health.get("status", "critical")}

    async def is_available(self) -> bool:
        try:
            await self._get(HEALTH_PATH, None)
        except FoundryClientError as e:
            logger.debug("Diagnostics endpoints unavailable: %s", e)
            return False
        return True

    async def _fetch(
        self, what: str, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            body = await self._get(path, params)
        except FoundryClientError as e:
            # Keeps the original type; only the message gains context.
            e.args = (f"Failed to retrieve {what}: {e}",)
            raise

        if isinstance(body, dict) and "success" in body and "data" in body:
            body = body["data"]
        if not isinstance(body, dict):
            raise FoundryClientError(
                "BAD_RESPONSE", f"Unexpected {what} response from server"
            )
        return body


def _flag(value: bool | None) -> str | None:
    if value is None:
        return None
    return "true" if value else "false"
