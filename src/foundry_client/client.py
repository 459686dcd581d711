from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import httpx

from .api.diagnostics import DiagnosticsAPI
from .cache.keys import (
    ACTOR_TTL,
    DEFAULT_SEARCH_LIMIT,
    SCENE_TTL,
    SEARCH_TTL,
    WORLD_INFO_TTL,
    CacheKeys,
)
from .cache.ttl_cache import CacheStats, TTLCache
from .config import ClientConfig, ConnectionState, TransportMode
from .dice import DiceRoll, roll_formula, validate_formula
from .errors import (
    AuthenticationError,
    DisconnectedError,
    FeatureUnavailableError,
    FoundryClientError,
    NotFoundError,
)
from .protocol.message_router import MessageHandler, MessageRouter
from .transport.http import HttpTransport
from .transport.retry import RetryExecutor
from .transport.websocket import SocketTransport

logger = logging.getLogger("foundry_client")

T = TypeVar("T")

Unsubscribe = Callable[[], None]

STATUS_PATH = "/api/status"
AUTH_PATH = "/api/auth"
ACTORS_PATH = "/api/actors"
ITEMS_PATH = "/api/items"
DICE_PATH = "/api/dice/roll"
SCENES_PATH = "/api/scenes"
WORLD_PATH = "/api/world"


class FoundryClient:
    """Async client for a Foundry VTT server.

    Talks to the server over the keyed REST API module when an API key is
    configured, otherwise over the socket channel (optionally after a login
    exchange). Domain reads are cached; every remote call is retried on
    transient failures.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        cache: TTLCache | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._mode: TransportMode = config.mode

        self._owns_cache = cache is None
        self._cache = cache if cache is not None else TTLCache(config.cache)

        self._retry = RetryExecutor(
            retry_attempts=config.retry_attempts,
            retry_delay_ms=config.retry_delay_ms,
        )

        self._http = HttpTransport(
            config.base_url,
            api_key=config.api_key,
            timeout_ms=config.timeout_ms,
            on_unauthorized=self._on_unauthorized,
            transport=http_transport,
        )

        self._router = MessageRouter()
        self._state: ConnectionState = "disconnected"
        self._connect_task: asyncio.Task[None] | None = None
        self._connect_aborted = False

        self._socket: SocketTransport | None = None
        if self._mode != "rest":
            self._socket = SocketTransport(
                config.socket_url, connect_timeout_ms=config.timeout_ms
            )
            self._setup_socket_listeners(self._socket)

        self._diagnostics = DiagnosticsAPI(self.get)

        logger.info("Foundry client initialized (%s mode)", self._mode)

    # ── State ─────────────────────────────────────────────────────

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def mode(self) -> TransportMode:
        return self._mode

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == "connected"

    @property
    def socket(self) -> SocketTransport | None:
        return self._socket

    @property
    def cache(self) -> TTLCache:
        return self._cache

    @property
    def diagnostics(self) -> DiagnosticsAPI:
        return self._diagnostics

    def cache_stats(self) -> CacheStats:
        return self._cache.get_stats()

    # ── Lifecycle ─────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the connection for the configured mode.

        Concurrent callers share one connection attempt. If ``disconnect()``
        runs while the attempt is pending, the attempt is cancelled and every
        waiting caller gets ``DisconnectedError``.
        """
        if self._state == "connected":
            return

        task = self._connect_task
        if task is None or task.done():
            self._connect_aborted = False
            task = asyncio.create_task(self._establish())
            task.add_done_callback(self._connect_finished)
            self._connect_task = task

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._connect_aborted and task.cancelled():
                raise DisconnectedError(
                    "Connection attempt aborted by disconnect()"
                ) from None
            raise

    async def _establish(self) -> None:
        if self._mode == "rest":
            try:
                await self._http.request("GET", STATUS_PATH)
            except Exception:
                logger.error("Failed to connect via REST API module")
                raise
            self._state = "connected"
            logger.info("Connected to Foundry VTT via REST API module")
            return

        assert self._socket is not None
        self._state = "connecting"
        try:
            if self._mode == "hybrid":
                await self._try_authenticate()
            await self._socket.connect(self._socket_headers())
        except BaseException:
            self._state = "disconnected"
            raise

        self._state = "connected"
        logger.info("Connected to Foundry VTT via socket (%s mode)", self._mode)

    def _connect_finished(self, task: asyncio.Task[None]) -> None:
        if self._connect_task is task:
            self._connect_task = None
        # Waiters may all have been cancelled; mark the outcome as retrieved.
        if not task.cancelled():
            task.exception()

    async def disconnect(self) -> None:
        task = self._connect_task
        if task is not None and not task.done():
            logger.info("Aborting pending connection attempt")
            self._connect_aborted = True
            task.cancel()
            await asyncio.wait([task])

        if self._socket is not None:
            await self._socket.disconnect()
        self._router.clear()
        self._http.session_token = None
        if self._state != "disconnected":
            logger.info("Foundry client disconnected")
        self._state = "disconnected"

    async def close(self) -> None:
        """Disconnect and release the HTTP client and owned cache."""
        await self.disconnect()
        await self._http.aclose()
        if self._owns_cache:
            await self._cache.close()

    async def test_connection(self) -> bool:
        """Log in when credentials exist, then check the status endpoint."""
        logger.debug("Testing connection to Foundry VTT")
        if self._config.username and self._config.password:
            await self.authenticate()
        await self._http.request("GET", STATUS_PATH)
        return True

    async def authenticate(self) -> None:
        """Exchange username/password for a bearer token."""
        if not (self._config.username and self._config.password):
            raise AuthenticationError(
                "Username and password required for authentication"
            )

        try:
            body = await self._retry.execute_with_retry(
                lambda: self._http.request(
                    "POST",
                    AUTH_PATH,
                    json={
                        "username": self._config.username,
                        "password": self._config.password,
                    },
                ),
                description=f"POST {AUTH_PATH}",
            )
        except FoundryClientError as e:
            raise AuthenticationError(
                f"Failed to authenticate with Foundry VTT: {e}"
            ) from e

        data = _unwrap(body)
        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthenticationError("Login response did not include a token")

        self._http.session_token = token
        logger.info("Authenticated with Foundry VTT")

    # ── Dice ──────────────────────────────────────────────────────

    async def roll_dice(self, formula: str, reason: str | None = None) -> DiceRoll:
        formula = validate_formula(formula)
        logger.debug("Rolling dice %s (%s)", formula, reason)

        if self._mode == "rest":
            try:
                body = await self.post(
                    DICE_PATH, {"formula": formula, "reason": reason}
                )
                return _remote_roll(formula, reason, _unwrap(body))
            except FoundryClientError as e:
                logger.warning("Remote dice roll failed, rolling locally: %s", e)

        return roll_formula(formula, reason)

    # ── Actors & items ────────────────────────────────────────────

    async def search_actors(
        self,
        query: str | None = None,
        type: str | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        limit = limit or DEFAULT_SEARCH_LIMIT
        if self._mode != "rest":
            logger.warning(
                "Actor search requires the REST API module, returning empty results"
            )
            return _empty_search("actors", limit)

        params = {"query": query, "type": type, "limit": limit}
        return await self._cached(
            CacheKeys.actor_search(query, type, limit),
            lambda: self._search(ACTORS_PATH, "actors", params, limit),
            SEARCH_TTL,
        )

    async def search_items(
        self,
        query: str | None = None,
        type: str | None = None,
        rarity: str | None = None,
        limit: int | None = None,
    ) -> dict[str, Any]:
        limit = limit or DEFAULT_SEARCH_LIMIT
        if self._mode != "rest":
            logger.warning(
                "Item search requires the REST API module, returning empty results"
            )
            return _empty_search("items", limit)

        params = {"query": query, "type": type, "rarity": rarity, "limit": limit}
        return await self._cached(
            CacheKeys.item_search(query, type, rarity, limit),
            lambda: self._search(ITEMS_PATH, "items", params, limit),
            SEARCH_TTL,
        )

    async def get_actor(self, actor_id: str) -> dict[str, Any]:
        if self._mode != "rest":
            raise FeatureUnavailableError(
                "Actor retrieval requires the REST API module"
            )

        async def fetch() -> dict[str, Any]:
            try:
                body = await self.get(f"{ACTORS_PATH}/{actor_id}")
            except NotFoundError as e:
                raise NotFoundError(f"Actor not found: {actor_id}", e.details) from e
            return _unwrap(body)

        return await self._cached(CacheKeys.actor(actor_id), fetch, ACTOR_TTL)

    # ── Scenes & world ────────────────────────────────────────────

    async def get_current_scene(self, scene_id: str | None = None) -> dict[str, Any]:
        if self._mode != "rest":
            logger.warning("Scene lookup requires the REST API module, returning placeholder")
            return _placeholder_scene()

        path = f"{SCENES_PATH}/{scene_id}" if scene_id else f"{SCENES_PATH}/current"

        async def fetch() -> dict[str, Any]:
            try:
                body = await self.get(path)
            except NotFoundError as e:
                what = f"Scene not found: {scene_id}" if scene_id else "No active scene"
                raise NotFoundError(what, e.details) from e
            return _unwrap(body)

        return await self._cached(CacheKeys.scene(scene_id), fetch, SCENE_TTL)

    async def get_scene(self, scene_id: str) -> dict[str, Any]:
        return await self.get_current_scene(scene_id)

    async def get_world_info(self) -> dict[str, Any]:
        if self._mode != "rest":
            logger.warning("World info requires the REST API module, returning placeholder")
            return _placeholder_world()

        async def fetch() -> dict[str, Any]:
            return _unwrap(await self.get(WORLD_PATH))

        return await self._cached(CacheKeys.world_info(), fetch, WORLD_INFO_TTL)

    # ── Socket messages ───────────────────────────────────────────

    def send_message(self, message: Mapping[str, Any]) -> None:
        """Send ``{"type": ..., "data": ...}`` over the socket, if it is open.

        Messages are not queued: when the socket is closed the message is
        logged and dropped.
        """
        if self._socket is None or not self._socket.is_open:
            logger.warning("Cannot send message: socket not connected")
            return

        msg_type = message.get("type")
        if not isinstance(msg_type, str) or not msg_type:
            logger.warning("Cannot send message without a type")
            return

        self._socket.send_message(msg_type, message.get("data"))

    def on_message(self, msg_type: str, handler: MessageHandler) -> Unsubscribe:
        """Register a handler for a socket message type. Returns a function
        to unsubscribe."""
        return self._router.subscribe(msg_type, handler)

    def off_message(
        self, msg_type: str, handler: MessageHandler | None = None
    ) -> None:
        self._router.unsubscribe(msg_type, handler)

    # ── Generic requests ──────────────────────────────────────────

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, data: Any = None) -> Any:
        return await self._request("POST", path, json=data)

    async def put(self, path: str, data: Any = None) -> Any:
        return await self._request("PUT", path, json=data)

    async def delete(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request("DELETE", path, params=params)

    # ── Context manager ───────────────────────────────────────────

    async def __aenter__(self) -> FoundryClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ── Private ───────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            return await self._retry.execute_with_retry(
                lambda: self._http.request(method, path, params=params, json=json),
                description=f"{method} {path}",
            )
        except Exception as e:
            logger.error("%s request to %s failed: %s", method, path, e)
            raise

    async def _cached(
        self, key: str, factory: Callable[[], Awaitable[T]], ttl: float
    ) -> T:
        return await self._cache.get_or_set(key, factory, ttl)

    async def _search(
        self, path: str, field: str, params: dict[str, Any], limit: int
    ) -> dict[str, Any]:
        body = await self.get(path, params)
        if isinstance(body, dict) and isinstance(body.get(field), list):
            return body

        data = _unwrap(body)
        entries = data if isinstance(data, list) else []
        total = body.get("total", len(entries)) if isinstance(body, dict) else len(entries)
        return {field: entries, "total": total, "limit": limit}

    async def _try_authenticate(self) -> None:
        try:
            await self.authenticate()
        except AuthenticationError as e:
            logger.warning("Login exchange failed, continuing without a session: %s", e)

    def _socket_headers(self) -> dict[str, str] | None:
        token = self._http.session_token
        return {"Authorization": f"Bearer {token}"} if token else None

    def _setup_socket_listeners(self, socket: SocketTransport) -> None:
        socket.on("message", self._router.dispatch)
        socket.on("close", self._on_socket_close)
        socket.on("error", self._on_socket_error)

    def _on_socket_close(self, code: int, reason: str) -> None:
        logger.info("Socket disconnected (code=%d)", code)
        self._state = "disconnected"

    def _on_socket_error(self, error: Exception) -> None:
        logger.error("Socket error: %s", error)
        self._state = "disconnected"

    def _on_unauthorized(self) -> None:
        self._state = "disconnected"


def _unwrap(body: Any) -> Any:
    """Strip the ``{"success": true, "data": ...}`` envelope of the REST module."""
    if isinstance(body, dict) and "success" in body and "data" in body:
        return body["data"]
    return body


def _empty_search(field: str, limit: int) -> dict[str, Any]:
    return {
        field: [],
        "total": 0,
        "limit": limit,
        "placeholder": True,
        "reason": "REST API module not configured",
    }


def _remote_roll(formula: str, reason: str | None, data: Any) -> DiceRoll:
    if not isinstance(data, dict) or not isinstance(data.get("total"), (int, float)):
        raise FoundryClientError("BAD_RESPONSE", "Dice roll response has no total")

    breakdown = data.get("breakdown")
    if isinstance(breakdown, list):
        breakdown = " | ".join(str(part) for part in breakdown)
    if not isinstance(breakdown, str) or not breakdown:
        breakdown = _terms_breakdown(data.get("terms")) or formula

    return DiceRoll(
        formula=formula,
        total=data["total"],
        breakdown=breakdown,
        reason=reason,
        source="remote",
    )


def _terms_breakdown(terms: Any) -> str:
    if not isinstance(terms, list):
        return ""

    parts: list[str] = []
    for term in terms:
        results = term.get("results") if isinstance(term, dict) else None
        if not isinstance(results, list):
            continue
        values = [r.get("result") if isinstance(r, dict) else r for r in results]
        parts.append(", ".join(str(v) for v in values))
    return " + ".join(parts)


def _placeholder_scene() -> dict[str, Any]:
    return {
        "_id": "mock-scene",
        "name": "Unknown Scene",
        "active": True,
        "navigation": True,
        "width": 4000,
        "height": 3000,
        "padding": 0.25,
        "shiftX": 0,
        "shiftY": 0,
        "globalLight": False,
        "darkness": 0,
        "description": "Scene information requires the REST API module to be installed and configured.",
        "placeholder": True,
    }


def _placeholder_world() -> dict[str, Any]:
    now = datetime.now(timezone.utc).isoformat()
    return {
        "id": "unknown",
        "title": "Foundry VTT World",
        "description": "World information requires the REST API module.",
        "system": "unknown",
        "coreVersion": "unknown",
        "systemVersion": "unknown",
        "playtime": 0,
        "created": now,
        "modified": now,
        "placeholder": True,
    }
