from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

import httpx
import pytest_asyncio
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from foundry_client import CacheOptions, ClientConfig, FoundryClient

BASE_URL = "http://foundry.test"

Handler = Callable[[httpx.Request], httpx.Response]


@dataclass
class FakeFoundryServer:
    """Minimal socket endpoint speaking the game server's text framing."""

    server: Server | None = None
    port: int = 0
    received: list[str] = field(default_factory=list)
    paths: list[str] = field(default_factory=list)
    headers: list[dict[str, str]] = field(default_factory=list)
    connections: list[ServerConnection] = field(default_factory=list)
    greeting: str | None = '0{"sid":"abc","pingInterval":25000,"pingTimeout":20000}'
    message_received: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    async def start(self) -> None:
        self.server = await serve(self._handler, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        if self.server is None:
            return
        self.server.close()
        await self.server.wait_closed()

    async def push(self, frame: str) -> None:
        for ws in list(self.connections):
            try:
                await ws.send(frame)
            except ConnectionClosed:
                pass

    async def push_message(self, msg_type: str, data: Any = None) -> None:
        await self.push("42" + json.dumps([msg_type, data]))

    async def close_all(self, code: int = 1001, reason: str = "going away") -> None:
        for ws in list(self.connections):
            await ws.close(code, reason)

    async def wait_for_received(self, count: int, timeout: float = 2.0) -> None:
        async def _wait() -> None:
            while len(self.received) < count:
                self.message_received.clear()
                await self.message_received.wait()

        await asyncio.wait_for(_wait(), timeout=timeout)

    async def _handler(self, ws: ServerConnection) -> None:
        self.connections.append(ws)
        self.paths.append(ws.request.path)
        self.headers.append(dict(ws.request.headers))
        try:
            if self.greeting is not None:
                await ws.send(self.greeting)
            async for raw in ws:
                self.received.append(raw if isinstance(raw, str) else raw.decode())
                self.message_received.set()
        finally:
            self.connections.remove(ws)


@pytest_asyncio.fixture
async def socket_server() -> AsyncIterator[FakeFoundryServer]:
    server = FakeFoundryServer()
    await server.start()
    yield server
    await server.stop()


def json_response(status: int, body: Any) -> httpx.Response:
    return httpx.Response(status, json=body)


def make_rest_client(
    handler: Handler,
    *,
    retry_attempts: int = 2,
    cache: CacheOptions | None = None,
    **overrides: Any,
) -> FoundryClient:
    """Keyed-mode client whose HTTP traffic goes to *handler*."""
    config = ClientConfig(
        base_url=BASE_URL,
        api_key="test-key",
        retry_attempts=retry_attempts,
        retry_delay_ms=1,
        cache=cache or CacheOptions(),
        **overrides,
    )
    return FoundryClient(config, http_transport=httpx.MockTransport(handler))


@pytest_asyncio.fixture
async def socket_client(
    socket_server: FakeFoundryServer,
) -> AsyncIterator[FoundryClient]:
    """Connected plain-socket client."""
    client = FoundryClient(ClientConfig(base_url=socket_server.base_url))
    await client.connect()
    yield client
    await client.close()
