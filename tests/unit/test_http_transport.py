from __future__ import annotations

import json

import httpx
import pytest

from foundry_client.errors import (
    AuthenticationError,
    NotFoundError,
    RequestError,
    RequestTimeoutError,
    ServerUnreachableError,
)
from foundry_client.transport.http import HttpTransport

BASE_URL = "http://foundry.test"


def make_transport(handler, **kwargs) -> HttpTransport:
    return HttpTransport(BASE_URL, transport=httpx.MockTransport(handler), **kwargs)


class TestHttpTransport:
    @pytest.mark.asyncio
    async def test_attaches_api_key(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        transport = make_transport(handler, api_key="secret")
        assert await transport.request("GET", "/api/status") == {"ok": True}
        await transport.aclose()

        assert seen[0].headers["x-api-key"] == "secret"
        assert "authorization" not in seen[0].headers
        assert seen[0].headers["user-agent"].startswith("foundry-client/")

    @pytest.mark.asyncio
    async def test_attaches_bearer_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        transport = make_transport(handler)
        await transport.request("GET", "/api/world")
        transport.session_token = "tok-1"
        await transport.request("GET", "/api/world")
        await transport.aclose()

        assert "authorization" not in seen[0].headers
        assert seen[1].headers["authorization"] == "Bearer tok-1"

    @pytest.mark.asyncio
    async def test_drops_none_params_and_sends_json(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"created": True})

        transport = make_transport(handler)
        await transport.request(
            "POST", "/api/thing", params={"a": 1, "b": None}, json={"x": 2}
        )
        await transport.aclose()

        assert dict(seen[0].url.params) == {"a": "1"}
        assert json.loads(seen[0].content) == {"x": 2}

    @pytest.mark.asyncio
    async def test_unauthorized_fires_callback(self) -> None:
        fired: list[bool] = []
        transport = make_transport(
            lambda r: httpx.Response(401, json={"error": "Invalid API key"}),
            api_key="bad",
            on_unauthorized=lambda: fired.append(True),
        )

        with pytest.raises(AuthenticationError, match="Invalid API key") as exc_info:
            await transport.request("GET", "/api/actors")
        await transport.aclose()

        assert fired == [True]
        assert exc_info.value.status == 401

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        transport = make_transport(lambda r: httpx.Response(404))
        with pytest.raises(NotFoundError) as exc_info:
            await transport.request("GET", "/api/actors/x")
        await transport.aclose()
        assert exc_info.value.code == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_server_error_carries_status_and_body(self) -> None:
        transport = make_transport(
            lambda r: httpx.Response(503, json={"message": "Maintenance"})
        )
        with pytest.raises(RequestError, match="Maintenance") as exc_info:
            await transport.request("GET", "/api/world")
        await transport.aclose()
        assert exc_info.value.status == 503
        assert exc_info.value.details == {"message": "Maintenance"}

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        transport = make_transport(lambda r: httpx.Response(200, text="pong"))
        assert await transport.request("GET", "/ping") == "pong"
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_empty_body(self) -> None:
        transport = make_transport(lambda r: httpx.Response(204))
        assert await transport.request("DELETE", "/api/thing/1") is None
        await transport.aclose()

    @pytest.mark.asyncio
    async def test_connect_error_is_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = make_transport(handler)
        with pytest.raises(ServerUnreachableError) as exc_info:
            await transport.request("GET", "/api/status")
        await transport.aclose()
        assert exc_info.value.code == "UNREACHABLE"

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        transport = make_transport(handler)
        with pytest.raises(RequestTimeoutError) as exc_info:
            await transport.request("GET", "/api/status")
        await transport.aclose()
        assert exc_info.value.code == "TIMEOUT"
