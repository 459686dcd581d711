from __future__ import annotations

import logging
from typing import Any, Callable

import httpx

from ..errors import (
    AuthenticationError,
    NotFoundError,
    RequestError,
    RequestTimeoutError,
    ServerUnreachableError,
)

logger = logging.getLogger("foundry_client")

API_KEY_HEADER = "x-api-key"
USER_AGENT = "foundry-client/0.1.0"


class HttpTransport:
    """REST channel to the game server's API module.

    Request hooks attach the active credential: the static API key when one
    is configured, otherwise the bearer token from a login exchange. A 401
    response fires *on_unauthorized* before the error is raised.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_ms: int = 10_000,
        on_unauthorized: Callable[[], None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._on_unauthorized = on_unauthorized
        self._token: str | None = None
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_ms / 1000,
            headers={
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
            event_hooks={
                "request": [self._attach_credentials],
                "response": [self._check_unauthorized],
            },
            transport=transport,
        )

    @property
    def session_token(self) -> str | None:
        return self._token

    @session_token.setter
    def session_token(self, token: str | None) -> None:
        self._token = token

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises the ``FoundryClientError`` subclass matching the failure.
        """
        logger.debug("%s %s", method, path)
        try:
            response = await self._client.request(
                method, path, params=_drop_none(params), json=json
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"{method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise ServerUnreachableError(
                f"{method} {path} failed: {str(e) or type(e).__name__}"
            ) from e

        body = _decode_body(response)
        if response.is_success:
            return body

        message = _error_message(body) or response.reason_phrase
        status = response.status_code
        if status == 401:
            raise AuthenticationError(f"{method} {path}: {message}", details=body)
        if status == 404:
            raise NotFoundError(f"{method} {path}: {message}", details=body)
        raise RequestError(status, f"{method} {path} -> {status}: {message}", details=body)

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- Hooks ------------------------------------------------------------

    async def _attach_credentials(self, request: httpx.Request) -> None:
        if self._api_key:
            request.headers[API_KEY_HEADER] = self._api_key
        elif self._token:
            request.headers["Authorization"] = f"Bearer {self._token}"

    async def _check_unauthorized(self, response: httpx.Response) -> None:
        if response.status_code != 401:
            return
        logger.warning(
            "Authentication failed for %s %s, connection must be re-established",
            response.request.method,
            response.request.url.path,
        )
        if self._on_unauthorized is not None:
            self._on_unauthorized()


def _drop_none(params: dict[str, Any] | None) -> dict[str, Any] | None:
    if params is None:
        return None
    return {k: v for k, v in params.items() if v is not None}


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _error_message(body: Any) -> str | None:
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None
