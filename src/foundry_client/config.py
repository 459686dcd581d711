from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, TypeAlias
from urllib.parse import urlsplit

from .errors import ConfigurationError

ConnectionState: TypeAlias = Literal["disconnected", "connecting", "connected"]
TransportMode: TypeAlias = Literal["rest", "hybrid", "websocket"]

DEFAULT_TIMEOUT_MS = 10_000
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_MS = 1_000
DEFAULT_SOCKET_PATH = "/socket.io/"
DEFAULT_CACHE_TTL_SECONDS = 300
DEFAULT_CACHE_MAX_SIZE = 1_000

# Engine.IO protocol revision spoken by the game server's socket endpoint.
ENGINE_IO_QUERY = "EIO=4&transport=websocket"


@dataclass(frozen=True)
class CacheOptions:
    enabled: bool = True
    ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    max_size: int = DEFAULT_CACHE_MAX_SIZE

    def __post_init__(self) -> None:
        if self.ttl_seconds <= 0:
            raise ConfigurationError(
                f"Cache ttl_seconds must be positive, got {self.ttl_seconds}"
            )
        if self.max_size < 1:
            raise ConfigurationError(
                f"Cache max_size must be at least 1, got {self.max_size}"
            )


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for a Foundry VTT server.

    The transport mode is fixed by which credentials are present: an API
    key selects the keyed REST mode, a username/password pair selects the
    hybrid socket mode, and neither selects the plain socket mode.
    """

    base_url: str
    api_key: str | None = None
    username: str | None = None
    password: str | None = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    socket_path: str = DEFAULT_SOCKET_PATH
    cache: CacheOptions = field(default_factory=CacheOptions)

    def __post_init__(self) -> None:
        _validate_base_url(self.base_url)
        if self.timeout_ms <= 0:
            raise ConfigurationError(
                f"timeout_ms must be positive, got {self.timeout_ms}"
            )
        if self.retry_attempts < 0:
            raise ConfigurationError(
                f"retry_attempts must not be negative, got {self.retry_attempts}"
            )
        if self.retry_delay_ms < 0:
            raise ConfigurationError(
                f"retry_delay_ms must not be negative, got {self.retry_delay_ms}"
            )
        if not self.socket_path.startswith("/"):
            raise ConfigurationError(
                f"socket_path must start with '/', got {self.socket_path!r}"
            )

    @property
    def mode(self) -> TransportMode:
        if self.api_key:
            return "rest"
        if self.username and self.password:
            return "hybrid"
        return "websocket"

    @property
    def socket_url(self) -> str:
        parts = urlsplit(self.base_url)
        scheme = "wss" if parts.scheme == "https" else "ws"
        prefix = parts.path.rstrip("/")
        return f"{scheme}://{parts.netloc}{prefix}{self.socket_path}?{ENGINE_IO_QUERY}"


def _validate_base_url(url: str) -> None:
    if not isinstance(url, str) or not url.strip():
        raise ConfigurationError("base_url is required")

    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise ConfigurationError(f"Invalid base_url {url!r}: {e}") from None

    if parts.scheme not in ("http", "https"):
        raise ConfigurationError(
            f"base_url must use http or https, got {url!r}"
        )
    if not parts.hostname:
        raise ConfigurationError(f"base_url has no host: {url!r}")
