from .api.diagnostics import DiagnosticsAPI
from .cache.keys import CacheKeys
from .cache.ttl_cache import CacheEntry, CacheStats, TTLCache
from .client import FoundryClient
from .config import (
    CacheOptions,
    ClientConfig,
    ConnectionState,
    TransportMode,
)
from .dice import DiceRoll, roll_formula, validate_formula
from .errors import (
    AuthenticationError,
    ConfigurationError,
    DisconnectedError,
    FeatureUnavailableError,
    FoundryClientError,
    InvalidFormulaError,
    NotFoundError,
    RequestError,
    RequestTimeoutError,
    ServerUnreachableError,
)
from .protocol.frames import Frame, FrameCodec, decode_frame
from .protocol.message_router import MessageRouter
from .transport.retry import RetryAttempt, RetryExecutor, is_retryable

__all__ = [
    "FoundryClient",
    "DiagnosticsAPI",
    "ClientConfig",
    "CacheOptions",
    "ConnectionState",
    "TransportMode",
    "TTLCache",
    "CacheEntry",
    "CacheStats",
    "CacheKeys",
    "RetryExecutor",
    "RetryAttempt",
    "is_retryable",
    "Frame",
    "FrameCodec",
    "decode_frame",
    "MessageRouter",
    "DiceRoll",
    "roll_formula",
    "validate_formula",
    "FoundryClientError",
    "ConfigurationError",
    "AuthenticationError",
    "NotFoundError",
    "RequestError",
    "ServerUnreachableError",
    "RequestTimeoutError",
    "DisconnectedError",
    "FeatureUnavailableError",
    "InvalidFormulaError",
]
