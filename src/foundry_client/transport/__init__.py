from .http import HttpTransport
from .retry import RetryExecutor, is_retryable
from .websocket import SocketTransport

__all__ = ["HttpTransport", "SocketTransport", "RetryExecutor", "is_retryable"]
