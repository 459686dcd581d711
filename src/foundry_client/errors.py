from __future__ import annotations


class FoundryClientError(Exception):
    """Base error for all Foundry client errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: object = None,
        status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details
        self.status = status


class ConfigurationError(FoundryClientError):
    """Client configuration is invalid."""

    def __init__(self, message: str) -> None:
        super().__init__("CONFIG", message)


class AuthenticationError(FoundryClientError):
    """Server rejected the credentials (HTTP 401) or the login exchange failed."""

    def __init__(self, message: str = "Unauthorized", details: object = None) -> None:
        super().__init__("UNAUTHORIZED", message, details, status=401)


class NotFoundError(FoundryClientError):
    """Requested entity does not exist on the server."""

    def __init__(self, message: str, details: object = None) -> None:
        super().__init__("NOT_FOUND", message, details, status=404)


class RequestError(FoundryClientError):
    """Server answered with a non-success status."""

    def __init__(self, status: int, message: str, details: object = None) -> None:
        super().__init__("REQUEST_FAILED", message, details, status=status)


class ServerUnreachableError(FoundryClientError):
    """Server could not be reached (network failure, refused connection)."""

    def __init__(self, message: str, code: str = "UNREACHABLE") -> None:
        super().__init__(code, message)


class RequestTimeoutError(ServerUnreachableError):
    """Request timed out waiting for a server response."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="TIMEOUT")


class DisconnectedError(FoundryClientError):
    """Streaming channel is not open."""

    def __init__(self, message: str = "Not connected") -> None:
        super().__init__("DISCONNECTED", message)


class FeatureUnavailableError(FoundryClientError):
    """Operation requires the keyed REST transport."""

    def __init__(self, message: str) -> None:
        super().__init__("UNAVAILABLE", message)


class InvalidFormulaError(FoundryClientError):
    """Dice formula was rejected before evaluation."""

    def __init__(self, message: str) -> None:
        super().__init__("INVALID_FORMULA", message)
