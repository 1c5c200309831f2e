"""Error taxonomy for the voice relay.

All errors are scoped to a single session. Only ConfigurationError is
allowed to stop the process, and only at startup.
"""


class RelayError(Exception):
    """Base exception for relay errors."""

    pass


class ConfigurationError(RelayError):
    """Raised when configuration validation fails at startup."""

    pass


class TransportError(RelayError):
    """Raised for client transport failures (disconnect, malformed frame)."""

    pass


class AsrStreamError(RelayError):
    """Raised when the ASR stream cannot be kept available.

    Attributes:
        attempts: Consecutive reconnect attempts made before giving up
    """

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class BackendError(RelayError):
    """Raised when a completion or synthesis call fails.

    Attributes:
        service: Backend that failed ("completion" or "synthesis")
        status: HTTP-equivalent status code, if the backend returned one
        category: Short failure category (e.g. "http_status", "network")
    """

    def __init__(
        self,
        service: str,
        message: str,
        status: int | None = None,
        category: str = "unknown",
    ) -> None:
        super().__init__(f"{service} failed: {message}")
        self.service = service
        self.status = status
        self.category = category
