"""
Custom error classes for the Sankhya Sales Assistant.
Structured error handling with error codes across all modules.

Hierarchy:
    AssistantError
    ├── APIError
    │   ├── APITimeoutError
    │   ├── AuthenticationError
    │   └── SessionExpiredError
    ├── DataError
    │   ├── ConfigError
    │   ├── RemoteFetchError
    │   └── CacheError
    └── StreamError
"""


class AssistantError(Exception):
    """Base exception for all Sales Assistant errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict = None):
        self.code = code
        self.details = details or {}
        super().__init__(f"[{code}] {message}")


# --- API Errors ---

class APIError(AssistantError):
    """Base class for external API errors."""

    def __init__(self, message: str, code: str = "API_ERROR",
                 status_code: int = None, url: str = None, **kwargs):
        self.status_code = status_code
        self.url = url
        details = {"status_code": status_code, "url": url, **kwargs}
        super().__init__(message, code=code, details=details)


class APITimeoutError(APIError):
    """Request timed out."""

    def __init__(self, url: str, timeout: float):
        super().__init__(
            f"Request timed out after {timeout}s: {url}",
            code="API_TIMEOUT", url=url, timeout=timeout,
        )


class AuthenticationError(APIError):
    """Login call produced no usable bearer token."""

    def __init__(self, message: str, url: str = None, status_code: int = None):
        super().__init__(
            f"Sankhya authentication failed: {message}",
            code="AUTH_FAILED", url=url, status_code=status_code,
        )


class SessionExpiredError(APIError):
    """Authenticated call rejected with 401/403; cached token was cleared."""

    def __init__(self, url: str, status_code: int = 401):
        super().__init__(
            "Session expired. Try again.",
            code="SESSION_EXPIRED", url=url, status_code=status_code,
        )


# --- Data Errors ---

class DataError(AssistantError):
    """Base class for data processing errors."""
    pass


class ConfigError(DataError):
    """Missing or invalid configuration."""

    def __init__(self, message: str, setting: str = None):
        super().__init__(
            message, code="CONFIG_ERROR",
            details={"setting": setting},
        )


class RemoteFetchError(DataError):
    """A required remote query failed or returned a malformed response."""

    def __init__(self, message: str, source: str = None):
        super().__init__(
            message, code="REMOTE_FETCH_FAILED", details={"source": source},
        )


class CacheError(DataError):
    """Result cache read/write failure."""

    def __init__(self, message: str, key: str = None):
        super().__init__(
            message, code="CACHE_ERROR", details={"key": key},
        )


# --- Streaming Errors ---

class StreamError(AssistantError):
    """The model stream failed mid-emission."""

    def __init__(self, message: str, chunks_sent: int = 0):
        super().__init__(
            message, code="STREAM_FAILED", details={"chunks_sent": chunks_sent},
        )
