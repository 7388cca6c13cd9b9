from __future__ import annotations

from typing import Any, Optional


class LogbookError(Exception):
    pass


class ThrottledError(LogbookError):
    """Raised for a throttling response (HTTP 429/503 or the remote's rate-limit code)."""

    def __init__(self, message: str, *, http_status: Optional[int] = None, code: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status
        self.code = code


class ThrottleLimitExceeded(LogbookError):
    """Raised only when a finite max_throttle_retries is configured and exhausted."""

    def __init__(self, attempts: int):
        super().__init__(f"Still throttled after {attempts} attempt(s).")
        self.attempts = attempts


class RemoteAPIError(LogbookError):
    """Non-throttling error payload (or unusable response) from the log source."""

    def __init__(self, code: Any, message: str):
        super().__init__(f"API error {code}: {message}" if code is not None else f"API error: {message}")
        self.code = code
        self.message = message


class CrawlAborted(RemoteAPIError):
    """
    A remote error stopped a crawl part-way. `partial` holds the events fetched
    before the failure and the cursor the crawl had reached.
    """

    def __init__(self, code: Any, message: str, *, partial: Any):
        super().__init__(code, message)
        self.partial = partial


class CacheBusyError(LogbookError):
    """Raised when a pull is requested while another one is still in flight."""


class StoreCorruptionError(LogbookError):
    """Raised when the durable store backend itself cannot be read or written."""
