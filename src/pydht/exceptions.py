"""Custom exception hierarchy for pydht."""

from __future__ import annotations


class DhtError(Exception):
    """Base exception for all pydht errors."""


class DhtConfigError(DhtError):
    """Invalid or missing configuration."""


class DhtTransportError(DhtError):
    """Transport-level failure (network, non-200, invalid JSON, refused connection)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class DhtDecodeError(DhtError):
    """A live message or stored document could not be decoded into a reading.

    ``raw`` holds a truncated copy of the offending input so callers can
    report it without dumping arbitrarily large payloads.
    """

    def __init__(self, message: str, *, raw: str = "") -> None:
        self.raw = raw
        super().__init__(message)
