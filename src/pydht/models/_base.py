"""Base model and timestamp coercion shared by pydht value types.

Every pydht model inherits from :class:`DhtBaseModel` which provides:

* frozen instances, so readings can be shared across threads freely.
* ``allow_inf_nan=False``; a DHT sensor that failed a measurement
  reports NaN, which must never reach the buffer or the statistics.
* ``extra="ignore"`` so additional keys on the wire are tolerated.

Timestamps go through :func:`parse_timestamp` via the
:data:`DhtTimestamp` annotated type.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def _from_epoch(value: float) -> datetime:
    if not math.isfinite(value):
        raise ValueError(f"timestamp is not finite: {value!r}")
    if value >= _MS_THRESHOLD:
        value /= 1000.0
    try:
        return datetime.fromtimestamp(value, tz=UTC)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"timestamp out of range: {value!r}") from exc


def parse_timestamp(value: Any) -> datetime:
    """Convert a wire timestamp to a timezone-aware UTC datetime.

    Accepts datetimes (naive ones are taken as UTC), epoch seconds or
    milliseconds (as numbers or numeric strings), ISO-8601 strings and
    RFC 2822 date strings.
    Raises ``ValueError`` for anything else.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, bool):
        raise ValueError("timestamp must not be a boolean")
    if isinstance(value, (int, float)):
        try:
            return _from_epoch(float(value))
        except OverflowError as exc:
            raise ValueError(f"timestamp out of range: {exc}") from exc
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("timestamp is empty")
        try:
            numeric = float(text)
        except ValueError:
            pass
        else:
            return _from_epoch(numeric)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            # RFC 2822, as produced by JavaScript's Date.toUTCString()
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"unparseable timestamp: {value!r}") from exc
        return parse_timestamp(parsed)
    raise ValueError(f"unsupported timestamp type: {type(value).__name__}")


DhtTimestamp = Annotated[datetime, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces ISO strings and epoch values to UTC datetimes."""


class DhtBaseModel(BaseModel):
    """Base for pydht value types."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        allow_inf_nan=False,
    )
