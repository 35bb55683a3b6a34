"""Named time windows applied to readings at query time."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import field_validator

from pydht.exceptions import DhtConfigError
from pydht.models._base import DhtBaseModel
from pydht.models.reading import Reading

UNBOUNDED = -1


class TimeWindow(DhtBaseModel):
    """Inclusion predicate over elapsed time.

    ``duration_minutes == -1`` means all history. Membership is evaluated
    against the ``now`` passed in, so a reading can age out between two
    queries without anything being mutated.
    """

    id: str
    duration_minutes: int

    @field_validator("duration_minutes")
    @classmethod
    def _check_duration(cls, value: int) -> int:
        if value != UNBOUNDED and value <= 0:
            raise ValueError("duration_minutes must be -1 or positive")
        return value

    @property
    def is_unbounded(self) -> bool:
        return self.duration_minutes == UNBOUNDED

    def contains(self, reading: Reading, now: datetime) -> bool:
        if self.is_unbounded:
            return True
        return now - reading.observed_at <= timedelta(minutes=self.duration_minutes)

    @classmethod
    def from_id(cls, window_id: str) -> TimeWindow:
        """Look up one of the preset windows by id."""
        try:
            return WINDOW_PRESETS[window_id]
        except KeyError:
            known = ", ".join(WINDOW_PRESETS)
            raise DhtConfigError(f"Unknown time window {window_id!r} (known: {known})") from None


ALL_HISTORY = TimeWindow(id="all", duration_minutes=UNBOUNDED)

WINDOW_PRESETS: dict[str, TimeWindow] = {
    window.id: window
    for window in (
        TimeWindow(id="5m", duration_minutes=5),
        TimeWindow(id="15m", duration_minutes=15),
        TimeWindow(id="30m", duration_minutes=30),
        TimeWindow(id="1h", duration_minutes=60),
        TimeWindow(id="6h", duration_minutes=6 * 60),
        TimeWindow(id="24h", duration_minutes=24 * 60),
        ALL_HISTORY,
    )
}

DEFAULT_WINDOW = WINDOW_PRESETS["30m"]
