"""Aggregate statistics over a set of readings."""

from __future__ import annotations

from collections.abc import Iterable

from pydht.models._base import DhtBaseModel
from pydht.models.reading import Reading


class StatsSummary(DhtBaseModel):
    """Average/min/max per measured field. All zero for an empty set."""

    avg_temperature: float = 0.0
    min_temperature: float = 0.0
    max_temperature: float = 0.0
    avg_humidity: float = 0.0
    min_humidity: float = 0.0
    max_humidity: float = 0.0
    count: int = 0


def compute_stats(readings: Iterable[Reading]) -> StatsSummary:
    """Single pass over *readings*; never cached."""
    count = 0
    temp_sum = hum_sum = 0.0
    temp_min = temp_max = hum_min = hum_max = 0.0
    for reading in readings:
        t = reading.temperature
        h = reading.humidity
        if count == 0:
            temp_min = temp_max = t
            hum_min = hum_max = h
        else:
            temp_min = min(temp_min, t)
            temp_max = max(temp_max, t)
            hum_min = min(hum_min, h)
            hum_max = max(hum_max, h)
        temp_sum += t
        hum_sum += h
        count += 1

    if count == 0:
        return StatsSummary()
    return StatsSummary(
        avg_temperature=temp_sum / count,
        min_temperature=temp_min,
        max_temperature=temp_max,
        avg_humidity=hum_sum / count,
        min_humidity=hum_min,
        max_humidity=hum_max,
        count=count,
    )
