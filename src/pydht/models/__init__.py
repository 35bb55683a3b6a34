"""Value types for pydht."""

from pydht.models._base import DhtBaseModel, DhtTimestamp, parse_timestamp
from pydht.models.reading import Reading
from pydht.models.stats import StatsSummary, compute_stats
from pydht.models.status import ConnectionState, EngineStatus
from pydht.models.window import ALL_HISTORY, DEFAULT_WINDOW, WINDOW_PRESETS, TimeWindow

__all__ = [
    "ALL_HISTORY",
    "DEFAULT_WINDOW",
    "WINDOW_PRESETS",
    "ConnectionState",
    "DhtBaseModel",
    "DhtTimestamp",
    "EngineStatus",
    "Reading",
    "StatsSummary",
    "TimeWindow",
    "compute_stats",
    "parse_timestamp",
]
