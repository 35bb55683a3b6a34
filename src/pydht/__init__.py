"""pydht - Async telemetry engine for MQTT temperature/humidity sensors."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pydht")
except PackageNotFoundError:
    __version__ = "0+local"
from pydht.backfill import BackfillLoader
from pydht.buffer import BoundedOrderedBuffer
from pydht.config import DhtConfig
from pydht.engine import DhtEngine
from pydht.exceptions import (
    DhtConfigError,
    DhtDecodeError,
    DhtError,
    DhtTransportError,
)
from pydht.models import (
    ALL_HISTORY,
    DEFAULT_WINDOW,
    WINDOW_PRESETS,
    ConnectionState,
    EngineStatus,
    Reading,
    StatsSummary,
    TimeWindow,
    compute_stats,
)
from pydht.subscriber import StreamSubscriber

__all__ = [
    "__version__",
    "ALL_HISTORY",
    "BackfillLoader",
    "BoundedOrderedBuffer",
    "ConnectionState",
    "DEFAULT_WINDOW",
    "DhtConfig",
    "DhtConfigError",
    "DhtDecodeError",
    "DhtEngine",
    "DhtError",
    "DhtTransportError",
    "EngineStatus",
    "Reading",
    "StatsSummary",
    "StreamSubscriber",
    "TimeWindow",
    "WINDOW_PRESETS",
    "compute_stats",
]
