"""Telemetry engine: live feed + one-shot backfill over one bounded buffer."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import aiohttp

from pydht._mqtt import MqttRuntime
from pydht._redact import redact_for_log
from pydht._transport import FirebaseTransport, HistoryTransport
from pydht.backfill import BackfillLoader
from pydht.buffer import BoundedOrderedBuffer
from pydht.config import DhtConfig
from pydht.exceptions import DhtTransportError
from pydht.models.reading import Reading
from pydht.models.stats import StatsSummary, compute_stats
from pydht.models.status import ConnectionState, EngineStatus
from pydht.models.window import TimeWindow
from pydht.subscriber import StreamSubscriber

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DhtEngine:
    """Owns the reading buffer and its two feeders.

    Usage::

        async with DhtEngine(config) as engine:
            ...
            readings = engine.filtered_view(TimeWindow.from_id("1h"))
            summary = engine.stats(readings)

    The query surface (:meth:`filtered_view`, :meth:`stats`,
    :meth:`status`, :meth:`latest`) is synchronous and reads only the
    in-memory snapshot.
    """

    def __init__(
        self,
        config: DhtConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        runtime: MqttRuntime | None = None,
        transport: HistoryTransport | None = None,
        on_status: Callable[[EngineStatus], None] | None = None,
        on_reading: Callable[[Reading], None] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._default_window = TimeWindow.from_id(config.default_window)
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._clock = clock
        self._on_status_cb = on_status
        self._on_reading_cb = on_reading

        self._buffer = BoundedOrderedBuffer(config.buffer_capacity)
        self._subscriber = StreamSubscriber(
            config,
            on_reading=self._ingest,
            on_status=self._on_subscriber_status,
            runtime=runtime,
            clock=clock,
        )
        self._backfill_task: asyncio.Task[None] | None = None
        self._backfill_started = False
        self._backfill_loaded = 0
        self._backfill_error: str | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> DhtEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def start(self) -> None:
        """Start the live feed and, when configured, the backfill."""
        _logger.debug(
            "Starting engine config=%s",
            redact_for_log(
                {
                    "broker_url": self._config.broker_url,
                    "topic": self._config.topic,
                    "username": self._config.username,
                    "password": self._config.password,
                    "backfill_url": self._config.backfill_url,
                    "backfill_auth": self._config.backfill_auth,
                    "buffer_capacity": self._config.buffer_capacity,
                }
            ),
        )
        if self._transport is None and self._config.backfill_url:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = FirebaseTransport(
                self._config.backfill_url,
                self._http_session,
                auth=self._config.backfill_auth,
            )

        self._subscriber.start()

        if self._transport is not None and not self._backfill_started:
            self._backfill_started = True
            loader = BackfillLoader(self._transport, path=self._config.backfill_path)
            self._backfill_task = asyncio.create_task(self._run_backfill(loader), name="pydht-backfill")

    async def aclose(self) -> None:
        """Cancel a pending backfill, force-close the feed, release HTTP resources."""
        timeout = self._config.shutdown_timeout
        task = self._backfill_task
        if task is not None and not task.done():
            task.cancel()
            done, _pending = await asyncio.wait({task}, timeout=timeout)
            if not done:
                _logger.warning("Backfill did not cancel within %.1fs", timeout)

        await self._subscriber.stop(timeout)

        if not self._external_session and self._http_session is not None:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._http_session.close(), timeout)
            self._http_session = None
            self._transport = None

    # ------------------------------------------------------------------
    # Feeders
    # ------------------------------------------------------------------

    async def _run_backfill(self, loader: BackfillLoader) -> None:
        try:
            readings = await loader.load(self._config.backfill_limit)
        except DhtTransportError as exc:
            _logger.warning("Backfill failed, continuing with live data only: %s", exc)
            self._backfill_error = f"backfill error: {exc}"
            self._emit_status()
            return
        except Exception as exc:
            # Injected transports may raise anything; the live feed keeps running.
            _logger.warning("Backfill failed unexpectedly, continuing with live data only: %r", exc)
            _logger.debug("Backfill failure details", exc_info=True)
            self._backfill_error = f"backfill error: {exc!r}"
            self._emit_status()
            return

        self._buffer.insert(readings)
        self._backfill_loaded = len(readings)
        self._emit_status()

    async def wait_backfill(self) -> None:
        """Wait for the one-shot backfill to finish (no-op when disabled)."""
        task = self._backfill_task
        if task is None:
            return
        await asyncio.wait({task})

    def _ingest(self, reading: Reading) -> None:
        self._buffer.insert((reading,))
        if self._on_reading_cb is not None:
            try:
                self._on_reading_cb(reading)
            except Exception:
                _logger.exception("Reading callback raised")

    def _on_subscriber_status(self, _state: ConnectionState, _error: str | None) -> None:
        self._emit_status()

    def _emit_status(self) -> None:
        if self._on_status_cb is None:
            return
        try:
            self._on_status_cb(self.status())
        except Exception:
            _logger.exception("Status callback raised")

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    @property
    def config(self) -> DhtConfig:
        return self._config

    @property
    def subscriber(self) -> StreamSubscriber:
        return self._subscriber

    def filtered_view(
        self,
        window: TimeWindow | str | None = None,
        *,
        now: datetime | None = None,
    ) -> list[Reading]:
        """Buffered readings inside *window*, oldest first.

        *window* may be a :class:`TimeWindow`, a preset id, or ``None`` for
        the configured default. *now* defaults to the wall clock and is
        read on every call.
        """
        if window is None:
            window = self._default_window
        elif isinstance(window, str):
            window = TimeWindow.from_id(window)
        snapshot = self._buffer.snapshot()
        if window.is_unbounded:
            return list(snapshot)
        now = self._clock() if now is None else now
        return [reading for reading in snapshot if window.contains(reading, now)]

    @staticmethod
    def stats(readings: Iterable[Reading]) -> StatsSummary:
        return compute_stats(readings)

    def latest(self) -> Reading | None:
        return self._buffer.latest()

    def status(self) -> EngineStatus:
        # A live-feed error is more recent than the one-shot backfill error.
        last_error = self._subscriber.last_error or self._backfill_error
        return EngineStatus(
            connection=self._subscriber.state,
            last_update=self._subscriber.last_update,
            last_error=last_error,
            total_stored=self._buffer.size(),
            backfill_loaded=self._backfill_loaded,
        )

