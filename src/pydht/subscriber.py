"""Live-feed subscriber with an explicit reconnect state machine.

Transitions::

    CONNECTING   -> CONNECTED     handshake and subscription succeeded
    CONNECTING   -> DISCONNECTED  refused or timed out
    CONNECTED    -> DISCONNECTED  connection lost or subscription error
    DISCONNECTED -> CONNECTING    after a flat reconnect period

There is no terminal state; the loop runs until :meth:`StreamSubscriber.stop`.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime

import paho.mqtt.client as mqtt

from pydht._mqtt import MqttRuntime, PahoMqttRuntime, parse_broker_url, settings_from_config
from pydht.config import DhtConfig
from pydht.exceptions import DhtDecodeError, DhtTransportError
from pydht.models.reading import Reading
from pydht.models.status import ConnectionState

_logger = logging.getLogger(__name__)

_MAX_TRANSITIONS = 100

_UNSET = object()

StatusCallback = Callable[[ConnectionState, str | None], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StreamSubscriber:
    """Keeps one topic subscription alive and feeds decoded readings to a sink.

    The subscriber is also the :class:`~pydht._mqtt.MqttListener` of its
    runtime, so ``on_connected``/``on_connection_lost``/``on_message`` are
    invoked on the event loop.
    """

    def __init__(
        self,
        config: DhtConfig,
        *,
        on_reading: Callable[[Reading], None],
        on_status: StatusCallback | None = None,
        runtime: MqttRuntime | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        # Fail fast on a malformed URL instead of looping on it forever.
        self._broker = parse_broker_url(config.broker_url)
        self._config = config
        self._on_reading = on_reading
        self._on_status = on_status
        self._runtime = runtime
        self._clock = clock

        self._state = ConnectionState.CONNECTING
        self._transitions: deque[ConnectionState] = deque([self._state], maxlen=_MAX_TRANSITIONS)
        self._last_error: str | None = None
        self._last_update: datetime | None = None
        self._task: asyncio.Task[None] | None = None
        self._attempt: asyncio.Future[None] | None = None
        self._lost: asyncio.Future[str] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def last_update(self) -> datetime | None:
        """Wall-clock time of the last successfully ingested message."""
        return self._last_update

    @property
    def transitions(self) -> list[ConnectionState]:
        """States entered so far, oldest first (bounded history)."""
        return list(self._transitions)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        if self._runtime is None:
            self._runtime = PahoMqttRuntime(loop=asyncio.get_running_loop(), logger=_logger)
        self._task = asyncio.create_task(self._run(), name="pydht-subscriber")

    async def stop(self, timeout: float | None = None) -> None:
        """Cancel the loop and force-close the connection, each within *timeout*."""
        timeout = self._config.shutdown_timeout if timeout is None else timeout
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            done, _pending = await asyncio.wait({task}, timeout=timeout)
            if not done:
                _logger.warning("Subscriber loop did not stop within %.1fs", timeout)

        self._clear_pending()
        await self._close_runtime(timeout)
        self._set_state(ConnectionState.DISCONNECTED)

    async def _close_runtime(self, timeout: float) -> None:
        runtime = self._runtime
        if runtime is None:
            return
        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(loop.run_in_executor(None, runtime.stop), timeout)
        except TimeoutError:
            _logger.warning("MQTT runtime did not close within %.1fs", timeout)
        except Exception:
            _logger.debug("MQTT runtime stop failed", exc_info=True)

    def _clear_pending(self) -> None:
        for fut in (self._attempt, self._lost):
            if fut is not None and not fut.done():
                fut.cancel()
        self._attempt = None
        self._lost = None

    # ------------------------------------------------------------------
    # Connection loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._connect_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                _logger.warning("MQTT connection attempt failed: %s", exc)
                _logger.debug("MQTT connection attempt failure details", exc_info=True)
                await self._close_runtime(self._config.shutdown_timeout)
                self._clear_pending()
                self._set_state(ConnectionState.DISCONNECTED, error=f"connection error: {exc}")
            else:
                self._set_state(ConnectionState.CONNECTED, error=None)
                assert self._lost is not None  # noqa: S101
                reason = await self._lost
                _logger.info("MQTT connection lost: %s", reason)
                await self._close_runtime(self._config.shutdown_timeout)
                self._clear_pending()
                self._set_state(ConnectionState.DISCONNECTED, error=f"connection lost: {reason}")

            await asyncio.sleep(self._config.reconnect_period)

    async def _connect_once(self) -> None:
        runtime = self._runtime
        assert runtime is not None  # noqa: S101
        loop = asyncio.get_running_loop()
        self._attempt = loop.create_future()
        self._lost = loop.create_future()

        settings = settings_from_config(self._config)
        runtime.start(settings, self)
        timeout = self._config.connect_timeout
        try:
            await asyncio.wait_for(self._attempt, timeout)
        except TimeoutError:
            raise DhtTransportError(
                f"Connect timed out after {timeout:g}s",
                endpoint=f"{self._broker.host}:{self._broker.port}",
            ) from None

    # ------------------------------------------------------------------
    # MqttListener
    # ------------------------------------------------------------------

    def on_connected(self) -> None:
        attempt = self._attempt
        if attempt is not None and not attempt.done():
            attempt.set_result(None)

    def on_connection_lost(self, reason: str) -> None:
        attempt = self._attempt
        if attempt is not None and not attempt.done():
            attempt.set_exception(
                DhtTransportError(reason, endpoint=f"{self._broker.host}:{self._broker.port}")
            )
            return
        lost = self._lost
        if lost is not None and not lost.done():
            lost.set_result(reason)

    def on_message(self, topic: str, payload: bytes) -> None:
        if not mqtt.topic_matches_sub(self._config.topic, topic):
            _logger.debug("Ignoring message on unrelated topic %s", topic)
            return
        try:
            reading = Reading.from_payload(payload)
        except DhtDecodeError as exc:
            _logger.debug("Dropping malformed message topic=%s raw=%r", topic, exc.raw)
            self._last_error = f"message error: {exc}"
            self._notify()
            return

        self._on_reading(reading)
        self._last_update = self._clock()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState, *, error: object = _UNSET) -> None:
        if error is not _UNSET:
            self._last_error = error  # type: ignore[assignment]
        if state != self._state:
            _logger.info("MQTT state %s -> %s", self._state, state)
            self._state = state
            self._transitions.append(state)
        self._notify()

    def _notify(self) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(self._state, self._last_error)
        except Exception:
            _logger.exception("Status callback raised")
