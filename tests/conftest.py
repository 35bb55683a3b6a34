from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import pytest

from pydht._mqtt import MqttListener, MqttSettings
from pydht.config import DhtConfig


class FakeRuntime:
    """In-process stand-in for the paho runtime.

    ``start`` records the attempt and, when ``auto_connect`` is set, reports
    a successful handshake + subscription on the next loop iteration.
    """

    def __init__(self, *, auto_connect: bool = True, stop_delay: float = 0.0) -> None:
        self.auto_connect = auto_connect
        self.stop_delay = stop_delay
        self.start_error: Exception | None = None
        self.starts: list[MqttSettings] = []
        self.start_times: list[float] = []
        self.stops = 0
        self.listener: MqttListener | None = None

    def start(self, settings: MqttSettings, listener: MqttListener) -> None:
        self.starts.append(settings)
        self.start_times.append(time.monotonic())
        self.listener = listener
        if self.start_error is not None:
            error, self.start_error = self.start_error, None
            raise error
        if self.auto_connect:
            asyncio.get_running_loop().call_soon(listener.on_connected)

    def stop(self) -> None:
        if self.stop_delay:
            time.sleep(self.stop_delay)
        self.stops += 1


def make_config(**overrides: object) -> DhtConfig:
    values: dict[str, object] = {
        "broker_url": "mqtts://broker.example.com",
        "username": "mqtt-front",
        "password": "secret",
        "reconnect_period_ms": 20,
        "connect_timeout_ms": 1000,
        "shutdown_timeout": 0.5,
    }
    values.update(overrides)
    return DhtConfig(**values)  # type: ignore[arg-type]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()

