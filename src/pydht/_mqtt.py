"""Internal MQTT settings, URL parsing, and the threaded paho runtime."""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, cast
from urllib.parse import urlsplit

import paho.mqtt.client as mqtt

from pydht.config import DhtConfig
from pydht.exceptions import DhtConfigError

# scheme -> (transport, tls, default port)
_SCHEMES: dict[str, tuple[str, bool, int]] = {
    "mqtt": ("tcp", False, 1883),
    "tcp": ("tcp", False, 1883),
    "mqtts": ("tcp", True, 8883),
    "ssl": ("tcp", True, 8883),
    "ws": ("websockets", False, 80),
    "wss": ("websockets", True, 443),
}

DEFAULT_WS_PATH = "/mqtt"


@dataclass(frozen=True)
class BrokerAddress:
    host: str
    port: int
    transport: str
    tls: bool
    ws_path: str = DEFAULT_WS_PATH


@dataclass(frozen=True)
class MqttSettings:
    """Everything needed to open one MQTT connection."""

    broker: BrokerAddress
    topic: str
    client_id: str
    username: str | None = None
    password: str | None = None
    keepalive: int = 60
    connect_timeout: float = 30.0


def parse_broker_url(raw_url: str) -> BrokerAddress:
    """Parse ``scheme://host[:port][/path]`` or a bare ``host[:port]``.

    A bare host means MQTT over TLS on 8883, which is what hosted brokers
    such as HiveMQ Cloud expect from devices.
    """
    value = raw_url.strip()
    if not value:
        raise DhtConfigError("Broker URL is empty")

    if "://" not in value:
        value = f"mqtts://{value}"
    parts = urlsplit(value)
    scheme = parts.scheme.lower()
    if scheme not in _SCHEMES:
        raise DhtConfigError(f"Unsupported broker URL scheme: {parts.scheme!r}")
    transport, tls, default_port = _SCHEMES[scheme]

    host = parts.hostname
    if not host:
        raise DhtConfigError(f"Broker URL has no host: {raw_url!r}")
    try:
        port = parts.port or default_port
    except ValueError as exc:
        raise DhtConfigError(f"Invalid broker port in {raw_url!r}") from exc

    ws_path = parts.path or DEFAULT_WS_PATH
    return BrokerAddress(host=host, port=port, transport=transport, tls=tls, ws_path=ws_path)


def build_client_id(prefix: str) -> str:
    """Random client id, unique per connection attempt."""
    return f"{prefix}-{secrets.token_hex(4)}"


def settings_from_config(config: DhtConfig) -> MqttSettings:
    """Build connection settings for one attempt from engine configuration."""
    return MqttSettings(
        broker=parse_broker_url(config.broker_url),
        topic=config.topic,
        client_id=config.client_id or build_client_id(config.client_id_prefix),
        username=config.username,
        password=config.password,
        keepalive=config.mqtt_keepalive,
        connect_timeout=config.connect_timeout,
    )


class MqttListener(Protocol):
    """Receiver of runtime events. Always invoked on the asyncio loop."""

    def on_connected(self) -> None:
        ...

    def on_connection_lost(self, reason: str) -> None:
        ...

    def on_message(self, topic: str, payload: bytes) -> None:
        ...


class MqttRuntime(Protocol):
    """Structural interface for the live-feed transport.

    `start` must not block on the network; outcomes are reported through
    the listener. `stop` closes the connection immediately.
    """

    def start(self, settings: MqttSettings, listener: MqttListener) -> None:
        ...

    def stop(self) -> None:
        ...


class PahoMqttRuntime:
    """Threaded paho-mqtt runtime that reports onto an asyncio loop.

    paho's own automatic reconnect is not relied upon; the subscriber
    stops this runtime on any loss and starts a fresh client later.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None

    @property
    def is_running(self) -> bool:
        return self._client is not None

    def _dispatch(self, client: mqtt.Client, fn: Callable[..., None], *args: Any) -> None:
        # Callbacks from a client that has since been replaced are stale.
        if client is not self._client:
            return
        try:
            self._loop.call_soon_threadsafe(fn, *args)
        except RuntimeError:
            self._logger.debug("Event loop closed, dropping MQTT callback", exc_info=True)

    def start(self, settings: MqttSettings, listener: MqttListener) -> None:
        """Connect asynchronously and subscribe once the broker accepts."""
        self.stop()
        broker = settings.broker
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s transport=%s topic=%s client_id=%s",
            broker.host,
            broker.port,
            broker.transport,
            settings.topic,
            settings.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv311,
            transport=broker.transport,
        )
        client.enable_logger(self._logger)
        if settings.username is not None:
            client.username_pw_set(settings.username, settings.password)
        if broker.tls:
            client.tls_set()
        if broker.transport == "websockets":
            client.ws_set_options(path=broker.ws_path)
        client.connect_timeout = settings.connect_timeout

        topic = settings.topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._logger.debug("MQTT connect refused: %s", reason_code)
                self._dispatch(c, listener.on_connection_lost, f"connect refused: {reason_code}")
                return
            self._logger.debug("MQTT connected, subscribing topic=%s", topic)
            c.subscribe(topic, qos=0)

        def on_connect_fail(c: mqtt.Client, _userdata: Any) -> None:
            self._dispatch(c, listener.on_connection_lost, "connect failed")

        def on_subscribe(
            c: mqtt.Client,
            _userdata: Any,
            _mid: int,
            reason_codes: list[Any],
            _properties: Any,
        ) -> None:
            failed = [rc for rc in reason_codes if rc.is_failure]
            if failed:
                self._dispatch(c, listener.on_connection_lost, f"subscribe failed: {failed[0]}")
                return
            self._dispatch(c, listener.on_connected)

        def on_message(c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._dispatch(c, listener.on_message, msg.topic, bytes(msg.payload))

        def on_disconnect(
            c: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            self._dispatch(c, listener.on_connection_lost, f"disconnected: {reason_code}")

        client.on_connect = on_connect
        client.on_connect_fail = on_connect_fail
        client.on_subscribe = on_subscribe
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        self._client = client
        client.connect_async(broker.host, broker.port, keepalive=settings.keepalive)
        client.loop_start()
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Force-close the current client, if any."""
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
