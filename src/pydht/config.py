"""Engine configuration for pydht."""

from __future__ import annotations

import dataclasses
import math
import os
from typing import Any

from pydht.exceptions import DhtConfigError


def _env_int(key: str, value: str) -> int:
    try:
        return int(value.strip())
    except ValueError as exc:
        raise DhtConfigError(f"{key} must be an integer, got {value!r}") from exc


def _env_float(key: str, value: str) -> float:
    try:
        return float(value.strip())
    except ValueError as exc:
        raise DhtConfigError(f"{key} must be a number, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class DhtConfig:
    """Engine configuration.

    Parameters
    ----------
    broker_url : str
        MQTT broker URL. ``mqtt://``, ``mqtts://``, ``ws://`` and ``wss://``
        schemes are understood; a bare ``host[:port]`` means TLS on 8883.
    username : str or None
        Broker username, forwarded as-is.
    password : str or None
        Broker password, forwarded as-is.
    client_id : str or None
        MQTT client identifier. When ``None`` a random one is generated
        from ``client_id_prefix`` on every connection attempt.
    client_id_prefix : str
        Prefix for generated client identifiers.
    topic : str
        Topic carrying the sensor readings.
    reconnect_period_ms : int
        Flat delay between a disconnect and the next connection attempt.
    connect_timeout_ms : int
        Maximum time a connection attempt may take (handshake + subscribe).
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    backfill_url : str or None
        Base URL of the Firebase Realtime Database holding historical
        measurements. ``None`` disables the backfill.
    backfill_auth : str or None
        Optional database secret appended as the ``auth`` query parameter.
    backfill_path : str
        Collection path under ``backfill_url``.
    backfill_limit : int
        Maximum number of historical readings seeded into the buffer.
    buffer_capacity : int
        Maximum number of readings kept in memory.
    default_window : str
        Id of the time window used when a query does not name one.
    shutdown_timeout : float
        Upper bound, in seconds, for each teardown step.
    """

    broker_url: str
    username: str | None = None
    password: str | None = None
    client_id: str | None = None
    client_id_prefix: str = "pydht"
    topic: str = "esp32/dht22"
    reconnect_period_ms: int = 5000
    connect_timeout_ms: int = 30000
    mqtt_keepalive: int = 60
    backfill_url: str | None = None
    backfill_auth: str | None = None
    backfill_path: str = "measurements"
    backfill_limit: int = 1000
    buffer_capacity: int = 1000
    default_window: str = "30m"
    shutdown_timeout: float = 2.0

    def __post_init__(self) -> None:
        if not self.broker_url or not self.broker_url.strip():
            raise DhtConfigError("broker_url is required")
        if not self.topic.strip():
            raise DhtConfigError("topic must be non-empty")
        if self.reconnect_period_ms < 0:
            raise DhtConfigError("reconnect_period_ms must be >= 0")
        if self.connect_timeout_ms <= 0:
            raise DhtConfigError("connect_timeout_ms must be > 0")
        if self.buffer_capacity < 1:
            raise DhtConfigError("buffer_capacity must be >= 1")
        if self.backfill_limit < 1:
            raise DhtConfigError("backfill_limit must be >= 1")
        if self.mqtt_keepalive <= 0:
            raise DhtConfigError("mqtt_keepalive must be > 0")
        if not math.isfinite(self.shutdown_timeout) or self.shutdown_timeout <= 0:
            raise DhtConfigError("shutdown_timeout must be a finite number > 0")

    @property
    def reconnect_period(self) -> float:
        """Reconnect period in seconds."""
        return self.reconnect_period_ms / 1000.0

    @property
    def connect_timeout(self) -> float:
        """Connect timeout in seconds."""
        return self.connect_timeout_ms / 1000.0

    @classmethod
    def from_env(cls, **overrides: Any) -> DhtConfig:
        """Create configuration from environment variables.

        Reads ``DHT_BROKER_URL`` and the optional ``DHT_*`` variables
        matching each field name. Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        DhtConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "DHT_BROKER_URL": "broker_url",
            "DHT_USERNAME": "username",
            "DHT_PASSWORD": "password",
            "DHT_CLIENT_ID": "client_id",
            "DHT_CLIENT_ID_PREFIX": "client_id_prefix",
            "DHT_TOPIC": "topic",
            "DHT_BACKFILL_URL": "backfill_url",
            "DHT_BACKFILL_AUTH": "backfill_auth",
            "DHT_BACKFILL_PATH": "backfill_path",
            "DHT_DEFAULT_WINDOW": "default_window",
        }
        _ENV_INT_MAP = {
            "DHT_RECONNECT_PERIOD_MS": "reconnect_period_ms",
            "DHT_CONNECT_TIMEOUT_MS": "connect_timeout_ms",
            "DHT_MQTT_KEEPALIVE": "mqtt_keepalive",
            "DHT_BACKFILL_LIMIT": "backfill_limit",
            "DHT_BUFFER_CAPACITY": "buffer_capacity",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_int(env_key, val)

        # shutdown_timeout is the only float, handle separately
        timeout_env = env.get("DHT_SHUTDOWN_TIMEOUT")
        if timeout_env is not None and "shutdown_timeout" not in overrides:
            config_kwargs["shutdown_timeout"] = _env_float("DHT_SHUTDOWN_TIMEOUT", timeout_env)

        config_kwargs.update(overrides)

        if "broker_url" not in config_kwargs:
            raise DhtConfigError("DHT_BROKER_URL is not set")
        return cls(**config_kwargs)
