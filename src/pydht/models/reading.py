"""Reading value type and its wire decoders."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, Field, ValidationError

from pydht.exceptions import DhtDecodeError
from pydht.models._base import DhtBaseModel, DhtTimestamp

_RAW_SNIPPET = 200


def _snippet(raw: Any) -> str:
    if isinstance(raw, bytes):
        text = raw.decode("utf-8", errors="replace")
    else:
        text = str(raw)
    return text[:_RAW_SNIPPET]


def _describe(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    extra = f" (+{len(errors) - 1} more)" if len(errors) > 1 else ""
    return f"{location}: {first.get('msg', 'invalid')}{extra}"


class Reading(DhtBaseModel):
    """One timestamped temperature/humidity sample.

    ``observed_at`` is the ordering key and always carries full precision
    in UTC. On the wire it is called ``timestamp``.
    """

    temperature: float
    humidity: float
    observed_at: DhtTimestamp = Field(
        validation_alias=AliasChoices("observed_at", "observedAt", "timestamp"),
    )
    device_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("device_id", "deviceId"),
    )

    @classmethod
    def from_payload(cls, payload: bytes | str) -> Reading:
        """Decode a live MQTT message (JSON object)."""
        try:
            return cls.model_validate_json(payload)
        except ValidationError as exc:
            raise DhtDecodeError(
                f"Malformed reading payload: {_describe(exc)}",
                raw=_snippet(payload),
            ) from exc

    @classmethod
    def from_document(cls, document: Any) -> Reading:
        """Decode a historical store document."""
        if not isinstance(document, Mapping):
            raise DhtDecodeError(
                f"Document is not an object: {type(document).__name__}",
                raw=_snippet(document),
            )
        try:
            return cls.model_validate(dict(document))
        except ValidationError as exc:
            raise DhtDecodeError(
                f"Malformed document: {_describe(exc)}",
                raw=_snippet(document),
            ) from exc
