"""Helpers for safe debug logging.

pydht carries broker passwords and database secrets through to its
collaborators. Everything headed for a DEBUG log goes through
:func:`redact_for_log`, which masks sensitive mapping keys and the
userinfo and secret query parameters of any URL it meets.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "auth",
        "backfill_auth",
        "token",
        "secret",
        "authorization",
    }
)

_MASK = "<redacted>"
_MAX_DEPTH = 20


def _is_sensitive(key: object) -> bool:
    return str(key).lower() in _SENSITIVE_VALUE_KEYS


def redact_url(url: str) -> str:
    """Mask sensitive query parameters and userinfo in *url*."""
    parts = urlsplit(url)
    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{_MASK}@{netloc.rsplit('@', 1)[1]}"
    query = parts.query
    if query:
        pairs = [
            (key, _MASK if _is_sensitive(key) else value)
            for key, value in parse_qsl(query, keep_blank_values=True)
        ]
        query = urlencode(pairs, safe="<>")
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


def redact_for_log(value: Any, *, max_string: int = 512) -> Any:
    """Return a redacted copy of *value* suitable for debug logs.

    Unset secrets (``None``) stay visible so a missing credential can be
    told apart from a masked one.
    """
    return _walk(value, max_string, 0)


def _walk(value: Any, max_string: int, depth: int) -> Any:
    if depth > _MAX_DEPTH:
        return "<max-depth>"
    if isinstance(value, Mapping):
        return {
            str(key): _MASK if item is not None and _is_sensitive(key) else _walk(item, max_string, depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_walk(item, max_string, depth + 1) for item in value]
    if isinstance(value, str):
        text = value
        if "://" in value:
            try:
                text = redact_url(value)
            except ValueError:
                return "<unparseable-url>"
        if len(text) > max_string:
            return f"{text[:max_string]}…<truncated>"
        return text
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return repr(value)
