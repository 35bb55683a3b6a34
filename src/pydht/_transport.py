"""HTTP transport for the Firebase Realtime Database REST API."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pydht._redact import redact_for_log
from pydht.exceptions import DhtTransportError

_logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


def _preview(body: bytes) -> str:
    return body[:200].decode("utf-8", errors="replace")


class HistoryTransport(Protocol):
    """Structural transport interface used by the backfill loader.

    Having a protocol here makes it easy to pass test doubles/mocks while
    keeping the production implementation (`FirebaseTransport`) concrete.
    """

    async def get_json(self, path: str, params: Mapping[str, str]) -> Any:
        ...


class FirebaseTransport:
    """Read-only REST client for a Firebase Realtime Database."""

    def __init__(
        self,
        base_url: str,
        http_session: aiohttp.ClientSession,
        *,
        auth: str | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_session
        self._auth = auth
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _build_url(self, path: str) -> str:
        path = path.strip("/")
        if not path.endswith(".json"):
            path = f"{path}.json"
        return f"{self._base_url}/{path}"

    async def get_json(self, path: str, params: Mapping[str, str]) -> Any:
        """GET ``{base_url}/{path}.json`` and return the decoded body.

        The database secret, when configured, travels as the ``auth``
        query parameter and is masked in logs.
        """
        url = self._build_url(path)
        query = dict(params)
        if self._auth:
            query["auth"] = self._auth

        _logger.debug("GET %s params=%s", url, redact_for_log(query))

        try:
            async with self._http.get(url, params=query, timeout=self._timeout) as resp:
                body = await resp.read()
                if resp.status != 200:
                    raise DhtTransportError(
                        f"HTTP {resp.status} from {path}: {_preview(body)}",
                        status_code=resp.status,
                        endpoint=path,
                    )
        except DhtTransportError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DhtTransportError(
                f"Request to {path} failed: {exc!r}",
                endpoint=path,
            ) from exc

        try:
            return json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DhtTransportError(
                f"Invalid JSON from {path}: {_preview(body)}",
                endpoint=path,
            ) from exc
