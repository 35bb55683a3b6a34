from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp import test_utils

from pydht._transport import FirebaseTransport
from pydht.backfill import BackfillLoader
from pydht.exceptions import DhtTransportError


class _FakeTransport:
    def __init__(self, body: Any = None, error: Exception | None = None) -> None:
        self.body = body
        self.error = error
        self.calls: list[tuple[str, dict[str, str]]] = []

    async def get_json(self, path: str, params: Mapping[str, str]) -> Any:
        self.calls.append((path, dict(params)))
        if self.error is not None:
            raise self.error
        return self.body


def _doc(ts: str, temperature: float = 20.0) -> dict[str, Any]:
    return {"device_id": "ESP32-DHT11", "temperature": temperature, "humidity": 45.0, "timestamp": ts}


@pytest.mark.asyncio
async def test_load_sorts_out_of_order_documents() -> None:
    transport = _FakeTransport(
        {
            "-Na3": _doc("2026-01-01T10:03:00Z"),
            "-Na1": _doc("2026-01-01T10:01:00Z"),
            "-Na5": _doc("2026-01-01T10:05:00Z"),
            "-Na2": _doc("2026-01-01T10:02:00Z"),
            "-Na4": _doc("2026-01-01T10:04:00Z"),
        }
    )
    loader = BackfillLoader(transport)

    readings = await loader.load(100)

    assert [r.observed_at.minute for r in readings] == [1, 2, 3, 4, 5]
    assert transport.calls == [("measurements", {"orderBy": '"timestamp"', "limitToLast": "100"})]


@pytest.mark.asyncio
async def test_load_keeps_most_recent_limit() -> None:
    transport = _FakeTransport({f"k{i}": _doc(f"2026-01-01T10:0{i}:00Z") for i in range(6)})
    readings = await BackfillLoader(transport).load(2)
    assert [r.observed_at.minute for r in readings] == [4, 5]


@pytest.mark.asyncio
async def test_malformed_documents_are_skipped(caplog: pytest.LogCaptureFixture) -> None:
    transport = _FakeTransport(
        {
            "good": _doc("2026-01-01T10:00:00Z"),
            "bad-ts": _doc("not a date"),
            "not-object": 42,
            "missing": {"temperature": 1.0},
        }
    )
    loader = BackfillLoader(transport)

    readings = await loader.load(10)

    assert len(readings) == 1
    assert loader.skipped == 3
    assert "bad-ts" in caplog.text


@pytest.mark.asyncio
async def test_out_of_range_timestamp_skips_only_that_document() -> None:
    transport = _FakeTransport(
        {
            "good": _doc("2026-01-01T10:00:00Z"),
            "huge": {"temperature": 1.0, "humidity": 2.0, "timestamp": int("1" + "0" * 400)},
        }
    )
    loader = BackfillLoader(transport)

    readings = await loader.load(10)

    assert [r.observed_at for r in readings] == [datetime(2026, 1, 1, 10, tzinfo=UTC)]
    assert loader.skipped == 1


@pytest.mark.asyncio
async def test_null_body_is_empty() -> None:
    assert await BackfillLoader(_FakeTransport(None)).load(10) == []


@pytest.mark.asyncio
async def test_non_object_body_is_transport_error() -> None:
    with pytest.raises(DhtTransportError):
        await BackfillLoader(_FakeTransport(["a", "b"])).load(10)


@pytest.mark.asyncio
async def test_transport_error_propagates() -> None:
    transport = _FakeTransport(error=DhtTransportError("HTTP 503", status_code=503))
    with pytest.raises(DhtTransportError):
        await BackfillLoader(transport).load(10)


@pytest.mark.asyncio
async def test_limit_must_be_positive() -> None:
    with pytest.raises(ValueError):
        await BackfillLoader(_FakeTransport({})).load(0)


# ------------------------------------------------------------------
# FirebaseTransport against an in-process HTTP server
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_firebase_transport_appends_auth_and_decodes_json() -> None:
    seen: dict[str, Any] = {}

    async def handler(request: web.Request) -> web.Response:
        seen["path"] = request.path
        seen["query"] = dict(request.query)
        return web.json_response({"-Nx": _doc("2026-01-01T10:00:00Z")})

    app = web.Application()
    app.router.add_get("/measurements.json", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            transport = FirebaseTransport(str(server.make_url("/")), session, auth="db-secret")
            readings = await BackfillLoader(transport).load(50)
    finally:
        await server.close()

    assert seen["path"] == "/measurements.json"
    assert seen["query"]["auth"] == "db-secret"
    assert seen["query"]["limitToLast"] == "50"
    assert readings[0].observed_at == datetime(2026, 1, 1, 10, tzinfo=UTC)


@pytest.mark.asyncio
async def test_firebase_transport_non_200_raises() -> None:
    async def handler(_request: web.Request) -> web.Response:
        return web.Response(status=401, text='{"error": "Permission denied"}')

    app = web.Application()
    app.router.add_get("/measurements.json", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            transport = FirebaseTransport(str(server.make_url("/")), session)
            with pytest.raises(DhtTransportError) as excinfo:
                await transport.get_json("measurements", {})
    finally:
        await server.close()

    assert excinfo.value.status_code == 401
    assert excinfo.value.endpoint == "measurements"


@pytest.mark.asyncio
async def test_firebase_transport_unreachable_raises() -> None:
    async with aiohttp.ClientSession() as session:
        transport = FirebaseTransport("http://127.0.0.1:9", session, timeout=2.0)
        with pytest.raises(DhtTransportError):
            await transport.get_json("measurements", {})


@pytest.mark.asyncio
async def test_firebase_transport_invalid_utf8_raises() -> None:
    async def handler(_request: web.Request) -> web.Response:
        return web.Response(body=b"\xff\xfe{bad", content_type="application/json")

    app = web.Application()
    app.router.add_get("/measurements.json", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            transport = FirebaseTransport(str(server.make_url("/")), session)
            with pytest.raises(DhtTransportError, match="Invalid JSON"):
                await transport.get_json("measurements", {})
    finally:
        await server.close()
