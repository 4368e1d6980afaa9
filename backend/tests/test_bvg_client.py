"""Tests for BvgClient against a mocked transport."""

import httpx
import pytest

from transit_live.core import bvg_client
from transit_live.core.bvg_client import PRODUCTS, BvgClient, UpstreamError, UpstreamUnavailable
from transit_live.schemas.trip import NOT_MODIFIED


def make_client(handler) -> BvgClient:
    return BvgClient(base_url="https://bvg.test", transport=httpx.MockTransport(handler))


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr(bvg_client, "RETRY_BACKOFF", [0, 0, 0])


@pytest.mark.asyncio
async def test_fetch_trips_params():
    """One product enabled per listing request, the rest disabled."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"trips": [{"id": "1|1"}, {"id": "1|2"}]})

    client = make_client(handler)
    trips = await client.fetch_trips("tram")
    await client.close()

    assert [t["id"] for t in trips] == ["1|1", "1|2"]
    params = seen[0].url.params
    assert seen[0].url.path == "/trips"
    assert params["tram"] == "true"
    assert all(params[p] == "false" for p in PRODUCTS if p != "tram")
    assert params["operatorNames"] == client.operator_names


@pytest.mark.asyncio
async def test_fetch_trips_no_match_is_empty():
    def handler(request):
        return httpx.Response(404, json={"message": "no trips found", "hafasCode": "NO_MATCH"})

    client = make_client(handler)
    assert await client.fetch_trips("ferry") == []
    await client.close()


@pytest.mark.asyncio
async def test_fetch_trips_client_error():
    def handler(request):
        return httpx.Response(400, json={"message": "too many results"})

    client = make_client(handler)
    with pytest.raises(UpstreamError) as exc_info:
        await client.fetch_trips("bus")
    await client.close()
    assert exc_info.value.status_code == 400
    assert "too many results" in str(exc_info.value)
    assert not isinstance(exc_info.value, UpstreamUnavailable)


@pytest.mark.asyncio
async def test_fetch_trips_retries_server_errors():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json={"trips": [{"id": "1|1"}]})

    client = make_client(handler)
    trips = await client.fetch_trips("subway")
    await client.close()
    assert len(calls) == 3
    assert len(trips) == 1


@pytest.mark.asyncio
async def test_fetch_trips_gives_up_after_retries():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(502)

    client = make_client(handler)
    with pytest.raises(UpstreamUnavailable):
        await client.fetch_trips("subway")
    await client.close()
    assert len(calls) == bvg_client.MAX_RETRIES + 1


@pytest.mark.asyncio
async def test_fetch_all_trips_skips_failed_products():
    def handler(request):
        params = request.url.params
        if params["bus"] == "true":
            return httpx.Response(400, json={"message": "TOO_MANY"})
        product = next(p for p in PRODUCTS if params[p] == "true")
        return httpx.Response(200, json={"trips": [{"id": product}]})

    client = make_client(handler)
    trips = await client.fetch_all_trips()
    await client.close()
    ids = {t["id"] for t in trips}
    assert "bus" not in ids
    assert ids == set(PRODUCTS) - {"bus"}


@pytest.mark.asyncio
async def test_fetch_trip_details():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"trip": {"id": "1|1", "polyline": {}}}, headers={"ETag": 'W/"abc"'})

    client = make_client(handler)
    trip = await client.fetch_trip_details("1|1")
    await client.close()
    assert trip["id"] == "1|1"
    assert seen[0].url.params["polyline"] == "true"
    assert "if-none-match" not in seen[0].headers


@pytest.mark.asyncio
async def test_fetch_trip_details_not_modified():
    """The ETag of the previous response is sent back; 304 means nothing changed."""
    seen = []

    def handler(request):
        seen.append(request)
        if request.headers.get("if-none-match") == 'W/"abc"':
            return httpx.Response(304)
        return httpx.Response(200, json={"trip": {"id": "1|1"}}, headers={"ETag": 'W/"abc"'})

    client = make_client(handler)
    await client.fetch_trip_details("1|1")
    result = await client.fetch_trip_details("1|1")
    assert result is NOT_MODIFIED

    client.forget("1|1")
    result = await client.fetch_trip_details("1|1")
    await client.close()
    assert result == {"id": "1|1"}
    assert "if-none-match" not in seen[-1].headers


@pytest.mark.asyncio
async def test_fetch_trip_details_server_error_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    client = make_client(handler)
    with pytest.raises(UpstreamUnavailable) as exc_info:
        await client.fetch_trip_details("1|1")
    await client.close()
    assert exc_info.value.status_code == 500
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_fetch_trip_details_connection_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(UpstreamUnavailable):
        await client.fetch_trip_details("1|1")
    await client.close()


@pytest.mark.asyncio
async def test_fetch_trip_details_not_found():
    def handler(request):
        return httpx.Response(404, json={"message": "trip not found"})

    client = make_client(handler)
    with pytest.raises(UpstreamError) as exc_info:
        await client.fetch_trip_details("1|1")
    await client.close()
    assert exc_info.value.status_code == 404
