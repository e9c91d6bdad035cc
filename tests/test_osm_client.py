import asyncio

import httpx

from bbox_cache import BoundingBoxCache
from osm_client import build_overpass_query, fetch_railway_tracks, overpass_to_features

OVERPASS_RESPONSE = {
    "elements": [
        {
            "type": "way",
            "id": 101,
            "tags": {"railway": "rail", "name": "Western Railway"},
            "geometry": [{"lat": 18.9220, "lon": 72.8258}, {"lat": 18.9407, "lon": 72.8250}],
        },
        {
            "type": "way",
            "id": 102,
            "tags": {"highway": "primary"},
            "geometry": [{"lat": 18.92, "lon": 72.82}, {"lat": 18.93, "lon": 72.83}],
        },
        {
            "type": "way",
            "id": 103,
            "tags": {"railway": "platform"},
            "geometry": [{"lat": 18.92, "lon": 72.82}],
        },
        {"type": "relation", "id": 201, "tags": {"railway": "rail"}, "members": []},
        {"type": "node", "id": 301, "lat": 18.92, "lon": 72.82, "tags": {"railway": "station"}},
    ]
}


def _run(handler, cache, bbox=(18.9, 72.7, 19.3, 73.0)):
    async def _fetch():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await fetch_railway_tracks(client, cache, *bbox)

    return asyncio.run(_fetch())


def test_query_contains_bbox_and_railway_filters():
    query = build_overpass_query(18.9, 72.7, 19.3, 73.0)
    assert "[out:json][timeout:25];" in query
    assert 'way["railway"](18.9,72.7,19.3,73.0);' in query
    assert 'relation["railway"](18.9,72.7,19.3,73.0);' in query
    assert "out geom;" in query


def test_only_railway_ways_become_linestrings():
    features = overpass_to_features(OVERPASS_RESPONSE)

    assert len(features) == 1
    feature = features[0]
    assert feature["id"] == "way/101"
    assert feature["geometry"]["type"] == "LineString"
    # GeoJSON 順 [lon, lat]
    assert feature["geometry"]["coordinates"][0] == [72.8258, 18.9220]
    assert feature["properties"] == {"railway": "rail", "name": "Western Railway"}


def test_fetch_caches_successful_response():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=OVERPASS_RESPONSE)

    cache = BoundingBoxCache()
    first = _run(handler, cache)
    second = _run(handler, cache)

    assert len(calls) == 1
    assert calls[0].method == "POST"
    assert first["metadata"]["trackCount"] == 1
    assert first["metadata"]["boundingBox"] == {"south": 18.9, "west": 72.7, "north": 19.3, "east": 73.0}
    assert second is first
    assert cache.stats()["stats"]["hits"] == 1


def test_errors_return_empty_collection_and_are_not_cached():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(504, text="Gateway Timeout")

    cache = BoundingBoxCache()
    result = _run(handler, cache)

    assert result["features"] == []
    assert result["error"] == "Failed to fetch railway data"
    assert result["metadata"]["trackCount"] == 0
    assert cache.keys() == []

    _run(handler, cache)
    assert len(calls) == 2


def test_connection_error_returns_empty_collection():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    result = _run(handler, BoundingBoxCache())
    assert result["features"] == []
    assert "error" in result


def test_timeout_returns_empty_collection():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    result = _run(handler, BoundingBoxCache())
    assert result["features"] == []
