# backend/osm_client.py
"""
OpenStreetMap Overpass API クライアント

バウンディングボックス内の鉄道線路を取得し、GeoJSON FeatureCollection に変換する。
結果は BoundingBoxCache に保存する（失敗時の空レスポンスはキャッシュしない）。
"""
from __future__ import annotations

import httpx
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from bbox_cache import BoundingBoxCache
from constants import HTTP_TIMEOUT, OVERPASS_URL

logger = logging.getLogger(__name__)


def build_overpass_query(south: float, west: float, north: float, east: float) -> str:
    bbox = f"{south},{west},{north},{east}"
    return f"""
[out:json][timeout:25];
(
  way["railway"]({bbox});
  relation["railway"]({bbox});
);
out geom;
"""


def _metadata(
    south: float, west: float, north: float, east: float, track_count: int
) -> Dict[str, Any]:
    return {
        "fetchedAt": datetime.now(timezone.utc).isoformat(),
        "boundingBox": {"south": south, "west": west, "north": north, "east": east},
        "trackCount": track_count,
    }


def overpass_to_features(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Overpass の JSON（out geom）から線路の LineString Feature を作る。

    - geometry を持つ way のうち、railway タグがあるものだけを採用
    - relation は LineString にならないので対象外
    - 座標は GeoJSON に合わせて [lon, lat]
    """
    features: List[Dict[str, Any]] = []

    for element in data.get("elements", []):
        if element.get("type") != "way":
            continue

        tags = element.get("tags") or {}
        if not tags.get("railway"):
            continue

        geometry = element.get("geometry") or []
        coords = [
            [node["lon"], node["lat"]]
            for node in geometry
            if node and "lat" in node and "lon" in node
        ]
        if len(coords) < 2:
            continue

        features.append(
            {
                "type": "Feature",
                "id": f"way/{element.get('id')}",
                "geometry": {"type": "LineString", "coordinates": coords},
                "properties": dict(tags),
            }
        )

    return features


async def fetch_railway_tracks(
    client: httpx.AsyncClient,
    cache: BoundingBoxCache,
    south: float,
    west: float,
    north: float,
    east: float,
) -> Dict[str, Any]:
    """
    バウンディングボックス内の鉄道線路を取得する。

    Returns:
        GeoJSON FeatureCollection（metadata 付き）。
        取得に失敗した場合は features が空で "error" キーを持つ。
    """
    key = cache.make_key(south, west, north, east)
    cached = cache.get(key)
    if cached is not None:
        logger.info("Cache hit for bounding box: %s,%s,%s,%s", south, west, north, east)
        return cached

    logger.info(
        "Fetching railway data from OSM for bounding box: %s,%s,%s,%s",
        south, west, north, east,
    )

    try:
        response = await client.post(
            OVERPASS_URL,
            data={"data": build_overpass_query(south, west, north, east)},
            timeout=HTTP_TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()
    except httpx.TimeoutException:
        logger.error("Overpass request timed out")
        return _error_collection(south, west, north, east)
    except httpx.HTTPStatusError as e:
        logger.error("Overpass HTTP error: %s", e.response.status_code)
        return _error_collection(south, west, north, east)
    except (httpx.HTTPError, ValueError) as e:
        logger.error("Error fetching railway data from OSM: %s", e)
        return _error_collection(south, west, north, east)

    features = overpass_to_features(data)
    collection = {
        "type": "FeatureCollection",
        "features": features,
        "metadata": _metadata(south, west, north, east, len(features)),
    }

    cache.set(key, collection)
    logger.info("Fetched and cached %d railway tracks", len(features))
    return collection


def _error_collection(south: float, west: float, north: float, east: float) -> Dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [],
        "error": "Failed to fetch railway data",
        "metadata": _metadata(south, west, north, east, 0),
    }
