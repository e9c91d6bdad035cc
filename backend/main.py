# backend/main.py
from __future__ import annotations

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
from dotenv import load_dotenv
import os
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
import uvicorn
from datetime import datetime, timezone
from pydantic import BaseModel

from bbox_cache import BoundingBoxCache
from config import SUPPORTED_REGIONS, get_region_config, get_simulation_settings
from constants import DEFAULT_BODY_LENGTH_M
from data_cache import DataCache
from osm_client import fetch_railway_tracks
from osrd_client import BackendUnavailableError, OsrdClient
from route_interpolator import TrainPositionResponse, parse_time, position_at
from sample_trains import DEMO_TRAIN_POSITIONS, get_sample_trains
from simulation import (
    NoScheduleDataError,
    SimulationOrchestrator,
    SimulationQueryError,
    ist_seconds_of_day,
)
from track_locator import snap_multiple_trains, snap_train_to_tracks

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

load_dotenv()

app = FastAPI(title="Mumbai Railway Tracks API", version="1.0.0")

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

settings = get_simulation_settings()
data_cache = DataCache(DATA_DIR, nominal_journey_sec=settings.nominal_journey_sec)
bbox_cache = BoundingBoxCache()

STARTED_AT = time.time()


@app.on_event("startup")
async def startup_event():
    data_cache.load_all()
    logger.info(
        "Data loaded: %d train schedules, %d fallback tracks",
        len(data_cache.schedules),
        len(data_cache.fallback_tracks),
    )
    app.state.http_client = httpx.AsyncClient()
    app.state.osrd_client = OsrdClient(
        app.state.http_client,
        base_url=settings.osrd_base_url,
        timeout=settings.osrd_timeout_sec,
    )
    app.state.orchestrator = SimulationOrchestrator(app.state.osrd_client, settings)
    logger.info("httpx.AsyncClient initialized (OSRD backend: %s)", settings.osrd_base_url)


@app.on_event("shutdown")
async def shutdown_event():
    if hasattr(app.state, "http_client"):
        await app.state.http_client.aclose()
        logger.info("httpx.AsyncClient closed")


# CORS 設定
_default_origins = "http://localhost:3000,http://localhost:5173"
_raw_origins = os.getenv("FRONTEND_URL", _default_origins)
frontend_urls = [
    origin.strip()
    for origin in _raw_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=frontend_urls,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SnapRequest(BaseModel):
    position: Optional[List[Any]] = None
    trainId: Optional[Any] = None
    trainType: Optional[str] = None
    trainBodyMeters: Optional[float] = None


class SnapMultipleRequest(BaseModel):
    trains: Optional[List[Dict[str, Any]]] = None
    trainBodyMeters: Optional[float] = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_bbox(
    s: Optional[str], w: Optional[str], n: Optional[str], e: Optional[str]
) -> Tuple[float, float, float, float]:
    """クエリパラメータのバウンディングボックスを検証して float に変換する"""
    if s is None or w is None or n is None or e is None:
        raise HTTPException(
            status_code=400,
            detail="Missing bounding box parameters: s, w, n, e are required",
        )
    try:
        south, west, north, east = float(s), float(w), float(n), float(e)
    except ValueError:
        raise HTTPException(status_code=400, detail="Bounding box parameters must be numbers")

    if south >= north or west >= east:
        raise HTTPException(
            status_code=400,
            detail="Invalid bounding box: south must be < north and west must be < east",
        )
    return south, west, north, east


async def _region_tracks(region_id: str = "mumbai") -> Dict[str, Any]:
    """
    地域の線路を取得する。
    Overpass から取れなければ同梱のフォールバック線路を返す。
    """
    region = get_region_config(region_id)
    if region is None:
        raise HTTPException(status_code=404, detail=f"Region not found: {region_id}")

    south, west, north, east = region.bounding_box.as_tuple()
    collection = await fetch_railway_tracks(
        app.state.http_client, bbox_cache, south, west, north, east
    )
    if collection.get("features"):
        return collection

    if data_cache.fallback_tracks:
        logger.warning(
            "No railway data from OSM for %s, serving %d bundled tracks",
            region_id,
            len(data_cache.fallback_tracks),
        )
        return {
            "type": "FeatureCollection",
            "features": data_cache.fallback_tracks,
            "metadata": {
                "fetchedAt": _now_iso(),
                "boundingBox": region.bounding_box.model_dump(),
                "trackCount": len(data_cache.fallback_tracks),
                "source": "bundled_fallback",
            },
        }
    return collection


async def _tracks_for_snapping() -> List[Dict[str, Any]]:
    features = (await _region_tracks("mumbai")).get("features") or []
    if not features:
        raise HTTPException(
            status_code=503,
            detail="No railway data available: railway tracks not loaded, please try again later",
        )
    return features


def _body_length(train_body_meters: Optional[float]) -> float:
    """未指定ならデフォルト車体長。0 以下は 400"""
    if train_body_meters is None:
        return DEFAULT_BODY_LENGTH_M
    if train_body_meters <= 0:
        raise HTTPException(status_code=400, detail="trainBodyMeters must be positive")
    return train_body_meters


def _require_schedules():
    if not data_cache.schedules:
        raise HTTPException(status_code=404, detail="no schedule data available")
    return data_cache.schedules


@app.get("/")
async def root():
    return {
        "name": "Mumbai Railway Tracks API",
        "version": "1.0.0",
        "description": "Railway tracks from OpenStreetMap, train snapping and schedule based simulation",
        "endpoints": {
            "GET /api/osm?s={south}&w={west}&n={north}&e={east}": "Fetch railway tracks for bounding box",
            "GET /api/mumbai": "Get Mumbai railway tracks with predefined coordinates",
            "GET /api/regions": "List supported regions",
            "GET /api/regions/{region_id}/tracks": "Get railway tracks of a region",
            "POST /api/snap": "Snap single train to nearest track",
            "POST /api/snap-multiple": "Snap multiple trains to tracks",
            "GET /api/demo-trains": "Get demo trains snapped to Mumbai tracks",
            "GET /api/trains/sample": "Get sample trains snapped to Mumbai tracks",
            "GET /api/trains/mumbai": "Get loaded train schedules",
            "GET /api/trains/{train_id}/position?time=HH:MM:SS": "Interpolated train position",
            "GET /api/osrd/health": "Simulation backend health",
            "GET /api/osrd/infrastructure": "Simulation backend infrastructure",
            "GET /api/osrd/simulation": "Active simulation (starts one if needed)",
            "POST /api/osrd/simulation": "Start a new simulation",
            "GET /api/osrd/simulation/state?simulation_id=&time=": "Simulation state at a time",
            "GET /api/cache/stats": "Get cache statistics",
            "DELETE /api/cache": "Clear cache",
            "GET /api/health": "Health check",
        },
    }


@app.get("/api/health")
async def health():
    return {
        "status": "OK",
        "timestamp": _now_iso(),
        "uptime": time.time() - STARTED_AT,
        "version": "1.0.0",
        "schedules_loaded": len(data_cache.schedules),
        "fallback_tracks_loaded": len(data_cache.fallback_tracks),
    }


# ============================================================================
# 線路（OSM）
# ============================================================================

@app.get("/api/osm")
async def get_osm_tracks(
    s: Optional[str] = Query(None),
    w: Optional[str] = Query(None),
    n: Optional[str] = Query(None),
    e: Optional[str] = Query(None),
):
    south, west, north, east = _parse_bbox(s, w, n, e)
    logger.info("GET /api/osm bbox=%s,%s,%s,%s", south, west, north, east)
    return await fetch_railway_tracks(
        app.state.http_client, bbox_cache, south, west, north, east
    )


@app.get("/api/regions")
async def get_regions():
    return {
        "regions": [
            {
                "id": region_id,
                "name": region.name,
                "description": region.description,
                "bounding_box": region.bounding_box.model_dump(),
            }
            for region_id, region in SUPPORTED_REGIONS.items()
        ]
    }


@app.get("/api/regions/{region_id}/tracks")
async def get_region_tracks(region_id: str):
    logger.info("GET /api/regions/%s/tracks", region_id)
    return await _region_tracks(region_id)


@app.get("/api/mumbai")
async def get_mumbai_tracks():
    return await _region_tracks("mumbai")


# ============================================================================
# スナップ
# ============================================================================

@app.post("/api/snap")
async def snap_train(body: SnapRequest):
    position = body.position
    if not position or len(position) != 2:
        raise HTTPException(
            status_code=400,
            detail="Invalid position: position must be an array of [longitude, latitude]",
        )
    try:
        point = (float(position[0]), float(position[1]))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid position: coordinates must be numbers")

    body_length = _body_length(body.trainBodyMeters)

    tracks = await _tracks_for_snapping()

    snapped = snap_train_to_tracks(
        point,
        tracks,
        body_length_m=body_length,
        train_id=body.trainId or f"train_{int(time.time() * 1000)}",
        train_type=body.trainType or "local",
    )
    if snapped is None:
        raise HTTPException(
            status_code=404,
            detail=f"No suitable track found near position {list(point)}",
        )
    return snapped.to_dict()


@app.post("/api/snap-multiple")
async def snap_trains(body: SnapMultipleRequest):
    if body.trains is None:
        raise HTTPException(
            status_code=400,
            detail="Invalid trains data: trains must be an array of train objects",
        )

    body_length = _body_length(body.trainBodyMeters)
    tracks = await _tracks_for_snapping()
    snapped = snap_multiple_trains(
        body.trains,
        tracks,
        body_length_m=body_length,
    )
    return {
        "totalTrains": len(body.trains),
        "successfullySnapped": len(snapped),
        "failed": len(body.trains) - len(snapped),
        "trains": [t.to_dict() for t in snapped],
    }


@app.get("/api/demo-trains")
async def get_demo_trains():
    tracks = await _tracks_for_snapping()
    snapped = snap_multiple_trains(DEMO_TRAIN_POSITIONS, tracks)
    return {
        "description": "Demo trains for Mumbai railway system",
        "totalTrains": len(DEMO_TRAIN_POSITIONS),
        "successfullySnapped": len(snapped),
        "trains": [t.to_dict() for t in snapped],
        "metadata": {
            "generatedAt": _now_iso(),
            "tracksLoaded": len(tracks),
        },
    }


@app.get("/api/trains/sample")
async def get_sample_trains_snapped():
    sample = get_sample_trains()
    features = (await _region_tracks("mumbai")).get("features") or []

    if not features:
        # 線路が無い場合はスナップせずに返す
        return {
            "success": True,
            "trains": [
                dict(t, snapped=False, message="Railway data not available for snapping")
                for t in sample
            ],
        }

    snapped = snap_multiple_trains(sample, features)
    return {
        "success": True,
        "trains": [t.to_dict() for t in snapped],
        "statistics": {
            "totalSampleTrains": len(sample),
            "successfullySnapped": len(snapped),
            "trackCount": len(features),
        },
        "metadata": {
            "description": f"{len(sample)} sample trains positioned on Mumbai railway network",
            "generatedAt": _now_iso(),
        },
    }


@app.get("/api/cache/stats")
async def get_cache_stats():
    return bbox_cache.stats()


@app.delete("/api/cache")
async def clear_cache():
    bbox_cache.clear()
    return {"success": True, "message": "Cache cleared successfully"}


# ============================================================================
# 運行計画・位置補間
# ============================================================================

@app.get("/api/trains/mumbai")
async def get_mumbai_trains():
    return {
        "success": True,
        "total_trains": len(data_cache.schedules),
        "trains": data_cache.schedules_payload(),
    }


@app.get("/api/trains/{train_id}/position", response_model=TrainPositionResponse)
async def get_train_position(train_id: str, time_str: Optional[str] = Query(None, alias="time")):
    """
    指定時刻（省略時はインド標準時の現在時刻）における列車位置
    """
    schedule = data_cache.get_schedule(train_id)
    if schedule is None:
        raise HTTPException(status_code=404, detail=f"Train not found: {train_id}")

    if time_str:
        try:
            query_sec = parse_time(time_str)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    else:
        query_sec = ist_seconds_of_day(datetime.now(timezone.utc).timestamp())

    sample = position_at(schedule, query_sec)
    if sample is None:
        raise HTTPException(status_code=404, detail=f"No position data for train: {train_id}")
    return TrainPositionResponse.from_dataclass(sample)


# ============================================================================
# シミュレーション（OSRD / モック）
# ============================================================================

@app.get("/api/osrd/health")
async def osrd_health():
    status = await app.state.osrd_client.health_check()
    return status.to_dict()


@app.get("/api/osrd/infrastructure")
async def osrd_infrastructure():
    try:
        data = await app.state.osrd_client.get_infrastructure()
    except BackendUnavailableError as e:
        raise HTTPException(status_code=503, detail=f"Simulation backend unavailable: {e}")
    return {"success": True, **data}


@app.get("/api/osrd/simulation")
async def get_simulation():
    schedules = _require_schedules()
    try:
        handle = await app.state.orchestrator.ensure_simulation(schedules)
    except NoScheduleDataError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return handle.to_dict()


@app.post("/api/osrd/simulation")
async def start_simulation():
    schedules = _require_schedules()
    try:
        handle = await app.state.orchestrator.activate_simulation(schedules)
    except NoScheduleDataError as e:
        raise HTTPException(status_code=404, detail=str(e))
    logger.info("Simulation %s activated (source=%s)", handle.simulation_id, handle.source)
    return handle.to_dict()


@app.get("/api/osrd/simulation/state")
async def get_simulation_state(
    simulation_id: Optional[str] = Query(None),
    time_str: Optional[str] = Query(None, alias="time"),
):
    try:
        return await app.state.orchestrator.query_state(simulation_id, time_str)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SimulationQueryError as e:
        raise HTTPException(status_code=409, detail=str(e))


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3001")),
    )
