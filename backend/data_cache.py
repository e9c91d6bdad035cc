# backend/data_cache.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from constants import DEFAULT_NOMINAL_JOURNEY_SEC, DEFAULT_SPEED_KMPH
from route_interpolator import parse_time as _parse_time_to_seconds
from schedule_models import RoutePoint, Station, TrainSchedule

logger = logging.getLogger(__name__)

TRAINS_FILE = "mumbai_trains.json"
TRACKS_FILE = "mumbai_tracks.geojson"

# 元データのうち TrainSchedule のフィールドとして取り込むキー
_KNOWN_KEYS = {
    "train_id",
    "train_name",
    "origin_station",
    "destination_station",
    "departure_time",
    "speed_kmph",
    "route_geometry",
    "stations",
}


class DataLoadError(Exception):
    """静的データファイルが無い、または読めない"""


def _is_valid_coord(lon: float, lat: float) -> bool:
    """
    座標が地球上の範囲にあるかざっくりチェックする
    """
    return (-180.0 <= lon <= 180.0) and (-90.0 <= lat <= 90.0)


def _parse_route_geometry(raw_points: List[Any], train_id: str) -> List[RoutePoint]:
    """
    [{"lat": .., "lon": ..}, ...] を RoutePoint のリストに変換する。
    不正な点はスキップして警告を出す。
    """
    points: List[RoutePoint] = []
    for i, raw in enumerate(raw_points):
        try:
            lat = float(raw["lat"])
            lon = float(raw["lon"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Train %s route point %d is malformed, skipping", train_id, i)
            continue
        if not _is_valid_coord(lon, lat):
            logger.warning("Train %s route point %d out of range, skipping", train_id, i)
            continue
        points.append(RoutePoint(lat=lat, lon=lon))
    return points


def _raw_arrival_sec(raw: Dict[str, Any], departure_sec: int) -> Optional[int]:
    """
    駅の到着時刻を 0:00 からの秒で返す。無ければ None。

    受け付ける形式:
      - "arrival": "HH:MM:SS"（絶対時刻）
      - "arrival_offset_sec": 出発からの秒数
      - "halt_time_sec": 旧形式。arrival_offset_sec と同じ扱い
    """
    if raw.get("arrival"):
        return _parse_time_to_seconds(str(raw["arrival"]))
    for key in ("arrival_offset_sec", "halt_time_sec"):
        if raw.get(key) is not None:
            return departure_sec + int(raw[key])
    return None


def _normalize_stations(
    raw_stations: List[Dict[str, Any]],
    train_id: str,
    departure_sec: int,
    nominal_journey_sec: int,
) -> Tuple[List[Station], int]:
    """
    駅リストを Station に変換し、所要時間を決める。

    所要時間:
      - 終着駅の到着時刻が出発より後ならその差
      - それ以外は nominal_journey_sec

    到着時刻の正規化:
      - 最初の駅は出発時刻
      - 到着時刻が無い駅は所要時間を駅数で等分した時刻
      - [出発, 終着] にクランプし、単調増加にそろえる
    """
    parsed: List[Tuple[str, float, float, Optional[int]]] = []
    for i, raw in enumerate(raw_stations):
        try:
            name = str(raw["name"])
            lat = float(raw["lat"])
            lon = float(raw["lon"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Train %s station %d is malformed, skipping", train_id, i)
            continue
        if not _is_valid_coord(lon, lat):
            logger.warning("Train %s station %s out of range, skipping", train_id, name)
            continue

        try:
            arrival = _raw_arrival_sec(raw, departure_sec)
        except ValueError as e:
            logger.warning("Train %s station %s: %s", train_id, name, e)
            arrival = None

        parsed.append((name, lat, lon, arrival))

    journey_sec = nominal_journey_sec
    if parsed:
        last_arrival = parsed[-1][3]
        if last_arrival is not None and last_arrival > departure_sec:
            journey_sec = last_arrival - departure_sec

    arrival_limit = departure_sec + journey_sec
    count = len(parsed)
    stations: List[Station] = []
    prev_sec = departure_sec

    for i, (name, lat, lon, arrival) in enumerate(parsed):
        if i == 0:
            sec = departure_sec
        elif arrival is None:
            sec = departure_sec + round(journey_sec * i / (count - 1))
        else:
            sec = arrival

        sec = max(prev_sec, min(arrival_limit, sec))
        stations.append(Station(name=name, lat=lat, lon=lon, arrival_sec=sec))
        prev_sec = sec

    return stations, journey_sec


def _validate_schedule(schedule: TrainSchedule) -> List[str]:
    """
    列車データの簡易妥当性チェック。
    問題があれば warning メッセージのリストを返す。
    """
    warnings: List[str] = []

    # 1. 経路か駅のどちらかは必要
    if not schedule.route_geometry and not schedule.stations:
        warnings.append("no route_geometry and no stations")

    # 2. 経路点の数
    if schedule.route_geometry and len(schedule.route_geometry) < 2:
        warnings.append(f"too few route points: {len(schedule.route_geometry)}")

    # 3. 始発駅・終着駅の名前と駅リストの一致
    if schedule.stations:
        if schedule.origin_station and schedule.stations[0].name != schedule.origin_station:
            warnings.append(
                f"first station {schedule.stations[0].name} != origin {schedule.origin_station}"
            )
        if (
            schedule.destination_station
            and schedule.stations[-1].name != schedule.destination_station
        ):
            warnings.append(
                f"last station {schedule.stations[-1].name} != destination "
                f"{schedule.destination_station}"
            )

    # 4. 速度
    if schedule.speed_kmph <= 0:
        warnings.append(f"non-positive speed: {schedule.speed_kmph}")

    return warnings


def _parse_train_schedules(
    raw_data: List[Dict[str, Any]],
    nominal_journey_sec: int = DEFAULT_NOMINAL_JOURNEY_SEC,
) -> List[TrainSchedule]:
    """
    mumbai_trains.json の配列を TrainSchedule リストに変換する。
    不正なデータはスキップし、警告ログを出す。

    NOTE:
      - 補間方式はここで1回だけ決める。
        route_geometry があれば "geometry"、無ければ "stations"。
      - train_id が重複した場合は後のものをスキップする。
    """
    schedules: List[TrainSchedule] = []
    seen_ids: set[str] = set()
    skipped_count = 0

    for idx, row in enumerate(raw_data):
        try:
            train_id = str(row.get("train_id") or "")
            if not train_id:
                logger.warning("Train at index %d has no 'train_id', skipping", idx)
                skipped_count += 1
                continue
            if train_id in seen_ids:
                logger.warning("Duplicate train_id %s at index %d, skipping", train_id, idx)
                skipped_count += 1
                continue

            departure_sec = _parse_time_to_seconds(str(row.get("departure_time") or ""))

            route_geometry = _parse_route_geometry(row.get("route_geometry") or [], train_id)
            stations, journey_sec = _normalize_stations(
                row.get("stations") or [],
                train_id,
                departure_sec,
                nominal_journey_sec,
            )

            if not route_geometry and not stations:
                logger.warning("Train %s has no route geometry or stations, skipping", train_id)
                skipped_count += 1
                continue

            schedule = TrainSchedule(
                train_id=train_id,
                train_name=str(row.get("train_name") or train_id),
                origin_station=str(row.get("origin_station") or ""),
                destination_station=str(row.get("destination_station") or ""),
                departure_sec=departure_sec,
                speed_kmph=float(row.get("speed_kmph") or DEFAULT_SPEED_KMPH),
                route_geometry=route_geometry,
                stations=stations,
                strategy="geometry" if route_geometry else "stations",
                journey_sec=journey_sec,
                extra={k: v for k, v in row.items() if k not in _KNOWN_KEYS},
            )

            warnings = _validate_schedule(schedule)
            if warnings:
                logger.warning(
                    "Train %s validation warnings: %s", train_id, "; ".join(warnings)
                )

            schedules.append(schedule)
            seen_ids.add(train_id)

        except Exception as e:
            logger.error("Failed to parse train at index %d: %s", idx, e)
            skipped_count += 1
            continue

    if skipped_count > 0:
        logger.warning("Skipped %d train schedules due to errors", skipped_count)

    return schedules


def _line_features(collection: Any) -> List[Dict[str, Any]]:
    """FeatureCollection から LineString の Feature だけを取り出す"""
    if not isinstance(collection, dict):
        raise DataLoadError("track file is not a GeoJSON object")
    features = collection.get("features")
    if not isinstance(features, list):
        raise DataLoadError("track file has no 'features' array")
    return [
        f
        for f in features
        if isinstance(f, dict) and (f.get("geometry") or {}).get("type") == "LineString"
    ]


class DataCache:
    def __init__(
        self,
        data_dir: Path,
        nominal_journey_sec: int = DEFAULT_NOMINAL_JOURNEY_SEC,
    ) -> None:
        self.data_dir = data_dir
        self.nominal_journey_sec = nominal_journey_sec

        # 起動時に1回だけ読み込み、以後は読み取り専用
        self.schedules: List[TrainSchedule] = []
        self._schedules_by_id: Dict[str, TrainSchedule] = {}

        # Overpass に到達できない時に使う線路
        self.fallback_tracks: List[Dict[str, Any]] = []

    def _load_json(self, rel_path: str) -> Any:
        path = self.data_dir / rel_path
        if not path.exists():
            raise DataLoadError(f"JSON file not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise DataLoadError(f"Invalid JSON in {path}: {e}") from e

    def load_all(self) -> None:
        """全ての静的データを読み込む。読めないファイルは空として続行する。"""
        # 1) 列車の運行計画
        try:
            raw_trains = self._load_json(TRAINS_FILE)
            if not isinstance(raw_trains, list):
                raise DataLoadError(f"{TRAINS_FILE} must contain a JSON array")
            self.schedules = _parse_train_schedules(raw_trains, self.nominal_journey_sec)
        except DataLoadError as e:
            logger.error("Failed to load train schedules: %s", e)
            logger.warning("Continuing without train schedule data.")
            self.schedules = []

        self._schedules_by_id = {s.train_id: s for s in self.schedules}
        logger.info("Loaded %d train schedules", len(self.schedules))
        if self.schedules:
            strategies = {s.strategy for s in self.schedules}
            logger.info("Interpolation strategies in use: %s", sorted(strategies))

        # 2) フォールバック線路
        try:
            self.fallback_tracks = _line_features(self._load_json(TRACKS_FILE))
        except DataLoadError as e:
            logger.error("Failed to load fallback tracks: %s", e)
            self.fallback_tracks = []

        logger.info("Loaded %d fallback track features", len(self.fallback_tracks))

    def get_schedule(self, train_id: str) -> Optional[TrainSchedule]:
        return self._schedules_by_id.get(train_id)

    def schedules_payload(self) -> List[Dict[str, Any]]:
        """API 返却・バックエンド送信用の dict リスト"""
        return [s.to_payload() for s in self.schedules]
