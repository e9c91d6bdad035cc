# backend/track_locator.py
"""
線路スナップ

任意の座標から最寄りの線路（GeoJSON LineString）を探し、
線路上に射影した位置と車体線分を返す。

NOTE:
  - 同距離の線路が複数ある場合は入力順で先のものを採用する。
    結果を再現させたい呼び出し側は、線路リストを安定した順序で渡すこと。
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from constants import DEFAULT_BODY_LENGTH_M, DEFAULT_MAX_SNAP_DISTANCE_M
from geo_utils import Point, nearest_point_on_line, segment_bearing
from train_body import TrainBody, synthesize_body

logger = logging.getLogger(__name__)


@dataclass
class SnapResult:
    """1回のスナップ要求の結果（永続化しない）"""
    snapped_point: Point
    segment_index: int
    distance_m: float
    bearing_deg: float


@dataclass
class TrackMatch:
    """最寄り線路とそのスナップ結果"""
    feature: Dict[str, Any]
    snap: SnapResult
    # 不正な頂点を除いた座標列（segment_index はこの列に対する添字）
    coordinates: List[List[float]]


@dataclass
class SnappedTrain:
    """地図表示用にスナップ済みの列車"""
    id: Optional[Any]
    type: str
    original_position: Point
    snap: SnapResult
    body: TrainBody
    track_properties: Dict[str, Any]
    body_length_m: float
    snapped_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "originalPosition": list(self.original_position),
            "snappedPosition": list(self.snap.snapped_point),
            "trainLine": self.body.as_line(),
            "bearing": self.body.bearing_deg,
            "track": {
                "properties": self.track_properties,
                "index": self.snap.segment_index,
            },
            "metadata": {
                "distanceToTrack": self.snap.distance_m,
                "trainLength": self.body_length_m,
                "snappedAt": self.snapped_at,
            },
        }


def _is_vertex(vertex: Any) -> bool:
    if not isinstance(vertex, (list, tuple)) or len(vertex) < 2:
        return False
    return all(
        isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)
        for v in vertex[:2]
    )


def _line_coords(feature: Dict[str, Any]) -> Optional[List[List[float]]]:
    """
    LineString なら座標列、それ以外（Polygon/Point/欠損）は None。

    [lon, lat] として読めない頂点は捨てる。有効な頂点が残らなければ None。
    """
    geometry = feature.get("geometry") or {}
    if geometry.get("type") != "LineString":
        return None
    raw = geometry.get("coordinates") or []
    if not isinstance(raw, list):
        return None

    coords = [[float(v[0]), float(v[1])] for v in raw if _is_vertex(v)]
    if len(coords) != len(raw):
        logger.warning(
            "Dropped %d malformed vertices from track %s",
            len(raw) - len(coords),
            (feature.get("properties") or {}).get("name", feature.get("id")),
        )
    if not coords:
        return None
    return coords


def find_nearest_track(
    point: Point,
    tracks: Iterable[Dict[str, Any]],
    max_distance_m: float = DEFAULT_MAX_SNAP_DISTANCE_M,
) -> Optional[TrackMatch]:
    """
    point に最も近い線路を探す。

    Args:
        point: (lon, lat)
        tracks: GeoJSON Feature のリスト（LineString 以外は無視）
        max_distance_m: これより遠い線路は候補にしない（ハードな閾値）

    Returns:
        TrackMatch、範囲内に線路が無ければ None
    """
    best: Optional[TrackMatch] = None

    for feature in tracks:
        coords = _line_coords(feature)
        if coords is None:
            continue

        nearest = nearest_point_on_line(point, coords)
        if nearest is None:
            continue

        if nearest.distance_m > max_distance_m:
            continue

        # 厳密に小さい場合のみ更新（同距離なら先勝ち）
        if best is None or nearest.distance_m < best.snap.distance_m:
            best = TrackMatch(
                feature=feature,
                coordinates=coords,
                snap=SnapResult(
                    snapped_point=nearest.point,
                    segment_index=nearest.index,
                    distance_m=nearest.distance_m,
                    bearing_deg=segment_bearing(coords, nearest.index),
                ),
            )

    return best


def snap_train_to_tracks(
    point: Point,
    tracks: Sequence[Dict[str, Any]],
    body_length_m: float = DEFAULT_BODY_LENGTH_M,
    max_distance_m: float = DEFAULT_MAX_SNAP_DISTANCE_M,
    train_id: Optional[Any] = None,
    train_type: str = "local",
) -> Optional[SnappedTrain]:
    """最寄り線路にスナップし、車体線分まで含めた列車表現を返す。"""
    match = find_nearest_track(point, tracks, max_distance_m)
    if match is None:
        logger.warning(
            "No suitable track found for train at %s within %.0fm",
            list(point),
            max_distance_m,
        )
        return None

    body = synthesize_body(match.snap, match.coordinates, body_length_m)

    return SnappedTrain(
        id=train_id,
        type=train_type,
        original_position=point,
        snap=match.snap,
        body=body,
        track_properties=match.feature.get("properties") or {},
        body_length_m=body_length_m,
    )


def _extract_position(train: Dict[str, Any]) -> Optional[Point]:
    raw = train.get("position") or train.get("coordinates")
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        return None
    try:
        return (float(raw[0]), float(raw[1]))
    except (TypeError, ValueError):
        return None


def snap_multiple_trains(
    trains: Iterable[Dict[str, Any]],
    tracks: Sequence[Dict[str, Any]],
    body_length_m: float = DEFAULT_BODY_LENGTH_M,
    max_distance_m: float = DEFAULT_MAX_SNAP_DISTANCE_M,
) -> List[SnappedTrain]:
    """
    複数列車をまとめてスナップする。

    - 位置情報が無い列車は警告ログを出してスキップ
    - 範囲内に線路が無い列車は結果に含めない
    """
    snapped: List[SnappedTrain] = []

    for train in trains:
        position = _extract_position(train)
        if position is None:
            logger.warning("Train missing position data: %s", train)
            continue

        result = snap_train_to_tracks(
            position,
            tracks,
            body_length_m=body_length_m,
            max_distance_m=max_distance_m,
            train_id=train.get("id"),
            train_type=train.get("type") or "local",
        )
        if result is not None:
            snapped.append(result)

    return snapped
