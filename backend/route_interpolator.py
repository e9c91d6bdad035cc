# backend/route_interpolator.py
from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import TYPE_CHECKING, Iterable, List, Literal, Optional
import logging
import math

from pydantic import BaseModel

from geo_utils import lerp

if TYPE_CHECKING:
    from schedule_models import Station, TrainSchedule

logger = logging.getLogger(__name__)

TrainStatus = Literal["waiting", "running", "completed"]


# ============================================================================
# 時間系ユーティリティ
# ============================================================================

def parse_time(time_str: str) -> int:
    """
    "HH:MM" または "HH:MM:SS" 形式の文字列を 0〜86399 の秒に変換する。
    不正な形式の場合は ValueError を発生させる。
    """
    if not time_str:
        raise ValueError("Empty time string")

    parts = time_str.strip().split(":")
    if len(parts) == 2:
        h, m = parts
        s = "0"
    elif len(parts) == 3:
        h, m, s = parts
    else:
        raise ValueError(f"Invalid time format: {time_str} (expected HH:MM or HH:MM:SS)")

    try:
        hour = int(h)
        minute = int(m)
        second = int(s)
    except ValueError as e:
        raise ValueError(f"Invalid time components in '{time_str}': {e}")

    if not (0 <= hour <= 23):
        raise ValueError(f"Invalid hour {hour} in '{time_str}' (must be 0-23)")
    if not (0 <= minute <= 59):
        raise ValueError(f"Invalid minute {minute} in '{time_str}' (must be 0-59)")
    if not (0 <= second <= 59):
        raise ValueError(f"Invalid second {second} in '{time_str}' (must be 0-59)")

    return hour * 3600 + minute * 60 + second


def format_time(seconds: float) -> str:
    """秒を HH:MM:SS に変換する（24時で折り返す）"""
    total = int(seconds)
    hours = (total // 3600) % 24
    minutes = (total % 3600) // 60
    secs = total % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


# ============================================================================
# Data Models
# ============================================================================

@dataclass
class TrainPositionSample:
    """
    ある時刻における列車位置（毎回計算し、キャッシュしない）

    - JSON 化しやすいように、プリミティブ型のみを持つ
    """
    train_id: str
    train_name: str

    lat: float
    lon: float
    speed_kmph: float

    status: TrainStatus
    next_station: Optional[str]
    progress: float          # 0.0〜1.0

    time_sec: float          # 0:00 からの秒数


class TrainPositionResponse(BaseModel):
    train_id: str
    train_name: str
    lat: float
    lon: float
    speed: float
    status: str
    next_station: Optional[str]
    progress: float
    time: str

    @classmethod
    def from_dataclass(cls, sample: TrainPositionSample) -> "TrainPositionResponse":
        """
        内部の dataclass を API レスポンスに変換するヘルパー
        """
        data = asdict(sample)
        return cls(
            train_id=data["train_id"],
            train_name=data["train_name"],
            lat=data["lat"],
            lon=data["lon"],
            speed=data["speed_kmph"],
            status=data["status"],
            next_station=data["next_station"],
            progress=data["progress"],
            time=format_time(data["time_sec"]),
        )


# ============================================================================
# 補間ロジック
# ============================================================================

def _progress(schedule: TrainSchedule, query_sec: float) -> float:
    """出発からの経過時間 / 所要時間 を 0.0〜1.0 にクランプして返す"""
    if schedule.journey_sec <= 0:
        return 1.0 if query_sec >= schedule.departure_sec else 0.0
    progress = (query_sec - schedule.departure_sec) / schedule.journey_sec
    return max(0.0, min(1.0, progress))


def _next_station_by_progress(stations: List[Station], progress: float) -> Optional[str]:
    """
    進捗率を駅配列のインデックスに比例配分して次駅を決める。

    NOTE:
      - 幾何的な最寄り駅ではなく、あくまで近似。
        駅間距離が不均一な路線では実際の次駅とずれることがある。
    """
    if not stations:
        return None
    index = int(progress * len(stations))
    if index >= len(stations) - 1:
        return stations[-1].name
    return stations[index + 1].name


def _sample(
    schedule: TrainSchedule,
    query_sec: float,
    lat: float,
    lon: float,
    status: TrainStatus,
    next_station: Optional[str],
    progress: float,
) -> TrainPositionSample:
    return TrainPositionSample(
        train_id=schedule.train_id,
        train_name=schedule.train_name,
        lat=lat,
        lon=lon,
        speed_kmph=schedule.speed_kmph if status == "running" else 0,
        status=status,
        next_station=next_station,
        progress=progress,
        time_sec=query_sec,
    )


def _position_by_geometry(schedule: TrainSchedule, query_sec: float) -> TrainPositionSample:
    points = schedule.route_geometry
    stations = schedule.stations
    first_name = stations[0].name if stations else None
    last_name = stations[-1].name if stations else None

    # 出発前: 始点で待機
    if query_sec < schedule.departure_sec:
        start = points[0]
        return _sample(schedule, query_sec, start.lat, start.lon, "waiting", first_name, 0.0)

    # 到着後: 終点（外挿しない）
    if query_sec >= schedule.arrival_sec:
        end = points[-1]
        return _sample(schedule, query_sec, end.lat, end.lon, "completed", last_name, 1.0)

    progress = _progress(schedule, query_sec)

    exact_index = progress * (len(points) - 1)
    lower_index = int(math.floor(exact_index))
    upper_index = min(lower_index + 1, len(points) - 1)
    segment_fraction = exact_index - lower_index

    p0 = points[lower_index]
    p1 = points[upper_index]
    lat = lerp(p0.lat, p1.lat, segment_fraction)
    lon = lerp(p0.lon, p1.lon, segment_fraction)

    return _sample(
        schedule,
        query_sec,
        lat,
        lon,
        "running",
        _next_station_by_progress(stations, progress),
        progress,
    )


def _position_by_stations(schedule: TrainSchedule, query_sec: float) -> TrainPositionSample:
    """
    route_geometry が無い列車用。駅の到着時刻をキーフレームとして補間する。
    """
    stations = schedule.stations
    first = stations[0]
    last = stations[-1]

    if query_sec < schedule.departure_sec:
        return _sample(schedule, query_sec, first.lat, first.lon, "waiting", first.name, 0.0)

    if query_sec >= schedule.arrival_sec:
        return _sample(schedule, query_sec, last.lat, last.lon, "completed", last.name, 1.0)

    progress = _progress(schedule, query_sec)

    for i in range(len(stations) - 1):
        s0 = stations[i]
        s1 = stations[i + 1]
        t0 = s0.arrival_sec
        t1 = s1.arrival_sec

        # ゼロ長・逆転区間はスキップ
        if t1 <= t0:
            continue

        if t0 <= query_sec < t1:
            fraction = (query_sec - t0) / (t1 - t0)
            return _sample(
                schedule,
                query_sec,
                lerp(s0.lat, s1.lat, fraction),
                lerp(s0.lon, s1.lon, fraction),
                "running",
                s1.name,
                progress,
            )

    # 有効な区間が見つからない場合は、到着済みの最後の駅に留める
    current = first
    next_name = first.name
    for i, station in enumerate(stations):
        if station.arrival_sec <= query_sec:
            current = station
            next_name = stations[min(i + 1, len(stations) - 1)].name
    return _sample(schedule, query_sec, current.lat, current.lon, "running", next_name, progress)


def position_at(schedule: TrainSchedule, query_sec: float) -> Optional[TrainPositionSample]:
    """
    指定時刻（0:00 からの秒数）における列車位置を返す。

    - 状態は経過時間だけで決まる（waiting → running → completed）
    - 同じ入力なら常に同じ結果を返す
    - 座標データが全く無い列車は None（データなし扱い）
    """
    if schedule.strategy == "geometry":
        if not schedule.route_geometry:
            return None
        return _position_by_geometry(schedule, query_sec)

    if not schedule.stations:
        return None
    return _position_by_stations(schedule, query_sec)


def compute_all_positions(
    schedules: Iterable[TrainSchedule],
    query_sec: float,
) -> List[TrainPositionSample]:
    """
    複数列車の位置をまとめて計算する。
    計算できない列車はスキップし、ログに残す。
    """
    result: List[TrainPositionSample] = []
    skipped = 0

    for schedule in schedules:
        try:
            sample = position_at(schedule, query_sec)
        except Exception as e:
            logger.error("Failed to compute position for %s: %s", schedule.train_id, e)
            skipped += 1
            continue

        if sample is None:
            skipped += 1
            continue
        result.append(sample)

    if skipped:
        logger.info("Skipped %d trains without position data", skipped)

    return result


def build_mock_timeline(
    schedule: TrainSchedule,
    start_sec: float,
    horizon_sec: int,
    step_sec: int,
) -> List[TrainPositionSample]:
    """
    start_sec から horizon_sec 先まで step_sec 刻みで位置を並べる。
    （バックエンドが使えない時のローカルシミュレーション用）
    """
    if step_sec <= 0:
        raise ValueError(f"step_sec must be positive: {step_sec}")

    samples: List[TrainPositionSample] = []
    for offset in range(0, horizon_sec + 1, step_sec):
        sample = position_at(schedule, start_sec + offset)
        if sample is None:
            return []
        samples.append(sample)
    return samples
