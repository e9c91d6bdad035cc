# backend/schedule_models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal

from route_interpolator import format_time

# 位置補間の方式。ロード時に1回だけ決める（クエリごとに判定しない）
#   - "geometry": route_geometry（密な座標列）に沿って補間
#   - "stations": route_geometry が無い場合、駅の到着時刻をキーフレームに補間
InterpolationStrategy = Literal["geometry", "stations"]


@dataclass
class RoutePoint:
    """走行経路の1点"""

    lat: float
    lon: float


@dataclass
class Station:
    """停車駅（補間のキーフレーム）"""

    name: str
    lat: float
    lon: float
    # 0:00 からの秒数（ロード時に出発時刻・所要時間から正規化済み）
    arrival_sec: int


@dataclass
class TrainSchedule:
    """1本の列車の運行計画（起動時にロードし、以後は読み取り専用）"""

    # 例: "WR_9001"
    train_id: str
    # 例: "Churchgate → Borivali Local"
    train_name: str
    origin_station: str
    destination_station: str

    # 0:00 からの秒数
    departure_sec: int
    speed_kmph: float

    route_geometry: List[RoutePoint]
    stations: List[Station]

    strategy: InterpolationStrategy
    # 出発から終着までの所要時間（秒）
    # NOTE:
    #   - 終着駅の到着時刻が分かればそれを使い、無ければ名目上の所要時間を使う
    journey_sec: int

    # 元データの追加フィールド（API 返却用にそのまま保持）
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def arrival_sec(self) -> int:
        return self.departure_sec + self.journey_sec

    def to_payload(self) -> Dict[str, Any]:
        """シミュレーションバックエンドに送る形式"""
        return {
            "train_id": self.train_id,
            "train_name": self.train_name,
            "origin_station": self.origin_station,
            "destination_station": self.destination_station,
            "departure_time": format_time(self.departure_sec),
            "speed_kmph": self.speed_kmph,
            "route_geometry": [{"lat": p.lat, "lon": p.lon} for p in self.route_geometry],
            "stations": [
                {
                    "name": s.name,
                    "lat": s.lat,
                    "lon": s.lon,
                    "arrival": format_time(s.arrival_sec),
                }
                for s in self.stations
            ],
            **self.extra,
        }
