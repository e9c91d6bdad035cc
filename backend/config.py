# backend/config.py
"""
地域（バウンディングボックス）定義とシミュレーション設定

新しい地域を追加する際は SUPPORTED_REGIONS に追記する。
シミュレーション関連の値は環境変数（.env）で上書きできる。
"""
import os
from typing import Dict, Optional

from pydantic import BaseModel, field_validator

from constants import (
    DEFAULT_MOCK_HORIZON_SEC,
    DEFAULT_NOMINAL_JOURNEY_SEC,
    DEFAULT_OSRD_BASE_URL,
    DEFAULT_SIM_END_TIME,
    DEFAULT_SIM_START_TIME,
    DEFAULT_TIME_STEP_SEC,
    OSRD_TIMEOUT,
)
from route_interpolator import parse_time


class BoundingBox(BaseModel):
    """南・西・北・東（度）"""
    south: float
    west: float
    north: float
    east: float

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.south, self.west, self.north, self.east)


class RegionConfig(BaseModel):
    """地域ごとの設定"""
    name: str
    bounding_box: BoundingBox
    description: str = ""


# サポートする地域の定義
SUPPORTED_REGIONS: Dict[str, RegionConfig] = {
    "mumbai": RegionConfig(
        name="Mumbai",
        bounding_box=BoundingBox(south=18.9, west=72.7, north=19.3, east=73.0),
        description="Mumbai Suburban Railway (Western / Central / Harbour)",
    ),
    "navi_mumbai": RegionConfig(
        name="Navi Mumbai",
        bounding_box=BoundingBox(south=18.95, west=72.95, north=19.2, east=73.15),
        description="Harbour line extension and Trans-Harbour line",
    ),
    "thane": RegionConfig(
        name="Thane",
        bounding_box=BoundingBox(south=19.15, west=72.9, north=19.3, east=73.1),
        description="Central line north of Mulund",
    ),
}


def get_region_config(region_id: str) -> Optional[RegionConfig]:
    """
    地域IDから設定を取得する。

    Args:
        region_id: URL パラメータの地域ID (例: "mumbai")

    Returns:
        対応する RegionConfig、未サポートの場合は None
    """
    return SUPPORTED_REGIONS.get(region_id)


class SimulationSettings(BaseModel):
    """シミュレーションバックエンド・モック生成の設定"""
    osrd_base_url: str = DEFAULT_OSRD_BASE_URL
    osrd_timeout_sec: float = OSRD_TIMEOUT
    start_time: str = DEFAULT_SIM_START_TIME
    end_time: str = DEFAULT_SIM_END_TIME
    time_step_sec: int = DEFAULT_TIME_STEP_SEC
    mock_horizon_sec: int = DEFAULT_MOCK_HORIZON_SEC
    # 終着駅の到着時刻が無い列車に使う所要時間
    nominal_journey_sec: int = DEFAULT_NOMINAL_JOURNEY_SEC

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time_format(cls, value: str) -> str:
        # "HH:MM" / "HH:MM:SS" 以外は起動時に弾く
        parse_time(value)
        return value


def get_simulation_settings() -> SimulationSettings:
    """
    環境変数から SimulationSettings を組み立てる。
    未設定の項目はデフォルト値のまま。
    """
    env_map = {
        "osrd_base_url": "OSRD_BASE_URL",
        "osrd_timeout_sec": "OSRD_TIMEOUT_SEC",
        "start_time": "SIM_START_TIME",
        "end_time": "SIM_END_TIME",
        "time_step_sec": "SIM_TIME_STEP_SEC",
        "mock_horizon_sec": "MOCK_HORIZON_SEC",
        "nominal_journey_sec": "NOMINAL_JOURNEY_SEC",
    }
    values = {}
    for field_name, env_name in env_map.items():
        raw = os.getenv(env_name)
        if raw:
            values[field_name] = raw
    return SimulationSettings(**values)
