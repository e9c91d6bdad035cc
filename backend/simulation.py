# backend/simulation.py
"""
シミュレーションの起動と状態問い合わせ

- バックエンド（OSRD 互換）が健全ならそちらでシミュレーションを作成・実行する
- 不健全、または途中で失敗したらローカルのモック（route_interpolator）に切り替える
- アクティブなシミュレーションは1つだけ。SimulationOrchestrator が保持する

NOTE:
  - FastAPI の単一イベントループ上で使う前提でロックは持たない。
    コンテキストの更新は代入1回で置き換える。
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from zoneinfo import ZoneInfo

from config import SimulationSettings
from constants import IST_TZ_NAME
from osrd_client import BackendUnavailableError, OsrdClient
from route_interpolator import (
    TrainPositionResponse,
    build_mock_timeline,
    compute_all_positions,
    format_time,
    parse_time,
)
from schedule_models import TrainSchedule

logger = logging.getLogger(__name__)

SimulationSource = Literal["osrd", "mock"]

IST = ZoneInfo(IST_TZ_NAME)


class NoScheduleDataError(Exception):
    """シミュレーション対象の運行計画が1本も無い"""

    def __init__(self) -> None:
        super().__init__("no schedule data available")


class SimulationQueryError(Exception):
    """状態問い合わせに失敗（シミュレーション未起動・ID 不一致など）"""

    def __init__(self, cause: str) -> None:
        super().__init__(f"simulation query failed: {cause}")
        self.cause = cause


@dataclass
class SimulationOutcome:
    """
    バックエンドを使えたかどうかの判定結果。

    payload があればバックエンドの結果、無ければ fallback_reason にモックへ切り替えた理由。
    """
    payload: Optional[Dict[str, Any]] = None
    fallback_reason: Optional[str] = None

    @property
    def used_backend(self) -> bool:
        return self.payload is not None

    @classmethod
    def fallback(cls, reason: str) -> "SimulationOutcome":
        return cls(payload=None, fallback_reason=reason)


@dataclass
class SimulationContext:
    """アクティブなシミュレーション（orchestrator に1つだけ）"""
    simulation_id: str
    source: SimulationSource
    is_running: bool
    # 起動時の実時刻（epoch 秒）
    started_at: float
    # シミュレーション時計の起点（0:00 からの秒数）
    base_time_sec: int
    schedules: List[TrainSchedule] = field(default_factory=list)
    payload: Dict[str, Any] = field(default_factory=dict)
    fallback_reason: Optional[str] = None

    def current_time_sec(self, now: float) -> int:
        """起点 + 経過時間"""
        elapsed = max(0.0, now - self.started_at)
        return self.base_time_sec + int(elapsed)


@dataclass
class SimulationHandle:
    """API に返すシミュレーション情報"""
    simulation_id: str
    source: SimulationSource
    is_running: bool
    current_time: str
    data: Dict[str, Any]
    fallback_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": True,
            "simulation_id": self.simulation_id,
            "source": self.source,
            "is_running": self.is_running,
            "current_time": self.current_time,
            "data": self.data,
        }
        if self.fallback_reason:
            result["fallback_reason"] = self.fallback_reason
        return result


def ist_seconds_of_day(now: float) -> int:
    """epoch 秒をインド標準時の 0:00 からの秒数に変換する"""
    dt = datetime.fromtimestamp(now, IST)
    return dt.hour * 3600 + dt.minute * 60 + dt.second


def build_simulation_config(schedules: List[TrainSchedule]) -> Dict[str, Any]:
    """バックエンドの POST /simulation に渡す設定"""
    return {
        "name": "Mumbai Local Trains Simulation",
        "description": f"{len(schedules)} Mumbai local trains with realistic schedules",
        "infrastructure": "mumbai_railway_network",
        "trains": [s.to_payload() for s in schedules],
        "simulation_type": "timetable",
    }


class SimulationOrchestrator:
    def __init__(self, client: Optional[OsrdClient], settings: SimulationSettings) -> None:
        self._client = client
        self.settings = settings
        self._context: Optional[SimulationContext] = None

    @property
    def context(self) -> Optional[SimulationContext]:
        return self._context

    @property
    def has_backend(self) -> bool:
        return self._client is not None

    async def _try_backend(self, schedules: List[TrainSchedule]) -> SimulationOutcome:
        """ヘルスチェック → 作成 → 実行。どこかで失敗したら fallback を返す。"""
        if self._client is None:
            return SimulationOutcome.fallback("simulation backend not configured")

        try:
            health = await self._client.health_check()
            if not health.healthy:
                reason = f"backend unhealthy ({health.status}): {health.error}"
                logger.warning(
                    "OSRD backend not available, falling back to mock simulation: %s", reason
                )
                return SimulationOutcome.fallback(reason)

            logger.info("OSRD backend is healthy, running real simulation")
            simulation_id = await self._client.create_simulation(
                build_simulation_config(schedules)
            )
            result = await self._client.run_simulation(
                simulation_id,
                start_time=self.settings.start_time,
                end_time=self.settings.end_time,
                time_step=self.settings.time_step_sec,
                real_time=True,
            )
        except BackendUnavailableError as e:
            logger.warning("OSRD simulation failed, falling back to mock simulation: %s", e)
            return SimulationOutcome.fallback(str(e))
        except Exception as e:
            logger.exception("Unexpected error during OSRD simulation")
            return SimulationOutcome.fallback(f"unexpected error: {e}")

        return SimulationOutcome(payload=result)

    def _build_mock_context(
        self,
        schedules: List[TrainSchedule],
        now: float,
        reason: Optional[str],
    ) -> SimulationContext:
        """
        各列車について、起動時刻（IST）から mock_horizon_sec 先までの位置を並べる。
        """
        simulation_id = f"mock_{int(now * 1000)}"
        start_sec = ist_seconds_of_day(now)

        trains = []
        for schedule in schedules:
            samples = build_mock_timeline(
                schedule,
                start_sec,
                self.settings.mock_horizon_sec,
                self.settings.time_step_sec,
            )
            trains.append(
                {
                    "train_id": schedule.train_id,
                    "train_name": schedule.train_name,
                    "positions": [
                        TrainPositionResponse.from_dataclass(s).model_dump() for s in samples
                    ],
                    "route_geometry": [
                        {"lat": p.lat, "lon": p.lon} for p in schedule.route_geometry
                    ],
                    "stations": schedule.to_payload()["stations"],
                }
            )

        payload = {
            "simulation_id": simulation_id,
            "trains": trains,
            "metadata": {
                "type": "mock_simulation",
                "generated_at": datetime.fromtimestamp(now, timezone.utc).isoformat(),
                "total_trains": len(schedules),
                "start_time": format_time(start_sec),
                "time_step": self.settings.time_step_sec,
                "horizon_sec": self.settings.mock_horizon_sec,
            },
        }

        return SimulationContext(
            simulation_id=simulation_id,
            source="mock",
            is_running=True,
            started_at=now,
            base_time_sec=start_sec,
            schedules=list(schedules),
            payload=payload,
            fallback_reason=reason,
        )

    def _handle(self, context: SimulationContext, now: float) -> SimulationHandle:
        return SimulationHandle(
            simulation_id=context.simulation_id,
            source=context.source,
            is_running=context.is_running,
            current_time=format_time(context.current_time_sec(now)),
            data=context.payload,
            fallback_reason=context.fallback_reason,
        )

    async def activate_simulation(
        self,
        schedules: List[TrainSchedule],
        now: Optional[float] = None,
    ) -> SimulationHandle:
        """
        新しいシミュレーションを起動し、アクティブなコンテキストを置き換える。

        Raises:
            NoScheduleDataError: schedules が空
        """
        if not schedules:
            raise NoScheduleDataError()

        outcome = await self._try_backend(schedules)
        now = time.time() if now is None else now

        if outcome.used_backend:
            payload = outcome.payload or {}
            context = SimulationContext(
                simulation_id=str(payload.get("simulation_id")),
                source="osrd",
                is_running=True,
                started_at=now,
                base_time_sec=parse_time(self.settings.start_time),
                schedules=list(schedules),
                payload=payload,
            )
        else:
            context = self._build_mock_context(schedules, now, outcome.fallback_reason)
            logger.info(
                "Mock simulation %s generated for %d trains",
                context.simulation_id,
                len(schedules),
            )

        self._context = context
        return self._handle(context, now)

    async def ensure_simulation(
        self,
        schedules: List[TrainSchedule],
        now: Optional[float] = None,
    ) -> SimulationHandle:
        """アクティブなシミュレーションがあればそれを返し、無ければ起動する"""
        if self._context is not None and self._context.is_running:
            return self._handle(self._context, time.time() if now is None else now)
        return await self.activate_simulation(schedules, now)

    def _local_positions(self, context: SimulationContext, query_sec: int) -> List[Dict[str, Any]]:
        return [
            TrainPositionResponse.from_dataclass(sample).model_dump()
            for sample in compute_all_positions(context.schedules, query_sec)
        ]

    async def query_state(
        self,
        simulation_id: Optional[str] = None,
        time_str: Optional[str] = None,
        now: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        アクティブなシミュレーションの、ある時刻における状態を返す。

        - time_str が無ければシミュレーション時計の現在時刻
        - simulation_id を省略した場合はアクティブなものを使う

        Raises:
            SimulationQueryError: 未起動、または simulation_id が一致しない
            ValueError: time_str の形式が不正
        """
        context = self._context
        if context is None:
            raise SimulationQueryError("no active simulation")
        if simulation_id and simulation_id != context.simulation_id:
            raise SimulationQueryError(f"unknown simulation id {simulation_id}")

        now = time.time() if now is None else now
        if time_str:
            query_sec = parse_time(time_str)
        else:
            query_sec = context.current_time_sec(now) % 86400
        current_time = format_time(query_sec)

        result: Dict[str, Any] = {
            "success": True,
            "simulation_id": context.simulation_id,
            "source": context.source,
            "current_time": current_time,
        }

        if context.source == "osrd" and self._client is not None:
            try:
                state = await self._client.get_simulation_state(
                    context.simulation_id, current_time
                )
            except BackendUnavailableError as e:
                logger.warning(
                    "OSRD state query failed, using local interpolation: %s", e
                )
                result["fallback_reason"] = str(e)
            except Exception as e:
                logger.exception("Unexpected error during OSRD state query")
                result["fallback_reason"] = f"unexpected error: {e}"
            else:
                result.update(
                    current_time=state["current_time"],
                    trains=state["trains"],
                    events=state["events"],
                )
                return result

        result["trains"] = self._local_positions(context, query_sec)
        result["events"] = []
        return result
