# backend/osrd_client.py
"""
シミュレーションバックエンド（OSRD 互換 REST API）クライアント

エンドポイント:
  GET  /health
  POST /simulation                  -> {"simulation_id": ...}
  POST /simulation/{id}/run         -> {"results", "trains", "metadata"}
  GET  /simulation/{id}/state?time= -> {"current_time", "trains", "events"}
  GET  /infrastructure

health_check() だけは例外を投げずに HealthStatus を返す。
それ以外の呼び出しは失敗時に BackendUnavailableError を投げる。
"""
from __future__ import annotations

import httpx
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from constants import DEFAULT_OSRD_BASE_URL, OSRD_HEALTH_TIMEOUT, OSRD_TIMEOUT

logger = logging.getLogger(__name__)


class BackendUnavailableError(Exception):
    """バックエンドに到達できない、またはエラー応答を返した"""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message


@dataclass
class HealthStatus:
    healthy: bool
    # HTTP ステータスコード、接続できなかった場合は "CONNECTION_ERROR"
    status: Any
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"healthy": self.healthy, "status": self.status}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result


class OsrdClient:
    """
    httpx.AsyncClient はアプリ側で1つ作って共有する（startup で生成、shutdown で close）。
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str = DEFAULT_OSRD_BASE_URL,
        timeout: float = OSRD_TIMEOUT,
        health_timeout: float = OSRD_HEALTH_TIMEOUT,
    ):
        self._client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.health_timeout = health_timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _request(
        self,
        stage: str,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        url = self._url(path)
        logger.info("OSRD API Request: %s %s", method, url)
        try:
            response = await self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers={"Accept": "application/json"},
                timeout=timeout or self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.error("OSRD %s timed out", stage)
            raise BackendUnavailableError(stage, "request timed out")
        except httpx.HTTPStatusError as e:
            logger.error("OSRD %s HTTP error: %s", stage, e.response.status_code)
            raise BackendUnavailableError(stage, f"HTTP error: {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error("OSRD %s request failed: %s", stage, e)
            raise BackendUnavailableError(stage, str(e) or e.__class__.__name__)
        except ValueError as e:
            # JSON でない応答
            raise BackendUnavailableError(stage, f"invalid JSON response: {e}")

        if not isinstance(data, dict):
            raise BackendUnavailableError(stage, "unexpected response body")

        logger.info("OSRD API Response: %s %s", response.status_code, url)
        return data

    async def health_check(self) -> HealthStatus:
        """
        バックエンドの死活確認。失敗しても例外は投げない。
        """
        try:
            response = await self._client.get(
                self._url("/health"),
                timeout=self.health_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return HealthStatus(
                healthy=False,
                status=e.response.status_code,
                error=f"HTTP error: {e.response.status_code}",
            )
        except httpx.HTTPError as e:
            return HealthStatus(
                healthy=False,
                status="CONNECTION_ERROR",
                error=str(e) or e.__class__.__name__,
            )
        except Exception as e:
            # 不正な URL・クローズ済みクライアントなど
            logger.warning("OSRD health check failed unexpectedly: %r", e)
            return HealthStatus(
                healthy=False,
                status="CONNECTION_ERROR",
                error=str(e) or e.__class__.__name__,
            )

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text}

        return HealthStatus(healthy=True, status=response.status_code, data=data)

    async def create_simulation(self, simulation_config: Dict[str, Any]) -> str:
        """
        シミュレーションを作成し、simulation_id を返す。
        """
        data = await self._request(
            "create_simulation", "POST", "/simulation", json=simulation_config
        )
        simulation_id = data.get("simulation_id")
        if not simulation_id:
            raise BackendUnavailableError("create_simulation", "response has no simulation_id")
        return str(simulation_id)

    async def run_simulation(
        self,
        simulation_id: str,
        start_time: str,
        end_time: str,
        time_step: int,
        real_time: bool = False,
    ) -> Dict[str, Any]:
        """
        シミュレーションを実行する。

        Returns:
            {"simulation_id", "results", "trains", "metadata"}（バックエンドの値をそのまま）
        """
        data = await self._request(
            "run_simulation",
            "POST",
            f"/simulation/{simulation_id}/run",
            json={
                "start_time": start_time,
                "end_time": end_time,
                "time_step": time_step,
                "real_time": real_time,
            },
        )
        return {
            "simulation_id": simulation_id,
            "results": data.get("results"),
            "trains": data.get("trains"),
            "metadata": data.get("metadata"),
        }

    async def get_simulation_state(self, simulation_id: str, time_str: str) -> Dict[str, Any]:
        data = await self._request(
            "get_simulation_state",
            "GET",
            f"/simulation/{simulation_id}/state",
            params={"time": time_str},
        )
        return {
            "current_time": data.get("current_time", time_str),
            "trains": data.get("trains") or [],
            "events": data.get("events") or [],
        }

    async def get_infrastructure(self) -> Dict[str, Any]:
        """線路・駅・信号の情報"""
        data = await self._request("get_infrastructure", "GET", "/infrastructure")
        return {
            "tracks": data.get("tracks"),
            "stations": data.get("stations"),
            "signals": data.get("signals"),
            "metadata": data.get("metadata"),
        }
