# backend/train_body.py
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from constants import DEFAULT_BODY_LENGTH_M
from geo_utils import Point, destination, segment_bearing

if TYPE_CHECKING:
    # 型ヒント用。実行時には import しない（循環 import 回避）
    from track_locator import SnapResult


@dataclass
class TrainBody:
    """
    スナップ位置を中心とした列車車体の線分。

    tail → head の向きが進行方向（線路の頂点順）になる。
    """
    tail_point: Point
    head_point: Point
    bearing_deg: float

    def as_line(self) -> list[list[float]]:
        """GeoJSON / 地図表示用の [[lon, lat], [lon, lat]]"""
        return [list(self.tail_point), list(self.head_point)]


def synthesize_body(
    snap: SnapResult,
    track_coords: Sequence[Sequence[float]],
    body_length_m: float = DEFAULT_BODY_LENGTH_M,
) -> TrainBody:
    """
    スナップ結果と線路形状から車体線分を作る。

    Args:
        snap: find_nearest_track() で得たスナップ結果
        track_coords: スナップ先線路の座標列 [[lon, lat], ...]
        body_length_m: 車体長（メートル）

    Returns:
        TrainBody。head/tail はスナップ点から body_length_m / 2 ずつ離れる。
    """
    bearing = segment_bearing(track_coords, snap.segment_index)
    half = body_length_m / 2

    head = destination(snap.snapped_point, half, bearing)
    tail = destination(snap.snapped_point, half, bearing + 180)

    return TrainBody(tail_point=tail, head_point=head, bearing_deg=bearing)
