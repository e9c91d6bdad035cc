# backend/geo_utils.py
"""
幾何計算ユーティリティ

座標はすべて (lon, lat) のタプルで扱う（GeoJSON と同じ順序）。
距離はメートル、方位は度（北=0、時計回り、-180〜180）。
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from constants import EARTH_RADIUS_M

Point = tuple[float, float]


@dataclass
class NearestPoint:
    """ポリライン上の最近傍点"""
    point: Point
    index: int          # 最近傍点を含む区間の始点インデックス
    distance_m: float   # 入力点からの距離


def distance_m(a: Point, b: Point) -> float:
    """Haversine formula"""
    lon1, lat1 = a
    lon2, lat2 = b
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bearing_deg(a: Point, b: Point) -> float:
    """a から b への初期方位（度）。"""
    lon1, lat1 = map(math.radians, a)
    lon2, lat2 = map(math.radians, b)
    dlon = lon2 - lon1
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return math.degrees(math.atan2(y, x))


def destination(origin: Point, dist_m: float, bearing: float) -> Point:
    """
    origin から bearing 方向に dist_m 進んだ地点を大円上で求める。

    数十 km・数度の緯度範囲を扱うため平面近似は使わない。
    """
    lon1, lat1 = map(math.radians, origin)
    theta = math.radians(bearing)
    delta = dist_m / EARTH_RADIUS_M

    lat2 = math.asin(
        math.sin(lat1) * math.cos(delta)
        + math.cos(lat1) * math.sin(delta) * math.cos(theta)
    )
    lon2 = lon1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(lat1),
        math.cos(delta) - math.sin(lat1) * math.sin(lat2),
    )
    return (math.degrees(lon2), math.degrees(lat2))


def nearest_point_on_segment(p: Point, a: Point, b: Point) -> tuple[Point, float]:
    """
    線分 a-b 上で p に最も近い点と、その距離（メートル）を返す。

    p を原点とする局所的な正距円筒投影（経度方向を cos(lat) で縮める）で
    射影パラメータ t を求め、[0, 1] にクランプする。
    """
    k = math.cos(math.radians(p[1]))
    ax, ay = (a[0] - p[0]) * k, a[1] - p[1]
    bx, by = (b[0] - p[0]) * k, b[1] - p[1]
    dx, dy = bx - ax, by - ay

    seg_len_sq = dx * dx + dy * dy
    if seg_len_sq == 0:
        return a, distance_m(p, a)

    t = -(ax * dx + ay * dy) / seg_len_sq
    t = max(0.0, min(1.0, t))

    candidate = (a[0] + (b[0] - a[0]) * t, a[1] + (b[1] - a[1]) * t)
    return candidate, distance_m(p, candidate)


def nearest_point_on_line(p: Point, coords: Sequence[Sequence[float]]) -> Optional[NearestPoint]:
    """
    ポリライン全体で p に最も近い点を探す。

    - 全ての隣接頂点ペアについて線分射影し、最小距離を採用する。
    - 同距離の場合は先に見つかった区間を優先する。
    - 座標が空なら None。
    """
    if not coords:
        return None

    if len(coords) == 1:
        only = (float(coords[0][0]), float(coords[0][1]))
        return NearestPoint(point=only, index=0, distance_m=distance_m(p, only))

    best: Optional[NearestPoint] = None
    for i in range(len(coords) - 1):
        a = (float(coords[i][0]), float(coords[i][1]))
        b = (float(coords[i + 1][0]), float(coords[i + 1][1]))
        candidate, dist = nearest_point_on_segment(p, a, b)
        if best is None or dist < best.distance_m:
            best = NearestPoint(point=candidate, index=i, distance_m=dist)

    return best


def segment_bearing(coords: Sequence[Sequence[float]], index: int) -> float:
    """
    index 番目の頂点から次の頂点への方位。

    index は配列範囲にクランプする。終端では同じ頂点同士になるため 0.0。
    """
    if not coords:
        return 0.0
    last = len(coords) - 1
    start = coords[max(0, min(index, last))]
    end = coords[min(last, max(0, index) + 1)]
    if start[0] == end[0] and start[1] == end[1]:
        return 0.0
    return bearing_deg((start[0], start[1]), (end[0], end[1]))


def lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t
