import json
from pathlib import Path

import pytest

from data_cache import DataCache, _normalize_stations, _parse_train_schedules

NINE_AM = 9 * 3600
REPO_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


def _write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


def test_loads_bundled_data():
    cache = DataCache(REPO_DATA_DIR)
    cache.load_all()

    assert len(cache.schedules) == 4
    assert len(cache.fallback_tracks) == 3
    assert cache.get_schedule("HR_9201").strategy == "stations"
    assert cache.get_schedule("WR_9001").strategy == "geometry"


def test_missing_files_leave_empty_collections(tmp_path, caplog):
    cache = DataCache(tmp_path)
    cache.load_all()

    assert cache.schedules == []
    assert cache.fallback_tracks == []
    assert "Failed to load train schedules" in caplog.text


def test_corrupt_files_leave_empty_collections(tmp_path):
    (tmp_path / "mumbai_trains.json").write_text("[{not json", encoding="utf-8")
    (tmp_path / "mumbai_tracks.geojson").write_text("{}", encoding="utf-8")

    cache = DataCache(tmp_path)
    cache.load_all()

    assert cache.schedules == []
    assert cache.fallback_tracks == []


def test_fallback_tracks_keep_only_linestrings(tmp_path):
    _write(tmp_path / "mumbai_tracks.geojson", {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "geometry": {"type": "LineString", "coordinates": [[72.8, 19.0], [72.9, 19.1]]}, "properties": {}},
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": [72.8, 19.0]}, "properties": {}},
        ],
    })
    cache = DataCache(tmp_path)
    cache.load_all()
    assert len(cache.fallback_tracks) == 1


def test_bad_rows_are_skipped():
    raw = [
        {"train_id": "OK", "departure_time": "09:00:00",
         "route_geometry": [{"lat": 19.0, "lon": 72.8}, {"lat": 19.1, "lon": 72.9}]},
        {"departure_time": "09:00:00", "route_geometry": [{"lat": 19.0, "lon": 72.8}]},
        {"train_id": "BAD_TIME", "departure_time": "25:00",
         "route_geometry": [{"lat": 19.0, "lon": 72.8}]},
        {"train_id": "NO_ROUTE", "departure_time": "09:00:00"},
        {"train_id": "OK", "departure_time": "10:00:00",
         "route_geometry": [{"lat": 19.0, "lon": 72.8}]},
    ]
    schedules = _parse_train_schedules(raw)

    assert [s.train_id for s in schedules] == ["OK"]
    assert schedules[0].departure_sec == NINE_AM
    assert schedules[0].speed_kmph == 40


def test_journey_from_last_arrival_and_extra_fields():
    raw = [{
        "train_id": "CR_1",
        "train_name": "CST → Thane",
        "departure_time": "09:00:00",
        "route_geometry": [{"lat": 18.94, "lon": 72.835}, {"lat": 19.2183, "lon": 72.9781}],
        "stations": [
            {"name": "CST", "lat": 18.94, "lon": 72.835, "arrival": "09:00:00"},
            {"name": "Thane", "lat": 19.2183, "lon": 72.9781, "arrival": "09:45:00"},
        ],
        "line": "Central",
    }]
    schedule = _parse_train_schedules(raw)[0]

    assert schedule.journey_sec == 2700
    assert schedule.arrival_sec == NINE_AM + 2700
    assert schedule.extra == {"line": "Central"}

    payload = schedule.to_payload()
    assert payload["departure_time"] == "09:00:00"
    assert payload["stations"][1]["arrival"] == "09:45:00"
    assert payload["line"] == "Central"


def test_nominal_journey_when_no_arrivals():
    raw = [{
        "train_id": "WR_1",
        "departure_time": "10:30:00",
        "stations": [
            {"name": "Borivali", "lat": 19.24, "lon": 72.856},
            {"name": "Andheri", "lat": 19.1191, "lon": 72.846},
            {"name": "Dadar", "lat": 19.0182, "lon": 72.8471},
            {"name": "Churchgate", "lat": 18.922, "lon": 72.8258},
        ],
    }]
    schedule = _parse_train_schedules(raw, nominal_journey_sec=1800)[0]

    assert schedule.strategy == "stations"
    assert schedule.journey_sec == 1800
    dep = 10 * 3600 + 1800
    assert [s.arrival_sec for s in schedule.stations] == [dep, dep + 600, dep + 1200, dep + 1800]


def test_station_offsets_are_relative_to_departure():
    stations, journey = _normalize_stations(
        [
            {"name": "CST", "lat": 18.94, "lon": 72.835, "halt_time_sec": 0},
            {"name": "Kurla", "lat": 19.066, "lon": 72.8677, "arrival_offset_sec": 1200},
            {"name": "Panvel", "lat": 18.9876, "lon": 73.1171, "halt_time_sec": 3600},
        ],
        "HR_1",
        NINE_AM,
        nominal_journey_sec=7200,
    )
    assert journey == 3600
    assert [s.arrival_sec for s in stations] == [NINE_AM, NINE_AM + 1200, NINE_AM + 3600]


def test_station_arrivals_are_clamped_and_monotonic():
    stations, journey = _normalize_stations(
        [
            {"name": "A", "lat": 19.0, "lon": 72.8, "arrival": "08:50:00"},
            {"name": "B", "lat": 19.1, "lon": 72.8, "arrival": "09:40:00"},
            {"name": "C", "lat": 19.2, "lon": 72.8, "arrival": "09:20:00"},
            {"name": "D", "lat": 19.3, "lon": 72.8, "arrival": "09:30:00"},
        ],
        "T",
        NINE_AM,
        nominal_journey_sec=3600,
    )
    assert journey == 1800
    arrivals = [s.arrival_sec for s in stations]
    # 最初の駅は出発時刻、以後は [出発, 終着] にクランプされ単調増加
    assert arrivals == [NINE_AM, NINE_AM + 1800, NINE_AM + 1800, NINE_AM + 1800]


def test_last_arrival_before_departure_uses_nominal():
    stations, journey = _normalize_stations(
        [
            {"name": "A", "lat": 19.0, "lon": 72.8},
            {"name": "B", "lat": 19.1, "lon": 72.8, "arrival": "08:00:00"},
        ],
        "T",
        NINE_AM,
        nominal_journey_sec=3600,
    )
    assert journey == 3600
    assert stations[-1].arrival_sec == NINE_AM


@pytest.mark.parametrize("bad_station", [
    {"name": "X", "lat": "north", "lon": 72.8},
    {"name": "X", "lat": 95.0, "lon": 72.8},
    {"lat": 19.0, "lon": 72.8},
])
def test_malformed_stations_are_dropped(bad_station):
    stations, _ = _normalize_stations(
        [{"name": "A", "lat": 19.0, "lon": 72.8}, bad_station],
        "T",
        NINE_AM,
        nominal_journey_sec=3600,
    )
    assert [s.name for s in stations] == ["A"]
