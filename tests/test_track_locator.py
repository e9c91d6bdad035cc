import pytest

from geo_utils import distance_m
from track_locator import find_nearest_track, snap_multiple_trains, snap_train_to_tracks


def _track(coords, name="Line", geometry_type="LineString"):
    return {
        "type": "Feature",
        "geometry": {"type": geometry_type, "coordinates": coords},
        "properties": {"name": name, "railway": "rail"},
    }


DIAGONAL = _track([[72.80, 19.00], [72.90, 19.10]], name="Diagonal")


def test_snaps_onto_segment_interior():
    match = find_nearest_track((72.85, 19.051), [DIAGONAL])

    assert match is not None
    assert match.snap.segment_index == 0
    assert match.snap.distance_m < 1000
    assert match.feature["properties"]["name"] == "Diagonal"
    # 北東向きの線路
    assert 0 < match.snap.bearing_deg < 90


def test_snapped_point_is_not_farther_than_any_vertex():
    point = (72.85, 19.051)
    match = find_nearest_track(point, [DIAGONAL])
    for vertex in DIAGONAL["geometry"]["coordinates"]:
        assert match.snap.distance_m <= distance_m(point, tuple(vertex))


def test_returns_none_beyond_max_distance():
    far_point = (72.85, 19.20)
    assert find_nearest_track(far_point, [DIAGONAL], max_distance_m=1000) is None
    # 閾値を広げれば見つかる
    assert find_nearest_track(far_point, [DIAGONAL], max_distance_m=50_000) is not None


def test_tie_goes_to_first_track():
    first = _track([[72.80, 19.00], [72.90, 19.10]], name="first")
    second = _track([[72.80, 19.00], [72.90, 19.10]], name="second")

    match = find_nearest_track((72.85, 19.051), [first, second])
    assert match.feature["properties"]["name"] == "first"

    match = find_nearest_track((72.85, 19.051), [second, first])
    assert match.feature["properties"]["name"] == "second"


def test_closer_track_wins_regardless_of_order():
    near = _track([[72.80, 19.05], [72.90, 19.05]], name="near")
    far = _track([[72.80, 19.06], [72.90, 19.06]], name="far")

    assert find_nearest_track((72.85, 19.051), [far, near]).feature["properties"]["name"] == "near"


def test_non_linestring_and_empty_features_are_ignored():
    tracks = [
        _track([[72.85, 19.051]], name="point", geometry_type="Point"),
        _track([[[72.80, 19.00], [72.90, 19.00], [72.90, 19.10], [72.80, 19.00]]],
               name="polygon", geometry_type="Polygon"),
        _track([], name="empty"),
        {"type": "Feature", "geometry": None, "properties": {}},
        {"type": "Feature", "properties": {}},
    ]
    assert find_nearest_track((72.85, 19.051), tracks) is None

    match = find_nearest_track((72.85, 19.051), tracks + [DIAGONAL])
    assert match.feature["properties"]["name"] == "Diagonal"


def test_no_tracks():
    assert find_nearest_track((72.85, 19.051), []) is None


def test_snap_train_to_tracks_bundles_body_and_metadata():
    snapped = snap_train_to_tracks(
        (72.85, 19.051), [DIAGONAL], body_length_m=200, train_id="t1", train_type="express"
    )
    data = snapped.to_dict()

    assert data["id"] == "t1"
    assert data["type"] == "express"
    assert data["originalPosition"] == [72.85, 19.051]
    assert len(data["trainLine"]) == 2
    assert data["track"] == {"properties": DIAGONAL["properties"], "index": 0}
    assert data["metadata"]["trainLength"] == 200
    assert data["metadata"]["distanceToTrack"] == pytest.approx(snapped.snap.distance_m)
    assert data["metadata"]["snappedAt"]


def test_snap_train_to_tracks_without_match(caplog):
    assert snap_train_to_tracks((0.0, 0.0), [DIAGONAL]) is None
    assert "No suitable track found" in caplog.text


def test_snap_multiple_trains_skips_missing_and_unmatched():
    trains = [
        {"id": 1, "position": [72.85, 19.051], "type": "local"},
        {"id": 2, "coordinates": [72.86, 19.061]},
        {"id": 3},
        {"id": 4, "position": [0.0, 0.0]},
        {"id": 5, "position": ["x", "y"]},
    ]
    snapped = snap_multiple_trains(trains, [DIAGONAL])

    assert [t.id for t in snapped] == [1, 2]
    assert snapped[1].type == "local"


def test_malformed_vertices_do_not_hide_valid_tracks():
    broken = _track([[72.80], [72.90, 19.10]], name="broken")
    garbage = _track([["x", "y"], None, [72.80, True]], name="garbage")

    match = find_nearest_track((72.85, 19.051), [broken, garbage, DIAGONAL])
    assert match.feature["properties"]["name"] == "Diagonal"


def test_malformed_vertices_are_dropped_from_the_line():
    # 先頭の壊れた頂点を除いた [72.80,19.00]-[72.90,19.10] の区間にスナップする
    partial = _track([[72.70], [72.80, 19.00], [72.90, 19.10]], name="partial")

    snapped = snap_train_to_tracks((72.85, 19.051), [partial])
    assert snapped is not None
    assert snapped.snap.segment_index == 0
    assert snapped.snap.distance_m < 1000
