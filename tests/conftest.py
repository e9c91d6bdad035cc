import pytest

from schedule_models import RoutePoint, Station, TrainSchedule

NINE_AM = 9 * 3600


@pytest.fixture
def make_schedule():
    """
    09:00 発、1時間で (19.00, 72.80) → (19.10, 72.90) を走る列車を作る。
    キーワード引数で任意のフィールドを上書きできる。
    """
    def _make(**overrides):
        fields = dict(
            train_id="T1",
            train_name="Test Local",
            origin_station="A",
            destination_station="B",
            departure_sec=NINE_AM,
            speed_kmph=40,
            route_geometry=[RoutePoint(lat=19.00, lon=72.80), RoutePoint(lat=19.10, lon=72.90)],
            stations=[
                Station(name="A", lat=19.00, lon=72.80, arrival_sec=NINE_AM),
                Station(name="B", lat=19.10, lon=72.90, arrival_sec=NINE_AM + 3600),
            ],
            strategy="geometry",
            journey_sec=3600,
        )
        fields.update(overrides)
        return TrainSchedule(**fields)

    return _make
