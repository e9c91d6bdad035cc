# backend/constants.py
"""
共通定数

URL・タイムアウト・キャッシュ TTL・幾何計算のデフォルト値をまとめる。
環境変数で上書きしたい値は config.py 側で扱う。
"""

# ============================================================================
# 外部 API
# ============================================================================
OVERPASS_URL = "https://overpass-api.de/api/interpreter"
DEFAULT_OSRD_BASE_URL = "http://localhost:8080"

# 外向き HTTP 呼び出しのタイムアウト（秒）
HTTP_TIMEOUT = 30.0
OSRD_HEALTH_TIMEOUT = 10.0
OSRD_TIMEOUT = 60.0

# ============================================================================
# キャッシュ
# ============================================================================
OSM_CACHE_TTL_SEC = 24 * 60 * 60  # 24時間

# ============================================================================
# 幾何・スナップ
# ============================================================================
EARTH_RADIUS_M = 6371008.8            # 平均地球半径（メートル）
DEFAULT_BODY_LENGTH_M = 150.0         # 列車の車体長
DEFAULT_MAX_SNAP_DISTANCE_M = 1000.0  # 線路探索の最大距離

# ============================================================================
# シミュレーション
# ============================================================================
DEFAULT_SPEED_KMPH = 40
DEFAULT_SIM_START_TIME = "09:00:00"
DEFAULT_SIM_END_TIME = "18:00:00"
DEFAULT_TIME_STEP_SEC = 30
DEFAULT_MOCK_HORIZON_SEC = 8 * 60 * 60     # モックは 8 時間分を生成
DEFAULT_NOMINAL_JOURNEY_SEC = 60 * 60      # 到着時刻が無い列車の所要時間

IST_TZ_NAME = "Asia/Kolkata"
