# backend/sample_trains.py

# スナップ動作確認用の列車位置（[lon, lat]）
# 線路上ではなく、線路の近くに置いてある。
# type: local / fast / express

SAMPLE_TRAIN_POSITIONS = [
    # ==========================================
    # Western Line
    # ==========================================
    {"id": 1, "name": "Bandra Local", "position": [72.826, 19.054], "type": "local"},
    {"id": 2, "name": "Santacruz Express", "position": [72.836, 19.104], "type": "express"},
    {"id": 3, "name": "Vile Parle Local", "position": [72.846, 19.124], "type": "local"},
    {"id": 4, "name": "Andheri Fast", "position": [72.856, 19.144], "type": "fast"},
    {"id": 5, "name": "Jogeshwari Local", "position": [72.866, 19.164], "type": "local"},
    {"id": 6, "name": "Goregaon Express", "position": [72.876, 19.184], "type": "express"},
    {"id": 7, "name": "Malad Local", "position": [72.886, 19.204], "type": "local"},
    {"id": 8, "name": "Kandivali Fast", "position": [72.896, 19.224], "type": "fast"},
    {"id": 9, "name": "Borivali Express", "position": [72.906, 19.244], "type": "express"},

    # ==========================================
    # Central Line
    # ==========================================
    {"id": 10, "name": "Dadar Local", "position": [72.8297, 18.9647], "type": "local"},
    {"id": 11, "name": "Matunga Express", "position": [72.8448, 19.0176], "type": "express"},
    {"id": 12, "name": "Sion Local", "position": [72.8561, 19.0728], "type": "local"},
    {"id": 13, "name": "Kurla Fast", "position": [72.8637, 19.1136], "type": "fast"},
    {"id": 14, "name": "Ghatkopar Local", "position": [72.8776, 19.1557], "type": "local"},
    {"id": 15, "name": "Vikhroli Express", "position": [72.8911, 19.2041], "type": "express"},
    {"id": 16, "name": "Kanjurmarg Local", "position": [72.9051, 19.2403], "type": "local"},
    {"id": 17, "name": "Bhandup Fast", "position": [72.9156, 19.2564], "type": "fast"},
    {"id": 18, "name": "Nahur Local", "position": [72.9283, 19.2728], "type": "local"},
    {"id": 19, "name": "Mulund Express", "position": [72.9421, 19.2832], "type": "express"},
    {"id": 20, "name": "Thane Fast", "position": [72.9594, 19.2967], "type": "fast"},

    # ==========================================
    # South Mumbai
    # ==========================================
    {"id": 21, "name": "Lower Parel Local", "position": [72.8314, 18.9388], "type": "local"},
    {"id": 22, "name": "Grant Road Express", "position": [72.8223, 18.9067], "type": "express"},
]

# /api/demo-trains 用
DEMO_TRAIN_POSITIONS = [
    {"id": "mumbai_local_1", "position": [72.8777, 19.0760], "type": "local"},
    {"id": "mumbai_local_2", "position": [72.8500, 19.0500], "type": "local"},
    {"id": "mumbai_express_1", "position": [72.9000, 19.1000], "type": "express"},
    {"id": "western_line_1", "position": [72.8200, 19.0400], "type": "local"},
    {"id": "central_line_1", "position": [72.8900, 19.0900], "type": "local"},
    {"id": "mumbai_local_3", "position": [72.8600, 19.0650], "type": "local"},
    {"id": "mumbai_express_2", "position": [72.8750, 19.0850], "type": "express"},
]


def get_sample_trains(limit: int | None = None) -> list[dict]:
    """
    サンプル列車のコピーを返す。
    limit を指定した場合は先頭から limit 件。
    """
    trains = SAMPLE_TRAIN_POSITIONS if limit is None else SAMPLE_TRAIN_POSITIONS[:limit]
    return [dict(t, position=list(t["position"])) for t in trains]
