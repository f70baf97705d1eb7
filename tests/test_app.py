# tests/test_app.py
import io
import pathlib

import pytest

import backend.app as app_module
from backend.lib.local_store import LocalJsonStore
from backend.lib.token_core.settings import EngineSettings


@pytest.fixture
def client(tmp_path):
    app_module.use_store(LocalJsonStore(tmp_path), EngineSettings(lock_timeout_seconds=0.05))
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as c:
        yield c


def post_reading(client, day, kwh, **extra):
    body = {"user_id": "u1", "timestamp": f"2025-11-{day:02d}T07:00:00", "kwh_value": kwh}
    body.update(extra)
    return client.post("/readings", json=body)


def test_add_and_list_readings(client):
    assert post_reading(client, 1, 100).status_code == 201
    resp = post_reading(client, 2, 90)
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["batch"] is None
    assert body["snapshot"]["daily"][-1]["usage_kwh"] == 10.0

    readings = client.get("/readings?user_id=u1").get_json()["readings"]
    assert [r["kwh_value"] for r in readings] == [100.0, 90.0]

    usage = client.get("/usage?user_id=u1&period=day").get_json()
    assert [d["date"] for d in usage["data"]] == ["2025-11-01", "2025-11-02"]
    week = client.get("/usage?user_id=u1&period=week&limit=1").get_json()
    assert week["data"][0]["week"] == "2025-W44"


def test_increase_without_top_up_is_rejected(client):
    post_reading(client, 1, 40)
    resp = post_reading(client, 2, 45)
    assert resp.status_code == 400
    assert resp.get_json()["status"] == "WARNING_READING_INCREASED"

    assert post_reading(client, 2, -3).status_code == 400
    assert post_reading(client, 2, 145, is_top_up=True).status_code == 201


def test_required_parameters(client):
    assert client.get("/usage").status_code == 400
    assert client.get("/usage?user_id=u1&period=year").status_code == 400
    assert client.get("/readings").status_code == 400
    assert client.post("/readings", json={"kwh_value": 3}).status_code == 400
    assert client.get("/tariff-tiers/resolve?nominal=abc").status_code == 400


def test_tariff_tier_api(client):
    resp = client.post("/tariff-tiers", json={"id": "small", "min_nominal": 1, "max_nominal": 49999,
                                              "effective_tariff": 1500})
    assert resp.status_code == 201
    client.post("/tariff-tiers", json={"id": "large", "min_nominal": 50000, "effective_tariff": 1444.7})

    overlap = client.post("/tariff-tiers", json={"min_nominal": 30000, "max_nominal": 60000,
                                                 "effective_tariff": 1400})
    assert overlap.status_code == 409
    assert overlap.get_json()["type"] == "OverlappingTierRange"

    resolved = client.get("/tariff-tiers/resolve?nominal=50000").get_json()
    assert resolved["tier"]["id"] == "large"
    assert resolved["effective_tariff"] == 1444.7
    assert resolved["token_kwh"] == 34.61

    assert client.get("/tariff-tiers/resolve?nominal=0").status_code == 404

    assert client.put("/tariff-tiers/small", json={"active": False}).status_code == 200
    assert [t["id"] for t in client.get("/tariff-tiers").get_json()["tiers"]] == ["large"]
    assert len(client.get("/tariff-tiers?all=true").get_json()["tiers"]) == 2
    assert client.delete("/tariff-tiers/small").status_code == 200
    assert client.delete("/tariff-tiers/small").status_code == 404


def test_top_up_is_priced_from_the_tier(client):
    client.post("/tariff-tiers", json={"id": "large", "min_nominal": 50000, "effective_tariff": 1444.7})
    post_reading(client, 1, 5)
    resp = post_reading(client, 2, 74.2, is_top_up=True, token_amount=100000)
    reading = resp.get_json()["reading"]
    assert reading["effective_tariff"] == 1444.7
    assert reading["token_kwh"] == pytest.approx(100000 / 1444.7)

    prediction = client.get("/prediction?user_id=u1").get_json()["prediction"]
    assert prediction["remaining_kwh"] == 74.2
    assert prediction["token_cost"] == 100000


def test_backdated_reading_and_rollback(client):
    post_reading(client, 1, 100)
    post_reading(client, 2, 90)
    post_reading(client, 4, 80)

    preview = client.post("/readings/preview", json={"user_id": "u1", "op": "ADD",
                                                     "timestamp": "2025-11-03T07:00:00", "kwh_value": 85})
    assert [e["event_date"] for e in preview.get_json()["affected_events"]] == ["2025-11-03", "2025-11-04"]
    assert len(client.get("/readings?user_id=u1").get_json()["readings"]) == 3

    resp = post_reading(client, 3, 85)
    batch = resp.get_json()["batch"]
    assert batch["trigger_type"] == "MANUAL_CORRECTION"
    assert [(e["event_date"], e["old_kwh"], e["new_kwh"]) for e in batch["affected_events"]] == [
        ("2025-11-03", 0.0, 5.0),
        ("2025-11-04", 10.0, 5.0),
    ]

    pending = client.get("/recalculations/pending?user_id=u1").get_json()["batches"]
    assert [b["id"] for b in pending] == [batch["id"]]
    assert pending[0]["status"] == "PENDING_ROLLBACK"

    rolled = client.post(f"/recalculations/{batch['id']}/rollback", json={"user_id": "u1", "reason": "wrong"})
    assert rolled.status_code == 200
    assert rolled.get_json()["batch"]["status"] == "ROLLED_BACK"
    assert [d["usage_kwh"] for d in rolled.get_json()["snapshot"]["daily"]] == [0.0, 10.0, 10.0]

    again = client.post(f"/recalculations/{batch['id']}/rollback", json={"user_id": "u1"})
    assert again.status_code == 404
    history = client.get("/recalculations?user_id=u1").get_json()["batches"]
    assert history[0]["status"] == "ROLLED_BACK"


def test_edit_and_delete_reading(client):
    first = post_reading(client, 1, 100).get_json()["reading"]
    post_reading(client, 2, 90)

    edited = client.put(f"/readings/{first['id']}", json={"user_id": "u1", "kwh": 96})
    assert edited.status_code == 200
    events = {e["event_date"]: e for e in edited.get_json()["batch"]["affected_events"]}
    assert events["2025-11-02"]["new_kwh"] == 6.0
    assert events["2025-11-01"]["new_meter_value"] == 96

    deleted = client.delete(f"/readings/{first['id']}?user_id=u1")
    assert deleted.status_code == 200
    assert deleted.get_json()["batch"]["trigger_type"] == "MANUAL_CORRECTION"
    assert client.delete("/readings/missing?user_id=u1").status_code == 404


def test_conflict_returns_retry_after(client):
    with app_module.ledger.user_lock("u1"):
        resp = post_reading(client, 1, 100)
    assert resp.status_code == 409
    assert resp.headers["Retry-After"] == "1"


def test_prediction_projection_and_estimate(client):
    for day, kwh in ((4, 95), (5, 85), (6, 75), (7, 65), (8, 55), (9, 45), (10, 35)):
        post_reading(client, day, kwh)

    projection = client.get("/projection?user_id=u1").get_json()["projection"]
    assert projection["has_data"]
    assert projection["points"][0]["is_projected"] is False
    assert projection["points"][0]["remaining_kwh"] == 35

    estimate = client.get("/estimate?user_id=u1&rate=1000&period=month").get_json()
    assert estimate["total_kwh"] == 60.0
    assert estimate["estimated_cost"] == 60000.0
    assert estimate["currency"] == "IDR"

    empty = client.get("/prediction?user_id=nobody").get_json()["prediction"]
    assert empty["has_data"] is False


def test_upload_csv(client):
    text = (pathlib.Path(__file__).parent / "sample.csv").read_bytes()
    resp = client.post("/upload", data={"file": (io.BytesIO(text), "sample.csv")},
                       content_type="multipart/form-data")
    assert resp.status_code == 202
    assert resp.get_json()["processed_count"] == 3
    assert resp.get_json()["users"] == ["user-1"]

    daily = client.get("/usage?user_id=user-1").get_json()["data"]
    assert [d["usage_kwh"] for d in daily] == [0.0, 10.0, 0.0]
    assert daily[2]["is_top_up"] is True

    bad = client.post("/upload", data={"file": (io.BytesIO(b"user_id,timestamp,kwh\nu,x,1\n"), "bad.csv")},
                      content_type="multipart/form-data")
    assert bad.status_code == 400
    assert client.post("/upload").status_code == 400


def test_alerts_need_sns(client):
    assert client.post("/alerts/depletion", json={"user_id": "u1"}).status_code == 400
    assert client.get("/sns/status").get_json()["sns_enabled"] is False
    assert client.get("/dynamodb/status").get_json()["dynamodb_enabled"] is False


def test_backdated_csv_row_goes_through_the_ledger(client):
    post_reading(client, 1, 100)
    post_reading(client, 5, 60)
    csv_text = (b"user_id,timestamp,kwh\n"
                b"u1,2025-11-03T07:00:00,70\n"
                b"u1,2025-11-06T07:00:00,55\n")
    resp = client.post("/upload", data={"file": (io.BytesIO(csv_text), "late.csv")},
                       content_type="multipart/form-data")
    assert resp.status_code == 202
    assert len(resp.get_json()["recalculation_batches"]) == 1

    daily = client.get("/usage?user_id=u1").get_json()["data"]
    assert [(d["date"], d["usage_kwh"]) for d in daily] == [
        ("2025-11-01", 0.0), ("2025-11-03", 30.0), ("2025-11-05", 10.0), ("2025-11-06", 5.0),
    ]

    batches = client.get("/recalculations?user_id=u1").get_json()["batches"]
    assert len(batches) == 1
    assert batches[0]["id"] == resp.get_json()["recalculation_batches"][0]
    rolled = client.post(f"/recalculations/{batches[0]['id']}/rollback", json={"user_id": "u1"})
    assert [d["usage_kwh"] for d in rolled.get_json()["snapshot"]["daily"]] == [0.0, 40.0, 5.0]


def test_unpriced_top_up_is_kept_and_can_become_a_plain_reading(client):
    post_reading(client, 1, 100)
    resp = post_reading(client, 2, 190, is_top_up=True, token_amount=50000)
    assert resp.status_code == 201
    top_up = resp.get_json()["reading"]
    assert top_up["is_top_up"] is True
    assert (top_up["effective_tariff"], top_up["token_kwh"]) == (None, None)

    edited = client.put(f"/readings/{top_up['id']}", json={"user_id": "u1", "kwh_value": 95,
                                                            "is_top_up": False})
    assert edited.status_code == 200
    reading = edited.get_json()["reading"]
    assert reading["is_top_up"] is False
    assert reading["token_amount"] is None
    assert edited.get_json()["batch"]["trigger_type"] == "EDIT_TOPUP"
    assert edited.get_json()["snapshot"]["daily"][1]["usage_kwh"] == 5.0


def test_negative_limit_is_rejected(client):
    post_reading(client, 1, 100)
    post_reading(client, 2, 90)
    assert client.get("/readings?user_id=u1&limit=-1").status_code == 400
    assert client.get("/readings?user_id=u1&limit=0").get_json()["readings"] == []
    assert len(client.get("/readings?user_id=u1&limit=1").get_json()["readings"]) == 1
