"""
Tests for the /api/daily-tasks endpoints

Flow: generate -> inspect readiness -> complete items -> ledger.
The catalog is seeded into the test database; the engine uses a frozen clock.
"""

from fastapi.testclient import TestClient

from dailytasks.services.daily_task_engine import DailyTaskEngine
from dailytasks.services.errors import GatewayError
from tests.conftest import FrozenClock


def _generate(client: TestClient):
    response = client.post("/api/daily-tasks/generate")
    assert response.status_code == 200
    return response.json()


def test_health(client: TestClient):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_generate_plan(client: TestClient, seeded_catalog):
    data = _generate(client)

    assert data["target_date"] == "2026-03-10"
    assert data["batch_count"] == 3
    assert data["task_count"] == 6
    assert data["warnings"] == []


def test_get_plan_with_readiness(client: TestClient, seeded_catalog):
    _generate(client)

    data = client.get("/api/daily-tasks").json()

    assert [b["batch_index"] for b in data["batches"]] == [0, 1, 2]
    first = data["batches"][0]["tasks"]
    assert [t["account"]["name"] for t in first] == ["alpha", "beta"]
    assert [t["event_token"] for t in first] == ["l1", "l1"]
    assert all(t["readiness"]["ready"] for t in first)
    assert [t["event_token"] for t in data["batches"][2]["tasks"]] == ["buy1", "buy1"]
    assert data["counts"] == {"ready": 2, "blocked": 4, "cooldown": 0, "initial_delay": 0}


def test_empty_plan_before_generate(client: TestClient, seeded_catalog):
    data = client.get("/api/daily-tasks").json()

    assert data["batches"] == []
    assert client.get("/api/daily-tasks/completed").json() == []


def test_complete_group_and_ledger(client: TestClient, seeded_catalog):
    _generate(client)
    alpha_id = seeded_catalog["accounts"][0].id

    first = client.post("/api/daily-tasks/complete", json={"account_id": alpha_id, "request_index": 0, "batch_index": 0})
    assert first.status_code == 200
    assert first.json()["status"] == "item_completed"

    second = client.post("/api/daily-tasks/complete", json={"account_id": alpha_id, "request_index": 1, "batch_index": 0})
    body = second.json()
    assert body["status"] == "group_completed"
    assert body["group_completed"] is True
    assert body["ledger_entry"]["event_token"] == "l1"
    assert body["ledger_entry"]["game_name"] == "Farm Saga"

    ledger = client.get("/api/daily-tasks/completed").json()
    assert [(e["account_id"], e["request_type"]) for e in ledger] == [(alpha_id, "Level Event")]

    plan = client.get("/api/daily-tasks").json()
    alpha_next = plan["batches"][1]["tasks"][0]
    assert alpha_next["account"]["id"] == alpha_id
    assert alpha_next["readiness"]["state"] == "cooldown"
    assert alpha_next["readiness"]["remaining_seconds"] == 180


def test_unready_lists_blocked_last(client: TestClient, seeded_catalog):
    _generate(client)
    alpha_id = seeded_catalog["accounts"][0].id
    for index in (0, 1):
        client.post("/api/daily-tasks/complete", json={"account_id": alpha_id, "request_index": index, "batch_index": 0})

    unready = client.get("/api/daily-tasks/unready").json()

    states = [t["readiness"]["state"] for t in unready]
    assert states[0] == "cooldown"
    assert set(states[1:]) == {"blocked"}


def test_clear_ledger(client: TestClient, seeded_catalog):
    _generate(client)
    alpha_id = seeded_catalog["accounts"][0].id
    for index in (0, 1):
        client.post("/api/daily-tasks/complete", json={"account_id": alpha_id, "request_index": index, "batch_index": 0})

    response = client.delete("/api/daily-tasks/completed")

    assert response.status_code == 204
    assert client.get("/api/daily-tasks/completed").json() == []


def test_unknown_reference_ignored(client: TestClient, seeded_catalog):
    _generate(client)

    response = client.post("/api/daily-tasks/complete", json={"account_id": 999, "request_index": 0, "batch_index": 0})

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


def test_unknown_reference_conflict_when_strict(client: TestClient, seeded_catalog, sql_engine: DailyTaskEngine):
    _generate(client)
    sql_engine.strict = True

    response = client.post("/api/daily-tasks/complete", json={"account_id": 999, "request_index": 0, "batch_index": 0})

    assert response.status_code == 409
    assert response.json()["detail"].startswith("PLAN_INVARIANT")


def test_gateway_failure_is_bad_gateway(client: TestClient, seeded_catalog, sql_engine: DailyTaskEngine, monkeypatch):
    _generate(client)
    alpha_id = seeded_catalog["accounts"][0].id

    def fail(account_id, item):
        raise GatewayError("database is locked", account_id=account_id)

    monkeypatch.setattr(sql_engine.gateway, "mark_completed", fail)
    response = client.post("/api/daily-tasks/complete", json={"account_id": alpha_id, "request_index": 0, "batch_index": 0})

    assert response.status_code == 502
    assert response.json()["detail"].startswith("GATEWAY_ERROR")
    plan = client.get("/api/daily-tasks").json()
    assert plan["batches"][0]["tasks"][0]["completed"] == []


def test_complete_validates_payload(client: TestClient, seeded_catalog):
    response = client.post("/api/daily-tasks/complete", json={"account_id": "abc"})
    assert response.status_code == 422


def test_plan_shows_rendered_request_content(client: TestClient, seeded_catalog):
    _generate(client)

    data = client.get("/api/daily-tasks").json()

    alpha, beta = data["batches"][0]["tasks"]
    assert alpha["content"] == "GET /track?token=l1&age=120"
    assert [r["content"] for r in alpha["requests"]] == ["GET /track?token=l1&age=120"] * 2
    assert beta["content"] == ""
    purchase = data["batches"][2]["tasks"][0]
    assert purchase["content"] == f"GET /track?token=buy1&age={purchase['time_spent']}"


def test_plan_and_unready_agree_after_midnight(client: TestClient, seeded_catalog, clock: FrozenClock):
    _generate(client)
    alpha_id = seeded_catalog["accounts"][0].id
    clock.advance(days=1)

    plan = client.get("/api/daily-tasks").json()

    assert plan["now"].startswith("2026-03-11")
    assert plan["batches"] == []
    assert plan["counts"] == {"ready": 0, "blocked": 0, "cooldown": 0, "initial_delay": 0}
    assert client.get("/api/daily-tasks/unready").json() == []

    response = client.post("/api/daily-tasks/complete", json={"account_id": alpha_id, "request_index": 0, "batch_index": 0})
    assert response.json()["status"] == "ignored"


def test_completing_a_later_batch_first_is_ignored(client: TestClient, seeded_catalog):
    _generate(client)
    alpha_id = seeded_catalog["accounts"][0].id

    response = client.post("/api/daily-tasks/complete", json={"account_id": alpha_id, "request_index": 0, "batch_index": 1})

    assert response.json()["status"] == "ignored"
    assert client.get("/api/daily-tasks/completed").json() == []
