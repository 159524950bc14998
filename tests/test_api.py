import asyncio

import pytest
from fastapi.testclient import TestClient

from leadsync.core.config import TRIGGER_ID
from leadsync.main import create_app

USER = {"X-User-Id": "u1"}


@pytest.fixture()
def app(store):
    return create_app(store, disarm_delay=0.05)


def test_health_ping(app):
    with TestClient(app) as client:
        r = client.get("/health/ping")
        assert r.status_code == 200
        assert r.json() == {"ok": True}


def test_leads_require_user_header(app):
    with TestClient(app) as client:
        r = client.get("/leads/")
        assert r.status_code == 400
        assert r.json()["error"] == "X-User-Id header is required"


def test_lead_crud(app):
    with TestClient(app) as client:
        r = client.post("/leads/", json={"name": "Ann", "phone": "5551234567", "lead_type": "inbound"}, headers=USER)
        assert r.status_code == 201
        lead = r.json()
        assert lead["source_channel"] == "inbound_call"
        assert lead["phone"] == "+15551234567"

        r = client.patch(f"/leads/{lead['id']}", json={"status": "hot", "qualified": True}, headers=USER)
        assert r.status_code == 200
        assert r.json()["status"] == "hot"

        r = client.get("/leads/", headers=USER)
        assert [l["id"] for l in r.json()] == [lead["id"]]

        stats = client.get("/leads/stats", headers=USER).json()
        assert stats["dashboard"]["hot_leads"] == 1
        assert stats["analytics"]["inbound_by_source"] == {"inbound_call": 1}

        assert client.delete(f"/leads/{lead['id']}", headers=USER).status_code == 200
        assert client.delete(f"/leads/{lead['id']}", headers=USER).status_code == 404


def test_other_users_leads_cannot_be_changed(app, store):
    lead = asyncio.run(store.leads.insert({"user_id": "owner-1", "name": "Kim", "status": "cold"}))
    intruder = {"X-User-Id": "intruder"}
    with TestClient(app) as client:
        r = client.patch(f"/leads/{lead.id}", json={"status": "hot"}, headers=intruder)
        assert r.status_code == 404
        assert client.delete(f"/leads/{lead.id}", headers=intruder).status_code == 404
        assert client.patch(f"/leads/{lead.id}", json={"status": "hot"}).status_code == 400
    kept = asyncio.run(store.leads.select_one(id=lead.id))
    assert kept is not None and kept.status == "cold"


def test_invalid_lead_status_is_rejected(app):
    with TestClient(app) as client:
        r = client.post("/leads/", json={"name": "Ann", "status": "bogus"}, headers=USER)
        assert r.status_code == 422


def test_arm_over_http(store):
    # the flag must still be armed when the second request lands
    with TestClient(create_app(store, disarm_delay=1.0)) as client:
        r = client.get("/automation/trigger", headers=USER)
        assert r.status_code == 200
        assert r.json()["trigger"]["id"] == TRIGGER_ID

        r = client.post("/automation/start_calling/arm", headers=USER)
        body = r.json()
        assert body["ok"] is True
        assert body["state"]["start_calling"] == "armed"
        assert body["trigger"]["start_calling"] is True
        assert body["notification"] == {"type": "success", "message": "Calling automation triggered"}

        r = client.post("/automation/start_calling/arm", headers=USER)
        assert r.json()["ok"] is False

        r = client.post("/automation/start_nothing/arm", headers=USER)
        assert r.status_code == 400
    # shutdown waits for the pending disarm
    rec = asyncio.run(store.triggers.select_one(id=TRIGGER_ID))
    assert rec.start_calling is False
    actions = [l.action_type for l in asyncio.run(store.logs.select(user_id="u1", order_by="created_at"))]
    assert actions == ["start_calling", "stop_calling"]


def test_logs_over_http(app, store):
    asyncio.run(store.logs.insert({"action_type": "start_calling", "status": "success", "user_id": "u2"}))
    with TestClient(app) as client:
        client.post("/automation/start_qualifying/arm", headers=USER)
        logs = client.get("/automation/logs", headers=USER).json()["logs"]
        assert "start_qualifying" in [l["action_type"] for l in logs]
        assert {l["user_id"] for l in logs} == {"u1"}

        first = logs[-1]["id"]
        r = client.delete(f"/automation/logs/{first}", headers=USER)
        assert r.json() == {"ok": True}
        remaining = client.get("/automation/logs", headers=USER).json()["logs"]
        assert first not in [l["id"] for l in remaining]

        r = client.delete("/automation/logs", headers=USER)
        assert r.json()["ok"] is True
    assert len(asyncio.run(store.logs.select(user_id="u2"))) == 1


def test_unknown_change_table(app):
    with TestClient(app) as client:
        r = client.get("/change-events/since", params={"table": "users"})
        assert r.status_code == 400


def test_store_and_events_health(app):
    with TestClient(app) as client:
        client.post("/leads/", json={"name": "Ann"}, headers=USER)
        r = client.get("/health/store")
        assert r.json()["rows"] == {"leads": 1, "triggers": 0, "automation_logs": 0}
        assert r.json()["trigger"] is None

        client.get("/automation/trigger", headers=USER)
        events = client.get("/health/events").json()
        assert events["orchestrators"] == ["u1"]
        assert {t["topic"] for t in events["topics"]} == {"triggers", "automation_logs"}

        paths = {r["path"] for r in client.get("/health/routes").json()["routes"]}
        assert "/webhook/qualification" in paths


def test_routes_include_every_mounted_router(app):
    with TestClient(app) as client:
        routes = client.get("/health/routes").json()["routes"]
    listed = {(r["path"], m) for r in routes for m in r["methods"]}
    for expected in [
        ("/webhook/qualification", "OPTIONS"),
        ("/automation/{flag}/arm", "POST"),
        ("/leads/{lead_id}", "PATCH"),
        ("/change-events/poll", "GET"),
        ("/health/store", "GET"),
    ]:
        assert expected in listed
    assert len(routes) == len({(r["path"], ",".join(r["methods"])) for r in routes})
