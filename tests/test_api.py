"""
test_api.py — HTTP routes against a temporary data directory.
"""

import os
import sys

import pytest
from fastapi.testclient import TestClient

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from racecore import database


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(database, "DB_DIR", tmp_path)
    from server import app
    with TestClient(app) as c:
        yield c


def create_race(client, **overrides):
    body = {"name": "API Race", "date": "2025-07-01", "start_time": "07:00",
            "min_runner": 1, "max_runner": 5,
            "checkpoints": [{"number": 1, "name": "CP1"}]}
    body.update(overrides)
    r = client.post("/api/races", json=body)
    assert r.status_code == 200
    return r.json()["id"]


def test_status(client):
    r = client.get("/api/status")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_race_crud_and_not_found(client):
    race_id = create_race(client)
    assert client.get(f"/api/races/{race_id}").json()["name"] == "API Race"
    assert client.get("/api/races/current").json()["id"] == race_id
    assert len(client.get(f"/api/races/{race_id}/runners").json()) == 5

    assert client.delete(f"/api/races/{race_id}").status_code == 200
    r = client.get(f"/api/races/{race_id}")
    assert r.status_code == 404
    assert r.json()["detail"] == "Race not found"


def test_runner_status_and_bulk(client):
    race_id = create_race(client)
    r = client.put(f"/api/races/{race_id}/runners/2/status", json={"status": "dnf"})
    assert r.json()["status"] == "dnf"

    r = client.post(f"/api/races/{race_id}/runners/bulk",
                    json={"numbers": [3, 4], "status": "non-starter"})
    assert r.json() == {"updated": 2}

    assert client.put(f"/api/races/{race_id}/runners/2/status",
                      json={"status": "finished"}).status_code == 422
    assert client.put(f"/api/races/{race_id}/runners/99",
                      json={"notes": "x"}).status_code == 500


def test_checkpoint_and_base_station_marks(client):
    race_id = create_race(client)
    r = client.post(f"/api/races/{race_id}/checkpoints/1/mark",
                    json={"numbers": [1, 2], "call_in_time": "2025-07-01T08:00:00Z"})
    assert r.json() == {"marked": 2}
    rows = client.get(f"/api/races/{race_id}/checkpoints/1/runners").json()
    assert [row["number"] for row in rows] == [1, 2]

    client.post(f"/api/races/{race_id}/base-station/1/mark", json={"numbers": [5]})
    rows = client.get(f"/api/races/{race_id}/base-station/runners").json()
    assert rows[0]["number"] == 5 and rows[0]["common_time"]


def test_export_import_round_trip(client):
    race_id = create_race(client)
    client.put(f"/api/races/{race_id}/runners/1", json={"status": "passed",
                                                       "recorded_time": "2025-07-01T09:00:00Z"})
    doc = client.get(f"/api/races/{race_id}/export").json()
    assert doc["exportType"] == "full-race-data"

    r = client.post("/api/import", json=doc)
    assert r.json()["id"] == race_id

    r = client.post("/api/import", json={"raceConfig": {"name": "X"}})
    assert r.status_code == 422
    assert r.json()["detail"].startswith("Invalid race configuration data")


def test_results_csv(client):
    race_id = create_race(client)
    r = client.get(f"/api/races/{race_id}/results.csv")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert "race-results-API-Race-2025-07-01.csv" in r.headers["content-disposition"]


def test_templates_settings_maintenance(client):
    assert "Pinnacles Classic" in client.get("/api/templates").json()
    r = client.post("/api/races/from-template",
                    json={"template_id": "pinnacles-classic", "race_date": "2025-08-10"})
    race_id = r.json()["id"]
    assert len(client.get(f"/api/races/{race_id}/checkpoints").json()) == 3

    client.put("/api/settings/operator", json={"value": "VK4ABC"})
    assert client.get("/api/settings/operator").json()["value"] == "VK4ABC"
    assert client.get("/api/settings/missing").json()["value"] is None

    assert client.post(f"/api/races/{race_id}/migrate-isolated").json() == {"checkpoints": 3}
    size = client.get("/api/maintenance/size").json()
    assert size["checkpoint_runners"] == 3 * 150

    assert client.post("/api/maintenance/clear").json() == {"ok": True}
    assert client.get("/api/maintenance/size").json()["total"] == 0
