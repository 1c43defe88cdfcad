"""
test_transfer.py — Export documents and import (new race vs merge).
"""

import json
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from racecore import database, races, tracking, transfer
from racecore.errors import ImportValidationError, RaceNotFoundError


def make_store():
    conn = database.get_connection(":memory:")
    database.init_db(conn)
    database.migrate_db(conn)
    return database.Store(conn)


def make_race(store):
    return races.save_race(store, {
        "name": "Brisbane Trail Marathon 2025", "date": "2025-05-04", "start_time": "06:30:00",
        "min_runner": 1, "max_runner": 300,
        "runner_ranges": [{"min": 1, "max": 4},
                          {"is_individual": True, "individual_numbers": [300]}],
        "checkpoints": [{"number": 1, "name": "Start"}, {"number": 2, "name": "CP1 - Mt Nebo Road"}],
        "metadata": {"organizer": "WICEN Queensland"},
    })


def snapshot(store, race_id):
    """Race state without generated ids and timestamps."""
    race = races.get_race(store, race_id)
    return {
        "race": {k: race[k] for k in ("name", "date", "start_time", "min_runner",
                                      "max_runner", "runner_ranges")},
        "checkpoints": [(cp["number"], cp["name"]) for cp in races.get_checkpoints(store, race_id)],
        "runners": [(r["number"], r["status"], r["recorded_time"], r["notes"])
                    for r in races.get_runners(store, race_id)],
        "checkpoint_runners": [
            (r["checkpoint_number"], r["number"], r["status"], r["call_in_time"],
             r["mark_off_time"], r["notes"])
            for r in tracking.get_checkpoint_runners(store, race_id)
        ],
    }


# ======================================================================
# EXPORT
# ======================================================================

def test_export_race_config_shape():
    store = make_store()
    race_id = make_race(store)
    doc = transfer.export_race_config(store, race_id)

    assert doc["exportType"] == "full-race-data"
    assert doc["version"] == transfer.FULL_EXPORT_VERSION
    assert doc["exportedAt"]
    assert doc["checkpointRunners"] == []
    assert doc["raceConfig"]["startTime"] == "06:30:00"
    assert doc["raceConfig"]["runnerRanges"] == [
        {"min": 1, "max": 4},
        {"isIndividual": True, "individualNumbers": [300]},
    ]
    assert doc["raceConfig"]["checkpoints"] == [
        {"number": 1, "name": "Start"}, {"number": 2, "name": "CP1 - Mt Nebo Road"}]
    assert [r["number"] for r in doc["runners"]] == [1, 2, 3, 4, 300]
    assert set(doc["runners"][0]) == {"number", "status", "recordedTime", "notes"}
    json.dumps(doc)


def test_export_missing_race():
    store = make_store()
    with pytest.raises(RaceNotFoundError):
        transfer.export_race_config(store, 42)


def test_isolated_exports():
    store = make_store()
    race_id = make_race(store)
    tracking.mark_checkpoint_runner(store, race_id, 2, 3, call_in_time="2025-05-04T08:00:00Z")
    tracking.mark_base_station_runner(store, race_id, 1, 4, common_time="2025-05-04T09:00:00Z")

    cp_doc = transfer.export_isolated_checkpoint_results(store, race_id, 2)
    assert cp_doc["exportType"] == "isolated-checkpoint-results"
    assert cp_doc["version"] == transfer.ISOLATED_EXPORT_VERSION
    assert cp_doc["checkpointName"] == "CP1 - Mt Nebo Road"
    assert cp_doc["checkpointRunners"][0]["callInTime"] == "2025-05-04T08:00:00Z"
    assert cp_doc["raceConfig"]["name"] == "Brisbane Trail Marathon 2025"

    bs_doc = transfer.export_isolated_base_station_results(store, race_id)
    assert bs_doc["exportType"] == "isolated-base-station-results"
    assert bs_doc["baseStationRunners"][0]["commonTime"] == "2025-05-04T09:00:00Z"


# ======================================================================
# IMPORT
# ======================================================================

def test_round_trip_into_empty_store():
    source = make_store()
    race_id = make_race(source)
    races.mark_runner_passed(source, race_id, 2, "2025-05-04T09:12:00Z")
    races.mark_runner_status(source, race_id, 3, "dnf")
    races.update_runner(source, race_id, 300, {"notes": "late entry"})
    tracking.mark_checkpoint_runner(source, race_id, 2, 2, call_in_time="2025-05-04T07:40:00Z",
                                    mark_off_time="2025-05-04T07:41:00Z")

    doc = json.loads(json.dumps(transfer.export_race_config(source, race_id)))

    target = make_store()
    new_id = transfer.import_race_config(target, doc)

    assert snapshot(target, new_id) == snapshot(source, race_id)


def test_import_existing_race_merges():
    store = make_store()
    race_id = make_race(store)
    doc = transfer.export_race_config(store, race_id)
    doc["runners"][0]["status"] = "passed"
    doc["runners"][0]["recordedTime"] = "2025-05-04T10:00:00Z"

    assert transfer.import_race_config(store, doc) == race_id
    assert store.count("races") == 1
    assert races.get_runners(store, race_id)[0]["status"] == "passed"


def test_isolated_import_with_same_name_creates_new_race():
    store = make_store()
    race_id = make_race(store)
    doc = transfer.export_isolated_checkpoint_results(store, race_id, 1)

    new_id = transfer.import_race_config(store, doc)
    assert new_id != race_id
    assert store.count("races") == 2


def test_new_race_import_skips_default_runners():
    store = make_store()
    doc = {
        "raceConfig": {"name": "Fresh", "date": "2025-01-01", "startTime": "07:00",
                       "minRunner": 1, "maxRunner": 3},
        "runners": [
            {"number": 1, "status": "not-started", "recordedTime": None, "notes": None},
            {"number": 2, "status": "non-starter"},
            {"number": 9, "status": "passed"},
        ],
        "exportType": "full-race-data",
    }
    race_id = transfer.import_race_config(store, doc)
    statuses = [r["status"] for r in races.get_runners(store, race_id)]
    assert statuses == ["not-started", "non-starter", "not-started"]


def test_import_with_empty_individual_range():
    store = make_store()
    race_id = transfer.import_race_config(store, {
        "raceConfig": {"name": "Sparse", "date": "2025-02-01", "startTime": "07:00",
                       "minRunner": 1, "maxRunner": 3,
                       "runnerRanges": [{"min": 1, "max": 3},
                                        {"isIndividual": True, "individualNumbers": []}]},
        "exportType": "full-race-data",
    })
    assert [r["number"] for r in races.get_runners(store, race_id)] == [1, 2, 3]


@pytest.mark.parametrize("race_config", [
    {"date": "2025-01-01", "startTime": "07:00", "minRunner": 1, "maxRunner": 3},
    {"name": "X", "startTime": "07:00", "minRunner": 1, "maxRunner": 3},
    {"name": "X", "date": "2025-01-01", "minRunner": 1, "maxRunner": 3},
    {"name": "X", "date": "2025-01-01", "startTime": "07:00", "minRunner": "1", "maxRunner": 3},
    {"name": "X", "date": "2025-01-01", "startTime": "07:00", "minRunner": 1},
])
def test_invalid_documents_fail_before_writing(race_config):
    store = make_store()
    with pytest.raises(ImportValidationError, match="Invalid race configuration data"):
        transfer.import_race_config(store, {"raceConfig": race_config,
                                            "exportType": "full-race-data"})
    assert store.count("races") == 0


def test_document_without_race_config():
    store = make_store()
    with pytest.raises(ImportValidationError):
        transfer.import_race_config(store, {"runners": []})
