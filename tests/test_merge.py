"""
test_merge.py — Reconciling an imported export with a local race.

Covers status priority, later-time-wins, notes joining, no-op skipping,
idempotence and shadow-row overwrite.
"""

import itertools
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from racecore import database, merge, races, tracking
from racecore.errors import RaceNotFoundError
from racecore.status import STATUS_ORDER, compare_status, outranks, status_priority


def make_store():
    conn = database.get_connection(":memory:")
    database.init_db(conn)
    database.migrate_db(conn)
    return database.Store(conn)


def make_race(store):
    return races.save_race(store, {
        "name": "Lake Manchester Trail 2025", "date": "2025-09-14", "start_time": "07:00",
        "min_runner": 1, "max_runner": 10, "checkpoints": [{"number": 1, "name": "CP1"}],
    })


def document(runners=(), checkpoint_runners=()):
    return {
        "raceConfig": {"name": "Lake Manchester Trail 2025", "date": "2025-09-14",
                       "startTime": "07:00", "minRunner": 1, "maxRunner": 10},
        "runners": list(runners),
        "checkpointRunners": list(checkpoint_runners),
        "exportType": "full-race-data",
        "version": "2.0.0",
    }


def runner(store, race_id, number):
    return store.first("runners", race_id=race_id, number=number)


# ======================================================================
# STATUS ORDER
# ======================================================================

def test_status_priority_order():
    assert STATUS_ORDER == ("not-started", "passed", "dnf", "non-starter")
    assert status_priority("non-starter") == 3
    assert status_priority("finished") is None
    assert compare_status("dnf", "passed") > 0
    assert compare_status("passed", "passed") == 0
    assert not outranks("finished", "not-started")
    assert not outranks("passed", "finished")


def test_status_monotonic_for_every_pair():
    for existing, imported in itertools.product([s.value for s in STATUS_ORDER], repeat=2):
        store = make_store()
        race_id = make_race(store)
        races.update_runner(store, race_id, 1, {"status": existing})

        merge.merge_race_data(store, race_id, document(
            runners=[{"number": 1, "status": imported}]))

        expected = max(status_priority(existing), status_priority(imported))
        assert status_priority(runner(store, race_id, 1)["status"]) == expected


# ======================================================================
# FIELD RULES
# ======================================================================

def test_higher_status_wins_but_later_time_kept():
    store = make_store()
    race_id = make_race(store)
    races.update_runner(store, race_id, 7, {
        "status": "passed", "recorded_time": "2025-01-01T08:15:00Z"})

    merge.merge_race_data(store, race_id, document(runners=[
        {"number": 7, "status": "dnf", "recordedTime": "2025-01-01T08:00:00Z"}]))

    r = runner(store, race_id, 7)
    assert r["status"] == "dnf"
    assert r["recorded_time"] == "2025-01-01T08:15:00Z"


def test_recorded_time_later_or_present_wins():
    store = make_store()
    race_id = make_race(store)
    races.update_runner(store, race_id, 1, {"recorded_time": "2025-01-01T08:00:00Z"})
    races.update_runner(store, race_id, 3, {"recorded_time": "2025-01-01T08:00:00Z"})

    merge.merge_race_data(store, race_id, document(runners=[
        {"number": 1, "recordedTime": "2025-01-01T09:00:00Z"},
        {"number": 2, "recordedTime": "2025-01-01T07:30:00Z"},
        {"number": 3, "recordedTime": None},
        {"number": 4},
    ]))

    assert runner(store, race_id, 1)["recorded_time"] == "2025-01-01T09:00:00Z"
    assert runner(store, race_id, 2)["recorded_time"] == "2025-01-01T07:30:00Z"
    assert runner(store, race_id, 3)["recorded_time"] == "2025-01-01T08:00:00Z"
    assert runner(store, race_id, 4)["recorded_time"] is None


def test_notes_concatenate_once():
    store = make_store()
    race_id = make_race(store)
    races.update_runner(store, race_id, 1, {"notes": "blister"})
    races.update_runner(store, race_id, 2, {"notes": "same"})

    doc = document(runners=[
        {"number": 1, "notes": "water refill"},
        {"number": 2, "notes": "same"},
        {"number": 3, "notes": "new"},
        {"number": 4, "notes": ""},
    ])
    merge.merge_race_data(store, race_id, doc)

    assert runner(store, race_id, 1)["notes"] == "blister | water refill"
    assert runner(store, race_id, 2)["notes"] == "same"
    assert runner(store, race_id, 3)["notes"] == "new"
    assert runner(store, race_id, 4)["notes"] is None


def test_merge_notes_helper():
    assert merge.merge_notes(None, None) is None
    assert merge.merge_notes("a", "a") is None
    assert merge.merge_notes("", "b") == "b"
    assert merge.merge_notes("a", "b") == "a | b"
    assert merge.merge_notes("a | b", "b") is None
    assert merge.merge_notes("z | x | y", "x | y") is None
    assert merge.merge_notes("z | x | yy", "x | y") == "z | x | yy | x | y"


# ======================================================================
# SUMMARY, IDEMPOTENCE, SHADOW ROWS
# ======================================================================

def test_unmatched_and_unchanged_runners_are_counted():
    store = make_store()
    race_id = make_race(store)
    summary = merge.merge_race_data(store, race_id, document(runners=[
        {"number": 1, "status": "passed"},
        {"number": 2, "status": "not-started"},
        {"number": 99, "status": "passed"},
    ]))
    assert summary["runners_updated"] == 1
    assert summary["runners_unchanged"] == 1
    assert summary["runners_skipped"] == 1
    assert runner(store, race_id, 99) is None


def test_merge_twice_equals_merge_once():
    store = make_store()
    race_id = make_race(store)
    races.update_runner(store, race_id, 5, {"status": "passed", "notes": "ok",
                                            "recorded_time": "2025-09-14T09:00:00Z"})
    doc = document(
        runners=[
            {"number": 5, "status": "dnf", "notes": "rolled ankle",
             "recordedTime": "2025-09-14T09:30:00Z"},
            {"number": 6, "status": "non-starter", "notes": "no show"},
        ],
        checkpoint_runners=[
            {"checkpointNumber": 1, "number": 5, "status": "passed",
             "callInTime": "2025-09-14T08:00:00Z", "markOffTime": "2025-09-14T08:01:00Z"},
        ],
    )

    merge.merge_race_data(store, race_id, doc)
    once = (races.get_runners(store, race_id), tracking.get_checkpoint_runners(store, race_id))

    summary = merge.merge_race_data(store, race_id, doc)
    twice = (races.get_runners(store, race_id), tracking.get_checkpoint_runners(store, race_id))

    assert once == twice
    assert summary["runners_updated"] == 0
    assert runner(store, race_id, 5)["notes"] == "ok | rolled ankle"


def test_compound_note_is_appended_once():
    store = make_store()
    race_id = make_race(store)
    races.update_runner(store, race_id, 1, {"notes": "z"})
    doc = document(runners=[{"number": 1, "notes": "x | y"}])

    merge.merge_race_data(store, race_id, doc)
    summary = merge.merge_race_data(store, race_id, doc)

    assert runner(store, race_id, 1)["notes"] == "z | x | y"
    assert summary["runners_updated"] == 0
    assert summary["runners_unchanged"] == 1


def test_checkpoint_rows_last_import_wins():
    store = make_store()
    race_id = make_race(store)
    tracking.mark_checkpoint_runner(store, race_id, 1, 3, call_in_time="2025-09-14T08:00:00Z",
                                    status="passed")

    merge.merge_race_data(store, race_id, document(checkpoint_runners=[
        {"checkpointNumber": 1, "number": 3, "status": "not-started"},
        {"checkpointNumber": 1, "number": 4, "status": "dnf", "notes": "pulled out"},
    ]))

    rows = {r["number"]: r for r in tracking.get_checkpoint_runners(store, race_id, 1)}
    assert rows[3]["status"] == "not-started"
    assert rows[3]["call_in_time"] is None
    assert rows[4]["status"] == "dnf"
    assert rows[4]["notes"] == "pulled out"


def test_apply_isolated_base_station_results():
    store = make_store()
    race_id = make_race(store)
    count = merge.apply_isolated_results(store, race_id, {
        "raceConfig": {"name": "x", "date": "2025-09-14", "startTime": "07:00",
                       "minRunner": 1, "maxRunner": 10},
        "baseStationRunners": [
            {"checkpointNumber": 1, "number": 2, "status": "passed",
             "commonTime": "2025-09-14T10:00:00Z"},
        ],
        "exportType": "isolated-base-station-results",
    })
    assert count == 1
    row = tracking.get_base_station_runners(store, race_id, 1)[0]
    assert row["common_time"] == "2025-09-14T10:00:00Z"


def test_unknown_race_is_rejected_without_writing():
    store = make_store()
    make_race(store)
    doc = document(
        runners=[{"number": 1, "status": "passed"}],
        checkpoint_runners=[{"checkpointNumber": 1, "number": 1, "status": "passed"}],
    )

    with pytest.raises(RaceNotFoundError):
        merge.merge_race_data(store, 999, doc)
    with pytest.raises(RaceNotFoundError):
        merge.apply_isolated_results(store, 999, doc)
    assert store.count("checkpoint_runners") == 0
