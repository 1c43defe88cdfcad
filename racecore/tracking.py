"""
tracking.py — Per-station shadow copies of the runner list.

Each checkpoint and each base station tracks runner status in its own table
(checkpoint_runners, base_station_runners) so a device can operate offline
without touching the master runners table. Rows are unique per
(race_id, checkpoint_number, number) and are created lazily: seeding fills in
every runner, and any update on a missing row inserts it first.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from racecore.database import Store
from racecore.errors import storage_operation
from racecore.status import DEFAULT_STATUS, RunnerStatus
from racecore.timeutil import utc_now_iso

logger = logging.getLogger("racetracker.tracking")

CHECKPOINT_DEFAULTS = {
    "status": DEFAULT_STATUS,
    "call_in_time": None,
    "mark_off_time": None,
    "notes": None,
}

BASE_STATION_DEFAULTS = {
    "status": DEFAULT_STATUS,
    "common_time": None,
    "notes": None,
}

SHADOW_DEFAULTS = {
    "checkpoint_runners": CHECKPOINT_DEFAULTS,
    "base_station_runners": BASE_STATION_DEFAULTS,
}


def _seed(store: Store, table: str, race_id: int, checkpoint_number: int) -> list[dict]:
    """Insert a default shadow row for every runner that lacks one at this station."""
    runners = store.find("runners", order_by="number", race_id=race_id)
    existing = {
        r["number"]
        for r in store.find(table, race_id=race_id, checkpoint_number=checkpoint_number)
    }
    missing = [
        {"race_id": race_id, "checkpoint_number": checkpoint_number,
         "number": r["number"], **SHADOW_DEFAULTS[table]}
        for r in runners if r["number"] not in existing
    ]
    if missing:
        store.bulk_add(table, missing)
    logger.info("Seeded %d %s rows for race %s station %s",
                len(missing), table, race_id, checkpoint_number)
    return store.find(table, order_by="number",
                      race_id=race_id, checkpoint_number=checkpoint_number)


def _upsert_shadow(store: Store, table: str, race_id: int, checkpoint_number: int,
                   number: int, patch: dict) -> dict:
    key = {"race_id": race_id, "checkpoint_number": checkpoint_number, "number": number}
    return store.upsert(table, key, SHADOW_DEFAULTS[table], patch)


# ======================================================================
# CHECKPOINT RUNNERS
# ======================================================================

@storage_operation("Failed to initialize checkpoint runners")
def initialize_checkpoint_runners(store: Store, race_id: int,
                                  checkpoint_number: int) -> list[dict]:
    return _seed(store, "checkpoint_runners", race_id, checkpoint_number)


@storage_operation("Failed to load checkpoint runners")
def get_checkpoint_runners(store: Store, race_id: int,
                           checkpoint_number: Optional[int] = None) -> list[dict]:
    if checkpoint_number is None:
        return store.find("checkpoint_runners", order_by=("checkpoint_number", "number"),
                          race_id=race_id)
    return store.find("checkpoint_runners", order_by="number",
                      race_id=race_id, checkpoint_number=checkpoint_number)


@storage_operation("Failed to update checkpoint runner")
def update_checkpoint_runner(store: Store, race_id: int, checkpoint_number: int,
                             number: int, patch: dict) -> dict:
    return _upsert_shadow(store, "checkpoint_runners", race_id, checkpoint_number,
                          number, patch)


def _checkpoint_mark_patch(call_in_time: Optional[str], mark_off_time: Optional[str],
                           status: str) -> dict:
    timestamp = mark_off_time or call_in_time or utc_now_iso()
    return {
        "status": status,
        "call_in_time": call_in_time or timestamp,
        "mark_off_time": mark_off_time or timestamp,
    }


def mark_checkpoint_runner(store: Store, race_id: int, checkpoint_number: int,
                           number: int, call_in_time: Optional[str] = None,
                           mark_off_time: Optional[str] = None,
                           status: str = RunnerStatus.PASSED.value) -> dict:
    """Record a runner at a checkpoint. Missing times default to now."""
    patch = _checkpoint_mark_patch(call_in_time, mark_off_time, status)
    return update_checkpoint_runner(store, race_id, checkpoint_number, number, patch)


@storage_operation("Failed to bulk mark checkpoint runners")
def bulk_mark_checkpoint_runners(store: Store, race_id: int, checkpoint_number: int,
                                 numbers: Iterable[int],
                                 call_in_time: Optional[str] = None,
                                 mark_off_time: Optional[str] = None,
                                 status: str = RunnerStatus.PASSED.value) -> list[dict]:
    """Mark several runners with one shared timestamp, one write at a time."""
    patch = _checkpoint_mark_patch(call_in_time, mark_off_time, status)
    return [
        _upsert_shadow(store, "checkpoint_runners", race_id, checkpoint_number, n, patch)
        for n in numbers
    ]


# ======================================================================
# BASE STATION RUNNERS
# ======================================================================

@storage_operation("Failed to initialize base station runners")
def initialize_base_station_runners(store: Store, race_id: int,
                                    checkpoint_number: int = 1) -> list[dict]:
    return _seed(store, "base_station_runners", race_id, checkpoint_number)


@storage_operation("Failed to load base station runners")
def get_base_station_runners(store: Store, race_id: int,
                             checkpoint_number: Optional[int] = None) -> list[dict]:
    if checkpoint_number is None:
        return store.find("base_station_runners",
                          order_by=("checkpoint_number", "number"), race_id=race_id)
    return store.find("base_station_runners", order_by="number",
                      race_id=race_id, checkpoint_number=checkpoint_number)


@storage_operation("Failed to update base station runner")
def update_base_station_runner(store: Store, race_id: int, checkpoint_number: int,
                               number: int, patch: dict) -> dict:
    return _upsert_shadow(store, "base_station_runners", race_id, checkpoint_number,
                          number, patch)


def mark_base_station_runner(store: Store, race_id: int, checkpoint_number: int,
                             number: int, common_time: Optional[str] = None,
                             status: str = RunnerStatus.PASSED.value) -> dict:
    patch = {"status": status, "common_time": common_time or utc_now_iso()}
    return update_base_station_runner(store, race_id, checkpoint_number, number, patch)


@storage_operation("Failed to bulk mark base station runners")
def bulk_mark_base_station_runners(store: Store, race_id: int, checkpoint_number: int,
                                   numbers: Iterable[int],
                                   common_time: Optional[str] = None,
                                   status: str = RunnerStatus.PASSED.value) -> list[dict]:
    """Apply one common time to a batch of runners arriving together."""
    patch = {"status": status, "common_time": common_time or utc_now_iso()}
    return [
        _upsert_shadow(store, "base_station_runners", race_id, checkpoint_number, n, patch)
        for n in numbers
    ]
