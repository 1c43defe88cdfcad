"""
races.py — Race lifecycle, runner and checkpoint operations.

save_race expands the configured runner ranges into one runner row per bib
and seeds the checkpoint rows. delete_race removes a race and every row that
belongs to it as a single unit of work.

Race config (in-process form):
    {
        "name": "Mt Glorious 2025", "date": "2025-06-01", "start_time": "07:00",
        "min_runner": 1, "max_runner": 128,
        "runner_ranges": [{"min": 1, "max": 100},
                          {"is_individual": True, "individual_numbers": [200, 201]}],
        "checkpoints": [{"number": 1, "name": "CP1"}, ...],
        "metadata": {...},
    }
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable, Optional

from racecore.database import RACE_TABLES, TABLES, Store
from racecore.errors import RaceNotFoundError, StorageError, storage_operation
from racecore.status import DEFAULT_STATUS, RunnerStatus
from racecore.timeutil import utc_now_iso

logger = logging.getLogger("racetracker.races")


def default_checkpoint_name(number: int) -> str:
    return f"Checkpoint {number}"


def new_runner(race_id: int, number: int) -> dict:
    return {
        "race_id": race_id,
        "number": number,
        "status": DEFAULT_STATUS,
        "recorded_time": None,
        "notes": None,
    }


def expand_runner_ranges(config: dict) -> list[int]:
    """Return the bib numbers a race config describes, in configured order.

    Individual ranges contribute their listed numbers; min/max ranges every
    integer in [min, max]. Without runner_ranges, falls back to
    [min_runner, max_runner].
    """
    ranges = config.get("runner_ranges") or []
    numbers: list[int] = []
    if ranges:
        for rng in ranges:
            if rng.get("is_individual"):
                numbers.extend(int(n) for n in rng.get("individual_numbers") or [])
            else:
                numbers.extend(range(int(rng["min"]), int(rng["max"]) + 1))
    else:
        numbers.extend(range(int(config["min_runner"]), int(config["max_runner"]) + 1))
    return numbers


# ======================================================================
# RACES
# ======================================================================

@storage_operation("Failed to save race configuration",
                   extra=(KeyError, TypeError, ValueError))
def save_race(store: Store, config: dict) -> int:
    """Insert a race with its checkpoints and runners. Returns the race id."""
    checkpoints = config.get("checkpoints") or []
    race = {
        "name": config["name"],
        "date": config["date"],
        "start_time": config["start_time"],
        "min_runner": config["min_runner"],
        "max_runner": config["max_runner"],
        "runner_ranges": config.get("runner_ranges") or [],
        "checkpoints": [
            {"number": cp["number"],
             "name": cp.get("name") or default_checkpoint_name(cp["number"])}
            for cp in checkpoints
        ],
        "metadata": config.get("metadata"),
        "created_at": utc_now_iso(),
    }

    with store.transaction():
        race_id = store.add("races", race)

        if race["checkpoints"]:
            store.bulk_add("checkpoints", [
                {"race_id": race_id, "number": cp["number"], "name": cp["name"]}
                for cp in race["checkpoints"]
            ])
        else:
            store.add("checkpoints", {
                "race_id": race_id, "number": 1, "name": default_checkpoint_name(1),
            })

        store.bulk_add("runners", [
            new_runner(race_id, n) for n in expand_runner_ranges(config)
        ])

    logger.info("Saved race %s (%s %s)", race_id, race["name"], race["date"])
    return race_id


def get_race(store: Store, race_id: int) -> dict:
    """Return the race or raise RaceNotFoundError."""
    try:
        race = store.get("races", race_id)
    except sqlite3.Error as e:
        logger.error("Error getting race %s: %s", race_id, e)
        raise StorageError("Failed to load race") from e
    if race is None:
        raise RaceNotFoundError()
    return race


@storage_operation("Failed to load current race")
def get_current_race(store: Store) -> Optional[dict]:
    """Most recently created race, or None when there are no races."""
    races = store.find("races", order_by=("created_at", "id"), descending=True, limit=1)
    return races[0] if races else None


@storage_operation("Failed to load races")
def get_all_races(store: Store) -> list[dict]:
    return store.find("races", order_by=("created_at", "id"), descending=True)


@storage_operation("Failed to look up race")
def find_race(store: Store, name: str, date: str) -> Optional[dict]:
    """Exact (name, date) match, the key races share across devices."""
    return store.first("races", name=name, date=date)


@storage_operation("Failed to delete race")
def delete_race(store: Store, race_id: int) -> None:
    """Delete a race and all its runners, checkpoints and shadow rows atomically."""
    with store.transaction():
        store.delete("races", race_id)
        for table in RACE_TABLES:
            store.delete_where(table, race_id=race_id)
    logger.info("Deleted race %s", race_id)


@storage_operation("Failed to clear all data")
def clear_all_data(store: Store) -> None:
    """Empty every table in one transaction."""
    with store.transaction():
        for table in TABLES:
            store.clear(table)
    logger.warning("All race data cleared")


# ======================================================================
# RUNNERS
# ======================================================================

@storage_operation("Failed to load runners")
def get_runners(store: Store, race_id: int) -> list[dict]:
    return store.find("runners", order_by="number", race_id=race_id)


def update_runner(store: Store, race_id: int, number: int, patch: dict) -> dict:
    """Patch one runner by bib number. Returns the updated runner."""
    try:
        runner = store.first("runners", race_id=race_id, number=number)
        if runner is None:
            logger.error("Runner %s not found in race %s", number, race_id)
            raise StorageError(f"Failed to update runner {number}")
        store.update("runners", runner["id"], patch)
    except sqlite3.Error as e:
        logger.error("Error updating runner %s: %s", number, e)
        raise StorageError(f"Failed to update runner {number}") from e
    return {**runner, **patch}


def mark_runner_passed(store: Store, race_id: int, number: int,
                       timestamp: Optional[str] = None) -> dict:
    return update_runner(store, race_id, number, {
        "status": RunnerStatus.PASSED.value,
        "recorded_time": timestamp or utc_now_iso(),
    })


def mark_runner_status(store: Store, race_id: int, number: int, status: str) -> dict:
    """Set a runner's status; any status other than passed clears recorded_time."""
    patch: dict[str, Any] = {"status": status}
    if status != RunnerStatus.PASSED.value:
        patch["recorded_time"] = None
    return update_runner(store, race_id, number, patch)


@storage_operation("Failed to update multiple runners")
def bulk_update_runners(store: Store, race_id: int, numbers: Iterable[int],
                        patch: dict) -> list[dict]:
    """Apply the same patch to every listed runner, one write per row.

    Numbers without a runner row are ignored. Writes already made stay
    committed if a later one fails.
    """
    wanted = set(numbers)
    updated = []
    for runner in store.find("runners", order_by="number", race_id=race_id):
        if runner["number"] not in wanted:
            continue
        store.update("runners", runner["id"], patch)
        updated.append({**runner, **patch})
    return updated


# ======================================================================
# CHECKPOINTS
# ======================================================================

@storage_operation("Failed to load checkpoints")
def get_checkpoints(store: Store, race_id: int) -> list[dict]:
    return store.find("checkpoints", order_by="number", race_id=race_id)


@storage_operation("Failed to add checkpoint")
def add_checkpoint(store: Store, race_id: int, number: int,
                   name: Optional[str] = None) -> int:
    return store.add("checkpoints", {
        "race_id": race_id, "number": number,
        "name": name or default_checkpoint_name(number),
    })


@storage_operation("Failed to update checkpoint")
def update_checkpoint(store: Store, checkpoint_id: int, patch: dict) -> None:
    store.update("checkpoints", checkpoint_id, patch)


@storage_operation("Failed to delete checkpoint")
def delete_checkpoint(store: Store, checkpoint_id: int) -> None:
    """Delete a checkpoint together with its checkpoint and base-station shadow rows."""
    checkpoint = store.get("checkpoints", checkpoint_id)
    if checkpoint is None:
        return
    with store.transaction():
        store.delete("checkpoints", checkpoint_id)
        for table in ("checkpoint_runners", "base_station_runners"):
            store.delete_where(table, race_id=checkpoint["race_id"],
                               checkpoint_number=checkpoint["number"])
