"""
transfer.py — JSON export/import of races between devices.

Exports are plain dicts ready for json.dumps, with camelCase keys:

    full-race-data                 raceConfig + runners + checkpointRunners
    isolated-checkpoint-results    raceConfig header + one checkpoint's rows
    isolated-base-station-results  raceConfig header + one station's rows

Import validates the document before any write. A full export whose
(name, date) matches a local race is merged into it; every other import
creates a new race.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from racecore.database import Store
from racecore.errors import ImportValidationError, StorageError, storage_operation
from racecore.merge import import_full_race_data, merge_race_data
from racecore.races import (
    find_race, get_checkpoints, get_race, get_runners, save_race,
)
from racecore.schemas import (
    FULL_RACE_DATA, ISOLATED_BASE_STATION_RESULTS, ISOLATED_CHECKPOINT_RESULTS,
    ExportDocument,
)
from racecore.timeutil import utc_now_iso
from racecore.tracking import get_base_station_runners, get_checkpoint_runners

logger = logging.getLogger("racetracker.transfer")

FULL_EXPORT_VERSION = "2.0.0"
ISOLATED_EXPORT_VERSION = "3.0.0"


def runner_range_to_wire(rng: dict) -> dict:
    if rng.get("is_individual"):
        return {"isIndividual": True,
                "individualNumbers": list(rng.get("individual_numbers") or [])}
    return {"min": rng.get("min"), "max": rng.get("max")}


def _race_header(race: dict) -> dict:
    return {
        "id": race["id"],
        "name": race["name"],
        "date": race["date"],
        "startTime": race["start_time"],
        "minRunner": race["min_runner"],
        "maxRunner": race["max_runner"],
    }


def _checkpoint_runner_to_wire(row: dict) -> dict:
    return {
        "checkpointNumber": row["checkpoint_number"],
        "number": row["number"],
        "markOffTime": row["mark_off_time"],
        "callInTime": row["call_in_time"],
        "status": row["status"],
        "notes": row["notes"],
    }


def _base_station_runner_to_wire(row: dict) -> dict:
    return {
        "checkpointNumber": row["checkpoint_number"],
        "number": row["number"],
        "commonTime": row["common_time"],
        "status": row["status"],
        "notes": row["notes"],
    }


def _checkpoint_name(store: Store, race_id: int, checkpoint_number: int) -> Optional[str]:
    for cp in get_checkpoints(store, race_id):
        if cp["number"] == checkpoint_number:
            return cp["name"]
    return None


# ======================================================================
# EXPORT
# ======================================================================

@storage_operation("Failed to export race configuration")
def export_race_config(store: Store, race_id: int) -> dict:
    """Full race export: config, master runners and all checkpoint shadow rows."""
    race = get_race(store, race_id)
    runners = get_runners(store, race_id)
    checkpoint_runners = get_checkpoint_runners(store, race_id)

    return {
        "raceConfig": {
            "name": race["name"],
            "date": race["date"],
            "startTime": race["start_time"],
            "minRunner": race["min_runner"],
            "maxRunner": race["max_runner"],
            "runnerRanges": [runner_range_to_wire(r) for r in race["runner_ranges"] or []],
            "checkpoints": [
                {"number": cp["number"], "name": cp["name"]}
                for cp in get_checkpoints(store, race_id)
            ],
        },
        "runners": [
            {"number": r["number"], "status": r["status"],
             "recordedTime": r["recorded_time"], "notes": r["notes"]}
            for r in runners
        ],
        "checkpointRunners": [_checkpoint_runner_to_wire(r) for r in checkpoint_runners],
        "exportedAt": utc_now_iso(),
        "version": FULL_EXPORT_VERSION,
        "exportType": FULL_RACE_DATA,
    }


@storage_operation("Failed to export checkpoint results")
def export_isolated_checkpoint_results(store: Store, race_id: int,
                                       checkpoint_number: int) -> dict:
    """One checkpoint's shadow rows, for carrying to the base station."""
    race = get_race(store, race_id)
    rows = get_checkpoint_runners(store, race_id, checkpoint_number)
    return {
        "raceConfig": _race_header(race),
        "checkpointRunners": [_checkpoint_runner_to_wire(r) for r in rows],
        "checkpointNumber": checkpoint_number,
        "checkpointName": _checkpoint_name(store, race_id, checkpoint_number),
        "exportedAt": utc_now_iso(),
        "version": ISOLATED_EXPORT_VERSION,
        "exportType": ISOLATED_CHECKPOINT_RESULTS,
    }


@storage_operation("Failed to export base station results")
def export_isolated_base_station_results(store: Store, race_id: int,
                                         checkpoint_number: int = 1) -> dict:
    race = get_race(store, race_id)
    rows = get_base_station_runners(store, race_id, checkpoint_number)
    return {
        "raceConfig": _race_header(race),
        "baseStationRunners": [_base_station_runner_to_wire(r) for r in rows],
        "checkpointNumber": checkpoint_number,
        "exportedAt": utc_now_iso(),
        "version": ISOLATED_EXPORT_VERSION,
        "exportType": ISOLATED_BASE_STATION_RESULTS,
    }


# ======================================================================
# IMPORT
# ======================================================================

def parse_export_document(data: dict) -> ExportDocument:
    """Validate an export document; raises ImportValidationError."""
    if not isinstance(data, dict) or not isinstance(data.get("raceConfig"), dict):
        raise ImportValidationError("Invalid race configuration data: missing raceConfig")
    try:
        return ExportDocument.model_validate(data)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ImportValidationError(
            "Invalid race configuration data: " + ", ".join(fields)
        ) from e


def import_race_config(store: Store, data: dict) -> int:
    """Import an export document. Returns the id of the merged or created race."""
    doc = parse_export_document(data)
    rc = doc.race_config

    try:
        existing = find_race(store, rc.name, rc.date)
        if existing is not None and doc.export_type == FULL_RACE_DATA:
            logger.info("Race %s %s exists (id %s), merging import",
                        rc.name, rc.date, existing["id"])
            merge_race_data(store, existing["id"], doc)
            return existing["id"]

        race_id = save_race(store, rc.to_config())
        if doc.export_type == FULL_RACE_DATA:
            import_full_race_data(store, race_id, doc)
        logger.info("Imported %s as new race %s", doc.export_type or "document", race_id)
        return race_id
    except StorageError as e:
        logger.error("Error importing race config: %s", e)
        raise StorageError("Failed to import race configuration") from e
