"""
routes.py — REST API endpoints for the race tracker.

All endpoints under /api/. Each request opens its own connection through
RaceStorage and closes it when done. Storage errors map to HTTP status:
    RaceNotFoundError      → 404
    ImportValidationError  → 422
    StorageError           → 500 (static message)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from fastapi import APIRouter, Body, HTTPException, Response
from pydantic import BaseModel

from racecore.errors import ImportValidationError, RaceNotFoundError, StorageError
from racecore.maintenance import create_backup, list_backups, restore_backup
from racecore.status import RunnerStatus
from racecore.storage import RaceStorage
from racecore.templates import get_template, get_template_names

logger = logging.getLogger("racetracker.api")

router = APIRouter()


# ─── Helper ──────────────────────────────────────────────────────────

@contextmanager
def _storage() -> Iterator[RaceStorage]:
    storage = RaceStorage(init_schema=False)
    try:
        yield storage
    except RaceNotFoundError as e:
        raise HTTPException(404, str(e))
    except ImportValidationError as e:
        raise HTTPException(422, str(e))
    except StorageError as e:
        logger.error("Storage error: %s", e)
        raise HTTPException(500, str(e))
    finally:
        storage.close()


def _patch(body: BaseModel) -> dict:
    return {k: v for k, v in body.model_dump(mode="json").items() if v is not None}


# ─── Pydantic models ─────────────────────────────────────────────────

class RunnerRangeBody(BaseModel):
    min: Optional[int] = None
    max: Optional[int] = None
    is_individual: bool = False
    individual_numbers: list[int] = []

class CheckpointBody(BaseModel):
    number: int
    name: Optional[str] = None

class RaceCreate(BaseModel):
    name: str
    date: str
    start_time: str
    min_runner: int
    max_runner: int
    runner_ranges: list[RunnerRangeBody] = []
    checkpoints: list[CheckpointBody] = []
    metadata: Optional[dict] = None

class TemplateRaceCreate(BaseModel):
    template_id: str
    race_name: Optional[str] = None
    race_date: Optional[str] = None
    start_time: Optional[str] = None
    runner_range_start: Optional[int] = None
    runner_range_end: Optional[int] = None

class RunnerUpdate(BaseModel):
    status: Optional[RunnerStatus] = None
    recorded_time: Optional[str] = None
    notes: Optional[str] = None

class RunnerStatusBody(BaseModel):
    status: RunnerStatus

class BulkRunnerUpdate(BaseModel):
    numbers: list[int]
    status: Optional[RunnerStatus] = None
    recorded_time: Optional[str] = None
    notes: Optional[str] = None

class CheckpointUpdate(BaseModel):
    number: Optional[int] = None
    name: Optional[str] = None

class ShadowRunnerUpdate(BaseModel):
    status: Optional[RunnerStatus] = None
    call_in_time: Optional[str] = None
    mark_off_time: Optional[str] = None
    common_time: Optional[str] = None
    notes: Optional[str] = None

class CheckpointMark(BaseModel):
    numbers: list[int]
    call_in_time: Optional[str] = None
    mark_off_time: Optional[str] = None
    status: RunnerStatus = RunnerStatus.PASSED

class BaseStationMark(BaseModel):
    numbers: list[int]
    common_time: Optional[str] = None
    status: RunnerStatus = RunnerStatus.PASSED

class SettingBody(BaseModel):
    value: Any = None


# ═══════════════════════════════════════════════════════════════════════
# RACES
# ═══════════════════════════════════════════════════════════════════════

@router.get("/races")
async def list_races():
    with _storage() as storage:
        return storage.get_all_races()


@router.post("/races")
async def create_race_endpoint(body: RaceCreate):
    with _storage() as storage:
        return {"id": storage.save_race(body.model_dump(mode="json"))}


@router.post("/races/from-template")
async def create_race_from_template_endpoint(body: TemplateRaceCreate):
    if get_template(body.template_id) is None:
        raise HTTPException(404, f"Template '{body.template_id}' not found")
    overrides = _patch(body)
    template_id = overrides.pop("template_id")
    with _storage() as storage:
        return {"id": storage.create_race_from_template(template_id, **overrides)}


@router.get("/races/current")
async def current_race():
    with _storage() as storage:
        race = storage.get_current_race()
        if race is None:
            raise HTTPException(404, "No races")
        return race


@router.get("/races/{race_id}")
async def get_race_endpoint(race_id: int):
    with _storage() as storage:
        return storage.get_race(race_id)


@router.delete("/races/{race_id}")
async def delete_race_endpoint(race_id: int):
    with _storage() as storage:
        storage.get_race(race_id)
        storage.delete_race(race_id)
        return {"ok": True}


# ═══════════════════════════════════════════════════════════════════════
# RUNNERS
# ═══════════════════════════════════════════════════════════════════════

@router.get("/races/{race_id}/runners")
async def list_runners(race_id: int):
    with _storage() as storage:
        return storage.get_runners(race_id)


@router.put("/races/{race_id}/runners/{number}")
async def update_runner_endpoint(race_id: int, number: int, body: RunnerUpdate):
    with _storage() as storage:
        return storage.update_runner(race_id, number, _patch(body))


@router.put("/races/{race_id}/runners/{number}/status")
async def mark_runner_status_endpoint(race_id: int, number: int, body: RunnerStatusBody):
    with _storage() as storage:
        return storage.mark_runner_status(race_id, number, body.status.value)


@router.post("/races/{race_id}/runners/bulk")
async def bulk_update_runners_endpoint(race_id: int, body: BulkRunnerUpdate):
    patch = _patch(body)
    numbers = patch.pop("numbers")
    if not patch:
        raise HTTPException(400, "Nothing to update")
    with _storage() as storage:
        return {"updated": len(storage.bulk_update_runners(race_id, numbers, patch))}


# ═══════════════════════════════════════════════════════════════════════
# CHECKPOINTS
# ═══════════════════════════════════════════════════════════════════════

@router.get("/races/{race_id}/checkpoints")
async def list_checkpoints(race_id: int):
    with _storage() as storage:
        return storage.get_checkpoints(race_id)


@router.post("/races/{race_id}/checkpoints")
async def add_checkpoint_endpoint(race_id: int, body: CheckpointBody):
    with _storage() as storage:
        return {"id": storage.add_checkpoint(race_id, body.number, body.name)}


@router.put("/checkpoints/{checkpoint_id}")
async def update_checkpoint_endpoint(checkpoint_id: int, body: CheckpointUpdate):
    with _storage() as storage:
        storage.update_checkpoint(checkpoint_id, _patch(body))
        return {"ok": True}


@router.delete("/checkpoints/{checkpoint_id}")
async def delete_checkpoint_endpoint(checkpoint_id: int):
    with _storage() as storage:
        storage.delete_checkpoint(checkpoint_id)
        return {"ok": True}


# ═══════════════════════════════════════════════════════════════════════
# CHECKPOINT RUNNERS
# ═══════════════════════════════════════════════════════════════════════

@router.get("/races/{race_id}/checkpoints/{cp}/runners")
async def list_checkpoint_runners(race_id: int, cp: int):
    with _storage() as storage:
        return storage.get_checkpoint_runners(race_id, cp)


@router.post("/races/{race_id}/checkpoints/{cp}/runners/init")
async def init_checkpoint_runners(race_id: int, cp: int):
    with _storage() as storage:
        storage.get_race(race_id)
        return storage.initialize_checkpoint_runners(race_id, cp)


@router.put("/races/{race_id}/checkpoints/{cp}/runners/{number}")
async def update_checkpoint_runner_endpoint(race_id: int, cp: int, number: int,
                                            body: ShadowRunnerUpdate):
    patch = _patch(body)
    patch.pop("common_time", None)
    with _storage() as storage:
        return storage.update_checkpoint_runner(race_id, cp, number, patch)


@router.post("/races/{race_id}/checkpoints/{cp}/mark")
async def mark_checkpoint_runners_endpoint(race_id: int, cp: int, body: CheckpointMark):
    with _storage() as storage:
        rows = storage.bulk_mark_checkpoint_runners(
            race_id, cp, body.numbers,
            call_in_time=body.call_in_time, mark_off_time=body.mark_off_time,
            status=body.status.value,
        )
        return {"marked": len(rows)}


# ═══════════════════════════════════════════════════════════════════════
# BASE STATION
# ═══════════════════════════════════════════════════════════════════════

@router.get("/races/{race_id}/base-station/runners")
async def list_base_station_runners(race_id: int, cp: Optional[int] = None):
    with _storage() as storage:
        return storage.get_base_station_runners(race_id, cp)


@router.post("/races/{race_id}/base-station/{cp}/runners/init")
async def init_base_station_runners(race_id: int, cp: int):
    with _storage() as storage:
        storage.get_race(race_id)
        return storage.initialize_base_station_runners(race_id, cp)


@router.put("/races/{race_id}/base-station/{cp}/runners/{number}")
async def update_base_station_runner_endpoint(race_id: int, cp: int, number: int,
                                              body: ShadowRunnerUpdate):
    patch = _patch(body)
    patch.pop("call_in_time", None)
    patch.pop("mark_off_time", None)
    with _storage() as storage:
        return storage.update_base_station_runner(race_id, cp, number, patch)


@router.post("/races/{race_id}/base-station/{cp}/mark")
async def mark_base_station_runners_endpoint(race_id: int, cp: int, body: BaseStationMark):
    with _storage() as storage:
        rows = storage.bulk_mark_base_station_runners(
            race_id, cp, body.numbers,
            common_time=body.common_time, status=body.status.value,
        )
        return {"marked": len(rows)}


# ═══════════════════════════════════════════════════════════════════════
# EXPORT / IMPORT
# ═══════════════════════════════════════════════════════════════════════

@router.get("/races/{race_id}/export")
async def export_race_endpoint(race_id: int):
    with _storage() as storage:
        return storage.export_race_config(race_id)


@router.get("/races/{race_id}/checkpoints/{cp}/export")
async def export_checkpoint_endpoint(race_id: int, cp: int):
    with _storage() as storage:
        return storage.export_isolated_checkpoint_results(race_id, cp)


@router.get("/races/{race_id}/base-station/{cp}/export")
async def export_base_station_endpoint(race_id: int, cp: int):
    with _storage() as storage:
        return storage.export_isolated_base_station_results(race_id, cp)


@router.post("/import")
async def import_race_endpoint(document: dict = Body(...)):
    with _storage() as storage:
        race_id = storage.import_race_config(document)
        logger.info("Import via API → race %s", race_id)
        return {"id": race_id}


@router.post("/races/{race_id}/isolated-results")
async def apply_isolated_results_endpoint(race_id: int, document: dict = Body(...)):
    with _storage() as storage:
        storage.get_race(race_id)
        return {"applied": storage.apply_isolated_results(race_id, document)}


@router.get("/races/{race_id}/results.csv")
async def export_results_csv(race_id: int):
    with _storage() as storage:
        result = storage.export_race_results(race_id)
    return Response(
        content=result["content"],
        media_type=result["mimeType"],
        headers={"Content-Disposition": f'attachment; filename="{result["filename"]}"'},
    )


# ═══════════════════════════════════════════════════════════════════════
# TEMPLATES
# ═══════════════════════════════════════════════════════════════════════

@router.get("/templates")
async def list_templates():
    return get_template_names()


@router.get("/templates/{template_id}")
async def get_template_endpoint(template_id: str):
    tpl = get_template(template_id)
    if tpl is None:
        raise HTTPException(404, f"Template '{template_id}' not found")
    return tpl


# ═══════════════════════════════════════════════════════════════════════
# SETTINGS
# ═══════════════════════════════════════════════════════════════════════

@router.get("/settings")
async def list_settings():
    with _storage() as storage:
        return storage.get_all_settings()


@router.get("/settings/{key}")
async def get_setting_endpoint(key: str):
    with _storage() as storage:
        return {"key": key, "value": storage.get_setting(key)}


@router.put("/settings/{key}")
async def save_setting_endpoint(key: str, body: SettingBody):
    with _storage() as storage:
        storage.save_setting(key, body.value)
        return {"ok": True}


# ═══════════════════════════════════════════════════════════════════════
# MAINTENANCE / BACKUP
# ═══════════════════════════════════════════════════════════════════════

@router.get("/maintenance/size")
async def database_size():
    with _storage() as storage:
        return storage.get_database_size()


@router.post("/maintenance/cleanup")
async def cleanup_endpoint(days_to_keep: int = 30):
    with _storage() as storage:
        return {"removed": storage.cleanup_old_races(days_to_keep)}


@router.post("/races/{race_id}/migrate-isolated")
async def migrate_isolated_endpoint(race_id: int):
    with _storage() as storage:
        storage.get_race(race_id)
        return {"checkpoints": storage.migrate_to_isolated_tracking(race_id)}


@router.post("/maintenance/clear")
async def clear_all_endpoint():
    with _storage() as storage:
        storage.clear_all_data()
        return {"ok": True}


@router.post("/backup")
async def create_backup_endpoint(label: str = ""):
    """Create a database backup."""
    path = create_backup(label)
    return {"ok": True, "filename": path.name, "path": str(path)}


@router.get("/backups")
async def list_backups_endpoint():
    return list_backups()


@router.post("/restore/{filename}")
async def restore_backup_endpoint(filename: str):
    """Restore database from a backup. WARNING: replaces current data."""
    if not restore_backup(filename):
        raise HTTPException(404, f"Backup '{filename}' not found")
    return {"ok": True, "restored_from": filename}
