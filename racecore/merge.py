"""
merge.py — Field-level reconciliation of an imported export into a local race.

Two devices that never share a network each edit their own copy of a race;
their export files are later carried to one device and merged here.

Runner rows (matched on race_id + number, unmatched numbers are skipped):
    status         higher priority wins (status.outranks)
    recorded_time  later timestamp wins; a present value beats an absent one
    notes          differing non-empty notes are joined "existing | imported"
Only changed fields are written, one row at a time, in document order.

Checkpoint and base-station shadow rows are overwritten by upsert: the last
import wins at that granularity.

Applying the same document twice leaves the race as applying it once.
Merges issued concurrently from two processes against the same race are
not coordinated.
"""

from __future__ import annotations

import logging
from typing import Optional

from racecore.database import Store
from racecore.errors import storage_operation
from racecore.races import get_race
from racecore.schemas import ExportDocument, RunnerDoc
from racecore.status import DEFAULT_STATUS, outranks
from racecore.timeutil import try_parse_timestamp
from racecore.tracking import update_base_station_runner, update_checkpoint_runner

logger = logging.getLogger("racetracker.merge")

NOTES_SEPARATOR = " | "


def is_later(candidate: Optional[str], current: Optional[str]) -> bool:
    """True if `candidate` should replace `current` as the recorded time."""
    if not candidate:
        return False
    if not current:
        return True
    cand = try_parse_timestamp(candidate)
    curr = try_parse_timestamp(current)
    if cand is None or curr is None:
        return False
    return cand > curr


def merge_notes(existing: Optional[str], imported: Optional[str]) -> Optional[str]:
    """Return the combined notes, or None when nothing changes."""
    if not imported or imported == existing:
        return None
    if not existing:
        return imported
    # An earlier merge may have appended a note that itself holds separators.
    padded = f"{NOTES_SEPARATOR}{existing}{NOTES_SEPARATOR}"
    if f"{NOTES_SEPARATOR}{imported}{NOTES_SEPARATOR}" in padded:
        return None
    return f"{existing}{NOTES_SEPARATOR}{imported}"


def runner_merge_patch(existing: dict, imported: RunnerDoc) -> dict:
    """Fields of `existing` that the imported record should change."""
    patch = {}
    if outranks(imported.status, existing["status"]):
        patch["status"] = imported.status
    if is_later(imported.recorded_time, existing["recorded_time"]):
        patch["recorded_time"] = imported.recorded_time
    notes = merge_notes(existing["notes"], imported.notes)
    if notes is not None:
        patch["notes"] = notes
    return patch


def _apply_shadow_rows(store: Store, race_id: int, document: ExportDocument) -> int:
    count = 0
    for row in document.checkpoint_runners:
        update_checkpoint_runner(store, race_id, row.checkpoint_number, row.number, {
            "call_in_time": row.call_in_time,
            "mark_off_time": row.mark_off_time,
            "status": row.status or DEFAULT_STATUS,
            "notes": row.notes,
        })
        count += 1
    for row in document.base_station_runners:
        update_base_station_runner(store, race_id, row.checkpoint_number, row.number, {
            "common_time": row.common_time,
            "status": row.status or DEFAULT_STATUS,
            "notes": row.notes,
        })
        count += 1
    return count


def _as_document(document: ExportDocument | dict) -> ExportDocument:
    if isinstance(document, ExportDocument):
        return document
    return ExportDocument.model_validate(document)


@storage_operation("Failed to merge race data")
def merge_race_data(store: Store, race_id: int,
                    document: ExportDocument | dict) -> dict:
    """Merge an imported full-race export into an existing race.

    Returns counts: runners_updated, runners_unchanged, runners_skipped,
    shadow_rows.
    """
    get_race(store, race_id)
    doc = _as_document(document)
    summary = {"runners_updated": 0, "runners_unchanged": 0,
               "runners_skipped": 0, "shadow_rows": 0}

    for imported in doc.runners:
        existing = store.first("runners", race_id=race_id, number=imported.number)
        if existing is None:
            summary["runners_skipped"] += 1
            continue
        patch = runner_merge_patch(existing, imported)
        if not patch:
            summary["runners_unchanged"] += 1
            continue
        store.update("runners", existing["id"], patch)
        summary["runners_updated"] += 1

    summary["shadow_rows"] = _apply_shadow_rows(store, race_id, doc)

    logger.info("Merged into race %s: %d updated, %d unchanged, %d skipped, %d shadow rows",
                race_id, summary["runners_updated"], summary["runners_unchanged"],
                summary["runners_skipped"], summary["shadow_rows"])
    return summary


@storage_operation("Failed to import full race data")
def import_full_race_data(store: Store, race_id: int,
                          document: ExportDocument | dict) -> dict:
    """Populate a freshly created race from a full-race export.

    No conflict is possible, so every imported runner that differs from the
    defaults is written as-is.
    """
    doc = _as_document(document)
    summary = {"runners_updated": 0, "runners_skipped": 0, "shadow_rows": 0}

    for imported in doc.runners:
        if (imported.status or DEFAULT_STATUS) == DEFAULT_STATUS \
                and not imported.recorded_time and not imported.notes:
            continue
        existing = store.first("runners", race_id=race_id, number=imported.number)
        if existing is None:
            logger.warning("Imported runner %s has no row in race %s, skipped",
                           imported.number, race_id)
            summary["runners_skipped"] += 1
            continue
        store.update("runners", existing["id"], {
            "status": imported.status or DEFAULT_STATUS,
            "recorded_time": imported.recorded_time,
            "notes": imported.notes,
        })
        summary["runners_updated"] += 1

    summary["shadow_rows"] = _apply_shadow_rows(store, race_id, doc)
    return summary


@storage_operation("Failed to apply isolated results")
def apply_isolated_results(store: Store, race_id: int,
                           document: ExportDocument | dict) -> int:
    """Upsert the shadow rows of an isolated checkpoint/base-station export.

    Returns the number of rows written.
    """
    get_race(store, race_id)
    return _apply_shadow_rows(store, race_id, _as_document(document))
