"""
maintenance.py — Database housekeeping: size, retention, backfill, backups.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

from racecore import database
from racecore.database import TABLES, Store
from racecore.errors import storage_operation
from racecore.races import delete_race, get_checkpoints
from racecore.tracking import initialize_base_station_runners, initialize_checkpoint_runners

logger = logging.getLogger("racetracker.maintenance")

BACKUP_PREFIX = "racetracker_"


@storage_operation("Failed to get database size")
def get_database_size(store: Store) -> dict:
    """Row count per table plus a total. Read-only."""
    sizes = {table: store.count(table) for table in TABLES}
    sizes["total"] = sum(sizes.values())
    return sizes


@storage_operation("Failed to clean up old races")
def cleanup_old_races(store: Store, days_to_keep: int = 30) -> int:
    """Delete races created more than `days_to_keep` days ago. Returns the count."""
    cutoff = (datetime.now(timezone.utc) - timedelta(days=days_to_keep)).isoformat()
    old = store.find_before("races", "created_at", cutoff)
    for race in old:
        delete_race(store, race["id"])
    if old:
        logger.info("Removed %d races created before %s", len(old), cutoff)
    return len(old)


@storage_operation("Failed to migrate to isolated tracking")
def migrate_to_isolated_tracking(store: Store, race_id: int) -> int:
    """Seed checkpoint and base-station shadow rows for every checkpoint of a race.

    Returns the number of checkpoints processed.
    """
    checkpoints = get_checkpoints(store, race_id)
    for cp in checkpoints:
        initialize_checkpoint_runners(store, race_id, cp["number"])
        initialize_base_station_runners(store, race_id, cp["number"])
    logger.info("Migrated race %s to isolated tracking (%d checkpoints)",
                race_id, len(checkpoints))
    return len(checkpoints)


# ======================================================================
# BACKUP / RESTORE
# ======================================================================

def _backup_dir() -> Path:
    return database.DB_DIR / "backups"


def create_backup(label: str = "") -> Path:
    """Copy the database file with the SQLite backup API. Returns the backup path."""
    backup_dir = _backup_dir()
    backup_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    suffix = f"_{label}" if label else ""
    backup_path = backup_dir / f"{BACKUP_PREFIX}{timestamp}{suffix}.db"

    src = database.get_db_path()
    src_conn = sqlite3.connect(str(src))
    dst_conn = sqlite3.connect(str(backup_path))
    try:
        src_conn.backup(dst_conn)
    finally:
        dst_conn.close()
        src_conn.close()

    logger.info("Created backup %s", backup_path.name)
    return backup_path


def list_backups() -> list[dict]:
    """All backup files, newest first."""
    backup_dir = _backup_dir()
    if not backup_dir.exists():
        return []

    backups = []
    for f in sorted(backup_dir.glob(f"{BACKUP_PREFIX}*.db"), reverse=True):
        parts = f.stem[len(BACKUP_PREFIX):].split("_")
        backups.append({
            "filename": f.name,
            "path": str(f),
            "size_kb": round(f.stat().st_size / 1024, 1),
            "created": f"{parts[0]}_{parts[1]}" if len(parts) >= 2 else "",
            "label": "_".join(parts[3:]),
        })
    return backups


def restore_backup(backup_filename: str) -> bool:
    """Replace the live database with a backup. Returns False if the file is unknown.

    The current state is saved first as a "pre_restore" backup.
    """
    backup_path = _backup_dir() / Path(backup_filename).name
    if not backup_path.exists():
        logger.warning("Backup %s not found", backup_filename)
        return False

    create_backup("pre_restore")

    src_conn = sqlite3.connect(str(backup_path))
    dst_conn = sqlite3.connect(str(database.get_db_path()))
    try:
        src_conn.backup(dst_conn)
    finally:
        dst_conn.close()
        src_conn.close()

    logger.warning("Database restored from %s", backup_path.name)
    return True
