"""
storage.py — RaceStorage, the single entry point the UI and API call into.

Binds one Store (and so one connection) to the module-level operations in
races, tracking, transfer, merge, reports and maintenance:

    storage = RaceStorage(get_connection(":memory:"))
    race_id = storage.save_race({...})
    storage.mark_runner_status(race_id, 7, "dnf")
"""

from __future__ import annotations

import sqlite3
from typing import Any, Iterable, Optional

from racecore import maintenance, merge, races, reports, templates, tracking, transfer
from racecore.database import (
    Store, get_all_settings, get_connection, get_setting, init_db, migrate_db, set_setting,
)


class RaceStorage:
    """Race-day storage bound to one SQLite connection."""

    def __init__(self, conn: Optional[sqlite3.Connection] = None, init_schema: bool = True):
        self.store = Store(conn if conn is not None else get_connection())
        if init_schema:
            init_db(self.store.conn)
            migrate_db(self.store.conn)

    def close(self) -> None:
        self.store.close()

    def __enter__(self) -> "RaceStorage":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── races ─────────────────────────────────────────────────────────

    def save_race(self, config: dict) -> int:
        return races.save_race(self.store, config)

    def get_race(self, race_id: int) -> dict:
        return races.get_race(self.store, race_id)

    def get_current_race(self) -> Optional[dict]:
        return races.get_current_race(self.store)

    def get_all_races(self) -> list[dict]:
        return races.get_all_races(self.store)

    def find_race(self, name: str, date: str) -> Optional[dict]:
        return races.find_race(self.store, name, date)

    def delete_race(self, race_id: int) -> None:
        races.delete_race(self.store, race_id)

    def clear_all_data(self) -> None:
        races.clear_all_data(self.store)

    def create_race_from_template(self, template_id: str, **overrides) -> int:
        return templates.create_race_from_template(self.store, template_id, **overrides)

    # ── runners ───────────────────────────────────────────────────────

    def get_runners(self, race_id: int) -> list[dict]:
        return races.get_runners(self.store, race_id)

    def update_runner(self, race_id: int, number: int, patch: dict) -> dict:
        return races.update_runner(self.store, race_id, number, patch)

    def mark_runner_passed(self, race_id: int, number: int,
                           timestamp: Optional[str] = None) -> dict:
        return races.mark_runner_passed(self.store, race_id, number, timestamp)

    def mark_runner_status(self, race_id: int, number: int, status: str) -> dict:
        return races.mark_runner_status(self.store, race_id, number, status)

    def bulk_update_runners(self, race_id: int, numbers: Iterable[int],
                            patch: dict) -> list[dict]:
        return races.bulk_update_runners(self.store, race_id, numbers, patch)

    # ── checkpoints ───────────────────────────────────────────────────

    def get_checkpoints(self, race_id: int) -> list[dict]:
        return races.get_checkpoints(self.store, race_id)

    def add_checkpoint(self, race_id: int, number: int, name: Optional[str] = None) -> int:
        return races.add_checkpoint(self.store, race_id, number, name)

    def update_checkpoint(self, checkpoint_id: int, patch: dict) -> None:
        races.update_checkpoint(self.store, checkpoint_id, patch)

    def delete_checkpoint(self, checkpoint_id: int) -> None:
        races.delete_checkpoint(self.store, checkpoint_id)

    # ── checkpoint runners ────────────────────────────────────────────

    def initialize_checkpoint_runners(self, race_id: int, checkpoint_number: int) -> list[dict]:
        return tracking.initialize_checkpoint_runners(self.store, race_id, checkpoint_number)

    def get_checkpoint_runners(self, race_id: int,
                               checkpoint_number: Optional[int] = None) -> list[dict]:
        return tracking.get_checkpoint_runners(self.store, race_id, checkpoint_number)

    def update_checkpoint_runner(self, race_id: int, checkpoint_number: int,
                                 number: int, patch: dict) -> dict:
        return tracking.update_checkpoint_runner(self.store, race_id, checkpoint_number,
                                                 number, patch)

    def mark_checkpoint_runner(self, race_id: int, checkpoint_number: int, number: int,
                               **kwargs: Any) -> dict:
        return tracking.mark_checkpoint_runner(self.store, race_id, checkpoint_number,
                                               number, **kwargs)

    def bulk_mark_checkpoint_runners(self, race_id: int, checkpoint_number: int,
                                     numbers: Iterable[int], **kwargs: Any) -> list[dict]:
        return tracking.bulk_mark_checkpoint_runners(self.store, race_id, checkpoint_number,
                                                     numbers, **kwargs)

    # ── base station runners ──────────────────────────────────────────

    def initialize_base_station_runners(self, race_id: int,
                                        checkpoint_number: int = 1) -> list[dict]:
        return tracking.initialize_base_station_runners(self.store, race_id, checkpoint_number)

    def get_base_station_runners(self, race_id: int,
                                 checkpoint_number: Optional[int] = None) -> list[dict]:
        return tracking.get_base_station_runners(self.store, race_id, checkpoint_number)

    def update_base_station_runner(self, race_id: int, checkpoint_number: int,
                                   number: int, patch: dict) -> dict:
        return tracking.update_base_station_runner(self.store, race_id, checkpoint_number,
                                                   number, patch)

    def mark_base_station_runner(self, race_id: int, checkpoint_number: int, number: int,
                                 **kwargs: Any) -> dict:
        return tracking.mark_base_station_runner(self.store, race_id, checkpoint_number,
                                                 number, **kwargs)

    def bulk_mark_base_station_runners(self, race_id: int, checkpoint_number: int,
                                       numbers: Iterable[int], **kwargs: Any) -> list[dict]:
        return tracking.bulk_mark_base_station_runners(self.store, race_id,
                                                       checkpoint_number, numbers, **kwargs)

    # ── export / import / merge ───────────────────────────────────────

    def export_race_config(self, race_id: int) -> dict:
        return transfer.export_race_config(self.store, race_id)

    def export_isolated_checkpoint_results(self, race_id: int, checkpoint_number: int) -> dict:
        return transfer.export_isolated_checkpoint_results(self.store, race_id,
                                                           checkpoint_number)

    def export_isolated_base_station_results(self, race_id: int,
                                             checkpoint_number: int = 1) -> dict:
        return transfer.export_isolated_base_station_results(self.store, race_id,
                                                             checkpoint_number)

    def import_race_config(self, document: dict) -> int:
        return transfer.import_race_config(self.store, document)

    def merge_race_data(self, race_id: int, document: dict) -> dict:
        return merge.merge_race_data(self.store, race_id,
                                     transfer.parse_export_document(document))

    def apply_isolated_results(self, race_id: int, document: dict) -> int:
        return merge.apply_isolated_results(self.store, race_id,
                                            transfer.parse_export_document(document))

    def export_race_results(self, race_id: int, fmt: str = "csv") -> dict:
        return reports.export_race_results(self.store, race_id, fmt)

    # ── maintenance ───────────────────────────────────────────────────

    def get_database_size(self) -> dict:
        return maintenance.get_database_size(self.store)

    def cleanup_old_races(self, days_to_keep: int = 30) -> int:
        return maintenance.cleanup_old_races(self.store, days_to_keep)

    def migrate_to_isolated_tracking(self, race_id: int) -> int:
        return maintenance.migrate_to_isolated_tracking(self.store, race_id)

    # ── settings ──────────────────────────────────────────────────────

    def get_setting(self, key: str, default: Any = None) -> Any:
        return get_setting(self.store, key, default)

    def save_setting(self, key: str, value: Any) -> None:
        set_setting(self.store, key, value)

    def get_all_settings(self) -> dict:
        return get_all_settings(self.store)
