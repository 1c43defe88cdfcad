"""
reports.py — CSV results export.

Layout:
    # Race: <name>
    # Date: <date>
    # Start Time: <start>
    # Exported: <iso timestamp>
    <blank>
    Runner Number,Status,Recorded Time,Time from Start,Notes
    101,passed,2025-01-01T07:15:30Z,00:15:30,
    ...

Rows are sorted by runner number. "Time from Start" is filled only for
passed runners with a recorded time at or after the race start.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from typing import Iterable, Optional

from racecore.database import Store
from racecore.errors import StorageError, storage_operation
from racecore.races import get_race, get_runners
from racecore.status import RunnerStatus
from racecore.timeutil import format_elapsed, race_start, try_parse_timestamp, utc_now_iso

logger = logging.getLogger("racetracker.reports")

CSV_HEADER = ["Runner Number", "Status", "Recorded Time", "Time from Start", "Notes"]
CSV_MIME_TYPE = "text/csv"


def _config_value(race_config: dict, *keys: str) -> str:
    for key in keys:
        if race_config.get(key) is not None:
            return str(race_config[key])
    return ""


def results_filename(name: str, date: str) -> str:
    slug = re.sub(r"\s+", "-", name)
    return f"race-results-{slug}-{date}.csv"


def elapsed_from_start(runner: dict, start) -> str:
    """HH:MM:SS since the race start, or '' if the runner has no finish time."""
    if runner.get("status") != RunnerStatus.PASSED.value or start is None:
        return ""
    recorded = try_parse_timestamp(runner.get("recorded_time"))
    if recorded is None:
        return ""
    elapsed = (recorded - start).total_seconds()
    if elapsed < 0:
        return ""
    return format_elapsed(elapsed)


def generate_csv(race_config: dict, runners: Iterable[dict],
                 exported_at: Optional[str] = None) -> dict:
    """Build the results CSV. Returns {content, filename, mimeType}.

    race_config may use stored (start_time) or wire (startTime) keys.
    """
    name = _config_value(race_config, "name")
    date = _config_value(race_config, "date")
    start_time = _config_value(race_config, "start_time", "startTime")
    try:
        start = race_start(date, start_time)
    except ValueError:
        logger.warning("Race start %r %r is not a valid time; elapsed column left empty",
                       date, start_time)
        start = None

    buf = io.StringIO()
    buf.write(f"# Race: {name}\n")
    buf.write(f"# Date: {date}\n")
    buf.write(f"# Start Time: {start_time}\n")
    buf.write(f"# Exported: {exported_at or utc_now_iso()}\n")
    buf.write("\n")

    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for r in sorted(runners, key=lambda r: r["number"]):
        writer.writerow([
            r["number"],
            r.get("status") or "",
            r.get("recorded_time") or "",
            elapsed_from_start(r, start),
            r.get("notes") or "",
        ])

    return {
        "content": buf.getvalue(),
        "filename": results_filename(name, date),
        "mimeType": CSV_MIME_TYPE,
    }


@storage_operation("Failed to export race results")
def export_race_results(store: Store, race_id: int, fmt: str = "csv") -> dict:
    if fmt != "csv":
        logger.error("Unsupported results format: %s", fmt)
        raise StorageError("Failed to export race results")
    race = get_race(store, race_id)
    return generate_csv(race, get_runners(store, race_id))
