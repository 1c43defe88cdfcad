"""
templates.py — Built-in race templates.

A template carries the defaults for a recurring event: start time, bib
range, named checkpoints and organiser metadata. create_race_from_template
turns one into a race config and saves it.

Templates (WICEN Queensland radio-supported trail events):
  - Mt Glorious Mountain Trail   (5 checkpoints incl. finish, bibs 1-128)
  - Brisbane Trail Marathon      (start, 3 CPs, finish, bibs 1-200)
  - Pinnacles Classic            (3 CPs, bibs 1-150)
  - Lake Manchester Trail        (3 CPs, bibs 1-120)
"""

from __future__ import annotations

import copy
import logging
from datetime import date as date_cls

from racecore.database import Store
from racecore.errors import StorageError
from racecore.races import save_race

logger = logging.getLogger("racetracker.templates")

TEMPLATE_VERSION = "1.0.0"


# ─── Helpers ──────────────────────────────────────────────────────────

def _checkpoints(*names: str) -> list[dict]:
    """Number checkpoints 1..n in the order given."""
    return [
        {"number": i, "name": name, "order_sequence": i}
        for i, name in enumerate(names, start=1)
    ]


def _metadata(base_location: str, *notes: str) -> dict:
    return {
        "organizer": "WICEN Queensland",
        "base_location": base_location,
        "notes": list(notes),
    }


# ─── Built-in templates ──────────────────────────────────────────────

BUILTIN_TEMPLATES: dict[str, dict] = {
    "mt-glorious-mountain-trail": {
        "id": "mt-glorious-mountain-trail",
        "name": "Mt Glorious Mountain Trail",
        "event_type": "Mountain Trail Run",
        "description": "Mountain trail race finishing at Maiala Park, Mt Glorious. "
                       "Multiple distance options with challenging terrain.",
        "default_start_time": "07:00:00",
        "default_runner_range_start": 1,
        "default_runner_range_end": 128,
        "checkpoints": _checkpoints(
            "CP1 - Northbrook Bush Camp",
            "CP2 - England Creek Bush Camp",
            "CP3 - England Creek Rd & Joyners Ridge Rd",
            "CP4 - Near Apiary Site, Joyners Ridge Rd",
            "Finish - Maiala Picnic Area",
        ),
        "metadata": _metadata(
            "Maiala Picnic Area, Mt Glorious Rd, Mt Glorious",
            "Typical distances 22km and 42km",
        ),
        "version": TEMPLATE_VERSION,
    },
    "brisbane-trail-marathon": {
        "id": "brisbane-trail-marathon",
        "name": "Brisbane Trail Marathon",
        "event_type": "Trail Marathon",
        "description": "Annual trail marathon starting and finishing at Enoggera "
                       "Reservoir, The Gap. 22km and 42km distance options.",
        "default_start_time": "06:30:00",
        "default_runner_range_start": 1,
        "default_runner_range_end": 200,
        "checkpoints": _checkpoints(
            "Start - Enoggera Reservoir",
            "CP1 - Mt Nebo Road",
            "CP2 - Walkabout Creek",
            "CP3 - Simpson Falls",
            "Finish - Enoggera Reservoir",
        ),
        "metadata": _metadata(
            "Enoggera Reservoir, The Gap",
            "Two distance options: 22km and 42km",
        ),
        "version": TEMPLATE_VERSION,
    },
    "pinnacles-classic": {
        "id": "pinnacles-classic",
        "name": "Pinnacles Classic",
        "event_type": "Trail Run",
        "description": "Challenging trail run through Gold Creek and Mt Glorious "
                       "areas. Multiple distance options.",
        "default_start_time": "06:30:00",
        "default_runner_range_start": 1,
        "default_runner_range_end": 150,
        "checkpoints": _checkpoints(
            "CP1 - Mt Glorious Road Junction",
            "CP2 - Pinnacles Lookout",
            "CP3 - Return Trail",
        ),
        "metadata": _metadata("Gold Creek Reservoir Car Park"),
        "version": TEMPLATE_VERSION,
    },
    "lake-manchester-trail": {
        "id": "lake-manchester-trail",
        "name": "Lake Manchester Trail",
        "event_type": "Trail Run",
        "description": "Scenic trail run around Lake Manchester with multiple "
                       "distance options (12km, 23km, 42km)",
        "default_start_time": "07:00:00",
        "default_runner_range_start": 1,
        "default_runner_range_end": 120,
        "checkpoints": _checkpoints(
            "CP1 - Northern Trail",
            "CP2 - Eastern Shore",
            "CP3 - Southern Loop",
        ),
        "metadata": _metadata(
            "Lake Manchester Dam Wall",
            "Three distance options: 12km, 23km, 42km",
        ),
        "version": TEMPLATE_VERSION,
    },
}


TEMPLATE_ORDER = [
    "mt-glorious-mountain-trail",
    "brisbane-trail-marathon",
    "pinnacles-classic",
    "lake-manchester-trail",
]


def get_template_names() -> list[str]:
    """Return template display names in preferred order."""
    ordered = [t for t in TEMPLATE_ORDER if t in BUILTIN_TEMPLATES]
    for t in sorted(BUILTIN_TEMPLATES):
        if t not in ordered:
            ordered.append(t)
    return [BUILTIN_TEMPLATES[t]["name"] for t in ordered]


def get_template(id_or_name: str) -> dict | None:
    """Return a copy of the template with this id or display name, or None."""
    tpl = BUILTIN_TEMPLATES.get(id_or_name)
    if tpl is None:
        tpl = next((t for t in BUILTIN_TEMPLATES.values() if t["name"] == id_or_name), None)
    if tpl is None:
        return None
    return copy.deepcopy(tpl)


def validate_template(template: dict) -> list[str]:
    """Return a list of problems with a template; empty when it is usable."""
    errors = []
    for field, label in (("id", "Template ID"), ("name", "Template name"),
                         ("event_type", "Event type"),
                         ("default_start_time", "Default start time")):
        if not template.get(field):
            errors.append(f"{label} is required")
    for field in ("default_runner_range_start", "default_runner_range_end"):
        if not isinstance(template.get(field), int) or isinstance(template.get(field), bool):
            errors.append(f"{field} must be a number")

    checkpoints = template.get("checkpoints")
    if not isinstance(checkpoints, list) or not checkpoints:
        errors.append("Template must have at least one checkpoint")
    else:
        for i, cp in enumerate(checkpoints, start=1):
            if not isinstance(cp.get("number"), int):
                errors.append(f"Checkpoint {i}: number must be a number")
            if not cp.get("name"):
                errors.append(f"Checkpoint {i}: name is required")

    metadata = template.get("metadata")
    if not metadata:
        errors.append("Template metadata is required")
    else:
        if not metadata.get("organizer"):
            errors.append("Organizer is required in metadata")
        if not metadata.get("base_location"):
            errors.append("Base location is required in metadata")
    return errors


def create_race_from_template(store: Store, template_id: str,
                              race_name: str | None = None,
                              race_date: str | None = None,
                              start_time: str | None = None,
                              runner_range_start: int | None = None,
                              runner_range_end: int | None = None) -> int:
    """Save a new race built from a template. Returns the race id."""
    tpl = get_template(template_id)
    if tpl is None:
        raise StorageError(f"Unknown race template: {template_id}")
    errors = validate_template(tpl)
    if errors:
        raise StorageError("Invalid template: " + ", ".join(errors))

    today = date_cls.today()
    first = runner_range_start or tpl["default_runner_range_start"]
    last = runner_range_end or tpl["default_runner_range_end"]
    config = {
        "name": race_name or f"{tpl['name']} {today.year}",
        "date": race_date or today.isoformat(),
        "start_time": start_time or tpl["default_start_time"],
        "min_runner": first,
        "max_runner": last,
        "runner_ranges": [{"min": first, "max": last}],
        "checkpoints": [{"number": cp["number"], "name": cp["name"]}
                        for cp in tpl["checkpoints"]],
        "metadata": {
            **tpl["metadata"],
            "template_id": tpl["id"],
            "template_name": tpl["name"],
            "template_version": tpl["version"],
            "created_from_template": True,
        },
    }
    race_id = save_race(store, config)
    logger.info("Created race %s from template %s", race_id, tpl["id"])
    return race_id
