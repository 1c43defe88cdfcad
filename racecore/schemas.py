"""
schemas.py — pydantic models for the JSON export document.

Wire keys are camelCase (raceConfig, startTime, checkpointRunners, ...);
fields are snake_case in Python. Both spellings are accepted on input.
Only raceConfig is strictly required; the row lists default to empty.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt
from pydantic.alias_generators import to_camel

from racecore.status import DEFAULT_STATUS

FULL_RACE_DATA = "full-race-data"
ISOLATED_CHECKPOINT_RESULTS = "isolated-checkpoint-results"
ISOLATED_BASE_STATION_RESULTS = "isolated-base-station-results"

EXPORT_TYPES = (FULL_RACE_DATA, ISOLATED_CHECKPOINT_RESULTS, ISOLATED_BASE_STATION_RESULTS)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True,
                              extra="ignore")


class RunnerRangeDoc(WireModel):
    min: Optional[int] = None
    max: Optional[int] = None
    is_individual: bool = False
    individual_numbers: list[int] = Field(default_factory=list)

    def to_config(self) -> dict:
        if self.is_individual:
            return {"is_individual": True, "individual_numbers": list(self.individual_numbers)}
        return {"min": self.min, "max": self.max}


class CheckpointDoc(WireModel):
    number: int
    name: Optional[str] = None


class RaceConfigDoc(WireModel):
    name: str = Field(min_length=1)
    date: str = Field(min_length=1)
    start_time: str = Field(min_length=1)
    min_runner: StrictInt
    max_runner: StrictInt
    runner_ranges: list[RunnerRangeDoc] = Field(default_factory=list)
    checkpoints: list[CheckpointDoc] = Field(default_factory=list)
    metadata: Optional[dict] = None

    def to_config(self) -> dict:
        """In-process race config accepted by races.save_race."""
        return {
            "name": self.name,
            "date": self.date,
            "start_time": self.start_time,
            "min_runner": self.min_runner,
            "max_runner": self.max_runner,
            "runner_ranges": [r.to_config() for r in self.runner_ranges],
            "checkpoints": [{"number": cp.number, "name": cp.name} for cp in self.checkpoints],
            "metadata": self.metadata,
        }


class RunnerDoc(WireModel):
    number: int
    status: Optional[str] = DEFAULT_STATUS
    recorded_time: Optional[str] = None
    notes: Optional[str] = None


class CheckpointRunnerDoc(WireModel):
    checkpoint_number: int
    number: int
    status: Optional[str] = DEFAULT_STATUS
    call_in_time: Optional[str] = None
    mark_off_time: Optional[str] = None
    notes: Optional[str] = None


class BaseStationRunnerDoc(WireModel):
    checkpoint_number: int = 1
    number: int
    status: Optional[str] = DEFAULT_STATUS
    common_time: Optional[str] = None
    notes: Optional[str] = None


class ExportDocument(WireModel):
    race_config: RaceConfigDoc
    runners: list[RunnerDoc] = Field(default_factory=list)
    checkpoint_runners: list[CheckpointRunnerDoc] = Field(default_factory=list)
    base_station_runners: list[BaseStationRunnerDoc] = Field(default_factory=list)
    exported_at: Optional[str] = None
    version: Optional[str] = None
    export_type: Optional[str] = None
    checkpoint_number: Optional[int] = None
    checkpoint_name: Optional[str] = None
