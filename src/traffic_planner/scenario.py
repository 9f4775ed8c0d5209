"""
Scenario files.

A scenario is a YAML document describing a planning session: the requests
that have been admitted, the reservations currently committed for them and,
optionally, planner settings. It is what the command line operates on.

    requests:
      - id: charge-7
        resources: [bay-1, bay-2]
        earliest_start: "2025-01-15T08:00:00Z"
        latest_start: "2025-01-15T09:00:00Z"
        duration_s: 900
    reservations:
      - id: r-charge-7
        request: charge-7
        resource: bay-1
        start_time: "2025-01-15T08:00:00Z"
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .config import PlannerConfig
from .constraint_tracker import ConstraintTracker
from .errors import ConfigError, ScheduleOverlapError
from .reservations import Reservation, ReservationRequest, StartTimeRange
from .schedule_state import ScheduleState
from .utils import parse_datetime

logger = logging.getLogger(__name__)


def _to_naive_utc(value: Any) -> Any:
    if value is None:
        return value
    return parse_datetime(value)


class RequestModel(BaseModel):
    """A request entry of a scenario file."""

    id: str = Field(..., min_length=1, description="Request identifier")
    resources: List[str] = Field(
        default_factory=list, description="Eligible resources (empty = any)"
    )
    earliest_start: Optional[datetime] = Field(default=None)
    latest_start: Optional[datetime] = Field(default=None)
    duration_s: Optional[float] = Field(
        default=None, ge=0.0, description="Minimum hold time; omit for unbounded"
    )
    finish_deadline: Optional[datetime] = Field(default=None)

    @field_validator("earliest_start", "latest_start", "finish_deadline", mode="before")
    @classmethod
    def _parse_times(cls, value: Any) -> Any:
        return _to_naive_utc(value)

    @model_validator(mode="after")
    def _check_window(self) -> "RequestModel":
        if (
            self.earliest_start is not None
            and self.latest_start is not None
            and self.latest_start < self.earliest_start
        ):
            raise ValueError(f"Request {self.id}: latest_start precedes earliest_start")
        return self

    def to_request(self) -> ReservationRequest:
        return ReservationRequest(
            request_id=self.id,
            resources=frozenset(self.resources),
            start=StartTimeRange(self.earliest_start, self.latest_start),
            duration=(
                timedelta(seconds=self.duration_s) if self.duration_s is not None else None
            ),
            finish_deadline=self.finish_deadline,
        )


class ReservationModel(BaseModel):
    """A committed reservation entry of a scenario file."""

    id: str = Field(..., min_length=1)
    request: str = Field(..., min_length=1, description="Request the reservation serves")
    resource: str = Field(..., min_length=1)
    start_time: datetime
    duration_s: Optional[float] = Field(
        default=None, ge=0.0, description="Defaults to the request's duration"
    )

    @field_validator("start_time", mode="before")
    @classmethod
    def _parse_start(cls, value: Any) -> Any:
        return _to_naive_utc(value)


class ScenarioModel(BaseModel):
    """Top-level scenario document."""

    requests: List[RequestModel] = Field(default_factory=list)
    reservations: List[ReservationModel] = Field(default_factory=list)
    planner: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_references(self) -> "ScenarioModel":
        ids = [r.id for r in self.requests]
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate request ids")
        known = set(ids)
        for reservation in self.reservations:
            if reservation.request not in known:
                raise ValueError(
                    f"Reservation {reservation.id} references unknown request {reservation.request}"
                )
        return self


@dataclass
class Scenario:
    """A loaded planning session."""

    tracker: ConstraintTracker
    state: ScheduleState
    config: PlannerConfig


def build_scenario(model: ScenarioModel) -> Scenario:
    """
    Turn a validated scenario document into tracker, baseline and config.

    Raises:
        ConfigError: If the committed reservations overlap
    """
    tracker = ConstraintTracker()
    for request_model in model.requests:
        tracker.add_request(request_model.to_request())

    reservations = []
    for entry in model.reservations:
        request = tracker.get_request(entry.request)
        if entry.duration_s is not None:
            duration: Optional[timedelta] = timedelta(seconds=entry.duration_s)
        else:
            duration = request.duration
        reservation = Reservation(entry.id, entry.resource, entry.start_time, duration)
        if not request.satisfied_by(reservation):
            logger.warning(
                f"Committed reservation {entry.id} does not satisfy request {entry.request}"
            )
        tracker.associate(entry.id, entry.request)
        reservations.append(reservation)

    try:
        state = ScheduleState(reservations)
    except ScheduleOverlapError as e:
        raise ConfigError(f"Invalid committed schedule: {e}") from e

    return Scenario(tracker, state, PlannerConfig.from_dict(model.planner))


def load_scenario(path: Union[str, Path]) -> Scenario:
    """
    Load a scenario from a YAML file.

    Raises:
        ConfigError: If the file is unreadable or invalid
    """
    scenario_path = Path(path)
    try:
        with open(scenario_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read scenario {scenario_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {scenario_path}: {e}") from e

    try:
        model = ScenarioModel.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid scenario {scenario_path}: {e}") from e

    scenario = build_scenario(model)
    logger.info(
        f"Loaded scenario {scenario_path}: {len(model.requests)} requests, "
        f"{len(model.reservations)} reservations"
    )
    return scenario
