"""
Fleet Traffic Planner

Conflict-aware reservation planning for shared resources in multi-robot
fleets: route validators over a traffic schedule or a negotiation table,
chained Pushback/BringForward rewrites over copy-on-write schedule states,
and a min-conflict planner that ranks candidate schedules by disruption.
"""

from .config import PlannerConfig
from .constraint_tracker import ConstraintTracker
from .errors import (
    ConfigError,
    DuplicateReservationError,
    ScheduleOverlapError,
    StalePlanSetError,
    TrafficPlannerError,
    UnknownRequestError,
    UnknownReservationError,
)
from .operators import BringForwardScheduleOperator, PushbackScheduleOperator
from .planner import MinConflictPlanner, PlanSet
from .reservations import (
    UNBOUNDED,
    Bounded,
    Reservation,
    ReservationRequest,
    StartTimeRange,
)
from .route_validator import NegotiatingRouteValidator, ScheduleRouteValidator
from .schedule_state import SchedulePatch, ScheduleState

__version__ = "0.1.0"
__author__ = "Fleet Traffic Planner Team"

__all__ = [
    "Bounded",
    "BringForwardScheduleOperator",
    "ConfigError",
    "DuplicateReservationError",
    "ConstraintTracker",
    "MinConflictPlanner",
    "NegotiatingRouteValidator",
    "PlanSet",
    "PlannerConfig",
    "PushbackScheduleOperator",
    "Reservation",
    "ReservationRequest",
    "ScheduleOverlapError",
    "SchedulePatch",
    "ScheduleRouteValidator",
    "ScheduleState",
    "StalePlanSetError",
    "StartTimeRange",
    "TrafficPlannerError",
    "UNBOUNDED",
    "UnknownRequestError",
    "UnknownReservationError",
]
