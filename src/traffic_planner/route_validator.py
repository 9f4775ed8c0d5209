"""
Route validators.

A route validator answers one question for a motion planner: does this
candidate route conflict with anybody else, and if so, with whom? Two
variants exist:

- ScheduleRouteValidator checks against the committed traffic schedule.
- NegotiatingRouteValidator checks against one branch of a negotiation,
  where every rival's itinerary is one of several proposed alternatives.

Validators are cheap to clone so that a planning search can branch.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .negotiation import NegotiationTable, Rollout
from .spacetime import (
    ParticipantId,
    Profile,
    Route,
    ScheduleEntry,
    ScheduleViewer,
    make_query,
)
from .trajectory import detect_conflict

logger = logging.getLogger(__name__)

# (profile, trajectory, other profile, other trajectory) -> conflict?
ConflictDetector = Callable[[Profile, Any, Profile, Any], bool]


class RouteValidator(ABC):
    """Capability set shared by all validators."""

    @abstractmethod
    def find_conflict(self, route: Route) -> Optional[ParticipantId]:
        """First participant whose itinerary conflicts with ``route``, if any."""

    @abstractmethod
    def clone(self) -> "RouteValidator":
        """Independent copy that can be used on another search branch."""


def _scan(
    detector: ConflictDetector,
    profile: Profile,
    route: Route,
    view: Iterable[ScheduleEntry],
    skip: Optional[ParticipantId] = None,
) -> Optional[ParticipantId]:
    for entry in view:
        if skip is not None and entry.participant == skip:
            continue

        if detector(
            profile,
            route.trajectory,
            entry.description.profile,
            entry.route.trajectory,
        ):
            logger.debug(f"Route on {route.map_name} conflicts with {entry.participant}")
            return entry.participant
    return None


class ScheduleRouteValidator(RouteValidator):
    """
    Validate routes against a schedule viewer.

    Args:
        viewer: Schedule view to query (owned by the caller)
        participant: Participant the routes belong to; its own itineraries
            are never reported as conflicts
        profile: Profile of that participant
        detector: Conflict oracle
    """

    def __init__(
        self,
        viewer: ScheduleViewer,
        participant: ParticipantId,
        profile: Profile,
        detector: ConflictDetector = detect_conflict,
    ):
        self._viewer = viewer
        self._participant = participant
        self._profile = profile
        self._detector = detector

    @property
    def schedule_viewer(self) -> ScheduleViewer:
        return self._viewer

    @schedule_viewer.setter
    def schedule_viewer(self, viewer: ScheduleViewer) -> None:
        self._viewer = viewer

    @property
    def participant(self) -> ParticipantId:
        return self._participant

    @participant.setter
    def participant(self, participant: ParticipantId) -> None:
        self._participant = participant

    @property
    def profile(self) -> Profile:
        return self._profile

    @profile.setter
    def profile(self, profile: Profile) -> None:
        self._profile = profile

    def find_conflict(self, route: Route) -> Optional[ParticipantId]:
        query = make_query([route.map_name], route.start_time, route.finish_time)
        view = self._viewer.query(query)
        return _scan(self._detector, self._profile, route, view, skip=self._participant)

    def clone(self) -> "ScheduleRouteValidator":
        return ScheduleRouteValidator(
            self._viewer, self._participant, self._profile, self._detector
        )


@dataclass(frozen=True)
class _GeneratorData:
    table: NegotiationTable
    profile: Profile
    detector: ConflictDetector


class NegotiatingRouteValidator(RouteValidator):
    """
    Validate routes against one branch of a negotiation table.

    Instances come from a ``NegotiatingRouteValidator.Generator``. Each holds
    its own rollout selection (one alternative index per rival) and a shared,
    read-only reference to the table.
    """

    class Generator:
        """
        Produces validators bound to one table and one profile.

        Args:
            table: Negotiation table to query (owned by the caller)
            profile: Profile of the negotiating participant
            detector: Conflict oracle
        """

        def __init__(
            self,
            table: NegotiationTable,
            profile: Profile,
            detector: ConflictDetector = detect_conflict,
        ):
            self._data = _GeneratorData(table, profile, detector)

        @property
        def table(self) -> NegotiationTable:
            return self._data.table

        @property
        def profile(self) -> Profile:
            return self._data.profile

        def begin(self) -> "NegotiatingRouteValidator":
            """Validator where every rival uses its most preferred alternative."""
            rollouts = [Rollout(rival, 0) for rival, _ in self._data.table.rollouts()]
            return NegotiatingRouteValidator(self._data, rollouts)

        def all(self) -> List["NegotiatingRouteValidator"]:
            """One validator for every combination of rival alternatives."""
            rivals = list(self._data.table.rollouts())
            ranges = [range(count) for _, count in rivals]
            return [
                NegotiatingRouteValidator(
                    self._data,
                    [Rollout(rival, index) for (rival, _), index in zip(rivals, combo)],
                )
                for combo in itertools.product(*ranges)
            ]

    def __init__(self, data: _GeneratorData, rollouts: List[Rollout]):
        self._data = data
        self._rollouts = list(rollouts)

    def __repr__(self) -> str:
        selection = ", ".join(f"{r.participant}:{r.alternative}" for r in self._rollouts)
        return f"NegotiatingRouteValidator({selection})"

    @property
    def rollouts(self) -> Tuple[Rollout, ...]:
        return tuple(self._rollouts)

    @property
    def profile(self) -> Profile:
        return self._data.profile

    def alternatives(self) -> Dict[ParticipantId, int]:
        """Number of alternatives each rival offers."""
        return dict(self._data.table.rollouts())

    def _position(self, rival: ParticipantId) -> int:
        for i, rollout in enumerate(self._rollouts):
            if rollout.participant == rival:
                return i
        raise KeyError(f"Participant {rival} is not a rival at this table")

    def select(self, rival: ParticipantId, index: int) -> "NegotiatingRouteValidator":
        """
        Choose alternative ``index`` for ``rival``.

        Raises:
            KeyError: If ``rival`` is not at the table
            IndexError: If ``index`` is outside the rival's alternatives
        """
        position = self._position(rival)
        count = self.alternatives().get(rival, 0)
        if not 0 <= index < count:
            raise IndexError(
                f"Alternative {index} out of range for rival {rival} ({count} alternatives)"
            )
        self._rollouts[position] = Rollout(rival, index)
        return self

    def next(self, rival: ParticipantId) -> bool:
        """Advance ``rival`` to its next alternative. Returns False at the last one."""
        position = self._position(rival)
        current = self._rollouts[position].alternative
        if current + 1 >= self.alternatives().get(rival, 0):
            return False
        self._rollouts[position] = Rollout(rival, current + 1)
        return True

    def find_conflict(self, route: Route) -> Optional[ParticipantId]:
        query = make_query([route.map_name], route.start_time, route.finish_time)
        view = self._data.table.query(query.spacetime, self._rollouts)
        return _scan(self._data.detector, self._data.profile, route, view)

    def clone(self) -> "NegotiatingRouteValidator":
        return NegotiatingRouteValidator(self._data, self._rollouts)
