"""
Reservation planners.

A planner turns a newly admitted (or cancelled) request into a lazily
produced, cost-ranked sequence of schedule patches. Callers pull candidates
one at a time with ``PlanSet.next_best()`` and stop as soon as one suits
them; ``None`` means no further rewrite is feasible under the installed
baseline.

The min-conflict planner is a heuristic: a best-first (Dijkstra-style)
search over schedule states whose edges are single Pushback/BringForward
applications, costed by how much of the existing schedule they disturb.
It does not guarantee a globally optimal outcome.
"""

import heapq
import itertools
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set

from .config import PlannerConfig
from .constraint_tracker import ConstraintTracker
from .errors import (
    DuplicateReservationError,
    StalePlanSetError,
    TrafficPlannerError,
    UnknownReservationError,
)
from .operators import (
    BringForwardScheduleOperator,
    PushbackScheduleOperator,
    ScheduleOperator,
)
from .reservations import (
    Bounded,
    Reservation,
    ReservationRequest,
    ResourceTimeline,
    fits_before,
)
from .schedule_state import AbstractScheduleState, SchedulePatch

logger = logging.getLogger(__name__)


class PlanSet(ABC):
    """Lazy, non-restartable sequence of candidate patches, best first."""

    @abstractmethod
    def next_best(self) -> Optional[SchedulePatch]:
        """Next lowest-cost candidate, or None once the search is exhausted."""

    def __iter__(self) -> Iterator[SchedulePatch]:
        while True:
            patch = self.next_best()
            if patch is None:
                return
            yield patch


class Planner(ABC):
    """Contract shared by reservation planners."""

    @abstractmethod
    def set_current_schedule(self, state: AbstractScheduleState) -> None:
        """Install the baseline that later plan/cancel calls reason from."""

    @abstractmethod
    def plan(self, request_id: str) -> PlanSet:
        """Begin searching for ways to admit a registered request."""

    @abstractmethod
    def cancel(self, request_id: str) -> PlanSet:
        """Begin searching for ways to retract a request's reservations."""


class SearchMode(Enum):
    """What a plan set is searching for."""

    PLAN = "plan"
    CANCEL = "cancel"


@dataclass(order=True)
class PriorityQueueEntry:
    """Frontier entry ordered by cumulative cost, then insertion order."""

    cost: float
    order: int
    state: SchedulePatch = field(compare=False)
    is_goal: bool = field(default=False, compare=False)


class MinConflictPlanSet(PlanSet):
    """
    Best-first search over the states reachable from one baseline.

    Plan sets are stateful and must be driven by one owner at a time.
    Separate plan sets share nothing mutable and may run in parallel.
    """

    def __init__(
        self,
        planner: "MinConflictPlanner",
        mode: SearchMode,
        request: ReservationRequest,
        reservation_id: Optional[str] = None,
    ):
        self._planner = planner
        self._generation = planner.generation
        self._baseline = planner.state
        self._tracker = planner.tracker
        self._config = planner.config
        self.mode = mode
        self.request = request
        self.reservation_id = reservation_id
        if mode is SearchMode.PLAN and reservation_id is None:
            raise ValueError("Plan searches need the id of the reservation they insert")

        self._queue: List[PriorityQueueEntry] = []
        self._counter = itertools.count()
        self._expanded: Set[frozenset] = set()
        self._yielded: Set[frozenset] = set()
        self._gap_starts: Dict[str, datetime] = {}
        self._expansions = 0
        self._exhausted = False

        # A request already holding reservations is re-proposed from scratch
        self._push(0.0, self._retract(), is_goal=mode is SearchMode.CANCEL)

    # -------------------------------------------------------------------------
    # Public surface
    # -------------------------------------------------------------------------

    @property
    def expansions(self) -> int:
        return self._expansions

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def next_best(self) -> Optional[SchedulePatch]:
        if self._planner.generation != self._generation:
            raise StalePlanSetError(
                f"Plan set for request {self.request.request_id} was created "
                f"against a baseline that has since been replaced"
            )

        max_cost = self._config.max_cost
        while self._queue:
            entry = heapq.heappop(self._queue)
            if max_cost is not None and entry.cost > max_cost:
                logger.debug(f"Cost ceiling {max_cost} reached at {entry.cost:.3f}")
                break

            key = entry.state.fingerprint()
            if entry.is_goal:
                if key in self._yielded:
                    continue
                self._yielded.add(key)
                if self.mode is SearchMode.CANCEL and self._budget_left():
                    self._expand_cancel(entry)

                logger.debug(
                    f"Candidate #{len(self._yielded)} for {self.mode.value} "
                    f"{self.request.request_id} at cost {entry.cost:.3f}"
                )
                return entry.state.squashed()

            if key in self._expanded:
                continue
            if not self._budget_left():
                logger.info(
                    f"Expansion limit {self._config.max_expansions} reached for "
                    f"{self.mode.value} {self.request.request_id}"
                )
                break
            self._expanded.add(key)
            self._expand_plan(entry)

        self._queue.clear()
        if not self._exhausted:
            self._exhausted = True
            logger.info(
                f"Search for {self.mode.value} {self.request.request_id} exhausted after "
                f"{self._expansions} expansions, {len(self._yielded)} candidates"
            )
        return None

    # -------------------------------------------------------------------------
    # Search internals
    # -------------------------------------------------------------------------

    def _budget_left(self) -> bool:
        return self._expansions < self._config.max_expansions

    def _push(self, cost: float, state: SchedulePatch, is_goal: bool) -> None:
        heapq.heappush(
            self._queue,
            PriorityQueueEntry(cost, next(self._counter), state, is_goal),
        )

    def _edge_cost(self, patch: SchedulePatch) -> float:
        moved = 0
        shift = 0.0
        for before, after in patch.layer_changes():
            if before is None or after is None:
                continue
            moved += 1
            shift += abs((after.start_time - before.start_time).total_seconds())
        return (
            self._config.displacement_weight * moved
            + self._config.shift_weight_per_second * shift
        )

    def _insertion_cost(self, reservation: Reservation) -> float:
        lower = self.request.start.lower_bound
        if lower is None or reservation.start_time <= lower:
            return 0.0
        lateness = (reservation.start_time - lower).total_seconds()
        return self._config.lateness_weight_per_second * lateness

    def _apply(
        self,
        operator: ScheduleOperator,
        state: AbstractScheduleState,
        cost: float,
        is_goal: bool = False,
    ) -> None:
        child = operator.apply(state, self._tracker)
        if child is None or not child.layer_changes():
            return
        self._push(cost + self._edge_cost(child), child, is_goal)

    # Plan ------------------------------------------------------------------

    def _candidate_resources(self, state: AbstractScheduleState) -> List[str]:
        if self.request.resources:
            return sorted(self.request.resources)
        return sorted(state.resources())

    def _candidate_starts(self, timeline: ResourceTimeline) -> List[datetime]:
        window = self.request.start
        duration = self.request.duration
        times: Set[datetime] = set()

        if window.lower_bound is not None:
            times.add(window.lower_bound)
            t = window.lower_bound
            for _ in range(self._config.max_samples_per_resource):
                t = t + self._config.sampling_interval
                if window.upper_bound is not None and t > window.upper_bound:
                    break
                times.add(t)

        for reservation in timeline:
            finish = reservation.actual_finish_time
            if isinstance(finish, Bounded):
                times.add(finish.instant)

        if timeline and duration is not None:
            times.add(timeline[0].start_time - duration)

        if not times and window.upper_bound is not None:
            times.add(window.upper_bound)

        return sorted(t for t in times if window.contains(t))

    def _expand_plan(self, entry: PriorityQueueEntry) -> None:
        self._expansions += 1
        state = entry.state

        for resource in self._candidate_resources(state):
            timeline = state.get_schedule(resource)
            for start in self._candidate_starts(timeline):
                new = Reservation(
                    self.reservation_id, resource, start, self.request.duration
                )
                if not self.request.satisfied_by(new):
                    continue

                patch = SchedulePatch(state)
                if patch.update_reservation(new):
                    self._push(entry.cost + self._insertion_cost(new), patch, True)
                    continue

                finish = new.actual_finish_time
                if isinstance(finish, Bounded):
                    self._apply(
                        PushbackScheduleOperator(resource, start, finish.instant),
                        state,
                        entry.cost,
                    )

                index = timeline.lower_bound(start)
                if index > 0:
                    previous = timeline[index - 1]
                    if (
                        not fits_before(previous, start)
                        and previous.duration is not None
                    ):
                        self._apply(
                            BringForwardScheduleOperator(
                                resource, start, start - previous.duration
                            ),
                            state,
                            entry.cost,
                        )

    # Cancel ----------------------------------------------------------------

    def _retract(self) -> SchedulePatch:
        patch = SchedulePatch(self._baseline)
        for reservation_id in self._tracker.reservations_for(self.request.request_id):
            reservation = patch.find_reservation(reservation_id)
            if reservation is None:
                logger.warning(
                    f"Reservation {reservation_id} of request "
                    f"{self.request.request_id} is not in the schedule"
                )
                continue
            patch.remove_reservation(reservation_id)
            gap = self._gap_starts.get(reservation.resource)
            if gap is None or reservation.start_time < gap:
                self._gap_starts[reservation.resource] = reservation.start_time
        return patch

    def _expand_cancel(self, entry: PriorityQueueEntry) -> None:
        self._expansions += 1
        state = entry.state

        for resource, gap_start in sorted(self._gap_starts.items()):
            timeline = state.get_schedule(resource)
            for index in range(timeline.lower_bound(gap_start), len(timeline)):
                reservation = timeline[index]
                request_id = self._tracker.get_associated_reservation(
                    reservation.reservation_id
                )
                if request_id is None:
                    raise UnknownReservationError(reservation.reservation_id)
                lower = self._tracker.get_request(request_id).start.lower_bound

                target: Optional[datetime] = None
                if index > 0:
                    finish = timeline[index - 1].actual_finish_time
                    if not isinstance(finish, Bounded):
                        continue
                    target = finish.instant
                if lower is not None and (target is None or lower > target):
                    target = lower

                if target is None or target >= reservation.start_time:
                    continue

                self._apply(
                    BringForwardScheduleOperator(
                        resource,
                        reservation.start_time + datetime.resolution,
                        target,
                    ),
                    state,
                    entry.cost,
                    is_goal=True,
                )


class MinConflictPlanner(Planner):
    """
    Planner that services requests while disturbing as few existing
    reservations as it can.

    Args:
        tracker: Constraint tracker of the planning session
        config: Search bounds and cost weights
    """

    def __init__(
        self,
        tracker: ConstraintTracker,
        config: Optional[PlannerConfig] = None,
    ):
        self.tracker = tracker
        self.config = config or PlannerConfig()
        self.state: Optional[AbstractScheduleState] = None
        self.generation = 0

    def set_current_schedule(self, state: AbstractScheduleState) -> None:
        self.state = state
        self.generation += 1
        logger.debug(f"Installed schedule baseline #{self.generation}")

    def _require_state(self) -> None:
        if self.state is None:
            raise TrafficPlannerError(
                "No schedule installed; call set_current_schedule() first"
            )

    def _check_reservation_id(self, request_id: str, reservation_id: str) -> None:
        """Reject ids that already name another request's reservation."""
        owner = self.tracker.get_associated_reservation(reservation_id)
        if owner is not None and owner != request_id:
            raise DuplicateReservationError(reservation_id, owner)
        if owner is None and self.state.find_reservation(reservation_id) is not None:
            raise DuplicateReservationError(reservation_id, "<untracked>")

    def plan(
        self, request_id: str, reservation_id: Optional[str] = None
    ) -> MinConflictPlanSet:
        """
        Start a search for ways to admit ``request_id``.

        Reservations the request already holds are retracted from the
        baseline first, so the request is re-proposed rather than duplicated.

        Raises:
            DuplicateReservationError: If ``reservation_id`` already names a
                reservation of another request
        """
        self._require_state()
        request = self.tracker.get_request(request_id)
        if reservation_id is None:
            reservation_id = f"{request_id}-{uuid.uuid4().hex[:8]}"
        else:
            self._check_reservation_id(request_id, reservation_id)
        logger.info(f"Planning request {request_id} as reservation {reservation_id}")
        return MinConflictPlanSet(self, SearchMode.PLAN, request, reservation_id)

    def cancel(self, request_id: str) -> MinConflictPlanSet:
        self._require_state()
        request = self.tracker.get_request(request_id)
        logger.info(f"Planning cancellation of request {request_id}")
        return MinConflictPlanSet(self, SearchMode.CANCEL, request)
