"""
Scheduling operators: unit rewrite rules over a schedule state.

Each operator performs a chained local rewrite on one resource. Moving one
reservation may force its neighbour to move too; the chain continues until a
reservation absorbs the change or an unbounded reservation is reached. The
rewrite is all-or-nothing: a single rejected link discards the whole chain
and the operator returns ``None``.

Proposals are committed in reverse chain order so that the tail of the chain
has already vacated its slot when the reservation ahead of it moves in.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .constraint_tracker import ConstraintTracker
from .errors import UnknownReservationError
from .reservations import Bounded, Reservation
from .schedule_state import AbstractScheduleState, SchedulePatch

logger = logging.getLogger(__name__)


class ScheduleOperator(ABC):
    """Common behaviour of the chained rewrite operators."""

    resource_name: str
    start_time: datetime
    desired_time: datetime

    @abstractmethod
    def propose(
        self, state: AbstractScheduleState, tracker: ConstraintTracker
    ) -> Optional[List[Reservation]]:
        """
        Compute the chain of moved reservations in chain order.

        Returns:
            The proposals, or None if a link violates its request.
        """

    def apply(
        self, state: AbstractScheduleState, tracker: ConstraintTracker
    ) -> Optional[SchedulePatch]:
        """
        Apply the operator to ``state``.

        Returns:
            A patch over ``state`` holding the whole chain, or None if the
            rewrite is infeasible or inconsistent with the rest of the schedule.

        Raises:
            UnknownReservationError: If a reservation in the chain has no
                request recorded in ``tracker``.
        """
        proposal = self.propose(state, tracker)
        if proposal is None:
            return None

        patch = SchedulePatch(state)
        for reservation in reversed(proposal):
            if not patch.update_reservation(reservation):
                logger.debug(
                    f"{type(self).__name__} on {self.resource_name}: commit of "
                    f"{reservation.reservation_id} conflicts, discarding chain"
                )
                return None
        return patch

    def _check(self, proposed: Reservation, tracker: ConstraintTracker) -> bool:
        request_id = tracker.get_associated_reservation(proposed.reservation_id)
        if request_id is None:
            raise UnknownReservationError(proposed.reservation_id)

        if not tracker.satisfies(request_id, proposed):
            logger.debug(
                f"{type(self).__name__} on {self.resource_name}: request {request_id} "
                f"rejects {proposed.reservation_id} at {proposed.start_time}"
            )
            return False
        return True


@dataclass(frozen=True)
class PushbackScheduleOperator(ScheduleOperator):
    """
    Delay the reservations at or after ``start_time``.

    The first entry starting at or after ``start_time`` is moved to
    ``desired_time``; every following entry that would now overlap is moved
    to start when its predecessor finishes.
    """

    resource_name: str
    start_time: datetime
    desired_time: datetime

    def propose(
        self, state: AbstractScheduleState, tracker: ConstraintTracker
    ) -> Optional[List[Reservation]]:
        schedule = state.get_schedule(self.resource_name)
        proposal: List[Reservation] = []
        index = schedule.lower_bound(self.start_time)
        next_time = self.desired_time

        # Strict comparison: an entry starting exactly at the displacement time
        # already fits, so it is neither moved nor re-checked against its request.
        while index < len(schedule) and schedule[index].start_time < next_time:
            proposed = schedule[index].propose_new_start_time(next_time)
            if not self._check(proposed, tracker):
                return None

            proposal.append(proposed)
            finish = proposed.actual_finish_time
            if not isinstance(finish, Bounded):
                # Nothing can follow an unbounded reservation
                break
            next_time = finish.instant
            index += 1

        return proposal


@dataclass(frozen=True)
class BringForwardScheduleOperator(ScheduleOperator):
    """
    Pull the reservations before ``start_time`` earlier.

    The last entry starting before ``start_time`` is moved to
    ``desired_time``; walking backward, every earlier entry that would still
    be running when its successor now starts is moved so that it finishes
    exactly then.
    """

    resource_name: str
    start_time: datetime
    desired_time: datetime

    def propose(
        self, state: AbstractScheduleState, tracker: ConstraintTracker
    ) -> Optional[List[Reservation]]:
        schedule = state.get_schedule(self.resource_name)
        proposal: List[Reservation] = []
        index = schedule.lower_bound(self.start_time) - 1
        next_time = self.desired_time

        while index >= 0 and schedule[index].start_time > next_time:
            proposed = schedule[index].propose_new_start_time(next_time)
            if not self._check(proposed, tracker):
                return None

            proposal.append(proposed)
            index -= 1
            if index < 0:
                break

            predecessor = schedule[index]
            if predecessor.duration is None:
                # No terminal instant to hand the change to
                break
            next_time = proposed.start_time - predecessor.duration

        return proposal
