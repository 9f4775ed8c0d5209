"""
Reservation data model.

A reservation is a time-bounded claim on one named resource (a lane, a dock,
a charging bay). Each reservation is created on behalf of exactly one
``ReservationRequest`` whose constraints it must keep satisfying whenever the
planner moves it around.

Finish times are a tagged variant: ``Bounded(instant)`` when the reservation
has a known duration, ``UNBOUNDED`` when it holds the resource indefinitely
(e.g. the last parking spot in a chain). Propagation logic branches on the
variant, never on ``None``.
"""

import bisect
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


# =============================================================================
# Finish time variant
# =============================================================================


@dataclass(frozen=True)
class Bounded:
    """A finish time that is a concrete instant."""

    instant: datetime


@dataclass(frozen=True)
class Unbounded:
    """A finish time that is not known; nothing can be scheduled after it."""


UNBOUNDED = Unbounded()

FinishTime = Union[Bounded, Unbounded]


# =============================================================================
# Reservations and requests
# =============================================================================


@dataclass(frozen=True)
class Reservation:
    """
    A claim on ``resource`` starting at ``start_time``.

    ``duration`` of ``None`` makes the reservation unbounded. The duration
    travels with the reservation when it is proposed at a new start time.
    """

    reservation_id: str
    resource: str
    start_time: datetime
    duration: Optional[timedelta] = None

    def __post_init__(self) -> None:
        if self.duration is not None and self.duration < timedelta(0):
            raise ValueError(
                f"Reservation {self.reservation_id} has negative duration {self.duration}"
            )

    @property
    def actual_finish_time(self) -> FinishTime:
        if self.duration is None:
            return UNBOUNDED
        return Bounded(self.start_time + self.duration)

    @property
    def is_unbounded(self) -> bool:
        return self.duration is None

    def propose_new_start_time(self, start_time: datetime) -> "Reservation":
        """Return a copy of this reservation moved to ``start_time``."""
        return replace(self, start_time=start_time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        finish = self.actual_finish_time
        return {
            "reservation_id": self.reservation_id,
            "resource": self.resource,
            "start_time": self.start_time.isoformat(),
            "finish_time": (
                finish.instant.isoformat() if isinstance(finish, Bounded) else None
            ),
        }


@dataclass(frozen=True)
class StartTimeRange:
    """Inclusive window a reservation's start time must fall into."""

    lower_bound: Optional[datetime] = None
    upper_bound: Optional[datetime] = None

    def __post_init__(self) -> None:
        if (
            self.lower_bound is not None
            and self.upper_bound is not None
            and self.upper_bound < self.lower_bound
        ):
            raise ValueError(
                f"Start window upper bound {self.upper_bound} precedes lower bound {self.lower_bound}"
            )

    def contains(self, time: datetime) -> bool:
        if self.lower_bound is not None and time < self.lower_bound:
            return False
        if self.upper_bound is not None and time > self.upper_bound:
            return False
        return True


@dataclass(frozen=True)
class ReservationRequest:
    """
    The constraints a reservation made for this request must satisfy.

    Attributes:
        request_id: Unique request identifier
        resources: Names of the resources the request may be served on
            (empty means any resource)
        start: Window for the reservation's start time
        duration: Minimum time the resource must be held; ``None`` asks for
            an unbounded reservation
        finish_deadline: Latest acceptable finish time
    """

    request_id: str
    resources: FrozenSet[str] = field(default_factory=frozenset)
    start: StartTimeRange = field(default_factory=StartTimeRange)
    duration: Optional[timedelta] = None
    finish_deadline: Optional[datetime] = None

    def __post_init__(self) -> None:
        # Accept any iterable of names
        if not isinstance(self.resources, frozenset):
            object.__setattr__(self, "resources", frozenset(self.resources))
        if self.duration is not None and self.duration < timedelta(0):
            raise ValueError(f"Request {self.request_id} has negative duration")

    def allows_resource(self, resource: str) -> bool:
        return not self.resources or resource in self.resources

    def satisfied_by(self, reservation: Reservation) -> bool:
        """Check a (possibly only proposed) reservation against this request."""
        if not self.allows_resource(reservation.resource):
            return False

        if not self.start.contains(reservation.start_time):
            return False

        finish = reservation.actual_finish_time
        if self.duration is not None:
            if not isinstance(finish, Bounded):
                return False
            if finish.instant - reservation.start_time < self.duration:
                return False

        if self.finish_deadline is not None:
            if not isinstance(finish, Bounded):
                return False
            if finish.instant > self.finish_deadline:
                return False

        return True


# =============================================================================
# Per-resource timeline
# =============================================================================


class ResourceTimeline:
    """
    Immutable, start-ordered sequence of the reservations on one resource.

    Positions are plain indices; ``lower_bound`` gives the first entry that
    starts at or after a given time.
    """

    __slots__ = ("resource", "_entries", "_starts")

    def __init__(self, resource: str, reservations: Iterable[Reservation] = ()):
        self.resource = resource
        self._entries: Tuple[Reservation, ...] = tuple(
            sorted(reservations, key=lambda r: (r.start_time, r.reservation_id))
        )
        self._starts: List[datetime] = [r.start_time for r in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Reservation]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> Reservation:
        return self._entries[index]

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceTimeline):
            return NotImplemented
        return self.resource == other.resource and self._entries == other._entries

    def __hash__(self) -> int:
        return hash((self.resource, self._entries))

    def __repr__(self) -> str:
        return f"ResourceTimeline({self.resource!r}, {list(self._entries)!r})"

    @property
    def entries(self) -> Tuple[Reservation, ...]:
        return self._entries

    def lower_bound(self, time: datetime) -> int:
        """Index of the first reservation starting at or after ``time``."""
        return bisect.bisect_left(self._starts, time)

    def upper_bound(self, time: datetime) -> int:
        """Index of the first reservation starting strictly after ``time``."""
        return bisect.bisect_right(self._starts, time)

    def index_of(self, reservation_id: str) -> Optional[int]:
        for i, reservation in enumerate(self._entries):
            if reservation.reservation_id == reservation_id:
                return i
        return None

    def overlapping_pairs(self) -> List[Tuple[Reservation, Reservation]]:
        """Adjacent pairs that break the no-overlap invariant."""
        bad = []
        for prev, nxt in zip(self._entries, self._entries[1:]):
            if not fits_before(prev, nxt.start_time):
                bad.append((prev, nxt))
        return bad

    def is_consistent(self) -> bool:
        return not self.overlapping_pairs()


def fits_before(reservation: Reservation, time: datetime) -> bool:
    """True if ``reservation`` is finished by ``time`` (never for unbounded ones)."""
    finish = reservation.actual_finish_time
    return isinstance(finish, Bounded) and finish.instant <= time
