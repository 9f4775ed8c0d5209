"""
Schedule view types: routes, participants and spacetime queries.

The traffic schedule itself (storage, indexing, versioning) lives outside
this package. Validators only need a read interface that answers "which
itineraries touch this map during this time window"; ``ScheduleViewer``
describes it and ``InMemorySchedule`` is a small reference implementation.
"""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

logger = logging.getLogger(__name__)

ParticipantId = int


class TrajectoryLike(Protocol):
    """Anything with a start and an (optionally unbounded) finish time."""

    @property
    def start_time(self) -> Optional[datetime]: ...

    @property
    def finish_time(self) -> Optional[datetime]: ...


@dataclass(frozen=True)
class Profile:
    """
    Footprint of a participant.

    Two participants conflict when one's footprint enters the other's
    vicinity. The vicinity defaults to the footprint.
    """

    footprint_radius: float
    vicinity_radius: Optional[float] = None

    def __post_init__(self) -> None:
        if self.footprint_radius <= 0:
            raise ValueError(
                f"footprint_radius must be positive, got {self.footprint_radius}"
            )
        if self.vicinity_radius is not None and self.vicinity_radius < self.footprint_radius:
            raise ValueError("vicinity_radius must not be smaller than footprint_radius")

    @property
    def vicinity(self) -> float:
        if self.vicinity_radius is None:
            return self.footprint_radius
        return self.vicinity_radius


@dataclass(frozen=True)
class Route:
    """One map-bound trajectory of an itinerary."""

    map_name: str
    trajectory: TrajectoryLike

    @property
    def start_time(self) -> Optional[datetime]:
        return self.trajectory.start_time

    @property
    def finish_time(self) -> Optional[datetime]:
        return self.trajectory.finish_time


@dataclass(frozen=True)
class ParticipantDescription:
    """Static information about a schedule participant."""

    name: str
    owner: str
    profile: Profile


@dataclass(frozen=True)
class ScheduleEntry:
    """One element of a schedule view."""

    participant: ParticipantId
    description: ParticipantDescription
    route: Route


@dataclass
class SpacetimeFilter:
    """
    Map-set plus time-window predicate.

    ``maps`` of None matches every map; a missing time bound leaves that
    side of the window open.
    """

    maps: Optional[Set[str]] = None
    lower_time_bound: Optional[datetime] = None
    upper_time_bound: Optional[datetime] = None

    def clear_maps(self) -> "SpacetimeFilter":
        self.maps = set()
        return self

    def add_map(self, map_name: str) -> "SpacetimeFilter":
        if self.maps is None:
            self.maps = set()
        self.maps.add(map_name)
        return self

    def set_lower_time_bound(self, time: Optional[datetime]) -> "SpacetimeFilter":
        self.lower_time_bound = time
        return self

    def set_upper_time_bound(self, time: Optional[datetime]) -> "SpacetimeFilter":
        self.upper_time_bound = time
        return self

    def matches(self, route: Route) -> bool:
        if self.maps is not None and route.map_name not in self.maps:
            return False

        start = route.start_time
        finish = route.finish_time
        if self.upper_time_bound is not None and start is not None:
            if start > self.upper_time_bound:
                return False
        if self.lower_time_bound is not None and finish is not None:
            if finish < self.lower_time_bound:
                return False
        return True


@dataclass
class Query:
    """Schedule query: a spacetime filter and an optional participant filter."""

    spacetime: SpacetimeFilter = field(default_factory=SpacetimeFilter)
    participants: Optional[Set[ParticipantId]] = None

    def matches(self, participant: ParticipantId, route: Route) -> bool:
        if self.participants is not None and participant not in self.participants:
            return False
        return self.spacetime.matches(route)


def query_all() -> Query:
    """Query matching every itinerary in the schedule."""
    return Query()


def make_query(
    maps: Iterable[str],
    start_time: Optional[datetime] = None,
    finish_time: Optional[datetime] = None,
) -> Query:
    """Query for the given maps within ``[start_time, finish_time]``."""
    return Query(
        spacetime=SpacetimeFilter(
            maps=set(maps),
            lower_time_bound=start_time,
            upper_time_bound=finish_time,
        )
    )


class ScheduleViewer(Protocol):
    """Read interface over the committed traffic schedule."""

    def query(self, query: Query) -> Iterable[ScheduleEntry]: ...


class InMemorySchedule:
    """Reference schedule viewer holding itineraries in memory."""

    def __init__(self) -> None:
        self._ids = itertools.count()
        self._participants: Dict[ParticipantId, ParticipantDescription] = {}
        self._itineraries: Dict[ParticipantId, List[Route]] = {}
        self.version = 0

    def register_participant(self, description: ParticipantDescription) -> ParticipantId:
        participant = next(self._ids)
        self._participants[participant] = description
        self._itineraries[participant] = []
        self.version += 1
        logger.debug(f"Registered participant {participant} ({description.name})")
        return participant

    def unregister_participant(self, participant: ParticipantId) -> None:
        self._participants.pop(participant, None)
        self._itineraries.pop(participant, None)
        self.version += 1

    def set_itinerary(self, participant: ParticipantId, routes: Iterable[Route]) -> None:
        if participant not in self._participants:
            raise KeyError(f"Unknown participant {participant}")
        self._itineraries[participant] = list(routes)
        self.version += 1

    def get_participant(self, participant: ParticipantId) -> Optional[ParticipantDescription]:
        return self._participants.get(participant)

    def participant_ids(self) -> Tuple[ParticipantId, ...]:
        return tuple(sorted(self._participants))

    def query(self, query: Query) -> List[ScheduleEntry]:
        view = []
        for participant in sorted(self._itineraries):
            description = self._participants[participant]
            for route in self._itineraries[participant]:
                if query.matches(participant, route):
                    view.append(ScheduleEntry(participant, description, route))
        return view
