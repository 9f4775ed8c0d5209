"""
Schedule states: immutable baselines and copy-on-write patches.

``ScheduleState`` is a committed snapshot of every resource timeline.
``SchedulePatch`` layers overriding writes on top of exactly one parent
state; resources it never touched fall through to the parent. Neither kind
is mutated once handed to a reader, so states can be shared freely across
threads and search branches.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple

from .errors import ScheduleOverlapError
from .reservations import Reservation, ResourceTimeline, fits_before

logger = logging.getLogger(__name__)


class AbstractScheduleState(ABC):
    """Read interface shared by baselines and patches."""

    @abstractmethod
    def get_schedule(self, resource: str) -> ResourceTimeline:
        """Start-ordered timeline of ``resource`` (empty if unknown)."""

    @abstractmethod
    def resources(self) -> FrozenSet[str]:
        """Names of every resource that holds at least one reservation."""

    def all_reservations(self) -> Iterator[Reservation]:
        for resource in sorted(self.resources()):
            yield from self.get_schedule(resource)

    def find_reservation(self, reservation_id: str) -> Optional[Reservation]:
        for reservation in self.all_reservations():
            if reservation.reservation_id == reservation_id:
                return reservation
        return None

    def fingerprint(self) -> FrozenSet[Reservation]:
        """Hashable identity of the schedule content, independent of layering."""
        return frozenset(self.all_reservations())

    def is_consistent(self) -> bool:
        return all(self.get_schedule(r).is_consistent() for r in self.resources())

    def to_dict(self) -> Dict[str, List[Dict]]:
        return {
            resource: [r.to_dict() for r in self.get_schedule(resource)]
            for resource in sorted(self.resources())
        }


class ScheduleState(AbstractScheduleState):
    """
    Committed baseline schedule.

    Raises:
        ScheduleOverlapError: If two reservations on one resource overlap or
            a reservation follows an unbounded one.
    """

    def __init__(self, reservations: Iterable[Reservation] = ()):
        by_resource: Dict[str, List[Reservation]] = {}
        seen: Set[str] = set()
        for reservation in reservations:
            if reservation.reservation_id in seen:
                raise ScheduleOverlapError(
                    f"Duplicate reservation id '{reservation.reservation_id}'"
                )
            seen.add(reservation.reservation_id)
            by_resource.setdefault(reservation.resource, []).append(reservation)

        self._timelines: Dict[str, ResourceTimeline] = {
            name: ResourceTimeline(name, items) for name, items in by_resource.items()
        }

        for timeline in self._timelines.values():
            bad = timeline.overlapping_pairs()
            if bad:
                prev, nxt = bad[0]
                raise ScheduleOverlapError(
                    f"Reservation '{nxt.reservation_id}' on '{timeline.resource}' "
                    f"overlaps '{prev.reservation_id}'"
                )

    def get_schedule(self, resource: str) -> ResourceTimeline:
        timeline = self._timelines.get(resource)
        if timeline is None:
            return ResourceTimeline(resource)
        return timeline

    def resources(self) -> FrozenSet[str]:
        return frozenset(name for name, t in self._timelines.items() if t)


class SchedulePatch(AbstractScheduleState):
    """
    Copy-on-write overlay recording only the reservations it overrides.

    Writes are staged with ``update_reservation`` and ``remove_reservation``
    while the patch is being built; afterwards it is read-only like any
    other state.
    """

    def __init__(self, parent: AbstractScheduleState):
        self._parent = parent
        # reservation id -> overriding reservation
        self._updates: Dict[str, Reservation] = {}
        self._removed: Set[str] = set()
        self._cache: Dict[str, ResourceTimeline] = {}

    @property
    def parent(self) -> AbstractScheduleState:
        return self._parent

    @property
    def root(self) -> AbstractScheduleState:
        state: AbstractScheduleState = self
        while isinstance(state, SchedulePatch):
            state = state.parent
        return state

    @property
    def depth(self) -> int:
        depth = 0
        state: AbstractScheduleState = self
        while isinstance(state, SchedulePatch):
            depth += 1
            state = state.parent
        return depth

    def _touched_ids(self) -> Set[str]:
        return set(self._updates) | self._removed

    def get_schedule(self, resource: str) -> ResourceTimeline:
        cached = self._cache.get(resource)
        if cached is not None:
            return cached

        touched = self._touched_ids()
        if not touched:
            timeline = self._parent.get_schedule(resource)
        else:
            kept = [
                r
                for r in self._parent.get_schedule(resource)
                if r.reservation_id not in touched
            ]
            kept.extend(r for r in self._updates.values() if r.resource == resource)
            timeline = ResourceTimeline(resource, kept)

        self._cache[resource] = timeline
        return timeline

    def resources(self) -> FrozenSet[str]:
        names = set(self._parent.resources())
        names.update(r.resource for r in self._updates.values())
        return frozenset(name for name in names if self.get_schedule(name))

    def _locate(self, reservation_id: str) -> Optional[Reservation]:
        if reservation_id in self._updates:
            return self._updates[reservation_id]
        if reservation_id in self._removed:
            return None
        return self._parent.find_reservation(reservation_id)

    def update_reservation(self, reservation: Reservation) -> bool:
        """
        Stage a write of ``reservation``, replacing any earlier version.

        Returns:
            False (and writes nothing) if the reservation would overlap its
            neighbours in this patch's current view of the resource.
        """
        timeline = self.get_schedule(reservation.resource)
        others = [
            r for r in timeline if r.reservation_id != reservation.reservation_id
        ]
        probe = ResourceTimeline(reservation.resource, others)
        index = probe.lower_bound(reservation.start_time)

        if index > 0 and not fits_before(probe[index - 1], reservation.start_time):
            logger.debug(
                f"Rejected {reservation.reservation_id} at {reservation.start_time}: "
                f"overlaps {probe[index - 1].reservation_id}"
            )
            return False

        if index < len(probe) and not fits_before(reservation, probe[index].start_time):
            logger.debug(
                f"Rejected {reservation.reservation_id} at {reservation.start_time}: "
                f"runs into {probe[index].reservation_id}"
            )
            return False

        previous = self._locate(reservation.reservation_id)
        self._updates[reservation.reservation_id] = reservation
        self._removed.discard(reservation.reservation_id)
        self._invalidate(reservation.resource)
        if previous is not None:
            self._invalidate(previous.resource)
        return True

    def remove_reservation(self, reservation_id: str) -> bool:
        """Stage removal of a reservation. Returns False if it is not in view."""
        previous = self._locate(reservation_id)
        if previous is None:
            return False
        self._updates.pop(reservation_id, None)
        self._removed.add(reservation_id)
        self._invalidate(previous.resource)
        return True

    def _invalidate(self, resource: str) -> None:
        self._cache.pop(resource, None)

    def layer_changes(self) -> List[Tuple[Optional[Reservation], Optional[Reservation]]]:
        """(before, after) pairs for the writes staged on this layer only."""
        pairs: List[Tuple[Optional[Reservation], Optional[Reservation]]] = []
        for reservation_id in sorted(self._touched_ids()):
            before = self._parent.find_reservation(reservation_id)
            pairs.append((before, self._updates.get(reservation_id)))
        return pairs

    def changes(self) -> Tuple[List[Reservation], List[str]]:
        """
        Net effect of this patch chain relative to the root baseline.

        Returns:
            Tuple of (reservations written or moved, ids removed)
        """
        root = self.root
        base = {r.reservation_id: r for r in root.all_reservations()}
        current = {r.reservation_id: r for r in self.all_reservations()}

        written = [
            r for rid, r in sorted(current.items()) if base.get(rid) != r
        ]
        removed = sorted(rid for rid in base if rid not in current)
        return written, removed

    def squashed(self) -> "SchedulePatch":
        """Equivalent single-layer patch directly over the root baseline."""
        written, removed = self.changes()
        flat = SchedulePatch(self.root)
        for reservation_id in removed:
            flat.remove_reservation(reservation_id)
        # Moved reservations may block each other transiently, so write the
        # final view directly instead of through the overlap check.
        for reservation in written:
            flat._removed.discard(reservation.reservation_id)
            flat._updates[reservation.reservation_id] = reservation
        flat._cache.clear()
        return flat
