"""
Reference trajectory and conflict oracle.

Validators treat conflict detection as a pure oracle
``detect(profile_a, trajectory_a, profile_b, trajectory_b) -> bool`` and
accept any callable with that signature. This module supplies a simple one:
trajectories are timed 2D waypoints with linear interpolation, and two
participants conflict when, at some sampled instant of their common time
span, one footprint disc enters the other's vicinity disc.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .spacetime import Profile

logger = logging.getLogger(__name__)

# Sampling step used by detect_conflict
DEFAULT_RESOLUTION = timedelta(milliseconds=100)
MAX_SAMPLES = 10000


class Trajectory:
    """
    Timed 2D waypoints.

    Args:
        waypoints: Iterable of (time, (x, y)) pairs; sorted by time on construction

    Raises:
        ValueError: If there are no waypoints, two share a time, or a
            position is not 2D.
    """

    def __init__(self, waypoints: Iterable[Tuple[datetime, Sequence[float]]]):
        ordered = sorted(waypoints, key=lambda w: w[0])
        if not ordered:
            raise ValueError("A trajectory needs at least one waypoint")

        self._times: List[datetime] = [t for t, _ in ordered]
        for earlier, later in zip(self._times, self._times[1:]):
            if earlier == later:
                raise ValueError(f"Duplicate waypoint time {later}")

        self._positions = np.asarray([p for _, p in ordered], dtype=float)
        if self._positions.ndim != 2 or self._positions.shape[1] != 2:
            raise ValueError("Waypoint positions must be (x, y) pairs")

        origin = self._times[0]
        self._offsets = np.array(
            [(t - origin).total_seconds() for t in self._times], dtype=float
        )

    def __len__(self) -> int:
        return len(self._times)

    def __repr__(self) -> str:
        return f"Trajectory({len(self)} waypoints, {self.start_time} -> {self.finish_time})"

    @property
    def start_time(self) -> Optional[datetime]:
        return self._times[0]

    @property
    def finish_time(self) -> Optional[datetime]:
        return self._times[-1]

    @property
    def duration(self) -> timedelta:
        return self._times[-1] - self._times[0]

    def positions_at(self, times: Sequence[datetime]) -> np.ndarray:
        """
        Interpolated positions at the given times.

        Times outside the trajectory are clamped to its first or last waypoint.
        """
        origin = self._times[0]
        offsets = np.array([(t - origin).total_seconds() for t in times], dtype=float)
        xs = np.interp(offsets, self._offsets, self._positions[:, 0])
        ys = np.interp(offsets, self._offsets, self._positions[:, 1])
        return np.column_stack((xs, ys))

    def position_at(self, time: datetime) -> Tuple[float, float]:
        x, y = self.positions_at([time])[0]
        return float(x), float(y)


def detect_conflict(
    profile_a: Profile,
    trajectory_a: Trajectory,
    profile_b: Profile,
    trajectory_b: Trajectory,
    resolution: timedelta = DEFAULT_RESOLUTION,
) -> bool:
    """
    Check whether two trajectories come too close during their common time span.

    Args:
        profile_a: Profile of the first participant
        trajectory_a: Trajectory of the first participant
        profile_b: Profile of the second participant
        trajectory_b: Trajectory of the second participant
        resolution: Sampling step inside the common time span

    Returns:
        True if the participants conflict
    """
    start = max(trajectory_a.start_time, trajectory_b.start_time)
    finish = min(trajectory_a.finish_time, trajectory_b.finish_time)
    if finish < start:
        return False

    span = (finish - start).total_seconds()
    steps = int(span / resolution.total_seconds()) + 1 if span > 0 else 0
    steps = min(steps, MAX_SAMPLES)
    samples = [start + timedelta(seconds=s) for s in np.linspace(0.0, span, steps + 1)]

    positions_a = trajectory_a.positions_at(samples)
    positions_b = trajectory_b.positions_at(samples)
    distances = np.linalg.norm(positions_a - positions_b, axis=1)

    threshold = max(
        profile_a.footprint_radius + profile_b.vicinity,
        profile_b.footprint_radius + profile_a.vicinity,
    )
    return bool(np.any(distances < threshold))
