"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides:
- Custom markers for test categorization
- Shared fixtures for building requests, reservations and schedules
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, Optional

import pytest
from _pytest.config import Config

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from traffic_planner.constraint_tracker import ConstraintTracker  # noqa: E402
from traffic_planner.reservations import (  # noqa: E402
    Reservation,
    ReservationRequest,
    StartTimeRange,
)

BASE_TIME = datetime(2025, 1, 15, 12, 0, 0)


def t(minutes: float) -> datetime:
    """Time ``minutes`` after the shared test epoch."""
    return BASE_TIME + timedelta(minutes=minutes)


def minutes(value: float) -> timedelta:
    return timedelta(minutes=value)


def pytest_configure(config: Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )


# =============================================================================
# FIXTURES - Common test setup
# =============================================================================


@pytest.fixture
def base_datetime() -> datetime:
    """Standard base datetime for tests."""
    return BASE_TIME


@pytest.fixture
def tracker() -> ConstraintTracker:
    """Empty constraint tracker."""
    return ConstraintTracker()


@pytest.fixture
def make_request() -> Callable[..., ReservationRequest]:
    """Factory for requests whose times are given in minutes after the epoch."""

    def _make(
        request_id: str,
        resources: Iterable[str] = ("lane",),
        earliest: Optional[float] = None,
        latest: Optional[float] = None,
        duration: Optional[float] = 10,
        deadline: Optional[float] = None,
    ) -> ReservationRequest:
        return ReservationRequest(
            request_id=request_id,
            resources=frozenset(resources),
            start=StartTimeRange(
                t(earliest) if earliest is not None else None,
                t(latest) if latest is not None else None,
            ),
            duration=minutes(duration) if duration is not None else None,
            finish_deadline=t(deadline) if deadline is not None else None,
        )

    return _make


@pytest.fixture
def commit(tracker: ConstraintTracker, make_request: Callable[..., ReservationRequest]):
    """
    Register a permissive request for a reservation and return the reservation.

    The request accepts any start on the reservation's resource, so operators
    are only limited by what a test adds explicitly.
    """

    def _commit(
        reservation_id: str,
        start: float,
        duration: Optional[float] = 10,
        resource: str = "lane",
        earliest: Optional[float] = None,
        latest: Optional[float] = None,
    ) -> Reservation:
        request_id = f"req-{reservation_id}"
        tracker.add_request(
            make_request(
                request_id,
                resources=(resource,),
                earliest=earliest,
                latest=latest,
                duration=duration,
            )
        )
        tracker.associate(reservation_id, request_id)
        return Reservation(
            reservation_id,
            resource,
            t(start),
            minutes(duration) if duration is not None else None,
        )

    return _commit
