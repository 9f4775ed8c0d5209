"""
Tests for schedule views, spacetime filters and negotiation tables.
"""

import pytest

from conftest import t
from traffic_planner.negotiation import InMemoryNegotiationTable, Rollout
from traffic_planner.spacetime import (
    InMemorySchedule,
    ParticipantDescription,
    Profile,
    Query,
    Route,
    SpacetimeFilter,
    make_query,
    query_all,
)
from traffic_planner.trajectory import Trajectory


def route(map_name: str, start: float, finish: float) -> Route:
    return Route(map_name, Trajectory([(t(start), (0.0, 0.0)), (t(finish), (1.0, 0.0))]))


DESCRIPTION = ParticipantDescription("robot", "fleet", Profile(0.5))


class TestSpacetimeFilter:
    """Tests for SpacetimeFilter matching."""

    def test_map_filter(self) -> None:
        spacetime = SpacetimeFilter(maps={"L1"})
        assert spacetime.matches(route("L1", 0, 5))
        assert not spacetime.matches(route("L2", 0, 5))

    def test_open_filter_matches_everything(self) -> None:
        assert SpacetimeFilter().matches(route("any", -100, 100))

    def test_time_window_is_inclusive(self) -> None:
        spacetime = SpacetimeFilter(lower_time_bound=t(5), upper_time_bound=t(10))
        assert spacetime.matches(route("L1", 0, 5))
        assert spacetime.matches(route("L1", 10, 20))
        assert not spacetime.matches(route("L1", 0, 4))
        assert not spacetime.matches(route("L1", 11, 20))

    def test_cleared_filter_equals_fresh(self) -> None:
        reused = SpacetimeFilter(maps={"L1", "L2"})
        reused.clear_maps().add_map("L3")
        assert reused == SpacetimeFilter(maps={"L3"})

    def test_setters_chain(self) -> None:
        spacetime = SpacetimeFilter().set_lower_time_bound(t(0)).set_upper_time_bound(t(1))
        assert spacetime.lower_time_bound == t(0)
        assert spacetime.upper_time_bound == t(1)


class TestQuery:
    """Tests for Query helpers."""

    def test_make_query(self) -> None:
        query = make_query(["L1"], t(0), t(5))
        assert query.spacetime.maps == {"L1"}
        assert query.participants is None

    def test_query_all(self) -> None:
        assert query_all() == Query()

    def test_participant_filter(self) -> None:
        query = Query(participants={1})
        assert query.matches(1, route("L1", 0, 1))
        assert not query.matches(2, route("L1", 0, 1))


class TestInMemorySchedule:
    """Tests for the reference schedule viewer."""

    def test_register_and_query(self) -> None:
        schedule = InMemorySchedule()
        a = schedule.register_participant(DESCRIPTION)
        b = schedule.register_participant(DESCRIPTION)
        schedule.set_itinerary(a, [route("L1", 0, 5)])
        schedule.set_itinerary(b, [route("L2", 0, 5)])

        view = schedule.query(make_query(["L1"]))

        assert [entry.participant for entry in view] == [a]
        assert view[0].description is DESCRIPTION
        assert schedule.participant_ids() == (a, b)

    def test_version_increases(self) -> None:
        schedule = InMemorySchedule()
        before = schedule.version
        p = schedule.register_participant(DESCRIPTION)
        schedule.set_itinerary(p, [])
        assert schedule.version == before + 2

    def test_unknown_participant(self) -> None:
        with pytest.raises(KeyError):
            InMemorySchedule().set_itinerary(5, [])

    def test_unregister(self) -> None:
        schedule = InMemorySchedule()
        p = schedule.register_participant(DESCRIPTION)
        schedule.set_itinerary(p, [route("L1", 0, 5)])
        schedule.unregister_participant(p)
        assert schedule.get_participant(p) is None
        assert schedule.query(query_all()) == []


class TestInMemoryNegotiationTable:
    """Tests for the reference negotiation table."""

    @pytest.fixture
    def table(self) -> InMemoryNegotiationTable:
        return InMemoryNegotiationTable(
            participant=0,
            proposals={
                2: (DESCRIPTION, [[route("L1", 0, 5)]]),
                1: (DESCRIPTION, [[route("L1", 0, 5)], [route("L2", 0, 5)]]),
            },
        )

    def test_rollouts_sorted(self, table: InMemoryNegotiationTable) -> None:
        assert table.rollouts() == [(1, 2), (2, 1)]

    def test_query_uses_selection(self, table: InMemoryNegotiationTable) -> None:
        spacetime = SpacetimeFilter(maps={"L1"})
        assert [e.participant for e in table.query(spacetime, [])] == [1, 2]
        assert [e.participant for e in table.query(spacetime, [Rollout(1, 1)])] == [2]

    def test_out_of_range_rollout(self, table: InMemoryNegotiationTable) -> None:
        with pytest.raises(IndexError):
            table.query(SpacetimeFilter(), [Rollout(2, 1)])

    def test_empty_alternatives_rejected(self) -> None:
        with pytest.raises(ValueError):
            InMemoryNegotiationTable(0, {1: (DESCRIPTION, [])})
