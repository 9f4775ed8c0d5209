"""
Tests for the min-conflict planner.

Times are minutes after the shared test epoch.
"""

import pytest

from conftest import minutes, t
from traffic_planner.config import PlannerConfig
from traffic_planner.constraint_tracker import ConstraintTracker
from traffic_planner.errors import (
    DuplicateReservationError,
    StalePlanSetError,
    TrafficPlannerError,
    UnknownRequestError,
    UnknownReservationError,
)
from traffic_planner.planner import (
    MinConflictPlanner,
    MinConflictPlanSet,
    PlanSet,
    SearchMode,
)
from traffic_planner.reservations import Reservation
from traffic_planner.schedule_state import ScheduleState


def placed(candidate, reservation_id: str = "new") -> Reservation:
    reservation = candidate.find_reservation(reservation_id)
    assert reservation is not None
    return reservation


class TestPlannerContract:
    """Tests for planner set-up and error reporting."""

    def test_plan_without_baseline(self, tracker: ConstraintTracker, make_request) -> None:
        tracker.add_request(make_request("new"))
        planner = MinConflictPlanner(tracker)
        with pytest.raises(TrafficPlannerError):
            planner.plan("new")

    def test_unknown_request(self, tracker: ConstraintTracker) -> None:
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(ScheduleState())
        with pytest.raises(UnknownRequestError):
            planner.plan("missing")
        with pytest.raises(UnknownRequestError):
            planner.cancel("missing")

    def test_generated_reservation_id(self, tracker: ConstraintTracker, make_request) -> None:
        tracker.add_request(make_request("new", earliest=0))
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(ScheduleState())
        plan_set = planner.plan("new")
        assert isinstance(plan_set, PlanSet)
        assert plan_set.reservation_id.startswith("new-")

    def test_default_config(self, tracker: ConstraintTracker) -> None:
        assert MinConflictPlanner(tracker).config == PlannerConfig()

    def test_stale_plan_set(self, commit, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([commit("A", 0)])
        tracker.add_request(make_request("new", earliest=0, latest=30))
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)
        plan_set = planner.plan("new", "new")

        planner.set_current_schedule(state)

        assert planner.generation == 2
        with pytest.raises(StalePlanSetError):
            plan_set.next_best()

    def test_reservation_id_of_other_request_rejected(
        self, commit, tracker: ConstraintTracker, make_request
    ) -> None:
        state = ScheduleState([commit("A", 0), commit("B", 30)])
        tracker.add_request(make_request("new", earliest=15, latest=15))
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)

        with pytest.raises(DuplicateReservationError, match="req-A"):
            planner.plan("new", "A")
        assert state.find_reservation("A") == Reservation("A", "lane", t(0), minutes(10))

    def test_reservation_id_known_only_to_tracker_rejected(
        self, tracker: ConstraintTracker, make_request
    ) -> None:
        tracker.add_request(make_request("other"))
        tracker.add_request(make_request("new", earliest=0))
        tracker.associate("Z", "other")
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(ScheduleState())

        with pytest.raises(DuplicateReservationError):
            planner.plan("new", "Z")

    def test_untracked_reservation_id_rejected(self, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([Reservation("ghost", "lane", t(0), minutes(10))])
        tracker.add_request(make_request("new", earliest=20))
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)

        with pytest.raises(DuplicateReservationError):
            planner.plan("new", "ghost")

    def test_plan_search_needs_reservation_id(self, tracker: ConstraintTracker, make_request) -> None:
        request = make_request("new", earliest=0)
        tracker.add_request(request)
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(ScheduleState())

        with pytest.raises(ValueError):
            MinConflictPlanSet(planner, SearchMode.PLAN, request)


class TestPlan:
    """Tests for admitting a new request."""

    def test_empty_schedule(self, tracker: ConstraintTracker, make_request) -> None:
        tracker.add_request(make_request("new", earliest=5, latest=30))
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(ScheduleState())

        candidate = planner.plan("new", "new").next_best()

        assert placed(candidate).start_time == t(5)
        assert placed(candidate).resource == "lane"

    def test_free_slot_preferred(self, commit, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([commit("A", 0), commit("B", 20)])
        tracker.add_request(make_request("new", earliest=0, latest=60))
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)

        candidate = planner.plan("new", "new").next_best()

        written, removed = candidate.changes()
        assert [r.reservation_id for r in written] == ["new"]
        assert removed == []
        assert placed(candidate).start_time == t(10)
        assert candidate.parent is state
        assert candidate.is_consistent()

    def test_pushback_when_no_free_slot(self, commit, tracker: ConstraintTracker, make_request) -> None:
        """Only one start is allowed, so A and B must both be delayed."""
        state = ScheduleState([commit("A", 0), commit("B", 10)])
        tracker.add_request(make_request("new", earliest=0, latest=0))
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)

        candidate = planner.plan("new", "new").next_best()

        assert candidate is not None
        assert {r.reservation_id: r.start_time for r in candidate.changes()[0]} == {
            "A": t(10),
            "B": t(20),
            "new": t(0),
        }
        assert candidate.is_consistent()

    def test_lateness_weight_changes_ranking(self, commit, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([commit("A", 0)])
        tracker.add_request(make_request("new", earliest=0, latest=60))
        planner = MinConflictPlanner(
            tracker, PlannerConfig(lateness_weight_per_second=1.0)
        )
        planner.set_current_schedule(state)

        candidate = planner.plan("new", "new").next_best()

        assert placed(candidate).start_time == t(0)
        assert candidate.find_reservation("A").start_time == t(10)

    def test_any_resource_when_unrestricted(self, commit, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([commit("A", 0), commit("D", 0, resource="dock", duration=None)])
        tracker.add_request(make_request("new", resources=(), earliest=0, latest=0))
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)

        candidates = list(planner.plan("new", "new"))

        assert candidates
        assert all(c.is_consistent() for c in candidates)
        assert placed(candidates[0]).resource in {"lane", "dock"}

    def test_infeasible_request_exhausts(self, commit, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([commit("A", 0, latest=0, earliest=0)])
        tracker.add_request(make_request("new", earliest=0, latest=5))
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)
        plan_set = planner.plan("new", "new")

        assert plan_set.next_best() is None
        assert plan_set.exhausted
        # Exhaustion is sticky
        assert plan_set.next_best() is None

    def test_candidates_are_unique_and_valid(self, commit, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([commit("A", 0), commit("B", 15, duration=5), commit("C", 30)])
        request = make_request("new", earliest=0, latest=20)
        tracker.add_request(request)
        planner = MinConflictPlanner(tracker, PlannerConfig(max_expansions=50))
        planner.set_current_schedule(state)
        plan_set = planner.plan("new", "new")

        candidates = list(plan_set)

        assert candidates
        fingerprints = [c.fingerprint() for c in candidates]
        assert len(set(fingerprints)) == len(fingerprints)
        for candidate in candidates:
            assert candidate.is_consistent()
            assert request.satisfied_by(placed(candidate))
            for reservation in candidate.all_reservations():
                request_id = tracker.get_associated_reservation(reservation.reservation_id)
                if request_id is not None:
                    assert tracker.satisfies(request_id, reservation)
        assert plan_set.exhausted
        assert plan_set.expansions <= 50

    def test_zero_disruption_candidates_come_first(self, commit, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([commit("A", 0), commit("B", 20)])
        tracker.add_request(make_request("new", earliest=0, latest=30))
        planner = MinConflictPlanner(tracker, PlannerConfig(max_expansions=20))
        planner.set_current_schedule(state)

        moved_counts = [len(c.changes()[0]) - 1 for c in planner.plan("new", "new")]

        assert moved_counts[0] == 0
        first_disruptive = next(i for i, n in enumerate(moved_counts) if n > 0)
        assert all(n > 0 for n in moved_counts[first_disruptive:])

    def test_expansion_limit(self, commit, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([commit("A", 0), commit("B", 10)])
        tracker.add_request(make_request("new", earliest=0, latest=0))
        planner = MinConflictPlanner(tracker, PlannerConfig(max_expansions=1))
        planner.set_current_schedule(state)
        plan_set = planner.plan("new", "new")

        assert plan_set.next_best() is None
        assert plan_set.expansions == 1

    def test_cost_ceiling(self, commit, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([commit("A", 0), commit("B", 10)])
        tracker.add_request(make_request("new", earliest=0, latest=0))
        planner = MinConflictPlanner(tracker, PlannerConfig(max_cost=0.5))
        planner.set_current_schedule(state)

        assert planner.plan("new", "new").next_best() is None


    def test_admitted_request_is_reproposed(self, commit, tracker: ConstraintTracker) -> None:
        state = ScheduleState([commit("A", 5, earliest=0), commit("B", 30)])
        planner = MinConflictPlanner(tracker, PlannerConfig(max_expansions=5))
        planner.set_current_schedule(state)
        plan_set = planner.plan("req-A", "A2")

        first = plan_set.next_best()

        assert first.changes() == ([Reservation("A2", "lane", t(0), minutes(10))], ["A"])
        assert sorted(r.reservation_id for r in first.all_reservations()) == ["A2", "B"]
        for candidate in [first] + list(plan_set):
            assert candidate.find_reservation("A") is None
            assert candidate.is_consistent()

    def test_reproposal_may_keep_its_id(self, commit, tracker: ConstraintTracker) -> None:
        state = ScheduleState([commit("A", 0, earliest=0), commit("B", 30)])
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)

        first = planner.plan("req-A", "A").next_best()

        assert first.changes() == ([], [])
        assert placed(first, "A").start_time == t(0)


class TestCancel:
    """Tests for retracting a request."""

    def test_removal_then_gap_closing(self, commit, tracker: ConstraintTracker) -> None:
        state = ScheduleState([commit("A", 0), commit("X", 10), commit("C", 20, earliest=0)])
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)
        plan_set = planner.cancel("req-X")

        first = plan_set.next_best()
        assert first.changes() == ([], ["X"])

        second = plan_set.next_best()
        written, removed = second.changes()
        assert removed == ["X"]
        assert written == [state.find_reservation("C").propose_new_start_time(t(10))]
        assert second.parent is state
        assert second.is_consistent()

        assert plan_set.next_best() is None

    def test_gap_closing_respects_request(self, commit, tracker: ConstraintTracker) -> None:
        state = ScheduleState([commit("A", 0), commit("X", 10), commit("C", 20, earliest=20)])
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)

        candidates = list(planner.cancel("req-X"))

        assert [c.changes() for c in candidates] == [([], ["X"])]

    def test_gap_closing_cascades(self, commit, tracker: ConstraintTracker) -> None:
        state = ScheduleState(
            [commit("X", 0), commit("B", 10, earliest=0), commit("C", 20, earliest=0)]
        )
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)

        candidates = list(planner.cancel("req-X"))

        final = {r.reservation_id: r.start_time for r in candidates[-1].all_reservations()}
        assert final == {"B": t(0), "C": t(10)}
        assert all(c.is_consistent() for c in candidates)

    def test_request_without_reservations(self, commit, tracker: ConstraintTracker, make_request) -> None:
        state = ScheduleState([commit("A", 0)])
        tracker.add_request(make_request("idle"))
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)

        candidate = planner.cancel("idle").next_best()

        assert candidate.changes() == ([], [])

    def test_untracked_reservation_is_fatal(self, commit, tracker: ConstraintTracker) -> None:
        state = ScheduleState(
            [commit("X", 0), Reservation("ghost", "lane", t(20), t(30) - t(20))]
        )
        planner = MinConflictPlanner(tracker)
        planner.set_current_schedule(state)

        with pytest.raises(UnknownReservationError):
            planner.cancel("req-X").next_best()
