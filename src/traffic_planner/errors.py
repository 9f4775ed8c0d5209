"""
Exception taxonomy for the traffic planner.

Feasibility failures (an operator that cannot rewrite a chain, a patch that
rejects a write, a search that runs dry) are reported as ``None`` results and
never raised. The exceptions below signal programming errors or bad input.
"""


class TrafficPlannerError(Exception):
    """Base class for all traffic planner errors."""


class UnknownReservationError(TrafficPlannerError, LookupError):
    """A reservation was read from a schedule state but the tracker has no request for it."""

    def __init__(self, reservation_id: str):
        super().__init__(
            f"Reservation '{reservation_id}' is not associated with any request"
        )
        self.reservation_id = reservation_id


class UnknownRequestError(TrafficPlannerError, LookupError):
    """A request id was used that was never registered with the tracker."""

    def __init__(self, request_id: str):
        super().__init__(f"Request '{request_id}' is not registered")
        self.request_id = request_id


class StalePlanSetError(TrafficPlannerError):
    """A plan set was driven after its planner received a new baseline."""


class ScheduleOverlapError(TrafficPlannerError, ValueError):
    """A committed schedule was built from overlapping reservations."""


class ConfigError(TrafficPlannerError, ValueError):
    """A configuration or scenario file could not be loaded."""


class DuplicateReservationError(TrafficPlannerError, ValueError):
    """A reservation id requested for a new placement already belongs to another request."""

    def __init__(self, reservation_id: str, owner: str):
        super().__init__(
            f"Reservation '{reservation_id}' already exists for request '{owner}'"
        )
        self.reservation_id = reservation_id
        self.owner = owner
