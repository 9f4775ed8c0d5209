"""
Bookkeeping between reservations and the requests they were made for.

One tracker belongs to one planning or negotiation session. It is populated
as requests are admitted and their reservations committed, and entries are
dropped when a request is cancelled.
"""

import logging
from typing import Dict, Iterator, List, Optional

from .errors import UnknownRequestError
from .reservations import Reservation, ReservationRequest

logger = logging.getLogger(__name__)


class ConstraintTracker:
    """Maps reservation ids to request ids and evaluates request constraints."""

    def __init__(self) -> None:
        self._requests: Dict[str, ReservationRequest] = {}
        self._reservation_to_request: Dict[str, str] = {}

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._requests

    def __len__(self) -> int:
        return len(self._requests)

    def __iter__(self) -> Iterator[ReservationRequest]:
        return iter(self._requests.values())

    def add_request(self, request: ReservationRequest) -> None:
        if request.request_id in self._requests:
            logger.warning(f"Replacing constraints of request {request.request_id}")
        self._requests[request.request_id] = request

    def get_request(self, request_id: str) -> ReservationRequest:
        try:
            return self._requests[request_id]
        except KeyError:
            raise UnknownRequestError(request_id) from None

    def associate(self, reservation_id: str, request_id: str) -> None:
        """Record that ``reservation_id`` was made for ``request_id``."""
        if request_id not in self._requests:
            raise UnknownRequestError(request_id)
        self._reservation_to_request[reservation_id] = request_id

    def get_associated_reservation(self, reservation_id: str) -> Optional[str]:
        """Request id a reservation belongs to, or None if it was never recorded."""
        return self._reservation_to_request.get(reservation_id)

    def reservations_for(self, request_id: str) -> List[str]:
        return sorted(
            rid
            for rid, req in self._reservation_to_request.items()
            if req == request_id
        )

    def satisfies(self, request_id: str, reservation: Reservation) -> bool:
        """Evaluate a request's constraints against a proposed reservation."""
        return self.get_request(request_id).satisfied_by(reservation)

    def cancel(self, request_id: str) -> List[str]:
        """
        Forget a request and every reservation associated with it.

        Returns:
            Reservation ids that were dissociated
        """
        if request_id not in self._requests:
            raise UnknownRequestError(request_id)
        dropped = self.reservations_for(request_id)
        for reservation_id in dropped:
            del self._reservation_to_request[reservation_id]
        del self._requests[request_id]
        logger.info(f"Cancelled request {request_id} ({len(dropped)} reservations)")
        return dropped
