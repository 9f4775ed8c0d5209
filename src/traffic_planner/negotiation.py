"""
Negotiation tables.

During a negotiation every rival party offers one or more alternative
itineraries ("rollouts"), ordered from most to least preferred. A table
answers spacetime queries under a chosen rollout per rival. Building the
negotiation tree is someone else's job; this module only defines the read
interface and an in-memory reference table.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Protocol, Sequence, Tuple

from .spacetime import (
    ParticipantDescription,
    ParticipantId,
    Route,
    ScheduleEntry,
    SpacetimeFilter,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rollout:
    """Selected alternative of one rival."""

    participant: ParticipantId
    alternative: int


class NegotiationTable(Protocol):
    """Read interface of a node in the negotiation tree."""

    def rollouts(self) -> Sequence[Tuple[ParticipantId, int]]:
        """(rival, number of alternatives) for every rival at this table."""
        ...

    def query(
        self, spacetime: SpacetimeFilter, rollouts: Sequence[Rollout]
    ) -> Iterable[ScheduleEntry]:
        """Itineraries matching ``spacetime`` when each rival uses its selected rollout."""
        ...


class InMemoryNegotiationTable:
    """
    Reference negotiation table.

    Args:
        participant: The party this table belongs to (never part of the view)
        proposals: For each rival, its description and its alternatives,
            most preferred first; every alternative is a list of routes.
    """

    def __init__(
        self,
        participant: ParticipantId,
        proposals: Dict[
            ParticipantId, Tuple[ParticipantDescription, Sequence[Sequence[Route]]]
        ],
    ):
        self.participant = participant
        self._proposals: Dict[
            ParticipantId, Tuple[ParticipantDescription, List[List[Route]]]
        ] = {}
        for rival, (description, alternatives) in proposals.items():
            if rival == participant:
                continue
            if not alternatives:
                raise ValueError(f"Rival {rival} offers no alternatives")
            self._proposals[rival] = (description, [list(a) for a in alternatives])

    def rollouts(self) -> List[Tuple[ParticipantId, int]]:
        return [
            (rival, len(alternatives))
            for rival, (_, alternatives) in sorted(self._proposals.items())
        ]

    def _selection(self, rollouts: Sequence[Rollout]) -> Dict[ParticipantId, int]:
        selection = {rival: 0 for rival in self._proposals}
        for rollout in rollouts:
            entry = self._proposals.get(rollout.participant)
            if entry is None:
                logger.debug(f"Ignoring rollout for non-rival {rollout.participant}")
                continue
            count = len(entry[1])
            if not 0 <= rollout.alternative < count:
                raise IndexError(
                    f"Rollout {rollout.alternative} out of range for rival "
                    f"{rollout.participant} ({count} alternatives)"
                )
            selection[rollout.participant] = rollout.alternative
        return selection

    def query(
        self, spacetime: SpacetimeFilter, rollouts: Sequence[Rollout]
    ) -> List[ScheduleEntry]:
        view = []
        for rival, alternative in sorted(self._selection(rollouts).items()):
            description, alternatives = self._proposals[rival]
            for route in alternatives[alternative]:
                if spacetime.matches(route):
                    view.append(ScheduleEntry(rival, description, route))
        return view
