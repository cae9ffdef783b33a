"""
Session registry: every connected participant and its current state.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, Optional, Protocol

from .state import ParticipantState

LOG = logging.getLogger(__name__)

IdFactory = Callable[[], str]


class ParticipantChannel(Protocol):
    """
    Outbound half of a participant's transport.

    ``deliver`` must never block; returning ``False`` means the channel is gone.
    """

    def deliver(self, message: Dict[str, Any]) -> bool:
        ...


@dataclass
class Participant:
    id: str
    channel: ParticipantChannel = field(repr=False)
    state: ParticipantState = ParticipantState.IDLE
    connected_at: float = field(default_factory=time.time)
    closed: bool = False

    def send(self, message: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        try:
            return bool(self.channel.deliver(message))
        except Exception:
            LOG.exception("Channel delivery failed for participant %s", self.id)
            return False


class SessionRegistry:
    """Owns the id → participant mapping.  Not thread-safe on its own."""

    def __init__(self, id_factory: Optional[IdFactory] = None) -> None:
        self._participants: Dict[str, Participant] = {}
        self._id_factory: IdFactory = id_factory or (lambda: str(uuid.uuid4()))

    def register(self, channel: ParticipantChannel) -> Participant:
        participant_id = self._id_factory()
        while participant_id in self._participants:
            participant_id = self._id_factory()
        participant = Participant(id=participant_id, channel=channel)
        self._participants[participant_id] = participant
        return participant

    def unregister(self, participant_id: str) -> Optional[Participant]:
        participant = self._participants.pop(participant_id, None)
        if participant is not None:
            participant.closed = True
        return participant

    def get(self, participant_id: str) -> Optional[Participant]:
        return self._participants.get(participant_id)

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._participants

    def __len__(self) -> int:
        return len(self._participants)

    def __iter__(self) -> Iterator[Participant]:
        return iter(list(self._participants.values()))
