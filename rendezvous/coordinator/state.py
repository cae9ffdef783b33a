"""
Participant lifecycle state machine.

``LEGAL_TRANSITIONS`` is the only place that decides which moves are allowed;
every mutation in the coordinator goes through :func:`transition`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet

from .errors import IllegalTransition


class ParticipantState(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    PAIRED = "paired"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    LEFT = "left"


_S = ParticipantState

LEGAL_TRANSITIONS: Dict[ParticipantState, FrozenSet[ParticipantState]] = {
    _S.IDLE: frozenset({_S.WAITING, _S.LEFT}),
    _S.WAITING: frozenset({_S.PAIRED, _S.IDLE, _S.LEFT}),
    _S.PAIRED: frozenset({_S.NEGOTIATING, _S.IDLE, _S.LEFT}),
    _S.NEGOTIATING: frozenset({_S.CONNECTED, _S.IDLE, _S.LEFT}),
    _S.CONNECTED: frozenset({_S.IDLE, _S.LEFT}),
    _S.LEFT: frozenset(),
}

# States in which a participant must have an entry in the pair registry.
PAIRED_STATES: FrozenSet[ParticipantState] = frozenset({_S.PAIRED, _S.NEGOTIATING, _S.CONNECTED})


def can_transition(current: ParticipantState, target: ParticipantState) -> bool:
    return target in LEGAL_TRANSITIONS[current]


def transition(current: ParticipantState, target: ParticipantState) -> ParticipantState:
    if not can_transition(current, target):
        raise IllegalTransition(f"cannot move from {current.value} to {target.value}")
    return target


@dataclass(frozen=True, slots=True)
class StateChange:
    """
    Immutable record of one participant moving between states.
    """

    participant_id: str
    previous: ParticipantState
    current: ParticipantState
    reason: str

    def to_dict(self) -> dict:
        return {
            "participantId": self.participant_id,
            "previous": self.previous.value,
            "current": self.current.value,
            "reason": self.reason,
        }
