"""
Server-side matchmaking and relay core.
"""

from __future__ import annotations

from .coordinator import SessionCoordinator
from .errors import CoordinatorError, IllegalTransition, PairingError
from .pairs import PairRegistry
from .queue import WaitingQueue
from .registry import Participant, ParticipantChannel, SessionRegistry
from .router import RelayRouter
from .state import LEGAL_TRANSITIONS, ParticipantState, StateChange

__all__ = [
    "CoordinatorError",
    "IllegalTransition",
    "LEGAL_TRANSITIONS",
    "PairRegistry",
    "PairingError",
    "Participant",
    "ParticipantChannel",
    "ParticipantState",
    "RelayRouter",
    "SessionCoordinator",
    "SessionRegistry",
    "StateChange",
    "WaitingQueue",
]
