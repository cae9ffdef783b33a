import pytest

from rendezvous.coordinator.errors import IllegalTransition
from rendezvous.coordinator.state import (
    LEGAL_TRANSITIONS,
    PAIRED_STATES,
    ParticipantState,
    StateChange,
    can_transition,
    transition,
)


def test_happy_path_is_legal() -> None:
    path = [
        ParticipantState.IDLE,
        ParticipantState.WAITING,
        ParticipantState.PAIRED,
        ParticipantState.NEGOTIATING,
        ParticipantState.CONNECTED,
        ParticipantState.IDLE,
    ]
    current = path[0]
    for target in path[1:]:
        current = transition(current, target)
    assert current is ParticipantState.IDLE


def test_every_live_state_can_leave() -> None:
    for state in ParticipantState:
        if state is ParticipantState.LEFT:
            continue
        assert can_transition(state, ParticipantState.LEFT)
    assert LEGAL_TRANSITIONS[ParticipantState.LEFT] == frozenset()


def test_skipping_the_queue_is_illegal() -> None:
    with pytest.raises(IllegalTransition):
        transition(ParticipantState.IDLE, ParticipantState.PAIRED)
    with pytest.raises(IllegalTransition):
        transition(ParticipantState.CONNECTED, ParticipantState.NEGOTIATING)


def test_paired_states_fall_back_to_idle() -> None:
    for state in PAIRED_STATES:
        assert can_transition(state, ParticipantState.IDLE)
        assert not can_transition(state, ParticipantState.WAITING)


def test_state_change_serialises() -> None:
    change = StateChange("p1", ParticipantState.IDLE, ParticipantState.WAITING, "find-partner")
    assert change.to_dict() == {
        "participantId": "p1",
        "previous": "idle",
        "current": "waiting",
        "reason": "find-partner",
    }
