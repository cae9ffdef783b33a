"""
Single-writer store for every piece of matchmaking state.

The session registry, waiting queue and pair registry are only ever mutated
while holding one re-entrant lock, so each connection event or inbound frame
is applied completely before the next one is looked at.  Outbound frames are
handed to non-blocking channels; a channel that refuses a frame is reaped once
the current mutation has finished.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

from .. import protocol
from ..protocol import MessageKind
from .pairs import PairRegistry
from .queue import WaitingQueue
from .registry import IdFactory, Participant, ParticipantChannel, SessionRegistry
from .router import RelayRouter
from .state import PAIRED_STATES, ParticipantState, StateChange, transition

LOG = logging.getLogger(__name__)

StateObserver = Callable[[StateChange], None]


class SessionCoordinator:
    """
    Pair anonymous participants in arrival order and relay their negotiation.
    """

    def __init__(self, *, id_factory: Optional[IdFactory] = None) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self.registry = SessionRegistry(id_factory)
        self.queue = WaitingQueue()
        self.pairs = PairRegistry()
        self.router = RelayRouter(self)

        self._failed: List[str] = []
        self._events: List[StateChange] = []
        self._observer_counter = 0
        self._observers: Dict[int, StateObserver] = {}

    # ------------------------------------------------------------------ helpers

    @contextlib.contextmanager
    def _mutation(self) -> Iterator[None]:
        events: List[StateChange] = []
        with self._lock:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._reap_failed_locked()
                    events, self._events = self._events, []
        self._notify(events)

    def _notify(self, events: List[StateChange]) -> None:
        if not events:
            return
        with self._lock:
            observers = dict(self._observers)
        for event in events:
            for token, callback in observers.items():
                try:
                    callback(event)
                except Exception:  # pragma: no cover - observer failures must not leak
                    LOG.exception("State observer %s failed.", token)

    def _set_state(self, participant: Participant, target: ParticipantState, reason: str) -> None:
        previous = participant.state
        if previous is target:
            return
        participant.state = transition(previous, target)
        self._events.append(
            StateChange(
                participant_id=participant.id,
                previous=previous,
                current=target,
                reason=reason,
            )
        )

    def _send(self, participant: Participant, message: Dict[str, Any]) -> bool:
        if participant.send(message):
            return True
        if participant.id in self.registry and participant.id not in self._failed:
            LOG.info("Channel for %s refused %s; scheduling cleanup", participant.id, message.get("type"))
            self._failed.append(participant.id)
        return False

    def _reap_failed_locked(self) -> None:
        while self._failed:
            participant_id = self._failed.pop(0)
            self._disconnect_locked(participant_id, reason="send-failure")

    def _unpair_locked(self, participant_id: str, reason: str) -> Optional[str]:
        partner_id = self.pairs.unpair(participant_id)
        if partner_id is None:
            return None
        partner = self.registry.get(partner_id)
        if partner is not None:
            self._set_state(partner, ParticipantState.IDLE, "partner-left")
            self._send(partner, protocol.partner_left())
        LOG.info("Unpaired %s <-> %s (%s)", participant_id, partner_id, reason)
        return partner_id

    def _pair_locked(self, first: str, second: str, *, initiator: str) -> None:
        self.pairs.pair(first, second)
        if initiator not in (first, second):
            initiator = second
        participants = [self.registry.get(first), self.registry.get(second)]
        for participant in participants:
            if participant is not None:
                self._set_state(participant, ParticipantState.PAIRED, "paired")
        for participant, partner_id in zip(participants, (second, first)):
            if participant is not None:
                self._send(
                    participant,
                    protocol.paired(partner_id, initiator=participant.id == initiator),
                )
        LOG.info("Paired participants: %s <-> %s (initiator %s)", first, second, initiator)

    def _disconnect_locked(self, participant_id: str, *, reason: str) -> bool:
        participant = self.registry.get(participant_id)
        if participant is None:
            return False
        self.queue.remove(participant_id)
        self._unpair_locked(participant_id, reason)
        self._set_state(participant, ParticipantState.LEFT, reason)
        self.registry.unregister(participant_id)
        LOG.info(
            "Participant disconnected: %s (%s). Active clients: %d, Waiting: %d, Pairs: %d",
            participant_id,
            reason,
            len(self.registry),
            len(self.queue),
            len(self.pairs),
        )
        return True

    # ------------------------------------------------------------------ lifecycle

    def connect(self, channel: ParticipantChannel) -> str:
        """Register a new transport and tell it which id it was given."""

        with self._mutation():
            participant = self.registry.register(channel)
            LOG.info("New connection: %s", participant.id)
            self._send(participant, protocol.connected(participant.id))
            return participant.id

    def disconnect(self, participant_id: str, *, reason: str = "transport-close") -> bool:
        """Remove a participant whose transport closed.  Unknown ids are a no-op."""

        with self._mutation():
            return self._disconnect_locked(participant_id, reason=reason)

    # ------------------------------------------------------------------ operations

    def enqueue(self, participant_id: str) -> bool:
        """
        Put an idle participant in the waiting queue and try to pair.

        Returns ``False`` when the request was ignored because the participant
        is unknown or not idle.
        """

        with self._mutation():
            participant = self.registry.get(participant_id)
            if participant is None or participant.state is not ParticipantState.IDLE:
                LOG.debug("Ignoring find-partner from %s", participant_id)
                return False

            self.queue.remove(participant_id)
            self.queue.push(participant_id)
            self._set_state(participant, ParticipantState.WAITING, "find-partner")
            LOG.info("User %s added to queue. Queue size: %d", participant_id, len(self.queue))

            match = self.queue.dequeue_two()
            if match is None:
                self._send(participant, protocol.waiting())
            else:
                self._pair_locked(*match, initiator=participant_id)
            return True

    def unpair(self, participant_id: str) -> Optional[str]:
        """Dissolve the participant's pair, returning the former partner id."""

        with self._mutation():
            partner_id = self._unpair_locked(participant_id, "unpair")
            participant = self.registry.get(participant_id)
            if participant is not None and participant.state in PAIRED_STATES:
                self._set_state(participant, ParticipantState.IDLE, "unpair")
            return partner_id

    def skip(self, participant_id: str, *, reason: str = "skip") -> None:
        """Leave the current pair or the queue and acknowledge the sender."""

        with self._mutation():
            participant = self.registry.get(participant_id)
            if participant is None:
                return
            self._unpair_locked(participant_id, reason)
            self.queue.remove(participant_id)
            self._set_state(participant, ParticipantState.IDLE, reason)
            self._send(participant, protocol.disconnected())

    def relay(self, participant_id: str, kind: MessageKind, payload: Any) -> bool:
        """Forward an opaque negotiation payload to the sender's partner."""

        with self._mutation():
            sender = self.registry.get(participant_id)
            partner_id = self.pairs.partner_of(participant_id)
            partner = self.registry.get(partner_id) if partner_id else None
            if sender is None or partner is None:
                LOG.debug("Dropping %s from %s: no partner", kind.value, participant_id)
                return False

            delivered = self._send(partner, protocol.relayed(kind, payload, participant_id))
            if kind in (MessageKind.OFFER, MessageKind.ANSWER) and sender.state is ParticipantState.PAIRED:
                self._set_state(sender, ParticipantState.NEGOTIATING, kind.value)
            if kind is MessageKind.ICE_CANDIDATE:
                LOG.debug("Forwarded ice-candidate from %s to %s", participant_id, partner_id)
            else:
                LOG.info("Forwarded %s from %s to %s", kind.value, participant_id, partner_id)
            return delivered

    def report_connection_state(self, participant_id: str, state: str) -> bool:
        """Record a peer connectivity report; only ``connected`` changes state."""

        with self._mutation():
            participant = self.registry.get(participant_id)
            if participant is None or participant_id not in self.pairs:
                return False
            if state == "connected" and participant.state is ParticipantState.NEGOTIATING:
                self._set_state(participant, ParticipantState.CONNECTED, "peer-connected")
                return True
            LOG.info("Participant %s reports peer connection %s", participant_id, state)
            return False

    def handle_message(self, participant_id: str, message: Dict[str, Any]) -> bool:
        """Dispatch one decoded inbound frame."""

        with self._mutation():
            if participant_id not in self.registry:
                LOG.debug("Dropping frame for unknown participant %s", participant_id)
                return False
            return self.router.dispatch(participant_id, message)

    # ------------------------------------------------------------------ queries

    def state_of(self, participant_id: str) -> Optional[ParticipantState]:
        with self._lock:
            participant = self.registry.get(participant_id)
            return participant.state if participant else None

    def partner_of(self, participant_id: str) -> Optional[str]:
        with self._lock:
            return self.pairs.partner_of(participant_id)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "clients": len(self.registry),
                "waiting": len(self.queue),
                "activePairs": len(self.pairs),
            }

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "states": {participant.id: participant.state.value for participant in self.registry},
                "queue": self.queue.snapshot(),
                "pairs": self.pairs.pairs(),
            }

    # ------------------------------------------------------------------ observers

    def subscribe(self, callback: StateObserver) -> int:
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            self._observer_counter += 1
            token = self._observer_counter
            self._observers[token] = callback
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._observers.pop(token, None)
