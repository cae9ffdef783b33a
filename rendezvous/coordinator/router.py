"""
Relay router: dispatch inbound frames by kind.

Negotiation payloads are never inspected; the router only decides whether a
frame is forwarded, turned into a queue/pair operation, or dropped.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict

from .. import protocol
from ..protocol import CONNECTION_STATES, RELAY_FIELDS, MessageKind

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .coordinator import SessionCoordinator

LOG = logging.getLogger(__name__)

Handler = Callable[[str, Dict[str, Any]], bool]


class RelayRouter:
    def __init__(self, coordinator: "SessionCoordinator") -> None:
        self._coordinator = coordinator
        self._handlers: Dict[MessageKind, Handler] = {
            MessageKind.FIND_PARTNER: self._find_partner,
            MessageKind.OFFER: self._relay,
            MessageKind.ANSWER: self._relay,
            MessageKind.ICE_CANDIDATE: self._relay,
            MessageKind.SKIP: self._skip,
            MessageKind.DISCONNECT: self._skip,
            MessageKind.CONNECTION_STATE: self._connection_state,
        }

    def dispatch(self, participant_id: str, message: Dict[str, Any]) -> bool:
        kind = protocol.kind_of(message)
        handler = self._handlers.get(kind) if kind is not None else None
        if handler is None:
            LOG.warning("Unknown message type %r from %s", message.get("type"), participant_id)
            return False
        return handler(participant_id, message)

    def _find_partner(self, participant_id: str, message: Dict[str, Any]) -> bool:
        return self._coordinator.enqueue(participant_id)

    def _relay(self, participant_id: str, message: Dict[str, Any]) -> bool:
        kind = MessageKind(message["type"])
        return self._coordinator.relay(participant_id, kind, message.get(RELAY_FIELDS[kind]))

    def _skip(self, participant_id: str, message: Dict[str, Any]) -> bool:
        self._coordinator.skip(participant_id, reason=message["type"])
        return True

    def _connection_state(self, participant_id: str, message: Dict[str, Any]) -> bool:
        state = str(message.get("state") or "").lower()
        if state not in CONNECTION_STATES:
            LOG.warning("Ignoring connection-state %r from %s", message.get("state"), participant_id)
            return False
        return self._coordinator.report_connection_state(participant_id, state)
