"""
Wire format shared by the coordinator and the client.

Frames are JSON objects tagged by ``type``.  Only the envelope is validated;
negotiation payloads are forwarded verbatim.
"""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, validator


class ProtocolError(ValueError):
    """Base class for wire format errors."""


class MalformedMessage(ProtocolError):
    """Raised when a frame cannot be decoded into a tagged envelope."""


class MessageKind(str, Enum):
    """Every frame kind understood on either side of the connection."""

    CONNECTED = "connected"
    FIND_PARTNER = "find-partner"
    WAITING = "waiting"
    PAIRED = "paired"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    SKIP = "skip"
    DISCONNECT = "disconnect"
    PARTNER_LEFT = "partner-left"
    DISCONNECTED = "disconnected"
    CONNECTION_STATE = "connection-state"
    PING = "ping"
    PONG = "pong"


# Relayed kinds and the field carrying their opaque payload.
RELAY_FIELDS: Dict[MessageKind, str] = {
    MessageKind.OFFER: "offer",
    MessageKind.ANSWER: "answer",
    MessageKind.ICE_CANDIDATE: "candidate",
}

CONNECTION_STATES = frozenset({"connected", "disconnected", "failed"})


class Envelope(BaseModel):
    type: str
    model_config = ConfigDict(extra="allow")

    @validator("type", pre=True)
    def _normalise_type(cls, value: object) -> str:
        if not isinstance(value, str):
            raise ValueError("type must be a string")
        result = value.strip().lower()
        if not result:
            raise ValueError("type is required")
        return result


def decode(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Parse a text frame into a dict whose ``type`` is normalised."""

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedMessage(f"frame is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedMessage("frame must be a JSON object")
    try:
        envelope = Envelope.model_validate(data)
    except ValidationError as exc:
        raise MalformedMessage(f"invalid envelope: {exc.errors()[0]['msg']}") from exc
    message = dict(data)
    message["type"] = envelope.type
    return message


def encode(message: Dict[str, Any]) -> str:
    return json.dumps(message, separators=(",", ":"))


def kind_of(message: Dict[str, Any]) -> Optional[MessageKind]:
    try:
        return MessageKind(message.get("type"))
    except ValueError:
        return None


# ---------------------------------------------------------------- server → client


def connected(user_id: str) -> Dict[str, Any]:
    return {
        "type": MessageKind.CONNECTED.value,
        "userId": user_id,
        "message": "Connected to signaling server",
    }


def waiting() -> Dict[str, Any]:
    return {"type": MessageKind.WAITING.value, "message": "Waiting for a partner..."}


def paired(partner_id: str, *, initiator: bool) -> Dict[str, Any]:
    return {
        "type": MessageKind.PAIRED.value,
        "partnerId": partner_id,
        "initiator": bool(initiator),
        "message": "You are now connected! Begin WebRTC negotiation.",
    }


def relayed(kind: MessageKind, payload: Any, sender: str) -> Dict[str, Any]:
    return {"type": kind.value, RELAY_FIELDS[kind]: payload, "from": sender}


def partner_left() -> Dict[str, Any]:
    return {"type": MessageKind.PARTNER_LEFT.value, "message": "Your partner has disconnected."}


def disconnected() -> Dict[str, Any]:
    return {"type": MessageKind.DISCONNECTED.value, "message": "You have been disconnected."}


def ping() -> Dict[str, Any]:
    return {"type": MessageKind.PING.value, "ts": time.time()}


def pong() -> Dict[str, Any]:
    return {"type": MessageKind.PONG.value, "ts": time.time()}


# ---------------------------------------------------------------- client → server


def request(kind: MessageKind, **fields: Any) -> Dict[str, Any]:
    message: Dict[str, Any] = {"type": kind.value}
    message.update(fields)
    return message
