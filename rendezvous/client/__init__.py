"""
Client-side signaling and negotiation.
"""

from __future__ import annotations

from .negotiation import (
    NegotiationCoordinator,
    NegotiationError,
    NegotiationSession,
    PeerConnection,
    Role,
)
from .signaling import ReconnectPolicy, SignalingClient, SignalingListener

__all__ = [
    "NegotiationCoordinator",
    "NegotiationError",
    "NegotiationSession",
    "PeerConnection",
    "ReconnectPolicy",
    "Role",
    "SignalingClient",
    "SignalingListener",
]
