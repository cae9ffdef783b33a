"""
HTTP and WebSocket surface.
"""

from __future__ import annotations

from .server import ParticipantSession, SignalingServer, create_app

__all__ = ["ParticipantSession", "SignalingServer", "create_app"]
