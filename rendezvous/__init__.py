"""
Rendezvous signaling coordinator.

The package pairs anonymous participants for a direct audio/video session and
relays the offer/answer/candidate messages needed to establish it.  The media
path itself never touches this process; only small opaque negotiation blobs
pass through the relay.
"""

from __future__ import annotations

from .config import CoordinatorConfig, load_config

__all__ = [
    "CoordinatorConfig",
    "load_config",
]
