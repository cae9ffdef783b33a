"""Quick demo script for the pairing and negotiation flow.

Two in-process participants connect to a running coordinator, get paired and
run a full offer/answer exchange.  The peer connections are stand-ins that
report ``connected`` once both descriptions are in place, so no media stack is
required.

Examples
--------
Start a coordinator, then pair two demo participants against it::

    rendezvous --profile default
    python scripts/demo_pairing.py --url ws://localhost:3001/ws

Stop after ten seconds instead of waiting for Ctrl+C::

    python scripts/demo_pairing.py --duration 10
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Iterable

from rendezvous.client import NegotiationCoordinator, SignalingClient
from rendezvous.client.signaling import DEFAULT_SERVER_URL
from rendezvous.utils.logging import configure_logging


class LoopbackPeer:
    """Peer stand-in that treats any remote description as reachable."""

    def __init__(self, name: str, on_candidate, on_state) -> None:
        self.name = name
        self.on_candidate = on_candidate
        self.on_state = on_state
        self.local = None
        self.remote = None

    async def create_offer(self):
        self.local = {"type": "offer", "sdp": f"demo-offer-{self.name}"}
        self.on_candidate({"candidate": f"host {self.name}"})
        return self.local

    async def create_answer(self):
        self.local = {"type": "answer", "sdp": f"demo-answer-{self.name}"}
        self.on_candidate({"candidate": f"host {self.name}"})
        self.on_state("connected")
        return self.local

    async def set_remote_description(self, description) -> None:
        self.remote = description
        if self.local is not None:
            self.on_state("connected")

    async def add_ice_candidate(self, candidate) -> None:
        print(f"[{self.name}] remote candidate {candidate}")

    async def close(self) -> None:
        self.local = self.remote = None


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rendezvous pairing demo")
    parser.add_argument("--url", default=DEFAULT_SERVER_URL, help="Coordinator WebSocket URL.")
    parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Optional duration in seconds; 0 means run until interrupted.",
    )
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def make_participant(name: str, url: str) -> NegotiationCoordinator:
    return NegotiationCoordinator(
        SignalingClient(url),
        lambda on_candidate, on_state: LoopbackPeer(name, on_candidate, on_state),
        on_status=lambda status: print(f"[{name}] {status}"),
    )


async def run_demo(url: str, duration: float) -> None:
    participants = [make_participant(name, url) for name in ("alice", "bob")]
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass

    for participant in participants:
        await participant.start()

    try:
        if duration > 0:
            await asyncio.wait_for(stop.wait(), timeout=duration)
        else:
            await stop.wait()
    except asyncio.TimeoutError:
        pass
    finally:
        for participant in participants:
            await participant.stop()


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    asyncio.run(run_demo(args.url, args.duration))
    return 0


if __name__ == "__main__":
    sys.exit(main())
