"""Tests covering the client-side offer/answer/candidate coordinator."""

from __future__ import annotations

import asyncio
import json

import pytest

from rendezvous.client import SignalingClient
from rendezvous.client.negotiation import (
    NegotiationCoordinator,
    NegotiationError,
    NegotiationSession,
    Role,
)

OFFER = {"type": "offer", "sdp": "local-offer"}
ANSWER = {"type": "answer", "sdp": "local-answer"}


class FakeSignaling:
    def __init__(self) -> None:
        self.listener = None
        self.sent = []
        self.stopped = False

    async def run(self) -> None:
        return None

    async def stop(self) -> None:
        self.stopped = True

    async def find_partner(self) -> bool:
        self.sent.append(("find-partner", None))
        return True

    async def send_offer(self, offer) -> bool:
        self.sent.append(("offer", offer))
        return True

    async def send_answer(self, answer) -> bool:
        self.sent.append(("answer", answer))
        return True

    async def send_ice_candidate(self, candidate) -> bool:
        self.sent.append(("ice-candidate", candidate))
        return True

    async def report_connection_state(self, state: str) -> bool:
        self.sent.append(("connection-state", state))
        return True

    async def skip(self) -> bool:
        self.sent.append(("skip", None))
        return True

    def kinds(self) -> list:
        return [kind for kind, _ in self.sent]


class FakePeer:
    def __init__(self, on_candidate, on_state) -> None:
        self.on_candidate = on_candidate
        self.on_state = on_state
        self.remote = None
        self.applied = []
        self.calls = []
        self.closed = False

    async def create_offer(self):
        self.calls.append("create_offer")
        return OFFER

    async def create_answer(self):
        self.calls.append("create_answer")
        return ANSWER

    async def set_remote_description(self, description) -> None:
        self.calls.append("set_remote_description")
        self.remote = description

    async def add_ice_candidate(self, candidate) -> None:
        self.applied.append(candidate)

    async def close(self) -> None:
        self.closed = True


class Harness:
    def __init__(self, **kwargs) -> None:
        self.signaling = FakeSignaling()
        self.peers = []
        self.coordinator = NegotiationCoordinator(self.signaling, self._factory, **kwargs)

    def _factory(self, on_candidate, on_state) -> FakePeer:
        peer = FakePeer(on_candidate, on_state)
        self.peers.append(peer)
        return peer

    @property
    def peer(self) -> FakePeer:
        return self.peers[-1]


async def settle(coordinator: NegotiationCoordinator) -> None:
    for _ in range(3):
        await asyncio.sleep(0)
    await coordinator.drain()


def test_initiator_offers_and_buffers_early_candidates() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator

        coordinator.on_paired("partner", True)
        await settle(coordinator)
        assert harness.signaling.sent == [("offer", OFFER)]
        assert coordinator.session.role is Role.INITIATOR
        assert coordinator.status == "connecting"

        coordinator.on_ice_candidate("c1", "partner")
        coordinator.on_ice_candidate("c2", "partner")
        await settle(coordinator)
        assert harness.peer.applied == []
        assert coordinator.session.pending_candidates == ["c1", "c2"]

        coordinator.on_answer({"sdp": "remote-answer"}, "partner")
        coordinator.on_ice_candidate("c3", "partner")
        await settle(coordinator)
        assert harness.peer.remote == {"sdp": "remote-answer"}
        assert harness.peer.applied == ["c1", "c2", "c3"]
        assert coordinator.session.pending_candidates == []

    asyncio.run(scenario())


def test_responder_answers_after_flushing_candidates() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator

        coordinator.on_paired("partner", False)
        coordinator.on_ice_candidate("early", "partner")
        coordinator.on_offer({"sdp": "remote-offer"}, "partner")
        await settle(coordinator)

        peer = harness.peer
        assert peer.calls == ["set_remote_description", "create_answer"]
        assert peer.remote == {"sdp": "remote-offer"}
        assert peer.applied == ["early"]
        assert harness.signaling.sent == [("answer", ANSWER)]
        assert coordinator.session.role is Role.RESPONDER
        assert coordinator.session.local_description == ANSWER

    asyncio.run(scenario())


def test_local_candidates_are_trickled_immediately() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator
        coordinator.on_paired("partner", False)
        await settle(coordinator)

        harness.peer.on_candidate({"candidate": "host"})
        harness.peer.on_candidate({"candidate": "srflx"})
        await settle(coordinator)

        assert harness.signaling.sent == [
            ("ice-candidate", {"candidate": "host"}),
            ("ice-candidate", {"candidate": "srflx"}),
        ]

    asyncio.run(scenario())


def test_stale_peer_callbacks_are_ignored_after_partner_leaves() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator
        coordinator.on_paired("partner", False)
        await settle(coordinator)
        old_peer = harness.peer

        coordinator.on_partner_left()
        await settle(coordinator)
        assert old_peer.closed is True
        assert coordinator.session is None
        assert coordinator.status == "partner-left"

        old_peer.on_candidate({"candidate": "late"})
        old_peer.on_state("failed")
        await settle(coordinator)
        assert harness.signaling.sent == []

    asyncio.run(scenario())


def test_repairing_resets_negotiation_state() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator
        coordinator.on_paired("first", True)
        coordinator.on_answer({"sdp": "a1"}, "first")
        await settle(coordinator)
        first_peer = harness.peer

        coordinator.on_paired("second", False)
        await settle(coordinator)

        assert first_peer.closed is True
        assert len(harness.peers) == 2
        assert coordinator.session.partner_id == "second"
        assert coordinator.session.role is Role.RESPONDER
        assert coordinator.session.remote_description is None
        assert coordinator.session.local_description is None

    asyncio.run(scenario())


def test_failed_connection_triggers_skip() -> None:
    async def scenario() -> None:
        faults = []
        harness = Harness(on_fault=faults.append)
        coordinator = harness.coordinator
        coordinator.on_paired("partner", True)
        await settle(coordinator)

        harness.peer.on_state("failed")
        await settle(coordinator)

        assert faults == ["failed"]
        assert harness.signaling.kinds() == ["offer", "skip"]
        assert harness.peer.closed is True
        assert coordinator.session is None
        assert coordinator.status == "connection-failed"

    asyncio.run(scenario())


def test_prolonged_disconnect_is_a_fault() -> None:
    async def scenario() -> None:
        harness = Harness(disconnect_grace=0.01, requeue_on_fault=True)
        coordinator = harness.coordinator
        coordinator.on_paired("partner", False)
        await settle(coordinator)

        harness.peer.on_state("disconnected")
        await settle(coordinator)
        assert harness.signaling.kinds() == []

        await asyncio.sleep(0.05)
        await settle(coordinator)
        assert harness.signaling.kinds() == ["skip", "find-partner"]

    asyncio.run(scenario())


def test_brief_disconnect_recovers_without_skip() -> None:
    async def scenario() -> None:
        harness = Harness(disconnect_grace=0.05)
        coordinator = harness.coordinator
        coordinator.on_paired("partner", False)
        await settle(coordinator)

        harness.peer.on_state("disconnected")
        await settle(coordinator)
        harness.peer.on_state("connected")
        await settle(coordinator)
        await asyncio.sleep(0.1)
        await settle(coordinator)

        assert harness.signaling.sent == [("connection-state", "connected")]
        assert coordinator.status == "connected-to-peer"

    asyncio.run(scenario())


def test_unexpected_messages_are_dropped() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator

        coordinator.on_offer({"sdp": "x"}, "nobody")
        coordinator.on_answer({"sdp": "y"}, "nobody")
        coordinator.on_ice_candidate("c", "nobody")
        await settle(coordinator)
        assert harness.peers == []

        coordinator.on_paired("partner", False)
        coordinator.on_answer({"sdp": "y"}, "partner")
        await settle(coordinator)
        assert harness.peer.remote is None

    asyncio.run(scenario())


def test_user_skip_requests_new_partner() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator
        coordinator.on_paired("partner", True)
        await settle(coordinator)

        await coordinator.skip()

        assert harness.signaling.kinds() == ["offer", "skip", "find-partner"]
        assert harness.peer.closed is True
        assert coordinator.status == "waiting"

    asyncio.run(scenario())


def test_stop_closes_everything() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator
        await coordinator.start()
        coordinator.on_paired("partner", False)
        await settle(coordinator)

        await coordinator.stop()

        assert harness.signaling.stopped is True
        assert harness.peer.closed is True
        assert coordinator.status == "disconnected"

    asyncio.run(scenario())


def test_connected_event_requests_partner_after_start() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator
        await coordinator.start()

        coordinator.on_connected("me")
        await settle(coordinator)
        coordinator.on_connected("me-again")
        await settle(coordinator)

        assert harness.signaling.kinds() == ["find-partner"]
        await coordinator.stop()

    asyncio.run(scenario())


def test_session_descriptions_are_set_once() -> None:
    session = NegotiationSession(role=Role.INITIATOR, partner_id="p", generation=1)
    session.set_local_description(OFFER)
    session.set_remote_description(ANSWER)

    with pytest.raises(NegotiationError):
        session.set_local_description(OFFER)
    with pytest.raises(NegotiationError):
        session.set_remote_description(ANSWER)


class OpenSocket:
    """Socket that yields its frames and then stays open until closed."""

    def __init__(self, frames) -> None:
        self.frames = list(frames)
        self.sent = []
        self.closed = asyncio.Event()

    async def send(self, raw) -> None:
        self.sent.append(json.loads(raw))

    async def close(self) -> None:
        self.closed.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame
        await self.closed.wait()


class OpenConnection:
    def __init__(self, socket: OpenSocket) -> None:
        self.socket = socket

    async def __aenter__(self) -> OpenSocket:
        return self.socket

    async def __aexit__(self, *exc_info):
        return False


async def wait_until(condition) -> None:
    for _ in range(200):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


def test_coordinator_can_start_again_after_stop() -> None:
    sockets = []

    def connect(url):
        socket = OpenSocket([json.dumps({"type": "connected", "userId": f"u{len(sockets) + 1}"})])
        sockets.append(socket)
        return OpenConnection(socket)

    async def scenario() -> None:
        signaling = SignalingClient("ws://test", connect=connect)
        coordinator = NegotiationCoordinator(signaling, FakePeer)

        await coordinator.start()
        await wait_until(lambda: sockets and sockets[0].sent)
        await coordinator.stop()
        assert sockets[0].closed.is_set()
        assert coordinator.status == "disconnected"

        await coordinator.start()
        await wait_until(lambda: len(sockets) == 2 and sockets[1].sent)
        assert signaling.user_id == "u2"
        await coordinator.stop()

    asyncio.run(scenario())

    assert len(sockets) == 2
    assert sockets[0].sent == [{"type": "find-partner"}]
    assert sockets[1].sent == [{"type": "find-partner"}]


def test_stop_discards_events_of_the_old_session() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator

        coordinator.on_paired("partner", False)
        coordinator.on_offer({"sdp": "remote-offer"}, "partner")
        await coordinator.stop()
        await asyncio.wait_for(coordinator.drain(), timeout=1.0)

        await coordinator.start()
        await settle(coordinator)
        assert harness.peers == []
        assert harness.signaling.sent == []
        assert coordinator.session is None

    asyncio.run(scenario())


def test_fault_status_survives_skip_acknowledgement() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator
        coordinator.on_paired("partner", True)
        await settle(coordinator)

        harness.peer.on_state("failed")
        await settle(coordinator)
        coordinator.on_disconnected()
        await settle(coordinator)

        assert coordinator.status == "connection-failed"

        coordinator.on_paired("next", False)
        await settle(coordinator)
        assert coordinator.status == "paired"

    asyncio.run(scenario())


def test_skip_acknowledgement_keeps_waiting_status() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator
        coordinator.on_paired("partner", True)
        await settle(coordinator)

        await coordinator.skip()
        coordinator.on_disconnected()
        await settle(coordinator)

        assert coordinator.status == "waiting"

    asyncio.run(scenario())


def test_acknowledgement_while_paired_reports_disconnected() -> None:
    async def scenario() -> None:
        harness = Harness()
        coordinator = harness.coordinator
        coordinator.on_paired("partner", False)
        await settle(coordinator)

        coordinator.on_disconnected()
        await settle(coordinator)

        assert harness.peer.closed is True
        assert coordinator.status == "disconnected"

    asyncio.run(scenario())
