"""
Client-side negotiation for one pairing at a time.

The coordinator turns relayed frames into an offer/answer exchange and trickles
reachability candidates in both directions.  Every event for a pairing is
handled by a single worker task in arrival order; peer callbacks from a pairing
that has since been torn down are discarded by generation number.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Set, Tuple

from .signaling import SignalingClient, SignalingListener

LOG = logging.getLogger(__name__)


class NegotiationError(RuntimeError):
    """Raised when a pairing's negotiation state is applied out of order."""


class Role(str, Enum):
    INITIATOR = "initiator"
    RESPONDER = "responder"


class PeerConnection(Protocol):
    """
    The platform peer connection.  Descriptions and candidates are opaque.

    ``create_offer``/``create_answer`` produce a local description and apply it
    locally before returning it.
    """

    async def create_offer(self) -> Any:
        ...

    async def create_answer(self) -> Any:
        ...

    async def set_remote_description(self, description: Any) -> None:
        ...

    async def add_ice_candidate(self, candidate: Any) -> None:
        ...

    async def close(self) -> None:
        ...


CandidateCallback = Callable[[Any], None]
StateCallback = Callable[[str], None]
PeerFactory = Callable[[CandidateCallback, StateCallback], PeerConnection]


@dataclass
class NegotiationSession:
    role: Role
    partner_id: Optional[str]
    generation: int
    local_description: Any = None
    remote_description: Any = None
    pending_candidates: List[Any] = field(default_factory=list)

    @property
    def has_remote_description(self) -> bool:
        return self.remote_description is not None

    def set_local_description(self, description: Any) -> None:
        if self.local_description is not None:
            raise NegotiationError("local description already set for this pairing")
        self.local_description = description

    def set_remote_description(self, description: Any) -> None:
        if self.remote_description is not None:
            raise NegotiationError("remote description already set for this pairing")
        self.remote_description = description

    def take_pending_candidates(self) -> List[Any]:
        pending, self.pending_candidates = self.pending_candidates, []
        return pending


Event = Tuple[Callable[..., Awaitable[None]], tuple]


class NegotiationCoordinator(SignalingListener):
    def __init__(
        self,
        signaling: SignalingClient,
        peer_factory: PeerFactory,
        *,
        disconnect_grace: float = 5.0,
        requeue_on_fault: bool = False,
        on_fault: Optional[Callable[[str], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.signaling = signaling
        self.signaling.listener = self
        self.peer_factory = peer_factory
        self.disconnect_grace = max(0.0, float(disconnect_grace))
        self.requeue_on_fault = requeue_on_fault
        self.on_fault = on_fault
        self.on_status = on_status

        self.session: Optional[NegotiationSession] = None
        self.peer: Optional[PeerConnection] = None
        self.status = "disconnected"
        self._generation = 0
        self._events: asyncio.Queue[Event] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._signaling_task: Optional[asyncio.Task] = None
        self._disconnect_timer: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._find_on_connect = False

    # ------------------------------------------------------------------ plumbing

    def _post(self, handler: Callable[..., Awaitable[None]], *args: Any) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run_worker())
        self._events.put_nowait((handler, args))

    async def _run_worker(self) -> None:
        while True:
            handler, args = await self._events.get()
            try:
                await handler(*args)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOG.exception("Negotiation step %s failed", handler.__name__)
            finally:
                self._events.task_done()

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _discard_pending_events(self) -> None:
        while True:
            try:
                self._events.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._events.task_done()

    async def drain(self) -> None:
        """Wait until every queued negotiation event has been handled."""

        await self._events.join()

    def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        LOG.debug("Negotiation status: %s", status)
        if self.on_status is not None:
            try:
                self.on_status(status)
            except Exception:  # pragma: no cover - UI hooks must not break negotiation
                LOG.exception("Status hook failed")

    def _current(self, generation: int) -> Optional[NegotiationSession]:
        session = self.session
        if session is None or session.generation != generation:
            return None
        return session

    def _cancel_disconnect_timer(self) -> None:
        if self._disconnect_timer is not None:
            self._disconnect_timer.cancel()
            self._disconnect_timer = None

    async def _reset(self) -> None:
        self._cancel_disconnect_timer()
        self._generation += 1
        peer, self.peer = self.peer, None
        self.session = None
        if peer is not None:
            try:
                await peer.close()
            except Exception:
                LOG.exception("Error closing peer connection")

    async def _flush_candidates(self, session: NegotiationSession) -> None:
        for candidate in session.take_pending_candidates():
            await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: Any) -> None:
        if self.peer is None:
            return
        try:
            await self.peer.add_ice_candidate(candidate)
        except Exception:
            LOG.exception("Error adding ICE candidate")

    # ------------------------------------------------------------------ user actions

    async def start(self) -> None:
        """Open the signaling channel and ask for a partner once it is up."""

        self._find_on_connect = True
        if self._signaling_task is None or self._signaling_task.done():
            self._signaling_task = asyncio.get_running_loop().create_task(self.signaling.run())

    async def find_partner(self) -> bool:
        self._set_status("waiting")
        return await self.signaling.find_partner()

    async def skip(self) -> None:
        """Drop the current partner and immediately look for another."""

        self._post(self._handle_skip)
        await self.drain()

    async def stop(self) -> None:
        self._find_on_connect = False
        await self._reset()
        await self.signaling.stop()
        for task in (self._signaling_task, self._worker):
            if task is not None and not task.done():
                task.cancel()
        self._signaling_task = None
        self._worker = None
        self._discard_pending_events()
        self._set_status("disconnected")

    # ------------------------------------------------------------------ listener hooks

    def on_connected(self, user_id: str) -> None:
        self._post(self._handle_connected, user_id)

    def on_waiting(self) -> None:
        self._post(self._handle_waiting)

    def on_paired(self, partner_id: str, initiator: bool) -> None:
        self._post(self._handle_paired, partner_id, initiator)

    def on_offer(self, offer: Any, sender: Optional[str]) -> None:
        self._post(self._handle_offer, offer)

    def on_answer(self, answer: Any, sender: Optional[str]) -> None:
        self._post(self._handle_answer, answer)

    def on_ice_candidate(self, candidate: Any, sender: Optional[str]) -> None:
        self._post(self._handle_remote_candidate, candidate)

    def on_partner_left(self) -> None:
        self._post(self._handle_teardown, "partner-left")

    def on_disconnected(self) -> None:
        self._post(self._handle_left)

    def on_connection_lost(self) -> None:
        self._post(self._handle_teardown, "disconnected")

    # ------------------------------------------------------------------ handlers

    async def _handle_connected(self, user_id: str) -> None:
        self._set_status("connected")
        if self._find_on_connect:
            self._find_on_connect = False
            await self.find_partner()

    async def _handle_waiting(self) -> None:
        self._set_status("waiting")

    async def _handle_paired(self, partner_id: str, initiator: bool) -> None:
        await self._reset()
        generation = self._generation
        role = Role.INITIATOR if initiator else Role.RESPONDER
        session = NegotiationSession(role=role, partner_id=partner_id, generation=generation)
        self.session = session
        self.peer = self.peer_factory(
            lambda candidate: self._on_local_candidate(generation, candidate),
            lambda state: self._post(self._handle_peer_state, generation, state),
        )
        self._set_status("paired")
        LOG.info("Paired with %s as %s", partner_id, role.value)

        if role is Role.INITIATOR:
            try:
                offer = await self.peer.create_offer()
            except Exception:
                LOG.exception("Error creating offer")
                await self._fault(generation, "offer-failed")
                return
            session.set_local_description(offer)
            await self.signaling.send_offer(offer)
            self._set_status("connecting")

    async def _handle_offer(self, offer: Any) -> None:
        session = self.session
        if session is None or self.peer is None:
            LOG.warning("Dropping offer received while not paired")
            return
        if session.role is Role.INITIATOR:
            LOG.warning("Dropping offer received while acting as initiator")
            return
        self._set_status("connecting")
        try:
            session.set_remote_description(offer)
            await self.peer.set_remote_description(offer)
            await self._flush_candidates(session)
            answer = await self.peer.create_answer()
        except Exception:
            LOG.exception("Error creating answer")
            await self._fault(session.generation, "answer-failed")
            return
        session.set_local_description(answer)
        await self.signaling.send_answer(answer)

    async def _handle_answer(self, answer: Any) -> None:
        session = self.session
        if session is None or self.peer is None or session.role is not Role.INITIATOR:
            LOG.warning("Dropping unexpected answer")
            return
        try:
            session.set_remote_description(answer)
            await self.peer.set_remote_description(answer)
        except Exception:
            LOG.exception("Error handling answer")
            await self._fault(session.generation, "answer-rejected")
            return
        await self._flush_candidates(session)

    async def _handle_remote_candidate(self, candidate: Any) -> None:
        session = self.session
        if session is None:
            LOG.debug("Dropping ICE candidate received while not paired")
            return
        if session.has_remote_description:
            await self._apply_candidate(candidate)
        else:
            session.pending_candidates.append(candidate)

    def _on_local_candidate(self, generation: int, candidate: Any) -> None:
        if self._current(generation) is None or candidate is None:
            return
        self._spawn(self.signaling.send_ice_candidate(candidate))

    async def _handle_peer_state(self, generation: int, state: str) -> None:
        if self._current(generation) is None:
            return
        LOG.info("Connection state changed: %s", state)
        if state == "connected":
            self._cancel_disconnect_timer()
            self._set_status("connected-to-peer")
            await self.signaling.report_connection_state("connected")
        elif state == "failed":
            self._cancel_disconnect_timer()
            await self._fault(generation, "failed")
        elif state == "disconnected":
            self._set_status("connection-interrupted")
            if self._disconnect_timer is None:
                self._disconnect_timer = asyncio.get_running_loop().create_task(
                    self._expire_disconnect(generation)
                )

    async def _expire_disconnect(self, generation: int) -> None:
        await asyncio.sleep(self.disconnect_grace)
        self._disconnect_timer = None
        self._post(self._fault, generation, "disconnected")

    async def _fault(self, generation: int, reason: str) -> None:
        if self._current(generation) is None:
            return
        LOG.warning("Peer connection fault (%s); skipping partner", reason)
        self._set_status("connection-failed")
        if self.on_fault is not None:
            try:
                self.on_fault(reason)
            except Exception:  # pragma: no cover - UI hooks must not break negotiation
                LOG.exception("Fault hook failed")
        await self._reset()
        await self.signaling.skip()
        if self.requeue_on_fault:
            await self.find_partner()

    async def _handle_skip(self) -> None:
        await self._reset()
        await self.signaling.skip()
        await self.find_partner()

    async def _handle_teardown(self, status: str) -> None:
        await self._reset()
        self._set_status(status)

    async def _handle_left(self) -> None:
        await self._reset()
        # Acknowledges our own skip; a fault or a new search outranks it.
        if self.status not in ("connection-failed", "waiting"):
            self._set_status("disconnected")
