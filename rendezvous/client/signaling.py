"""
Client side of the signaling channel.

:class:`SignalingClient` keeps one WebSocket to the coordinator, decodes the
frames it receives and hands them to a :class:`SignalingListener`.  Unexpected
drops are retried with exponential backoff until the attempt budget runs out
or :meth:`SignalingClient.stop` is called.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

import websockets
from websockets.exceptions import WebSocketException

from .. import protocol
from ..protocol import MalformedMessage, MessageKind

LOG = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "ws://localhost:3001"


class SignalingListener:
    """
    Observer interface for server frames.  Every hook defaults to a no-op.
    """

    def on_connected(self, user_id: str) -> None:
        pass

    def on_waiting(self) -> None:
        pass

    def on_paired(self, partner_id: str, initiator: bool) -> None:
        pass

    def on_offer(self, offer: Any, sender: Optional[str]) -> None:
        pass

    def on_answer(self, answer: Any, sender: Optional[str]) -> None:
        pass

    def on_ice_candidate(self, candidate: Any, sender: Optional[str]) -> None:
        pass

    def on_partner_left(self) -> None:
        pass

    def on_disconnected(self) -> None:
        pass

    def on_connection_lost(self) -> None:
        pass


@dataclass(frozen=True)
class ReconnectPolicy:
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before reconnect ``attempt`` (1-based)."""

        return min(self.base_delay * (2 ** max(0, int(attempt))), self.max_delay)


class SignalingClient:
    def __init__(
        self,
        url: str = DEFAULT_SERVER_URL,
        listener: Optional[SignalingListener] = None,
        *,
        policy: Optional[ReconnectPolicy] = None,
        connect: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.url = url
        self.listener = listener or SignalingListener()
        self.policy = policy or ReconnectPolicy()
        self.user_id: Optional[str] = None
        self.partner_id: Optional[str] = None
        self.reconnect_attempts = 0
        self._connect = connect or websockets.connect
        self._ws: Any = None
        self._stopped = asyncio.Event()

    # ------------------------------------------------------------------ state

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def is_paired(self) -> bool:
        return self.partner_id is not None

    @property
    def is_stopped(self) -> bool:
        return self._stopped.is_set()

    # ------------------------------------------------------------------ lifecycle

    async def run(self) -> None:
        """Stay connected until :meth:`stop` or until reconnection gives up.

        Calling ``run`` again after :meth:`stop` starts a fresh connection
        cycle with a full reconnect budget.
        """

        self._stopped.clear()
        self.reconnect_attempts = 0
        while not self.is_stopped:
            try:
                async with self._connect(self.url) as ws:
                    self._ws = ws
                    self.reconnect_attempts = 0
                    LOG.info("Connected to signaling server %s", self.url)
                    async for raw in ws:
                        await self.handle_message(raw)
            except asyncio.CancelledError:
                raise
            except (OSError, WebSocketException) as exc:
                LOG.warning("Signaling connection error: %s", exc)
            finally:
                self._ws = None
                self.user_id = None
                self.partner_id = None

            if self.is_stopped:
                break
            LOG.info("Disconnected from signaling server")
            try:
                self.listener.on_connection_lost()
            except Exception:
                LOG.exception("Listener failed while handling connection loss")
            if not await self._wait_before_reconnect():
                break

    async def _wait_before_reconnect(self) -> bool:
        if self.reconnect_attempts >= self.policy.max_attempts:
            LOG.error("Max reconnection attempts reached")
            return False
        self.reconnect_attempts += 1
        delay = self.policy.delay_for(self.reconnect_attempts)
        LOG.info("Attempting reconnect in %.1fs (attempt %d)", delay, self.reconnect_attempts)
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False

    async def stop(self) -> None:
        """Close the channel and cancel any pending reconnect."""

        self._stopped.set()
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException):
                LOG.debug("Error while closing signaling socket", exc_info=True)

    # ------------------------------------------------------------------ inbound

    async def handle_message(self, raw: Union[str, bytes]) -> None:
        try:
            message = protocol.decode(raw)
        except MalformedMessage as exc:
            LOG.warning("Ignoring malformed frame from server: %s", exc)
            return

        kind = protocol.kind_of(message)
        LOG.debug("Received message: %s", message["type"])
        try:
            await self._dispatch(kind, message)
        except Exception:
            LOG.exception("Listener failed while handling %s", message["type"])

    async def _dispatch(self, kind: Optional[MessageKind], message: Dict[str, Any]) -> None:
        listener = self.listener
        if kind is MessageKind.CONNECTED:
            self.user_id = message.get("userId")
            LOG.info("Assigned user ID: %s", self.user_id)
            listener.on_connected(self.user_id)
        elif kind is MessageKind.WAITING:
            listener.on_waiting()
        elif kind is MessageKind.PAIRED:
            self.partner_id = message.get("partnerId")
            LOG.info("Paired with: %s", self.partner_id)
            # Servers that predate role assignment expect both sides to offer.
            listener.on_paired(self.partner_id, bool(message.get("initiator", True)))
        elif kind is MessageKind.OFFER:
            listener.on_offer(message.get("offer"), message.get("from"))
        elif kind is MessageKind.ANSWER:
            listener.on_answer(message.get("answer"), message.get("from"))
        elif kind is MessageKind.ICE_CANDIDATE:
            listener.on_ice_candidate(message.get("candidate"), message.get("from"))
        elif kind is MessageKind.PARTNER_LEFT:
            self.partner_id = None
            listener.on_partner_left()
        elif kind is MessageKind.DISCONNECTED:
            self.partner_id = None
            listener.on_disconnected()
        elif kind is MessageKind.PING:
            await self.send(protocol.pong())
        elif kind is MessageKind.PONG:
            pass
        else:
            LOG.info("Unknown message type: %s", message["type"])

    # ------------------------------------------------------------------ outbound

    async def send(self, message: Dict[str, Any]) -> bool:
        ws = self._ws
        if ws is None:
            LOG.error("WebSocket is not connected; dropping %s", message.get("type"))
            return False
        try:
            await ws.send(protocol.encode(message))
        except (OSError, WebSocketException) as exc:
            LOG.warning("Failed to send %s: %s", message.get("type"), exc)
            return False
        return True

    async def find_partner(self) -> bool:
        LOG.info("Requested partner matching")
        return await self.send(protocol.request(MessageKind.FIND_PARTNER))

    async def send_offer(self, offer: Any) -> bool:
        return await self.send(protocol.request(MessageKind.OFFER, offer=offer))

    async def send_answer(self, answer: Any) -> bool:
        return await self.send(protocol.request(MessageKind.ANSWER, answer=answer))

    async def send_ice_candidate(self, candidate: Any) -> bool:
        return await self.send(protocol.request(MessageKind.ICE_CANDIDATE, candidate=candidate))

    async def report_connection_state(self, state: str) -> bool:
        return await self.send(protocol.request(MessageKind.CONNECTION_STATE, state=state))

    async def skip(self) -> bool:
        self.partner_id = None
        return await self.send(protocol.request(MessageKind.SKIP))

    async def disconnect(self) -> bool:
        self.partner_id = None
        return await self.send(protocol.request(MessageKind.DISCONNECT))
