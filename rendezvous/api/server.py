"""
FastAPI surface for the rendezvous coordinator.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Callable, Dict, Optional, Set

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .. import protocol
from ..config import CoordinatorConfig
from ..coordinator import SessionCoordinator
from ..protocol import MalformedMessage, MessageKind
from . import schemas

LOG = logging.getLogger(__name__)


class ParticipantSession:
    """Own one WebSocket for its whole lifetime and bridge it to the coordinator."""

    def __init__(
        self,
        server: "SignalingServer",
        websocket: WebSocket,
        *,
        queue_size: int,
    ) -> None:
        self.server = server
        self.coordinator = server.coordinator
        self.websocket = websocket
        self.participant_id: Optional[str] = None
        self.send_queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self.last_pong = time.monotonic()
        self._stop_event = asyncio.Event()
        self._closing = False
        self.logger = LOG.getChild("ws")

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    def deliver(self, message: Dict[str, Any]) -> bool:
        if self.is_stopped:
            return False
        try:
            self.send_queue.put_nowait(dict(message))
        except asyncio.QueueFull:
            self.logger.warning("Outbound queue full; closing session")
            self._stop_event.set()
            return False
        return True

    async def run(self) -> None:
        try:
            await self.websocket.accept()
        except Exception:  # pragma: no cover - defensive
            self.logger.exception("Failed to accept WebSocket connection")
            return

        self.participant_id = self.coordinator.connect(self)
        self.logger = LOG.getChild(f"ws.{self.participant_id[:8]}")

        try:
            async with asyncio.TaskGroup() as task_group:
                loops = [
                    task_group.create_task(self._recv_loop()),
                    task_group.create_task(self._send_loop()),
                ]
                if self.server.ping_interval > 0:
                    loops.append(task_group.create_task(self._keepalive_loop()))
                await self._stop_event.wait()
                for task in loops:
                    task.cancel()
        except asyncio.CancelledError:
            raise
        except Exception:  # pragma: no cover - defensive
            self.logger.exception("Participant session crashed")
        finally:
            self.coordinator.disconnect(self.participant_id)
            await self.close(code=1000)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        if self._closing:
            return
        self._closing = True
        self._stop_event.set()
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await self.websocket.close(code=code, reason=reason)

    async def _recv_loop(self) -> None:
        try:
            while not self.is_stopped:
                try:
                    event = await self.websocket.receive()
                except asyncio.CancelledError:
                    raise
                except WebSocketDisconnect:
                    break
                except Exception:  # pragma: no cover - safety net
                    self.logger.exception("Failed to receive message")
                    break

                if event.get("type") == "websocket.disconnect":
                    self.logger.debug("WebSocket client disconnected (%s)", self.participant_id)
                    break

                raw = event.get("text")
                if raw is None:
                    raw = event.get("bytes")
                try:
                    message = protocol.decode(raw)
                except MalformedMessage as exc:
                    self.logger.warning("Dropping malformed frame: %s", exc)
                    continue

                kind = message["type"]
                if kind == MessageKind.PONG.value:
                    self.last_pong = time.monotonic()
                    continue
                if kind == MessageKind.PING.value:
                    self.deliver(protocol.pong())
                    continue

                try:
                    self.coordinator.handle_message(self.participant_id, message)
                except Exception:  # pragma: no cover - guard rails
                    self.logger.exception("Unhandled error while processing %s", kind)
        finally:
            self._stop_event.set()

    async def _send_loop(self) -> None:
        try:
            while not self.is_stopped:
                payload = await self.send_queue.get()
                try:
                    await self.websocket.send_text(protocol.encode(payload))
                except asyncio.CancelledError:
                    raise
                except WebSocketDisconnect:
                    break
                except RuntimeError as exc:
                    message = str(exc)
                    if "close message has been sent" in message:
                        self.logger.debug("Send after close ignored: %s", message)
                    else:
                        self.logger.exception("Failed to send message", exc_info=exc)
                    break
                except Exception:  # pragma: no cover - defensive
                    self.logger.exception("Failed to send message")
                    break
                finally:
                    self.send_queue.task_done()
        finally:
            self._stop_event.set()

    async def _keepalive_loop(self) -> None:
        try:
            while not self.is_stopped:
                await asyncio.sleep(self.server.ping_interval)
                if self.is_stopped:
                    break
                self.deliver(protocol.ping())
                if (time.monotonic() - self.last_pong) > self.server.pong_timeout:
                    self.logger.warning("Ping timeout; closing participant session")
                    await self.close(code=1011, reason="ping timeout")
                    break
        finally:
            self._stop_event.set()


class SignalingServer:
    """Track live participant sessions on top of a :class:`SessionCoordinator`."""

    def __init__(
        self,
        coordinator: SessionCoordinator,
        *,
        queue_size: int = 256,
        ping_interval: float = 30.0,
        pong_timeout: float = 60.0,
    ) -> None:
        self.coordinator = coordinator
        self.queue_size = max(1, int(queue_size))
        self.ping_interval = max(0.0, float(ping_interval))
        self.pong_timeout = max(self.ping_interval, float(pong_timeout))
        self._sessions: Set[ParticipantSession] = set()

    @classmethod
    def from_config(cls, coordinator: SessionCoordinator, config: CoordinatorConfig) -> "SignalingServer":
        return cls(
            coordinator,
            queue_size=config.queue_size,
            ping_interval=config.ping_interval,
            pong_timeout=config.pong_timeout,
        )

    async def run(self, websocket: WebSocket) -> None:
        session = ParticipantSession(self, websocket, queue_size=self.queue_size)
        self._sessions.add(session)
        try:
            await session.run()
        finally:
            self._sessions.discard(session)

    async def stop(self) -> None:
        sessions = list(self._sessions)
        if not sessions:
            return
        LOG.info("Closing %d participant sessions", len(sessions))
        await asyncio.gather(
            *(session.close(code=1001, reason="server shutdown") for session in sessions),
            return_exceptions=True,
        )


def create_app(
    *,
    coordinator: Optional[SessionCoordinator] = None,
    config: Optional[CoordinatorConfig] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    settings = config or CoordinatorConfig()
    core = coordinator or SessionCoordinator()
    server = SignalingServer.from_config(core, settings)

    app = FastAPI(title="Rendezvous Signaling API", lifespan=lifespan)
    app.state.coordinator = core
    app.state.signaling = server
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await server.stop()

    @app.websocket("/")
    async def root_endpoint(websocket: WebSocket) -> None:
        await server.run(websocket)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await server.run(websocket)

    @app.get("/health", response_model=schemas.HealthModel, response_model_by_alias=True)
    async def health() -> schemas.HealthModel:
        return schemas.HealthModel(**core.stats())

    @app.get("/healthz", response_model=schemas.LivenessModel)
    async def healthz() -> schemas.LivenessModel:
        return schemas.LivenessModel(profile=settings.profile)

    @app.get("/sessions", response_model=schemas.SessionsModel)
    async def sessions() -> schemas.SessionsModel:
        snapshot = core.snapshot()
        return schemas.SessionsModel(
            states=snapshot["states"],
            queue=snapshot["queue"],
            pairs=[schemas.PairModel(participants=list(pair)) for pair in snapshot["pairs"]],
        )

    return app
