"""
Coordinator process entrypoint.

Resolves configuration, initialises logging and serves the FastAPI app with
uvicorn until SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from dataclasses import replace
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from .api.server import create_app
from .config import CoordinatorConfig, load_config
from .coordinator import SessionCoordinator
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


async def serve(config: CoordinatorConfig) -> None:
    """
    Run the signaling API inside an asyncio loop.

    All coordinator state lives in this process and is lost when it exits;
    reconnecting clients start over as idle participants.
    """

    import uvicorn

    configure_logging(config.log_level)
    coordinator = SessionCoordinator()

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        LOG.info("Signaling coordinator starting (profile=%s)", config.profile)
        try:
            yield
        finally:
            LOG.info("Signaling coordinator shutting down: %s", coordinator.stats())

    app = create_app(coordinator=coordinator, config=config, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=config.host,
        port=config.port,
        log_config=None,
        log_level=config.log_level.lower(),
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Rendezvous signaling coordinator")
    parser.add_argument("--profile", default="default", help="configuration profile to load")
    parser.add_argument("--host", default=None, help="bind host for the API server")
    parser.add_argument("--port", type=int, default=None, help="bind port for the API server")
    parser.add_argument("--log-level", default=None, help="root log level")
    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> CoordinatorConfig:
    config = load_config(args.profile)
    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    if not overrides:
        return config
    return replace(config, **overrides)


def run(argv: Optional[list[str]] = None) -> None:
    config = resolve_config(parse_args(argv))

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        LOG.info("Coordinator interrupted by user.")


if __name__ == "__main__":
    run()
