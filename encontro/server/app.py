"""
Encontro Session Server

FastAPI application hosting the WebSocket session protocol.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from encontro import __version__
from encontro.config import Settings, get_settings
from encontro.logging import get_logger
from encontro.server.gateway import SessionGateway
from encontro.server.registry import SessionRegistry
from encontro.server.relay import BroadcastRelay
from encontro.server.routes import router, session_socket

logger = get_logger("server.app")


def build_gateway(settings: Settings) -> SessionGateway:
    """Wire a fresh registry and relay into a gateway."""
    registry = SessionRegistry(
        max_sessions=settings.max_rooms,
        max_participants=settings.max_room_size,
        start_lookahead_ms=settings.start_lookahead_ms,
    )
    return SessionGateway(registry, BroadcastRelay())


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create the server application with its own isolated session state."""
    settings = settings or get_settings()
    gateway = build_gateway(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Session server ready on {settings.ws_path}")
        yield
        await gateway.shutdown()
        logger.info("Session server stopped")

    app = FastAPI(title="Encontro Session Server", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.gateway = gateway

    app.include_router(router)
    app.add_api_websocket_route(settings.ws_path, session_socket)
    return app
