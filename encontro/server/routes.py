"""Health check and WebSocket endpoints."""

from __future__ import annotations

from fastapi import APIRouter, WebSocket

from encontro.server.gateway import SessionGateway

router = APIRouter()


@router.get("/health")
def health_check() -> dict:
    """Liveness probe; no side effects."""
    return {"status": "ok"}


async def session_socket(websocket: WebSocket) -> None:
    """WebSocket endpoint for the session protocol.

    Protocol:
    - Client sends: join_room, leave_room, presence_update, merge_initiate,
      merge_release, ready
    - Server sends: welcome, user_joined, user_left, remote_presence_update,
      phase_change, ceremony_start, merge_confirm, merge_deny, error
    """
    gateway: SessionGateway = websocket.app.state.gateway
    await gateway.handle_connection(websocket)
