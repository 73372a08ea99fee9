"""Health check endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from .. import __version__
from ..api_models import HealthResponse

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_health_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return {
            "status": "ok" if state.session.state != "error" else "degraded",
            "version": __version__,
            "session_state": str(state.session.state),
            "transport_online": bool(state.session.online),
            "ws_clients": len(state.ws_hub),
        }

    return router
