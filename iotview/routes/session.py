"""Connection and topic control endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter

from ..api_models import ConnectRequest, SessionResponse, StartRequest
from ._helpers import session_errors_as_http

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_session_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/session", response_model=SessionResponse)
    async def get_session() -> dict[str, Any]:
        return state.session.status()

    @router.post("/api/session/connect", response_model=SessionResponse)
    async def connect(req: ConnectRequest | None = None) -> dict[str, Any]:
        with session_errors_as_http():
            await state.session.connect(req.client_id if req is not None else None)
        return state.session.status()

    @router.post("/api/session/start", response_model=SessionResponse)
    async def start(req: StartRequest | None = None) -> dict[str, Any]:
        topic = req.topic if req is not None and req.topic else None
        topic = topic or state.config.viewer.default_topic
        with session_errors_as_http():
            await state.session.start(topic)
        return state.session.status()

    @router.post("/api/session/stop", response_model=SessionResponse)
    async def stop() -> dict[str, Any]:
        with session_errors_as_http():
            await state.session.unsubscribe()
        return state.session.status()

    @router.post("/api/session/pause", response_model=SessionResponse)
    async def pause() -> dict[str, Any]:
        with session_errors_as_http():
            state.session.pause()
        return state.session.status()

    @router.post("/api/session/resume", response_model=SessionResponse)
    async def resume() -> dict[str, Any]:
        with session_errors_as_http():
            state.session.resume()
        return state.session.status()

    @router.post("/api/session/clear", response_model=SessionResponse)
    async def clear() -> dict[str, Any]:
        state.session.clear()
        return state.session.status()

    @router.post("/api/session/disconnect", response_model=SessionResponse)
    async def disconnect() -> dict[str, Any]:
        await state.session.disconnect()
        return state.session.status()

    return router
