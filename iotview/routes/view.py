"""Display mode/gain and chart/message read endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Query

from ..api_models import ChartResponse, MessagesResponse, SessionResponse, ViewRequest
from ._helpers import session_errors_as_http

if TYPE_CHECKING:
    from ..app import RuntimeState

DEFAULT_MESSAGE_LIMIT = 50


def create_view_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.put("/api/view", response_model=SessionResponse)
    async def set_view(req: ViewRequest) -> dict[str, Any]:
        with session_errors_as_http():
            state.session.set_view(mode=req.mode, gain=req.gain)
        return state.session.status()

    @router.get("/api/chart", response_model=ChartResponse)
    async def get_chart() -> dict[str, Any]:
        return state.chart_payload()

    @router.get("/api/messages", response_model=MessagesResponse)
    async def get_messages(
        limit: int = Query(default=DEFAULT_MESSAGE_LIMIT, ge=1, le=1000),
    ) -> dict[str, Any]:
        log = state.session.message_log
        return {
            "messages": [entry.to_dict() for entry in log.recent(limit)],
            "total": len(log),
        }

    return router
