"""WebSocket endpoint for live chart frames."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

if TYPE_CHECKING:
    from ..app import RuntimeState

LOGGER = logging.getLogger(__name__)

MAX_WS_MESSAGE_LIMIT = 200


def parse_message_limit(value: object) -> int | None:
    """Clamp a client-requested message-log length; ``None`` means the default."""
    if value is None or isinstance(value, bool):
        return None
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return None
    return max(0, min(MAX_WS_MESSAGE_LIMIT, limit))


def create_websocket_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.websocket("/ws")
    async def ws_endpoint(ws: WebSocket) -> None:
        limit = parse_message_limit(ws.query_params.get("messages"))
        await ws.accept()
        await state.ws_hub.add(ws, limit)
        try:
            while True:
                message = await ws.receive_text()
                try:
                    payload = json.loads(message)
                except json.JSONDecodeError:
                    LOGGER.debug("Ignoring malformed WS message (not valid JSON)")
                    continue
                if isinstance(payload, dict) and "messages" in payload:
                    await state.ws_hub.set_message_limit(
                        ws, parse_message_limit(payload["messages"])
                    )
        except WebSocketDisconnect:
            LOGGER.debug("WebSocket client disconnected")
        except Exception:
            LOGGER.warning("WebSocket handler error", exc_info=True)
        finally:
            await state.ws_hub.remove(ws)

    return router
