"""Runtime orchestration: presign -> transport -> session -> WS/API.

Boundary note for maintainers:
- Keep this module focused on orchestration, not viewer semantics.
- Connection lifecycle belongs in `session.py`; display math in
  `view_transform.py` / `chart_data.py`.
- API schemas belong in `api_models.py` / `ws_models.py`.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI

from . import __version__
from .config import AppConfig, load_config
from .errors import ViewerError
from .presign import PresignClient
from .routes import create_router
from .session import Session
from .transport import MqttTransport, TransportFactory
from .ws_hub import WebSocketHub

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeState:
    config: AppConfig
    session: Session
    ws_hub: WebSocketHub
    tasks: list[asyncio.Task] = field(default_factory=list)
    cached_chart: dict[str, Any] | None = None
    cached_chart_key: tuple[int, int] | None = None

    def chart_payload(self) -> dict[str, Any]:
        """Assembled chart, recomputed only when data, mode or gain changed."""
        key = self.chart_key()
        if self.cached_chart is None or key != self.cached_chart_key:
            self.cached_chart = self.session.chart().to_dict()
            self.cached_chart_key = key
        return self.cached_chart

    def status(self) -> dict[str, Any]:
        return self.session.status()

    def chart_key(self) -> tuple[int, int]:
        return self.session.frame_key()

    def log_position(self) -> tuple[int, int]:
        log = self.session.message_log
        return log.epoch, log.last_seq

    def messages_since(self, seq: int, limit: int) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.session.message_log.since(seq, limit)]

    async def auto_connect(self) -> None:
        """Open the broker connection on startup; subscribing stays an explicit action."""
        try:
            await self.session.connect()
            await self.session.wait_for_connection()
        except ViewerError as exc:
            LOGGER.warning("Auto-connect failed: %s", exc)


def create_app(
    config_path: Path | None = None,
    *,
    presign_client: PresignClient | None = None,
    transport_factory: TransportFactory = MqttTransport,
) -> FastAPI:
    config = load_config(config_path)
    if presign_client is None:
        presign_client = PresignClient(
            config.presign.endpoint_url,
            timeout_s=config.presign.timeout_s,
        )
    session = Session.from_config(config, presign_client, transport_factory)
    runtime = RuntimeState(
        config=config,
        session=session,
        ws_hub=WebSocketHub(),
    )

    async def start_runtime() -> None:
        runtime.tasks = [
            asyncio.create_task(runtime.session.run(), name="session-dispatch"),
            asyncio.create_task(
                runtime.ws_hub.run(config.viewer.ui_push_hz, runtime),
                name="ws-broadcast",
            ),
        ]
        if config.viewer.auto_connect:
            runtime.tasks.append(
                asyncio.create_task(runtime.auto_connect(), name="auto-connect")
            )

    async def stop_runtime() -> None:
        for task in runtime.tasks:
            task.cancel()
        await asyncio.gather(*runtime.tasks, return_exceptions=True)
        runtime.tasks.clear()
        try:
            await runtime.session.disconnect()
        except Exception:
            LOGGER.warning("Error disconnecting session", exc_info=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await start_runtime()
        try:
            yield
        finally:
            await stop_runtime()

    app = FastAPI(title="iotview", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(create_router(runtime))
    return app


app: FastAPI | None = (
    create_app()
    if __name__ != "__main__" and os.getenv("IOTVIEW_DISABLE_AUTO_APP", "0") != "1"
    else None
)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the iotview telemetry viewer server")
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML")
    args = parser.parse_args()

    runtime_app = create_app(config_path=args.config)
    runtime: RuntimeState = runtime_app.state.runtime
    log_level = runtime.config.server.log_level
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        uvicorn.run(
            runtime_app,
            host=runtime.config.server.host,
            port=runtime.config.server.port,
            log_level=log_level,
        )
    except OSError:
        LOGGER.error(
            "Failed to bind to %s:%d.",
            runtime.config.server.host,
            runtime.config.server.port,
            exc_info=True,
        )
        raise


if __name__ == "__main__":
    main()
