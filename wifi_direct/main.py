"""
Wi-Fi Direct service: FastAPI application entry point.

Builds the P2P manager for the configured interface on startup, serves
the command REST API and streams daemon events over a WebSocket.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket

from wifi_direct.api.routes import init_routes, router
from wifi_direct.api.websocket import ConnectionManager
from wifi_direct.config import API_HOST, API_PORT, WIFI_DIRECT_INTERFACE
from wifi_direct.p2p.manager import WifiP2pManager

logger = logging.getLogger(__name__)


async def _default_manager() -> WifiP2pManager:
    return await WifiP2pManager.new(WIFI_DIRECT_INTERFACE)


def create_app(
    manager_factory: Callable[[], Awaitable[WifiP2pManager]] = _default_manager,
) -> FastAPI:
    ws_manager = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop the P2P manager and the event relay."""
        logger.info("Starting Wi-Fi Direct service...")
        manager = await manager_factory()
        channel = manager.initialize()
        init_routes(channel)

        relay = asyncio.create_task(ws_manager.forward(channel.subscribe_events()))
        app.state.manager = manager
        app.state.channel = channel
        logger.info(f"Wi-Fi Direct service ready on {WIFI_DIRECT_INTERFACE}")

        try:
            yield
        finally:
            logger.info("Shutting down Wi-Fi Direct service...")
            channel.close()
            await manager.close()
            # The relay ends on its own once the event bus closes
            await asyncio.gather(relay, return_exceptions=True)
            init_routes(None)

    app = FastAPI(
        title="Wi-Fi Direct",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.serve(websocket)

    app.state.ws_manager = ws_manager
    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    uvicorn.run(
        create_app(),
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )
