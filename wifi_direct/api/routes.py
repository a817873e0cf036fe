"""REST API routes for the Wi-Fi Direct service."""

import logging
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from wifi_direct.errors import BackendError, ChannelClosedError, P2pError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_channel = None


def init_routes(channel) -> None:
    """Inject the command channel into the routes module."""
    global _channel
    _channel = channel


async def _run_command(name: str, submit: Callable[[], Awaitable]) -> dict:
    """Submit a command, wait for the daemon's answer and map errors to HTTP."""
    if _channel is None:
        raise HTTPException(status_code=503, detail="P2P channel not initialized")
    try:
        pending = await submit()
        await pending
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ChannelClosedError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except BackendError as e:
        logger.warning(f"{name} rejected by daemon: {e}")
        raise HTTPException(status_code=502, detail=e.message)
    except P2pError as e:
        logger.warning(f"{name} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "accepted", "command": name}


# --- Discovery ---

@router.post("/discover")
async def discover_peers():
    """Start a peer discovery scan."""
    return await _run_command("discover", lambda: _channel.discover_peers())


@router.post("/discover/stop")
async def stop_discovery():
    return await _run_command("stop_discovery", lambda: _channel.stop_discovery())


# --- Connections & groups ---

class ConnectBody(BaseModel):
    address: str


@router.post("/connect")
async def connect(body: ConnectBody):
    """Connect to a peer by MAC address."""
    return await _run_command("connect", lambda: _channel.connect(body.address))


@router.post("/group")
async def create_group():
    return await _run_command("create_group", lambda: _channel.create_group())
