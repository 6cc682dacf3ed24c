from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import json
import os

from backend import RedisBackend
from constants import (
    INTERNAL_API_TOKEN,
    JWT_ALGORITHM,
    JWT_SECRET,
    OUTBOUND_QUEUE_SIZE,
    PORTFOLIO_ROOM_POLICY,
    RELAY_ENABLED,
)
from logging_config import get_logger, setup_logging
from realtime.auth import extract_bearer
from realtime.connections import Connection
from realtime.errors import AuthError
from realtime.hub import RealtimeHub
from realtime.policy import build_room_policy
from realtime.relay import RedisEventRelay
from routers.realtime import realtime_router

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


async def pump_outbound(websocket: WebSocket, connection: Connection):
    """Writer task: drain the connection's outbound channel onto the socket, in order."""
    try:
        while True:
            message = await connection.channel.receive()
            await websocket.send_text(json.dumps(message))
    except asyncio.CancelledError:
        raise
    except Exception as e:
        # socket went away underneath us; the reader loop handles cleanup
        logger.debug(f"Writer for connection {connection.connection_id} stopped: {e}")


async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """Authenticated realtime session.

    Query parameters:
    - token: bearer JWT (the ``Authorization: Bearer`` header works too)
    """
    hub: RealtimeHub = websocket.app.state.hub
    credential = token or extract_bearer(websocket.headers.get("authorization"))
    session = hub.open_session()
    logger.info(f"WebSocket connection attempt {session.connection_id}")

    try:
        connection = await session.authenticate(credential)
    except AuthError as e:
        # accept first: a close before accept reaches the client as a bare HTTP 403
        logger.info(f"Refusing connection {session.connection_id}: {e.code}")
        await websocket.accept()
        await websocket.close(code=1008, reason=e.code)
        return
    except Exception as e:
        logger.error(f"Error authenticating connection {session.connection_id}: {e}", exc_info=True)
        await websocket.accept()
        await websocket.close(code=1011, reason="server_error")
        return

    writer = None
    try:
        await websocket.accept()
        writer = asyncio.create_task(pump_outbound(websocket, connection))
        connection.channel.send_nowait(session.welcome())

        message_count = 0
        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for connection {session.connection_id}")
                break
            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {session.connection_id}")
            await session.handle_text(data)
    except Exception as e:
        logger.error(f"WebSocket error for connection {session.connection_id}: {e}", exc_info=True)
    finally:
        # Cleanup on disconnect
        session.close()
        if writer is not None:
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")


def create_app(
    hub: Optional[RealtimeHub] = None,
    backend: Optional[RedisBackend] = None,
    relay_enabled: bool = RELAY_ENABLED,
    internal_api_token: str = INTERNAL_API_TOKEN,
) -> FastAPI:
    if backend is None and (hub is None or relay_enabled):
        backend = RedisBackend()
    if hub is None:
        hub = RealtimeHub(
            identity_store=backend,
            jwt_secret=JWT_SECRET,
            jwt_algorithm=JWT_ALGORITHM,
            outbound_queue_size=OUTBOUND_QUEUE_SIZE,
            room_policy=build_room_policy(PORTFOLIO_ROOM_POLICY, backend),
        )
    relay = RedisEventRelay(backend, hub.bridge) if relay_enabled else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if relay is not None:
            relay.start()
        yield
        if relay is not None:
            await relay.stop()

    app = FastAPI(lifespan=lifespan)

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.hub = hub
    app.state.backend = backend
    app.state.relay = relay
    app.state.internal_api_token = internal_api_token

    app.include_router(realtime_router)
    app.add_api_websocket_route("/ws", websocket_endpoint)

    logger.info(f"FastAPI application initialized (relay={'on' if relay else 'off'}, policy={type(hub.room_policy).__name__})")
    return app


app = create_app()
