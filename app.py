from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.websockets import WebSocketState
from typing import Optional
from backend import RoomStore
from constants import ALLOWED_ORIGINS, LOG_LEVEL, LOG_FILE
from relay import SessionRelay
from routers.rooms import rooms_router
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(store: Optional[RoomStore] = None) -> FastAPI:
    """Build the application around one room store shared by the relay and the REST router."""
    app = FastAPI(title="watchsync")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)

    app.state.store = store or RoomStore()
    app.state.relay = SessionRelay(app.state.store)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Playback sync socket. The connection stays unbound until it sends a `join` frame."""
        relay: SessionRelay = websocket.app.state.relay
        await websocket.accept()
        session = relay.open_session(websocket)
        logger.info(f"WebSocket connection accepted: session {session.session_id}")

        message_count = 0
        try:
            while True:
                try:
                    data = await websocket.receive_text()
                except WebSocketDisconnect:
                    logger.info(f"WebSocket disconnected normally for session {session.session_id}")
                    break
                message_count += 1
                logger.debug(f"Received message #{message_count} from session {session.session_id}")
                await relay.handle_message(session, data)
        except Exception as e:
            logger.error(f"WebSocket error for session {session.session_id}: {e}", exc_info=True)
        finally:
            await relay.disconnect(session)
            if websocket.client_state == WebSocketState.CONNECTED:
                try:
                    await websocket.close()
                except Exception as e:
                    logger.debug(f"Error closing WebSocket: {e}")

    logger.info("FastAPI application initialized")
    return app


app = create_app()
