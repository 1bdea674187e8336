from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional
import asyncio
import logging
from pathlib import Path
from datetime import datetime

from buzzduel import config
from buzzduel import messages
from buzzduel.services import game_logic
from buzzduel.services.connection_registry import Connection, MemoryConnectionRegistry
from buzzduel.services.exceptions import RoomCodeExhausted, StoreError
from buzzduel.services.game_machine import GameMachine
from buzzduel.services.room_store import MemoryRoomStore
from buzzduel.services.timer_service import MemoryTimerService

# ============================================================================
# LOGGING SETUP
# ============================================================================

log_dir = Path(config.LOG_DIR)
log_dir.mkdir(parents=True, exist_ok=True)

log_filename = log_dir / f"server_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    handlers=[
        logging.FileHandler(log_filename),
        logging.StreamHandler()  # Also print to console
    ]
)

logger = logging.getLogger(__name__)
logger.info("="*60)
logger.info("BUZZER DUEL SERVER STARTING")
logger.info("="*60)

# ============================================================================
# FASTAPI APP SETUP
# ============================================================================

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One store, registry and timer service per process; the machine is stateless
room_store = MemoryRoomStore()
connections = MemoryConnectionRegistry()
timers = MemoryTimerService()
game_machine = GameMachine(room_store, connections, timers)

# ============================================================================
# TRANSPORT ADAPTER
# ============================================================================

class WebSocketConnection(Connection):
    """Registry handle around a FastAPI WebSocket"""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, data: str) -> None:
        await self.websocket.send_text(data)

# ============================================================================
# REQUEST MODELS
# ============================================================================

class CreateRoomRequest(BaseModel):
    playerName: Optional[str] = None


class JoinRoomRequest(BaseModel):
    playerName: Optional[str] = None

# ============================================================================
# HTTP ENDPOINTS
# ============================================================================

@app.on_event("startup")
async def startup_event():
    logger.info(f"Log file: {log_filename}")
    logger.info(f"Cooldown {config.COOLDOWN_SEC}s | play delay {config.PLAY_START_DELAY_SEC}s")

@app.on_event("shutdown")
async def shutdown_event():
    """Clean up pending timers"""
    timers.shutdown()
    logger.info("Server shutting down - cancelled pending timers")

@app.get("/status")
async def status():
    """Get server status"""
    room_ids = await room_store.get_all_ids()
    return {
        "rooms": len(room_ids),
        "connections": connections.connection_count,
    }

@app.post("/api/room")
async def create_room(request: Optional[CreateRoomRequest] = None):
    """Create a room; the caller becomes its first (unassigned) player"""
    player_name = request.playerName if request else None
    try:
        room_id, player_id = await game_machine.create_room_for_player(player_name)
    except RoomCodeExhausted as e:
        logger.error(f"Room creation failed: {e}")
        return JSONResponse(status_code=503, content={"error": str(e)})
    return {"roomId": room_id, "playerId": player_id}

@app.get("/api/room/{room_id}")
async def get_room(room_id: str):
    """Summary of a room, for join screens"""
    room = await room_store.get(game_logic.normalize_room_code(room_id))
    if not room:
        logger.warning(f"Room info request for nonexistent room: {room_id}")
        return JSONResponse(status_code=404, content={"error": "Room not found"})
    return {
        "roomId": room.id,
        "playerCount": len(room.players),
        "gameState": room.game_state.value,
    }

@app.post("/api/room/{room_id}")
async def join_room(room_id: str, request: Optional[JoinRoomRequest] = None):
    """Join an existing room as a new player"""
    room_id = game_logic.normalize_room_code(room_id)
    player_name = request.playerName if request else None
    player_id = await game_machine.join_room(room_id, player_name)
    if not player_id:
        logger.warning(f"Join request for nonexistent room: {room_id}")
        return JSONResponse(status_code=404, content={"error": "Room not found"})
    return {"roomId": room_id, "playerId": player_id}

# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    room_id = game_logic.normalize_room_code(websocket.query_params.get("roomId"))
    player_id = websocket.query_params.get("playerId")

    # Upgrade checks; closing before accept rejects the handshake
    if not room_id or not player_id:
        logger.warning("WebSocket rejected: missing roomId or playerId")
        await websocket.close(code=1008)
        return
    room = await room_store.get(room_id)
    if not room:
        logger.warning(f"WebSocket rejected: room {room_id} not found")
        await websocket.close(code=4404)
        return
    if player_id not in room.players:
        logger.warning(f"WebSocket rejected: {player_id} is not in room {room_id}")
        await websocket.close(code=4403)
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket)
    connections.register(room_id, player_id, connection)
    await game_machine.handle_connect(player_id, room_id)

    try:
        while True:
            data = await websocket.receive_text()
            message = messages.parse_client_message(data)
            if message is None:
                logger.warning(f"Invalid message from {player_id}: {data[:200]}")
                await connections.send(player_id, messages.error("Invalid message"))
                continue

            message_type = message["type"]
            logger.info(f"Message from {player_id}: {message_type}")
            try:
                await game_machine.handle_message(player_id, message)
            except StoreError as e:
                logger.error(f"Store error handling {message_type} from {player_id}: {e} (retryable={e.retryable})")
                await connections.send(player_id, messages.error(str(e)))
            except Exception as e:
                logger.error(f"ERROR handling {message_type} from {player_id}: {e}", exc_info=True)
                await connections.send(player_id, messages.error("Internal server error"))

    except WebSocketDisconnect:
        logger.info(f"Client disconnected normally: {player_id}")
    except Exception as e:
        logger.error(f"Error with client {player_id}: {e}", exc_info=True)
    finally:
        await _release_connection(room_id, player_id, connection)


async def _release_connection(room_id: str, player_id: str, connection: WebSocketConnection) -> None:
    """
    Tear down a closed socket. The registry binding is dropped before any
    await.
    A player who already reconnected on a newer socket keeps that binding
    and stays marked connected.
    """
    if connections.unregister(player_id, connection):
        # Finish the presence update even if this task is being cancelled
        await asyncio.shield(game_machine.handle_disconnect(player_id, room_id))


def run():
    import uvicorn
    logger.info(f"Starting server on http://{config.HOST}:{config.PORT}")
    uvicorn.run(app, host=config.HOST, port=config.PORT, ws="websockets")


if __name__ == "__main__":
    run()
