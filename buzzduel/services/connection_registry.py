"""
ConnectionRegistry - maps players to live transport connections.

The game machine only ever addresses players and rooms by id; raw
connections stay inside the registry so it can be replaced by a pub/sub
backed implementation.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class Connection(ABC):
    """A send-capable handle to one client"""

    @abstractmethod
    async def send(self, data: str) -> None:
        ...


@dataclass
class ConnectionInfo:
    player_id: str
    room_id: str
    connection: Connection


# =========================
# ConnectionRegistry Interface
# =========================

class ConnectionRegistry(ABC):

    @abstractmethod
    def register(self, room_id: str, player_id: str, connection: Connection) -> None:
        """Bind a player to a room and a connection, replacing any previous binding."""

    @abstractmethod
    def unregister(self, player_id: str, connection: Optional[Connection] = None) -> bool:
        """Remove a player's binding.

        When `connection` is given, the binding is only removed if it still
        points at that connection. Returns True if something was removed.
        """

    @abstractmethod
    async def send(self, player_id: str, message: dict) -> None:
        """Deliver to one player. Transport failures are logged, never raised."""

    @abstractmethod
    async def broadcast(self, room_id: str, message: dict) -> None:
        """Deliver to every registered player of a room."""

    @abstractmethod
    async def broadcast_except(self, room_id: str, exclude_player_id: str, message: dict) -> None:
        """Deliver to every registered player of a room but one."""

    @abstractmethod
    def get_connection_info(self, player_id: str) -> Optional[ConnectionInfo]:
        ...

    @abstractmethod
    def get_room_id(self, player_id: str) -> Optional[str]:
        ...

    @abstractmethod
    def get_players_in_room(self, room_id: str) -> List[str]:
        ...


# =========================
# In-memory implementation
# =========================

class MemoryConnectionRegistry(ConnectionRegistry):
    def __init__(self):
        self._connections: Dict[str, ConnectionInfo] = {}  # player_id -> info
        self._room_players: Dict[str, Set[str]] = {}  # room_id -> player ids

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def register(self, room_id: str, player_id: str, connection: Connection) -> None:
        previous = self._connections.get(player_id)
        if previous and previous.room_id != room_id:
            self._remove_from_room(previous.room_id, player_id)

        self._connections[player_id] = ConnectionInfo(player_id, room_id, connection)
        self._room_players.setdefault(room_id, set()).add(player_id)
        logger.info(f"Registered {player_id} in room {room_id} | Total connections: {len(self._connections)}")

    def unregister(self, player_id: str, connection: Optional[Connection] = None) -> bool:
        info = self._connections.get(player_id)
        if not info:
            return False
        if connection is not None and info.connection is not connection:
            # Player already reconnected on a newer connection
            logger.debug(f"Skipping unregister of stale connection for {player_id}")
            return False

        self._remove_from_room(info.room_id, player_id)
        del self._connections[player_id]
        logger.info(f"Unregistered {player_id} | Total connections: {len(self._connections)}")
        return True

    def _remove_from_room(self, room_id: str, player_id: str) -> None:
        players = self._room_players.get(room_id)
        if players is None:
            return
        players.discard(player_id)
        if not players:
            del self._room_players[room_id]

    async def _deliver(self, info: ConnectionInfo, data: str, message_type: str) -> None:
        try:
            await info.connection.send(data)
            logger.debug(f"Sent to {info.player_id}: {message_type}")
        except Exception as e:
            logger.error(f"Error sending {message_type} to {info.player_id}: {e}", exc_info=True)

    async def send(self, player_id: str, message: dict) -> None:
        info = self._connections.get(player_id)
        if not info:
            logger.warning(f"Cannot send to {player_id}: not in active connections")
            return
        await self._deliver(info, json.dumps(message), message.get("type", "?"))

    async def broadcast(self, room_id: str, message: dict) -> None:
        await self._fan_out(room_id, message, exclude=None)

    async def broadcast_except(self, room_id: str, exclude_player_id: str, message: dict) -> None:
        await self._fan_out(room_id, message, exclude=exclude_player_id)

    async def _fan_out(self, room_id: str, message: dict, exclude: Optional[str]) -> None:
        # Snapshot the member set; it may change while we await sends
        player_ids = list(self._room_players.get(room_id, ()))
        if not player_ids:
            return
        data = json.dumps(message)
        message_type = message.get("type", "?")
        for player_id in player_ids:
            if player_id == exclude:
                continue
            info = self._connections.get(player_id)
            if info:
                await self._deliver(info, data, message_type)
        logger.debug(f"Broadcast to room {room_id}: {message_type}")

    def get_connection_info(self, player_id: str) -> Optional[ConnectionInfo]:
        return self._connections.get(player_id)

    def get_room_id(self, player_id: str) -> Optional[str]:
        info = self._connections.get(player_id)
        return info.room_id if info else None

    def get_players_in_room(self, room_id: str) -> List[str]:
        return list(self._room_players.get(room_id, ()))
