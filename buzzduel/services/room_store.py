"""
RoomStore - sole authority over room state.

Invariants:
- update() is atomic per room id: concurrent updates on one room serialize
- get()/create()/update() hand out copies, never the stored object
- unrelated rooms never wait on each other
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from buzzduel.room import Room
from buzzduel.services.exceptions import RoomAlreadyExists, RoomNotFound

logger = logging.getLogger(__name__)

RoomUpdater = Callable[[Room], Room]


# =========================
# RoomStore Interface
# =========================

class RoomStore(ABC):

    @abstractmethod
    async def create(self, room: Room) -> None:
        """Store a new room.

        Raises:
            RoomAlreadyExists: If a room with this id is live.
        """

    @abstractmethod
    async def get(self, room_id: str) -> Optional[Room]:
        """Return a copy of the room, or None if it does not exist."""

    @abstractmethod
    async def update(self, room_id: str, updater: RoomUpdater) -> Room:
        """Apply `updater` to the current room and persist its result.

        The updater receives a private copy and returns the next room. If it
        raises, nothing is written and the exception propagates. Returns a
        copy of the stored result.

        Raises:
            RoomNotFound: If the room does not exist.
        """

    @abstractmethod
    async def delete(self, room_id: str) -> None:
        """Delete a room. Deleting a missing room is a no-op."""

    @abstractmethod
    async def exists(self, room_id: str) -> bool:
        """True if a room with this id is live."""

    @abstractmethod
    async def get_all_ids(self) -> List[str]:
        """Return every live room id (used by external cleanup)."""


# =========================
# In-memory implementation
# =========================

class MemoryRoomStore(RoomStore):
    """Single-process store backed by a dict, one asyncio.Lock per room"""

    def __init__(self):
        self._rooms: Dict[str, Room] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_id] = lock
        return lock

    async def create(self, room: Room) -> None:
        if room.id in self._rooms:
            raise RoomAlreadyExists(room.id)
        self._rooms[room.id] = room.copy()
        logger.debug(f"Stored room {room.id}")

    async def get(self, room_id: str) -> Optional[Room]:
        room = self._rooms.get(room_id)
        return room.copy() if room else None

    async def update(self, room_id: str, updater: RoomUpdater) -> Room:
        if room_id not in self._rooms:
            raise RoomNotFound(room_id)
        async with self._lock_for(room_id):
            current = self._rooms.get(room_id)
            if current is None:
                raise RoomNotFound(room_id)
            updated = updater(current.copy())
            if updated is None or updated.id != room_id:
                raise ValueError(f"Updater for room {room_id} must return that room")
            self._rooms[room_id] = updated
            return updated.copy()

    async def delete(self, room_id: str) -> None:
        self._rooms.pop(room_id, None)
        self._locks.pop(room_id, None)

    async def exists(self, room_id: str) -> bool:
        return room_id in self._rooms

    async def get_all_ids(self) -> List[str]:
        return list(self._rooms.keys())
