"""
Exception definitions for the room game machine.

Hierarchy:
- StoreError (storage backends)
  - RoomNotFound
  - RoomAlreadyExists
  - RoomCodeExhausted
- GameError (game rules)
  - ActionRejected
"""


# =========================
# Store exceptions
# =========================

class StoreError(Exception):
    """Base exception for all room store errors."""
    retryable: bool = True


class RoomNotFound(StoreError):
    retryable = False

    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} not found")
        self.room_id = room_id


class RoomAlreadyExists(StoreError):
    retryable = False

    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} already exists")
        self.room_id = room_id


class RoomCodeExhausted(StoreError):
    # aka every code we tried was taken; another attempt may succeed
    retryable = True


# =========================
# Game exceptions
# =========================

class GameError(Exception):
    """Base exception for game rule violations."""


class ActionRejected(GameError):
    """
    A player action failed validation. Raised inside a store update so the
    room is left untouched; the message goes back to the requester only.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
