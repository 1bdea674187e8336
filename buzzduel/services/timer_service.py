"""
TimerService - named delayed actions.

A timer does not close over live state: it carries a serializable
TimerAction that is handed back to the game machine when it fires, so a
timer-triggered transition goes through the same path (and the same
checks) as a player action.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from buzzduel.enums import TimerKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimerAction:
    kind: TimerKind
    room_id: str
    player_id: str
    round_number: int

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "roomId": self.room_id,
            "playerId": self.player_id,
            "roundNumber": self.round_number,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TimerAction":
        return cls(
            kind=TimerKind(data["kind"]),
            room_id=data["roomId"],
            player_id=data["playerId"],
            round_number=int(data["roundNumber"]),
        )


TimerHandler = Callable[[TimerAction], Awaitable[None]]


def room_timer_prefix(room_id: str) -> str:
    return f"room:{room_id}:"


def cooldown_timer_prefix(room_id: str) -> str:
    return f"room:{room_id}:cooldown:"


def cooldown_timer_id(room_id: str, player_id: str) -> str:
    return f"{cooldown_timer_prefix(room_id)}{player_id}"


# =========================
# TimerService Interface
# =========================

class TimerService(ABC):

    @abstractmethod
    def set_handler(self, handler: TimerHandler) -> None:
        """Set the coroutine that receives fired actions."""

    @abstractmethod
    def schedule(self, timer_id: str, delay_sec: float, action: TimerAction) -> None:
        """Fire `action` after `delay_sec`. Replaces any timer with the same id."""

    @abstractmethod
    def cancel(self, timer_id: str) -> bool:
        """Cancel one timer. Returns True if a pending timer was cancelled."""

    @abstractmethod
    def cancel_all(self, prefix: str) -> int:
        """Cancel every timer whose id starts with `prefix`. Returns the count."""

    @abstractmethod
    def exists(self, timer_id: str) -> bool:
        """True if a timer with this id is pending."""


# =========================
# In-memory implementation
# =========================

class MemoryTimerService(TimerService):
    """
    One asyncio task per timer. A firing task removes its own entry before
    dispatching, so cancel() either stops the dispatch or finds nothing.
    """

    def __init__(self, handler: Optional[TimerHandler] = None):
        self._handler = handler
        self._timers: Dict[str, asyncio.Task] = {}

    def set_handler(self, handler: TimerHandler) -> None:
        self._handler = handler

    @property
    def pending_count(self) -> int:
        return len(self._timers)

    def schedule(self, timer_id: str, delay_sec: float, action: TimerAction) -> None:
        self.cancel(timer_id)
        task = asyncio.get_running_loop().create_task(self._run(timer_id, delay_sec, action))
        self._timers[timer_id] = task
        logger.info(f"[timer-set] {timer_id} delay={delay_sec}s action={action.kind.value}")

    async def _run(self, timer_id: str, delay_sec: float, action: TimerAction) -> None:
        await asyncio.sleep(max(0.0, delay_sec))

        if self._timers.get(timer_id) is not asyncio.current_task():
            return
        del self._timers[timer_id]

        logger.info(f"[timer-fire] {timer_id}")
        if self._handler is None:
            logger.warning(f"[timer-drop] {timer_id}: no handler set")
            return
        try:
            await self._handler(action)
        except Exception as e:
            logger.error(f"[timer-error] {timer_id}: {e}", exc_info=True)

    def cancel(self, timer_id: str) -> bool:
        task = self._timers.pop(timer_id, None)
        if task is None:
            return False
        task.cancel()
        logger.info(f"[timer-cancel] {timer_id}")
        return True

    def cancel_all(self, prefix: str) -> int:
        matching = [timer_id for timer_id in self._timers if timer_id.startswith(prefix)]
        for timer_id in matching:
            self.cancel(timer_id)
        return len(matching)

    def exists(self, timer_id: str) -> bool:
        return timer_id in self._timers

    def shutdown(self) -> None:
        """Cancel every pending timer (process shutdown)"""
        count = self.cancel_all("")
        if count:
            logger.info(f"Cancelled {count} pending timer(s) on shutdown")
