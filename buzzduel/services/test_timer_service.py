"""
Test the in-memory TimerService
"""

import asyncio
import logging

from buzzduel.enums import TimerKind
from buzzduel.services.timer_service import (
    MemoryTimerService,
    TimerAction,
    cooldown_timer_id,
    cooldown_timer_prefix,
    room_timer_prefix,
)


def action(player_id: str = "p1", round_number: int = 1) -> TimerAction:
    return TimerAction(TimerKind.COOLDOWN_EXPIRED, "ABCD", player_id, round_number)


def test_timer_ids():
    assert cooldown_timer_id("ABCD", "p1") == "room:ABCD:cooldown:p1"
    assert cooldown_timer_id("ABCD", "p1").startswith(cooldown_timer_prefix("ABCD"))
    assert cooldown_timer_prefix("ABCD").startswith(room_timer_prefix("ABCD"))


def test_action_serialization():
    data = action().to_dict()
    assert data == {"kind": "cooldown_expired", "roomId": "ABCD", "playerId": "p1", "roundNumber": 1}
    assert TimerAction.from_dict(data) == action()


def test_fire_and_cancel():

    async def scenario():
        fired = []

        async def handler(a):
            fired.append(a)

        timers = MemoryTimerService(handler)
        timers.schedule("t1", 0.01, action("p1"))
        timers.schedule("t2", 0.01, action("p2"))
        assert timers.cancel("t2")
        assert not timers.cancel("t2")

        await asyncio.sleep(0.05)
        assert fired == [action("p1")]
        assert not timers.exists("t1")
        assert timers.pending_count == 0

    asyncio.run(scenario())


def test_reschedule_replaces():

    async def scenario():
        fired = []

        async def handler(a):
            fired.append(a.round_number)

        timers = MemoryTimerService(handler)
        timers.schedule("t", 0.01, action(round_number=1))
        timers.schedule("t", 0.01, action(round_number=2))
        await asyncio.sleep(0.05)
        assert fired == [2]

    asyncio.run(scenario())


def test_cancel_all_by_prefix():

    async def scenario():
        fired = []

        async def handler(a):
            fired.append(a.player_id)

        timers = MemoryTimerService(handler)
        timers.schedule(cooldown_timer_id("ABCD", "p1"), 0.01, action("p1"))
        timers.schedule(cooldown_timer_id("ABCD", "p2"), 0.01, action("p2"))
        timers.schedule(cooldown_timer_id("WXYZ", "p3"), 0.01, action("p3"))

        assert timers.cancel_all(cooldown_timer_prefix("ABCD")) == 2
        await asyncio.sleep(0.05)
        assert fired == ["p3"]

    asyncio.run(scenario())


def test_handler_errors_are_logged(caplog):

    async def scenario():
        async def handler(a):
            raise RuntimeError("boom")

        timers = MemoryTimerService(handler)
        timers.schedule("t", 0.0, action())
        await asyncio.sleep(0.02)
        assert timers.pending_count == 0

    with caplog.at_level(logging.ERROR):
        asyncio.run(scenario())
    assert any("[timer-error] t" in record.getMessage() for record in caplog.records)
