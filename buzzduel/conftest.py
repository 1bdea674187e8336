"""
Shared fixtures: a game machine wired to in-memory services, recording
fake connections and a clock the tests move by hand.
"""

import json

import pytest

from buzzduel.services.connection_registry import Connection, MemoryConnectionRegistry
from buzzduel.services.game_machine import GameMachine
from buzzduel.services.room_store import MemoryRoomStore
from buzzduel.services.timer_service import MemoryTimerService

START_TIME = 1_700_000_000.0
TEST_COOLDOWN_SEC = 0.05


class RecordingConnection(Connection):
    """Keeps every decoded message it is sent"""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send(self, data: str) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append(json.loads(data))

    def types(self):
        return [m["type"] for m in self.sent]

    def of_type(self, message_type: str):
        return [m for m in self.sent if m["type"] == message_type]

    def last(self, message_type: str):
        matching = self.of_type(message_type)
        return matching[-1] if matching else None

    def clear(self):
        self.sent.clear()


class FakeClock:
    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Harness:
    """A GameMachine plus one RecordingConnection per connected player"""

    def __init__(self, cooldown_sec: float = TEST_COOLDOWN_SEC):
        self.clock = FakeClock()
        self.store = MemoryRoomStore()
        self.connections = MemoryConnectionRegistry()
        self.timers = MemoryTimerService()
        self.machine = GameMachine(
            self.store, self.connections, self.timers,
            cooldown_sec=cooldown_sec, play_delay_sec=0.5, resume_delay_sec=0.3,
            clock=self.clock,
        )
        self.sockets = {}

    def connect(self, room_id: str, player_id: str) -> RecordingConnection:
        socket = RecordingConnection()
        self.connections.register(room_id, player_id, socket)
        self.sockets[player_id] = socket
        return socket

    async def send(self, player_id: str, message_type: str, **fields) -> None:
        await self.machine.handle_message(player_id, dict(type=message_type, **fields))

    async def room(self, room_id: str):
        return await self.store.get(room_id)

    def clear_sockets(self):
        for socket in self.sockets.values():
            socket.clear()

    async def setup_duel(self, target_score: int = 5) -> dict:
        """
        Room with a judge, alice on Team A and bob on Team B, game started,
        song and matchup set. Returns the ids.
        """
        room_id, judge = await self.machine.create_room_for_player("Judge")
        alice = await self.machine.join_room(room_id, "Alice")
        bob = await self.machine.join_room(room_id, "Bob")
        for player_id in (judge, alice, bob):
            self.connect(room_id, player_id)

        await self.send(judge, "select_team", team="judge")
        await self.send(alice, "select_team", team="A")
        await self.send(bob, "select_team", team="B")
        await self.send(judge, "start_game", targetScore=target_score)
        await self.send(judge, "set_song", mediaUrl="https://www.youtube.com/watch?v=dQw4w9WgXcQ")
        await self.send(judge, "set_matchup", playerA=alice, playerB=bob)
        self.clear_sockets()
        return {"room": room_id, "judge": judge, "alice": alice, "bob": bob}

    async def start_playing(self, ids: dict, seconds_in: float = 10.0) -> None:
        """Play the clip and move the clock `seconds_in` past its scheduled start"""
        await self.send(ids["judge"], "play_song")
        self.clock.advance(0.5 + seconds_in)
        self.clear_sockets()


@pytest.fixture
def harness():
    return Harness()


@pytest.fixture
def recording_connection():
    return RecordingConnection
