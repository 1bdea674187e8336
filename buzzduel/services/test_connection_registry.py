"""
Test the in-memory ConnectionRegistry
"""

import asyncio

from buzzduel.services.connection_registry import MemoryConnectionRegistry


def test_register_and_broadcast(recording_connection):

    async def scenario():
        registry = MemoryConnectionRegistry()
        alice, bob, other = recording_connection(), recording_connection(), recording_connection()
        registry.register("ABCD", "alice", alice)
        registry.register("ABCD", "bob", bob)
        registry.register("WXYZ", "other", other)

        await registry.broadcast("ABCD", {"type": "pong"})
        await registry.broadcast_except("ABCD", "alice", {"type": "pause", "position": 1.5})
        await registry.send("other", {"type": "error", "message": "x"})

        assert alice.types() == ["pong"]
        assert bob.types() == ["pong", "pause"]
        assert other.types() == ["error"]
        assert sorted(registry.get_players_in_room("ABCD")) == ["alice", "bob"]
        assert registry.get_room_id("other") == "WXYZ"
        assert registry.connection_count == 3

    asyncio.run(scenario())


def test_send_failures_are_swallowed(recording_connection):
    """One broken socket must not stop delivery to the rest of the room"""

    async def scenario():
        registry = MemoryConnectionRegistry()
        broken, healthy = recording_connection(fail=True), recording_connection()
        registry.register("ABCD", "broken", broken)
        registry.register("ABCD", "healthy", healthy)

        await registry.broadcast("ABCD", {"type": "pong"})
        await registry.send("broken", {"type": "pong"})
        await registry.send("missing", {"type": "pong"})
        assert healthy.types() == ["pong"]

    asyncio.run(scenario())


def test_stale_unregister_keeps_new_connection(recording_connection):

    async def scenario():
        registry = MemoryConnectionRegistry()
        old, new = recording_connection(), recording_connection()
        registry.register("ABCD", "alice", old)
        registry.register("ABCD", "alice", new)

        assert not registry.unregister("alice", old)
        await registry.broadcast("ABCD", {"type": "pong"})
        assert old.sent == []
        assert new.types() == ["pong"]

        assert registry.unregister("alice", new)
        assert registry.get_players_in_room("ABCD") == []
        assert not registry.unregister("alice")

    asyncio.run(scenario())


def test_register_moves_between_rooms(recording_connection):
    registry = MemoryConnectionRegistry()
    connection = recording_connection()
    registry.register("ABCD", "alice", connection)
    registry.register("WXYZ", "alice", connection)
    assert registry.get_players_in_room("ABCD") == []
    assert registry.get_players_in_room("WXYZ") == ["alice"]
