"""
GameMachine - applies player and timer actions to rooms.

The machine holds no game state of its own. Every action follows the same
path:
- validate and build the next Room inside one RoomStore.update() call
  (a failed check raises ActionRejected, so nothing is written)
- after the commit, emit events through the ConnectionRegistry
- optionally schedule a TimerAction that comes back through handle_timer()

Actions for one room run one at a time under a per-room asyncio.Lock, so
events reach clients in commit order. Different rooms never share a lock.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from buzzduel import config
from buzzduel import messages
from buzzduel.enums import GameState, PlayerRole, Team, TimerKind
from buzzduel.player import Player
from buzzduel.room import Matchup, Room, to_millis
from buzzduel.services import game_logic
from buzzduel.services.connection_registry import ConnectionRegistry
from buzzduel.services.exceptions import (
    ActionRejected,
    RoomAlreadyExists,
    RoomCodeExhausted,
    RoomNotFound,
)
from buzzduel.services.room_store import RoomStore, RoomUpdater
from buzzduel.services.timer_service import (
    TimerAction,
    TimerService,
    cooldown_timer_id,
    cooldown_timer_prefix,
    room_timer_prefix,
)

logger = logging.getLogger(__name__)


def _end_round_without_winner(room: Room, now: float) -> Tuple[bool, Optional[float]]:
    """
    Move a live round to round_end with nobody scoring.

    Returns (changed, paused_position). A room already in round_end is left
    alone, which keeps the transition idempotent when a wrong answer and a
    cooldown expiry both decide to end the round. paused_position is set
    when the clock was running and had to be stopped.
    """
    if room.game_state == GameState.ROUND_END:
        return False, None

    paused_position = None
    if room.is_playing:
        paused_position = room.position_at(now)
        room.playback_position = paused_position
        room.playback_paused_at = now

    room.game_state = GameState.ROUND_END
    room.buzzed_player = None
    room.cooldowns.clear()
    return True, paused_position


def _reset_round_fields(room: Room) -> None:
    room.current_matchup = None
    room.current_media_ref = None
    room.buzzed_player = None
    room.buzz_time = None
    room.cooldowns.clear()
    room.playback_started_at = None
    room.playback_paused_at = None
    room.playback_position = 0.0


class GameMachine:
    """Validates actions against room state and commits transitions"""

    def __init__(self, room_store: RoomStore, connections: ConnectionRegistry, timers: TimerService, *,
                 cooldown_sec: float = config.COOLDOWN_SEC,
                 play_delay_sec: float = config.PLAY_START_DELAY_SEC,
                 resume_delay_sec: float = config.RESUME_START_DELAY_SEC,
                 clock: Optional[Callable[[], float]] = None):
        self.room_store = room_store
        self.connections = connections
        self.timers = timers
        self.cooldown_sec = cooldown_sec
        self.play_delay_sec = play_delay_sec
        self.resume_delay_sec = resume_delay_sec
        self._clock = clock or time.time
        self._room_locks: Dict[str, asyncio.Lock] = {}  # room_id -> action lock

        self.timers.set_handler(self.handle_timer)

        self._handlers = {
            "select_team": self._handle_select_team,
            "start_game": self._handle_start_game,
            "set_song": self._handle_set_song,
            "set_matchup": self._handle_set_matchup,
            "play_song": self._handle_play_song,
            "pause_song": self._handle_pause_song,
            "buzz": self._handle_buzz,
            "judge_decision": self._handle_judge_decision,
            "skip_round": self._handle_skip_round,
            "next_round": self._handle_next_round,
            "new_game": self._handle_new_game,
        }

    # ============================================================================
    # INTERNAL HELPERS
    # ============================================================================

    async def _room_lock(self, room_id: str) -> Optional[asyncio.Lock]:
        """Lock for a live room, or None if no such room exists"""
        lock = self._room_locks.get(room_id)
        if lock is None:
            if not await self.room_store.exists(room_id):
                return None
            lock = asyncio.Lock()
            self._room_locks[room_id] = lock
        return lock

    async def _update(self, room_id: str, player_id: Optional[str], updater: RoomUpdater) -> Optional[Room]:
        """
        Commit a transition. Returns the committed room, or None if the room is
        gone or the action was rejected (the requester gets an error event).
        """
        try:
            return await self.room_store.update(room_id, updater)
        except ActionRejected as e:
            logger.warning(f"Rejected action from {player_id} in room {room_id}: {e.message}")
            if player_id:
                await self.connections.send(player_id, messages.error(e.message))
            return None
        except RoomNotFound:
            logger.warning(f"Action from {player_id} for missing room {room_id}")
            self._room_locks.pop(room_id, None)
            return None

    @staticmethod
    def _require_judge(room: Room, player_id: str, message: str) -> None:
        if not game_logic.is_judge(room, player_id):
            raise ActionRejected(message)

    async def _broadcast_state(self, room: Room) -> None:
        await self.connections.broadcast(room.id, messages.room_state(room.to_state(self._clock())))

    # ============================================================================
    # ROOM MEMBERSHIP (side channel)
    # ============================================================================

    async def create_room_for_player(self, player_name: str) -> Tuple[str, str]:
        """
        Create a lobby room with the requester as its first player.
        Returns (room_id, player_id).
        """
        player_id = game_logic.generate_player_id()
        player = Player(player_id, game_logic.clean_player_name(player_name))

        for _ in range(config.ROOM_CODE_ATTEMPTS):
            room_id = game_logic.generate_room_code()
            if await self.room_store.exists(room_id):
                continue
            room = Room(room_id, created_at=self._clock())
            room.players[player_id] = player
            try:
                await self.room_store.create(room)
            except RoomAlreadyExists:
                continue
            logger.info(f"Room created: {room_id} by {player.name} ({player_id})")
            return room_id, player_id

        raise RoomCodeExhausted("Failed to generate unique room code")

    async def join_room(self, room_id: str, player_name: str) -> Optional[str]:
        """Add a new player to an existing room. Returns the player id, or None if the room is unknown."""
        room_id = game_logic.normalize_room_code(room_id)
        player_id = game_logic.generate_player_id()
        player = Player(player_id, game_logic.clean_player_name(player_name))

        def apply(room: Room) -> Room:
            room.players[player_id] = player
            return room

        lock = await self._room_lock(room_id)
        if lock is None:
            return None
        async with lock:
            room = await self._update(room_id, None, apply)
            if room is None:
                return None
            logger.info(f"Player joined: {player.name} ({player_id}) -> room {room_id}")
            await self.connections.broadcast_except(room_id, player_id, messages.player_joined(player))
        return player_id

    # ============================================================================
    # CONNECTION LIFECYCLE
    # ============================================================================

    async def handle_connect(self, player_id: str, room_id: str) -> None:
        """Mark the player connected and push a full resync to them alone"""

        def apply(room: Room) -> Room:
            player = room.get_player(player_id)
            if player:
                player.connected = True
            return room

        lock = await self._room_lock(room_id)
        if lock is None:
            return
        async with lock:
            room = await self._update(room_id, None, apply)
            if room is None:
                return
            player = room.get_player(player_id)
            if player is None:
                logger.warning(f"Connect for unknown player {player_id} in room {room_id}")
                return
            logger.info(f"Player connected: {player.name} ({player_id}) in room {room_id}")
            await self.connections.send(player_id, messages.room_state(room.to_state(self._clock())))
            await self.connections.broadcast_except(room_id, player_id, messages.player_updated(player))

    async def handle_disconnect(self, player_id: str, room_id: Optional[str] = None) -> None:
        """
        Mark the player disconnected. Team, role and scores are untouched so
        the game carries on across transient drops.
        """
        room_id = room_id or self.connections.get_room_id(player_id)
        if not room_id:
            return

        def apply(room: Room) -> Room:
            player = room.get_player(player_id)
            if player:
                player.connected = False
            return room

        lock = await self._room_lock(room_id)
        if lock is None:
            return
        async with lock:
            room = await self._update(room_id, None, apply)
            if room is None or player_id not in room.players:
                return
            logger.info(f"Player disconnected: {player_id} from room {room_id}")
            await self.connections.broadcast_except(room_id, player_id, messages.player_left(player_id))
            await self.connections.broadcast_except(
                room_id, player_id, messages.room_state(room.to_state(self._clock()))
            )

    # ============================================================================
    # MESSAGE DISPATCH
    # ============================================================================

    async def handle_message(self, player_id: str, message: dict) -> None:
        message_type = message.get("type")

        if message_type == "ping":
            await self.connections.send(player_id, messages.pong())
            return

        if message_type == "create_room":
            room_id, new_player_id = await self.create_room_for_player(message.get("playerName"))
            await self.connections.send(player_id, messages.room_created(room_id, new_player_id))
            return

        if message_type == "join_room":
            room_id = game_logic.normalize_room_code(message.get("roomId"))
            new_player_id = await self.join_room(room_id, message.get("playerName"))
            if new_player_id is None:
                await self.connections.send(player_id, messages.error("Room not found"))
            else:
                await self.connections.send(player_id, messages.room_joined(room_id, new_player_id))
            return

        handler = self._handlers.get(message_type)
        if handler is None:
            logger.warning(f"Unknown message type from {player_id}: {message_type}")
            await self.connections.send(player_id, messages.error(f"Unknown message type: {message_type}"))
            return

        room_id = self.connections.get_room_id(player_id)
        if not room_id:
            logger.warning(f"Message {message_type} from {player_id} who is not in a room")
            return

        lock = await self._room_lock(room_id)
        if lock is None:
            logger.warning(f"Message {message_type} from {player_id} for missing room {room_id}")
            return
        async with lock:
            await handler(room_id, player_id, message)

    async def handle_timer(self, action: TimerAction) -> None:
        """Entry point for fired timers. Never raises for a vanished room."""
        if action.kind != TimerKind.COOLDOWN_EXPIRED:
            logger.warning(f"Unknown timer action: {action.kind}")
            return
        lock = await self._room_lock(action.room_id)
        if lock is None:
            logger.debug(f"Timer for missing room {action.room_id} dropped")
            return
        async with lock:
            await self._handle_cooldown_expired(action)

    # ============================================================================
    # LOBBY
    # ============================================================================

    async def _handle_select_team(self, room_id: str, player_id: str, message: dict) -> None:
        choice = message.get("team")
        if choice not in ("A", "B", "judge"):
            await self.connections.send(player_id, messages.error("Invalid team"))
            return
        changed = False

        def apply(room: Room) -> Room:
            nonlocal changed
            player = room.get_player(player_id)
            if player is None:
                raise ActionRejected("Player not in room")
            if room.game_state != GameState.LOBBY:
                raise ActionRejected("Cannot change team during game")

            if choice == "judge":
                if player.is_judge:
                    return room
                # Only one judge: demote the previous one to an unassigned player
                if room.judge_id and room.judge_id != player_id:
                    old_judge = room.get_player(room.judge_id)
                    if old_judge:
                        old_judge.role = PlayerRole.PLAYER
                        old_judge.team = None
                player.role = PlayerRole.JUDGE
                player.team = None
                room.judge_id = player_id
            else:
                team = Team(choice)
                if not player.is_judge and player.team == team:
                    return room
                if room.judge_id == player_id:
                    room.judge_id = None
                player.role = PlayerRole.PLAYER
                player.team = team
            changed = True
            return room

        room = await self._update(room_id, player_id, apply)
        if room is None or not changed:
            return
        logger.info(f"Team selected in room {room_id}: {player_id} -> {choice}")
        await self._broadcast_state(room)

    async def _handle_start_game(self, room_id: str, player_id: str, message: dict) -> None:
        target_score = game_logic.clamp_target_score(message.get("targetScore"))

        def apply(room: Room) -> Room:
            self._require_judge(room, player_id, "Only the judge can start the game")
            if room.game_state != GameState.LOBBY:
                raise ActionRejected("Game already in progress")
            problem = game_logic.can_start_game(room)
            if problem:
                raise ActionRejected(problem)

            room.game_state = GameState.ROUND_SETUP
            room.target_score = target_score
            room.scores = {Team.A: 0, Team.B: 0}
            room.round_number += 1
            _reset_round_fields(room)
            return room

        room = await self._update(room_id, player_id, apply)
        if room is None:
            return
        logger.info(f"Game started in room {room_id} | target score {target_score}")
        await self.connections.broadcast(room_id, messages.game_started(target_score))
        await self._broadcast_state(room)

    # ============================================================================
    # ROUND SETUP
    # ============================================================================

    async def _handle_set_song(self, room_id: str, player_id: str, message: dict) -> None:
        media_url = message.get("mediaUrl")

        def apply(room: Room) -> Room:
            self._require_judge(room, player_id, "Only the judge can set the song")
            if room.game_state != GameState.ROUND_SETUP:
                raise ActionRejected("Can only set song during round setup")
            media_ref = game_logic.extract_media_ref(media_url)
            if not media_ref:
                raise ActionRejected("Invalid media URL")
            room.current_media_ref = media_ref
            return room

        room = await self._update(room_id, player_id, apply)
        if room is None:
            return
        logger.info(f"Song set in room {room_id}: {room.current_media_ref}")
        await self.connections.broadcast(room_id, messages.song_ready(room.current_media_ref))
        await self._broadcast_state(room)

    async def _handle_set_matchup(self, room_id: str, player_id: str, message: dict) -> None:
        player_a = message.get("playerA")
        player_b = message.get("playerB")

        def apply(room: Room) -> Room:
            self._require_judge(room, player_id, "Only the judge can set the matchup")
            if room.game_state != GameState.ROUND_SETUP:
                raise ActionRejected("Can only set matchup during round setup")
            problem = game_logic.validate_matchup(room, player_a, player_b)
            if problem:
                raise ActionRejected(problem)
            room.current_matchup = Matchup(player_a, player_b)
            return room

        room = await self._update(room_id, player_id, apply)
        if room is None:
            return
        logger.info(f"Matchup set in room {room_id}: {player_a} vs {player_b}")
        await self.connections.broadcast(room_id, messages.round_setup(room.current_matchup))
        await self._broadcast_state(room)

    # ============================================================================
    # PLAYBACK
    # ============================================================================

    async def _handle_play_song(self, room_id: str, player_id: str, message: dict) -> None:
        now = self._clock()
        start_at = now + self.play_delay_sec

        def apply(room: Room) -> Room:
            self._require_judge(room, player_id, "Only the judge can control playback")
            if room.game_state == GameState.ROUND_SETUP:
                if not room.current_media_ref:
                    raise ActionRejected("No song selected")
                if not room.current_matchup:
                    raise ActionRejected("No matchup selected")
                # Fresh start of the round
                room.game_state = GameState.PLAYING
                room.buzzed_player = None
                room.buzz_time = None
                room.cooldowns.clear()
                room.playback_position = 0.0
            elif room.game_state == GameState.PLAYING:
                if room.is_playing:
                    raise ActionRejected("Song is already playing")
                # Resume from the frozen position; cooldowns keep running
            elif room.game_state == GameState.GUESSING:
                raise ActionRejected("A player is answering")
            else:
                raise ActionRejected("Cannot play in current state")

            room.playback_started_at = start_at
            room.playback_paused_at = None
            return room

        room = await self._update(room_id, player_id, apply)
        if room is None:
            return
        logger.info(f"Play in room {room_id} from {room.playback_position:.2f}s")
        await self.connections.broadcast(room_id, messages.play(to_millis(start_at), room.playback_position))
        await self._broadcast_state(room)

    async def _handle_pause_song(self, room_id: str, player_id: str, message: dict) -> None:
        now = self._clock()

        def apply(room: Room) -> Room:
            self._require_judge(room, player_id, "Only the judge can control playback")
            if not room.is_playing:
                raise ActionRejected("Nothing is playing")
            room.playback_position = room.position_at(now)
            room.playback_paused_at = now
            return room

        room = await self._update(room_id, player_id, apply)
        if room is None:
            return
        logger.info(f"Pause in room {room_id} at {room.playback_position:.2f}s")
        await self.connections.broadcast(room_id, messages.pause(room.playback_position))

    # ============================================================================
    # BUZZING
    # ============================================================================

    async def _handle_buzz(self, room_id: str, player_id: str, message: dict) -> None:
        """
        First valid buzz wins. The eligibility check and the write happen in
        one store update; afterwards the room is re-read and only the player
        whose id is actually stored as buzzer gets announced. Losing buzzes are
        dropped without an error.
        """
        room = await self.room_store.get(room_id)
        if room is None or not game_logic.can_player_buzz(room, player_id):
            logger.debug(f"Ignored buzz from {player_id} in room {room_id}")
            return

        now = self._clock()
        accepted = False

        def apply(room: Room) -> Room:
            nonlocal accepted
            if not game_logic.can_player_buzz(room, player_id):
                return room
            room.game_state = GameState.GUESSING
            room.buzzed_player = player_id
            room.buzz_time = now
            room.playback_position = room.position_at(now)
            room.playback_paused_at = now
            accepted = True
            return room

        if await self._update(room_id, player_id, apply) is None:
            return

        room = await self.room_store.get(room_id)
        if not accepted or room is None or room.buzzed_player != player_id:
            logger.debug(f"Buzz race lost by {player_id} in room {room_id}")
            return

        player = room.get_player(player_id)
        logger.info(f"Buzz accepted in room {room_id}: {player.name} ({player_id}) at {room.playback_position:.2f}s")
        await self.connections.broadcast(room_id, messages.pause(room.playback_position))
        await self.connections.broadcast(room_id, messages.player_buzzed(player_id, player.name))
        await self._broadcast_state(room)

    # ============================================================================
    # JUDGING
    # ============================================================================

    async def _handle_judge_decision(self, room_id: str, player_id: str, message: dict) -> None:
        correct = message.get("correct")
        if not isinstance(correct, bool):
            await self.connections.send(player_id, messages.error("Decision must be true or false"))
            return
        now = self._clock()
        resume_at = now + self.resume_delay_sec
        outcome = {}

        def apply(room: Room) -> Room:
            self._require_judge(room, player_id, "Only the judge can make decisions")
            if room.game_state != GameState.GUESSING or not room.buzzed_player:
                raise ActionRejected("No player is currently guessing")

            buzzer_id = room.buzzed_player
            team = game_logic.get_player_team(room, buzzer_id)
            outcome["buzzer"] = buzzer_id
            outcome["team"] = team
            room.buzzed_player = None

            if correct and team:
                room.scores[team] += 1
                winner = game_logic.get_winner(room)
                outcome["winner"] = winner
                room.game_state = GameState.GAME_OVER if winner else GameState.ROUND_END
                return room

            room.cooldowns.add(buzzer_id)
            if game_logic.both_players_in_cooldown(room):
                # Nobody left who may buzz: the round ends here, clip stays paused
                outcome["forced_end"] = _end_round_without_winner(room, now)[0]
            else:
                room.game_state = GameState.PLAYING
                room.playback_started_at = resume_at
                room.playback_paused_at = None
            return room

        room = await self._update(room_id, player_id, apply)
        if room is None:
            return

        buzzer_id = outcome["buzzer"]
        team = outcome["team"]
        scores = room.scores_dict()

        if correct and team:
            logger.info(f"Correct answer in room {room_id} by {buzzer_id} | scores {scores}")
            await self.connections.broadcast(room_id, messages.guess_result(True, buzzer_id))
            await self.connections.broadcast(room_id, messages.point_scored(team.value, scores))
            winner = outcome.get("winner")
            if winner:
                logger.info(f"GAME OVER in room {room_id} | winner Team {winner.value}")
                await self.connections.broadcast(room_id, messages.game_over(winner.value))
            else:
                await self.connections.broadcast(room_id, messages.round_end(team.value, scores))
            await self._broadcast_state(room)
            return

        logger.info(f"Wrong answer in room {room_id} by {buzzer_id}")
        round_over = room.game_state == GameState.ROUND_END
        await self.connections.broadcast(room_id, messages.guess_result(False, buzzer_id))
        if not round_over:
            await self.connections.broadcast(
                room_id, messages.play(to_millis(resume_at), room.playback_position)
            )
        await self.connections.broadcast(
            room_id, messages.cooldown_start(buzzer_id, to_millis(now + self.cooldown_sec))
        )

        if round_over:
            self.timers.cancel_all(cooldown_timer_prefix(room_id))
            if outcome.get("forced_end"):
                logger.info(f"Both players in cooldown, round over in room {room_id}")
                await self.connections.broadcast(room_id, messages.round_end(None, scores))
        else:
            self.timers.schedule(
                cooldown_timer_id(room_id, buzzer_id),
                self.cooldown_sec,
                TimerAction(TimerKind.COOLDOWN_EXPIRED, room_id, buzzer_id, room.round_number),
            )
        await self._broadcast_state(room)

    async def _handle_cooldown_expired(self, action: TimerAction) -> None:
        room_id = action.room_id
        player_id = action.player_id
        now = self._clock()
        result = {"expired": False, "forced_end": False, "paused_at": None}

        def apply(room: Room) -> Room:
            if room.round_number != action.round_number or player_id not in room.cooldowns:
                return room
            room.cooldowns.discard(player_id)
            result["expired"] = True
            # Membership changes independently of judge actions, so look again
            if room.game_state == GameState.PLAYING and game_logic.both_players_in_cooldown(room):
                result["forced_end"], result["paused_at"] = _end_round_without_winner(room, now)
            return room

        room = await self._update(room_id, None, apply)
        if room is None:
            return
        if not result["expired"]:
            logger.debug(f"Stale cooldown timer for {player_id} in room {room_id}")
            return

        logger.info(f"Cooldown ended in room {room_id}: {player_id}")
        await self.connections.broadcast(room_id, messages.cooldown_end(player_id))
        if result["forced_end"]:
            self.timers.cancel_all(cooldown_timer_prefix(room_id))
            if result["paused_at"] is not None:
                await self.connections.broadcast(room_id, messages.pause(result["paused_at"]))
            await self.connections.broadcast(room_id, messages.round_end(None, room.scores_dict()))
        await self._broadcast_state(room)

    # ============================================================================
    # ROUND / GAME RESETS
    # ============================================================================

    async def _handle_skip_round(self, room_id: str, player_id: str, message: dict) -> None:
        now = self._clock()

        def apply(room: Room) -> Room:
            self._require_judge(room, player_id, "Only the judge can skip a round")
            if room.game_state not in game_logic.ACTIVE_ROUND_STATES:
                raise ActionRejected("Cannot skip round in current state")
            _end_round_without_winner(room, now)
            return room

        room = await self._update(room_id, player_id, apply)
        if room is None:
            return
        self.timers.cancel_all(cooldown_timer_prefix(room_id))
        logger.info(f"Round skipped in room {room_id}")
        await self.connections.broadcast(room_id, messages.pause(room.playback_position))
        await self.connections.broadcast(room_id, messages.round_end(None, room.scores_dict()))
        await self._broadcast_state(room)

    async def _handle_next_round(self, room_id: str, player_id: str, message: dict) -> None:

        def apply(room: Room) -> Room:
            self._require_judge(room, player_id, "Only the judge can proceed to next round")
            if room.game_state != GameState.ROUND_END:
                raise ActionRejected("Round is not over")
            room.game_state = GameState.ROUND_SETUP
            room.round_number += 1
            _reset_round_fields(room)
            return room

        room = await self._update(room_id, player_id, apply)
        if room is None:
            return
        self.timers.cancel_all(cooldown_timer_prefix(room_id))
        logger.info(f"Round {room.round_number} setup in room {room_id}")
        await self._broadcast_state(room)

    async def _handle_new_game(self, room_id: str, player_id: str, message: dict) -> None:

        def apply(room: Room) -> Room:
            self._require_judge(room, player_id, "Only the judge can start a new game")
            room.game_state = GameState.LOBBY
            room.scores = {Team.A: 0, Team.B: 0}
            room.round_number += 1
            _reset_round_fields(room)
            return room

        room = await self._update(room_id, player_id, apply)
        if room is None:
            return
        self.timers.cancel_all(room_timer_prefix(room_id))
        logger.info(f"New game in room {room_id}")
        await self._broadcast_state(room)

    def __repr__(self):
        return f"<GameMachine: {len(self._room_locks)} room lock(s)>"
