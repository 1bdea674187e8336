"""
Room - the authoritative state of one buzzer duel.

A Room is a plain value: the store hands out copies and transitions build
the next Room from the previous one. Timestamps are epoch seconds (floats);
the wire format uses epoch milliseconds for instants and seconds for
playback positions.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from buzzduel.enums import GameState, Team
from buzzduel.player import Player
from buzzduel import config


@dataclass(frozen=True)
class Matchup:
    """The Team A / Team B pair allowed to buzz this round"""

    player_a: str
    player_b: str

    def includes(self, player_id: str) -> bool:
        return player_id in (self.player_a, self.player_b)

    def to_dict(self) -> dict:
        return {"playerA": self.player_a, "playerB": self.player_b}


def to_millis(ts: Optional[float]) -> Optional[float]:
    return ts * 1000 if ts is not None else None


class Room:
    def __init__(self, room_id: str, created_at: Optional[float] = None):
        # Identification
        self.id: str = room_id
        self.created_at: float = created_at if created_at is not None else time.time()

        # Membership
        self.players: Dict[str, Player] = {}
        self.judge_id: Optional[str] = None

        # Game progress
        self.game_state: GameState = GameState.LOBBY
        self.target_score: int = config.DEFAULT_TARGET_SCORE
        self.scores: Dict[Team, int] = {Team.A: 0, Team.B: 0}
        self.round_number: int = 0

        # Current round
        self.current_matchup: Optional[Matchup] = None
        self.current_media_ref: Optional[str] = None
        self.buzzed_player: Optional[str] = None
        self.buzz_time: Optional[float] = None
        self.cooldowns: Set[str] = set()

        # Playback clock
        self.playback_started_at: Optional[float] = None
        self.playback_paused_at: Optional[float] = None
        self.playback_position: float = 0.0

    # --- Helper Methods ---
    def copy(self) -> "Room":
        """Deep copy, so callers never alias stored state"""
        return copy.deepcopy(self)

    def get_player(self, player_id: str) -> Optional[Player]:
        return self.players.get(player_id)

    def team_players(self, team: Team) -> List[Player]:
        return [p for p in self.players.values() if p.team == team and not p.is_judge]

    def scores_dict(self) -> Dict[str, int]:
        return {team.value: score for team, score in self.scores.items()}

    # --- Playback Clock ---
    @property
    def is_playing(self) -> bool:
        return self.playback_started_at is not None and self.playback_paused_at is None

    def position_at(self, now: float) -> float:
        """Current playback position in seconds as of `now`"""
        if self.is_playing:
            # A scheduled start may still be in the future
            elapsed = max(0.0, now - self.playback_started_at)
            return self.playback_position + elapsed
        return self.playback_position

    def to_state(self, now: Optional[float] = None) -> dict:
        """
        Full snapshot sent as `room_state`. Carries the derived playback
        flag and position so a client that missed play/pause events can
        resync from this message alone.
        """
        if now is None:
            now = time.time()
        return {
            "id": self.id,
            "players": [p.to_dict() for p in self.players.values()],
            "judgeId": self.judge_id,
            "gameState": self.game_state.value,
            "targetScore": self.target_score,
            "scores": self.scores_dict(),
            "roundNumber": self.round_number,
            "currentMatchup": self.current_matchup.to_dict() if self.current_matchup else None,
            "currentMediaRef": self.current_media_ref,
            "buzzedPlayer": self.buzzed_player,
            "cooldowns": sorted(self.cooldowns),
            "createdAt": to_millis(self.created_at),
            "isPlaying": self.is_playing,
            "position": self.position_at(now),
            "startTime": to_millis(self.playback_started_at) if self.is_playing else None,
            "snapshotAt": to_millis(now),
        }

    def __repr__(self) -> str:
        return f"<Room {self.id} {self.game_state.value} A={self.scores[Team.A]} B={self.scores[Team.B]}>"


def state_position_at(state: dict, now: float) -> float:
    """
    Recompute the playback position from a `room_state` snapshot.

    Mirrors Room.position_at: the snapshot's position already includes the
    time elapsed up to `snapshotAt`, so only the time since then is added.
    """
    position = state["position"]
    if not state["isPlaying"]:
        return position
    started_at = state["startTime"] / 1000
    snapshot_at = state["snapshotAt"] / 1000
    return position + max(0.0, now - started_at) - max(0.0, snapshot_at - started_at)
