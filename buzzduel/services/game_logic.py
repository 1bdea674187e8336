"""
Pure game rules - no I/O, no clocks beyond what callers pass in.

These helpers answer questions about a Room; the game machine decides
what to do with the answers.
"""

import random
import re
import string
import time
from typing import Optional

from buzzduel.enums import GameState, Team
from buzzduel.room import Room
from buzzduel import config

# I and O are left out so codes read unambiguously out loud
ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ"

_MEDIA_PATTERNS = [
    re.compile(r"(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/|youtube\.com/embed/)([A-Za-z0-9_-]{11})"),
    re.compile(r"^([A-Za-z0-9_-]{11})$"),
]

# States in which a round is live and can be skipped
ACTIVE_ROUND_STATES = (GameState.PLAYING, GameState.GUESSING)


def extract_media_ref(url: str) -> Optional[str]:
    """
    Extract a YouTube video id from a watch, short or embed URL, or accept
    a bare 11 character id. Returns None when nothing matches.
    """
    if not isinstance(url, str):
        return None
    url = url.strip()
    for pattern in _MEDIA_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    return None


def generate_room_code(length: int = config.ROOM_CODE_LENGTH) -> str:
    return "".join(random.choice(ROOM_CODE_ALPHABET) for _ in range(length))


def generate_player_id() -> str:
    suffix = "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(7))
    return f"p_{int(time.time() * 1000)}_{suffix}"


def normalize_room_code(room_id: Optional[str]) -> str:
    return (room_id or "").strip().upper()


def clean_player_name(name) -> str:
    name = str(name).strip() if name is not None else ""
    return name[:config.MAX_PLAYER_NAME_LENGTH] or "Player"


def clamp_target_score(value) -> int:
    """Out-of-range targets are clamped, never rejected"""
    try:
        score = int(value)
    except (TypeError, ValueError):
        score = config.DEFAULT_TARGET_SCORE
    return max(config.MIN_TARGET_SCORE, min(config.MAX_TARGET_SCORE, score))


def can_start_game(room: Room) -> Optional[str]:
    """Returns an error message, or None if the game can start"""
    if not room.team_players(Team.A):
        return "Team A needs at least 1 player"
    if not room.team_players(Team.B):
        return "Team B needs at least 1 player"
    if not room.judge_id or room.judge_id not in room.players:
        return "A judge is required to start the game"
    return None


def can_player_buzz(room: Room, player_id: str) -> bool:
    if room.game_state != GameState.PLAYING:
        return False
    if not room.current_matchup or not room.current_matchup.includes(player_id):
        return False
    if player_id in room.cooldowns:
        return False
    return room.buzzed_player is None


def is_judge(room: Room, player_id: str) -> bool:
    return room.judge_id is not None and room.judge_id == player_id


def get_player_team(room: Room, player_id: str) -> Optional[Team]:
    player = room.get_player(player_id)
    return player.team if player else None


def validate_matchup(room: Room, player_a: str, player_b: str) -> Optional[str]:
    """Returns an error message, or None if the pair is a valid matchup"""
    p_a = room.get_player(player_a) if player_a else None
    p_b = room.get_player(player_b) if player_b else None
    if not p_a:
        return f"Player {player_a} not found"
    if not p_b:
        return f"Player {player_b} not found"
    if p_a.is_judge or p_a.team != Team.A:
        return f"{p_a.name} is not on Team A"
    if p_b.is_judge or p_b.team != Team.B:
        return f"{p_b.name} is not on Team B"
    return None


def get_winner(room: Room) -> Optional[Team]:
    for team in (Team.A, Team.B):
        if room.scores[team] >= room.target_score:
            return team
    return None


def both_players_in_cooldown(room: Room) -> bool:
    matchup = room.current_matchup
    if not matchup:
        return False
    return matchup.player_a in room.cooldowns and matchup.player_b in room.cooldowns
