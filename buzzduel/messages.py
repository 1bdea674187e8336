"""
Wire messages. One JSON object per text frame, discriminated by "type".

Inbound frames are parsed into plain dicts; outbound messages are built by
the helpers below so every event has one canonical shape.
"""

import json
from typing import Dict, Optional

from buzzduel.player import Player
from buzzduel.room import Matchup

# ============================================================================
# CLIENT -> SERVER
# ============================================================================

def parse_client_message(data: str) -> Optional[dict]:
    """Returns the decoded message, or None if the frame is not a typed JSON object"""
    try:
        message = json.loads(data)
    except (TypeError, ValueError):
        return None
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        return None
    return message


# ============================================================================
# SERVER -> CLIENT
# ============================================================================

def error(message: str) -> dict:
    return {"type": "error", "message": message}


def pong() -> dict:
    return {"type": "pong"}


def room_created(room_id: str, player_id: str) -> dict:
    return {"type": "room_created", "roomId": room_id, "playerId": player_id}


def room_joined(room_id: str, player_id: str) -> dict:
    return {"type": "room_joined", "roomId": room_id, "playerId": player_id}


def room_state(state: dict) -> dict:
    return {"type": "room_state", "state": state}


def player_joined(player: Player) -> dict:
    return {"type": "player_joined", "player": player.to_dict()}


def player_left(player_id: str) -> dict:
    return {"type": "player_left", "playerId": player_id}


def player_updated(player: Player) -> dict:
    return {"type": "player_updated", "player": player.to_dict()}


def game_started(target_score: int) -> dict:
    return {"type": "game_started", "targetScore": target_score}


def round_setup(matchup: Matchup) -> dict:
    return {"type": "round_setup", "matchup": matchup.to_dict()}


def song_ready(media_ref: str) -> dict:
    return {"type": "song_ready", "mediaRef": media_ref}


def play(start_time_ms: float, seek_to: float) -> dict:
    return {"type": "play", "startTime": start_time_ms, "seekTo": seek_to}


def pause(position: float) -> dict:
    return {"type": "pause", "position": position}


def player_buzzed(player_id: str, player_name: str) -> dict:
    return {"type": "player_buzzed", "playerId": player_id, "playerName": player_name}


def guess_result(correct: bool, player_id: str) -> dict:
    return {"type": "guess_result", "correct": correct, "playerId": player_id}


def cooldown_start(player_id: str, ends_at_ms: float) -> dict:
    return {"type": "cooldown_start", "playerId": player_id, "endsAt": ends_at_ms}


def cooldown_end(player_id: str) -> dict:
    return {"type": "cooldown_end", "playerId": player_id}


def point_scored(team: str, scores: Dict[str, int]) -> dict:
    return {"type": "point_scored", "team": team, "scores": scores}


def round_end(winning_team: Optional[str], scores: Dict[str, int]) -> dict:
    return {"type": "round_end", "winningTeam": winning_team, "scores": scores}


def game_over(winner: str) -> dict:
    return {"type": "game_over", "winner": winner}
