from enum import Enum


class GameState(Enum):
    LOBBY = "lobby"
    ROUND_SETUP = "round_setup"
    PLAYING = "playing"
    GUESSING = "guessing"
    COOLDOWN = "cooldown"  # display-only; rooms never store it
    ROUND_END = "round_end"
    GAME_OVER = "game_over"


class Team(Enum):
    A = "A"
    B = "B"


class PlayerRole(Enum):
    PLAYER = "player"
    JUDGE = "judge"


class TimerKind(Enum):
    """Kinds of delayed actions that re-enter the game machine"""
    COOLDOWN_EXPIRED = "cooldown_expired"
