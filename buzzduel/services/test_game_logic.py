"""
Test the pure game rules
"""

from buzzduel.enums import GameState, PlayerRole, Team
from buzzduel.player import Player
from buzzduel.room import Matchup, Room
from buzzduel.services import game_logic


def make_room() -> Room:
    room = Room("ABCD", created_at=0.0)
    room.players = {
        "j": Player("j", "Judge", role=PlayerRole.JUDGE),
        "a": Player("a", "Alice", team=Team.A),
        "b": Player("b", "Bob", team=Team.B),
        "c": Player("c", "Carol"),
    }
    room.judge_id = "j"
    return room


def test_extract_media_ref():
    """Watch, short and embed URLs and bare ids all give the video id"""
    expected = "dQw4w9WgXcQ"
    for url in (
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://www.youtube.com/watch?list=PL1&v=dQw4w9WgXcQ&t=42",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "  dQw4w9WgXcQ  ",
    ):
        assert game_logic.extract_media_ref(url) == expected

    assert game_logic.extract_media_ref("https://example.com/video") is None
    assert game_logic.extract_media_ref("") is None
    assert game_logic.extract_media_ref(None) is None


def test_room_codes_and_player_ids():
    for _ in range(50):
        code = game_logic.generate_room_code()
        assert len(code) == 4
        assert set(code) <= set(game_logic.ROOM_CODE_ALPHABET)
        assert "I" not in code and "O" not in code

    player_id = game_logic.generate_player_id()
    assert player_id.startswith("p_")
    assert len(player_id.split("_")[2]) == 7

    assert game_logic.normalize_room_code(" abcd ") == "ABCD"
    assert game_logic.normalize_room_code(None) == ""


def test_player_names_and_target_clamp():
    assert game_logic.clean_player_name(None) == "Player"
    assert game_logic.clean_player_name("   ") == "Player"
    assert game_logic.clean_player_name("x" * 50) == "x" * 32

    assert game_logic.clamp_target_score(7) == 7
    assert game_logic.clamp_target_score(0) == 1
    assert game_logic.clamp_target_score(-3) == 1
    assert game_logic.clamp_target_score(999) == 20
    assert game_logic.clamp_target_score("abc") == 5


def test_can_start_game():
    room = make_room()
    assert game_logic.can_start_game(room) is None

    room.players["b"].team = None
    assert game_logic.can_start_game(room) == "Team B needs at least 1 player"

    room = make_room()
    room.judge_id = None
    assert game_logic.can_start_game(room) == "A judge is required to start the game"


def test_can_player_buzz():
    room = make_room()
    room.current_matchup = Matchup("a", "b")
    assert not game_logic.can_player_buzz(room, "a")  # still in lobby

    room.game_state = GameState.PLAYING
    assert game_logic.can_player_buzz(room, "a")
    assert not game_logic.can_player_buzz(room, "c")  # not in matchup
    assert not game_logic.can_player_buzz(room, "j")

    room.cooldowns.add("a")
    assert not game_logic.can_player_buzz(room, "a")
    assert game_logic.can_player_buzz(room, "b")

    room.buzzed_player = "b"
    assert not game_logic.can_player_buzz(room, "b")


def test_validate_matchup():
    room = make_room()
    assert game_logic.validate_matchup(room, "a", "b") is None
    assert game_logic.validate_matchup(room, "b", "a") == "Bob is not on Team A"
    assert game_logic.validate_matchup(room, "a", "j") == "Judge is not on Team B"
    assert game_logic.validate_matchup(room, "a", "zz") == "Player zz not found"


def test_winner_and_cooldowns():
    room = make_room()
    room.target_score = 2
    room.scores = {Team.A: 1, Team.B: 1}
    assert game_logic.get_winner(room) is None
    room.scores[Team.B] = 2
    assert game_logic.get_winner(room) == Team.B

    room.current_matchup = Matchup("a", "b")
    room.cooldowns = {"a"}
    assert not game_logic.both_players_in_cooldown(room)
    room.cooldowns.add("b")
    assert game_logic.both_players_in_cooldown(room)
