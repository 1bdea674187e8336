import os

# Gameplay timing (seconds). Override with BUZZDUEL_* environment variables.
COOLDOWN_SEC = float(os.environ.get("BUZZDUEL_COOLDOWN_SEC", "5"))
PLAY_START_DELAY_SEC = float(os.environ.get("BUZZDUEL_PLAY_START_DELAY_SEC", "0.5"))
RESUME_START_DELAY_SEC = float(os.environ.get("BUZZDUEL_RESUME_START_DELAY_SEC", "0.3"))

# Scoring
DEFAULT_TARGET_SCORE = int(os.environ.get("BUZZDUEL_DEFAULT_TARGET_SCORE", "5"))
MIN_TARGET_SCORE = 1
MAX_TARGET_SCORE = 20

# Room codes
ROOM_CODE_LENGTH = int(os.environ.get("BUZZDUEL_ROOM_CODE_LENGTH", "4"))
ROOM_CODE_ATTEMPTS = 100
MAX_PLAYER_NAME_LENGTH = 32

# Server
LOG_DIR = os.environ.get("BUZZDUEL_LOG_DIR", "logs")
LOG_LEVEL = os.environ.get("BUZZDUEL_LOG_LEVEL", "INFO")
HOST = os.environ.get("BUZZDUEL_HOST", "0.0.0.0")
PORT = int(os.environ.get("BUZZDUEL_PORT", "8000"))
ALLOWED_ORIGINS = [o.strip() for o in os.environ.get("BUZZDUEL_ALLOWED_ORIGINS", "*").split(",") if o.strip()]
