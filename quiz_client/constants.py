"""
Quiz Client Constants and Configuration
Every value can be overridden from the environment.
"""
import os


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


def _env_delays(name: str, default: tuple[float, ...]) -> tuple[float, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return tuple(float(part) for part in raw.split(",") if part.strip())
    except ValueError:
        return default


# Session backend
SERVER_URL: str = os.getenv("QUIZ_SERVER_URL", "http://localhost:5000")
HUB_PATH: str = os.getenv("QUIZ_HUB_PATH", "/gameHub")
SKIP_NEGOTIATION: bool = os.getenv("QUIZ_SKIP_NEGOTIATION", "0") in ("1", "true", "yes")

# Connection policy (seconds)
START_ATTEMPTS: int = _env_int("QUIZ_START_ATTEMPTS", 3)
START_BACKOFF_SECONDS: float = _env_float("QUIZ_START_BACKOFF", 1.0)
RECONNECT_DELAYS: tuple[float, ...] = _env_delays("QUIZ_RECONNECT_DELAYS", (0.0, 2.0, 10.0, 30.0))
KEEPALIVE_INTERVAL_SECONDS: float = _env_float("QUIZ_KEEPALIVE_INTERVAL", 15.0)
SERVER_TIMEOUT_SECONDS: float = _env_float("QUIZ_SERVER_TIMEOUT", 30.0)
INVOKE_TIMEOUT_SECONDS: float = _env_float("QUIZ_INVOKE_TIMEOUT", 15.0)

# Local session store
# Use an async driver; plain sqlite:// URLs are upgraded in database.py
DATABASE_URL: str = os.getenv("QUIZ_SESSION_DB_URL", "sqlite+aiosqlite:///quiz_sessions.db")
SESSION_KEY_PREFIX: str = "quiz_player_session"
SESSION_RETENTION_SECONDS: float = _env_float("QUIZ_SESSION_RETENTION", 3600.0)

# Join handshake
JOIN_MAX_ATTEMPTS: int = _env_int("QUIZ_JOIN_ATTEMPTS", 5)
JOIN_BACKOFF_SECONDS: float = _env_float("QUIZ_JOIN_BACKOFF", 0.3)
INITIALIZING_TIMEOUT_SECONDS: float = _env_float("QUIZ_INITIALIZING_TIMEOUT", 5.0)

# Game timing
LOBBY_COUNTDOWN_SECONDS: int = _env_int("QUIZ_LOBBY_COUNTDOWN", 5)
QUESTION_TIME_LIMIT_SECONDS: int = _env_int("QUIZ_QUESTION_TIME_LIMIT", 20)
TICK_SECONDS: float = 1.0
WARNING_WINDOW_SECONDS: int = 5
FINAL_RESULTS_GRACE_SECONDS: float = _env_float("QUIZ_FINAL_RESULTS_GRACE", 4.0)
ERROR_REDIRECT_DELAY_SECONDS: float = _env_float("QUIZ_ERROR_REDIRECT_DELAY", 2.0)

# Index base of question numbers sent by the backend (0 or 1)
SERVER_INDEX_BASE: int = _env_int("QUIZ_SERVER_INDEX_BASE", 1)

# Display
TOP_PLAYERS_LIMIT: int = 5
PODIUM_SIZE: int = 3
MAX_ROOM_CODE_LENGTH: int = 50
MAX_PLAYER_NAME_LENGTH: int = 50

# Logging
LOG_LEVEL: str = os.getenv("QUIZ_CLIENT_LOG_LEVEL", "INFO")
LOG_FILE: str | None = os.getenv("QUIZ_CLIENT_LOG_FILE") or None
