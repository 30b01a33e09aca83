"""
Matchday configuration — loads .env and provides typed access to all settings.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).parent / ".env")


def _get(key: str, default: str | None = None) -> str:
    val = os.getenv(key, default)
    if val is None:
        raise ValueError(f"Missing required env var: {key}")
    return val


def _float(key: str, default: str) -> float:
    return float(_get(key, default))


def _int(key: str, default: str) -> int:
    return int(_get(key, default))


def _bool(key: str, default: str) -> bool:
    return _get(key, default).lower() in ("true", "1", "yes")


# --- Fixture source (API-Football) ---
API_FOOTBALL_KEY = _get("API_FOOTBALL_KEY", "")
API_FOOTBALL_BASE = _get("API_FOOTBALL_BASE", "https://v3.football.api-sports.io")
API_TIMEOUT_SECONDS = _float("API_TIMEOUT_SECONDS", "15")
EXTERNAL_ID_PREFIX = "apifootball_"

# --- Scheduling ---
FAST_POLL_SECONDS = _int("FAST_POLL_SECONDS", "60")
RECOVERY_SWEEP_MINUTES = _int("RECOVERY_SWEEP_MINUTES", "60")
REMINDER_POLL_SECONDS = _int("REMINDER_POLL_SECONDS", "60")

# --- Reconciliation windows ---
# Fast poll looks at SCHEDULED matches whose kickoff fell within this window
LIVE_WINDOW_HOURS = _float("LIVE_WINDOW_HOURS", "3")
# A match older than this should certainly be over
MAX_MATCH_DURATION_HOURS = _float("MAX_MATCH_DURATION_HOURS", "3")
# Matches older than this are presumed abandoned and never auto-fixed
RECOVERY_LOOKBACK_HOURS = _float("RECOVERY_LOOKBACK_HOURS", "24")
RECOVERY_FETCH_DELAY_SECONDS = _float("RECOVERY_FETCH_DELAY_SECONDS", "0.2")

# --- Groups ---
DEFAULT_STARTING_CREDITS = _int("DEFAULT_STARTING_CREDITS", "100")
DEFAULT_CREDITS_GOAL = _int("DEFAULT_CREDITS_GOAL", "1000")

# --- Telegram reminders ---
TELEGRAM_ENABLED = _bool("TELEGRAM_ENABLED", "false")
TELEGRAM_BOT_TOKEN = _get("TELEGRAM_BOT_TOKEN", "")
REMINDER_MINUTES = _int("REMINDER_MINUTES", "15")
REMINDER_RETENTION_HOURS = _float("REMINDER_RETENTION_HOURS", "1")

# --- Admin API ---
ADMIN_HOST = _get("ADMIN_HOST", "127.0.0.1")
ADMIN_PORT = _int("ADMIN_PORT", "5050")

# --- Paths ---
DB_PATH = _get("DB_PATH", "matchday.db")
LOG_PATH = _get("LOG_PATH", "matchday.log")
