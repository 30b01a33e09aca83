"""
Matchday notifications — Telegram messages to users who linked a chat.

Notifications are fire-and-forget in background threads so they never block
the reminder job.
"""

import logging
import threading
from datetime import datetime

import requests

import config

logger = logging.getLogger("matchday.notify")

OUTCOME_HINT = "HOME / DRAW / AWAY"


def _format_kickoff(kickoff: str) -> str:
    """ISO kickoff -> short UTC clock time."""
    if not kickoff:
        return ""
    try:
        return datetime.fromisoformat(kickoff).strftime("%H:%M UTC")
    except ValueError:
        return kickoff[:16]


def build_reminder_message(items: list[tuple]) -> str:
    """
    Plain-text reminder for one user. `items` holds (match, group_names) pairs
    for matches starting soon that still need a prediction.
    """
    lines = ["\u23f0 Matches starting soon", ""]
    for match, group_names in items:
        lines.append(f"\u26bd {match['home_team']} vs {match['away_team']}")
        kickoff = _format_kickoff(match["kickoff"])
        if kickoff:
            lines.append(f"Kick-off: {kickoff}")
        lines.append(f"No prediction yet in: {', '.join(group_names)}")
        lines.append("")
    lines.append(f"Place your bet ({OUTCOME_HINT}) before kick-off!")
    return "\n".join(lines)


def _send_telegram(chat_id: str, text: str):
    """Send a message via Telegram Bot API. Runs in background thread."""
    token = config.TELEGRAM_BOT_TOKEN
    if not token:
        logger.warning("Telegram enabled but TELEGRAM_BOT_TOKEN not set")
        return

    url = f"https://api.telegram.org/bot{token}/sendMessage"
    try:
        resp = requests.post(
            url,
            json={"chat_id": chat_id, "text": text},
            timeout=10,
        )
        if resp.status_code != 200:
            logger.warning("Telegram API error for chat %s: %d %s", chat_id,
                           resp.status_code, resp.text[:200])
        else:
            logger.debug("Telegram message sent to chat %s", chat_id)
    except requests.RequestException as e:
        logger.warning("Telegram send failed for chat %s: %s", chat_id, e)


def send_reminder(chat_id: str, items: list[tuple]) -> bool:
    """
    Queue a kickoff reminder. Returns False when Telegram is disabled and
    nothing was queued.
    """
    if not config.TELEGRAM_ENABLED:
        return False

    text = build_reminder_message(items)
    thread = threading.Thread(target=_send_telegram, args=(chat_id, text), daemon=True)
    thread.start()
    return True
