"""
Matchday kickoff reminders — nudges linked Telegram users who have not yet
predicted a match that starts within their chosen lead time.

A reminder is claimed in the store (sent_reminders) under the key
"<match>-<user>-<minutes>" before it is sent, so overlapping passes or a
second process never send it twice. Claims are pruned hourly; by then the
match has left the reminder window for good.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone, timedelta

import config
import models
import notify

logger = logging.getLogger("matchday.reminders")

# half-width of the kickoff window checked around now + lead time
WINDOW = timedelta(minutes=1)


def reminder_key(match_id: int, user_id: str, minutes: int) -> str:
    return f"{match_id}-{user_id}-{minutes}"


def _pending_for_user(conn, user_id: str, minutes: int, matches, group_names,
                      sent_at: str) -> list[tuple]:
    """Matches this user still has to bet on, claimed for sending."""
    user_groups = set(models.get_user_group_ids(conn, user_id))
    if not user_groups:
        return []

    items = []
    for match in matches:
        relevant = models.get_match_group_ids(conn, match["id"]) & user_groups
        if not relevant:
            continue
        missing = relevant - models.get_bet_group_ids(conn, user_id, match["id"], relevant)
        if not missing:
            continue
        if not models.record_reminder(conn, reminder_key(match["id"], user_id, minutes), sent_at):
            continue
        items.append((match, sorted(group_names.get(g, f"#{g}") for g in missing)))
    return items


def process_reminders(now: datetime | None = None) -> int:
    """Send due reminders. Returns the number of users notified."""
    now = now or datetime.now(timezone.utc)
    sent_at = models.utc_iso(now)
    notified = 0

    with models.get_db() as conn:
        recipients = models.get_reminder_recipients(conn)
    if not recipients:
        return 0

    by_minutes = defaultdict(list)
    for link in recipients:
        by_minutes[link["reminder_minutes"] or config.REMINDER_MINUTES].append(link)

    for minutes, links in by_minutes.items():
        target = now + timedelta(minutes=minutes)
        with models.get_db() as conn:
            matches = models.get_matches_starting_between(
                conn, models.utc_iso(target - WINDOW), models.utc_iso(target + WINDOW)
            )
            if not matches:
                continue

            group_ids = set()
            for match in matches:
                group_ids |= models.get_match_group_ids(conn, match["id"])
            group_names = {gid: g["name"]
                           for gid, g in models.get_groups_by_id(conn, group_ids).items()}

            outgoing = []
            for link in links:
                items = _pending_for_user(conn, link["user_id"], minutes, matches,
                                          group_names, sent_at)
                if items:
                    outgoing.append((link, items))

        # claims are committed before anything is sent
        for link, items in outgoing:
            if notify.send_reminder(link["chat_id"], items):
                notified += 1
                logger.info("Reminder sent to user %s for %d match(es) (%d min)",
                            link["user_id"], len(items), minutes)
            else:
                logger.debug("Telegram disabled, reminder for user %s recorded only",
                             link["user_id"])

    return notified


def prune_reminders(now: datetime | None = None) -> int:
    """Forget reminder claims older than the retention window."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(hours=config.REMINDER_RETENTION_HOURS)
    with models.get_db() as conn:
        removed = models.prune_sent_reminders(conn, models.utc_iso(cutoff))
    if removed:
        logger.debug("Pruned %d sent reminder key(s)", removed)
    return removed
