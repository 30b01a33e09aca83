"""
Matchday scheduler process — reconciles matches with the fixture source,
settles bets and sends kickoff reminders.

Jobs:
  - fast poll every FAST_POLL_SECONDS (live and just-started matches)
  - recovery sweep every RECOVERY_SWEEP_MINUTES (overdue matches)
  - reminders every REMINDER_POLL_SECONDS, claims pruned hourly
The admin API is a separate process (admin.py).
"""

import functools
import logging
import sys
import time
from logging.handlers import TimedRotatingFileHandler

import schedule

import config
import models
import reminders
from fixtures import APIFootballSource
from scheduler import Reconciler

logger = logging.getLogger("matchday.main")


def setup_logging():
    """Configure logging with daily rotation and 7-day retention."""
    root = logging.getLogger("matchday")
    root.setLevel(logging.DEBUG)

    # File handler: daily rotation, keep 7 days
    fh = TimedRotatingFileHandler(
        config.LOG_PATH,
        when="midnight",
        interval=1,
        backupCount=7,
        utc=True,
    )
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    # Console handler: INFO and above
    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(logging.INFO)
    ch.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    ))

    root.addHandler(fh)
    root.addHandler(ch)


def guarded(job):
    """Keep the schedule loop alive when one job run blows up."""
    @functools.wraps(job)
    def wrapper(*args, **kwargs):
        try:
            return job(*args, **kwargs)
        except Exception:
            logger.exception("Job %s failed, will run again on schedule", job.__name__)
            return None
    return wrapper


def main():
    setup_logging()

    logger.info("Matchday scheduler starting up...")
    if not config.API_FOOTBALL_KEY:
        logger.error("API_FOOTBALL_KEY is not set")
        sys.exit(1)
    logger.info("API key: %s...%s", config.API_FOOTBALL_KEY[:4], config.API_FOOTBALL_KEY[-4:])
    logger.info("Live window: %.1fh, recovery lookback: %.1fh after %.1fh",
                config.LIVE_WINDOW_HOURS, config.RECOVERY_LOOKBACK_HOURS,
                config.MAX_MATCH_DURATION_HOURS)

    # Initialize database
    models.init_db()
    logger.info("Database initialized at %s", config.DB_PATH)

    reconciler = Reconciler(APIFootballSource())

    schedule.every(config.FAST_POLL_SECONDS).seconds.do(
        guarded(reconciler.check_and_refresh)
    )
    schedule.every(config.RECOVERY_SWEEP_MINUTES).minutes.do(
        guarded(reconciler.fix_stuck_matches)
    )
    logger.info("Fast poll every %ds, recovery sweep every %d minutes",
                config.FAST_POLL_SECONDS, config.RECOVERY_SWEEP_MINUTES)

    if config.TELEGRAM_ENABLED:
        schedule.every(config.REMINDER_POLL_SECONDS).seconds.do(
            guarded(reminders.process_reminders)
        )
        schedule.every().hour.do(guarded(reminders.prune_reminders))
        logger.info("Telegram reminders enabled (default %d minutes before kick-off)",
                    config.REMINDER_MINUTES)

    # Catch up on anything missed while stopped
    logger.info("Running initial recovery sweep and live check...")
    guarded(reconciler.fix_stuck_matches)()
    guarded(reconciler.check_and_refresh)()

    logger.info("Scheduler running")
    try:
        while True:
            schedule.run_pending()
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Scheduler shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
