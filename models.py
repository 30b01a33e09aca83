"""
Matchday SQLite schema and query helpers.

All timestamps stored as UTC ISO format strings (second precision, so string
order is chronological). Tables created on startup via init_db().

Write helpers that guard an invariant return a bool: True when the row was
changed, False when the guard (expected status, settled flag, balance floor)
did not hold and nothing was written.
"""

import sqlite3
from datetime import datetime, timezone
from contextlib import contextmanager

import config

# ---------------------------------------------------------------------------
# Connection helpers
# ---------------------------------------------------------------------------

def get_connection() -> sqlite3.Connection:
    conn = sqlite3.connect(config.DB_PATH, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def get_db():
    """Context manager that yields a connection and auto-commits/closes."""
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def utc_iso(dt: datetime) -> str:
    """Normalize a datetime to the stored UTC string form."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat()


def parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def now_iso() -> str:
    return utc_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS groups (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    name             TEXT NOT NULL,
    creator_id       TEXT NOT NULL,
    bet_type         TEXT NOT NULL DEFAULT 'classic'
                     CHECK (bet_type IN ('classic', 'relative')),
    match_type       TEXT NOT NULL DEFAULT 'manual'
                     CHECK (match_type IN ('manual', 'automatic')),
    starting_credits INTEGER NOT NULL DEFAULT 100,
    credits_goal     INTEGER NOT NULL DEFAULT 1000,
    created_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS group_members (
    group_id   INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    user_id    TEXT NOT NULL,
    points     INTEGER NOT NULL DEFAULT 0,
    joined_at  TEXT NOT NULL,
    PRIMARY KEY (group_id, user_id)
);

CREATE TABLE IF NOT EXISTS matches (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    external_id   TEXT UNIQUE,
    home_team     TEXT NOT NULL,
    away_team     TEXT NOT NULL,
    kickoff       TEXT NOT NULL,
    status        TEXT NOT NULL DEFAULT 'SCHEDULED'
                  CHECK (status IN ('SCHEDULED', 'LIVE', 'FINISHED',
                                    'POSTPONED', 'CANCELLED')),
    home_score    INTEGER,
    away_score    INTEGER,
    outcome       TEXT CHECK (outcome IN ('HOME', 'DRAW', 'AWAY')),
    -- live telemetry, advisory only
    elapsed       INTEGER,
    extra_time    INTEGER,
    status_short  TEXT,
    competition   TEXT NOT NULL,
    season        TEXT,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL,
    CHECK ((status = 'FINISHED') = (outcome IS NOT NULL))
);

CREATE TABLE IF NOT EXISTS match_groups (
    match_id  INTEGER NOT NULL REFERENCES matches(id) ON DELETE CASCADE,
    group_id  INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    PRIMARY KEY (match_id, group_id)
);

CREATE TABLE IF NOT EXISTS relative_points (
    match_id   INTEGER NOT NULL REFERENCES matches(id) ON DELETE CASCADE,
    group_id   INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    home_win   REAL NOT NULL DEFAULT 1,
    draw       REAL NOT NULL DEFAULT 1,
    away_win   REAL NOT NULL DEFAULT 1,
    bookmaker  TEXT,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (match_id, group_id)
);

CREATE TABLE IF NOT EXISTS bets (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       TEXT NOT NULL,
    match_id      INTEGER NOT NULL REFERENCES matches(id) ON DELETE CASCADE,
    group_id      INTEGER NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
    outcome       TEXT NOT NULL CHECK (outcome IN ('HOME', 'DRAW', 'AWAY')),
    wager_amount  INTEGER,
    points        INTEGER,
    settled       INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL,
    settled_at    TEXT,
    UNIQUE (user_id, match_id, group_id),
    CHECK (settled = 0 OR points IS NOT NULL)
);

CREATE TABLE IF NOT EXISTS telegram_links (
    user_id           TEXT PRIMARY KEY,
    chat_id           TEXT NOT NULL,
    reminder_minutes  INTEGER NOT NULL DEFAULT 15,
    reminders_enabled INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS sent_reminders (
    reminder_key  TEXT PRIMARY KEY,
    sent_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bets_unsettled
    ON bets(match_id, settled);

CREATE INDEX IF NOT EXISTS idx_bets_group
    ON bets(group_id, user_id);

CREATE INDEX IF NOT EXISTS idx_matches_status_kickoff
    ON matches(status, kickoff);

CREATE INDEX IF NOT EXISTS idx_match_groups_group
    ON match_groups(group_id);

CREATE INDEX IF NOT EXISTS idx_sent_reminders_sent
    ON sent_reminders(sent_at);
"""


def init_db():
    """Create all tables and indexes if they don't exist."""
    with get_db() as conn:
        conn.executescript(_SCHEMA)


# ---------------------------------------------------------------------------
# Groups and member balances
# ---------------------------------------------------------------------------

def insert_group(conn, *, name, creator_id, bet_type, match_type,
                 starting_credits, credits_goal) -> int:
    cur = conn.execute(
        """INSERT INTO groups
           (name, creator_id, bet_type, match_type, starting_credits,
            credits_goal, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (name, creator_id, bet_type, match_type, starting_credits,
         credits_goal, now_iso()),
    )
    return cur.lastrowid


def get_group(conn, group_id: int) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT * FROM groups WHERE id = ?", (group_id,)
    ).fetchone()


def get_groups_by_id(conn, group_ids) -> dict[int, sqlite3.Row]:
    ids = list(group_ids)
    if not ids:
        return {}
    placeholders = ", ".join("?" for _ in ids)
    rows = conn.execute(
        f"SELECT * FROM groups WHERE id IN ({placeholders})", ids
    ).fetchall()
    return {r["id"]: r for r in rows}


def insert_member(conn, group_id: int, user_id: str, points: int) -> bool:
    cur = conn.execute(
        """INSERT OR IGNORE INTO group_members (group_id, user_id, points, joined_at)
           VALUES (?, ?, ?, ?)""",
        (group_id, user_id, points, now_iso()),
    )
    return cur.rowcount == 1


def get_member(conn, group_id: int, user_id: str) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT * FROM group_members WHERE group_id = ? AND user_id = ?",
        (group_id, user_id),
    ).fetchone()


def get_members(conn, group_id: int) -> list[sqlite3.Row]:
    return conn.execute(
        """SELECT * FROM group_members
           WHERE group_id = ?
           ORDER BY points DESC, joined_at""",
        (group_id,),
    ).fetchall()


def get_user_group_ids(conn, user_id: str) -> list[int]:
    rows = conn.execute(
        "SELECT group_id FROM group_members WHERE user_id = ?", (user_id,)
    ).fetchall()
    return [r["group_id"] for r in rows]


def increment_member_points(conn, group_id: int, user_id: str, delta: int) -> bool:
    """Atomic in-place increment of one member's balance."""
    cur = conn.execute(
        """UPDATE group_members SET points = points + ?
           WHERE group_id = ? AND user_id = ?""",
        (delta, group_id, user_id),
    )
    return cur.rowcount == 1


def debit_member_points(conn, group_id: int, user_id: str, amount: int) -> bool:
    """Take `amount` (negative refunds) only if the balance stays non-negative."""
    cur = conn.execute(
        """UPDATE group_members SET points = points - ?
           WHERE group_id = ? AND user_id = ? AND points - ? >= 0""",
        (amount, group_id, user_id, amount),
    )
    return cur.rowcount == 1


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------

def insert_match(conn, *, external_id, home_team, away_team, kickoff: str,
                 status, home_score=None, away_score=None, outcome=None,
                 elapsed=None, extra_time=None, status_short=None,
                 competition, season=None) -> int:
    """Insert a match and return its row id."""
    now = now_iso()
    cur = conn.execute(
        """INSERT INTO matches
           (external_id, home_team, away_team, kickoff, status, home_score,
            away_score, outcome, elapsed, extra_time, status_short,
            competition, season, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (external_id, home_team, away_team, kickoff, status, home_score,
         away_score, outcome, elapsed, extra_time, status_short,
         competition, season, now, now),
    )
    return cur.lastrowid


def get_match(conn, match_id: int) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT * FROM matches WHERE id = ?", (match_id,)
    ).fetchone()


def get_match_by_external_id(conn, external_id: str) -> sqlite3.Row | None:
    return conn.execute(
        "SELECT * FROM matches WHERE external_id = ?", (external_id,)
    ).fetchone()


def update_match_state(conn, match_id: int, *, expected_status: str, status: str,
                       home_score, away_score, outcome, elapsed=None,
                       extra_time=None, status_short=None) -> bool:
    """
    Write status, result and telemetry, but only if the persisted status is
    still `expected_status`. Returns False if another writer got there first.
    """
    cur = conn.execute(
        """UPDATE matches
           SET status = ?, home_score = ?, away_score = ?, outcome = ?,
               elapsed = ?, extra_time = ?, status_short = ?, updated_at = ?
           WHERE id = ? AND status = ?""",
        (status, home_score, away_score, outcome, elapsed, extra_time,
         status_short, now_iso(), match_id, expected_status),
    )
    return cur.rowcount == 1


def delete_match(conn, match_id: int):
    conn.execute("DELETE FROM matches WHERE id = ?", (match_id,))


def get_fast_poll_matches(conn, *, lookback_start: str, window_start: str,
                          now: str) -> list[sqlite3.Row]:
    """
    Provider-tracked matches that are LIVE inside the lookback, or SCHEDULED
    with a recent kickoff. Older LIVE rows are left alone as abandoned.
    """
    return conn.execute(
        """SELECT * FROM matches
           WHERE external_id IS NOT NULL
             AND ((status = 'LIVE' AND kickoff >= ?)
                  OR (status = 'SCHEDULED' AND kickoff >= ? AND kickoff <= ?))
           ORDER BY kickoff""",
        (lookback_start, window_start, now),
    ).fetchall()


def count_fast_poll_matches(conn, *, lookback_start: str, window_start: str,
                            now: str) -> tuple[int, int]:
    """Return (live_count, recently_started_count) for provider-tracked matches."""
    row = conn.execute(
        """SELECT
              SUM(CASE WHEN status = 'LIVE' AND kickoff >= ? THEN 1 ELSE 0 END) AS live,
              SUM(CASE WHEN status = 'SCHEDULED' AND kickoff >= ? AND kickoff <= ?
                       THEN 1 ELSE 0 END) AS recent
           FROM matches
           WHERE external_id IS NOT NULL""",
        (lookback_start, window_start, now),
    ).fetchone()
    return (row["live"] or 0), (row["recent"] or 0)


def get_stuck_matches(conn, *, lookback_start: str, overdue_before: str) -> list[sqlite3.Row]:
    """Provider-tracked LIVE/SCHEDULED matches that kicked off long enough ago to be over."""
    return conn.execute(
        """SELECT * FROM matches
           WHERE external_id IS NOT NULL
             AND status IN ('LIVE', 'SCHEDULED')
             AND kickoff >= ? AND kickoff < ?
           ORDER BY kickoff""",
        (lookback_start, overdue_before),
    ).fetchall()


def get_finished_match_ids_with_unsettled_bets(conn) -> list[int]:
    rows = conn.execute(
        """SELECT DISTINCT m.id FROM matches m
           JOIN bets b ON b.match_id = m.id
           WHERE m.status = 'FINISHED' AND b.settled = 0
           ORDER BY m.id"""
    ).fetchall()
    return [r["id"] for r in rows]


def get_matches_starting_between(conn, start: str, end: str) -> list[sqlite3.Row]:
    return conn.execute(
        """SELECT * FROM matches
           WHERE status = 'SCHEDULED' AND kickoff >= ? AND kickoff <= ?
           ORDER BY kickoff""",
        (start, end),
    ).fetchall()


# ---------------------------------------------------------------------------
# Match <-> group links and per-group multipliers
# ---------------------------------------------------------------------------

def link_match_to_group(conn, match_id: int, group_id: int) -> bool:
    cur = conn.execute(
        "INSERT OR IGNORE INTO match_groups (match_id, group_id) VALUES (?, ?)",
        (match_id, group_id),
    )
    return cur.rowcount == 1


def unlink_match_from_group(conn, match_id: int, group_id: int):
    conn.execute(
        "DELETE FROM match_groups WHERE match_id = ? AND group_id = ?",
        (match_id, group_id),
    )
    conn.execute(
        "DELETE FROM relative_points WHERE match_id = ? AND group_id = ?",
        (match_id, group_id),
    )


def get_match_group_ids(conn, match_id: int) -> set[int]:
    rows = conn.execute(
        "SELECT group_id FROM match_groups WHERE match_id = ?", (match_id,)
    ).fetchall()
    return {r["group_id"] for r in rows}


def match_in_group(conn, match_id: int, group_id: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM match_groups WHERE match_id = ? AND group_id = ? LIMIT 1",
        (match_id, group_id),
    ).fetchone()
    return row is not None


def upsert_relative_points(conn, *, match_id, group_id, home_win, draw, away_win,
                           bookmaker=None):
    conn.execute(
        """INSERT INTO relative_points
           (match_id, group_id, home_win, draw, away_win, bookmaker, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT (match_id, group_id) DO UPDATE SET
               home_win = excluded.home_win,
               draw = excluded.draw,
               away_win = excluded.away_win,
               bookmaker = excluded.bookmaker,
               updated_at = excluded.updated_at""",
        (match_id, group_id, home_win, draw, away_win, bookmaker, now_iso()),
    )


def get_relative_points_for_match(conn, match_id: int) -> dict[int, sqlite3.Row]:
    """Per-group multiplier rows for a match, keyed by group id."""
    rows = conn.execute(
        "SELECT * FROM relative_points WHERE match_id = ?", (match_id,)
    ).fetchall()
    return {r["group_id"]: r for r in rows}


# ---------------------------------------------------------------------------
# Bets
# ---------------------------------------------------------------------------

def get_bet(conn, user_id: str, match_id: int, group_id: int) -> sqlite3.Row | None:
    return conn.execute(
        """SELECT * FROM bets
           WHERE user_id = ? AND match_id = ? AND group_id = ?""",
        (user_id, match_id, group_id),
    ).fetchone()


def get_bet_by_id(conn, bet_id: int) -> sqlite3.Row | None:
    return conn.execute("SELECT * FROM bets WHERE id = ?", (bet_id,)).fetchone()


def insert_bet(conn, *, user_id, match_id, group_id, outcome, wager_amount) -> int:
    now = now_iso()
    cur = conn.execute(
        """INSERT INTO bets
           (user_id, match_id, group_id, outcome, wager_amount, created_at,
            updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (user_id, match_id, group_id, outcome, wager_amount, now, now),
    )
    return cur.lastrowid


def update_bet_prediction(conn, bet_id: int, outcome: str, wager_amount) -> bool:
    cur = conn.execute(
        """UPDATE bets SET outcome = ?, wager_amount = ?, updated_at = ?
           WHERE id = ? AND settled = 0""",
        (outcome, wager_amount, now_iso(), bet_id),
    )
    return cur.rowcount == 1


def get_unsettled_bets_for_match(conn, match_id: int) -> list[sqlite3.Row]:
    return conn.execute(
        """SELECT * FROM bets
           WHERE match_id = ? AND settled = 0
           ORDER BY id""",
        (match_id,),
    ).fetchall()


def mark_bet_settled(conn, bet_id: int, points: int) -> bool:
    """Set points and settled together. False if the bet was already settled."""
    cur = conn.execute(
        """UPDATE bets SET points = ?, settled = 1, settled_at = ?
           WHERE id = ? AND settled = 0""",
        (points, now_iso(), bet_id),
    )
    return cur.rowcount == 1


def get_bets_for_match_group(conn, match_id: int, group_id: int) -> list[sqlite3.Row]:
    return conn.execute(
        """SELECT * FROM bets
           WHERE match_id = ? AND group_id = ?
           ORDER BY created_at""",
        (match_id, group_id),
    ).fetchall()


def delete_bets_for_match_group(conn, match_id: int, group_id: int) -> int:
    cur = conn.execute(
        "DELETE FROM bets WHERE match_id = ? AND group_id = ?",
        (match_id, group_id),
    )
    return cur.rowcount


def get_active_stakes(conn, group_id: int) -> dict[str, sqlite3.Row]:
    """Unsettled wager count and amount per member (credits currently at risk)."""
    rows = conn.execute(
        """SELECT user_id, SUM(COALESCE(wager_amount, 0)) AS at_risk,
                  COUNT(*) AS ongoing
           FROM bets
           WHERE group_id = ? AND settled = 0
           GROUP BY user_id""",
        (group_id,),
    ).fetchall()
    return {r["user_id"]: r for r in rows}


def get_member_bet_record(conn, group_id: int, user_id: str) -> sqlite3.Row:
    """Won/lost/pending/void counts for one member in one group."""
    return conn.execute(
        """SELECT
              COUNT(*) AS total_bets,
              SUM(CASE WHEN b.settled = 1 AND b.points > 0 THEN 1 ELSE 0 END) AS won,
              SUM(CASE WHEN b.settled = 1 AND b.points = 0 THEN 1 ELSE 0 END) AS lost,
              SUM(CASE WHEN b.settled = 0 AND m.status IN ('SCHEDULED', 'LIVE', 'FINISHED')
                       THEN 1 ELSE 0 END) AS pending,
              SUM(CASE WHEN b.settled = 0 AND m.status IN ('POSTPONED', 'CANCELLED')
                       THEN 1 ELSE 0 END) AS void,
              SUM(CASE WHEN b.settled = 1 THEN b.points ELSE 0 END) AS total_points
           FROM bets b JOIN matches m ON m.id = b.match_id
           WHERE b.group_id = ? AND b.user_id = ?""",
        (group_id, user_id),
    ).fetchone()


def get_bet_group_ids(conn, user_id: str, match_id: int, group_ids) -> set[int]:
    """Groups (among `group_ids`) in which the user already has a bet on the match."""
    ids = list(group_ids)
    if not ids:
        return set()
    placeholders = ", ".join("?" for _ in ids)
    rows = conn.execute(
        f"""SELECT group_id FROM bets
            WHERE user_id = ? AND match_id = ? AND group_id IN ({placeholders})""",
        [user_id, match_id, *ids],
    ).fetchall()
    return {r["group_id"] for r in rows}


# ---------------------------------------------------------------------------
# Telegram links and reminder deduplication
# ---------------------------------------------------------------------------

def upsert_telegram_link(conn, user_id: str, chat_id: str, reminder_minutes: int = 15,
                         reminders_enabled: bool = True):
    conn.execute(
        """INSERT INTO telegram_links (user_id, chat_id, reminder_minutes, reminders_enabled)
           VALUES (?, ?, ?, ?)
           ON CONFLICT (user_id) DO UPDATE SET
               chat_id = excluded.chat_id,
               reminder_minutes = excluded.reminder_minutes,
               reminders_enabled = excluded.reminders_enabled""",
        (user_id, chat_id, reminder_minutes, 1 if reminders_enabled else 0),
    )


def get_reminder_recipients(conn) -> list[sqlite3.Row]:
    return conn.execute(
        """SELECT * FROM telegram_links
           WHERE reminders_enabled = 1 AND chat_id IS NOT NULL"""
    ).fetchall()


def record_reminder(conn, reminder_key: str, sent_at: str) -> bool:
    """Claim a reminder key. False if another pass already claimed it."""
    cur = conn.execute(
        "INSERT OR IGNORE INTO sent_reminders (reminder_key, sent_at) VALUES (?, ?)",
        (reminder_key, sent_at),
    )
    return cur.rowcount == 1


def prune_sent_reminders(conn, before: str) -> int:
    cur = conn.execute(
        "DELETE FROM sent_reminders WHERE sent_at < ?", (before,)
    )
    return cur.rowcount
