"""
Matchday match lifecycle — valid status transitions and the merge policy
between the stored match and fresh provider snapshots or manual input.

  SCHEDULED -> LIVE | FINISHED | POSTPONED | CANCELLED
  LIVE      -> FINISHED
  FINISHED, POSTPONED and CANCELLED are terminal.

Every write is a compare-and-set on the status read just before it, so two
triggers racing on the same match apply at most one transition. Outcome is
derived from the scoreline at the moment of finishing and is stored only for
FINISHED matches.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import models
from entities import (
    Fixture,
    MatchStatus,
    MatchType,
    NotFound,
    OverrideRejected,
)
from points import outcome_for_score

logger = logging.getLogger("matchday.lifecycle")

TRANSITIONS: dict[MatchStatus, set[MatchStatus]] = {
    MatchStatus.SCHEDULED: {
        MatchStatus.LIVE,
        MatchStatus.FINISHED,
        MatchStatus.POSTPONED,
        MatchStatus.CANCELLED,
    },
    MatchStatus.LIVE: {MatchStatus.FINISHED},
    MatchStatus.FINISHED: set(),
    MatchStatus.POSTPONED: set(),
    MatchStatus.CANCELLED: set(),
}

# States whose score/telemetry may still be refreshed without a status change
REFRESHABLE = {MatchStatus.SCHEDULED, MatchStatus.LIVE}


@dataclass
class Transition:
    match_id: int
    previous: MatchStatus
    current: MatchStatus
    applied: bool

    @property
    def finished(self) -> bool:
        """True only for the single write that moved the match into FINISHED."""
        return (self.applied
                and self.current == MatchStatus.FINISHED
                and self.previous != MatchStatus.FINISHED)


def can_transition(current: MatchStatus, new: MatchStatus) -> bool:
    if new == current:
        return current in REFRESHABLE
    return new in TRANSITIONS[current]


def _label(match) -> str:
    return f"#{match['id']} {match['home_team']} vs {match['away_team']}"


def _noop(match) -> Transition:
    status = MatchStatus(match["status"])
    return Transition(match["id"], status, status, False)


# ---------------------------------------------------------------------------
# Provider snapshots
# ---------------------------------------------------------------------------

def _check_finished_consistency(match, fixture: Fixture):
    """A finished match is authoritative locally; only report disagreement."""
    local = (match["home_score"], match["away_score"])
    remote = (fixture.home_score, fixture.away_score)
    if fixture.status != MatchStatus.FINISHED or local != remote:
        logger.warning(
            "Provider disagrees with finished match %s: local FINISHED %s-%s, "
            "provider %s %s-%s (%s). Keeping local result.",
            _label(match), local[0], local[1], fixture.status.value,
            remote[0], remote[1], fixture.status_short,
        )


def apply_snapshot(conn, match, fixture: Fixture) -> Transition:
    """
    Merge one provider snapshot into a stored match.

    The provider is authoritative for status, score and telemetry while the
    match is not yet FINISHED. A FINISHED match is never regressed. A
    snapshot asking for a transition the state machine does not allow is
    logged and ignored.
    """
    current = MatchStatus(match["status"])
    new = fixture.status

    if current == MatchStatus.FINISHED:
        _check_finished_consistency(match, fixture)
        return _noop(match)

    if not can_transition(current, new):
        logger.warning("Ignoring provider transition %s -> %s for match %s (%s)",
                       current.value, new.value, _label(match),
                       fixture.status_short)
        return _noop(match)

    home_score, away_score = fixture.home_score, fixture.away_score
    if new == current and home_score is None and away_score is None:
        # keep a provisional local score the provider has nothing to say about
        home_score, away_score = match["home_score"], match["away_score"]

    outcome = None
    if new == MatchStatus.FINISHED:
        outcome = outcome_for_score(home_score, away_score)
        if outcome is None:
            logger.warning("Provider reports match %s finished without a score. "
                           "Leaving it %s for the next pass.",
                           _label(match), current.value)
            return _noop(match)

    applied = models.update_match_state(
        conn, match["id"],
        expected_status=current.value,
        status=new.value,
        home_score=home_score,
        away_score=away_score,
        outcome=outcome.value if outcome else None,
        elapsed=fixture.elapsed,
        extra_time=fixture.extra_time,
        status_short=fixture.status_short,
    )
    if not applied:
        logger.info("Match %s changed while refreshing; leaving it to the next pass",
                    _label(match))
        return _noop(match)

    if new != current:
        logger.info("Match %s: %s -> %s (%s-%s)", _label(match), current.value,
                    new.value, home_score, away_score)
    else:
        logger.debug("Updated %s: %s-%s (%s')", _label(match), home_score,
                     away_score, fixture.elapsed)
    return Transition(match["id"], current, new, True)


# ---------------------------------------------------------------------------
# Manual overrides (group owner, manual groups only)
# ---------------------------------------------------------------------------

def _validate_score(home_score, away_score) -> tuple[int, int]:
    try:
        home, away = int(home_score), int(away_score)
    except (TypeError, ValueError):
        raise OverrideRejected("Scores must be whole numbers") from None
    if home < 0 or away < 0:
        raise OverrideRejected("Scores cannot be negative")
    return home, away


def _load_for_override(conn, match_id: int, group_id: int):
    match = models.get_match(conn, match_id)
    if match is None:
        raise NotFound("Match not found")
    group = models.get_group(conn, group_id)
    if group is None:
        raise NotFound("Group not found")
    if not models.match_in_group(conn, match_id, group_id):
        raise OverrideRejected("Match does not belong to this group")
    if group["match_type"] == MatchType.AUTOMATIC.value:
        raise OverrideRejected("Automatic groups only accept provider updates")
    if match["status"] == MatchStatus.FINISHED.value:
        raise OverrideRejected("Match already has a final score")
    return match, group


def _require_started(match, now: datetime):
    """A LIVE match has started whatever its kickoff says (it may have been forced live)."""
    if match["status"] == MatchStatus.LIVE.value:
        return
    if now < models.parse_iso(match["kickoff"]):
        raise OverrideRejected("Cannot update score before match starts")


def set_manual_score(conn, match_id: int, group_id: int, home_score, away_score,
                     now: datetime | None = None) -> Transition:
    """Record a provisional score. Status is kept and outcome stays unset."""
    now = now or datetime.now(timezone.utc)
    match, _ = _load_for_override(conn, match_id, group_id)
    home, away = _validate_score(home_score, away_score)
    status = MatchStatus(match["status"])
    if status not in REFRESHABLE:
        raise OverrideRejected(f"Cannot score a {status.value} match")
    _require_started(match, now)

    applied = models.update_match_state(
        conn, match_id,
        expected_status=status.value,
        status=status.value,
        home_score=home,
        away_score=away,
        outcome=None,
        elapsed=match["elapsed"],
        extra_time=match["extra_time"],
        status_short=match["status_short"],
    )
    if not applied:
        raise OverrideRejected("Match changed while updating, try again")
    logger.info("Manual score for %s: %d-%d (still %s)", _label(match), home,
                away, status.value)
    return Transition(match_id, status, status, True)


def mark_finished(conn, match_id: int, group_id: int, home_score=None,
                  away_score=None, now: datetime | None = None) -> Transition:
    """
    Finish a manually tracked match. Uses the given score, or the provisional
    one recorded earlier; one of them must exist.
    """
    now = now or datetime.now(timezone.utc)
    match, _ = _load_for_override(conn, match_id, group_id)
    status = MatchStatus(match["status"])
    if not can_transition(status, MatchStatus.FINISHED):
        raise OverrideRejected(f"Cannot finish a {status.value} match")
    _require_started(match, now)

    if home_score is None and away_score is None:
        home_score, away_score = match["home_score"], match["away_score"]
        if home_score is None or away_score is None:
            raise OverrideRejected("A final score is required")
    home, away = _validate_score(home_score, away_score)
    outcome = outcome_for_score(home, away)

    applied = models.update_match_state(
        conn, match_id,
        expected_status=status.value,
        status=MatchStatus.FINISHED.value,
        home_score=home,
        away_score=away,
        outcome=outcome.value,
        status_short="FT",
    )
    if not applied:
        raise OverrideRejected("Match already has a final score")
    logger.info("Match %s marked finished %d-%d (%s)", _label(match), home, away,
                outcome.value)
    return Transition(match_id, status, MatchStatus.FINISHED, True)


def force_live(conn, match_id: int, group_id: int, home_score=0,
               away_score=0) -> Transition:
    """Put a scheduled match in play with a provisional score (testing aid)."""
    match, _ = _load_for_override(conn, match_id, group_id)
    status = MatchStatus(match["status"])
    if not can_transition(status, MatchStatus.LIVE) or status == MatchStatus.LIVE:
        raise OverrideRejected(f"Cannot force a {status.value} match live")
    home, away = _validate_score(home_score, away_score)

    applied = models.update_match_state(
        conn, match_id,
        expected_status=status.value,
        status=MatchStatus.LIVE.value,
        home_score=home,
        away_score=away,
        outcome=None,
        status_short="LIVE",
    )
    if not applied:
        raise OverrideRejected("Match changed while updating, try again")
    logger.info("Match %s forced LIVE at %d-%d", _label(match), home, away)
    return Transition(match_id, status, MatchStatus.LIVE, True)


def create_manual_match(conn, *, group_id: int, home_team: str, away_team: str,
                        kickoff: datetime, home_score=None, away_score=None,
                        now: datetime | None = None) -> int:
    """
    Create a match tracked by hand in one group. A kickoff in the past needs
    both scores and creates the match already FINISHED.
    """
    now = now or datetime.now(timezone.utc)
    group = models.get_group(conn, group_id)
    if group is None:
        raise NotFound("Group not found")
    if group["match_type"] == MatchType.AUTOMATIC.value:
        raise OverrideRejected("Automatic groups only accept provider matches")
    if not home_team or not away_team:
        raise OverrideRejected("Both teams are required")
    if kickoff.tzinfo is None:
        kickoff = kickoff.replace(tzinfo=timezone.utc)

    status, home, away, outcome = MatchStatus.SCHEDULED, None, None, None
    if kickoff <= now:
        if home_score is None or away_score is None:
            raise OverrideRejected("Past matches require home and away scores")
        home, away = _validate_score(home_score, away_score)
        status = MatchStatus.FINISHED
        outcome = outcome_for_score(home, away).value

    match_id = models.insert_match(
        conn,
        external_id=None,
        home_team=home_team,
        away_team=away_team,
        kickoff=models.utc_iso(kickoff),
        status=status.value,
        home_score=home,
        away_score=away,
        outcome=outcome,
        status_short="FT" if status == MatchStatus.FINISHED else None,
        competition="Manual Match",
    )
    models.link_match_to_group(conn, match_id, group_id)
    logger.info("Manual match #%d %s vs %s created in group #%d (%s)", match_id,
                home_team, away_team, group_id, status.value)
    return match_id
