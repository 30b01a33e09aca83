"""
Matchday groups — membership, which matches a group bets on, and standings.

A match can belong to many groups. Provider matches are stored once (keyed
by external id) and shared; manual matches belong to the group that created
them. Relative groups keep their own odds multipliers per match, captured
when the match is added.
"""

import logging

import config
import models
from entities import (
    BetType,
    Fixture,
    MatchStatus,
    MatchType,
    NotFound,
    RejectedAction,
)
from fixtures import FixtureSource
from points import outcome_for_score

logger = logging.getLogger("matchday.groups")


def create_group(conn, *, name: str, creator_id: str, bet_type: str = "classic",
                 match_type: str = "manual", starting_credits: int | None = None,
                 credits_goal: int | None = None) -> int:
    """Create a group with its creator as the first member."""
    if not name or not name.strip():
        raise RejectedAction("Group name is required")
    try:
        bet_type = BetType(bet_type).value
        match_type = MatchType(match_type).value
    except ValueError as e:
        raise RejectedAction(str(e)) from None

    if starting_credits is None:
        starting_credits = config.DEFAULT_STARTING_CREDITS
    if credits_goal is None:
        credits_goal = config.DEFAULT_CREDITS_GOAL
    if starting_credits < 0 or credits_goal <= 0:
        raise RejectedAction("Credit settings must be positive")

    group_id = models.insert_group(
        conn,
        name=name.strip(),
        creator_id=creator_id,
        bet_type=bet_type,
        match_type=match_type,
        starting_credits=starting_credits,
        credits_goal=credits_goal,
    )
    join_group(conn, group_id, creator_id)
    logger.info("Group #%d '%s' created by %s (%s, %s)", group_id, name,
                creator_id, bet_type, match_type)
    return group_id


def join_group(conn, group_id: int, user_id: str) -> bool:
    """Add a member. Relative groups hand out starting credits. False if already a member."""
    group = models.get_group(conn, group_id)
    if group is None:
        raise NotFound("Group not found")
    initial = (group["starting_credits"]
               if group["bet_type"] == BetType.RELATIVE.value else 0)
    joined = models.insert_member(conn, group_id, user_id, initial)
    if joined:
        logger.info("User %s joined group #%d with %d point(s)", user_id,
                    group_id, initial)
    return joined


def is_creator(conn, group_id: int, user_id: str | None) -> bool:
    group = models.get_group(conn, group_id)
    if group is None:
        raise NotFound("Group not found")
    return user_id is not None and group["creator_id"] == user_id


# ---------------------------------------------------------------------------
# Matches in groups
# ---------------------------------------------------------------------------

def import_fixture(conn, fixture: Fixture) -> int:
    """
    Return the stored match for a provider fixture, creating it on first
    sight. An existing match is left as is; reconciliation owns its state.
    """
    existing = models.get_match_by_external_id(conn, fixture.external_id)
    if existing is not None:
        return existing["id"]
    if fixture.kickoff is None or not fixture.home_team or not fixture.away_team:
        raise RejectedAction(f"Fixture {fixture.external_id} is missing teams or kickoff")

    status = fixture.status
    outcome = None
    if status == MatchStatus.FINISHED:
        outcome = outcome_for_score(fixture.home_score, fixture.away_score)
        if outcome is None:
            # no final score yet; the next recovery sweep picks it up
            status = MatchStatus.SCHEDULED

    match_id = models.insert_match(
        conn,
        external_id=fixture.external_id,
        home_team=fixture.home_team,
        away_team=fixture.away_team,
        kickoff=models.utc_iso(fixture.kickoff),
        status=status.value,
        home_score=fixture.home_score,
        away_score=fixture.away_score,
        outcome=outcome.value if outcome else None,
        elapsed=fixture.elapsed,
        extra_time=fixture.extra_time,
        status_short=fixture.status_short,
        competition=fixture.competition or "Unknown",
        season=fixture.season,
    )
    logger.info("Imported fixture %s as match #%d: %s vs %s (%s)",
                fixture.external_id, match_id, fixture.home_team,
                fixture.away_team, status.value)
    return match_id


def _fetch_odds(source: FixtureSource, external_id: str):
    try:
        return source.get_odds(external_id)
    except Exception as e:
        logger.error("Odds lookup failed for %s: %s", external_id, e)
        return None, None


def add_match_to_group(conn, source: FixtureSource | None, match_id: int,
                       group_id: int) -> bool:
    """
    Link an existing match to a group. Relative groups get the provider's
    match-winner odds, or neutral multipliers when none are available.
    Returns False if the match was already in the group.
    """
    match = models.get_match(conn, match_id)
    if match is None:
        raise NotFound("Match not found")
    group = models.get_group(conn, group_id)
    if group is None:
        raise NotFound("Group not found")
    if models.match_in_group(conn, match_id, group_id):
        return False

    multipliers, bookmaker = None, None
    if (group["bet_type"] == BetType.RELATIVE.value
            and match["external_id"] and source is not None):
        # provider call happens before any write so no lock is held across it
        multipliers, bookmaker = _fetch_odds(source, match["external_id"])

    models.link_match_to_group(conn, match_id, group_id)
    if group["bet_type"] == BetType.RELATIVE.value:
        models.upsert_relative_points(
            conn,
            match_id=match_id,
            group_id=group_id,
            home_win=multipliers.home_win if multipliers else 1.0,
            draw=multipliers.draw if multipliers else 1.0,
            away_win=multipliers.away_win if multipliers else 1.0,
            bookmaker=bookmaker,
        )
    logger.info("Match #%d added to group #%d%s", match_id, group_id,
                f" (odds from {bookmaker})" if bookmaker else "")
    return True


def add_fixture_to_group(conn, source: FixtureSource, external_id: str,
                         group_id: int) -> int:
    """Fetch a provider fixture, store it if new, and link it to the group."""
    match = models.get_match_by_external_id(conn, external_id)
    if match is None:
        fixture = source.get_by_id(external_id)
        if fixture is None:
            raise NotFound(f"Fixture {external_id} not found at provider")
        match_id = import_fixture(conn, fixture)
    else:
        match_id = match["id"]
    add_match_to_group(conn, source, match_id, group_id)
    return match_id


def remove_match_from_group(conn, match_id: int, group_id: int) -> dict:
    """
    Drop a match from one group: refund unsettled stakes, delete that group's
    bets on it, and delete the match itself once no group references it.
    """
    if not models.match_in_group(conn, match_id, group_id):
        raise NotFound("Match is not part of this group")

    refunded = 0
    for bet in models.get_bets_for_match_group(conn, match_id, group_id):
        if bet["settled"] or not bet["wager_amount"]:
            continue
        models.increment_member_points(conn, group_id, bet["user_id"],
                                       bet["wager_amount"])
        refunded += bet["wager_amount"]

    deleted_bets = models.delete_bets_for_match_group(conn, match_id, group_id)
    models.unlink_match_from_group(conn, match_id, group_id)

    match_deleted = False
    if not models.get_match_group_ids(conn, match_id):
        models.delete_match(conn, match_id)
        match_deleted = True

    logger.info("Match #%d removed from group #%d: %d bet(s) deleted, "
                "%d credit(s) refunded%s", match_id, group_id, deleted_bets,
                refunded, ", match deleted" if match_deleted else "")
    return {
        "deleted_bets": deleted_bets,
        "refunded": refunded,
        "match_deleted": match_deleted,
    }


# ---------------------------------------------------------------------------
# Standings
# ---------------------------------------------------------------------------

def standings(conn, group_id: int) -> list[dict]:
    """Members ranked by balance, with credits still riding on open bets."""
    group = models.get_group(conn, group_id)
    if group is None:
        raise NotFound("Group not found")

    relative = group["bet_type"] == BetType.RELATIVE.value
    stakes = models.get_active_stakes(conn, group_id)
    table = []
    for member in models.get_members(conn, group_id):
        active = stakes.get(member["user_id"])
        at_risk = (active["at_risk"] or 0) if active else 0
        total = member["points"] + at_risk if relative else member["points"]
        table.append({
            "user_id": member["user_id"],
            "points": member["points"],
            "at_risk": at_risk,
            "total": total,
            "has_ongoing_bets": bool(active and active["ongoing"]),
            "reached_goal": relative and member["points"] >= group["credits_goal"],
        })
    table.sort(key=lambda row: row["total"], reverse=True)
    return table
