"""
Matchday bets — placing and editing predictions before kickoff.

Classic groups take a bare outcome. Relative groups also take a credit stake,
which is debited from the member's balance in the same transaction as the
bet write; editing a stake only moves the difference. Stakes come back
through settlement (stake x multiplier on a correct call) or a refund when
the match is removed from the group.
"""

import logging
from datetime import datetime, timezone

import models
from entities import BetRejected, BetType, MatchStatus, NotFound, Outcome

logger = logging.getLogger("matchday.betting")


def _parse_outcome(value) -> Outcome:
    try:
        return Outcome(str(value).upper())
    except ValueError:
        raise BetRejected("Outcome must be HOME, DRAW or AWAY") from None


def _parse_stake(value) -> int:
    if isinstance(value, bool):
        raise BetRejected("Wager must be a whole number of credits")
    try:
        stake = int(value)
    except (TypeError, ValueError):
        raise BetRejected("Wager must be a whole number of credits") from None
    if stake != value and str(stake) != str(value).strip():
        raise BetRejected("Wager must be a whole number of credits")
    if stake <= 0:
        raise BetRejected("Wager must be positive")
    return stake


def place_bet(conn, *, user_id: str, match_id: int, group_id: int, outcome,
              wager_amount=None, now: datetime | None = None) -> int:
    """
    Create or replace the caller's bet on a match within one group.

    Returns the bet id. Raises BetRejected (or NotFound) and writes nothing
    if the match has started, the user is not a member, the match is not in
    the group, or a relative stake is missing or exceeds the balance.
    """
    now = now or datetime.now(timezone.utc)
    predicted = _parse_outcome(outcome)

    match = models.get_match(conn, match_id)
    if match is None:
        raise NotFound("Match not found")
    group = models.get_group(conn, group_id)
    if group is None:
        raise NotFound("Group not found")

    if (match["status"] != MatchStatus.SCHEDULED.value
            or now >= models.parse_iso(match["kickoff"])):
        raise BetRejected("Betting is closed for this match")
    if not models.match_in_group(conn, match_id, group_id):
        raise BetRejected("Match is not part of this group")
    member = models.get_member(conn, group_id, user_id)
    if member is None:
        raise BetRejected("You are not a member of this group")

    existing = models.get_bet(conn, user_id, match_id, group_id)

    stake = None
    if group["bet_type"] == BetType.RELATIVE.value:
        stake = _parse_stake(wager_amount)
        previous = (existing["wager_amount"] or 0) if existing else 0
        delta = stake - previous
        if delta and not models.debit_member_points(conn, group_id, user_id, delta):
            raise BetRejected(
                f"Insufficient credits: wager {stake}, available "
                f"{member['points'] + previous}"
            )

    if existing is not None:
        if not models.update_bet_prediction(conn, existing["id"], predicted.value, stake):
            raise BetRejected("Bet has already been settled")
        logger.info("Bet #%d updated: user %s group #%d match #%d -> %s%s",
                    existing["id"], user_id, group_id, match_id, predicted.value,
                    f" ({stake} credits)" if stake is not None else "")
        return existing["id"]

    bet_id = models.insert_bet(
        conn,
        user_id=user_id,
        match_id=match_id,
        group_id=group_id,
        outcome=predicted.value,
        wager_amount=stake,
    )
    logger.info("Bet #%d placed: user %s group #%d match #%d -> %s%s",
                bet_id, user_id, group_id, match_id, predicted.value,
                f" ({stake} credits)" if stake is not None else "")
    return bet_id


def member_record(conn, group_id: int, user_id: str) -> dict:
    """Balance and bet history summary for one member."""
    member = models.get_member(conn, group_id, user_id)
    if member is None:
        raise NotFound("Member not found")
    record = models.get_member_bet_record(conn, group_id, user_id)
    return {
        "user_id": user_id,
        "points": member["points"],
        "total_bets": record["total_bets"] or 0,
        "won": record["won"] or 0,
        "lost": record["lost"] or 0,
        "pending": record["pending"] or 0,
        "void": record["void"] or 0,
        "total_points": record["total_points"] or 0,
    }
