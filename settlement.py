"""
Matchday settlement — scores every unsettled bet on a finished match and
credits the result to the owner's balance in that group.

Each bet is settled in its own transaction:
  1. UPDATE bets SET points, settled = 1 WHERE id = ? AND settled = 0
  2. if that changed the row, points = points + award for that one member

The settled flag is the idempotency guard. Calling settle_match() again, or
from two triggers at once, finds nothing left to award. A failure on one bet
is logged and leaves that bet unsettled for the next pass; its siblings are
unaffected.
"""

import logging
from dataclasses import dataclass

import models
import points
from entities import MatchStatus

logger = logging.getLogger("matchday.settlement")


@dataclass
class SettlementReport:
    match_id: int
    settled: int = 0
    failed: int = 0
    skipped: int = 0
    awarded: int = 0


def _settle_bet(bet, outcome: str, group, relative_row) -> int | None:
    """Score and award one bet. Returns the award, or None if already settled."""
    scheme = points.scheme_for_group(group["bet_type"], relative_row)
    award = points.score(bet["outcome"], outcome, scheme, bet["wager_amount"])

    with models.get_db() as conn:
        if not models.mark_bet_settled(conn, bet["id"], award):
            return None
        if not models.increment_member_points(conn, bet["group_id"], bet["user_id"], award):
            logger.warning("Bet #%d: user %s is no longer a member of group #%d, "
                           "settled without a balance change",
                           bet["id"], bet["user_id"], bet["group_id"])
    return award


def settle_match(match_id: int) -> SettlementReport:
    """Settle all outstanding bets on a FINISHED match. Safe to call repeatedly."""
    report = SettlementReport(match_id=match_id)

    with models.get_db() as conn:
        match = models.get_match(conn, match_id)
        if match is None:
            logger.warning("Settlement requested for unknown match #%d", match_id)
            return report
        if match["status"] != MatchStatus.FINISHED.value or match["outcome"] is None:
            logger.debug("Match #%d is %s, nothing to settle", match_id, match["status"])
            return report

        bets = models.get_unsettled_bets_for_match(conn, match_id)
        if not bets:
            logger.debug("No unsettled bets on match #%d", match_id)
            return report

        groups = models.get_groups_by_id(conn, {b["group_id"] for b in bets})
        relative = models.get_relative_points_for_match(conn, match_id)

    for bet in bets:
        group = groups.get(bet["group_id"])
        if group is None:
            logger.warning("Bet #%d references missing group #%d, skipping",
                           bet["id"], bet["group_id"])
            report.skipped += 1
            continue

        try:
            award = _settle_bet(bet, match["outcome"], group, relative.get(bet["group_id"]))
        except Exception:
            logger.exception("Failed to settle bet #%d on match #%d, will retry",
                             bet["id"], match_id)
            report.failed += 1
            continue

        if award is None:
            logger.debug("Bet #%d was settled by another pass", bet["id"])
            report.skipped += 1
            continue

        report.settled += 1
        report.awarded += award
        logger.info("SETTLED: bet #%d user %s group #%d predicted %s, actual %s (+%d)",
                    bet["id"], bet["user_id"], bet["group_id"], bet["outcome"],
                    match["outcome"], award)

    logger.info("Match #%d %s %s-%s %s: %d bet(s) settled, %d failed, %d skipped",
                match_id, match["home_team"], match["home_score"],
                match["away_score"], match["away_team"], report.settled,
                report.failed, report.skipped)
    return report
