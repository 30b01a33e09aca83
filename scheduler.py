"""
Matchday reconciliation — keeps stored matches in step with the fixture
source and settles bets whenever a match finishes.

Three triggers feed the same lifecycle + settlement path:
  - Fast poll (every minute): LIVE matches inside the recovery lookback plus
    SCHEDULED matches whose kickoff fell inside the live window. One batched live-list call per
    pass. A LIVE match missing from that list gets a single confirmatory
    per-id fetch; it only finishes if the provider says so.
  - Recovery sweep (hourly): matches still LIVE/SCHEDULED past their maximum
    plausible duration but inside the lookback, fetched one by one. Also
    retries settlement for finished matches that still have unsettled bets.
  - Manual actions: score entry, mark finished, force live, manual matches.

Transitions are compare-and-set on the stored status and settlement only
awards unsettled bets, so triggers can overlap safely.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta

import config
import lifecycle
import models
import settlement
from entities import Fixture, MatchStatus
from fixtures import FixtureSource

logger = logging.getLogger("matchday.scheduler")


@dataclass
class PassSummary:
    checked: int = 0
    updated: int = 0
    finished: int = 0
    settled: int = 0
    errors: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fast_poll_bounds(now: datetime) -> dict:
    """LIVE matches older than the recovery lookback are presumed abandoned."""
    return {
        "lookback_start": models.utc_iso(now - timedelta(hours=config.RECOVERY_LOOKBACK_HOURS)),
        "window_start": models.utc_iso(now - timedelta(hours=config.LIVE_WINDOW_HOURS)),
        "now": models.utc_iso(now),
    }


class Reconciler:
    """
    Drives provider-backed matches through their lifecycle.

    `had_tracked_matches` remembers whether the previous fast poll found
    anything to track, only to keep the log quiet between match days. It is
    per-process and carries no correctness weight.
    """

    def __init__(self, source: FixtureSource):
        self.source = source
        self.had_tracked_matches = False

    # ------------------------------------------------------------------
    # Provider calls (never raise)
    # ------------------------------------------------------------------

    def _list_in_progress(self) -> list[Fixture] | None:
        try:
            return self.source.list_in_progress()
        except Exception as e:
            logger.error("Live fixture list failed: %s", e)
            return None

    def _get_by_id(self, external_id: str) -> Fixture | None:
        try:
            return self.source.get_by_id(external_id)
        except Exception as e:
            logger.error("Fixture fetch failed for %s: %s", external_id, e)
            return None

    # ------------------------------------------------------------------
    # Shared transition + settlement step
    # ------------------------------------------------------------------

    def _apply(self, match, fixture: Fixture, summary: PassSummary):
        try:
            with models.get_db() as conn:
                transition = lifecycle.apply_snapshot(conn, match, fixture)
        except Exception:
            logger.exception("Failed to apply provider data to match #%d", match["id"])
            summary.errors += 1
            return

        if transition.applied:
            summary.updated += 1
        if transition.finished:
            summary.finished += 1
            report = settlement.settle_match(match["id"])
            summary.settled += report.settled

    def _confirm_finished(self, match, summary: PassSummary):
        """A LIVE match dropped off the live list. Only the provider can finish it."""
        fixture = self._get_by_id(match["external_id"])
        if fixture is None:
            logger.warning("Match #%d left the live list but could not be confirmed, "
                           "retrying next pass", match["id"])
            summary.errors += 1
            return
        if fixture.status != MatchStatus.FINISHED:
            logger.info("Match #%d left the live list but provider reports %s (%s), "
                        "retrying next pass", match["id"], fixture.status.value,
                        fixture.status_short)
            return
        self._apply(match, fixture, summary)

    # ------------------------------------------------------------------
    # Fast poll
    # ------------------------------------------------------------------

    def refresh_live_matches(self, now: datetime | None = None) -> PassSummary:
        now = now or _utcnow()
        summary = PassSummary()

        with models.get_db() as conn:
            matches = models.get_fast_poll_matches(conn, **_fast_poll_bounds(now))
        if not matches:
            return summary

        live = self._list_in_progress()
        if live is None:
            logger.warning("Live fixtures unavailable, skipping pass for %d match(es)",
                           len(matches))
            summary.errors += 1
            return summary
        live_by_id = {f.external_id: f for f in live}

        for match in matches:
            summary.checked += 1
            fixture = live_by_id.get(match["external_id"])
            if fixture is not None:
                self._apply(match, fixture, summary)
            elif match["status"] == MatchStatus.LIVE.value:
                self._confirm_finished(match, summary)
            # SCHEDULED and not in the live list: not started yet

        logger.info("Live refresh: %d checked, %d updated, %d finished, "
                    "%d bet(s) settled", summary.checked, summary.updated,
                    summary.finished, summary.settled)
        return summary

    def check_and_refresh(self, now: datetime | None = None) -> PassSummary:
        """Fast poll entry point. Skips the provider entirely when nothing is in play."""
        now = now or _utcnow()
        with models.get_db() as conn:
            live_count, recent_count = models.count_fast_poll_matches(
                conn, **_fast_poll_bounds(now)
            )

        if live_count + recent_count == 0:
            if self.had_tracked_matches:
                logger.info("No live matches to track, pausing provider calls")
                self.had_tracked_matches = False
            return PassSummary()

        if not self.had_tracked_matches:
            logger.info("Found matches to track (%d live, %d recently started)",
                        live_count, recent_count)
        self.had_tracked_matches = True
        return self.refresh_live_matches(now)

    # ------------------------------------------------------------------
    # Recovery sweep
    # ------------------------------------------------------------------

    def fix_stuck_matches(self, now: datetime | None = None) -> PassSummary:
        """Fetch overdue LIVE/SCHEDULED matches directly, then retry pending settlements."""
        now = now or _utcnow()
        lookback_start = now - timedelta(hours=config.RECOVERY_LOOKBACK_HOURS)
        overdue_before = now - timedelta(hours=config.MAX_MATCH_DURATION_HOURS)
        summary = PassSummary()

        with models.get_db() as conn:
            stuck = models.get_stuck_matches(
                conn,
                lookback_start=models.utc_iso(lookback_start),
                overdue_before=models.utc_iso(overdue_before),
            )

        if stuck:
            logger.info("Found %d stuck match(es) to fix", len(stuck))

        for i, match in enumerate(stuck):
            if i and config.RECOVERY_FETCH_DELAY_SECONDS > 0:
                time.sleep(config.RECOVERY_FETCH_DELAY_SECONDS)
            summary.checked += 1
            fixture = self._get_by_id(match["external_id"])
            if fixture is None:
                summary.errors += 1
                continue
            self._apply(match, fixture, summary)

        summary.settled += settle_outstanding()

        if stuck or summary.settled:
            logger.info("Recovery sweep: %d checked, %d updated, %d finished, "
                        "%d bet(s) settled", summary.checked, summary.updated,
                        summary.finished, summary.settled)
        return summary


def settle_outstanding() -> int:
    """Retry settlement for finished matches that still carry unsettled bets."""
    with models.get_db() as conn:
        match_ids = models.get_finished_match_ids_with_unsettled_bets(conn)

    total = 0
    for match_id in match_ids:
        total += settlement.settle_match(match_id).settled
    return total


# ---------------------------------------------------------------------------
# Manual triggers (caller has already authorized the group owner)
# ---------------------------------------------------------------------------

def manual_update_score(match_id: int, group_id: int, home_score, away_score,
                        now: datetime | None = None) -> lifecycle.Transition:
    with models.get_db() as conn:
        return lifecycle.set_manual_score(conn, match_id, group_id, home_score,
                                          away_score, now=now)


def manual_mark_finished(match_id: int, group_id: int, home_score=None,
                         away_score=None, now: datetime | None = None
                         ) -> tuple[lifecycle.Transition, settlement.SettlementReport]:
    with models.get_db() as conn:
        transition = lifecycle.mark_finished(conn, match_id, group_id, home_score,
                                             away_score, now=now)
    return transition, settlement.settle_match(match_id)


def manual_force_live(match_id: int, group_id: int, home_score=0,
                      away_score=0) -> lifecycle.Transition:
    with models.get_db() as conn:
        return lifecycle.force_live(conn, match_id, group_id, home_score, away_score)


def manual_create_match(*, group_id: int, home_team: str, away_team: str,
                        kickoff: datetime, home_score=None, away_score=None,
                        now: datetime | None = None) -> int:
    with models.get_db() as conn:
        return lifecycle.create_manual_match(
            conn, group_id=group_id, home_team=home_team, away_team=away_team,
            kickoff=kickoff, home_score=home_score, away_score=away_score, now=now,
        )
