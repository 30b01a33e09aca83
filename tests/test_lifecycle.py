"""Test match status transitions, snapshot merging and manual overrides."""

import logging
from datetime import timedelta

import pytest

import lifecycle
import models
from entities import MatchStatus, NotFound, OverrideRejected
from tests.helpers import NOW, fixture, get_match, make_group, make_match, set_state

EXT = "apifootball_1001"


def apply(match_id, snap):
    with models.get_db() as conn:
        match = models.get_match(conn, match_id)
        return lifecycle.apply_snapshot(conn, match, snap)


class TestCanTransition:
    @pytest.mark.parametrize("new", [MatchStatus.LIVE, MatchStatus.FINISHED,
                                     MatchStatus.POSTPONED, MatchStatus.CANCELLED])
    def test_scheduled_moves_anywhere(self, new):
        assert lifecycle.can_transition(MatchStatus.SCHEDULED, new)

    def test_live_only_finishes(self):
        assert lifecycle.can_transition(MatchStatus.LIVE, MatchStatus.FINISHED)
        assert not lifecycle.can_transition(MatchStatus.LIVE, MatchStatus.SCHEDULED)
        assert not lifecycle.can_transition(MatchStatus.LIVE, MatchStatus.CANCELLED)

    @pytest.mark.parametrize("terminal", [MatchStatus.FINISHED, MatchStatus.POSTPONED,
                                          MatchStatus.CANCELLED])
    def test_terminal_states(self, terminal):
        for new in MatchStatus:
            assert not lifecycle.can_transition(terminal, new)


class TestApplySnapshot:
    def test_live_snapshot_updates_score_and_telemetry(self, db):
        gid = make_group()
        mid = make_match(gid, kickoff=NOW - timedelta(minutes=30))

        t = apply(mid, fixture(EXT, MatchStatus.LIVE, 1, 0, elapsed=31, status_short="1H"))

        assert t.applied and not t.finished
        match = get_match(mid)
        assert match["status"] == "LIVE"
        assert (match["home_score"], match["away_score"]) == (1, 0)
        assert match["elapsed"] == 31
        assert match["outcome"] is None

    def test_finish_derives_outcome_from_score(self, db):
        gid = make_group()
        mid = make_match(gid, kickoff=NOW - timedelta(hours=2))
        set_state(mid, MatchStatus.LIVE, 0, 0)

        t = apply(mid, fixture(EXT, MatchStatus.FINISHED, 1, 3, status_short="FT"))

        assert t.finished
        match = get_match(mid)
        assert match["status"] == "FINISHED"
        assert match["outcome"] == "AWAY"

    def test_finished_without_score_is_left_for_next_pass(self, db):
        gid = make_group()
        mid = make_match(gid, kickoff=NOW - timedelta(hours=2))
        set_state(mid, MatchStatus.LIVE, 1, 1)

        t = apply(mid, fixture(EXT, MatchStatus.FINISHED))

        assert not t.applied
        assert get_match(mid)["status"] == "LIVE"

    def test_stale_live_snapshot_never_regresses_finished(self, db, caplog):
        gid = make_group()
        mid = make_match(gid, kickoff=NOW - timedelta(hours=2))
        set_state(mid, MatchStatus.FINISHED, 2, 1, outcome="HOME")
        before = dict(get_match(mid))

        with caplog.at_level(logging.WARNING, logger="matchday.lifecycle"):
            t = apply(mid, fixture(EXT, MatchStatus.LIVE, 2, 2, status_short="2H"))

        assert not t.applied
        assert dict(get_match(mid)) == before
        assert "disagrees with finished match" in caplog.text

    def test_second_finish_is_not_a_finishing_transition(self, db):
        gid = make_group()
        mid = make_match(gid, kickoff=NOW - timedelta(hours=2))
        set_state(mid, MatchStatus.LIVE, 0, 0)

        first = apply(mid, fixture(EXT, MatchStatus.FINISHED, 2, 0))
        second = apply(mid, fixture(EXT, MatchStatus.FINISHED, 2, 0))

        assert first.finished
        assert not second.finished

    def test_disallowed_transition_is_ignored(self, db, caplog):
        gid = make_group()
        mid = make_match(gid, kickoff=NOW - timedelta(hours=1))
        set_state(mid, MatchStatus.LIVE, 0, 0)

        with caplog.at_level(logging.WARNING, logger="matchday.lifecycle"):
            t = apply(mid, fixture(EXT, MatchStatus.POSTPONED, status_short="SUSP"))

        assert not t.applied
        assert get_match(mid)["status"] == "LIVE"
        assert "Ignoring provider transition" in caplog.text

    def test_scoreless_refresh_keeps_provisional_score(self, db):
        gid = make_group()
        mid = make_match(gid, kickoff=NOW - timedelta(hours=1))
        set_state(mid, MatchStatus.SCHEDULED, 1, 0)

        apply(mid, fixture(EXT, MatchStatus.SCHEDULED, status_short="NS"))

        match = get_match(mid)
        assert (match["home_score"], match["away_score"]) == (1, 0)

    def test_stale_read_loses_compare_and_set(self, db):
        gid = make_group()
        mid = make_match(gid, kickoff=NOW - timedelta(hours=2))
        set_state(mid, MatchStatus.LIVE, 0, 0)
        stale = get_match(mid)
        set_state(mid, MatchStatus.FINISHED, 1, 0, outcome="HOME")

        with models.get_db() as conn:
            t = lifecycle.apply_snapshot(conn, stale, fixture(EXT, MatchStatus.FINISHED, 0, 1))

        assert not t.applied
        assert get_match(mid)["outcome"] == "HOME"


class TestManualOverrides:
    def test_manual_score_keeps_status_and_null_outcome(self, db):
        gid = make_group(match_type="manual")
        mid = make_match(gid, kickoff=NOW - timedelta(minutes=20), external_id=None)

        with models.get_db() as conn:
            lifecycle.set_manual_score(conn, mid, gid, 1, 0, now=NOW)

        match = get_match(mid)
        assert match["status"] == "SCHEDULED"
        assert (match["home_score"], match["away_score"]) == (1, 0)
        assert match["outcome"] is None

    def test_manual_score_before_kickoff_rejected(self, db):
        gid = make_group(match_type="manual")
        mid = make_match(gid, kickoff=NOW + timedelta(hours=1), external_id=None)

        with pytest.raises(OverrideRejected, match="before match starts"):
            with models.get_db() as conn:
                lifecycle.set_manual_score(conn, mid, gid, 1, 0, now=NOW)

    def test_mark_finished_uses_provisional_score(self, db):
        gid = make_group(match_type="manual")
        mid = make_match(gid, kickoff=NOW - timedelta(hours=2), external_id=None)
        with models.get_db() as conn:
            lifecycle.set_manual_score(conn, mid, gid, 0, 0, now=NOW)

        with models.get_db() as conn:
            t = lifecycle.mark_finished(conn, mid, gid, now=NOW)

        assert t.finished
        match = get_match(mid)
        assert match["status"] == "FINISHED"
        assert match["outcome"] == "DRAW"

    def test_mark_finished_needs_a_score(self, db):
        gid = make_group(match_type="manual")
        mid = make_match(gid, kickoff=NOW - timedelta(hours=2), external_id=None)

        with pytest.raises(OverrideRejected, match="final score is required"):
            with models.get_db() as conn:
                lifecycle.mark_finished(conn, mid, gid, now=NOW)

    def test_overrides_rejected_once_finished(self, db):
        gid = make_group(match_type="manual")
        mid = make_match(gid, kickoff=NOW - timedelta(hours=2), external_id=None)
        with models.get_db() as conn:
            lifecycle.mark_finished(conn, mid, gid, 2, 1, now=NOW)

        with pytest.raises(OverrideRejected, match="already has a final score"):
            with models.get_db() as conn:
                lifecycle.set_manual_score(conn, mid, gid, 0, 5, now=NOW)
        assert get_match(mid)["home_score"] == 2

    def test_overrides_rejected_for_automatic_groups(self, db):
        gid = make_group(match_type="automatic")
        mid = make_match(gid, kickoff=NOW - timedelta(hours=2))

        with pytest.raises(OverrideRejected, match="Automatic groups"):
            with models.get_db() as conn:
                lifecycle.mark_finished(conn, mid, gid, 1, 0, now=NOW)
        assert get_match(mid)["status"] == "SCHEDULED"

    def test_override_requires_match_in_group(self, db):
        gid = make_group(match_type="manual")
        other = make_group(match_type="manual")
        mid = make_match(other, kickoff=NOW - timedelta(hours=2), external_id=None)

        with pytest.raises(OverrideRejected, match="does not belong"):
            with models.get_db() as conn:
                lifecycle.force_live(conn, mid, gid)

    def test_unknown_match(self, db):
        gid = make_group(match_type="manual")
        with pytest.raises(NotFound):
            with models.get_db() as conn:
                lifecycle.force_live(conn, 999, gid)

    def test_negative_score_rejected(self, db):
        gid = make_group(match_type="manual")
        mid = make_match(gid, kickoff=NOW - timedelta(hours=1), external_id=None)
        with pytest.raises(OverrideRejected, match="negative"):
            with models.get_db() as conn:
                lifecycle.set_manual_score(conn, mid, gid, -1, 0, now=NOW)

    def test_force_live_defaults_to_nil_nil(self, db):
        gid = make_group(match_type="manual")
        mid = make_match(gid, kickoff=NOW + timedelta(hours=1), external_id=None)

        with models.get_db() as conn:
            lifecycle.force_live(conn, mid, gid)

        match = get_match(mid)
        assert match["status"] == "LIVE"
        assert (match["home_score"], match["away_score"]) == (0, 0)

        with pytest.raises(OverrideRejected):
            with models.get_db() as conn:
                lifecycle.force_live(conn, mid, gid)


class TestManualMatchCreation:
    def test_future_match_is_scheduled(self, db):
        gid = make_group(match_type="manual")
        with models.get_db() as conn:
            mid = lifecycle.create_manual_match(
                conn, group_id=gid, home_team="Ajax", away_team="PSV",
                kickoff=NOW + timedelta(days=1), now=NOW,
            )
            assert models.match_in_group(conn, mid, gid)

        match = get_match(mid)
        assert match["status"] == "SCHEDULED"
        assert match["external_id"] is None
        assert match["outcome"] is None

    def test_past_match_requires_scores(self, db):
        gid = make_group(match_type="manual")
        with pytest.raises(OverrideRejected, match="require home and away scores"):
            with models.get_db() as conn:
                lifecycle.create_manual_match(
                    conn, group_id=gid, home_team="Ajax", away_team="PSV",
                    kickoff=NOW - timedelta(days=1), now=NOW,
                )

    def test_past_match_is_created_finished(self, db):
        gid = make_group(match_type="manual")
        with models.get_db() as conn:
            mid = lifecycle.create_manual_match(
                conn, group_id=gid, home_team="Ajax", away_team="PSV",
                kickoff=NOW - timedelta(days=1), home_score=0, away_score=2, now=NOW,
            )
        match = get_match(mid)
        assert match["status"] == "FINISHED"
        assert match["outcome"] == "AWAY"

    def test_automatic_group_cannot_create_manual_matches(self, db):
        gid = make_group(match_type="automatic")
        with pytest.raises(OverrideRejected):
            with models.get_db() as conn:
                lifecycle.create_manual_match(
                    conn, group_id=gid, home_team="Ajax", away_team="PSV",
                    kickoff=NOW + timedelta(days=1), now=NOW,
                )
