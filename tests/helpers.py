"""Builders for groups, matches and bets used across the test modules."""

from datetime import datetime, timezone, timedelta

import betting
import groups
import models
from entities import Fixture, MatchStatus, NEUTRAL_MULTIPLIERS
from fixtures import FixtureSource

# Fixed clock for everything that takes `now`
NOW = datetime(2024, 5, 18, 15, 0, tzinfo=timezone.utc)


class StubSource(FixtureSource):
    """
    Scripted provider. `live` is returned by list_in_progress (None simulates
    an outage); `by_id` maps external ids to a Fixture, None or an exception.
    """

    def __init__(self):
        self.live = []
        self.by_id = {}
        self.odds = {}
        self.calls = []

    def list_in_progress(self):
        self.calls.append(("list",))
        return None if self.live is None else list(self.live)

    def get_by_id(self, external_id):
        self.calls.append(("get", external_id))
        result = self.by_id.get(external_id)
        if isinstance(result, Exception):
            raise result
        return result

    def get_odds(self, external_id):
        self.calls.append(("odds", external_id))
        return self.odds.get(external_id, (NEUTRAL_MULTIPLIERS, None))

    def fetched_ids(self):
        return [c[1] for c in self.calls if c[0] == "get"]


def fixture(external_id, status, home=None, away=None, **kwargs) -> Fixture:
    return Fixture(external_id=external_id, status=status, home_score=home,
                   away_score=away, **kwargs)


def make_group(*, bet_type="classic", match_type="automatic", creator="owner",
               starting_credits=100, members=()) -> int:
    with models.get_db() as conn:
        group_id = groups.create_group(
            conn, name="Sunday League", creator_id=creator, bet_type=bet_type,
            match_type=match_type, starting_credits=starting_credits,
        )
        for user_id in members:
            groups.join_group(conn, group_id, user_id)
    return group_id


def make_match(group_ids, *, kickoff, external_id="apifootball_1001",
               home_team="Arsenal", away_team="Chelsea", multipliers=None) -> int:
    """A SCHEDULED match linked to the given groups (with odds for relative ones)."""
    if isinstance(group_ids, int):
        group_ids = [group_ids]
    with models.get_db() as conn:
        match_id = models.insert_match(
            conn,
            external_id=external_id,
            home_team=home_team,
            away_team=away_team,
            kickoff=models.utc_iso(kickoff),
            status=MatchStatus.SCHEDULED.value,
            competition="Premier League",
        )
        for group_id in group_ids:
            models.link_match_to_group(conn, match_id, group_id)
            if multipliers is not None:
                models.upsert_relative_points(
                    conn, match_id=match_id, group_id=group_id,
                    home_win=multipliers.home_win, draw=multipliers.draw,
                    away_win=multipliers.away_win, bookmaker="Bet365",
                )
    return match_id


def place(user_id, match_id, group_id, outcome, wager=None, *, kickoff) -> int:
    """Place a bet an hour before kickoff."""
    with models.get_db() as conn:
        return betting.place_bet(
            conn, user_id=user_id, match_id=match_id, group_id=group_id,
            outcome=outcome, wager_amount=wager, now=kickoff - timedelta(hours=1),
        )


def set_state(match_id, status, home=None, away=None, outcome=None):
    """Force a stored match state, bypassing the lifecycle rules."""
    with models.get_db() as conn:
        current = models.get_match(conn, match_id)["status"]
        models.update_match_state(
            conn, match_id, expected_status=current, status=status.value,
            home_score=home, away_score=away, outcome=outcome,
        )


def get_match(match_id):
    with models.get_db() as conn:
        return models.get_match(conn, match_id)


def get_bet(bet_id):
    with models.get_db() as conn:
        return models.get_bet_by_id(conn, bet_id)


def balance(group_id, user_id) -> int:
    with models.get_db() as conn:
        return models.get_member(conn, group_id, user_id)["points"]
