"""
Matchday fixture source — the external sports-data provider behind an
interface the reconciliation engine can rely on.

Every call has a bounded timeout. Failures are logged and reported as None
(or neutral multipliers for odds) so a provider outage never changes match
state; the next scheduled pass simply tries again.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime

import requests

import config
from entities import Fixture, MatchStatus, Multipliers, NEUTRAL_MULTIPLIERS

logger = logging.getLogger("matchday.fixtures")

# API-Football short status -> match status
STATUS_MAP = {
    "TBD": MatchStatus.SCHEDULED,
    "NS": MatchStatus.SCHEDULED,
    "1H": MatchStatus.LIVE,
    "HT": MatchStatus.LIVE,
    "2H": MatchStatus.LIVE,
    "ET": MatchStatus.LIVE,
    "BT": MatchStatus.LIVE,
    "P": MatchStatus.LIVE,
    "LIVE": MatchStatus.LIVE,
    "FT": MatchStatus.FINISHED,
    "AET": MatchStatus.FINISHED,
    "PEN": MatchStatus.FINISHED,
    "AWD": MatchStatus.FINISHED,
    "WO": MatchStatus.FINISHED,
    "PST": MatchStatus.POSTPONED,
    "SUSP": MatchStatus.POSTPONED,
    "INT": MatchStatus.POSTPONED,
    "CANC": MatchStatus.CANCELLED,
    "ABD": MatchStatus.CANCELLED,
}


def map_status(status_short: str | None) -> MatchStatus:
    return STATUS_MAP.get(status_short or "", MatchStatus.SCHEDULED)


def to_external_id(fixture_id) -> str:
    return f"{config.EXTERNAL_ID_PREFIX}{fixture_id}"


def to_provider_id(external_id: str) -> str:
    return str(external_id).removeprefix(config.EXTERNAL_ID_PREFIX)


class FixtureSource(ABC):
    """What the reconciliation engine needs from a sports-data provider."""

    @abstractmethod
    def list_in_progress(self) -> list[Fixture] | None:
        """All fixtures currently in play, or None if the provider could not be reached."""

    @abstractmethod
    def get_by_id(self, external_id: str) -> Fixture | None:
        """One fixture, or None if not found or the provider could not be reached."""

    @abstractmethod
    def get_odds(self, external_id: str) -> tuple[Multipliers, str | None]:
        """Match-winner multipliers and the bookmaker they came from. Neutral on any failure."""


class APIFootballSource(FixtureSource):
    def __init__(self, api_key: str | None = None, base_url: str | None = None,
                 timeout: float | None = None):
        self.api_key = api_key or config.API_FOOTBALL_KEY
        if not self.api_key:
            raise ValueError("Missing API key. Set API_FOOTBALL_KEY or pass api_key explicitly.")
        self.base_url = (base_url or config.API_FOOTBALL_BASE).rstrip("/")
        self.timeout = timeout or config.API_TIMEOUT_SECONDS

    def _get(self, path: str, params: dict) -> list | None:
        """GET an endpoint and return its `response` list, or None on any failure."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = requests.get(
                url,
                params=params,
                headers={"x-apisports-key": self.api_key},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Network error fetching %s %s: %s", path, params, e)
            return None

        if resp.status_code != 200:
            logger.error("API error for %s %s: HTTP %d: %s",
                         path, params, resp.status_code, resp.text[:200])
            return None

        try:
            payload = resp.json()
        except ValueError:
            logger.error("Non-JSON response from %s %s", path, params)
            return None

        rows = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            logger.error("Unexpected API response shape from %s: %s",
                         url, str(payload)[:200])
            return None
        return rows

    # ── fixtures ─────────────────────────────────────────────────────────────

    def list_in_progress(self) -> list[Fixture] | None:
        rows = self._get("fixtures", {"live": "all"})
        if rows is None:
            return None

        fixtures = []
        for row in rows:
            fixture = parse_fixture(row, in_progress=True)
            if fixture is not None:
                fixtures.append(fixture)
        logger.debug("Provider reports %d live fixture(s)", len(fixtures))
        return fixtures

    def get_by_id(self, external_id: str) -> Fixture | None:
        rows = self._get("fixtures", {"id": to_provider_id(external_id)})
        if not rows:
            if rows is not None:
                logger.warning("Fixture %s not found at provider", external_id)
            return None
        return parse_fixture(rows[0])

    # ── odds ─────────────────────────────────────────────────────────────────

    def get_odds(self, external_id: str) -> tuple[Multipliers, str | None]:
        rows = self._get("odds", {"fixture": to_provider_id(external_id)})
        if rows:
            found = parse_match_winner_odds(rows[0])
            if found is not None:
                return found
        logger.info("No odds found for fixture %s, using neutral multipliers",
                    external_id)
        return NEUTRAL_MULTIPLIERS, None


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------

def _to_int(value) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_fixture(row: dict, in_progress: bool = False) -> Fixture | None:
    """
    Convert one API-Football fixture payload into a Fixture.

    The live endpoint only lists fixtures in play, so `in_progress` pins the
    status to LIVE and defaults missing goals to 0. Outcome is never taken
    from the provider; it is derived from the score when a match finishes.
    """
    try:
        fixture = row["fixture"]
        provider_id = fixture["id"]
    except (KeyError, TypeError):
        logger.warning("Skipping malformed fixture payload: %s", str(row)[:200])
        return None

    status = fixture.get("status") or {}
    goals = row.get("goals") or {}
    teams = row.get("teams") or {}
    league = row.get("league") or {}
    status_short = status.get("short")

    home_score = _to_int(goals.get("home"))
    away_score = _to_int(goals.get("away"))
    if in_progress:
        home_score = 0 if home_score is None else home_score
        away_score = 0 if away_score is None else away_score

    kickoff = None
    if fixture.get("date"):
        try:
            kickoff = datetime.fromisoformat(fixture["date"])
        except ValueError:
            kickoff = None

    season = league.get("season")
    return Fixture(
        external_id=to_external_id(provider_id),
        status=MatchStatus.LIVE if in_progress else map_status(status_short),
        home_score=home_score,
        away_score=away_score,
        status_short=status_short,
        elapsed=_to_int(status.get("elapsed")),
        extra_time=_to_int(status.get("extra")),
        home_team=(teams.get("home") or {}).get("name"),
        away_team=(teams.get("away") or {}).get("name"),
        kickoff=kickoff,
        competition=league.get("name"),
        season=str(season) if season is not None else None,
    )


def parse_match_winner_odds(row: dict) -> tuple[Multipliers, str] | None:
    """First bookmaker with a complete Home/Draw/Away 'Match Winner' market."""
    for bookmaker in row.get("bookmakers") or []:
        for bet in bookmaker.get("bets") or []:
            if bet.get("name") != "Match Winner":
                continue
            values = {v.get("value"): v.get("odd") for v in bet.get("values") or []}
            try:
                multipliers = Multipliers(
                    home_win=float(values["Home"]),
                    draw=float(values["Draw"]),
                    away_win=float(values["Away"]),
                )
            except (KeyError, TypeError, ValueError):
                continue
            return multipliers, bookmaker.get("name")
    return None
