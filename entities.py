"""
Matchday shared types — match statuses, outcomes, provider snapshots and
the errors surfaced to callers of administrative actions.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class MatchStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    FINISHED = "FINISHED"
    POSTPONED = "POSTPONED"
    CANCELLED = "CANCELLED"


class Outcome(str, Enum):
    HOME = "HOME"
    DRAW = "DRAW"
    AWAY = "AWAY"


class BetType(str, Enum):
    CLASSIC = "classic"     # flat points
    RELATIVE = "relative"   # credit wagers against odds


class MatchType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


@dataclass
class Fixture:
    """One provider snapshot of a fixture. Telemetry fields are advisory."""
    external_id: str
    status: MatchStatus
    home_score: int | None = None
    away_score: int | None = None
    status_short: str | None = None
    elapsed: int | None = None
    extra_time: int | None = None
    home_team: str | None = None
    away_team: str | None = None
    kickoff: datetime | None = None
    competition: str | None = None
    season: str | None = None


@dataclass(frozen=True)
class Multipliers:
    home_win: float = 1.0
    draw: float = 1.0
    away_win: float = 1.0

    def for_outcome(self, outcome: Outcome) -> float:
        if outcome == Outcome.HOME:
            return self.home_win
        if outcome == Outcome.AWAY:
            return self.away_win
        return self.draw


NEUTRAL_MULTIPLIERS = Multipliers()


# ---------------------------------------------------------------------------
# Caller-visible errors
# ---------------------------------------------------------------------------

class RejectedAction(ValueError):
    """An action that would violate a match or wager invariant. Nothing was written."""


class NotFound(RejectedAction):
    pass


class OverrideRejected(RejectedAction):
    pass


class BetRejected(RejectedAction):
    pass
