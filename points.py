"""
Matchday points — scores a single prediction against a finished result.

Two payout schemes:
  - Flat: 1 point for a correct outcome.
  - CreditWager: stake x odds multiplier for a correct outcome, floored to a
    whole credit. A wager with no stake earns the bare multiplier (floored).

An incorrect prediction always scores 0. Malformed multipliers fall back to
the neutral value 1; scoring never raises.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR

from entities import BetType, Multipliers, NEUTRAL_MULTIPLIERS, Outcome


@dataclass(frozen=True)
class Flat:
    pass


@dataclass(frozen=True)
class CreditWager:
    multipliers: Multipliers = NEUTRAL_MULTIPLIERS


PayoutScheme = Flat | CreditWager


def _multiplier(value) -> float:
    """Coerce a stored/provider multiplier, defaulting to 1 when unusable."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return 1.0
    if math.isnan(result) or math.isinf(result) or result < 0:
        return 1.0
    return result


def multipliers_from_row(row) -> Multipliers:
    """Build multipliers from a relative_points row (or any mapping)."""
    if row is None:
        return NEUTRAL_MULTIPLIERS
    keys = row.keys()
    return Multipliers(
        home_win=_multiplier(row["home_win"] if "home_win" in keys else None),
        draw=_multiplier(row["draw"] if "draw" in keys else None),
        away_win=_multiplier(row["away_win"] if "away_win" in keys else None),
    )


def scheme_for_group(bet_type: str, relative_row=None) -> PayoutScheme:
    """Resolve a group's payout scheme; relative groups carry the match odds."""
    if bet_type == BetType.RELATIVE.value:
        return CreditWager(multipliers_from_row(relative_row))
    return Flat()


def outcome_for_score(home_score: int | None, away_score: int | None) -> Outcome | None:
    """Derive the 1X2 outcome from a scoreline. None if either side is unknown."""
    if home_score is None or away_score is None:
        return None
    if home_score > away_score:
        return Outcome.HOME
    if home_score < away_score:
        return Outcome.AWAY
    return Outcome.DRAW


def _as_outcome(value) -> Outcome | None:
    try:
        return Outcome(value)
    except ValueError:
        return None


def floor_credits(stake: int, multiplier: float) -> int:
    """floor(stake x multiplier), computed in decimal so 10 x 2.3 is 23, not 22."""
    product = Decimal(stake) * Decimal(str(multiplier))
    return int(product.to_integral_value(rounding=ROUND_FLOOR))


def score(predicted, actual, scheme: PayoutScheme, stake: int | None = None) -> int:
    """Points awarded for one prediction. Always an integer >= 0."""
    actual_outcome = _as_outcome(actual)
    if actual_outcome is None or _as_outcome(predicted) != actual_outcome:
        return 0

    if isinstance(scheme, CreditWager):
        multiplier = _multiplier(scheme.multipliers.for_outcome(actual_outcome))
        return max(0, floor_credits(1 if stake is None else stake, multiplier))

    return 1
