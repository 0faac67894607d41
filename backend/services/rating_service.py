"""
Rating update service.
Turns a completed match's scores into new ratings for every participant.
"""

from dataclasses import dataclass
from typing import Any, Dict, Hashable, Mapping, Optional, Sequence

from backend.utils.constants import (
    DEFAULT_RATING,
    MIN_RATING,
    MAX_RATING,
    RATING_K_FACTOR,
    RATING_SCALE,
    MARGIN_BASE_MULTIPLIER,
    MARGIN_STEP,
    MARGIN_MIN_MULTIPLIER,
    MARGIN_MAX_MULTIPLIER,
    PERFORMANCE_WEIGHT,
    PERFORMANCE_MIN_MULTIPLIER,
    PERFORMANCE_MAX_MULTIPLIER,
)
from backend.utils.errors import ValidationError


# ============================================================================
# Helper Functions (Rating Calculations)
# ============================================================================

def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def expected_score(rating_a: float, rating_b: float) -> float:
    """
    Calculate expected score for side A against side B.

    Formula: P(A beats B) = 1 / (1 + 10^((rating_B - rating_A) / scale))
    The scale is tuned to the 2.0 - 8.0 rating range, so a one point gap
    is worth far more than it would be on a chess-style scale.
    """
    return 1 / (1 + 10 ** ((rating_b - rating_a) / RATING_SCALE))


def margin_multiplier(winner_score: int, loser_score: int) -> float:
    """
    Scale the rating change by the winning margin.

    0.7 at a 1-point margin, +0.075 per additional point, clamped to [0.5, 1.5].
    """
    margin = winner_score - loser_score
    return clamp(
        MARGIN_BASE_MULTIPLIER + MARGIN_STEP * (margin - 1),
        MARGIN_MIN_MULTIPLIER,
        MARGIN_MAX_MULTIPLIER,
    )


def performance_multiplier(player_rating: float, team_rating: float, team_size: int, is_winner: bool) -> float:
    """
    Individual weighting inside a doubles team.

    Players rated above their team average gain less when winning and lose
    more when losing; players below the average get the opposite. Singles
    players always get 1.0.
    """
    if team_size < 2:
        return 1.0

    difference = player_rating - team_rating
    if is_winner:
        multiplier = 1 - PERFORMANCE_WEIGHT * difference
    else:
        multiplier = 1 + PERFORMANCE_WEIGHT * difference
    return clamp(multiplier, PERFORMANCE_MIN_MULTIPLIER, PERFORMANCE_MAX_MULTIPLIER)


def new_rating(
    rating: float,
    expected: float,
    actual: float,
    margin_factor: float = 1.0,
    performance_factor: float = 1.0,
) -> float:
    """Apply one rating update and clamp to [MIN_RATING, MAX_RATING]."""
    change = RATING_K_FACTOR * (actual - expected) * 2 * margin_factor * performance_factor
    return clamp(rating + change, MIN_RATING, MAX_RATING)


def team_rating(player_ids: Sequence[Hashable], ratings: Mapping[Hashable, float]) -> float:
    """Average rating of a team; players without a rating count as DEFAULT_RATING."""
    return sum(ratings.get(player_id, DEFAULT_RATING) for player_id in player_ids) / len(player_ids)


def calculate_winner(team1_score: int, team2_score: int) -> int:
    """
    Determine winner: 1 = team1, 2 = team2.

    Raises:
        ValidationError: If the scores are tied (draws are not allowed)
    """
    if team1_score > team2_score:
        return 1
    elif team2_score > team1_score:
        return 2
    raise ValidationError("Match cannot end in a tie")


# ============================================================================
# Match Result Validation
# ============================================================================

def validate_match_result(
    team1_ids: Sequence[Hashable],
    team1_score: Any,
    team2_ids: Sequence[Hashable],
    team2_score: Any,
) -> None:
    """
    Check a submitted result before any rating is touched.

    Raises:
        ValidationError: Empty or unequal teams, teams larger than two, a
            player on both teams, negative or non-integer scores, or a tie.
    """
    if not team1_ids or not team2_ids:
        raise ValidationError("Both teams must have at least one player")
    if len(team1_ids) != len(team2_ids):
        raise ValidationError(
            f"Teams must be the same size, got {len(team1_ids)} and {len(team2_ids)}"
        )
    if len(team1_ids) > 2:
        raise ValidationError(f"Teams must have 1 or 2 players, got {len(team1_ids)}")
    if len(set(team1_ids) | set(team2_ids)) != len(team1_ids) + len(team2_ids):
        raise ValidationError("A player cannot appear twice in the same match")

    for score in (team1_score, team2_score):
        if isinstance(score, bool) or not isinstance(score, int):
            raise ValidationError(f"Scores must be whole numbers, got {score!r}")
        if score < 0:
            raise ValidationError(f"Scores cannot be negative, got {score}")

    calculate_winner(team1_score, team2_score)


# ============================================================================
# Rating Changes
# ============================================================================

@dataclass(frozen=True)
class RatingChange:
    """Before/after rating for one participant."""

    before: float
    after: float

    @property
    def delta(self) -> float:
        return self.after - self.before

    def to_dict(self) -> Dict[str, float]:
        return {"before": self.before, "after": self.after}


def compute_rating_changes(
    team1_ids: Sequence[Hashable],
    team1_score: int,
    team2_ids: Sequence[Hashable],
    team2_score: int,
    pre_match_ratings: Optional[Mapping[Hashable, float]] = None,
) -> Dict[Hashable, RatingChange]:
    """
    Compute new ratings for every participant of a completed match.

    Pure function: nothing is persisted and the input mapping is not mutated.
    The caller is responsible for writing all changes in one transaction.

    Args:
        team1_ids: Player IDs on team 1
        team1_score: Team 1 score
        team2_ids: Player IDs on team 2
        team2_score: Team 2 score
        pre_match_ratings: Current rating per player ID

    Returns:
        Dict mapping player ID to its RatingChange
    """
    validate_match_result(team1_ids, team1_score, team2_ids, team2_score)
    ratings = dict(pre_match_ratings or {})

    winner = calculate_winner(team1_score, team2_score)
    winner_score = max(team1_score, team2_score)
    loser_score = min(team1_score, team2_score)
    margin_factor = margin_multiplier(winner_score, loser_score)

    team1_rating = team_rating(team1_ids, ratings)
    team2_rating = team_rating(team2_ids, ratings)

    sides = [
        (list(team1_ids), team1_rating, expected_score(team1_rating, team2_rating), winner == 1),
        (list(team2_ids), team2_rating, expected_score(team2_rating, team1_rating), winner == 2),
    ]

    changes: Dict[Hashable, RatingChange] = {}
    for player_ids, side_rating, expected, is_winner in sides:
        actual = 1.0 if is_winner else 0.0
        for player_id in player_ids:
            before = ratings.get(player_id, DEFAULT_RATING)
            performance_factor = performance_multiplier(before, side_rating, len(player_ids), is_winner)
            after = new_rating(before, expected, actual, margin_factor, performance_factor)
            changes[player_id] = RatingChange(before=before, after=after)

    return changes


def rating_changes_to_dict(changes: Mapping[Hashable, RatingChange]) -> Dict[str, Dict[str, float]]:
    """Serialize rating changes for JSON storage (keys become strings)."""
    return {str(player_id): change.to_dict() for player_id, change in changes.items()}
