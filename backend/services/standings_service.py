"""
Box standings with the tie-break chain:

1. total league points (desc)
2. head-to-head wins, only when exactly two players share a point total
3. games won (desc)
4. point differential (desc)
5. games lost (asc)

Anything still tied keeps its input order.
"""

from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any, Dict, Hashable, List, Sequence

from backend.utils.constants import BOX_SIZE
from backend.utils.errors import ValidationError


@dataclass
class BoxStatsLine:
    """Minimal stats row accepted by compute_box_standings (PlayerBoxStats rows work too)."""

    player_id: Hashable
    total_points: int = 0
    games_won: int = 0
    games_lost: int = 0
    points_for: int = 0
    points_against: int = 0
    opponent_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)


@dataclass
class BoxStanding:
    position: int
    player_id: Hashable
    total_points: int
    games_won: int
    games_lost: int
    point_differential: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "player_id": self.player_id,
            "total_points": self.total_points,
            "games_won": self.games_won,
            "games_lost": self.games_lost,
            "point_differential": self.point_differential,
        }


def point_differential(stats: Any) -> int:
    return (stats.points_for or 0) - (stats.points_against or 0)


def head_to_head_wins(stats: Any, opponent_id: Hashable) -> int:
    """Wins recorded by ``stats`` against one opponent (keys are stringified IDs)."""
    tally = (stats.opponent_stats or {}).get(str(opponent_id)) or {}
    return tally.get("wins", 0)


def _compare(a: Any, b: Any, two_way_ties: set) -> int:
    if a.total_points != b.total_points:
        return -1 if a.total_points > b.total_points else 1

    if a.total_points in two_way_ties:
        a_wins = head_to_head_wins(a, b.player_id)
        b_wins = head_to_head_wins(b, a.player_id)
        if a_wins != b_wins:
            return -1 if a_wins > b_wins else 1

    if a.games_won != b.games_won:
        return -1 if a.games_won > b.games_won else 1

    a_diff = point_differential(a)
    b_diff = point_differential(b)
    if a_diff != b_diff:
        return -1 if a_diff > b_diff else 1

    if a.games_lost != b.games_lost:
        return -1 if a.games_lost < b.games_lost else 1

    return 0


def rank_box(stats_rows: Sequence[Any]) -> List[Any]:
    """
    Order a box's stats rows best to worst.

    Raises:
        ValidationError: If there are not exactly 4 rows
    """
    if len(stats_rows) != BOX_SIZE:
        raise ValidationError(f"Standings need exactly {BOX_SIZE} players, got {len(stats_rows)}")

    point_counts: Dict[int, int] = {}
    for row in stats_rows:
        point_counts[row.total_points] = point_counts.get(row.total_points, 0) + 1
    two_way_ties = {points for points, count in point_counts.items() if count == 2}

    # sorted() is stable, so unresolved ties keep input order
    return sorted(stats_rows, key=cmp_to_key(lambda a, b: _compare(a, b, two_way_ties)))


def compute_box_standings(stats_rows: Sequence[Any]) -> List[BoxStanding]:
    """Rank a box and return positioned standings (1 = best)."""
    return [
        BoxStanding(
            position=index + 1,
            player_id=row.player_id,
            total_points=row.total_points or 0,
            games_won=row.games_won or 0,
            games_lost=row.games_lost or 0,
            point_differential=point_differential(row),
        )
        for index, row in enumerate(rank_box(stats_rows))
    ]
