"""
Box league rules: the fixed intra-box schedule, round/cycle state checks,
per-match stat aggregation and promotion/relegation between boxes.

Everything here is pure; data_service loads the rows, calls these functions
and persists the outcome in one transaction.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple

from backend.database.models import BoxLeagueStatus, MatchStatus
from backend.services.pairing_service import DoublesPairing, four_player_partitions
from backend.services.rating_service import calculate_winner
from backend.services.standings_service import BoxStanding
from backend.utils.constants import BOX_SIZE, BOX_POINTS_PER_WIN
from backend.utils.datetime_utils import utcnow
from backend.utils.errors import StateError, ValidationError

logger = logging.getLogger(__name__)

MOVE_PROMOTION = "promotion"
MOVE_RELEGATION = "relegation"
MOVE_STAY = "stay"

OPEN_MATCH_STATUSES = (MatchStatus.PENDING, MatchStatus.IN_PROGRESS)


# ============================================================================
# Fixed Box Schedule
# ============================================================================

@dataclass(frozen=True)
class BoxMatchPairing:
    match_number: int
    team1: Tuple[Hashable, Hashable]
    team2: Tuple[Hashable, Hashable]
    description: str

    @property
    def pairing(self) -> DoublesPairing:
        return DoublesPairing(self.team1, self.team2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_number": self.match_number,
            "team1": list(self.team1),
            "team2": list(self.team2),
            "description": self.description,
        }


_SCHEDULE_DESCRIPTIONS = (
    "Players 1&2 vs Players 3&4",
    "Players 1&3 vs Players 2&4",
    "Players 1&4 vs Players 2&3",
)


def generate_box_match_pairings(player_ids: Sequence[Hashable]) -> List[BoxMatchPairing]:
    """
    The three matches every box plays each round.

    For [p1, p2, p3, p4]: (p1,p2) v (p3,p4), (p1,p3) v (p2,p4),
    (p1,p4) v (p2,p3). Over one round each player partners every other player
    once and opposes every other player twice.

    Raises:
        ValidationError: Not exactly 4 distinct players
    """
    if len(player_ids) != BOX_SIZE or len(set(player_ids)) != BOX_SIZE:
        raise ValidationError(f"A box needs exactly {BOX_SIZE} distinct players, got {list(player_ids)}")

    return [
        BoxMatchPairing(
            match_number=index + 1,
            team1=partition.team1,
            team2=partition.team2,
            description=_SCHEDULE_DESCRIPTIONS[index],
        )
        for index, partition in enumerate(four_player_partitions(list(player_ids)))
    ]


# ============================================================================
# Round / Cycle State
# ============================================================================

def is_cycle_complete(league: Any) -> bool:
    """Informational only. Promotion/relegation must use validate_cycle_completion."""
    return league.current_round >= league.rounds_per_cycle


def validate_cycle_completion(league: Any, cycle_matches: Iterable[Any]) -> Tuple[bool, str]:
    """
    Validated cycle check: every round played and no match in the cycle still
    pending or in progress.

    Returns:
        Tuple of (complete, reason)
    """
    if not is_cycle_complete(league):
        return False, (
            f"Cycle {league.current_cycle} has played {league.current_round} of "
            f"{league.rounds_per_cycle} rounds"
        )

    open_matches = [match for match in cycle_matches if match.status in OPEN_MATCH_STATUSES]
    if open_matches:
        return False, f"{len(open_matches)} matches in cycle {league.current_cycle} are not completed"

    return True, f"Cycle {league.current_cycle} is complete"


def validate_box(box: Any) -> None:
    player_ids = list(box.player_ids or [])
    if len(player_ids) != BOX_SIZE or len(set(player_ids)) != BOX_SIZE:
        raise ValidationError(
            f"Box {box.box_number} must have exactly {BOX_SIZE} players, has {len(player_ids)}"
        )


def validate_round_creation(league: Any, boxes: Sequence[Any]) -> None:
    """
    Raises:
        StateError: League paused or completed, or the cycle is already complete
        ValidationError: No boxes, or a box without exactly 4 players
    """
    if league.status == BoxLeagueStatus.PAUSED:
        raise StateError("Cannot create a round while the league is paused")
    if league.status == BoxLeagueStatus.COMPLETED:
        raise StateError("Cannot create a round for a completed league")
    if is_cycle_complete(league):
        raise StateError(
            f"Cycle {league.current_cycle} is complete; run promotion/relegation before the next round"
        )
    if not boxes:
        raise ValidationError("League has no boxes")
    for box in boxes:
        validate_box(box)


def validate_ready_for_new_round(
    league: Any, boxes: Sequence[Any], pending_matches: Iterable[Any]
) -> Tuple[bool, str]:
    """Readiness check for the UI. Never raises."""
    try:
        validate_round_creation(league, boxes)
    except ValueError as e:
        return False, str(e)

    open_count = sum(1 for match in pending_matches if match.status in OPEN_MATCH_STATUSES)
    if open_count:
        return False, f"{open_count} matches from round {league.current_round} are still open"

    return True, f"Ready to create round {league.current_round + 1}"


_STATUS_TRANSITIONS = {
    BoxLeagueStatus.ACTIVE: {BoxLeagueStatus.PAUSED, BoxLeagueStatus.COMPLETED},
    BoxLeagueStatus.PAUSED: {BoxLeagueStatus.ACTIVE, BoxLeagueStatus.COMPLETED},
    BoxLeagueStatus.COMPLETED: set(),
}


def validate_status_transition(current: BoxLeagueStatus, new: BoxLeagueStatus) -> None:
    """Completed leagues are final; active and paused switch freely."""
    if current == new:
        return
    if new not in _STATUS_TRANSITIONS[BoxLeagueStatus(current)]:
        raise StateError(f"Cannot change league status from {current.value} to {new.value}")


def validate_swap(box_a: Any, box_b: Any, current_round_matches: Iterable[Any]) -> None:
    """
    Raises:
        StateError: Either box has a pending or in-progress match this round
    """
    box_ids = {box_a.id, box_b.id}
    blocking = [
        match for match in current_round_matches
        if match.box_id in box_ids and match.status in OPEN_MATCH_STATUSES
    ]
    if blocking:
        raise StateError(
            f"Cannot swap players while {len(blocking)} matches in their boxes are pending or in progress"
        )


def select_entry_box(league: Any, boxes: Sequence[Any]) -> Optional[Any]:
    """
    Box a newly added player joins.

    Uses the league's entry box when set, otherwise the bottom box. Returns
    None when the bottom box is full, meaning a new bottom box should be
    opened.

    Raises:
        ValidationError: The configured entry box does not exist or is full
    """
    ordered = sorted(boxes, key=lambda box: box.box_number)
    if league.new_player_entry_box is None:
        if not ordered or len(ordered[-1].player_ids or []) >= BOX_SIZE:
            return None
        return ordered[-1]

    for box in ordered:
        if box.box_number == league.new_player_entry_box:
            if len(box.player_ids or []) >= BOX_SIZE:
                raise ValidationError(f"Entry box {box.box_number} is full")
            return box
    raise ValidationError(f"Entry box {league.new_player_entry_box} does not exist")


# ============================================================================
# Stat Aggregation
# ============================================================================

def _increment(stats: Any, attribute: str, amount: int = 1) -> None:
    setattr(stats, attribute, (getattr(stats, attribute) or 0) + amount)


def _tally(tallies: Optional[Mapping[str, Dict[str, int]]], other_id: Hashable, won: bool) -> Dict[str, Dict[str, int]]:
    # Returns a new dict so JSON columns register the change
    updated = {key: dict(value) for key, value in (tallies or {}).items()}
    entry = updated.setdefault(str(other_id), {"wins": 0, "losses": 0})
    entry["wins" if won else "losses"] += 1
    return updated


def apply_box_match_result(stats_by_player: Mapping[Hashable, Any], match: Any) -> int:
    """
    Fold one completed box match into the players' cycle stats.

    Args:
        stats_by_player: Stats row per player ID (every match player must be present)
        match: Object with team1_player_ids, team2_player_ids, team1_score, team2_score

    Returns:
        Winning team (1 or 2)
    """
    winner = calculate_winner(match.team1_score, match.team2_score)
    sides = [
        (match.team1_player_ids, match.team2_player_ids, match.team1_score, match.team2_score, winner == 1),
        (match.team2_player_ids, match.team1_player_ids, match.team2_score, match.team1_score, winner == 2),
    ]

    now = utcnow()
    for team, opponents, scored, conceded, won in sides:
        for player_id in team:
            stats = stats_by_player.get(player_id)
            if stats is None:
                raise ValidationError(f"Player {player_id} has no stats in this league")

            _increment(stats, "matches_played")
            _increment(stats, "games_played")
            _increment(stats, "games_won" if won else "games_lost")
            _increment(stats, "matches_won" if won else "matches_lost")
            _increment(stats, "points_for", scored)
            _increment(stats, "points_against", conceded)
            if won:
                _increment(stats, "total_points", BOX_POINTS_PER_WIN)

            for partner_id in team:
                if partner_id != player_id:
                    stats.partner_stats = _tally(stats.partner_stats, partner_id, won)
            for opponent_id in opponents:
                stats.opponent_stats = _tally(stats.opponent_stats, opponent_id, won)
            stats.last_updated = now

    return winner


def reset_cycle_stats(stats: Any) -> None:
    """Zero a player's in-cycle stats. Position history is kept."""
    for attribute in (
        "matches_played", "matches_won", "matches_lost",
        "games_played", "games_won", "games_lost",
        "points_for", "points_against", "total_points",
    ):
        setattr(stats, attribute, 0)
    stats.partner_stats = {}
    stats.opponent_stats = {}
    stats.last_updated = utcnow()


# ============================================================================
# Promotion / Relegation
# ============================================================================

@dataclass(frozen=True)
class PromotionMove:
    player_id: Hashable
    from_box_id: Any
    from_box_number: int
    to_box_id: Any
    to_box_number: int
    move_type: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "from_box_id": self.from_box_id,
            "from_box_number": self.from_box_number,
            "to_box_id": self.to_box_id,
            "to_box_number": self.to_box_number,
            "move_type": self.move_type,
            "reason": self.reason,
        }


@dataclass
class PromotionResult:
    moves: List[PromotionMove]
    new_cycle_number: int
    updated_memberships: Dict[Any, List[Hashable]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "moves": [move.to_dict() for move in self.moves],
            "new_cycle_number": self.new_cycle_number,
            "updated_memberships": {
                str(box_id): list(player_ids) for box_id, player_ids in self.updated_memberships.items()
            },
        }


def _ordinal(position: int) -> str:
    return {1: "1st", 2: "2nd", 3: "3rd"}.get(position, f"{position}th")


def resolve_promotion_relegation(
    league: Any,
    boxes: Sequence[Any],
    standings_by_box: Mapping[Any, Sequence[BoxStanding]],
) -> PromotionResult:
    """
    Compute player movement between adjacent boxes at cycle end.

    The caller must already have validated the cycle. Moves are applied to a
    working copy of the memberships so a box-2 winner moving up and a box-1
    last-place player moving down stay consistent before anything is saved.

    Raises:
        ValidationError: A box is missing standings or does not have exactly
            4 ranked players
    """
    ordered = sorted(boxes, key=lambda box: box.box_number)
    if not ordered:
        raise ValidationError("League has no boxes")

    memberships: Dict[Any, List[Hashable]] = {box.id: list(box.player_ids or []) for box in ordered}
    moves: List[PromotionMove] = []

    def move(player_id, source, target, move_type, reason):
        if source.id != target.id:
            memberships[source.id] = [pid for pid in memberships[source.id] if pid != player_id]
            memberships[target.id] = memberships[target.id] + [player_id]
        moves.append(PromotionMove(
            player_id=player_id,
            from_box_id=source.id,
            from_box_number=source.box_number,
            to_box_id=target.id,
            to_box_number=target.box_number,
            move_type=move_type,
            reason=reason,
        ))

    for index, box in enumerate(ordered):
        standings = sorted(standings_by_box.get(box.id) or [], key=lambda row: row.position)
        if len(standings) != BOX_SIZE:
            raise ValidationError(
                f"Box {box.box_number} must have standings for exactly {BOX_SIZE} players, has {len(standings)}"
            )

        top, second, third, bottom = standings

        if index > 0:
            move(top.player_id, box, ordered[index - 1], MOVE_PROMOTION, f"Finished 1st in Box {box.box_number}")
        else:
            move(top.player_id, box, box, MOVE_STAY, "Won top box")

        if index < len(ordered) - 1:
            move(bottom.player_id, box, ordered[index + 1], MOVE_RELEGATION, f"Finished 4th in Box {box.box_number}")
        else:
            move(bottom.player_id, box, box, MOVE_STAY, "Bottom box, no relegation possible")

        for middle in (second, third):
            move(middle.player_id, box, box, MOVE_STAY, f"Finished {_ordinal(middle.position)} in Box {box.box_number}")

    for box in ordered:
        if len(memberships[box.id]) != BOX_SIZE:
            raise ValidationError(
                f"Box {box.box_number} would end with {len(memberships[box.id])} players after promotion/relegation"
            )

    promoted = sum(1 for m in moves if m.move_type == MOVE_PROMOTION)
    relegated = sum(1 for m in moves if m.move_type == MOVE_RELEGATION)
    logger.info(
        f"Resolved promotion/relegation for league {league.id} cycle {league.current_cycle}: "
        f"{promoted} promoted, {relegated} relegated"
    )

    return PromotionResult(
        moves=moves,
        new_cycle_number=league.current_cycle + 1,
        updated_memberships=memberships,
    )


def position_history_entry(cycle: int, round_number: int, position: int, box_number: int) -> Dict[str, int]:
    return {"cycle": cycle, "round": round_number, "position": position, "box_number": box_number}
