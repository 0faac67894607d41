"""
Round orchestration for quick play.

Tries the rotation generator first and falls back to the greedy generator on
any structural failure, then numbers the matches and works out who rests.
"""

import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence

from backend.services.pairing_service import (
    Pairing,
    RotationCache,
    RoundContext,
    generate_greedy_round,
    generate_rotation_round,
    resting_players,
)
from backend.utils.errors import ScheduleStructureError, ValidationError

logger = logging.getLogger(__name__)

STRATEGY_ROTATION = "rotation"
STRATEGY_GREEDY = "greedy"


@dataclass
class GeneratedMatch:
    match_number: int
    pairing: Pairing

    def to_dict(self) -> Dict[str, Any]:
        team1, team2 = self.pairing.teams
        return {
            "match_number": self.match_number,
            "team1": list(team1),
            "team2": list(team2),
        }


@dataclass
class RoundResult:
    round_number: int
    matches: List[GeneratedMatch]
    resting_players: List[Hashable]
    strategy: str
    schedule_exhausted: bool = False
    tournament_id: Optional[int] = None

    @property
    def pairings(self) -> List[Pairing]:
        return [match.pairing for match in self.matches]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "round_number": self.round_number,
            "matches": [match.to_dict() for match in self.matches],
            "resting_players": list(self.resting_players),
            "strategy": self.strategy,
            "schedule_exhausted": self.schedule_exhausted,
        }


def generate_round(
    roster: Sequence[Hashable],
    match_format: str,
    courts: int,
    existing_matches: Iterable[Any] = (),
    round_number: int = 1,
    starting_match_number: int = 1,
    tournament_id: Optional[int] = None,
    rng: Optional[random.Random] = None,
    cache: Optional[RotationCache] = None,
) -> RoundResult:
    """
    Generate one round of matches for a roster.

    Args:
        roster: Eligible player IDs
        match_format: "singles" or "doubles"
        courts: Number of simultaneous courts (>= 1)
        existing_matches: Historical matches (pairings, ORM rows or dicts)
        round_number: Number of the round being generated
        starting_match_number: First match number to assign
        tournament_id: Only used for logging and the returned result
        rng: Random source; pass a seeded one for reproducible rounds
        cache: Optional rotation cache owned by the caller

    Returns:
        RoundResult with numbered matches and resting players

    Raises:
        ValidationError: Roster below the format minimum, duplicates, or
            fewer than one court
    """
    rng = rng or random.Random()
    context = RoundContext.from_history(roster, match_format, courts, existing_matches)

    strategy = STRATEGY_ROTATION
    exhausted = False
    try:
        pairings, exhausted = generate_rotation_round(context, rng=rng, cache=cache)
    except ValidationError:
        raise
    except ScheduleStructureError as e:
        logger.info(
            f"Rotation unavailable for tournament {tournament_id} round {round_number} "
            f"({len(context.roster)} {match_format} players, {courts} courts): {e}. Using greedy pairing"
        )
        strategy = STRATEGY_GREEDY
        pairings = generate_greedy_round(context, rng=rng)
    except Exception as e:
        logger.warning(
            f"Rotation failed unexpectedly for tournament {tournament_id} round {round_number}: {e}. "
            f"Using greedy pairing",
            exc_info=True,
        )
        strategy = STRATEGY_GREEDY
        pairings = generate_greedy_round(context, rng=rng)

    matches = [
        GeneratedMatch(match_number=starting_match_number + index, pairing=pairing)
        for index, pairing in enumerate(pairings)
    ]
    resting = resting_players(context.roster, pairings)

    logger.info(
        f"Generated round {round_number} for tournament {tournament_id}: "
        f"{len(matches)} matches, {len(resting)} resting, strategy={strategy}"
    )

    return RoundResult(
        round_number=round_number,
        matches=matches,
        resting_players=resting,
        strategy=strategy,
        schedule_exhausted=exhausted,
        tournament_id=tournament_id,
    )
