"""
Pairing generation for quick play rounds.

Two strategies are available:
- Rotation: enumerate a complete rotation of rounds for the roster and return
  the first round that has not been played yet.
- Greedy: score candidate matches against partnership, opposition and game
  counters built from match history, and seat the best match on each court.

The round orchestrator (round_service) decides which one to use.
"""

import logging
import random
from collections import Counter
from dataclasses import dataclass
from itertools import combinations
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from backend.utils.constants import (
    SINGLES,
    DOUBLES,
    TEAM_SIZE,
    MIN_PLAYERS,
    DOUBLES_PARTNERSHIP_BASE,
    DOUBLES_PARTNERSHIP_PENALTY,
    DOUBLES_OPPOSITION_BASE,
    DOUBLES_OPPOSITION_PENALTY,
    DOUBLES_GAMES_BASE,
    DOUBLES_GAMES_PENALTY,
    SINGLES_BALANCE_BASE,
    SINGLES_GAMES_PENALTY,
    SINGLES_OPPOSITION_BASE,
    SINGLES_OPPOSITION_PENALTY,
)
from backend.utils.errors import ScheduleStructureError, ValidationError

logger = logging.getLogger(__name__)

PlayerId = Hashable

KEY_SEPARATOR = ","
MATCH_SEPARATOR = "-vs-"
ROUND_SEPARATOR = "|"

# Synthetic opponent used to run the even circle method on odd singles rosters
BYE = object()


# ============================================================================
# Canonical Keys
# ============================================================================

def canonical_key(player_ids: Iterable[PlayerId]) -> str:
    """
    Build an order-independent key for a set of players.

    Used for partnership keys (same team) and opposition keys (one player from
    each team) alike: the string forms are sorted and joined.
    """
    return KEY_SEPARATOR.join(sorted(str(player_id) for player_id in player_ids))


# ============================================================================
# Match Variants
# ============================================================================

@dataclass(frozen=True)
class SinglesPairing:
    """One player against one player."""

    player1: PlayerId
    player2: PlayerId

    @property
    def teams(self) -> Tuple[Tuple[PlayerId, ...], Tuple[PlayerId, ...]]:
        return (self.player1,), (self.player2,)

    @property
    def players(self) -> Tuple[PlayerId, ...]:
        return self.player1, self.player2


@dataclass(frozen=True)
class DoublesPairing:
    """Two 2-player teams."""

    team1: Tuple[PlayerId, PlayerId]
    team2: Tuple[PlayerId, PlayerId]

    @property
    def teams(self) -> Tuple[Tuple[PlayerId, ...], Tuple[PlayerId, ...]]:
        return tuple(self.team1), tuple(self.team2)

    @property
    def players(self) -> Tuple[PlayerId, ...]:
        return tuple(self.team1) + tuple(self.team2)


Pairing = Union[SinglesPairing, DoublesPairing]


def make_pairing(team1: Sequence[PlayerId], team2: Sequence[PlayerId]) -> Pairing:
    """
    Build the right match variant for two teams.

    Raises:
        ValidationError: If the teams are empty, of unequal size, larger than
            two players, or share a player.
    """
    team1 = list(team1)
    team2 = list(team2)
    if not team1 or not team2:
        raise ValidationError("Both teams must have at least one player")
    if len(team1) != len(team2):
        raise ValidationError(
            f"Teams must be the same size, got {len(team1)} and {len(team2)}"
        )
    if len(team1) not in (1, 2):
        raise ValidationError(f"Teams must have 1 or 2 players, got {len(team1)}")
    if len(set(team1 + team2)) != len(team1) + len(team2):
        raise ValidationError("A player cannot appear twice in the same match")

    if len(team1) == 1:
        return SinglesPairing(team1[0], team2[0])
    return DoublesPairing(tuple(team1), tuple(team2))


def coerce_pairing(match: Any) -> Pairing:
    """
    Convert a historical match record into a pairing.

    Accepts pairings, objects exposing ``to_pairing()`` (ORM rows), and
    mappings using ``team1``/``team2``, ``team1_player_ids``/``team2_player_ids``
    or ``player1_id``/``player2_id`` keys.
    """
    if isinstance(match, (SinglesPairing, DoublesPairing)):
        return match
    if hasattr(match, "to_pairing"):
        return match.to_pairing()
    if isinstance(match, Mapping):
        if match.get("team1") is not None and match.get("team2") is not None:
            return make_pairing(match["team1"], match["team2"])
        if match.get("team1_player_ids") is not None and match.get("team2_player_ids") is not None:
            return make_pairing(match["team1_player_ids"], match["team2_player_ids"])
        if match.get("player1_id") is not None and match.get("player2_id") is not None:
            return make_pairing([match["player1_id"]], [match["player2_id"]])
    raise ValidationError(f"Unrecognized match record: {match!r}")


def match_key(pairing: Pairing) -> str:
    """Key identifying a match regardless of team order or order within teams."""
    return MATCH_SEPARATOR.join(sorted(canonical_key(team) for team in pairing.teams))


def round_signature(pairings: Iterable[Pairing]) -> str:
    """Key identifying a whole round regardless of match order."""
    return ROUND_SEPARATOR.join(sorted(match_key(pairing) for pairing in pairings))


# ============================================================================
# Round Context
# ============================================================================

def validate_roster(roster: Sequence[PlayerId], match_format: str, courts: int = 1) -> None:
    """
    Check that a roster can produce at least one match.

    Raises:
        ValidationError: Unknown format, duplicate players, too few players
            for the format, or fewer than one court.
    """
    if match_format not in TEAM_SIZE:
        raise ValidationError(f"Unknown match format '{match_format}'")
    if len(set(roster)) != len(roster):
        raise ValidationError("Roster contains duplicate players")
    minimum = MIN_PLAYERS[match_format]
    if len(roster) < minimum:
        raise ValidationError(
            f"{match_format.capitalize()} requires at least {minimum} players, got {len(roster)}"
        )
    if courts < 1:
        raise ValidationError(f"At least one court is required, got {courts}")


class RoundContext:
    """
    Everything a generator needs to know about one round request.

    Rebuilt from match history for every request; never persisted.
    """

    def __init__(self, roster: Sequence[PlayerId], match_format: str, courts: int):
        validate_roster(roster, match_format, courts)
        self.roster: List[PlayerId] = list(roster)
        self.match_format = match_format
        self.courts = courts
        self.partnership_count: Counter = Counter()  # doubles only
        self.opposition_count: Counter = Counter()
        self.game_count: Dict[PlayerId, int] = {player_id: 0 for player_id in self.roster}
        self.played_match_keys: Set[str] = set()

    @classmethod
    def from_history(
        cls,
        roster: Sequence[PlayerId],
        match_format: str,
        courts: int,
        existing_matches: Iterable[Any] = (),
    ) -> "RoundContext":
        """Build a context and replay every historical match into its counters."""
        context = cls(roster, match_format, courts)
        for match in existing_matches:
            context.record_match(coerce_pairing(match))
        return context

    def record_match(self, pairing: Pairing) -> None:
        """Add one match to the counters. Matches of the other format are ignored."""
        team_size = TEAM_SIZE[self.match_format]
        team1, team2 = pairing.teams
        if len(team1) != team_size or len(team2) != team_size:
            return

        self.played_match_keys.add(match_key(pairing))

        if self.match_format == DOUBLES:
            self.partnership_count[canonical_key(team1)] += 1
            self.partnership_count[canonical_key(team2)] += 1

        for player_a in team1:
            for player_b in team2:
                self.opposition_count[canonical_key((player_a, player_b))] += 1

        for player_id in pairing.players:
            self.game_count[player_id] = self.game_count.get(player_id, 0) + 1


# ============================================================================
# Rotation Enumeration
# ============================================================================

def _canonical_order(roster: Sequence[PlayerId]) -> List[PlayerId]:
    return sorted(roster, key=str)


def circle_rounds(players: Sequence[Any]) -> List[List[Tuple[Any, Any]]]:
    """
    Classic round-robin circle method for an even number of participants.

    The first participant stays fixed while the others rotate one seat per
    round, giving n-1 rounds in which every pair meets exactly once.
    """
    n = len(players)
    if n < 2 or n % 2 != 0:
        raise ScheduleStructureError(f"Circle method needs an even number of participants, got {n}")

    arrangement = list(players)
    rounds = []
    for _ in range(n - 1):
        rounds.append([(arrangement[i], arrangement[n - 1 - i]) for i in range(n // 2)])
        arrangement = [arrangement[0], arrangement[-1]] + arrangement[1:-1]
    return rounds


def four_player_partitions(players: Sequence[PlayerId]) -> List[DoublesPairing]:
    """
    The three ways to split four players into two teams, in fixed order:
    (p1,p2) v (p3,p4), (p1,p3) v (p2,p4), (p1,p4) v (p2,p3).
    """
    if len(players) != 4:
        raise ValidationError(f"Expected exactly 4 players, got {len(players)}")
    p1, p2, p3, p4 = players
    return [
        DoublesPairing((p1, p2), (p3, p4)),
        DoublesPairing((p1, p3), (p2, p4)),
        DoublesPairing((p1, p4), (p2, p3)),
    ]


# Whist design for 8 players on Z7 plus a fixed point (None). Translating the
# base round by 0..6 gives 7 rounds where every pair partners exactly once and
# opposes exactly twice.
_EIGHT_PLAYER_BASE_ROUND = (
    ((None, 0), (1, 3)),
    ((2, 6), (4, 5)),
)


def _eight_player_rotation(players: Sequence[PlayerId]) -> List[List[DoublesPairing]]:
    fixed = players[7]

    def seat(slot, shift):
        return fixed if slot is None else players[(slot + shift) % 7]

    rounds = []
    for shift in range(7):
        rounds.append([
            DoublesPairing(
                tuple(seat(slot, shift) for slot in team1),
                tuple(seat(slot, shift) for slot in team2),
            )
            for team1, team2 in _EIGHT_PLAYER_BASE_ROUND
        ])
    return rounds


def _large_group_rotation(players: Sequence[PlayerId]) -> List[List[DoublesPairing]]:
    # Partnerships rotate with the circle method (everyone partners everyone
    # once over n-1 rounds); opposition balance is only approximate.
    rounds = []
    for partnerships in circle_rounds(players):
        rounds.append([
            DoublesPairing(tuple(partnerships[i]), tuple(partnerships[i + 1]))
            for i in range(0, len(partnerships), 2)
        ])
    return rounds


def generate_doubles_rotation(roster: Sequence[PlayerId]) -> List[List[DoublesPairing]]:
    """
    Enumerate a doubles rotation for a roster whose size is a multiple of 4.

    Raises:
        ValidationError: Fewer than 4 players.
        ScheduleStructureError: Roster size not divisible by 4.
    """
    n = len(roster)
    if n < MIN_PLAYERS[DOUBLES]:
        raise ValidationError(f"Doubles requires at least 4 players, got {n}")
    if n % 4 != 0:
        raise ScheduleStructureError(f"Doubles rotation requires a multiple of 4 players, got {n}")

    players = _canonical_order(roster)
    if n == 4:
        return [[partition] for partition in four_player_partitions(players)]
    if n == 8:
        return _eight_player_rotation(players)
    return _large_group_rotation(players)


def generate_singles_rotation(roster: Sequence[PlayerId]) -> List[List[SinglesPairing]]:
    """
    Enumerate a singles round robin: n-1 rounds for even n, n rounds for odd n
    (the player drawn against the bye rests that round).

    Raises:
        ValidationError: Fewer than 2 players.
    """
    n = len(roster)
    if n < MIN_PLAYERS[SINGLES]:
        raise ValidationError(f"Singles requires at least 2 players, got {n}")

    participants: List[Any] = _canonical_order(roster)
    if n % 2 != 0:
        participants.append(BYE)

    rounds = []
    for pairs in circle_rounds(participants):
        rounds.append([
            SinglesPairing(player_a, player_b)
            for player_a, player_b in pairs
            if player_a is not BYE and player_b is not BYE
        ])
    return rounds


class RotationCache:
    """
    Memo of enumerated rotations, keyed by format and roster.

    Owned and invalidated by the caller. Enumeration is deterministic for a
    roster, so the cache only saves work and never changes results.
    """

    def __init__(self):
        self._rotations: Dict[Tuple[str, Tuple[str, ...]], List[List[Pairing]]] = {}

    @staticmethod
    def key_for(match_format: str, roster: Sequence[PlayerId]) -> Tuple[str, Tuple[str, ...]]:
        return match_format, tuple(sorted(str(player_id) for player_id in roster))

    def get_or_build(
        self,
        match_format: str,
        roster: Sequence[PlayerId],
        builder: Callable[[Sequence[PlayerId]], List[List[Pairing]]],
    ) -> List[List[Pairing]]:
        key = self.key_for(match_format, roster)
        if key not in self._rotations:
            self._rotations[key] = builder(roster)
        return self._rotations[key]

    def invalidate(self, match_format: str, roster: Sequence[PlayerId]) -> bool:
        """Drop one rotation. Returns True if it was cached."""
        return self._rotations.pop(self.key_for(match_format, roster), None) is not None

    def clear(self) -> None:
        self._rotations.clear()

    def __len__(self) -> int:
        return len(self._rotations)


def enumerate_rotation(
    roster: Sequence[PlayerId],
    match_format: str,
    cache: Optional[RotationCache] = None,
) -> List[List[Pairing]]:
    """Enumerate (or fetch from cache) the full rotation for a roster."""
    builder = generate_doubles_rotation if match_format == DOUBLES else generate_singles_rotation
    if cache is None:
        return builder(roster)
    return cache.get_or_build(match_format, roster, builder)


def select_next_round(
    rounds: Sequence[List[Pairing]],
    played_match_keys: Set[str],
    rng: random.Random,
) -> Tuple[List[Pairing], bool]:
    """
    Pick the next round to play from an enumerated rotation.

    Scanning starts at a random offset and proceeds in generation order. The
    first round with the fewest already-played matches wins, so an untouched
    round is always preferred. When every round has been fully played the
    first round in scan order is reused.

    Returns:
        Tuple of (round, exhausted) where exhausted is True on reuse.
    """
    if not rounds:
        raise ScheduleStructureError("Rotation is empty")

    offset = rng.randrange(len(rounds))
    ordered = list(rounds[offset:]) + list(rounds[:offset])

    best_round = None
    best_played = None
    for candidate in ordered:
        played = sum(1 for pairing in candidate if match_key(pairing) in played_match_keys)
        if played == 0:
            return list(candidate), False
        if played < len(candidate) and (best_played is None or played < best_played):
            best_round, best_played = candidate, played

    if best_round is not None:
        return list(best_round), False
    return list(ordered[0]), True


def generate_rotation_round(
    context: RoundContext,
    rng: Optional[random.Random] = None,
    cache: Optional[RotationCache] = None,
) -> Tuple[List[Pairing], bool]:
    """
    Exhaustive path: return the next unused round of the rotation.

    Raises:
        ScheduleStructureError: The roster has no rotation for this format, or
            a round needs more courts than are available.
    """
    rng = rng or random.Random()
    rounds = enumerate_rotation(context.roster, context.match_format, cache)

    matches_per_round = max(len(candidate) for candidate in rounds)
    if matches_per_round > context.courts:
        raise ScheduleStructureError(
            f"Rotation needs {matches_per_round} courts per round, only {context.courts} available"
        )

    selected, exhausted = select_next_round(rounds, context.played_match_keys, rng)
    if exhausted:
        logger.warning(
            f"All {len(rounds)} rotation rounds for {len(context.roster)} {context.match_format} "
            f"players have been played; reusing a round"
        )
    return selected, exhausted


# ============================================================================
# Greedy Fallback
# ============================================================================

def score_doubles_match(
    team1: Sequence[PlayerId], team2: Sequence[PlayerId], context: RoundContext
) -> int:
    """Fairness score for a doubles match (higher is better)."""
    score = 0

    # Prefer partnerships that haven't been used much
    for team in (team1, team2):
        score += DOUBLES_PARTNERSHIP_BASE - context.partnership_count[canonical_key(team)] * DOUBLES_PARTNERSHIP_PENALTY

    # Prefer oppositions that haven't happened much
    for player_a in team1:
        for player_b in team2:
            meetings = context.opposition_count[canonical_key((player_a, player_b))]
            score += DOUBLES_OPPOSITION_BASE - meetings * DOUBLES_OPPOSITION_PENALTY

    # Prefer players who have played fewer games
    for player_id in list(team1) + list(team2):
        score += DOUBLES_GAMES_BASE - context.game_count.get(player_id, 0) * DOUBLES_GAMES_PENALTY

    return score


def score_singles_match(player1: PlayerId, player2: PlayerId, context: RoundContext) -> int:
    """Fairness score for a singles match (higher is better)."""
    game_balance = (
        SINGLES_BALANCE_BASE
        - context.game_count.get(player1, 0) * SINGLES_GAMES_PENALTY
        - context.game_count.get(player2, 0) * SINGLES_GAMES_PENALTY
    )
    meetings = context.opposition_count[canonical_key((player1, player2))]
    opposition_diversity = SINGLES_OPPOSITION_BASE - meetings * SINGLES_OPPOSITION_PENALTY
    return game_balance + opposition_diversity


def _best_doubles_match(available: Sequence[PlayerId], context: RoundContext) -> Optional[DoublesPairing]:
    # Brute force over every 4-player group and its three team splits: O(n^4).
    # Fine for club-sized rosters; a weighted matching would be needed for
    # much larger groups.
    best_match = None
    best_score = None
    for group in combinations(available, 4):
        for candidate in four_player_partitions(group):
            score = score_doubles_match(candidate.team1, candidate.team2, context)
            if best_score is None or score > best_score:
                best_match, best_score = candidate, score
    return best_match


def _best_singles_match(available: Sequence[PlayerId], context: RoundContext) -> Optional[SinglesPairing]:
    best_match = None
    best_score = None
    for player1, player2 in combinations(available, 2):
        score = score_singles_match(player1, player2, context)
        if best_score is None or score > best_score:
            best_match, best_score = SinglesPairing(player1, player2), score
    return best_match


def generate_greedy_round(context: RoundContext, rng: Optional[random.Random] = None) -> List[Pairing]:
    """
    Greedy path: for each court, seat the best-scoring match among players not
    yet seated this round. Stops early when too few players remain, so the
    round can be shorter than the court count.
    """
    rng = rng or random.Random()

    # Randomize the player order to avoid bias when scores tie
    order = list(context.roster)
    rng.shuffle(order)

    needed = MIN_PLAYERS[context.match_format]
    seated: Set[PlayerId] = set()
    matches: List[Pairing] = []

    for _ in range(context.courts):
        available = [player_id for player_id in order if player_id not in seated]
        if len(available) < needed:
            break

        if context.match_format == DOUBLES:
            best_match = _best_doubles_match(available, context)
        else:
            best_match = _best_singles_match(available, context)

        if best_match is None:
            break
        matches.append(best_match)
        seated.update(best_match.players)

    return matches


def resting_players(roster: Sequence[PlayerId], matches: Iterable[Pairing]) -> List[PlayerId]:
    """Roster members not seated in any of the matches, in roster order."""
    seated = {player_id for match in matches for player_id in match.players}
    return [player_id for player_id in roster if player_id not in seated]


# ============================================================================
# Previews
# ============================================================================

def calculate_max_unique_rounds(player_count: int, match_format: str) -> int:
    """
    How many distinct rounds a roster supports before repeating (preview only).
    """
    if match_format == SINGLES:
        if player_count < MIN_PLAYERS[SINGLES]:
            return 0
        return player_count - 1 if player_count % 2 == 0 else player_count

    if match_format != DOUBLES:
        raise ValidationError(f"Unknown match format '{match_format}'")
    if player_count < MIN_PLAYERS[DOUBLES]:
        return 0

    known = {4: 3, 8: 7, 12: 11, 16: 15}
    if player_count in known:
        return known[player_count]
    return max(1, player_count - 1)
