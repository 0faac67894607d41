"""
Data service layer for database operations.
Loads rows for the pairing/box league engine and persists its results.

Every write operation commits exactly once so multi-record updates (ratings +
match completion + stats, promotion/relegation) are atomic.
"""

import logging
import random
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from backend.database.models import (
    Player,
    Tournament,
    TournamentMatch,
    TournamentStatus,
    MatchFormat,
    MatchStatus,
    BoxLeague,
    BoxLeagueStatus,
    Box,
    BoxLeagueRound,
    BoxLeagueMatch,
    RoundStatus,
    PlayerBoxStats,
)
from backend.services import box_league_service, rating_service, round_service, standings_service
from backend.services.pairing_service import RotationCache, validate_roster
from backend.utils.constants import (
    BOX_SIZE,
    DEFAULT_COURTS,
    DEFAULT_RATING,
    DEFAULT_ROUNDS_PER_CYCLE,
    MIN_RATING,
    MAX_RATING,
)
from backend.utils.datetime_utils import utcnow, isoformat_or_none
from backend.utils.errors import NotFoundError, StateError, ValidationError

logger = logging.getLogger(__name__)


#
# Helper functions
#

def _player_to_dict(player: Player) -> Dict:
    return {
        "id": player.id,
        "full_name": player.full_name,
        "rating": player.rating,
        "wins": player.wins,
        "losses": player.losses,
        "points_for": player.points_for,
        "points_against": player.points_against,
    }


def _tournament_match_to_dict(match: TournamentMatch) -> Dict:
    return {
        "id": match.id,
        "tournament_id": match.tournament_id,
        "round_number": match.round_number,
        "match_number": match.match_number,
        "team1_player_ids": list(match.team1_player_ids),
        "team2_player_ids": list(match.team2_player_ids),
        "team1_score": match.team1_score,
        "team2_score": match.team2_score,
        "status": match.status.value,
        "rating_changes": match.rating_changes,
        "completed_at": isoformat_or_none(match.completed_at),
    }


def _tournament_to_dict(tournament: Tournament, matches: Sequence[TournamentMatch]) -> Dict:
    return {
        "id": tournament.id,
        "name": tournament.name,
        "format": tournament.format.value,
        "player_ids": list(tournament.player_ids),
        "available_courts": tournament.available_courts,
        "current_round": tournament.current_round,
        "max_rounds": tournament.max_rounds,
        "status": tournament.status.value,
        "completed_at": isoformat_or_none(tournament.completed_at),
        "matches": [_tournament_match_to_dict(match) for match in matches],
    }


def _box_to_dict(box: Box) -> Dict:
    return {
        "id": box.id,
        "box_number": box.box_number,
        "player_ids": list(box.player_ids or []),
    }


def _box_league_to_dict(league: BoxLeague, boxes: Sequence[Box]) -> Dict:
    return {
        "id": league.id,
        "name": league.name,
        "status": league.status.value,
        "current_cycle": league.current_cycle,
        "current_round": league.current_round,
        "rounds_per_cycle": league.rounds_per_cycle,
        "new_player_entry_box": league.new_player_entry_box,
        "boxes": [_box_to_dict(box) for box in boxes],
    }


def _box_match_to_dict(match: BoxLeagueMatch) -> Dict:
    return {
        "id": match.id,
        "box_league_id": match.box_league_id,
        "round_id": match.round_id,
        "box_id": match.box_id,
        "round_number": match.round_number,
        "cycle_number": match.cycle_number,
        "match_number": match.match_number,
        "team1_player_ids": list(match.team1_player_ids),
        "team2_player_ids": list(match.team2_player_ids),
        "team1_score": match.team1_score,
        "team2_score": match.team2_score,
        "status": match.status.value,
        "winner_team": match.winner_team,
        "rating_changes": match.rating_changes,
        "completed_at": isoformat_or_none(match.completed_at),
    }


def _box_round_to_dict(league_round: BoxLeagueRound, matches: Sequence[BoxLeagueMatch]) -> Dict:
    return {
        "id": league_round.id,
        "box_league_id": league_round.box_league_id,
        "round_number": league_round.round_number,
        "cycle_number": league_round.cycle_number,
        "status": league_round.status.value,
        "matches": [_box_match_to_dict(match) for match in matches],
    }


def _box_stats_to_dict(stats: PlayerBoxStats, box: Optional[Box]) -> Dict:
    return {
        "box_league_id": stats.box_league_id,
        "player_id": stats.player_id,
        "box_id": stats.box_id,
        "box_number": box.box_number if box is not None else None,
        "current_position": stats.current_position,
        "matches_played": stats.matches_played,
        "matches_won": stats.matches_won,
        "matches_lost": stats.matches_lost,
        "games_played": stats.games_played,
        "games_won": stats.games_won,
        "games_lost": stats.games_lost,
        "points_for": stats.points_for,
        "points_against": stats.points_against,
        "total_points": stats.total_points,
        "partner_stats": dict(stats.partner_stats or {}),
        "opponent_stats": dict(stats.opponent_stats or {}),
        "position_history": list(stats.position_history or []),
        "last_updated": isoformat_or_none(stats.last_updated),
    }


async def _get_or_raise(session: AsyncSession, model, record_id: int, label: str):
    result = await session.execute(select(model).where(model.id == record_id))
    record = result.scalar_one_or_none()
    if record is None:
        raise NotFoundError(f"{label} {record_id} not found")
    return record


async def _load_players(session: AsyncSession, player_ids: Iterable[int]) -> Dict[int, Player]:
    """Load players by ID, raising NotFoundError if any are missing."""
    wanted = set(player_ids)
    result = await session.execute(select(Player).where(Player.id.in_(wanted)))
    players = {player.id: player for player in result.scalars().all()}
    missing = sorted(wanted - set(players))
    if missing:
        raise NotFoundError(f"Players not found: {missing}")
    return players


def _apply_result_to_players(
    players: Dict[int, Player],
    changes: Dict[int, rating_service.RatingChange],
    team1_ids: Sequence[int],
    team1_score: int,
    team2_ids: Sequence[int],
    team2_score: int,
) -> None:
    """Write new ratings and lifetime totals onto loaded Player rows."""
    team1_won = rating_service.calculate_winner(team1_score, team2_score) == 1
    sides = [
        (team1_ids, team1_score, team2_score, team1_won),
        (team2_ids, team2_score, team1_score, not team1_won),
    ]
    for player_ids, scored, conceded, won in sides:
        for player_id in player_ids:
            player = players[player_id]
            player.rating = changes[player_id].after
            if won:
                player.wins = (player.wins or 0) + 1
            else:
                player.losses = (player.losses or 0) + 1
            player.points_for = (player.points_for or 0) + scored
            player.points_against = (player.points_against or 0) + conceded


#
# Players
#

async def create_player(session: AsyncSession, full_name: str, rating: Optional[float] = None) -> Dict:
    """Create a new player."""
    if not full_name or not full_name.strip():
        raise ValidationError("Player name is required")
    if rating is None:
        rating = DEFAULT_RATING
    if rating < MIN_RATING or rating > MAX_RATING:
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}, got {rating}")

    player = Player(
        full_name=full_name.strip(),
        rating=rating,
        wins=0,
        losses=0,
        points_for=0,
        points_against=0,
    )
    session.add(player)
    await session.commit()
    await session.refresh(player)
    return _player_to_dict(player)


async def get_player(session: AsyncSession, player_id: int) -> Dict:
    player = await _get_or_raise(session, Player, player_id, "Player")
    return _player_to_dict(player)


#
# Quick play
#

async def _get_tournament_matches(session: AsyncSession, tournament_id: int) -> List[TournamentMatch]:
    result = await session.execute(
        select(TournamentMatch)
        .where(TournamentMatch.tournament_id == tournament_id)
        .order_by(TournamentMatch.round_number, TournamentMatch.match_number)
    )
    return list(result.scalars().all())


def _save_round(
    session: AsyncSession, tournament: Tournament, round_result: round_service.RoundResult
) -> List[TournamentMatch]:
    created = []
    for generated in round_result.matches:
        team1, team2 = generated.pairing.teams
        match = TournamentMatch(
            tournament_id=tournament.id,
            round_number=round_result.round_number,
            match_number=generated.match_number,
            team1_player_ids=list(team1),
            team2_player_ids=list(team2),
            status=MatchStatus.PENDING,
        )
        session.add(match)
        created.append(match)
    tournament.current_round = round_result.round_number
    return created


def _check_tournament_completion(tournament: Tournament, matches: Sequence[TournamentMatch]) -> bool:
    """Complete an active tournament once none of its matches are pending or in progress."""
    if tournament.status != TournamentStatus.ACTIVE:
        return False
    open_matches = [
        match for match in matches
        if match.status in (MatchStatus.PENDING, MatchStatus.IN_PROGRESS)
    ]
    if open_matches:
        return False
    tournament.status = TournamentStatus.COMPLETED
    tournament.completed_at = utcnow()
    logger.info(f"Tournament {tournament.id} completed after {tournament.current_round} rounds")
    return True


async def create_quick_play_tournament(
    session: AsyncSession,
    name: str,
    match_format: str,
    player_ids: List[int],
    available_courts: int = DEFAULT_COURTS,
    max_rounds: Optional[int] = None,
    rng: Optional[random.Random] = None,
    cache: Optional[RotationCache] = None,
) -> Dict:
    """
    Create a quick play tournament and generate its opening rounds.

    With max_rounds set, rounds 1..max_rounds are generated now, each one
    treating the earlier rounds as history, and no further rounds can be
    added. Without it only round 1 is generated and later rounds are added
    one at a time.

    Returns:
        Tournament dict with its matches, the generated rounds, and "round"
        holding round 1
    """
    if match_format not in {f.value for f in MatchFormat}:
        raise ValidationError(f"Unknown match format '{match_format}'")
    if max_rounds is not None and max_rounds < 1:
        raise ValidationError(f"max_rounds must be at least 1, got {max_rounds}")
    validate_roster(player_ids, match_format, available_courts)
    await _load_players(session, player_ids)

    tournament = Tournament(
        name=name,
        format=MatchFormat(match_format),
        player_ids=list(player_ids),
        available_courts=available_courts,
        current_round=0,
        max_rounds=max_rounds,
        status=TournamentStatus.ACTIVE,
    )
    session.add(tournament)
    await session.flush()  # Get the tournament ID

    history = []
    matches = []
    round_results = []
    for round_number in range(1, (max_rounds or 1) + 1):
        round_result = round_service.generate_round(
            player_ids,
            match_format,
            available_courts,
            existing_matches=history,
            round_number=round_number,
            tournament_id=tournament.id,
            rng=rng,
            cache=cache,
        )
        matches.extend(_save_round(session, tournament, round_result))
        history.extend(round_result.pairings)
        round_results.append(round_result)
    await session.commit()

    logger.info(
        f"Created quick play tournament {tournament.id} with {len(player_ids)} players "
        f"and {len(round_results)} rounds"
    )
    result = _tournament_to_dict(tournament, matches)
    result["rounds"] = [round_result.to_dict() for round_result in round_results]
    result["round"] = result["rounds"][0]
    return result


async def get_quick_play_tournament(session: AsyncSession, tournament_id: int) -> Dict:
    tournament = await _get_or_raise(session, Tournament, tournament_id, "Tournament")
    matches = await _get_tournament_matches(session, tournament_id)
    return _tournament_to_dict(tournament, matches)


async def add_quick_play_round(
    session: AsyncSession,
    tournament_id: int,
    rng: Optional[random.Random] = None,
    cache: Optional[RotationCache] = None,
) -> Dict:
    """
    Generate and save the next round of a quick play tournament.

    Every non-bye match already created (played or not) counts as history so
    the new round avoids repeating it. A tournament that completed because
    all of its rounds were played is reopened by the new round.

    Raises:
        StateError: The tournament already has max_rounds rounds
    """
    tournament = await _get_or_raise(session, Tournament, tournament_id, "Tournament")
    if tournament.max_rounds is not None and tournament.current_round >= tournament.max_rounds:
        raise StateError(
            f"Tournament {tournament_id} already has all {tournament.max_rounds} rounds"
        )
    if tournament.status == TournamentStatus.COMPLETED:
        tournament.status = TournamentStatus.ACTIVE
        tournament.completed_at = None
        logger.info(f"Reopened tournament {tournament_id} for round {tournament.current_round + 1}")

    history = [
        match for match in await _get_tournament_matches(session, tournament_id)
        if match.status != MatchStatus.BYE
    ]
    round_result = round_service.generate_round(
        tournament.player_ids,
        tournament.format.value,
        tournament.available_courts,
        existing_matches=history,
        round_number=tournament.current_round + 1,
        tournament_id=tournament.id,
        rng=rng,
        cache=cache,
    )
    _save_round(session, tournament, round_result)
    await session.commit()

    return round_result.to_dict()


async def start_quick_play_match(session: AsyncSession, match_id: int) -> Dict:
    """Mark a pending match as in progress."""
    match = await _get_or_raise(session, TournamentMatch, match_id, "Match")
    if match.status != MatchStatus.PENDING:
        raise StateError(f"Match {match_id} is {match.status.value}, only pending matches can start")
    match.status = MatchStatus.IN_PROGRESS
    await session.commit()
    return _tournament_match_to_dict(match)


async def delete_quick_play_round(session: AsyncSession, tournament_id: int, round_number: int) -> Dict:
    """
    Delete an unplayed round.

    Raises:
        NotFoundError: The round has no matches
        StateError: The round has completed or in-progress matches, or it is
            the tournament's only round
    """
    tournament = await _get_or_raise(session, Tournament, tournament_id, "Tournament")
    matches = await _get_tournament_matches(session, tournament_id)
    round_matches = [match for match in matches if match.round_number == round_number]
    if not round_matches:
        raise NotFoundError(f"Round {round_number} not found in tournament {tournament_id}")

    started = [
        match for match in round_matches
        if match.status in (MatchStatus.COMPLETED, MatchStatus.IN_PROGRESS)
    ]
    if started:
        raise StateError(
            f"Cannot delete round {round_number}: {len(started)} matches are completed or in progress"
        )

    remaining_rounds = {match.round_number for match in matches if match.round_number != round_number}
    if not remaining_rounds:
        raise StateError("Cannot delete the only round of a tournament")

    await session.execute(
        delete(TournamentMatch).where(
            TournamentMatch.tournament_id == tournament_id,
            TournamentMatch.round_number == round_number,
        )
    )
    tournament.current_round = max(remaining_rounds)
    remaining = [match for match in matches if match.round_number != round_number]
    _check_tournament_completion(tournament, remaining)
    await session.commit()

    logger.info(f"Deleted round {round_number} ({len(round_matches)} matches) from tournament {tournament_id}")
    return {"tournament_id": tournament_id, "round_number": round_number, "deleted_matches": len(round_matches)}


async def record_quick_play_result(
    session: AsyncSession, match_id: int, team1_score: int, team2_score: int
) -> Dict:
    """
    Record a quick play result, updating ratings and player totals in the
    same transaction.

    Raises:
        NotFoundError: Unknown match
        StateError: Match already completed or a bye
        ValidationError: Tied or invalid scores (nothing is written)
    """
    match = await _get_or_raise(session, TournamentMatch, match_id, "Match")
    if match.status == MatchStatus.COMPLETED:
        raise StateError(f"Match {match_id} is already completed")
    if match.status == MatchStatus.BYE:
        raise StateError(f"Match {match_id} is a bye")

    team1_ids = list(match.team1_player_ids)
    team2_ids = list(match.team2_player_ids)
    players = await _load_players(session, team1_ids + team2_ids)

    changes = rating_service.compute_rating_changes(
        team1_ids,
        team1_score,
        team2_ids,
        team2_score,
        {player_id: player.rating for player_id, player in players.items()},
    )
    _apply_result_to_players(players, changes, team1_ids, team1_score, team2_ids, team2_score)

    match.team1_score = team1_score
    match.team2_score = team2_score
    match.status = MatchStatus.COMPLETED
    match.rating_changes = rating_service.rating_changes_to_dict(changes)
    match.completed_at = utcnow()

    tournament = await _get_or_raise(session, Tournament, match.tournament_id, "Tournament")
    _check_tournament_completion(tournament, await _get_tournament_matches(session, tournament.id))
    await session.commit()

    logger.info(f"Recorded quick play match {match_id}: {team1_score}-{team2_score}")
    return _tournament_match_to_dict(match)


#
# Box leagues
#

async def _get_boxes(session: AsyncSession, league_id: int) -> List[Box]:
    result = await session.execute(
        select(Box).where(Box.box_league_id == league_id).order_by(Box.box_number)
    )
    return list(result.scalars().all())


async def _get_league_stats(session: AsyncSession, league_id: int) -> Dict[int, PlayerBoxStats]:
    result = await session.execute(
        select(PlayerBoxStats).where(PlayerBoxStats.box_league_id == league_id)
    )
    return {stats.player_id: stats for stats in result.scalars().all()}


async def _get_cycle_matches(
    session: AsyncSession, league: BoxLeague, round_number: Optional[int] = None
) -> List[BoxLeagueMatch]:
    query = select(BoxLeagueMatch).where(
        BoxLeagueMatch.box_league_id == league.id,
        BoxLeagueMatch.cycle_number == league.current_cycle,
    )
    if round_number is not None:
        query = query.where(BoxLeagueMatch.round_number == round_number)
    result = await session.execute(query.order_by(BoxLeagueMatch.round_number, BoxLeagueMatch.id))
    return list(result.scalars().all())


def _new_stats(league_id: int, player_id: int, box_id: Optional[int], position: Optional[int]) -> PlayerBoxStats:
    return PlayerBoxStats(
        box_league_id=league_id,
        player_id=player_id,
        box_id=box_id,
        current_position=position,
        matches_played=0,
        matches_won=0,
        matches_lost=0,
        games_played=0,
        games_won=0,
        games_lost=0,
        points_for=0,
        points_against=0,
        total_points=0,
        partner_stats={},
        opponent_stats={},
        position_history=[],
        last_updated=utcnow(),
    )


def _find_box_of(boxes: Sequence[Box], player_id: int) -> Optional[Box]:
    for box in boxes:
        if player_id in (box.player_ids or []):
            return box
    return None


async def create_box_league(
    session: AsyncSession,
    name: str,
    player_ids: List[int],
    rounds_per_cycle: int = DEFAULT_ROUNDS_PER_CYCLE,
    new_player_entry_box: Optional[int] = None,
) -> Dict:
    """
    Create a box league, seeding players into boxes of 4 in the given order
    (first four into box 1, the top box).
    """
    if len(set(player_ids)) != len(player_ids):
        raise ValidationError("Player list contains duplicates")
    if len(player_ids) < BOX_SIZE or len(player_ids) % BOX_SIZE != 0:
        raise ValidationError(
            f"Box leagues need a multiple of {BOX_SIZE} players, got {len(player_ids)}"
        )
    if rounds_per_cycle < 1:
        raise ValidationError("rounds_per_cycle must be at least 1")
    box_count = len(player_ids) // BOX_SIZE
    if new_player_entry_box is not None and not 1 <= new_player_entry_box <= box_count:
        raise ValidationError(f"Entry box must be between 1 and {box_count}")
    await _load_players(session, player_ids)

    league = BoxLeague(
        name=name,
        status=BoxLeagueStatus.ACTIVE,
        current_cycle=1,
        current_round=0,
        rounds_per_cycle=rounds_per_cycle,
        new_player_entry_box=new_player_entry_box,
    )
    session.add(league)
    await session.flush()  # Get the league ID

    boxes = []
    for index in range(box_count):
        box = Box(
            box_league_id=league.id,
            box_number=index + 1,
            player_ids=list(player_ids[index * BOX_SIZE:(index + 1) * BOX_SIZE]),
        )
        session.add(box)
        boxes.append(box)
    await session.flush()  # Get the box IDs

    for box in boxes:
        for position, player_id in enumerate(box.player_ids, start=1):
            session.add(_new_stats(league.id, player_id, box.id, position))

    await session.commit()
    logger.info(f"Created box league {league.id} '{name}' with {box_count} boxes")
    return _box_league_to_dict(league, boxes)


async def get_box_league(session: AsyncSession, league_id: int) -> Dict:
    league = await _get_or_raise(session, BoxLeague, league_id, "Box league")
    boxes = await _get_boxes(session, league_id)
    return _box_league_to_dict(league, boxes)


async def update_box_league_status(session: AsyncSession, league_id: int, status: str) -> Dict:
    league = await _get_or_raise(session, BoxLeague, league_id, "Box league")
    try:
        new_status = BoxLeagueStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown league status '{status}'")

    box_league_service.validate_status_transition(league.status, new_status)
    previous = league.status
    league.status = new_status
    await session.commit()

    logger.info(f"Box league {league_id} status {previous.value} -> {new_status.value}")
    boxes = await _get_boxes(session, league_id)
    return _box_league_to_dict(league, boxes)


async def add_player_to_box_league(session: AsyncSession, league_id: int, player_id: int) -> Dict:
    """
    Add a player following the league's entry-box policy. When the policy is
    "bottom box" and the bottom box is full, a new bottom box is opened.
    """
    league = await _get_or_raise(session, BoxLeague, league_id, "Box league")
    await _load_players(session, [player_id])
    boxes = await _get_boxes(session, league_id)
    if _find_box_of(boxes, player_id) is not None:
        raise ValidationError(f"Player {player_id} is already in box league {league_id}")

    box = box_league_service.select_entry_box(league, boxes)
    if box is None:
        box = Box(
            box_league_id=league.id,
            box_number=(boxes[-1].box_number + 1) if boxes else 1,
            player_ids=[],
        )
        session.add(box)
        await session.flush()
        boxes.append(box)
        logger.info(f"Opened box {box.box_number} in box league {league_id}")

    box.player_ids = list(box.player_ids or []) + [player_id]
    position = len(box.player_ids)

    all_stats = await _get_league_stats(session, league_id)
    stats = all_stats.get(player_id)
    if stats is None:
        session.add(_new_stats(league.id, player_id, box.id, position))
    else:
        # Returning player keeps history, starts the cycle fresh
        box_league_service.reset_cycle_stats(stats)
        stats.box_id = box.id
        stats.current_position = position

    await session.commit()
    logger.info(f"Added player {player_id} to box {box.box_number} of box league {league_id}")
    return _box_league_to_dict(league, boxes)


async def remove_player_from_box_league(session: AsyncSession, league_id: int, player_id: int) -> Dict:
    league = await _get_or_raise(session, BoxLeague, league_id, "Box league")
    boxes = await _get_boxes(session, league_id)
    box = _find_box_of(boxes, player_id)
    if box is None:
        raise NotFoundError(f"Player {player_id} is not in box league {league_id}")

    current_matches = await _get_cycle_matches(session, league, league.current_round)
    open_matches = [
        match for match in current_matches
        if match.box_id == box.id and match.status in box_league_service.OPEN_MATCH_STATUSES
    ]
    if open_matches:
        raise StateError(
            f"Cannot remove player {player_id}: box {box.box_number} has {len(open_matches)} open matches"
        )

    box.player_ids = [pid for pid in box.player_ids if pid != player_id]
    all_stats = await _get_league_stats(session, league_id)
    stats = all_stats.get(player_id)
    if stats is not None:
        stats.box_id = None
        stats.current_position = None

    await session.commit()
    logger.info(f"Removed player {player_id} from box {box.box_number} of box league {league_id}")
    return _box_league_to_dict(league, boxes)


async def swap_players(session: AsyncSession, league_id: int, player_a_id: int, player_b_id: int) -> Dict:
    """
    Swap two players between boxes (each takes the other's seat).

    Raises:
        ValidationError: Either player is not in the league, or both are in the same box
        StateError: Either box has pending or in-progress matches this round
    """
    league = await _get_or_raise(session, BoxLeague, league_id, "Box league")
    boxes = await _get_boxes(session, league_id)
    box_a = _find_box_of(boxes, player_a_id)
    box_b = _find_box_of(boxes, player_b_id)
    if box_a is None or box_b is None:
        raise ValidationError("Both players must belong to the box league")
    if box_a.id == box_b.id:
        raise ValidationError("Players are already in the same box")

    current_matches = await _get_cycle_matches(session, league, league.current_round)
    box_league_service.validate_swap(box_a, box_b, current_matches)

    box_a.player_ids = [player_b_id if pid == player_a_id else pid for pid in box_a.player_ids]
    box_b.player_ids = [player_a_id if pid == player_b_id else pid for pid in box_b.player_ids]

    all_stats = await _get_league_stats(session, league_id)
    for player_id, box in ((player_a_id, box_b), (player_b_id, box_a)):
        stats = all_stats.get(player_id)
        if stats is not None:
            stats.box_id = box.id

    await session.commit()
    logger.info(
        f"Swapped player {player_a_id} (box {box_a.box_number}) with player {player_b_id} "
        f"(box {box_b.box_number}) in box league {league_id}"
    )
    return _box_league_to_dict(league, boxes)


async def create_box_league_round(session: AsyncSession, league_id: int) -> Dict:
    """
    Create the next round: the three fixed matches for every box.

    Raises:
        StateError: League paused/completed or cycle already complete
        ValidationError: A box without exactly 4 players
    """
    league = await _get_or_raise(session, BoxLeague, league_id, "Box league")
    boxes = await _get_boxes(session, league_id)
    box_league_service.validate_round_creation(league, boxes)

    round_number = league.current_round + 1
    league_round = BoxLeagueRound(
        box_league_id=league.id,
        round_number=round_number,
        cycle_number=league.current_cycle,
        status=RoundStatus.ACTIVE,
        match_ids=[],
    )
    session.add(league_round)
    await session.flush()  # Get the round ID

    matches = []
    for box in boxes:
        for pairing in box_league_service.generate_box_match_pairings(box.player_ids):
            match = BoxLeagueMatch(
                box_league_id=league.id,
                round_id=league_round.id,
                box_id=box.id,
                round_number=round_number,
                cycle_number=league.current_cycle,
                match_number=pairing.match_number,
                team1_player_ids=list(pairing.team1),
                team2_player_ids=list(pairing.team2),
                status=MatchStatus.PENDING,
            )
            session.add(match)
            matches.append(match)
    await session.flush()  # Get the match IDs

    league_round.match_ids = [match.id for match in matches]
    league.current_round = round_number
    await session.commit()

    logger.info(
        f"Created round {round_number} of cycle {league.current_cycle} for box league {league_id}: "
        f"{len(matches)} matches across {len(boxes)} boxes"
    )
    return _box_round_to_dict(league_round, matches)


async def list_box_league_rounds(
    session: AsyncSession, league_id: int, cycle_number: Optional[int] = None
) -> List[Dict]:
    """
    Rounds of a box league with their matches, oldest first.

    Args:
        cycle_number: Only return rounds of this cycle (default: every cycle)
    """
    await _get_or_raise(session, BoxLeague, league_id, "Box league")

    query = select(BoxLeagueRound).where(BoxLeagueRound.box_league_id == league_id)
    if cycle_number is not None:
        query = query.where(BoxLeagueRound.cycle_number == cycle_number)
    result = await session.execute(query.order_by(BoxLeagueRound.cycle_number, BoxLeagueRound.round_number))
    rounds = list(result.scalars().all())

    matches_by_round: Dict[int, List[BoxLeagueMatch]] = {league_round.id: [] for league_round in rounds}
    if rounds:
        result = await session.execute(
            select(BoxLeagueMatch)
            .where(BoxLeagueMatch.round_id.in_(list(matches_by_round)))
            .order_by(BoxLeagueMatch.box_id, BoxLeagueMatch.match_number)
        )
        for match in result.scalars().all():
            matches_by_round[match.round_id].append(match)

    return [_box_round_to_dict(league_round, matches_by_round[league_round.id]) for league_round in rounds]


async def get_player_box_stats(session: AsyncSession, league_id: int, player_id: int) -> Dict:
    """
    A player's current-cycle stats in a box league, with partner and opponent
    tallies and their position history across finished cycles.

    Raises:
        NotFoundError: Unknown league, or the player is not in it
    """
    await _get_or_raise(session, BoxLeague, league_id, "Box league")
    stats = (await _get_league_stats(session, league_id)).get(player_id)
    if stats is None:
        raise NotFoundError(f"Player {player_id} is not in box league {league_id}")

    box = None
    if stats.box_id is not None:
        box = await session.get(Box, stats.box_id)
    return _box_stats_to_dict(stats, box)


async def record_box_match_result(
    session: AsyncSession, match_id: int, team1_score: int, team2_score: int
) -> Dict:
    """
    Record a box match result: match completion, box stats, standings
    positions, player ratings and totals all commit together.
    """
    match = await _get_or_raise(session, BoxLeagueMatch, match_id, "Match")
    if match.status == MatchStatus.COMPLETED:
        raise StateError(f"Match {match_id} is already completed")

    team1_ids = list(match.team1_player_ids)
    team2_ids = list(match.team2_player_ids)
    players = await _load_players(session, team1_ids + team2_ids)

    # Validates scores (tie, negatives) before anything is mutated
    changes = rating_service.compute_rating_changes(
        team1_ids,
        team1_score,
        team2_ids,
        team2_score,
        {player_id: player.rating for player_id, player in players.items()},
    )

    match.team1_score = team1_score
    match.team2_score = team2_score

    all_stats = await _get_league_stats(session, match.box_league_id)
    match.winner_team = box_league_service.apply_box_match_result(all_stats, match)
    _apply_result_to_players(players, changes, team1_ids, team1_score, team2_ids, team2_score)

    match.status = MatchStatus.COMPLETED
    match.rating_changes = rating_service.rating_changes_to_dict(changes)
    match.completed_at = utcnow()

    # Refresh live positions inside the box
    box = await _get_or_raise(session, Box, match.box_id, "Box")
    box_stats = [all_stats[pid] for pid in box.player_ids if pid in all_stats]
    if len(box_stats) == BOX_SIZE:
        for standing in standings_service.compute_box_standings(box_stats):
            all_stats[standing.player_id].current_position = standing.position

    # Close the round once every match in it is done
    result = await session.execute(
        select(BoxLeagueMatch).where(BoxLeagueMatch.round_id == match.round_id)
    )
    if all(m.status == MatchStatus.COMPLETED for m in result.scalars().all()):
        league_round = await _get_or_raise(session, BoxLeagueRound, match.round_id, "Round")
        league_round.status = RoundStatus.COMPLETED

    await session.commit()
    logger.info(
        f"Recorded box match {match_id} ({team1_score}-{team2_score}) in box league {match.box_league_id}"
    )
    return _box_match_to_dict(match)


async def _standings_by_box(
    session: AsyncSession, league_id: int, boxes: Sequence[Box]
) -> Dict[int, List[standings_service.BoxStanding]]:
    all_stats = await _get_league_stats(session, league_id)
    standings = {}
    for box in boxes:
        box_stats = [all_stats[pid] for pid in box.player_ids if pid in all_stats]
        standings[box.id] = standings_service.compute_box_standings(box_stats)
    return standings


async def get_box_standings(session: AsyncSession, league_id: int) -> Dict:
    """Standings for every full box. Boxes without 4 players have no standings yet."""
    league = await _get_or_raise(session, BoxLeague, league_id, "Box league")
    boxes = await _get_boxes(session, league_id)
    all_stats = await _get_league_stats(session, league_id)

    box_results = []
    for box in boxes:
        box_stats = [all_stats[pid] for pid in box.player_ids if pid in all_stats]
        standings = []
        if len(box_stats) == BOX_SIZE:
            standings = [row.to_dict() for row in standings_service.compute_box_standings(box_stats)]
        box_results.append({"box_id": box.id, "box_number": box.box_number, "standings": standings})

    return {
        "box_league_id": league.id,
        "cycle": league.current_cycle,
        "round": league.current_round,
        "boxes": box_results,
    }


async def get_cycle_completion_status(session: AsyncSession, league_id: int) -> Dict:
    league = await _get_or_raise(session, BoxLeague, league_id, "Box league")
    boxes = await _get_boxes(session, league_id)
    cycle_matches = await _get_cycle_matches(session, league)
    current_round_matches = [m for m in cycle_matches if m.round_number == league.current_round]

    complete, reason = box_league_service.validate_cycle_completion(league, cycle_matches)
    ready, ready_reason = box_league_service.validate_ready_for_new_round(league, boxes, current_round_matches)
    return {
        "box_league_id": league.id,
        "cycle": league.current_cycle,
        "current_round": league.current_round,
        "rounds_per_cycle": league.rounds_per_cycle,
        "all_rounds_played": box_league_service.is_cycle_complete(league),
        "cycle_complete": complete,
        "reason": reason,
        "ready_for_new_round": ready,
        "ready_reason": ready_reason,
    }


async def run_promotion_relegation(session: AsyncSession, league_id: int, preview: bool = False) -> Dict:
    """
    Resolve promotion/relegation for the current cycle and, unless previewing,
    apply it: box memberships, position history, stat reset and cycle advance
    all commit together.

    Raises:
        StateError: The cycle is not validated complete
        ValidationError: A box does not have exactly 4 ranked players
    """
    league = await _get_or_raise(session, BoxLeague, league_id, "Box league")
    boxes = await _get_boxes(session, league_id)
    cycle_matches = await _get_cycle_matches(session, league)

    complete, reason = box_league_service.validate_cycle_completion(league, cycle_matches)
    if not complete:
        raise StateError(reason)

    standings = await _standings_by_box(session, league_id, boxes)
    resolution = box_league_service.resolve_promotion_relegation(league, boxes, standings)
    result = resolution.to_dict()
    result["preview"] = preview
    if preview:
        return result

    positions = {
        standing.player_id: standing.position
        for box_standings in standings.values()
        for standing in box_standings
    }
    all_stats = await _get_league_stats(session, league_id)
    finished_cycle = league.current_cycle
    finished_round = league.current_round

    for box in boxes:
        box.player_ids = list(resolution.updated_memberships[box.id])

    for move in resolution.moves:
        stats = all_stats[move.player_id]
        stats.position_history = list(stats.position_history or []) + [
            box_league_service.position_history_entry(
                finished_cycle, finished_round, positions[move.player_id], move.from_box_number
            )
        ]
        box_league_service.reset_cycle_stats(stats)
        stats.box_id = move.to_box_id

    for box in boxes:
        for position, player_id in enumerate(box.player_ids, start=1):
            all_stats[player_id].current_position = position

    league.current_cycle = resolution.new_cycle_number
    league.current_round = 0
    await session.commit()

    logger.info(
        f"Applied promotion/relegation for box league {league_id}: cycle {finished_cycle} -> "
        f"{resolution.new_cycle_number}"
    )
    return result
