"""
Tests for the data service against an in-memory SQLite database.
"""
import pytest
from sqlalchemy import select

from backend.database.models import BoxLeagueRound, MatchStatus, Player, PlayerBoxStats, RoundStatus
from backend.services import data_service
from backend.utils.constants import DEFAULT_RATING
from backend.utils.errors import NotFoundError, StateError, ValidationError


async def play_box_round(session, league_id, team1_score=11, team2_score=5):
    """Create a round and record every match with team 1 winning."""
    created = await data_service.create_box_league_round(session, league_id)
    for match in created["matches"]:
        await data_service.record_box_match_result(session, match["id"], team1_score, team2_score)
    return created


# ----------------------------------------------------------------------------
# Players
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_player_defaults(db_session):
    player = await data_service.create_player(db_session, "  Alex Morgan ")

    assert player["full_name"] == "Alex Morgan"
    assert player["rating"] == DEFAULT_RATING
    assert player["wins"] == 0

    fetched = await data_service.get_player(db_session, player["id"])
    assert fetched == player


@pytest.mark.asyncio
@pytest.mark.parametrize("name,rating", [("", None), ("Sam", 1.5), ("Sam", 8.5)])
async def test_create_player_rejects_invalid_input(db_session, name, rating):
    with pytest.raises(ValidationError):
        await data_service.create_player(db_session, name, rating)


@pytest.mark.asyncio
async def test_get_missing_player(db_session):
    with pytest.raises(NotFoundError):
        await data_service.get_player(db_session, 999)


# ----------------------------------------------------------------------------
# Quick play
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_quick_play_generates_first_round(db_session, player_ids, rng):
    tournament = await data_service.create_quick_play_tournament(
        db_session, "Sunday session", "doubles", player_ids[:8], 2, rng=rng
    )

    assert tournament["current_round"] == 1
    assert tournament["status"] == "active"
    assert len(tournament["matches"]) == 2
    assert tournament["round"]["strategy"] == "rotation"
    assert all(match["status"] == "pending" for match in tournament["matches"])

    seated = {pid for m in tournament["matches"] for pid in m["team1_player_ids"] + m["team2_player_ids"]}
    assert seated == set(player_ids[:8])


@pytest.mark.asyncio
async def test_create_quick_play_validates_roster(db_session, player_ids, rng):
    with pytest.raises(ValidationError):
        await data_service.create_quick_play_tournament(db_session, "Too few", "doubles", player_ids[:3], 1, rng=rng)
    with pytest.raises(ValidationError):
        await data_service.create_quick_play_tournament(db_session, "Bad", "triples", player_ids[:4], 1, rng=rng)
    with pytest.raises(NotFoundError):
        await data_service.create_quick_play_tournament(db_session, "Ghosts", "singles", [901, 902], 1, rng=rng)


@pytest.mark.asyncio
async def test_added_rounds_avoid_repeated_partners(db_session, player_ids, rng):
    tournament = await data_service.create_quick_play_tournament(
        db_session, "Ladder", "doubles", player_ids[:8], 2, rng=rng
    )
    for _ in range(6):
        await data_service.add_quick_play_round(db_session, tournament["id"], rng=rng)

    loaded = await data_service.get_quick_play_tournament(db_session, tournament["id"])
    assert loaded["current_round"] == 7
    assert len(loaded["matches"]) == 14

    partnerships = [
        tuple(sorted(team))
        for match in loaded["matches"]
        for team in (match["team1_player_ids"], match["team2_player_ids"])
    ]
    assert len(partnerships) == len(set(partnerships)) == 28


@pytest.mark.asyncio
async def test_record_quick_play_result_updates_ratings(db_session, player_ids, rng):
    tournament = await data_service.create_quick_play_tournament(
        db_session, "Singles", "singles", player_ids[:2], 1, rng=rng
    )
    match = tournament["matches"][0]

    started = await data_service.start_quick_play_match(db_session, match["id"])
    assert started["status"] == "in_progress"

    recorded = await data_service.record_quick_play_result(db_session, match["id"], 11, 9)
    assert recorded["status"] == "completed"
    assert recorded["completed_at"] is not None

    winner_id = match["team1_player_ids"][0]
    loser_id = match["team2_player_ids"][0]
    assert recorded["rating_changes"][str(winner_id)]["after"] == pytest.approx(3.562)

    winner = await data_service.get_player(db_session, winner_id)
    loser = await data_service.get_player(db_session, loser_id)
    assert winner["wins"] == 1 and winner["points_for"] == 11 and winner["points_against"] == 9
    assert loser["losses"] == 1
    assert loser["rating"] == pytest.approx(3.438)

    with pytest.raises(StateError):
        await data_service.record_quick_play_result(db_session, match["id"], 11, 3)
    with pytest.raises(StateError):
        await data_service.start_quick_play_match(db_session, match["id"])


@pytest.mark.asyncio
async def test_tied_result_changes_nothing(db_session, player_ids, rng):
    tournament = await data_service.create_quick_play_tournament(
        db_session, "Singles", "singles", player_ids[:2], 1, rng=rng
    )
    match_id = tournament["matches"][0]["id"]

    with pytest.raises(ValidationError):
        await data_service.record_quick_play_result(db_session, match_id, 10, 10)

    loaded = await data_service.get_quick_play_tournament(db_session, tournament["id"])
    assert loaded["matches"][0]["status"] == "pending"
    players = (await db_session.execute(select(Player).where(Player.id.in_(player_ids[:2])))).scalars().all()
    assert all(player.rating == 3.5 for player in players)


@pytest.mark.asyncio
async def test_delete_quick_play_round(db_session, player_ids, rng):
    tournament = await data_service.create_quick_play_tournament(
        db_session, "Session", "doubles", player_ids[:4], 1, rng=rng
    )
    with pytest.raises(StateError):
        await data_service.delete_quick_play_round(db_session, tournament["id"], 1)

    await data_service.add_quick_play_round(db_session, tournament["id"], rng=rng)
    deleted = await data_service.delete_quick_play_round(db_session, tournament["id"], 2)
    assert deleted["deleted_matches"] == 1

    loaded = await data_service.get_quick_play_tournament(db_session, tournament["id"])
    assert loaded["current_round"] == 1
    assert {match["round_number"] for match in loaded["matches"]} == {1}

    with pytest.raises(NotFoundError):
        await data_service.delete_quick_play_round(db_session, tournament["id"], 5)


@pytest.mark.asyncio
async def test_cannot_delete_started_round(db_session, player_ids, rng):
    tournament = await data_service.create_quick_play_tournament(
        db_session, "Session", "doubles", player_ids[:4], 1, rng=rng
    )
    round_two = await data_service.add_quick_play_round(db_session, tournament["id"], rng=rng)
    assert round_two["round_number"] == 2

    loaded = await data_service.get_quick_play_tournament(db_session, tournament["id"])
    second_round_match = [m for m in loaded["matches"] if m["round_number"] == 2][0]
    await data_service.start_quick_play_match(db_session, second_round_match["id"])

    with pytest.raises(StateError):
        await data_service.delete_quick_play_round(db_session, tournament["id"], 2)


@pytest.mark.asyncio
async def test_tournament_completes_when_every_match_is_recorded(db_session, player_ids, rng):
    tournament = await data_service.create_quick_play_tournament(
        db_session, "One court", "doubles", player_ids[:4], 1, rng=rng
    )
    match_id = tournament["matches"][0]["id"]

    await data_service.start_quick_play_match(db_session, match_id)
    loaded = await data_service.get_quick_play_tournament(db_session, tournament["id"])
    assert loaded["status"] == "active"

    await data_service.record_quick_play_result(db_session, match_id, 11, 5)

    loaded = await data_service.get_quick_play_tournament(db_session, tournament["id"])
    assert loaded["status"] == "completed"
    assert loaded["completed_at"] is not None


@pytest.mark.asyncio
async def test_completed_tournament_reopens_for_another_round(db_session, player_ids, rng):
    tournament = await data_service.create_quick_play_tournament(
        db_session, "Open ended", "singles", player_ids[:2], 1, rng=rng
    )
    await data_service.record_quick_play_result(db_session, tournament["matches"][0]["id"], 11, 5)

    round_two = await data_service.add_quick_play_round(db_session, tournament["id"], rng=rng)
    assert round_two["round_number"] == 2

    loaded = await data_service.get_quick_play_tournament(db_session, tournament["id"])
    assert loaded["status"] == "active"
    assert loaded["completed_at"] is None

    second = [m for m in loaded["matches"] if m["round_number"] == 2][0]
    await data_service.record_quick_play_result(db_session, second["id"], 7, 11)
    loaded = await data_service.get_quick_play_tournament(db_session, tournament["id"])
    assert loaded["status"] == "completed"


@pytest.mark.asyncio
async def test_max_rounds_generates_every_round_up_front(db_session, player_ids, rng):
    tournament = await data_service.create_quick_play_tournament(
        db_session, "Fixed", "doubles", player_ids[:4], 1, max_rounds=3, rng=rng
    )

    assert tournament["max_rounds"] == 3
    assert tournament["current_round"] == 3
    assert [r["round_number"] for r in tournament["rounds"]] == [1, 2, 3]
    assert tournament["round"]["round_number"] == 1
    assert len(tournament["matches"]) == 3

    # 4 players have exactly 3 partitions; each round must use a different one
    partitions = {
        frozenset([tuple(sorted(m["team1_player_ids"])), tuple(sorted(m["team2_player_ids"]))])
        for m in tournament["matches"]
    }
    assert len(partitions) == 3
    assert not any(r["schedule_exhausted"] for r in tournament["rounds"])

    with pytest.raises(StateError):
        await data_service.add_quick_play_round(db_session, tournament["id"], rng=rng)

    for match in tournament["matches"][:2]:
        await data_service.record_quick_play_result(db_session, match["id"], 11, 5)
    loaded = await data_service.get_quick_play_tournament(db_session, tournament["id"])
    assert loaded["status"] == "active"

    await data_service.record_quick_play_result(db_session, tournament["matches"][2]["id"], 11, 5)
    loaded = await data_service.get_quick_play_tournament(db_session, tournament["id"])
    assert loaded["status"] == "completed"

    with pytest.raises(StateError):
        await data_service.add_quick_play_round(db_session, tournament["id"], rng=rng)


@pytest.mark.asyncio
async def test_max_rounds_must_be_positive(db_session, player_ids, rng):
    with pytest.raises(ValidationError):
        await data_service.create_quick_play_tournament(
            db_session, "Zero", "doubles", player_ids[:4], 1, max_rounds=0, rng=rng
        )


# ----------------------------------------------------------------------------
# Box leagues
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_box_league_seeds_boxes_in_order(db_session, player_ids):
    league = await data_service.create_box_league(db_session, "Winter boxes", player_ids[:8])

    assert league["current_cycle"] == 1
    assert league["current_round"] == 0
    assert [box["player_ids"] for box in league["boxes"]] == [player_ids[:4], player_ids[4:8]]

    stats = (await db_session.execute(select(PlayerBoxStats))).scalars().all()
    assert len(stats) == 8
    assert {s.current_position for s in stats} == {1, 2, 3, 4}


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [3, 6])
async def test_create_box_league_needs_multiple_of_four(db_session, player_ids, count):
    with pytest.raises(ValidationError):
        await data_service.create_box_league(db_session, "Uneven", player_ids[:count])


@pytest.mark.asyncio
async def test_box_round_creates_three_matches_per_box(db_session, player_ids):
    league = await data_service.create_box_league(db_session, "League", player_ids[:8])
    created = await data_service.create_box_league_round(db_session, league["id"])

    assert created["round_number"] == 1
    assert len(created["matches"]) == 6
    first_box = [m for m in created["matches"] if m["box_id"] == league["boxes"][0]["id"]]
    p1, p2, p3, p4 = player_ids[:4]
    assert [(m["team1_player_ids"], m["team2_player_ids"]) for m in first_box] == [
        ([p1, p2], [p3, p4]),
        ([p1, p3], [p2, p4]),
        ([p1, p4], [p2, p3]),
    ]


@pytest.mark.asyncio
async def test_box_results_drive_standings(db_session, player_ids):
    league = await data_service.create_box_league(db_session, "League", player_ids[:4])
    created = await play_box_round(db_session, league["id"])

    standings = await data_service.get_box_standings(db_session, league["id"])
    rows = standings["boxes"][0]["standings"]
    assert [row["player_id"] for row in rows] == player_ids[:4]
    assert rows[0]["total_points"] == 3
    assert rows[0]["games_won"] == 3

    league_round = await db_session.get(BoxLeagueRound, created["id"])
    assert league_round.status == RoundStatus.COMPLETED
    assert sorted(league_round.match_ids) == sorted(m["id"] for m in created["matches"])


@pytest.mark.asyncio
async def test_box_match_cannot_be_recorded_twice(db_session, player_ids):
    league = await data_service.create_box_league(db_session, "League", player_ids[:4])
    created = await data_service.create_box_league_round(db_session, league["id"])
    match_id = created["matches"][0]["id"]

    recorded = await data_service.record_box_match_result(db_session, match_id, 11, 4)
    assert recorded["winner_team"] == 1
    assert recorded["status"] == MatchStatus.COMPLETED.value

    with pytest.raises(StateError):
        await data_service.record_box_match_result(db_session, match_id, 11, 4)


@pytest.mark.asyncio
async def test_cycle_completion_and_round_guard(db_session, player_ids):
    league = await data_service.create_box_league(db_session, "League", player_ids[:4], rounds_per_cycle=1)
    created = await data_service.create_box_league_round(db_session, league["id"])

    status = await data_service.get_cycle_completion_status(db_session, league["id"])
    assert status["all_rounds_played"] is True
    assert status["cycle_complete"] is False

    with pytest.raises(StateError):
        await data_service.create_box_league_round(db_session, league["id"])
    with pytest.raises(StateError):
        await data_service.run_promotion_relegation(db_session, league["id"])

    for match in created["matches"]:
        await data_service.record_box_match_result(db_session, match["id"], 11, 6)

    status = await data_service.get_cycle_completion_status(db_session, league["id"])
    assert status["cycle_complete"] is True


@pytest.mark.asyncio
async def test_promotion_relegation_moves_players_and_advances_cycle(db_session, player_ids):
    p = player_ids
    league = await data_service.create_box_league(db_session, "League", p[:8], rounds_per_cycle=1)
    await play_box_round(db_session, league["id"])

    preview = await data_service.run_promotion_relegation(db_session, league["id"], preview=True)
    assert preview["preview"] is True
    unchanged = await data_service.get_box_league(db_session, league["id"])
    assert unchanged["current_cycle"] == 1

    result = await data_service.run_promotion_relegation(db_session, league["id"])
    assert result["new_cycle_number"] == 2

    updated = await data_service.get_box_league(db_session, league["id"])
    assert updated["current_cycle"] == 2
    assert updated["current_round"] == 0
    assert sorted(updated["boxes"][0]["player_ids"]) == sorted([p[0], p[1], p[2], p[4]])
    assert sorted(updated["boxes"][1]["player_ids"]) == sorted([p[5], p[6], p[7], p[3]])

    stats = {
        s.player_id: s
        for s in (await db_session.execute(select(PlayerBoxStats))).scalars().all()
    }
    relegated = stats[p[3]]
    assert relegated.box_id == updated["boxes"][1]["id"]
    assert relegated.total_points == 0
    assert relegated.opponent_stats == {}
    assert relegated.position_history == [{"cycle": 1, "round": 1, "position": 4, "box_number": 1}]
    assert stats[p[4]].position_history[0]["position"] == 1

    # New cycle can start
    next_round = await data_service.create_box_league_round(db_session, league["id"])
    assert next_round["cycle_number"] == 2

    relegated_stats = await data_service.get_player_box_stats(db_session, league["id"], p[3])
    assert relegated_stats["box_number"] == 2
    assert relegated_stats["position_history"] == [{"cycle": 1, "round": 1, "position": 4, "box_number": 1}]

    rounds = await data_service.list_box_league_rounds(db_session, league["id"])
    assert [(r["cycle_number"], r["round_number"]) for r in rounds] == [(1, 1), (2, 1)]
    cycle_two = await data_service.list_box_league_rounds(db_session, league["id"], cycle_number=2)
    assert [r["id"] for r in cycle_two] == [next_round["id"]]


@pytest.mark.asyncio
async def test_list_box_league_rounds_includes_matches(db_session, player_ids):
    league = await data_service.create_box_league(db_session, "League", player_ids[:8])
    played = await play_box_round(db_session, league["id"])
    pending = await data_service.create_box_league_round(db_session, league["id"])

    rounds = await data_service.list_box_league_rounds(db_session, league["id"])

    assert [r["id"] for r in rounds] == [played["id"], pending["id"]]
    assert [r["status"] for r in rounds] == ["completed", "active"]
    assert sorted(m["id"] for m in rounds[0]["matches"]) == sorted(m["id"] for m in played["matches"])
    assert all(m["status"] == "completed" and m["winner_team"] == 1 for m in rounds[0]["matches"])
    assert all(m["status"] == "pending" for m in rounds[1]["matches"])

    first_box_id = league["boxes"][0]["id"]
    assert [m["match_number"] for m in rounds[1]["matches"] if m["box_id"] == first_box_id] == [1, 2, 3]

    assert await data_service.list_box_league_rounds(db_session, league["id"], cycle_number=2) == []
    with pytest.raises(NotFoundError):
        await data_service.list_box_league_rounds(db_session, 999)


@pytest.mark.asyncio
async def test_get_player_box_stats(db_session, player_ids):
    p1, p2, p3, p4 = player_ids[:4]
    league = await data_service.create_box_league(db_session, "League", player_ids[:4])
    await play_box_round(db_session, league["id"])

    stats = await data_service.get_player_box_stats(db_session, league["id"], p1)

    assert stats["box_number"] == 1
    assert stats["current_position"] == 1
    assert stats["matches_played"] == 3 and stats["matches_won"] == 3
    assert stats["total_points"] == 3
    assert stats["points_for"] == 33 and stats["points_against"] == 15
    assert stats["partner_stats"] == {str(pid): {"wins": 1, "losses": 0} for pid in (p2, p3, p4)}
    assert stats["opponent_stats"] == {str(pid): {"wins": 2, "losses": 0} for pid in (p2, p3, p4)}
    assert stats["position_history"] == []

    loser = await data_service.get_player_box_stats(db_session, league["id"], p2)
    assert loser["matches_won"] == 1 and loser["matches_lost"] == 2

    with pytest.raises(NotFoundError):
        await data_service.get_player_box_stats(db_session, league["id"], player_ids[10])
    with pytest.raises(NotFoundError):
        await data_service.get_player_box_stats(db_session, 999, p1)


@pytest.mark.asyncio
async def test_status_changes(db_session, player_ids):
    league = await data_service.create_box_league(db_session, "League", player_ids[:4])

    paused = await data_service.update_box_league_status(db_session, league["id"], "paused")
    assert paused["status"] == "paused"
    with pytest.raises(StateError):
        await data_service.create_box_league_round(db_session, league["id"])

    await data_service.update_box_league_status(db_session, league["id"], "completed")
    with pytest.raises(StateError):
        await data_service.update_box_league_status(db_session, league["id"], "active")
    with pytest.raises(ValidationError):
        await data_service.update_box_league_status(db_session, league["id"], "archived")


@pytest.mark.asyncio
async def test_add_player_opens_new_bottom_box(db_session, player_ids):
    league = await data_service.create_box_league(db_session, "League", player_ids[:4])

    updated = await data_service.add_player_to_box_league(db_session, league["id"], player_ids[4])
    assert [box["box_number"] for box in updated["boxes"]] == [1, 2]
    assert updated["boxes"][1]["player_ids"] == [player_ids[4]]

    with pytest.raises(ValidationError):
        await data_service.add_player_to_box_league(db_session, league["id"], player_ids[4])
    with pytest.raises(ValidationError):
        await data_service.create_box_league_round(db_session, league["id"])

    standings = await data_service.get_box_standings(db_session, league["id"])
    assert standings["boxes"][1]["standings"] == []


@pytest.mark.asyncio
async def test_remove_player_blocked_by_open_matches(db_session, player_ids):
    league = await data_service.create_box_league(db_session, "League", player_ids[:8])
    await data_service.create_box_league_round(db_session, league["id"])

    with pytest.raises(StateError):
        await data_service.remove_player_from_box_league(db_session, league["id"], player_ids[0])
    with pytest.raises(NotFoundError):
        await data_service.remove_player_from_box_league(db_session, league["id"], player_ids[12])


@pytest.mark.asyncio
async def test_remove_player_between_rounds(db_session, player_ids):
    league = await data_service.create_box_league(db_session, "League", player_ids[:4])

    updated = await data_service.remove_player_from_box_league(db_session, league["id"], player_ids[1])
    assert updated["boxes"][0]["player_ids"] == [player_ids[0], player_ids[2], player_ids[3]]


@pytest.mark.asyncio
async def test_swap_players(db_session, player_ids):
    p = player_ids
    league = await data_service.create_box_league(db_session, "League", p[:8])

    swapped = await data_service.swap_players(db_session, league["id"], p[0], p[4])
    assert swapped["boxes"][0]["player_ids"] == [p[4], p[1], p[2], p[3]]
    assert swapped["boxes"][1]["player_ids"] == [p[0], p[5], p[6], p[7]]

    with pytest.raises(ValidationError):
        await data_service.swap_players(db_session, league["id"], p[1], p[2])

    await data_service.create_box_league_round(db_session, league["id"])
    with pytest.raises(StateError):
        await data_service.swap_players(db_session, league["id"], p[1], p[5])
