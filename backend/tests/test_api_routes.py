"""
API route tests. Database-backed handlers run against a monkeypatched
data_service; the pure engine endpoints run for real.
"""
import pytest
from fastapi.testclient import TestClient

from backend.api.main import app
from backend.services import data_service
from backend.utils.errors import NotFoundError, StateError, ValidationError


@pytest.fixture
def client():
    return TestClient(app)


# ----------------------------------------------------------------------------
# Pure engine endpoints
# ----------------------------------------------------------------------------

def test_generate_round_doubles(client):
    payload = {
        "roster": [1, 2, 3, 4, 5, 6, 7, 8],
        "format": "doubles",
        "courts": 2,
        "existing_matches": [{"team1": [1, 2], "team2": [3, 4]}],
        "round_number": 2,
        "starting_match_number": 3,
    }
    response = client.post("/api/pairings/generate-round", json=payload)

    assert response.status_code == 200
    data = response.json()
    assert data["round_number"] == 2
    assert data["strategy"] == "rotation"
    assert [match["match_number"] for match in data["matches"]] == [3, 4]
    seated = sorted(pid for match in data["matches"] for pid in match["team1"] + match["team2"])
    assert seated == [1, 2, 3, 4, 5, 6, 7, 8]
    assert data["resting_players"] == []


def test_generate_round_odd_singles_rests_one(client):
    response = client.post(
        "/api/pairings/generate-round",
        json={"roster": [1, 2, 3, 4, 5], "format": "singles", "courts": 2},
    )
    assert response.status_code == 200
    assert len(response.json()["resting_players"]) == 1


def test_generate_round_rejects_small_roster(client):
    response = client.post(
        "/api/pairings/generate-round",
        json={"roster": [1, 2, 3], "format": "doubles", "courts": 1},
    )
    assert response.status_code == 400


def test_generate_round_rejects_unknown_format(client):
    response = client.post(
        "/api/pairings/generate-round",
        json={"roster": [1, 2, 3, 4], "format": "triples"},
    )
    assert response.status_code == 422


def test_max_rounds(client):
    response = client.get("/api/pairings/max-rounds", params={"player_count": 8, "format": "doubles"})
    assert response.status_code == 200
    assert response.json() == {"player_count": 8, "format": "doubles", "max_unique_rounds": 7}


def test_box_schedule(client):
    response = client.post("/api/pairings/box-schedule", json={"player_ids": [5, 6, 7, 8]})

    assert response.status_code == 200
    data = response.json()
    assert [match["description"] for match in data] == [
        "Players 1&2 vs Players 3&4",
        "Players 1&3 vs Players 2&4",
        "Players 1&4 vs Players 2&3",
    ]
    assert data[2]["team1"] == [5, 8]


def test_box_schedule_needs_four_players(client):
    response = client.post("/api/pairings/box-schedule", json={"player_ids": [5, 6, 7]})
    assert response.status_code == 400


def test_calculate_ratings(client):
    payload = {
        "team1_ids": [1],
        "team1_score": 11,
        "team2_ids": [2],
        "team2_score": 9,
        "pre_match_ratings": {"1": 3.5, "2": 3.5},
    }
    response = client.post("/api/ratings/calculate", json=payload)

    assert response.status_code == 200
    changes = response.json()["rating_changes"]
    assert changes["1"]["after"] == pytest.approx(3.562)
    assert changes["2"]["after"] == pytest.approx(3.438)


def test_calculate_ratings_rejects_tie(client):
    payload = {"team1_ids": [1], "team1_score": 9, "team2_ids": [2], "team2_score": 9}
    response = client.post("/api/ratings/calculate", json=payload)
    assert response.status_code == 400
    assert "tie" in response.json()["detail"]


# ----------------------------------------------------------------------------
# Database-backed endpoints
# ----------------------------------------------------------------------------

def test_create_quick_play(monkeypatch, client):
    captured = {}

    async def fake_create(session, name, match_format, player_ids, available_courts, max_rounds=None,
                          rng=None, cache=None):
        captured.update(name=name, match_format=match_format, player_ids=player_ids, courts=available_courts,
                        max_rounds=max_rounds)
        return {"id": 1, "name": name, "current_round": 1, "matches": []}

    monkeypatch.setattr(data_service, "create_quick_play_tournament", fake_create, raising=True)

    response = client.post(
        "/api/quick-play",
        json={"name": "Tuesday", "format": "doubles", "player_ids": [1, 2, 3, 4], "available_courts": 1},
    )

    assert response.status_code == 200
    assert response.json()["id"] == 1
    assert captured == {
        "name": "Tuesday", "match_format": "doubles", "player_ids": [1, 2, 3, 4], "courts": 1, "max_rounds": None,
    }

    response = client.post(
        "/api/quick-play",
        json={"name": "Fixed", "format": "doubles", "player_ids": [1, 2, 3, 4], "max_rounds": 3},
    )
    assert response.status_code == 200
    assert captured["max_rounds"] == 3

    response = client.post(
        "/api/quick-play",
        json={"name": "Fixed", "format": "doubles", "player_ids": [1, 2, 3, 4], "max_rounds": 0},
    )
    assert response.status_code == 422


@pytest.mark.parametrize("error,status", [
    (NotFoundError("Tournament 9 not found"), 404),
    (StateError("Tournament 9 is completed"), 409),
    (ValidationError("Roster too small"), 400),
    (RuntimeError("connection lost"), 500),
])
def test_add_round_error_mapping(monkeypatch, client, error, status):
    async def fake_add_round(session, tournament_id, rng=None, cache=None):
        raise error

    monkeypatch.setattr(data_service, "add_quick_play_round", fake_add_round, raising=True)

    response = client.post("/api/quick-play/9/rounds")
    assert response.status_code == status


def test_record_quick_play_result(monkeypatch, client):
    async def fake_record(session, match_id, team1_score, team2_score):
        return {"id": match_id, "team1_score": team1_score, "team2_score": team2_score, "status": "completed"}

    monkeypatch.setattr(data_service, "record_quick_play_result", fake_record, raising=True)

    response = client.post("/api/quick-play/matches/3/result", json={"team1_score": 11, "team2_score": 7})
    assert response.status_code == 200
    assert response.json()["status"] == "completed"

    response = client.post("/api/quick-play/matches/3/result", json={"team1_score": -1, "team2_score": 7})
    assert response.status_code == 422


def test_delete_round_conflict(monkeypatch, client):
    async def fake_delete(session, tournament_id, round_number):
        raise StateError("Cannot delete round 2: 1 matches are completed or in progress")

    monkeypatch.setattr(data_service, "delete_quick_play_round", fake_delete, raising=True)

    response = client.delete("/api/quick-play/1/rounds/2")
    assert response.status_code == 409
    assert "Cannot delete round 2" in response.json()["detail"]


def test_get_player_not_found(monkeypatch, client):
    async def fake_get_player(session, player_id):
        raise NotFoundError(f"Player {player_id} not found")

    monkeypatch.setattr(data_service, "get_player", fake_get_player, raising=True)

    response = client.get("/api/players/42")
    assert response.status_code == 404


def test_create_box_league(monkeypatch, client):
    async def fake_create(session, name, player_ids, rounds_per_cycle, new_player_entry_box):
        return {
            "id": 1,
            "name": name,
            "status": "active",
            "current_cycle": 1,
            "current_round": 0,
            "rounds_per_cycle": rounds_per_cycle,
            "new_player_entry_box": new_player_entry_box,
            "boxes": [{"id": 1, "box_number": 1, "player_ids": player_ids}],
        }

    monkeypatch.setattr(data_service, "create_box_league", fake_create, raising=True)

    response = client.post("/api/box-leagues", json={"name": "Spring", "player_ids": [1, 2, 3, 4]})
    assert response.status_code == 200
    assert response.json()["rounds_per_cycle"] == 3


def test_update_status_rejects_unknown_value(client):
    response = client.patch("/api/box-leagues/1/status", json={"status": "archived"})
    assert response.status_code == 422


def test_promotion_relegation_incomplete_cycle(monkeypatch, client):
    captured = {}

    async def fake_run(session, league_id, preview=False):
        captured["preview"] = preview
        raise StateError("Cycle 1 has played 2 of 3 rounds")

    monkeypatch.setattr(data_service, "run_promotion_relegation", fake_run, raising=True)

    response = client.post("/api/box-leagues/1/promotion-relegation", params={"preview": "true"})
    assert response.status_code == 409
    assert captured["preview"] is True


def test_box_match_result(monkeypatch, client):
    async def fake_record(session, match_id, team1_score, team2_score):
        return {"id": match_id, "winner_team": 2, "status": "completed"}

    monkeypatch.setattr(data_service, "record_box_match_result", fake_record, raising=True)

    response = client.post("/api/box-leagues/matches/5/result", json={"team1_score": 6, "team2_score": 11})
    assert response.status_code == 200
    assert response.json()["winner_team"] == 2


def test_list_box_league_rounds(monkeypatch, client):
    captured = {}

    async def fake_list(session, league_id, cycle_number=None):
        captured["cycle_number"] = cycle_number
        return [{"id": 4, "box_league_id": league_id, "round_number": 1, "cycle_number": 2, "matches": []}]

    monkeypatch.setattr(data_service, "list_box_league_rounds", fake_list, raising=True)

    response = client.get("/api/box-leagues/1/rounds", params={"cycle": 2})
    assert response.status_code == 200
    assert response.json()[0]["id"] == 4
    assert captured["cycle_number"] == 2

    response = client.get("/api/box-leagues/1/rounds")
    assert response.status_code == 200
    assert captured["cycle_number"] is None

    response = client.get("/api/box-leagues/1/rounds", params={"cycle": 0})
    assert response.status_code == 422


def test_get_player_box_stats(monkeypatch, client):
    async def fake_stats(session, league_id, player_id):
        if player_id != 7:
            raise NotFoundError(f"Player {player_id} is not in box league {league_id}")
        return {"box_league_id": league_id, "player_id": player_id, "total_points": 2, "position_history": []}

    monkeypatch.setattr(data_service, "get_player_box_stats", fake_stats, raising=True)

    response = client.get("/api/box-leagues/1/players/7/stats")
    assert response.status_code == 200
    assert response.json()["total_points"] == 2

    response = client.get("/api/box-leagues/1/players/8/stats")
    assert response.status_code == 404
