"""
Pydantic models for API request/response validation.
"""

from typing import Optional, List, Dict
from pydantic import BaseModel, Field, ConfigDict

from backend.utils.constants import DEFAULT_COURTS, DEFAULT_ROUNDS_PER_CYCLE


class HistoricalMatch(BaseModel):
    """A previously created match, used to steer pairing away from repeats."""

    team1: List[int] = Field(min_length=1, max_length=2)
    team2: List[int] = Field(min_length=1, max_length=2)


class GenerateRoundRequest(BaseModel):
    """Request to generate one round without persisting anything."""

    roster: List[int]
    format: str = Field(pattern="^(singles|doubles)$")
    courts: int = Field(default=DEFAULT_COURTS, ge=1)
    existing_matches: List[HistoricalMatch] = Field(default_factory=list)
    round_number: int = Field(default=1, ge=1)
    starting_match_number: int = Field(default=1, ge=1)


class GeneratedMatchResponse(BaseModel):
    match_number: int
    team1: List[int]
    team2: List[int]


class RoundResponse(BaseModel):
    """A generated round."""

    tournament_id: Optional[int] = None
    round_number: int
    matches: List[GeneratedMatchResponse]
    resting_players: List[int]
    strategy: str
    schedule_exhausted: bool


class MaxRoundsResponse(BaseModel):
    player_count: int
    format: str
    max_unique_rounds: int


class BoxScheduleRequest(BaseModel):
    player_ids: List[int]


class BoxScheduleMatch(BaseModel):
    match_number: int
    team1: List[int]
    team2: List[int]
    description: str


class RatingRequest(BaseModel):
    """Match result to rate (nothing is persisted)."""

    team1_ids: List[int]
    team1_score: int
    team2_ids: List[int]
    team2_score: int
    pre_match_ratings: Dict[int, float] = Field(default_factory=dict)


class RatingChangeResponse(BaseModel):
    before: float
    after: float


class RatingResponse(BaseModel):
    rating_changes: Dict[int, RatingChangeResponse]


class PlayerCreate(BaseModel):
    full_name: str = Field(min_length=1)
    rating: Optional[float] = None


class PlayerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    rating: float
    wins: int
    losses: int
    points_for: int
    points_against: int


class QuickPlayCreate(BaseModel):
    name: str = Field(min_length=1)
    format: str = Field(pattern="^(singles|doubles)$")
    player_ids: List[int]
    available_courts: int = Field(default=DEFAULT_COURTS, ge=1)
    max_rounds: Optional[int] = Field(default=None, ge=1)


class MatchResultRequest(BaseModel):
    team1_score: int = Field(ge=0)
    team2_score: int = Field(ge=0)


class BoxLeagueCreate(BaseModel):
    name: str = Field(min_length=1)
    player_ids: List[int]
    rounds_per_cycle: int = Field(default=DEFAULT_ROUNDS_PER_CYCLE, ge=1)
    new_player_entry_box: Optional[int] = Field(default=None, ge=1)


class BoxLeagueStatusUpdate(BaseModel):
    status: str = Field(pattern="^(active|paused|completed)$")


class BoxLeaguePlayerAdd(BaseModel):
    player_id: int


class PlayerSwapRequest(BaseModel):
    player_a_id: int
    player_b_id: int
