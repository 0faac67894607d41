"""
SQLAlchemy ORM models for the pairing and box league system.
"""

import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.database.db import Base
from backend.utils.constants import DEFAULT_RATING, DEFAULT_COURTS, DEFAULT_ROUNDS_PER_CYCLE


def _values(enum_class):
    return [member.value for member in enum_class]


class MatchFormat(str, enum.Enum):
    """Quick play match format."""

    SINGLES = "singles"
    DOUBLES = "doubles"


class TournamentStatus(str, enum.Enum):
    """Quick play tournament status."""

    ACTIVE = "active"
    COMPLETED = "completed"


class MatchStatus(str, enum.Enum):
    """Match status, shared by quick play and box league matches."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BYE = "bye"


class BoxLeagueStatus(str, enum.Enum):
    """Box league status enum."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class RoundStatus(str, enum.Enum):
    """Box league round status."""

    ACTIVE = "active"
    COMPLETED = "completed"


class Player(Base):
    """Player profiles with their rating and lifetime totals."""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String, nullable=False)
    rating = Column(Float, default=DEFAULT_RATING, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    losses = Column(Integer, default=0, nullable=False)
    points_for = Column(Integer, default=0, nullable=False)
    points_against = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("rating >= 2.0 AND rating <= 8.0", name="ck_players_rating_range"),
    )


class Tournament(Base):
    """Quick play session: a roster playing rounds generated up front or on demand."""

    __tablename__ = "tournaments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    format = Column(Enum(MatchFormat, values_callable=_values), nullable=False)
    player_ids = Column(JSON, nullable=False, default=list)  # ordered roster
    available_courts = Column(Integer, default=DEFAULT_COURTS, nullable=False)
    current_round = Column(Integer, default=0, nullable=False)
    max_rounds = Column(Integer, nullable=True)  # None: rounds generated one at a time
    status = Column(
        Enum(TournamentStatus, values_callable=_values), default=TournamentStatus.ACTIVE, nullable=False
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    matches = relationship(
        "TournamentMatch",
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by="TournamentMatch.round_number",
    )


class TournamentMatch(Base):
    """One match of a quick play round."""

    __tablename__ = "tournament_matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tournament_id = Column(Integer, ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False)
    round_number = Column(Integer, nullable=False)
    match_number = Column(Integer, nullable=False)
    team1_player_ids = Column(JSON, nullable=False)
    team2_player_ids = Column(JSON, nullable=False)
    team1_score = Column(Integer, nullable=True)
    team2_score = Column(Integer, nullable=True)
    status = Column(Enum(MatchStatus, values_callable=_values), default=MatchStatus.PENDING, nullable=False)
    rating_changes = Column(JSON, nullable=True)  # {player_id: {before, after}}
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    tournament = relationship("Tournament", back_populates="matches")

    __table_args__ = (
        UniqueConstraint("tournament_id", "round_number", "match_number", name="uq_tournament_match_number"),
        Index("idx_tournament_matches_round", "tournament_id", "round_number"),
    )

    def to_pairing(self):
        from backend.services.pairing_service import make_pairing
        return make_pairing(self.team1_player_ids, self.team2_player_ids)


class BoxLeague(Base):
    """Box league: ranked boxes of 4 playing fixed rounds per cycle."""

    __tablename__ = "box_leagues"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    status = Column(
        Enum(BoxLeagueStatus, values_callable=_values), default=BoxLeagueStatus.ACTIVE, nullable=False
    )
    current_cycle = Column(Integer, default=1, nullable=False)
    current_round = Column(Integer, default=0, nullable=False)  # rounds played in the current cycle
    rounds_per_cycle = Column(Integer, default=DEFAULT_ROUNDS_PER_CYCLE, nullable=False)
    new_player_entry_box = Column(Integer, nullable=True)  # None = bottom box
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    boxes = relationship(
        "Box", back_populates="box_league", cascade="all, delete-orphan", order_by="Box.box_number"
    )

    __table_args__ = (
        CheckConstraint("rounds_per_cycle >= 1", name="ck_box_leagues_rounds_per_cycle"),
    )


class Box(Base):
    """A group of 4 players. box_number 1 is the top box."""

    __tablename__ = "boxes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    box_league_id = Column(Integer, ForeignKey("box_leagues.id", ondelete="CASCADE"), nullable=False)
    box_number = Column(Integer, nullable=False)
    player_ids = Column(JSON, nullable=False, default=list)

    # Relationships
    box_league = relationship("BoxLeague", back_populates="boxes")

    __table_args__ = (
        UniqueConstraint("box_league_id", "box_number", name="uq_box_league_box_number"),
    )


class BoxLeagueRound(Base):
    """One round of a box league cycle (three matches per box)."""

    __tablename__ = "box_league_rounds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    box_league_id = Column(Integer, ForeignKey("box_leagues.id", ondelete="CASCADE"), nullable=False)
    round_number = Column(Integer, nullable=False)
    cycle_number = Column(Integer, nullable=False)
    status = Column(Enum(RoundStatus, values_callable=_values), default=RoundStatus.ACTIVE, nullable=False)
    match_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("box_league_id", "cycle_number", "round_number", name="uq_box_league_round"),
    )


class BoxLeagueMatch(Base):
    """A match inside one box for one round."""

    __tablename__ = "box_league_matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    box_league_id = Column(Integer, ForeignKey("box_leagues.id", ondelete="CASCADE"), nullable=False)
    round_id = Column(Integer, ForeignKey("box_league_rounds.id", ondelete="CASCADE"), nullable=False)
    box_id = Column(Integer, ForeignKey("boxes.id", ondelete="CASCADE"), nullable=False)
    round_number = Column(Integer, nullable=False)
    cycle_number = Column(Integer, nullable=False)
    match_number = Column(Integer, nullable=False)  # 1..3
    team1_player_ids = Column(JSON, nullable=False)
    team2_player_ids = Column(JSON, nullable=False)
    team1_score = Column(Integer, nullable=True)
    team2_score = Column(Integer, nullable=True)
    status = Column(Enum(MatchStatus, values_callable=_values), default=MatchStatus.PENDING, nullable=False)
    winner_team = Column(Integer, nullable=True)  # 1 or 2 once completed
    rating_changes = Column(JSON, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_box_league_matches_cycle", "box_league_id", "cycle_number", "round_number"),
        Index("idx_box_league_matches_box", "box_id"),
    )


class PlayerBoxStats(Base):
    """Per (league, player) stats for the current cycle, plus position history."""

    __tablename__ = "player_box_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    box_league_id = Column(Integer, ForeignKey("box_leagues.id", ondelete="CASCADE"), nullable=False)
    player_id = Column(Integer, ForeignKey("players.id"), nullable=False)
    box_id = Column(Integer, ForeignKey("boxes.id", ondelete="SET NULL"), nullable=True)
    current_position = Column(Integer, nullable=True)
    matches_played = Column(Integer, default=0, nullable=False)
    matches_won = Column(Integer, default=0, nullable=False)
    matches_lost = Column(Integer, default=0, nullable=False)
    games_played = Column(Integer, default=0, nullable=False)
    games_won = Column(Integer, default=0, nullable=False)
    games_lost = Column(Integer, default=0, nullable=False)
    points_for = Column(Integer, default=0, nullable=False)
    points_against = Column(Integer, default=0, nullable=False)
    total_points = Column(Integer, default=0, nullable=False)
    partner_stats = Column(JSON, nullable=False, default=dict)  # {player_id: {wins, losses}}
    opponent_stats = Column(JSON, nullable=False, default=dict)
    position_history = Column(JSON, nullable=False, default=list)  # [{cycle, round, position, box_number}]
    last_updated = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("box_league_id", "player_id", name="uq_player_box_stats_league_player"),
    )
