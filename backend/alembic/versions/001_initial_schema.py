"""001_initial_schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

Players, quick play tournaments and box leagues.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

match_format = postgresql.ENUM('singles', 'doubles', name='matchformat', create_type=False)
tournament_status = postgresql.ENUM('active', 'completed', name='tournamentstatus', create_type=False)
match_status = postgresql.ENUM('pending', 'in_progress', 'completed', 'bye', name='matchstatus', create_type=False)
box_league_status = postgresql.ENUM('active', 'paused', 'completed', name='boxleaguestatus', create_type=False)
round_status = postgresql.ENUM('active', 'completed', name='roundstatus', create_type=False)


ENUM_TYPES = (match_format, tournament_status, match_status, box_league_status, round_status)


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        'players',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('full_name', sa.String(), nullable=False),
        sa.Column('rating', sa.Float(), nullable=False, server_default='3.5'),
        sa.Column('wins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('losses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points_for', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points_against', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('rating >= 2.0 AND rating <= 8.0', name='ck_players_rating_range'),
    )

    op.create_table(
        'tournaments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('format', match_format, nullable=False),
        sa.Column('player_ids', sa.JSON(), nullable=False),
        sa.Column('available_courts', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('current_round', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_rounds', sa.Integer(), nullable=True),
        sa.Column('status', tournament_status, nullable=False, server_default='active'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'tournament_matches',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tournament_id', sa.Integer(), sa.ForeignKey('tournaments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('match_number', sa.Integer(), nullable=False),
        sa.Column('team1_player_ids', sa.JSON(), nullable=False),
        sa.Column('team2_player_ids', sa.JSON(), nullable=False),
        sa.Column('team1_score', sa.Integer(), nullable=True),
        sa.Column('team2_score', sa.Integer(), nullable=True),
        sa.Column('status', match_status, nullable=False, server_default='pending'),
        sa.Column('rating_changes', sa.JSON(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('tournament_id', 'round_number', 'match_number', name='uq_tournament_match_number'),
    )
    op.create_index('idx_tournament_matches_round', 'tournament_matches', ['tournament_id', 'round_number'])

    op.create_table(
        'box_leagues',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('status', box_league_status, nullable=False, server_default='active'),
        sa.Column('current_cycle', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('current_round', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rounds_per_cycle', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('new_player_entry_box', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('rounds_per_cycle >= 1', name='ck_box_leagues_rounds_per_cycle'),
    )

    op.create_table(
        'boxes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('box_league_id', sa.Integer(), sa.ForeignKey('box_leagues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('box_number', sa.Integer(), nullable=False),
        sa.Column('player_ids', sa.JSON(), nullable=False),
        sa.UniqueConstraint('box_league_id', 'box_number', name='uq_box_league_box_number'),
    )

    op.create_table(
        'box_league_rounds',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('box_league_id', sa.Integer(), sa.ForeignKey('box_leagues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('cycle_number', sa.Integer(), nullable=False),
        sa.Column('status', round_status, nullable=False, server_default='active'),
        sa.Column('match_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('box_league_id', 'cycle_number', 'round_number', name='uq_box_league_round'),
    )

    op.create_table(
        'box_league_matches',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('box_league_id', sa.Integer(), sa.ForeignKey('box_leagues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('round_id', sa.Integer(), sa.ForeignKey('box_league_rounds.id', ondelete='CASCADE'), nullable=False),
        sa.Column('box_id', sa.Integer(), sa.ForeignKey('boxes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('cycle_number', sa.Integer(), nullable=False),
        sa.Column('match_number', sa.Integer(), nullable=False),
        sa.Column('team1_player_ids', sa.JSON(), nullable=False),
        sa.Column('team2_player_ids', sa.JSON(), nullable=False),
        sa.Column('team1_score', sa.Integer(), nullable=True),
        sa.Column('team2_score', sa.Integer(), nullable=True),
        sa.Column('status', match_status, nullable=False, server_default='pending'),
        sa.Column('winner_team', sa.Integer(), nullable=True),
        sa.Column('rating_changes', sa.JSON(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_box_league_matches_cycle', 'box_league_matches', ['box_league_id', 'cycle_number', 'round_number'])
    op.create_index('idx_box_league_matches_box', 'box_league_matches', ['box_id'])

    op.create_table(
        'player_box_stats',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('box_league_id', sa.Integer(), sa.ForeignKey('box_leagues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('players.id'), nullable=False),
        sa.Column('box_id', sa.Integer(), sa.ForeignKey('boxes.id', ondelete='SET NULL'), nullable=True),
        sa.Column('current_position', sa.Integer(), nullable=True),
        sa.Column('matches_played', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('matches_won', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('matches_lost', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('games_played', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('games_won', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('games_lost', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points_for', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('points_against', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('partner_stats', sa.JSON(), nullable=False),
        sa.Column('opponent_stats', sa.JSON(), nullable=False),
        sa.Column('position_history', sa.JSON(), nullable=False),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('box_league_id', 'player_id', name='uq_player_box_stats_league_player'),
    )


def downgrade() -> None:
    op.drop_table('player_box_stats')
    op.drop_index('idx_box_league_matches_box', table_name='box_league_matches')
    op.drop_index('idx_box_league_matches_cycle', table_name='box_league_matches')
    op.drop_table('box_league_matches')
    op.drop_table('box_league_rounds')
    op.drop_table('boxes')
    op.drop_table('box_leagues')
    op.drop_index('idx_tournament_matches_round', table_name='tournament_matches')
    op.drop_table('tournament_matches')
    op.drop_table('tournaments')
    op.drop_table('players')

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)
