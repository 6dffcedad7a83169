"""Initial migration: tournaments, teams, formats, blocks, matches, overrides, locks

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create format table
    op.create_table(
        "format",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create match template table
    op.create_table(
        "matchtemplate",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("format_id", sa.Integer(), nullable=False),
        sa.Column("match_code", sa.String(), nullable=False),
        sa.Column("block_name", sa.String(), nullable=False),
        sa.Column("phase", sa.String(), nullable=False, server_default="preliminary"),
        sa.Column("round_label", sa.String(), nullable=True),
        sa.Column("team_a_source", sa.String(), nullable=False),
        sa.Column("team_b_source", sa.String(), nullable=False),
        sa.Column("team_a_display_name", sa.String(), nullable=True),
        sa.Column("team_b_display_name", sa.String(), nullable=True),
        sa.Column("winner_position", sa.Integer(), nullable=True),
        sa.Column("loser_position_start", sa.Integer(), nullable=True),
        sa.Column("loser_position_end", sa.Integer(), nullable=True),
        sa.Column("execution_priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_bye", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(["format_id"], ["format.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("format_id", "match_code", name="uq_template_format_code"),
    )
    op.create_index("ix_matchtemplate_format_id", "matchtemplate", ["format_id"])

    # Create tournament table
    op.create_table(
        "tournament",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("sport_code", sa.String(), nullable=False, server_default="soccer"),
        sa.Column("format_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="planning"),
        sa.Column("win_points", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("draw_points", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("loss_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("walkover_winner_goals", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("walkover_loser_goals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tie_policy", sa.String(), nullable=False, server_default="manual"),
        sa.Column("require_block_completion", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["format_id"], ["format.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    # Create team table
    op.create_table(
        "team",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("short_name", sa.String(), nullable=True),
        sa.Column("seed", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tournament_id", "seed", name="uq_tournament_seed"),
        sa.UniqueConstraint("tournament_id", "name", name="uq_tournament_team_name"),
    )
    op.create_index("ix_team_tournament_id", "team", ["tournament_id"])

    # Create block tables
    op.create_table(
        "block",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("phase", sa.String(), nullable=False, server_default="preliminary"),
        sa.Column("tie_breaking_rules", sa.JSON(), nullable=True),
        sa.Column("team_rankings", sa.JSON(), nullable=True),
        sa.Column("rankings_updated_at", sa.DateTime(), nullable=True),
        sa.Column("manual_ranking", sa.JSON(), nullable=True),
        sa.Column("manual_ranking_forced", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tournament_id", "name", name="uq_tournament_block_name"),
    )
    op.create_index("ix_block_tournament_id", "block", ["tournament_id"])

    op.create_table(
        "blockmember",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("block_id", sa.Integer(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["block_id"], ["block.id"]),
        sa.ForeignKeyConstraint(["team_id"], ["team.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("block_id", "team_id", name="uq_block_member"),
    )
    op.create_index("ix_blockmember_block_id", "blockmember", ["block_id"])

    # Create match table
    op.create_table(
        "match",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("block_id", sa.Integer(), nullable=False),
        sa.Column("template_id", sa.Integer(), nullable=True),
        sa.Column("match_code", sa.String(), nullable=False),
        sa.Column("team_a_id", sa.Integer(), nullable=True),
        sa.Column("team_b_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="scheduled"),
        sa.Column("cancellation_type", sa.String(), nullable=True),
        sa.Column("score_json", sa.JSON(), nullable=True),
        sa.Column("team_a_goals", sa.Integer(), nullable=True),
        sa.Column("team_b_goals", sa.Integer(), nullable=True),
        sa.Column("team_a_pk", sa.Integer(), nullable=True),
        sa.Column("team_b_pk", sa.Integer(), nullable=True),
        sa.Column("winner_team_id", sa.Integer(), nullable=True),
        sa.Column("is_draw", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_walkover", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["block_id"], ["block.id"]),
        sa.ForeignKeyConstraint(["template_id"], ["matchtemplate.id"]),
        sa.ForeignKeyConstraint(["team_a_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["team_b_id"], ["team.id"]),
        sa.ForeignKeyConstraint(["winner_team_id"], ["team.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tournament_id", "match_code", name="uq_match_tournament_code"),
    )
    op.create_index("ix_match_tournament_id", "match", ["tournament_id"])
    op.create_index("ix_match_block_id", "match", ["block_id"])

    # Create override tables
    op.create_table(
        "promotionoverride",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("slot_key", sa.String(), nullable=False),
        sa.Column("team_id", sa.Integer(), nullable=False),
        sa.Column("forced", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.ForeignKeyConstraint(["team_id"], ["team.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tournament_id", "slot_key", name="uq_promotion_override_slot"),
    )
    op.create_index("ix_promotionoverride_tournament_id", "promotionoverride", ["tournament_id"])

    op.create_table(
        "matchsourceoverride",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("match_code", sa.String(), nullable=False),
        sa.Column("team_a_source", sa.String(), nullable=True),
        sa.Column("team_b_source", sa.String(), nullable=True),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tournament_id", "match_code", name="uq_source_override_match"),
    )
    op.create_index("ix_matchsourceoverride_tournament_id", "matchsourceoverride", ["tournament_id"])

    # Create tournament lock table
    op.create_table(
        "tournamentlock",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("holder", sa.String(), nullable=True),
        sa.Column("acquired_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournament.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tournament_id"),
    )


def downgrade() -> None:
    op.drop_table("tournamentlock")
    op.drop_index("ix_matchsourceoverride_tournament_id", table_name="matchsourceoverride")
    op.drop_table("matchsourceoverride")
    op.drop_index("ix_promotionoverride_tournament_id", table_name="promotionoverride")
    op.drop_table("promotionoverride")
    op.drop_index("ix_match_block_id", table_name="match")
    op.drop_index("ix_match_tournament_id", table_name="match")
    op.drop_table("match")
    op.drop_index("ix_blockmember_block_id", table_name="blockmember")
    op.drop_table("blockmember")
    op.drop_index("ix_block_tournament_id", table_name="block")
    op.drop_table("block")
    op.drop_index("ix_team_tournament_id", table_name="team")
    op.drop_table("team")
    op.drop_table("tournament")
    op.drop_index("ix_matchtemplate_format_id", table_name="matchtemplate")
    op.drop_table("matchtemplate")
    op.drop_table("format")
