"""create lexeme, inflection, task spec and practice tables

Revision ID: c4f1a2b3d5e6
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "c4f1a2b3d5e6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "lexemes",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("lemma", sa.Text(), nullable=False),
        sa.Column("language", sa.String(8), nullable=False, server_default="de"),
        sa.Column("pos", sa.String(20), nullable=False, index=True),
        sa.Column("gender", sa.String(20), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("frequency_rank", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True, index=True),
        sa.UniqueConstraint("lemma", "pos", name="lexemes_lemma_pos_idx"),
    )

    op.create_table(
        "inflections",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("lexeme_id", sa.String(128), sa.ForeignKey("lexemes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("form", sa.Text(), nullable=False),
        sa.Column("features_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True, index=True),
    )

    op.create_table(
        "words",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("lemma", sa.Text(), nullable=False),
        sa.Column("pos", sa.String(10), nullable=False),
        sa.Column("level", sa.String(2), nullable=True),
        sa.Column("english", sa.Text(), nullable=True),
        sa.Column("example_de", sa.Text(), nullable=True),
        sa.Column("example_en", sa.Text(), nullable=True),
    )

    op.create_table(
        "task_specs",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("lexeme_id", sa.String(128), sa.ForeignKey("lexemes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("pos", sa.String(20), nullable=False, index=True),
        sa.Column("task_type", sa.String(50), nullable=False, index=True),
        sa.Column("renderer", sa.String(50), nullable=False),
        sa.Column("prompt_json", sa.JSON(), nullable=False),
        sa.Column("solution_json", sa.JSON(), nullable=False),
        sa.Column("hints_json", sa.JSON(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("lexeme_id", "task_type", "revision", name="task_specs_lexeme_type_revision_idx"),
    )

    op.create_table(
        "task_sync_state",
        sa.Column("id", sa.String(50), primary_key=True),
        sa.Column("last_synced_at", sa.DateTime(), nullable=True),
        sa.Column("version_hash", sa.String(64), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "practice_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("task_id", sa.String(255), sa.ForeignKey("task_specs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("lexeme_id", sa.String(128), sa.ForeignKey("lexemes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("pos", sa.String(20), nullable=False, index=True),
        sa.Column("task_type", sa.String(50), nullable=False),
        sa.Column("renderer", sa.String(50), nullable=False),
        sa.Column("device_id", sa.String(64), nullable=False, index=True),
        sa.Column("user_id", sa.String(128), nullable=True, index=True),
        sa.Column("result", sa.String(10), nullable=False),
        sa.Column("response_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("submitted_at", sa.DateTime(), nullable=True, index=True),
        sa.Column("answered_at", sa.DateTime(), nullable=True),
        sa.Column("queued_at", sa.DateTime(), nullable=True),
        sa.Column("cefr_level", sa.String(2), nullable=True),
        sa.Column("hints_used", sa.Boolean(), server_default="0"),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "practice_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("task_id", sa.String(255), sa.ForeignKey("task_specs.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("lexeme_id", sa.String(128), sa.ForeignKey("lexemes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("pos", sa.String(20), nullable=False, index=True),
        sa.Column("task_type", sa.String(50), nullable=False),
        sa.Column("device_id", sa.String(64), nullable=True),
        sa.Column("user_id", sa.String(128), nullable=True),
        sa.Column("cefr_level", sa.String(4), nullable=False, server_default="__"),
        sa.Column("attempted_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("practice_log_identity_idx", "practice_log", ["device_id", "user_id"])

    op.create_table(
        "activity_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(50), nullable=False, index=True),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("detail_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("activity_log")
    op.drop_index("practice_log_identity_idx", table_name="practice_log")
    op.drop_table("practice_log")
    op.drop_table("practice_history")
    op.drop_table("task_sync_state")
    op.drop_table("task_specs")
    op.drop_table("words")
    op.drop_table("inflections")
    op.drop_table("lexemes")
