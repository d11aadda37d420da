"""Initial schema: users, credits, transcriptions and integrations.

Revision ID: 20261019_0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "20261019_0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    tables = set(inspect(bind).get_table_names())

    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("full_name", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if "user_credits" not in tables:
        op.create_table(
            "user_credits",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("credits_balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.CheckConstraint("credits_balance >= 0", name="ck_credits_non_negative"),
        )
        op.create_index("ix_user_credits_user_id", "user_credits", ["user_id"], unique=True)

    if "credit_usage" not in tables:
        op.create_table(
            "credit_usage",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("transcription_id", sa.String(length=64), nullable=True),
            sa.Column("credits_used", sa.Integer(), nullable=False),
            sa.Column("description", sa.String(length=255), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        )
        op.create_index("ix_credit_usage_user_id", "credit_usage", ["user_id"])
        op.create_index("ix_credit_usage_transcription_id", "credit_usage", ["transcription_id"])
        op.create_index("ix_credit_usage_created_at", "credit_usage", ["created_at"])

    if "credit_transactions" not in tables:
        op.create_table(
            "credit_transactions",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("paddle_transaction_id", sa.String(length=100), nullable=False),
            sa.Column("amount", sa.Float(), nullable=False, server_default="0"),
            sa.Column("currency", sa.String(length=10), nullable=False, server_default="USD"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="completed"),
            sa.Column("credits_added", sa.Integer(), nullable=False),
            sa.Column("package_name", sa.String(length=100), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.UniqueConstraint("paddle_transaction_id"),
        )
        op.create_index("ix_credit_transactions_user_id", "credit_transactions", ["user_id"])

    if "transcriptions" not in tables:
        op.create_table(
            "transcriptions",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("transcript_id", sa.String(length=64), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False),
            sa.Column("file_name", sa.String(length=512), nullable=False),
            sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("file_type", sa.String(length=100), nullable=True),
            sa.Column("duration", sa.Float(), nullable=True),
            sa.Column("transcription_text", sa.Text(), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=False),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("check_attempts", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("next_check_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        )
        op.create_index("ix_transcriptions_user_id", "transcriptions", ["user_id"])
        op.create_index("ix_transcriptions_transcript_id", "transcriptions", ["transcript_id"])
        op.create_index("ix_transcriptions_status", "transcriptions", ["status"])
        op.create_index("ix_transcriptions_next_check_at", "transcriptions", ["next_check_at"])
        op.create_index("ix_transcriptions_created_at", "transcriptions", ["created_at"])

    if "integrations" not in tables:
        op.create_table(
            "integrations",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("provider", sa.String(length=32), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="disconnected"),
            sa.Column("settings", sa.JSON(), nullable=False),
            sa.Column("connected_at", sa.DateTime(), nullable=True),
            sa.Column("last_sync", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.UniqueConstraint("user_id", "provider", name="uq_integration_user_provider"),
        )
        op.create_index("ix_integrations_user_id", "integrations", ["user_id"])


def downgrade() -> None:
    for table in (
        "integrations",
        "transcriptions",
        "credit_transactions",
        "credit_usage",
        "user_credits",
        "users",
    ):
        op.drop_table(table)
