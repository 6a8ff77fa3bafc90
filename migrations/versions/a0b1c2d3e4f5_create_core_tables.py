"""create users, household settings, permission rules, sessions and audit tables

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-10-17

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "a0b1c2d3e4f5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _index_names(insp, table: str) -> set:
    return {ix.get("name") for ix in insp.get_indexes(table)}


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)

    if not insp.has_table("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("display_name", sa.String(128), nullable=False),
            sa.Column("email", sa.String(320), nullable=True),
            sa.Column("password_hash", sa.String(255), nullable=True),
            sa.Column("kiosk_pin_hash", sa.String(255), nullable=True),
            sa.Column("role", sa.String(20), nullable=False, server_default="member"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.UniqueConstraint("email"),
        )

    if not insp.has_table("household_settings"):
        op.create_table(
            "household_settings",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("household_name", sa.String(128), nullable=True),
            sa.Column("is_bootstrapped", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False),
        )

    if not insp.has_table("permission_rules"):
        op.create_table(
            "permission_rules",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("role", sa.String(20), nullable=False),
            sa.Column("action_pattern", sa.String(128), nullable=False),
            sa.Column("effect", sa.String(8), nullable=False),
            sa.Column("local_only", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        )
    if "idx_permission_rules_role" not in _index_names(insp, "permission_rules"):
        op.create_index("idx_permission_rules_role", "permission_rules", ["role"])

    # user_id is not a foreign key; rows go away on expiry or revocation.
    if not insp.has_table("sessions"):
        op.create_table(
            "sessions",
            sa.Column("sid", sa.String(96), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("role", sa.String(20), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("last_seen_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("impersonated_by", sa.Integer(), nullable=True),
            sa.Column("is_kiosk", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("client_ip", sa.String(45), nullable=True),
        )
    idx = _index_names(insp, "sessions")
    if "idx_sessions_user" not in idx:
        op.create_index("idx_sessions_user", "sessions", ["user_id"])
    if "idx_sessions_expires" not in idx:
        op.create_index("idx_sessions_expires", "sessions", ["expires_at"])
    if "idx_sessions_kiosk" not in idx:
        op.create_index("idx_sessions_kiosk", "sessions", ["is_kiosk"])

    if not insp.has_table("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=False), nullable=False),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("impersonated_by", sa.Integer(), nullable=True),
            sa.Column("action", sa.String(128), nullable=False),
            sa.Column("result", sa.String(16), nullable=False, server_default="ok"),
            sa.Column("entity_type", sa.String(128), nullable=True),
            sa.Column("entity_id", sa.String(128), nullable=True),
            sa.Column("client_ip", sa.String(45), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"], ondelete="SET NULL"),
        )


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_index("idx_sessions_kiosk", table_name="sessions")
    op.drop_index("idx_sessions_expires", table_name="sessions")
    op.drop_index("idx_sessions_user", table_name="sessions")
    op.drop_table("sessions")
    op.drop_index("idx_permission_rules_role", table_name="permission_rules")
    op.drop_table("permission_rules")
    op.drop_table("household_settings")
    op.drop_table("users")
