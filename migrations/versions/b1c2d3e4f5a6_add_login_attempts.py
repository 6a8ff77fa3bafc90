"""add login_attempts for per-account lockout

Revision ID: b1c2d3e4f5a6
Revises: a0b1c2d3e4f5
Create Date: 2026-10-17

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = "b1c2d3e4f5a6"
down_revision: Union[str, Sequence[str], None] = "a0b1c2d3e4f5"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    bind = op.get_bind()
    insp = inspect(bind)

    if not insp.has_table("login_attempts"):
        op.create_table(
            "login_attempts",
            sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("client_ip", sa.String(45), nullable=True),
            sa.Column("attempted_at", sa.DateTime(timezone=False), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        )
    if "idx_login_attempts_user" not in {ix.get("name") for ix in insp.get_indexes("login_attempts")}:
        op.create_index("idx_login_attempts_user", "login_attempts", ["user_id", "attempted_at"])


def downgrade() -> None:
    op.drop_index("idx_login_attempts_user", table_name="login_attempts")
    op.drop_table("login_attempts")
