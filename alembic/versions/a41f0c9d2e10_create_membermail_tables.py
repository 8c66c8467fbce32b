"""Create users, user_meta and options tables

Revision ID: a41f0c9d2e10
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a41f0c9d2e10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("login", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("registered_at", sa.Integer(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("login"),
    )
    op.create_table(
        "user_meta",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("meta_key", sa.String(), nullable=False),
        sa.Column("meta_value", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "meta_key", name="uq_user_meta_key"),
    )
    op.create_index(op.f("ix_user_meta_user_id"), "user_meta", ["user_id"], unique=False)
    op.create_index(op.f("ix_user_meta_meta_key"), "user_meta", ["meta_key"], unique=False)
    op.create_table(
        "options",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("options")
    op.drop_index(op.f("ix_user_meta_meta_key"), table_name="user_meta")
    op.drop_index(op.f("ix_user_meta_user_id"), table_name="user_meta")
    op.drop_table("user_meta")
    op.drop_table("users")
