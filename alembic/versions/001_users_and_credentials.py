"""Create users and webauthn_credential tables.

Revision ID: 001_users_and_credentials
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001_users_and_credentials"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

MAX_SIGN_COUNT = 2**32 - 1


def upgrade() -> None:
    """Create users and webauthn_credential tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(30), nullable=False),
        sa.Column("user_handle", sa.LargeBinary(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("user_handle", name="uq_users_user_handle"),
        sa.CheckConstraint(
            "length(username) >= 3 AND length(username) <= 30",
            name="ck_users_username_length",
        ),
    )

    op.create_table(
        "webauthn_credential",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("credential_id", sa.LargeBinary(), nullable=False),
        sa.Column("public_key", sa.LargeBinary(), nullable=False),
        sa.Column("sign_count", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("transports", JSONB(), nullable=True),
        sa.Column("device_type", sa.String(20), nullable=False, server_default="single_device"),
        sa.Column("backed_up", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_webauthn_credential"),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_webauthn_credential_user_id_users",
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            f"sign_count >= 0 AND sign_count <= {MAX_SIGN_COUNT}",
            name="ck_webauthn_credential_sign_count_range",
        ),
    )
    op.create_index(
        "ix_webauthn_credential_credential_id",
        "webauthn_credential",
        ["credential_id"],
        unique=True,
    )
    op.create_index(
        "ix_webauthn_credential_user_id",
        "webauthn_credential",
        ["user_id"],
    )


def downgrade() -> None:
    """Drop webauthn_credential and users tables."""
    op.drop_index("ix_webauthn_credential_user_id", table_name="webauthn_credential")
    op.drop_index("ix_webauthn_credential_credential_id", table_name="webauthn_credential")
    op.drop_table("webauthn_credential")
    op.drop_table("users")
