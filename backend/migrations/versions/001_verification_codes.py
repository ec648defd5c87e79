"""Create verification_codes table.

Revision ID: 001_verification_codes
Revises:
Create Date: 2026-10-19

One row per (email, purpose). The composite primary key is the uniqueness
constraint that makes issuance an atomic upsert. The expires_at index backs
the background expiry sweep.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001_verification_codes"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create verification_codes with its expiry index."""
    op.create_table(
        "verification_codes",
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("purpose", sa.String(40), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("code", sa.String(12), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("meta", JSONB(), nullable=True),
        sa.Column("last_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "resend_count",
            sa.Integer(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("email", "purpose", name="pk_verification_codes"),
    )
    op.create_index(
        "ix_verification_codes_expires_at",
        "verification_codes",
        ["expires_at"],
    )


def downgrade() -> None:
    """Drop verification_codes."""
    op.drop_index("ix_verification_codes_expires_at", table_name="verification_codes")
    op.drop_table("verification_codes")
