"""create shieldon_record

Revision ID: 5b1e0c3a9d27
Revises:
Create Date: 2026-10-18 09:12:44.318205

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5b1e0c3a9d27"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the key/value table shared by all storage namespaces."""
    op.create_table(
        "shieldon_record",
        sa.Column("namespace", sa.String(length=128), nullable=False),
        sa.Column("record_id", sa.String(length=255), nullable=False),
        sa.Column("payload", sa.Text(), nullable=True),
        sa.Column("counter", sa.BigInteger(), nullable=False),
        sa.Column("expires_at", sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint("namespace", "record_id"),
    )
    op.create_index("ix_shieldon_record_expires_at", "shieldon_record", ["expires_at"])


def downgrade() -> None:
    """Drop the storage table."""
    op.drop_index("ix_shieldon_record_expires_at", table_name="shieldon_record")
    op.drop_table("shieldon_record")
