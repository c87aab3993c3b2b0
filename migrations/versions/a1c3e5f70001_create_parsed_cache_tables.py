"""Create parsed_cache and parse_leases tables

Revision ID: a1c3e5f70001
Revises:
Create Date: 2026-10-19 09:12:44.301517

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c3e5f70001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "parsed_cache",
        sa.Column("url_hash", sa.String(40), primary_key=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("result", sa.JSON(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_validated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hit_count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("idx_parsed_cache_created_at", "parsed_cache", ["created_at"])
    op.create_index("idx_parsed_cache_confidence", "parsed_cache", ["confidence"])

    op.create_table(
        "parse_leases",
        sa.Column("url_hash", sa.String(40), primary_key=True),
        sa.Column("holder", sa.String(128), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_parse_leases_expires_at", "parse_leases", ["expires_at"])


def downgrade() -> None:
    op.drop_index("idx_parse_leases_expires_at", table_name="parse_leases")
    op.drop_table("parse_leases")
    op.drop_index("idx_parsed_cache_confidence", table_name="parsed_cache")
    op.drop_index("idx_parsed_cache_created_at", table_name="parsed_cache")
    op.drop_table("parsed_cache")
