"""draw tickets and prize codes

Revision ID: 0001
Revises:
Create Date: 2026-01-10 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "draw_tickets",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draw_tickets")),
    )
    op.create_index(
        "ix_draw_tickets_phone_status", "draw_tickets", ["phone", "status"], unique=False
    )

    op.create_table(
        "prize_codes",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("benefit_text", sa.Text(), nullable=False),
        sa.Column("rank", sa.String(length=4), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("assigned_phone", sa.String(length=32), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_prize_codes")),
        sa.UniqueConstraint("code", name=op.f("prize_codes_code_key")),
    )
    op.create_index(
        "ix_prize_codes_rank_status", "prize_codes", ["rank", "status"], unique=False
    )
    op.create_index(
        "ix_prize_codes_assigned_phone", "prize_codes", ["assigned_phone"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_prize_codes_assigned_phone", table_name="prize_codes")
    op.drop_index("ix_prize_codes_rank_status", table_name="prize_codes")
    op.drop_table("prize_codes")
    op.drop_index("ix_draw_tickets_phone_status", table_name="draw_tickets")
    op.drop_table("draw_tickets")
