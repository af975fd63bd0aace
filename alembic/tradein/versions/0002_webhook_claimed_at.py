"""stamp webhook claims so abandoned ones can be reclaimed

Revision ID: 0002_tradein
Revises: 0001_tradein
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_tradein"
down_revision = "0001_tradein"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("webhook_events", sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column("webhook_events", "claimed_at")
