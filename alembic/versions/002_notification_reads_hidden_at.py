"""Hide support for notification reads.

Revision ID: 002
Revises: 001
Create Date: 2026-10-06

"""
from alembic import op
import sqlalchemy as sa


revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "notification_reads",
        sa.Column("hidden_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    with op.batch_alter_table("notification_reads") as batch_op:
        batch_op.drop_column("hidden_at")
