"""add_reminder_tracking_to_bookings

Revision ID: r3m1nd3r5
Revises: 4d3t41l1ng
Create Date: 2026-03-09

Add reminder_count and last_reminder_at to bookings so the payment reminder
job knows how many reminders a booking has had. The job claims the next
reminder by bumping reminder_count with a compare-and-swap update.

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'r3m1nd3r5'
down_revision: Union[str, Sequence[str], None] = '4d3t41l1ng'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add payment reminder tracking columns to bookings."""
    op.add_column('bookings',
        sa.Column('reminder_count', sa.Integer(), nullable=False, server_default='0'))
    op.add_column('bookings',
        sa.Column('last_reminder_at', sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    """Remove payment reminder tracking columns from bookings."""
    op.drop_column('bookings', 'last_reminder_at')
    op.drop_column('bookings', 'reminder_count')
