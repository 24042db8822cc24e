"""initial_booking_schema

Revision ID: 4d3t41l1ng
Revises:
Create Date: 2026-03-02 10:00:00.000000

Profiles, services with per-size pricing, time slots, bookings with their
line items and status history.

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4d3t41l1ng'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BOOKING_STATUSES = (
    'PENDING', 'PROCESSING', 'PAYMENT_FAILED', 'CONFIRMED', 'RESCHEDULED',
    'IN_PROGRESS', 'COMPLETED', 'DECLINED', 'CANCELLED', 'NO_SHOW',
)


def upgrade() -> None:
    """Create the booking tables."""
    op.create_table('user_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_profiles_id'), 'user_profiles', ['id'], unique=False)
    op.create_index(op.f('ix_user_profiles_email'), 'user_profiles', ['email'], unique=True)

    op.create_table('customer_addresses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user_profiles.id'), nullable=False),
        sa.Column('address_line_1', sa.String(length=255), nullable=False),
        sa.Column('address_line_2', sa.String(length=255), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=False),
        sa.Column('postcode', sa.String(length=20), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_customer_addresses_id'), 'customer_addresses', ['id'], unique=False)
    op.create_index(op.f('ix_customer_addresses_user_id'), 'customer_addresses', ['user_id'], unique=False)

    op.create_table('customer_vehicles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('user_profiles.id'), nullable=False),
        sa.Column('make', sa.String(length=100), nullable=False),
        sa.Column('model', sa.String(length=100), nullable=False),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('color', sa.String(length=50), nullable=True),
        sa.Column('registration', sa.String(length=20), nullable=True),
        sa.Column('size', sa.Enum('S', 'M', 'L', 'XL', name='vehiclesize'), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_customer_vehicles_id'), 'customer_vehicles', ['id'], unique=False)
    op.create_index(op.f('ix_customer_vehicles_user_id'), 'customer_vehicles', ['user_id'], unique=False)

    op.create_table('services',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('short_description', sa.String(length=255), nullable=True),
        sa.Column('estimated_duration', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_services_id'), 'services', ['id'], unique=False)

    op.create_table('service_pricing',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('service_id', sa.Integer(), sa.ForeignKey('services.id'), nullable=False),
        sa.Column('small', sa.Float(), nullable=True),
        sa.Column('medium', sa.Float(), nullable=True),
        sa.Column('large', sa.Float(), nullable=True),
        sa.Column('extra_large', sa.Float(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('service_id')
    )
    op.create_index(op.f('ix_service_pricing_id'), 'service_pricing', ['id'], unique=False)

    op.create_table('time_slots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slot_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('is_available', sa.Boolean(), nullable=False),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('booking_reference', sa.String(length=40), nullable=True),
        sa.Column('booking_status', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slot_date', 'start_time', name='uq_time_slots_date_start')
    )
    op.create_index(op.f('ix_time_slots_id'), 'time_slots', ['id'], unique=False)
    op.create_index(op.f('ix_time_slots_slot_date'), 'time_slots', ['slot_date'], unique=False)

    op.create_table('bookings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_reference', sa.String(length=40), nullable=False),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('user_profiles.id'), nullable=False),
        sa.Column('time_slot_id', sa.Integer(), sa.ForeignKey('time_slots.id'), nullable=True),
        sa.Column('vehicle_details', sa.JSON(), nullable=False),
        sa.Column('service_address', sa.JSON(), nullable=False),
        sa.Column('distance_km', sa.Float(), nullable=True),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('scheduled_start_time', sa.Time(), nullable=False),
        sa.Column('scheduled_end_time', sa.Time(), nullable=False),
        sa.Column('estimated_duration', sa.Integer(), nullable=False),
        sa.Column('base_price', sa.Float(), nullable=False),
        sa.Column('distance_surcharge', sa.Float(), nullable=False),
        sa.Column('total_price', sa.Float(), nullable=False),
        sa.Column('pricing_breakdown', sa.JSON(), nullable=False),
        sa.Column('special_instructions', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum(*BOOKING_STATUSES, name='bookingstatus'), nullable=False),
        sa.Column('payment_status', sa.Enum(
            'PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'REFUNDED',
            name='paymentstatus'
        ), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.String(length=64), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_id'), 'bookings', ['id'], unique=False)
    op.create_index(op.f('ix_bookings_booking_reference'), 'bookings', ['booking_reference'], unique=True)
    op.create_index(op.f('ix_bookings_customer_id'), 'bookings', ['customer_id'], unique=False)
    op.create_index(op.f('ix_bookings_time_slot_id'), 'bookings', ['time_slot_id'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)
    op.create_index(op.f('ix_bookings_created_at'), 'bookings', ['created_at'], unique=False)

    # One live booking per slot; cancelled bookings do not hold it
    op.create_index(
        'uq_bookings_active_time_slot', 'bookings', ['time_slot_id'], unique=True,
        sqlite_where=sa.text("status != 'CANCELLED'"),
        postgresql_where=sa.text("status != 'CANCELLED'"),
    )

    op.create_table('booking_services',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_id', sa.Integer(), sa.ForeignKey('services.id'), nullable=False),
        sa.Column('service_details', sa.JSON(), nullable=True),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('estimated_duration', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_booking_services_id'), 'booking_services', ['id'], unique=False)
    op.create_index(op.f('ix_booking_services_booking_id'), 'booking_services', ['booking_id'], unique=False)

    op.create_table('booking_status_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id'), nullable=False),
        sa.Column('from_status', sa.Enum(*BOOKING_STATUSES, name='bookingstatus', create_type=False), nullable=True),
        sa.Column('to_status', sa.Enum(*BOOKING_STATUSES, name='bookingstatus', create_type=False), nullable=False),
        sa.Column('changed_by', sa.String(length=64), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_booking_status_history_id'), 'booking_status_history', ['id'], unique=False)
    op.create_index(op.f('ix_booking_status_history_booking_id'), 'booking_status_history', ['booking_id'], unique=False)
    op.create_index(op.f('ix_booking_status_history_created_at'), 'booking_status_history', ['created_at'], unique=False)


def downgrade() -> None:
    """Drop the booking tables."""
    op.drop_table('booking_status_history')
    op.drop_table('booking_services')
    op.drop_index('uq_bookings_active_time_slot', table_name='bookings')
    op.drop_table('bookings')
    op.drop_table('time_slots')
    op.drop_table('service_pricing')
    op.drop_table('services')
    op.drop_table('customer_vehicles')
    op.drop_table('customer_addresses')
    op.drop_table('user_profiles')

    sa.Enum(name='bookingstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='paymentstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='vehiclesize').drop(op.get_bind(), checkfirst=True)
