"""Flight bookings table

Revision ID: booking_001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "booking_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table("flight_bookings",
        sa.Column("id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")),
        sa.Column("booking_ref_id", sa.String(length=50), nullable=False),
        sa.Column("booking_codes", JSONB, nullable=False, server_default="[]"),
        sa.Column("pnr", sa.String(length=20), nullable=True),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("trace_id", sa.String(length=100), nullable=True),
        sa.Column("itinerary_code", sa.String(length=100), nullable=True),
        sa.Column("flight_type", sa.String(length=30), nullable=False),
        sa.Column("booking_status", sa.String(length=20), nullable=False, server_default="Confirmed"),
        sa.Column("origin_code", sa.String(length=10), nullable=True),
        sa.Column("origin_city", sa.String(length=100), nullable=True),
        sa.Column("destination_code", sa.String(length=10), nullable=True),
        sa.Column("destination_city", sa.String(length=100), nullable=True),
        sa.Column("stops", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("passenger_details", JSONB, nullable=False, server_default="[]"),
        sa.Column("provider_response", JSONB, nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="INR"),
        sa.Column("total_flight_amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("total_ancillaries_amount", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("final_total_amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("payment_method", sa.String(length=20), nullable=False, server_default="Pending"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="Pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_flight_bookings_booking_ref_id", "flight_bookings", ["booking_ref_id"])
    op.create_index("ix_flight_bookings_trace_id", "flight_bookings", ["trace_id"])


def downgrade() -> None:
    op.drop_index("ix_flight_bookings_trace_id", table_name="flight_bookings")
    op.drop_index("ix_flight_bookings_booking_ref_id", table_name="flight_bookings")
    op.drop_table("flight_bookings")
