"""
Initial transport schema: routes, stops, buses, route_buses, requests, subscriptions.

Revision ID: 001
"""
from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    """Create transport tables."""
    op.create_table(
        "transport_routes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("code", sa.String(50), nullable=True, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("campus_ids", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), default=True, index=True),
        sa.Column("created_at", sa.DateTime(), default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "transport_stops",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("route_id", sa.Integer(), sa.ForeignKey("transport_routes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("pickup_time", sa.Time(), nullable=True),
        sa.Column("dropoff_time", sa.Time(), nullable=True),
        sa.Column("stop_order", sa.Integer(), nullable=False, default=0),
        sa.Column("is_active", sa.Boolean(), default=True),
        sa.Column("created_at", sa.DateTime(), default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "transport_buses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("bus_number", sa.String(50), unique=True, index=True, nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False, default=40),
        sa.Column("seat_rows", sa.Integer(), nullable=True),
        sa.Column("seat_columns", sa.JSON(), nullable=True),
        sa.Column("license_plate", sa.String(50), nullable=True),
        sa.Column("driver_name", sa.String(100), nullable=True),
        sa.Column("driver_phone", sa.String(20), nullable=True),
        sa.Column("is_active", sa.Boolean(), default=True, index=True),
        sa.Column("created_at", sa.DateTime(), default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), default=sa.func.now(), onupdate=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "transport_route_buses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("route_id", sa.Integer(), sa.ForeignKey("transport_routes.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("bus_id", sa.Integer(), sa.ForeignKey("transport_buses.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("is_primary", sa.Boolean(), default=False),
        sa.Column("created_at", sa.DateTime(), default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("route_id", "bus_id", name="ux_route_bus"),
    )

    op.create_table(
        "transport_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("student_id", sa.String(100), nullable=False, index=True),
        sa.Column("term_id", sa.String(50), nullable=False, index=True),
        sa.Column("route_id", sa.Integer(), sa.ForeignKey("transport_routes.id"), nullable=False, index=True),
        sa.Column("stop_id", sa.Integer(), sa.ForeignKey("transport_stops.id"), nullable=False),
        sa.Column("preferred_bus_id", sa.Integer(), sa.ForeignKey("transport_buses.id"), nullable=True),
        sa.Column("preferred_seat_label", sa.String(10), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, default="pending", index=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("reviewed_by", sa.String(100), nullable=True),
        sa.Column("live_marker", sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id", "term_id", "live_marker", name="ux_request_live_student_term"),
    )

    op.create_table(
        "transport_subscriptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("request_id", sa.Integer(), sa.ForeignKey("transport_requests.id"), nullable=False, index=True),
        sa.Column("student_id", sa.String(100), nullable=False, index=True),
        sa.Column("term_id", sa.String(50), nullable=False, index=True),
        sa.Column("route_id", sa.Integer(), sa.ForeignKey("transport_routes.id"), nullable=False, index=True),
        sa.Column("stop_id", sa.Integer(), sa.ForeignKey("transport_stops.id"), nullable=False),
        sa.Column("assigned_bus_id", sa.Integer(), sa.ForeignKey("transport_buses.id"), nullable=False, index=True),
        sa.Column("seat_label", sa.String(10), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, default="active", index=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by", sa.String(100), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("active_marker", sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        # seat exclusivity and one active subscription per student/term;
        # cancelled rows have active_marker NULL and never collide
        sa.UniqueConstraint("assigned_bus_id", "seat_label", "term_id", "active_marker", name="ux_subscription_active_seat"),
        sa.UniqueConstraint("student_id", "term_id", "active_marker", name="ux_subscription_active_student"),
    )
    op.create_index("ix_subscription_route_term_status", "transport_subscriptions", ["route_id", "term_id", "status"])

def downgrade() -> None:
    """Drop all transport tables."""
    op.drop_index("ix_subscription_route_term_status", table_name="transport_subscriptions")
    op.drop_table("transport_subscriptions")
    op.drop_table("transport_requests")
    op.drop_table("transport_route_buses")
    op.drop_table("transport_buses")
    op.drop_table("transport_stops")
    op.drop_table("transport_routes")
