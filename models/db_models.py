"""
SQLAlchemy ORM models for the student transport schema.

Purpose:
- Define Route, Stop, Bus, RouteBus, TransportRequest and TransportSubscription tables
- Use SQLAlchemy async-compatible models
- Support migrations via Alembic (see migrations/)

Uniqueness guards:
- A partial unique index ("... WHERE status = 'active'") is not portable to MySQL,
  so active/live rows carry a marker column that is TRUE while the row counts and
  NULL afterwards. NULLs never collide in a unique index, so cancelled rows drop
  out of the constraint without being deleted.
"""

from sqlalchemy import Column, Integer, String, DateTime, Time, JSON, Boolean, ForeignKey, Text, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from core.db import Base
from datetime import datetime

from models.status import RequestStatus, SubscriptionStatus


class RouteBus(Base):
    """Association row: a bus serving a route (many-to-many)."""
    __tablename__ = "transport_route_buses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey("transport_routes.id", ondelete="CASCADE"), nullable=False, index=True)
    bus_id = Column(Integer, ForeignKey("transport_buses.id", ondelete="CASCADE"), nullable=False, index=True)
    is_primary = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("route_id", "bus_id", name="ux_route_bus"),
    )


class Route(Base):
    """
    A named transport service.

    Columns:
    - code: optional short code shown to students (e.g. "R1")
    - campus_ids: JSON list of campuses served; NULL means every campus
    - is_active: inactive routes accept no new requests
    """
    __tablename__ = "transport_routes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    code = Column(String(50), unique=True, nullable=True)
    description = Column(Text, nullable=True)
    campus_ids = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # --- relationships ---
    stops = relationship("Stop", back_populates="route", order_by="Stop.stop_order", lazy="selectin")
    buses = relationship("Bus", secondary="transport_route_buses", back_populates="routes", lazy="selectin")

    def serves_campus(self, campus_id) -> bool:
        return not self.campus_ids or campus_id in self.campus_ids


class Stop(Base):
    """A pickup/dropoff point on a route with declared times of day."""
    __tablename__ = "transport_stops"

    id = Column(Integer, primary_key=True, autoincrement=True)
    route_id = Column(Integer, ForeignKey("transport_routes.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    address = Column(Text, nullable=True)
    pickup_time = Column(Time, nullable=True)
    dropoff_time = Column(Time, nullable=True)
    stop_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    route = relationship("Route", back_populates="stops")


class Bus(Base):
    """
    A vehicle with a fixed capacity and seat layout.

    Columns:
    - capacity: number of riders the bus may carry per term
    - seat_rows / seat_columns: layout; NULL falls back to settings defaults
    - driver_* / license_plate: informational only
    """
    __tablename__ = "transport_buses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bus_number = Column(String(50), unique=True, index=True, nullable=False)
    capacity = Column(Integer, nullable=False, default=40)
    seat_rows = Column(Integer, nullable=True)
    seat_columns = Column(JSON, nullable=True)  # ["A", "B", "C", "D"]
    license_plate = Column(String(50), nullable=True)
    driver_name = Column(String(100), nullable=True)
    driver_phone = Column(String(20), nullable=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    routes = relationship("Route", secondary="transport_route_buses", back_populates="buses", lazy="selectin")


class TransportRequest(Base):
    """
    A student's per-term ask to ride a route.

    live_marker is TRUE while the request blocks a new one for the same
    (student, term): pending, waitlisted, or approved with an active subscription.
    """
    __tablename__ = "transport_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(String(100), nullable=False, index=True)
    term_id = Column(String(50), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey("transport_routes.id"), nullable=False, index=True)
    stop_id = Column(Integer, ForeignKey("transport_stops.id"), nullable=False)
    preferred_bus_id = Column(Integer, ForeignKey("transport_buses.id"), nullable=True)
    preferred_seat_label = Column(String(10), nullable=True)
    status = Column(String(20), nullable=False, default=RequestStatus.PENDING.value, index=True)
    rejection_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    requested_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(String(100), nullable=True)
    live_marker = Column(Boolean, nullable=True, default=True)

    __table_args__ = (
        UniqueConstraint("student_id", "term_id", "live_marker", name="ux_request_live_student_term"),
    )


class TransportSubscription(Base):
    """
    The durable seat/route grant produced by approving a request.

    active_marker is TRUE while status is active and NULL once cancelled.
    """
    __tablename__ = "transport_subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    request_id = Column(Integer, ForeignKey("transport_requests.id"), nullable=False, index=True)
    student_id = Column(String(100), nullable=False, index=True)
    term_id = Column(String(50), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey("transport_routes.id"), nullable=False, index=True)
    stop_id = Column(Integer, ForeignKey("transport_stops.id"), nullable=False)
    assigned_bus_id = Column(Integer, ForeignKey("transport_buses.id"), nullable=False, index=True)
    seat_label = Column(String(10), nullable=True)
    status = Column(String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value, index=True)
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(String(100), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    active_marker = Column(Boolean, nullable=True, default=True)

    __table_args__ = (
        UniqueConstraint("assigned_bus_id", "seat_label", "term_id", "active_marker", name="ux_subscription_active_seat"),
        UniqueConstraint("student_id", "term_id", "active_marker", name="ux_subscription_active_student"),
        Index("ix_subscription_route_term_status", "route_id", "term_id", "status"),
    )
