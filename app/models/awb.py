"""
AWB (courier shipment) Models

One AWB per order. Status fields are written by reconciliation only;
history rows are append-only and unique per (awb, status, status_date).
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Numeric, Float, Boolean, Text,
    ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime
from app.models.base import Base


class AWB(Base):
    __tablename__ = "awbs"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True, index=True)

    # Null until the courier accepts the shipment
    awb_number = Column(String, unique=True, index=True, nullable=True)
    courier = Column(String, default="FanCourier")

    # Shipment parameters
    service_type = Column(String, nullable=True)
    payment_type = Column(String, nullable=True)
    weight = Column(Float, nullable=True)
    packages = Column(Integer, default=1)
    cash_on_delivery = Column(Numeric(10, 2), nullable=True)
    declared_value = Column(Numeric(10, 2), nullable=True)
    observations = Column(Text, nullable=True)

    # Current status (free text from the courier, or one of our markers)
    current_status = Column(String, index=True, nullable=True)
    current_status_date = Column(DateTime, nullable=True)
    status_code = Column(String, nullable=True)  # last courier event code, e.g. "S2"
    status_description = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    # COD collected by the courier (set on delivery)
    is_collected = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = relationship("Order", back_populates="awb")
    company = relationship("Company")
    status_history = relationship(
        "AWBStatusHistory",
        back_populates="awb",
        cascade="all, delete-orphan",
        order_by="AWBStatusHistory.status_date",
    )


class AWBStatusHistory(Base):
    __tablename__ = "awb_status_history"
    __table_args__ = (
        UniqueConstraint("awb_id", "status", "status_date", name="uq_awb_status_history_event"),
    )

    id = Column(Integer, primary_key=True, index=True)
    awb_id = Column(Integer, ForeignKey("awbs.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    status_date = Column(DateTime, nullable=False)
    location = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    awb = relationship("AWB", back_populates="status_history")


class UnknownAWBStatus(Base):
    """
    Courier event codes missing from the status table.

    Surfaced to operators so the table can be extended.
    """
    __tablename__ = "unknown_awb_statuses"

    id = Column(Integer, primary_key=True, index=True)
    status_code = Column(String, unique=True, index=True, nullable=False)
    status_name = Column(String, nullable=True)
    sample_awb_number = Column(String, nullable=True)
    seen_count = Column(Integer, default=1)
    first_seen_at = Column(DateTime, default=datetime.utcnow)
    last_seen_at = Column(DateTime, default=datetime.utcnow)
