"""
Sync Session Models

One SyncLog per reconciliation run, with an append-only list of entries
forming the audit trail of that run.
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, JSON, Text, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from app.models.base import Base


class SyncType(str, enum.Enum):
    MANUAL = "MANUAL"
    SCHEDULED = "SCHEDULED"
    SINGLE_ORDER = "SINGLE_ORDER"


class SyncStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"
    FAILED = "FAILED"


class LogLevel(str, enum.Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class SyncLog(Base):
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String, index=True, nullable=False)
    status = Column(String, index=True, default=SyncStatus.RUNNING.value)

    started_at = Column(DateTime, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    orders_processed = Column(Integer, default=0)
    awbs_updated = Column(Integer, default=0)
    errors_count = Column(Integer, default=0)
    summary = Column(Text, nullable=True)

    entries = relationship(
        "SyncLogEntry",
        back_populates="sync_log",
        cascade="all, delete-orphan",
        order_by="SyncLogEntry.id",
    )


class SyncLogEntry(Base):
    __tablename__ = "sync_log_entries"

    id = Column(Integer, primary_key=True, index=True)
    sync_log_id = Column(Integer, ForeignKey("sync_logs.id"), nullable=False, index=True)
    timestamp = Column(DateTime, default=datetime.utcnow, index=True)
    level = Column(String, nullable=False)
    action = Column(String, index=True, nullable=False)
    message = Column(Text, nullable=False)

    order_id = Column(Integer, nullable=True, index=True)
    order_number = Column(String, nullable=True)
    awb_number = Column(String, nullable=True, index=True)
    details = Column(JSON, nullable=True)

    sync_log = relationship("SyncLog", back_populates="entries")
