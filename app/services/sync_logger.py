"""
Sync Session Logger
Persists the audit trail of every reconciliation run (SyncLog + entries).

Each write uses its own short-lived session and commits immediately, so a
run that crashes midway still leaves every entry written before the crash.
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.models import LogLevel, SyncLog, SyncLogEntry, SyncStatus, SyncType
from app.models.base import SessionLocal
from app.utils.logger import log


@dataclass
class SyncStats:
    """Counters accumulated during one run"""
    orders_processed: int = 0
    awbs_updated: int = 0
    errors_count: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def derive_session_status(stats: SyncStats) -> str:
    if stats.errors_count > 0 and stats.orders_processed > 0:
        return SyncStatus.COMPLETED_WITH_ERRORS.value
    if stats.errors_count > 0:
        return SyncStatus.FAILED.value
    return SyncStatus.COMPLETED.value


def _summary_dict(sync_log: SyncLog) -> Dict[str, Any]:
    return {
        "sync_log_id": sync_log.id,
        "type": sync_log.type,
        "status": sync_log.status,
        "started_at": sync_log.started_at.isoformat() if sync_log.started_at else None,
        "completed_at": sync_log.completed_at.isoformat() if sync_log.completed_at else None,
        "duration_ms": sync_log.duration_ms,
        "orders_processed": sync_log.orders_processed or 0,
        "awbs_updated": sync_log.awbs_updated or 0,
        "errors_count": sync_log.errors_count or 0,
        "summary": sync_log.summary,
    }


def _entry_dict(entry: SyncLogEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
        "level": entry.level,
        "action": entry.action,
        "message": entry.message,
        "order_id": entry.order_id,
        "order_number": entry.order_number,
        "awb_number": entry.awb_number,
        "details": entry.details,
    }


class SyncSessionLogger:
    """start -> log* -> complete, once per reconciliation run"""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def start(self, sync_type: SyncType) -> int:
        """Create a RUNNING session and its SYNC_STARTED entry."""
        sync_type = SyncType(sync_type)
        db = self.session_factory()
        try:
            sync_log = SyncLog(
                type=sync_type.value,
                status=SyncStatus.RUNNING.value,
                started_at=datetime.utcnow(),
            )
            db.add(sync_log)
            db.flush()
            db.add(SyncLogEntry(
                sync_log_id=sync_log.id,
                level=LogLevel.INFO.value,
                action="SYNC_STARTED",
                message=f"AWB sync started ({sync_type.value})",
            ))
            db.commit()
            log.info(f"Sync session {sync_log.id} started ({sync_type.value})")
            return sync_log.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def log(
        self,
        sync_log_id: int,
        level: LogLevel,
        action: str,
        message: str,
        order_id: Optional[int] = None,
        order_number: Optional[str] = None,
        awb_number: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append one entry. A failed write is reported but never breaks the run."""
        level = LogLevel(level)
        db = self.session_factory()
        try:
            db.add(SyncLogEntry(
                sync_log_id=sync_log_id,
                timestamp=datetime.utcnow(),
                level=level.value,
                action=action,
                message=message,
                order_id=order_id,
                order_number=order_number,
                awb_number=awb_number,
                details=details,
            ))
            db.commit()
        except Exception as e:
            db.rollback()
            log.error(f"Failed to write sync log entry {action} for session {sync_log_id}: {e}")
        finally:
            db.close()

        if level == LogLevel.ERROR:
            log.error(f"[sync {sync_log_id}] {action}: {message}")
        elif level == LogLevel.WARNING:
            log.warning(f"[sync {sync_log_id}] {action}: {message}")
        else:
            log.debug(f"[sync {sync_log_id}] {action}: {message}")

    def complete(self, sync_log_id: int, stats: SyncStats) -> Dict[str, Any]:
        """
        Finalize the session: duration, status, counters and a summary entry.

        Only the first call finalizes; later calls return the stored summary.
        """
        db = self.session_factory()
        try:
            sync_log = db.query(SyncLog).filter(SyncLog.id == sync_log_id).first()
            if not sync_log:
                raise ValueError(f"Sync session {sync_log_id} not found")

            if sync_log.status != SyncStatus.RUNNING.value:
                log.warning(f"Sync session {sync_log_id} already finalized ({sync_log.status})")
                return _summary_dict(sync_log)

            completed_at = datetime.utcnow()
            duration_ms = int((completed_at - sync_log.started_at).total_seconds() * 1000)
            status = derive_session_status(stats)
            summary = (
                f"Sync finished in {duration_ms / 1000:.1f}s: "
                f"{stats.orders_processed} orders processed, "
                f"{stats.awbs_updated} AWBs updated, "
                f"{stats.errors_count} errors"
            )

            sync_log.status = status
            sync_log.completed_at = completed_at
            sync_log.duration_ms = duration_ms
            sync_log.orders_processed = stats.orders_processed
            sync_log.awbs_updated = stats.awbs_updated
            sync_log.errors_count = stats.errors_count
            sync_log.summary = summary

            db.add(SyncLogEntry(
                sync_log_id=sync_log.id,
                timestamp=completed_at,
                level=(LogLevel.WARNING if stats.errors_count else LogLevel.SUCCESS).value,
                action="SYNC_COMPLETED",
                message=summary,
                details={**stats.to_dict(), "duration_ms": duration_ms, "status": status},
            ))
            db.commit()

            log.info(f"Sync session {sync_log_id} | {status} | {summary}")
            return _summary_dict(sync_log)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def fail(self, sync_log_id: int, error: Exception, stats: SyncStats) -> Dict[str, Any]:
        """Record a fatal error and finalize with the partial stats."""
        stats.errors_count += 1
        self.log(
            sync_log_id,
            LogLevel.ERROR,
            "SYNC_FATAL_ERROR",
            f"Fatal sync error: {error}",
            details={"exception_type": type(error).__name__},
        )
        return self.complete(sync_log_id, stats)


def get_sync_history(limit: int = 20, session_factory=SessionLocal) -> List[Dict[str, Any]]:
    """Most recent sessions first."""
    db = session_factory()
    try:
        rows = db.query(SyncLog).order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).limit(limit).all()
        return [_summary_dict(r) for r in rows]
    finally:
        db.close()


def get_sync_log_details(sync_log_id: int, session_factory=SessionLocal) -> Optional[Dict[str, Any]]:
    """One session with all its entries in write order, or None."""
    db = session_factory()
    try:
        sync_log = db.query(SyncLog).filter(SyncLog.id == sync_log_id).first()
        if not sync_log:
            return None
        result = _summary_dict(sync_log)
        result["entries"] = [_entry_dict(e) for e in sync_log.entries]
        return result
    finally:
        db.close()
