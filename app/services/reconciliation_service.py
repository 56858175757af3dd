"""
AWB Reconciliation Service
Pulls FanCourier tracking for every trackable AWB and applies the changes.

Each AWB is handled in its own database session, one at a time, and every
step is written to the sync session before moving on. A failure on one AWB
is counted and logged; it never aborts the run.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from sqlalchemy import or_

from app.config import get_settings
from app.connectors.fancourier_connector import (
    CourierCredentials,
    FanCourierConnector,
    TrackingResult,
)
from app.exceptions import ConfigurationError
from app.models import (
    AWB,
    AWBStatusHistory,
    LogLevel,
    Order,
    OrderStatus,
    SyncType,
    TERMINAL_ORDER_STATUSES,
)
from app.models.base import SessionLocal
from app.services.awb_status import AWB_ERROR, get_status, map_order_status, register_unknown_status
from app.services.change_classifier import ChangeType, Classification, classify_tracking
from app.services.credential_resolver import get_credentials, resolve_tenant
from app.services.sync_logger import SyncSessionLogger, SyncStats
from app.utils.logger import log

settings = get_settings()

_SEVERITY_LEVELS = {
    "info": LogLevel.INFO,
    "success": LogLevel.SUCCESS,
    "warning": LogLevel.WARNING,
    "error": LogLevel.ERROR,
}

# Classifier verdicts that decide the order status directly
_DIRECT_ORDER_STATUS = {
    ChangeType.DELIVERED: OrderStatus.DELIVERED.value,
    ChangeType.RETURNED: OrderStatus.RETURNED.value,
    # Cancelled or deleted at the courier: the order can be shipped again
    ChangeType.CANCELLED: OrderStatus.PENDING.value,
    ChangeType.DELETED: OrderStatus.PENDING.value,
}


def resolve_order_status(classification: Classification) -> str:
    direct = _DIRECT_ORDER_STATUS.get(classification.change_type)
    if direct:
        return direct

    event = classification.event
    mapped = map_order_status(event.code if event else None, has_events=event is not None)
    if mapped == AWB_ERROR:
        return OrderStatus.AWB_ERROR.value
    return mapped or OrderStatus.SHIPPED.value


class ReconciliationService:
    """Bulk and single-order AWB status sync"""

    def __init__(
        self,
        session_factory=SessionLocal,
        courier_factory: Callable[[CourierCredentials], Any] = FanCourierConnector,
        sync_logger: Optional[SyncSessionLogger] = None,
    ):
        self.session_factory = session_factory
        self.courier_factory = courier_factory
        self.sync_logger = sync_logger or SyncSessionLogger(session_factory)
        self._couriers: Dict[Any, Any] = {}

    # ────────────────────────────────────────────────────────────
    # Entry points
    # ────────────────────────────────────────────────────────────

    async def run_bulk(self, sync_type: SyncType = SyncType.MANUAL) -> Dict[str, Any]:
        """Reconcile every trackable AWB. Always returns a finalized session summary."""
        sync_log_id = self.sync_logger.start(sync_type)
        stats = SyncStats()
        self._couriers = {}

        try:
            awb_ids = self._select_trackable_awb_ids()
            self.sync_logger.log(
                sync_log_id, LogLevel.INFO, "AWBS_SELECTED",
                f"{len(awb_ids)} AWBs to check",
                details={"retention_days": settings.sync_retention_days},
            )

            for awb_id in awb_ids:
                stats.orders_processed += 1
                await self._sync_awb(sync_log_id, awb_id, stats)

            return self.sync_logger.complete(sync_log_id, stats)

        except Exception as e:
            log.exception(f"Fatal error in AWB sync {sync_log_id}: {e}")
            return self.sync_logger.fail(sync_log_id, e, stats)

    async def run_single(self, order_id: int) -> Dict[str, Any]:
        """Resync one order's AWB with the same per-AWB logic as run_bulk."""
        sync_log_id = self.sync_logger.start(SyncType.SINGLE_ORDER)
        stats = SyncStats()
        self._couriers = {}

        try:
            db = self.session_factory()
            try:
                order = db.query(Order).filter(Order.id == order_id).first()
                awb = order.awb if order else None
                awb_id = awb.id if awb and awb.awb_number else None
                order_number = order.display_number if order else None
            finally:
                db.close()

            if order is None:
                stats.errors_count += 1
                self.sync_logger.log(
                    sync_log_id, LogLevel.ERROR, "ORDER_NOT_FOUND",
                    f"Order {order_id} not found", order_id=order_id,
                )
                return self.sync_logger.complete(sync_log_id, stats)

            stats.orders_processed = 1
            if awb_id is None:
                stats.errors_count += 1
                self.sync_logger.log(
                    sync_log_id, LogLevel.ERROR, "NO_AWB",
                    f"Order {order_number} has no AWB to track",
                    order_id=order_id, order_number=order_number,
                )
                return self.sync_logger.complete(sync_log_id, stats)

            await self._sync_awb(sync_log_id, awb_id, stats)
            return self.sync_logger.complete(sync_log_id, stats)

        except Exception as e:
            log.exception(f"Fatal error in single-order sync {sync_log_id}: {e}")
            return self.sync_logger.fail(sync_log_id, e, stats)

    # ────────────────────────────────────────────────────────────
    # Working set
    # ────────────────────────────────────────────────────────────

    def _select_trackable_awb_ids(self):
        """
        AWBs with a number, minus those of terminal orders whose AWB row was
        last written before the retention window. The AWB row only changes on
        a status change or deletion; edits to the order itself do not count.
        """
        cutoff = datetime.utcnow() - timedelta(days=settings.sync_retention_days)
        db = self.session_factory()
        try:
            rows = (
                db.query(AWB.id)
                .join(Order, AWB.order_id == Order.id)
                .filter(AWB.awb_number.isnot(None), AWB.awb_number != "")
                .filter(or_(
                    Order.status.notin_(TERMINAL_ORDER_STATUSES),
                    AWB.updated_at >= cutoff,
                ))
                .order_by(AWB.id)
                .all()
            )
            return [r[0] for r in rows]
        finally:
            db.close()

    def _courier_for(self, awb: AWB, order: Order):
        """One connector per company per run; credentials from the AWB's company, else the order's."""
        if awb.company is not None:
            company = awb.company
            credentials = get_credentials(company)
        else:
            tenant = resolve_tenant(order)
            company, credentials = tenant.company, tenant.credentials

        if company.id not in self._couriers:
            self._couriers[company.id] = self.courier_factory(credentials)
        return self._couriers[company.id]

    # ────────────────────────────────────────────────────────────
    # Per-AWB processing
    # ────────────────────────────────────────────────────────────

    async def _sync_awb(self, sync_log_id: int, awb_id: int, stats: SyncStats) -> None:
        db = self.session_factory()
        refs: Dict[str, Any] = {}
        try:
            awb = db.query(AWB).filter(AWB.id == awb_id).first()
            if awb is None:
                return
            order = awb.order
            refs = {
                "order_id": order.id,
                "order_number": order.display_number,
                "awb_number": awb.awb_number,
            }
            previous_status = awb.current_status

            self.sync_logger.log(
                sync_log_id, LogLevel.INFO, "AWB_CHECK_START",
                f"Checking AWB {awb.awb_number} (current status: {previous_status or 'none'})",
                **refs,
            )

            try:
                courier = self._courier_for(awb, order)
            except ConfigurationError as e:
                stats.errors_count += 1
                self.sync_logger.log(sync_log_id, LogLevel.ERROR, "CONFIG_ERROR", str(e), **refs)
                return

            tracking: TrackingResult = await courier.track_awb(awb.awb_number)
            latest = tracking.latest_event
            self.sync_logger.log(
                sync_log_id, LogLevel.DEBUG, "TRACKING_RESPONSE",
                f"Tracking {'OK' if tracking.success else 'failed'}: "
                f"{len(tracking.events)} events" + (f", error: {tracking.error}" if tracking.error else ""),
                details={
                    "success": tracking.success,
                    "error": tracking.error,
                    "timed_out": tracking.timed_out,
                    "events_count": len(tracking.events),
                    "latest_code": latest.code if latest else None,
                    "latest_name": latest.name if latest else None,
                },
                **refs,
            )

            classification = classify_tracking(previous_status, tracking)
            self.sync_logger.log(
                sync_log_id,
                _SEVERITY_LEVELS.get(classification.severity, LogLevel.INFO),
                f"CHANGE_{classification.change_type.value}",
                classification.description,
                details={"previous_status": previous_status, "new_status": classification.new_status},
                **refs,
            )

            if classification.change_type == ChangeType.ERROR:
                stats.errors_count += 1
                return

            if not classification.is_mutation:
                return

            old_order_status = order.status
            new_order_status = self._apply_change(db, awb, order, classification, tracking)
            db.commit()
            stats.awbs_updated += 1

            self.sync_logger.log(
                sync_log_id, LogLevel.SUCCESS, "AWB_UPDATED",
                f"AWB {awb.awb_number}: {previous_status or 'none'} -> {awb.current_status}; "
                f"order {old_order_status} -> {new_order_status}",
                details={"change_type": classification.change_type.value},
                **refs,
            )

        except Exception as e:
            db.rollback()
            stats.errors_count += 1
            log.error(f"AWB {awb_id} sync failed: {e}")
            self.sync_logger.log(
                sync_log_id, LogLevel.ERROR, "AWB_SYNC_ERROR",
                f"Error syncing AWB: {e}",
                details={"exception_type": type(e).__name__},
                **refs,
            )
        finally:
            db.close()

    def _apply_change(
        self,
        db,
        awb: AWB,
        order: Order,
        classification: Classification,
        tracking: TrackingResult,
    ) -> str:
        """Write history, AWB status and order status for a mutating classification. Caller commits."""
        now = datetime.utcnow()
        self._append_history(db, awb, tracking)

        event = classification.event
        if classification.change_type == ChangeType.DELETED:
            self._add_history_entry(db, awb, classification.new_status, now, None, classification.description)
            awb.error_message = classification.description
        else:
            awb.error_message = None

        awb.current_status = classification.new_status
        awb.current_status_date = (event.date if event and event.date else now)
        awb.status_code = event.code if event else None
        awb.status_description = classification.description

        if classification.change_type == ChangeType.DELIVERED and (awb.cash_on_delivery or Decimal("0")) > 0:
            awb.is_collected = True

        new_order_status = resolve_order_status(classification)
        if order.status != new_order_status:
            order.status = new_order_status
        order.updated_at = now
        return new_order_status

    def _append_history(self, db, awb: AWB, tracking: TrackingResult) -> int:
        """Insert events not yet stored for this AWB; returns how many were added."""
        added = 0
        seen = set()
        unknown = {e.code: e.name for e in tracking.events if e.code and not get_status(e.code)}
        for code, name in unknown.items():
            register_unknown_status(db, code, name, awb.awb_number)

        for event in tracking.events:
            if event.date is None:
                continue
            key = (event.name, event.date)
            if key in seen:
                continue
            seen.add(key)
            if self._add_history_entry(db, awb, event.name, event.date, event.location, event.code):
                added += 1
        return added

    @staticmethod
    def _add_history_entry(db, awb: AWB, status: str, status_date: datetime, location, description) -> bool:
        exists = (
            db.query(AWBStatusHistory.id)
            .filter(
                AWBStatusHistory.awb_id == awb.id,
                AWBStatusHistory.status == status,
                AWBStatusHistory.status_date == status_date,
            )
            .first()
        )
        if exists:
            return False
        db.add(AWBStatusHistory(
            awb_id=awb.id,
            status=status,
            status_date=status_date,
            location=location,
            description=description,
        ))
        db.flush()
        return True
