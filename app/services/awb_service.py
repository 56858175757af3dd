"""
AWB Service
Creates, replaces and deletes the FanCourier AWB of an order.

Creation is serialized per order by an in-process lock and, across
processes, by a committed "creating" placeholder AWB (awbs.order_id is
unique). No database session is open while the courier is called. A second
request for the same order sees the first one's AWB and is rejected.
"""
import asyncio
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from app.config import get_settings
from app.connectors.fancourier_connector import (
    CourierCredentials,
    CreateShipmentResult,
    FanCourierConnector,
    ShipmentRequest,
)
from app.exceptions import ConfigurationError
from app.models import AWB, AWBStatusHistory, Order, OrderLineItem, OrderStatus
from app.models.base import SessionLocal
from app.services.awb_status import (
    CREATED_STATUS_LABEL,
    CREATING_STATUS_LABEL,
    DELETED_STATUS_LABEL,
    DELIVERED_CODES,
    ERROR_STATUS_LABEL,
)
from app.services.credential_resolver import ResolvedTenant, get_credentials, resolve_tenant
from app.utils.address_matching import fold_diacritics
from app.utils.logger import log

settings = get_settings()

COD_SERVICE = "Cont Colector"

# Status keywords (diacritic-folded) that free the order for a new AWB
_REPLACEABLE_KEYWORDS = ("sters", "deleted", "anulat", "cancelled", "canceled")

_RECIPIENT_PAYS = ("recipient", "destinatar")
_PAYMENT_ALIASES = {"destinatar": "recipient", "expeditor": "sender"}

# A placeholder older than this belongs to a crashed worker and may be replaced
CREATION_STALE_AFTER = timedelta(minutes=5)

_creation_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


@dataclass
class AWBOptions:
    """Per-request overrides; anything left None falls back to settings"""
    service_type: Optional[str] = None
    payment_type: Optional[str] = None
    weight: Optional[float] = None
    packages: Optional[int] = None
    cash_on_delivery: Optional[float] = None
    declared_value: Optional[float] = None
    observation: Optional[str] = None


def is_replaceable(awb: AWB) -> bool:
    """An AWB may be replaced when it errored, or was deleted or cancelled."""
    if awb.current_status == CREATING_STATUS_LABEL and not awb.awb_number:
        started = awb.current_status_date
        return started is not None and datetime.utcnow() - started > CREATION_STALE_AFTER
    if not awb.awb_number or awb.error_message:
        return True
    status = fold_diacritics(awb.current_status or "").lower()
    return any(keyword in status for keyword in _REPLACEABLE_KEYWORDS)


def build_observation(
    line_items: Iterable[OrderLineItem],
    observation: Optional[str] = None,
    max_length: Optional[int] = None,
) -> str:
    """
    "obs | Produse: 2x Title - Variant, 1x Other", truncated with "...".

    Printed on the courier label, hence the Romanian prefix.
    """
    max_length = max_length or settings.observation_max_length
    products = []
    for item in line_items:
        text = f"{item.quantity or 1}x {item.title}"
        if item.variant_title and item.variant_title != "Default Title":
            text += f" - {item.variant_title}"
        products.append(text)

    result = f"Produse: {', '.join(products)}" if products else ""
    if observation:
        result = f"{observation} | {result}" if result else observation

    if len(result) > max_length:
        result = result[:max_length - 3] + "..."
    return result


def derive_shipment_terms(order: Order, options: AWBOptions) -> Dict[str, Any]:
    """Service, payment and COD after defaults and the COD-service rule."""
    payment = (options.payment_type or settings.default_payment_type).lower()
    payment = _PAYMENT_ALIASES.get(payment, payment)

    cod = options.cash_on_delivery
    if cod is None and payment in _RECIPIENT_PAYS:
        cod = round(float(order.total_price or 0), 2)
    cod = float(cod or 0)

    service = options.service_type or settings.default_service_type
    if cod > 0 and "colector" not in service.lower():
        service = COD_SERVICE

    return {"service": service, "payment": payment, "cod": cod}


def _recipient_street(order: Order) -> str:
    parts = [p.strip() for p in (order.shipping_address1, order.shipping_address2) if p and p.strip()]
    return ", ".join(parts)


def _build_request(order: Order, options: AWBOptions, tenant: ResolvedTenant) -> ShipmentRequest:
    terms = derive_shipment_terms(order, options)
    return ShipmentRequest(
        recipient_name=order.recipient_name,
        recipient_phone=order.customer_phone or "",
        recipient_email=order.customer_email,
        recipient_county=order.shipping_province or "",
        recipient_city=order.shipping_city or "",
        recipient_street=_recipient_street(order),
        recipient_zip_code=order.shipping_zip or "",
        service=terms["service"],
        payment=terms["payment"],
        weight=options.weight or settings.default_weight,
        packages=options.packages or settings.default_packages,
        cod=terms["cod"],
        declared_value=(
            options.declared_value
            if options.declared_value is not None
            else round(float(order.total_price or 0), 2)
        ),
        observation=build_observation(order.line_items, options.observation),
        content=f"Comandă {order.display_number}",
        cost_center=order.store.name if order.store else "",
        sender=tenant.sender,
    )


def _creation_lock(order_id: int) -> asyncio.Lock:
    """One lock per order while any caller holds or waits on it."""
    lock = _creation_locks.get(order_id)
    if lock is None:
        lock = asyncio.Lock()
        _creation_locks[order_id] = lock
    return lock


class AWBService:
    """AWB creation, eligibility and deletion for orders"""

    def __init__(
        self,
        session_factory=SessionLocal,
        courier_factory: Callable[[CourierCredentials], Any] = FanCourierConnector,
    ):
        self.session_factory = session_factory
        self.courier_factory = courier_factory

    def can_create_awb(self, order_id: int) -> Dict[str, Any]:
        """Would create_awb_for_order be allowed right now, and if not, why."""
        db = self.session_factory()
        try:
            order = db.query(Order).filter(Order.id == order_id).first()
            if not order:
                return {"can_create": False, "reason": f"Order {order_id} not found"}

            existing = order.awb
            if existing and not is_replaceable(existing):
                if existing.current_status == CREATING_STATUS_LABEL:
                    reason = f"AWB creation for order {order.display_number} is already in progress"
                else:
                    reason = f"Order already has AWB {existing.awb_number} ({existing.current_status})"
                return {
                    "can_create": False,
                    "reason": reason,
                    "existing_awb_number": existing.awb_number,
                }

            try:
                resolve_tenant(order)
            except ConfigurationError as e:
                return {"can_create": False, "reason": str(e)}

            return {
                "can_create": True,
                "reason": None,
                "replaces_awb_number": existing.awb_number if existing else None,
            }
        finally:
            db.close()

    async def create_awb_for_order(self, order_id: int, options: Optional[AWBOptions] = None) -> Dict[str, Any]:
        """
        Create the AWB for one order.

        Returns {"success": True, "awb_number", "company_id", "company_name"} or
        {"success": False, "error"}. Provider rejections are also persisted on
        the AWB row and move the order to AWB_ERROR.
        """
        async with _creation_lock(order_id):
            reservation = self._reserve(order_id, options or AWBOptions())
            if "error" in reservation:
                return reservation

            courier = self.courier_factory(reservation["credentials"])
            try:
                result = await courier.create_awb(reservation["request"])
            except Exception as e:
                log.error(f"AWB creation failed for order {order_id}: {e}")
                self._record_result(reservation, CreateShipmentResult(success=False, error=str(e)))
                raise

            self._record_result(reservation, result)

        if result.success:
            return {
                "success": True,
                "awb_number": result.awb_number,
                "company_id": reservation["company_id"],
                "company_name": reservation["company_name"],
            }
        return {
            "success": False,
            "error": result.error,
            "validation_errors": result.validation_errors,
        }

    def _reserve(self, order_id: int, options: AWBOptions) -> Dict[str, Any]:
        """
        Check the order can ship, build the courier request and commit a
        "creating" placeholder AWB. The unique order_id on awbs makes the
        placeholder the cross-process guard: a second writer fails on commit.
        """
        db = self.session_factory()
        try:
            order = (
                db.query(Order)
                .filter(Order.id == order_id)
                .with_for_update()
                .first()
            )
            if not order:
                return {"success": False, "error": f"Order {order_id} not found"}

            existing = db.query(AWB).filter(AWB.order_id == order.id).first()
            if existing and not is_replaceable(existing):
                db.rollback()
                if existing.current_status == CREATING_STATUS_LABEL:
                    error = f"AWB creation for order {order.display_number} is already in progress"
                else:
                    error = (
                        f"Order {order.display_number} already has AWB {existing.awb_number} "
                        f"(status: {existing.current_status or 'unknown'}). "
                        f"Delete or cancel it before creating a new one."
                    )
                log.warning(error)
                return {"success": False, "error": error, "existing_awb_number": existing.awb_number}

            try:
                tenant = resolve_tenant(order)
            except ConfigurationError as e:
                db.rollback()
                log.error(f"AWB for order {order.display_number} not created: {e}")
                return {"success": False, "error": str(e)}

            request = _build_request(order, options, tenant)

            if existing:
                log.info(
                    f"Replacing AWB {existing.awb_number or '(errored)'} "
                    f"for order {order.display_number}"
                )
                db.delete(existing)
                db.flush()

            placeholder = AWB(
                order_id=order.id,
                company_id=tenant.company.id,
                service_type=request.service,
                payment_type=request.payment,
                weight=request.weight,
                packages=request.packages,
                cash_on_delivery=Decimal(str(request.cod)),
                declared_value=Decimal(str(request.declared_value)),
                observations=request.observation,
                current_status=CREATING_STATUS_LABEL,
                current_status_date=datetime.utcnow(),
            )
            db.add(placeholder)

            reservation = {
                "order_id": order.id,
                "display_number": order.display_number,
                "company_id": tenant.company.id,
                "company_name": tenant.company.name,
                "credentials": tenant.credentials,
                "request": request,
            }
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                error = f"AWB creation for order {reservation['display_number']} is already in progress"
                log.warning(error)
                return {"success": False, "error": error, "existing_awb_number": None}

            reservation["awb_id"] = placeholder.id
            return reservation
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _record_result(self, reservation: Dict[str, Any], result: CreateShipmentResult) -> None:
        """Turn the placeholder into the created AWB, or into a replaceable error row."""
        db = self.session_factory()
        try:
            awb = db.query(AWB).filter(AWB.id == reservation["awb_id"]).first()
            order = db.query(Order).filter(Order.id == reservation["order_id"]).first()

            if result.success:
                awb.awb_number = result.awb_number
                awb.current_status = CREATED_STATUS_LABEL
                awb.current_status_date = datetime.utcnow()
                order.status = OrderStatus.AWB_CREATED.value
                order.billing_company_id = reservation["company_id"]
            else:
                awb.current_status = ERROR_STATUS_LABEL
                awb.error_message = result.error or "AWB creation failed"
                order.status = OrderStatus.AWB_ERROR.value

            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        if result.success:
            log.info(
                f"AWB {result.awb_number} created for order {reservation['display_number']} "
                f"({reservation['company_name']})"
            )
        else:
            log.warning(f"AWB for order {reservation['display_number']} rejected: {result.error}")

    async def create_awbs_for_orders(
        self, order_ids: List[int], options: Optional[AWBOptions] = None
    ) -> Dict[str, Any]:
        """Create AWBs one order at a time; a failure never stops the batch."""
        results = []
        created = failed = 0
        for order_id in order_ids:
            try:
                outcome = await self.create_awb_for_order(order_id, options)
            except Exception as e:
                outcome = {"success": False, "error": str(e)}
            outcome["order_id"] = order_id
            results.append(outcome)
            if outcome.get("success"):
                created += 1
            else:
                failed += 1

        log.info(f"Bulk AWB creation: {created} created, {failed} failed")
        return {"created": created, "failed": failed, "results": results}

    async def delete_awb(self, awb_id: int) -> Dict[str, Any]:
        """
        Delete an AWB at FanCourier and mark it deleted locally.

        The local row is marked even if the remote delete fails (the error
        is kept on the row). Delivered AWBs are refused.
        """
        db = self.session_factory()
        try:
            awb = db.query(AWB).filter(AWB.id == awb_id).first()
            if not awb:
                return {"success": False, "error": f"AWB {awb_id} not found"}

            order = awb.order
            delivered = (
                (awb.status_code or "").upper() in DELIVERED_CODES
                or "livrat" in fold_diacritics(awb.current_status or "").lower()
                or (order is not None and order.status == OrderStatus.DELIVERED.value)
            )
            if delivered:
                return {"success": False, "error": f"AWB {awb.awb_number} was delivered and cannot be deleted"}

            remote_error = None
            if awb.awb_number:
                credentials = get_credentials(awb.company) if awb.company else resolve_tenant(order).credentials
                courier = self.courier_factory(credentials)
                remote = await courier.delete_awb(awb.awb_number)
                if not remote.get("success"):
                    remote_error = remote.get("error") or "Remote delete failed"
                    log.warning(f"FanCourier delete failed for AWB {awb.awb_number}: {remote_error}")

            now = datetime.utcnow()
            description = "AWB deleted by operator"
            if remote_error:
                description += f" (FanCourier: {remote_error})"

            awb.current_status = DELETED_STATUS_LABEL
            awb.current_status_date = now
            awb.status_description = description
            awb.error_message = remote_error
            db.add(AWBStatusHistory(
                awb_id=awb.id,
                status=DELETED_STATUS_LABEL,
                status_date=now,
                description=description,
            ))
            if order is not None:
                order.status = OrderStatus.PENDING.value

            db.commit()
            log.info(f"AWB {awb.awb_number} marked deleted (remote ok: {remote_error is None})")
            return {"success": True, "awb_number": awb.awb_number, "remote_error": remote_error}

        except ConfigurationError as e:
            db.rollback()
            return {"success": False, "error": str(e)}
        except Exception as e:
            db.rollback()
            log.error(f"Failed to delete AWB {awb_id}: {e}")
            raise
        finally:
            db.close()
