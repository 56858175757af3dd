"""
Tests for AWB creation, replacement and deletion.

Runs against a throwaway SQLite database and the scripted courier from
conftest. Covers the one-AWB-per-order policy, tenant resolution,
shipment term derivation and error persistence.
"""
import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.connectors.fancourier_connector import CreateShipmentResult
from app.models import AWB, AWBStatusHistory, Order, OrderLineItem, OrderStatus
from app.services.awb_service import (
    COD_SERVICE,
    CREATION_STALE_AFTER,
    AWBOptions,
    AWBService,
    build_observation,
    derive_shipment_terms,
    is_replaceable,
)
from app.services.awb_status import CREATING_STATUS_LABEL, DELETED_STATUS_LABEL


def _load(session_factory, order_id):
    db = session_factory()
    try:
        order = db.query(Order).filter(Order.id == order_id).first()
        awbs = db.query(AWB).filter(AWB.order_id == order_id).all()
        db.expunge_all()
        return order, awbs
    finally:
        db.close()


# ────────────────────────────────────────────
# PURE DERIVATIONS
# ────────────────────────────────────────────


class TestShipmentTerms:

    def test_recipient_pays_defaults_cod_to_order_total(self):
        terms = derive_shipment_terms(Order(total_price=Decimal("100.456")), AWBOptions())
        assert terms["payment"] == "recipient"
        assert terms["cod"] == 100.46
        assert terms["service"] == COD_SERVICE

    def test_romanian_payment_alias(self):
        terms = derive_shipment_terms(Order(total_price=Decimal("50")), AWBOptions(payment_type="Destinatar"))
        assert terms["payment"] == "recipient"
        assert terms["cod"] == 50.0

    def test_sender_pays_has_no_cod(self):
        terms = derive_shipment_terms(Order(total_price=Decimal("50")), AWBOptions(payment_type="expeditor"))
        assert terms == {"service": "Standard", "payment": "sender", "cod": 0.0}

    def test_explicit_zero_cod_keeps_service(self):
        terms = derive_shipment_terms(Order(total_price=Decimal("50")), AWBOptions(cash_on_delivery=0))
        assert terms["cod"] == 0.0
        assert terms["service"] == "Standard"

    def test_collector_service_is_kept(self):
        terms = derive_shipment_terms(
            Order(total_price=Decimal("50")), AWBOptions(service_type="Express Loco Cont Colector")
        )
        assert terms["service"] == "Express Loco Cont Colector"


class TestObservation:

    def test_products_and_free_text(self):
        items = [
            OrderLineItem(title="Tricou", variant_title="M", quantity=2),
            OrderLineItem(title="Cană", variant_title="Default Title", quantity=1),
        ]
        assert build_observation(items, "Fragil") == "Fragil | Produse: 2x Tricou - M, 1x Cană"

    def test_truncated_with_ellipsis(self):
        items = [OrderLineItem(title="X" * 300, quantity=1)]
        text = build_observation(items, max_length=50)
        assert len(text) == 50
        assert text.endswith("...")

    def test_no_items(self):
        assert build_observation([], "Sunați înainte") == "Sunați înainte"
        assert build_observation([]) == ""


def test_is_replaceable():
    assert is_replaceable(AWB(awb_number=None))
    assert is_replaceable(AWB(awb_number="1", error_message="County is invalid"))
    assert is_replaceable(AWB(awb_number="1", current_status=DELETED_STATUS_LABEL))
    assert is_replaceable(AWB(awb_number="1", current_status="CANCELLED: AWB anulat"))
    assert is_replaceable(AWB(awb_number="1", current_status="AWB șters"))
    assert not is_replaceable(AWB(awb_number="1", current_status="În tranzit"))
    assert not is_replaceable(AWB(awb_number="1", current_status="created"))
    assert not is_replaceable(AWB(current_status=CREATING_STATUS_LABEL, current_status_date=datetime.utcnow()))
    assert is_replaceable(AWB(current_status=CREATING_STATUS_LABEL, current_status_date=datetime(2020, 1, 1)))


# ────────────────────────────────────────────
# CREATION
# ────────────────────────────────────────────


class TestCreateAwb:

    async def test_creates_awb_and_moves_order(self, session_factory, courier, courier_factory, make_order):
        order_id = make_order()
        service = AWBService(session_factory, courier_factory)

        result = await service.create_awb_for_order(order_id)

        assert result["success"]
        assert result["company_name"] == "Acme SRL"
        order, awbs = _load(session_factory, order_id)
        assert order.status == OrderStatus.AWB_CREATED.value
        assert order.billing_company_id == result["company_id"]
        assert len(awbs) == 1
        assert awbs[0].awb_number == result["awb_number"]
        assert awbs[0].current_status == "created"
        assert awbs[0].cash_on_delivery == Decimal("149.90")

        request = courier.created[0]
        assert request.service == COD_SERVICE
        assert request.content == "Comandă #1001"
        assert request.cost_center == "Acme Shop"
        assert request.observation == "Produse: 2x Tricou - M"
        assert request.sender.name == "Acme SRL"
        assert courier.credentials_seen[0].client_id == "7001"

    async def test_second_create_is_rejected(self, session_factory, courier, courier_factory, make_order):
        order_id = make_order()
        service = AWBService(session_factory, courier_factory)
        first = await service.create_awb_for_order(order_id)

        second = await service.create_awb_for_order(order_id)

        assert not second["success"]
        assert second["existing_awb_number"] == first["awb_number"]
        assert first["awb_number"] in second["error"]
        assert len(courier.created) == 1

    async def test_concurrent_creates_yield_one_awb(self, session_factory, courier, courier_factory, make_order):
        order_id = make_order()
        courier.create_delay = 0.01
        service = AWBService(session_factory, courier_factory)

        results = await asyncio.gather(
            service.create_awb_for_order(order_id),
            service.create_awb_for_order(order_id),
        )

        assert sorted(r["success"] for r in results) == [False, True]
        created = next(r for r in results if r["success"])
        rejected = next(r for r in results if not r["success"])
        assert rejected["existing_awb_number"] == created["awb_number"]
        assert len(courier.created) == 1
        _, awbs = _load(session_factory, order_id)
        assert len(awbs) == 1
        assert awbs[0].awb_number == created["awb_number"]

    async def test_creation_in_progress_elsewhere_is_rejected(
        self, session_factory, courier, courier_factory, make_order, make_awb
    ):
        """A fresh "creating" placeholder from another worker blocks the courier call."""
        order_id = make_order()
        make_awb(order_id, awb_number=None, current_status=CREATING_STATUS_LABEL, current_status_date=datetime.utcnow())

        result = await AWBService(session_factory, courier_factory).create_awb_for_order(order_id)

        assert not result["success"]
        assert "already in progress" in result["error"]
        assert courier.created == []
        assert "already in progress" in AWBService(session_factory, courier_factory).can_create_awb(order_id)["reason"]

    async def test_stale_placeholder_is_replaced(self, session_factory, courier, courier_factory, make_order, make_awb):
        order_id = make_order()
        make_awb(
            order_id,
            awb_number=None,
            current_status=CREATING_STATUS_LABEL,
            current_status_date=datetime.utcnow() - CREATION_STALE_AFTER - timedelta(minutes=1),
        )

        result = await AWBService(session_factory, courier_factory).create_awb_for_order(order_id)

        assert result["success"]
        _, awbs = _load(session_factory, order_id)
        assert len(awbs) == 1
        assert awbs[0].current_status == "created"

    async def test_courier_exception_leaves_replaceable_error_row(
        self, session_factory, courier, courier_factory, make_order
    ):
        order_id = make_order()
        service = AWBService(session_factory, courier_factory)

        async def broken(request):
            raise RuntimeError("connection dropped")

        courier.create_awb = broken
        with pytest.raises(RuntimeError):
            await service.create_awb_for_order(order_id)

        order, awbs = _load(session_factory, order_id)
        assert awbs[0].current_status == "error"
        assert awbs[0].error_message == "connection dropped"
        assert order.status == OrderStatus.AWB_ERROR.value
        assert service.can_create_awb(order_id)["can_create"]

    async def test_rejection_is_persisted_and_replaceable(self, session_factory, courier, courier_factory, make_order):
        order_id = make_order()
        courier.create_results = [CreateShipmentResult(success=False, error="County: County is invalid")]
        service = AWBService(session_factory, courier_factory)

        failed = await service.create_awb_for_order(order_id)
        assert not failed["success"]
        order, awbs = _load(session_factory, order_id)
        assert order.status == OrderStatus.AWB_ERROR.value
        assert awbs[0].current_status == "error"
        assert awbs[0].error_message == "County: County is invalid"
        assert awbs[0].awb_number is None

        retried = await service.create_awb_for_order(order_id)
        assert retried["success"]
        order, awbs = _load(session_factory, order_id)
        assert len(awbs) == 1
        assert awbs[0].error_message is None
        assert order.status == OrderStatus.AWB_CREATED.value

    async def test_billing_company_overrides_store_company(
        self, session_factory, courier, courier_factory, make_order, make_company
    ):
        other = make_company(name="Beta SRL", code="BETA", fancourier_client_id="7002", fancourier_username="beta")
        order_id = make_order(billing_company_id=other)

        result = await AWBService(session_factory, courier_factory).create_awb_for_order(order_id)

        assert result["company_name"] == "Beta SRL"
        assert courier.credentials_seen[0].client_id == "7002"

    async def test_order_without_company_is_configuration_error(self, session_factory, courier, courier_factory, make_order):
        order_id = make_order(store_company_id=None)

        result = await AWBService(session_factory, courier_factory).create_awb_for_order(order_id)

        assert not result["success"]
        assert "no billing company" in result["error"]
        assert courier.created == []

    async def test_incomplete_credentials_name_missing_fields(
        self, session_factory, courier, courier_factory, make_order, make_company
    ):
        company_id = make_company(fancourier_password=None, fancourier_username="")
        order_id = make_order(company_id=company_id)

        result = await AWBService(session_factory, courier_factory).create_awb_for_order(order_id)

        assert not result["success"]
        assert "missing username, password" in result["error"]
        assert courier.created == []

    async def test_unknown_order(self, session_factory, courier_factory):
        result = await AWBService(session_factory, courier_factory).create_awb_for_order(999)
        assert result == {"success": False, "error": "Order 999 not found"}

    async def test_bulk_reports_each_order(self, session_factory, courier_factory, make_order):
        ok_id = make_order(order_number="#1")
        broken_id = make_order(order_number="#2", store_company_id=None)

        summary = await AWBService(session_factory, courier_factory).create_awbs_for_orders([ok_id, broken_id, 999])

        assert summary["created"] == 1
        assert summary["failed"] == 2
        assert [r["order_id"] for r in summary["results"]] == [ok_id, broken_id, 999]


def test_can_create_awb(session_factory, courier_factory, make_order, make_awb):
    service = AWBService(session_factory, courier_factory)
    fresh = make_order(order_number="#1")
    shipped = make_order(order_number="#2")
    make_awb(shipped, awb_number="2000000009", current_status="În tranzit")

    assert service.can_create_awb(fresh)["can_create"]
    blocked = service.can_create_awb(shipped)
    assert not blocked["can_create"]
    assert blocked["existing_awb_number"] == "2000000009"
    assert not service.can_create_awb(999)["can_create"]


# ────────────────────────────────────────────
# DELETION
# ────────────────────────────────────────────


class TestDeleteAwb:

    async def test_delete_marks_row_and_frees_order(self, session_factory, courier, courier_factory, make_order, make_awb):
        order_id = make_order(status=OrderStatus.AWB_CREATED.value)
        awb_id = make_awb(order_id, awb_number="2000000001")
        service = AWBService(session_factory, courier_factory)

        result = await service.delete_awb(awb_id)

        assert result["success"]
        assert result["remote_error"] is None
        assert courier.deleted == ["2000000001"]
        order, awbs = _load(session_factory, order_id)
        assert order.status == OrderStatus.PENDING.value
        assert awbs[0].current_status == DELETED_STATUS_LABEL

        db = session_factory()
        try:
            history = db.query(AWBStatusHistory).filter(AWBStatusHistory.awb_id == awb_id).all()
            assert [h.status for h in history] == [DELETED_STATUS_LABEL]
        finally:
            db.close()

        # The order can ship again
        recreated = await service.create_awb_for_order(order_id)
        assert recreated["success"]

    async def test_remote_failure_is_kept_on_row(self, session_factory, courier, courier_factory, make_order, make_awb):
        order_id = make_order()
        awb_id = make_awb(order_id)
        courier.delete_result = {"success": False, "error": "AWB already picked up"}

        result = await AWBService(session_factory, courier_factory).delete_awb(awb_id)

        assert result["success"]
        assert result["remote_error"] == "AWB already picked up"
        _, awbs = _load(session_factory, order_id)
        assert awbs[0].current_status == DELETED_STATUS_LABEL
        assert awbs[0].error_message == "AWB already picked up"

    async def test_delivered_awb_cannot_be_deleted(self, session_factory, courier, courier_factory, make_order, make_awb):
        order_id = make_order(status=OrderStatus.DELIVERED.value)
        awb_id = make_awb(order_id, current_status="Livrat", status_code="S2")

        result = await AWBService(session_factory, courier_factory).delete_awb(awb_id)

        assert not result["success"]
        assert "delivered" in result["error"]
        assert courier.deleted == []

    async def test_unknown_awb(self, session_factory, courier_factory):
        result = await AWBService(session_factory, courier_factory).delete_awb(404)
        assert result == {"success": False, "error": "AWB 404 not found"}
