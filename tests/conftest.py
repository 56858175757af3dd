"""
Shared fixtures: a throwaway SQLite database, a scripted FanCourier double
and helpers that seed companies, orders and AWBs.
"""
import asyncio
import os

# Before any app import: settings are cached on first use
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_awb_sync.db")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("LOG_DIR", "")
os.environ.setdefault("BACKFILL_PAUSE_SECONDS", "0")

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.connectors.fancourier_connector import CreateShipmentResult, TrackingResult
from app.models import AWB, Company, Order, OrderLineItem, OrderStatus, Store
from app.models.base import init_db


class FakeCourier:
    """In-memory FanCourier: scripted tracking, creation and nomenclature answers."""

    def __init__(self):
        self.credentials_seen = []
        self.tracking = {}          # awb_number -> TrackingResult | Exception
        self.create_results = []    # consumed in order, then auto-numbered success
        self.created = []           # ShipmentRequest per create call
        self.deleted = []
        self.delete_result = {"success": True}
        self.localities = {}        # county -> [{"localitate": ...}]
        self.streets = {}           # (county, locality) -> [{"strada", "cod_postal"}]
        self.street_calls = []
        self.track_calls = []
        self.nomenclature_error = None
        self.create_delay = 0       # seconds create_awb stays suspended

    async def authenticate(self):
        return "token"

    async def validate_connection(self):
        return {"success": True, "services": [{"name": "Standard"}]}

    async def create_awb(self, request):
        self.created.append(request)
        await asyncio.sleep(self.create_delay)
        if self.create_results:
            return self.create_results.pop(0)
        return CreateShipmentResult(success=True, awb_number=f"20{len(self.created):09d}")

    async def track_awb(self, awb_number):
        self.track_calls.append(awb_number)
        result = self.tracking.get(awb_number, TrackingResult(success=True, events=[]))
        if isinstance(result, Exception):
            raise result
        return result

    async def delete_awb(self, awb_number):
        self.deleted.append(awb_number)
        return dict(self.delete_result)

    async def get_localities(self, county=None):
        if self.nomenclature_error:
            raise self.nomenclature_error
        return list(self.localities.get(county, []))

    async def get_streets(self, county, locality):
        if self.nomenclature_error:
            raise self.nomenclature_error
        self.street_calls.append((county, locality))
        return list(self.streets.get((county, locality), []))


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'awb_sync_test.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    factory = sessionmaker(autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def courier():
    return FakeCourier()


@pytest.fixture
def courier_factory(courier):
    def factory(credentials):
        courier.credentials_seen.append(credentials)
        return courier
    return factory


@pytest.fixture
def make_company(session_factory):
    def _make(**fields):
        values = dict(
            name="Acme SRL",
            fancourier_client_id="7001",
            fancourier_username="acme",
            fancourier_password="secret",
            sender_name="Acme SRL",
            sender_phone="0722000000",
            sender_county="Cluj",
            sender_city="Cluj-Napoca",
            sender_street="Memorandumului",
            sender_number="1",
            sender_postal_code="400114",
        )
        values.update(fields)
        db = session_factory()
        try:
            company = Company(**values)
            db.add(company)
            db.commit()
            return company.id
        finally:
            db.close()
    return _make


@pytest.fixture
def make_order(session_factory, make_company):
    """Create an order (with store and company unless given) and return its id."""
    def _make(company_id=None, store_company_id="default", line_items=None, **fields):
        if store_company_id == "default":
            store_company_id = company_id or make_company()
        values = dict(
            order_number="#1001",
            status=OrderStatus.PENDING.value,
            customer_first_name="Ana",
            customer_last_name="Popescu",
            customer_phone="0722 123 456",
            customer_email="ana@example.ro",
            shipping_country="Romania",
            shipping_province="Cluj",
            shipping_city="Cluj-Napoca",
            shipping_address1="Str. Memorandumului nr. 5",
            shipping_zip="400114",
            total_price=Decimal("149.90"),
        )
        values.update(fields)
        if line_items is None:
            line_items = [{"title": "Tricou", "variant_title": "M", "quantity": 2}]

        db = session_factory()
        try:
            store = Store(name="Acme Shop", company_id=store_company_id)
            db.add(store)
            db.flush()
            order = Order(store_id=store.id, **values)
            order.line_items = [OrderLineItem(**item) for item in line_items]
            db.add(order)
            db.commit()
            return order.id
        finally:
            db.close()
    return _make


@pytest.fixture
def make_awb(session_factory):
    """Attach an AWB to an existing order and return its id."""
    def _make(order_id, awb_number="2000000001", **fields):
        db = session_factory()
        try:
            order = db.query(Order).filter(Order.id == order_id).first()
            values = dict(
                awb_number=awb_number,
                company_id=order.store.company_id if order.store else None,
                current_status="created",
                cash_on_delivery=Decimal("0"),
            )
            values.update(fields)
            awb = AWB(order_id=order_id, **values)
            db.add(awb)
            db.commit()
            return awb.id
        finally:
            db.close()
    return _make
