"""
Order Models

Orders are imported by the storefront/marketplace sync (outside this
backend). Here they are read for shipment creation and their status and
postal code are written back.
"""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from app.models.base import Base


class OrderStatus(str, enum.Enum):
    """Order lifecycle as driven by AWB creation and tracking"""
    PENDING = "PENDING"              # ready to ship (or re-ship after delete/cancel)
    AWB_CREATED = "AWB_CREATED"
    AWB_ERROR = "AWB_ERROR"
    SHIPPED = "SHIPPED"              # picked up / in transit / out for delivery
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


TERMINAL_ORDER_STATUSES = (
    OrderStatus.DELIVERED.value,
    OrderStatus.RETURNED.value,
    OrderStatus.CANCELLED.value,
)


class Store(Base):
    """Sales channel; its company is the default tenant for its orders"""
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    company = relationship("Company", back_populates="stores")
    orders = relationship("Order", back_populates="store")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String, index=True, nullable=True)
    status = Column(String, index=True, default=OrderStatus.PENDING.value, nullable=False)

    # Tenant: explicit billing company wins over the store default
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True, index=True)
    billing_company_id = Column(Integer, ForeignKey("companies.id"), nullable=True, index=True)

    # Customer
    customer_first_name = Column(String, nullable=True)
    customer_last_name = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)

    # Shipping address
    shipping_country = Column(String, nullable=True)
    shipping_province = Column(String, nullable=True)  # county (judet)
    shipping_city = Column(String, nullable=True)
    shipping_address1 = Column(String, nullable=True)
    shipping_address2 = Column(String, nullable=True)
    shipping_zip = Column(String, nullable=True, index=True)

    total_price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String, default="RON")

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)

    store = relationship("Store", back_populates="orders")
    billing_company = relationship("Company", foreign_keys=[billing_company_id])
    line_items = relationship("OrderLineItem", back_populates="order", cascade="all, delete-orphan")
    awb = relationship("AWB", back_populates="order", uselist=False)

    @property
    def display_number(self) -> str:
        return self.order_number or str(self.id)

    @property
    def recipient_name(self) -> str:
        return " ".join(p for p in (self.customer_first_name, self.customer_last_name) if p)


class OrderLineItem(Base):
    __tablename__ = "order_line_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    variant_title = Column(String, nullable=True)
    sku = Column(String, nullable=True)
    quantity = Column(Integer, default=1)
    price = Column(Numeric(10, 2), nullable=True)

    order = relationship("Order", back_populates="line_items")
