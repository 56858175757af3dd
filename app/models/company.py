"""
Company (tenant) model

Each company bills its own shipments: it owns a FanCourier account
(client id + login) and a sender address printed on the AWB.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
from app.models.base import Base


class Company(Base):
    """Billing entity with courier credentials and sender profile"""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    code = Column(String, unique=True, index=True, nullable=True)
    is_active = Column(Boolean, default=True)

    # FanCourier credentials
    fancourier_client_id = Column(String, nullable=True)
    fancourier_username = Column(String, nullable=True)
    fancourier_password = Column(String, nullable=True)

    # Sender profile (falls back to the company address, then global defaults)
    sender_name = Column(String, nullable=True)
    sender_phone = Column(String, nullable=True)
    sender_email = Column(String, nullable=True)
    sender_county = Column(String, nullable=True)
    sender_city = Column(String, nullable=True)
    sender_street = Column(String, nullable=True)
    sender_number = Column(String, nullable=True)
    sender_postal_code = Column(String, nullable=True)

    # Registered address
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    county = Column(String, nullable=True)
    postal_code = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    stores = relationship("Store", back_populates="company")

    @property
    def has_courier_credentials(self) -> bool:
        return bool(self.fancourier_client_id and self.fancourier_username and self.fancourier_password)
