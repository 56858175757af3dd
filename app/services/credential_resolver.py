"""
Resolve which company's FanCourier account and sender profile apply to an order.
"""
from dataclasses import dataclass
from typing import Optional

from app.config import get_settings
from app.connectors.fancourier_connector import CourierCredentials, SenderProfile
from app.exceptions import ConfigurationError
from app.models import Company, Order

settings = get_settings()


@dataclass
class ResolvedTenant:
    company: Company
    credentials: CourierCredentials
    sender: SenderProfile


def resolve_company(order: Order) -> Company:
    """Billing company override first, then the store's company."""
    if order.billing_company is not None:
        return order.billing_company
    if order.store is not None and order.store.company is not None:
        return order.store.company
    raise ConfigurationError(
        f"Order {order.display_number} has no billing company and its store "
        f"is not linked to a company. Assign a company before creating an AWB."
    )


def get_credentials(company: Company) -> CourierCredentials:
    missing = [
        label for label, value in (
            ("client id", company.fancourier_client_id),
            ("username", company.fancourier_username),
            ("password", company.fancourier_password),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(
            f"FanCourier credentials incomplete for company \"{company.name}\": "
            f"missing {', '.join(missing)}. Configure them in the company settings."
        )
    return CourierCredentials(
        client_id=str(company.fancourier_client_id),
        username=company.fancourier_username,
        password=company.fancourier_password,
    )


def _first(*values: Optional[str]) -> str:
    for value in values:
        if value:
            return value
    return ""


def get_sender_profile(company: Company) -> SenderProfile:
    """Sender fields: company sender profile, then company address, then global defaults."""
    return SenderProfile(
        name=_first(company.sender_name, company.name, settings.default_sender_name),
        phone=_first(company.sender_phone, company.phone, settings.default_sender_phone),
        email=_first(company.sender_email, company.email, settings.default_sender_email) or None,
        county=_first(company.sender_county, company.county, settings.default_sender_county),
        city=_first(company.sender_city, company.city, settings.default_sender_city),
        street=_first(company.sender_street, company.address, settings.default_sender_street),
        number=_first(company.sender_number, settings.default_sender_number),
        postal_code=_first(company.sender_postal_code, company.postal_code, settings.default_sender_postal_code),
    )


def resolve_tenant(order: Order) -> ResolvedTenant:
    """
    Company, credentials and sender profile for an order.

    Raises ConfigurationError when no company resolves or its credentials
    are incomplete. Both are operator problems and are never retried.
    """
    company = resolve_company(order)
    return ResolvedTenant(
        company=company,
        credentials=get_credentials(company),
        sender=get_sender_profile(company),
    )
