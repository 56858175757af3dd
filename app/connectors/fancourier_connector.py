"""
FanCourier connector.
Creates, tracks and deletes AWBs through the FanCourier v2 REST API and
reads its locality/street nomenclature.

API structure:
  - POST   /login?username=&password=    -> data.token (valid ~24h)
  - POST   /intern-awb                   -> data[0].awbNumber | data[0].errors
  - GET    /reports/awb/tracking         -> data[0].events[] (id, name, location, date)
  - DELETE /awb                          -> status == "success"
  - GET    /reports/localities?county=   -> judet, localitate, ...
  - GET    /reports/streets?county=&locality= -> strada, cod_postal, ...
  - GET    /reports/services             -> used as an account check

Tokens are cached per (client_id, username) so concurrent tenants never
see each other's session.
"""
import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp
from dateutil import parser as date_parser

from app.config import get_settings
from app.connectors.base_connector import BaseConnector
from app.exceptions import CourierAPIError, CourierAuthError, ValidationError
from app.utils.cache import TokenCache, get_token_cache
from app.utils.logger import log

settings = get_settings()

# Error text used when tracking returns no record for the AWB
AWB_NOT_FOUND_ERROR = "AWB not found"

# Romanian mobile / landline, national format
PHONE_PATTERN = re.compile(r"^0[2-7]\d{8}$")

_PHONE_STRIP = re.compile(r"[\s\-().]")

FIELD_LABELS = {
    "locality": "Locality",
    "county": "County",
    "street": "Street",
    "streetNo": "Street number",
    "phone": "Phone",
    "name": "Recipient name",
    "email": "Email",
    "weight": "Weight",
    "service": "Service",
    "packages": "Packages",
    "dimensions": "Dimensions",
    "cod": "Cash on delivery",
    "payment": "Payment",
    "zipCode": "Postal code",
}

ERROR_HINTS = {
    "Locality is invalid": "The locality is not in the FanCourier nomenclature. Check the spelling or pick a locality from the official list.",
    "County is invalid": "The county is not in the FanCourier nomenclature. Use the official name (e.g. \"București\", not \"B\").",
    "Phone is invalid": "Use the 07XXXXXXXX format (10 digits, no spaces or symbols).",
    "Street is required": "Fill in the street name of the address.",
    "Name is required": "The recipient name is required.",
    "Weight must be greater than 0": "Weight must be greater than 0.",
    "Service is invalid": "Use one of: Standard, Cont Colector, RedCode, Express Loco.",
}


@dataclass
class CourierCredentials:
    client_id: str
    username: str
    password: str


@dataclass
class SenderProfile:
    name: str = ""
    phone: str = ""
    email: Optional[str] = None
    county: str = ""
    city: str = ""
    street: str = ""
    number: str = ""
    postal_code: str = ""


@dataclass
class ShipmentRequest:
    """Everything needed for one /intern-awb call"""
    recipient_name: str
    recipient_phone: str
    recipient_county: str
    recipient_city: str
    recipient_street: str
    recipient_street_no: str = ""
    recipient_zip_code: str = ""
    recipient_email: Optional[str] = None
    service: str = "Standard"
    payment: str = "recipient"
    weight: float = 1.0
    packages: int = 1
    envelopes: int = 0
    cod: float = 0.0
    declared_value: float = 0.0
    observation: str = ""
    content: str = ""
    cost_center: str = ""
    dimensions: Dict[str, float] = field(default_factory=lambda: {"length": 10, "width": 10, "height": 10})
    sender: Optional[SenderProfile] = None


@dataclass
class CreateShipmentResult:
    success: bool
    awb_number: Optional[str] = None
    error: Optional[str] = None
    validation_errors: List[str] = field(default_factory=list)


@dataclass
class TrackingEvent:
    code: str
    name: str
    location: Optional[str] = None
    date: Optional[datetime] = None


@dataclass
class TrackingResult:
    """Normalized tracking response; events are sorted oldest first"""
    success: bool
    events: List[TrackingEvent] = field(default_factory=list)
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def latest_event(self) -> Optional[TrackingEvent]:
        return self.events[-1] if self.events else None


def normalize_phone(phone: Optional[str]) -> str:
    """Strip separators and collapse +40 / 0040 prefixes to the leading-zero form."""
    if not phone:
        return ""
    cleaned = _PHONE_STRIP.sub("", str(phone))
    if cleaned.startswith("+40"):
        cleaned = "0" + cleaned[3:]
    elif cleaned.startswith("0040"):
        cleaned = "0" + cleaned[4:]
    elif cleaned.startswith("40") and len(cleaned) == 11:
        cleaned = "0" + cleaned[2:]
    return cleaned


def validate_shipment_request(request: ShipmentRequest) -> List[str]:
    """Return every local format violation; empty list means the request looks sendable."""
    errors = []

    name = (request.recipient_name or "").strip()
    if len(name) < 2:
        errors.append("Recipient name: must have at least 2 characters.")

    phone = normalize_phone(request.recipient_phone)
    if not PHONE_PATTERN.match(phone):
        errors.append(
            f'Phone: expected format 0XXXXXXXXX (10 digits). Received "{request.recipient_phone}" '
            f'-> normalized "{phone}"'
        )

    if len((request.recipient_county or "").strip()) < 2:
        errors.append(f'County: required. Received "{request.recipient_county}"')

    if len((request.recipient_city or "").strip()) < 2:
        errors.append(f'Locality: required. Received "{request.recipient_city}"')

    if len((request.recipient_street or "").strip()) < 2:
        errors.append(f'Street: required. Received "{request.recipient_street}"')

    return errors


def parse_awb_errors(errors: Any) -> str:
    """Flatten the provider's field-keyed error map into readable lines."""
    if not errors:
        return "Unknown error while generating AWB"
    if isinstance(errors, str):
        return errors
    if isinstance(errors, list):
        return ", ".join(str(e) for e in errors)
    if isinstance(errors, dict):
        lines = []
        for field_name, messages in errors.items():
            if not isinstance(messages, list):
                messages = [str(messages)]
            explained = [
                f"{msg} - {ERROR_HINTS[msg]}" if msg in ERROR_HINTS else str(msg)
                for msg in messages
            ]
            lines.append(f"{FIELD_LABELS.get(field_name, field_name)}: {'; '.join(explained)}")
        return "\n".join(lines)
    return "Unknown error while generating AWB"


def _parse_event_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = date_parser.parse(str(value))
    except (ValueError, OverflowError):
        return None
    # History is stored naive, like every other timestamp in the database
    return parsed.replace(tzinfo=None)


def normalize_tracking_payload(payload: Dict[str, Any]) -> TrackingResult:
    """Adapt a raw /reports/awb/tracking body into a TrackingResult."""
    data = payload.get("data") if isinstance(payload, dict) else None
    if payload.get("status") != "success" or not data:
        return TrackingResult(success=False, error=AWB_NOT_FOUND_ERROR)

    record = data[0] if isinstance(data, list) else data
    if not record:
        return TrackingResult(success=False, error=AWB_NOT_FOUND_ERROR)

    events = []
    for raw in record.get("events") or []:
        events.append(TrackingEvent(
            code=str(raw.get("id") or raw.get("code") or "").strip(),
            name=(raw.get("name") or raw.get("description") or "").strip(),
            location=raw.get("location"),
            date=_parse_event_date(raw.get("date")),
        ))

    # Undated events sort first so the latest dated scan stays last
    events.sort(key=lambda e: e.date or datetime.min)
    return TrackingResult(success=True, events=events)


class FanCourierConnector(BaseConnector):
    """Connector for one tenant's FanCourier account."""

    def __init__(
        self,
        credentials: CourierCredentials,
        token_cache: Optional[TokenCache] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        super().__init__("FanCourier")
        self.credentials = credentials
        self.token_cache = token_cache or get_token_cache()
        self.base_url = (base_url or settings.fancourier_api_url).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or settings.fancourier_timeout_seconds
        )

    # ────────────────────────────────────────────────────────────
    # Transport
    # ────────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> Dict[str, Any]:
        """Send one request, logging in first when it needs a token.

        A 401 on an authenticated call drops the cached token and the call is
        sent once more with a fresh login.
        """
        if not authenticated:
            return await self._send(method, path, params=params, json=json)

        token = await self.authenticate()
        try:
            return await self._send(method, path, params=params, json=json, token=token)
        except CourierAPIError as e:
            if e.status != 401:
                raise
        log.warning(f"FanCourier rejected the cached token for client {self.credentials.client_id}; logging in again")
        self.token_cache.invalidate(self.credentials.client_id, self.credentials.username)
        token = await self.authenticate()
        return await self._send(method, path, params=params, json=json, token=token)

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """One HTTP round trip; returns the decoded JSON body."""
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json,
                headers=headers,
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = {"message": await response.text()}
                body = body if isinstance(body, dict) else {"data": body}

                if response.status >= 500 or response.status == 429:
                    self._record_call(False)
                    raise aiohttp.ClientResponseError(
                        response.request_info,
                        response.history,
                        status=response.status,
                        message=body.get("message") or response.reason or "",
                    )
                if response.status >= 400:
                    self._record_call(False)
                    # The creation endpoint reports field errors with a 4xx status
                    if response.status != 401 and (body.get("data") or body.get("errors")):
                        return body
                    raise CourierAPIError(
                        body.get("message") or f"FanCourier returned status {response.status}",
                        status=response.status,
                    )

                self._record_call(True)
                return body

    # ────────────────────────────────────────────────────────────
    # Authentication
    # ────────────────────────────────────────────────────────────

    async def authenticate(self) -> str:
        """Return a bearer token for this tenant, logging in when the cached one expired."""
        creds = self.credentials
        token = self.token_cache.get(creds.client_id, creds.username)
        if token:
            return token

        try:
            body = await self._request(
                "POST",
                "/login",
                params={"username": creds.username, "password": creds.password},
                authenticated=False,
            )
        except CourierAPIError as e:
            raise CourierAuthError(f"FanCourier login failed: {e}", status=e.status) from e
        except aiohttp.ClientResponseError as e:
            raise CourierAuthError(f"FanCourier login failed: {e.status}", status=e.status) from e

        token = (body.get("data") or {}).get("token") if isinstance(body.get("data"), dict) else None
        if not token:
            raise CourierAuthError(body.get("message") or "FanCourier did not return a token")

        self.token_cache.set(creds.client_id, creds.username, token)
        log.info(f"FanCourier login OK for client {creds.client_id}")
        return token

    async def connect(self) -> bool:
        try:
            await self.authenticate()
            return True
        except (CourierAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.error(f"Failed to connect to FanCourier: {e}")
            return False

    async def validate_connection(self) -> Dict[str, Any]:
        """Log in and list services to confirm both credentials and client id."""
        try:
            await self.authenticate()
            body = await self._request(
                "GET", "/reports/services", params={"clientId": self.credentials.client_id}
            )
        except (CourierAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            return {"success": False, "error": str(e) or "Invalid credentials"}

        if body.get("status") == "success":
            return {"success": True, "services": body.get("data") or []}
        return {"success": False, "error": body.get("message") or "Could not list services"}

    # ────────────────────────────────────────────────────────────
    # AWB lifecycle
    # ────────────────────────────────────────────────────────────

    def _build_payload(self, request: ShipmentRequest) -> Dict[str, Any]:
        shipment = {
            "info": {
                "service": request.service,
                "packages": {"parcel": request.packages, "envelopes": request.envelopes},
                "weight": request.weight,
                "cod": request.cod or 0,
                "declaredValue": request.declared_value or 0,
                "payment": request.payment,
                "observation": request.observation,
                "content": request.content,
                "dimensions": request.dimensions,
                "costCenter": request.cost_center,
                "options": ["X"],
            },
            "recipient": {
                "name": request.recipient_name.strip(),
                "phone": normalize_phone(request.recipient_phone),
                "email": request.recipient_email or "",
                "address": {
                    "county": request.recipient_county,
                    "locality": request.recipient_city,
                    "street": request.recipient_street,
                    "streetNo": request.recipient_street_no or "",
                    "zipCode": request.recipient_zip_code or "",
                },
            },
        }

        sender = request.sender
        if sender and sender.name:
            shipment["sender"] = {
                "name": sender.name,
                "phone": normalize_phone(sender.phone),
                "email": sender.email or "",
                "address": {
                    "county": sender.county,
                    "locality": sender.city,
                    "street": sender.street,
                    "streetNo": sender.number,
                    "zipCode": sender.postal_code,
                },
            }

        return {"clientId": self.credentials.client_id, "shipments": [shipment]}

    async def create_awb(self, request: ShipmentRequest) -> CreateShipmentResult:
        """
        Create one internal AWB.

        Local validation runs first and fails fast with every violated field.
        Never retried: a duplicate AWB is billed.
        """
        violations = validate_shipment_request(request)
        if violations:
            error = ValidationError(violations)
            log.warning(f"AWB request rejected locally: {violations}")
            return CreateShipmentResult(success=False, error=str(error), validation_errors=violations)

        try:
            body = await self._request("POST", "/intern-awb", json=self._build_payload(request))
        except (CourierAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.error(f"FanCourier create AWB failed: {e!r}")
            return CreateShipmentResult(success=False, error=str(e) or type(e).__name__)

        data = body.get("data")
        first = data[0] if isinstance(data, list) and data else (data if isinstance(data, dict) else {})
        awb_number = first.get("awbNumber") if first else None

        if awb_number:
            log.info(f"FanCourier AWB created: {awb_number}")
            return CreateShipmentResult(success=True, awb_number=str(awb_number))

        error = parse_awb_errors((first or {}).get("errors") or body.get("errors") or body.get("message"))
        log.warning(f"FanCourier rejected AWB: {error}")
        return CreateShipmentResult(success=False, error=error)

    async def track_awb(self, awb_number: str) -> TrackingResult:
        """Fetch and normalize tracking events. Timeouts come back as failed results."""
        params = {
            "clientId": self.credentials.client_id,
            "awb[]": awb_number,
            "language": "ro",
        }
        try:
            body = await self._retry_operation(
                lambda: self._request("GET", "/reports/awb/tracking", params=params),
                operation_name=f"track {awb_number}",
            )
        except asyncio.TimeoutError:
            return TrackingResult(success=False, error="Tracking request timed out", timed_out=True)
        except (CourierAPIError, aiohttp.ClientError) as e:
            return TrackingResult(success=False, error=str(e) or type(e).__name__)

        return normalize_tracking_payload(body)

    async def delete_awb(self, awb_number: str) -> Dict[str, Any]:
        try:
            body = await self._request(
                "DELETE",
                "/awb",
                params={"clientId": self.credentials.client_id, "awb": awb_number},
            )
        except (CourierAPIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            return {"success": False, "error": str(e) or type(e).__name__}

        if body.get("status") == "success":
            return {"success": True}
        return {"success": False, "error": body.get("message") or "Delete failed"}

    # ────────────────────────────────────────────────────────────
    # Nomenclature
    # ────────────────────────────────────────────────────────────

    async def _nomenclature(self, path: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        body = await self._retry_operation(
            lambda: self._request("GET", path, params=params),
            operation_name=path,
        )
        if body.get("status") != "success":
            raise CourierAPIError(body.get("message") or f"FanCourier {path} failed")
        return body.get("data") or []

    async def get_localities(self, county: Optional[str] = None) -> List[Dict[str, Any]]:
        """Localities (judet, localitate, ...) optionally filtered by county."""
        params = {"county": county} if county else {}
        return await self._nomenclature("/reports/localities", params)

    async def get_streets(self, county: str, locality: str) -> List[Dict[str, Any]]:
        """Streets with postal codes (strada, cod_postal, ...) for one locality."""
        return await self._nomenclature(
            "/reports/streets", {"county": county, "locality": locality}
        )
