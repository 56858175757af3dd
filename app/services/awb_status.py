"""
FanCourier event codes and their mapping to order lifecycle states.

The table is the single source of truth for code -> (family, order status).
Codes are grouped by family: pickup (C*), transit/warehouse (H*),
delivery, notice, address problem, return/refusal, cancel (A*), other.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.models import OrderStatus, UnknownAWBStatus
from app.utils.logger import log

# Markers written to AWB.current_status by this backend (never sent by the courier)
DELETED_STATUS_LABEL = "DELETED AT COURIER"
CANCELLED_STATUS_PREFIX = "CANCELLED: "
ERROR_STATUS_LABEL = "error"
CREATED_STATUS_LABEL = "created"
CREATING_STATUS_LABEL = "creating"

# Internal result for codes that mean the AWB itself is unusable
AWB_ERROR = OrderStatus.AWB_ERROR.value


@dataclass(frozen=True)
class CourierStatus:
    code: str
    name: str
    family: str
    order_status: str
    is_final: bool = False


FAMILIES = {
    "pickup": {"name": "Pickup", "color": "#3b82f6"},
    "transit": {"name": "Transit", "color": "#8b5cf6"},
    "delivery": {"name": "Delivery", "color": "#22c55e"},
    "notice": {"name": "Notice", "color": "#f59e0b"},
    "problem": {"name": "Address problem", "color": "#ef4444"},
    "return": {"name": "Return", "color": "#dc2626"},
    "cancel": {"name": "Cancelled", "color": "#6b7280"},
    "other": {"name": "Other", "color": "#9ca3af"},
}

_SHIPPED = OrderStatus.SHIPPED.value
_DELIVERED = OrderStatus.DELIVERED.value
_RETURNED = OrderStatus.RETURNED.value
_CANCELLED = OrderStatus.CANCELLED.value

# (code, courier name, family, order status, final)
_STATUS_ROWS = [
    ("C0", "Expediție ridicată", "pickup", _SHIPPED, False),
    ("C1", "Expediție preluată spre livrare", "pickup", _SHIPPED, False),

    ("H0", "În tranzit spre depozitul de destinație", "transit", _SHIPPED, False),
    ("H1", "Descărcată în depozitul de destinație", "transit", _SHIPPED, False),
    ("H2", "În tranzit", "transit", _SHIPPED, False),
    ("H3", "Sortată pe bandă", "transit", _SHIPPED, False),
    ("H4", "Sortată pe bandă", "transit", _SHIPPED, False),
    ("H10", "În tranzit spre depozitul de destinație", "transit", _SHIPPED, False),
    ("H11", "Descărcată în depozitul de destinație", "transit", _SHIPPED, False),
    ("H12", "În depozit", "transit", _SHIPPED, False),
    ("H13", "În depozit", "transit", _SHIPPED, False),
    ("H15", "În depozit", "transit", _SHIPPED, False),
    ("H17", "În depozitul de destinație", "transit", _SHIPPED, False),

    ("S1", "În livrare", "delivery", _SHIPPED, False),
    ("S2", "Livrat", "delivery", _DELIVERED, True),
    ("S8", "Livrare din sediul FAN Courier", "delivery", _SHIPPED, False),
    ("S35", "Retrimis în livrare", "delivery", _SHIPPED, False),
    ("S46", "Predat punct livrare", "delivery", _SHIPPED, False),
    ("S47", "Predat partener extern", "delivery", _SHIPPED, False),

    ("S3", "Avizat", "notice", _SHIPPED, False),
    ("S11", "Avizat și trimis SMS", "notice", _SHIPPED, False),
    ("S12", "Contactat; livrare ulterioară", "notice", _SHIPPED, False),
    ("S21", "Avizat, lipsă persoană de contact", "notice", _SHIPPED, False),
    ("S22", "Avizat, nu are bani de ramburs", "notice", _SHIPPED, False),
    ("S24", "Avizat, nu are împuternicire/CI", "notice", _SHIPPED, False),
    ("S30", "Nu răspunde la telefon", "notice", _SHIPPED, False),

    ("S4", "Adresă incompletă", "problem", _SHIPPED, False),
    ("S5", "Adresă greșită, destinatar mutat", "problem", _SHIPPED, False),
    ("S9", "Redirecționat", "problem", _SHIPPED, False),
    ("S10", "Adresă greșită, fără telefon", "problem", _SHIPPED, False),
    ("S14", "Restricții acces la adresă", "problem", _SHIPPED, False),
    ("S19", "Adresă incompletă - trimis SMS", "problem", _SHIPPED, False),
    ("S20", "Adresă incompletă, fără telefon", "problem", _SHIPPED, False),
    ("S25", "Adresă greșită - trimis SMS", "problem", _SHIPPED, False),
    ("S27", "Adresă greșită, nr telefon greșit", "problem", _SHIPPED, False),
    ("S28", "Adresă incompletă, nr telefon greșit", "problem", _SHIPPED, False),
    ("S42", "Adresă greșită", "problem", _SHIPPED, False),

    ("S6", "Refuz primire", "return", _RETURNED, True),
    ("S7", "Refuz plată transport", "return", _RETURNED, True),
    ("S15", "Refuz predare ramburs", "return", _RETURNED, True),
    ("S16", "Retur la termen", "return", _RETURNED, True),
    ("S33", "Retur solicitat", "return", _RETURNED, True),
    ("S43", "Retur", "return", _RETURNED, True),
    ("S50", "Refuz confirmare", "return", _RETURNED, True),

    ("S37", "Despăgubit", "other", _SHIPPED, False),
    ("S38", "AWB neexpediat", "other", AWB_ERROR, False),
    ("S49", "Activitate suspendată", "other", _SHIPPED, False),

    ("A0", "AWB anulat", "cancel", _CANCELLED, True),
    ("A1", "AWB anulat de expeditor", "cancel", _CANCELLED, True),
    ("A2", "AWB anulat de destinatar", "cancel", _CANCELLED, True),
    ("A3", "AWB anulat de FanCourier", "cancel", _CANCELLED, True),
    ("A4", "AWB șters", "cancel", _CANCELLED, True),
]

STATUS_TABLE: Dict[str, CourierStatus] = {
    code: CourierStatus(code, name, family, order_status, final)
    for code, name, family, order_status, final in _STATUS_ROWS
}

DELIVERED_CODES = frozenset(s.code for s in STATUS_TABLE.values() if s.order_status == _DELIVERED)
RETURN_CODES = frozenset(s.code for s in STATUS_TABLE.values() if s.family == "return")
CANCEL_CODES = frozenset(s.code for s in STATUS_TABLE.values() if s.family == "cancel")


def get_status(code: Optional[str]) -> Optional[CourierStatus]:
    if not code:
        return None
    return STATUS_TABLE.get(code.strip().upper())


def get_statuses_by_family(family: str) -> List[CourierStatus]:
    return [s for s in STATUS_TABLE.values() if s.family == family]


def map_order_status(code: Optional[str], has_events: bool = True) -> Optional[str]:
    """
    Order status for a courier event code.

    Unmapped codes count as in transit as long as there is any event at all,
    so new courier codes never hard-fail. No events means no verdict.
    """
    status = get_status(code)
    if status:
        return status.order_status
    return _SHIPPED if has_events else None


def is_final_status(code: Optional[str]) -> bool:
    status = get_status(code)
    return bool(status and status.is_final)


def format_status_for_display(code: Optional[str]) -> Dict[str, str]:
    """Code, name, family and colour for API/UI listings."""
    if not code:
        return {
            "code": "-",
            "name": "No events",
            "family": "other",
            "color": FAMILIES["other"]["color"],
        }

    status = get_status(code)
    if not status:
        return {
            "code": code,
            "name": "Unknown status",
            "family": "other",
            "color": FAMILIES["other"]["color"],
        }

    return {
        "code": status.code,
        "name": status.name,
        "family": status.family,
        "color": FAMILIES[status.family]["color"],
    }


def register_unknown_status(
    db: Session,
    code: str,
    name: Optional[str] = None,
    awb_number: Optional[str] = None,
) -> Optional[UnknownAWBStatus]:
    """Record a code missing from STATUS_TABLE. Caller commits."""
    if not code or get_status(code):
        return None

    code = code.strip().upper()
    now = datetime.utcnow()
    record = db.query(UnknownAWBStatus).filter(UnknownAWBStatus.status_code == code).first()
    if record:
        record.seen_count = (record.seen_count or 0) + 1
        record.last_seen_at = now
        if name:
            record.status_name = name
        if awb_number:
            record.sample_awb_number = awb_number
    else:
        record = UnknownAWBStatus(
            status_code=code,
            status_name=name,
            sample_awb_number=awb_number,
            seen_count=1,
            first_seen_at=now,
            last_seen_at=now,
        )
        db.add(record)
        db.flush()
        log.warning(f"Unknown FanCourier status code {code} ({name}) seen on AWB {awb_number}")

    return record
