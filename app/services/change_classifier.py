"""
Classify what a tracking response means relative to the AWB's last known status.

The tracking endpoint answers "no result" both for an AWB that was never
scanned and for one deleted at the courier, and a network failure looks
like neither. The rules below keep transient failures non-destructive:
only NEW_STATUS, DELIVERED, RETURNED, CANCELLED and DELETED are applied.
"""
import enum
import re
from datetime import datetime
from dataclasses import dataclass
from typing import Optional, Sequence

from app.connectors.fancourier_connector import TrackingEvent, TrackingResult
from app.services.awb_status import (
    CANCEL_CODES,
    CANCELLED_STATUS_PREFIX,
    DELETED_STATUS_LABEL,
    DELIVERED_CODES,
    RETURN_CODES,
)
from app.utils.address_matching import fold_diacritics


class ChangeType(str, enum.Enum):
    NEW_STATUS = "NEW_STATUS"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"
    DELETED = "DELETED"
    ERROR = "ERROR"
    PENDING = "PENDING"
    NO_CHANGE = "NO_CHANGE"


MUTATING_CHANGES = frozenset({
    ChangeType.NEW_STATUS,
    ChangeType.DELIVERED,
    ChangeType.RETURNED,
    ChangeType.CANCELLED,
    ChangeType.DELETED,
})

# Matched against diacritic-folded, lowercased text
NOT_FOUND_PATTERN = re.compile(r"negasit|not found|inexistent")
WAITING_PATTERN = re.compile(r"asteptare|pending|created|avizat|awizat")
DELETED_PATTERN = re.compile(r"sters|deleted")
CANCEL_KEYWORD = "anulat"
DELIVERED_KEYWORD = "livrat"
RETURN_PATTERN = re.compile(r"retur|refuz")


@dataclass
class Classification:
    change_type: ChangeType
    description: str
    severity: str  # info | success | warning | error
    new_status: Optional[str] = None  # label to store on the AWB when mutating
    event: Optional[TrackingEvent] = None

    @property
    def is_mutation(self) -> bool:
        return self.change_type in MUTATING_CHANGES


def _fold(value: Optional[str]) -> str:
    return fold_diacritics(value or "").lower()


def is_waiting_status(status: Optional[str]) -> bool:
    """True for labels that mean "created, not yet moving" (or no label at all)."""
    if not status:
        return True
    return bool(WAITING_PATTERN.search(_fold(status)))


def is_not_found_error(error: Optional[str]) -> bool:
    return bool(NOT_FOUND_PATTERN.search(_fold(error)))


def _terminal(change_type, label, previous_status, description, severity, event):
    # Same terminal label as before: already applied, nothing new
    if previous_status == label:
        return Classification(ChangeType.NO_CHANGE, "No change", "info", event=event)
    return Classification(change_type, description, severity, new_status=label, event=event)


def classify_change(
    previous_status: Optional[str],
    tracking_success: bool,
    tracking_error: Optional[str] = None,
    events: Sequence[TrackingEvent] = (),
    timed_out: bool = False,
) -> Classification:
    """
    Decide the change type for one AWB.

    Order: failed call (not-found vs transient), empty event list,
    latest event against cancel, delivered and return sets, then plain
    status difference.
    """
    if not tracking_success:
        if not timed_out and is_not_found_error(tracking_error):
            if DELETED_PATTERN.search(_fold(previous_status)):
                return Classification(ChangeType.NO_CHANGE, "AWB already marked as deleted", "info")
            if not is_waiting_status(previous_status):
                return Classification(
                    ChangeType.DELETED,
                    f"AWB deleted at FanCourier (previously: {previous_status})",
                    "warning",
                    new_status=DELETED_STATUS_LABEL,
                )
            return Classification(
                ChangeType.DELETED,
                "AWB not found at FanCourier (possibly deleted before pickup)",
                "warning",
                new_status=DELETED_STATUS_LABEL,
            )

        return Classification(
            ChangeType.ERROR,
            f"Tracking error: {tracking_error or 'unknown'} (may be temporary)",
            "warning",
        )

    if not events:
        if not is_waiting_status(previous_status):
            return Classification(
                ChangeType.PENDING,
                "AWB has no events at FanCourier (new or awaiting pickup)",
                "info",
            )
        return Classification(ChangeType.NO_CHANGE, "AWB awaiting pickup (no events yet)", "info")

    # Undated events sort first; ties keep feed order
    latest = sorted(events, key=lambda e: e.date or datetime.min)[-1]
    code = (latest.code or "").upper()
    name = latest.name or code
    folded_name = _fold(name)

    if code in CANCEL_CODES or CANCEL_KEYWORD in folded_name:
        return _terminal(
            ChangeType.CANCELLED,
            f"{CANCELLED_STATUS_PREFIX}{name}",
            previous_status,
            f"AWB cancelled at FanCourier: {name}",
            "warning",
            latest,
        )

    if code in DELIVERED_CODES or DELIVERED_KEYWORD in folded_name:
        return _terminal(
            ChangeType.DELIVERED, name, previous_status,
            f"AWB delivered: {name}", "success", latest,
        )

    if code in RETURN_CODES or RETURN_PATTERN.search(folded_name):
        return _terminal(
            ChangeType.RETURNED, name, previous_status,
            f"AWB returned/refused: {name}", "warning", latest,
        )

    if previous_status != name:
        return Classification(
            ChangeType.NEW_STATUS,
            f"Status updated: {previous_status or 'N/A'} -> {name}",
            "info",
            new_status=name,
            event=latest,
        )

    return Classification(ChangeType.NO_CHANGE, "No change", "info", event=latest)


def classify_tracking(previous_status: Optional[str], result: TrackingResult) -> Classification:
    """classify_change for a connector TrackingResult."""
    return classify_change(
        previous_status,
        result.success,
        result.error,
        result.events,
        timed_out=result.timed_out,
    )
