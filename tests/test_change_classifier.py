"""
Tests for tracking change classification.

Covers:
  - not-found vs transient failures
  - waiting labels and empty event lists
  - latest-event precedence: cancel > delivered > returned > new status
  - terminal labels are never re-applied
"""
from datetime import datetime

from app.connectors.fancourier_connector import AWB_NOT_FOUND_ERROR, TrackingEvent, TrackingResult
from app.services.awb_status import DELETED_STATUS_LABEL
from app.services.change_classifier import (
    ChangeType,
    classify_change,
    classify_tracking,
    is_not_found_error,
    is_waiting_status,
)


def _event(code, name, day, hour=12):
    return TrackingEvent(code=code, name=name, location="Cluj", date=datetime(2024, 5, day, hour))


# ────────────────────────────────────────────
# FAILED TRACKING CALLS
# ────────────────────────────────────────────


class TestFailedTracking:

    def test_not_found_after_notice_is_deleted(self):
        """A noticed shipment that vanished from tracking was deleted at the courier."""
        result = classify_change("Avizat și trimis SMS", False, AWB_NOT_FOUND_ERROR)
        # "Avizat" is a waiting label, so this is the before-pickup variant
        assert result.change_type == ChangeType.DELETED
        assert result.new_status == DELETED_STATUS_LABEL

    def test_not_found_from_transit_mentions_previous_status(self):
        result = classify_change("În tranzit", False, "AWB not found")
        assert result.change_type == ChangeType.DELETED
        assert "previously: În tranzit" in result.description
        assert result.is_mutation

    def test_not_found_while_waiting_is_deleted_before_pickup(self):
        result = classify_change("created", False, "AWB negăsit")
        assert result.change_type == ChangeType.DELETED
        assert "before pickup" in result.description

    def test_not_found_when_already_deleted_is_no_change(self):
        result = classify_change(DELETED_STATUS_LABEL, False, AWB_NOT_FOUND_ERROR)
        assert result.change_type == ChangeType.NO_CHANGE
        assert not result.is_mutation

    def test_timeout_is_error_even_with_not_found_text(self):
        """A timed out call proves nothing about the AWB."""
        result = classify_change("În tranzit", False, "not found", timed_out=True)
        assert result.change_type == ChangeType.ERROR
        assert not result.is_mutation

    def test_other_failure_is_error(self):
        result = classify_change("În tranzit", False, "HTTP 503")
        assert result.change_type == ChangeType.ERROR
        assert "may be temporary" in result.description
        assert result.new_status is None


# ────────────────────────────────────────────
# EMPTY EVENT LISTS
# ────────────────────────────────────────────


class TestNoEvents:

    def test_no_events_while_waiting_is_no_change(self):
        assert classify_change("created", True).change_type == ChangeType.NO_CHANGE
        assert classify_change(None, True).change_type == ChangeType.NO_CHANGE

    def test_no_events_after_movement_is_pending_and_not_applied(self):
        result = classify_change("În tranzit", True, events=[])
        assert result.change_type == ChangeType.PENDING
        assert not result.is_mutation


# ────────────────────────────────────────────
# LATEST EVENT
# ────────────────────────────────────────────


class TestLatestEvent:

    def test_delivered(self):
        events = [_event("C0", "Expediție ridicată", 1), _event("S2", "Livrat", 3)]
        result = classify_change("În tranzit", True, events=events)
        assert result.change_type == ChangeType.DELIVERED
        assert result.new_status == "Livrat"
        assert result.event.code == "S2"

    def test_delivered_twice_is_no_change(self):
        events = [_event("S2", "Livrat", 3)]
        assert classify_change("Livrat", True, events=events).change_type == ChangeType.NO_CHANGE

    def test_latest_is_picked_by_date_not_feed_order(self):
        events = [_event("S2", "Livrat", 5), _event("C0", "Expediție ridicată", 1)]
        result = classify_change("created", True, events=events)
        assert result.change_type == ChangeType.DELIVERED

    def test_cancel_code_wins(self):
        events = [_event("A1", "AWB anulat de expeditor", 2)]
        result = classify_change("created", True, events=events)
        assert result.change_type == ChangeType.CANCELLED
        assert result.new_status == "CANCELLED: AWB anulat de expeditor"

    def test_cancel_keyword_without_known_code(self):
        events = [_event("A9", "Expediție anulată", 2)]
        assert classify_change("created", True, events=events).change_type == ChangeType.CANCELLED

    def test_cancelled_twice_is_no_change(self):
        events = [_event("A0", "AWB anulat", 2)]
        assert classify_change("CANCELLED: AWB anulat", True, events=events).change_type == ChangeType.NO_CHANGE

    def test_returned_by_code_and_by_keyword(self):
        assert classify_change("Avizat", True, events=[_event("S6", "Refuz primire", 4)]).change_type == ChangeType.RETURNED
        assert classify_change("Avizat", True, events=[_event("X1", "Retur expeditor", 4)]).change_type == ChangeType.RETURNED

    def test_new_status(self):
        events = [_event("C0", "Expediție ridicată", 1), _event("H2", "În tranzit", 2)]
        result = classify_change("Expediție ridicată", True, events=events)
        assert result.change_type == ChangeType.NEW_STATUS
        assert result.new_status == "În tranzit"

    def test_same_status_is_no_change(self):
        events = [_event("H2", "În tranzit", 2)]
        assert classify_change("În tranzit", True, events=events).change_type == ChangeType.NO_CHANGE

    def test_unknown_code_is_plain_new_status(self):
        events = [_event("Z99", "Cod nou", 2)]
        result = classify_change("created", True, events=events)
        assert result.change_type == ChangeType.NEW_STATUS
        assert result.new_status == "Cod nou"


def test_classify_tracking_passes_timeout_flag():
    result = classify_tracking("În tranzit", TrackingResult(success=False, error="not found", timed_out=True))
    assert result.change_type == ChangeType.ERROR


def test_waiting_and_not_found_helpers():
    assert is_waiting_status("În așteptare")
    assert is_waiting_status("Awizat")
    assert not is_waiting_status("Livrat")
    assert is_not_found_error("AWB inexistent")
    assert not is_not_found_error("Internal server error")
    assert not is_not_found_error(None)
