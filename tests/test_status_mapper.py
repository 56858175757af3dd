"""
Tests for the FanCourier status table and unknown-code registry.
"""
from app.models import OrderStatus, UnknownAWBStatus
from app.services.awb_status import (
    CANCEL_CODES,
    DELIVERED_CODES,
    RETURN_CODES,
    STATUS_TABLE,
    format_status_for_display,
    get_status,
    get_statuses_by_family,
    is_final_status,
    map_order_status,
    register_unknown_status,
)


class TestStatusTable:

    def test_only_s2_means_delivered(self):
        assert DELIVERED_CODES == {"S2"}

    def test_return_family_is_final_and_returned(self):
        assert {"S6", "S7", "S15", "S16", "S33", "S43", "S50"} == RETURN_CODES
        for code in RETURN_CODES:
            assert map_order_status(code) == OrderStatus.RETURNED.value
            assert is_final_status(code)

    def test_cancel_family(self):
        assert {"A0", "A1", "A2", "A3", "A4"} == CANCEL_CODES
        assert all(map_order_status(c) == OrderStatus.CANCELLED.value for c in CANCEL_CODES)

    def test_every_family_is_known(self):
        families = {s.family for s in STATUS_TABLE.values()}
        for family in families:
            assert get_statuses_by_family(family)

    def test_lookup_is_case_insensitive(self):
        assert get_status(" s2 ").code == "S2"
        assert get_status(None) is None


class TestMapOrderStatus:

    def test_transit_is_shipped(self):
        assert map_order_status("H2") == OrderStatus.SHIPPED.value
        assert not is_final_status("H2")

    def test_unshipped_awb_is_error(self):
        assert map_order_status("S38") == OrderStatus.AWB_ERROR.value

    def test_unknown_code_with_events_is_shipped(self):
        assert map_order_status("Z42", has_events=True) == OrderStatus.SHIPPED.value

    def test_no_events_has_no_verdict(self):
        assert map_order_status(None, has_events=False) is None


def test_format_status_for_display():
    assert format_status_for_display(None)["name"] == "No events"
    assert format_status_for_display("Z42")["name"] == "Unknown status"
    delivered = format_status_for_display("S2")
    assert delivered["family"] == "delivery"
    assert delivered["color"].startswith("#")


def test_register_unknown_status_upserts(session_factory):
    db = session_factory()
    try:
        assert register_unknown_status(db, "S2", "Livrat") is None
        register_unknown_status(db, "z42", "Cod nou", "2000000001")
        register_unknown_status(db, "Z42", "Cod nou v2", "2000000002")
        db.commit()

        rows = db.query(UnknownAWBStatus).all()
        assert len(rows) == 1
        assert rows[0].status_code == "Z42"
        assert rows[0].seen_count == 2
        assert rows[0].status_name == "Cod nou v2"
        assert rows[0].sample_awb_number == "2000000002"
    finally:
        db.close()
