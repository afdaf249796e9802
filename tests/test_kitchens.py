from datetime import datetime

import pytest

from errors import ValidationFailed
from kitchens import format_operating_hours, is_kitchen_open, set_kitchen_status, title_case_city

HOURS = {
    "morning": {"open": "07:00", "close": "10:00"},
    "afternoon": {"open": "12:00", "close": "15:00"},
    "evening": {"open": "18:00", "close": "21:00"},
}


@pytest.mark.parametrize("clock,expected", [
    ("07:00", True), ("09:59", True), ("10:00", True), ("11:00", False),
    ("13:30", True), ("17:59", False), ("21:00", True), ("23:15", False),
])
def test_is_kitchen_open(clock, expected):
    hour, minute = map(int, clock.split(":"))
    assert is_kitchen_open(HOURS, datetime(2024, 5, 1, hour, minute)) is expected


def test_is_kitchen_open_without_hours():
    assert is_kitchen_open(None) is False
    assert is_kitchen_open({"morning": {"open": "", "close": "10:00"}}, datetime(2024, 5, 1, 8, 0)) is False


def test_format_operating_hours():
    assert format_operating_hours(HOURS) == (
        "Morning: 7:00 AM - 10:00 AM | Afternoon: 12:00 PM - 3:00 PM | Evening: 6:00 PM - 9:00 PM"
    )
    assert format_operating_hours({"evening": {"open": "00:30", "close": "23:45"}}) == "Evening: 12:30 AM - 11:45 PM"
    assert format_operating_hours(None) == "Hours not available"


def test_title_case_city():
    assert title_case_city("  new   delhi ") == "New Delhi"
    assert title_case_city("PUNE") == "Pune"


@pytest.mark.parametrize("status,active", [("approved", True), ("rejected", False), ("suspended", False)])
def test_status_sets_active_flag(db, make_user, make_kitchen, status, active):
    kitchen = make_kitchen(make_user(role="seller"), status="pending")
    updated = set_kitchen_status(db, kitchen, status, "checked documents")
    assert updated["status"] == status
    assert updated["is_active"] is active
    assert updated["admin_remarks"] == "checked documents"


def test_status_is_reenterable(db, make_user, make_kitchen):
    kitchen = make_kitchen(make_user(role="seller"), status="pending")
    for status in ("approved", "suspended", "approved", "rejected", "approved"):
        kitchen = set_kitchen_status(db, kitchen, status, "")
    assert kitchen["is_active"] is True


def test_pending_is_not_an_admin_decision(db, make_user, make_kitchen):
    kitchen = make_kitchen(make_user(role="seller"))
    with pytest.raises(ValidationFailed):
        set_kitchen_status(db, kitchen, "pending", "")


def test_admin_approval_notifies_owner(client, login, make_user, make_kitchen, sent_emails, db):
    owner = make_user(role="seller", name="Meera Nair")
    kitchen = make_kitchen(owner, status="pending")
    login(make_user(role="admin"))

    resp = client.post(f"/api/admin/kitchenApproval/{kitchen['_id']}")
    assert resp.status_code == 200
    assert resp.json()["data"]["kitchen"]["is_active"] is True
    assert sent_emails[-1]["to"] == owner["email"]
    assert "approved" in sent_emails[-1]["html"]

    resp = client.patch(f"/api/admin/kitchens/{kitchen['_id']}",
                        json={"status": "suspended", "admin_remarks": "Hygiene complaint"})
    assert resp.status_code == 200
    assert resp.json()["message"] == "Kitchen suspended successfully"
    stored = db.get_document_by_id("kitchen", kitchen["_id"])
    assert stored["is_active"] is False
    assert stored["admin_remarks"] == "Hygiene complaint"
    assert "Hygiene complaint" in sent_emails[-1]["html"]


def test_admin_rejects_unknown_status(client, login, make_user, make_kitchen):
    kitchen = make_kitchen(make_user(role="seller"), status="pending")
    login(make_user(role="admin"))
    resp = client.patch(f"/api/admin/kitchens/{kitchen['_id']}", json={"status": "closed"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid status value"


def test_notification_failure_keeps_approval(client, login, make_user, make_kitchen, db, monkeypatch):
    import notifications

    def broken(*args, **kwargs):
        raise notifications.NotificationError("provider down")

    monkeypatch.setattr(notifications, "send_email", broken)
    kitchen = make_kitchen(make_user(role="seller"), status="pending")
    login(make_user(role="admin"))
    assert client.post(f"/api/admin/kitchenApproval/{kitchen['_id']}").status_code == 200
    assert db.get_document_by_id("kitchen", kitchen["_id"])["status"] == "approved"


def test_only_approved_kitchens_are_public(client, make_user, make_kitchen, make_menu_item):
    seller = make_user(role="seller")
    approved = make_kitchen(seller, name="Open Kitchen")
    pending = make_kitchen(seller, name="Waiting Kitchen", status="pending")
    make_menu_item(approved, name="Dal")
    make_menu_item(approved, name="Rice", is_available=False)

    resp = client.get(f"/api/kitchen/{approved['_id']}")
    assert resp.status_code == 200
    assert resp.json()["data"]["kitchen"]["total_items"] == 1
    assert client.get(f"/api/kitchen/{pending['_id']}").status_code == 404
    assert client.get("/api/kitchen/not-an-id").status_code == 404

    menu = client.get(f"/api/kitchen/{approved['_id']}/menu").json()["data"]["menu_items"]
    assert [m["name"] for m in menu] == ["Dal"]


def test_customer_browse_lists_cities(client, login, make_user, make_kitchen):
    seller = make_user(role="seller")
    make_kitchen(seller, name="A", city="pune")
    make_kitchen(seller, name="B", city="NAVI MUMBAI")
    make_kitchen(seller, name="C", city="goa", status="suspended")
    login(make_user(role="customer"))

    data = client.get("/api/customer/kitchens").json()["data"]
    assert [k["name"] for k in data["kitchens"]] == ["A", "B"]
    assert data["available_cities"] == ["Navi Mumbai", "Pune"]


def test_seller_toggle_requires_approval(client, login, make_user, make_kitchen):
    seller = make_user(role="seller")
    pending = make_kitchen(seller, status="pending")
    approved = make_kitchen(seller, name="Live")
    login(seller)

    resp = client.patch(f"/api/seller/kitchen/{pending['_id']}/toggle-status", json={"is_currently_open": False})
    assert resp.status_code == 400
    resp = client.patch(f"/api/seller/kitchen/{approved['_id']}/toggle-status", json={"is_currently_open": False})
    assert resp.status_code == 200
    assert resp.json()["data"]["kitchen"]["is_currently_open"] is False
    resp = client.patch(f"/api/seller/kitchen/{approved['_id']}/toggle-status", json={"is_currently_open": "no"})
    assert resp.status_code == 400


def test_seller_update_ignores_restricted_fields(client, login, make_user, make_kitchen, db):
    seller = make_user(role="seller")
    kitchen = make_kitchen(seller, status="pending")
    login(seller)
    resp = client.patch(f"/api/seller/kitchen/{kitchen['_id']}",
                        json={"name": "Renamed", "status": "approved", "is_active": True})
    assert resp.status_code == 200
    stored = db.get_document_by_id("kitchen", kitchen["_id"])
    assert stored["name"] == "Renamed"
    assert stored["status"] == "pending"
    assert stored["is_active"] is False


def test_seller_cannot_read_foreign_kitchen(client, login, make_user, make_kitchen):
    kitchen = make_kitchen(make_user(role="seller"))
    login(make_user(role="seller"))
    assert client.get(f"/api/seller/kitchen/{kitchen['_id']}").status_code == 404


def test_public_kitchen_reports_whether_it_is_open_now(client, make_user, make_kitchen, db):
    seller = make_user(role="seller")
    all_day = {period: {"open": "00:00", "close": "23:59"} for period in ("morning", "afternoon", "evening")}
    serving = make_kitchen(seller, name="All Day")
    paused = make_kitchen(seller, name="Paused", is_open=False)
    for kitchen in (serving, paused):
        db.update_document("kitchen", kitchen["_id"], {"operating_hours": all_day})

    assert client.get(f"/api/kitchen/{serving['_id']}").json()["data"]["kitchen"]["is_open_now"] is True
    assert client.get(f"/api/kitchen/{paused['_id']}").json()["data"]["kitchen"]["is_open_now"] is False

    db.update_document("kitchen", serving["_id"], {"operating_hours": {}})
    assert client.get(f"/api/kitchen/{serving['_id']}").json()["data"]["kitchen"]["is_open_now"] is False
