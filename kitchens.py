"""
Kitchen approval and opening hours

A kitchen starts `pending`. An admin moves it to approved, rejected or
suspended (any of them, any number of times); only an approved kitchen is
active and visible to customers.
"""

from datetime import datetime
from typing import Optional

import structlog

from database import Database
from errors import NotFound, ValidationFailed

logger = structlog.get_logger(__name__)

ADMIN_STATUSES = ("approved", "rejected", "suspended")
PERIODS = ("morning", "afternoon", "evening")


def set_kitchen_status(db: Database, kitchen: dict, status: str, remarks: Optional[str] = "") -> dict:
    if status not in ADMIN_STATUSES:
        raise ValidationFailed("Invalid status value")
    update = {"status": status, "admin_remarks": remarks or "", "is_active": status == "approved"}
    if not db.update_document("kitchen", kitchen["_id"], update):
        raise NotFound("Kitchen not found")
    logger.info("kitchen_status_changed", kitchen_id=kitchen["_id"], previous=kitchen.get("status"), status=status)
    return db.get_document_by_id("kitchen", kitchen["_id"])


def is_kitchen_open(operating_hours: Optional[dict], now: Optional[datetime] = None) -> bool:
    """True when `now` (local wall clock) falls inside any of the three daily windows, ends inclusive."""
    if not operating_hours:
        return False
    current = (now or datetime.now()).strftime("%H:%M")
    for period in PERIODS:
        window = operating_hours.get(period) or {}
        opens, closes = window.get("open"), window.get("close")
        if not opens or not closes:
            continue
        # zero-padded HH:mm strings compare in clock order
        if opens <= current <= closes:
            return True
    return False


def format_time(value: str) -> str:
    if not value:
        return ""
    hour, minute = value.split(":")
    hour = int(hour)
    if hour == 0:
        return f"12:{minute} AM"
    if hour < 12:
        return f"{hour}:{minute} AM"
    if hour == 12:
        return f"12:{minute} PM"
    return f"{hour - 12}:{minute} PM"


def format_operating_hours(operating_hours: Optional[dict]) -> str:
    if not operating_hours:
        return "Hours not available"
    parts = []
    for period in PERIODS:
        window = operating_hours.get(period) or {}
        if window.get("open") and window.get("close"):
            parts.append(f"{period.title()}: {format_time(window['open'])} - {format_time(window['close'])}")
    return " | ".join(parts)


def title_case_city(city: str) -> str:
    return " ".join(word.capitalize() for word in (city or "").strip().split())


def get_owned_kitchen(db: Database, kitchen_id: str, seller: dict) -> dict:
    kitchen = db.get_document_by_id("kitchen", kitchen_id, {"owner_id": seller["_id"]})
    if not kitchen:
        raise NotFound("Kitchen not found or unauthorized")
    return kitchen
