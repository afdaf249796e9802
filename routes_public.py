from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pydantic import BaseModel, EmailStr, Field

from config import Settings, get_settings
from database import Database, get_db, page_window, pagination
from errors import NotFound, envelope
from kitchens import format_operating_hours, is_kitchen_open
from notifications import notify
from ratelimit import RateLimiter, client_ip
from schemas import ContactCategory, Contactmessage
from security import get_optional_user

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["public"])

# 5 submissions per 15 minutes per client address
contact_limiter = RateLimiter(limit=5, interval=15 * 60, max_tokens=500)

CATEGORY_PRIORITY = {"order": "high", "payment": "high", "technical": "medium"}


def _approved_kitchen(db: Database, kitchen_id: str) -> dict:
    kitchen = db.get_document_by_id("kitchen", kitchen_id, {"status": "approved", "is_active": True})
    if not kitchen:
        raise NotFound("Kitchen not found")
    return kitchen


# ===================== Kitchens =====================
@router.get("/api/kitchen/{kitchen_id}")
def get_kitchen(kitchen_id: str, db: Database = Depends(get_db)):
    kitchen = _approved_kitchen(db, kitchen_id)
    kitchen["total_items"] = db.count_documents("menuitem", {"kitchen_id": kitchen_id, "is_available": True})
    kitchen["hours_text"] = format_operating_hours(kitchen.get("operating_hours"))
    kitchen["is_open_now"] = bool(kitchen.get("is_currently_open")) and is_kitchen_open(kitchen.get("operating_hours"))
    return envelope(data={"kitchen": kitchen})


@router.get("/api/kitchen/{kitchen_id}/reviews")
def kitchen_reviews(kitchen_id: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1),
                    db: Database = Depends(get_db)):
    page, limit, skip = page_window(page, limit)
    filt = {"kitchen_id": kitchen_id, "status": "delivered", "is_reviewed": True}
    total = db.count_documents("order", filt)
    orders = db.get_documents("order", filt, limit=limit, skip=skip, sort=[("review.created_at", -1)])
    reviews = []
    for order in orders:
        customer = db.get_document_by_id("user", order["customer_id"])
        reviews.append({
            "order_id": order["_id"],
            "customer_name": customer["name"] if customer else "Anonymous",
            "rating": order["review"]["rating"],
            "comment": order["review"].get("comment", ""),
            "created_at": order["review"].get("created_at"),
            "items": [i["name"] for i in order["items"]],
        })
    return envelope(data={"reviews": reviews, "pagination": pagination(page, limit, total)})


@router.get("/api/kitchen/{kitchen_id}/menu")
def kitchen_menu(kitchen_id: str, db: Database = Depends(get_db)):
    kitchen = _approved_kitchen(db, kitchen_id)
    items = db.get_documents("menuitem", {"kitchen_id": kitchen_id, "is_available": True},
                             sort=[("category", 1), ("name", 1)])
    return envelope(data={"kitchen": {"_id": kitchen["_id"], "name": kitchen["name"]}, "menu_items": items})


@router.get("/api/subscription/plans")
def list_active_plans(db: Database = Depends(get_db)):
    plans = db.get_documents("subscriptionplan", {"is_active": True}, sort=[("price", 1)])
    return envelope(data={"plans": plans})


# ===================== Contact =====================
class ContactRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    subject: str = Field(..., min_length=1, max_length=200)
    category: ContactCategory
    message: str = Field(..., min_length=10, max_length=2000)


def contact_rate_limit(request: Request) -> str:
    ip = client_ip(request)
    contact_limiter.check(ip)
    return ip


def send_contact_emails(settings: Settings, contact: dict) -> None:
    notify(settings, settings.admin_email, "contact_admin",
           name=contact["name"], email=contact["email"], subject=contact["subject"],
           category=contact["category"], priority=contact["priority"].upper(), message=contact["message"])
    notify(settings, contact["email"], "contact_confirmation", name=contact["name"], subject=contact["subject"])


@router.post("/api/contact", status_code=201)
def submit_contact(payload: ContactRequest, background_tasks: BackgroundTasks,
                   ip: str = Depends(contact_rate_limit), user: Optional[dict] = Depends(get_optional_user),
                   db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    contact = Contactmessage(
        name=payload.name.strip(),
        email=payload.email.strip().lower(),
        subject=payload.subject.strip(),
        category=payload.category,
        message=payload.message.strip(),
        user_id=user["_id"] if user else None,
        priority=CATEGORY_PRIORITY.get(payload.category, "low"),
    )
    message_id = db.create_document("contactmessage", contact)
    background_tasks.add_task(send_contact_emails, settings, contact.model_dump())
    logger.info("contact_received", message_id=message_id, category=contact.category, ip=ip,
                authenticated=user is not None)
    return envelope(
        data={
            "id": message_id,
            "status": contact.status,
            "priority": contact.priority,
            "is_authenticated": user is not None,
        },
        message="Thank you for your message! We'll get back to you within 24 hours.",
    )
