from collections import Counter
from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field
from pymongo.errors import DuplicateKeyError

from config import Settings, get_settings
from database import Database, get_db, page_window, pagination, utcnow
from errors import Conflict, InvalidTransition, NotFound, ValidationFailed, envelope
from kitchens import ADMIN_STATUSES, set_kitchen_status
from notifications import notify, notify_kitchen_status
from orders import advance_order_status, with_kitchen_names
from schemas import ContactStatus, PlanFeatures, Priority, Subscriptionplan
from security import public_user, require_admin

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ============ Request models ==========
class KitchenStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)
    admin_remarks: Optional[str] = Field("", max_length=500)


class AdminOrderUpdate(BaseModel):
    status: str = Field(..., min_length=1)
    note: Optional[str] = Field(None, max_length=200)


class PlanCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    features: PlanFeatures
    is_active: bool = True


class PlanUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    features: Optional[PlanFeatures] = None
    is_active: Optional[bool] = None


class ContactUpdate(BaseModel):
    message_id: str = Field(..., min_length=1)
    status: Optional[ContactStatus] = None
    admin_notes: Optional[str] = Field(None, max_length=1000)
    priority: Optional[Priority] = None


# ===================== Kitchens =====================
def _kitchen_with_owner(db: Database, kitchen: dict) -> dict:
    owner = db.get_document_by_id("user", kitchen["owner_id"])
    return {**kitchen, "owner": {"name": owner["name"], "email": owner["email"]} if owner else None}


def _change_kitchen_status(db: Database, settings: Settings, background_tasks: BackgroundTasks,
                           kitchen_id: str, status: str, remarks: str) -> dict:
    if status not in ADMIN_STATUSES:
        raise ValidationFailed("Invalid status value")
    kitchen = db.get_document_by_id("kitchen", kitchen_id)
    if not kitchen:
        raise NotFound("Kitchen not found")
    owner = db.get_document_by_id("user", kitchen["owner_id"])
    if not owner:
        raise NotFound("Kitchen owner not found")
    updated = set_kitchen_status(db, kitchen, status, remarks)
    background_tasks.add_task(notify_kitchen_status, settings, updated, owner, status, remarks or "")
    return updated


@router.get("/kitchens")
def list_kitchens(status: Optional[str] = None, admin: dict = Depends(require_admin),
                  db: Database = Depends(get_db)):
    filt = {"status": status} if status and status != "all" else {}
    kitchens = db.get_documents("kitchen", filt, sort=[("created_at", -1)])
    counts = Counter(k["status"] for k in db.get_documents("kitchen"))
    return envelope(data={
        "kitchens": [_kitchen_with_owner(db, k) for k in kitchens],
        "counts": {s: counts.get(s, 0) for s in ("pending",) + ADMIN_STATUSES},
    })


@router.get("/kitchens/{kitchen_id}")
def get_kitchen(kitchen_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    kitchen = db.get_document_by_id("kitchen", kitchen_id)
    if not kitchen:
        raise NotFound("Kitchen not found")
    return envelope(data={"kitchen": _kitchen_with_owner(db, kitchen)})


@router.patch("/kitchens/{kitchen_id}")
def update_kitchen_status(kitchen_id: str, payload: KitchenStatusUpdate, background_tasks: BackgroundTasks,
                          admin: dict = Depends(require_admin), db: Database = Depends(get_db),
                          settings: Settings = Depends(get_settings)):
    kitchen = _change_kitchen_status(db, settings, background_tasks, kitchen_id, payload.status,
                                     payload.admin_remarks)
    return envelope(data={"kitchen": kitchen}, message=f"Kitchen {payload.status} successfully")


@router.post("/kitchenApproval/{kitchen_id}")
def approve_kitchen(kitchen_id: str, background_tasks: BackgroundTasks, admin: dict = Depends(require_admin),
                    db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    kitchen = _change_kitchen_status(db, settings, background_tasks, kitchen_id, "approved", "")
    return envelope(data={"kitchen": kitchen}, message="Kitchen approved successfully")


# ===================== Orders =====================
@router.get("/orders")
def list_orders(status: Optional[str] = None, page: int = Query(1, ge=1), limit: int = Query(20, ge=1),
                admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    filt = {"status": status} if status and status != "all" else {}
    page, limit, skip = page_window(page, limit)
    matched = db.get_documents("order", filt)
    orders = db.get_documents("order", filt, limit=limit, skip=skip, sort=[("created_at", -1)])

    revenue = sum(o["total_amount"] for o in matched)
    distribution = Counter(o["status"] for o in matched)
    summary = {
        "total_orders": len(matched),
        "total_revenue": round(revenue, 2),
        "average_order_value": round(revenue / len(matched), 2) if matched else 0.0,
        "total_delivery_fees": round(sum(o.get("delivery_fee", 0) for o in matched), 2),
        "total_tax": round(sum(o.get("tax", 0) for o in matched), 2),
        "status_distribution": dict(distribution.most_common()),
    }
    return envelope(data={
        "orders": with_kitchen_names(db, orders),
        "summary": summary,
        "pagination": pagination(page, limit, len(matched)),
    })


@router.get("/orders/{order_id}")
def get_order(order_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    order = db.get_document_by_id("order", order_id)
    if not order:
        raise NotFound("Order not found")
    customer = db.get_document_by_id("user", order["customer_id"])
    seller = db.get_document_by_id("user", order["seller_id"])
    return envelope(data={"order": {
        **with_kitchen_names(db, [order])[0],
        "customer": public_user(customer) if customer else None,
        "seller": public_user(seller) if seller else None,
    }})


@router.patch("/orders/{order_id}")
def cancel_order(order_id: str, payload: AdminOrderUpdate, admin: dict = Depends(require_admin),
                 db: Database = Depends(get_db)):
    order = db.get_document_by_id("order", order_id)
    if not order:
        raise NotFound("Order not found")
    if payload.status != "cancelled":
        raise InvalidTransition("Admins can only cancel orders", data={"allowed": ["cancelled"]})
    updated = advance_order_status(db, order, "cancelled", payload.note or "Cancelled by admin")
    logger.info("order_cancelled_by_admin", order_id=order_id, admin_id=admin["_id"])
    return envelope(data={"order": updated}, message="Order cancelled successfully")


# ===================== Subscription plans =====================
@router.get("/subscription/plans")
def list_plans(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return envelope(data={"plans": db.get_documents("subscriptionplan", sort=[("price", 1)])})


@router.post("/subscription/plans", status_code=201)
def create_plan(payload: PlanCreate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    name = payload.name.strip()
    if db.get_document("subscriptionplan", {"name": name}):
        raise Conflict("Plan name already exists")
    plan = Subscriptionplan(name=name, price=payload.price, description=payload.description,
                            features=payload.features, is_active=payload.is_active)
    try:
        plan_id = db.create_document("subscriptionplan", plan)
    except DuplicateKeyError:
        raise Conflict("Plan name already exists")
    logger.info("plan_created", plan_id=plan_id, name=name)
    return envelope(data={"plan": db.get_document_by_id("subscriptionplan", plan_id)},
                    message="Subscription plan created successfully")


@router.put("/subscription/plans/{plan_id}")
def update_plan(plan_id: str, payload: PlanUpdate, admin: dict = Depends(require_admin),
                db: Database = Depends(get_db)):
    plan = db.get_document_by_id("subscriptionplan", plan_id)
    if not plan:
        raise NotFound("Subscription plan not found")
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "name" in updates:
        updates["name"] = updates["name"].strip()
        clash = db.get_document("subscriptionplan", {"name": updates["name"]})
        if clash and clash["_id"] != plan_id:
            raise Conflict("Plan name already exists")
    if updates:
        db.update_document("subscriptionplan", plan_id, updates)
    return envelope(data={"plan": db.get_document_by_id("subscriptionplan", plan_id)},
                    message="Subscription plan updated successfully")


@router.delete("/subscription/plans/{plan_id}")
def toggle_plan(plan_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    plan = db.get_document_by_id("subscriptionplan", plan_id)
    if not plan:
        raise NotFound("Subscription plan not found")
    is_active = not plan.get("is_active", True)
    db.update_document("subscriptionplan", plan_id, {"is_active": is_active})
    state = "activated" if is_active else "deactivated"
    return envelope(data={"plan": db.get_document_by_id("subscriptionplan", plan_id)},
                    message=f"Subscription plan {state} successfully")


# ===================== Contact messages =====================
@router.get("/contact")
def list_contact_messages(status: Optional[str] = None, category: Optional[str] = None,
                          priority: Optional[str] = None, page: int = Query(1, ge=1),
                          limit: int = Query(10, ge=1), admin: dict = Depends(require_admin),
                          db: Database = Depends(get_db)):
    filt = {}
    for field, value in (("status", status), ("category", category), ("priority", priority)):
        if value and value != "all":
            filt[field] = value
    page, limit, skip = page_window(page, limit)
    total = db.count_documents("contactmessage", filt)
    messages = db.get_documents("contactmessage", filt, limit=limit, skip=skip, sort=[("created_at", -1)])
    counts = Counter(m["status"] for m in db.get_documents("contactmessage"))
    return envelope(data={
        "messages": messages,
        "stats": {s: counts.get(s, 0) for s in ("pending", "in-progress", "resolved", "closed")},
        "pagination": pagination(page, limit, total),
    })


@router.put("/contact")
def update_contact_message(payload: ContactUpdate, background_tasks: BackgroundTasks,
                           admin: dict = Depends(require_admin), db: Database = Depends(get_db),
                           settings: Settings = Depends(get_settings)):
    message = db.get_document_by_id("contactmessage", payload.message_id)
    if not message:
        raise NotFound("Contact message not found")
    updates = payload.model_dump(exclude_unset=True, exclude_none=True, exclude={"message_id"})
    if not updates:
        raise ValidationFailed("Nothing to update")
    if updates.get("status") == "resolved" and message["status"] != "resolved":
        updates["resolved_at"] = utcnow()
        updates["resolved_by"] = admin["_id"]
    db.update_document("contactmessage", message["_id"], updates)

    if "status" in updates and updates["status"] != message["status"]:
        background_tasks.add_task(
            notify, settings, message["email"], "contact_status",
            name=message["name"], subject=message["subject"], status=updates["status"],
            notes=updates.get("admin_notes", ""),
        )
    logger.info("contact_updated", message_id=message["_id"], admin_id=admin["_id"], status=updates.get("status"))
    return envelope(data={"message": db.get_document_by_id("contactmessage", message["_id"])},
                    message="Contact message updated successfully")
