import time
from collections import Counter
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field, StrictBool

from config import Settings, get_settings
from database import Database, as_utc, get_db, page_window, pagination, utcnow
from errors import NotFound, ValidationFailed, envelope
from kitchens import get_owned_kitchen
from notifications import notify_kitchen_submitted, notify_order_delivered
from orders import ACTIVE_STATUSES, ALL_STATUSES, advance_order_status, with_kitchen_names
from payments import create_gateway_order, verify_payment_signature
from schemas import (
    Contact, Cuisine, DeliveryInfo, Kitchen, KitchenAddress, License, MenuCategory, Menuitem,
    OperatingHours, PaymentDetails,
)
from security import public_user, require_seller
from subscriptions import (
    LimitStatus, activate_subscription, check_kitchen_limit, check_menu_item_limit, enforce_kitchen_limit,
    enforce_menu_item_limit, get_active_subscription, get_pending_subscription, get_seller_limits,
    record_pending_subscription,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/seller", tags=["seller"])


# ============ Request models ==========
class KitchenCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    cuisine: Cuisine
    address: KitchenAddress
    contact: Contact
    license: License
    images: List[str] = []
    operating_hours: Optional[OperatingHours] = None
    delivery_info: Optional[DeliveryInfo] = None


class KitchenUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    cuisine: Optional[Cuisine] = None
    operating_hours: Optional[OperatingHours] = None
    contact: Optional[Contact] = None
    delivery_info: Optional[DeliveryInfo] = None
    images: Optional[List[str]] = None
    address: Optional[KitchenAddress] = None


class ToggleOpenRequest(BaseModel):
    is_currently_open: StrictBool


class DeliverySettingsUpdate(BaseModel):
    delivery_charge: Optional[float] = Field(None, ge=0)
    minimum_order: Optional[float] = Field(None, ge=0)
    free_delivery_above: Optional[float] = Field(None, ge=0)
    delivery_radius: Optional[float] = Field(None, ge=0)
    estimated_delivery_time: Optional[int] = Field(None, ge=0)


class MenuItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=500)
    price: float = Field(..., ge=0)
    category: MenuCategory
    is_veg: bool = True
    spiciness: str = Field("mild", pattern=r"^(mild|medium|hot)$")
    ingredients: List[str] = []
    image: str = ""
    serving_size: str = "1 person"
    is_available: bool = True


class MenuItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[MenuCategory] = None
    is_veg: Optional[bool] = None
    spiciness: Optional[str] = Field(None, pattern=r"^(mild|medium|hot)$")
    ingredients: Optional[List[str]] = None
    image: Optional[str] = None
    serving_size: Optional[str] = None
    is_available: Optional[bool] = None


class ToggleAvailabilityRequest(BaseModel):
    is_available: StrictBool


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)
    note: Optional[str] = Field(None, max_length=200)


class CreateSubscriptionOrder(BaseModel):
    plan_id: str = Field(..., min_length=1)


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)
    plan_id: str = Field(..., min_length=1)


# Quota checks run as dependencies so they are decided before the body is validated
def kitchen_quota(seller: dict = Depends(require_seller), db: Database = Depends(get_db)) -> LimitStatus:
    return enforce_kitchen_limit(db, seller["_id"])


def menu_item_quota(kitchen_id: str, seller: dict = Depends(require_seller),
                    db: Database = Depends(get_db)) -> LimitStatus:
    kitchen = get_owned_kitchen(db, kitchen_id, seller)
    return enforce_menu_item_limit(db, kitchen)


# ===================== Kitchens =====================
@router.post("/kitchen", status_code=201)
def create_kitchen(payload: KitchenCreate, background_tasks: BackgroundTasks,
                   limits: LimitStatus = Depends(kitchen_quota), seller: dict = Depends(require_seller),
                   db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    kitchen = Kitchen(
        owner_id=seller["_id"],
        name=payload.name.strip(),
        description=payload.description.strip(),
        cuisine=payload.cuisine,
        address=payload.address,
        contact=Contact(phone=payload.contact.phone, email=payload.contact.email or seller["email"]),
        license=payload.license,
        images=payload.images,
        operating_hours=payload.operating_hours or OperatingHours(),
        delivery_info=payload.delivery_info or DeliveryInfo(),
        status="pending",
        is_active=False,
    )
    kitchen_id = db.create_document("kitchen", kitchen)
    created = db.get_document_by_id("kitchen", kitchen_id)
    background_tasks.add_task(notify_kitchen_submitted, settings, created, seller)
    logger.info("kitchen_submitted", kitchen_id=kitchen_id, seller_id=seller["_id"])
    return envelope(
        data={
            "kitchen": created,
            "limits": {
                "current": limits.current + 1,
                "max": limits.max,
                "remaining": limits.remaining if limits.remaining < 0 else limits.remaining - 1,
            },
        },
        message="Kitchen created successfully and submitted for review",
    )


@router.get("/kitchens")
def list_kitchens(seller: dict = Depends(require_seller), db: Database = Depends(get_db)):
    kitchens = db.get_documents("kitchen", {"owner_id": seller["_id"]}, sort=[("created_at", -1)])
    return envelope(data={"kitchens": kitchens, "limits": check_kitchen_limit(db, seller["_id"]).as_dict()})


@router.get("/kitchen/{kitchen_id}")
def get_kitchen(kitchen_id: str, seller: dict = Depends(require_seller), db: Database = Depends(get_db)):
    return envelope(data={"kitchen": get_owned_kitchen(db, kitchen_id, seller)})


@router.patch("/kitchen/{kitchen_id}")
def update_kitchen(kitchen_id: str, payload: KitchenUpdate, seller: dict = Depends(require_seller),
                   db: Database = Depends(get_db)):
    kitchen = get_owned_kitchen(db, kitchen_id, seller)
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise ValidationFailed("No valid fields to update")
    db.update_document("kitchen", kitchen["_id"], updates)
    return envelope(data={"kitchen": db.get_document_by_id("kitchen", kitchen_id)},
                    message="Kitchen updated successfully")


@router.patch("/kitchen/{kitchen_id}/toggle-status")
def toggle_kitchen_open(kitchen_id: str, payload: ToggleOpenRequest, seller: dict = Depends(require_seller),
                        db: Database = Depends(get_db)):
    kitchen = get_owned_kitchen(db, kitchen_id, seller)
    if kitchen["status"] != "approved":
        raise ValidationFailed("Only approved kitchens can be opened or closed")
    db.update_document("kitchen", kitchen["_id"], {"is_currently_open": payload.is_currently_open})
    logger.info("kitchen_open_toggled", kitchen_id=kitchen_id, is_open=payload.is_currently_open)
    return envelope(data={"kitchen": db.get_document_by_id("kitchen", kitchen_id)})


@router.patch("/kitchen/{kitchen_id}/delivery-settings")
def update_delivery_settings(kitchen_id: str, payload: DeliverySettingsUpdate,
                             seller: dict = Depends(require_seller), db: Database = Depends(get_db)):
    kitchen = get_owned_kitchen(db, kitchen_id, seller)
    # only free_delivery_above may be cleared; null for the other fields means "leave as is"
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items()
               if v is not None or k == "free_delivery_above"}
    merged = DeliveryInfo(**{**(kitchen.get("delivery_info") or {}), **changes})
    db.update_document("kitchen", kitchen["_id"], {"delivery_info": merged.model_dump()})
    return envelope(data={"delivery_info": merged.model_dump()}, message="Delivery settings updated successfully")


@router.get("/kitchen/{kitchen_id}/metrics")
def kitchen_metrics(kitchen_id: str, seller: dict = Depends(require_seller), db: Database = Depends(get_db)):
    kitchen = get_owned_kitchen(db, kitchen_id, seller)
    orders = db.get_documents("order", {"kitchen_id": kitchen_id})
    start_of_day = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    delivered = [o for o in orders if o["status"] == "delivered"]
    pending = [o for o in orders if o["status"] not in ("delivered", "cancelled")]
    today = [o for o in orders if as_utc(o["created_at"]) >= start_of_day]
    return envelope(data={
        "total_orders": len(orders),
        "completed_orders": len(delivered),
        "pending_orders": len(pending),
        "cancelled_orders": len(orders) - len(delivered) - len(pending),
        "revenue": round(sum(o["total_amount"] for o in delivered), 2),
        "average_rating": kitchen.get("ratings", {}).get("average", 0),
        "today_orders": len(today),
        "today_revenue": round(sum(o["total_amount"] for o in today if o["status"] == "delivered"), 2),
    })


@router.get("/kitchen/{kitchen_id}/orders")
def kitchen_orders(kitchen_id: str, status: Optional[str] = None, page: int = Query(1, ge=1),
                   limit: int = Query(10, ge=1), seller: dict = Depends(require_seller),
                   db: Database = Depends(get_db)):
    get_owned_kitchen(db, kitchen_id, seller)
    filt = {"kitchen_id": kitchen_id}
    if status and status != "all":
        filt["status"] = {"$in": ACTIVE_STATUSES} if status == "active" else status
    page, limit, skip = page_window(page, limit)
    total = db.count_documents("order", filt)
    orders = db.get_documents("order", filt, limit=limit, skip=skip, sort=[("created_at", -1)])
    return envelope(data={"orders": _with_customers(db, orders), "pagination": pagination(page, limit, total)})


# ===================== Menu =====================
def _owned_menu_item(db: Database, kitchen: dict, item_id: str) -> dict:
    item = db.get_document_by_id("menuitem", item_id, {"kitchen_id": kitchen["_id"]})
    if not item:
        raise NotFound("Menu item not found")
    return item


@router.get("/kitchen/{kitchen_id}/menu")
def list_menu(kitchen_id: str, seller: dict = Depends(require_seller), db: Database = Depends(get_db)):
    kitchen = get_owned_kitchen(db, kitchen_id, seller)
    items = db.get_documents("menuitem", {"kitchen_id": kitchen_id}, sort=[("category", 1), ("name", 1)])
    return envelope(data={"menu_items": items, "limits": check_menu_item_limit(db, kitchen).as_dict()})


@router.post("/kitchen/{kitchen_id}/menu", status_code=201)
def create_menu_item(kitchen_id: str, payload: MenuItemCreate, limits: LimitStatus = Depends(menu_item_quota),
                     db: Database = Depends(get_db)):
    item = Menuitem(kitchen_id=kitchen_id, **payload.model_dump())
    item_id = db.create_document("menuitem", item)
    logger.info("menu_item_created", kitchen_id=kitchen_id, menu_item_id=item_id)
    return envelope(data={"menu_item": db.get_document_by_id("menuitem", item_id)},
                    message="Menu item added successfully")


@router.get("/kitchen/{kitchen_id}/menu/{item_id}")
def get_menu_item(kitchen_id: str, item_id: str, seller: dict = Depends(require_seller),
                  db: Database = Depends(get_db)):
    kitchen = get_owned_kitchen(db, kitchen_id, seller)
    return envelope(data={"menu_item": _owned_menu_item(db, kitchen, item_id)})


@router.patch("/kitchen/{kitchen_id}/menu/{item_id}")
def update_menu_item(kitchen_id: str, item_id: str, payload: MenuItemUpdate, seller: dict = Depends(require_seller),
                     db: Database = Depends(get_db)):
    kitchen = get_owned_kitchen(db, kitchen_id, seller)
    item = _owned_menu_item(db, kitchen, item_id)
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if updates:
        db.update_document("menuitem", item["_id"], updates)
    return envelope(data={"menu_item": db.get_document_by_id("menuitem", item_id)},
                    message="Menu item updated successfully")


@router.delete("/kitchen/{kitchen_id}/menu/{item_id}")
def delete_menu_item(kitchen_id: str, item_id: str, seller: dict = Depends(require_seller),
                     db: Database = Depends(get_db)):
    kitchen = get_owned_kitchen(db, kitchen_id, seller)
    item = _owned_menu_item(db, kitchen, item_id)
    db.delete_document("menuitem", item["_id"])
    return envelope(message="Menu item deleted successfully")


@router.patch("/kitchen/{kitchen_id}/menu/{item_id}/toggle-availability")
def toggle_menu_item(kitchen_id: str, item_id: str, payload: ToggleAvailabilityRequest,
                     seller: dict = Depends(require_seller), db: Database = Depends(get_db)):
    kitchen = get_owned_kitchen(db, kitchen_id, seller)
    item = _owned_menu_item(db, kitchen, item_id)
    db.update_document("menuitem", item["_id"], {"is_available": payload.is_available})
    return envelope(data={"menu_item": db.get_document_by_id("menuitem", item_id)})


# ===================== Orders =====================
def _with_customers(db: Database, orders: list) -> list:
    result = []
    for order in orders:
        customer = db.get_document_by_id("user", order["customer_id"])
        result.append({**order, "customer": public_user(customer) if customer else None})
    return result


def _seller_order(db: Database, seller: dict, order_id: str) -> dict:
    order = db.get_document_by_id("order", order_id, {"seller_id": seller["_id"]})
    if not order:
        raise NotFound("Order not found or you don't have permission")
    return order


def send_delivery_email(db: Database, settings: Settings, order: dict) -> None:
    customer = db.get_document_by_id("user", order["customer_id"])
    kitchen = db.get_document_by_id("kitchen", order["kitchen_id"])
    if customer:
        notify_order_delivered(settings, order, customer, kitchen["name"] if kitchen else "")


@router.get("/orders")
def list_orders(status: Optional[str] = None, seller: dict = Depends(require_seller),
                db: Database = Depends(get_db)):
    filt = {"seller_id": seller["_id"]}
    if status and status != "all":
        if status == "active":
            filt["status"] = {"$in": ACTIVE_STATUSES}
        elif status in ALL_STATUSES:
            filt["status"] = status
        else:
            raise ValidationFailed("Invalid status filter")
    orders = db.get_documents("order", filt, sort=[("created_at", -1)])
    return envelope(data={"orders": _with_customers(db, with_kitchen_names(db, orders))})


@router.get("/orders/{order_id}")
def get_order(order_id: str, seller: dict = Depends(require_seller), db: Database = Depends(get_db)):
    order = _seller_order(db, seller, order_id)
    return envelope(data={"order": _with_customers(db, with_kitchen_names(db, [order]))[0]})


@router.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: OrderStatusUpdate, background_tasks: BackgroundTasks,
                        seller: dict = Depends(require_seller), db: Database = Depends(get_db),
                        settings: Settings = Depends(get_settings)):
    order = _seller_order(db, seller, order_id)
    updated = advance_order_status(db, order, payload.status, payload.note)
    if updated["status"] == "delivered":
        background_tasks.add_task(send_delivery_email, db, settings, updated)
    return envelope(data={"order": updated}, message="Order status updated successfully")


# ===================== Subscription =====================
@router.get("/subscription/current")
def current_subscription(seller: dict = Depends(require_seller), db: Database = Depends(get_db)):
    subscription = get_active_subscription(db, seller["_id"])
    plan = db.get_document_by_id("subscriptionplan", subscription["plan_id"]) if subscription else None
    current_plan = None
    if plan:
        current_plan = {
            "id": plan["_id"],
            "name": plan["name"],
            "price": plan["price"],
            "features": plan["features"],
            "activated_at": subscription.get("activated_at"),
        }
    return envelope(data={
        "has_subscription": plan is not None,
        "current_plan": current_plan,
        "limits": get_seller_limits(db, seller["_id"]).model_dump(),
        "usage": {"kitchens": check_kitchen_limit(db, seller["_id"]).as_dict()},
    })


def _active_plan(db: Database, plan_id: str) -> dict:
    plan = db.get_document_by_id("subscriptionplan", plan_id)
    if not plan or not plan.get("is_active"):
        raise ValidationFailed("Invalid subscription plan")
    return plan


@router.post("/subscription/create-order")
def create_subscription_order(payload: CreateSubscriptionOrder, seller: dict = Depends(require_seller),
                              db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    plan = _active_plan(db, payload.plan_id)
    amount = int(round(plan["price"] * 100))
    receipt = f"sub_{seller['_id'][-8:]}_{str(int(time.time() * 1000))[-8:]}"
    order = create_gateway_order(settings, amount, receipt, notes={
        "seller_id": seller["_id"], "plan_id": plan["_id"], "plan_name": plan["name"],
    })
    record_pending_subscription(db, seller["_id"], plan, order["id"])
    logger.info("subscription_order_created", seller_id=seller["_id"], plan=plan["name"], gateway_order=order["id"])
    return envelope(data={
        "order_id": order["id"],
        "amount": order.get("amount", amount),
        "currency": order.get("currency", "INR"),
        "key_id": settings.razorpay_key_id,
        "plan": {"id": plan["_id"], "name": plan["name"], "price": plan["price"]},
    })


@router.post("/subscription/verify-payment")
def verify_subscription_payment(payload: VerifyPaymentRequest, seller: dict = Depends(require_seller),
                                db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    if not verify_payment_signature(settings, payload.razorpay_order_id, payload.razorpay_payment_id,
                                    payload.razorpay_signature):
        logger.warning("payment_signature_mismatch", seller_id=seller["_id"], gateway_order=payload.razorpay_order_id)
        raise ValidationFailed("Payment verification failed")
    pending = get_pending_subscription(db, seller["_id"], payload.razorpay_order_id)
    # the plan is the one the gateway order was priced for, never the one named in the request
    if payload.plan_id != pending["plan_id"]:
        logger.warning("payment_plan_mismatch", seller_id=seller["_id"], gateway_order=payload.razorpay_order_id,
                       paid_plan=pending["plan_id"], requested_plan=payload.plan_id)
        raise ValidationFailed("Plan does not match the payment order")
    plan = db.get_document_by_id("subscriptionplan", pending["plan_id"])
    subscription = activate_subscription(db, seller["_id"], plan, PaymentDetails(
        razorpay_payment_id=payload.razorpay_payment_id,
        razorpay_order_id=payload.razorpay_order_id,
        razorpay_signature=payload.razorpay_signature,
        amount=pending["amount"],
    ), pending_id=pending["_id"])
    return envelope(
        data={"subscription": subscription, "plan": {"id": plan["_id"], "name": plan["name"], "features": plan["features"]}},
        message="Subscription activated successfully",
    )


# ===================== Dashboard =====================
@router.get("/dashboard")
def seller_dashboard(seller: dict = Depends(require_seller), db: Database = Depends(get_db)):
    now = utcnow()
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start_of_month = datetime(now.year, now.month, 1, tzinfo=timezone.utc)

    kitchens = db.get_documents("kitchen", {"owner_id": seller["_id"]})
    orders = db.get_documents("order", {"seller_id": seller["_id"]}, sort=[("created_at", -1)])
    this_month = [o for o in orders if as_utc(o["created_at"]) >= start_of_month]
    today = [o for o in orders if as_utc(o["created_at"]) >= start_of_day]
    by_status = Counter(o["status"] for o in orders)

    performance = []
    for kitchen in kitchens:
        month_orders = [o for o in this_month if o["kitchen_id"] == kitchen["_id"]]
        performance.append({
            "kitchen_id": kitchen["_id"],
            "name": kitchen["name"],
            "orders": len(month_orders),
            "revenue": round(sum(o["total_amount"] for o in month_orders), 2),
            "rating": kitchen.get("ratings", {}).get("average", 0),
            "status": kitchen["status"],
            "is_open": kitchen.get("is_currently_open", False),
        })

    quantities = Counter()
    for order in orders:
        for item in order["items"]:
            quantities[item["menu_item_id"]] += item["quantity"]
    kitchen_names = {k["_id"]: k["name"] for k in kitchens}
    menu_items = db.get_documents("menuitem", {"kitchen_id": {"$in": list(kitchen_names)}})
    popular = sorted(
        (
            {
                "_id": m["_id"],
                "name": m["name"],
                "kitchen_name": kitchen_names.get(m["kitchen_id"], ""),
                "price": m["price"],
                "category": m["category"],
                "order_count": quantities.get(m["_id"], 0),
                "is_available": m.get("is_available", True),
            }
            for m in menu_items
        ),
        key=lambda m: m["order_count"],
        reverse=True,
    )[:5]

    return envelope(data={
        "kitchens": {
            "total": len(kitchens),
            "active": sum(1 for k in kitchens if k["status"] == "approved" and k.get("is_currently_open")),
            "pending_approval": sum(1 for k in kitchens if k["status"] == "pending"),
        },
        "orders": {
            "total": len(orders),
            "by_status": {s: by_status.get(s, 0) for s in ALL_STATUSES},
        },
        "today": {"orders": len(today), "revenue": round(sum(o["total_amount"] for o in today), 2)},
        "monthly_revenue": round(sum(o["total_amount"] for o in this_month if o["status"] != "cancelled"), 2),
        "kitchen_performance": performance,
        "popular_items": popular,
        "recent_orders": with_kitchen_names(db, orders[:5]),
    })
