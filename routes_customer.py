from typing import List, Literal, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field

from checkout import place_orders
from config import Settings, get_settings
from database import Database, get_db, page_window, pagination
from errors import NotFound, ValidationFailed, envelope
from kitchens import title_case_city
from notifications import notify_new_order
from orders import ACTIVE_STATUSES, ALL_STATUSES, submit_item_review, submit_order_review, with_kitchen_names
from schemas import Cart, CartItem
from security import get_current_user, require_customer

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["customer"])


# ============ Request models ==========
class AddToCartRequest(BaseModel):
    menu_item_id: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)


class UpdateCartRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class RemoveFromCartRequest(BaseModel):
    item_id: str = Field(..., min_length=1)


class PlaceOrderRequest(BaseModel):
    address: str = Field(..., min_length=1)
    payment_method: Literal["cash", "online"] = "cash"


class CheckoutRequest(BaseModel):
    delivery_address: str = Field(..., min_length=1)
    payment_method: Literal["cash", "online"]


class OrderReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=500)


class ReviewRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    type: Literal["kitchen", "item"]
    menu_item_id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    title: str = Field("", max_length=100)
    comment: str = Field("", max_length=500)
    tags: List[str] = []


# ===================== Cart =====================
def _cart_total(items: list) -> float:
    return round(sum(i["price"] * i["quantity"] for i in items), 2)


def _get_or_create_cart(db: Database, user: dict) -> dict:
    cart = db.get_document("cart", {"user_id": user["_id"]})
    if cart:
        return cart
    cart_id = db.create_document("cart", Cart(user_id=user["_id"]))
    return db.get_document_by_id("cart", cart_id)


def _save_cart(db: Database, cart: dict, items: list) -> dict:
    total = _cart_total(items)
    db.update_document("cart", cart["_id"], {"items": items, "total": total})
    return {"items": items, "total": total}


def _existing_cart(db: Database, user: dict) -> dict:
    cart = db.get_document("cart", {"user_id": user["_id"]})
    if not cart:
        raise NotFound("Cart not found")
    return cart


@router.get("/api/customer/cart")
def get_cart(user: dict = Depends(require_customer), db: Database = Depends(get_db)):
    cart = _get_or_create_cart(db, user)
    return envelope(data={"cart": {"items": cart["items"], "total": _cart_total(cart["items"])}})


@router.post("/api/customer/cart")
def add_to_cart(payload: AddToCartRequest, user: dict = Depends(require_customer), db: Database = Depends(get_db)):
    menu_item = db.get_document_by_id("menuitem", payload.menu_item_id)
    if not menu_item:
        raise NotFound("Menu item not found")
    if not menu_item.get("is_available"):
        raise ValidationFailed("This item is currently unavailable")
    kitchen = db.get_document_by_id("kitchen", menu_item["kitchen_id"])
    if not kitchen or not kitchen.get("is_currently_open") or kitchen.get("status") != "approved":
        raise ValidationFailed("The kitchen is currently closed or not available")

    cart = _get_or_create_cart(db, user)
    items = list(cart["items"])
    for item in items:
        if item["menu_item_id"] == payload.menu_item_id:
            item["quantity"] += payload.quantity
            break
    else:
        items.append(CartItem(
            menu_item_id=menu_item["_id"],
            kitchen_id=kitchen["_id"],
            name=menu_item["name"],
            price=menu_item["price"],
            quantity=payload.quantity,
            image=menu_item.get("image", ""),
            is_veg=menu_item.get("is_veg", True),
        ).model_dump())
    return envelope(data={"cart": _save_cart(db, cart, items)}, message="Item added to cart")


@router.patch("/api/customer/cart/update")
def update_cart_item(payload: UpdateCartRequest, user: dict = Depends(require_customer),
                     db: Database = Depends(get_db)):
    cart = _existing_cart(db, user)
    items = list(cart["items"])
    for item in items:
        if item["menu_item_id"] == payload.item_id:
            item["quantity"] = payload.quantity
            break
    else:
        raise NotFound("Item not found in cart")
    return envelope(data={"cart": _save_cart(db, cart, items)}, message="Cart updated")


@router.delete("/api/customer/cart/remove")
def remove_cart_item(payload: RemoveFromCartRequest, user: dict = Depends(require_customer),
                     db: Database = Depends(get_db)):
    cart = _existing_cart(db, user)
    items = [i for i in cart["items"] if i["menu_item_id"] != payload.item_id]
    return envelope(data={"cart": _save_cart(db, cart, items)}, message="Item removed from cart")


@router.delete("/api/customer/cart")
def clear_cart(item_id: Optional[str] = None, user: dict = Depends(require_customer),
               db: Database = Depends(get_db)):
    cart = _existing_cart(db, user)
    items = [i for i in cart["items"] if i["menu_item_id"] != item_id] if item_id else []
    message = "Item removed from cart" if item_id else "Cart cleared"
    return envelope(data={"cart": _save_cart(db, cart, items)}, message=message)


# ===================== Checkout =====================
def notify_sellers_of_orders(db: Database, settings: Settings, orders: list) -> None:
    for order in orders:
        seller = db.get_document_by_id("user", order["seller_id"])
        if seller:
            notify_new_order(settings, order, seller, order["kitchen_name"])


def _checkout(db: Database, settings: Settings, user: dict, address: str, payment_method: str,
              background_tasks: BackgroundTasks) -> dict:
    result = place_orders(db, user, address, payment_method, settings)
    background_tasks.add_task(notify_sellers_of_orders, db, settings, result["orders"])
    return result


@router.post("/api/customer/order", status_code=201)
def place_order(payload: PlaceOrderRequest, background_tasks: BackgroundTasks,
                user: dict = Depends(require_customer), db: Database = Depends(get_db),
                settings: Settings = Depends(get_settings)):
    result = _checkout(db, settings, user, payload.address, payload.payment_method, background_tasks)
    return envelope(data=result, message="Order placed successfully")


@router.post("/api/customer/checkout", status_code=201)
def checkout(payload: CheckoutRequest, background_tasks: BackgroundTasks,
             user: dict = Depends(require_customer), db: Database = Depends(get_db),
             settings: Settings = Depends(get_settings)):
    result = _checkout(db, settings, user, payload.delivery_address, payload.payment_method, background_tasks)
    return envelope(data=result, message="Orders placed successfully")


# ===================== Orders =====================
@router.get("/api/customer/orders")
def list_orders(status: str = "all", user: dict = Depends(require_customer), db: Database = Depends(get_db)):
    filt = {"customer_id": user["_id"]}
    if status == "active":
        filt["status"] = {"$in": ACTIVE_STATUSES}
    elif status != "all":
        if status not in ALL_STATUSES:
            raise ValidationFailed("Invalid status filter")
        filt["status"] = status
    orders = db.get_documents("order", filt, sort=[("created_at", -1)])
    return envelope(data={"orders": with_kitchen_names(db, orders)})


@router.get("/api/customer/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(require_customer), db: Database = Depends(get_db)):
    order = db.get_document_by_id("order", order_id, {"customer_id": user["_id"]})
    if not order:
        raise NotFound("Order not found")
    return envelope(data={"order": with_kitchen_names(db, [order])[0]})


# ===================== Reviews =====================
@router.post("/api/orders/{order_id}/review")
def review_order(order_id: str, payload: OrderReviewRequest, user: dict = Depends(require_customer),
                 db: Database = Depends(get_db)):
    result = submit_order_review(db, user, order_id, payload.rating, payload.comment)
    return envelope(data=result, message="Review submitted successfully")


@router.post("/api/reviews", status_code=201)
def create_review(payload: ReviewRequest, user: dict = Depends(require_customer), db: Database = Depends(get_db)):
    if payload.type == "item":
        if not payload.menu_item_id:
            raise ValidationFailed("Menu item ID is required for item reviews")
        result = submit_item_review(db, user, payload.order_id, payload.menu_item_id, payload.rating,
                                    title=payload.title, comment=payload.comment, tags=payload.tags)
    else:
        result = submit_order_review(db, user, payload.order_id, payload.rating, payload.comment,
                                     title=payload.title, tags=payload.tags)
    return envelope(data=result, message="Review submitted successfully")


@router.get("/api/reviews")
def list_reviews(kitchen_id: Optional[str] = None, menu_item_id: Optional[str] = None,
                 seller_id: Optional[str] = None,
                 review_type: Optional[Literal["kitchen", "item"]] = Query(None, alias="type"),
                 page: int = Query(1, ge=1), limit: int = Query(10, ge=1),
                 db: Database = Depends(get_db)):
    filt = {}
    if kitchen_id:
        filt["kitchen_id"] = kitchen_id
    if seller_id:
        filt["seller_id"] = seller_id
    if menu_item_id:
        filt["menu_item_id"] = menu_item_id
        filt["type"] = "item"
    if review_type:
        filt["type"] = review_type
    page, limit, skip = page_window(page, limit)
    total = db.count_documents("review", filt)
    reviews = db.get_documents("review", filt, limit=limit, skip=skip, sort=[("created_at", -1)])
    for review in reviews:
        customer = db.get_document_by_id("user", review["customer_id"])
        review["customer_name"] = customer["name"] if customer else "Anonymous"
    return envelope(data={"reviews": reviews, "pagination": pagination(page, limit, total)})


# ===================== Browse and dashboard =====================
@router.get("/api/customer/kitchens")
def browse_kitchens(city: Optional[str] = None, user: dict = Depends(get_current_user),
                    db: Database = Depends(get_db)):
    kitchens = db.get_documents("kitchen", {"status": "approved", "is_active": True}, sort=[("name", 1)])
    cities = set()
    for kitchen in kitchens:
        kitchen["address"]["city"] = title_case_city(kitchen["address"].get("city", ""))
        if kitchen["address"]["city"]:
            cities.add(kitchen["address"]["city"])
    if city:
        kitchens = [k for k in kitchens if k["address"]["city"] == title_case_city(city)]
    return envelope(data={"kitchens": kitchens, "available_cities": sorted(cities)})


@router.get("/api/customer/dashboard")
def customer_dashboard(user: dict = Depends(require_customer), db: Database = Depends(get_db)):
    total_orders = db.count_documents("order", {"customer_id": user["_id"]})
    active_orders = db.count_documents("order", {"customer_id": user["_id"], "status": {"$in": ACTIVE_STATUSES}})
    recent = db.get_documents("order", {"customer_id": user["_id"]}, limit=5, sort=[("created_at", -1)])
    recent_orders = [
        {
            "id": o["_id"],
            "kitchen_name": o["kitchen_name"],
            "items": len(o["items"]),
            "amount": o["total_amount"],
            "status": o["status"],
            "created_at": o["created_at"],
        }
        for o in with_kitchen_names(db, recent)
    ]
    return envelope(data={
        "total_orders": total_orders,
        "active_orders": active_orders,
        "recent_orders": recent_orders,
    })
