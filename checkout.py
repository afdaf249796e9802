"""
Cart to order conversion

A cart may hold items from several kitchens; checkout turns it into one order
per kitchen, each with its own subtotal, delivery fee, tax and total.
"""

from collections import OrderedDict
from typing import List

import structlog

from config import Settings
from database import Database, oid, session_kw, utcnow
from errors import ServiceError, ValidationFailed
from schemas import Order, OrderItem, StatusChange

logger = structlog.get_logger(__name__)


def money(value: float) -> float:
    return round(value + 0.0, 2)


def partition_by_kitchen(items: List[dict]) -> "OrderedDict[str, List[dict]]":
    groups: "OrderedDict[str, List[dict]]" = OrderedDict()
    for item in items:
        groups.setdefault(item["kitchen_id"], []).append(item)
    return groups


def price_order(items: List[dict], delivery_fee: float, tax_rate: float) -> dict:
    subtotal = sum(item["price"] * item["quantity"] for item in items)
    tax = subtotal * tax_rate
    return {
        "subtotal": money(subtotal),
        "delivery_fee": money(delivery_fee),
        "tax": money(tax),
        "total_amount": money(subtotal + delivery_fee + tax),
    }


def place_orders(db: Database, customer: dict, delivery_address: str, payment_method: str,
                 settings: Settings) -> dict:
    cart = db.get_document("cart", {"user_id": customer["_id"]})
    if not cart or not cart.get("items"):
        raise ValidationFailed("Your cart is empty")
    if not delivery_address or not delivery_address.strip():
        raise ValidationFailed("Delivery address is required")

    orders = []
    skipped = []
    created_ids = []
    with db.transaction() as session:
        try:
            for kitchen_id, items in partition_by_kitchen(cart["items"]).items():
                kitchen = db.get_document_by_id("kitchen", kitchen_id)
                if not kitchen:
                    # the kitchen was deleted after these items were added
                    logger.warning("checkout_kitchen_missing", customer_id=customer["_id"], kitchen_id=kitchen_id,
                                   items=len(items))
                    skipped.append(kitchen_id)
                    continue
                order = Order(
                    customer_id=customer["_id"],
                    seller_id=kitchen["owner_id"],
                    kitchen_id=kitchen_id,
                    items=[OrderItem(menu_item_id=i["menu_item_id"], name=i["name"], price=i["price"],
                                     quantity=i["quantity"], is_veg=i.get("is_veg")) for i in items],
                    delivery_address=delivery_address.strip(),
                    payment_method=payment_method,
                    status_history=[StatusChange(status="pending", timestamp=utcnow())],
                    **price_order(items, settings.delivery_fee, settings.tax_rate),
                )
                order_id = db.create_document("order", order, session=session)
                created_ids.append(order_id)
                orders.append({"_id": order_id, "kitchen_name": kitchen["name"], **order.model_dump()})
        except Exception:
            if session is None and created_ids:
                db["order"].delete_many({"_id": {"$in": [oid(i) for i in created_ids]}})
                logger.warning("checkout_rolled_back", customer_id=customer["_id"], orders=len(created_ids))
            raise

        if not orders:
            raise ServiceError("Failed to create orders")

        db["cart"].update_one(
            {"_id": oid(cart["_id"])},
            {"$set": {"items": [], "total": 0.0, "updated_at": utcnow()}},
            **session_kw(session),
        )

    logger.info("checkout_completed", customer_id=customer["_id"], orders=len(orders), skipped=len(skipped))
    return {"orders": orders, "skipped_kitchens": skipped}
