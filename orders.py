"""
Order lifecycle and ratings

Orders move one step at a time along ORDER_FLOW. `cancelled` is an alternate
terminal state reachable from CANCELLABLE. Once an order is delivered or
cancelled its status is fixed.

Ratings are always recomputed from the stored reviews rather than incremented,
so running a recompute twice, or after an interleaved write, converges on the
correct value.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import structlog
from pymongo.errors import DuplicateKeyError

from database import Database, oid, session_kw, utcnow
from errors import Conflict, InvalidTransition, NotFound, ValidationFailed
from schemas import Review

logger = structlog.get_logger(__name__)

ORDER_FLOW = ["pending", "confirmed", "preparing", "ready", "out_for_delivery", "delivered"]
TERMINAL = {"delivered", "cancelled"}
CANCELLABLE = {"pending", "confirmed", "preparing", "ready"}
ACTIVE_STATUSES = ["pending", "confirmed", "preparing", "ready", "out_for_delivery"]
ALL_STATUSES = ORDER_FLOW + ["cancelled"]


def round_half_up(value: float, places: int = 1) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def next_status(current: str) -> Optional[str]:
    if current not in ORDER_FLOW or current == ORDER_FLOW[-1]:
        return None
    return ORDER_FLOW[ORDER_FLOW.index(current) + 1]


def allowed_transitions(current: str) -> list:
    if current in TERMINAL:
        return []
    allowed = []
    nxt = next_status(current)
    if nxt:
        allowed.append(nxt)
    if current in CANCELLABLE:
        allowed.append("cancelled")
    return allowed


def validate_transition(current: str, new: str) -> None:
    if new not in ALL_STATUSES:
        raise ValidationFailed("Invalid status")
    if current in TERMINAL:
        raise InvalidTransition("Cannot update order in final state")
    if new not in allowed_transitions(current):
        raise InvalidTransition(
            f"Cannot change order status from {current} to {new}",
            data={"current": current, "allowed": allowed_transitions(current)},
        )


def advance_order_status(db: Database, order: dict, new_status: str, note: Optional[str] = None) -> dict:
    validate_transition(order["status"], new_status)
    change = {"status": new_status, "timestamp": utcnow(), "note": note}
    update = {"status": new_status}
    if new_status == "delivered" and order.get("payment_method") == "cash":
        update["payment_status"] = "completed"
    db.update_document("order", order["_id"], update, push={"status_history": change})
    logger.info("order_status_changed", order_id=order["_id"], previous=order["status"], status=new_status)
    return db.get_document_by_id("order", order["_id"])


def with_kitchen_names(db: Database, orders: list) -> list:
    ids = {o["kitchen_id"] for o in orders}
    names = {}
    for kitchen_id in ids:
        kitchen = db.get_document_by_id("kitchen", kitchen_id)
        names[kitchen_id] = kitchen["name"] if kitchen else "Unknown Kitchen"
    return [{**o, "kitchen_name": names[o["kitchen_id"]]} for o in orders]


def recompute_kitchen_rating(db: Database, kitchen_id: str, session=None) -> dict:
    reviewed = db["order"].find(
        {"kitchen_id": kitchen_id, "is_reviewed": True, "review.rating": {"$exists": True}},
        {"review.rating": 1},
        **session_kw(session),
    )
    ratings = [o["review"]["rating"] for o in reviewed]
    if not ratings:
        return {"average": 0.0, "total_reviews": 0}
    summary = {"average": round_half_up(sum(ratings) / len(ratings), 1), "total_reviews": len(ratings)}
    db.update_document("kitchen", kitchen_id, {"ratings": summary}, session=session)
    return summary


def recompute_menu_item_rating(db: Database, menu_item_id: str, session=None) -> dict:
    reviews = db["review"].find({"menu_item_id": menu_item_id, "type": "item"}, {"rating": 1}, **session_kw(session))
    ratings = [r["rating"] for r in reviews]
    if not ratings:
        return {"average": 0.0, "total_reviews": 0}
    summary = {"average": round_half_up(sum(ratings) / len(ratings), 1), "total_reviews": len(ratings)}
    db.update_document("menuitem", menu_item_id, {"ratings": summary}, session=session)
    return summary


def _find_reviewable_order(db: Database, customer: dict, order_id: str) -> dict:
    order = db.get_document_by_id("order", order_id, {"customer_id": customer["_id"]})
    if not order:
        raise NotFound("Order not found")
    if order["status"] != "delivered":
        raise ValidationFailed("You can only review delivered orders")
    return order


def submit_order_review(db: Database, customer: dict, order_id: str, rating: int, comment: str = "",
                        title: str = "", tags: Optional[list] = None) -> dict:
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationFailed("Rating must be between 1 and 5")
    order = _find_reviewable_order(db, customer, order_id)
    if order.get("is_reviewed"):
        raise Conflict("You have already reviewed this order")

    review = {"rating": rating, "comment": comment or "", "created_at": utcnow()}
    with db.transaction() as session:
        # the is_reviewed guard makes the write single-shot even under concurrent submits
        result = db["order"].update_one(
            {"_id": oid(order_id), "is_reviewed": {"$ne": True}},
            {"$set": {"review": review, "is_reviewed": True, "updated_at": utcnow()}},
            **session_kw(session),
        )
        if result.modified_count == 0:
            raise Conflict("You have already reviewed this order")
        db.create_document("review", Review(
            customer_id=customer["_id"], order_id=order_id, kitchen_id=order["kitchen_id"],
            seller_id=order["seller_id"], type="kitchen", rating=rating, title=title,
            comment=comment or "", tags=tags or [],
        ), session=session)
        summary = recompute_kitchen_rating(db, order["kitchen_id"], session=session)

    logger.info("order_reviewed", order_id=order_id, kitchen_id=order["kitchen_id"], rating=rating)
    return {"review": review, "kitchen_ratings": summary}


def submit_item_review(db: Database, customer: dict, order_id: str, menu_item_id: str, rating: int,
                       title: str = "", comment: str = "", tags: Optional[list] = None) -> dict:
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationFailed("Rating must be between 1 and 5")
    order = _find_reviewable_order(db, customer, order_id)
    if menu_item_id not in {i["menu_item_id"] for i in order["items"]}:
        raise ValidationFailed("This item is not part of the order")
    existing = db.get_document("review", {
        "customer_id": customer["_id"], "order_id": order_id, "menu_item_id": menu_item_id, "type": "item",
    })
    if existing:
        raise Conflict("You have already reviewed this item")

    review = Review(
        customer_id=customer["_id"], order_id=order_id, kitchen_id=order["kitchen_id"],
        seller_id=order["seller_id"], menu_item_id=menu_item_id, type="item", rating=rating,
        title=title, comment=comment, tags=tags or [],
    )
    try:
        with db.transaction() as session:
            review_id = db.create_document("review", review, session=session)
            summary = recompute_menu_item_rating(db, menu_item_id, session=session)
    except DuplicateKeyError:
        raise Conflict("You have already reviewed this item")
    logger.info("item_reviewed", order_id=order_id, menu_item_id=menu_item_id, rating=rating)
    return {"review": {"_id": review_id, **review.model_dump()}, "item_ratings": summary}
