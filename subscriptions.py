"""
Seller plan limits

A seller's limits come from the plan of their active subscription, or from the
free tier when they have none. A limit of -1 means unlimited.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from database import Database, oid, session_kw, utcnow
from errors import Conflict, NotFound, QuotaExceeded
from schemas import PaymentDetails, PlanFeatures, Sellersubscription

logger = structlog.get_logger(__name__)

UNLIMITED = -1
FREE_TIER_LIMITS = PlanFeatures(
    max_kitchens=1,
    max_menu_items_per_kitchen=3,
    priority_support=False,
    analytics_access=False,
    customization=False,
)


@dataclass
class LimitStatus:
    can_create: bool
    current: int
    max: int
    remaining: int

    @classmethod
    def evaluate(cls, current: int, maximum: int) -> "LimitStatus":
        if maximum == UNLIMITED:
            return cls(can_create=True, current=current, max=maximum, remaining=UNLIMITED)
        return cls(
            can_create=current < maximum,
            current=current,
            max=maximum,
            remaining=max(0, maximum - current),
        )

    def as_dict(self) -> dict:
        return {"current": self.current, "max": self.max, "remaining": self.remaining}


def get_active_subscription(db: Database, seller_id: str) -> Optional[dict]:
    return db.get_document("sellersubscription", {"seller_id": seller_id, "status": "active"})


def get_seller_limits(db: Database, seller_id: str) -> PlanFeatures:
    subscription = get_active_subscription(db, seller_id)
    if subscription:
        plan = db.get_document_by_id("subscriptionplan", subscription["plan_id"])
        if plan:
            return PlanFeatures(**plan["features"])
        logger.warning("subscription_plan_missing", seller_id=seller_id, plan_id=subscription["plan_id"])
    return FREE_TIER_LIMITS.model_copy()


def check_kitchen_limit(db: Database, seller_id: str) -> LimitStatus:
    limits = get_seller_limits(db, seller_id)
    current = db.count_documents("kitchen", {"owner_id": seller_id})
    return LimitStatus.evaluate(current, limits.max_kitchens)


def check_menu_item_limit(db: Database, kitchen: dict) -> LimitStatus:
    limits = get_seller_limits(db, kitchen["owner_id"])
    current = db.count_documents("menuitem", {"kitchen_id": kitchen["_id"]})
    return LimitStatus.evaluate(current, limits.max_menu_items_per_kitchen)


def enforce_kitchen_limit(db: Database, seller_id: str) -> LimitStatus:
    status = check_kitchen_limit(db, seller_id)
    if not status.can_create:
        raise QuotaExceeded(
            f"Kitchen limit reached. You can create up to {status.max} kitchens. "
            f"Currently: {status.current}/{status.max}. "
            "Please upgrade your subscription to create more kitchens.",
            current=status.current, maximum=status.max,
        )
    return status


def enforce_menu_item_limit(db: Database, kitchen: dict) -> LimitStatus:
    status = check_menu_item_limit(db, kitchen)
    if not status.can_create:
        raise QuotaExceeded(
            f"Menu item limit reached. You can add up to {status.max} items per kitchen. "
            f"Currently: {status.current}/{status.max}. "
            "Please upgrade your subscription to add more items.",
            current=status.current, maximum=status.max,
        )
    return status


def record_pending_subscription(db: Database, seller_id: str, plan: dict, gateway_order_id: str) -> str:
    """Remember which plan and price a gateway order was created for."""
    return db.create_document("sellersubscription", Sellersubscription(
        seller_id=seller_id,
        plan_id=plan["_id"],
        status="pending",
        gateway_order_id=gateway_order_id,
        amount=plan["price"],
    ))


def get_pending_subscription(db: Database, seller_id: str, gateway_order_id: str) -> dict:
    subscription = db.get_document("sellersubscription", {"seller_id": seller_id, "gateway_order_id": gateway_order_id})
    if not subscription:
        raise NotFound("Payment order not found")
    if subscription["status"] != "pending":
        raise Conflict("This payment has already been processed")
    return subscription


def activate_subscription(db: Database, seller_id: str, plan: dict, payment: PaymentDetails,
                          pending_id: Optional[str] = None) -> dict:
    """Activate the new plan and cancel every other active subscription of the seller.

    With `pending_id` the pending record created alongside the gateway order is
    activated; it can be claimed only once.
    """
    if not plan:
        raise NotFound("Invalid subscription plan")
    now = utcnow()
    with db.transaction() as session:
        if pending_id:
            claimed = db["sellersubscription"].update_one(
                {"_id": oid(pending_id), "seller_id": seller_id, "status": "pending"},
                {"$set": {"status": "active", "activated_at": now, "updated_at": now,
                          "payment_details": payment.model_dump()}},
                **session_kw(session),
            )
            if claimed.modified_count == 0:
                raise Conflict("This payment has already been processed")
            subscription_id = pending_id
            keep = {"_id": {"$ne": oid(pending_id)}}
        else:
            subscription_id = db.create_document("sellersubscription", Sellersubscription(
                seller_id=seller_id,
                plan_id=plan["_id"],
                status="active",
                activated_at=now,
                amount=payment.amount,
                payment_details=payment,
            ), session=session)
            keep = {"_id": {"$ne": oid(subscription_id)}}
        cancelled = db["sellersubscription"].update_many(
            {"seller_id": seller_id, "status": "active", **keep},
            {"$set": {"status": "cancelled", "updated_at": now}},
            **session_kw(session),
        )
    logger.info("subscription_activated", seller_id=seller_id, plan=plan["name"],
                cancelled_previous=cancelled.modified_count)
    return db.get_document_by_id("sellersubscription", subscription_id)
