"""
Order store

Orders are written through two functions only: build_order (new orders) and
save_order (every later write). Both run recompute_totals, so
``subtotal == sum(item.total)`` and
``total_amount == subtotal + shipping_cost + tax`` hold for every stored
order no matter what the caller put in those fields.

Status lifecycle::

    pending -> processing -> shipped -> delivered
    pending | processing -> cancelled

Users may cancel only pending/processing orders. The admin status update is
an unchecked override and accepts any status.
"""

import logging
import math
import secrets
import string
import time
from typing import List, Optional, Tuple

from pymongo.client_session import ClientSession

import config
from catalog import pagination
from database import Database, oid, serialize, utc_now
from errors import InvalidTransition, NotFound
from schemas import Order, OrderItem, PaymentInfo, ShippingAddress

logger = logging.getLogger(__name__)

NON_CANCELLABLE = ("shipped", "delivered", "cancelled")
DEFAULT_CANCEL_REASON = "Cancelled by user"

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def derive_order_number() -> str:
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(5))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_charges(subtotal: float) -> Tuple[float, int]:
    """Shipping cost and tax for a subtotal.

    Shipping is free strictly above the threshold; tax is a fixed rate of the
    subtotal rounded to a whole currency unit.
    """
    shipping_cost = 0 if subtotal > config.FREE_SHIPPING_THRESHOLD else config.FLAT_SHIPPING_COST
    tax = round_half_up(subtotal * config.TAX_RATE)
    return shipping_cost, tax


def recompute_totals(order: dict) -> dict:
    """Return a copy of ``order`` with subtotal and total_amount derived from its lines."""
    out = dict(order)
    subtotal = sum(item["total"] for item in out.get("items", []))
    out["subtotal"] = subtotal
    out["total_amount"] = subtotal + out.get("shipping_cost", 0) + out.get("tax", 0)
    return out


def build_order(
    user_id: str,
    items: List[OrderItem],
    shipping_address: ShippingAddress,
    payment_method: str = "cod",
    notes: Optional[str] = None,
) -> dict:
    subtotal = sum(item.total for item in items)
    shipping_cost, tax = compute_charges(subtotal)
    order = Order(
        order_number=derive_order_number(),
        user_id=user_id,
        items=items,
        shipping_address=shipping_address,
        payment_info=PaymentInfo(method=payment_method, status="pending"),
        order_status="pending",
        shipping_cost=shipping_cost,
        tax=tax,
        notes=notes,
    )
    doc = recompute_totals(order.model_dump())
    now = utc_now()
    doc["created_at"] = now
    doc["updated_at"] = now
    return doc


def save_order(
    db: Database,
    order: dict,
    session: Optional[ClientSession] = None,
    expect_status: Optional[str] = None,
) -> dict:
    """Persist a whole order document.

    With ``expect_status`` the write only lands if the stored order is still
    in that status; otherwise InvalidTransition is raised and nothing changes.
    """
    doc = recompute_totals(order)
    doc["updated_at"] = utc_now()
    filt = {"_id": doc["_id"]}
    if expect_status is not None:
        filt["order_status"] = expect_status
    result = db["order"].replace_one(filt, doc, session=session)
    if result.matched_count == 0:
        if expect_status is not None:
            message = "Order cannot be cancelled at this stage" if doc["order_status"] == "cancelled" else None
            raise InvalidTransition(expect_status, doc["order_status"], message)
        raise NotFound("Order not found")
    return doc


def apply_cancellation(
    db: Database,
    order: dict,
    reason: str,
    restore_stock: bool,
    session: Optional[ClientSession] = None,
    guarded: bool = True,
) -> dict:
    """Mark ``order`` cancelled and, when ``restore_stock`` is set, put its quantities back.

    Callers decide the stock policy: user cancellation restores stock,
    gateway refunds do not. With ``guarded`` the write only lands if the
    stored status is still the one ``order`` was read with.
    """
    previous = order["order_status"]
    updated = dict(order)
    updated["order_status"] = "cancelled"
    updated["cancelled_at"] = utc_now()
    updated["cancellation_reason"] = reason
    saved = save_order(db, updated, session=session, expect_status=previous if guarded else None)

    if restore_stock:
        for item in order["items"]:
            db["product"].update_one(
                {"_id": oid(item["product_id"])},
                {"$inc": {"stock": item["quantity"]}},
                session=session,
            )
    return saved


def cancel_order(db: Database, user_id: str, order_id: str, reason: Optional[str] = None) -> dict:
    _id = oid(order_id, "order_id")
    with db.transaction() as session:
        order = db["order"].find_one({"_id": _id, "user_id": user_id}, session=session)
        if not order:
            raise NotFound("Order not found")
        if order["order_status"] in NON_CANCELLABLE:
            raise InvalidTransition(
                order["order_status"], "cancelled", "Order cannot be cancelled at this stage"
            )
        saved = apply_cancellation(
            db, order, reason or DEFAULT_CANCEL_REASON, restore_stock=True, session=session
        )
    logger.info("Order %s cancelled by user %s", saved["order_number"], user_id)
    return serialize(saved)


def update_status(
    db: Database, order_id: str, status: str, tracking_number: Optional[str] = None
) -> dict:
    """Administrative override: set any status without checking the lifecycle.

    Stock is never touched here. ``delivered`` stamps delivered_at and
    ``cancelled`` stamps cancelled_at, so admin cancellations carry the
    same timestamp as user ones.
    """
    order = db["order"].find_one({"_id": oid(order_id, "order_id")})
    if not order:
        raise NotFound("Order not found")
    previous = order["order_status"]
    order["order_status"] = status
    if tracking_number:
        order["tracking_number"] = tracking_number
    if status == "delivered":
        order["delivered_at"] = utc_now()
    elif status == "cancelled":
        order["cancelled_at"] = utc_now()
    saved = save_order(db, order)
    logger.info("Order %s status %s -> %s (admin)", saved["order_number"], previous, status)
    return serialize(saved)


def get_user_order(db: Database, user_id: str, order_id: str) -> dict:
    order = db["order"].find_one({"_id": oid(order_id, "order_id"), "user_id": user_id})
    if not order:
        raise NotFound("Order not found")
    return serialize(order)


def list_user_orders(db: Database, user_id: str, page: int = 1, limit: int = 10) -> dict:
    filt = {"user_id": user_id}
    cursor = db["order"].find(filt).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    orders = [serialize(o) for o in cursor]
    total = db["order"].count_documents(filt)
    return {"orders": orders, "pagination": pagination(page, limit, total)}


def list_all_orders(
    db: Database,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    filt: dict = {}
    if status:
        filt["order_status"] = status
    if payment_status:
        filt["payment_info.status"] = payment_status
    cursor = db["order"].find(filt).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    orders = [serialize(o) for o in cursor]
    total = db["order"].count_documents(filt)
    return {"orders": orders, "pagination": pagination(page, limit, total)}
