"""
Checkout

Turns a cart (or a single product, for buy-now) into an order inside one
transaction: every product is re-read inside the session, its stock is
decremented with a conditional update, the order is inserted, and for cart
checkout the cart is emptied. Any failure aborts the whole transaction, so
no stock is left decremented and no order is left behind.
"""

import logging
from typing import List, Optional, Tuple

from pymongo.client_session import ClientSession

from catalog import effective_price, is_available
from database import Database, oid, serialize, utc_now
from errors import BusinessRuleViolation, InsufficientStock, ProductUnavailable, ShopError
from orders import build_order
from schemas import BuyNowRequest, CheckoutRequest, OrderItem

logger = logging.getLogger(__name__)

# (product_id, quantity, captured price or None for the live effective price)
Line = Tuple[str, int, Optional[float]]


def _reserve(db: Database, lines: List[Line], session: Optional[ClientSession]) -> List[OrderItem]:
    items = []
    for product_id, quantity, captured_price in lines:
        product = db["product"].find_one({"_id": oid(product_id, "product_id")}, session=session)
        if not is_available(product):
            raise ProductUnavailable(product["name"] if product else product_id)
        if product.get("stock", 0) < quantity:
            raise InsufficientStock(product["name"], product.get("stock", 0))

        price = captured_price if captured_price is not None else effective_price(product)

        # The stock guard in the filter makes check and decrement one write.
        result = db["product"].update_one(
            {"_id": product["_id"], "is_active": True, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utc_now()}},
            session=session,
        )
        if result.matched_count == 0:
            current = db["product"].find_one({"_id": product["_id"]}, session=session) or {}
            raise InsufficientStock(product["name"], current.get("stock", 0))

        items.append(OrderItem(
            product_id=product_id,
            name=product["name"],
            quantity=quantity,
            price=price,
            total=quantity * price,
        ))
    return items


def checkout_cart(db: Database, user_id: str, payload: CheckoutRequest) -> dict:
    """Place an order for everything in the user's cart and empty the cart."""
    try:
        with db.transaction() as session:
            cart = db["cart"].find_one({"user_id": user_id}, session=session)
            if not cart or not cart.get("items"):
                raise BusinessRuleViolation("Cart is empty")

            lines = [(i["product_id"], i["quantity"], i["price"]) for i in cart["items"]]
            items = _reserve(db, lines, session)
            order = build_order(
                user_id,
                items,
                payload.shipping_address,
                payment_method=payload.payment_method,
                notes=payload.notes,
            )
            order["_id"] = db["order"].insert_one(order, session=session).inserted_id
            db["cart"].update_one(
                {"_id": cart["_id"]},
                {"$set": {"items": [], "updated_at": utc_now()}},
                session=session,
            )
    except ShopError as exc:
        logger.warning("Checkout rejected for user %s: %s", user_id, exc.message)
        raise

    logger.info("Order %s placed by user %s (total %s)", order["order_number"], user_id, order["total_amount"])
    return serialize(order)


def buy_now(db: Database, user_id: str, payload: BuyNowRequest) -> dict:
    """Place an order for a single product at its current effective price, bypassing the cart."""
    try:
        with db.transaction() as session:
            items = _reserve(db, [(payload.product_id, payload.quantity, None)], session)
            order = build_order(
                user_id,
                items,
                payload.shipping_address,
                payment_method=payload.payment_method,
                notes=payload.notes,
            )
            order["_id"] = db["order"].insert_one(order, session=session).inserted_id
    except ShopError as exc:
        logger.warning("Buy-now rejected for user %s: %s", user_id, exc.message)
        raise

    logger.info("Order %s placed by user %s (total %s)", order["order_number"], user_id, order["total_amount"])
    return serialize(order)
