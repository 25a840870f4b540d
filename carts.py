"""
Cart store

One cart per user holding (product_id, quantity, captured price) lines. The
captured price is refreshed to the product's effective price whenever its
line is written and is what checkout charges.
"""

import logging
from typing import Dict, List, Optional

from catalog import effective_price, is_available
from database import Database, oid, utc_now
from errors import InsufficientStock, NotFound
from schemas import CartAddRequest, CartUpdateRequest

logger = logging.getLogger(__name__)


def _find_cart(db: Database, user_id: str) -> Optional[dict]:
    return db["cart"].find_one({"user_id": user_id})


def _save_items(db: Database, user_id: str, items: List[dict]) -> None:
    now = utc_now()
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )


def _products_for(db: Database, items: List[dict]) -> Dict[str, dict]:
    ids = [oid(i["product_id"]) for i in items]
    if not ids:
        return {}
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})}


def _present(user_id: str, items: List[dict], products: Dict[str, dict]) -> dict:
    lines = []
    total = 0.0
    for item in items:
        prod = products.get(item["product_id"], {})
        subtotal = item["quantity"] * item["price"]
        total += subtotal
        lines.append({
            "product_id": item["product_id"],
            "name": prod.get("name"),
            "image_url": prod.get("image_url"),
            "stock": prod.get("stock"),
            "quantity": item["quantity"],
            "price": item["price"],
            "subtotal": subtotal,
        })
    return {
        "user_id": user_id,
        "items": lines,
        "item_count": sum(i["quantity"] for i in items),
        "total": round(total, 2),
    }


def _active_product(db: Database, product_id: str, message: str) -> dict:
    product = db["product"].find_one({"_id": oid(product_id, "product_id"), "is_active": True})
    if not product:
        raise NotFound(message)
    return product


def get_cart(db: Database, user_id: str) -> dict:
    """Return the user's cart, dropping lines whose product can no longer be bought.

    The filtered list is written back, so reading the cart can change it.
    """
    cart = _find_cart(db, user_id)
    if not cart:
        _save_items(db, user_id, [])
        return _present(user_id, [], {})

    items = cart.get("items", [])
    products = _products_for(db, items)
    kept = [
        i for i in items
        if is_available(products.get(i["product_id"])) and products[i["product_id"]].get("stock", 0) > 0
    ]
    if len(kept) != len(items):
        logger.info("Dropped %d unavailable line(s) from cart of user %s", len(items) - len(kept), user_id)
        _save_items(db, user_id, kept)
    return _present(user_id, kept, products)


def add_item(db: Database, user_id: str, payload: CartAddRequest) -> dict:
    product = _active_product(db, payload.product_id, "Product not found or unavailable")
    cart = _find_cart(db, user_id)
    items = list(cart.get("items", [])) if cart else []
    existing = next((i for i in items if i["product_id"] == payload.product_id), None)

    in_cart = existing["quantity"] if existing else 0
    stock = product.get("stock", 0)
    if in_cart + payload.quantity > stock:
        if existing:
            message = (
                f"Cannot add {payload.quantity} items. "
                f"Only {max(stock - in_cart, 0)} more items available"
            )
        else:
            message = f"Only {stock} items available in stock"
        raise InsufficientStock(product["name"], stock, message=message)

    price = effective_price(product)
    if existing:
        existing["quantity"] = in_cart + payload.quantity
        existing["price"] = price
    else:
        items.append({"product_id": payload.product_id, "quantity": payload.quantity, "price": price})

    _save_items(db, user_id, items)
    return _present(user_id, items, _products_for(db, items))


def update_item(db: Database, user_id: str, payload: CartUpdateRequest) -> dict:
    cart = _find_cart(db, user_id)
    if not cart:
        raise NotFound("Cart not found")
    items = list(cart.get("items", []))
    existing = next((i for i in items if i["product_id"] == payload.product_id), None)
    if existing is None:
        raise NotFound("Item not found in cart")

    if payload.quantity <= 0:
        items.remove(existing)
    else:
        product = _active_product(db, payload.product_id, "Product no longer available")
        stock = product.get("stock", 0)
        if payload.quantity > stock:
            raise InsufficientStock(product["name"], stock, message=f"Only {stock} items available in stock")
        existing["quantity"] = payload.quantity
        existing["price"] = effective_price(product)

    _save_items(db, user_id, items)
    return _present(user_id, items, _products_for(db, items))


def remove_item(db: Database, user_id: str, product_id: str) -> dict:
    cart = _find_cart(db, user_id)
    if not cart:
        raise NotFound("Cart not found")
    items = [i for i in cart.get("items", []) if i["product_id"] != product_id]
    if len(items) == len(cart.get("items", [])):
        raise NotFound("Item not found in cart")
    _save_items(db, user_id, items)
    return _present(user_id, items, _products_for(db, items))


def clear_cart(db: Database, user_id: str) -> dict:
    if not _find_cart(db, user_id):
        raise NotFound("Cart not found")
    _save_items(db, user_id, [])
    return _present(user_id, [], {})
