"""
Catalog

Product listing, lookup and admin maintenance. Stock is only ever changed
here through an explicit admin update; the checkout engine owns every other
stock write.
"""

import logging
import math
from typing import Optional

from database import Database, oid, serialize, utc_now
from errors import NotFound
from schemas import PLACEHOLDER_IMAGE, Product, ProductCreateRequest, ProductUpdateRequest

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {"created_at", "price", "name", "stock"}


def effective_price(product: dict) -> float:
    """Discount price if set, else list price."""
    discount = product.get("discount_price")
    return discount if discount else product["price"]


def stock_status(product: dict) -> str:
    stock = product.get("stock", 0)
    if stock == 0:
        return "Out of Stock"
    if stock <= 5:
        return "Low Stock"
    return "In Stock"


def is_available(product: Optional[dict]) -> bool:
    return bool(product) and product.get("is_active", False)


def present(product: dict) -> dict:
    out = serialize(product)
    out["effective_price"] = effective_price(product)
    out["stock_status"] = stock_status(product)
    return out


def pagination(page: int, limit: int, total: int) -> dict:
    return {"current": page, "pages": math.ceil(total / limit) if limit else 0, "total": total, "limit": limit}


def list_products(
    db: Database,
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort_by: Optional[str] = None,
    sort_order: str = "asc",
    page: int = 1,
    limit: int = 50,
) -> dict:
    filt: dict = {"is_active": True}
    if category:
        filt["category"] = category
    if search:
        filt["$text"] = {"$search": search}
    if min_price is not None or max_price is not None:
        filt["price"] = {}
        if min_price is not None:
            filt["price"]["$gte"] = min_price
        if max_price is not None:
            filt["price"]["$lte"] = max_price

    if sort_by in SORTABLE_FIELDS:
        sort = [(sort_by, -1 if sort_order == "desc" else 1)]
    else:
        sort = [("created_at", -1), ("_id", -1)]

    cursor = db["product"].find(filt).sort(sort).skip((page - 1) * limit).limit(limit)
    products = [present(p) for p in cursor]
    total = db["product"].count_documents(filt)
    return {"products": products, "pagination": pagination(page, limit, total)}


def get_product(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": oid(product_id, "product_id"), "is_active": True})
    if not product:
        raise NotFound("Product not found")
    return present(product)


def create_product(db: Database, payload: ProductCreateRequest) -> dict:
    data = payload.model_dump()
    data["image_url"] = data.get("image_url") or PLACEHOLDER_IMAGE
    product_id = db.create_document("product", Product(**data))
    logger.info("Created product %s (%s)", product_id, payload.name)
    return present(db["product"].find_one({"_id": oid(product_id)}))


def update_product(db: Database, product_id: str, payload: ProductUpdateRequest) -> dict:
    _id = oid(product_id, "product_id")
    if not db["product"].find_one({"_id": _id}):
        raise NotFound("Product not found")
    changes = payload.model_dump(exclude_unset=True)
    changes["updated_at"] = utc_now()
    db["product"].update_one({"_id": _id}, {"$set": changes})
    return present(db["product"].find_one({"_id": _id}))


def delete_product(db: Database, product_id: str) -> None:
    """Soft delete: the product stays for historical orders but is hidden."""
    _id = oid(product_id, "product_id")
    result = db["product"].update_one({"_id": _id}, {"$set": {"is_active": False, "updated_at": utc_now()}})
    if result.matched_count == 0:
        raise NotFound("Product not found")
    logger.info("Deactivated product %s", product_id)


def list_categories(db: Database) -> list:
    return sorted(db["product"].distinct("category", {"is_active": True}))


def products_by_category(db: Database, category: str, page: int = 1, limit: int = 10) -> dict:
    filt = {"category": category, "is_active": True}
    cursor = db["product"].find(filt).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    products = [present(p) for p in cursor]
    total = db["product"].count_documents(filt)
    return {"products": products, "pagination": pagination(page, limit, total)}
