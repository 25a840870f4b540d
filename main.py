import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import auth
import carts
import catalog
import checkout
import config
import orders
import payments
from database import Database, connect, utc_now
from deps import get_db, get_gateway
from errors import ShopError, ValidationFailed
from payments import PaymentGateway
from schemas import (
    BuyNowRequest,
    CancelOrderRequest,
    CartAddRequest,
    CartUpdateRequest,
    CheckoutRequest,
    LoginRequest,
    OrderStatus,
    PasswordChangeRequest,
    PaymentConfirmRequest,
    PaymentIntentRequest,
    PaymentStatus,
    ProductCreateRequest,
    ProductUpdateRequest,
    ProfileUpdateRequest,
    RefundRequest,
    RegisterRequest,
    StatusUpdateRequest,
)

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("shop")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.db = None
    if config.DATABASE_URL:
        app.state.db = connect(config.DATABASE_URL, config.DATABASE_NAME)
        app.state.db.ensure_indexes()
    else:
        logger.warning("DATABASE_URL not set; data endpoints will answer 503")
    app.state.gateway = payments.build_gateway()
    yield
    if app.state.db is not None:
        app.state.db.client.close()


app = FastAPI(title="E-commerce API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Utilities

def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body: dict = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def fail(status_code: int, message: str, errors: Optional[list] = None) -> JSONResponse:
    body: dict = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    errors = exc.errors if isinstance(exc, ValidationFailed) else None
    return fail(exc.status_code, exc.message, errors)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"][1:]) or str(err["loc"][0]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return fail(400, "Validation failed", errors)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = "Route not found" if exc.status_code == 404 else str(exc.detail)
    return fail(exc.status_code, message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return fail(500, "Internal server error")


# Routes
@app.get("/")
def root():
    return {"message": "E-commerce API running"}


@app.get("/api/health")
def health():
    return {"message": "E-commerce API is running successfully!", "timestamp": utc_now().isoformat()}


@app.get("/test")
def test_database(request: Request):
    db: Optional[Database] = getattr(request.app.state, "db", None)
    resp = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if db is not None:
        resp["database"] = "✅ Available"
        try:
            resp["collections"] = db.list_collection_names()[:10]
            resp["database"] = "✅ Connected & Working"
            resp["connection_status"] = "Connected"
        except Exception as e:
            resp["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return resp


# Auth
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    return ok(auth.register(db, payload), "User registered successfully")


@app.post("/api/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    return ok(auth.login(db, payload), "Login successful")


@app.get("/api/auth/me")
def me(user: dict = Depends(auth.get_current_user)):
    return ok({"user": auth.public_user(user)})


@app.put("/api/auth/profile")
def update_profile(
    payload: ProfileUpdateRequest,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
):
    return ok({"user": auth.update_profile(db, user, payload)}, "Profile updated successfully")


@app.put("/api/auth/change-password")
def change_password(
    payload: PasswordChangeRequest,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
):
    auth.change_password(db, user, payload)
    return ok(message="Password changed successfully")


# Products
@app.get("/api/products")
def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort_by: Optional[str] = None,
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: Database = Depends(get_db),
):
    return ok(catalog.list_products(
        db, category, search, min_price, max_price, sort_by, sort_order, page, limit
    ))


@app.get("/api/products/categories")
def list_categories(db: Database = Depends(get_db)):
    return ok({"categories": catalog.list_categories(db)})


@app.get("/api/products/category/{category}")
def products_by_category(
    category: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    return ok(catalog.products_by_category(db, category, page, limit))


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return ok({"product": catalog.get_product(db, product_id)})


@app.post("/api/products", status_code=201)
def create_product(
    payload: ProductCreateRequest,
    admin: dict = Depends(auth.require_admin),
    db: Database = Depends(get_db),
):
    return ok({"product": catalog.create_product(db, payload)}, "Product created successfully")


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdateRequest,
    admin: dict = Depends(auth.require_admin),
    db: Database = Depends(get_db),
):
    return ok({"product": catalog.update_product(db, product_id, payload)}, "Product updated successfully")


@app.delete("/api/products/{product_id}")
def delete_product(
    product_id: str,
    admin: dict = Depends(auth.require_admin),
    db: Database = Depends(get_db),
):
    catalog.delete_product(db, product_id)
    return ok(message="Product deleted successfully")


# Cart
@app.get("/api/cart")
def get_cart(user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return ok({"cart": carts.get_cart(db, user["id"])})


@app.post("/api/cart/add")
def add_to_cart(
    payload: CartAddRequest,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
):
    return ok({"cart": carts.add_item(db, user["id"], payload)}, "Item added to cart successfully")


@app.put("/api/cart/update")
def update_cart_item(
    payload: CartUpdateRequest,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
):
    return ok({"cart": carts.update_item(db, user["id"], payload)}, "Cart updated successfully")


@app.delete("/api/cart/remove/{product_id}")
def remove_from_cart(
    product_id: str,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
):
    return ok({"cart": carts.remove_item(db, user["id"], product_id)}, "Item removed from cart successfully")


@app.delete("/api/cart/clear")
def clear_cart(user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return ok({"cart": carts.clear_cart(db, user["id"])}, "Cart cleared successfully")


# Orders
@app.get("/api/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
):
    return ok(orders.list_user_orders(db, user["id"], page, limit))


@app.get("/api/orders/admin/all")
def list_all_orders(
    status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(auth.require_admin),
    db: Database = Depends(get_db),
):
    return ok(orders.list_all_orders(db, status, payment_status, page, limit))


@app.put("/api/orders/admin/{order_id}/status")
def update_order_status(
    order_id: str,
    payload: StatusUpdateRequest,
    admin: dict = Depends(auth.require_admin),
    db: Database = Depends(get_db),
):
    order = orders.update_status(db, order_id, payload.status, payload.tracking_number)
    return ok({"order": order}, "Order status updated successfully")


@app.post("/api/orders/checkout", status_code=201)
def checkout_cart(
    payload: CheckoutRequest,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
):
    return ok({"order": checkout.checkout_cart(db, user["id"], payload)}, "Order placed successfully")


@app.post("/api/orders/buy-now", status_code=201)
def buy_now(
    payload: BuyNowRequest,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
):
    return ok({"order": checkout.buy_now(db, user["id"], payload)}, "Order placed successfully")


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return ok({"order": orders.get_user_order(db, user["id"], order_id)})


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    payload: Optional[CancelOrderRequest] = None,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
):
    reason = payload.reason if payload else None
    order = orders.cancel_order(db, user["id"], order_id, reason)
    return ok({"order": order}, "Order cancelled successfully")


# Payment
@app.post("/api/payment/create-intent")
def create_payment_intent(
    payload: PaymentIntentRequest,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return ok(payments.create_intent(db, gateway, user["id"], payload.order_id))


@app.post("/api/payment/confirm")
def confirm_payment(
    payload: PaymentConfirmRequest,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return ok({"order": payments.confirm_payment(db, gateway, user["id"], payload)}, "Payment successful")


@app.get("/api/payment/status/{order_id}")
def get_payment_status(
    order_id: str,
    user: dict = Depends(auth.get_current_user),
    db: Database = Depends(get_db),
):
    return ok(payments.payment_status(db, user["id"], order_id))


@app.post("/api/payment/refund")
def refund_payment(
    payload: RefundRequest,
    admin: dict = Depends(auth.require_admin),
    db: Database = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    return ok(payments.refund_payment(db, gateway, payload), "Refund processed successfully")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
