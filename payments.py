"""
Payments

The gateway client is built once at startup (see main.lifespan) and handed
to the routes; nothing here keeps module-level client state.
"""

import hashlib
import hmac
import logging
from typing import Optional, Protocol

import config
from database import Database, oid, serialize
from errors import BusinessRuleViolation, GatewaySignatureMismatch, InvalidTransition, NotFound
from orders import apply_cancellation, round_half_up, save_order
from schemas import PaymentConfirmRequest, RefundRequest

logger = logging.getLogger(__name__)

DEFAULT_REFUND_REASON = "Refund processed"


def payment_signature(secret: str, order_id: str, payment_id: str) -> str:
    """Hex HMAC-SHA256 of ``"<order_id>|<payment_id>"``."""
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


class PaymentGateway(Protocol):
    key_id: str

    def create_order(self, amount: int, currency: str, receipt: str) -> dict:
        ...

    def refund(self, payment_id: str, amount: Optional[int], notes: dict) -> dict:
        ...

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...


class RazorpayGateway:
    """Razorpay hosted API. Amounts are in the smallest currency unit (paise)."""

    def __init__(self, key_id: str, key_secret: str):
        self.key_id = key_id
        self._key_secret = key_secret
        import razorpay
        self._client = razorpay.Client(auth=(key_id, key_secret))

    def create_order(self, amount: int, currency: str, receipt: str) -> dict:
        return self._client.order.create(
            data={"amount": amount, "currency": currency, "receipt": receipt, "payment_capture": 1}
        )

    def refund(self, payment_id: str, amount: Optional[int], notes: dict) -> dict:
        data = {"notes": notes}
        if amount is not None:
            data["amount"] = amount
        return self._client.payment.refund(payment_id, data)

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = payment_signature(self._key_secret, order_id, payment_id)
        return hmac.compare_digest(expected, signature)


def build_gateway() -> Optional[RazorpayGateway]:
    if not (config.RAZORPAY_KEY_ID and config.RAZORPAY_KEY_SECRET):
        logger.warning("Razorpay not initialized: keys not found")
        return None
    return RazorpayGateway(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET)


def _check_payable(order: dict) -> None:
    if order["order_status"] == "cancelled":
        raise InvalidTransition("cancelled", "processing", "Order has been cancelled")


def _user_order(db: Database, user_id: str, order_id: str) -> dict:
    order = db["order"].find_one({"_id": oid(order_id, "order_id"), "user_id": user_id})
    if not order:
        raise NotFound("Order not found")
    return order


def create_intent(db: Database, gateway: PaymentGateway, user_id: str, order_id: str) -> dict:
    order = _user_order(db, user_id, order_id)
    if order["payment_info"]["status"] == "completed":
        raise BusinessRuleViolation("Order is already paid")
    _check_payable(order)

    gateway_order = gateway.create_order(
        amount=round_half_up(order["total_amount"] * 100),
        currency=config.PAYMENT_CURRENCY,
        receipt=str(order["_id"]),
    )
    order["payment_info"]["razorpay_order_id"] = gateway_order["id"]
    save_order(db, order, expect_status=order["order_status"])
    return {
        "order_id": gateway_order["id"],
        "amount": gateway_order["amount"],
        "currency": gateway_order["currency"],
        "key_id": gateway.key_id,
    }


def confirm_payment(db: Database, gateway: PaymentGateway, user_id: str, payload: PaymentConfirmRequest) -> dict:
    order = db["order"].find_one({
        "payment_info.razorpay_order_id": payload.razorpay_order_id,
        "user_id": user_id,
    })
    if not order:
        raise NotFound("Order not found")

    if not gateway.verify_signature(
        payload.razorpay_order_id, payload.razorpay_payment_id, payload.razorpay_signature
    ):
        logger.warning("Signature mismatch for gateway order %s", payload.razorpay_order_id)
        raise GatewaySignatureMismatch()
    _check_payable(order)

    previous = order["order_status"]
    order["payment_info"]["status"] = "completed"
    order["payment_info"]["transaction_id"] = payload.razorpay_payment_id
    if previous == "pending":
        order["order_status"] = "processing"
    saved = save_order(db, order, expect_status=previous)
    logger.info("Payment confirmed for order %s", saved["order_number"])
    return serialize(saved)


def payment_status(db: Database, user_id: str, order_id: str) -> dict:
    order = _user_order(db, user_id, order_id)
    return {
        "order_id": str(order["_id"]),
        "order_number": order["order_number"],
        "payment_status": order["payment_info"]["status"],
        "order_status": order["order_status"],
        "total_amount": order["total_amount"],
        "payment_method": order["payment_info"].get("method") or "razorpay",
    }


def refund_payment(db: Database, gateway: PaymentGateway, payload: RefundRequest) -> dict:
    """Refund a completed payment and cancel the order.

    Stock is left as is on this path, unlike user cancellation.
    """
    order = db["order"].find_one({"_id": oid(payload.order_id, "order_id")})
    if not order:
        raise NotFound("Order not found")
    if order["payment_info"]["status"] != "completed":
        raise BusinessRuleViolation("Payment not completed")

    reason = payload.reason or DEFAULT_REFUND_REASON
    refund = gateway.refund(
        order["payment_info"]["transaction_id"],
        amount=round_half_up(payload.amount * 100) if payload.amount else None,
        notes={"reason": reason, "order_id": str(order["_id"])},
    )

    order["payment_info"]["status"] = "refunded"
    try:
        saved = apply_cancellation(db, order, reason, restore_stock=False)
    except InvalidTransition:
        # The money is gone; record it against whatever the order looks like now.
        logger.error(
            "Refund %s processed but order %s changed status meanwhile; recording it unguarded",
            refund.get("id"), order["order_number"],
        )
        current = db["order"].find_one({"_id": order["_id"]})
        if not current:
            raise NotFound("Order not found")
        current["payment_info"]["status"] = "refunded"
        if current["order_status"] == "cancelled":
            saved = save_order(db, current)
        else:
            saved = apply_cancellation(db, current, reason, restore_stock=False, guarded=False)
    logger.info("Refund %s processed for order %s", refund.get("id"), saved["order_number"])
    return {
        "refund_id": refund.get("id"),
        "amount": (refund.get("amount") or 0) / 100,
        "status": refund.get("status"),
        "order": serialize(saved),
    }
