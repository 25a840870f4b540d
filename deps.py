"""FastAPI dependencies for the shared clients built at startup."""

from fastapi import Request

from database import Database
from errors import ServiceUnavailable
from payments import PaymentGateway


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise ServiceUnavailable("Database not available")
    return db


def get_gateway(request: Request) -> PaymentGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise ServiceUnavailable("Razorpay not available in this environment")
    return gateway
