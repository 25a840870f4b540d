"""
Authentication

Argon2 password hashes, HS256 bearer tokens, and the dependencies that
resolve the calling user (and require the admin role) for protected routes.
"""

import logging
from datetime import timedelta
from typing import Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from bson.objectid import ObjectId
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config
from database import Database, serialize, utc_now
from deps import get_db
from errors import BusinessRuleViolation, Forbidden, NotFound, Unauthorized
from schemas import LoginRequest, PasswordChangeRequest, ProfileUpdateRequest, RegisterRequest, User

logger = logging.getLogger(__name__)

_hasher = PasswordHasher()
_bearer = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def create_access_token(user: dict) -> str:
    payload = {
        "sub": str(user["_id"]),
        "email": user["email"],
        "role": user.get("role", "user"),
        "exp": utc_now() + timedelta(days=config.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def public_user(user: dict) -> dict:
    out = serialize(user)
    out.pop("password_hash", None)
    return out


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    db: Database = Depends(get_db),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("No token provided, authorization denied")
    try:
        payload = jwt.decode(
            credentials.credentials, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM]
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token has expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Token is not valid")

    sub = payload.get("sub")
    user = db["user"].find_one({"_id": ObjectId(sub)}) if sub and ObjectId.is_valid(sub) else None
    if not user:
        raise Unauthorized("Token is not valid - user not found")
    if not user.get("is_active", True):
        raise Unauthorized("Account has been deactivated")
    user["id"] = str(user["_id"])
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise Forbidden("Admin access required")
    return user


# Account operations

def register(db: Database, payload: RegisterRequest) -> dict:
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise BusinessRuleViolation("User already exists with this email")
    user = User(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        phone=payload.phone,
    )
    user_id = db.create_document("user", user)
    doc = db["user"].find_one({"_id": ObjectId(user_id)})
    logger.info("Registered user %s", email)
    return {"user": public_user(doc), "token": create_access_token(doc)}


def login(db: Database, payload: LoginRequest) -> dict:
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(user.get("password_hash", ""), payload.password):
        raise Unauthorized("Invalid credentials")
    if not user.get("is_active", True):
        raise Unauthorized("Account has been deactivated")
    return {"user": public_user(user), "token": create_access_token(user)}


def update_profile(db: Database, user: dict, payload: ProfileUpdateRequest) -> dict:
    changes = payload.model_dump(exclude_none=True)
    if changes:
        changes["updated_at"] = utc_now()
        db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    doc = db["user"].find_one({"_id": user["_id"]})
    if not doc:
        raise NotFound("User not found")
    return public_user(doc)


def change_password(db: Database, user: dict, payload: PasswordChangeRequest) -> None:
    if not verify_password(user.get("password_hash", ""), payload.current_password):
        raise BusinessRuleViolation("Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": utc_now()}},
    )
