import hashlib
import hmac
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

import config
from database import get_db, to_object_id
from errors import AppError, ErrorKind, forbidden, unauthorized
from logger import get_logger
from schemas import Role

_logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

_PBKDF2_ROUNDS = 120_000


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, passed explicitly into every service call."""

    user_id: str
    email: str
    role: str = Role.USER.value

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


def hash_password(password: str) -> str:
    salt = os.urandom(16).hex()
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), _PBKDF2_ROUNDS).hex()
    return f"{salt}${digest}"


def verify_password(password: str, password_hash: str) -> bool:
    salt, _, expected = (password_hash or "").partition("$")
    if not expected:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), _PBKDF2_ROUNDS).hex()
    return hmac.compare_digest(digest, expected)


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=config.JWT_EXPIRE_DAYS)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise unauthorized("Invalid token")


def issue_token(user_id: str, email: str, role: str) -> str:
    return create_token({"id": user_id, "email": email, "role": role})


def verify_token(token: str) -> Principal:
    payload = decode_token(token)
    user_id = payload.get("id")
    if not user_id:
        raise unauthorized("Invalid token payload")
    return Principal(user_id=user_id, email=payload.get("email", ""), role=payload.get("role", Role.USER.value))


def _load_principal(db: Database, token: str) -> Principal:
    claims = verify_token(token)
    user = db["user"].find_one({"_id": to_object_id(claims.user_id, "user id")})
    if not user:
        _logger.debug(f"Token for missing user {claims.user_id}")
        raise unauthorized("User not found")
    if user.get("is_disabled") or user.get("is_banned"):
        raise forbidden("Account has been disabled")
    # role comes from the store, so a demoted admin loses access immediately
    return Principal(user_id=str(user["_id"]), email=user["email"], role=user.get("role", Role.USER.value))


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
) -> Principal:
    if credentials is None:
        raise unauthorized("No token provided")
    try:
        return _load_principal(db, credentials.credentials)
    except AppError as e:
        if e.kind == ErrorKind.BAD_REQUEST:
            raise unauthorized("Invalid token payload")
        raise


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Database = Depends(get_db),
) -> Optional[Principal]:
    """Like get_current_user, but anonymous callers get None instead of an error."""
    if credentials is None:
        return None
    try:
        return _load_principal(db, credentials.credentials)
    except AppError:
        return None


def require_admin(user: Principal = Depends(get_current_user)) -> Principal:
    if not user.is_admin:
        raise forbidden("Admin only")
    return user
