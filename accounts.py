from typing import Dict, Iterable, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, serialize_doc, to_object_id
from errors import AppError, bad_request, duplicate, forbidden, not_found, unauthorized
from logger import get_logger
from schemas import Role, User, utcnow
from security import Principal, hash_password, issue_token, verify_password

_logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6


def user_out(doc: dict) -> dict:
    """Public view of a user document; never includes the password hash."""
    user = serialize_doc(doc)
    return {
        "id": user["id"],
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", Role.USER.value),
        "is_disabled": user.get("is_disabled", False),
        "is_banned": user.get("is_banned", False),
        "is_verified": user.get("is_verified", False),
        "last_login": user.get("last_login"),
        "created_at": user.get("created_at"),
    }


def load_user(db: Database, user_id: str) -> dict:
    user = db["user"].find_one({"_id": to_object_id(user_id, "user id")})
    if not user:
        raise not_found("User not found")
    return user


def user_names(db: Database, user_ids: Iterable[str]) -> Dict[str, str]:
    """Map user id -> display name for the given ids; unknown ids are left out."""
    oids = []
    for uid in set(user_ids):
        try:
            oids.append(to_object_id(uid))
        except AppError:
            continue
    if not oids:
        return {}
    return {str(u["_id"]): u.get("name", "") for u in db["user"].find({"_id": {"$in": oids}}, {"name": 1})}


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def register(db: Database, name: str, email: str, password: str, role: Role = Role.USER) -> dict:
    email = _normalize_email(email)
    if len(password) < MIN_PASSWORD_LENGTH:
        raise bad_request(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if db["user"].find_one({"email": email}):
        raise duplicate("Account with that email already exists")
    user = User(name=name, email=email, password_hash=hash_password(password), role=role)
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise duplicate("Account with that email already exists")
    _logger.info(f"Registered user {user_id} ({role.value})")
    return user_out(load_user(db, user_id))


def login(db: Database, email: str, password: str, admin_only: bool = False) -> dict:
    user = db["user"].find_one({"email": _normalize_email(email)})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise unauthorized("Invalid email or password")
    if admin_only and user.get("role") != Role.ADMIN.value:
        raise forbidden("Access denied. Admin privileges required.")
    if user.get("is_disabled") or user.get("is_banned"):
        raise forbidden("Account has been disabled. Please contact support")

    now = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now
    token = issue_token(str(user["_id"]), user["email"], user.get("role", Role.USER.value))
    _logger.info(f"User {user['_id']} logged in")
    return {"token": token, "user": user_out(user)}


def get_profile(db: Database, user_id: str) -> dict:
    return user_out(load_user(db, user_id))


def update_profile(
    db: Database,
    principal: Principal,
    name: Optional[str] = None,
    email: Optional[str] = None,
    current_password: Optional[str] = None,
) -> dict:
    user = load_user(db, principal.user_id)
    update = {}
    if name is not None:
        update["name"] = name
    if email is not None and _normalize_email(email) != user["email"]:
        # changing the login identity needs the current password
        if not current_password:
            raise bad_request("Current password is required to change email")
        if not verify_password(current_password, user.get("password_hash", "")):
            raise bad_request("Current password is incorrect")
        email = _normalize_email(email)
        if db["user"].find_one({"email": email, "_id": {"$ne": user["_id"]}}):
            raise duplicate("Account with that email already exists")
        update["email"] = email
    if update:
        update["updated_at"] = utcnow()
        try:
            db["user"].update_one({"_id": user["_id"]}, {"$set": update})
        except DuplicateKeyError:
            raise duplicate("Account with that email already exists")
        _logger.info(f"Profile updated for user {principal.user_id}: {sorted(update)}")
    return get_profile(db, principal.user_id)


def change_password(db: Database, principal: Principal, current_password: str, new_password: str) -> None:
    user = load_user(db, principal.user_id)
    if not verify_password(current_password, user.get("password_hash", "")):
        raise bad_request("Current password is incorrect")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise bad_request(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")
    if new_password == current_password:
        raise bad_request("The new password cannot be the same as the current password")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
    )
    _logger.info(f"Password changed for user {principal.user_id}")
