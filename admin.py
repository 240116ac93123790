"""
Admin operations: moderation and reporting across every collection.

Every function takes the acting ``Principal`` and refuses non-admins.
Mutations append an AdminLog entry; a failed audit write is logged and
does not undo or abort the action itself.
"""
import re
from datetime import datetime, timezone
from typing import Optional

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

import accounts
from accounts import load_user, user_names, user_out
from catalog import load_phone, phone_changes, phone_out, phones_out, remove_phone_everywhere
from checkout import order_out
from database import create_document, get_documents, get_page, page_response, paginate_list, serialize_doc, to_object_id
from errors import bad_request, duplicate, forbidden, not_found
from logger import get_logger
from reviews import find_review, pull_review, review_out, set_review_hidden
from schemas import AdminAction, AdminLog, Role, TargetType, from_cents, utcnow
from security import Principal

_logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 10


def _require_admin(principal: Principal) -> None:
    if principal is None or not principal.is_admin:
        raise forbidden("Access denied. Admin privileges required.")


def log_action(db: Database, principal: Principal, action: AdminAction, target_type: TargetType, target_id: str, details: str = "") -> None:
    entry = AdminLog(
        admin_user_id=principal.user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        details=details,
    )
    try:
        create_document(db, "adminlog", entry)
    except PyMongoError:
        _logger.exception(f"Failed to write admin log {action.value} {target_type.value} {target_id}")


def admin_login(db: Database, email: str, password: str) -> dict:
    return accounts.login(db, email, password, admin_only=True)


def dashboard_stats(db: Database, principal: Principal) -> dict:
    _require_admin(principal)
    phones = db["phone"].find({}, {"reviews": 1})
    return {
        "total_users": db["user"].count_documents({"role": {"$ne": Role.ADMIN.value}}),
        "total_listings": db["phone"].count_documents({}),
        "total_reviews": sum(len(p.get("reviews") or []) for p in phones),
        "total_sales": db["order"].count_documents({}),
    }


# ---- Users ----

def list_users(
    db: Database,
    principal: Principal,
    search: Optional[str] = None,
    is_disabled: Optional[bool] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    _require_admin(principal)
    filt = {}
    if search and search.strip():
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"email": pattern}]
    if is_disabled is not None:
        filt["is_disabled"] = is_disabled
    docs, total = get_page(db, "user", filt, [("created_at", DESCENDING), ("_id", DESCENDING)], page, limit)
    return page_response([user_out(d) for d in docs], total, page, limit)


def get_user_detail(db: Database, principal: Principal, user_id: str) -> dict:
    _require_admin(principal)
    user = load_user(db, user_id)
    orders = get_documents(db, "order", {"user_id": user_id})
    reviews_count = sum(
        1
        for p in db["phone"].find({"reviews.reviewer_id": user_id}, {"reviews": 1})
        for r in p["reviews"]
        if r["reviewer_id"] == user_id
    )
    detail = user_out(user)
    detail["wishlist"] = user.get("wishlist") or []
    detail["stats"] = {
        "listed_phones_count": db["phone"].count_documents({"seller_id": user_id}),
        "orders_count": len(orders),
        "reviews_count": reviews_count,
        "total_spent": from_cents(sum(o["total_cents"] for o in orders)),
    }
    return detail


def update_user(db: Database, principal: Principal, user_id: str, fields: dict) -> dict:
    _require_admin(principal)
    user = load_user(db, user_id)
    update = {k: fields[k] for k in ("name", "is_disabled") if fields.get(k) is not None}
    if fields.get("email"):
        email = fields["email"].strip().lower()
        if db["user"].find_one({"email": email, "_id": {"$ne": user["_id"]}}):
            raise duplicate("Account with that email already exists")
        update["email"] = email
    if update:
        update["updated_at"] = utcnow()
        db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    log_action(db, principal, AdminAction.UPDATE_USER, TargetType.USER, user_id, "Updated user information")
    _logger.info(f"User {user_id} updated by admin {principal.user_id}")
    return user_out(load_user(db, user_id))


def toggle_user_disabled(db: Database, principal: Principal, user_id: str) -> dict:
    _require_admin(principal)
    user = load_user(db, user_id)
    disabled = not user.get("is_disabled", False)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"is_disabled": disabled, "updated_at": utcnow()}})
    action = AdminAction.DISABLE_USER if disabled else AdminAction.ENABLE_USER
    log_action(db, principal, action, TargetType.USER, user_id, "Toggled user disabled status")
    _logger.info(f"User {user_id} disabled={disabled} by admin {principal.user_id}")
    return user_out(load_user(db, user_id))


def delete_user(db: Database, principal: Principal, user_id: str) -> None:
    """Delete a user with their listings, cart, orders and authored reviews."""
    _require_admin(principal)
    user = load_user(db, user_id)
    for phone in get_documents(db, "phone", {"seller_id": user_id}):
        remove_phone_everywhere(db, phone)
    db["cart"].delete_many({"user_id": user_id})
    db["order"].delete_many({"user_id": user_id})
    db["phone"].update_many({"reviews.reviewer_id": user_id}, {"$pull": {"reviews": {"reviewer_id": user_id}}})
    db["user"].delete_one({"_id": user["_id"]})
    log_action(db, principal, AdminAction.DELETE_USER, TargetType.USER, user_id, "Deleted user and all associated data")
    _logger.info(f"User {user_id} deleted by admin {principal.user_id}")


# ---- Phones ----

def list_phones(db: Database, principal: Principal, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    _require_admin(principal)
    docs, total = get_page(db, "phone", {}, [("created_at", DESCENDING), ("_id", DESCENDING)], page, limit)
    return page_response(phones_out(db, docs), total, page, limit)


def admin_update_phone(db: Database, principal: Principal, phone_id: str, fields: dict) -> dict:
    _require_admin(principal)
    phone = load_phone(db, phone_id)
    update = phone_changes(fields)
    if fields.get("sales_count") is not None:
        if fields["sales_count"] < 0:
            raise bad_request("Sales count must be at least 0")
        update["sales_count"] = fields["sales_count"]
    if update:
        update["updated_at"] = utcnow()
        db["phone"].update_one({"_id": phone["_id"]}, {"$set": update})
    log_action(db, principal, AdminAction.UPDATE_PHONE, TargetType.PHONE, phone_id, f"Updated fields: {', '.join(sorted(update))}")
    _logger.info(f"Phone {phone_id} updated by admin {principal.user_id}")
    return phone_out(load_phone(db, phone_id), user_names(db, [phone["seller_id"]]).get(phone["seller_id"]))


def admin_toggle_phone(db: Database, principal: Principal, phone_id: str) -> dict:
    _require_admin(principal)
    phone = load_phone(db, phone_id)
    disabled = not phone.get("is_disabled", False)
    db["phone"].update_one({"_id": phone["_id"]}, {"$set": {"is_disabled": disabled, "updated_at": utcnow()}})
    action = AdminAction.DISABLE_PHONE if disabled else AdminAction.ENABLE_PHONE
    log_action(db, principal, action, TargetType.PHONE, phone_id, "Toggled phone disabled status")
    _logger.info(f"Phone {phone_id} disabled={disabled} by admin {principal.user_id}")
    return phone_out(load_phone(db, phone_id))


def admin_delete_phone(db: Database, principal: Principal, phone_id: str) -> None:
    _require_admin(principal)
    phone = load_phone(db, phone_id)
    remove_phone_everywhere(db, phone)
    log_action(db, principal, AdminAction.DELETE_PHONE, TargetType.PHONE, phone_id, f"Deleted phone: {phone['title']}")


# ---- Reviews ----

def list_all_reviews(
    db: Database,
    principal: Principal,
    visible: Optional[bool] = None,
    reviewer_id: Optional[str] = None,
    phone_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    """Every review in the store, unfiltered by viewer.

    ``visible=True`` keeps only shown reviews, ``visible=False`` only hidden ones.
    """
    _require_admin(principal)
    filt = {"_id": to_object_id(phone_id, "phone id")} if phone_id else {}
    needle = search.strip().lower() if search and search.strip() else None
    rows = []
    for phone in get_documents(db, "phone", filt):
        for review in phone.get("reviews") or []:
            if visible is not None and review.get("is_hidden", False) == visible:
                continue
            if reviewer_id and review["reviewer_id"] != reviewer_id:
                continue
            if needle and needle not in review.get("comment", "").lower():
                continue
            rows.append((phone, review))
    rows.sort(key=lambda pr: pr[1]["created_at"], reverse=True)
    result = paginate_list(rows, page, limit)
    names = user_names(db, (r["reviewer_id"] for _, r in result["content"]))
    content = []
    for phone, review in result["content"]:
        item = review_out(review, names)
        item["phone"] = {"id": str(phone["_id"]), "title": phone["title"]}
        content.append(item)
    result["content"] = content
    return result


def admin_toggle_review(
    db: Database, principal: Principal, phone_id: str, review_id: str, is_hidden: Optional[bool] = None
) -> dict:
    """Set a review's hidden flag, or flip it when no state is given."""
    _require_admin(principal)
    phone = load_phone(db, phone_id)
    review = find_review(phone, review_id)
    hidden = (not review.get("is_hidden", False)) if is_hidden is None else is_hidden
    updated = set_review_hidden(db, phone, review_id, hidden)
    action = AdminAction.HIDE_REVIEW if hidden else AdminAction.SHOW_REVIEW
    log_action(db, principal, action, TargetType.REVIEW, review_id, f"Phone {phone_id}")
    _logger.info(f"Review {review_id} hidden={hidden} by admin {principal.user_id}")
    return review_out(updated, user_names(db, [updated["reviewer_id"]]))


def admin_delete_review(db: Database, principal: Principal, phone_id: str, review_id: str) -> None:
    _require_admin(principal)
    phone = load_phone(db, phone_id)
    pull_review(db, phone, review_id)
    log_action(db, principal, AdminAction.DELETE_REVIEW, TargetType.REVIEW, review_id, f"Phone {phone_id}")
    _logger.info(f"Review {review_id} deleted by admin {principal.user_id}")


# ---- Orders ----

def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


def list_orders(
    db: Database,
    principal: Principal,
    user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    _require_admin(principal)
    filt = {"user_id": user_id} if user_id else {}
    created = {}
    if start_date is not None:
        created["$gte"] = _as_utc(start_date)
    if end_date is not None:
        created["$lte"] = _as_utc(end_date)
    if created:
        filt["created_at"] = created
    docs, total = get_page(db, "order", filt, [("created_at", DESCENDING), ("_id", DESCENDING)], page, limit)
    names = user_names(db, (d["user_id"] for d in docs))
    content = []
    for doc in docs:
        item = order_out(doc)
        item["user_name"] = names.get(doc["user_id"])
        content.append(item)
    return page_response(content, total, page, limit)


def get_order_detail(db: Database, principal: Principal, order_id: str) -> dict:
    _require_admin(principal)
    order = db["order"].find_one({"_id": to_object_id(order_id, "order id")})
    if not order:
        raise not_found("Order not found")
    buyer = load_user(db, order["user_id"])
    detail = order_out(order)
    detail["user"] = {"id": str(buyer["_id"]), "name": buyer.get("name"), "email": buyer.get("email")}
    return detail


def sales_stats(db: Database, principal: Principal) -> dict:
    _require_admin(principal)
    totals = [o["total_cents"] for o in db["order"].find({}, {"total_cents": 1})]
    return {"total_sales": from_cents(sum(totals)), "total_transactions": len(totals)}


# ---- Audit log ----

def list_logs(
    db: Database,
    principal: Principal,
    action: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    _require_admin(principal)
    filt = {}
    if action:
        try:
            filt["action"] = AdminAction(action).value
        except ValueError:
            raise bad_request(f"Unknown admin action: {action}")
    docs, total = get_page(db, "adminlog", filt, [("created_at", DESCENDING), ("_id", DESCENDING)], page, limit)
    return page_response([serialize_doc(d) for d in docs], total, page, limit)
