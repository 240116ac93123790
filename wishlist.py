from typing import List

from pymongo.database import Database

from accounts import load_user
from catalog import load_phone, phones_out
from database import to_object_id
from errors import bad_request, not_found
from logger import get_logger
from schemas import utcnow

_logger = get_logger(__name__)


def get_wishlist(db: Database, user_id: str) -> List[dict]:
    user = load_user(db, user_id)
    ids = [to_object_id(pid) for pid in user.get("wishlist") or []]
    if not ids:
        return []
    phones = {str(p["_id"]): p for p in db["phone"].find({"_id": {"$in": ids}, "is_disabled": False})}
    # keep the order the user added them in
    return phones_out(db, [phones[str(oid)] for oid in ids if str(oid) in phones])


def add_to_wishlist(db: Database, user_id: str, phone_id: str) -> List[dict]:
    user = load_user(db, user_id)
    phone = load_phone(db, phone_id)
    if phone.get("is_disabled"):
        raise bad_request("Cannot add a disabled phone to the wishlist")
    if phone_id in (user.get("wishlist") or []):
        raise bad_request("Phone is already in the wishlist")
    db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"wishlist": phone_id}, "$set": {"updated_at": utcnow()}})
    _logger.info(f"Wishlist of {user_id}: added {phone_id}")
    return get_wishlist(db, user_id)


def remove_from_wishlist(db: Database, user_id: str, phone_id: str) -> List[dict]:
    result = db["user"].update_one(
        {"_id": to_object_id(user_id, "user id"), "wishlist": phone_id},
        {"$pull": {"wishlist": phone_id}, "$set": {"updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise not_found("Phone not found in wishlist")
    _logger.info(f"Wishlist of {user_id}: removed {phone_id}")
    return get_wishlist(db, user_id)
