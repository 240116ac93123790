"""
Review moderation over the reviews embedded in each phone listing.

Reviews are stored newest first. Every write is a single atomic update on
the phone document addressed by (phone id, review id), so concurrent
moderation actions never overwrite each other.
"""
from typing import Dict, List, Optional

from pymongo.database import Database

from accounts import user_names
from catalog import load_phone, phone_out
from database import get_documents, paginate_list
from errors import bad_request, forbidden, not_found
from logger import get_logger
from schemas import Review
from security import Principal

_logger = get_logger(__name__)

DETAIL_REVIEW_COUNT = 3
DEFAULT_PAGE_SIZE = 10


def filter_visible_reviews(reviews: List[dict], current_user_id: Optional[str], seller_id: str) -> List[dict]:
    """Reviews the viewer may see, in stored order.

    Hidden reviews stay visible to their author and to the listing's seller.
    Anonymous viewers (``None``) only see reviews that are not hidden.
    """
    return [
        r for r in reviews or []
        if not r.get("is_hidden")
        or (current_user_id is not None and current_user_id in (r.get("reviewer_id"), seller_id))
    ]


def review_out(review: dict, names: Dict[str, str]) -> dict:
    return {
        "id": review["id"],
        "reviewer": {"id": review["reviewer_id"], "name": names.get(review["reviewer_id"])},
        "rating": review["rating"],
        "comment": review["comment"],
        "is_hidden": review.get("is_hidden", False),
        "created_at": review.get("created_at"),
    }


def find_review(phone: dict, review_id: str) -> dict:
    for review in phone.get("reviews") or []:
        if review.get("id") == review_id:
            return review
    raise not_found(f"Review not found with id: {review_id}")


def add_review(db: Database, phone_id: str, rating: int, comment: str, principal: Principal) -> dict:
    phone = load_phone(db, phone_id)
    if phone.get("is_disabled"):
        raise bad_request("Cannot review a disabled phone")
    if any(r.get("reviewer_id") == principal.user_id for r in phone.get("reviews") or []):
        raise bad_request("You have already reviewed this phone")
    if not 1 <= rating <= 5:
        raise bad_request("Rating must be between 1 and 5")
    if not comment or not comment.strip():
        raise bad_request("Comment is required")

    review = Review(reviewer_id=principal.user_id, rating=rating, comment=comment.strip()).model_dump()
    result = db["phone"].update_one(
        {"_id": phone["_id"], "is_disabled": False, "reviews.reviewer_id": {"$ne": principal.user_id}},
        {"$push": {"reviews": {"$each": [review], "$position": 0}}},
    )
    if result.modified_count == 0:
        # lost a race with a concurrent review or a disable
        raise bad_request("You have already reviewed this phone")
    _logger.info(f"Review {review['id']} added to phone {phone_id} by {principal.user_id}")
    return review_out(review, user_names(db, [principal.user_id]))


def set_review_hidden(db: Database, phone: dict, review_id: str, is_hidden: bool) -> dict:
    """Atomically set one review's hidden flag and return the stored review."""
    result = db["phone"].update_one(
        {"_id": phone["_id"], "reviews.id": review_id},
        {"$set": {"reviews.$.is_hidden": is_hidden}},
    )
    if result.matched_count == 0:
        raise not_found(f"Review not found with id: {review_id}")
    return find_review(load_phone(db, str(phone["_id"])), review_id)


def toggle_review_visibility(
    db: Database, phone_id: str, review_id: str, is_hidden: bool, principal: Principal
) -> dict:
    phone = load_phone(db, phone_id)
    review = find_review(phone, review_id)
    if principal.user_id not in (review["reviewer_id"], phone["seller_id"]):
        if not principal.is_admin:
            raise forbidden("You are not authorized to change the visibility of this review")
        # admin overrides go through the audited path; admin imports this module
        import admin

        return admin.admin_toggle_review(db, principal, phone_id, review_id, is_hidden)
    updated = set_review_hidden(db, phone, review_id, is_hidden)
    _logger.info(f"Review {review_id} on phone {phone_id} set hidden={is_hidden} by {principal.user_id}")
    return review_out(updated, user_names(db, [updated["reviewer_id"]]))


def pull_review(db: Database, phone: dict, review_id: str) -> None:
    result = db["phone"].update_one(
        {"_id": phone["_id"], "reviews.id": review_id},
        {"$pull": {"reviews": {"id": review_id}}},
    )
    if result.matched_count == 0:
        raise not_found(f"Review not found with id: {review_id}")


def delete_review(db: Database, phone_id: str, review_id: str, principal: Principal) -> None:
    phone = load_phone(db, phone_id)
    review = find_review(phone, review_id)
    if review["reviewer_id"] != principal.user_id:
        if not principal.is_admin:
            raise forbidden("You can only delete your own reviews")
        import admin

        admin.admin_delete_review(db, principal, phone_id, review_id)
        return
    pull_review(db, phone, review_id)
    _logger.info(f"Review {review_id} deleted from phone {phone_id}")


def list_reviews(
    db: Database, phone_id: str, viewer_id: Optional[str], page: int = 1, limit: int = DEFAULT_PAGE_SIZE
) -> dict:
    phone = load_phone(db, phone_id)
    visible = filter_visible_reviews(phone.get("reviews"), viewer_id, phone["seller_id"])
    result = paginate_list(visible, page, limit)
    names = user_names(db, (r["reviewer_id"] for r in result["content"]))
    result["content"] = [review_out(r, names) for r in result["content"]]
    return result


def get_phone_with_reviews(db: Database, phone_id: str, viewer_id: Optional[str]) -> dict:
    """Listing detail with seller info and the newest visible reviews."""
    phone = load_phone(db, phone_id)
    visible = filter_visible_reviews(phone.get("reviews"), viewer_id, phone["seller_id"])
    shown = visible[:DETAIL_REVIEW_COUNT]
    names = user_names(db, [phone["seller_id"], *(r["reviewer_id"] for r in shown)])
    detail = phone_out(phone, names.get(phone["seller_id"]))
    detail["reviews"] = [review_out(r, names) for r in shown]
    detail["visible_review_count"] = len(visible)
    return detail


def reviews_for_seller(db: Database, seller_id: str) -> List[dict]:
    """Every review on the seller's listings, hidden ones included, newest first."""
    phones = get_documents(db, "phone", {"seller_id": seller_id})
    rows = [(p, r) for p in phones for r in p.get("reviews") or []]
    names = user_names(db, (r["reviewer_id"] for _, r in rows))
    out = []
    for phone, review in rows:
        item = review_out(review, names)
        item["phone"] = {"id": str(phone["_id"]), "title": phone["title"]}
        out.append(item)
    out.sort(key=lambda r: r["created_at"], reverse=True)
    return out
