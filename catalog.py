import re
from decimal import Decimal
from typing import List, Optional

from pydantic import ValidationError
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from accounts import load_user, user_names
from database import create_document, get_documents, get_page, page_response, serialize_doc, to_object_id
from errors import bad_request, forbidden, not_found
from logger import get_logger
from schemas import Phone, PhoneBrand, from_cents, to_cents, utcnow
from security import Principal

_logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 12
SOLD_OUT_SOON_STOCK = 5
SOLD_OUT_SOON_LIMIT = 6
BEST_SELLERS_MIN_REVIEWS = 2
BEST_SELLERS_LIMIT = 10

SORT_FIELDS = {
    "created_at": "created_at",
    "price": "price_cents",
    "title": "title",
    "stock": "stock",
    "sales_count": "sales_count",
}

EDITABLE_FIELDS = ("title", "brand", "image", "price", "stock", "is_disabled")


def average_rating(reviews: List[dict]) -> float:
    ratings = [r["rating"] for r in reviews or [] if not r.get("is_hidden")]
    if not ratings:
        return 0.0
    return round(sum(ratings) / len(ratings), 2)


def phone_out(doc: dict, seller_name: Optional[str] = None) -> dict:
    phone = serialize_doc(doc)
    reviews = phone.get("reviews") or []
    return {
        "id": phone["id"],
        "title": phone["title"],
        "brand": phone["brand"],
        "image": phone.get("image"),
        "price": from_cents(phone["price_cents"]),
        "stock": phone["stock"],
        "seller": {"id": phone["seller_id"], "name": seller_name},
        "is_disabled": phone.get("is_disabled", False),
        "sales_count": phone.get("sales_count", 0),
        "average_rating": average_rating(reviews),
        "review_count": sum(1 for r in reviews if not r.get("is_hidden")),
        "created_at": phone.get("created_at"),
        "updated_at": phone.get("updated_at"),
    }


def phones_out(db: Database, docs: List[dict]) -> List[dict]:
    names = user_names(db, (d["seller_id"] for d in docs))
    return [phone_out(d, names.get(d["seller_id"])) for d in docs]


def load_phone(db: Database, phone_id: str, session=None) -> dict:
    phone = db["phone"].find_one({"_id": to_object_id(phone_id, "phone id")}, session=session)
    if not phone:
        raise not_found(f"Phone not found with id: {phone_id}")
    return phone


def _owned_phone(db: Database, phone_id: str, principal: Principal) -> dict:
    phone = load_phone(db, phone_id)
    if phone["seller_id"] != principal.user_id:
        raise forbidden("You are not authorized to modify this phone")
    return phone


def parse_brand(value: str) -> str:
    try:
        return PhoneBrand(value).value
    except ValueError:
        raise bad_request(f"Unknown brand: {value}")


def phone_changes(fields: dict) -> dict:
    """Translate editable listing fields into a $set document."""
    update = {}
    for key in EDITABLE_FIELDS:
        if fields.get(key) is None:
            continue
        value = fields[key]
        if key == "price":
            update["price_cents"] = to_cents(value)
        elif key == "brand":
            update["brand"] = parse_brand(value)
        else:
            update[key] = value
    if "title" in update and not str(update["title"]).strip():
        raise bad_request("Title must not be empty")
    if update.get("price_cents") is not None and update["price_cents"] <= 0:
        raise bad_request("Price must be greater than 0")
    if update.get("stock") is not None and update["stock"] < 0:
        raise bad_request("Stock must be at least 0")
    return update


def create_phone(db: Database, principal: Principal, title: str, brand: str, image: str, price: Decimal, stock: int) -> dict:
    seller = load_user(db, principal.user_id)
    try:
        phone = Phone(
            title=title,
            brand=brand,
            image=image,
            price_cents=to_cents(price),
            stock=stock,
            seller_id=principal.user_id,
        )
    except ValidationError as e:
        raise bad_request(f"Invalid phone: {e.errors()[0]['msg']}")
    phone_id = create_document(db, "phone", phone)
    _logger.info(f"Phone {phone_id} created by seller {principal.user_id}")
    return phone_out(load_phone(db, phone_id), seller.get("name"))


def update_phone(db: Database, phone_id: str, principal: Principal, fields: dict) -> dict:
    phone = _owned_phone(db, phone_id, principal)
    update = phone_changes(fields)
    if update:
        update["updated_at"] = utcnow()
        db["phone"].update_one({"_id": phone["_id"]}, {"$set": update})
        _logger.info(f"Phone {phone_id} updated by seller: {sorted(update)}")
    return phone_out(load_phone(db, phone_id), user_names(db, [phone["seller_id"]]).get(phone["seller_id"]))


def set_phone_disabled(db: Database, phone_id: str, principal: Principal, is_disabled: bool) -> dict:
    phone = _owned_phone(db, phone_id, principal)
    db["phone"].update_one({"_id": phone["_id"]}, {"$set": {"is_disabled": is_disabled, "updated_at": utcnow()}})
    _logger.info(f"Phone {phone_id} {'disabled' if is_disabled else 'enabled'} by seller")
    return phone_out(load_phone(db, phone_id))


def remove_phone_everywhere(db: Database, phone: dict) -> None:
    """Delete a listing and drop it from every cart and wishlist."""
    phone_id = str(phone["_id"])
    carts = db["cart"].update_many({"items.phone_id": phone_id}, {"$pull": {"items": {"phone_id": phone_id}}})
    wishlists = db["user"].update_many({"wishlist": phone_id}, {"$pull": {"wishlist": phone_id}})
    db["phone"].delete_one({"_id": phone["_id"]})
    _logger.info(
        f"Phone {phone_id} deleted; removed from {carts.modified_count} carts "
        f"and {wishlists.modified_count} wishlists"
    )


def delete_phone(db: Database, phone_id: str, principal: Principal) -> None:
    remove_phone_everywhere(db, _owned_phone(db, phone_id, principal))


def list_phones(
    db: Database,
    search: Optional[str] = None,
    brand: Optional[str] = None,
    max_price: Optional[Decimal] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
) -> dict:
    if sort_by not in SORT_FIELDS:
        raise bad_request(f"Cannot sort by {sort_by}")
    filt = {"is_disabled": False}
    if search and search.strip():
        filt["title"] = {"$regex": re.escape(search.strip()), "$options": "i"}
    if brand:
        filt["brand"] = parse_brand(brand)
    if max_price is not None and max_price > 0:
        filt["price_cents"] = {"$lte": to_cents(max_price)}
    direction = ASCENDING if sort_order.lower() == "asc" else DESCENDING
    docs, total = get_page(db, "phone", filt, [(SORT_FIELDS[sort_by], direction), ("_id", direction)], page, limit)
    return page_response(phones_out(db, docs), total, page, limit)


def sold_out_soon(db: Database) -> List[dict]:
    docs = get_documents(
        db,
        "phone",
        {"is_disabled": False, "stock": {"$gt": 0, "$lte": SOLD_OUT_SOON_STOCK}},
        limit=SOLD_OUT_SOON_LIMIT,
        sort=[("stock", ASCENDING), ("_id", ASCENDING)],
    )
    return phones_out(db, docs)


def best_sellers(db: Database) -> List[dict]:
    docs = [
        d for d in get_documents(db, "phone", {"is_disabled": False})
        if len(d.get("reviews") or []) >= BEST_SELLERS_MIN_REVIEWS
    ]
    docs.sort(key=lambda d: average_rating(d["reviews"]), reverse=True)
    return phones_out(db, docs[:BEST_SELLERS_LIMIT])


def phones_by_seller(db: Database, seller_id: str) -> List[dict]:
    seller = load_user(db, seller_id)
    docs = get_documents(db, "phone", {"seller_id": seller_id}, sort=[("created_at", DESCENDING), ("_id", DESCENDING)])
    return [phone_out(d, seller.get("name")) for d in docs]
