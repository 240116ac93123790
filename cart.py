from typing import Optional

from pymongo.database import Database

from catalog import load_phone
from errors import bad_request, insufficient_stock, not_found
from logger import get_logger
from schemas import CartItem, from_cents, utcnow

_logger = get_logger(__name__)


def cart_out(cart: Optional[dict], user_id: str) -> dict:
    items = (cart or {}).get("items") or []
    total_cents = sum(i["price_cents"] * i["quantity"] for i in items)
    return {
        "id": str(cart["_id"]) if cart else None,
        "user_id": user_id,
        "items": [
            {
                "phone_id": i["phone_id"],
                "title": i["title"],
                "quantity": i["quantity"],
                "price": from_cents(i["price_cents"]),
                "subtotal": from_cents(i["price_cents"] * i["quantity"]),
            }
            for i in items
        ],
        "total_items": sum(i["quantity"] for i in items),
        "total_price": from_cents(total_cents),
    }


def load_cart(db: Database, user_id: str, session=None) -> Optional[dict]:
    return db["cart"].find_one({"user_id": user_id}, session=session)


def get_cart(db: Database, user_id: str) -> dict:
    return cart_out(load_cart(db, user_id), user_id)


def _purchasable(db: Database, phone_id: str, quantity: int) -> dict:
    if quantity < 1:
        raise bad_request("Quantity must be at least 1")
    phone = load_phone(db, phone_id)
    if phone.get("is_disabled"):
        raise bad_request("Phone is not available")
    if quantity > phone["stock"]:
        raise insufficient_stock(f"Insufficient stock for {phone['title']}. Available: {phone['stock']}")
    return phone


def add_to_cart(db: Database, user_id: str, phone_id: str, quantity: int) -> dict:
    phone = _purchasable(db, phone_id, quantity)
    now = utcnow()
    db["cart"].update_one(
        {"user_id": user_id},
        {"$setOnInsert": {"items": [], "created_at": now}, "$set": {"updated_at": now}},
        upsert=True,
    )
    fresh = {"items.$.quantity": quantity, "items.$.price_cents": phone["price_cents"], "items.$.title": phone["title"]}
    result = db["cart"].update_one({"user_id": user_id, "items.phone_id": phone_id}, {"$set": fresh})
    if result.matched_count == 0:
        item = CartItem(phone_id=phone_id, title=phone["title"], quantity=quantity, price_cents=phone["price_cents"])
        pushed = db["cart"].update_one(
            {"user_id": user_id, "items.phone_id": {"$ne": phone_id}},
            {"$push": {"items": item.model_dump()}},
        )
        if pushed.matched_count == 0:
            # a concurrent add created the line first
            db["cart"].update_one({"user_id": user_id, "items.phone_id": phone_id}, {"$set": fresh})
    _logger.info(f"Cart of {user_id}: {phone_id} x{quantity}")
    return get_cart(db, user_id)


def update_cart_item(db: Database, user_id: str, phone_id: str, quantity: int) -> dict:
    cart = load_cart(db, user_id)
    if not cart:
        raise not_found("Cart not found")
    if not any(i["phone_id"] == phone_id for i in cart.get("items") or []):
        raise not_found("Item not found in cart")
    _purchasable(db, phone_id, quantity)
    db["cart"].update_one(
        {"user_id": user_id, "items.phone_id": phone_id},
        {"$set": {"items.$.quantity": quantity, "updated_at": utcnow()}},
    )
    _logger.info(f"Cart of {user_id}: {phone_id} now x{quantity}")
    return get_cart(db, user_id)


def remove_from_cart(db: Database, user_id: str, phone_id: str) -> dict:
    result = db["cart"].update_one(
        {"user_id": user_id, "items.phone_id": phone_id},
        {"$pull": {"items": {"phone_id": phone_id}}, "$set": {"updated_at": utcnow()}},
    )
    if result.matched_count == 0:
        raise not_found("Item not found in cart")
    _logger.info(f"Cart of {user_id}: removed {phone_id}")
    return get_cart(db, user_id)


def clear_cart(db: Database, user_id: str, session=None) -> None:
    db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": utcnow()}}, session=session)
