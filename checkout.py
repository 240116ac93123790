"""
Checkout: turn a user's cart into an order.

Validation is a complete pre-pass, so a bad line item aborts before any
stock moves. Stock is then taken with one conditional update per listing
(``stock >= quantity`` is re-checked by the store at write time), which is
what keeps two buyers racing for the last unit from both succeeding.

Without transactions a lost race after earlier items were decremented is
reported as insufficient stock and not compensated. With
``config.MONGO_TRANSACTIONS`` the stock updates, the order insert and the
cart clear commit or roll back together.
"""
from typing import List, Optional

from pydantic import ValidationError
from pymongo import DESCENDING
from pymongo.database import Database

import config
from cart import clear_cart, load_cart
from catalog import load_phone
from database import create_document, get_documents, serialize_doc, to_object_id
from errors import AppError, bad_request, forbidden, insufficient_stock, not_found
from logger import get_logger
from schemas import Address, Order, OrderItem, from_cents, utcnow
from security import Principal

_logger = get_logger(__name__)


def order_out(doc: dict) -> dict:
    order = serialize_doc(doc)
    return {
        "id": order["id"],
        "user_id": order["user_id"],
        "items": [
            {
                "phone_id": i["phone_id"],
                "title": i["title"],
                "quantity": i["quantity"],
                "price": from_cents(i["price_cents"]),
            }
            for i in order["items"]
        ],
        "total_amount": from_cents(order["total_cents"]),
        "address": order["address"],
        "created_at": order.get("created_at"),
    }


def validate_cart(db: Database, cart: Optional[dict]) -> List[OrderItem]:
    """Check each listing's summed quantity against live stock; no writes happen here."""
    lines = (cart or {}).get("items") or []
    if not lines:
        raise bad_request("Cart is empty")
    wanted = {}
    for line in lines:
        wanted[line["phone_id"]] = wanted.get(line["phone_id"], 0) + line["quantity"]
    for phone_id, quantity in wanted.items():
        phone = load_phone(db, phone_id)
        if phone.get("is_disabled"):
            raise bad_request(f"Phone is disabled: {phone['title']}")
        if phone["stock"] < quantity:
            raise insufficient_stock(f"Insufficient stock for {phone['title']}. Available: {phone['stock']}")
    return [
        OrderItem(
            phone_id=line["phone_id"],
            title=line["title"],
            quantity=line["quantity"],
            price_cents=line["price_cents"],
        )
        for line in lines
    ]


def take_stock(db: Database, phone_id: str, quantity: int, session=None) -> None:
    """Decrement stock and bump sales in one conditional update."""
    result = db["phone"].update_one(
        {"_id": to_object_id(phone_id, "phone id"), "is_disabled": False, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity, "sales_count": quantity}, "$set": {"updated_at": utcnow()}},
        session=session,
    )
    if result.modified_count == 0:
        raise insufficient_stock(f"Insufficient stock for phone {phone_id}")


def _place_order(db: Database, user_id: str, order: Order, session=None) -> str:
    taken = []
    for item in order.items:
        try:
            take_stock(db, item.phone_id, item.quantity, session=session)
        except AppError:
            if taken and session is None:
                _logger.warning(f"Checkout for {user_id} lost a stock race; already taken and not restored: {taken}")
            raise
        taken.append((item.phone_id, item.quantity))
    order_id = create_document(db, "order", order, session=session)
    clear_cart(db, user_id, session=session)
    return order_id


def checkout(db: Database, principal: Principal, address: dict) -> dict:
    try:
        shipping = Address(**address)
    except ValidationError as e:
        raise bad_request(f"Invalid address: {e.errors()[0]['loc'][-1]} {e.errors()[0]['msg']}")

    user_id = principal.user_id
    items = validate_cart(db, load_cart(db, user_id))
    total_cents = sum(i.price_cents * i.quantity for i in items)
    order = Order(user_id=user_id, items=items, total_cents=total_cents, address=shipping)

    if config.MONGO_TRANSACTIONS:
        with db.client.start_session() as session:
            with session.start_transaction():
                order_id = _place_order(db, user_id, order, session=session)
    else:
        order_id = _place_order(db, user_id, order)

    _logger.info(f"Order {order_id} placed by {user_id}: {len(items)} items, total {from_cents(total_cents)}")
    return order_out(db["order"].find_one({"_id": to_object_id(order_id)}))


def list_orders(db: Database, principal: Principal) -> List[dict]:
    docs = get_documents(db, "order", {"user_id": principal.user_id}, sort=[("created_at", DESCENDING), ("_id", DESCENDING)])
    return [order_out(d) for d in docs]


def get_order(db: Database, order_id: str, principal: Principal) -> dict:
    order = db["order"].find_one({"_id": to_object_id(order_id, "order id")})
    if not order:
        raise not_found(f"Order not found with id: {order_id}")
    if order["user_id"] != principal.user_id and not principal.is_admin:
        raise forbidden("You are not authorized to view this order")
    return order_out(order)
