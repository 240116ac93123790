from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import admin
import cart
import catalog
import checkout
import config
import database
import reviews
import wishlist
from database import create_document, ensure_indexes, get_db
from errors import INTERNAL_ERROR_MESSAGE, STATUS_CODES, AppError, ErrorKind, forbidden
from logger import get_logger
from schemas import Address, Phone, PhoneBrand, Role, User, to_cents
from security import Principal, get_current_user, get_optional_user, hash_password, require_admin

_logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    else:
        _logger.warning("DATABASE_URL/DATABASE_NAME not set; API calls that need the database will fail")
    yield


app = FastAPI(title="Old Phone Deals API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Envelope -----------------------
def ok(data=None, message: str = "Success") -> dict:
    return {"success": True, "message": message, "data": data}


def _error_response(kind: ErrorKind, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=STATUS_CODES[kind],
        content={"success": False, "message": message, "data": None, "error": kind.value},
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.kind == ErrorKind.INTERNAL_ERROR:
        _logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return _error_response(exc.kind, INTERNAL_ERROR_MESSAGE)
    _logger.debug(f"{request.method} {request.url.path}: {exc.kind.value} {exc.message}")
    return _error_response(exc.kind, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "Invalid request")
    return _error_response(ErrorKind.BAD_REQUEST, message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    kinds = {401: ErrorKind.UNAUTHORIZED, 403: ErrorKind.FORBIDDEN, 404: ErrorKind.RESOURCE_NOT_FOUND}
    kind = kinds.get(exc.status_code, ErrorKind.BAD_REQUEST)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail), "data": None, "error": kind.value},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    _logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(ErrorKind.INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE)


# ----------------------- Models -----------------------
class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class PhoneCreateBody(BaseModel):
    title: str = Field(..., min_length=1)
    brand: PhoneBrand
    image: str
    price: Decimal = Field(..., gt=0)
    stock: int = Field(..., ge=0)


class PhoneUpdateBody(BaseModel):
    title: Optional[str] = None
    brand: Optional[PhoneBrand] = None
    image: Optional[str] = None
    price: Optional[Decimal] = None
    stock: Optional[int] = None
    is_disabled: Optional[bool] = None


class AdminPhoneUpdateBody(PhoneUpdateBody):
    sales_count: Optional[int] = None


class DisableBody(BaseModel):
    is_disabled: bool


class ReviewBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


class VisibilityBody(BaseModel):
    is_hidden: bool


class AdminVisibilityBody(BaseModel):
    is_hidden: Optional[bool] = None


class CartItemBody(BaseModel):
    phone_id: str
    quantity: int = Field(1, ge=1)


class QuantityBody(BaseModel):
    quantity: int = Field(..., ge=1)


class CheckoutBody(BaseModel):
    address: Address


class WishlistBody(BaseModel):
    phone_id: str


class ProfileUpdateBody(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    current_password: Optional[str] = None


class PasswordChangeBody(BaseModel):
    current_password: str
    new_password: str


class AdminUserUpdateBody(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    is_disabled: Optional[bool] = None


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Old Phone Deals API running"}


@app.get("/health")
def health():
    response = {
        "backend": "running",
        "database": "not available",
        "database_url": "set" if config.DATABASE_URL else "not set",
        "database_name": "set" if config.DATABASE_NAME else "not set",
        "collections": [],
    }
    if database.db is not None:
        try:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "connected"
        except Exception as e:
            _logger.warning(f"Health check could not reach the database: {e}")
            response["database"] = "error"
    return response


# ----------------------- Auth -----------------------
@app.post("/api/auth/register", status_code=201)
def register(body: RegisterBody, db: Database = Depends(get_db)):
    user = accounts.register(db, body.name, body.email, body.password)
    return ok(user, "Registration successful")


@app.post("/api/auth/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    return ok(accounts.login(db, body.email, body.password), "Login successful")


@app.get("/api/auth/me")
def me(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(accounts.get_profile(db, user.user_id))


# ----------------------- Phones -----------------------
@app.get("/api/phones")
def list_phones(
    search: Optional[str] = None,
    brand: Optional[str] = None,
    max_price: Optional[Decimal] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = Query(1, ge=1),
    limit: int = Query(catalog.DEFAULT_PAGE_SIZE, ge=1, le=100),
    db: Database = Depends(get_db),
):
    return ok(catalog.list_phones(db, search, brand, max_price, sort_by, sort_order, page, limit))


@app.get("/api/phones/sold-out-soon")
def sold_out_soon(db: Database = Depends(get_db)):
    return ok(catalog.sold_out_soon(db))


@app.get("/api/phones/best-sellers")
def best_sellers(db: Database = Depends(get_db)):
    return ok(catalog.best_sellers(db))


@app.get("/api/phones/seller/{seller_id}")
def phones_by_seller(seller_id: str, db: Database = Depends(get_db)):
    return ok(catalog.phones_by_seller(db, seller_id))


@app.get("/api/phones/{phone_id}")
def get_phone(phone_id: str, user: Optional[Principal] = Depends(get_optional_user), db: Database = Depends(get_db)):
    return ok(reviews.get_phone_with_reviews(db, phone_id, user.user_id if user else None))


@app.post("/api/phones", status_code=201)
def create_phone(body: PhoneCreateBody, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    phone = catalog.create_phone(db, user, body.title, body.brand.value, body.image, body.price, body.stock)
    return ok(phone, "Phone created successfully")


@app.put("/api/phones/{phone_id}")
def update_phone(phone_id: str, body: PhoneUpdateBody, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    phone = catalog.update_phone(db, phone_id, user, body.model_dump(exclude_none=True, mode="json"))
    return ok(phone, "Phone updated successfully")


@app.patch("/api/phones/{phone_id}/disable")
def disable_phone(phone_id: str, body: DisableBody, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    phone = catalog.set_phone_disabled(db, phone_id, user, body.is_disabled)
    return ok(phone, "Phone disabled successfully" if body.is_disabled else "Phone enabled successfully")


@app.delete("/api/phones/{phone_id}")
def delete_phone(phone_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    catalog.delete_phone(db, phone_id, user)
    return ok(None, "Phone deleted successfully")


# ----------------------- Reviews -----------------------
@app.get("/api/phones/{phone_id}/reviews")
def list_reviews(
    phone_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(reviews.DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: Optional[Principal] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    return ok(reviews.list_reviews(db, phone_id, user.user_id if user else None, page, limit))


@app.post("/api/phones/{phone_id}/reviews", status_code=201)
def add_review(phone_id: str, body: ReviewBody, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(reviews.add_review(db, phone_id, body.rating, body.comment, user), "Review added successfully")


@app.patch("/api/phones/{phone_id}/reviews/{review_id}/visibility")
def toggle_review_visibility(
    phone_id: str,
    review_id: str,
    body: VisibilityBody,
    user: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    review = reviews.toggle_review_visibility(db, phone_id, review_id, body.is_hidden, user)
    return ok(review, "Review hidden successfully" if body.is_hidden else "Review shown successfully")


@app.delete("/api/phones/{phone_id}/reviews/{review_id}")
def delete_review(phone_id: str, review_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    reviews.delete_review(db, phone_id, review_id, user)
    return ok(None, "Review deleted successfully")


# ----------------------- Cart -----------------------
@app.get("/api/cart")
def get_cart(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(cart.get_cart(db, user.user_id))


@app.post("/api/cart")
def add_to_cart(body: CartItemBody, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(cart.add_to_cart(db, user.user_id, body.phone_id, body.quantity), "Item added to cart")


@app.put("/api/cart/{phone_id}")
def update_cart_item(phone_id: str, body: QuantityBody, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(cart.update_cart_item(db, user.user_id, phone_id, body.quantity), "Cart updated")


@app.delete("/api/cart/{phone_id}")
def remove_from_cart(phone_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(cart.remove_from_cart(db, user.user_id, phone_id), "Item removed from cart")


@app.delete("/api/cart")
def clear_cart(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    cart.clear_cart(db, user.user_id)
    return ok(cart.get_cart(db, user.user_id), "Cart cleared")


# ----------------------- Orders -----------------------
@app.post("/api/orders/checkout", status_code=201)
def place_order(body: CheckoutBody, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    order = checkout.checkout(db, user, body.address.model_dump())
    return ok(order, "Order placed successfully")


@app.get("/api/orders")
def list_orders(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(checkout.list_orders(db, user))


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(checkout.get_order(db, order_id, user))


# ----------------------- Wishlist -----------------------
@app.get("/api/wishlist")
def get_wishlist(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(wishlist.get_wishlist(db, user.user_id))


@app.post("/api/wishlist")
def add_to_wishlist(body: WishlistBody, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(wishlist.add_to_wishlist(db, user.user_id, body.phone_id), "Added to wishlist")


@app.delete("/api/wishlist/{phone_id}")
def remove_from_wishlist(phone_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(wishlist.remove_from_wishlist(db, user.user_id, phone_id), "Removed from wishlist")


# ----------------------- Profile -----------------------
@app.get("/api/profile")
def get_profile(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(accounts.get_profile(db, user.user_id))


@app.put("/api/profile")
def update_profile(body: ProfileUpdateBody, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    profile = accounts.update_profile(db, user, body.name, body.email, body.current_password)
    return ok(profile, "Profile updated successfully")


@app.put("/api/profile/password")
def change_password(body: PasswordChangeBody, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    accounts.change_password(db, user, body.current_password, body.new_password)
    return ok(None, "Password changed successfully")


@app.get("/api/profile/listings")
def my_listings(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(catalog.phones_by_seller(db, user.user_id))


@app.get("/api/profile/reviews")
def my_listing_reviews(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return ok(reviews.reviews_for_seller(db, user.user_id))


# ----------------------- Admin -----------------------
@app.post("/api/admin/login")
def admin_login(body: LoginBody, db: Database = Depends(get_db)):
    return ok(admin.admin_login(db, body.email, body.password), "Admin login successful")


@app.get("/api/admin/stats")
def admin_stats(user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return ok(admin.dashboard_stats(db, user))


@app.get("/api/admin/users")
def admin_list_users(
    search: Optional[str] = None,
    is_disabled: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(admin.DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return ok(admin.list_users(db, user, search, is_disabled, page, limit))


@app.get("/api/admin/users/{user_id}")
def admin_get_user(user_id: str, user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return ok(admin.get_user_detail(db, user, user_id))


@app.put("/api/admin/users/{user_id}")
def admin_update_user(user_id: str, body: AdminUserUpdateBody, user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return ok(admin.update_user(db, user, user_id, body.model_dump(exclude_none=True)), "User updated successfully")


@app.patch("/api/admin/users/{user_id}/toggle")
def admin_toggle_user(user_id: str, user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return ok(admin.toggle_user_disabled(db, user, user_id), "User status updated")


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    if user_id == user.user_id:
        raise forbidden("Admins cannot delete their own account")
    admin.delete_user(db, user, user_id)
    return ok(None, "User deleted successfully")


@app.get("/api/admin/phones")
def admin_list_phones(
    page: int = Query(1, ge=1),
    limit: int = Query(admin.DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return ok(admin.list_phones(db, user, page, limit))


@app.put("/api/admin/phones/{phone_id}")
def admin_update_phone(phone_id: str, body: AdminPhoneUpdateBody, user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    phone = admin.admin_update_phone(db, user, phone_id, body.model_dump(exclude_none=True, mode="json"))
    return ok(phone, "Phone updated successfully")


@app.patch("/api/admin/phones/{phone_id}/toggle")
def admin_toggle_phone(phone_id: str, user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return ok(admin.admin_toggle_phone(db, user, phone_id), "Phone status updated")


@app.delete("/api/admin/phones/{phone_id}")
def admin_delete_phone(phone_id: str, user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    admin.admin_delete_phone(db, user, phone_id)
    return ok(None, "Phone deleted successfully")


@app.get("/api/admin/reviews")
def admin_list_reviews(
    visible: Optional[bool] = None,
    reviewer_id: Optional[str] = None,
    phone_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(admin.DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return ok(admin.list_all_reviews(db, user, visible, reviewer_id, phone_id, search, page, limit))


@app.patch("/api/admin/reviews/{phone_id}/{review_id}/toggle")
def admin_toggle_review(
    phone_id: str,
    review_id: str,
    body: Optional[AdminVisibilityBody] = None,
    user: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    review = admin.admin_toggle_review(db, user, phone_id, review_id, body.is_hidden if body else None)
    return ok(review, "Review visibility updated")


@app.delete("/api/admin/reviews/{phone_id}/{review_id}")
def admin_delete_review(phone_id: str, review_id: str, user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    admin.admin_delete_review(db, user, phone_id, review_id)
    return ok(None, "Review deleted successfully")


@app.get("/api/admin/orders")
def admin_list_orders(
    user_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(admin.DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return ok(admin.list_orders(db, user, user_id, start_date, end_date, page, limit))


@app.get("/api/admin/orders/stats")
def admin_sales_stats(user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return ok(admin.sales_stats(db, user))


@app.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, user: Principal = Depends(require_admin), db: Database = Depends(get_db)):
    return ok(admin.get_order_detail(db, user, order_id))


@app.get("/api/admin/logs")
def admin_logs(
    action: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(admin.DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: Principal = Depends(require_admin),
    db: Database = Depends(get_db),
):
    return ok(admin.list_logs(db, user, action, page, limit))


# ----------------------- Seed Demo Data -----------------------
DEMO_PHONES = [
    {"title": "Galaxy S9", "brand": "Samsung", "image": "/images/samsung.jpeg", "price": "189.99", "stock": 12},
    {"title": "iPhone 8", "brand": "Apple", "image": "/images/apple.jpeg", "price": "229.00", "stock": 4},
    {"title": "P20 Pro", "brand": "Huawei", "image": "/images/huawei.jpeg", "price": "149.50", "stock": 7},
    {"title": "Nokia 6.1", "brand": "Nokia", "image": "/images/nokia.jpeg", "price": "89.00", "stock": 2},
    {"title": "Xperia XZ2", "brand": "Sony", "image": "/images/sony.jpeg", "price": "119.99", "stock": 9},
    {"title": "Moto G6", "brand": "Motorola", "image": "/images/motorola.jpeg", "price": "79.95", "stock": 15},
    {"title": "G7 ThinQ", "brand": "LG", "image": "/images/lg.jpeg", "price": "99.00", "stock": 5},
    {"title": "KEYone", "brand": "BlackBerry", "image": "/images/blackberry.jpeg", "price": "109.00", "stock": 3},
]


@app.post("/seed")
def seed(db: Database = Depends(get_db)):
    if not config.ALLOW_SEED:
        raise forbidden("Seeding is disabled")
    if db["phone"].count_documents({}) > 0:
        return ok({"seeded": False}, "Phones already exist")

    seller = db["user"].find_one({"email": "seller@oldphonedeals.com"})
    if seller:
        seller_id = str(seller["_id"])
    else:
        seller_id = create_document(
            db, "user", User(name="Demo Seller", email="seller@oldphonedeals.com", password_hash=hash_password("seller123"))
        )
    for p in DEMO_PHONES:
        phone = Phone(
            title=p["title"],
            brand=p["brand"],
            image=p["image"],
            price_cents=to_cents(p["price"]),
            stock=p["stock"],
            seller_id=seller_id,
        )
        create_document(db, "phone", phone)
    # create admin user if none
    if db["user"].count_documents({"role": Role.ADMIN.value}) == 0:
        create_document(
            db,
            "user",
            User(name="Admin", email="admin@oldphonedeals.com", password_hash=hash_password("admin123"), role=Role.ADMIN),
        )
    _logger.info(f"Seeded {len(DEMO_PHONES)} demo phones")
    return ok({"seeded": True, "phones": db["phone"].count_documents({})}, "Demo data created")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
