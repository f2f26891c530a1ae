import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

import carts
import catalog
import database
import orders
import reviews
import security
import settings
import users
from database import serialize_doc
from dependencies import get_current_user, get_db, get_optional_user, get_token, require_roles
from errors import AuthenticationError, InternalError, ShopError
from schemas import (
    CartItemRequest,
    CreateOrderRequest,
    CreateProductRequest,
    CreateReviewRequest,
    LoginRequest,
    RegisterRequest,
    Role,
    UpdateRoleRequest,
    UpdateStatusRequest,
)
from security import Principal

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
        security.sweep_revoked_tokens(database.db)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, requests needing the store will fail")
    yield
    if database.client is not None:
        database.client.close()


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc, exc.kind)
        detail = "Request timed out" if exc.status_code == 504 else "Internal server error"
    else:
        detail = str(exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": detail, "error_type": exc.kind})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors()), "error_type": "ValidationError"},
    )


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    if exc.timeout:
        logger.warning("%s %s timed out in the store: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=504, content={"detail": "Request timed out", "error_type": "Timeout"})
    logger.exception("%s %s hit a store error", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", "error_type": "StoreError"})


@app.get("/")
def read_root():
    return {"message": "Storefront backend is running"}


@app.get("/api/health")
def health(db=Depends(get_db)):
    db.command("ping")
    return {"backend": "running", "database": db.name}


# Auth
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, db=Depends(get_db)):
    user = users.register(db, payload)
    return {"message": "User registered successfully", "user": serialize_doc(user)}


@app.post("/api/auth/login")
def login(payload: LoginRequest, db=Depends(get_db)):
    token, user = users.login(db, payload)
    return {"message": "Login successful", "token": token, "user": serialize_doc(user)}


@app.post("/api/auth/logout")
def logout(token: str = Depends(get_token), db=Depends(get_db)):
    security.authenticate(db, token)
    security.revoke_token(db, token)
    return {"message": "Logged out"}


@app.get("/api/auth/me")
def me(principal: Principal = Depends(get_current_user), db=Depends(get_db)):
    return serialize_doc(users.get_user(db, principal.id))


# Products
@app.get("/api/products")
def list_products(category: Optional[str] = None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, search: Optional[str] = None,
                  page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=catalog.MAX_PAGE_SIZE),
                  db=Depends(get_db)):
    total, docs = catalog.list_products(db, category, min_price, max_price, search, page, limit)
    return {"total": total, "page": page, "limit": limit, "products": [serialize_doc(d) for d in docs]}


@app.get("/api/products/mine")
def my_products(principal: Principal = Depends(require_roles(Role.SELLER)), db=Depends(get_db)):
    return [serialize_doc(d) for d in catalog.seller_products(db, principal.id)]


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return serialize_doc(catalog.get_product(db, product_id))


@app.post("/api/products", status_code=201)
def create_product(payload: CreateProductRequest,
                   principal: Principal = Depends(require_roles(Role.SELLER)), db=Depends(get_db)):
    return serialize_doc(catalog.create_product(db, principal.id, payload))


# Cart
@app.get("/api/cart")
def get_cart(principal: Principal = Depends(get_current_user), db=Depends(get_db)):
    return serialize_doc(carts.get_cart(db, principal.id))


@app.post("/api/cart/items")
def add_cart_item(payload: CartItemRequest, principal: Principal = Depends(get_current_user),
                  db=Depends(get_db)):
    return serialize_doc(carts.add_item(db, principal.id, payload.product_id, payload.quantity))


@app.delete("/api/cart/items/{product_id}")
def remove_cart_item(product_id: str, principal: Principal = Depends(get_current_user),
                     db=Depends(get_db)):
    return serialize_doc(carts.remove_item(db, principal.id, product_id))


@app.delete("/api/cart", status_code=204)
def clear_cart(principal: Principal = Depends(get_current_user), db=Depends(get_db)):
    carts.delete_all(db, principal.id)


# Orders
@app.post("/api/orders", status_code=201)
def create_order(payload: CreateOrderRequest, principal: Optional[Principal] = Depends(get_optional_user),
                 db=Depends(get_db)):
    if principal is None:
        if payload.guest is None:
            raise AuthenticationError("Sign in or provide guest details to check out")
        order = orders.create_order(db, payload.items or [], guest=payload.guest,
                                    payment_reference=payload.payment_reference)
    elif payload.items is None:
        # No explicit items: check out the caller's cart
        order = orders.checkout_cart(db, principal.id, payload.payment_reference)
    else:
        order = orders.create_order(db, payload.items, buyer_id=principal.id, guest=payload.guest,
                                    payment_reference=payload.payment_reference)
    return serialize_doc(order)


@app.get("/api/orders")
def list_my_orders(principal: Principal = Depends(get_current_user), db=Depends(get_db)):
    own = Principal(id=principal.id, role=Role.BUYER)
    return [serialize_doc(d) for d in orders.list_orders(db, own)]


@app.get("/api/orders/all")
def list_all_orders(principal: Principal = Depends(require_roles(Role.ADMIN, Role.SELLER)),
                    db=Depends(get_db)):
    return [serialize_doc(d) for d in orders.list_orders(db, principal)]


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, principal: Principal = Depends(get_current_user), db=Depends(get_db)):
    return serialize_doc(orders.get_order(db, order_id, principal))


@app.patch("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: UpdateStatusRequest,
                        principal: Principal = Depends(require_roles(Role.ADMIN, Role.SELLER)),
                        db=Depends(get_db)):
    return serialize_doc(orders.update_status(db, order_id, principal, payload.status))


# Reviews
@app.post("/api/reviews", status_code=201)
def create_review(payload: CreateReviewRequest, principal: Principal = Depends(get_current_user),
                  db=Depends(get_db)):
    review = reviews.submit_review(db, principal.id, payload.product_id, payload.rating, payload.comment)
    return serialize_doc(review)


@app.get("/api/reviews/product/{product_id}")
def list_product_reviews(product_id: str, db=Depends(get_db)):
    return [serialize_doc(d) for d in reviews.list_reviews(db, product_id)]


# Admin
@app.get("/api/admin/users")
def admin_list_users(principal: Principal = Depends(require_roles(Role.ADMIN)), db=Depends(get_db)):
    return [serialize_doc(d) for d in users.list_users(db)]


@app.patch("/api/admin/users/{user_id}/role")
def admin_update_role(user_id: str, payload: UpdateRoleRequest,
                      principal: Principal = Depends(require_roles(Role.ADMIN)), db=Depends(get_db)):
    return serialize_doc(users.set_role(db, user_id, payload.role))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
