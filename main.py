# ============================================================
# main.py — FastAPI Application
# ============================================================
# Endpoints:
#   GET    /api/health                       → Liveness + version
#
#   GET    /api/products                     → Catalog listing + facets
#   GET    /api/products/{id}                → Product + related products
#   GET    /api/products/sku/{sku}           → Product by SKU
#   GET    /api/products/featured/{kind}     → new | popular | top-rated
#
#   POST   /api/orders                       → Place an order
#   GET    /api/orders/track/{tracking}      → Track (requires ?phone=)
#   GET    /api/orders/user/{identifier}     → Order history (email or id)
#
#   POST   /api/auth/register                → Register a customer
#   GET    /api/auth/profile                 → Profile by email/phone
#   POST   /api/auth/favorites/{productId}   → Add favorite
#   DELETE /api/auth/favorites/{productId}   → Remove favorite
#
#   POST   /api/admin/login | /logout, GET /api/admin/status | /stats
#   CRUD   /api/admin/products, list/get/update /api/admin/orders
#
# Admin routes need "Authorization: Bearer <token>" from /login.
# ============================================================

from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, Path, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session as DBSession
from starlette.exceptions import HTTPException as StarletteHTTPException

import accounts
import catalog
import config
import models  # noqa: F401  (registers the tables on Base)
import orders
from accounts import AdminPrincipal
from database import SessionLocal, get_db, init_db
from errors import OilMarketError
from schemas import SQL_INT_MAX, AdminLogin, FavoriteRequest, OrderCreate, OrderUpdate, ProductIn, UserRegister

# ── Initialize FastAPI app ────────────────────────────────────
app = FastAPI(title="Oil Market API", version=config.SERVICE_VERSION)

# ── Rate limiting: per client IP, in-memory counters ──────────
limiter = Limiter(key_func=get_remote_address, default_limits=[f"{config.RATE_LIMIT_PER_MINUTE}/minute"])
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# ── Security headers on every response ────────────────────────
SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; "
        "script-src 'self'; img-src 'self' data: https:"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
}


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ── Startup: create tables + bootstrap admin ──────────────────
@app.on_event("startup")
def on_startup():
    init_db()
    print("✅ Database initialized")
    db = SessionLocal()
    try:
        accounts.ensure_default_admin(db)
    finally:
        db.close()


# ============================================================
# ERROR HANDLERS
# ============================================================
# Every failure leaves as {"error": "..."} with a matching status.

@app.exception_handler(OilMarketError)
async def handle_service_error(request: Request, exc: OilMarketError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def first_validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    error = errors[0]
    location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "header")]
    message = error.get("msg", "Invalid value")
    return f"{'.'.join(location)}: {message}" if location else message


@app.exception_handler(RateLimitExceeded)
def handle_rate_limit(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"error": "Too many requests, please try again later."})


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": first_validation_message(exc)})


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = "API endpoint not found"
    return JSONResponse(status_code=exc.status_code, content={"error": message})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    print(f"❌ Server error on {request.method} {request.url.path}: {exc!r}")
    message = str(exc) if config.is_development() else "Internal server error"
    return JSONResponse(status_code=500, content={"error": message})


# ============================================================
# DEPENDENCY: Admin principal
# ============================================================

def require_admin(
        authorization: Optional[str] = Header(None),
        db: DBSession = Depends(get_db)
) -> AdminPrincipal:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    return accounts.authenticate_token(db, token)


# ============================================================
# ENDPOINT: Health
# ============================================================

@app.get("/api/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "service": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
    }


# ============================================================
# ENDPOINTS: Catalog
# ============================================================

@app.get("/api/products")
def list_products(request: Request, db: DBSession = Depends(get_db)):
    """
    Filtered, sorted, paginated catalog plus facet values.
    Query params: q, type, viscosity, brand, volume, application,
    minPrice, maxPrice, inStock, sortBy, sortOrder, page, limit
    """
    query = catalog.parse_catalog_query(request.query_params)
    return catalog.search_catalog(db, query)


@app.get("/api/products/sku/{sku}")
def get_product_by_sku(sku: str, db: DBSession = Depends(get_db)):
    return catalog.get_product_by_sku(db, sku)


@app.get("/api/products/featured/{kind}")
def get_featured_products(kind: str, db: DBSession = Depends(get_db)):
    return catalog.get_featured(db, kind)


@app.get("/api/products/{product_id}")
def get_product(product_id: int = Path(..., le=SQL_INT_MAX), db: DBSession = Depends(get_db)):
    return catalog.get_product_detail(db, product_id)


# ============================================================
# ENDPOINTS: Orders
# ============================================================

@app.post("/api/orders", status_code=201)
def create_order(payload: OrderCreate, db: DBSession = Depends(get_db)):
    return orders.place_order(db, payload)


@app.get("/api/orders/track/{tracking_number}")
def track_order(tracking_number: str, phone: Optional[str] = None, db: DBSession = Depends(get_db)):
    return orders.track_order(db, tracking_number, phone)


@app.get("/api/orders/user/{identifier}")
def get_user_orders(identifier: str, phone: Optional[str] = None, db: DBSession = Depends(get_db)):
    return orders.get_user_orders(db, identifier, phone)


# ============================================================
# ENDPOINTS: Customers & favorites
# ============================================================

@app.post("/api/auth/register", status_code=201)
def register(payload: UserRegister, db: DBSession = Depends(get_db)):
    return accounts.register_user(db, payload)


@app.get("/api/auth/profile")
def profile(email: Optional[str] = None, phone: Optional[str] = None, db: DBSession = Depends(get_db)):
    return accounts.get_profile(db, email=email, phone=phone)


@app.post("/api/auth/favorites/{product_id}")
def add_favorite(
    product_id: int = Path(..., le=SQL_INT_MAX),
    payload: Optional[FavoriteRequest] = None,
    db: DBSession = Depends(get_db)
):
    return accounts.add_favorite(db, payload.email if payload else None, product_id)


@app.delete("/api/auth/favorites/{product_id}")
def remove_favorite(
    product_id: int = Path(..., le=SQL_INT_MAX),
    payload: Optional[FavoriteRequest] = None,
    db: DBSession = Depends(get_db)
):
    return accounts.remove_favorite(db, payload.email if payload else None, product_id)


# ============================================================
# ENDPOINTS: Admin session
# ============================================================

@app.post("/api/admin/login")
def admin_login(payload: AdminLogin, db: DBSession = Depends(get_db)):
    return accounts.login_admin(db, payload.username, payload.password)


@app.post("/api/admin/logout")
def admin_logout(admin: AdminPrincipal = Depends(require_admin), db: DBSession = Depends(get_db)):
    return accounts.logout_admin(db, admin)


@app.get("/api/admin/status")
def admin_status(admin: AdminPrincipal = Depends(require_admin)):
    return {"authenticated": True, "admin": admin.to_dict()}


@app.get("/api/admin/stats")
def admin_stats(admin: AdminPrincipal = Depends(require_admin), db: DBSession = Depends(get_db)):
    return orders.dashboard_stats(db)


# ============================================================
# ENDPOINTS: Admin products
# ============================================================

@app.get("/api/admin/products")
def admin_list_products(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    db: DBSession = Depends(get_db)
):
    """Query params: page, limit, sortBy, sortOrder, search, brand, type"""
    return catalog.list_admin_products(db, request.query_params)


@app.get("/api/admin/products/{product_id}")
def admin_get_product(
    product_id: int = Path(..., le=SQL_INT_MAX),
    admin: AdminPrincipal = Depends(require_admin),
    db: DBSession = Depends(get_db)
):
    return catalog.serialize_product(catalog.get_product(db, product_id))


@app.post("/api/admin/products", status_code=201)
def admin_create_product(
    payload: ProductIn,
    admin: AdminPrincipal = Depends(require_admin),
    db: DBSession = Depends(get_db)
):
    return catalog.create_product(db, payload)


@app.put("/api/admin/products/{product_id}")
def admin_update_product(
    payload: ProductIn,
    product_id: int = Path(..., le=SQL_INT_MAX),
    admin: AdminPrincipal = Depends(require_admin),
    db: DBSession = Depends(get_db)
):
    return catalog.update_product(db, product_id, payload)


@app.delete("/api/admin/products/{product_id}")
def admin_delete_product(
    product_id: int = Path(..., le=SQL_INT_MAX),
    admin: AdminPrincipal = Depends(require_admin),
    db: DBSession = Depends(get_db)
):
    admin.require_role("admin")
    return catalog.delete_product(db, product_id)


# ============================================================
# ENDPOINTS: Admin orders
# ============================================================

@app.get("/api/admin/orders")
def admin_list_orders(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    db: DBSession = Depends(get_db)
):
    """Query params: page, limit, status, startDate, endDate, search"""
    return orders.list_orders(db, request.query_params)


@app.get("/api/admin/orders/{order_id}")
def admin_get_order(
    order_id: int = Path(..., le=SQL_INT_MAX),
    admin: AdminPrincipal = Depends(require_admin),
    db: DBSession = Depends(get_db)
):
    return orders.get_order(db, order_id)


@app.put("/api/admin/orders/{order_id}")
def admin_update_order(
    payload: OrderUpdate,
    order_id: int = Path(..., le=SQL_INT_MAX),
    admin: AdminPrincipal = Depends(require_admin),
    db: DBSession = Depends(get_db)
):
    return orders.update_order(db, order_id, payload)


# ============================================================
# RUN THE APP
# ============================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=config.PORT)
