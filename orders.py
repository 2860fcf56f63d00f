# ============================================================
# orders.py — Order placement, tracking and back-office orders
# ============================================================
# place_order() is the only multi-step write in the service:
#
#   1. load every referenced product in one query (row-locked)
#   2. check stock for every line, abort on the first shortfall
#   3. total = sum(price * quantity) at today's prices
#   4. generate order number + tracking number
#   5. insert order + lines and decrement stock in ONE transaction
#   6. refresh the linked customer's contact info (best effort)
#
# Step 5 uses a guarded UPDATE (stock >= quantity) so a concurrent
# order can never push stock below zero. A collision on the order or
# tracking number rolls the whole unit back and tries again with
# fresh numbers.
# ============================================================

import math
import secrets
import string
from collections import OrderedDict
from datetime import datetime, time as dt_time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as DBSession, selectinload

import config
from catalog import money, product_summary, iso, page_offset, positive_int, clean_text
from errors import (
    AccessDeniedError, ConflictError, InsufficientStockError, NotFoundError,
    OilMarketError, OrderNumberExhaustedError, ValidationFailedError
)
from models import ORDER_STATUSES, Order, OrderItem, Product, User
from schemas import OrderCreate, OrderUpdate

TRACKING_ALPHABET = string.digits + string.ascii_uppercase


# ============================================================
# IDENTIFIERS
# ============================================================

def generate_order_number(now: Optional[datetime] = None) -> str:
    """<prefix><YYMMDD><4 random digits>, e.g. OM2410170042. The date is UTC."""
    now = now or datetime.utcnow()
    return f"{config.ORDER_PREFIX}{now.strftime('%y%m%d')}{secrets.randbelow(10000):04d}"


def generate_tracking_number() -> str:
    """<prefix><8 random base-36 characters>, e.g. OIL7K2QX9ZA."""
    token = "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(8))
    return f"{config.TRACKING_PREFIX}{token}"


# ============================================================
# SERIALIZATION
# ============================================================

def serialize_item(item: OrderItem, *product_fields: str) -> dict:
    return {
        "id": item.id,
        "orderId": item.order_id,
        "productId": item.product_id,
        "quantity": item.quantity,
        "priceEach": money(item.price_each),
        "product": product_summary(item.product, *product_fields) if item.product else None,
    }


def serialize_order(order: Order, product_fields=("name", "brand", "sku"), include_user: bool = False) -> dict:
    data = {
        "id": order.id,
        "orderNumber": order.order_number,
        "userId": order.user_id,
        "contactName": order.contact_name,
        "phone": order.phone,
        "email": order.email,
        "deliveryMethod": order.delivery_method,
        "deliveryAddress": order.delivery_address,
        "paymentMethod": order.payment_method,
        "totalAmount": money(order.total_amount),
        "status": order.status,
        "trackingNumber": order.tracking_number,
        "notes": order.notes,
        "createdAt": iso(order.created_at),
        "updatedAt": iso(order.updated_at),
        "items": [serialize_item(item, *product_fields) for item in order.items],
    }
    if include_user:
        user = order.user
        data["user"] = {"id": user.id, "email": user.email, "name": user.name, "phone": user.phone} if user else None
    return data


# ============================================================
# PLACE ORDER
# ============================================================

def _requested_quantities(payload: OrderCreate) -> "OrderedDict[int, int]":
    """productId -> total quantity, in first-seen order. Repeated ids are summed."""
    wanted: "OrderedDict[int, int]" = OrderedDict()
    for item in payload.items:
        wanted[item.productId] = wanted.get(item.productId, 0) + item.quantity
    return wanted


def _lock_products(db: DBSession, product_ids) -> Dict[int, Product]:
    # ascending id order keeps concurrent lockers from deadlocking
    products = (
        db.query(Product)
        .filter(Product.id.in_(sorted(product_ids)))
        .order_by(Product.id)
        .with_for_update()
        .all()
    )
    return {p.id: p for p in products}


def _create_order(db: DBSession, payload: OrderCreate, order_number: str, tracking_number: str) -> Order:
    """
    Stage the order, its lines and the stock decrements in the current
    transaction. Nothing is committed here; any exception leaves the
    caller to roll back.
    """
    if payload.userId is not None:
        if not db.query(User.id).filter(User.id == payload.userId).first():
            raise NotFoundError("User not found", userId=payload.userId)

    wanted = _requested_quantities(payload)

    # ── 1. all products must exist ──
    products = _lock_products(db, wanted.keys())
    missing = [pid for pid in wanted if pid not in products]
    if missing:
        raise NotFoundError("Some products not found", productIds=missing)

    # ── 2. all lines must be covered by stock ──
    for product_id, quantity in wanted.items():
        product = products[product_id]
        if product.stock < quantity:
            raise InsufficientStockError(product.id, product.name, product.stock)

    # ── 3. total at current prices; these prices are frozen into the lines ──
    lines = []
    total = Decimal("0")
    for item in payload.items:
        price = Decimal(products[item.productId].price)
        total += price * item.quantity
        lines.append(OrderItem(product_id=item.productId, quantity=item.quantity, price_each=price))

    # ── 5. guarded decrement, then insert ──
    for product_id, quantity in wanted.items():
        updated = (
            db.query(Product)
            .filter(Product.id == product_id, Product.stock >= quantity)
            .update({Product.stock: Product.stock - quantity}, synchronize_session=False)
        )
        if updated != 1:
            available = db.query(Product.stock).filter(Product.id == product_id).scalar()
            raise InsufficientStockError(product_id, products[product_id].name, available or 0)

    address = payload.deliveryAddress.model_dump(exclude_none=True) if payload.deliveryAddress else None

    order = Order(
        order_number=order_number,
        tracking_number=tracking_number,
        user_id=payload.userId,
        contact_name=payload.contactName,
        phone=payload.phone,
        email=payload.email,
        delivery_method=payload.deliveryMethod,
        delivery_address=address,
        payment_method=payload.paymentMethod,
        total_amount=total,
        notes=payload.notes,
        items=lines,
    )
    db.add(order)
    db.flush()
    return order


def _refresh_customer(db: DBSession, payload: OrderCreate):
    """Copy the order's contact details onto the linked user. Failures are logged, not raised."""
    try:
        user = db.query(User).filter(User.id == payload.userId).first()
        if not user:
            return
        user.phone = payload.phone
        user.name = payload.contactName
        if payload.email:
            user.email = payload.email
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        print(f"⚠️ Could not refresh contact info for user {payload.userId}: {e}")


def place_order(db: DBSession, payload: OrderCreate) -> dict:
    attempts = max(config.ORDER_NUMBER_ATTEMPTS, 1)

    for attempt in range(1, attempts + 1):
        order_number = generate_order_number()
        tracking_number = generate_tracking_number()
        try:
            order = _create_order(db, payload, order_number, tracking_number)
            db.commit()
        except IntegrityError:
            db.rollback()
            print(f"⚠️ Order number collision ({order_number}/{tracking_number}), attempt {attempt}/{attempts}")
            continue
        except OilMarketError:
            db.rollback()
            raise
        break
    else:
        raise OrderNumberExhaustedError(attempts)

    order_id = order.id
    print(f"🧾 Order {order_number} created: {len(payload.items)} line(s), total {order.total_amount}")

    if payload.userId is not None:
        _refresh_customer(db, payload)

    order = _load_order(db, order_id)

    return {
        "success": True,
        "message": "Order created successfully",
        "order": {
            "id": order.id,
            "orderNumber": order.order_number,
            "trackingNumber": order.tracking_number,
            "totalAmount": money(order.total_amount),
            "status": order.status,
            "createdAt": iso(order.created_at),
        },
        "items": [serialize_item(item, "name", "brand", "sku") for item in order.items],
    }


# ============================================================
# CUSTOMER LOOKUPS
# ============================================================

def _with_items(query):
    return query.options(selectinload(Order.items).selectinload(OrderItem.product))


def _load_order(db: DBSession, order_id: int) -> Order:
    order = _with_items(db.query(Order)).filter(Order.id == order_id).first()
    if not order:
        raise NotFoundError("Order not found")
    return order


def track_order(db: DBSession, tracking_number: str, phone: Optional[str]) -> dict:
    """Public lookup. The phone acts as the password; address and email never leave."""
    if not phone:
        raise ValidationFailedError("Phone number is required")

    order = _with_items(db.query(Order)).filter(Order.tracking_number == tracking_number).first()
    if not order:
        raise NotFoundError("Order not found")

    if order.phone != phone:
        raise AccessDeniedError("Access denied. Phone number does not match.")

    data = serialize_order(order, product_fields=("name", "brand", "images", "type", "viscosity"))
    data.pop("deliveryAddress")
    data.pop("email")
    return data


def get_user_orders(db: DBSession, identifier: str, phone: Optional[str] = None) -> List[dict]:
    """Order history by email (anything with an @) or numeric user id."""
    if "@" in identifier:
        user = db.query(User).filter(User.email == identifier).first()
    else:
        user_id = positive_int(identifier, 0)
        user = db.query(User).filter(User.id == user_id).first() if user_id else None

    if not user:
        raise NotFoundError("User not found")

    if phone and user.phone != phone:
        raise AccessDeniedError("Access denied")

    orders = (
        _with_items(db.query(Order))
        .filter(Order.user_id == user.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )
    return [serialize_order(o, product_fields=("name", "brand", "images")) for o in orders]


# ============================================================
# BACK OFFICE
# ============================================================

def _parse_date(value: Any, end_of_day: bool = False) -> Optional[datetime]:
    text = clean_text(value)
    if text is None:
        return None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    # a bare date as upper bound means "until the end of that day"
    if end_of_day and len(text) == 10:
        parsed = datetime.combine(parsed.date(), dt_time.max)
    return parsed


def list_orders(db: DBSession, params: Mapping[str, Any]) -> dict:
    page = positive_int(params.get("page"), 1)
    limit = positive_int(params.get("limit"), config.ADMIN_PAGE_SIZE)

    query = db.query(Order)

    status = clean_text(params.get("status"))
    if status:
        query = query.filter(Order.status == status)

    start = _parse_date(params.get("startDate"))
    end = _parse_date(params.get("endDate"), end_of_day=True)
    if start:
        query = query.filter(Order.created_at >= start)
    if end:
        query = query.filter(Order.created_at <= end)

    search = clean_text(params.get("search"))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Order.order_number.ilike(pattern),
            Order.contact_name.ilike(pattern),
            Order.phone.ilike(pattern),
            Order.email.ilike(pattern),
            Order.tracking_number.ilike(pattern),
        ))

    total = query.count()
    orders = (
        _with_items(query)
        .options(selectinload(Order.user))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
        .all()
    )

    return {
        "data": [serialize_order(o, include_user=True) for o in orders],
        "meta": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }


def get_order(db: DBSession, order_id: int) -> dict:
    order = _load_order(db, order_id)
    return serialize_order(order, product_fields=("name", "brand", "sku", "price", "images"), include_user=True)


def update_order(db: DBSession, order_id: int, payload: OrderUpdate) -> dict:
    order = _load_order(db, order_id)

    if payload.status and payload.status not in ORDER_STATUSES:
        raise ValidationFailedError("Invalid status")

    if payload.trackingNumber and payload.trackingNumber != order.tracking_number:
        taken = db.query(Order.id).filter(Order.tracking_number == payload.trackingNumber).first()
        if taken:
            raise ConflictError("Tracking number already exists")
        order.tracking_number = payload.trackingNumber

    if payload.status:
        order.status = payload.status
    if payload.notes is not None:
        order.notes = payload.notes

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Tracking number already exists")

    return get_order(db, order_id)


def dashboard_stats(db: DBSession) -> dict:
    total_products = db.query(func.count(Product.id)).scalar()
    total_orders = db.query(func.count(Order.id)).scalar()
    revenue = db.query(func.sum(Order.total_amount)).scalar()
    low_stock = db.query(func.count(Product.id)).filter(Product.stock < config.LOW_STOCK_THRESHOLD).scalar()

    recent = (
        _with_items(db.query(Order))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(5)
        .all()
    )

    return {
        "stats": {
            "totalProducts": total_products,
            "totalOrders": total_orders,
            "totalRevenue": money(revenue),
            "lowStockProducts": low_stock,
        },
        "recentOrders": [serialize_order(o, product_fields=("name",)) for o in recent],
    }
