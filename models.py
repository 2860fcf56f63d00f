from sqlalchemy import (
    Column, Integer, String, Numeric, Text, DateTime, Boolean, JSON, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


# ── Enumerations (stored as plain strings) ───────────────────
PRODUCT_TYPES = ("synthetic", "semi-synthetic", "mineral", "other")
APPLICATIONS = ("petrol", "diesel", "universal", "commercial")
DELIVERY_METHODS = ("pickup", "delivery")
PAYMENT_METHODS = ("card", "cash", "upon_receipt")
ORDER_STATUSES = ("new", "processing", "shipped", "delivered", "cancelled")
ADMIN_ROLES = ("admin", "manager")


# ============================================================
# Product: one catalog entry (a canister of oil)
# ============================================================
class Product(Base):
    __tablename__ = "products"

    id              = Column(Integer, primary_key=True, index=True)
    sku             = Column(String, unique=True, index=True, nullable=True)
    name            = Column(String, nullable=False)
    description     = Column(Text)
    brand           = Column(String, index=True)
    type            = Column(String, index=True)              # synthetic | semi-synthetic | mineral | other
    viscosity       = Column(String)                          # "5W-40"
    volume_ml       = Column(Integer)
    application     = Column(String)                          # petrol | diesel | universal | commercial
    price           = Column(Numeric(12, 2), nullable=False)
    stock           = Column(Integer, nullable=False, default=0)
    images          = Column(JSON, nullable=False, default=list)
    characteristics = Column(JSON)                            # {"api": "SN/CF", "acea": "A3/B4", ...}
    created_at      = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at      = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # ── relationships ──
    order_items = relationship("OrderItem", back_populates="product", passive_deletes="all")
    favorites   = relationship("Favorite", back_populates="product", cascade="all, delete-orphan")


# ============================================================
# User: storefront customer, keyed by email
# ============================================================
class User(Base):
    __tablename__ = "users"

    id         = Column(Integer, primary_key=True, index=True)
    email      = Column(String, unique=True, index=True, nullable=False)
    phone      = Column(String)
    name       = Column(String)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    orders    = relationship("Order", back_populates="user", passive_deletes=True)
    favorites = relationship("Favorite", back_populates="user", cascade="all, delete-orphan")


# ============================================================
# Favorite: (user, product) pair, at most one row per pair
# ============================================================
class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_favorites_user_product"),)

    id         = Column(Integer, primary_key=True, index=True)
    user_id    = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    user    = relationship("User", back_populates="favorites")
    product = relationship("Product", back_populates="favorites")


# ============================================================
# Order: one row per placed order
# total_amount is computed server-side from the snapshot prices
# ============================================================
class Order(Base):
    __tablename__ = "orders"

    id               = Column(Integer, primary_key=True, index=True)
    order_number     = Column(String, unique=True, nullable=False)
    user_id          = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    contact_name     = Column(String)
    phone            = Column(String, nullable=False)
    email            = Column(String)
    delivery_method  = Column(String, nullable=False, default="pickup")
    delivery_address = Column(JSON)                           # {"city", "street", "house", "apartment", "comment"}
    payment_method   = Column(String, nullable=False, default="card")
    total_amount     = Column(Numeric(12, 2), nullable=False)
    status           = Column(String, nullable=False, default="new", index=True)
    tracking_number  = Column(String, unique=True, index=True)
    notes            = Column(Text)
    created_at       = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at       = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    # ── relationship: one Order has many OrderItems ──
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )
    user  = relationship("User", back_populates="orders")


# ============================================================
# OrderItem: one product line in an order
# price_each is the product price at the moment of ordering
# ============================================================
class OrderItem(Base):
    __tablename__ = "order_items"

    id         = Column(Integer, primary_key=True, index=True)
    order_id   = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity   = Column(Integer, nullable=False)
    price_each = Column(Numeric(12, 2), nullable=False)       # snapshot price at time of order

    # ── relationships ──
    order   = relationship("Order", back_populates="items")
    product = relationship("Product", back_populates="order_items")


# ============================================================
# Admin: back-office operator
# ============================================================
class Admin(Base):
    __tablename__ = "admins"

    id            = Column(Integer, primary_key=True, index=True)
    username      = Column(String, unique=True, nullable=False)
    email         = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=False)            # bcrypt
    role          = Column(String, nullable=False, default="manager")
    is_active     = Column(Boolean, nullable=False, default=True, index=True)
    last_login    = Column(DateTime)
    created_at    = Column(DateTime, server_default=func.now(), nullable=False)

    sessions = relationship("AdminSession", back_populates="admin", cascade="all, delete-orphan")


# ============================================================
# AdminSession: issued on login, presented as a bearer token
# Only the SHA-256 digest of the token is stored
# ============================================================
class AdminSession(Base):
    __tablename__ = "admin_sessions"

    id         = Column(Integer, primary_key=True, index=True)
    admin_id   = Column(Integer, ForeignKey("admins.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime)

    admin = relationship("Admin", back_populates="sessions")
