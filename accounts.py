# ============================================================
# accounts.py — Customers, favorites and back-office admins
# ============================================================
# Customers are identified by email and never log in; favorites
# are keyed by (user, product).
#
# Admins log in with username + password and receive an opaque
# bearer token. Every admin route resolves that token into an
# AdminPrincipal which is handed to the route explicitly.
# ============================================================

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession, selectinload

import config
from catalog import get_product, iso, product_summary
from errors import AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from models import Admin, AdminSession, Favorite, Order, OrderItem, User
from orders import serialize_order
from schemas import UserRegister


# ============================================================
# CUSTOMERS
# ============================================================

def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "phone": user.phone,
        "createdAt": iso(user.created_at),
    }


def serialize_favorite(favorite: Favorite) -> dict:
    return {
        "id": favorite.id,
        "userId": favorite.user_id,
        "productId": favorite.product_id,
        "createdAt": iso(favorite.created_at),
        "product": product_summary(favorite.product, "name", "brand", "price", "images", "type", "viscosity"),
    }


def register_user(db: DBSession, payload: UserRegister) -> dict:
    if db.query(User.id).filter(User.email == payload.email).first():
        raise ConflictError("User already exists")

    user = User(email=payload.email, phone=payload.phone, name=payload.name)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("User already exists")
    db.refresh(user)

    return {
        "message": "User registered successfully",
        "user": serialize_user(user),
    }


def get_profile(db: DBSession, email: Optional[str] = None, phone: Optional[str] = None) -> dict:
    """Customer profile with the ten latest orders and all favorites."""
    if not email and not phone:
        raise ValidationFailedError("Email or phone is required")

    query = db.query(User)
    if email:
        query = query.filter(User.email == email)
    if phone:
        query = query.filter(User.phone == phone)
    user = query.order_by(User.id).first()

    if not user:
        raise NotFoundError("User not found")

    orders = (
        db.query(Order)
        .options(selectinload(Order.items).selectinload(OrderItem.product))
        .filter(Order.user_id == user.id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(10)
        .all()
    )
    favorites = (
        db.query(Favorite)
        .filter(Favorite.user_id == user.id)
        .order_by(Favorite.created_at.desc(), Favorite.id.desc())
        .all()
    )

    return {
        **serialize_user(user),
        "orders": [serialize_order(o, product_fields=("name", "brand", "images")) for o in orders],
        "favorites": [serialize_favorite(f) for f in favorites],
    }


def _customer_by_email(db: DBSession, email: Optional[str]) -> User:
    if not email:
        raise ValidationFailedError("Email is required")
    user = db.query(User).filter(User.email == email).first()
    if not user:
        raise NotFoundError("User not found")
    return user


def add_favorite(db: DBSession, email: Optional[str], product_id: int) -> dict:
    """Idempotent: adding an existing pair returns the stored row."""
    user = _customer_by_email(db, email)
    get_product(db, product_id)

    favorite = (
        db.query(Favorite)
        .filter(Favorite.user_id == user.id, Favorite.product_id == product_id)
        .first()
    )
    if not favorite:
        favorite = Favorite(user_id=user.id, product_id=product_id)
        db.add(favorite)
        try:
            db.commit()
        except IntegrityError:
            # a parallel request inserted the same pair first
            db.rollback()
            favorite = (
                db.query(Favorite)
                .filter(Favorite.user_id == user.id, Favorite.product_id == product_id)
                .one()
            )
        db.refresh(favorite)

    return {"message": "Added to favorites", "favorite": serialize_favorite(favorite)}


def remove_favorite(db: DBSession, email: Optional[str], product_id: int) -> dict:
    user = _customer_by_email(db, email)
    db.query(Favorite).filter(
        Favorite.user_id == user.id,
        Favorite.product_id == product_id,
    ).delete(synchronize_session=False)
    db.commit()
    return {"message": "Removed from favorites"}


# ============================================================
# ADMINS
# ============================================================

@dataclass(frozen=True)
class AdminPrincipal:
    """The verified admin behind a request."""
    id: int
    username: str
    email: str
    role: str
    token: str

    def to_dict(self) -> dict:
        return {"id": self.id, "username": self.username, "email": self.email, "role": self.role}

    def require_role(self, role: str):
        if self.role != role:
            raise PermissionDeniedError(role, self.role)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_admin(db: DBSession, username: str, password: str, email: str, role: str = "manager") -> Admin:
    admin = Admin(username=username, email=email, password_hash=hash_password(password), role=role)
    db.add(admin)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Admin already exists")
    db.refresh(admin)
    return admin


def ensure_default_admin(db: DBSession) -> Optional[Admin]:
    """Create the bootstrap admin from config when the table is empty."""
    if db.query(Admin.id).first():
        return None
    admin = create_admin(
        db,
        username=config.ADMIN_INIT_USERNAME,
        password=config.ADMIN_INIT_PASSWORD,
        email=config.ADMIN_INIT_EMAIL,
        role="admin",
    )
    print(f"✅ Default admin user '{admin.username}' created")
    return admin


def login_admin(db: DBSession, username: str, password: str) -> dict:
    admin = db.query(Admin).filter(Admin.username == username).first()
    if not admin or not admin.is_active:
        raise AuthenticationError()
    if not verify_password(password, admin.password_hash):
        raise AuthenticationError()

    token = secrets.token_urlsafe(32)
    now = datetime.utcnow()
    db.add(AdminSession(
        admin_id=admin.id,
        token_hash=_token_digest(token),
        expires_at=now + timedelta(hours=config.ADMIN_SESSION_TTL_HOURS),
    ))
    admin.last_login = now
    db.commit()

    principal = AdminPrincipal(admin.id, admin.username, admin.email, admin.role, token)
    return {
        "message": "Login successful",
        "token": token,
        "admin": principal.to_dict(),
    }


def authenticate_token(db: DBSession, token: Optional[str]) -> AdminPrincipal:
    if not token:
        raise AuthenticationError("Authentication required")

    session = (
        db.query(AdminSession)
        .filter(AdminSession.token_hash == _token_digest(token))
        .first()
    )
    if not session or session.revoked_at is not None or session.expires_at <= datetime.utcnow():
        raise AuthenticationError("Session expired or invalid")

    admin = session.admin
    if not admin.is_active:
        raise AuthenticationError("Admin account is disabled")

    return AdminPrincipal(admin.id, admin.username, admin.email, admin.role, token)


def logout_admin(db: DBSession, principal: AdminPrincipal) -> dict:
    db.query(AdminSession).filter(
        AdminSession.token_hash == _token_digest(principal.token),
        AdminSession.revoked_at.is_(None),
    ).update({AdminSession.revoked_at: datetime.utcnow()}, synchronize_session=False)
    db.commit()
    return {"message": "Logout successful"}
