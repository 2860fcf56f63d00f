from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional

from pydantic import AnyUrl, BaseModel, EmailStr, Field, field_validator, model_validator

# +79991234567, 89991234567 ...
PHONE_PATTERN = r"^\+?[0-9]{10,15}$"

# largest value an INTEGER column can hold
SQL_INT_MAX = 2 ** 63 - 1


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ── Orders ────────────────────────────────────────────────────

class OrderItemIn(BaseModel):
    productId: int = Field(gt=0, le=SQL_INT_MAX)
    quantity: int = Field(gt=0, le=SQL_INT_MAX)


class DeliveryAddress(BaseModel):
    city: str = Field(min_length=1)
    street: str = Field(min_length=1)
    house: str = Field(min_length=1)
    apartment: Optional[str] = None
    comment: Optional[str] = None


class OrderCreate(BaseModel):
    contactName: str = Field(min_length=2, max_length=100)
    phone: str = Field(pattern=PHONE_PATTERN)
    email: Optional[EmailStr] = None
    deliveryMethod: Literal["pickup", "delivery"] = "pickup"
    deliveryAddress: Optional[DeliveryAddress] = None
    paymentMethod: Literal["card", "cash", "upon_receipt"] = "card"
    items: List[OrderItemIn] = Field(min_length=1)
    userId: Optional[int] = Field(default=None, gt=0, le=SQL_INT_MAX)
    notes: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email(cls, value):
        return _blank_to_none(value)

    @model_validator(mode="after")
    def address_for_delivery(self):
        if self.deliveryMethod == "delivery" and self.deliveryAddress is None:
            raise ValueError("deliveryAddress is required when deliveryMethod is 'delivery'")
        return self


class OrderUpdate(BaseModel):
    # status is checked by the service so the error reads "Invalid status"
    status: Optional[str] = None
    trackingNumber: Optional[str] = None
    notes: Optional[str] = None


# ── Products (back office) ────────────────────────────────────

class ProductIn(BaseModel):
    sku: Optional[str] = None
    name: str = Field(min_length=2, max_length=200)
    description: Optional[str] = None
    brand: str = Field(min_length=1, max_length=100)
    type: Literal["synthetic", "semi-synthetic", "mineral", "other"]
    viscosity: str = Field(min_length=2, max_length=20)
    volume_ml: int = Field(gt=0, le=SQL_INT_MAX)
    application: Literal["petrol", "diesel", "universal", "commercial"]
    price: float = Field(gt=0)
    stock: int = Field(ge=0, le=SQL_INT_MAX)
    images: List[AnyUrl] = Field(default_factory=list)
    characteristics: Optional[Dict[str, Any]] = None

    @field_validator("sku", "description", mode="before")
    @classmethod
    def blank_text(cls, value):
        return _blank_to_none(value)


# ── Users / favorites ─────────────────────────────────────────

class UserRegister(BaseModel):
    email: EmailStr
    phone: str = Field(pattern=PHONE_PATTERN)
    name: str = Field(min_length=2, max_length=100)


class FavoriteRequest(BaseModel):
    email: Optional[str] = None


# ── Admin ─────────────────────────────────────────────────────

class AdminLogin(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
