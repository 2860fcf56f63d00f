# ============================================================
# catalog.py — Product catalog queries
# ============================================================
# Storefront listing with filters, sort, pagination and facets,
# product detail / SKU lookup / featured lists, and the back-office
# product CRUD.
#
# Filters are small frozen dataclasses, one per filter dimension.
# They are built from the raw query string by parse_catalog_query()
# and compiled into SQLAlchemy clauses by compile_filter().
# ============================================================

import math
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Tuple, Union

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

import config
from errors import ConflictError, NotFoundError, ValidationFailedError
from models import OrderItem, Product
from schemas import SQL_INT_MAX, ProductIn


SORT_COLUMNS = {
    "name": Product.name,
    "price": Product.price,
    "createdAt": Product.created_at,
    "brand": Product.brand,
    "type": Product.type,
}
DEFAULT_SORT = "createdAt"

# Columns the storefront free-text search looks at
STOREFRONT_SEARCH_FIELDS = ("name", "description", "brand", "type", "viscosity", "application", "sku")
# The back office only searches the identifying columns
ADMIN_SEARCH_FIELDS = ("name", "sku", "brand")


# ============================================================
# FILTERS
# ============================================================

@dataclass(frozen=True)
class TextMatch:
    term: str
    fields: Tuple[str, ...] = STOREFRONT_SEARCH_FIELDS


@dataclass(frozen=True)
class TypeIs:
    value: str


@dataclass(frozen=True)
class ViscosityIs:
    value: str


@dataclass(frozen=True)
class BrandIs:
    value: str


@dataclass(frozen=True)
class VolumeIs:
    value: int


@dataclass(frozen=True)
class ApplicationIs:
    value: str


@dataclass(frozen=True)
class PriceRange:
    low: Optional[Decimal] = None
    high: Optional[Decimal] = None


@dataclass(frozen=True)
class StockPresence:
    in_stock: bool


CatalogFilter = Union[
    TextMatch, TypeIs, ViscosityIs, BrandIs, VolumeIs, ApplicationIs, PriceRange, StockPresence
]


def compile_filter(f: CatalogFilter):
    """Turn one filter into a SQLAlchemy boolean clause."""
    if isinstance(f, TextMatch):
        pattern = f"%{f.term}%"
        return or_(*[getattr(Product, name).ilike(pattern) for name in f.fields])
    if isinstance(f, TypeIs):
        return Product.type == f.value
    if isinstance(f, ViscosityIs):
        return Product.viscosity == f.value
    if isinstance(f, BrandIs):
        return Product.brand == f.value
    if isinstance(f, VolumeIs):
        return Product.volume_ml == f.value
    if isinstance(f, ApplicationIs):
        return Product.application == f.value
    if isinstance(f, PriceRange):
        bounds = []
        if f.low is not None:
            bounds.append(Product.price >= f.low)
        if f.high is not None:
            bounds.append(Product.price <= f.high)
        return and_(*bounds)
    if isinstance(f, StockPresence):
        return Product.stock > 0 if f.in_stock else Product.stock == 0
    raise TypeError(f"Unsupported catalog filter: {f!r}")


@dataclass
class CatalogQuery:
    """A fully resolved listing request."""
    filters: List[CatalogFilter] = field(default_factory=list)
    sort_by: str = DEFAULT_SORT
    sort_order: str = "desc"
    page: int = 1
    limit: int = config.CATALOG_PAGE_SIZE

    @property
    def offset(self) -> int:
        return page_offset(self.page, self.limit)

    def stock_filter(self) -> Optional[StockPresence]:
        for f in self.filters:
            if isinstance(f, StockPresence):
                return f
        return None


# ============================================================
# LENIENT PARAMETER PARSING
# ============================================================
# Query strings come in untyped. Bad numbers are treated as if the
# parameter was not sent at all instead of failing the request.
# That includes integers too large for an INTEGER column.

def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _int(value: Any) -> Optional[int]:
    text = clean_text(value)
    if text is None:
        return None
    try:
        number = int(text)
    except ValueError:
        try:
            number = int(float(text))
        except (ValueError, OverflowError):
            return None
    return number if -SQL_INT_MAX - 1 <= number <= SQL_INT_MAX else None


def _decimal(value: Any) -> Optional[Decimal]:
    text = clean_text(value)
    if text is None:
        return None
    try:
        number = Decimal(text)
    except ArithmeticError:
        return None
    return number if number.is_finite() else None


def positive_int(value: Any, default: int) -> int:
    number = _int(value)
    return number if number is not None and number > 0 else default


def page_offset(page: int, limit: int) -> int:
    return min((page - 1) * limit, SQL_INT_MAX)


def resolve_sort(sort_by: Optional[str], sort_order: Optional[str]) -> Tuple[str, str]:
    """Unknown sort fields fall back to createdAt, unknown directions to desc."""
    field_name = sort_by if sort_by in SORT_COLUMNS else DEFAULT_SORT
    direction = "asc" if sort_order == "asc" else "desc"
    return field_name, direction


def parse_catalog_query(
        params: Mapping[str, Any],
        search_fields: Tuple[str, ...] = STOREFRONT_SEARCH_FIELDS,
        default_limit: int = config.CATALOG_PAGE_SIZE
) -> CatalogQuery:
    filters: List[CatalogFilter] = []

    term = clean_text(params.get("q") if "q" in params else params.get("search"))
    if term:
        filters.append(TextMatch(term, search_fields))

    for key, variant in (("type", TypeIs), ("viscosity", ViscosityIs),
                         ("brand", BrandIs), ("application", ApplicationIs)):
        value = clean_text(params.get(key))
        if value:
            filters.append(variant(value))

    volume = _int(params.get("volume"))
    if volume is not None:
        filters.append(VolumeIs(volume))

    low, high = _decimal(params.get("minPrice")), _decimal(params.get("maxPrice"))
    if low is not None or high is not None:
        filters.append(PriceRange(low, high))

    in_stock = clean_text(params.get("inStock"))
    if in_stock == "true":
        filters.append(StockPresence(True))
    elif in_stock == "false":
        filters.append(StockPresence(False))

    sort_by, sort_order = resolve_sort(clean_text(params.get("sortBy")), clean_text(params.get("sortOrder")))

    return CatalogQuery(
        filters=filters,
        sort_by=sort_by,
        sort_order=sort_order,
        page=positive_int(params.get("page"), 1),
        limit=positive_int(params.get("limit"), default_limit),
    )


# ============================================================
# SERIALIZATION
# ============================================================

def money(value) -> float:
    return float(value) if value is not None else 0.0


def iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_product(p: Product) -> dict:
    return {
        "id": p.id,
        "sku": p.sku,
        "name": p.name,
        "description": p.description,
        "brand": p.brand,
        "type": p.type,
        "viscosity": p.viscosity,
        "volume_ml": p.volume_ml,
        "application": p.application,
        "price": money(p.price),
        "stock": p.stock,
        "images": list(p.images or []),
        "characteristics": p.characteristics,
        "createdAt": iso(p.created_at),
        "updatedAt": iso(p.updated_at),
    }


def product_summary(p: Product, *fields: str) -> dict:
    """Minimal projection of a product, e.g. inside order lines."""
    full = serialize_product(p)
    return {name: full[name] for name in ("id",) + fields}


# ============================================================
# LISTING
# ============================================================

def _apply(query, filters: List[CatalogFilter]):
    for f in filters:
        query = query.filter(compile_filter(f))
    return query


def _ordering(sort_by: str, sort_order: str):
    column = SORT_COLUMNS[sort_by]
    if sort_order == "asc":
        return column.asc(), Product.id.asc()
    return column.desc(), Product.id.desc()


def _distinct_values(db: DBSession, column, base_filters: List[CatalogFilter]) -> list:
    query = _apply(db.query(column).distinct(), base_filters)
    return [value for (value,) in query.all() if value not in (None, "")]


def compute_facets(db: DBSession, stock: Optional[StockPresence] = None) -> dict:
    """
    Values the shopper can still filter by.

    Categorical facets follow the stock-presence filter (if any) but no other
    filter. The price range always spans the whole catalog.
    """
    base = [stock] if stock is not None else []

    low, high = db.query(func.min(Product.price), func.max(Product.price)).one()

    return {
        "brands": sorted(_distinct_values(db, Product.brand, base)),
        "types": sorted(_distinct_values(db, Product.type, base)),
        "viscosities": sorted(_distinct_values(db, Product.viscosity, base)),
        "applications": sorted(_distinct_values(db, Product.application, base)),
        "volumes": sorted(_distinct_values(db, Product.volume_ml, base)),
        "priceRange": {
            "min": money(low),
            "max": money(high),
        },
    }


def search_catalog(db: DBSession, query: CatalogQuery, with_facets: bool = True) -> dict:
    filtered = _apply(db.query(Product), query.filters)

    total = filtered.count()
    products = (
        filtered
        .order_by(*_ordering(query.sort_by, query.sort_order))
        .offset(query.offset)
        .limit(query.limit)
        .all()
    )

    result = {
        "data": [serialize_product(p) for p in products],
        "meta": {
            "page": query.page,
            "limit": query.limit,
            "total": total,
            "pages": math.ceil(total / query.limit),
        },
    }
    if with_facets:
        result["filters"] = compute_facets(db, query.stock_filter())
    return result


# ============================================================
# SINGLE PRODUCT / FEATURED
# ============================================================

def get_product(db: DBSession, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found")
    return product


def get_product_detail(db: DBSession, product_id: int) -> dict:
    """Product plus up to four in-stock products sharing its brand, type or viscosity."""
    product = get_product(db, product_id)

    related = (
        db.query(Product)
        .filter(
            Product.id != product.id,
            Product.stock > 0,
            or_(
                Product.brand == product.brand,
                Product.type == product.type,
                Product.viscosity == product.viscosity,
            ),
        )
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(4)
        .all()
    )

    return {
        **serialize_product(product),
        "relatedProducts": [serialize_product(p) for p in related],
    }


def get_product_by_sku(db: DBSession, sku: str) -> dict:
    product = db.query(Product).filter(Product.sku == sku).first()
    if not product:
        raise NotFoundError("Product not found")
    return serialize_product(product)


FEATURED = {
    "new": ((Product.created_at.desc(), Product.id.desc()), 8),
    "popular": ((Product.created_at.desc(), Product.id.desc()), 6),
    "top-rated": ((Product.price.desc(), Product.id.desc()), 4),
}


def get_featured(db: DBSession, kind: str) -> List[dict]:
    ordering, take = FEATURED.get(kind, FEATURED["new"])
    products = (
        db.query(Product)
        .filter(Product.stock > 0)
        .order_by(*ordering)
        .limit(take)
        .all()
    )
    return [serialize_product(p) for p in products]


# ============================================================
# BACK OFFICE: PRODUCT CRUD
# ============================================================

def generate_sku(brand: Optional[str]) -> str:
    brand_part = (brand or "GEN")[:3].upper()
    sequence = str(int(time.time() * 1000))[-6:]
    return f"{config.SKU_PREFIX}-{brand_part}-{sequence}"


def _product_values(payload: ProductIn) -> dict:
    return {
        "name": payload.name,
        "description": payload.description,
        "brand": payload.brand,
        "type": payload.type,
        "viscosity": payload.viscosity,
        "volume_ml": payload.volume_ml,
        "application": payload.application,
        "price": Decimal(str(payload.price)),
        "stock": payload.stock,
        "images": [str(url) for url in payload.images],
        "characteristics": payload.characteristics,
    }


def _sku_taken(db: DBSession, sku: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


def _commit_product(db: DBSession, product: Product) -> Product:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("SKU already exists")
    db.refresh(product)
    return product


def create_product(db: DBSession, payload: ProductIn) -> dict:
    sku = payload.sku or generate_sku(payload.brand)
    if _sku_taken(db, sku):
        raise ConflictError("SKU already exists")

    product = Product(sku=sku, **_product_values(payload))
    db.add(product)
    return serialize_product(_commit_product(db, product))


def update_product(db: DBSession, product_id: int, payload: ProductIn) -> dict:
    product = get_product(db, product_id)

    if payload.sku and _sku_taken(db, payload.sku, exclude_id=product.id):
        raise ConflictError("SKU already exists")

    for key, value in _product_values(payload).items():
        setattr(product, key, value)
    if payload.sku:
        product.sku = payload.sku

    return serialize_product(_commit_product(db, product))


def delete_product(db: DBSession, product_id: int) -> dict:
    """Products referenced by any order line are never deleted."""
    product = get_product(db, product_id)

    order_items = db.query(func.count(OrderItem.id)).filter(OrderItem.product_id == product.id).scalar()
    if order_items:
        raise ValidationFailedError(
            "Cannot delete product that is associated with orders",
            orderItems=order_items,
        )

    db.delete(product)
    db.commit()
    return {"message": "Product deleted successfully"}


def list_admin_products(db: DBSession, params: Mapping[str, Any]) -> dict:
    query = parse_catalog_query(params, search_fields=ADMIN_SEARCH_FIELDS, default_limit=config.ADMIN_PAGE_SIZE)
    # the back office only filters by search / brand / type
    query.filters = [f for f in query.filters if isinstance(f, (TextMatch, BrandIs, TypeIs))]
    return search_catalog(db, query, with_facets=False)
