"""Pytest fixtures for the oil market backend tests."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func
from sqlalchemy.orm import sessionmaker

import accounts
from database import build_engine, get_db, init_db
from main import app, limiter
from models import Order, OrderItem, Product


@pytest.fixture
def engine(tmp_path):
    """A fresh file-backed SQLite database per test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def client(session_factory):
    """Test client whose requests run against the per-test database."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_product(session_factory):
    """Insert a product and return its id. Keyword arguments override defaults."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        values = {
            "sku": f"OIL-TST-{counter['n']:03d}",
            "name": f"Test Oil {counter['n']}",
            "description": "Fully synthetic motor oil",
            "brand": "Shell",
            "type": "synthetic",
            "viscosity": "5W-40",
            "volume_ml": 4000,
            "application": "universal",
            "price": Decimal("1000.00"),
            "stock": 10,
            "images": [],
        }
        values.update(overrides)
        if not isinstance(values["price"], Decimal):
            values["price"] = Decimal(str(values["price"]))
        with session_factory() as db:
            product = Product(**values)
            db.add(product)
            db.commit()
            return product.id

    return _make


@pytest.fixture
def inspect_store(session_factory):
    """Small read helpers that open and close their own session."""
    class Store:
        def stock(self, product_id):
            with session_factory() as db:
                return db.query(Product.stock).filter(Product.id == product_id).scalar()

        def price(self, product_id):
            with session_factory() as db:
                return db.query(Product.price).filter(Product.id == product_id).scalar()

        def order_count(self):
            with session_factory() as db:
                return db.query(func.count(Order.id)).scalar()

        def order_item_count(self):
            with session_factory() as db:
                return db.query(func.count(OrderItem.id)).scalar()

    return Store()


@pytest.fixture
def make_admin(session_factory):
    def _make(username="boss", password="s3cret-pass", role="admin", email=None):
        with session_factory() as db:
            admin = accounts.create_admin(
                db, username=username, password=password, email=email or f"{username}@oilmarket.test", role=role
            )
            return admin.id

    return _make


@pytest.fixture
def admin_headers(client, make_admin):
    """Authorization header for a freshly logged-in admin (role 'admin')."""
    make_admin()
    response = client.post("/api/admin/login", json={"username": "boss", "password": "s3cret-pass"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def order_payload(*items, **overrides):
    """Build a valid order body; items are (product_id, quantity) pairs."""
    payload = {
        "contactName": "Ivan Petrov",
        "phone": "+79991234567",
        "items": [{"productId": pid, "quantity": qty} for pid, qty in items],
    }
    payload.update(overrides)
    return payload
