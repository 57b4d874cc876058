# conftest.py
import os
import tempfile

# settings are read at import time, so the test database must be chosen first
os.environ.setdefault("APP_SECRET", "test-secret-that-is-long-enough-for-hs256")
os.environ["DB_URL"] = "sqlite:///" + os.path.join(tempfile.gettempdir(), f"rasoi_test_{os.getpid()}.db")

import random
import string
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from rasoi.context import ActorContext, ROLE_MANAGER, ROLE_STAFF
from rasoi.db import Base, SessionLocal, engine
from rasoi.main import app
from rasoi.models import Customer, Product, Restaurant, RestaurantTable, Tenant
from rasoi.models.core import TableStatus
from rasoi.util.security import create_token


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def seed(db):
    """One restaurant with a small menu, a table and a regular customer."""
    tenant = Tenant(name="Spice Route Foods")
    db.add(tenant)
    db.flush()
    restaurant = Restaurant(tenant_id=tenant.id, name="Spice Route", slug="spice-route", is_active=True)
    db.add(restaurant)
    db.flush()

    scope = dict(tenant_id=tenant.id, restaurant_id=restaurant.id)
    paneer = Product(name="Paneer Tikka", price=Decimal("100"), discount_percent=Decimal("10"), cost=Decimal("40"), **scope)
    chai = Product(name="Masala Chai", price=Decimal("50"), discount_percent=Decimal("10"), cost=Decimal("10"), **scope)
    dal = Product(name="Dal Makhani", price=Decimal("100"), discount_percent=Decimal("0"), cost=Decimal("30"), **scope)
    table = RestaurantTable(table_number="T1", seats=4, table_status=TableStatus.AVAILABLE, **scope)
    customer = Customer(name="Asha", phone="+919876543210", credit_balance=Decimal("0"),
                        total_orders=0, total_spent=Decimal("0"), **scope)
    db.add_all([paneer, chai, dal, table, customer])
    db.commit()
    return SimpleNamespace(
        tenant=tenant, restaurant=restaurant, paneer=paneer, chai=chai, dal=dal, table=table, customer=customer,
    )


@pytest.fixture
def ctx(seed):
    return ActorContext(
        tenant_id=seed.tenant.id, restaurant_id=seed.restaurant.id, actor_id="manager-1", role=ROLE_MANAGER,
    )


@pytest.fixture
def base_url():
    return ""


@pytest.fixture
def client():
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def auth_headers(ctx):
    return {"Authorization": f"Bearer {create_token(ctx)}"}


@pytest.fixture
def staff_headers(seed):
    staff = ActorContext(tenant_id=seed.tenant.id, restaurant_id=seed.restaurant.id, actor_id="staff-1", role=ROLE_STAFF)
    return {"Authorization": f"Bearer {create_token(staff)}"}


@pytest.fixture
def rng_suffix():
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
