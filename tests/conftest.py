import os
from decimal import Decimal

# Configure before the app modules read the environment
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("WAREHOUSE_SECRET_KEY", "test-only-secret-key-0123456789abcdef0123456789")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from warehouse_core.app.db import Base
from warehouse_core.app.main import app
from warehouse_core.app import models
from warehouse_core.app.security import (
    get_db, get_password_hash, create_access_token, RateLimiter
)

TEST_PASSWORD = "Str0ng!Pass"

# bcrypt is slow on purpose; hash once per test run
TEST_PASSWORD_HASH = get_password_hash(TEST_PASSWORD)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    """One session shared by the test body and every request it makes"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    RateLimiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


def _make_user(db, username, role):
    user = models.User(
        username=username,
        email=f"{username}@example.com",
        full_name=username.title(),
        password_hash=TEST_PASSWORD_HASH,
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def manager(db):
    return _make_user(db, "manager", models.UserRole.INVENTORY_MANAGER.value)


@pytest.fixture
def staff(db):
    return _make_user(db, "staffer", models.UserRole.WAREHOUSE_STAFF.value)


@pytest.fixture
def manager_headers(manager):
    return {"Authorization": f"Bearer {create_access_token({'sub': manager.username})}"}


@pytest.fixture
def staff_headers(staff):
    return {"Authorization": f"Bearer {create_access_token({'sub': staff.username})}"}


@pytest.fixture
def vendor(db):
    contact = models.Contact(
        name="Acme Supplies", phone="555-0100", email="sales@acme.example",
        contact_type=models.ContactType.VENDOR,
    )
    db.add(contact)
    db.commit()
    db.refresh(contact)
    return contact


@pytest.fixture
def customer(db):
    contact = models.Contact(
        name="Globex Retail", phone="555-0200", email="buying@globex.example",
        contact_type=models.ContactType.CUSTOMER,
    )
    db.add(contact)
    db.commit()
    db.refresh(contact)
    return contact


@pytest.fixture
def warehouse(db):
    warehouse = models.Warehouse(name="Main Warehouse", shortcode="WH")
    warehouse.locations.append(models.Location(name="Stock", shortcode="WH/Stock"))
    db.add(warehouse)
    db.commit()
    db.refresh(warehouse)
    return warehouse


def _make_product(db, sku, on_hand, price, **extra):
    product = models.Product(
        sku=sku,
        name=sku.title(),
        category="General",
        unit_of_measure="Units",
        on_hand_quantity=on_hand,
        price_per_unit=Decimal(price),
        **extra
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@pytest.fixture
def widget(db):
    """Empty stock, priced 5.00"""
    return _make_product(db, "WIDGET-1", 0, "5.00")


@pytest.fixture
def gadget(db):
    """20 in stock, priced 2.00"""
    return _make_product(db, "GADGET-1", 20, "2.00")


@pytest.fixture
def scarce(db):
    """Only 3 in stock"""
    return _make_product(db, "SCARCE-1", 3, "9.99")


@pytest.fixture
def file_sessions(tmp_path):
    """Session factory on a file-backed database, one connection per session"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'warehouse.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()
