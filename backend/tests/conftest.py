"""Pytest configuration and fixtures."""

import os

# The app engine is created at import time; keep it off the filesystem
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db.session import enable_sqlite_foreign_keys, get_db
from app.main import app
# Import all models to ensure they're registered with Base.metadata
from app.models import *
from app.services.locking import KeyedLockRegistry
from app.services.stock_ledger import StockLedger

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def file_engine(tmp_path):
    """File-backed SQLite engine for tests that use one session per thread."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def locks() -> KeyedLockRegistry:
    """A lock registry private to the test."""
    return KeyedLockRegistry()


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable rate limiting during tests to avoid flaky failures
    from app.core.rate_limit import limiter as global_limiter
    global_limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    global_limiter.enabled = True
    app.dependency_overrides.clear()


# ============== Catalog fixtures ==============

@pytest.fixture
def test_location(db_session: Session) -> Location:
    """Create a test location."""
    location = Location(name="Main Store", code="MAIN", active=True)
    db_session.add(location)
    db_session.commit()
    db_session.refresh(location)
    return location


@pytest.fixture
def other_location(db_session: Session) -> Location:
    location = Location(name="Market Stand", code="STAND", active=True)
    db_session.add(location)
    db_session.commit()
    db_session.refresh(location)
    return location


@pytest.fixture
def categories(db_session: Session) -> dict:
    """Two categories: cosmetics and accessories."""
    cosmetics = Category(name="Cosmetics")
    accessories = Category(name="Accessories")
    db_session.add_all([cosmetics, accessories])
    db_session.commit()
    return {"cosmetics": cosmetics, "accessories": accessories}


@pytest.fixture
def catalog(db_session: Session, categories: dict) -> dict:
    """Simple items plus a combo "Gift Set" = 2x Lipstick + 1x Mirror."""
    lipstick = Item(
        name="Lipstick", sku="LIP-01", category_id=categories["cosmetics"].id,
        selling_price_usd=Decimal("10.00"), selling_price_local=Decimal("365.00"),
    )
    mirror = Item(
        name="Pocket Mirror", sku="MIR-01", category_id=categories["accessories"].id,
        selling_price_usd=Decimal("4.50"), selling_price_local=Decimal("164.25"),
    )
    cream = Item(
        name="Hand Cream", sku="CRM-01", category_id=categories["cosmetics"].id,
        selling_price_usd=Decimal("7.25"),
    )
    db_session.add_all([lipstick, mirror, cream])
    db_session.flush()

    gift_set = Item(
        name="Gift Set", sku="SET-01", is_combo=True,
        category_id=categories["cosmetics"].id, selling_price_usd=Decimal("22.00"),
    )
    gift_set.combo_components = [
        ComboComponent(component_item_id=lipstick.id, quantity=2),
        ComboComponent(component_item_id=mirror.id, quantity=1),
    ]
    empty_combo = Item(name="Mystery Box", sku="BOX-00", is_combo=True)
    db_session.add_all([gift_set, empty_combo])
    db_session.commit()

    return {
        "lipstick": lipstick,
        "mirror": mirror,
        "cream": cream,
        "gift_set": gift_set,
        "empty_combo": empty_combo,
    }


@pytest.fixture
def stocked(db_session: Session, test_location: Location, catalog: dict, locks) -> dict:
    """Opening stock at the main store: 10 lipsticks, 3 mirrors, 20 creams."""
    ledger = StockLedger(db_session, locks)
    ledger.set_absolute(catalog["lipstick"].id, test_location.id, 10)
    ledger.set_absolute(catalog["mirror"].id, test_location.id, 3)
    ledger.set_absolute(catalog["cream"].id, test_location.id, 20)
    return {**catalog, "location": test_location, "ledger": ledger}


@pytest.fixture
def sellers(db_session: Session, test_location: Location, categories: dict) -> dict:
    """Two sellers at the main store; Ana earns 10% on cosmetics, 5% otherwise."""
    ana = Seller(name="Ana", default_rate=Decimal("5"))
    ana.locations.append(test_location)
    ana.category_rates.append(
        SellerCategoryRate(category_id=categories["cosmetics"].id, rate=Decimal("10"))
    )
    bo = Seller(name="Bo", default_rate=Decimal("2.5"))
    bo.locations.append(test_location)
    retired = Seller(name="Retired", default_rate=Decimal("50"), active=False)
    retired.locations.append(test_location)
    db_session.add_all([ana, bo, retired])
    db_session.commit()
    return {"ana": ana, "bo": bo, "retired": retired}
