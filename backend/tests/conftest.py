"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")

import pytest
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice.core.rbac import TokenData, UserRole
from backoffice.core.security import create_access_token
from backoffice.db.base import Base
from backoffice.db.session import configure_sqlite_engine, get_db
from backoffice.main import app
# Import all models to ensure they're registered with Base.metadata
from backoffice.models import *
from backoffice.models.menu import MenuItem, MenuMaintenance, RecipeLine
from backoffice.models.raw_material import RawMaterial, UnitConversion
from backoffice.models.stock import StockRecord
from backoffice.models.supplier import Supplier

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

ADMIN_ID = 1
STAFF_ID = 2


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    configure_sqlite_engine(engine)
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
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    # Disable the rate limiter during tests to avoid flaky failures
    from backoffice.core.rate_limit import limiter
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.dependency_overrides.clear()


# ============== Actors ==============

@pytest.fixture
def admin() -> TokenData:
    return TokenData(user_id=ADMIN_ID, email="admin@example.com", role=UserRole.ADMIN)


@pytest.fixture
def staff() -> TokenData:
    return TokenData(user_id=STAFF_ID, email="staff@example.com", role=UserRole.STAFF)


def _token(user_id: int, role: str) -> str:
    return create_access_token(
        data={"sub": str(user_id), "email": f"{role}@example.com", "role": role}
    )


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {_token(ADMIN_ID, 'admin')}"}


@pytest.fixture
def staff_headers() -> dict:
    return {"Authorization": f"Bearer {_token(STAFF_ID, 'staff')}"}


# ============== Inventory scenario ==============

def _put_stock(db: Session, material: RawMaterial, available) -> StockRecord:
    record = (
        db.query(StockRecord)
        .filter(StockRecord.raw_material_id == material.id, StockRecord.unit == material.unit)
        .first()
    )
    if record is None:
        record = StockRecord(raw_material_id=material.id, unit=material.unit)
        db.add(record)
    record.quantity = Decimal(str(available))
    record.available = Decimal(str(available))
    db.commit()
    db.refresh(record)
    return record


@pytest.fixture
def set_stock(db_session: Session):
    """Put ``available`` base units of a material on hand."""
    def _set(material: RawMaterial, available) -> StockRecord:
        return _put_stock(db_session, material, available)
    return _set


@pytest.fixture
def flour(db_session: Session) -> RawMaterial:
    """Flour tracked in kg, bought by the 25 kg sack at 1000 per sack."""
    material = RawMaterial(
        name="Flour",
        category="Dry Goods",
        unit="kg",
        unit_price=Decimal("40.00"),
        critical_level=Decimal("5"),
    )
    db_session.add(material)
    db_session.flush()
    db_session.add(UnitConversion(
        raw_material_id=material.id,
        base_unit="kg",
        equivalent_unit="sack",
        quantity=Decimal("0.04"),
        unit_price=Decimal("1000.00"),
        srp=Decimal("1000.00"),
        is_default_retail=True,
    ))
    db_session.commit()
    db_session.refresh(material)
    return material


@pytest.fixture
def sugar(db_session: Session) -> RawMaterial:
    material = RawMaterial(
        name="Sugar",
        category="Dry Goods",
        unit="kg",
        unit_price=Decimal("80.00"),
        critical_level=Decimal("2"),
    )
    db_session.add(material)
    db_session.commit()
    db_session.refresh(material)
    return material


@pytest.fixture
def pandesal(db_session: Session, flour: RawMaterial) -> MenuMaintenance:
    """A bread that needs 0.5 kg of flour per piece."""
    menu = MenuMaintenance(name="Pandesal", category="Bread", critical_level=5)
    db_session.add(menu)
    db_session.flush()
    db_session.add(RecipeLine(
        menu_maintenance_id=menu.id,
        raw_material_id=flour.id,
        quantity=Decimal("0.5"),
        unit="kg",
    ))
    db_session.commit()
    db_session.refresh(menu)
    return menu


@pytest.fixture
def pandesal_item(db_session: Session, pandesal: MenuMaintenance) -> MenuItem:
    """Sellable Pandesal with 10 servings on the counter."""
    item = MenuItem(
        menu_maintenance_id=pandesal.id,
        name="Pandesal",
        category="Bread",
        price=Decimal("25.00"),
        servings=10,
        is_available=True,
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def ensaymada_item(db_session: Session) -> MenuItem:
    """A second sellable item without a recipe, 3 servings on hand."""
    menu = MenuMaintenance(name="Ensaymada", category="Bread")
    db_session.add(menu)
    db_session.flush()
    item = MenuItem(
        menu_maintenance_id=menu.id,
        name="Ensaymada",
        category="Bread",
        price=Decimal("40.00"),
        servings=3,
        is_available=True,
    )
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item


@pytest.fixture
def supplier(db_session: Session) -> Supplier:
    supplier = Supplier(company_name="Golden Mill Trading")
    db_session.add(supplier)
    db_session.commit()
    db_session.refresh(supplier)
    return supplier
