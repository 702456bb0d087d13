import os

# Settings are read at import time; point them at SQLite before importing the app.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LICENSE_ENFORCED", "true")

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import pharmledger.models  # noqa: F401
from pharmledger.api.deps import get_db, get_license_status
from pharmledger.core.license import ACTIVE
from pharmledger.db.base import Base
from pharmledger.main import app
from pharmledger.schemas.billing import BillLineIn
from pharmledger.schemas.medicine import BatchIn, MedicineCreate
from pharmledger.services.medicines import add_medicine


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_license_status] = lambda: ACTIVE
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ---------- factories ----------


def make_legacy(db, name="Cetirizine", quantity=20, unit_price="10", tablets_per_strip=1,
                category="Tablet", **kw):
    return add_medicine(
        db,
        MedicineCreate(
            name=name,
            category=category,
            tablets_per_strip=tablets_per_strip,
            quantity=quantity,
            unit_price=Decimal(unit_price),
            **kw,
        ),
    )


def make_paracetamol(db):
    """B1 (2025-01-01, 20 tablets, 10/strip) and B2 (2025-06-01, 100 tablets, 12/strip)."""
    return add_medicine(
        db,
        MedicineCreate(
            name="Paracetamol",
            category="Tablet",
            tablets_per_strip=10,
            unit_price=Decimal("11"),
            batches=[
                BatchIn(batch_number="B1", expiry_date=date(2025, 1, 1), quantity=20,
                        unit_price=Decimal("10")),
                BatchIn(batch_number="B2", expiry_date=date(2025, 6, 1), quantity=100,
                        unit_price=Decimal("12")),
            ],
        ),
    )


def line(med, qty):
    return BillLineIn(medicine_id=med.id, quantity=qty)
