# FILE: pharmledger/db/init_db.py
from __future__ import annotations

import argparse
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmledger.db.base import Base
from pharmledger.db.migrations import run_migrations
from pharmledger.db.session import SessionLocal, engine

# Import all models so metadata is complete
from pharmledger.models import (  # noqa: F401
    ActivityLog, Bill, BillItem, Counter, Medicine, MedicineAuditEntry,
    MedicineBatch, SchemaMigration)
from pharmledger.schemas.medicine import LocationIn, MedicineCreate
from pharmledger.services.medicines import add_medicine

logger = logging.getLogger(__name__)

SAMPLE_MEDICINES = [
    MedicineCreate(
        name="Paracetamol 500mg",
        brand="Crocin",
        salt="Paracetamol",
        category="Tablet",
        tablets_per_strip=10,
        quantity=150,
        unit_price=Decimal("12.50"),
        location=LocationIn(rack="A", shelf="1", drawer="1"),
        batch_number="CR2024001",
        expiry_date=date(2027, 6, 15),
    ),
    MedicineCreate(
        name="Amoxicillin 250mg",
        brand="Mox",
        salt="Amoxicillin",
        category="Capsule",
        tablets_per_strip=10,
        quantity=80,
        unit_price=Decimal("28.00"),
        location=LocationIn(rack="A", shelf="2"),
        batch_number="MX2024002",
        expiry_date=date(2027, 3, 20),
    ),
    MedicineCreate(
        name="Azithromycin 500mg",
        brand="Azee",
        salt="Azithromycin",
        category="Tablet",
        tablets_per_strip=6,
        quantity=36,
        unit_price=Decimal("71.50"),
        location=LocationIn(rack="B", shelf="1"),
        batch_number="AZ2024010",
        expiry_date=date(2027, 1, 31),
    ),
    MedicineCreate(
        name="Cough Syrup 100ml",
        brand="Benadryl",
        salt="Diphenhydramine",
        category="Syrup",
        tablets_per_strip=1,
        quantity=25,
        unit_price=Decimal("95.00"),
        location=LocationIn(rack="C", shelf="1"),
        batch_number="BN2024005",
        expiry_date=date(2026, 12, 31),
    ),
]


def create_tables() -> None:
    Base.metadata.create_all(bind=engine)


def seed_sample_medicines(db: Session) -> int:
    """Only seeds an empty inventory; safe to run multiple times."""
    if db.query(Medicine).first() is not None:
        return 0
    for data in SAMPLE_MEDICINES:
        add_medicine(db, data)
    return len(SAMPLE_MEDICINES)


def main() -> None:
    parser = argparse.ArgumentParser(description="Create tables and apply migrations")
    parser.add_argument("--seed", action="store_true", help="seed sample medicines")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    try:
        create_tables()
        with SessionLocal() as db:
            applied = run_migrations(db)
            print("Migrations applied:", applied or "none")
            if args.seed:
                print("Seeded medicines:", seed_sample_medicines(db))
    except SQLAlchemyError as e:
        print("Database init failed:", e)
        raise


if __name__ == "__main__":
    main()
