# FILE: pharmledger/db/migrations.py
"""
Versioned data migrations.

Each migration is a function over every record of one kind, applied once
and recorded in `schema_migrations`. `run_migrations` applies the pending
ones in version order, each in its own transaction, so re-running it is a
no-op.
"""
from __future__ import annotations

import logging
from typing import Callable, List, NamedTuple

from sqlalchemy.orm import Session, selectinload

from pharmledger.core.config import settings
from pharmledger.db.session import atomic
from pharmledger.models.counters import SchemaMigration
from pharmledger.models.medicine import STRIP_CATEGORIES, Medicine, MedicineBatch
from pharmledger.services.stock import normalize_medicine

logger = logging.getLogger(__name__)


class Migration(NamedTuple):
    version: int
    name: str
    apply: Callable[[Session], int]


def _baseline(db: Session) -> int:
    return 0


def _backfill_tablets_per_strip(db: Session) -> int:
    """
    Rows written before loose-tablet billing counted stock in strips and
    have no tablets_per_strip. Tablet/Capsule get the default strip size
    and their stock (medicine and batches) is converted to tablets; every
    other category sells by the unit.
    """
    touched = 0
    meds = (db.query(Medicine).options(selectinload(Medicine.batches)).filter(
        Medicine.tablets_per_strip.is_(None)).all())
    for med in meds:
        tps = settings.DEFAULT_TABLETS_PER_STRIP if med.category in STRIP_CATEGORIES else 1
        med.tablets_per_strip = tps
        med.quantity = int(med.quantity or 0) * tps
        for b in med.batches:
            b.quantity = int(b.quantity or 0) * tps
            if b.unit_price is None:
                b.unit_price = med.unit_price
        touched += 1
    return touched


def _backfill_batch_prices(db: Session) -> int:
    touched = 0
    batches = db.query(MedicineBatch).filter(MedicineBatch.unit_price.is_(None)).all()
    for b in batches:
        b.unit_price = b.medicine.unit_price
        touched += 1
    return touched


def _normalize_all(db: Session) -> int:
    meds = db.query(Medicine).options(selectinload(Medicine.batches)).all()
    for med in meds:
        normalize_medicine(med)
    return len(meds)


MIGRATIONS: List[Migration] = [
    Migration(1, "baseline", _baseline),
    Migration(2, "tablets_per_strip_backfill", _backfill_tablets_per_strip),
    Migration(3, "batch_price_backfill", _backfill_batch_prices),
    Migration(4, "normalize_medicines", _normalize_all),
]

LATEST_VERSION = MIGRATIONS[-1].version


def current_version(db: Session) -> int:
    row = db.query(SchemaMigration).order_by(SchemaMigration.version.desc()).first()
    return row.version if row else 0


def run_migrations(db: Session) -> List[int]:
    """Apply pending migrations in order. -> versions applied this call."""
    applied: List[int] = []
    done = current_version(db)
    for m in MIGRATIONS:
        if m.version <= done:
            continue
        with atomic(db):
            count = m.apply(db)
            db.add(SchemaMigration(version=m.version, name=m.name))
        logger.info("Migration %s (%s) applied to %s records", m.version, m.name, count)
        applied.append(m.version)
    return applied
