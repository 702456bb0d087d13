# FILE: pharmledger/services/bill_numbers.py
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from pharmledger.core.config import settings
from pharmledger.models.counters import BILL_COUNTER, Counter


def format_bill_number(n: int, prefix: Optional[str] = None,
                       padding: Optional[int] = None) -> str:
    prefix = settings.BILL_NUMBER_PREFIX if prefix is None else prefix
    padding = settings.BILL_NUMBER_PADDING if padding is None else padding
    return f"{prefix}{str(n).zfill(padding)}"


def parse_bill_number(bill_number: str) -> Optional[int]:
    digits = (bill_number or "").rsplit("-", 1)[-1]
    return int(digits) if digits.isdigit() else None


def _counter_row(db: Session, key: str) -> Counter:
    row = (db.query(Counter).filter(Counter.id == key).with_for_update().first())
    if not row:
        row = Counter(id=key, value=0)
        db.add(row)
        db.flush()
    return row


def next_bill_number(db: Session) -> str:
    """
    Issue the next bill number inside the caller's transaction.

    The counter row is locked and bumped in the same transaction as the
    bill insert, so a rolled-back checkout gives its number back and two
    committed bills never share one.
    """
    row = _counter_row(db, BILL_COUNTER)
    n = int(row.value or 0) + 1
    row.value = n
    db.flush()
    return format_bill_number(n)


def peek_bill_counter(db: Session) -> int:
    row = db.get(Counter, BILL_COUNTER)
    return int(row.value) if row else 0
