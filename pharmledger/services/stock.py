# FILE: pharmledger/services/stock.py
"""
Derived stock view of a medicine.

Batch-mode medicines carry their stock in `batches`; the scalar
`quantity`, `expiry_date` and `batch_number` on the medicine row are a
cache of those batches kept for list screens, sorting and legacy readers.
`normalize_medicine` is the only writer of that cache and must run after
every batch mutation, before flush.

Nothing in here touches the session.
"""
from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Tuple

from pharmledger.core.config import settings
from pharmledger.models.medicine import Medicine
from pharmledger.utils.money import D, ZERO


def tablets_per_strip(medicine: Medicine) -> int:
    return int(medicine.tablets_per_strip or 1) or 1


def total_quantity(medicine: Medicine) -> int:
    if medicine.batches:
        return sum(int(b.quantity or 0) for b in medicine.batches)
    return int(medicine.quantity or 0)


def earliest_expiry(medicine: Medicine) -> Optional[date]:
    if medicine.batches:
        dated = [b.expiry_date for b in medicine.batches if b.expiry_date is not None]
        if dated:
            return min(dated)
    return medicine.expiry_date


def is_multi_batch(medicine: Medicine) -> bool:
    return len(medicine.batches or []) > 1


def normalize_medicine(medicine: Medicine) -> Medicine:
    if not medicine.tablets_per_strip:
        medicine.tablets_per_strip = 1

    if medicine.batches:
        medicine.quantity = total_quantity(medicine)
        medicine.expiry_date = earliest_expiry(medicine)
        medicine.batch_number = (
            medicine.batches[0].batch_number or ""
            if len(medicine.batches) == 1 else "")
    return medicine


def split_tablets(tablets: int, per_strip: int) -> Tuple[int, int]:
    """tablets -> (strip_qty, loose_qty)"""
    per_strip = per_strip or 1
    return tablets // per_strip, tablets % per_strip


def tablet_price(medicine: Medicine) -> Decimal:
    per_strip = tablets_per_strip(medicine)
    price = D(medicine.unit_price)
    if per_strip <= 1:
        return price
    return price / Decimal(per_strip)


def line_total(strip_qty: int, loose_qty: int, unit_price: Decimal,
               per_strip: int) -> Decimal:
    """
    strip_qty strips at unit_price plus loose tablets pro-rated.
    Loose tablets only exist when a strip holds more than one unit.
    """
    unit_price = D(unit_price)
    strip_total = Decimal(strip_qty) * unit_price
    loose_total = (Decimal(loose_qty) * unit_price / Decimal(per_strip)
                   if per_strip > 1 else ZERO)
    return strip_total + loose_total


def stock_status(medicine: Medicine, today: Optional[date] = None) -> str:
    """out | expired | expiring | low | ok"""
    today = today or date.today()
    if total_quantity(medicine) == 0:
        return "out"

    expiry = earliest_expiry(medicine)
    if expiry is not None:
        if expiry < today:
            return "expired"
        if expiry <= today + timedelta(days=settings.EXPIRY_WARNING_DAYS):
            return "expiring"

    if (total_quantity(medicine) < settings.LOW_STOCK_THRESHOLD
            and medicine.stock_alert_enabled is not False):
        return "low"
    return "ok"
