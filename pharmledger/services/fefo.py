# FILE: pharmledger/services/fefo.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Sequence, Tuple

from pharmledger.core.errors import InsufficientStock, InvalidQuantity
from pharmledger.models.medicine import Medicine, MedicineBatch
from pharmledger.services.stock import split_tablets, tablets_per_strip
from pharmledger.utils.money import D, ZERO, round_price

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Draw:
    batch: MedicineBatch
    quantity: int  # tablets taken from this batch
    unit_price: Decimal  # per strip, this batch
    cost: Decimal

    def as_json(self) -> dict:
        return {
            "batch_id": self.batch.id,
            "batch_number": self.batch.batch_number or "",
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class Allocation:
    requested: int
    tablets_per_strip: int
    unit_price_effective: Decimal
    total_cost: Decimal
    strip_qty: int
    loose_qty: int
    draws: Tuple[Draw, ...] = field(default_factory=tuple)
    # tablets priced at the medicine-level fallback because batches ran out
    shortfall: int = 0

    def draws_json(self) -> List[dict]:
        return [d.as_json() for d in self.draws]


def batch_price(batch: MedicineBatch, medicine: Medicine) -> Decimal:
    if batch.unit_price is None:
        return D(medicine.unit_price)
    return D(batch.unit_price)


def fefo_order(batches: Sequence[MedicineBatch]) -> List[MedicineBatch]:
    """
    Batches with stock, earliest expiry first. Undated batches go last;
    equal expiries keep insertion order (sorted() is stable).
    """
    live = [b for b in batches if (b.quantity or 0) > 0]
    return sorted(
        live,
        key=lambda b: (b.expiry_date is None, b.expiry_date or date.max),
    )


def allocate(medicine: Medicine, requested_tablets: int) -> Allocation:
    """
    Price a sale of `requested_tablets` against the medicine's batches
    (First-Expiry-First-Out). Does not touch any quantity.

    Same medicine snapshot + same request -> same Allocation.
    """
    if requested_tablets is None or requested_tablets < 0:
        raise InvalidQuantity(
            f"Requested quantity must be >= 0 (got {requested_tablets})",
            medicine_id=medicine.id,
        )

    requested = int(requested_tablets)
    per_strip = tablets_per_strip(medicine)
    strip_qty, loose_qty = split_tablets(requested, per_strip)

    if requested == 0:
        return Allocation(
            requested=0,
            tablets_per_strip=per_strip,
            unit_price_effective=ZERO,
            total_cost=ZERO,
            strip_qty=0,
            loose_qty=0,
        )

    strips = Decimal(requested) / Decimal(per_strip)

    if not medicine.batches:
        total = strips * D(medicine.unit_price)
        return Allocation(
            requested=requested,
            tablets_per_strip=per_strip,
            unit_price_effective=round_price(total / strips),
            total_cost=total,
            strip_qty=strip_qty,
            loose_qty=loose_qty,
        )

    remaining = requested
    total = ZERO
    draws: List[Draw] = []

    for batch in fefo_order(medicine.batches):
        if remaining <= 0:
            break
        take = min(remaining, int(batch.quantity))
        price = batch_price(batch, medicine)
        cost = Decimal(take) / Decimal(per_strip) * price
        draws.append(Draw(batch=batch, quantity=take, unit_price=price, cost=cost))
        total += cost
        remaining -= take

    if remaining > 0:
        # Callers check availability first, so this only prices a quote.
        logger.warning(
            "FEFO shortfall for %s: %s of %s tablets priced at medicine-level price",
            medicine.id, remaining, requested)
        total += Decimal(remaining) / Decimal(per_strip) * D(medicine.unit_price)

    return Allocation(
        requested=requested,
        tablets_per_strip=per_strip,
        unit_price_effective=round_price(total / strips),
        total_cost=total,
        strip_qty=strip_qty,
        loose_qty=loose_qty,
        draws=tuple(draws),
        shortfall=remaining,
    )


def apply_allocation(medicine: Medicine, allocation: Allocation) -> None:
    """
    Decrement the batches named in `allocation`. Every draw is checked
    before any batch is touched.
    """
    if allocation.shortfall > 0:
        raise InsufficientStock(
            medicine.name,
            available=allocation.requested - allocation.shortfall,
            requested=allocation.requested,
        )
    for d in allocation.draws:
        if d.batch.medicine_id not in (None, medicine.id) or d.batch.quantity < d.quantity:
            raise InsufficientStock(
                medicine.name,
                available=sum(int(b.quantity or 0) for b in medicine.batches),
                requested=allocation.requested,
                msg=(f"Batch {d.batch.batch_number or d.batch.id} of {medicine.name} "
                     f"changed since allocation"),
            )
    for d in allocation.draws:
        d.batch.quantity = int(d.batch.quantity) - d.quantity
