# FILE: pharmledger/services/billing.py
"""
Bill ledger: checkout, bill edits and administrative deletes.

Every write here runs inside one `atomic(db)` block and follows the same
shape: lock and load every medicine involved, check every stock condition,
and only then mutate. A failure in the check phase leaves the session
untouched; a failure after it rolls the whole transaction back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from pharmledger.core.errors import (
    BillConflict,
    EmptyBill,
    InsufficientStock,
    InvalidDiscount,
    InvalidQuantity,
    NotFound,
)
from pharmledger.db.session import atomic
from pharmledger.models.billing import Bill, BillItem
from pharmledger.models.medicine import Medicine, MedicineBatch
from pharmledger.schemas.billing import BillLineIn, CustomerMeta
from pharmledger.services.audit import append_audit, change, log_activity
from pharmledger.services.bill_numbers import next_bill_number
from pharmledger.services.fefo import Allocation, allocate, apply_allocation, batch_price
from pharmledger.services.stock import (
    normalize_medicine,
    split_tablets,
    tablets_per_strip,
    total_quantity,
)
from pharmledger.utils.money import D, HUNDRED, ZERO, round_money, round_price
from pharmledger.utils.timezone import utcnow

logger = logging.getLogger(__name__)


# ---------- Totals ----------


def clamp_discount(discount_percent) -> Decimal:
    """Out-of-range discounts are clamped to [0, 100], never rejected."""
    pct = D(discount_percent)
    if pct < 0:
        return ZERO
    if pct > HUNDRED:
        return HUNDRED
    return pct


def validate_discount(discount_percent) -> Decimal:
    """Strict check for callers that reject instead of clamping."""
    pct = D(discount_percent)
    if pct < 0 or pct > HUNDRED:
        raise InvalidDiscount(f"Discount must be between 0 and 100 (got {pct})",
                              discount_percent=str(pct))
    return pct


def compute_totals(line_totals: Iterable[Decimal],
                   discount_percent) -> Tuple[Decimal, Decimal, Decimal]:
    """-> (subtotal, discount_amount, grand_total)"""
    pct = clamp_discount(discount_percent)
    subtotal = round_money(sum((D(t) for t in line_totals), ZERO))
    discount_amount = round_money(subtotal * pct / HUNDRED)
    grand_total = max(ZERO, subtotal - discount_amount)
    return subtotal, discount_amount, grand_total


# ---------- Line helpers ----------


def merge_lines(items: Iterable[BillLineIn]) -> Dict[str, int]:
    """
    medicine_id -> tablets, first-seen order. Repeated lines for one
    medicine are summed; negative quantities are a caller error.
    """
    merged: Dict[str, int] = {}
    for item in items or []:
        qty = int(item.quantity)
        if qty < 0:
            raise InvalidQuantity(
                f"Quantity for {item.medicine_id} must be >= 0 (got {qty})",
                medicine_id=item.medicine_id,
            )
        merged[item.medicine_id] = merged.get(item.medicine_id, 0) + qty
    return merged


def _lock_medicine(db: Session, medicine_id: str) -> Optional[Medicine]:
    return (db.query(Medicine).filter(Medicine.id == medicine_id).options(
        selectinload(Medicine.batches)).with_for_update().first())


def _deduct(med: Medicine, tablets: int) -> Allocation:
    """Take `tablets` out of stock, FEFO across batches when there are any."""
    alloc = allocate(med, tablets)
    if med.batches:
        apply_allocation(med, alloc)
    else:
        if int(med.quantity or 0) < tablets:
            raise InsufficientStock(med.name, int(med.quantity or 0), tablets)
        med.quantity = int(med.quantity or 0) - tablets
    normalize_medicine(med)
    return alloc


def _return_target(med: Medicine) -> MedicineBatch:
    # latest expiry; the batch FEFO would sell last
    return max(
        med.batches,
        key=lambda b: (b.expiry_date is not None, b.expiry_date, b.position or 0),
    )


def _restock(med: Medicine, tablets: int, draws: List[dict],
             fallback_rate: Decimal) -> Tuple[List[dict], Decimal]:
    """
    Put `tablets` back. Tablets go to the batches they were drawn from,
    most recent draw first; anything left (or drawn from a batch since
    removed) goes to the latest-expiry batch.

    -> (reduced draws, credit). Tablets matched to a draw are credited at
    their batch's per-tablet price, the rest at `fallback_rate`.
    """
    draws = [dict(d) for d in (draws or [])]
    remaining = tablets
    credit = ZERO

    if not med.batches:
        med.quantity = int(med.quantity or 0) + tablets
    else:
        per_strip = Decimal(tablets_per_strip(med))
        by_id = {b.id: b for b in med.batches}
        for d in reversed(draws):
            if remaining <= 0:
                break
            give = min(remaining, int(d.get("quantity") or 0))
            if give <= 0:
                continue
            source = by_id.get(d.get("batch_id"))
            target = source or _return_target(med)
            target.quantity = int(target.quantity or 0) + give
            d["quantity"] = int(d["quantity"]) - give
            remaining -= give
            if source is not None:
                credit += Decimal(give) * batch_price(source, med) / per_strip
            else:
                credit += Decimal(give) * fallback_rate
        if remaining > 0:
            target = _return_target(med)
            target.quantity = int(target.quantity or 0) + remaining
        normalize_medicine(med)

    credit += Decimal(remaining) * fallback_rate
    return [d for d in draws if int(d.get("quantity") or 0) > 0], credit


def _merge_draws(draws: List[dict], extra: List[dict]) -> List[dict]:
    out = [dict(d) for d in (draws or [])]
    for e in extra:
        for d in out:
            if d.get("batch_id") == e["batch_id"]:
                d["quantity"] = int(d["quantity"]) + int(e["quantity"])
                break
        else:
            out.append(dict(e))
    return out


def _item_from_allocation(position: int, med: Medicine, alloc: Allocation) -> BillItem:
    return BillItem(
        position=position,
        medicine_id=med.id,
        medicine_name=med.name,
        brand=med.brand or "",
        quantity=alloc.requested,
        unit_price=alloc.unit_price_effective,
        tablets_per_strip=alloc.tablets_per_strip,
        strip_qty=alloc.strip_qty,
        loose_qty=alloc.loose_qty,
        total=round_money(alloc.total_cost),
        batch_draws=alloc.draws_json() or None,
    )


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def bill_snapshot(bill: Bill) -> dict:
    return {
        "bill_number": bill.bill_number,
        "items": {i.medicine_id: int(i.quantity) for i in bill.items},
        "subtotal": float(D(bill.subtotal)),
        "discount_percent": float(D(bill.discount_percent)),
        "grand_total": float(D(bill.grand_total)),
    }


# ---------- Reads ----------


def get_all_bills(db: Session, include_deleted: bool = False) -> List[Bill]:
    q = db.query(Bill).options(selectinload(Bill.items))
    if not include_deleted:
        q = q.filter(Bill.deleted_at.is_(None))
    return q.order_by(Bill.created_at.desc(), Bill.bill_number.desc()).all()


def get_bill(db: Session, bill_id: str) -> Bill:
    bill = db.get(Bill, bill_id)
    if not bill or bill.deleted_at is not None:
        raise NotFound(f"Bill not found: {bill_id}", bill_id=bill_id)
    return bill


def quote_line(db: Session, medicine_id: str, tablets: int) -> Allocation:
    """Price a prospective cart line without touching stock."""
    med = db.get(Medicine, medicine_id)
    if not med:
        raise NotFound(f"Medicine not found: {medicine_id}", medicine_id=medicine_id)
    return allocate(med, tablets)


# ---------- Create ----------


def create_bill(
    db: Session,
    items: List[BillLineIn],
    discount_percent=0,
    customer: Optional[CustomerMeta] = None,
) -> Bill:
    lines = {mid: q for mid, q in merge_lines(items).items() if q > 0}
    if not lines:
        raise EmptyBill("Cart is empty")
    pct = clamp_discount(discount_percent)
    customer = customer or CustomerMeta()

    with atomic(db):
        meds: Dict[str, Medicine] = {}
        for mid, qty in lines.items():
            med = _lock_medicine(db, mid)
            if not med:
                raise NotFound(f"Medicine not found: {mid}", medicine_id=mid)
            available = total_quantity(med)
            if qty > available:
                raise InsufficientStock(med.name, available, qty)
            meds[mid] = med

        bill_number = next_bill_number(db)
        now = utcnow()

        bill_items: List[BillItem] = []
        for pos, (mid, qty) in enumerate(lines.items()):
            med = meds[mid]
            before = total_quantity(med)
            alloc = _deduct(med, qty)
            append_audit(
                med,
                "sold",
                [change("quantity", before, med.quantity)],
                f"Sold {qty} units ({bill_number})",
                at=now,
            )
            bill_items.append(_item_from_allocation(pos, med, alloc))

        subtotal, discount_amount, grand_total = compute_totals(
            (i.total for i in bill_items), pct)

        bill = Bill(
            bill_number=bill_number,
            customer_name=_clean(customer.customer_name),
            customer_phone=_clean(customer.customer_phone),
            doctor_name=_clean(customer.doctor_name),
            items=bill_items,
            subtotal=subtotal,
            discount_percent=pct,
            discount_amount=discount_amount,
            grand_total=grand_total,
            created_at=now,
            updated_at=now,
        )
        db.add(bill)
        db.flush()
        log_activity(db, action="CREATE", table_name="bills", record_id=bill.id,
                     new_values=bill_snapshot(bill))

    db.refresh(bill)
    logger.info("Bill %s created: %s lines, grand total %s", bill.bill_number,
                len(bill.items), bill.grand_total)
    return bill


# ---------- Update ----------


def _reprice_kept(kept: BillItem, qty: int, extra: Optional[Allocation],
                  credit: Decimal) -> Tuple[Decimal, Decimal]:
    """
    -> (unit_price, total) for a line kept on an edited bill. The stored
    total is the base; it is never re-derived from the rounded unit price.
    """
    old_qty = int(kept.quantity)
    if qty == old_qty:
        return D(kept.unit_price), D(kept.total)
    if qty > old_qty:
        total = D(kept.total) + round_money(extra.total_cost if extra else ZERO)
    else:
        total = max(ZERO, round_money(D(kept.total) - credit))
    strips = Decimal(qty) / Decimal(int(kept.tablets_per_strip or 1))
    return round_price(total / strips), total


@dataclass
class _Delta:
    old_qty: int = 0
    new_qty: int = 0
    name: str = ""

    @property
    def delta(self) -> int:
        # > 0 restock, < 0 deduct more
        return self.old_qty - self.new_qty


def build_delta_map(original: Dict[str, int], new: Dict[str, int],
                    names: Optional[Dict[str, str]] = None) -> Dict[str, _Delta]:
    """
    Net stock change per medicine to move a bill from `original` to `new`.
    Original quantities are credited back, new quantities debited, and the
    two collapse into one signed delta per medicine.
    """
    names = names or {}
    deltas: Dict[str, _Delta] = {}
    for mid, qty in original.items():
        deltas[mid] = _Delta(old_qty=qty, new_qty=0, name=names.get(mid, mid))
    for mid, qty in new.items():
        d = deltas.setdefault(mid, _Delta(name=names.get(mid, mid)))
        d.new_qty = qty
    return deltas


def update_bill(
    db: Session,
    bill_id: str,
    new_items: List[BillLineIn],
    discount_percent=0,
    original_items: Optional[List[BillLineIn]] = None,
    customer: Optional[CustomerMeta] = None,
) -> Bill:
    """
    Revise a bill already reflected in stock.

    Each medicine is touched once with its net delta. Lines sent with
    quantity 0 are removed from the bill and their stock returned. A kept
    line keeps what it was charged: extra tablets add their FEFO cost,
    returned tablets take off the cost of the batches they go back to.
    Lines new to the bill are priced FEFO against current batches.
    """
    new = merge_lines(new_items)
    pct = clamp_discount(discount_percent)
    customer = customer or CustomerMeta()

    with atomic(db):
        bill = get_bill(db, bill_id)
        stored_items = {i.medicine_id: i for i in bill.items}
        stored = {mid: int(i.quantity) for mid, i in stored_items.items()}

        if original_items is not None:
            claimed = {m: q for m, q in merge_lines(original_items).items() if q > 0}
            if claimed != stored:
                raise BillConflict(
                    f"Bill {bill.bill_number} changed since it was loaded for editing",
                    bill_id=bill.id,
                )

        deltas = build_delta_map(
            stored, new, {mid: i.medicine_name for mid, i in stored_items.items()})

        # check phase: nothing is mutated until every medicine passes
        meds: Dict[str, Medicine] = {}
        for mid, d in deltas.items():
            if d.delta == 0:
                continue
            med = _lock_medicine(db, mid)
            if not med:
                raise NotFound(f"Medicine not found: {d.name}", medicine_id=mid)
            current = total_quantity(med)
            if current + d.delta < 0:
                raise InsufficientStock(
                    med.name,
                    current,
                    -d.delta,
                    msg=(f"Insufficient stock for {med.name}. "
                         f"Available: {current}, Need to deduct: {-d.delta}"),
                )
            meds[mid] = med

        now = utcnow()
        draws: Dict[str, List[dict]] = {
            mid: list(i.batch_draws or []) for mid, i in stored_items.items()
        }
        fresh: Dict[str, Allocation] = {}
        credits: Dict[str, Decimal] = {}

        for mid, med in meds.items():
            d = deltas[mid]
            before = total_quantity(med)
            if d.delta > 0:
                kept = stored_items[mid]
                rate = D(kept.unit_price) / Decimal(int(kept.tablets_per_strip or 1))
                draws[mid], credits[mid] = _restock(med, d.delta, draws.get(mid, []), rate)
                note = (f"Edit {bill.bill_number}: returned {d.delta} units "
                        f"(qty {d.old_qty}→{d.new_qty})")
            else:
                alloc = _deduct(med, -d.delta)
                fresh[mid] = alloc
                draws[mid] = _merge_draws(draws.get(mid, []), alloc.draws_json())
                note = (f"Edit {bill.bill_number}: deducted {-d.delta} more units "
                        f"(qty {d.old_qty}→{d.new_qty})")
            append_audit(med, "sold", [change("quantity", before, med.quantity)],
                         note, at=now)

        new_bill_items: List[BillItem] = []
        for mid, qty in new.items():
            if qty <= 0:
                continue
            pos = len(new_bill_items)
            kept = stored_items.get(mid)
            if kept is not None:
                per_strip = int(kept.tablets_per_strip or 1)
                strip_qty, loose_qty = split_tablets(qty, per_strip)
                unit_price, total = _reprice_kept(kept, qty, fresh.get(mid),
                                                  credits.get(mid, ZERO))
                new_bill_items.append(
                    BillItem(
                        position=pos,
                        medicine_id=mid,
                        medicine_name=kept.medicine_name,
                        brand=kept.brand or "",
                        quantity=qty,
                        unit_price=unit_price,
                        tablets_per_strip=per_strip,
                        strip_qty=strip_qty,
                        loose_qty=loose_qty,
                        total=total,
                        batch_draws=draws.get(mid) or None,
                    ))
            else:
                item = _item_from_allocation(pos, meds[mid], fresh[mid])
                new_bill_items.append(item)

        old_values = bill_snapshot(bill)
        bill.items.clear()
        db.flush()
        bill.items.extend(new_bill_items)

        subtotal, discount_amount, grand_total = compute_totals(
            (i.total for i in new_bill_items), pct)
        bill.subtotal = subtotal
        bill.discount_percent = pct
        bill.discount_amount = discount_amount
        bill.grand_total = grand_total
        bill.customer_name = _clean(customer.customer_name) or bill.customer_name
        bill.customer_phone = _clean(customer.customer_phone) or bill.customer_phone
        bill.doctor_name = _clean(customer.doctor_name) or bill.doctor_name
        bill.updated_at = now

        db.flush()
        log_activity(db, action="UPDATE", table_name="bills", record_id=bill.id,
                     old_values=old_values, new_values=bill_snapshot(bill))

    db.refresh(bill)
    logger.info("Bill %s updated: %s medicines restocked/deducted", bill.bill_number,
                len(meds))
    return bill


# ---------- Delete ----------


def delete_bill(db: Session, bill_id: str) -> bool:
    """
    Administrative delete. The bill disappears from reads; stock is NOT
    given back and the bill number is never reissued.
    """
    with atomic(db):
        bill = get_bill(db, bill_id)
        bill.deleted_at = utcnow()
        log_activity(db, action="DELETE", table_name="bills", record_id=bill.id,
                     old_values=bill_snapshot(bill),
                     note="Administrative delete; stock not reversed")
    logger.info("Bill %s deleted (stock not reversed)", bill_id)
    return True
