# FILE: pharmledger/services/medicines.py
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session, selectinload

from pharmledger.core.errors import NotFound
from pharmledger.db.session import atomic
from pharmledger.models.medicine import Medicine, MedicineBatch
from pharmledger.schemas.medicine import (
    BatchIn,
    BatchUpdate,
    LocationIn,
    MedicineCreate,
    MedicineUpdate,
)
from pharmledger.services.audit import append_audit, change
from pharmledger.services.stock import (
    earliest_expiry,
    normalize_medicine,
    stock_status,
    total_quantity,
)
from pharmledger.utils.money import D

logger = logging.getLogger(__name__)

# scalar fields tracked by update_medicine, in audit order
TRACKED_FIELDS = (
    "quantity",
    "unit_price",
    "name",
    "brand",
    "salt",
    "category",
    "batch_number",
    "expiry_date",
    "tablets_per_strip",
    "stock_alert_enabled",
)
LOCATION_FIELDS = ("rack", "shelf", "drawer")
# derived from batches in batch mode
DERIVED_FIELDS = ("quantity", "expiry_date", "batch_number")


# ---------- Reads ----------


def get_all_medicines(db: Session) -> List[Medicine]:
    return (db.query(Medicine).options(
        selectinload(Medicine.batches),
        selectinload(Medicine.audit_history)).order_by(Medicine.name.asc(),
                                                       Medicine.id.asc()).all())


def get_medicine(db: Session, medicine_id: str) -> Medicine:
    med = db.get(Medicine, medicine_id)
    if not med:
        raise NotFound(f"Medicine not found: {medicine_id}", medicine_id=medicine_id)
    return med


def stock_alerts(db: Session, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """
    Medicines needing attention: out of stock, expired, expiring soon, low.
    Soonest expiry first inside each status.
    """
    today = today or date.today()
    order = {"out": 0, "expired": 1, "expiring": 2, "low": 3}
    rows: List[Dict[str, Any]] = []
    for med in get_all_medicines(db):
        status = stock_status(med, today)
        if status == "ok":
            continue
        expiry = earliest_expiry(med)
        rows.append({
            "medicine_id": med.id,
            "name": med.name,
            "status": status,
            "quantity": total_quantity(med),
            "expiry_date": expiry,
            "days_until_expiry": (expiry - today).days if expiry else None,
        })
    rows.sort(key=lambda r: (order[r["status"]], r["days_until_expiry"]
                             if r["days_until_expiry"] is not None else 10**6))
    return rows


# ---------- Builders ----------


def _build_batches(items: Iterable[BatchIn], fallback_price: Decimal,
                   start: int = 0) -> List[MedicineBatch]:
    out = []
    for i, b in enumerate(items):
        out.append(
            MedicineBatch(
                position=start + i,
                batch_number=(b.batch_number or "").strip(),
                expiry_date=b.expiry_date,
                quantity=int(b.quantity or 0),
                unit_price=b.unit_price if b.unit_price is not None else fallback_price,
            ))
    return out


def build_medicine(data: MedicineCreate) -> Medicine:
    """New, normalized, unsaved Medicine (no audit entry yet)."""
    price = D(data.unit_price)
    loc = data.location or LocationIn()
    med = Medicine(
        name=data.name.strip(),
        brand=(data.brand or "").strip(),
        salt=(data.salt or "").strip(),
        category=data.category or "Other",
        tablets_per_strip=data.tablets_per_strip or 1,
        quantity=int(data.quantity or 0),
        unit_price=price,
        rack=(loc.rack or "").strip(),
        shelf=(loc.shelf or "").strip(),
        drawer=(loc.drawer or "").strip() or None,
        batch_number=(data.batch_number or "").strip(),
        expiry_date=data.expiry_date,
        stock_alert_enabled=data.stock_alert_enabled,
    )
    med.batches = _build_batches(data.batches, price)
    return normalize_medicine(med)


def _location_changes(med: Medicine, loc: LocationIn) -> List[Dict[str, Any]]:
    changes = []
    for f in LOCATION_FIELDS:
        old = getattr(med, f) or ""
        new = getattr(loc, f) or ""
        if old != new:
            changes.append(change(f"location.{f}", old, new))
    return changes


def _set_location(med: Medicine, loc: LocationIn) -> None:
    med.rack = loc.rack or ""
    med.shelf = loc.shelf or ""
    med.drawer = loc.drawer or None


def _same(old: Any, new: Any) -> bool:
    if isinstance(old, Decimal) or isinstance(new, Decimal):
        return D(old) == D(new)
    return old == new


# ---------- Medicine CRUD ----------


def add_medicine(db: Session, data: MedicineCreate) -> Medicine:
    with atomic(db):
        med = build_medicine(data)
        append_audit(med, "created")
        db.add(med)
    db.refresh(med)
    logger.info("Medicine %s added (%s, qty=%s)", med.id, med.name, med.quantity)
    return med


def update_medicine(db: Session, medicine_id: str, data: MedicineUpdate) -> Medicine:
    """
    Apply a partial update and record one audit entry listing every field
    that actually changed. In batch mode quantity / expiry / batch number
    are derived, so values sent for them are ignored.
    """
    with atomic(db):
        med = get_medicine(db, medicine_id)
        payload = data.model_dump(exclude_unset=True)
        location = payload.pop("location", None)

        if med.batches:
            for f in DERIVED_FIELDS:
                payload.pop(f, None)

        changes: List[Dict[str, Any]] = []
        for f in TRACKED_FIELDS:
            if f not in payload or payload[f] is None:
                continue
            old, new = getattr(med, f), payload[f]
            if not _same(old, new):
                changes.append(change(f, old, new))
            setattr(med, f, new)

        if location is not None:
            loc = LocationIn(**location)
            changes.extend(_location_changes(med, loc))
            _set_location(med, loc)

        if changes:
            action = ("quantity_changed" if any(c["field"] == "quantity" for c in changes)
                      else "updated")
            append_audit(med, action, changes)

        normalize_medicine(med)
    db.refresh(med)
    return med


def delete_medicine(db: Session, medicine_id: str) -> bool:
    with atomic(db):
        med = get_medicine(db, medicine_id)
        db.delete(med)
    logger.info("Medicine %s deleted", medicine_id)
    return True


def bulk_delete_medicines(db: Session, ids: List[str]) -> int:
    deleted = 0
    with atomic(db):
        for mid in ids:
            med = db.get(Medicine, mid)
            if med:
                db.delete(med)
                deleted += 1
    return deleted


def bulk_update_location(db: Session, ids: List[str], location: LocationIn) -> int:
    updated = 0
    with atomic(db):
        for mid in ids:
            med = db.get(Medicine, mid)
            if not med:
                continue
            changes = _location_changes(med, location)
            _set_location(med, location)
            if changes:
                append_audit(med, "updated", changes, "Bulk location update")
            updated += 1
    return updated


# ---------- Batches ----------


def _get_batch(med: Medicine, batch_id: str) -> MedicineBatch:
    for b in med.batches:
        if b.id == batch_id:
            return b
    raise NotFound(f"Batch not found: {batch_id}", medicine_id=med.id, batch_id=batch_id)


def _audit_stock_edit(med: Medicine, old_qty: int, changes: List[Dict[str, Any]],
                      note: str) -> None:
    new_qty = int(med.quantity or 0)
    if old_qty != new_qty:
        changes = [change("quantity", old_qty, new_qty)] + changes
        append_audit(med, "quantity_changed", changes, note)
    else:
        append_audit(med, "updated", changes, note)


def add_batch(db: Session, medicine_id: str, data: BatchIn) -> Medicine:
    """
    Receive a new lot. A legacy medicine holding scalar stock has that stock
    moved into a batch of its own first, so nothing is lost on the switch.
    """
    with atomic(db):
        med = get_medicine(db, medicine_id)
        old_qty = total_quantity(med)

        if not med.batches and (med.quantity or 0) > 0:
            med.batches.append(
                MedicineBatch(
                    position=0,
                    batch_number=med.batch_number or "",
                    expiry_date=med.expiry_date,
                    quantity=int(med.quantity),
                    unit_price=D(med.unit_price),
                ))

        start = max((b.position for b in med.batches), default=-1) + 1
        batch = _build_batches([data], D(med.unit_price), start=start)[0]
        med.batches.append(batch)
        normalize_medicine(med)

        _audit_stock_edit(
            med, old_qty,
            [change("batch.added", "", batch.batch_number)],
            f"Added batch {batch.batch_number or '(unnumbered)'}",
        )
    db.refresh(med)
    return med


def update_batch(db: Session, medicine_id: str, batch_id: str,
                 data: BatchUpdate) -> Medicine:
    with atomic(db):
        med = get_medicine(db, medicine_id)
        batch = _get_batch(med, batch_id)
        old_qty = total_quantity(med)
        label = batch.batch_number or batch.id

        changes: List[Dict[str, Any]] = []
        for f, new in data.model_dump(exclude_unset=True).items():
            if new is None:
                continue
            old = getattr(batch, f)
            if not _same(old, new):
                changes.append(change(f"batch.{label}.{f}", old, new))
            setattr(batch, f, new)

        normalize_medicine(med)
        if changes:
            _audit_stock_edit(med, old_qty, changes, f"Updated batch {label}")
    db.refresh(med)
    return med


def remove_batch(db: Session, medicine_id: str, batch_id: str) -> Medicine:
    with atomic(db):
        med = get_medicine(db, medicine_id)
        batch = _get_batch(med, batch_id)
        old_qty = total_quantity(med)
        label = batch.batch_number or batch.id

        med.batches.remove(batch)
        if med.batches:
            normalize_medicine(med)
        else:
            # back to legacy mode with nothing on hand
            med.quantity = 0
            med.batch_number = ""
            med.expiry_date = None

        _audit_stock_edit(
            med, old_qty,
            [change("batch.removed", label, "")],
            f"Removed batch {label}",
        )
    db.refresh(med)
    return med
