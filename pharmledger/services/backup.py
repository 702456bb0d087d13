# FILE: pharmledger/services/backup.py
"""
Full snapshot export / restore and backup-reminder bookkeeping.

A snapshot carries every medicine (with batches and history), every bill
(administratively deleted ones included) and every counter. Restore is
keyed by record id, so loading the same file twice changes nothing in
`skip` mode.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from pharmledger.core.config import settings
from pharmledger.core.errors import MalformedSnapshot
from pharmledger.db.session import atomic
from pharmledger.models.billing import Bill, BillItem
from pharmledger.models.counters import BILL_COUNTER, LAST_BACKUP_COUNTER, Counter
from pharmledger.models.medicine import Medicine, MedicineAuditEntry, MedicineBatch
from pharmledger.schemas.backup import CounterOut, RestoreResult, Snapshot
from pharmledger.schemas.billing import BillOut
from pharmledger.schemas.medicine import MedicineOut
from pharmledger.services.audit import log_activity
from pharmledger.services.bill_numbers import parse_bill_number
from pharmledger.services.billing import get_all_bills
from pharmledger.services.medicines import get_all_medicines
from pharmledger.services.stock import normalize_medicine
from pharmledger.utils.timezone import utcnow

logger = logging.getLogger(__name__)

MERGE_MODES = ("skip", "overwrite")


def _naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _chunks(rows: List[Any], size: int) -> Iterable[List[Any]]:
    size = max(1, int(size or 1))
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


# ---------- Export ----------


def create_snapshot(db: Session, pharmacy_name: Optional[str] = None,
                    *, mark_done: bool = False) -> Dict[str, Any]:
    """JSON-ready snapshot dict. Read-only unless `mark_done` records the backup time."""
    snapshot = Snapshot(
        version=settings.SNAPSHOT_VERSION,
        exported_at=datetime.now(timezone.utc),
        pharmacy_name=pharmacy_name or settings.PHARMACY_NAME,
        medicines=[MedicineOut.model_validate(m) for m in get_all_medicines(db)],
        bills=[BillOut.model_validate(b) for b in get_all_bills(db, include_deleted=True)],
        counters=[CounterOut.model_validate(c) for c in db.query(Counter).all()],
    )
    data = snapshot.model_dump(mode="json", by_alias=True)
    if mark_done:
        mark_backup_done(db)
    logger.info("Snapshot created: %s medicines, %s bills", len(snapshot.medicines),
                len(snapshot.bills))
    return data


def parse_snapshot(content: Union[str, bytes, Dict[str, Any]]) -> Snapshot:
    if isinstance(content, (str, bytes)):
        try:
            content = json.loads(content)
        except (TypeError, ValueError):
            raise MalformedSnapshot(
                "Failed to parse backup file. Make sure it's a valid JSON file.")

    if (not isinstance(content, dict) or not content.get("version")
            or not content.get("exportedAt")
            or not isinstance(content.get("medicines"), list)):
        raise MalformedSnapshot("Invalid backup file format")

    if not isinstance(content["version"], int) or content["version"] > settings.SNAPSHOT_VERSION:
        raise MalformedSnapshot(
            "Backup version is newer than app version. Please update the app.",
            version=content["version"],
        )

    try:
        return Snapshot.model_validate(content)
    except ValidationError as e:
        raise MalformedSnapshot("Invalid backup file format",
                                errors=e.errors(include_url=False, include_input=False))


# ---------- Restore ----------


def _medicine_from_snapshot(m: MedicineOut) -> Medicine:
    med = Medicine(
        id=m.id,
        name=m.name,
        brand=m.brand or "",
        salt=m.salt or "",
        category=m.category,
        tablets_per_strip=m.tablets_per_strip,
        quantity=m.quantity,
        unit_price=m.unit_price,
        rack=m.location.rack or "",
        shelf=m.location.shelf or "",
        drawer=m.location.drawer,
        batch_number=m.batch_number or "",
        expiry_date=m.expiry_date,
        stock_alert_enabled=m.stock_alert_enabled,
        created_at=_naive_utc(m.created_at),
        updated_at=_naive_utc(m.updated_at),
    )
    med.batches = [
        MedicineBatch(
            id=b.id,
            position=i,
            batch_number=b.batch_number or "",
            expiry_date=b.expiry_date,
            quantity=b.quantity,
            unit_price=b.unit_price,
        ) for i, b in enumerate(m.batches)
    ]
    med.audit_history = [
        MedicineAuditEntry(
            timestamp=_naive_utc(e.timestamp),
            action=e.action,
            changes=[c.model_dump(mode="json") for c in e.changes] if e.changes else None,
            note=e.note,
        ) for e in m.audit_history
    ]
    return normalize_medicine(med)


def _bill_from_snapshot(b: BillOut) -> Bill:
    return Bill(
        id=b.id,
        bill_number=b.bill_number,
        customer_name=b.customer_name,
        customer_phone=b.customer_phone,
        doctor_name=b.doctor_name,
        subtotal=b.subtotal,
        discount_percent=b.discount_percent,
        discount_amount=b.discount_amount,
        grand_total=b.grand_total,
        created_at=_naive_utc(b.created_at),
        updated_at=_naive_utc(b.updated_at or b.created_at),
        deleted_at=_naive_utc(b.deleted_at),
        items=[
            BillItem(
                position=i,
                medicine_id=it.medicine_id,
                medicine_name=it.medicine_name,
                brand=it.brand or "",
                quantity=it.quantity,
                unit_price=it.unit_price,
                tablets_per_strip=it.tablets_per_strip,
                strip_qty=it.strip_qty,
                loose_qty=it.loose_qty,
                total=it.total,
                batch_draws=([d.model_dump() for d in it.batch_draws]
                             if it.batch_draws else None),
            ) for i, it in enumerate(b.items)
        ],
    )


def _clear_all(db: Session) -> None:
    with atomic(db):
        db.query(BillItem).delete(synchronize_session=False)
        db.query(Bill).delete(synchronize_session=False)
        db.query(MedicineAuditEntry).delete(synchronize_session=False)
        db.query(MedicineBatch).delete(synchronize_session=False)
        db.query(Medicine).delete(synchronize_session=False)
        db.query(Counter).filter(Counter.id != LAST_BACKUP_COUNTER).delete(
            synchronize_session=False)
    db.expunge_all()
    logger.warning("All medicines, bills and counters cleared before restore")


def _highest_bill_number(db: Session) -> int:
    highest = 0
    for (number,) in db.query(Bill.bill_number).all():
        n = parse_bill_number(number)
        if n and n > highest:
            highest = n
    return highest


def restore_snapshot(
    db: Session,
    snapshot: Union[Snapshot, Dict[str, Any], str, bytes],
    clear_existing: bool = False,
    merge_mode: str = "skip",
    chunk_size: Optional[int] = None,
) -> RestoreResult:
    """
    Load a snapshot. Records whose id already exists are skipped
    (`skip`) or replaced (`overwrite`). Work is committed in chunks of
    `IMPORT_CHUNK_SIZE` records; a failing chunk rolls back alone.

    The bill counter never moves backwards: it ends at the highest of the
    snapshot value, the current value and the highest stored bill number.
    """
    if merge_mode not in MERGE_MODES:
        raise ValueError(f"merge_mode must be one of {MERGE_MODES}")
    if not isinstance(snapshot, Snapshot):
        snapshot = parse_snapshot(snapshot)
    chunk_size = chunk_size or settings.IMPORT_CHUNK_SIZE
    overwrite = merge_mode == "overwrite"

    if clear_existing:
        _clear_all(db)

    result = RestoreResult()

    for chunk in _chunks(snapshot.medicines, chunk_size):
        with atomic(db):
            for m in chunk:
                existing = db.get(Medicine, m.id)
                if existing is not None:
                    if not overwrite:
                        continue
                    db.delete(existing)
                    db.flush()
                db.add(_medicine_from_snapshot(m))
                result.medicines_restored += 1

    for chunk in _chunks(snapshot.bills, chunk_size):
        with atomic(db):
            for b in chunk:
                existing = db.get(Bill, b.id)
                if existing is not None:
                    if not overwrite:
                        continue
                    db.delete(existing)
                    db.flush()
                clash = (db.query(Bill).filter(Bill.bill_number == b.bill_number,
                                               Bill.id != b.id).first())
                if clash is not None:
                    logger.warning("Restore: %s already used by bill %s, skipping %s",
                                   b.bill_number, clash.id, b.id)
                    result.bills_skipped += 1
                    continue
                db.add(_bill_from_snapshot(b))
                result.bills_restored += 1

    with atomic(db):
        for c in snapshot.counters:
            if c.id == LAST_BACKUP_COUNTER:
                continue
            row = db.get(Counter, c.id)
            if row is None:
                db.add(Counter(id=c.id, value=c.value))
            elif c.id != BILL_COUNTER:
                row.value = c.value
        db.flush()

        row = db.get(Counter, BILL_COUNTER)
        snap_value = next((c.value for c in snapshot.counters if c.id == BILL_COUNTER), 0)
        value = max(int(row.value) if row else 0, snap_value, _highest_bill_number(db))
        if row is None:
            db.add(Counter(id=BILL_COUNTER, value=value))
        else:
            row.value = value

        log_activity(db, action="RESTORE", table_name="snapshot",
                     record_id=snapshot.exported_at.isoformat(),
                     new_values=result.model_dump(),
                     note=f"merge_mode={merge_mode} clear_existing={clear_existing}")

    logger.info("Restore finished: %s medicines, %s bills (%s skipped)",
                result.medicines_restored, result.bills_restored, result.bills_skipped)
    return result


# ---------- Backup reminder ----------


def mark_backup_done(db: Session, at: Optional[datetime] = None) -> None:
    at = _naive_utc(at) or utcnow()
    epoch = int(at.replace(tzinfo=timezone.utc).timestamp())
    with atomic(db):
        row = db.get(Counter, LAST_BACKUP_COUNTER)
        if row is None:
            db.add(Counter(id=LAST_BACKUP_COUNTER, value=epoch))
        else:
            row.value = epoch


def last_backup_at(db: Session) -> Optional[datetime]:
    row = db.get(Counter, LAST_BACKUP_COUNTER)
    if row is None or not row.value:
        return None
    return datetime.fromtimestamp(int(row.value), tz=timezone.utc).replace(tzinfo=None)


def backup_status(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = _naive_utc(now) or utcnow()
    last = last_backup_at(db)
    if last is None:
        return {"last_backup_at": None, "days_since": None, "reminder_due": True}
    elapsed = now - last
    return {
        "last_backup_at": last,
        "days_since": elapsed.days,
        "reminder_due": elapsed.total_seconds() >= settings.BACKUP_REMINDER_DAYS * 86400,
    }


def backup_reminder_due(db: Session, now: Optional[datetime] = None) -> bool:
    return backup_status(db, now)["reminder_due"]
