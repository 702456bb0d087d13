# FILE: pharmledger/services/transfer.py
"""
CSV / Excel export and CSV import of medicines; CSV / Excel export of bills.

Parsing never writes. `parse_medicines_csv` returns valid rows as
`MedicineCreate` payloads plus a per-row error report, and
`import_medicines` persists the valid ones in chunks.
"""
from __future__ import annotations

import csv
import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Any, Dict, Iterable, List, Optional, Tuple

from openpyxl import Workbook
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from pharmledger.core.config import settings
from pharmledger.db.session import atomic
from pharmledger.models.billing import Bill
from pharmledger.models.medicine import MEDICINE_CATEGORIES, STRIP_CATEGORIES, Medicine
from pharmledger.schemas.medicine import ImportRowError, LocationIn, MedicineCreate
from pharmledger.services.audit import append_audit, log_activity
from pharmledger.services.medicines import build_medicine
from pharmledger.utils.money import D, round_money
from pharmledger.utils.timezone import to_ist

logger = logging.getLogger(__name__)

MEDICINE_HEADERS = [
    "Name",
    "Brand",
    "Salt/Composition",
    "Category",
    "Tablets Per Strip",
    "Quantity",
    "Unit Price",
    "Rack",
    "Shelf",
    "Drawer",
    "Batch Number",
    "Expiry Date",
]

BILL_HEADERS = [
    "Bill Number",
    "Date",
    "Customer",
    "Items Count",
    "Subtotal",
    "Discount %",
    "Discount Amount",
    "Grand Total",
]

# normalized header -> field
HEADER_ALIASES = {
    "name": "name",
    "medicine name": "name",
    "medicine": "name",
    "brand": "brand",
    "salt": "salt",
    "salt/composition": "salt",
    "composition": "salt",
    "category": "category",
    "quantity": "quantity",
    "qty": "quantity",
    "unit price": "unit_price",
    "unitprice": "unit_price",
    "price": "unit_price",
    "mrp": "unit_price",
    "rack": "rack",
    "shelf": "shelf",
    "drawer": "drawer",
    "batch number": "batch_number",
    "batchnumber": "batch_number",
    "batch": "batch_number",
    "expiry date": "expiry_date",
    "expirydate": "expiry_date",
    "expiry": "expiry_date",
    "tablets per strip": "tablets_per_strip",
    "tabletsperstrip": "tablets_per_strip",
}

NA_SET = {"", "-", "na", "n/a", "null", "none", "nil"}
DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d")


# ---------- Cell helpers ----------


def _norm_header(h: Any) -> str:
    s = ("" if h is None else str(h)).replace("\ufeff", "")
    s = s.strip().strip("'\"").lower()
    s = re.sub(r"[\s_]+", " ", s)
    return HEADER_ALIASES.get(s, s)


def _safe_text(v: Any) -> str:
    if v is None:
        return ""
    s = str(v).strip()
    return "" if s.lower() in NA_SET else s


def _parse_int(v: Any) -> Optional[int]:
    s = _safe_text(v)
    if s == "":
        return 0
    s = s.replace(",", "")
    if not re.fullmatch(r"-?\d+", s):
        return None
    return int(s)


def _parse_decimal(v: Any) -> Optional[Decimal]:
    """accepts 1,234.50 and a leading currency sign; empty -> 0"""
    s = _safe_text(v).replace(",", "").lstrip("₹$").strip()
    if s == "":
        return Decimal("0")
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def _parse_date(v: Any) -> Tuple[Optional[date], bool]:
    """-> (date or None, ok)"""
    s = _safe_text(v)
    if s == "":
        return None, True
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(s[:10], fmt).date(), True
        except ValueError:
            continue
    return None, False


def _money(x) -> float:
    return float(round_money(D(x)))


def _fmt_date(d: Optional[date]) -> str:
    return d.isoformat() if d else ""


def _fmt_ist(dt: Optional[datetime]) -> str:
    return to_ist(dt).strftime("%d/%m/%Y %H:%M") if dt else ""


# ---------- Export ----------


def medicine_row(m: Medicine) -> List[Any]:
    return [
        m.name,
        m.brand or "",
        m.salt or "",
        m.category,
        int(m.tablets_per_strip or 1),
        int(m.quantity or 0),
        f"{round_money(D(m.unit_price)):.2f}",
        m.rack or "",
        m.shelf or "",
        m.drawer or "",
        m.batch_number or "",
        _fmt_date(m.expiry_date),
    ]


def bill_row(b: Bill) -> List[Any]:
    return [
        b.bill_number,
        _fmt_ist(b.created_at),
        b.customer_name or "",
        len(b.items),
        f"{round_money(D(b.subtotal)):.2f}",
        f"{D(b.discount_percent).normalize():f}",
        f"{round_money(D(b.discount_amount)):.2f}",
        f"{round_money(D(b.grand_total)):.2f}",
    ]


def _to_csv(headers: List[str], rows: Iterable[List[Any]]) -> str:
    output = StringIO()
    w = csv.writer(output, quoting=csv.QUOTE_MINIMAL)
    w.writerow(headers)
    for r in rows:
        w.writerow(r)
    return output.getvalue()


def export_medicines_csv(medicines: Iterable[Medicine]) -> str:
    return _to_csv(MEDICINE_HEADERS, (medicine_row(m) for m in medicines))


def export_bills_csv(bills: Iterable[Bill]) -> str:
    return _to_csv(BILL_HEADERS, (bill_row(b) for b in bills))


def _autosize(ws, n_cols: int, width: int = 18) -> None:
    for col in range(1, n_cols + 1):
        ws.column_dimensions[get_column_letter(col)].width = width


def build_medicines_excel(fp, medicines: Iterable[Medicine]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Inventory"
    ws.append(MEDICINE_HEADERS)

    for m in medicines:
        ws.append([
            m.name,
            m.brand or "",
            m.salt or "",
            m.category,
            int(m.tablets_per_strip or 1),
            int(m.quantity or 0),
            _money(m.unit_price),
            m.rack or "",
            m.shelf or "",
            m.drawer or "",
            m.batch_number or "",
            m.expiry_date,
        ])

    _autosize(ws, len(MEDICINE_HEADERS))
    wb.save(fp)


def build_bills_excel(fp, bills: Iterable[Bill]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Bills"
    ws.append(BILL_HEADERS)

    items = wb.create_sheet("Bill Items")
    item_headers = ["Bill Number", "Medicine", "Brand", "Quantity", "Strips", "Loose",
                    "Unit Price", "Total"]
    items.append(item_headers)

    for b in bills:
        ws.append([
            b.bill_number,
            _fmt_ist(b.created_at),
            b.customer_name or "",
            len(b.items),
            _money(b.subtotal),
            float(D(b.discount_percent)),
            _money(b.discount_amount),
            _money(b.grand_total),
        ])
        for it in b.items:
            items.append([
                b.bill_number,
                it.medicine_name,
                it.brand or "",
                int(it.quantity),
                int(it.strip_qty),
                int(it.loose_qty),
                float(D(it.unit_price)),
                _money(it.total),
            ])

    _autosize(ws, len(BILL_HEADERS))
    _autosize(items, len(item_headers))
    wb.save(fp)


# ---------- Import ----------


def _default_tps(category: str) -> int:
    return settings.DEFAULT_TABLETS_PER_STRIP if category in STRIP_CATEGORIES else 1


def parse_medicines_csv(text: str) -> Tuple[List[MedicineCreate], List[ImportRowError]]:
    """
    -> (valid, invalid). Row numbers count the header as row 1.
    A row is invalid when the name is missing, quantity is not a
    non-negative integer, the category is unknown, or a number / date
    cannot be read.
    """
    text = (text or "").lstrip("\ufeff")
    reader = csv.reader(StringIO(text.strip()))
    lines = [r for r in reader]
    if len(lines) < 2:
        return [], [ImportRowError(row=1, data={},
                                   errors=["File is empty or has no data rows"])]

    raw_headers = lines[0]
    headers = [_norm_header(h) for h in raw_headers]

    valid: List[MedicineCreate] = []
    invalid: List[ImportRowError] = []

    for i, values in enumerate(lines[1:], start=2):
        if not any((v or "").strip() for v in values):
            continue
        raw = {(h or "").strip(): (values[j].strip() if j < len(values) else "")
               for j, h in enumerate(raw_headers)}
        row: Dict[str, str] = {}
        for j, h in enumerate(headers):
            if h and h not in row:
                row[h] = values[j].strip() if j < len(values) else ""

        errors: List[str] = []

        name = _safe_text(row.get("name"))
        if not name:
            errors.append("Name is required")

        quantity = _parse_int(row.get("quantity"))
        if quantity is None or quantity < 0:
            errors.append("Invalid quantity")

        unit_price = _parse_decimal(row.get("unit_price"))
        if unit_price is None or unit_price < 0:
            errors.append("Invalid unit price")

        category = _safe_text(row.get("category")) or "Other"
        if category not in MEDICINE_CATEGORIES:
            errors.append(f"Invalid category: {category}")

        expiry, ok = _parse_date(row.get("expiry_date"))
        if not ok:
            errors.append(f"Invalid expiry date: {row.get('expiry_date')}")

        tps = _parse_int(row.get("tablets_per_strip"))
        if tps is None or tps < 0:
            errors.append("Invalid tablets per strip")

        if errors:
            invalid.append(ImportRowError(row=i, data=raw, errors=errors))
            continue

        valid.append(
            MedicineCreate(
                name=name,
                brand=_safe_text(row.get("brand")),
                salt=_safe_text(row.get("salt")),
                category=category,
                tablets_per_strip=tps if tps and tps > 0 else _default_tps(category),
                quantity=quantity,
                unit_price=unit_price,
                location=LocationIn(
                    rack=_safe_text(row.get("rack")),
                    shelf=_safe_text(row.get("shelf")),
                    drawer=_safe_text(row.get("drawer")) or None,
                ),
                batch_number=_safe_text(row.get("batch_number")),
                expiry_date=expiry,
            ))

    return valid, invalid


def _chunks(rows: List[Any], size: int) -> Iterable[List[Any]]:
    size = max(1, int(size or 1))
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def import_medicines(db: Session, rows: List[MedicineCreate],
                     chunk_size: Optional[int] = None) -> List[Medicine]:
    """
    Persist parsed rows as new medicines. Each chunk is its own transaction;
    a failing chunk rolls back alone and stops the import, earlier chunks
    stay committed.
    """
    chunk_size = chunk_size or settings.IMPORT_CHUNK_SIZE
    imported: List[Medicine] = []

    for chunk in _chunks(list(rows), chunk_size):
        batch: List[Medicine] = []
        with atomic(db):
            for data in chunk:
                med = build_medicine(data)
                append_audit(med, "created", note="Imported from CSV")
                db.add(med)
                batch.append(med)
            db.flush()
            log_activity(db, action="IMPORT", table_name="medicines",
                         record_id=f"{batch[0].id}..{batch[-1].id}",
                         new_values={"count": len(batch)}, note="Imported from CSV")
        imported.extend(batch)

    logger.info("Imported %s medicines from CSV", len(imported))
    return imported
