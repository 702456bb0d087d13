# FILE: pharmledger/api/routes_medicines.py
from __future__ import annotations

from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from pharmledger.api.deps import get_db, get_license_status
from pharmledger.api.response import ok
from pharmledger.core.license import LicenseStatus
from pharmledger.schemas.medicine import (
    BatchIn,
    BatchUpdate,
    BulkIdsIn,
    BulkLocationIn,
    BulkResult,
    FefoDrawOut,
    FefoQuoteOut,
    ImportResult,
    MedicineCreate,
    MedicineOut,
    MedicineUpdate,
    StockAlertOut,
)
from pharmledger.services import guard
from pharmledger.utils.money import round_money
from pharmledger.utils.timezone import today_ist

router = APIRouter(prefix="/medicines", tags=["Pharmacy - Medicines"])

XLSX_MEDIA = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _out(med) -> MedicineOut:
    return MedicineOut.model_validate(med)


# ============================================================
# Reads
# ============================================================
@router.get("")
def list_medicines(db: Session = Depends(get_db)):
    return ok([_out(m) for m in guard.get_all_medicines(db)])


@router.get("/alerts")
def list_stock_alerts(db: Session = Depends(get_db)):
    rows = guard.stock_alerts(db, today_ist())
    return ok([StockAlertOut(**r) for r in rows])


@router.get("/export")
def export_medicines(
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    db: Session = Depends(get_db),
):
    medicines = guard.get_all_medicines(db)
    stamp = today_ist().isoformat()
    if format == "csv":
        data = guard.export_medicines_csv(medicines).encode("utf-8")
        return StreamingResponse(
            BytesIO(data),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename=inventory_{stamp}.csv"},
        )

    bio = BytesIO()
    guard.build_medicines_excel(bio, medicines)
    bio.seek(0)
    return StreamingResponse(
        bio,
        media_type=XLSX_MEDIA,
        headers={"Content-Disposition": f"attachment; filename=inventory_{stamp}.xlsx"},
    )


@router.get("/{medicine_id}")
def get_medicine(medicine_id: str, db: Session = Depends(get_db)):
    return ok(_out(guard.get_medicine(db, medicine_id)))


@router.get("/{medicine_id}/quote")
def quote_medicine(
    medicine_id: str,
    quantity: int = Query(..., description="tablets"),
    db: Session = Depends(get_db),
):
    alloc = guard.quote_line(db, medicine_id, quantity)
    return ok(
        FefoQuoteOut(
            medicine_id=medicine_id,
            requested=alloc.requested,
            unit_price_effective=alloc.unit_price_effective,
            total_cost=round_money(alloc.total_cost),
            strip_qty=alloc.strip_qty,
            loose_qty=alloc.loose_qty,
            draws=[FefoDrawOut(**d) for d in alloc.draws_json()],
            shortfall=alloc.shortfall,
        ))


# ============================================================
# Writes (license-gated)
# ============================================================
@router.post("")
def create_medicine(
    payload: MedicineCreate,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    med = guard.add_medicine(db, payload, license=license)
    return ok(_out(med), status_code=201)


@router.patch("/{medicine_id}")
def update_medicine(
    medicine_id: str,
    payload: MedicineUpdate,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    med = guard.update_medicine(db, medicine_id, payload, license=license)
    return ok(_out(med))


@router.delete("/{medicine_id}")
def delete_medicine(
    medicine_id: str,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    guard.delete_medicine(db, medicine_id, license=license)
    return ok({"deleted": True})


@router.post("/bulk-delete")
def bulk_delete(
    payload: BulkIdsIn,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    count = guard.bulk_delete_medicines(db, payload.ids, license=license)
    return ok(BulkResult(count=count))


@router.post("/bulk-location")
def bulk_location(
    payload: BulkLocationIn,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    count = guard.bulk_update_location(db, payload.ids, payload.location, license=license)
    return ok(BulkResult(count=count))


@router.post("/import")
async def import_medicines(
    file: UploadFile = File(...),
    dry_run: bool = Query(False),
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = raw.decode("latin-1", errors="replace")

    valid, invalid = guard.parse_medicines_csv(text)
    if dry_run:
        return ok({"valid": valid, "invalid": invalid})
    if not valid:
        raise HTTPException(status_code=400, detail="No valid rows to import")

    imported = guard.import_medicines(db, valid, license=license)
    return ok(ImportResult(imported=len(imported), invalid=invalid))


# ---------- Batches ----------


@router.post("/{medicine_id}/batches")
def add_batch(
    medicine_id: str,
    payload: BatchIn,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    med = guard.add_batch(db, medicine_id, payload, license=license)
    return ok(_out(med), status_code=201)


@router.patch("/{medicine_id}/batches/{batch_id}")
def update_batch(
    medicine_id: str,
    batch_id: str,
    payload: BatchUpdate,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    med = guard.update_batch(db, medicine_id, batch_id, payload, license=license)
    return ok(_out(med))


@router.delete("/{medicine_id}/batches/{batch_id}")
def remove_batch(
    medicine_id: str,
    batch_id: str,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    med = guard.remove_batch(db, medicine_id, batch_id, license=license)
    return ok(_out(med))
