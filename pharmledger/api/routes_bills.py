# FILE: pharmledger/api/routes_bills.py
from __future__ import annotations

from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from pharmledger.api.deps import get_db, get_license_status
from pharmledger.api.response import ok
from pharmledger.core.license import LicenseStatus
from pharmledger.schemas.billing import BillCreate, BillOut, BillUpdate, CustomerMeta
from pharmledger.services import guard
from pharmledger.utils.timezone import today_ist

router = APIRouter(prefix="/bills", tags=["Pharmacy - Billing"])

XLSX_MEDIA = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _customer(payload) -> CustomerMeta:
    return CustomerMeta(
        customer_name=payload.customer_name,
        customer_phone=payload.customer_phone,
        doctor_name=payload.doctor_name,
    )


@router.get("")
def list_bills(db: Session = Depends(get_db)):
    return ok([BillOut.model_validate(b) for b in guard.get_all_bills(db)])


@router.get("/export")
def export_bills(
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    db: Session = Depends(get_db),
):
    bills = guard.get_all_bills(db)
    stamp = today_ist().isoformat()
    if format == "csv":
        data = guard.export_bills_csv(bills).encode("utf-8")
        return StreamingResponse(
            BytesIO(data),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f"attachment; filename=bills_{stamp}.csv"},
        )

    bio = BytesIO()
    guard.build_bills_excel(bio, bills)
    bio.seek(0)
    return StreamingResponse(
        bio,
        media_type=XLSX_MEDIA,
        headers={"Content-Disposition": f"attachment; filename=bills_{stamp}.xlsx"},
    )


@router.get("/{bill_id}")
def get_bill(bill_id: str, db: Session = Depends(get_db)):
    return ok(BillOut.model_validate(guard.get_bill(db, bill_id)))


@router.post("")
def create_bill(
    payload: BillCreate,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    bill = guard.create_bill(
        db,
        payload.items,
        payload.discount_percent,
        _customer(payload),
        license=license,
    )
    return ok(BillOut.model_validate(bill), status_code=201)


@router.put("/{bill_id}")
def update_bill(
    bill_id: str,
    payload: BillUpdate,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    bill = guard.update_bill(
        db,
        bill_id,
        payload.items,
        payload.discount_percent,
        payload.original_items,
        _customer(payload),
        license=license,
    )
    return ok(BillOut.model_validate(bill))


@router.delete("/{bill_id}")
def delete_bill(
    bill_id: str,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    guard.delete_bill(db, bill_id, license=license)
    return ok({"deleted": True})
