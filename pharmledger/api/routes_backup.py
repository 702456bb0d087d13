# FILE: pharmledger/api/routes_backup.py
from __future__ import annotations

import json
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from pharmledger.api.deps import get_db, get_license_status
from pharmledger.api.response import ok
from pharmledger.core.config import settings
from pharmledger.core.license import LicenseStatus
from pharmledger.schemas.backup import BackupStatusOut, RestoreIn
from pharmledger.services import guard
from pharmledger.services.audit import get_activity_logs
from pharmledger.utils.timezone import today_ist

router = APIRouter(prefix="/backup", tags=["Pharmacy - Backup"])


@router.get("/snapshot")
def download_snapshot(db: Session = Depends(get_db)):
    data = guard.create_snapshot(db)
    body = json.dumps(data, indent=2).encode("utf-8")
    name = settings.PHARMACY_NAME.replace(" ", "_")
    return StreamingResponse(
        BytesIO(body),
        media_type="application/json",
        headers={
            "Content-Disposition":
            f"attachment; filename={name}_backup_{today_ist().isoformat()}.json"
        },
    )


@router.post("/done")
def record_backup(db: Session = Depends(get_db)):
    """Called once the downloaded snapshot has been saved."""
    guard.mark_backup_done(db)
    return ok(BackupStatusOut(**guard.backup_status(db)))


@router.get("/status")
def backup_status(db: Session = Depends(get_db)):
    return ok(BackupStatusOut(**guard.backup_status(db)))


@router.post("/restore")
def restore_snapshot(
    payload: RestoreIn,
    db: Session = Depends(get_db),
    license: Optional[LicenseStatus] = Depends(get_license_status),
):
    snapshot = guard.parse_snapshot(payload.snapshot)
    result = guard.restore_snapshot(
        db,
        snapshot,
        clear_existing=payload.clear_existing,
        merge_mode=payload.merge_mode,
        license=license,
    )
    return ok(result)


@router.get("/activity")
def activity_logs(limit: int = 200, db: Session = Depends(get_db)):
    rows = get_activity_logs(db, limit=limit)
    return ok([{
        "id": r.id,
        "action": r.action,
        "table_name": r.table_name,
        "record_id": r.record_id,
        "old_values": r.old_values,
        "new_values": r.new_values,
        "note": r.note,
        "created_at": r.created_at,
    } for r in rows])
