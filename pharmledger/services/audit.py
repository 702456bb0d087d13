# FILE: pharmledger/services/audit.py
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from pharmledger.models.audit import ActivityLog
from pharmledger.models.medicine import Medicine, MedicineAuditEntry
from pharmledger.utils.timezone import utcnow

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = ("created", "updated", "quantity_changed", "sold")


def _jsonable(v: Any) -> Any:
    if isinstance(v, Decimal):
        return float(v)
    if isinstance(v, (date, datetime)):
        return v.isoformat()
    return v


def change(field: str, old_value: Any, new_value: Any) -> Dict[str, Any]:
    return {
        "field": field,
        "old_value": _jsonable(old_value if old_value is not None else ""),
        "new_value": _jsonable(new_value if new_value is not None else ""),
    }


def append_audit(
    medicine: Medicine,
    action: str,
    changes: Optional[List[Dict[str, Any]]] = None,
    note: Optional[str] = None,
    *,
    at: Optional[datetime] = None,
) -> Optional[MedicineAuditEntry]:
    """
    Append exactly one history entry to `medicine`.

    Existing entries are never touched. A failure here is logged and the
    caller's mutation goes on without the entry.
    """
    try:
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action}")
        entry = MedicineAuditEntry(
            timestamp=at or utcnow(),
            action=action,
            changes=list(changes) if changes else None,
            note=note,
        )
        medicine.audit_history.append(entry)
        return entry
    except Exception:
        logger.exception("Failed to append audit entry to medicine %s",
                         getattr(medicine, "id", None))
        return None


def log_activity(
    db: Session,
    *,
    action: str,  # "CREATE" | "UPDATE" | "DELETE" | "RESTORE" | "IMPORT"
    table_name: str,
    record_id: Any,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    note: Optional[str] = None,
) -> None:
    """
    Add one activity row to the caller's transaction. Never raises.
    """
    try:
        db.add(ActivityLog(
            action=action,
            table_name=table_name,
            record_id=str(record_id),
            old_values=old_values,
            new_values=new_values,
            note=note,
        ))
    except Exception:
        logger.exception("Failed to log activity %s %s/%s", action, table_name,
                         record_id)


def get_activity_logs(db: Session, limit: int = 200) -> List[ActivityLog]:
    return (db.query(ActivityLog).order_by(ActivityLog.id.desc()).limit(limit).all())
