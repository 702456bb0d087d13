# FILE: pharmledger/schemas/backup.py
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ConfigDict

from pharmledger.schemas.billing import BillOut
from pharmledger.schemas.medicine import MedicineOut


class CounterOut(BaseModel):
    id: str
    value: int

    model_config = ConfigDict(from_attributes=True)


class Snapshot(BaseModel):
    """
    Full backup document. Top-level keys are camelCase so files written by
    older builds of the app still load.
    """
    version: int = Field(..., ge=1)
    exported_at: datetime = Field(..., alias="exportedAt")
    pharmacy_name: str = Field("", alias="pharmacyName")
    medicines: List[MedicineOut]
    bills: List[BillOut] = Field(default_factory=list)
    counters: List[CounterOut] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class RestoreIn(BaseModel):
    snapshot: dict
    clear_existing: bool = False
    merge_mode: Literal["skip", "overwrite"] = "skip"


class RestoreResult(BaseModel):
    medicines_restored: int = 0
    bills_restored: int = 0
    bills_skipped: int = 0


class BackupStatusOut(BaseModel):
    last_backup_at: Optional[datetime] = None
    days_since: Optional[int] = None
    reminder_due: bool = True
