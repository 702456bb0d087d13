# FILE: pharmledger/schemas/medicine.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

from pharmledger.models.medicine import MEDICINE_CATEGORIES

# ---------- Location ----------


class LocationIn(BaseModel):
    rack: str = ""
    shelf: str = ""
    drawer: Optional[str] = None


# ---------- Batches ----------


class BatchIn(BaseModel):
    batch_number: str = ""
    expiry_date: Optional[date] = None
    quantity: int = Field(0, ge=0)  # tablets
    unit_price: Optional[Decimal] = Field(None, ge=0)  # per strip


class BatchUpdate(BaseModel):
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    quantity: Optional[int] = Field(None, ge=0)
    unit_price: Optional[Decimal] = Field(None, ge=0)


class BatchOut(BaseModel):
    id: str
    batch_number: str
    expiry_date: Optional[date] = None
    quantity: int
    unit_price: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)


# ---------- Audit ----------


class AuditChange(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None


class AuditEntryOut(BaseModel):
    id: int
    timestamp: datetime
    action: str
    changes: Optional[List[AuditChange]] = None
    note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# ---------- Medicines ----------


def _check_category(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if v not in MEDICINE_CATEGORIES:
        raise ValueError(f"Invalid category: {v}")
    return v


class MedicineBase(BaseModel):
    name: str = Field(..., min_length=1)
    brand: str = ""
    salt: str = ""
    category: str = "Other"
    tablets_per_strip: Optional[int] = Field(None, ge=0)
    unit_price: Decimal = Field(Decimal("0"), ge=0)
    location: LocationIn = Field(default_factory=LocationIn)
    stock_alert_enabled: bool = True

    @field_validator("category")
    @classmethod
    def check_category(cls, v: Optional[str]) -> Optional[str]:
        return _check_category(v)


class MedicineCreate(MedicineBase):
    # legacy scalar stock; ignored when batches are given
    quantity: int = Field(0, ge=0)
    batch_number: str = ""
    expiry_date: Optional[date] = None

    batches: List[BatchIn] = Field(default_factory=list)


class MedicineUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    brand: Optional[str] = None
    salt: Optional[str] = None
    category: Optional[str] = None
    tablets_per_strip: Optional[int] = Field(None, ge=1)
    quantity: Optional[int] = Field(None, ge=0)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    location: Optional[LocationIn] = None
    batch_number: Optional[str] = None
    expiry_date: Optional[date] = None
    stock_alert_enabled: Optional[bool] = None

    @field_validator("category")
    @classmethod
    def check_category(cls, v: Optional[str]) -> Optional[str]:
        return _check_category(v)


class MedicineOut(BaseModel):
    id: str
    name: str
    brand: str
    salt: str
    category: str
    tablets_per_strip: Optional[int] = None
    quantity: int
    unit_price: Decimal
    location: LocationIn
    batch_number: str
    expiry_date: Optional[date] = None
    stock_alert_enabled: bool = True
    created_at: datetime
    updated_at: datetime

    batches: List[BatchOut] = Field(default_factory=list)
    audit_history: List[AuditEntryOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


# ---------- Bulk ----------


class BulkIdsIn(BaseModel):
    ids: List[str] = Field(default_factory=list)


class BulkLocationIn(BaseModel):
    ids: List[str] = Field(default_factory=list)
    location: LocationIn


class BulkResult(BaseModel):
    count: int


# ---------- Read helpers ----------


class FefoDrawOut(BaseModel):
    batch_id: str
    batch_number: str
    quantity: int


class FefoQuoteOut(BaseModel):
    medicine_id: str
    requested: int
    unit_price_effective: Decimal
    total_cost: Decimal
    strip_qty: int
    loose_qty: int
    draws: List[FefoDrawOut] = Field(default_factory=list)
    shortfall: int = 0


class StockAlertOut(BaseModel):
    medicine_id: str
    name: str
    status: str  # out | expired | expiring | low
    quantity: int
    expiry_date: Optional[date] = None
    days_until_expiry: Optional[int] = None


class ImportRowError(BaseModel):
    row: int
    data: dict
    errors: List[str]


class ImportResult(BaseModel):
    imported: int
    invalid: List[ImportRowError] = Field(default_factory=list)
