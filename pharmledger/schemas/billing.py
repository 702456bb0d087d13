# FILE: pharmledger/schemas/billing.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict


class BillLineIn(BaseModel):
    medicine_id: str
    # tablets; negative values are rejected by the ledger, not here
    quantity: int


class CustomerMeta(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    doctor_name: Optional[str] = None


class BillCreate(CustomerMeta):
    items: List[BillLineIn] = Field(default_factory=list)
    # out-of-range values are clamped to [0, 100]
    discount_percent: Decimal = Decimal("0")


class BillUpdate(CustomerMeta):
    items: List[BillLineIn] = Field(default_factory=list)
    discount_percent: Decimal = Decimal("0")
    # what the caller believes the bill held; defaults to the stored lines
    original_items: Optional[List[BillLineIn]] = None


class BatchDrawOut(BaseModel):
    batch_id: str
    batch_number: str = ""
    quantity: int


class BillItemOut(BaseModel):
    medicine_id: str
    medicine_name: str
    brand: str = ""
    quantity: int
    unit_price: Decimal
    tablets_per_strip: int
    strip_qty: int
    loose_qty: int
    total: Decimal
    batch_draws: Optional[List[BatchDrawOut]] = None

    model_config = ConfigDict(from_attributes=True)


class BillOut(BaseModel):
    id: str
    bill_number: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    doctor_name: Optional[str] = None
    items: List[BillItemOut] = Field(default_factory=list)
    subtotal: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    grand_total: Decimal
    created_at: datetime
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
