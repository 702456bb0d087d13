# FILE: pharmledger/models/medicine.py
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Date,
    DateTime,
    Numeric,
    ForeignKey,
    Text,
    JSON,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship

from pharmledger.db.base import Base
from pharmledger.utils.ids import new_id
from pharmledger.utils.timezone import utcnow

Money = Numeric(14, 2)
Price = Numeric(14, 4)

MEDICINE_CATEGORIES = [
    "Tablet",
    "Capsule",
    "Syrup",
    "Injection",
    "Cream",
    "Drops",
    "Powder",
    "Other",
]

# categories sold by the strip; everything else is a single unit
STRIP_CATEGORIES = {"Tablet", "Capsule"}


class Medicine(Base):
    """
    One sellable medicine.

    Stock lives either in `batches` (batch mode) or, for legacy records
    with no batches, directly in `quantity` / `expiry_date` /
    `batch_number`. In batch mode those three are derived by the
    normalizer and must never be written independently.

    `quantity` is always in tablets (smallest sellable unit);
    `unit_price` is per strip.
    """
    __tablename__ = "medicines"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_medicines_qty_nonneg"),
        Index("ix_medicines_expiry", "expiry_date"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(String(40), primary_key=True, default=lambda: new_id("med"))
    name = Column(String(255), nullable=False, index=True)
    brand = Column(String(255), nullable=False, default="")
    salt = Column(String(500), nullable=False, default="")
    category = Column(String(32), nullable=False, default="Other", index=True)

    # NULL only on rows written before the loose-tablet migration
    tablets_per_strip = Column(Integer, nullable=True, default=1)
    quantity = Column(Integer, nullable=False, default=0)
    unit_price = Column(Price, nullable=False, default=Decimal("0"))

    rack = Column(String(50), nullable=False, default="")
    shelf = Column(String(50), nullable=False, default="")
    drawer = Column(String(50), nullable=True)

    batch_number = Column(String(100), nullable=False, default="")
    expiry_date = Column(Date, nullable=True)
    stock_alert_enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    batches = relationship(
        "MedicineBatch",
        back_populates="medicine",
        cascade="all, delete-orphan",
        order_by="MedicineBatch.position",
    )
    audit_history = relationship(
        "MedicineAuditEntry",
        back_populates="medicine",
        cascade="all, delete-orphan",
        order_by="MedicineAuditEntry.id",
    )

    @property
    def location(self) -> dict:
        return {"rack": self.rack or "", "shelf": self.shelf or "", "drawer": self.drawer}

    def __repr__(self) -> str:
        return f"<Medicine {self.id} {self.name!r} qty={self.quantity}>"


class MedicineBatch(Base):
    """
    A received lot of a medicine: own expiry, own stock, own strip price.
    A batch at quantity 0 stays until the caller removes it.
    """
    __tablename__ = "medicine_batches"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_medicine_batches_qty_nonneg"),
        Index("ix_medicine_batches_med_exp", "medicine_id", "expiry_date"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(String(40), primary_key=True, default=lambda: new_id("batch"))
    medicine_id = Column(
        String(40),
        ForeignKey("medicines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)  # insertion order

    batch_number = Column(String(100), nullable=False, default="")
    expiry_date = Column(Date, nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    # NULL only on rows written before per-batch pricing
    unit_price = Column(Price, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    medicine = relationship("Medicine", back_populates="batches")

    def __repr__(self) -> str:
        return (f"<MedicineBatch {self.batch_number!r} exp={self.expiry_date} "
                f"qty={self.quantity}>")


class MedicineAuditEntry(Base):
    """
    Append-only history row. Never updated, never deleted on its own.

    action: created | updated | quantity_changed | sold
    changes: [{"field": ..., "old_value": ..., "new_value": ...}, ...]
    """
    __tablename__ = "medicine_audit_entries"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, autoincrement=True)
    medicine_id = Column(
        String(40),
        ForeignKey("medicines.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    action = Column(String(32), nullable=False)
    changes = Column(JSON, nullable=True)
    note = Column(Text, nullable=True)

    medicine = relationship("Medicine", back_populates="audit_history")
