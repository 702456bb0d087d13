# FILE: pharmledger/models/billing.py
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Numeric,
    ForeignKey,
    JSON,
    Index,
)
from sqlalchemy.orm import relationship

from pharmledger.db.base import Base
from pharmledger.utils.ids import new_id
from pharmledger.utils.timezone import utcnow

Money = Numeric(14, 2)
Price = Numeric(14, 4)


class Bill(Base):
    """
    A completed sale.

    bill_number is allocated from the `bill_counter` row and never reused,
    even after an administrative delete (`deleted_at`).
    """
    __tablename__ = "bills"
    __table_args__ = (
        Index("ix_bills_created_at", "created_at"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(String(40), primary_key=True, default=lambda: new_id("bill"))
    bill_number = Column(String(32), unique=True, index=True, nullable=False)

    customer_name = Column(String(255), nullable=True)
    customer_phone = Column(String(32), nullable=True)
    doctor_name = Column(String(255), nullable=True)

    subtotal = Column(Money, nullable=False, default=Decimal("0"))
    discount_percent = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    discount_amount = Column(Money, nullable=False, default=Decimal("0"))
    grand_total = Column(Money, nullable=False, default=Decimal("0"))

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    items = relationship(
        "BillItem",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillItem.position",
    )


class BillItem(Base):
    """
    One sale line. `medicine_id` and the batch ids inside `batch_draws` are
    plain references (no FK): the medicine may be deleted later and the line
    must survive unchanged.

    batch_draws: [{"batch_id": ..., "batch_number": ..., "quantity": n}, ...]
    """
    __tablename__ = "bill_items"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, autoincrement=True)
    bill_id = Column(
        String(40),
        ForeignKey("bills.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)

    medicine_id = Column(String(40), nullable=False, index=True)
    medicine_name = Column(String(255), nullable=False, default="")
    brand = Column(String(255), nullable=False, default="")

    quantity = Column(Integer, nullable=False, default=0)  # tablets
    unit_price = Column(Price, nullable=False, default=Decimal("0"))  # per strip, FEFO-weighted
    tablets_per_strip = Column(Integer, nullable=False, default=1)
    strip_qty = Column(Integer, nullable=False, default=0)
    loose_qty = Column(Integer, nullable=False, default=0)
    total = Column(Money, nullable=False, default=Decimal("0"))

    batch_draws = Column(JSON, nullable=True)

    bill = relationship("Bill", back_populates="items")
