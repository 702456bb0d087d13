# FILE: pharmledger/models/counters.py
from __future__ import annotations

from sqlalchemy import BigInteger, Column, Integer, String, DateTime

from pharmledger.db.base import Base
from pharmledger.utils.timezone import utcnow

BILL_COUNTER = "bill_counter"
LAST_BACKUP_COUNTER = "last_backup_at"  # epoch seconds


class Counter(Base):
    """
    Durable key/value integers. `bill_counter` holds the last issued bill
    number and only moves forward.
    """
    __tablename__ = "counters"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(String(64), primary_key=True)
    value = Column(BigInteger, nullable=False, default=0)


class SchemaMigration(Base):
    __tablename__ = "schema_migrations"

    version = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(100), nullable=False)
    applied_at = Column(DateTime, default=utcnow, nullable=False)
