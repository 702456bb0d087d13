from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
)

from pharmledger.db.base import Base
from pharmledger.utils.timezone import utcnow


class ActivityLog(Base):
    """
    Ledger-level activity log (bill created / edited / deleted, restores).
    Per-medicine history lives in `medicine_audit_entries`.
    """
    __tablename__ = "activity_logs"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)

    action = Column(String(20), nullable=False)  # CREATE / UPDATE / DELETE / RESTORE

    table_name = Column(String(255), nullable=False)
    record_id = Column(String(100), nullable=False)

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    note = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
