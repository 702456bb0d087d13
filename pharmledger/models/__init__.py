# pharmledger/models/__init__.py
from .medicine import Medicine, MedicineBatch, MedicineAuditEntry
from .billing import Bill, BillItem
from .counters import Counter, SchemaMigration
from .audit import ActivityLog
__all__ = [
    "Medicine",
    "MedicineBatch",
    "MedicineAuditEntry",
    "Bill",
    "BillItem",
    "Counter",
    "SchemaMigration",
    "ActivityLog",
]
