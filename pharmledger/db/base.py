# pharmledger/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All ledger tables (medicines, batches, bills, counters) inherit from this."""
    pass
