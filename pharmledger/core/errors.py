# FILE: pharmledger/core/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """
    Base class for every domain failure raised by the ledger services.

    Routers never catch these; the exception handler turns them into the
    standard error envelope using `status_code` and `code`.
    """
    status_code: int = 400
    code: str = "LEDGER_ERROR"

    def __init__(self, msg: str, **details: Any) -> None:
        super().__init__(msg)
        self.msg = msg
        self.details: Dict[str, Any] = details

    def __str__(self) -> str:
        return self.msg


class NotFound(LedgerError):
    status_code = 404
    code = "NOT_FOUND"


class InsufficientStock(LedgerError):
    status_code = 409
    code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        medicine_name: str,
        available: int,
        requested: int,
        msg: Optional[str] = None,
    ) -> None:
        super().__init__(
            msg or (f"Insufficient stock for {medicine_name}. "
                    f"Available: {available}, Requested: {requested}"),
            medicine_name=medicine_name,
            available=available,
            requested=requested,
        )
        self.medicine_name = medicine_name
        self.available = available
        self.requested = requested


class InvalidQuantity(LedgerError):
    status_code = 422
    code = "INVALID_QUANTITY"


class InvalidDiscount(LedgerError):
    # raised by billing.validate_discount; checkout itself clamps
    status_code = 422
    code = "INVALID_DISCOUNT"


class EmptyBill(LedgerError):
    status_code = 422
    code = "EMPTY_BILL"


class BillConflict(LedgerError):
    status_code = 409
    code = "BILL_CONFLICT"


class GuardRejected(LedgerError):
    status_code = 403
    code = "LICENSE_READ_ONLY"

    def __init__(self, msg: str, kind: str = "paid") -> None:
        super().__init__(msg, kind=kind)
        self.kind = kind


class MalformedSnapshot(LedgerError):
    status_code = 400
    code = "MALFORMED_SNAPSHOT"
