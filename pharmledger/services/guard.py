# FILE: pharmledger/services/guard.py
"""
Write API with license enforcement.

Every mutating ledger operation is re-exported here wrapped by
`guarded_write`, which takes the caller's `LicenseStatus` as an explicit
keyword-only `license` argument and checks it before the operation runs.
Routers call writes only through this module; reads are re-exported
unwrapped and are always allowed.
"""
from __future__ import annotations

import functools
import logging
from typing import Callable, Optional, TypeVar

from pharmledger.core.config import settings
from pharmledger.core.license import LicenseStatus, assert_license_active
from pharmledger.services import backup as _backup
from pharmledger.services import billing as _billing
from pharmledger.services import medicines as _medicines
from pharmledger.services import transfer as _transfer

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)


def check_write_allowed(status: Optional[LicenseStatus]) -> None:
    if not settings.LICENSE_ENFORCED:
        return
    if status is None:
        logger.warning("License status not set - allowing write operation")
        return
    assert_license_active(status)


def guarded_write(fn: F) -> F:
    """
    fn(*args, **kwargs) -> wrapper(*args, license=<LicenseStatus | None>, **kwargs)

    `license` is required so a caller cannot forget to pass it; passing
    None explicitly is the initial-setup path.
    """

    @functools.wraps(fn)
    def wrapper(*args, license: Optional[LicenseStatus], **kwargs):
        check_write_allowed(license)
        return fn(*args, **kwargs)

    wrapper.__guarded__ = True
    return wrapper  # type: ignore[return-value]


# ---------- Guarded medicine operations ----------

add_medicine = guarded_write(_medicines.add_medicine)
update_medicine = guarded_write(_medicines.update_medicine)
delete_medicine = guarded_write(_medicines.delete_medicine)
bulk_delete_medicines = guarded_write(_medicines.bulk_delete_medicines)
bulk_update_location = guarded_write(_medicines.bulk_update_location)
add_batch = guarded_write(_medicines.add_batch)
update_batch = guarded_write(_medicines.update_batch)
remove_batch = guarded_write(_medicines.remove_batch)
import_medicines = guarded_write(_transfer.import_medicines)

# ---------- Guarded billing operations ----------

create_bill = guarded_write(_billing.create_bill)
update_bill = guarded_write(_billing.update_bill)
delete_bill = guarded_write(_billing.delete_bill)

# ---------- Guarded backup operations ----------

restore_snapshot = guarded_write(_backup.restore_snapshot)

# ---------- Reads (always allowed) ----------

get_all_medicines = _medicines.get_all_medicines
get_medicine = _medicines.get_medicine
stock_alerts = _medicines.stock_alerts
get_all_bills = _billing.get_all_bills
get_bill = _billing.get_bill
quote_line = _billing.quote_line
export_medicines_csv = _transfer.export_medicines_csv
export_bills_csv = _transfer.export_bills_csv
build_medicines_excel = _transfer.build_medicines_excel
build_bills_excel = _transfer.build_bills_excel
parse_medicines_csv = _transfer.parse_medicines_csv
create_snapshot = _backup.create_snapshot
parse_snapshot = _backup.parse_snapshot
backup_status = _backup.backup_status
backup_reminder_due = _backup.backup_reminder_due
# bookkeeping only; recording a backup stays allowed on an expired license
mark_backup_done = _backup.mark_backup_done

GUARDED_WRITES = (
    add_medicine,
    update_medicine,
    delete_medicine,
    bulk_delete_medicines,
    bulk_update_location,
    add_batch,
    update_batch,
    remove_batch,
    import_medicines,
    create_bill,
    update_bill,
    delete_bill,
    restore_snapshot,
)
