import logging
from datetime import datetime, timezone

import pytest

from pharmledger.core.config import settings
from pharmledger.core.errors import GuardRejected
from pharmledger.core.license import (
    ACTIVE,
    LicenseStatus,
    assert_license_active,
    calculate_license_status,
)
from pharmledger.models.billing import Bill
from pharmledger.models.medicine import Medicine
from pharmledger.schemas.medicine import MedicineCreate
from pharmledger.services import guard

from conftest import line, make_legacy

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

EXPIRED_DEMO = LicenseStatus(is_demo_expired=True)
EXPIRED_PAID = LicenseStatus(is_license_expired=True)


# ---------- license status ----------


def test_active_paid_license():
    status = calculate_license_status(False, None, "2026-12-31T00:00:00Z", now=NOW)
    assert not status.is_expired
    assert status.can_write


def test_expired_demo_has_no_grace():
    status = calculate_license_status(True, "2026-03-01T00:00:00Z", None, now=NOW)
    assert status.is_demo_expired
    assert not status.is_grace_period
    assert status.days_since_expiry == 9
    with pytest.raises(GuardRejected) as exc:
        assert_license_active(status)
    assert exc.value.kind == "demo"


def test_paid_license_grace_period():
    status = calculate_license_status(False, None, "2026-03-07T12:00:00Z", now=NOW,
                                      grace_days=7)
    assert status.is_license_expired
    assert status.is_grace_period
    assert status.grace_days_remaining == 4
    assert_license_active(status)


def test_paid_license_past_grace():
    status = calculate_license_status(False, None, "2026-02-01T00:00:00Z", now=NOW,
                                      grace_days=7)
    assert not status.is_grace_period
    with pytest.raises(GuardRejected) as exc:
        assert_license_active(status)
    assert exc.value.kind == "paid"
    assert exc.value.status_code == 403


# ---------- guarded writes ----------


def test_expired_license_blocks_before_any_work(db):
    med = make_legacy(db, quantity=10)

    with pytest.raises(GuardRejected):
        guard.create_bill(db, [line(med, 2)], license=EXPIRED_DEMO)
    with pytest.raises(GuardRejected):
        guard.add_medicine(db, MedicineCreate(name="New"), license=EXPIRED_PAID)

    assert db.get(Medicine, med.id).quantity == 10
    assert db.query(Bill).count() == 0
    assert db.query(Medicine).count() == 1


def test_active_license_passes_through(db):
    med = make_legacy(db, quantity=10)
    bill = guard.create_bill(db, [line(med, 2)], license=ACTIVE)
    assert bill.bill_number == "BILL-0001"


def test_grace_period_still_writes(db):
    status = LicenseStatus(is_license_expired=True, is_grace_period=True,
                           grace_days_remaining=2)
    med = guard.add_medicine(db, MedicineCreate(name="Grace"), license=status)
    assert med.name == "Grace"


def test_missing_status_allows_with_warning(db, caplog):
    with caplog.at_level(logging.WARNING, logger="pharmledger.services.guard"):
        guard.add_medicine(db, MedicineCreate(name="Setup"), license=None)
    assert "License status not set" in caplog.text


def test_license_must_be_passed_explicitly(db):
    with pytest.raises(TypeError):
        guard.add_medicine(db, MedicineCreate(name="Nope"))


def test_not_enforced_skips_check(db, monkeypatch):
    monkeypatch.setattr(settings, "LICENSE_ENFORCED", False)
    med = guard.add_medicine(db, MedicineCreate(name="Free"), license=EXPIRED_DEMO)
    assert med.id


def test_reads_are_never_gated(db):
    make_legacy(db)
    assert len(guard.get_all_medicines(db)) == 1
    assert guard.get_all_bills(db) == []


def test_every_write_is_wrapped():
    for fn in guard.GUARDED_WRITES:
        assert getattr(fn, "__guarded__", False), fn.__name__
    assert not hasattr(guard.get_all_medicines, "__guarded__")
