from datetime import date, timedelta
from decimal import Decimal

from pharmledger.models.medicine import Medicine, MedicineBatch
from pharmledger.services.stock import (
    earliest_expiry,
    is_multi_batch,
    line_total,
    normalize_medicine,
    split_tablets,
    stock_status,
    tablet_price,
    total_quantity,
)


def _med(batches=None, **kw):
    kw.setdefault("name", "Test")
    kw.setdefault("tablets_per_strip", 10)
    kw.setdefault("quantity", 0)
    kw.setdefault("unit_price", Decimal("10"))
    kw.setdefault("batch_number", "")
    kw.setdefault("stock_alert_enabled", True)
    med = Medicine(**kw)
    med.batches = batches or []
    return med


def _batch(number, expiry, qty, price="10"):
    return MedicineBatch(batch_number=number, expiry_date=expiry, quantity=qty,
                         unit_price=Decimal(price))


def test_normalize_derives_quantity_expiry_and_clears_batch_number():
    med = _med([
        _batch("B2", date(2025, 6, 1), 100),
        _batch("B1", date(2025, 1, 1), 20),
    ], quantity=3, batch_number="OLD", expiry_date=date(2030, 1, 1))

    normalize_medicine(med)

    assert med.quantity == 120
    assert med.expiry_date == date(2025, 1, 1)
    assert med.batch_number == ""


def test_normalize_single_batch_copies_its_number():
    med = _med([_batch("ONLY", date(2026, 3, 1), 7)])
    normalize_medicine(med)
    assert med.batch_number == "ONLY"
    assert med.quantity == 7


def test_normalize_ignores_undated_batches_for_expiry():
    med = _med([_batch("X", None, 5), _batch("Y", date(2027, 1, 1), 5)])
    normalize_medicine(med)
    assert med.expiry_date == date(2027, 1, 1)


def test_normalize_legacy_is_unchanged_except_strip_default():
    med = _med(quantity=42, batch_number="L1", expiry_date=date(2026, 1, 1),
               tablets_per_strip=None)
    normalize_medicine(med)
    assert med.quantity == 42
    assert med.batch_number == "L1"
    assert med.expiry_date == date(2026, 1, 1)
    assert med.tablets_per_strip == 1


def test_normalize_keeps_zero_quantity_batches():
    med = _med([_batch("A", date(2025, 1, 1), 0), _batch("B", date(2025, 2, 1), 4)])
    normalize_medicine(med)
    assert len(med.batches) == 2
    assert med.quantity == 4
    assert med.expiry_date == date(2025, 1, 1)
    assert is_multi_batch(med)


def test_total_and_earliest_expiry_helpers():
    med = _med([_batch("A", date(2025, 5, 1), 3), _batch("B", date(2025, 2, 1), 4)])
    assert total_quantity(med) == 7
    assert earliest_expiry(med) == date(2025, 2, 1)


def test_split_tablets():
    assert split_tablets(25, 10) == (2, 5)
    assert split_tablets(7, 1) == (7, 0)
    assert split_tablets(0, 10) == (0, 0)


def test_line_total_prorates_loose_tablets():
    assert line_total(2, 5, Decimal("12"), 10) == Decimal("30")
    # single-unit medicines have no loose part
    assert line_total(3, 0, Decimal("95"), 1) == Decimal("285")


def test_tablet_price():
    assert tablet_price(_med(unit_price=Decimal("25"), tablets_per_strip=10)) == Decimal("2.5")
    assert tablet_price(_med(unit_price=Decimal("25"), tablets_per_strip=1)) == Decimal("25")


def test_stock_status():
    today = date(2026, 1, 10)
    assert stock_status(_med(quantity=0), today) == "out"
    assert stock_status(_med(quantity=50, expiry_date=date(2026, 1, 1)), today) == "expired"
    assert stock_status(_med(quantity=50, expiry_date=today + timedelta(days=5)),
                        today) == "expiring"
    assert stock_status(_med(quantity=3, expiry_date=date(2027, 1, 1)), today) == "low"
    assert stock_status(_med(quantity=3, stock_alert_enabled=False), today) == "ok"
    assert stock_status(_med(quantity=500, expiry_date=date(2027, 1, 1)), today) == "ok"
