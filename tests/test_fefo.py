from datetime import date
from decimal import Decimal

import pytest

from pharmledger.core.errors import InsufficientStock, InvalidQuantity
from pharmledger.models.medicine import Medicine, MedicineBatch
from pharmledger.services.fefo import allocate, apply_allocation, fefo_order


def _med(batches=None, unit_price="11", tps=10, quantity=0):
    med = Medicine(name="Paracetamol", tablets_per_strip=tps, quantity=quantity,
                   unit_price=Decimal(unit_price))
    med.batches = batches or []
    return med


def _batch(number, expiry, qty, price):
    return MedicineBatch(batch_number=number, expiry_date=expiry, quantity=qty,
                         unit_price=Decimal(price) if price is not None else None)


def _paracetamol():
    # listed out of expiry order on purpose
    return _med([
        _batch("B2", date(2025, 6, 1), 100, "12"),
        _batch("B1", date(2025, 1, 1), 20, "10"),
    ])


def test_allocation_spans_batches_at_their_own_prices():
    alloc = allocate(_paracetamol(), 25)

    assert alloc.total_cost == Decimal("26")
    assert alloc.strip_qty == 2
    assert alloc.loose_qty == 5
    assert [(d.batch.batch_number, d.quantity) for d in alloc.draws] == [("B1", 20),
                                                                          ("B2", 5)]
    assert alloc.unit_price_effective == Decimal("10.4000")
    assert alloc.shortfall == 0


def test_allocate_is_deterministic_and_does_not_mutate():
    med = _paracetamol()
    first = allocate(med, 37)
    second = allocate(med, 37)

    assert first.total_cost == second.total_cost
    assert (first.strip_qty, first.loose_qty) == (second.strip_qty, second.loose_qty)
    assert [b.quantity for b in med.batches] == [100, 20]


def test_zero_request_is_a_zero_allocation():
    alloc = allocate(_paracetamol(), 0)
    assert alloc.total_cost == 0
    assert alloc.strip_qty == 0 and alloc.loose_qty == 0
    assert alloc.draws == ()


def test_negative_request_is_rejected():
    with pytest.raises(InvalidQuantity):
        allocate(_paracetamol(), -1)


def test_legacy_medicine_uses_medicine_price():
    alloc = allocate(_med(unit_price="30", tps=10, quantity=50), 15)
    assert alloc.total_cost == Decimal("45")
    assert alloc.unit_price_effective == Decimal("30.0000")
    assert (alloc.strip_qty, alloc.loose_qty) == (1, 5)


def test_empty_and_undated_batches_order_last_and_stable():
    a = _batch("A", None, 5, "10")
    b = _batch("B", date(2025, 3, 1), 5, "10")
    c = _batch("C", date(2025, 3, 1), 5, "10")
    empty = _batch("E", date(2024, 1, 1), 0, "10")
    assert [x.batch_number for x in fefo_order([a, b, empty, c])] == ["B", "C", "A"]


def test_batch_without_price_falls_back_to_medicine_price():
    med = _med([_batch("N", date(2025, 1, 1), 10, None)], unit_price="20")
    assert allocate(med, 10).total_cost == Decimal("20")


def test_shortfall_is_priced_at_medicine_price():
    med = _med([_batch("B1", date(2025, 1, 1), 5, "10")], unit_price="20")
    alloc = allocate(med, 10)
    # 5 tablets at 10/strip + 5 at 20/strip
    assert alloc.total_cost == Decimal("15")
    assert alloc.shortfall == 5

    with pytest.raises(InsufficientStock):
        apply_allocation(med, alloc)
    assert med.batches[0].quantity == 5


def test_apply_allocation_decrements_drawn_batches():
    med = _paracetamol()
    apply_allocation(med, allocate(med, 25))
    by_number = {b.batch_number: b.quantity for b in med.batches}
    assert by_number == {"B1": 0, "B2": 95}


def test_apply_allocation_rechecks_batches():
    med = _paracetamol()
    alloc = allocate(med, 25)
    med.batches[1].quantity = 10  # B1 sold elsewhere in between

    with pytest.raises(InsufficientStock):
        apply_allocation(med, alloc)
    assert [b.quantity for b in med.batches] == [100, 10]
