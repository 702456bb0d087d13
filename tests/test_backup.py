import json
from datetime import datetime

import pytest

from pharmledger.core.errors import MalformedSnapshot
from pharmledger.models.billing import Bill
from pharmledger.models.medicine import Medicine
from pharmledger.services.backup import (
    backup_reminder_due,
    backup_status,
    create_snapshot,
    mark_backup_done,
    parse_snapshot,
    restore_snapshot,
)
from pharmledger.services.bill_numbers import peek_bill_counter
from pharmledger.services.billing import create_bill, delete_bill

from conftest import line, make_legacy, make_paracetamol


@pytest.fixture
def stocked(db):
    para = make_paracetamol(db)
    cet = make_legacy(db, quantity=30)
    first = create_bill(db, [line(para, 5)])
    second = create_bill(db, [line(cet, 2)])
    delete_bill(db, second.id)
    return para, cet, first, second


def test_snapshot_document_shape(db, stocked):
    data = create_snapshot(db, "Corner Pharmacy")

    assert data["version"] == 1
    assert data["pharmacyName"] == "Corner Pharmacy"
    assert "exportedAt" in data
    assert len(data["medicines"]) == 2
    # soft-deleted bills are part of the backup
    assert len(data["bills"]) == 2
    assert any(b["deleted_at"] for b in data["bills"])
    assert {"id": "bill_counter", "value": 2} in data["counters"]
    json.dumps(data)


def test_snapshot_is_read_only_unless_marked(db):
    create_snapshot(db)
    assert backup_status(db)["last_backup_at"] is None

    create_snapshot(db, mark_done=True)
    assert backup_status(db)["last_backup_at"] is not None


@pytest.mark.parametrize("content, msg", [
    ("{not json", "Failed to parse backup file"),
    ({"version": 1, "medicines": []}, "Invalid backup file format"),
    ({"version": 1, "exportedAt": "2026-01-01T00:00:00Z", "medicines": {}},
     "Invalid backup file format"),
    ({"version": 99, "exportedAt": "2026-01-01T00:00:00Z", "medicines": []},
     "Backup version is newer"),
])
def test_parse_rejects_bad_files(content, msg):
    with pytest.raises(MalformedSnapshot) as exc:
        parse_snapshot(content)
    assert msg in exc.value.msg


def test_parse_accepts_serialized_snapshot(db, stocked):
    snap = parse_snapshot(json.dumps(create_snapshot(db)))
    assert len(snap.medicines) == 2
    assert snap.pharmacy_name


def test_restore_skip_is_idempotent(db, stocked):
    data = create_snapshot(db)

    result = restore_snapshot(db, data)

    assert result.medicines_restored == 0
    assert result.bills_restored == 0
    assert db.query(Medicine).count() == 2
    assert db.query(Bill).count() == 2


def test_restore_overwrite_replaces_records(db, stocked):
    para_id = stocked[0].id
    data = create_snapshot(db)
    for m in data["medicines"]:
        if m["id"] == para_id:
            m["name"] = "Paracetamol 650"

    result = restore_snapshot(db, data, merge_mode="overwrite")

    assert result.medicines_restored == 2
    assert result.bills_restored == 2
    db.expire_all()
    restored = db.get(Medicine, para_id)
    assert restored.name == "Paracetamol 650"
    assert [b.batch_number for b in restored.batches] == ["B1", "B2"]
    assert restored.quantity == 115


def test_restore_into_cleared_store(db, stocked):
    para, _, first, _ = stocked
    b1_id, first_id = para.batches[0].id, first.id
    data = create_snapshot(db)
    mark_backup_done(db)
    make_legacy(db, name="Added later")

    result = restore_snapshot(db, data, clear_existing=True)

    assert result.medicines_restored == 2
    assert result.bills_restored == 2
    assert db.query(Medicine).filter(Medicine.name == "Added later").count() == 0
    bill = db.get(Bill, first_id)
    assert bill.bill_number == "BILL-0001"
    assert bill.items[0].batch_draws == [{"batch_id": b1_id, "batch_number": "B1", "quantity": 5}]
    assert peek_bill_counter(db) == 2
    # the backup timestamp survives a clearing restore
    assert backup_status(db)["last_backup_at"] is not None


def test_bill_counter_never_moves_backwards(db, stocked):
    para = stocked[0]
    data = create_snapshot(db)
    create_bill(db, [line(para, 1)])
    create_bill(db, [line(para, 1)])
    assert peek_bill_counter(db) == 4

    restore_snapshot(db, data)

    assert peek_bill_counter(db) == 4
    assert create_bill(db, [line(para, 1)]).bill_number == "BILL-0005"


def test_bill_number_clash_is_skipped(db, stocked):
    data = create_snapshot(db)
    data["bills"][0]["id"] = "bill-from-another-device"

    result = restore_snapshot(db, data)

    assert result.bills_restored == 0
    assert result.bills_skipped == 1
    assert db.get(Bill, "bill-from-another-device") is None


def test_restore_rejects_unknown_merge_mode(db):
    with pytest.raises(ValueError):
        restore_snapshot(db, {}, merge_mode="replace")


def test_backup_reminder(db):
    assert backup_reminder_due(db)

    mark_backup_done(db, at=datetime(2026, 1, 1, 9, 0))

    status = backup_status(db, now=datetime(2026, 1, 5, 9, 0))
    assert status["days_since"] == 4
    assert not status["reminder_due"]
    assert backup_reminder_due(db, now=datetime(2026, 1, 8, 9, 0))
