import csv
from datetime import date
from decimal import Decimal
from io import BytesIO, StringIO

from openpyxl import load_workbook

from pharmledger.models.medicine import Medicine
from pharmledger.services.billing import create_bill, get_all_bills
from pharmledger.services.medicines import get_all_medicines
from pharmledger.services.transfer import (
    BILL_HEADERS,
    MEDICINE_HEADERS,
    build_bills_excel,
    build_medicines_excel,
    export_bills_csv,
    export_medicines_csv,
    import_medicines,
    parse_medicines_csv,
)

from conftest import line, make_legacy


def test_medicine_csv_escapes_quotes_and_commas(db):
    make_legacy(db, name='Vitamin "D3", 1000IU', brand="Uprise, Inc", quantity=12)

    rows = list(csv.reader(StringIO(export_medicines_csv(get_all_medicines(db)))))

    assert rows[0] == MEDICINE_HEADERS
    assert rows[1][0] == 'Vitamin "D3", 1000IU'
    assert rows[1][1] == "Uprise, Inc"
    assert rows[1][5] == "12"
    assert rows[1][6] == "10.00"


def test_bill_csv_has_one_row_per_bill(db):
    med = make_legacy(db, quantity=10, unit_price="20")
    create_bill(db, [line(med, 2)], discount_percent=10)
    create_bill(db, [line(med, 1)])

    rows = list(csv.reader(StringIO(export_bills_csv(get_all_bills(db)))))

    assert rows[0] == BILL_HEADERS
    assert len(rows) == 3
    by_number = {r[0]: r for r in rows[1:]}
    assert by_number["BILL-0001"][4:] == ["40.00", "10", "4.00", "36.00"]


def test_exported_csv_parses_back(db):
    make_legacy(db, name="Roundtrip", quantity=40, unit_price="25.5", tablets_per_strip=10,
                expiry_date=date(2027, 2, 1))
    valid, invalid = parse_medicines_csv(export_medicines_csv(get_all_medicines(db)))
    assert invalid == []
    assert valid[0].name == "Roundtrip"
    assert valid[0].quantity == 40
    assert valid[0].tablets_per_strip == 10
    assert valid[0].expiry_date == date(2027, 2, 1)


def test_parse_accepts_header_aliases_and_defaults_strip_size():
    text = (
        "Medicine Name,Salt/Composition,Category,Quantity,Price,Expiry,Batch\n"
        "Dolo 650,Paracetamol,Tablet,100,30.50,2027-05-31,DL01\n"
        "Benadryl,Diphenhydramine,Syrup,4,95,31/12/2026,BN9\n"
    )
    valid, invalid = parse_medicines_csv(text)

    assert invalid == []
    dolo, syrup = valid
    assert dolo.salt == "Paracetamol"
    assert dolo.unit_price == Decimal("30.50")
    assert dolo.tablets_per_strip == 10
    assert dolo.batch_number == "DL01"
    assert syrup.tablets_per_strip == 1
    assert syrup.expiry_date == date(2026, 12, 31)


def test_parse_reports_invalid_rows_with_row_numbers():
    text = (
        "name,category,quantity\n"
        ",Tablet,5\n"
        "Good,Tablet,5\n"
        "Bad qty,Tablet,-3\n"
        "Bad cat,Lozenge,1\n"
    )
    valid, invalid = parse_medicines_csv(text)

    assert [v.name for v in valid] == ["Good"]
    assert [(i.row, i.errors) for i in invalid] == [
        (2, ["Name is required"]),
        (4, ["Invalid quantity"]),
        (5, ["Invalid category: Lozenge"]),
    ]


def test_parse_empty_file():
    valid, invalid = parse_medicines_csv("name,quantity\n")
    assert valid == []
    assert invalid[0].errors == ["File is empty or has no data rows"]


def test_import_in_chunks_marks_history(db):
    text = "name,quantity\nA,1\nB,2\nC,3\n"
    valid, _ = parse_medicines_csv(text)

    imported = import_medicines(db, valid, chunk_size=2)

    assert len(imported) == 3
    assert db.query(Medicine).count() == 3
    for med in db.query(Medicine).all():
        entries = [(e.action, e.note) for e in med.audit_history]
        assert entries == [("created", "Imported from CSV")]


def test_excel_exports(db):
    med = make_legacy(db, name="Xl", quantity=10)
    create_bill(db, [line(med, 1)])

    bio = BytesIO()
    build_medicines_excel(bio, get_all_medicines(db))
    bio.seek(0)
    ws = load_workbook(bio).active
    assert [c.value for c in ws[1]] == MEDICINE_HEADERS
    assert ws["A2"].value == "Xl"

    bio = BytesIO()
    build_bills_excel(bio, get_all_bills(db))
    bio.seek(0)
    wb = load_workbook(bio)
    assert wb["Bills"]["A2"].value == "BILL-0001"
    assert wb["Bill Items"]["B2"].value == "Xl"
