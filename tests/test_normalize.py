from datetime import date, datetime, timezone
from decimal import Decimal

from teadesk.adjustments import FlatCount
from teadesk.normalize import (
    coerce_bool,
    coerce_money,
    coerce_quantity,
    parse_consumption,
    parse_employee,
    parse_item,
    parse_store_document,
)
from teadesk.schemas import ItemType

NOW = datetime(2026, 1, 16, 12, 0)


def test_money_coercion() -> None:
    assert coerce_money("12.5") == Decimal("12.5")
    assert coerce_money(" 10 ") == Decimal("10")
    assert coerce_money(7) == Decimal("7")
    assert coerce_money(2.5) == Decimal("2.5")
    assert coerce_money("abc") == Decimal("0")
    assert coerce_money("") == Decimal("0")
    assert coerce_money(None) == Decimal("0")
    assert coerce_money(float("nan")) == Decimal("0")
    assert coerce_money("NaN") == Decimal("0")
    assert coerce_money(Decimal("Infinity")) == Decimal("0")


def test_quantity_and_bool_coercion() -> None:
    assert coerce_quantity("3") == 3
    assert coerce_quantity(0) == 1
    assert coerce_quantity(-2) == 1
    assert coerce_quantity("many") == 1
    assert coerce_quantity(None) == 1
    assert coerce_bool(True) is True
    assert coerce_bool("TRUE") is True
    assert coerce_bool(1) is True
    assert coerce_bool("yes") is False
    assert coerce_bool(None) is False


def test_employee_fields_are_case_and_space_tolerant() -> None:
    employee = parse_employee({" ID ": 7, "Name": "Navin", "IsActive": "true"})

    assert employee.id == "7"
    assert employee.name == "Navin"
    assert employee.is_active is True


def test_missing_ids_and_names_get_defaults() -> None:
    employee = parse_employee({"isActive": 0})

    assert len(employee.id) == 9
    assert employee.name == "Unknown"
    assert employee.is_active is False


def test_item_type_is_inferred_from_text() -> None:
    assert parse_item({"id": "i1", "type": "Hot Drink", "price": "10"}).type == ItemType.DRINK
    assert parse_item({"id": "i4", "type": "", "price": "x"}).type == ItemType.SNACK
    assert parse_item({"id": "i4", "price": "x"}).unit_price == Decimal("0")


def test_consumption_defaults() -> None:
    record = parse_consumption({"id": "c1", "employeeId": 1, "itemId": "i4", "date": "garbage"}, now=NOW)

    assert record.employee_id == "1"
    assert record.item_name == "Unknown"
    assert record.item_type == ItemType.SNACK
    assert record.unit_price == Decimal("0")
    assert record.quantity == 1
    assert record.timestamp == NOW


def test_utc_suffix_is_parsed() -> None:
    record = parse_consumption({"id": "c1", "date": "2026-01-16T04:30:00.000Z"}, now=NOW)

    assert record.timestamp == datetime(2026, 1, 16, 4, 30, tzinfo=timezone.utc)


def test_store_document_is_parsed() -> None:
    snapshot = parse_store_document(
        {
            "employees": [{"id": "1", "name": "Gopalan", "isActive": True}],
            "items": [{"id": "i1", "name": "Tea", "price": 10, "type": "drink", "isActive": "TRUE"}],
            "consumption": [
                {"id": "c1", "employeeId": "1", "itemId": "i1", "itemType": "drink", "price": 10, "date": "2026-01-16T09:00:00"}
            ],
            "dailyAdjustments": {"2026-01-16": {"1": 1}},
        },
        now=NOW,
    )

    assert [e.name for e in snapshot.employees] == ["Gopalan"]
    assert snapshot.items[0].is_active is True
    assert snapshot.consumption[0].quantity == 1
    assert snapshot.adjustments.entry_for(date(2026, 1, 16), "1") == FlatCount(count=1)


def test_malformed_document_parts_are_ignored() -> None:
    snapshot = parse_store_document({"employees": "nope", "dailyAdjustments": [1, 2]})

    assert snapshot.employees == []
    assert snapshot.adjustments.days == {}
    assert parse_store_document(["not", "a", "document"]).consumption == []


def test_fractional_quantities_round_down_to_whole_units() -> None:
    assert coerce_quantity(2.7) == 2
    assert coerce_quantity("1.5") == 1
    assert coerce_quantity(0.4) == 1
