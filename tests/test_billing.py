from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from teadesk.adjustments import AdjustmentPayloadError, AdjustmentTable, FlatCount, ItemCounts, load_adjustments
from teadesk.billing import _EmployeeLedger, calculate_billing, split_snack_units
from teadesk.schemas import ConsumptionRecord, Employee, ItemType
from teadesk.units import expand_units

DAY = date(2026, 1, 16)
EMPLOYEES = [Employee(id="1", name="Gopalan"), Employee(id="2", name="Navin")]


def _record(
    record_id: str,
    employee_id: str,
    item_id: str,
    item_type: str,
    price: str,
    quantity: int = 1,
    when: datetime = datetime(2026, 1, 16, 10, 30),
    name: str = "",
) -> ConsumptionRecord:
    return ConsumptionRecord(
        id=record_id,
        employee_id=employee_id,
        item_id=item_id,
        item_name=name or item_id,
        item_type=ItemType(item_type),
        unit_price=Decimal(price),
        timestamp=when,
        quantity=quantity,
    )


def _scenario() -> list[ConsumptionRecord]:
    return [
        _record("c1", "1", "i1", "drink", "10", name="Tea"),
        _record("c2", "1", "i4", "snack", "10", quantity=2, name="Bonda"),
    ]


def _consumption_total(records: list[ConsumptionRecord]) -> Decimal:
    return sum((r.unit_price * r.quantity for r in records), Decimal("0"))


def test_drink_and_two_snacks_without_adjustment() -> None:
    result = calculate_billing(_scenario(), EMPLOYEES, 2, {})

    assert len(result.company_rows) == 1
    row = result.company_rows[0]
    assert row.day == DAY
    assert row.total_staff == 2
    assert row.actual_drink_count == 1
    assert row.base_drink_cost == Decimal("10")
    assert row.total_daily_cost == Decimal("10")
    assert row.manual_added_count == 0

    assert len(result.employee_rows) == 1
    bill = result.employee_rows[0]
    assert bill.employee.id == "1"
    assert bill.original_item_count == 2
    assert bill.original_amount == Decimal("20")
    assert bill.final_payable_amount == Decimal("20")
    assert len(bill.items) == 1
    assert len(bill.payable_items) == 2


def test_adjustment_moves_one_snack_to_company() -> None:
    adjustments = {"2026-01-16": {"1": {"i4": 1}}}
    result = calculate_billing(_scenario(), EMPLOYEES, 2, adjustments)

    row = result.company_rows[0]
    assert row.total_daily_cost == Decimal("20")
    assert row.manual_added_count == 1
    assert row.manual_added_cost == Decimal("10")
    assert [unit.item_id for unit in row.items] == ["i1", "i4"]

    bill = result.employee_rows[0]
    assert bill.total_deducted_count == 1
    assert bill.final_payable_amount == Decimal("10")
    assert bill.adjustments_for(DAY) == {"i4": 1}
    assert result.total_manual_transfer == Decimal("10")
    assert result.grand_total == Decimal("20")


def test_adjustment_larger_than_consumption_is_clamped() -> None:
    adjustments = {"2026-01-16": {"1": {"i4": 5}}}
    result = calculate_billing(_scenario(), EMPLOYEES, 2, adjustments)

    bill = result.employee_rows[0]
    assert bill.total_deducted_count == 2
    assert bill.total_deducted_amount == Decimal("20")
    assert bill.final_payable_amount == Decimal("0")
    assert result.company_rows[0].total_daily_cost == Decimal("30")


def test_adjustment_for_item_not_consumed_moves_nothing() -> None:
    adjustments = {"2026-01-16": {"1": {"i5": 3}}}
    result = calculate_billing(_scenario(), EMPLOYEES, 2, adjustments)

    assert result.employee_rows[0].total_deducted_count == 0
    assert result.company_rows[0].manual_added_count == 0


def test_flat_count_moves_most_expensive_snacks_first() -> None:
    records = [
        _record("c1", "2", "i4", "snack", "8"),
        _record("c2", "2", "i5", "snack", "15"),
        _record("c3", "2", "i6", "snack", "12"),
    ]
    result = calculate_billing(records, EMPLOYEES, 2, {"2026-01-16": {"2": 2}})

    bill = result.employee_rows[0]
    assert bill.total_deducted_amount == Decimal("27")
    assert bill.final_payable_amount == Decimal("8")
    assert [unit.item_id for unit in bill.payable_items] == ["i4"]
    assert [unit.item_id for unit in result.company_rows[0].items] == ["i5", "i6"]


def test_split_keeps_record_order_for_equal_prices() -> None:
    records = [_record("c1", "1", "i4", "snack", "10"), _record("c2", "1", "i5", "snack", "10")]
    units = list(expand_units(records))

    moved, payable = split_snack_units(units, FlatCount(count=1))

    assert [u.record_id for u in moved] == ["c1"]
    assert [u.record_id for u in payable] == ["c2"]


def test_split_without_entry_keeps_everything_payable() -> None:
    units = list(expand_units([_record("c1", "1", "i4", "snack", "10", quantity=3)]))

    moved, payable = split_snack_units(units, None)

    assert moved == []
    assert len(payable) == 3


def test_negative_adjustment_counts_move_nothing() -> None:
    units = list(expand_units([_record("c1", "1", "i4", "snack", "10", quantity=2)]))

    moved, _ = split_snack_units(units, ItemCounts(counts={"i4": -4}))

    assert moved == []


def test_days_are_grouped_and_sorted() -> None:
    records = [
        _record("c1", "1", "i1", "drink", "10", when=datetime(2026, 1, 17, 9, 0)),
        _record("c2", "2", "i1", "drink", "10", when=datetime(2026, 1, 16, 9, 0)),
        _record("c3", "1", "i1", "drink", "10", when=datetime(2026, 1, 16, 16, 0)),
    ]
    result = calculate_billing(records, EMPLOYEES, 2, None)

    assert [row.day for row in result.company_rows] == [date(2026, 1, 16), date(2026, 1, 17)]
    assert result.company_rows[0].actual_drink_count == 2
    assert result.company_rows[1].actual_drink_count == 1
    assert result.employee_rows == []


def test_repeat_drinks_count_one_consumer_but_every_unit_is_billed() -> None:
    records = [_record("c1", "1", "i2", "drink", "15", quantity=2)]
    row = calculate_billing(records, EMPLOYEES, 2, {}).company_rows[0]

    assert row.actual_drink_count == 1
    assert row.drink_unit_count == 2
    assert row.base_drink_cost == Decimal("30")


def test_aware_timestamps_are_billed_on_the_local_day() -> None:
    ist = timezone(timedelta(hours=5, minutes=30))
    late_utc = datetime(2026, 1, 15, 19, 0, tzinfo=timezone.utc)
    records = [_record("c1", "1", "i1", "drink", "10", when=late_utc)]

    result = calculate_billing(records, EMPLOYEES, 2, {}, tz=ist)

    assert result.company_rows[0].day == date(2026, 1, 16)


def test_adjustments_apply_only_to_their_own_day() -> None:
    records = [
        _record("c1", "1", "i4", "snack", "10", when=datetime(2026, 1, 16, 10, 0)),
        _record("c2", "1", "i4", "snack", "10", when=datetime(2026, 1, 17, 10, 0)),
    ]
    result = calculate_billing(records, EMPLOYEES, 2, {"2026-01-17": {"1": {"i4": 1}}})

    assert [row.manual_added_count for row in result.company_rows] == [0, 1]
    bill = result.employee_rows[0]
    assert bill.original_item_count == 2
    assert bill.final_payable_amount == Decimal("10")
    assert bill.adjustments_for(date(2026, 1, 16)) == {}


def test_unknown_employee_is_billed_under_sentinel() -> None:
    records = [_record("c1", "99", "i4", "snack", "10")]
    result = calculate_billing(records, EMPLOYEES, 2, {})

    bill = result.employee_rows[0]
    assert bill.employee.id == "99"
    assert bill.employee.name == "Unknown"
    assert result.total_employee_payable == Decimal("10")


def test_employee_rows_follow_roster_order() -> None:
    records = [
        _record("c1", "2", "i4", "snack", "10"),
        _record("c2", "1", "i5", "snack", "10"),
    ]
    result = calculate_billing(records, EMPLOYEES, 2, {})

    assert [bill.employee.id for bill in result.employee_rows] == ["1", "2"]


def test_raw_store_rows_are_coerced() -> None:
    raw = [
        {"ID": "c1", " EmployeeId ": "1", "itemId": "i4", "itemType": "Snack", "price": "abc", "date": "2026-01-16T10:00:00", "quantity": "2"},
        {"id": "c2", "employeeid": "1", "itemid": "i1", "itemtype": "DRINK", "price": "10", "date": "2026-01-16T10:00:00"},
    ]
    result = calculate_billing(raw, [{"id": "1", "name": "Gopalan", "isActive": True}], 1, {})

    bill = result.employee_rows[0]
    assert bill.original_item_count == 2
    assert bill.original_amount == Decimal("0")
    assert result.grand_total == Decimal("10")


def test_non_object_adjustments_are_rejected() -> None:
    with pytest.raises(AdjustmentPayloadError):
        calculate_billing(_scenario(), EMPLOYEES, 2, ["not", "a", "map"])


@pytest.mark.parametrize(
    "adjustments",
    [
        {},
        {"2026-01-16": {"1": {"i4": 1}}},
        {"2026-01-16": {"1": {"i4": 9, "i5": 2}, "2": 3}},
        {"2026-01-16": {"1": 1, "2": {"i6": 1}}, "2026-01-17": {"2": 4}},
    ],
)
def test_ledgers_conserve_total_consumption(adjustments: dict) -> None:
    records = [
        _record("c1", "1", "i1", "drink", "10"),
        _record("c2", "1", "i4", "snack", "10", quantity=2),
        _record("c3", "2", "i6", "snack", "12.50", quantity=3),
        _record("c4", "2", "i2", "drink", "15"),
        _record("c5", "2", "i5", "snack", "7", when=datetime(2026, 1, 17, 11, 0)),
        _record("c6", "1", "i5", "snack", "7", when=datetime(2026, 1, 17, 15, 0)),
    ]
    result = calculate_billing(records, EMPLOYEES, 2, adjustments)

    assert result.grand_total + result.total_employee_payable == _consumption_total(records)
    assert result.total_consumption == _consumption_total(records)
    assert result.grand_total == result.total_company_base + result.total_manual_transfer
    for bill in result.employee_rows:
        assert bill.final_payable_amount >= 0
        assert 0 <= bill.total_deducted_count <= bill.original_item_count


def test_same_inputs_give_identical_results() -> None:
    adjustments = load_adjustments({"2026-01-16": {"1": {"i4": 1}}})

    first = calculate_billing(_scenario(), EMPLOYEES, 2, adjustments)
    second = calculate_billing(_scenario(), EMPLOYEES, 2, adjustments)

    assert first.model_dump() == second.model_dump()


def test_empty_input_gives_zero_totals() -> None:
    result = calculate_billing([], EMPLOYEES, 2, AdjustmentTable())

    assert result.company_rows == []
    assert result.employee_rows == []
    assert result.grand_total == Decimal("0")
    assert result.total_employee_payable == Decimal("0")


def test_payable_never_negative_when_deduction_exceeds_original() -> None:
    ledger = _EmployeeLedger(
        employee=EMPLOYEES[0],
        unit_count=1,
        original_amount=Decimal("10"),
        deducted_count=1,
        deducted_amount=Decimal("25"),
    )

    bill = ledger.to_bill()

    assert bill.final_payable_amount == Decimal("0")
    assert bill.total_deducted_amount == Decimal("25")


def test_negative_price_snack_cannot_make_payable_negative() -> None:
    records = [
        _record("c1", "1", "i4", "snack", "10"),
        _record("c2", "1", "i9", "snack", "-5", name="Refund"),
    ]

    result = calculate_billing(records, EMPLOYEES, 2, {"2026-01-16": {"1": 1}})

    bill = result.employee_rows[0]
    assert bill.original_amount == Decimal("5")
    assert bill.total_deducted_amount == Decimal("10")
    assert bill.final_payable_amount == Decimal("0")
