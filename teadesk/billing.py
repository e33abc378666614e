"""Billing reconciliation: splits consumption into a company and an employee ledger.

Drinks are billed to the company. Snacks are billed to the employee who
took them, except for the units a manual adjustment moves onto the company
for that day. Every unit lands on exactly one ledger, so the two grand
totals always add up to the value of all consumption in range.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, tzinfo
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence, Union

from teadesk.adjustments import AdjustmentTable, FlatCount, ItemCounts, load_adjustments
from teadesk.normalize import ZERO, parse_consumption, parse_employee
from teadesk.schemas import (
    UNKNOWN_NAME,
    BillingResult,
    ConsumptionRecord,
    DailyCompanyBill,
    Employee,
    EmployeeBill,
    ItemType,
    LineUnit,
)
from teadesk.units import expand_units, local_day


def _finite(value: Decimal) -> Decimal:
    return value if value.is_finite() else ZERO


def _total(units: Iterable[LineUnit]) -> Decimal:
    return _finite(sum((unit.unit_price for unit in units), ZERO))


def _clamp(requested: int, available: int) -> int:
    return max(0, min(requested, available))


def _pick_most_expensive(units: Sequence[LineUnit], indices: Sequence[int], count: int) -> list[int]:
    ranked = sorted(indices, key=lambda i: units[i].unit_price, reverse=True)
    return ranked[: _clamp(count, len(indices))]


def split_snack_units(
    units: Sequence[LineUnit],
    entry: Optional[Union[ItemCounts, FlatCount]],
) -> tuple[list[LineUnit], list[LineUnit]]:
    """Split one employee's snack units for a day into (moved, payable).

    Counts are clamped to what was actually consumed. Within the units an
    adjustment covers, the most expensive are moved first. Both lists keep
    record order.
    """
    if entry is None:
        return [], list(units)
    if isinstance(entry, FlatCount):
        picked = set(_pick_most_expensive(units, range(len(units)), entry.count))
    else:
        by_item: dict[str, list[int]] = defaultdict(list)
        for index, unit in enumerate(units):
            by_item[unit.item_id].append(index)
        picked = set()
        for item_id, indices in by_item.items():
            picked.update(_pick_most_expensive(units, indices, entry.counts.get(item_id, 0)))
    moved = [unit for index, unit in enumerate(units) if index in picked]
    payable = [unit for index, unit in enumerate(units) if index not in picked]
    return moved, payable


@dataclass
class _EmployeeLedger:
    employee: Employee
    items: list[ConsumptionRecord] = field(default_factory=list)
    unit_count: int = 0
    original_amount: Decimal = ZERO
    deducted_count: int = 0
    deducted_amount: Decimal = ZERO
    payable: list[LineUnit] = field(default_factory=list)
    adjustments_by_day: dict[date, dict[str, int]] = field(default_factory=dict)

    def to_bill(self) -> EmployeeBill:
        original = _finite(self.original_amount)
        deducted = _finite(self.deducted_amount)
        return EmployeeBill(
            employee=self.employee,
            items=self.items,
            original_item_count=self.unit_count,
            original_amount=original,
            payable_items=self.payable,
            total_deducted_count=self.deducted_count,
            total_deducted_amount=deducted,
            final_payable_amount=max(ZERO, original - deducted),
            adjustments_by_day=self.adjustments_by_day,
        )


def _as_employee(value: Any) -> Employee:
    return value if isinstance(value, Employee) else parse_employee(value)


def calculate_billing(
    consumptions: Iterable[Any],
    employees: Iterable[Any],
    active_headcount: int,
    adjustments: Any = None,
    *,
    tz: Optional[tzinfo] = None,
) -> BillingResult:
    """Build the company and employee bills for a set of consumption records.

    ``adjustments`` may be an :class:`AdjustmentTable` or the raw stored
    document; a raw document that is not an object raises
    :class:`~teadesk.adjustments.AdjustmentPayloadError`. Records and
    employees may be models or raw store rows. Callers filter records to the
    date range they want billed.
    """
    table: AdjustmentTable = load_adjustments(adjustments)
    records = [parse_consumption(record) for record in consumptions]

    ledgers: dict[str, _EmployeeLedger] = {}
    for employee in employees:
        employee = _as_employee(employee)
        ledgers.setdefault(employee.id, _EmployeeLedger(employee))

    by_day: dict[date, list[ConsumptionRecord]] = defaultdict(list)
    for record in records:
        by_day[local_day(record.timestamp, tz)].append(record)

    company_rows: list[DailyCompanyBill] = []
    for day in sorted(by_day):
        day_records = by_day[day]
        units = list(expand_units(day_records, tz))

        drink_units = [unit for unit in units if unit.item_type == ItemType.DRINK]
        base_cost = _total(drink_units)
        company_items = list(drink_units)
        manual_count = 0
        manual_cost = ZERO

        snacks_by_employee: dict[str, list[LineUnit]] = defaultdict(list)
        for unit in units:
            if unit.item_type == ItemType.SNACK:
                snacks_by_employee[unit.employee_id].append(unit)

        for employee_id, snack_units in snacks_by_employee.items():
            entry = table.entry_for(day, employee_id)
            moved, payable = split_snack_units(snack_units, entry)
            moved_cost = _total(moved)
            manual_count += len(moved)
            manual_cost += moved_cost
            company_items.extend(moved)

            ledger = ledgers.get(employee_id)
            if ledger is None:
                unknown = Employee(id=employee_id, name=UNKNOWN_NAME, is_active=False)
                ledger = ledgers[employee_id] = _EmployeeLedger(unknown)
            ledger.items.extend(
                record
                for record in day_records
                if record.employee_id == employee_id and record.item_type == ItemType.SNACK
            )
            ledger.unit_count += len(snack_units)
            ledger.original_amount += _total(snack_units)
            ledger.deducted_count += len(moved)
            ledger.deducted_amount += moved_cost
            ledger.payable.extend(payable)
            if isinstance(entry, ItemCounts):
                ledger.adjustments_by_day[day] = dict(entry.counts)

        manual_cost = _finite(manual_cost)
        company_rows.append(
            DailyCompanyBill(
                day=day,
                total_staff=active_headcount,
                actual_drink_count=len({unit.employee_id for unit in drink_units}),
                drink_unit_count=len(drink_units),
                manual_added_count=manual_count,
                manual_added_cost=manual_cost,
                base_drink_cost=base_cost,
                total_daily_cost=base_cost + manual_cost,
                items=company_items,
            )
        )

    employee_rows = [ledger.to_bill() for ledger in ledgers.values() if ledger.unit_count > 0]
    return BillingResult(
        company_rows=company_rows,
        employee_rows=employee_rows,
        total_company_base=_finite(sum((row.base_drink_cost for row in company_rows), ZERO)),
        total_manual_transfer=_finite(sum((row.manual_added_cost for row in company_rows), ZERO)),
        grand_total=_finite(sum((row.total_daily_cost for row in company_rows), ZERO)),
        total_employee_payable=_finite(sum((row.final_payable_amount for row in employee_rows), ZERO)),
    )
