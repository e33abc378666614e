from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Union

import pandas as pd

from teadesk.schemas import BillingResult, EmployeeBill, LineUnit


def week_bounds(today: date) -> tuple[date, date]:
    """Monday and Sunday of the week containing ``today``."""
    monday = today - timedelta(days=today.weekday())
    return monday, monday + timedelta(days=6)


def aggregate_units(units: Iterable[LineUnit]) -> list[tuple[str, int, Decimal]]:
    totals: dict[str, list] = {}
    for unit in units:
        entry = totals.setdefault(unit.item_name, [0, Decimal("0")])
        entry[0] += 1
        entry[1] += unit.unit_price
    return [(name, count, total) for name, (count, total) in totals.items()]


def _amount(value: Decimal) -> str:
    return f"{value.normalize():f}" if value == value.to_integral() else f"{value:.2f}"


def format_employee_bill(bill: EmployeeBill, start: date, end: date, upi_id: str) -> str:
    lines = [f"{name} x{count} = ₹{_amount(total)}" for name, count, total in aggregate_units(bill.payable_items)]
    return "\n".join(
        [
            f"Hello {bill.employee.name},",
            "",
            f"Here is your snack bill for {start.isoformat()} to {end.isoformat()}:",
            "",
            *lines,
            "",
            f"Total: ₹{_amount(bill.final_payable_amount)}",
            "",
            "Please pay to UPI ID:",
            upi_id,
        ]
    )


def format_group_summary(bills: Iterable[EmployeeBill], start: date, end: date, upi_id: str) -> str:
    """Summary of everyone who still owes money, or an empty string if nobody does."""
    owing = [bill for bill in bills if bill.final_payable_amount > 0]
    if not owing:
        return ""
    total = sum((bill.final_payable_amount for bill in owing), Decimal("0"))
    return "\n".join(
        [
            f"Snack Bill Summary ({start.isoformat()} to {end.isoformat()})",
            "",
            *[f"{bill.employee.name}: ₹{_amount(bill.final_payable_amount)}" for bill in owing],
            "",
            f"Total Collected: ₹{_amount(total)}",
            "",
            "Please pay to UPI ID:",
            upi_id,
        ]
    )


def company_frame(result: BillingResult) -> pd.DataFrame:
    rows = [
        {
            "ledger": "company",
            "date": row.day.isoformat(),
            "name": "Company",
            "drinks": row.actual_drink_count,
            "moved_snacks": row.manual_added_count,
            "base_amount": float(row.base_drink_cost),
            "moved_amount": float(row.manual_added_cost),
            "total_amount": float(row.total_daily_cost),
        }
        for row in result.company_rows
    ]
    return pd.DataFrame(rows, columns=list(_COLUMNS))


def employee_frame(result: BillingResult) -> pd.DataFrame:
    rows = [
        {
            "ledger": "employee",
            "date": "",
            "name": bill.employee.name,
            "drinks": 0,
            "moved_snacks": bill.total_deducted_count,
            "base_amount": float(bill.original_amount),
            "moved_amount": float(bill.total_deducted_amount),
            "total_amount": float(bill.final_payable_amount),
        }
        for bill in result.employee_rows
    ]
    return pd.DataFrame(rows, columns=list(_COLUMNS))


_COLUMNS = (
    "ledger",
    "date",
    "name",
    "drinks",
    "moved_snacks",
    "base_amount",
    "moved_amount",
    "total_amount",
)


def billing_frame(result: BillingResult) -> pd.DataFrame:
    """Company rows followed by employee rows, in one table."""
    return pd.concat([company_frame(result), employee_frame(result)], ignore_index=True)


def write_billing_csv(result: BillingResult, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    billing_frame(result).to_csv(path, index=False)
    return path
