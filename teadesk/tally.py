"""Daily drink tally with gap filling.

The company pays for one drink per active employee each day. When fewer
people actually took a drink, employees who only had snacks, or who had
more than one snack, may be counted towards the target instead.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, tzinfo
from decimal import Decimal
from typing import Iterable, Literal, Optional

from teadesk.schemas import ConsumptionRecord, ItemType, TallyResult
from teadesk.units import local_day

FillerPolicy = Literal["union", "sum"]

DEFAULT_DRINK_UNIT_RATE = Decimal("10")


def compute_tally(
    day_records: Iterable[ConsumptionRecord],
    active_headcount: int,
    drink_unit_rate: Decimal = DEFAULT_DRINK_UNIT_RATE,
    filler_policy: FillerPolicy = "union",
    day: Optional[date] = None,
) -> TallyResult:
    """Tally one day's records against the active headcount.

    ``filler_policy="union"`` counts every qualifying employee once, even
    when they are both snack-only and multi-snack. ``"sum"`` adds the two
    list lengths together, which is how the tally was first computed.
    """
    drinks: dict[str, int] = defaultdict(int)
    snacks: dict[str, int] = defaultdict(int)
    seen: list[str] = []
    for record in day_records:
        if record.employee_id not in drinks and record.employee_id not in snacks:
            seen.append(record.employee_id)
        if record.item_type == ItemType.DRINK:
            drinks[record.employee_id] += record.quantity
        else:
            snacks[record.employee_id] += record.quantity

    actual = len(drinks)
    snack_only = [emp for emp in seen if snacks.get(emp, 0) >= 1 and emp not in drinks]
    extra_snack = [emp for emp in seen if snacks.get(emp, 0) > 1]

    if filler_policy == "sum":
        fillers = len(snack_only) + len(extra_snack)
    else:
        fillers = len(set(snack_only) | set(extra_snack))

    gap = max(0, active_headcount - actual)
    filled = min(gap, fillers)
    adjusted = actual + filled
    return TallyResult(
        day=day,
        total_employees=active_headcount,
        actual_drink_count=actual,
        adjusted_drink_count=adjusted,
        gap_filled=filled,
        snack_only_consumer_ids=snack_only,
        extra_snack_consumer_ids=extra_snack,
        company_cost=Decimal(adjusted) * drink_unit_rate,
    )


def tally_by_day(
    records: Iterable[ConsumptionRecord],
    active_headcount: int,
    drink_unit_rate: Decimal = DEFAULT_DRINK_UNIT_RATE,
    filler_policy: FillerPolicy = "union",
    tz: Optional[tzinfo] = None,
) -> list[TallyResult]:
    grouped: dict[date, list[ConsumptionRecord]] = defaultdict(list)
    for record in records:
        grouped[local_day(record.timestamp, tz)].append(record)
    return [
        compute_tally(grouped[day], active_headcount, drink_unit_rate, filler_policy, day=day)
        for day in sorted(grouped)
    ]
