from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from decimal import Decimal
from typing import Iterable, Literal, Optional

from teadesk.schemas import UNKNOWN_NAME, ConsumptionRecord, Employee, Item, ItemType
from teadesk.units import local_day

Session = Literal["am", "pm"]

AFTERNOON_STARTS_AT = 13
_SEQUENTIAL_ID = re.compile(r"^c(\d+)$")


@dataclass(frozen=True)
class EntrySlot:
    item_id: str
    unit_price: Decimal
    quantity: int = 1


def next_consumption_id(existing: Iterable[ConsumptionRecord]) -> int:
    highest = 0
    for record in existing:
        match = _SEQUENTIAL_ID.match(record.id)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest + 1


def build_entry_batch(
    employee: Employee,
    items: Iterable[Item],
    drink: Optional[EntrySlot],
    snacks: Iterable[EntrySlot],
    timestamp: datetime,
    existing: Iterable[ConsumptionRecord] = (),
) -> list[ConsumptionRecord]:
    """Turn one employee's form entry into consumption records.

    A drink is always a single unit. Snack slots without an item or with a
    quantity below one are skipped. Prices come from the slot, since the
    entry form lets the price be overridden per purchase.
    """
    catalogue = {item.id: item for item in items}
    next_id = next_consumption_id(existing)
    records: list[ConsumptionRecord] = []

    def _record(slot: EntrySlot, item_type: ItemType, quantity: int) -> ConsumptionRecord:
        nonlocal next_id
        item = catalogue.get(slot.item_id)
        record = ConsumptionRecord(
            id=f"c{next_id}",
            employee_id=employee.id,
            item_id=slot.item_id,
            item_name=item.name if item else UNKNOWN_NAME,
            item_type=item_type,
            unit_price=slot.unit_price,
            timestamp=timestamp,
            quantity=quantity,
        )
        next_id += 1
        return record

    if drink is not None and drink.item_id:
        records.append(_record(drink, ItemType.DRINK, 1))
    for slot in snacks:
        if slot.item_id and slot.quantity >= 1:
            records.append(_record(slot, ItemType.SNACK, slot.quantity))
    return records


def day_session(record: ConsumptionRecord, tz: Optional[tzinfo] = None) -> Session:
    timestamp = record.timestamp
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(tz)
    return "am" if timestamp.hour < AFTERNOON_STARTS_AT else "pm"


def group_entries(
    records: Iterable[ConsumptionRecord],
    day: date,
    tz: Optional[tzinfo] = None,
    session: Optional[Session] = None,
) -> list[tuple[tuple[datetime, str], list[ConsumptionRecord]]]:
    """The day's records grouped by (timestamp, employee), newest first."""
    groups: dict[tuple[datetime, str], list[ConsumptionRecord]] = defaultdict(list)
    for record in records:
        if local_day(record.timestamp, tz) != day:
            continue
        if session is not None and day_session(record, tz) != session:
            continue
        groups[(record.timestamp, record.employee_id)].append(record)
    return sorted(groups.items(), key=lambda group: group[0], reverse=True)
