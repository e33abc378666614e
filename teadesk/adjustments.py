"""Manual adjustment table: snack units re-billed from an employee to the company.

The stored document went through two shapes. Early data holds a flat count
per employee and day (``{"2026-01-16": {"1": 2}}``); later data holds a count
per item (``{"2026-01-16": {"1": {"i4": 2}}}``). Both are migrated once, at
load time, into a tagged union so the billing engine never has to inspect
the raw shape.
"""
from __future__ import annotations

import logging
import math
from collections import Counter, defaultdict
from datetime import date, tzinfo
from typing import Annotated, Any, Iterable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from teadesk.schemas import ConsumptionRecord, ItemType
from teadesk.units import expand_units, most_expensive_first

logger = logging.getLogger(__name__)


class AdjustmentPayloadError(ValueError):
    """Raised when an adjustment payload is not a JSON object."""


class ItemCounts(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["items"] = "items"
    counts: dict[str, int] = Field(default_factory=dict)


class FlatCount(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["flat"] = "flat"
    count: int = 0


AdjustmentEntry = Annotated[Union[ItemCounts, FlatCount], Field(discriminator="kind")]


def _count(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number) or number < 0:
        return 0
    return int(number)


def _parse_day(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def _migrate_entry(raw: Any) -> Optional[Union[ItemCounts, FlatCount]]:
    if isinstance(raw, (ItemCounts, FlatCount)):
        return raw
    if isinstance(raw, Mapping):
        kind = raw.get("kind")
        if kind == "flat":
            return FlatCount(count=_count(raw.get("count")))
        if kind == "items":
            counts = raw.get("counts") or {}
            if not isinstance(counts, Mapping):
                return None
            return ItemCounts(counts={str(k): _count(v) for k, v in counts.items()})
        return ItemCounts(counts={str(k): _count(v) for k, v in raw.items()})
    if isinstance(raw, (int, float, str)):
        return FlatCount(count=_count(raw))
    return None


class AdjustmentTable(BaseModel):
    model_config = ConfigDict(frozen=True)
    days: dict[date, dict[str, AdjustmentEntry]] = Field(default_factory=dict)

    def entry_for(self, day: date, employee_id: str) -> Optional[Union[ItemCounts, FlatCount]]:
        return self.days.get(day, {}).get(employee_id)

    def count_for(self, day: date, employee_id: str, item_id: str) -> int:
        entry = self.entry_for(day, employee_id)
        if isinstance(entry, ItemCounts):
            return entry.counts.get(item_id, 0)
        return 0

    def item_counts_for(self, day: date, employee_id: str) -> dict[str, int]:
        entry = self.entry_for(day, employee_id)
        if isinstance(entry, ItemCounts):
            return dict(entry.counts)
        return {}

    def with_item_count(self, day: date, employee_id: str, item_id: str, count: int) -> "AdjustmentTable":
        return self.merge({day: {employee_id: {item_id: count}}})

    def merge(self, drafts: Mapping[date, Mapping[str, Mapping[str, int]]]) -> "AdjustmentTable":
        """Overlay per-item draft counts on top of this table.

        A draft for an employee whose stored entry is a flat count replaces
        that entry, since the two cannot be combined item by item.
        """
        days = {day: dict(entries) for day, entries in self.days.items()}
        for day, employees in drafts.items():
            day_entries = days.setdefault(day, {})
            for employee_id, item_counts in employees.items():
                current = day_entries.get(employee_id)
                counts = dict(current.counts) if isinstance(current, ItemCounts) else {}
                counts.update({item_id: _count(n) for item_id, n in item_counts.items()})
                day_entries[employee_id] = ItemCounts(counts=counts)
        return AdjustmentTable(days=days)

    def to_payload(self) -> dict[str, dict[str, Any]]:
        payload: dict[str, dict[str, Any]] = {}
        for day in sorted(self.days):
            payload[day.isoformat()] = {
                employee_id: dict(entry.counts) if isinstance(entry, ItemCounts) else entry.count
                for employee_id, entry in self.days[day].items()
            }
        return payload

    def has_flat_entries(self) -> bool:
        return any(
            isinstance(entry, FlatCount) for entries in self.days.values() for entry in entries.values()
        )


def parse_adjustment_payload(raw: Any) -> AdjustmentTable:
    """Load a replacement table sent by a client; a missing payload is an error."""
    if raw is None:
        raise AdjustmentPayloadError("adjustments payload is required")
    return load_adjustments(raw)


def load_adjustments(raw: Any) -> AdjustmentTable:
    if isinstance(raw, AdjustmentTable):
        return raw
    if raw is None:
        return AdjustmentTable()
    if not isinstance(raw, Mapping):
        raise AdjustmentPayloadError(
            f"adjustments must be an object keyed by date, got {type(raw).__name__}"
        )
    days: dict[date, dict[str, Union[ItemCounts, FlatCount]]] = {}
    for day_key, employees in raw.items():
        day = _parse_day(day_key)
        if day is None:
            logger.warning("Dropping adjustments for unparsable day %r", day_key)
            continue
        if not isinstance(employees, Mapping):
            logger.warning("Dropping adjustments for %s: expected an object", day)
            continue
        for employee_id, value in employees.items():
            entry = _migrate_entry(value)
            if entry is None:
                logger.warning("Dropping adjustment for %s/%s: %r", day, employee_id, value)
                continue
            days.setdefault(day, {})[str(employee_id)] = entry
    return AdjustmentTable(days=days)


def upgrade_flat_entries(
    table: AdjustmentTable,
    consumptions: Iterable[ConsumptionRecord],
    tz: Optional[tzinfo] = None,
) -> AdjustmentTable:
    """Rewrite flat counts as per-item counts.

    The units a flat count covers are picked most expensive first, the same
    rule the billing engine applies, so billing output does not change.
    """
    if not table.has_flat_entries():
        return table
    snacks: dict[tuple[date, str], list] = defaultdict(list)
    for unit in expand_units(consumptions, tz):
        if unit.item_type == ItemType.SNACK:
            snacks[(unit.day, unit.employee_id)].append(unit)

    days: dict[date, dict[str, Union[ItemCounts, FlatCount]]] = {}
    for day, entries in table.days.items():
        upgraded = {}
        for employee_id, entry in entries.items():
            if isinstance(entry, FlatCount):
                units = most_expensive_first(snacks.get((day, employee_id), []))
                picked = Counter(unit.item_id for unit in units[: entry.count])
                entry = ItemCounts(counts=dict(picked))
            upgraded[employee_id] = entry
        days[day] = upgraded
    return AdjustmentTable(days=days)
