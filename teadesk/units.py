from __future__ import annotations

from datetime import date, datetime, tzinfo
from typing import Iterable, Iterator, Optional

from teadesk.schemas import UNKNOWN_NAME, ConsumptionRecord, LineUnit


def local_day(timestamp: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar day of a timestamp on the display clock.

    Naive timestamps are already local wall time. Aware ones are converted to
    ``tz``, or to the host zone when ``tz`` is None, so that a 00:30 purchase
    never lands on the previous UTC day.
    """
    if timestamp.tzinfo is None:
        return timestamp.date()
    return timestamp.astimezone(tz).date()


def expand_units(records: Iterable[ConsumptionRecord], tz: Optional[tzinfo] = None) -> Iterator[LineUnit]:
    for record in records:
        day = local_day(record.timestamp, tz)
        unit = LineUnit(
            record_id=record.id,
            employee_id=record.employee_id,
            item_id=record.item_id,
            item_name=record.item_name or UNKNOWN_NAME,
            item_type=record.item_type,
            unit_price=record.unit_price,
            day=day,
        )
        for _ in range(max(1, record.quantity)):
            yield unit


def most_expensive_first(units: Iterable[LineUnit]) -> list[LineUnit]:
    # sorted() is stable, so equal prices keep record order
    return sorted(units, key=lambda unit: unit.unit_price, reverse=True)


def filter_by_range(
    records: Iterable[ConsumptionRecord],
    start: date,
    end: date,
    tz: Optional[tzinfo] = None,
) -> list[ConsumptionRecord]:
    return [record for record in records if start <= local_day(record.timestamp, tz) <= end]
