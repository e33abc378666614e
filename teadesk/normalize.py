"""Tolerant parsing of the remote store document.

The store is a spreadsheet-backed script, so field names arrive with
arbitrary casing and stray whitespace, booleans arrive as strings and
numbers as text. Nothing here raises for bad values; each field falls back
to a safe default instead.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional
from uuid import uuid4

from teadesk.adjustments import AdjustmentTable, load_adjustments
from teadesk.schemas import UNKNOWN_NAME, ConsumptionRecord, Employee, Item, ItemType

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class StoreSnapshot:
    employees: list[Employee] = field(default_factory=list)
    items: list[Item] = field(default_factory=list)
    consumption: list[ConsumptionRecord] = field(default_factory=list)
    adjustments: AdjustmentTable = field(default_factory=AdjustmentTable)


def coerce_money(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return ZERO
        return Decimal(str(value))
    text = str(value).strip()
    if not text:
        return ZERO
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return ZERO
    return amount if amount.is_finite() else ZERO


def coerce_quantity(value: Any) -> int:
    try:
        quantity = float(value)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(quantity) or quantity <= 0:
        return 1
    # Counted in whole units; fractions round down.
    return max(1, int(quantity))


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    return str(value).strip().lower() == "true"


def coerce_item_type(value: Any) -> ItemType:
    if isinstance(value, ItemType):
        return value
    return ItemType.DRINK if "drink" in str(value or "").lower() else ItemType.SNACK


def coerce_timestamp(value: Any, now: Optional[datetime] = None) -> datetime:
    fallback = now or datetime.now().astimezone()
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not value:
        return fallback
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparsable timestamp %r, using now", value)
        return fallback


def _random_id() -> str:
    return uuid4().hex[:9]


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def normalize_keys(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(key).strip().lower(): value for key, value in raw.items()}


def parse_employee(raw: Any) -> Employee:
    e = normalize_keys(raw)
    return Employee(
        id=_text(e.get("id"), "") or _random_id(),
        name=_text(e.get("name"), UNKNOWN_NAME),
        is_active=coerce_bool(e.get("isactive")),
    )


def parse_item(raw: Any) -> Item:
    i = normalize_keys(raw)
    return Item(
        id=_text(i.get("id"), "") or _random_id(),
        name=_text(i.get("name"), UNKNOWN_NAME),
        unit_price=coerce_money(i.get("price")),
        type=coerce_item_type(i.get("type")),
        is_active=coerce_bool(i.get("isactive")),
    )


def parse_consumption(raw: Any, now: Optional[datetime] = None) -> ConsumptionRecord:
    if isinstance(raw, ConsumptionRecord):
        return raw
    c = normalize_keys(raw)
    return ConsumptionRecord(
        id=_text(c.get("id"), "") or _random_id(),
        employee_id=_text(c.get("employeeid"), ""),
        item_id=_text(c.get("itemid"), ""),
        item_name=_text(c.get("itemname"), UNKNOWN_NAME),
        item_type=coerce_item_type(c.get("itemtype")),
        unit_price=coerce_money(c.get("price")),
        timestamp=coerce_timestamp(c.get("date"), now),
        quantity=coerce_quantity(c.get("quantity")),
    )


def _rows(doc: Mapping[str, Any], key: str) -> list[Any]:
    rows = doc.get(key) or []
    if not isinstance(rows, list):
        logger.warning("Store field %r is not a list, ignoring it", key)
        return []
    return rows


def parse_store_document(doc: Any, now: Optional[datetime] = None) -> StoreSnapshot:
    if not isinstance(doc, Mapping):
        logger.warning("Store document is not an object, treating it as empty")
        return StoreSnapshot()
    raw_adjustments = doc.get("dailyAdjustments") or {}
    if not isinstance(raw_adjustments, Mapping):
        logger.warning("Store dailyAdjustments is not an object, ignoring it")
        raw_adjustments = {}
    return StoreSnapshot(
        employees=[parse_employee(row) for row in _rows(doc, "employees")],
        items=[parse_item(row) for row in _rows(doc, "items")],
        consumption=[parse_consumption(row, now) for row in _rows(doc, "consumption")],
        adjustments=load_adjustments(raw_adjustments),
    )
