"""Client-side repository for the remote consumption store.

The store speaks a two-verb protocol: ``GET ?t=<cachebuster>`` returns the
whole document, ``POST {action, data}`` applies one change. Writes are
applied to the local snapshot first and then sent without inspecting the
reply; a failed send is logged and never rolled back.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import date, tzinfo
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

import httpx

from teadesk.adjustments import AdjustmentTable, parse_adjustment_payload
from teadesk.billing import calculate_billing
from teadesk.config import settings
from teadesk.normalize import StoreSnapshot, parse_store_document
from teadesk.schemas import BillingResult, ConsumptionRecord, Employee, Item, ItemType, TallyResult
from teadesk.tally import DEFAULT_DRINK_UNIT_RATE, FillerPolicy, compute_tally
from teadesk.units import filter_by_range, local_day

logger = logging.getLogger(__name__)

ADD_CONSUMPTION = "add_consumption"
ADD_CONSUMPTION_BATCH = "add_consumption_batch"
DELETE_CONSUMPTION = "delete_consumption"
DELETE_CONSUMPTION_BATCH = "delete_consumption_batch"
SAVE_ADJUSTMENTS = "save_adjustments"
SAVE_EMPLOYEE = "save_employee"
SAVE_ITEM = "save_item"

STORE_ACTIONS = (
    ADD_CONSUMPTION,
    ADD_CONSUMPTION_BATCH,
    DELETE_CONSUMPTION,
    DELETE_CONSUMPTION_BATCH,
    SAVE_ADJUSTMENTS,
    SAVE_EMPLOYEE,
    SAVE_ITEM,
)

FALLBACK_EMPLOYEES = (
    Employee(id="1", name="Gopalan", is_active=True),
    Employee(id="2", name="Navin", is_active=True),
)
FALLBACK_ITEMS = (
    Item(id="i1", name="Tea", unit_price=Decimal("10"), type=ItemType.DRINK),
    Item(id="i2", name="Coffee", unit_price=Decimal("15"), type=ItemType.DRINK),
    Item(id="i3", name="Milk", unit_price=Decimal("10"), type=ItemType.DRINK),
    Item(id="i4", name="Bonda", unit_price=Decimal("10"), type=ItemType.SNACK),
    Item(id="i5", name="Bajji", unit_price=Decimal("10"), type=ItemType.SNACK),
    Item(id="i6", name="Vada", unit_price=Decimal("10"), type=ItemType.SNACK),
)


class StoreNotLoadedError(RuntimeError):
    """Raised when the repository is read or written before ``init()``."""


class StoreUnavailableError(Exception):
    """The store answered, but not with a usable document."""


@dataclass(frozen=True)
class PendingWrite:
    action: str
    data: Any


def fallback_snapshot() -> StoreSnapshot:
    return StoreSnapshot(employees=list(FALLBACK_EMPLOYEES), items=list(FALLBACK_ITEMS))


def _record_payload(record: ConsumptionRecord) -> dict:
    return record.model_dump(mode="json", by_alias=True)


class StoreRepository:
    def __init__(
        self,
        base_url: str = "",
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
        auto_flush: bool = True,
    ) -> None:
        self.base_url = base_url.strip()
        self.auto_flush = auto_flush
        self._client = client or httpx.Client(timeout=timeout)
        self._snapshot = StoreSnapshot()
        self._loaded = False
        self._pending: deque[PendingWrite] = deque()

    @classmethod
    def from_settings(cls, client: Optional[httpx.Client] = None) -> "StoreRepository":
        return cls(settings.store_url, client=client, timeout=settings.http_timeout_seconds)

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def pending_writes(self) -> list[PendingWrite]:
        return list(self._pending)

    # -- loading -----------------------------------------------------------

    def init(self) -> None:
        if self._loaded:
            return
        self.reload()

    def reload(self) -> None:
        if not self.base_url:
            logger.warning("Store URL not set, using fallback data")
            self._snapshot = fallback_snapshot()
            self._loaded = True
            return
        try:
            self._snapshot = self._fetch()
            logger.info("Loaded %d consumption logs", len(self._snapshot.consumption))
        except (httpx.HTTPError, ValueError, StoreUnavailableError) as exc:
            logger.error("Store load failed, using fallback data: %s", exc)
            if not self._snapshot.employees:
                self._snapshot = fallback_snapshot()
        self._loaded = True

    def _fetch(self) -> StoreSnapshot:
        response = self._client.get(self.base_url, params={"t": int(time.time() * 1000)})
        response.raise_for_status()
        body = response.text.strip()
        if not body or body == "undefined":
            raise StoreUnavailableError("store returned an empty response")
        document = response.json()
        if not isinstance(document, dict):
            raise StoreUnavailableError(f"store returned {type(document).__name__}, expected an object")
        return parse_store_document(document)

    def _require_loaded(self) -> StoreSnapshot:
        if not self._loaded:
            raise StoreNotLoadedError("call init() before using the store")
        return self._snapshot

    # -- reads -------------------------------------------------------------

    def employees(self) -> list[Employee]:
        return list(self._require_loaded().employees)

    def items(self) -> list[Item]:
        return list(self._require_loaded().items)

    def consumptions(self) -> list[ConsumptionRecord]:
        return list(self._require_loaded().consumption)

    def adjustments(self) -> AdjustmentTable:
        return self._require_loaded().adjustments

    def active_headcount(self) -> int:
        return sum(1 for employee in self._require_loaded().employees if employee.is_active)

    # -- writes ------------------------------------------------------------

    def add_consumption(self, record: ConsumptionRecord) -> None:
        snapshot = self._require_loaded()
        snapshot.consumption = [*snapshot.consumption, record]
        self._enqueue(ADD_CONSUMPTION, _record_payload(record))

    def add_consumption_batch(self, records: Iterable[ConsumptionRecord]) -> None:
        snapshot = self._require_loaded()
        records = list(records)
        snapshot.consumption = [*snapshot.consumption, *records]
        self._enqueue(ADD_CONSUMPTION_BATCH, [_record_payload(record) for record in records])

    def remove_consumption(self, record_id: str) -> None:
        snapshot = self._require_loaded()
        snapshot.consumption = [c for c in snapshot.consumption if c.id != record_id]
        self._enqueue(DELETE_CONSUMPTION, {"id": record_id})

    def remove_consumption_batch(self, record_ids: Iterable[str]) -> None:
        snapshot = self._require_loaded()
        ids = list(record_ids)
        id_set = set(ids)
        snapshot.consumption = [c for c in snapshot.consumption if c.id not in id_set]
        self._enqueue(DELETE_CONSUMPTION_BATCH, {"ids": ids})

    def replace_consumption_batch(
        self, old_ids: Iterable[str], records: Iterable[ConsumptionRecord]
    ) -> None:
        """Edit an entry: drop the old batch, then add the new one with fresh ids."""
        old_ids = list(old_ids)
        records = list(records)
        if old_ids:
            self.remove_consumption_batch(old_ids)
        if records:
            self.add_consumption_batch(records)

    def save_adjustments(self, adjustments: Any) -> None:
        table = parse_adjustment_payload(adjustments)
        self._require_loaded().adjustments = table
        self._enqueue(SAVE_ADJUSTMENTS, table.to_payload())

    def save_item_adjustments(self, day: date, employee_id: str, counts: Mapping[str, int]) -> None:
        table = self.adjustments().merge({day: {employee_id: counts}})
        self.save_adjustments(table)

    def save_employee(self, employee: Employee) -> None:
        snapshot = self._require_loaded()
        snapshot.employees = _upsert(snapshot.employees, employee)
        self._enqueue(SAVE_EMPLOYEE, employee.model_dump(mode="json", by_alias=True))

    def save_item(self, item: Item) -> None:
        snapshot = self._require_loaded()
        snapshot.items = _upsert(snapshot.items, item)
        self._enqueue(SAVE_ITEM, item.model_dump(mode="json", by_alias=True))

    def _enqueue(self, action: str, data: Any) -> None:
        self._pending.append(PendingWrite(action, data))
        if self.auto_flush:
            self.flush()

    def flush(self) -> int:
        """Send every pending write once. Returns how many were attempted."""
        sent = 0
        while self._pending:
            write = self._pending.popleft()
            sent += 1
            if not self.base_url:
                continue
            try:
                self._client.post(self.base_url, json={"action": write.action, "data": write.data})
            except httpx.HTTPError as exc:
                logger.error("Store write %s failed: %s", write.action, exc)
        return sent

    def close(self) -> None:
        self._client.close()

    # -- engine shortcuts --------------------------------------------------

    def billing(self, start: date, end: date, tz: Optional[tzinfo] = None) -> BillingResult:
        snapshot = self._require_loaded()
        records = filter_by_range(snapshot.consumption, start, end, tz)
        return calculate_billing(
            records, snapshot.employees, self.active_headcount(), snapshot.adjustments, tz=tz
        )

    def tally(
        self,
        day: date,
        drink_unit_rate: Decimal = DEFAULT_DRINK_UNIT_RATE,
        filler_policy: FillerPolicy = "union",
        tz: Optional[tzinfo] = None,
    ) -> TallyResult:
        records = [c for c in self.consumptions() if local_day(c.timestamp, tz) == day]
        return compute_tally(records, self.active_headcount(), drink_unit_rate, filler_policy, day=day)


def _upsert(rows: list, row: Any) -> list:
    updated = [row if existing.id == row.id else existing for existing in rows]
    if not any(existing.id == row.id for existing in rows):
        updated.append(row)
    return updated
