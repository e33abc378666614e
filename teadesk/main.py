from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from functools import partial
from typing import Any, Callable, Literal, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from teadesk import models
from teadesk.adjustments import (
    AdjustmentPayloadError,
    AdjustmentTable,
    ItemCounts,
    load_adjustments,
    parse_adjustment_payload,
)
from teadesk.billing import calculate_billing
from teadesk.config import settings
from teadesk.db import SessionLocal
from teadesk.entries import EntrySlot, Session as DaySession, build_entry_batch, day_session, group_entries
from teadesk.normalize import StoreSnapshot
from teadesk.reports import billing_frame
from teadesk.schemas import BillingResult, ConsumptionRecord, Employee, Item, ItemType
from teadesk.store import (
    ADD_CONSUMPTION,
    ADD_CONSUMPTION_BATCH,
    DELETE_CONSUMPTION,
    DELETE_CONSUMPTION_BATCH,
    SAVE_ADJUSTMENTS,
    SAVE_EMPLOYEE,
    SAVE_ITEM,
    STORE_ACTIONS,
)
from teadesk.summary import generate_weekly_insight
from teadesk.tally import compute_tally, tally_by_day
from teadesk.units import filter_by_range, local_day

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

app = FastAPI(title="Teadesk")


class Meta(BaseModel):
    request_id: str
    warnings: list[str]


class Envelope(BaseModel):
    data: Any
    meta: Meta


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


InsightGenerator = Callable[..., str]


def get_insight_generator() -> InsightGenerator:
    return partial(
        generate_weekly_insight,
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        timeout=settings.http_timeout_seconds,
    )


def _local_tz() -> ZoneInfo:
    return ZoneInfo(settings.timezone)


def _to_storage(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=_local_tz())
    return value.astimezone(timezone.utc)


def _from_storage(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(_local_tz())


def _employee_from_row(row: models.Employee) -> Employee:
    return Employee(id=row.id, name=row.name, is_active=row.is_active)


def _item_from_row(row: models.Item) -> Item:
    return Item(id=row.id, name=row.name, unit_price=row.price, type=ItemType(row.item_type), is_active=row.is_active)


def _record_from_row(row: models.Consumption) -> ConsumptionRecord:
    return ConsumptionRecord(
        id=row.id,
        employee_id=row.employee_id,
        item_id=row.item_id,
        item_name=row.item_name,
        item_type=ItemType(row.item_type),
        unit_price=row.price,
        timestamp=_from_storage(row.consumed_at),
        quantity=row.quantity,
    )


def _adjustments_from_rows(rows: list[models.DailyAdjustment]) -> AdjustmentTable:
    raw: dict[str, dict[str, Any]] = {}
    for row in rows:
        employees = raw.setdefault(row.business_date.isoformat(), {})
        if row.item_id is None:
            employees[row.employee_id] = row.unit_count
        else:
            counts = employees.setdefault(row.employee_id, {})
            if isinstance(counts, dict):
                counts[row.item_id] = row.unit_count
    return load_adjustments(raw)


def _load_snapshot(db: Session) -> StoreSnapshot:
    return StoreSnapshot(
        employees=[_employee_from_row(row) for row in db.scalars(select(models.Employee).order_by(models.Employee.id))],
        items=[_item_from_row(row) for row in db.scalars(select(models.Item).order_by(models.Item.id))],
        consumption=[
            _record_from_row(row)
            for row in db.scalars(
                select(models.Consumption).order_by(models.Consumption.consumed_at, models.Consumption.id)
            )
        ],
        adjustments=_adjustments_from_rows(list(db.scalars(select(models.DailyAdjustment)))),
    )


def _consumption_row(record: ConsumptionRecord) -> models.Consumption:
    return models.Consumption(
        id=record.id,
        employee_id=record.employee_id,
        item_id=record.item_id,
        item_name=record.item_name,
        item_type=record.item_type.value,
        price=record.unit_price,
        consumed_at=_to_storage(record.timestamp),
        quantity=record.quantity,
    )


def _adjustment_rows(table: AdjustmentTable) -> list[models.DailyAdjustment]:
    rows = []
    for day, entries in table.days.items():
        for employee_id, entry in entries.items():
            if isinstance(entry, ItemCounts):
                rows.extend(
                    models.DailyAdjustment(
                        business_date=day, employee_id=employee_id, item_id=item_id, unit_count=count
                    )
                    for item_id, count in entry.counts.items()
                )
            else:
                rows.append(
                    models.DailyAdjustment(
                        business_date=day, employee_id=employee_id, item_id=None, unit_count=entry.count
                    )
                )
    return rows


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok"}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy"}


@app.get("/api/v1/store", tags=["Store"])
def read_store(t: Optional[str] = Query(default=None), db: Session = Depends(get_db)) -> dict:
    snapshot = _load_snapshot(db)
    tz = _local_tz()
    consumption = []
    for record in snapshot.consumption:
        row = record.model_dump(mode="json", by_alias=True)
        row["date"] = record.timestamp.astimezone(tz).isoformat()
        consumption.append(row)
    return {
        "employees": [e.model_dump(mode="json", by_alias=True) for e in snapshot.employees],
        "items": [i.model_dump(mode="json", by_alias=True) for i in snapshot.items],
        "consumption": consumption,
        "dailyAdjustments": snapshot.adjustments.to_payload(),
    }


class StoreAction(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {"action": "delete_consumption_batch", "data": {"ids": ["c1", "c2"]}}
        }
    }
    action: str
    data: Any = None


class RecordIds(BaseModel):
    ids: list[str]


class RecordId(BaseModel):
    id: str


_RECORD_BATCH = TypeAdapter(list[ConsumptionRecord])


def _apply_store_action(db: Session, action: str, data: Any) -> None:
    if action == ADD_CONSUMPTION:
        db.merge(_consumption_row(ConsumptionRecord.model_validate(data)))
    elif action == ADD_CONSUMPTION_BATCH:
        for record in _RECORD_BATCH.validate_python(data):
            db.merge(_consumption_row(record))
    elif action == DELETE_CONSUMPTION:
        record_id = RecordId.model_validate(data).id
        db.execute(delete(models.Consumption).where(models.Consumption.id == record_id))
    elif action == DELETE_CONSUMPTION_BATCH:
        ids = RecordIds.model_validate(data).ids
        if ids:
            db.execute(delete(models.Consumption).where(models.Consumption.id.in_(ids)))
    elif action == SAVE_ADJUSTMENTS:
        table = parse_adjustment_payload(data)
        db.execute(delete(models.DailyAdjustment))
        db.add_all(_adjustment_rows(table))
    elif action == SAVE_EMPLOYEE:
        employee = Employee.model_validate(data)
        db.merge(models.Employee(id=employee.id, name=employee.name, is_active=employee.is_active))
    elif action == SAVE_ITEM:
        item = Item.model_validate(data)
        db.merge(
            models.Item(
                id=item.id,
                name=item.name,
                price=item.unit_price,
                item_type=item.type.value,
                is_active=item.is_active,
            )
        )


@app.post("/api/v1/store", tags=["Store"])
def write_store(payload: StoreAction, db: Session = Depends(get_db)) -> dict:
    if payload.action not in STORE_ACTIONS:
        raise HTTPException(status_code=400, detail=f"unknown action: {payload.action}")
    try:
        _apply_store_action(db, payload.action, payload.data)
    except AdjustmentPayloadError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))
    except ValidationError as exc:
        db.rollback()
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False, include_input=False))
    db.commit()
    logger.info("Applied store action %s", payload.action)
    return {"data": {"action": payload.action, "status": "ok"}, "meta": _meta()}


def _check_range(start: date, end: date) -> None:
    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")


@app.get("/api/v1/billing", tags=["Billing"], response_model=Envelope)
def read_billing(
    start: date = Query(...),
    end: date = Query(...),
    db: Session = Depends(get_db),
) -> dict:
    result = _billing_for(db, start, end)
    data = result.model_dump(mode="json")
    data["total_consumption"] = float(result.total_consumption)
    return {"data": data, "meta": _meta()}


@app.get("/api/v1/billing/export", tags=["Billing"])
def export_billing(
    start: date = Query(...),
    end: date = Query(...),
    db: Session = Depends(get_db),
) -> Response:
    result = _billing_for(db, start, end)
    filename = f"billing_{start.isoformat()}_{end.isoformat()}.csv"
    return Response(
        content=billing_frame(result).to_csv(index=False),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _billing_for(db: Session, start: date, end: date) -> BillingResult:
    _check_range(start, end)
    snapshot = _load_snapshot(db)
    tz = _local_tz()
    records = filter_by_range(snapshot.consumption, start, end, tz)
    headcount = sum(1 for e in snapshot.employees if e.is_active)
    return calculate_billing(records, snapshot.employees, headcount, snapshot.adjustments, tz=tz)


@app.get("/api/v1/tally", tags=["Billing"], response_model=Envelope)
def read_tally(
    day: date = Query(...),
    filler_policy: Literal["union", "sum"] = Query(default="union"),
    db: Session = Depends(get_db),
) -> dict:
    snapshot = _load_snapshot(db)
    tz = _local_tz()
    records = [c for c in snapshot.consumption if local_day(c.timestamp, tz) == day]
    headcount = sum(1 for e in snapshot.employees if e.is_active)
    tally = compute_tally(records, headcount, settings.drink_unit_rate, filler_policy, day=day)
    return {"data": tally.model_dump(mode="json"), "meta": _meta()}


@app.post("/api/v1/summary", tags=["Billing"], response_model=Envelope)
def create_summary(
    start: date = Query(...),
    end: date = Query(...),
    db: Session = Depends(get_db),
    generate: InsightGenerator = Depends(get_insight_generator),
) -> dict:
    _check_range(start, end)
    snapshot = _load_snapshot(db)
    tz = _local_tz()
    records = filter_by_range(snapshot.consumption, start, end, tz)
    headcount = sum(1 for e in snapshot.employees if e.is_active)
    tallies = tally_by_day(records, headcount, settings.drink_unit_rate, tz=tz)
    insight = generate(records, snapshot.employees, tallies)
    return {
        "data": {"start": start.isoformat(), "end": end.isoformat(), "insight": insight},
        "meta": _meta(),
    }


class EntrySlotIn(BaseModel):
    item_id: str = Field(alias="itemId")
    unit_price: Decimal = Field(alias="price")
    quantity: int = 1

    def to_slot(self) -> EntrySlot:
        return EntrySlot(item_id=self.item_id, unit_price=self.unit_price, quantity=self.quantity)


class EntryRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "employeeId": "1",
                "drink": {"itemId": "i1", "price": 10},
                "snacks": [{"itemId": "i4", "price": 10, "quantity": 2}],
            }
        }
    }
    employee_id: str = Field(alias="employeeId")
    drink: Optional[EntrySlotIn] = None
    snacks: list[EntrySlotIn] = Field(default_factory=list)
    timestamp: Optional[datetime] = Field(default=None, alias="date")


@app.post("/api/v1/entries", tags=["Entries"], response_model=Envelope)
def create_entries(payload: EntryRequest, db: Session = Depends(get_db)) -> dict:
    snapshot = _load_snapshot(db)
    employee = next((e for e in snapshot.employees if e.id == payload.employee_id), None)
    if employee is None:
        raise HTTPException(status_code=404, detail=f"unknown employee: {payload.employee_id}")
    records = build_entry_batch(
        employee,
        snapshot.items,
        payload.drink.to_slot() if payload.drink else None,
        [slot.to_slot() for slot in payload.snacks],
        payload.timestamp or datetime.now(_local_tz()),
        existing=snapshot.consumption,
    )
    if not records:
        raise HTTPException(status_code=400, detail="entry has no drink or snacks")
    for record in records:
        db.merge(_consumption_row(record))
    db.commit()
    logger.info("Recorded %d entries for employee %s", len(records), employee.id)
    return {"data": [r.model_dump(mode="json", by_alias=True) for r in records], "meta": _meta()}


@app.get("/api/v1/entries", tags=["Entries"], response_model=Envelope)
def read_entries(
    day: date = Query(...),
    session: Optional[DaySession] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    tz = _local_tz()
    groups = group_entries(_load_snapshot(db).consumption, day, tz, session)
    data = [
        {
            "date": timestamp.astimezone(tz).isoformat(),
            "employeeId": employee_id,
            "session": day_session(records[0], tz),
            "records": [r.model_dump(mode="json", by_alias=True) for r in records],
        }
        for (timestamp, employee_id), records in groups
    ]
    return {"data": data, "meta": _meta()}
