from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

UNKNOWN_NAME = "Unknown"


class ItemType(str, Enum):
    DRINK = "drink"
    SNACK = "snack"


class Employee(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={"example": {"id": "1", "name": "Gopalan", "isActive": True}},
    )
    id: str
    name: str = UNKNOWN_NAME
    is_active: bool = Field(default=True, alias="isActive")


class Item(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {"id": "i1", "name": "Tea", "price": 10, "type": "drink", "isActive": True}
        },
    )
    id: str
    name: str = UNKNOWN_NAME
    unit_price: Money = Field(default=Decimal("0"), alias="price")
    type: ItemType = ItemType.SNACK
    is_active: bool = Field(default=True, alias="isActive")


class ConsumptionRecord(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "c1",
                "employeeId": "1",
                "itemId": "i4",
                "itemName": "Bonda",
                "itemType": "snack",
                "price": 10,
                "date": "2026-01-16T10:30:00",
                "quantity": 2,
            }
        },
    )
    id: str
    employee_id: str = Field(alias="employeeId")
    item_id: str = Field(alias="itemId")
    item_name: str = Field(default=UNKNOWN_NAME, alias="itemName")
    item_type: ItemType = Field(alias="itemType")
    unit_price: Money = Field(default=Decimal("0"), alias="price")
    timestamp: datetime = Field(alias="date")
    quantity: int = Field(default=1, ge=1)

    @property
    def amount(self) -> Decimal:
        return self.unit_price * self.quantity


class LineUnit(BaseModel):
    """One priced unit of a consumption record, used for allocation and display."""

    model_config = ConfigDict(frozen=True)
    record_id: str
    employee_id: str
    item_id: str
    item_name: str
    item_type: ItemType
    unit_price: Money
    day: date


class DailyCompanyBill(BaseModel):
    day: date
    total_staff: int
    actual_drink_count: int
    drink_unit_count: int
    manual_added_count: int
    manual_added_cost: Money
    base_drink_cost: Money
    total_daily_cost: Money
    items: list[LineUnit]


class EmployeeBill(BaseModel):
    employee: Employee
    items: list[ConsumptionRecord]
    original_item_count: int
    original_amount: Money
    payable_items: list[LineUnit]
    total_deducted_count: int
    total_deducted_amount: Money
    final_payable_amount: Money
    adjustments_by_day: dict[date, dict[str, int]] = Field(default_factory=dict)

    def adjustments_for(self, day: date) -> dict[str, int]:
        return dict(self.adjustments_by_day.get(day, {}))


class BillingResult(BaseModel):
    company_rows: list[DailyCompanyBill]
    employee_rows: list[EmployeeBill]
    total_company_base: Money
    total_manual_transfer: Money
    grand_total: Money
    total_employee_payable: Money

    @property
    def total_consumption(self) -> Decimal:
        return self.grand_total + self.total_employee_payable


class TallyResult(BaseModel):
    day: Optional[date] = None
    total_employees: int
    actual_drink_count: int
    adjusted_drink_count: int
    gap_filled: int
    snack_only_consumer_ids: list[str]
    extra_snack_consumer_ids: list[str]
    company_cost: Money
