from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import ExpenseStatus, ExpenseType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=255)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    active: bool


class ExpenseIn(BaseModel):
    date: date
    vendor: str = Field(..., min_length=1, max_length=255)
    amount_cents: int = Field(..., gt=0)
    description: Optional[str] = None
    type: ExpenseType = ExpenseType.expense


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    date: date
    vendor: str
    amount_cents: int
    description: Optional[str]
    type: ExpenseType
    status: ExpenseStatus


class SegmentIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int
    percentage: Optional[Decimal] = Field(
        default=None, ge=0, le=100
    )


class SegmentBatchIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    segments: list[SegmentIn] = Field(..., min_length=1)


class SegmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    expense_id: int
    category: str
    amount_cents: int
    percentage: Decimal
