from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from segmentation import bps_to_percentage


class ExpenseType(str, Enum):
    expense = "expense"
    invoice = "invoice"


class ExpenseStatus(str, Enum):
    submitted = "submitted"
    pending_review = "pending_review"
    approved = "approved"
    rejected = "rejected"


EDITABLE_STATUSES = frozenset({ExpenseStatus.submitted, ExpenseStatus.pending_review})


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    # case-folded name, see segmentation.category_key
    name_key: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint("name_key", name="uq_category_name_key"),
        Index("ix_categories_active_name", "active", "name"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    vendor: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[ExpenseType] = mapped_column(
        SAEnum(ExpenseType), nullable=False, default=ExpenseType.expense
    )
    status: Mapped[ExpenseStatus] = mapped_column(
        SAEnum(ExpenseStatus), nullable=False, default=ExpenseStatus.submitted
    )

    segments: Mapped[list["ExpenseSegment"]] = relationship(
        "ExpenseSegment",
        back_populates="expense",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ExpenseSegment.id",
    )

    __table_args__ = (
        Index("ix_expenses_owner_date", "owner_id", "date"),
        CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES


class ExpenseSegment(Base, TimestampMixin):
    __tablename__ = "expense_segments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # hundredths of a percent of the parent expense total
    percentage_bps: Mapped[int] = mapped_column(Integer, nullable=False)

    expense: Mapped["Expense"] = relationship("Expense", back_populates="segments")

    __table_args__ = (
        UniqueConstraint("expense_id", "category", name="uq_segment_expense_category"),
        Index("ix_expense_segments_expense", "expense_id", "id"),
        CheckConstraint("amount_cents > 0", name="ck_segment_amount_positive"),
        CheckConstraint(
            "percentage_bps >= 0 AND percentage_bps <= 10000",
            name="ck_segment_percentage_range",
        ),
    )

    @property
    def percentage(self) -> Decimal:
        return bps_to_percentage(self.percentage_bps)
