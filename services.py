from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

from rapidfuzz.distance import Levenshtein
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from access import AccessPolicy, Principal, RoleAccessPolicy
from config import get_settings
from errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    TransientError,
)
from models import Category, Expense, ExpenseSegment, ExpenseStatus
from schemas import CategoryIn, ExpenseIn, SegmentIn
from segmentation import (
    ProposedSegment,
    category_key,
    check_amount_in_range,
    check_segment_count,
    check_unique_categories,
    plan_complete_segment,
    plan_segment_set,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = (
    "Travel",
    "Meals",
    "Lodging",
    "Office Supplies",
    "Software",
    "Training",
    "Other",
)


class CategoryService:
    def __init__(
        self, session: Session, policy: Optional[AccessPolicy] = None
    ) -> None:
        self.session = session
        self.policy = policy or RoleAccessPolicy()

    def list_active(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.active.is_(True))
            .order_by(Category.name, Category.id)
        )
        return self.session.scalars(stmt).all()

    def _find_by_name(self, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(Category.name_key == category_key(name))
        )

    def create(self, data: CategoryIn, principal: Principal) -> Category:
        if not self.policy.can_manage_categories(principal):
            raise ForbiddenError("You do not have permission to manage categories")
        name = data.name.strip()
        if not name:
            raise InvalidArgumentError(
                "Category name cannot be empty", reason="blank_category"
            )

        existing = self._find_by_name(name)
        if existing is not None:
            if existing.active:
                raise ConflictError(f"Category '{existing.name}' already exists")
            existing.active = True
            if data.description is not None:
                existing.description = data.description
            self.session.commit()
            logger.info(f"category_restored: id={existing.id} name={existing.name}")
            return existing

        category = Category(
            name=name,
            name_key=category_key(name),
            description=data.description,
            active=True,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_created: id={category.id} name={category.name}")
        return category

    def deactivate(self, category_id: int, principal: Principal) -> None:
        if not self.policy.can_manage_categories(principal):
            raise ForbiddenError("You do not have permission to manage categories")
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError(f"Category not found with ID: {category_id}")
        category.active = False
        self.session.commit()
        logger.info(f"category_deactivated: id={category.id} name={category.name}")

    def ensure_defaults(self, names: Sequence[str] = DEFAULT_CATEGORIES) -> int:
        """Seed the registry when it is empty. Returns how many were added."""
        if self.session.scalar(select(func.count(Category.id))):
            return 0
        for name in names:
            self.session.add(
                Category(name=name, name_key=category_key(name), active=True)
            )
        self.session.flush()
        logger.info(f"category_defaults_seeded: count={len(names)}")
        return len(names)

    def is_valid_category(self, name: str) -> bool:
        category = self._find_by_name(name)
        return category is not None and category.active

    def resolve(self, name: str) -> str:
        """Return the registry spelling of ``name`` or raise InvalidArgumentError."""
        cleaned = name.strip()
        if not cleaned:
            raise InvalidArgumentError(
                "Segment category is required", reason="blank_category"
            )
        category = self._find_by_name(cleaned)
        if category is not None and category.active:
            return category.name

        message = f"Category '{cleaned}' is not a valid category"
        suggestion = self._closest(cleaned)
        if suggestion:
            message += f"; did you mean '{suggestion}'?"
        raise InvalidArgumentError(message, reason="unknown_category")

    def _closest(self, name: str) -> Optional[str]:
        input_lower = category_key(name)
        best_distance: Optional[int] = None
        best: Optional[str] = None
        for category in self.list_active():
            dist = int(Levenshtein.distance(input_lower, category_key(category.name)))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = category.name
        if best_distance is not None and best_distance <= 2:
            return best
        return None


class ExpenseService:
    def __init__(
        self, session: Session, policy: Optional[AccessPolicy] = None
    ) -> None:
        self.session = session
        self.policy = policy or RoleAccessPolicy()

    def get(self, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if not expense:
            raise NotFoundError(f"Expense not found with ID: {expense_id}")
        return expense

    def get_for(self, expense_id: int, principal: Principal) -> Expense:
        expense = self.get(expense_id)
        if not self.policy.can_view(principal, expense):
            raise ForbiddenError("You do not have permission to view this expense")
        return expense

    def create(self, data: ExpenseIn, principal: Principal) -> Expense:
        expense = Expense(
            owner_id=principal.user_id,
            date=data.date,
            vendor=data.vendor.strip(),
            amount_cents=data.amount_cents,
            description=data.description,
            type=data.type,
            status=ExpenseStatus.submitted,
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_created: id={expense.id} owner_id={expense.owner_id} "
            f"amount_cents={expense.amount_cents}"
        )
        return expense


class SegmentService:
    """Splits an expense total across registry categories.

    Every mutating call locks the parent expense, validates the complete
    resulting segment set and commits in one transaction; a failed check
    leaves the stored set untouched.
    """

    def __init__(
        self,
        session: Session,
        policy: Optional[AccessPolicy] = None,
        *,
        max_segments: Optional[int] = None,
    ) -> None:
        self.session = session
        self.policy = policy or RoleAccessPolicy()
        self.categories = CategoryService(session, self.policy)
        if max_segments is None:
            max_segments = get_settings().max_segments
        self.max_segments = max_segments

    def _segments(self, expense_id: int) -> list[ExpenseSegment]:
        stmt = (
            select(ExpenseSegment)
            .where(ExpenseSegment.expense_id == expense_id)
            .order_by(ExpenseSegment.id)
        )
        return self.session.scalars(stmt).all()

    def _get_segment(self, expense_id: int, segment_id: int) -> ExpenseSegment:
        segment = self.session.scalar(
            select(ExpenseSegment).where(
                ExpenseSegment.expense_id == expense_id,
                ExpenseSegment.id == segment_id,
            )
        )
        if not segment:
            raise NotFoundError(f"Segment not found with ID: {segment_id}")
        return segment

    def _lock_expense(self, expense_id: int) -> Expense:
        if self.session.get_bind().dialect.name == "sqlite":
            # no row locks in sqlite; a no-op write takes the database write
            # lock so the reads below see the latest committed segment set
            self.session.execute(
                update(Expense)
                .where(Expense.id == expense_id)
                .values(updated_at=Expense.updated_at)
                .execution_options(synchronize_session=False)
            )
        expense = self.session.scalar(
            select(Expense)
            .where(Expense.id == expense_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if not expense:
            raise NotFoundError(f"Expense not found with ID: {expense_id}")
        return expense

    def _authorize_modify(self, expense: Expense, principal: Principal) -> None:
        if not self.policy.can_modify(principal, expense):
            raise ForbiddenError(
                "You do not have permission to modify segments of this expense"
            )
        if not expense.is_editable:
            raise ConflictError(
                f"Segments cannot be changed while the expense is {expense.status.value}"
            )

    @contextmanager
    def _write(self, expense_id: int, principal: Principal) -> Iterator[Expense]:
        try:
            expense = self._lock_expense(expense_id)
            self._authorize_modify(expense, principal)
            yield expense
            self.session.flush()
            self.session.commit()
        except (OperationalError, StaleDataError) as exc:
            self.session.rollback()
            logger.warning(f"segment_write_failed: expense_id={expense_id} error={exc}")
            raise TransientError(
                "The expense is busy or the store is unavailable; retry the request"
            ) from exc
        except Exception:
            self.session.rollback()
            raise

    def _proposed(self, data: SegmentIn) -> ProposedSegment:
        return ProposedSegment(
            category=self.categories.resolve(data.category),
            amount_cents=data.amount_cents,
            percentage=data.percentage,
        )

    def _resolve_all(self, segments: Sequence[SegmentIn]) -> list[ProposedSegment]:
        # duplicates are reported against the submitted spelling before lookup
        check_unique_categories(item.category for item in segments)
        return [self._proposed(item) for item in segments]

    def list_segments(
        self, expense_id: int, principal: Principal
    ) -> list[ExpenseSegment]:
        expense = self.session.get(Expense, expense_id)
        if not expense:
            raise NotFoundError(f"Expense not found with ID: {expense_id}")
        if not self.policy.can_view(principal, expense):
            raise ForbiddenError("You do not have permission to view this expense")
        logger.debug(f"segments_listed: expense_id={expense_id}")
        return self._segments(expense_id)

    def create_single_segment(
        self, expense_id: int, data: SegmentIn, principal: Principal
    ) -> ExpenseSegment:
        with self._write(expense_id, principal) as expense:
            if self._segments(expense.id):
                raise ConflictError(
                    "Expense already has segments; replace the whole set instead"
                )
            planned = plan_complete_segment(self._proposed(data), expense.amount_cents)
            segment = ExpenseSegment(
                expense_id=expense.id,
                category=planned.category,
                amount_cents=planned.amount_cents,
                percentage_bps=planned.percentage_bps,
            )
            self.session.add(segment)
        logger.info(
            f"segment_created: expense_id={expense_id} segment_id={segment.id} "
            f"category={segment.category}"
        )
        return segment

    def create_multiple_segments(
        self, expense_id: int, segments: Sequence[SegmentIn], principal: Principal
    ) -> list[ExpenseSegment]:
        with self._write(expense_id, principal) as expense:
            if self._segments(expense.id):
                raise ConflictError(
                    "Expense already has segments; replace the whole set instead"
                )
            created = self._store_set(expense, segments)
        logger.info(
            f"segments_created: expense_id={expense_id} count={len(created)}"
        )
        return created

    def replace_all_segments(
        self, expense_id: int, segments: Sequence[SegmentIn], principal: Principal
    ) -> list[ExpenseSegment]:
        with self._write(expense_id, principal) as expense:
            existing = self._segments(expense.id)
            created = self._store_set(expense, segments, replacing=existing)
        logger.info(
            f"segments_replaced: expense_id={expense_id} removed={len(existing)} "
            f"count={len(created)}"
        )
        return created

    def _store_set(
        self,
        expense: Expense,
        segments: Sequence[SegmentIn],
        *,
        replacing: Sequence[ExpenseSegment] = (),
    ) -> list[ExpenseSegment]:
        check_segment_count(len(segments), self.max_segments)
        proposed = self._resolve_all(segments)
        planned = plan_segment_set(proposed, expense.amount_cents)

        for old in replacing:
            self.session.delete(old)
        # old rows must be gone before the unique (expense, category) inserts
        self.session.flush()

        created = [
            ExpenseSegment(
                expense_id=expense.id,
                category=item.category,
                amount_cents=item.amount_cents,
                percentage_bps=item.percentage_bps,
            )
            for item in planned
        ]
        self.session.add_all(created)
        return created

    def update_segment(
        self,
        expense_id: int,
        segment_id: int,
        data: SegmentIn,
        principal: Principal,
    ) -> ExpenseSegment:
        with self._write(expense_id, principal) as expense:
            segment = self._get_segment(expense.id, segment_id)
            check_amount_in_range(data.amount_cents, expense.amount_cents)

            siblings = [s for s in self._segments(expense.id) if s.id != segment.id]
            if siblings:
                raise ConflictError(
                    "Only an expense with a single segment can be edited in place; "
                    "replace the whole set to change a split"
                )

            planned = plan_complete_segment(self._proposed(data), expense.amount_cents)
            segment.category = planned.category
            segment.amount_cents = planned.amount_cents
            segment.percentage_bps = planned.percentage_bps
        logger.info(
            f"segment_updated: expense_id={expense_id} segment_id={segment_id} "
            f"category={segment.category}"
        )
        return segment

    def delete_segment(
        self, expense_id: int, segment_id: int, principal: Principal
    ) -> None:
        with self._write(expense_id, principal) as expense:
            segment = self._get_segment(expense.id, segment_id)
            remaining = (
                self.session.scalar(
                    select(func.count(ExpenseSegment.id)).where(
                        ExpenseSegment.expense_id == expense.id
                    )
                )
                - 1
            )
            self.session.delete(segment)
        logger.info(
            f"segment_deleted: expense_id={expense_id} segment_id={segment_id} "
            f"remaining={remaining}"
        )
