"""Reconciliation arithmetic for splitting an expense total into segments.

Amounts are integer cents. Percentages are held as hundredths of a percent
("bps" below), so 10000 is 100.00% and the 0.01 tolerances on both amounts and
percentages become a single unit. Nothing here touches the database; the
service layer resolves categories and loads totals before calling in.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from errors import InvalidArgumentError

FULL_PERCENT_BPS = 10_000
AMOUNT_TOLERANCE_CENTS = 1
PERCENT_TOLERANCE_BPS = 1
PERCENT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class ProposedSegment:
    category: str
    amount_cents: int
    percentage: Optional[Decimal] = None


@dataclass(frozen=True)
class PlannedSegment:
    category: str
    amount_cents: int
    percentage_bps: int


def format_cents(cents: int) -> str:
    return f"{Decimal(cents).scaleb(-2):.2f}"


def bps_to_percentage(bps: int) -> Decimal:
    return (Decimal(bps) / 100).quantize(Decimal("0.01"))


def category_key(name: str) -> str:
    return name.strip().lower()


def derive_percentage_bps(amount_cents: int, total_cents: int) -> int:
    """Share of ``total_cents`` as hundredths of a percent, rounded half up."""
    if total_cents <= 0:
        return 0
    return (amount_cents * FULL_PERCENT_BPS * 2 + total_cents) // (total_cents * 2)


def check_segment_count(count: int, max_segments: Optional[int] = None) -> None:
    if count == 0:
        raise InvalidArgumentError(
            "At least one segment is required", reason="empty_segment_set"
        )
    if max_segments is not None and count > max_segments:
        raise InvalidArgumentError(
            f"Cannot split an expense into more than {max_segments} segments",
            reason="too_many_segments",
        )


def check_amount_in_range(amount_cents: int, total_cents: int) -> None:
    if amount_cents <= 0:
        raise InvalidArgumentError(
            f"Segment amount must be positive (got {format_cents(amount_cents)})",
            reason="amount_not_positive",
        )
    if amount_cents > total_cents:
        raise InvalidArgumentError(
            f"Segment amount ({format_cents(amount_cents)}) exceeds expense total "
            f"({format_cents(total_cents)})",
            reason="amount_exceeds_total",
        )


def check_unique_categories(categories: Iterable[str]) -> None:
    seen: dict[str, str] = {}
    for name in categories:
        key = category_key(name)
        if key in seen:
            raise InvalidArgumentError(
                f"Segment category '{name.strip()}' is listed more than once "
                f"(categories must be unique within an expense)",
                reason="duplicate_category",
            )
        seen[key] = name


def check_total_matches(amount_cents: int, total_cents: int) -> None:
    if abs(amount_cents - total_cents) > AMOUNT_TOLERANCE_CENTS:
        raise InvalidArgumentError(
            f"Total segments amount ({format_cents(amount_cents)}) must equal "
            f"expense amount ({format_cents(total_cents)})",
            reason="sum_mismatch",
        )


def check_supplied_percentage(
    category: str, supplied: Optional[Decimal], derived_bps: int
) -> None:
    if supplied is None:
        return
    derived = bps_to_percentage(derived_bps)
    if abs(Decimal(supplied) - derived) > PERCENT_TOLERANCE:
        raise InvalidArgumentError(
            f"Percentage for '{category}' ({supplied}) does not match its amount "
            f"({derived})",
            reason="percentage_mismatch",
        )


def check_percentage_total(bps_values: Iterable[int]) -> None:
    total = sum(bps_values)
    if abs(total - FULL_PERCENT_BPS) > PERCENT_TOLERANCE_BPS:
        raise InvalidArgumentError(
            f"Segment percentages total {bps_to_percentage(total)}, expected 100.00",
            reason="percentage_total_mismatch",
        )


def plan_segment(proposed: ProposedSegment, total_cents: int) -> PlannedSegment:
    check_amount_in_range(proposed.amount_cents, total_cents)
    derived = derive_percentage_bps(proposed.amount_cents, total_cents)
    check_supplied_percentage(proposed.category, proposed.percentage, derived)
    return PlannedSegment(
        category=proposed.category,
        amount_cents=proposed.amount_cents,
        percentage_bps=derived,
    )


def plan_complete_segment(
    proposed: ProposedSegment, total_cents: int
) -> PlannedSegment:
    """Plan a segment that must carry the whole expense on its own."""
    planned = plan_segment(proposed, total_cents)
    if abs(planned.amount_cents - total_cents) > AMOUNT_TOLERANCE_CENTS:
        raise InvalidArgumentError(
            f"Amount ({format_cents(planned.amount_cents)}) must equal expense total "
            f"({format_cents(total_cents)}) when it is the only segment",
            reason="incomplete_segment",
        )
    return planned


def plan_segment_set(
    proposed: Sequence[ProposedSegment],
    total_cents: int,
    *,
    max_segments: Optional[int] = None,
) -> list[PlannedSegment]:
    """Validate a full replacement set and derive each segment's percentage.

    Raises ``InvalidArgumentError`` on the first rule that fails; the result
    keeps the submitted order.
    """
    check_segment_count(len(proposed), max_segments)
    for item in proposed:
        check_amount_in_range(item.amount_cents, total_cents)
    check_unique_categories(item.category for item in proposed)
    check_total_matches(sum(item.amount_cents for item in proposed), total_cents)

    planned = [plan_segment(item, total_cents) for item in proposed]
    check_percentage_total(item.percentage_bps for item in planned)
    return planned
