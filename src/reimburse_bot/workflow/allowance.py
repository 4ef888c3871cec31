"""
Semi-monthly reimbursement allowances.

Each month has two cutoff periods: the 1st to the 15th and the 16th to the
last day of the month. Usage is compared against a fixed cap per category.
"""

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from ..harvest_client import ExpenseCategory

MIDPOINT_DAY = 15

DEFAULT_LIMITS: dict[ExpenseCategory, Decimal] = {
    ExpenseCategory.TRANSPORTATION: Decimal("50.00"),
    ExpenseCategory.HEALTH_WELLNESS: Decimal("16.67"),
}


@dataclass(frozen=True)
class CutoffPeriod:
    """One half-month allowance period."""

    start: date
    end: date
    first_half: bool

    @property
    def label(self) -> str:
        if self.first_half:
            return "1st Cutoff (1st - 15th)"
        return "2nd Cutoff (16th - End)"


@dataclass(frozen=True)
class AllowanceUsage:
    """Period-to-date usage of one category."""

    category: ExpenseCategory
    used: Decimal
    limit: Decimal

    @property
    def remaining(self) -> Decimal:
        return max(Decimal("0"), self.limit - self.used)

    @property
    def percent(self) -> int:
        if self.limit <= 0:
            return 100
        return int(min(Decimal("100"), self.used / self.limit * 100).to_integral_value())


def cutoff_period(today: date) -> CutoffPeriod:
    """Cutoff period containing a date."""
    if today.day <= MIDPOINT_DAY:
        return CutoffPeriod(
            start=today.replace(day=1),
            end=today.replace(day=MIDPOINT_DAY),
            first_half=True,
        )
    last_day = calendar.monthrange(today.year, today.month)[1]
    return CutoffPeriod(
        start=today.replace(day=MIDPOINT_DAY + 1),
        end=today.replace(day=last_day),
        first_half=False,
    )


def progress_bar(percent: int, width: int = 10) -> str:
    """Text progress bar, e.g. ``███░░░░░░░``."""
    filled = max(0, min(width, round(percent * width / 100)))
    return "█" * filled + "░" * (width - filled)
