from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from fxledger.errors import ValidationError
from fxledger.models import coerce_date

DAYS_PER_WEEK = 7


@dataclass(frozen=True)
class Goal:
    target_amount: int
    current_amount: int = 0
    deadline: Optional[date] = None
    is_completed: bool = False
    id: Any = None

    def __post_init__(self) -> None:
        for name in ("target_amount", "current_amount"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"{name} must be a non-negative integer of minor units.")
        if self.deadline is not None:
            object.__setattr__(self, "deadline", coerce_date(self.deadline))


@dataclass(frozen=True)
class GoalProjection:
    percentage: int
    remaining: int
    is_completed: bool
    days_until_deadline: Optional[int]
    daily_required: Optional[int]
    weekly_required: Optional[int]


def project_goal(goal: Goal, today: date) -> GoalProjection:
    percentage = 0
    if goal.target_amount > 0:
        ratio = Decimal(goal.current_amount) * 100 / Decimal(goal.target_amount)
        percentage = int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    remaining = goal.target_amount - goal.current_amount

    days_until_deadline = None
    if goal.deadline is not None:
        days_until_deadline = (goal.deadline - coerce_date(today)).days

    daily_required = required_daily_amount(remaining, days_until_deadline)
    return GoalProjection(
        percentage=percentage,
        remaining=remaining,
        is_completed=goal.is_completed or percentage >= 100,
        days_until_deadline=days_until_deadline,
        daily_required=daily_required,
        weekly_required=daily_required * DAYS_PER_WEEK if daily_required else None,
    )


def required_daily_amount(remaining: int, days_until_deadline: Optional[int]) -> Optional[int]:
    """Daily saving needed to reach the target, or ``None`` when no pace applies."""
    if days_until_deadline is None or days_until_deadline <= 0 or remaining <= 0:
        return None
    return -(-remaining // days_until_deadline)
