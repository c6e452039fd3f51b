from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, List, Optional, Tuple

from fxledger.balance_calculator import TransactionLike, coerce_transactions
from fxledger.currency_conversion import RateTable, convert_amount
from fxledger.errors import ValidationError
from fxledger.models import Transaction, TransactionType, coerce_date, normalize_currency
from fxledger.period_aggregator import filter_by_period, period_range

DEFAULT_ALERT_THRESHOLD = 80
BUDGET_PERIOD_PRESETS = {"weekly": "week", "monthly": "month", "yearly": "year"}
ZERO = Decimal("0")


@dataclass(frozen=True)
class BudgetRule:
    """Spending limit for one category; ``category_id=None`` covers every expense."""

    limit_amount: int
    currency: str
    category_id: Optional[Any] = None
    alert_threshold: int = DEFAULT_ALERT_THRESHOLD

    def __post_init__(self) -> None:
        object.__setattr__(self, "currency", normalize_currency(self.currency))
        if isinstance(self.limit_amount, bool) or not isinstance(self.limit_amount, int):
            raise ValidationError("limit_amount must be an integer number of minor units.")
        if self.limit_amount < 0:
            raise ValidationError("limit_amount must not be negative.")
        if not 0 < self.alert_threshold <= 100:
            raise ValidationError("alert_threshold must be between 1 and 100.")


@dataclass(frozen=True)
class Budget:
    name: str
    rules: Tuple[BudgetRule, ...] = field(default_factory=tuple)
    period: str = "monthly"
    is_active: bool = True


@dataclass(frozen=True)
class PaceProjection:
    daily_pace: Decimal
    projected: Decimal
    will_exceed: bool


@dataclass(frozen=True)
class BudgetEvaluation:
    rule: BudgetRule
    spent: int
    limit: int
    remaining: int
    percentage: int
    is_over: bool
    is_warning: bool
    pace: PaceProjection
    daily_allowance: Optional[int] = None


@dataclass(frozen=True)
class BudgetSummary:
    budget: Budget
    start: date
    end: date
    days_left: int
    evaluations: List[BudgetEvaluation]
    total_limit: int
    total_spent: int

    @property
    def total_remaining(self) -> int:
        return self.total_limit - self.total_spent


@dataclass(frozen=True)
class BudgetAlert:
    budget: str
    category_id: Optional[Any]
    status: str
    percentage: int


def spend_percentage(spent: int, limit: int) -> int:
    if limit <= 0:
        return 0
    ratio = Decimal(spent) * 100 / Decimal(limit)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def pace_projection(spent: int, limit: int, total_days: int, days_left: int) -> PaceProjection:
    if total_days <= 0:
        return PaceProjection(daily_pace=ZERO, projected=ZERO, will_exceed=False)
    elapsed_days = max(total_days - days_left, 1)
    daily_pace = Decimal(spent) / elapsed_days
    projected = daily_pace * total_days
    return PaceProjection(daily_pace=daily_pace, projected=projected, will_exceed=projected > limit)


def daily_allowance(remaining: int, days_left: int) -> Optional[int]:
    """Amount that can still be spent per remaining day, rounded half-up.

    ``None`` once the period is over or nothing is left to spend.
    """
    if days_left <= 0 or remaining <= 0:
        return None
    return int((Decimal(remaining) / days_left).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def evaluate_budget(
    rule: BudgetRule,
    transactions: Iterable[TransactionLike],
    start_date: date,
    end_date: date,
    today: date,
    target_currency: str,
    rates: Any = None,
) -> BudgetEvaluation:
    target = normalize_currency(target_currency)
    table = RateTable.coerce(rates)
    filtered = filter_by_period(transactions, start_date, end_date)
    spent = _sum_expenses(filtered, target, table, category_id=rule.category_id)
    limit = convert_amount(rule.limit_amount, rule.currency, target, table)

    start, end, current = coerce_date(start_date), coerce_date(end_date), coerce_date(today)
    total_days = (end - start).days + 1
    days_left = max(0, (end - current).days)
    percentage = spend_percentage(spent, limit)
    remaining = limit - spent

    # Status flags follow the reported (rounded) percentage.
    return BudgetEvaluation(
        rule=rule,
        spent=spent,
        limit=limit,
        remaining=remaining,
        percentage=percentage,
        is_over=limit > 0 and percentage >= 100,
        is_warning=limit > 0 and percentage >= rule.alert_threshold,
        pace=pace_projection(spent, limit, total_days, days_left),
        daily_allowance=daily_allowance(remaining, days_left),
    )


def budget_period_range(budget: Budget, view_date: date) -> Tuple[date, date]:
    preset = BUDGET_PERIOD_PRESETS.get(budget.period.strip().lower())
    if preset is None:
        raise ValidationError("Only weekly, monthly, or yearly budgets are supported.")
    return period_range(preset, view_date)


def evaluate_budgets(
    budgets: Iterable[Budget],
    transactions: Iterable[TransactionLike],
    today: date,
    target_currency: str,
    rates: Any = None,
) -> List[BudgetSummary]:
    """Evaluate every rule of each active budget over its current period.

    Totals are in ``target_currency``; each rule limit is converted before
    it is added up.
    """
    table = RateTable.coerce(rates)
    txns = coerce_transactions(transactions)
    current = coerce_date(today)
    results: List[BudgetSummary] = []
    for budget in budgets:
        if not budget.is_active:
            continue
        start, end = budget_period_range(budget, current)
        evaluations = [
            evaluate_budget(rule, txns, start, end, current, target_currency, table)
            for rule in budget.rules
        ]
        results.append(
            BudgetSummary(
                budget=budget,
                start=start,
                end=end,
                days_left=max(0, (end - current).days),
                evaluations=evaluations,
                total_limit=sum(evaluation.limit for evaluation in evaluations),
                total_spent=sum(evaluation.spent for evaluation in evaluations),
            )
        )
    return results


def budget_alerts(
    budgets: Iterable[Budget],
    transactions: Iterable[TransactionLike],
    today: date,
    target_currency: str,
    rates: Any = None,
) -> List[BudgetAlert]:
    alerts: List[BudgetAlert] = []
    for summary in evaluate_budgets(budgets, transactions, today, target_currency, rates):
        for evaluation in summary.evaluations:
            if not evaluation.is_warning:
                continue
            alerts.append(
                BudgetAlert(
                    budget=summary.budget.name,
                    category_id=evaluation.rule.category_id,
                    status="exceeded" if evaluation.is_over else "warning",
                    percentage=evaluation.percentage,
                )
            )
    return alerts


def _sum_expenses(
    transactions: Iterable[Transaction],
    target_currency: str,
    table: RateTable,
    *,
    category_id: Optional[Any] = None,
) -> int:
    total = 0
    for txn in transactions:
        if txn.type != TransactionType.EXPENSE:
            continue
        if category_id is not None and txn.category_id != category_id:
            continue
        total += convert_amount(txn.amount, txn.currency, target_currency, table)
    return total
