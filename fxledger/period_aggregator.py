from __future__ import annotations

from calendar import monthrange
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fxledger.balance_calculator import TransactionLike, coerce_transactions
from fxledger.currency_conversion import RateTable, convert_amount
from fxledger.errors import ValidationError
from fxledger.models import PeriodStats, Transaction, TransactionType, coerce_date, normalize_currency

SUPPORTED_PRESETS = {"week", "month", "quarter", "year", "custom"}


@dataclass(frozen=True)
class PeriodComparison:
    current: PeriodStats
    previous: PeriodStats
    income_change: float
    expense_change: float
    net_change: float


@dataclass(frozen=True)
class CategoryTotal:
    category_id: Any
    total: int


@dataclass(frozen=True)
class BalancePoint:
    date: date
    balance: int


def filter_by_period(
    transactions: Iterable[TransactionLike],
    start: date,
    end: date,
) -> List[Transaction]:
    """Transactions dated within ``start``..``end``, both days included.

    Raises :class:`ValidationError` when ``start`` is after ``end`` rather
    than returning an empty list.
    """
    start_date, end_date = _validate_range(start, end)
    return [
        txn
        for txn in coerce_transactions(transactions)
        if start_date <= txn.date <= end_date
    ]


def period_stats(
    transactions: Iterable[TransactionLike],
    start: date,
    end: date,
    target_currency: str,
    rates: Any = None,
) -> PeriodStats:
    target = normalize_currency(target_currency)
    table = RateTable.coerce(rates)
    filtered = filter_by_period(transactions, start, end)
    income = _sum_converted(filtered, TransactionType.INCOME, target, table)
    expense = _sum_converted(filtered, TransactionType.EXPENSE, target, table)
    return PeriodStats(income=income, expense=expense, net=income - expense, count=len(filtered))


def percent_change(current: float, previous: float) -> float:
    """Period-over-period change in percent.

    With no previous value the change is 100 when anything happened in the
    current period and 0 otherwise.
    """
    if previous > 0:
        return (current - previous) / previous * 100
    return 100.0 if current > 0 else 0.0


def net_percent_change(current: float, previous: float) -> float:
    """Change in net result, measured against the size of the previous net.

    Net can be negative, so a deficit shrinking from -100 to -50 is +50.
    A zero previous net falls back to :func:`percent_change`.
    """
    if previous == 0:
        return percent_change(current, previous)
    return (current - previous) / abs(previous) * 100


def compare_periods(current: PeriodStats, previous: PeriodStats) -> PeriodComparison:
    return PeriodComparison(
        current=current,
        previous=previous,
        income_change=percent_change(current.income, previous.income),
        expense_change=percent_change(current.expense, previous.expense),
        net_change=net_percent_change(current.net, previous.net),
    )


def period_range(
    preset: str,
    today: date,
    custom_start: Optional[date] = None,
    custom_end: Optional[date] = None,
) -> Tuple[date, date]:
    normalized = _validate_preset(preset)
    today = coerce_date(today)
    if normalized == "week":
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=6)
    if normalized == "month":
        return today.replace(day=1), _end_of_month(today)
    if normalized == "quarter":
        return _add_months(today.replace(day=1), -2), _end_of_month(today)
    if normalized == "year":
        return date(today.year, 1, 1), date(today.year, 12, 31)
    start = coerce_date(custom_start) if custom_start is not None else today
    end = coerce_date(custom_end) if custom_end is not None else today
    return _validate_range(start, end)


def previous_period_range(preset: str, start: date, end: date) -> Tuple[date, date]:
    normalized = _validate_preset(preset)
    start, end = _validate_range(start, end)
    if normalized == "week":
        return start - timedelta(days=7), end - timedelta(days=7)
    if normalized == "month":
        previous_start = _add_months(start.replace(day=1), -1)
        return previous_start, _end_of_month(previous_start)
    if normalized == "quarter":
        return _add_months(start, -3), start - timedelta(days=1)
    if normalized == "year":
        return _add_months(start, -12), start - timedelta(days=1)
    length = end - start
    previous_end = start - timedelta(days=1)
    return previous_end - length, previous_end


def category_totals(
    transactions: Iterable[TransactionLike],
    start: date,
    end: date,
    target_currency: str,
    rates: Any = None,
    transaction_type: str = TransactionType.EXPENSE,
) -> List[CategoryTotal]:
    target = normalize_currency(target_currency)
    wanted_type = TransactionType.validate(transaction_type)
    table = RateTable.coerce(rates)
    totals: Dict[Any, int] = defaultdict(int)
    for txn in filter_by_period(transactions, start, end):
        if txn.type != wanted_type:
            continue
        totals[txn.category_id] += convert_amount(txn.amount, txn.currency, target, table)
    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [CategoryTotal(category_id=category_id, total=total) for category_id, total in ranked]


def balance_series(
    transactions: Iterable[TransactionLike],
    start: date,
    end: date,
    target_currency: str,
    rates: Any,
    closing_balance: int,
) -> List[BalancePoint]:
    """Daily running balance across the period, in chronological order.

    The series opens at ``closing_balance`` minus the period's net flow and
    ends at ``closing_balance``. Transfers do not move the total.
    """
    target = normalize_currency(target_currency)
    table = RateTable.coerce(rates)
    start_date, end_date = _validate_range(start, end)
    by_day: Dict[date, List[Transaction]] = defaultdict(list)
    for txn in filter_by_period(transactions, start_date, end_date):
        by_day[txn.date].append(txn)

    stats = period_stats(
        [txn for day in by_day.values() for txn in day], start_date, end_date, target, table
    )
    running = closing_balance - stats.net
    points: List[BalancePoint] = []
    current = start_date
    while current <= end_date:
        for txn in by_day.get(current, ()):
            amount = convert_amount(txn.amount, txn.currency, target, table)
            if txn.type == TransactionType.INCOME:
                running += amount
            elif txn.type == TransactionType.EXPENSE:
                running -= amount
        points.append(BalancePoint(date=current, balance=running))
        current += timedelta(days=1)
    return points


def _sum_converted(
    transactions: Iterable[Transaction],
    transaction_type: str,
    target_currency: str,
    table: RateTable,
) -> int:
    total = 0
    for txn in transactions:
        if txn.type != transaction_type:
            continue
        total += convert_amount(txn.amount, txn.currency, target_currency, table)
    return total


def _validate_range(start: date, end: date) -> Tuple[date, date]:
    start_date = coerce_date(start)
    end_date = coerce_date(end)
    if start_date > end_date:
        raise ValidationError("start must be on or before end.")
    return start_date, end_date


def _validate_preset(preset: str) -> str:
    normalized = preset.strip().lower() if isinstance(preset, str) else ""
    if normalized not in SUPPORTED_PRESETS:
        raise ValidationError("Only week, month, quarter, year, or custom periods are supported.")
    return normalized


def _end_of_month(value: date) -> date:
    return value.replace(day=monthrange(value.year, value.month)[1])


def _add_months(start_date: date, months: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    day = min(start_date.day, monthrange(year, month)[1])
    return date(year, month, day)
