import unittest
from datetime import date, datetime

from fxledger.errors import ValidationError
from fxledger.models import PeriodStats, Transaction
from fxledger.period_aggregator import (
    BalancePoint,
    CategoryTotal,
    balance_series,
    category_totals,
    compare_periods,
    filter_by_period,
    net_percent_change,
    percent_change,
    period_range,
    period_stats,
    previous_period_range,
)

RATES = {"USD": 1, "EUR": 0.9, "GBP": 0.8}


def txn(txn_id, txn_type, amount, currency, when, category_id=None, to_account_id=None):
    return Transaction(
        id=txn_id,
        type=txn_type,
        amount=amount,
        currency=currency,
        date=when,
        account_id="a",
        to_account_id=to_account_id,
        category_id=category_id,
    )


class PeriodAggregatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.transactions = [
            txn(1, "income", 100000, "USD", date(2024, 4, 30)),
            txn(2, "income", 1000, "EUR", date(2024, 5, 1)),
            txn(3, "expense", 2500, "USD", date(2024, 5, 15), category_id="food"),
            txn(4, "expense", 500, "GBP", date(2024, 5, 31), category_id="travel"),
            txn(5, "transfer", 4000, "USD", date(2024, 5, 20), to_account_id="b"),
            txn(6, "expense", 9999, "USD", date(2024, 6, 1), category_id="food"),
        ]

    def test_filter_is_inclusive_on_both_ends(self) -> None:
        filtered = filter_by_period(self.transactions, date(2024, 5, 1), date(2024, 5, 31))

        self.assertEqual([t.id for t in filtered], [2, 3, 4, 5])

    def test_filter_compares_calendar_days_only(self) -> None:
        filtered = filter_by_period(
            self.transactions,
            datetime(2024, 5, 31, 23, 59),
            datetime(2024, 5, 31, 0, 0),
        )

        self.assertEqual([t.id for t in filtered], [4])

    def test_filter_rejects_inverted_range(self) -> None:
        with self.assertRaises(ValidationError):
            filter_by_period(self.transactions, date(2024, 6, 1), date(2024, 5, 1))

    def test_stats_convert_and_count_every_type(self) -> None:
        stats = period_stats(self.transactions, date(2024, 5, 1), date(2024, 5, 31), "USD", RATES)

        self.assertEqual(stats, PeriodStats(income=1111, expense=2500 + 625, net=1111 - 3125, count=4))
        self.assertEqual(stats.net, stats.income - stats.expense)

    def test_stats_for_empty_window(self) -> None:
        stats = period_stats(self.transactions, date(2023, 1, 1), date(2023, 1, 31), "EUR", RATES)

        self.assertEqual(stats, PeriodStats())

    def test_percent_change_policy(self) -> None:
        self.assertEqual(percent_change(150, 100), 50.0)
        self.assertEqual(percent_change(50, 100), -50.0)
        self.assertEqual(percent_change(10, 0), 100.0)
        self.assertEqual(percent_change(0, 0), 0.0)

    def test_compare_periods(self) -> None:
        current = PeriodStats(income=200, expense=50, net=150, count=3)
        previous = PeriodStats(income=100, expense=0, net=100, count=1)

        comparison = compare_periods(current, previous)

        self.assertEqual(comparison.income_change, 100.0)
        self.assertEqual(comparison.expense_change, 100.0)
        self.assertEqual(comparison.net_change, 50.0)

    def test_net_change_against_previous_deficit(self) -> None:
        self.assertEqual(net_percent_change(-50, -100), 50.0)
        self.assertEqual(net_percent_change(-150, -100), -50.0)
        self.assertEqual(net_percent_change(100, -100), 200.0)
        self.assertEqual(net_percent_change(30, 0), 100.0)
        self.assertEqual(net_percent_change(-30, 0), 0.0)

    def test_compare_periods_reports_net_change(self) -> None:
        current = PeriodStats(income=10, expense=5, net=5, count=2)
        previous = PeriodStats(income=10, expense=8, net=2, count=2)

        comparison = compare_periods(current, previous)

        self.assertEqual(comparison.net_change, 150.0)
        self.assertEqual(comparison.expense_change, -37.5)

    def test_category_totals_rank_descending(self) -> None:
        totals = category_totals(self.transactions, date(2024, 5, 1), date(2024, 6, 30), "USD", RATES)

        self.assertEqual(
            totals,
            [CategoryTotal("food", 2500 + 9999), CategoryTotal("travel", 625)],
        )

    def test_balance_series_runs_chronologically(self) -> None:
        series = balance_series(
            self.transactions,
            date(2024, 5, 30),
            date(2024, 6, 1),
            "USD",
            RATES,
            closing_balance=10000,
        )

        self.assertEqual(
            series,
            [
                BalancePoint(date(2024, 5, 30), 10000 + 625 + 9999),
                BalancePoint(date(2024, 5, 31), 10000 + 9999),
                BalancePoint(date(2024, 6, 1), 10000),
            ],
        )


class PeriodRangeTests(unittest.TestCase):
    def test_presets(self) -> None:
        today = date(2024, 5, 15)

        self.assertEqual(period_range("week", today), (date(2024, 5, 13), date(2024, 5, 19)))
        self.assertEqual(period_range("month", today), (date(2024, 5, 1), date(2024, 5, 31)))
        self.assertEqual(period_range("quarter", today), (date(2024, 3, 1), date(2024, 5, 31)))
        self.assertEqual(period_range("year", today), (date(2024, 1, 1), date(2024, 12, 31)))

    def test_custom_range_defaults_to_today(self) -> None:
        today = date(2024, 5, 15)

        self.assertEqual(period_range("custom", today), (today, today))
        self.assertEqual(
            period_range("custom", today, custom_start=date(2024, 5, 1)),
            (date(2024, 5, 1), today),
        )

    def test_unknown_preset_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            period_range("fortnight", date(2024, 5, 15))

    def test_previous_ranges(self) -> None:
        self.assertEqual(
            previous_period_range("week", date(2024, 5, 13), date(2024, 5, 19)),
            (date(2024, 5, 6), date(2024, 5, 12)),
        )
        self.assertEqual(
            previous_period_range("month", date(2024, 3, 1), date(2024, 3, 31)),
            (date(2024, 2, 1), date(2024, 2, 29)),
        )
        self.assertEqual(
            previous_period_range("quarter", date(2024, 3, 1), date(2024, 5, 31)),
            (date(2023, 12, 1), date(2024, 2, 29)),
        )
        self.assertEqual(
            previous_period_range("year", date(2024, 1, 1), date(2024, 12, 31)),
            (date(2023, 1, 1), date(2023, 12, 31)),
        )

    def test_previous_custom_range_does_not_overlap(self) -> None:
        self.assertEqual(
            previous_period_range("custom", date(2024, 5, 11), date(2024, 5, 20)),
            (date(2024, 5, 1), date(2024, 5, 10)),
        )


if __name__ == "__main__":
    unittest.main()
