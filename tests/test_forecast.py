from datetime import date
from decimal import Decimal

from forecast import (
    aggregate,
    aggregate_year,
    monthly_equivalent_cents,
    net_forecast,
    summarize,
)
from models import DebtAccount, DebtKind, Frequency, Transaction, TransactionType


def _series(
    amount_cents: int,
    frequency,
    *,
    id: int = 1,
    type: TransactionType = TransactionType.expense,
    category: str = "Rent",
    anchor: date = date(2024, 1, 1),
    end_date=None,
    paused: bool = False,
) -> Transaction:
    return Transaction(
        id=id,
        user_id=1,
        date=anchor,
        type=type,
        amount_cents=amount_cents,
        category=category,
        is_recurring=True,
        frequency=frequency,
        recurring_series_id=None,
        end_date=end_date,
        paused=paused,
    )


def _account(**overrides) -> DebtAccount:
    values = dict(
        id=1,
        user_id=1,
        name="Visa",
        kind=DebtKind.revolving,
        limit_cents=100_000,
        balance_cents=50_000,
        interest_rate=Decimal("24"),
        min_payment_cents=10_000,
        due_date=date(2024, 3, 15),
        due_day=15,
        autopay=False,
    )
    values.update(overrides)
    return DebtAccount(**values)


def test_frequency_multipliers():
    assert monthly_equivalent_cents(10_000, Frequency.weekly) == 40_000
    assert monthly_equivalent_cents(10_000, Frequency.biweekly) == 20_000
    assert monthly_equivalent_cents(10_000, Frequency.monthly) == 10_000
    assert monthly_equivalent_cents(10_000, Frequency.yearly) == 833


def test_yearly_contribution_rounds_half_up():
    # 30 cents a year is 2.5 cents a month.
    assert monthly_equivalent_cents(30, Frequency.yearly) == 3


def test_monthly_rent_counts_in_february():
    rent = _series(120_000, Frequency.monthly, anchor=date(2024, 1, 31))
    forecast = aggregate([rent], date(2024, 2, 1))
    assert forecast.total_expense_cents == 120_000
    assert forecast.category_totals == {"Rent": 120_000}


def test_biweekly_contribution():
    gym = _series(5_000, "biweekly", category="Gym")
    forecast = aggregate([gym], date(2024, 3, 1))
    assert forecast.total_expense_cents == 10_000


def test_legacy_frequency_spelling_is_recognised():
    gym = _series(5_000, "bi-weekly", category="Gym")
    unknown = _series(5_000, "fortnightly", id=2, category="Club")
    forecast = aggregate([gym, unknown], date(2024, 3, 1))
    assert forecast.total_expense_cents == 10_000


def test_generated_instances_are_never_counted():
    master = _series(6_000, Frequency.monthly, category="Streaming")
    child = Transaction(
        id=2,
        user_id=1,
        date=date(2024, 2, 1),
        type=TransactionType.expense,
        amount_cents=6_000,
        category="Streaming",
        is_recurring=True,
        frequency=Frequency.monthly,
        recurring_series_id=1,
        paused=False,
    )
    one_off = Transaction(
        id=3,
        user_id=1,
        date=date(2024, 2, 3),
        type=TransactionType.expense,
        amount_cents=999,
        category="Streaming",
        is_recurring=False,
        paused=False,
    )
    forecast = aggregate([master, child, one_off], date(2024, 2, 1))
    assert forecast.total_expense_cents == 6_000


def test_window_paused_and_future_series_are_excluded():
    items = [
        _series(1_000, Frequency.monthly, id=1, category="Old", end_date=date(2024, 1, 31)),
        _series(2_000, Frequency.monthly, id=2, category="Later", anchor=date(2024, 3, 1)),
        _series(4_000, Frequency.monthly, id=3, category="Paused", paused=True),
        _series(8_000, Frequency.monthly, id=4, category="Ends", end_date=date(2024, 2, 1)),
    ]
    forecast = aggregate(items, date(2024, 2, 10))
    assert forecast.total_expense_cents == 8_000
    assert forecast.category_totals == {"Ends": 8_000}


def test_category_type_overrides_stored_type():
    salary = _series(300_000, Frequency.monthly, id=1, category="Salary")
    rent = _series(100_000, Frequency.monthly, id=2, category="Rent")
    forecast = aggregate(
        [salary, rent],
        date(2024, 2, 1),
        {"salary": TransactionType.income, "Rent": "expense"},
    )
    assert forecast.total_income_cents == 300_000
    assert forecast.total_expense_cents == 100_000
    assert forecast.category_totals == {"Rent": 100_000}
    assert forecast.net_cents == 200_000


def test_missing_category_is_uncategorized():
    item = _series(1_500, Frequency.monthly, category="")
    forecast = aggregate([item], date(2024, 2, 1))
    assert forecast.category_totals == {"Uncategorized": 1_500}


def test_aggregate_does_not_mutate_inputs():
    items = [_series(1_000, Frequency.weekly)]
    aggregate(items, date(2024, 2, 1))
    assert items[0].amount_cents == 1_000
    assert items[0].frequency == Frequency.weekly


def test_net_forecast_subtracts_outstanding_minimums():
    salary = _series(300_000, Frequency.monthly, type=TransactionType.income, category="Salary")
    forecast = aggregate([salary], date(2024, 2, 1))
    accounts = [
        _account(),
        _account(id=2, name="Paid off", balance_cents=0),
        _account(id=3, name="Almost", balance_cents=2_500, min_payment_cents=10_000),
    ]
    assert net_forecast(forecast, accounts) == 300_000 - 10_000 - 2_500


def test_year_forecast_respects_series_start_and_end():
    items = [
        _series(10_000, Frequency.monthly, id=1, anchor=date(2024, 7, 1)),
        _series(5_000, Frequency.monthly, id=2, category="Gym", end_date=date(2024, 3, 31)),
    ]
    year = aggregate_year(items, 2024)
    assert len(year.months) == 12
    assert year.total_expense_cents == 6 * 10_000 + 3 * 5_000
    assert year.category_totals == {"Rent": 60_000, "Gym": 15_000}


def test_summary_figures():
    salary = _series(400_000, Frequency.monthly, id=1, type=TransactionType.income, category="Salary")
    rent = _series(150_000, Frequency.monthly, id=2)
    forecast = aggregate([salary, rent], date(2024, 2, 1))
    loan = _account(id=2, name="Car", kind=DebtKind.installment, limit_cents=2_000_000, balance_cents=1_000_000)
    summary = summarize(forecast, [_account(), loan])

    assert summary.debt_minimum_cents == 20_000
    assert summary.total_obligation_cents == 170_000
    assert summary.net_forecast_cents == 230_000
    assert summary.savings_rate == 57.5
    assert summary.total_debt_cents == 1_050_000
    assert [(u.name, u.percent) for u in summary.utilization] == [("Visa", 50.0)]


def test_savings_rate_without_income():
    rent = _series(150_000, Frequency.monthly)
    assert summarize(aggregate([rent], date(2024, 2, 1)), []).savings_rate == -100.0
    assert summarize(aggregate([], date(2024, 2, 1)), []).savings_rate == 0.0
