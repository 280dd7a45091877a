from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from typing import Iterable, Mapping, Optional, Sequence

from dates import month_end, month_start
from models import DebtAccount, DebtKind, Frequency, Transaction, TransactionType
from recurrence import normalize_frequency

# Fixed monthly-equivalent multipliers. Weekly is x4, not 52/12: forecasts
# must not move when a month happens to hold five paydays.
MONTHLY_MULTIPLIERS: dict[Frequency, Fraction] = {
    Frequency.weekly: Fraction(4),
    Frequency.biweekly: Fraction(2),
    Frequency.monthly: Fraction(1),
    Frequency.yearly: Fraction(1, 12),
}

UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class Forecast:
    month: date
    total_income_cents: int
    total_expense_cents: int
    category_totals: dict[str, int] = field(default_factory=dict)

    @property
    def net_cents(self) -> int:
        return self.total_income_cents - self.total_expense_cents


@dataclass(frozen=True)
class YearForecast:
    year: int
    months: list[Forecast]

    @property
    def total_income_cents(self) -> int:
        return sum(m.total_income_cents for m in self.months)

    @property
    def total_expense_cents(self) -> int:
        return sum(m.total_expense_cents for m in self.months)

    @property
    def category_totals(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for month in self.months:
            for name, cents in month.category_totals.items():
                totals[name] = totals.get(name, 0) + cents
        return totals


@dataclass(frozen=True)
class AccountUtilization:
    account_id: int
    name: str
    percent: float


@dataclass(frozen=True)
class Summary:
    monthly_income_cents: int
    recurring_expense_cents: int
    debt_minimum_cents: int
    total_obligation_cents: int
    net_forecast_cents: int
    savings_rate: float
    total_debt_cents: int
    utilization: list[AccountUtilization]


def monthly_equivalent_cents(amount_cents: int, frequency: Frequency) -> int:
    value = Fraction(amount_cents) * MONTHLY_MULTIPLIERS[frequency]
    exact = Decimal(value.numerator) / Decimal(value.denominator)
    return int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_type(value: object) -> Optional[TransactionType]:
    if value is None or value == "":
        return None
    if isinstance(value, TransactionType):
        return value
    if str(value).strip().lower() == TransactionType.income.value:
        return TransactionType.income
    return TransactionType.expense


def resolve_type(
    txn: Transaction, category_type_map: Mapping[str, object]
) -> TransactionType:
    """Category type wins over the stored type: categories can be reassigned later."""
    key = (txn.category or "").lower()
    return (
        _as_type(category_type_map.get(key))
        or _as_type(txn.type)
        or TransactionType.expense
    )


def _is_series_master(txn: Transaction) -> bool:
    if not txn.is_recurring:
        return False
    return txn.recurring_series_id is None or txn.recurring_series_id == txn.id


def aggregate(
    transactions: Iterable[Transaction],
    target_month: date,
    category_type_map: Optional[Mapping[str, object]] = None,
) -> Forecast:
    """Monthly forecast from recurring masters only.

    Generated instances are ignored so a master and its children are never
    both counted. Expenses are broken down by category; income is a scalar.
    """
    start = month_start(target_month)
    end = month_end(target_month)
    type_map = {str(k).lower(): v for k, v in (category_type_map or {}).items()}

    income = 0
    expense = 0
    category_totals: dict[str, int] = {}
    for txn in transactions:
        if not _is_series_master(txn) or txn.paused:
            continue
        frequency = normalize_frequency(txn.frequency)
        if frequency is None:
            continue
        if txn.date > end:
            continue
        if txn.end_date is not None and txn.end_date < start:
            continue

        contribution = monthly_equivalent_cents(txn.amount_cents, frequency)
        if resolve_type(txn, type_map) == TransactionType.income:
            income += contribution
        else:
            expense += contribution
            name = txn.category or UNCATEGORIZED
            category_totals[name] = category_totals.get(name, 0) + contribution

    return Forecast(
        month=start,
        total_income_cents=income,
        total_expense_cents=expense,
        category_totals=category_totals,
    )


def aggregate_year(
    transactions: Sequence[Transaction],
    year: int,
    category_type_map: Optional[Mapping[str, object]] = None,
) -> YearForecast:
    months = [
        aggregate(transactions, date(year, month, 1), category_type_map)
        for month in range(1, 13)
    ]
    return YearForecast(year=year, months=months)


def outstanding_minimum_cents(accounts: Iterable[DebtAccount]) -> int:
    return sum(
        min(account.min_payment_cents, account.balance_cents)
        for account in accounts
        if account.balance_cents > 0
    )


def net_forecast(forecast: Forecast, accounts: Iterable[DebtAccount]) -> int:
    return forecast.net_cents - outstanding_minimum_cents(accounts)


def summarize(forecast: Forecast, accounts: Sequence[DebtAccount]) -> Summary:
    debt_minimum = outstanding_minimum_cents(accounts)
    obligations = forecast.total_expense_cents + debt_minimum
    net = forecast.total_income_cents - obligations

    if forecast.total_income_cents > 0:
        savings_rate = round(net / forecast.total_income_cents * 100, 1)
    elif obligations > 0:
        savings_rate = -100.0
    else:
        savings_rate = 0.0

    utilization = [
        AccountUtilization(
            account_id=account.id,
            name=account.name,
            percent=round(min(account.balance_cents / account.limit_cents * 100, 100), 1),
        )
        for account in accounts
        if account.kind == DebtKind.revolving and account.limit_cents > 0
    ]

    return Summary(
        monthly_income_cents=forecast.total_income_cents,
        recurring_expense_cents=forecast.total_expense_cents,
        debt_minimum_cents=debt_minimum,
        total_obligation_cents=obligations,
        net_forecast_cents=net,
        savings_rate=savings_rate,
        total_debt_cents=sum(account.balance_cents for account in accounts),
        utilization=utilization,
    )
