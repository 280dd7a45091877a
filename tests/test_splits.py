from datetime import date

import pytest

from errors import InputValidationError
from models import Frequency, Transaction, TransactionType
from recurrence import RecurrenceRule, project
from splits import split_series


def _subscription(**overrides) -> Transaction:
    values = dict(
        id=7,
        user_id=1,
        date=date(2024, 1, 1),
        type=TransactionType.expense,
        amount_cents=6_000,
        category="Streaming",
        note="Family plan",
        is_recurring=True,
        frequency=Frequency.monthly,
        recurring_series_id=None,
        end_date=None,
        paused=False,
        last_generated=None,
    )
    values.update(overrides)
    return Transaction(**values)


def test_split_closes_old_series_and_starts_new_one():
    master = _subscription()
    result = split_series(master, date(2024, 6, 1), {"amount_cents": 7_500})

    assert result.closed_master is master
    assert master.end_date == date(2024, 5, 31)
    new = result.new_master
    assert new.date == date(2024, 6, 1)
    assert new.amount_cents == 7_500
    assert new.category == "Streaming"
    assert new.note == "Family plan"
    assert new.frequency == Frequency.monthly
    assert new.is_recurring is True
    assert new.recurring_series_id is None
    assert new.end_date is None


def test_history_before_cutover_is_unchanged():
    master = _subscription()
    window = (date(2024, 1, 1), date(2024, 12, 31))
    before = project(RecurrenceRule.from_master(master), *window, today=date(2024, 3, 1))

    result = split_series(master, date(2024, 6, 1), {"amount_cents": 7_500})
    old = project(RecurrenceRule.from_master(master), *window, today=date(2024, 3, 1))
    new = project(
        RecurrenceRule.from_master(result.new_master), *window, today=date(2024, 3, 1)
    )

    assert old == [o for o in before if o.date < date(2024, 6, 1)]
    assert all(o.amount_cents == 6_000 for o in old)
    assert [o.date.month for o in new] == [6, 7, 8, 9, 10, 11, 12]
    assert all(o.amount_cents == 7_500 for o in new)


def test_split_inherits_end_date_unless_overridden():
    master = _subscription(end_date=date(2024, 12, 1))
    inherited = split_series(master, date(2024, 6, 1), {}).new_master
    assert inherited.end_date == date(2024, 12, 1)

    master = _subscription(end_date=date(2024, 12, 1))
    overridden = split_series(
        master, date(2024, 6, 1), {"end_date": date(2024, 9, 1), "frequency": "weekly"}
    ).new_master
    assert overridden.end_date == date(2024, 9, 1)
    assert overridden.frequency == Frequency.weekly


def test_split_lowers_checkpoint_past_new_end():
    master = _subscription(last_generated=date(2024, 7, 1))
    split_series(master, date(2024, 6, 1), {})
    assert master.last_generated == date(2024, 5, 31)


@pytest.mark.parametrize(
    "cutover,fields",
    [
        (date(2024, 1, 1), {}),
        (date(2023, 12, 1), {}),
        (date(2024, 6, 1), {"amount_cents": -1}),
        (date(2024, 6, 1), {"category": ""}),
        (date(2024, 6, 1), {"frequency": "daily"}),
        (date(2024, 6, 1), {"end_date": date(2024, 5, 1)}),
        (date(2024, 6, 1), {"date": date(2024, 6, 2)}),
    ],
)
def test_invalid_split_changes_nothing(cutover, fields):
    master = _subscription()
    with pytest.raises(InputValidationError):
        split_series(master, cutover, fields)
    assert master.end_date is None


def test_split_after_series_end_is_rejected():
    master = _subscription(end_date=date(2024, 3, 1))
    with pytest.raises(InputValidationError):
        split_series(master, date(2024, 6, 1), {})
    assert master.end_date == date(2024, 3, 1)


def test_instances_cannot_be_split():
    instance = _subscription(id=8, is_recurring=False, recurring_series_id=7)
    with pytest.raises(InputValidationError):
        split_series(instance, date(2024, 6, 1), {})


def test_split_on_clamped_month_end_keeps_intended_day():
    result = split_series(_subscription(date=date(2024, 1, 31)), date(2024, 4, 30), {})
    assert result.new_master.day_of_month == 31
    rule = RecurrenceRule.from_master(result.new_master)
    dates = [
        o.date
        for o in project(rule, date(2024, 4, 1), date(2024, 8, 31), today=date(2024, 4, 30))
    ]
    assert dates == [
        date(2024, 4, 30),
        date(2024, 5, 31),
        date(2024, 6, 30),
        date(2024, 7, 31),
        date(2024, 8, 31),
    ]

    mid_month = split_series(_subscription(date=date(2024, 1, 31)), date(2024, 6, 15), {})
    assert mid_month.new_master.day_of_month is None
    weekly = split_series(
        _subscription(date=date(2024, 1, 31)),
        date(2024, 4, 30),
        {"frequency": Frequency.weekly},
    )
    assert weekly.new_master.day_of_month is None


def test_split_rejects_cleared_type():
    master = _subscription()
    with pytest.raises(InputValidationError, match="Invalid type"):
        split_series(master, date(2024, 6, 1), {"type": None})
    assert master.end_date is None
