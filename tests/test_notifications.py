from datetime import date, time
from decimal import Decimal

from dates import at_local_time
from formatting import format_currency
from models import DebtAccount, DebtKind, Frequency, Transaction, TransactionType
from notifications import (
    LogNotificationHost,
    NotificationPreferences,
    NotificationScheduler,
    ReminderKind,
    compute_schedule,
)

SIX_AM = time(6, 0)


def _bill(**overrides) -> Transaction:
    values = dict(
        id=1,
        user_id=1,
        date=date(2024, 1, 10),
        type=TransactionType.expense,
        amount_cents=8_550,
        category="Utilities",
        is_recurring=True,
        frequency=Frequency.monthly,
        recurring_series_id=None,
        end_date=None,
        paused=False,
    )
    values.update(overrides)
    return Transaction(**values)


def _card(**overrides) -> DebtAccount:
    values = dict(
        id=5,
        user_id=1,
        name="Visa",
        kind=DebtKind.revolving,
        limit_cents=200_000,
        balance_cents=50_000,
        interest_rate=Decimal("24"),
        min_payment_cents=10_000,
        due_date=date(2024, 3, 15),
        due_day=15,
        autopay=False,
    )
    values.update(overrides)
    return DebtAccount(**values)


def test_bill_reminders_fire_at_six_for_future_occurrences_only():
    now = at_local_time(date(2024, 3, 10), time(7, 0))
    reminders = compute_schedule(
        [_bill()], [], {"Utilities": True}, now=now, lookahead_occurrences=3
    )
    assert [r.fire_at for r in reminders] == [
        at_local_time(date(2024, 4, 10), SIX_AM),
        at_local_time(date(2024, 5, 10), SIX_AM),
        at_local_time(date(2024, 6, 10), SIX_AM),
    ]
    assert [r.id for r in reminders] == [100, 101, 102]
    assert reminders[0].kind == ReminderKind.bill
    assert reminders[0].title == "Bill Due: Utilities"
    assert reminders[0].body == "Friendly reminder: Time to pay Utilities ($85.50)"
    assert reminders[0].source_id == 1


def test_bill_reminder_before_six_includes_today():
    now = at_local_time(date(2024, 3, 10), time(5, 0))
    reminders = compute_schedule(
        [_bill()], [], {"utilities": True}, now=now, lookahead_occurrences=1
    )
    assert [r.fire_at for r in reminders] == [at_local_time(date(2024, 3, 10), SIX_AM)]


def test_bills_need_enabled_category_and_active_expense_series():
    now = at_local_time(date(2024, 3, 1), SIX_AM)
    masters = [
        _bill(id=1, category="Food"),
        _bill(id=2, type=TransactionType.income),
        _bill(id=3, paused=True),
        _bill(id=4, end_date=date(2024, 2, 28)),
    ]
    flags = {"Utilities": True, "Food": False}
    assert compute_schedule(masters, [], flags, now=now) == []

    muted = NotificationPreferences(bill_reminders=False)
    assert compute_schedule([_bill()], [], flags, muted, now=now) == []


def test_debt_due_reminders_fire_days_before_due_date():
    now = at_local_time(date(2024, 3, 1), time(8, 0))
    reminders = compute_schedule([], [_card()], {}, now=now)
    assert len(reminders) == 6
    assert reminders[0].fire_at == at_local_time(date(2024, 3, 12), SIX_AM)
    assert reminders[-1].fire_at == at_local_time(date(2024, 8, 12), SIX_AM)
    assert reminders[0].kind == ReminderKind.debt_due
    assert reminders[0].title == "Payment Due"
    assert reminders[0].body == "Payment for Visa is due in 3 days."


def test_loan_reminders_can_be_disabled():
    now = at_local_time(date(2024, 3, 1), time(8, 0))
    prefs = NotificationPreferences(loan_reminders=False)
    assert compute_schedule([], [_card()], {}, prefs, now=now) == []


def test_autopay_accounts_get_alerts_instead_of_due_reminders():
    now = at_local_time(date(2024, 3, 1), time(8, 0))
    card = _card(autopay=True)
    assert compute_schedule([], [card], {}, now=now) == []

    prefs = NotificationPreferences(autopay_alerts=True)
    reminders = compute_schedule([], [card], {}, prefs, now=now)
    assert len(reminders) == 6
    assert all(r.kind == ReminderKind.autopay for r in reminders)
    assert reminders[0].fire_at == at_local_time(date(2024, 3, 15), SIX_AM)
    assert reminders[0].title == "Upcoming Autopay"
    assert reminders[0].body == "Visa will be autopaid today. Ensure funds are available."


def test_schedule_is_deterministic_and_ordered():
    now = at_local_time(date(2024, 3, 1), time(8, 0))
    bill = _bill(date=date(2024, 1, 12))
    first = compute_schedule([bill], [_card()], {"utilities": True}, now=now)
    second = compute_schedule([bill], [_card()], {"utilities": True}, now=now)
    assert first == second

    assert [r.id for r in first] == list(range(100, 100 + len(first)))
    assert [r.fire_at for r in first] == sorted(r.fire_at for r in first)
    # Same fire time on 2024-03-12: bills come first.
    assert first[0].kind == ReminderKind.bill
    assert first[1].kind == ReminderKind.debt_due
    assert first[0].fire_at == first[1].fire_at


def test_amounts_use_configured_currency():
    now = at_local_time(date(2024, 3, 10), time(7, 0))
    prefs = NotificationPreferences(currency="EUR")
    reminders = compute_schedule(
        [_bill()], [], {"utilities": True}, prefs, now=now, lookahead_occurrences=1
    )
    assert reminders[0].body.endswith("(€85.50)")


class RecordingHost:
    def __init__(self, granted: bool) -> None:
        self.granted = granted
        self.calls = []
        self.scheduled = []

    def request_permission(self) -> bool:
        self.calls.append("request_permission")
        return self.granted

    def cancel_all(self) -> None:
        self.calls.append("cancel_all")
        self.scheduled = []

    def schedule_all(self, reminders) -> None:
        self.calls.append("schedule_all")
        self.scheduled = list(reminders)


def _reminders():
    now = at_local_time(date(2024, 3, 10), time(7, 0))
    return compute_schedule([_bill()], [], {"utilities": True}, now=now)


def test_reconcile_replaces_pending_reminders():
    host = RecordingHost(granted=True)
    assert NotificationScheduler(host).reconcile(_reminders()) is True
    assert host.calls == ["request_permission", "cancel_all", "schedule_all"]
    assert len(host.scheduled) == 6

    assert NotificationScheduler(host).reconcile(_reminders()[:2]) is True
    assert len(host.scheduled) == 2


def test_reconcile_degrades_silently_without_permission():
    host = RecordingHost(granted=False)
    assert NotificationScheduler(host).reconcile(_reminders()) is False
    assert host.calls == ["request_permission"]
    assert host.scheduled == []


def test_log_host_keeps_last_schedule():
    host = LogNotificationHost(granted=True)
    scheduler = NotificationScheduler(host)
    scheduler.reconcile(_reminders())
    scheduler.reconcile(_reminders())
    assert len(host.pending) == 6
    assert LogNotificationHost(granted=False).request_permission() is False


def test_format_currency():
    assert format_currency(120_000) == "$1,200.00"
    assert format_currency(-500) == "-$5.00"
    assert format_currency(120_000, "jpy") == "¥1,200"
    assert format_currency(100, "CHF") == "CHF 1.00"
