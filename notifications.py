import logging
from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Iterable, Mapping, Optional, Protocol, Sequence

from config import get_settings
from dates import add_days, as_local, at_local_time
from errors import InputValidationError, NotificationPermissionDenied
from formatting import format_currency
from models import DebtAccount, Frequency, Transaction, TransactionType
from recurrence import RecurrenceRule, next_occurrences

logger = logging.getLogger(__name__)

DEBT_REMINDER_MONTHS = 6


class ReminderKind(str, Enum):
    bill = "bill"
    debt_due = "debt_due"
    autopay = "autopay"


_KIND_ORDER = {ReminderKind.bill: 0, ReminderKind.debt_due: 1, ReminderKind.autopay: 2}


@dataclass(frozen=True)
class Reminder:
    id: int
    kind: ReminderKind
    title: str
    body: str
    fire_at: datetime
    source_id: Optional[int] = None


@dataclass(frozen=True)
class NotificationPreferences:
    bill_reminders: bool = True
    loan_reminders: bool = True
    autopay_alerts: bool = False
    loan_notify_days: int = 3
    autopay_notify_days: int = 0
    currency: str = "USD"


class NotificationHost(Protocol):
    """The OS-level notification service. Push-only; never read back."""

    def request_permission(self) -> bool: ...

    def cancel_all(self) -> None: ...

    def schedule_all(self, reminders: Sequence[Reminder]) -> None: ...


@dataclass(frozen=True)
class _Draft:
    fire_at: datetime
    kind: ReminderKind
    source_id: Optional[int]
    title: str
    body: str


def _fire_times(
    rule: RecurrenceRule, now: datetime, at: time, lead_days: int, count: int
) -> list[datetime]:
    # One spare occurrence covers today's slot having already passed.
    dates = next_occurrences(rule, add_days(now.date(), lead_days), count + 1)
    fire_times = [at_local_time(add_days(d, -lead_days), at) for d in dates]
    return [fire_at for fire_at in fire_times if fire_at > now][:count]


def _due_rule(account: DebtAccount) -> RecurrenceRule:
    return RecurrenceRule(
        series_id=account.id,
        anchor=account.due_date,
        frequency=Frequency.monthly,
        day_of_month=account.due_day or account.due_date.day,
    )


def _in_days(days: int) -> str:
    if days == 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def _bill_drafts(
    masters: Iterable[Transaction],
    flags: Mapping[str, bool],
    prefs: NotificationPreferences,
    now: datetime,
    at: time,
    count: int,
) -> list[_Draft]:
    drafts: list[_Draft] = []
    for master in masters:
        if not master.is_master or master.paused:
            continue
        if master.type != TransactionType.expense:
            continue
        if not flags.get((master.category or "").lower()):
            continue
        try:
            rule = RecurrenceRule.from_master(master)
        except InputValidationError:
            continue
        amount = format_currency(master.amount_cents, prefs.currency)
        for fire_at in _fire_times(rule, now, at, 0, count):
            drafts.append(
                _Draft(
                    fire_at=fire_at,
                    kind=ReminderKind.bill,
                    source_id=master.id,
                    title=f"Bill Due: {master.category}",
                    body=f"Friendly reminder: Time to pay {master.category} ({amount})",
                )
            )
    return drafts


def _debt_drafts(
    accounts: Iterable[DebtAccount],
    prefs: NotificationPreferences,
    now: datetime,
    at: time,
) -> list[_Draft]:
    drafts: list[_Draft] = []
    for account in accounts:
        if account.due_date is None:
            continue
        rule = _due_rule(account)
        if account.autopay:
            if not prefs.autopay_alerts:
                continue
            lead = prefs.autopay_notify_days
            for fire_at in _fire_times(rule, now, at, lead, DEBT_REMINDER_MONTHS):
                drafts.append(
                    _Draft(
                        fire_at=fire_at,
                        kind=ReminderKind.autopay,
                        source_id=account.id,
                        title="Upcoming Autopay",
                        body=(
                            f"{account.name} will be autopaid {_in_days(lead)}. "
                            "Ensure funds are available."
                        ),
                    )
                )
        elif prefs.loan_reminders:
            lead = prefs.loan_notify_days
            for fire_at in _fire_times(rule, now, at, lead, DEBT_REMINDER_MONTHS):
                drafts.append(
                    _Draft(
                        fire_at=fire_at,
                        kind=ReminderKind.debt_due,
                        source_id=account.id,
                        title="Payment Due",
                        body=f"Payment for {account.name} is due {_in_days(lead)}.",
                    )
                )
    return drafts


def compute_schedule(
    masters: Iterable[Transaction],
    debt_accounts: Iterable[DebtAccount],
    category_flags: Mapping[str, bool],
    preferences: Optional[NotificationPreferences] = None,
    *,
    now: datetime,
    lookahead_occurrences: int = 6,
    notification_time: Optional[time] = None,
) -> list[Reminder]:
    """Every reminder that should be pending after ``now``, ordered by fire time.

    Nothing is materialized; bill dates come from the same stepping as the
    projector. Ids are assigned in order from the configured base so an
    unchanged input yields an identical list.
    """
    settings = get_settings()
    prefs = preferences or NotificationPreferences(
        autopay_notify_days=settings.autopay_notify_days
    )
    at = notification_time or settings.notification_time
    now = as_local(now)
    flags = {str(name).lower(): bool(enabled) for name, enabled in category_flags.items()}

    drafts: list[_Draft] = []
    if prefs.bill_reminders:
        drafts.extend(
            _bill_drafts(masters, flags, prefs, now, at, lookahead_occurrences)
        )
    drafts.extend(_debt_drafts(debt_accounts, prefs, now, at))

    drafts.sort(key=lambda d: (d.fire_at, _KIND_ORDER[d.kind], d.source_id or 0))
    base = settings.notification_id_base
    return [
        Reminder(
            id=base + offset,
            kind=draft.kind,
            title=draft.title,
            body=draft.body,
            fire_at=draft.fire_at,
            source_id=draft.source_id,
        )
        for offset, draft in enumerate(drafts)
    ]


class NotificationScheduler:
    def __init__(self, host: NotificationHost) -> None:
        self.host = host

    def _ensure_permission(self) -> None:
        if not self.host.request_permission():
            raise NotificationPermissionDenied("Notification permission denied")

    def reconcile(self, reminders: Sequence[Reminder]) -> bool:
        """Replace everything pending on the host with ``reminders``.

        Returns ``False`` without touching the host when permission is denied;
        the rest of the app keeps working.
        """
        try:
            self._ensure_permission()
        except NotificationPermissionDenied as exc:
            logger.info(f"notifications_unavailable: reason={exc}")
            return False
        self.host.cancel_all()
        self.host.schedule_all(list(reminders))
        logger.info(f"notifications_reconciled: count={len(reminders)}")
        return True


class LogNotificationHost:
    """Host used when no device service is attached: logs and remembers."""

    def __init__(self, granted: Optional[bool] = None) -> None:
        if granted is None:
            granted = get_settings().notifications_granted
        self.granted = granted
        self.pending: list[Reminder] = []

    def request_permission(self) -> bool:
        return self.granted

    def cancel_all(self) -> None:
        logger.info(f"notifications_cancelled: count={len(self.pending)}")
        self.pending = []

    def schedule_all(self, reminders: Sequence[Reminder]) -> None:
        for reminder in reminders:
            logger.info(
                f"notification_scheduled: id={reminder.id} kind={reminder.kind.value} "
                f"fire_at={reminder.fire_at.isoformat()} title={reminder.title!r}"
            )
        self.pending = list(reminders)
