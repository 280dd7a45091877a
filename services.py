from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from config import get_settings
from database import commit_or_fail
from dates import add_days, local_now, local_today
from debts import apply_autopay, record_payment, validate_account
from errors import InputValidationError, NotFoundError, ProjectionBoundError
from forecast import (
    Forecast,
    Summary,
    YearForecast,
    aggregate,
    aggregate_year,
    net_forecast,
    summarize,
)
from models import (
    Category,
    DebtAccount,
    Transaction,
    TransactionType,
    UserSettings,
)
from notifications import (
    NotificationHost,
    NotificationPreferences,
    NotificationScheduler,
    Reminder,
    compute_schedule,
)
from periods import Period
from recurrence import (
    Occurrence,
    RecurrenceRule,
    RecurringEngine,
    next_occurrences,
    occurrence_dates,
    project,
)
from schemas import (
    DebtAccountIn,
    OccurrenceEditIn,
    PaymentIn,
    SplitIn,
    TransactionIn,
    UserSettingsIn,
)
from splits import SplitResult, split_series

logger = logging.getLogger(__name__)

MAX_AUTOPAY_CYCLES = 12


def get_current_user_id() -> int:
    return 1


class CategoryService:
    """Read-only view of the categories owned by the category collaborator."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        return list(self.session.scalars(stmt).all())

    def type_map(self) -> dict[str, TransactionType]:
        return {c.name.lower(): c.type for c in self.list_all()}

    def notification_flags(self) -> dict[str, bool]:
        return {c.name.lower(): c.notifications_enabled for c in self.list_all()}


class SettingsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self) -> UserSettings:
        settings = self.session.scalar(
            select(UserSettings).where(UserSettings.user_id == self.user_id)
        )
        if settings is None:
            settings = UserSettings(
                user_id=self.user_id,
                currency="USD",
                bill_reminders=True,
                loan_reminders=True,
                autopay_alerts=False,
                loan_notify_days=3,
            )
            self.session.add(settings)
            self.session.flush()
        return settings

    def update(self, data: UserSettingsIn) -> UserSettings:
        settings = self.get()
        for field, value in data.model_dump().items():
            setattr(settings, field, value)
        settings.currency = settings.currency.upper()
        commit_or_fail(self.session)
        return settings

    def preferences(self) -> NotificationPreferences:
        settings = self.get()
        return NotificationPreferences(
            bill_reminders=settings.bill_reminders,
            loan_reminders=settings.loan_reminders,
            autopay_alerts=settings.autopay_alerts,
            loan_notify_days=settings.loan_notify_days,
            autopay_notify_days=get_settings().autopay_notify_days,
            currency=settings.currency,
        )


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    @staticmethod
    def _check(data: TransactionIn) -> None:
        if data.is_recurring and data.frequency is None:
            raise InputValidationError("Recurring transactions need a frequency")
        if data.end_date is not None:
            if not data.is_recurring:
                raise InputValidationError("Only recurring transactions can have an end date")
            if data.end_date < data.date:
                raise InputValidationError(
                    f"End date {data.end_date} is before start date {data.date}"
                )

    def create(self, data: TransactionIn) -> Transaction:
        self._check(data)
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            type=data.type,
            amount_cents=data.amount_cents,
            category=data.category,
            note=data.note,
            is_recurring=data.is_recurring,
            frequency=data.frequency if data.is_recurring else None,
            end_date=data.end_date,
            paused=data.paused if data.is_recurring else False,
        )
        self.session.add(txn)
        commit_or_fail(self.session)
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        """Edit a record in place.

        Editing a master changes the whole series going forward from its
        materialization checkpoint; instances already recorded stay as they
        are. A one-off entry becomes a new series master starting on its date.
        Instances cannot be turned into masters.
        """
        txn = self.get(transaction_id)
        self._check(data)
        if txn.recurring_series_id is not None and data.is_recurring:
            raise InputValidationError(
                "A generated occurrence cannot become a recurring series"
            )
        if txn.is_recurring and not data.is_recurring:
            raise InputValidationError(
                "Close the series with an end date instead of clearing its recurrence"
            )
        promoted = data.is_recurring and not txn.is_recurring
        if txn.date != data.date:
            txn.day_of_month = None
        txn.date = data.date
        txn.type = data.type
        txn.amount_cents = data.amount_cents
        txn.category = data.category
        txn.note = data.note
        if data.is_recurring:
            txn.is_recurring = True
            txn.frequency = data.frequency
            txn.end_date = data.end_date
            txn.paused = data.paused
        if promoted:
            txn.last_generated = None
        commit_or_fail(self.session)
        self.session.refresh(txn)
        if promoted:
            logger.info(
                f"series_created: series_id={txn.id} frequency={txn.frequency.value}"
            )
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        if txn.is_recurring:
            # Recorded instances outlive their master as plain entries.
            for child in self.session.scalars(
                select(Transaction).where(Transaction.recurring_series_id == txn.id)
            ):
                child.recurring_series_id = None
                child.frequency = None
        self.session.delete(txn)
        commit_or_fail(self.session)

    def between(self, start: date, end: date) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(start, end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())


class RecurringService:
    """Owns the materialize-versus-ephemeral decision for recurring series."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.engine = RecurringEngine(session, self.user_id)

    def masters(self, include_paused: bool = True) -> list[Transaction]:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id,
            Transaction.is_recurring.is_(True),
            Transaction.recurring_series_id.is_(None),
        )
        if not include_paused:
            stmt = stmt.where(Transaction.paused.is_(False))
        return list(self.session.scalars(stmt.order_by(Transaction.id)).all())

    def get_master(self, series_id: int) -> Transaction:
        txn = self.session.get(Transaction, series_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Series not found")
        if not txn.is_master:
            raise InputValidationError(f"Transaction {series_id} is not a series master")
        return txn

    def catch_up_all(self, today: Optional[date] = None) -> int:
        count = self.engine.post_due_series(today)
        commit_or_fail(self.session)
        return count

    def ghosts_between(
        self, start: date, end: date, today: Optional[date] = None
    ) -> list[Occurrence]:
        ghosts: list[Occurrence] = []
        for master in self.masters(include_paused=False):
            try:
                rule = RecurrenceRule.from_master(master)
                existing = self.engine.existing_dates(master)
                ghosts.extend(project(rule, start, end, existing, today=today))
            except (ProjectionBoundError, InputValidationError) as exc:
                logger.warning(f"series_skipped: series_id={master.id} reason={exc}")
        ghosts.sort(key=lambda o: (o.date, o.series_id or 0))
        return ghosts

    def set_paused(self, series_id: int, paused: bool) -> Transaction:
        master = self.get_master(series_id)
        master.paused = paused
        commit_or_fail(self.session)
        return master

    def split(self, series_id: int, data: SplitIn) -> SplitResult:
        master = self.get_master(series_id)
        result = split_series(master, data.cutover, data.changed_fields())
        removed = self.session.execute(
            delete(Transaction).where(
                Transaction.recurring_series_id == master.id,
                Transaction.date >= data.cutover,
            )
        ).rowcount
        self.session.add(result.new_master)
        commit_or_fail(self.session)
        self.session.refresh(result.new_master)
        logger.info(
            f"series_split: series_id={master.id} cutover={data.cutover} "
            f"new_series_id={result.new_master.id} removed_instances={removed}"
        )
        return result

    def edit_occurrence(
        self, series_id: int, on: date, data: OccurrenceEditIn
    ) -> Transaction:
        master = self.get_master(series_id)
        if on == master.date:
            raise InputValidationError(
                "This is the series start; edit the series itself instead"
            )
        rule = RecurrenceRule.from_master(master)
        if on not in occurrence_dates(rule, on, on):
            raise InputValidationError(f"{on} is not an occurrence of series {series_id}")

        fields = data.changed_fields()
        if data.scope == "series":
            split_in = SplitIn(cutover=on, **fields)
            return self.split(series_id, split_in).new_master

        series_only = sorted({"frequency", "end_date"} & set(fields))
        if series_only:
            raise InputValidationError(
                f"Field(s) {', '.join(series_only)} apply to the whole series"
            )
        instance = self.session.scalar(
            select(Transaction).where(
                Transaction.recurring_series_id == master.id,
                Transaction.date == on,
            )
        )
        if instance is None:
            instance = Occurrence.for_rule(rule, on).to_transaction()
            self.session.add(instance)
        for field, value in fields.items():
            setattr(instance, field, value)
        commit_or_fail(self.session)
        self.session.refresh(instance)
        return instance


class DebtService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _currency(self) -> str:
        return SettingsService(self.session, self.user_id).get().currency

    def list_all(self) -> list[DebtAccount]:
        stmt = (
            select(DebtAccount)
            .options(selectinload(DebtAccount.payments))
            .where(DebtAccount.user_id == self.user_id)
            .order_by(DebtAccount.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, account_id: int) -> DebtAccount:
        account = self.session.get(DebtAccount, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Debt account not found")
        return account

    def create(self, data: DebtAccountIn) -> DebtAccount:
        validate_account(
            data.limit_cents,
            data.balance_cents,
            data.min_payment_cents,
            currency=self._currency(),
        )
        account = DebtAccount(
            user_id=self.user_id,
            name=data.name,
            kind=data.kind,
            limit_cents=data.limit_cents,
            balance_cents=data.balance_cents,
            interest_rate=data.interest_rate,
            min_payment_cents=data.min_payment_cents,
            due_date=data.due_date,
            due_day=data.due_date.day if data.due_date else None,
            autopay=data.autopay,
        )
        self.session.add(account)
        commit_or_fail(self.session)
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: DebtAccountIn) -> DebtAccount:
        account = self.get(account_id)
        validate_account(
            data.limit_cents,
            data.balance_cents,
            data.min_payment_cents,
            currency=self._currency(),
        )
        for field, value in data.model_dump().items():
            setattr(account, field, value)
        account.due_day = data.due_date.day if data.due_date else None
        commit_or_fail(self.session)
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        self.session.delete(account)
        commit_or_fail(self.session)

    def record_payment(
        self, account_id: int, data: PaymentIn, today: Optional[date] = None
    ):
        account = self.get(account_id)
        payment = record_payment(
            account,
            data.amount_cents,
            data.date or today or local_today(),
            note=data.note,
            override=data.override,
            currency=self._currency(),
        )
        commit_or_fail(self.session)
        return payment

    def run_autopay(self, today: Optional[date] = None) -> int:
        """Apply autopay for every due date up to ``today``, each at most once."""
        today = today or local_today()
        applied = 0
        for account in self.list_all():
            for _ in range(MAX_AUTOPAY_CYCLES):
                if account.due_date is None or account.due_date > today:
                    break
                if apply_autopay(account, account.due_date) is None:
                    break
                applied += 1
        commit_or_fail(self.session)
        return applied


@dataclass(frozen=True)
class UpcomingItem:
    kind: str
    title: str
    date: date
    amount_cents: int
    source_id: int


class ForecastService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _masters(self) -> list[Transaction]:
        return RecurringService(self.session, self.user_id).masters()

    def _type_map(self) -> dict[str, TransactionType]:
        return CategoryService(self.session, self.user_id).type_map()

    def month(self, period: Period) -> Forecast:
        return aggregate(self._masters(), period.start, self._type_map())

    def year(self, year: int) -> YearForecast:
        return aggregate_year(self._masters(), year, self._type_map())

    def net(self, forecast: Forecast) -> int:
        return net_forecast(forecast, DebtService(self.session, self.user_id).list_all())

    def summary(self, today: Optional[date] = None) -> Summary:
        today = today or local_today()
        forecast = aggregate(self._masters(), today, self._type_map())
        return summarize(forecast, DebtService(self.session, self.user_id).list_all())

    def upcoming(self, today: Optional[date] = None, days: int = 14) -> list[UpcomingItem]:
        """Bills and debt due dates falling within the next ``days`` days."""
        today = today or local_today()
        horizon = add_days(today, days)
        items: list[UpcomingItem] = []
        for account in DebtService(self.session, self.user_id).list_all():
            if account.due_date and today <= account.due_date <= horizon:
                items.append(
                    UpcomingItem(
                        kind="credit",
                        title=account.name,
                        date=account.due_date,
                        amount_cents=min(account.min_payment_cents, account.balance_cents),
                        source_id=account.id,
                    )
                )
        for master in self._masters():
            if master.type != TransactionType.expense or master.paused:
                continue
            rule = RecurrenceRule.from_master(master)
            for on in next_occurrences(rule, today, 1):
                if on <= horizon:
                    items.append(
                        UpcomingItem(
                            kind="bill",
                            title=master.category,
                            date=on,
                            amount_cents=master.amount_cents,
                            source_id=master.id,
                        )
                    )
        items.sort(key=lambda item: (item.date, item.kind, item.source_id))
        return items


class ReminderService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def compute(self, now: Optional[datetime] = None) -> list[Reminder]:
        masters = RecurringService(self.session, self.user_id).masters(
            include_paused=False
        )
        return compute_schedule(
            masters,
            DebtService(self.session, self.user_id).list_all(),
            CategoryService(self.session, self.user_id).notification_flags(),
            SettingsService(self.session, self.user_id).preferences(),
            now=now or local_now(),
        )

    def reconcile(
        self, host: NotificationHost, now: Optional[datetime] = None
    ) -> bool:
        return NotificationScheduler(host).reconcile(self.compute(now))


def refresh_all(
    session: Session,
    host: NotificationHost,
    *,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> dict[str, Union[int, bool]]:
    """Materialize due occurrences, apply autopay, then rebuild reminders.

    Each step commits before the next one reads, so reminders always see the
    balances and checkpoints just written.
    """
    posted = RecurringService(session).catch_up_all(today)
    autopaid = DebtService(session).run_autopay(today)
    scheduled = ReminderService(session).reconcile(host, now)
    return {"posted": posted, "autopaid": autopaid, "scheduled": scheduled}
