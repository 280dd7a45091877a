from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from rapidfuzz.distance import Levenshtein
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from database import commit_or_fail
from dates import to_date
from errors import InputValidationError
from models import (
    Category,
    DebtAccount,
    DebtKind,
    DebtPayment,
    Frequency,
    Transaction,
    TransactionType,
    UserSettings,
)
from recurrence import normalize_frequency
from schemas import (
    CategorySnapshot,
    DebtAccountSnapshot,
    DebtPaymentSnapshot,
    LegacyAmount,
    LegacyNotificationSettings,
    LegacySnapshot,
    LegacyTransaction,
    Snapshot,
    TransactionSnapshot,
    UserSettingsIn,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    CategorySnapshot(name="Housing", type=TransactionType.expense),
    CategorySnapshot(name="Food", type=TransactionType.expense),
    CategorySnapshot(name="Transport", type=TransactionType.expense),
    CategorySnapshot(
        name="Utilities", type=TransactionType.expense, notifications_enabled=True
    ),
    CategorySnapshot(name="Entertainment", type=TransactionType.expense),
    CategorySnapshot(name="Salary", type=TransactionType.income),
]


@dataclass
class LegacyImportResult:
    snapshot: Snapshot
    warnings: list[str] = field(default_factory=list)


def _legacy_cents(value: LegacyAmount) -> int:
    if value is None:
        return 0
    text = str(value).replace(",", "").strip()
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return 0
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _legacy_rate(value: LegacyAmount) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value).strip() or "0")
    except InvalidOperation:
        return Decimal("0")


def _truthy(value: Union[bool, str, int, None]) -> bool:
    return value is True or value == 1 or str(value).lower() == "true"


class SnapshotService:
    """Whole-store load/save, plus import of the browser app's JSON export."""

    def __init__(self, session: Session, user_id: int = 1) -> None:
        self.session = session
        self.user_id = user_id

    def load(self) -> Snapshot:
        categories = self.session.scalars(
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.id)
        ).all()
        transactions = self.session.scalars(
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.id)
        ).all()
        accounts = self.session.scalars(
            select(DebtAccount)
            .options(selectinload(DebtAccount.payments))
            .where(DebtAccount.user_id == self.user_id)
            .order_by(DebtAccount.id)
        ).all()
        settings = self.session.scalar(
            select(UserSettings).where(UserSettings.user_id == self.user_id)
        )

        return Snapshot(
            categories=[
                CategorySnapshot(
                    name=c.name,
                    type=c.type,
                    notifications_enabled=c.notifications_enabled,
                )
                for c in categories
            ],
            transactions=[
                TransactionSnapshot(
                    ref=str(t.id),
                    date=t.date,
                    type=t.type,
                    amount_cents=t.amount_cents,
                    category=t.category,
                    note=t.note,
                    is_recurring=t.is_recurring,
                    frequency=t.frequency,
                    series_ref=(
                        str(t.recurring_series_id)
                        if t.recurring_series_id is not None
                        else None
                    ),
                    end_date=t.end_date,
                    paused=t.paused,
                    last_generated=t.last_generated,
                    day_of_month=t.day_of_month,
                )
                for t in transactions
            ],
            debt_accounts=[
                DebtAccountSnapshot(
                    name=a.name,
                    kind=a.kind,
                    limit_cents=a.limit_cents,
                    balance_cents=a.balance_cents,
                    interest_rate=a.interest_rate,
                    min_payment_cents=a.min_payment_cents,
                    due_date=a.due_date,
                    due_day=a.due_day,
                    autopay=a.autopay,
                    payments=[
                        DebtPaymentSnapshot(
                            date=p.date,
                            amount_cents=p.amount_cents,
                            interest_cents=p.interest_cents,
                            note=p.note,
                        )
                        for p in a.payments
                    ],
                )
                for a in accounts
            ],
            settings=(
                UserSettingsIn(
                    currency=settings.currency,
                    bill_reminders=settings.bill_reminders,
                    loan_reminders=settings.loan_reminders,
                    autopay_alerts=settings.autopay_alerts,
                    loan_notify_days=settings.loan_notify_days,
                )
                if settings
                else UserSettingsIn()
            ),
        )

    def _validate(self, snapshot: Snapshot) -> None:
        refs = [t.ref for t in snapshot.transactions]
        if len(refs) != len(set(refs)):
            raise InputValidationError("Duplicate transaction refs in snapshot")
        names = [c.name.lower() for c in snapshot.categories]
        if len(names) != len(set(names)):
            raise InputValidationError("Duplicate category names in snapshot")
        masters = {t.ref for t in snapshot.transactions if t.is_recurring}
        seen: set[tuple[str, object]] = set()
        for t in snapshot.transactions:
            if t.is_recurring and t.frequency is None:
                raise InputValidationError(f"Recurring transaction {t.ref} has no frequency")
            if t.series_ref is None:
                continue
            if t.is_recurring:
                raise InputValidationError(
                    f"Transaction {t.ref} is both a master and an instance"
                )
            if t.series_ref not in masters:
                raise InputValidationError(
                    f"Transaction {t.ref} references unknown series {t.series_ref}"
                )
            key = (t.series_ref, t.date)
            if key in seen:
                raise InputValidationError(
                    f"Series {t.series_ref} has two instances on {t.date}"
                )
            seen.add(key)

    def save(self, snapshot: Snapshot) -> None:
        """Replace everything stored for the user with ``snapshot``."""
        self._validate(snapshot)

        account_ids = select(DebtAccount.id).where(DebtAccount.user_id == self.user_id)
        self.session.execute(
            delete(DebtPayment).where(DebtPayment.account_id.in_(account_ids))
        )
        self.session.execute(delete(DebtAccount).where(DebtAccount.user_id == self.user_id))
        self.session.execute(
            delete(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.recurring_series_id.is_not(None),
            )
        )
        self.session.execute(delete(Transaction).where(Transaction.user_id == self.user_id))
        self.session.execute(delete(Category).where(Category.user_id == self.user_id))
        self.session.execute(
            delete(UserSettings).where(UserSettings.user_id == self.user_id)
        )

        for c in snapshot.categories:
            self.session.add(
                Category(
                    user_id=self.user_id,
                    name=c.name,
                    type=c.type,
                    notifications_enabled=c.notifications_enabled,
                )
            )

        ids: dict[str, Transaction] = {}
        for t in snapshot.transactions:
            if t.series_ref is not None:
                continue
            txn = self._transaction_from(t, series_id=None)
            self.session.add(txn)
            ids[t.ref] = txn
        self.session.flush()
        for t in snapshot.transactions:
            if t.series_ref is None:
                continue
            self.session.add(self._transaction_from(t, series_id=ids[t.series_ref].id))

        for a in snapshot.debt_accounts:
            account = DebtAccount(
                user_id=self.user_id,
                name=a.name,
                kind=a.kind,
                limit_cents=a.limit_cents,
                balance_cents=a.balance_cents,
                interest_rate=a.interest_rate,
                min_payment_cents=a.min_payment_cents,
                due_date=a.due_date,
                due_day=a.due_day or (a.due_date.day if a.due_date else None),
                autopay=a.autopay,
            )
            for p in a.payments:
                account.payments.append(
                    DebtPayment(
                        date=p.date,
                        amount_cents=p.amount_cents,
                        interest_cents=p.interest_cents,
                        note=p.note,
                    )
                )
            self.session.add(account)

        s = snapshot.settings
        self.session.add(
            UserSettings(
                user_id=self.user_id,
                currency=s.currency.upper(),
                bill_reminders=s.bill_reminders,
                loan_reminders=s.loan_reminders,
                autopay_alerts=s.autopay_alerts,
                loan_notify_days=s.loan_notify_days,
            )
        )
        commit_or_fail(self.session)
        logger.info(
            f"snapshot_saved: transactions={len(snapshot.transactions)} "
            f"debt_accounts={len(snapshot.debt_accounts)} "
            f"categories={len(snapshot.categories)}"
        )

    def _transaction_from(
        self, t: TransactionSnapshot, *, series_id: Optional[int]
    ) -> Transaction:
        return Transaction(
            user_id=self.user_id,
            date=t.date,
            type=t.type,
            amount_cents=t.amount_cents,
            category=t.category,
            note=t.note,
            is_recurring=t.is_recurring,
            frequency=t.frequency,
            recurring_series_id=series_id,
            end_date=t.end_date,
            paused=t.paused,
            last_generated=t.last_generated,
            day_of_month=t.day_of_month,
        )

    def import_legacy(self, payload: Union[dict, LegacySnapshot]) -> LegacyImportResult:
        legacy = (
            payload
            if isinstance(payload, LegacySnapshot)
            else LegacySnapshot.model_validate(payload)
        )
        result = convert_legacy(legacy)
        self.save(result.snapshot)
        for warning in result.warnings:
            logger.warning(f"legacy_import: {warning}")
        return result


class _CategoryMatcher:
    def __init__(self, categories: list[CategorySnapshot]) -> None:
        self.categories = categories

    def resolve(
        self, raw: Optional[str], fallback_type: TransactionType, warnings: list[str]
    ) -> str:
        name = (raw or "").strip() or "Uncategorized"
        lowered = name.lower()
        for category in self.categories:
            if category.name.lower() == lowered:
                return category.name

        best_distance: Optional[int] = None
        best: list[CategorySnapshot] = []
        for category in self.categories:
            dist = int(Levenshtein.distance(lowered, category.name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)
        if best_distance is not None and best_distance <= 1 and len(best) == 1:
            warnings.append(f"category {name!r} matched to {best[0].name!r}")
            return best[0].name

        self.categories.append(CategorySnapshot(name=name, type=fallback_type))
        warnings.append(f"category {name!r} created")
        return name


def _legacy_type(value: Optional[str]) -> TransactionType:
    if (value or "").lower() == TransactionType.income.value:
        return TransactionType.income
    return TransactionType.expense


def _legacy_family(t: LegacyTransaction) -> str:
    return t.recurring_id or t.recurring_group_id or t.id


def convert_legacy(legacy: LegacySnapshot) -> LegacyImportResult:
    """Map the browser export onto a Snapshot.

    Series families are keyed by ``recurringId`` (falling back to the record
    id); the record flagged ``isRecurring`` is the master and the rest of the
    family become its instances.
    """
    warnings: list[str] = []

    if legacy.categories:
        categories = []
        names: set[str] = set()
        for c in legacy.categories:
            if c.name.lower() in names:
                warnings.append(f"category {c.name!r} listed twice; kept the first")
                continue
            names.add(c.name.lower())
            categories.append(
                CategorySnapshot(
                    name=c.name,
                    type=_legacy_type(c.type),
                    notifications_enabled=bool(c.notifications_enabled),
                )
            )
    else:
        categories = [c.model_copy() for c in DEFAULT_CATEGORIES]
    matcher = _CategoryMatcher(categories)

    masters: dict[str, LegacyTransaction] = {}
    for t in legacy.transactions:
        if _truthy(t.is_recurring):
            masters.setdefault(_legacy_family(t), t)
            masters.setdefault(t.id, t)

    transactions: list[TransactionSnapshot] = []
    taken: set[tuple[str, object]] = set()
    for t in legacy.transactions:
        if not t.date:
            warnings.append(f"transaction {t.id} skipped: no date")
            continue
        day = to_date(t.date)
        txn_type = _legacy_type(t.type)
        common = dict(
            ref=t.id,
            date=day,
            type=txn_type,
            amount_cents=max(_legacy_cents(t.amount), 0),
            category=matcher.resolve(t.category, txn_type, warnings),
            note=t.notes or t.note,
        )

        if _truthy(t.is_recurring):
            frequency = normalize_frequency(t.frequency)
            if frequency is None:
                warnings.append(
                    f"transaction {t.id} has frequency {t.frequency!r}; using monthly"
                )
                frequency = Frequency.monthly
            transactions.append(
                TransactionSnapshot(
                    **common,
                    is_recurring=True,
                    frequency=frequency,
                    end_date=to_date(t.end_date) if t.end_date else None,
                    paused=_truthy(t.is_paused),
                    last_generated=(
                        to_date(t.last_generated) if t.last_generated else None
                    ),
                )
            )
            taken.add((t.id, day))
            continue

        family = t.recurring_id or t.recurring_group_id
        master = masters.get(family) if family else None
        if family and master is None:
            warnings.append(f"transaction {t.id} lost its series; kept as one-off")
        if master is None:
            transactions.append(TransactionSnapshot(**common))
            continue
        key = (master.id, day)
        if key in taken:
            warnings.append(f"transaction {t.id} duplicates series {master.id} on {day}")
            continue
        taken.add(key)
        transactions.append(
            TransactionSnapshot(
                **common,
                frequency=normalize_frequency(master.frequency),
                series_ref=master.id,
            )
        )

    debt_accounts = []
    for c in legacy.credits:
        due_date = to_date(c.due_date) if c.due_date else None
        debt_accounts.append(
            DebtAccountSnapshot(
                name=c.name,
                kind=DebtKind.installment if c.type == "loan" else DebtKind.revolving,
                limit_cents=max(_legacy_cents(c.limit or c.total_amount), 0),
                balance_cents=max(_legacy_cents(c.current_balance), 0),
                interest_rate=_legacy_rate(
                    c.interest_rate if c.interest_rate is not None else c.apr
                ),
                min_payment_cents=max(_legacy_cents(c.min_payment), 0),
                due_date=due_date,
                due_day=due_date.day if due_date else None,
                autopay=_truthy(c.autopay),
                payments=[
                    DebtPaymentSnapshot(
                        date=to_date(h.date),
                        amount_cents=_legacy_cents(h.amount),
                        note=h.note,
                    )
                    for h in c.history
                ],
            )
        )

    notifications = legacy.settings.notifications
    if isinstance(notifications, bool):
        notifications = LegacyNotificationSettings(
            bill_reminders=notifications, loan_dates=notifications
        )
    elif notifications is None:
        notifications = LegacyNotificationSettings()
    try:
        notify_days = int(notifications.loan_notify_days or 0)
    except ValueError:
        notify_days = 3

    settings = UserSettingsIn(
        currency=(legacy.settings.currency or "USD").upper()[:3],
        bill_reminders=notifications.bill_reminders,
        loan_reminders=notifications.loan_dates,
        autopay_alerts=notifications.autopay,
        loan_notify_days=min(max(notify_days, 0), 28),
    )

    snapshot = Snapshot(
        transactions=transactions,
        debt_accounts=debt_accounts,
        categories=matcher.categories,
        settings=settings,
    )
    return LegacyImportResult(snapshot=snapshot, warnings=warnings)
