import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Iterator, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from dates import add_days, add_months, local_today, months_between
from errors import InputValidationError, ProjectionBoundError
from models import Frequency, Transaction, TransactionType

logger = logging.getLogger(__name__)

DAY_STEPS = {Frequency.weekly: 7, Frequency.biweekly: 14}
MONTH_STEPS = {Frequency.monthly: 1, Frequency.yearly: 12}

FREQUENCY_ALIASES = {
    "bi-weekly": Frequency.biweekly,
    "byweekly": Frequency.biweekly,
}


def normalize_frequency(value: object) -> Optional[Frequency]:
    if value is None or value == "":
        return None
    if isinstance(value, Frequency):
        return value
    text = str(value).strip().lower()
    if text in FREQUENCY_ALIASES:
        return FREQUENCY_ALIASES[text]
    try:
        return Frequency(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class RecurrenceRule:
    """Read-only view of a series master's recurrence fields."""

    series_id: Optional[int]
    anchor: date
    frequency: Frequency
    end_date: Optional[date] = None
    paused: bool = False
    day_of_month: Optional[int] = None
    last_generated: Optional[date] = None
    user_id: int = 1
    type: TransactionType = TransactionType.expense
    amount_cents: int = 0
    category: str = "Uncategorized"
    note: Optional[str] = None

    @classmethod
    def from_master(cls, txn: Transaction) -> "RecurrenceRule":
        if not txn.is_master:
            raise InputValidationError(
                f"Transaction {txn.id} is not a recurring series master"
            )
        frequency = normalize_frequency(txn.frequency)
        if frequency is None:
            raise InputValidationError(
                f"Transaction {txn.id} has no recognised frequency: {txn.frequency!r}"
            )
        return cls(
            series_id=txn.id,
            anchor=txn.date,
            frequency=frequency,
            end_date=txn.end_date,
            paused=bool(txn.paused),
            day_of_month=txn.day_of_month,
            last_generated=txn.last_generated,
            user_id=txn.user_id or 1,
            type=txn.type,
            amount_cents=txn.amount_cents,
            category=txn.category,
            note=txn.note,
        )

    def nth(self, index: int) -> date:
        """Date of the ``index``-th occurrence, the anchor being index 0.

        Computed from the anchor rather than the previous occurrence so a
        clamped short month does not pull later occurrences off the anchor day.
        """
        if self.frequency in DAY_STEPS:
            return add_days(self.anchor, DAY_STEPS[self.frequency] * index)
        return add_months(
            self.anchor,
            MONTH_STEPS[self.frequency] * index,
            day=self.day_of_month or self.anchor.day,
        )

    def first_index_on_or_after(self, target: date) -> int:
        if target <= self.anchor:
            return 0
        if self.frequency in DAY_STEPS:
            step = DAY_STEPS[self.frequency]
            return -(-(target - self.anchor).days // step)
        index = months_between(self.anchor, target) // MONTH_STEPS[self.frequency]
        while self.nth(index) < target:
            index += 1
        return index


@dataclass(frozen=True)
class SeriesInstance:
    series_id: int
    date: date


@dataclass(frozen=True)
class Occurrence:
    """A projected occurrence of a series. Never persisted as such."""

    series_id: Optional[int]
    date: date
    type: TransactionType
    amount_cents: int
    category: str
    note: Optional[str]
    frequency: Frequency
    user_id: int = 1

    @classmethod
    def for_rule(cls, rule: RecurrenceRule, on: date) -> "Occurrence":
        return cls(
            series_id=rule.series_id,
            date=on,
            type=rule.type,
            amount_cents=rule.amount_cents,
            category=rule.category,
            note=rule.note,
            frequency=rule.frequency,
            user_id=rule.user_id,
        )

    def to_transaction(self) -> Transaction:
        if self.series_id is None:
            raise InputValidationError("Cannot materialize an occurrence without a series")
        return Transaction(
            user_id=self.user_id,
            date=self.date,
            type=self.type,
            amount_cents=self.amount_cents,
            category=self.category,
            note=self.note,
            is_recurring=False,
            frequency=self.frequency,
            recurring_series_id=self.series_id,
            paused=False,
        )


def clamp_window(
    window_start: date, window_end: date, *, today: Optional[date] = None
) -> tuple[date, date]:
    settings = get_settings()
    today = today or local_today()
    earliest = add_months(today, -settings.lookback_months)
    latest = add_months(today, settings.lookahead_months)
    start = max(window_start, earliest)
    end = min(window_end, latest)
    if (start, end) != (window_start, window_end):
        logger.warning(
            f"projection_window_clamped: requested={window_start}..{window_end} "
            f"used={start}..{end}"
        )
    return start, end


def occurrence_dates(
    rule: RecurrenceRule, window_start: date, window_end: date
) -> Iterator[date]:
    if rule.paused:
        return
    last = window_end if rule.end_date is None else min(window_end, rule.end_date)
    if last < window_start:
        return
    max_steps = get_settings().max_projection_steps
    index = rule.first_index_on_or_after(window_start)
    for _ in range(max_steps):
        current = rule.nth(index)
        if current > last:
            return
        yield current
        index += 1
    raise ProjectionBoundError(
        f"Series {rule.series_id} needs more than {max_steps} steps "
        f"between {window_start} and {last}"
    )


def next_occurrences(
    rule: RecurrenceRule, on_or_after: date, count: int
) -> list[date]:
    """The next ``count`` occurrence dates, honouring end date and pause."""
    if rule.paused or count <= 0:
        return []
    index = rule.first_index_on_or_after(on_or_after)
    found: list[date] = []
    while len(found) < count:
        current = rule.nth(index)
        if rule.end_date is not None and current > rule.end_date:
            break
        found.append(current)
        index += 1
    return found


def project(
    rule: RecurrenceRule,
    window_start: date,
    window_end: date,
    existing: Iterable[Union[date, SeriesInstance]] = (),
    *,
    today: Optional[date] = None,
) -> list[Occurrence]:
    """Occurrences of ``rule`` inside the window not already covered by a real record.

    The window is clamped to the configured lookback/lookahead around
    ``today``. Dates present in ``existing`` are skipped; the result is ordered
    and depends only on the inputs.
    """
    start, end = clamp_window(window_start, window_end, today=today)
    if end < start:
        return []
    covered = {
        item.date if isinstance(item, SeriesInstance) else item for item in existing
    }
    return [
        Occurrence.for_rule(rule, on)
        for on in occurrence_dates(rule, start, end)
        if on not in covered
    ]


class RecurringEngine:
    """Materializes due occurrences of every active series as real transactions."""

    def __init__(self, session: Session, user_id: int = 1) -> None:
        self.session = session
        self.user_id = user_id

    def existing_dates(self, master: Transaction) -> set[date]:
        stmt = select(Transaction.date).where(
            Transaction.recurring_series_id == master.id
        )
        dates = set(self.session.scalars(stmt).all())
        dates.add(master.date)
        return dates

    def catch_up_series(self, master: Transaction, today: Optional[date] = None) -> int:
        today = today or local_today()
        rule = RecurrenceRule.from_master(master)
        if rule.paused:
            return 0
        checkpoint = master.last_generated or master.date
        start = add_days(checkpoint, 1)
        end = today if rule.end_date is None else min(today, rule.end_date)
        if start > end:
            return 0

        pending = project(rule, start, end, self.existing_dates(master), today=today)
        limit = get_settings().max_materialize
        batch = pending[:limit]
        for occurrence in batch:
            self.session.add(occurrence.to_transaction())
        # A truncated batch resumes after its last row on the next run.
        master.last_generated = batch[-1].date if len(pending) > limit else end
        self.session.flush()
        if batch:
            logger.info(
                f"series_materialized: series_id={master.id} count={len(batch)} "
                f"checkpoint={master.last_generated}"
            )
        return len(batch)

    def active_masters(self) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.is_recurring.is_(True),
                Transaction.recurring_series_id.is_(None),
                Transaction.paused.is_(False),
            )
            .order_by(Transaction.date, Transaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def post_due_series(self, today: Optional[date] = None) -> int:
        today = today or local_today()
        count = 0
        for master in self.active_masters():
            try:
                count += self.catch_up_series(master, today)
            except (ProjectionBoundError, InputValidationError) as exc:
                logger.warning(f"series_skipped: series_id={master.id} reason={exc}")
        return count
