from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional

from dates import add_days, days_in_month
from errors import InputValidationError
from models import Frequency, Transaction, TransactionType
from recurrence import MONTH_STEPS, normalize_frequency

SPLIT_FIELDS = ("type", "amount_cents", "category", "note", "frequency", "end_date")


@dataclass(frozen=True)
class SplitResult:
    closed_master: Transaction
    new_master: Transaction


def carried_day(
    master: Transaction, cutover: date, frequency: Frequency
) -> Optional[int]:
    """Intended day of month for a series started on a clamped month-end date.

    A monthly or yearly series anchored on the 31st lands on Feb 29 or Apr 30
    in short months. A new series cut over on such a date keeps the 31st.
    """
    if frequency not in MONTH_STEPS:
        return None
    if normalize_frequency(master.frequency) not in MONTH_STEPS:
        return None
    day = master.day_of_month or master.date.day
    month_length = days_in_month(cutover.year, cutover.month)
    if day > cutover.day and cutover.day == month_length:
        return day
    return None


def split_series(
    master: Transaction, cutover: date, new_fields: Mapping[str, object]
) -> SplitResult:
    """Close ``master`` the day before ``cutover`` and start a new series there.

    Only the old master's future is truncated; nothing dated before the
    cutover changes. The new master is returned unsaved.
    """
    if not master.is_master:
        raise InputValidationError(
            f"Transaction {master.id} is not a recurring series master"
        )
    if cutover <= master.date:
        raise InputValidationError(
            f"Cutover {cutover} must be after the series start {master.date}"
        )
    if master.end_date is not None and cutover > master.end_date:
        raise InputValidationError(
            f"Cutover {cutover} is after the series end {master.end_date}"
        )
    unknown = sorted(set(new_fields) - set(SPLIT_FIELDS))
    if unknown:
        raise InputValidationError(f"Cannot change field(s) on split: {', '.join(unknown)}")

    values = {name: getattr(master, name) for name in SPLIT_FIELDS}
    values.update(new_fields)
    frequency = normalize_frequency(values["frequency"])
    if frequency is None:
        raise InputValidationError(f"Unknown frequency: {values['frequency']!r}")
    try:
        kind = TransactionType(values["type"])
    except ValueError as exc:
        raise InputValidationError(f"Invalid type: {values['type']!r}") from exc
    if values["amount_cents"] is None or int(values["amount_cents"]) < 0:
        raise InputValidationError(f"Invalid amount: {values['amount_cents']!r}")
    if not values["category"]:
        raise InputValidationError("Category is required")
    end_date = values["end_date"]
    if end_date is not None and end_date < cutover:
        raise InputValidationError(
            f"End date {end_date} is before the cutover {cutover}"
        )

    new_master = Transaction(
        user_id=master.user_id,
        date=cutover,
        type=kind,
        amount_cents=int(values["amount_cents"]),
        category=values["category"],
        note=values["note"],
        is_recurring=True,
        frequency=frequency,
        recurring_series_id=None,
        end_date=end_date,
        paused=False,
        last_generated=None,
        day_of_month=carried_day(master, cutover, frequency),
    )

    master.end_date = add_days(cutover, -1)
    if master.last_generated is not None and master.last_generated > master.end_date:
        master.last_generated = master.end_date
    return SplitResult(closed_master=master, new_master=new_master)
