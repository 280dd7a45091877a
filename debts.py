import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dates import add_months
from errors import InputValidationError
from formatting import format_currency
from models import DebtAccount, DebtPayment

logger = logging.getLogger(__name__)

AUTOPAY_NOTE = "Autopay"
MANUAL_NOTE = "Manual Payment"
# Older exports tagged automatic payments with a hyphen.
AUTOPAY_NOTES = {AUTOPAY_NOTE, "Auto-Pay"}


def monthly_interest_cents(balance_cents: int, apr: Decimal) -> int:
    value = Decimal(balance_cents) * Decimal(apr) / Decimal(100) / Decimal(12)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def next_due_date(account: DebtAccount) -> date:
    if account.due_date is None:
        raise InputValidationError(f"Account {account.name!r} has no due date")
    return add_months(
        account.due_date, 1, day=account.due_day or account.due_date.day
    )


def has_autopay_record(account: DebtAccount, on: date) -> bool:
    return any(
        payment.date == on and (payment.note or "") in AUTOPAY_NOTES
        for payment in account.payments
    )


def apply_autopay(account: DebtAccount, as_of: date) -> Optional[DebtAccount]:
    """Apply the minimum payment if ``as_of`` is the account's due date.

    Returns the updated account, or ``None`` when nothing was applied. A
    payment tagged "Autopay" on ``as_of`` already in the history makes this a
    no-op, so a second call for the same due date changes nothing.
    """
    if not account.autopay or account.balance_cents <= 0:
        return None
    if account.min_payment_cents <= 0 or account.due_date != as_of:
        return None
    if has_autopay_record(account, as_of):
        return None

    interest = monthly_interest_cents(account.balance_cents, account.interest_rate)
    owed = account.balance_cents + interest
    paid = min(account.min_payment_cents, owed)
    account.balance_cents = max(owed - account.min_payment_cents, 0)
    account.due_date = next_due_date(account)
    account.payments.append(
        DebtPayment(
            date=as_of,
            amount_cents=paid,
            interest_cents=interest,
            note=AUTOPAY_NOTE,
        )
    )
    logger.info(
        f"autopay_applied: account_id={account.id} date={as_of} paid={paid} "
        f"interest={interest} balance={account.balance_cents} "
        f"next_due={account.due_date}"
    )
    return account


def record_payment(
    account: DebtAccount,
    amount_cents: int,
    on: date,
    *,
    note: str = MANUAL_NOTE,
    override: bool = False,
    currency: str = "USD",
) -> DebtPayment:
    if amount_cents <= 0:
        raise InputValidationError(
            f"Payment amount must be positive, got {format_currency(amount_cents, currency)}"
        )
    if amount_cents > account.balance_cents and not override:
        raise InputValidationError(
            f"Payment {format_currency(amount_cents, currency)} exceeds balance "
            f"{format_currency(account.balance_cents, currency)}"
        )
    account.balance_cents = max(account.balance_cents - amount_cents, 0)
    payment = DebtPayment(date=on, amount_cents=amount_cents, note=note)
    account.payments.append(payment)
    return payment


def validate_account(
    limit_cents: int,
    balance_cents: int,
    min_payment_cents: int,
    *,
    currency: str = "USD",
) -> None:
    if balance_cents > limit_cents:
        raise InputValidationError(
            f"Balance {format_currency(balance_cents, currency)} exceeds limit "
            f"{format_currency(limit_cents, currency)}"
        )
    if min_payment_cents > balance_cents:
        raise InputValidationError(
            f"Minimum payment {format_currency(min_payment_cents, currency)} exceeds "
            f"balance {format_currency(balance_cents, currency)}"
        )
