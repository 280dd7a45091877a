import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from errors import InputValidationError
from models import DebtKind, Frequency, TransactionType

REQUIRED_EDIT_FIELDS = ("type", "amount_cents", "category")


def clean_category(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("Category is required")
    return value


def edited_fields(model: BaseModel, exclude: str) -> dict[str, object]:
    """Explicitly set fields of an edit request; required ones cannot be cleared."""
    fields = model.model_dump(exclude={exclude}, exclude_unset=True)
    cleared = [
        name for name in REQUIRED_EDIT_FIELDS if name in fields and fields[name] is None
    ]
    if cleared:
        raise InputValidationError(f"Field(s) {', '.join(cleared)} cannot be empty")
    return fields


class TransactionIn(BaseModel):
    date: date
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=200)
    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    end_date: Optional[dt.date] = None
    paused: bool = False

    @field_validator("frequency", mode="before")
    @classmethod
    def _normalize_frequency(cls, value):
        if isinstance(value, str) and value.strip().lower() in {"bi-weekly", "byweekly"}:
            return Frequency.biweekly
        return value

    @field_validator("category")
    @classmethod
    def _clean_category(cls, value):
        return clean_category(value)


class OccurrenceEditIn(BaseModel):
    scope: Literal["single", "series"] = "single"
    type: Optional[TransactionType] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=200)
    frequency: Optional[Frequency] = None
    end_date: Optional[date] = None

    @field_validator("category")
    @classmethod
    def _clean_category(cls, value):
        return clean_category(value)

    def changed_fields(self) -> dict[str, object]:
        return edited_fields(self, "scope")


class SplitIn(BaseModel):
    cutover: date
    type: Optional[TransactionType] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=200)
    frequency: Optional[Frequency] = None
    end_date: Optional[date] = None

    @field_validator("category")
    @classmethod
    def _clean_category(cls, value):
        return clean_category(value)

    def changed_fields(self) -> dict[str, object]:
        return edited_fields(self, "cutover")


class DebtAccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    kind: DebtKind = DebtKind.revolving
    limit_cents: int = Field(..., ge=0)
    balance_cents: int = Field(..., ge=0)
    interest_rate: Decimal = Field(default=Decimal("0"), ge=0, le=1000)
    min_payment_cents: int = Field(default=0, ge=0)
    due_date: Optional[date] = None
    autopay: bool = False


class PaymentIn(BaseModel):
    amount_cents: int
    date: Optional[dt.date] = None
    note: str = Field(default="Manual Payment", max_length=120)
    override: bool = False


class UserSettingsIn(BaseModel):
    currency: str = Field(default="USD", min_length=3, max_length=3)
    bill_reminders: bool = True
    loan_reminders: bool = True
    autopay_alerts: bool = False
    loan_notify_days: int = Field(default=3, ge=0, le=28)


class CategorySnapshot(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    notifications_enabled: bool = False


class TransactionSnapshot(BaseModel):
    ref: str
    date: date
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    category: str
    note: Optional[str] = None
    is_recurring: bool = False
    frequency: Optional[Frequency] = None
    series_ref: Optional[str] = None
    end_date: Optional[dt.date] = None
    paused: bool = False
    last_generated: Optional[dt.date] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)


class DebtPaymentSnapshot(BaseModel):
    date: date
    amount_cents: int
    interest_cents: int = 0
    note: Optional[str] = None


class DebtAccountSnapshot(BaseModel):
    name: str
    kind: DebtKind
    limit_cents: int = Field(..., ge=0)
    balance_cents: int = Field(..., ge=0)
    interest_rate: Decimal = Decimal("0")
    min_payment_cents: int = Field(default=0, ge=0)
    due_date: Optional[date] = None
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    autopay: bool = False
    payments: list[DebtPaymentSnapshot] = Field(default_factory=list)


class Snapshot(BaseModel):
    transactions: list[TransactionSnapshot] = Field(default_factory=list)
    debt_accounts: list[DebtAccountSnapshot] = Field(default_factory=list)
    categories: list[CategorySnapshot] = Field(default_factory=list)
    settings: UserSettingsIn = Field(default_factory=UserSettingsIn)


# Shape of the browser app's localStorage export ("finance_data").

LegacyAmount = Union[float, int, str, None]


class LegacyTransaction(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    amount: LegacyAmount = None
    type: Optional[str] = None
    category: Optional[str] = None
    date: Optional[str] = None
    notes: Optional[str] = None
    note: Optional[str] = None
    is_recurring: Union[bool, str, int, None] = Field(default=None, alias="isRecurring")
    frequency: Optional[str] = None
    recurring_id: Optional[str] = Field(default=None, alias="recurringId")
    recurring_group_id: Optional[str] = Field(default=None, alias="recurringGroupId")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    is_paused: Union[bool, str, None] = Field(default=None, alias="isPaused")
    last_generated: Optional[str] = Field(default=None, alias="lastGenerated")


class LegacyPayment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    date: str
    amount: LegacyAmount = None
    note: Optional[str] = None


class LegacyCredit(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    name: str
    type: Optional[str] = None
    limit: LegacyAmount = None
    total_amount: LegacyAmount = Field(default=None, alias="totalAmount")
    current_balance: LegacyAmount = Field(default=None, alias="currentBalance")
    interest_rate: LegacyAmount = Field(default=None, alias="interestRate")
    apr: LegacyAmount = None
    min_payment: LegacyAmount = Field(default=None, alias="minPayment")
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    autopay: Union[bool, str, None] = False
    history: list[LegacyPayment] = Field(default_factory=list)


class LegacyCategory(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    name: str
    type: Optional[str] = None
    notifications_enabled: Optional[bool] = Field(
        default=None, alias="notificationsEnabled"
    )


class LegacyNotificationSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bill_reminders: bool = True
    loan_dates: bool = True
    autopay: bool = False
    loan_notify_days: Union[int, str] = 3


class LegacySettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    currency: str = "USD"
    notifications: Union[LegacyNotificationSettings, bool, None] = None


class LegacySnapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    transactions: list[LegacyTransaction] = Field(default_factory=list)
    credits: list[LegacyCredit] = Field(default_factory=list)
    categories: list[LegacyCategory] = Field(default_factory=list)
    settings: LegacySettings = Field(default_factory=LegacySettings)


class ReminderOut(BaseModel):
    id: int
    kind: str
    title: str
    body: str
    fire_at: datetime
    source_id: Optional[int] = None
