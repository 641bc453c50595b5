import datetime as dt
import uuid
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    model_validator,
)
from pydantic.alias_generators import to_camel
from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "Income"
    expense = "Expense"
    savings = "Savings"

    @classmethod
    def _missing_(cls, value: object) -> Optional["TransactionType"]:
        # Older blobs store lowercase values ("income", "expense").
        if isinstance(value, str):
            wanted = value.strip().lower()
            for member in cls:
                if member.value.lower() == wanted:
                    return member
        return None


class GoalStatus(str, Enum):
    achieved = "achieved"
    overdue = "overdue"
    in_progress = "in_progress"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class StoredBlob(Base, TimestampMixin):
    __tablename__ = "blobs"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


def _amount_to_number(value: Decimal) -> Union[int, float]:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


Amount = Annotated[
    Decimal,
    Field(gt=0),
    PlainSerializer(_amount_to_number, when_used="json"),
]


def new_transaction_id() -> str:
    return uuid.uuid4().hex


class Record(BaseModel):
    """Base for persisted records; field names are camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        str_strip_whitespace=True,
        coerce_numbers_to_str=True,
    )


class Transaction(Record):
    id: str = Field(default_factory=new_transaction_id, min_length=1)
    date: dt.date
    type: TransactionType
    category: str = Field(..., min_length=1)
    amount: Amount
    is_recurrent: bool = False
    recurrent_source_title: Optional[str] = None

    @model_validator(mode="after")
    def _check_source(self) -> "Transaction":
        if self.is_recurrent and not self.recurrent_source_title:
            raise ValueError("Recurring transactions need a source title")
        if not self.is_recurrent and self.recurrent_source_title:
            raise ValueError("Only recurring transactions carry a source title")
        return self

    @property
    def period_key(self) -> str:
        return self.date.isoformat()[:7]


class RecurringPayment(Record):
    title: str = Field(..., min_length=1)
    type: TransactionType
    category: str = Field(..., min_length=1)
    amount: Amount
    start_date: dt.date
    end_date: Optional[dt.date] = None
    active: bool = True

    @model_validator(mode="after")
    def _check_window(self) -> "RecurringPayment":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class Goal(Record):
    title: str = Field(..., min_length=1)
    target_amount: Amount
    deadline: dt.date
    achieved: bool = False


class Budget(Record):
    type: TransactionType
    category: str = Field(..., min_length=1)
    limit: Amount

    @property
    def key(self) -> tuple[TransactionType, str]:
        return self.type, self.category.lower()
