import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from models import TransactionType


class InputModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="forbid",
    )


class TransactionIn(InputModel):
    date: dt.date
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)


class RecurringPaymentIn(InputModel):
    title: str = Field(..., min_length=1, max_length=120)
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0)
    start_date: dt.date
    end_date: Optional[dt.date] = None
    active: bool = True

    @model_validator(mode="after")
    def _check_window(self) -> "RecurringPaymentIn":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self


class GoalIn(InputModel):
    title: str = Field(..., min_length=1, max_length=120)
    target_amount: Decimal = Field(..., gt=0)
    deadline: dt.date
    achieved: Optional[bool] = None


class BudgetIn(InputModel):
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    limit: Decimal = Field(..., gt=0)


class CurrencyIn(InputModel):
    currency: str = Field(..., min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def _alpha_code(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("Currency must be a three-letter code")
        return value.upper()
