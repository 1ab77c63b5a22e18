from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from models import Frequency, TransactionType


class TransactionIn(BaseModel):
    description: str = Field(default="", max_length=200)
    amount_cents: int = Field(..., ge=0)
    type: TransactionType
    category: str = Field(default="", max_length=60)
    date: date
    account_id: str
    to_account_id: Optional[str] = None
    user_id: Optional[str] = None
    group_id: Optional[str] = None
    recurring_series_id: Optional[str] = None

    @model_validator(mode="after")
    def _transfer_target(self) -> "TransactionIn":
        if self.type == TransactionType.transfer and not self.to_account_id:
            raise ValueError("Transfers require a destination account")
        if self.type != TransactionType.transfer and self.to_account_id:
            raise ValueError("Only transfers may set a destination account")
        if self.to_account_id and self.to_account_id == self.account_id:
            raise ValueError("Transfer source and destination must differ")
        return self


class BudgetPeriodStartIn(BaseModel):
    user_id: str
    start_date: date


class BudgetPeriodCloseIn(BaseModel):
    user_id: str
    end_date: date
    start_next: bool = True


class RecurringSeriesIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    type: TransactionType
    category: str = Field(default="", max_length=60)
    account_id: str
    frequency: Frequency
    due_day: int = Field(..., ge=1, le=31)
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = True
    user_ids: list[str] = Field(default_factory=list)
    group_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_series(self) -> "RecurringSeriesIn":
        if self.type == TransactionType.transfer:
            raise ValueError("Recurring series must be income or expense")
        if self.frequency in (Frequency.weekly, Frequency.biweekly) and self.due_day > 7:
            raise ValueError("Weekly series need a weekday between 1 and 7")
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date must be on or after start date")
        return self
