import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coverage_analysis import CoverageReport
from models import BudgetPeriod, TransactionType


class AccountTypeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    invert_amounts_on_import: bool = False


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    account_type_id: int
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    balance_cents: int = 0
    expected_transaction_frequency: Optional[int] = Field(default=None, ge=0)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.strip().upper()


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType


class TransactionIn(BaseModel):
    account_id: int
    category_id: int
    date: dt.date
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    description: Optional[str] = Field(default=None, max_length=200)


class BudgetIn(BaseModel):
    category_id: int
    period: BudgetPeriod = BudgetPeriod.monthly
    amount_cents: int = Field(..., gt=0)
    starts_on: Optional[date] = None


class AssetGroupIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    position: int = 0


class AssetIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    asset_group_id: int
    is_liability: bool = False
    value_cents: int = Field(default=0, ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)
    position: int = 0
    # date recorded for a new valuation; defaults to today
    valued_on: Optional[date] = None


class PeriodOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: date
    end: date


class GapOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: date
    end: date
    days: int


class CoverageReportOut(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: int
    account_name: str
    tracked: bool
    threshold: Optional[int] = None
    first_date: Optional[date] = None
    last_date: Optional[date] = None
    complete: Optional[bool] = None
    periods: list[PeriodOut] = Field(default_factory=list)
    gaps: list[GapOut] = Field(default_factory=list)

    @classmethod
    def from_report(
        cls, account_id: int, account_name: str, report: Optional[CoverageReport]
    ) -> "CoverageReportOut":
        if report is None:
            return cls(account_id=account_id, account_name=account_name, tracked=False)
        return cls(
            account_id=account_id,
            account_name=account_name,
            tracked=True,
            threshold=report.threshold,
            first_date=report.first_date,
            last_date=report.last_date,
            complete=report.complete,
            periods=[PeriodOut.model_validate(p) for p in report.periods],
            gaps=[GapOut.model_validate(g) for g in report.gaps],
        )
