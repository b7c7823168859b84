import datetime as dt
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


# Presets offered next to the expected frequency field (days).
FREQUENCY_PRESETS: dict[str, int] = {
    "daily": 1,
    "weekly": 7,
    "biweekly": 14,
    "monthly": 31,
    "quarterly": 92,
}


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class AccountType(Base, TimestampMixin):
    __tablename__ = "account_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    invert_amounts_on_import: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    accounts: Mapped[list["Account"]] = relationship(
        "Account", back_populates="account_type"
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    account_type_id: Mapped[int] = mapped_column(
        ForeignKey("account_types.id"), nullable=False
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # NULL opts the account out of coverage tracking
    expected_transaction_frequency: Mapped[Optional[int]] = mapped_column(Integer)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    account_type: Mapped["AccountType"] = relationship(
        "AccountType", back_populates="accounts"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_account_user_name"),
        CheckConstraint(
            "expected_transaction_frequency IS NULL OR expected_transaction_frequency >= 0",
            name="ck_account_frequency_non_negative",
        ),
    )

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")
    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_account_date", "account_id", "date"),
        Index("ix_transactions_user_date", "user_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class BudgetPeriod(str, Enum):
    monthly = "monthly"
    yearly = "yearly"


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    period: Mapped[BudgetPeriod] = mapped_column(
        SAEnum(BudgetPeriod), nullable=False, default=BudgetPeriod.monthly
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    # Normalized to the first day of the month (monthly) or year (yearly)
    starts_on: Mapped[Optional[dt.date]] = mapped_column(Date)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint("user_id", "category_id", name="uq_budget_user_category"),
        CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
    )

    @property
    def period_label(self) -> str:
        return "per month" if self.period == BudgetPeriod.monthly else "per year"


class AssetGroup(Base, TimestampMixin):
    __tablename__ = "asset_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    assets: Mapped[list["Asset"]] = relationship("Asset", back_populates="group")

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_asset_group_user_name"),
    )


class Asset(Base, TimestampMixin):
    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    asset_group_id: Mapped[int] = mapped_column(
        ForeignKey("asset_groups.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_liability: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    value_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    group: Mapped["AssetGroup"] = relationship("AssetGroup", back_populates="assets")
    valuations: Mapped[list["AssetValuation"]] = relationship(
        "AssetValuation",
        back_populates="asset",
        cascade="all, delete-orphan",
        order_by=lambda: [AssetValuation.date.desc(), AssetValuation.id.desc()],
    )

    __table_args__ = (
        Index("ix_assets_group", "asset_group_id"),
        CheckConstraint("value_cents >= 0", name="ck_asset_value_non_negative"),
    )

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @property
    def signed_value_cents(self) -> int:
        return -self.value_cents if self.is_liability else self.value_cents


class AssetValuation(Base, TimestampMixin):
    __tablename__ = "asset_valuations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    asset_id: Mapped[int] = mapped_column(ForeignKey("assets.id"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    value_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    asset: Mapped["Asset"] = relationship("Asset", back_populates="valuations")

    __table_args__ = (Index("ix_asset_valuations_asset_date", "asset_id", "date"),)
