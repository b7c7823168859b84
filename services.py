from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from coverage_analysis import CoverageReport, analyze
from models import (
    Account,
    AccountType,
    Asset,
    AssetGroup,
    AssetValuation,
    Budget,
    BudgetPeriod,
    Category,
    Transaction,
    TransactionType,
)
from schemas import (
    AccountIn,
    AccountTypeIn,
    AssetGroupIn,
    AssetIn,
    BudgetIn,
    CategoryIn,
    TransactionIn,
)

logger = logging.getLogger(__name__)


def get_current_user_id() -> int:
    return 1


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


class AccountTypeService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[AccountType]:
        stmt = select(AccountType).order_by(AccountType.name)
        return self.session.scalars(stmt).all()

    def get(self, account_type_id: int) -> AccountType:
        account_type = self.session.get(AccountType, account_type_id)
        if not account_type:
            raise ValueError("Account type not found")
        return account_type

    def _ensure_unique(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(AccountType).where(func.lower(AccountType.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(AccountType.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("Account type with this name already exists")

    def create(self, data: AccountTypeIn) -> AccountType:
        name = data.name.strip()
        if not name:
            raise ValueError("Account type name cannot be empty")
        self._ensure_unique(name)
        account_type = AccountType(
            name=name, invert_amounts_on_import=data.invert_amounts_on_import
        )
        self.session.add(account_type)
        self.session.commit()
        self.session.refresh(account_type)
        return account_type

    def rename(self, account_type_id: int, name: str) -> AccountType:
        account_type = self.get(account_type_id)
        clean = name.strip()
        if not clean:
            raise ValueError("Account type name cannot be empty")
        self._ensure_unique(clean, exclude_id=account_type_id)
        account_type.name = clean
        self.session.commit()
        return account_type

    def delete(self, account_type_id: int) -> None:
        account_type = self.get(account_type_id)
        in_use = self.session.execute(
            select(func.count(Account.id)).where(
                Account.account_type_id == account_type_id
            )
        ).scalar_one()
        if in_use:
            raise ValueError("Account type is still used by accounts")
        self.session.delete(account_type)
        self.session.commit()


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, include_archived: bool = False) -> list[Account]:
        stmt = (
            select(Account)
            .options(joinedload(Account.account_type))
            .where(Account.user_id == self.user_id)
            .order_by(Account.name)
        )
        if not include_archived:
            stmt = stmt.where(Account.archived_at.is_(None))
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise ValueError("Account not found")
        return account

    def _check(self, data: AccountIn, exclude_id: Optional[int] = None) -> None:
        if not self.session.get(AccountType, data.account_type_id):
            raise ValueError("Account type not found")
        stmt = select(Account).where(
            Account.user_id == self.user_id,
            func.lower(Account.name) == data.name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Account.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("Account with this name already exists")

    def create(self, data: AccountIn) -> Account:
        self._check(data)
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            account_type_id=data.account_type_id,
            currency=data.currency,
            balance_cents=data.balance_cents,
            expected_transaction_frequency=data.expected_transaction_frequency,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountIn) -> Account:
        account = self.get(account_id)
        self._check(data, exclude_id=account_id)
        account.name = data.name.strip()
        account.account_type_id = data.account_type_id
        account.currency = data.currency
        account.balance_cents = data.balance_cents
        account.expected_transaction_frequency = data.expected_transaction_frequency
        self.session.commit()
        self.session.refresh(account)
        return account

    def archive(self, account_id: int) -> Account:
        account = self.get(account_id)
        if account.archived_at is None:
            account.archived_at = datetime.utcnow()
            self.session.commit()
        return account

    def unarchive(self, account_id: int) -> Account:
        account = self.get(account_id)
        if account.archived_at is not None:
            account.archived_at = None
            self.session.commit()
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        self.session.delete(account)
        self.session.commit()
        logger.info(f"account_deleted: id={account_id}")


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, include_archived: bool = False) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if not include_archived:
            stmt = stmt.where(Category.archived_at.is_(None))
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == data.type,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(user_id=self.user_id, name=data.name.strip(), type=data.type)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def archive(self, category_id: int) -> None:
        category = self.get(category_id)
        category.archived_at = datetime.utcnow()
        self.session.commit()

    def restore(self, category_id: int) -> None:
        category = self.get(category_id)
        category.archived_at = None
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def create(self, data: TransactionIn) -> Transaction:
        account = self.session.get(Account, data.account_id)
        if not account or account.user_id != self.user_id:
            raise ValueError("Account not found")
        category = CategoryService(self.session, self.user_id).get(data.category_id)
        if category.type != data.type:
            raise ValueError("Category type mismatch")
        txn = Transaction(
            user_id=self.user_id,
            account_id=account.id,
            category_id=category.id,
            date=data.date,
            type=data.type,
            amount_cents=data.amount_cents,
            description=(data.description or "").strip() or None,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise ValueError("Transaction not found")
        return txn

    def list_for_account(
        self, account_id: int, limit: int = 50, offset: int = 0
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
                Transaction.deleted_at.is_(None),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def all_for_account(self, account_id: int) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
                Transaction.deleted_at.is_(None),
            )
            .order_by(Transaction.date.asc(), Transaction.id.asc())
        )
        return self.session.scalars(stmt).all()

    def recent(self, limit: int = 5) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account), joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def activity_dates(self, account_id: int) -> set[date]:
        stmt = (
            select(Transaction.date)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
                Transaction.deleted_at.is_(None),
            )
            .distinct()
        )
        return set(self.session.scalars(stmt).all())

    def soft_delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        if txn.deleted_at is not None:
            return
        txn.deleted_at = datetime.utcnow()
        self.session.commit()

    def restore(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        if txn.deleted_at is None:
            return
        txn.deleted_at = None
        self.session.commit()


class CoverageService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def for_account(
        self, account: Union[Account, int], today: Optional[date] = None
    ) -> Optional[CoverageReport]:
        if isinstance(account, int):
            account = AccountService(self.session, self.user_id).get(account)
        threshold = account.expected_transaction_frequency
        if threshold is None:
            return None
        today = today or local_today()
        dates = TransactionService(self.session, self.user_id).activity_dates(
            account.id
        )
        return analyze(dates, threshold, today, entity=account)

    def reports_by_account(
        self,
        accounts: Iterable[Account],
        today: Optional[date] = None,
    ) -> dict[int, Optional[CoverageReport]]:
        """One entry per account; `None` when untracked or without transactions."""
        today = today or local_today()
        return {account.id: self.for_account(account, today) for account in accounts}

    def gaps_by_account(self, today: Optional[date] = None) -> dict[int, CoverageReport]:
        """Coverage reports for active accounts that currently have gaps."""
        accounts = AccountService(self.session, self.user_id).list_all()
        return {
            account_id: report
            for account_id, report in self.reports_by_account(accounts, today).items()
            if report is not None and not report.complete
        }


def _month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def _month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    @dataclass(frozen=True)
    class Progress:
        budget: Budget
        spent_cents: int

        @property
        def remaining_cents(self) -> int:
            return self.budget.amount_cents - self.spent_cents

        @property
        def percentage_used(self) -> float:
            return round(self.spent_cents / self.budget.amount_cents * 100, 1)

        @property
        def over_budget(self) -> bool:
            return self.spent_cents > self.budget.amount_cents

    @staticmethod
    def _normalize_start(period: BudgetPeriod, starts_on: Optional[date]) -> Optional[date]:
        if starts_on is None:
            return None
        if period == BudgetPeriod.yearly:
            return date(starts_on.year, 1, 1)
        return starts_on.replace(day=1)

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .join(Category, Budget.category_id == Category.id)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Category.name, Budget.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise ValueError("Budget not found")
        return budget

    def upsert(self, data: BudgetIn) -> Budget:
        """A category carries at most one budget; saving again replaces it."""
        category = CategoryService(self.session, self.user_id).get(data.category_id)
        if category.type != TransactionType.expense:
            raise ValueError("Budgets can only be set for expense categories")
        starts_on = self._normalize_start(data.period, data.starts_on)

        existing = self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id, Budget.category_id == category.id
            )
        )
        if existing:
            existing.period = data.period
            existing.amount_cents = data.amount_cents
            existing.starts_on = starts_on
            self.session.commit()
            self.session.refresh(existing)
            return existing

        budget = Budget(
            user_id=self.user_id,
            category_id=category.id,
            period=data.period,
            amount_cents=data.amount_cents,
            starts_on=starts_on,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def _spent_by_category(self, start: date, end: date) -> dict[int, int]:
        stmt = (
            select(
                Transaction.category_id,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("spent"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
                Transaction.type == TransactionType.expense,
                Transaction.date.between(start, end),
            )
            .group_by(Transaction.category_id)
        )
        return {row.category_id: int(row.spent or 0) for row in self.session.execute(stmt)}

    def progress_for_month(self, year: int, month: int) -> list[Progress]:
        """Budgets active in the month with spending for their own period.

        Monthly budgets count the month, yearly budgets the whole calendar year.
        """
        first_day = _month_start(year, month)
        spent_in_month = self._spent_by_category(first_day, _month_end(year, month))
        spent_in_year = self._spent_by_category(date(year, 1, 1), date(year, 12, 31))

        rows: list[BudgetService.Progress] = []
        for budget in self.list_all():
            if budget.starts_on is not None and budget.starts_on > first_day:
                continue
            spent = (
                spent_in_month if budget.period == BudgetPeriod.monthly else spent_in_year
            )
            rows.append(
                BudgetService.Progress(
                    budget=budget, spent_cents=spent.get(budget.category_id, 0)
                )
            )
        return rows


def _asset_totals(assets: Iterable[Asset]) -> dict[str, int]:
    active = [a for a in assets if not a.is_archived]
    assets_cents = sum(a.value_cents for a in active if not a.is_liability)
    liabilities_cents = sum(a.value_cents for a in active if a.is_liability)
    return {
        "assets_cents": assets_cents,
        "liabilities_cents": liabilities_cents,
        "net_cents": assets_cents - liabilities_cents,
    }


class AssetGroupService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[AssetGroup]:
        stmt = (
            select(AssetGroup)
            .options(joinedload(AssetGroup.assets))
            .where(AssetGroup.user_id == self.user_id)
            .order_by(AssetGroup.position, AssetGroup.name)
        )
        return self.session.scalars(stmt).unique().all()

    def get(self, group_id: int) -> AssetGroup:
        group = self.session.get(AssetGroup, group_id)
        if not group or group.user_id != self.user_id:
            raise ValueError("Asset group not found")
        return group

    def _ensure_unique(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(AssetGroup).where(
            AssetGroup.user_id == self.user_id,
            func.lower(AssetGroup.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(AssetGroup.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("Asset group with this name already exists")

    def create(self, data: AssetGroupIn) -> AssetGroup:
        name = data.name.strip()
        if not name:
            raise ValueError("Asset group name cannot be empty")
        self._ensure_unique(name)
        group = AssetGroup(
            user_id=self.user_id,
            name=name,
            description=(data.description or "").strip() or None,
            position=data.position,
        )
        self.session.add(group)
        self.session.commit()
        self.session.refresh(group)
        return group

    def update(self, group_id: int, data: AssetGroupIn) -> AssetGroup:
        group = self.get(group_id)
        name = data.name.strip()
        if not name:
            raise ValueError("Asset group name cannot be empty")
        self._ensure_unique(name, exclude_id=group_id)
        group.name = name
        group.description = (data.description or "").strip() or None
        group.position = data.position
        self.session.commit()
        self.session.refresh(group)
        return group

    def delete(self, group_id: int) -> None:
        group = self.get(group_id)
        in_use = self.session.execute(
            select(func.count(Asset.id)).where(Asset.asset_group_id == group_id)
        ).scalar_one()
        if in_use:
            raise ValueError("Asset group still has assets")
        self.session.delete(group)
        self.session.commit()

    def totals(self, group: Union[AssetGroup, int]) -> dict[str, int]:
        if isinstance(group, int):
            group = self.get(group)
        return _asset_totals(group.assets)


class AssetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, include_archived: bool = False) -> list[Asset]:
        stmt = (
            select(Asset)
            .options(joinedload(Asset.group))
            .where(Asset.user_id == self.user_id)
            .order_by(Asset.position, Asset.name)
        )
        if not include_archived:
            stmt = stmt.where(Asset.archived_at.is_(None))
        return self.session.scalars(stmt).all()

    def get(self, asset_id: int) -> Asset:
        asset = self.session.get(Asset, asset_id)
        if not asset or asset.user_id != self.user_id:
            raise ValueError("Asset not found")
        return asset

    def _apply(self, asset: Asset, data: AssetIn) -> None:
        name = data.name.strip()
        if not name:
            raise ValueError("Asset name cannot be empty")
        group = AssetGroupService(self.session, self.user_id).get(data.asset_group_id)
        asset.name = name
        asset.asset_group_id = group.id
        asset.is_liability = data.is_liability
        asset.value_cents = data.value_cents
        asset.notes = (data.notes or "").strip() or None
        asset.position = data.position

    def _record_valuation(self, asset: Asset, valued_on: Optional[date]) -> None:
        asset.valuations.append(
            AssetValuation(date=valued_on or local_today(), value_cents=asset.value_cents)
        )

    def create(self, data: AssetIn) -> Asset:
        asset = Asset(user_id=self.user_id)
        self._apply(asset, data)
        self._record_valuation(asset, data.valued_on)
        self.session.add(asset)
        self.session.commit()
        self.session.refresh(asset)
        logger.info(f"asset_created: id={asset.id} liability={asset.is_liability}")
        return asset

    def update(self, asset_id: int, data: AssetIn) -> Asset:
        """Only a changed value adds a row to the valuation history."""
        asset = self.get(asset_id)
        previous = asset.value_cents
        self._apply(asset, data)
        if asset.value_cents != previous:
            self._record_valuation(asset, data.valued_on)
        self.session.commit()
        self.session.refresh(asset)
        return asset

    def archive(self, asset_id: int) -> Asset:
        asset = self.get(asset_id)
        if asset.archived_at is None:
            asset.archived_at = datetime.utcnow()
            self.session.commit()
        return asset

    def unarchive(self, asset_id: int) -> Asset:
        asset = self.get(asset_id)
        if asset.archived_at is not None:
            asset.archived_at = None
            self.session.commit()
        return asset

    def delete(self, asset_id: int) -> None:
        asset = self.get(asset_id)
        self.session.delete(asset)
        self.session.commit()

    def net_worth(self) -> dict[str, int]:
        """Cash on active accounts plus assets minus liabilities, in minor units.

        Balances are summed as-is; every account is assumed to share one currency.
        """
        cash = self.session.execute(
            select(func.coalesce(func.sum(Account.balance_cents), 0)).where(
                Account.user_id == self.user_id, Account.archived_at.is_(None)
            )
        ).scalar_one()
        totals = _asset_totals(self.list_all())
        return {
            "cash_cents": int(cash),
            "assets_cents": totals["assets_cents"],
            "liabilities_cents": totals["liabilities_cents"],
            "net_worth_cents": int(cash) + totals["net_cents"],
        }
