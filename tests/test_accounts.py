from datetime import date

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Transaction, TransactionType
from schemas import AccountIn, AccountTypeIn, CategoryIn, TransactionIn
from services import (
    AccountService,
    AccountTypeService,
    CategoryService,
    TransactionService,
)


def test_account_names_are_unique_case_insensitive() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account_type = AccountTypeService(session).create(AccountTypeIn(name="Savings"))
        accounts = AccountService(session)
        accounts.create(AccountIn(name="Rainy day", account_type_id=account_type.id))

        with pytest.raises(ValueError, match="already exists"):
            accounts.create(
                AccountIn(name=" rainy DAY ", account_type_id=account_type.id)
            )


def test_account_requires_existing_type() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(ValueError, match="Account type not found"):
            AccountService(session).create(AccountIn(name="Orphan", account_type_id=99))


def test_negative_frequency_is_rejected_by_schema() -> None:
    with pytest.raises(ValidationError):
        AccountIn(name="Card", account_type_id=1, expected_transaction_frequency=-1)


def test_currency_is_normalized_to_upper_case() -> None:
    data = AccountIn(name="Card", account_type_id=1, currency="usd")
    assert data.currency == "USD"


def test_update_can_opt_account_out_of_tracking() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account_type = AccountTypeService(session).create(AccountTypeIn(name="Checking"))
        accounts = AccountService(session)
        account = accounts.create(
            AccountIn(
                name="Main",
                account_type_id=account_type.id,
                expected_transaction_frequency=7,
            )
        )

        updated = accounts.update(
            account.id,
            AccountIn(
                name="Main",
                account_type_id=account_type.id,
                balance_cents=-2500,
                expected_transaction_frequency=None,
            ),
        )

        assert updated.expected_transaction_frequency is None
        assert updated.balance_cents == -2500


def test_archive_hides_account_until_unarchived() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account_type = AccountTypeService(session).create(AccountTypeIn(name="Checking"))
        accounts = AccountService(session)
        account = accounts.create(
            AccountIn(name="Main", account_type_id=account_type.id)
        )

        accounts.archive(account.id)
        assert accounts.list_all() == []
        assert [a.id for a in accounts.list_all(include_archived=True)] == [account.id]
        assert account.is_archived

        accounts.unarchive(account.id)
        assert [a.id for a in accounts.list_all()] == [account.id]


def test_deleting_account_removes_its_transactions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account_type = AccountTypeService(session).create(AccountTypeIn(name="Checking"))
        account = AccountService(session).create(
            AccountIn(name="Main", account_type_id=account_type.id)
        )
        category = CategoryService(session).create(
            CategoryIn(name="Salary", type=TransactionType.income)
        )
        TransactionService(session).create(
            TransactionIn(
                account_id=account.id,
                category_id=category.id,
                date=date(2025, 1, 31),
                type=TransactionType.income,
                amount_cents=300000,
            )
        )

        AccountService(session).delete(account.id)

        assert session.scalars(select(Transaction)).all() == []
        with pytest.raises(ValueError, match="Account not found"):
            AccountService(session).get(account.id)


def test_account_type_in_use_cannot_be_deleted() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        types = AccountTypeService(session)
        used = types.create(AccountTypeIn(name="Checking"))
        unused = types.create(AccountTypeIn(name="Broker"))
        AccountService(session).create(AccountIn(name="Main", account_type_id=used.id))

        with pytest.raises(ValueError, match="still used"):
            types.delete(used.id)

        types.delete(unused.id)
        assert [t.name for t in types.list_all()] == ["Checking"]


def test_account_type_rename_rejects_duplicates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        types = AccountTypeService(session)
        types.create(AccountTypeIn(name="Checking"))
        card = types.create(AccountTypeIn(name="Card"))

        with pytest.raises(ValueError, match="already exists"):
            types.rename(card.id, "checking")

        assert types.rename(card.id, "Credit card").name == "Credit card"


def test_transaction_category_type_must_match() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account_type = AccountTypeService(session).create(AccountTypeIn(name="Checking"))
        account = AccountService(session).create(
            AccountIn(name="Main", account_type_id=account_type.id)
        )
        category = CategoryService(session).create(
            CategoryIn(name="Rent", type=TransactionType.expense)
        )

        with pytest.raises(ValueError, match="Category type mismatch"):
            TransactionService(session).create(
                TransactionIn(
                    account_id=account.id,
                    category_id=category.id,
                    date=date(2025, 1, 1),
                    type=TransactionType.income,
                    amount_cents=100,
                )
            )


def test_activity_dates_are_distinct_and_skip_deleted() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account_type = AccountTypeService(session).create(AccountTypeIn(name="Checking"))
        account = AccountService(session).create(
            AccountIn(name="Main", account_type_id=account_type.id)
        )
        category = CategoryService(session).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        service = TransactionService(session)
        created = [
            service.create(
                TransactionIn(
                    account_id=account.id,
                    category_id=category.id,
                    date=day,
                    type=TransactionType.expense,
                    amount_cents=100,
                )
            )
            for day in (date(2025, 3, 1), date(2025, 3, 1), date(2025, 3, 4))
        ]

        service.soft_delete(created[2].id)
        assert service.activity_dates(account.id) == {date(2025, 3, 1)}

        service.restore(created[2].id)
        assert service.activity_dates(account.id) == {
            date(2025, 3, 1),
            date(2025, 3, 4),
        }


def test_category_lookup_is_scoped_to_user() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mine = CategoryService(session).create(
            CategoryIn(name="Rent", type=TransactionType.expense)
        )
        theirs = CategoryService(session, user_id=2).create(
            CategoryIn(name="Rent", type=TransactionType.expense)
        )

        assert CategoryService(session).get(mine.id).name == "Rent"
        with pytest.raises(ValueError, match="Category not found"):
            CategoryService(session).get(theirs.id)
        with pytest.raises(ValueError, match="Category not found"):
            CategoryService(session).archive(theirs.id)
