from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from csrf import generate_csrf_token
from database import Base, get_db
from main import app
from models import Transaction, TransactionType
from schemas import (
    AccountIn,
    AccountTypeIn,
    AssetGroupIn,
    AssetIn,
    BudgetIn,
    CategoryIn,
    TransactionIn,
)
from services import (
    AccountService,
    AccountTypeService,
    AssetGroupService,
    AssetService,
    BudgetService,
    CategoryService,
    TransactionService,
)

AS_OF = "2025-03-05"


@pytest.fixture
def db_factory():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield factory
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture
def client(db_factory) -> TestClient:
    # Not used as a context manager, so the scheduler startup hook never runs.
    return TestClient(app)


def _seed(factory) -> dict[str, int]:
    """Checking has a gap, Savings is complete, Wallet has no transactions,
    Old card is archived with a gap and Cash is untracked."""
    with factory() as session:
        account_type = AccountTypeService(session).create(AccountTypeIn(name="Bank"))
        accounts = AccountService(session)
        ids = {}
        for name, frequency in [
            ("Checking", 7),
            ("Savings", 7),
            ("Wallet", 7),
            ("Old card", 7),
            ("Cash", None),
        ]:
            account = accounts.create(
                AccountIn(
                    name=name,
                    account_type_id=account_type.id,
                    balance_cents=10_000,
                    expected_transaction_frequency=frequency,
                )
            )
            ids[name] = account.id
        category = CategoryService(session).create(
            CategoryIn(name="Groceries", type=TransactionType.expense)
        )
        ids["category"] = category.id

        txns = TransactionService(session)
        for name, days in [
            ("Checking", [date(2025, 1, 1), date(2025, 3, 1)]),
            ("Savings", [date(2025, 3, 1)]),
            ("Old card", [date(2025, 1, 1), date(2025, 3, 1)]),
        ]:
            for day in days:
                txns.create(
                    TransactionIn(
                        account_id=ids[name],
                        category_id=category.id,
                        date=day,
                        type=TransactionType.expense,
                        amount_cents=2_500,
                    )
                )
        accounts.archive(ids["Old card"])
    return ids


@pytest.mark.parametrize(
    "path",
    [
        "/",
        "/accounts",
        "/categories",
        "/budgets",
        "/assets",
        "/admin",
        "/admin/account-types",
    ],
)
def test_pages_render(client, db_factory, path) -> None:
    _seed(db_factory)
    response = client.get(path)
    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]


def test_account_pages_render(client, db_factory) -> None:
    ids = _seed(db_factory)
    checking = ids["Checking"]

    for path in (
        f"/accounts/{checking}/edit",
        f"/accounts/{checking}/coverage?as_of={AS_OF}",
        f"/accounts/{checking}/transactions",
        f"/accounts/{ids['Wallet']}/coverage",
        f"/accounts/{ids['Cash']}/coverage",
    ):
        response = client.get(path)
        assert response.status_code == 200, path


def test_accounts_index_shows_state_per_account(client, db_factory) -> None:
    ids = _seed(db_factory)

    body = client.get(f"/accounts?as_of={AS_OF}").text

    assert f'href="/accounts/{ids["Wallet"]}/coverage">No data<' in body
    assert f'href="/accounts/{ids["Savings"]}/coverage">Complete<' in body
    assert f'href="/accounts/{ids["Checking"]}/coverage">Gaps<' in body
    assert "Not tracked" in body
    assert "Archived" in body


def test_dashboard_lists_coverage_warnings(client, db_factory) -> None:
    ids = _seed(db_factory)

    body = client.get(f"/?as_of={AS_OF}").text

    assert "Missing transactions" in body
    assert "Checking" in body
    assert "between 2025-01-02 and 2025-02-28" in body
    assert f'href="/accounts/{ids["Old card"]}/coverage"' not in body


def test_gaps_endpoint_lists_only_incomplete_active_accounts(client, db_factory) -> None:
    ids = _seed(db_factory)

    response = client.get(f"/api/coverage/gaps?as_of={AS_OF}")

    assert response.status_code == 200
    payload = response.json()
    assert [row["account_id"] for row in payload] == [ids["Checking"]]
    row = payload[0]
    assert row["account_name"] == "Checking"
    assert row["tracked"] is True
    assert row["complete"] is False
    assert row["gaps"] == [{"start": "2025-01-02", "end": "2025-02-28", "days": 58}]


def test_account_coverage_json_for_untracked_and_empty(client, db_factory) -> None:
    ids = _seed(db_factory)

    untracked = client.get(f"/api/accounts/{ids['Cash']}/coverage").json()
    empty = client.get(f"/api/accounts/{ids['Wallet']}/coverage").json()

    assert untracked["tracked"] is False
    assert untracked["gaps"] == []
    assert empty["tracked"] is False
    assert empty["complete"] is None


def test_invalid_query_parameters_are_bad_requests(client, db_factory) -> None:
    ids = _seed(db_factory)

    assert client.get(f"/accounts/{ids['Checking']}/transactions?page=abc").status_code == 400
    assert client.get("/accounts?as_of=yesterday").status_code == 400
    assert client.get("/budgets?month=2025-13").status_code == 400


def test_page_below_one_falls_back_to_first_page(client, db_factory) -> None:
    ids = _seed(db_factory)
    response = client.get(f"/accounts/{ids['Checking']}/transactions?page=-3")
    assert response.status_code == 200


def test_transaction_with_foreign_category_is_rejected(client, db_factory) -> None:
    ids = _seed(db_factory)
    with db_factory() as session:
        foreign = CategoryService(session, user_id=2).create(
            CategoryIn(name="Hidden", type=TransactionType.expense)
        )
        foreign_id = foreign.id

    response = client.post(
        "/transactions",
        data={
            "csrf_token": generate_csrf_token(),
            "account_id": str(ids["Checking"]),
            "category_id": str(foreign_id),
            "date": "2025-03-02",
            "amount": "12,50",
        },
        follow_redirects=False,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Category not found"
    with db_factory() as session:
        count = session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == foreign_id
            )
        ).scalar_one()
    assert count == 0


def test_transaction_form_creates_and_redirects(client, db_factory) -> None:
    ids = _seed(db_factory)

    response = client.post(
        "/transactions",
        data={
            "csrf_token": generate_csrf_token(),
            "account_id": str(ids["Wallet"]),
            "category_id": str(ids["category"]),
            "date": "2025-03-02",
            "amount": "12,50",
        },
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"] == f"/accounts/{ids['Wallet']}/transactions"


def test_post_without_csrf_token_is_rejected(client, db_factory) -> None:
    _seed(db_factory)
    response = client.post("/categories", data={"name": "Rent", "type": "expense"})
    assert response.status_code == 400


def test_budget_form_and_page(client, db_factory) -> None:
    ids = _seed(db_factory)

    response = client.post(
        "/budgets",
        data={
            "csrf_token": generate_csrf_token(),
            "category_id": str(ids["category"]),
            "period": "monthly",
            "amount": "100",
        },
        follow_redirects=False,
    )
    assert response.status_code == 303

    body = client.get("/budgets?month=2025-03").text
    assert "Groceries" in body
    # three 25.00 expenses on 2025-03-01 against a 100.00 budget
    assert "75,00" in body
    assert "75.0%" in body


def test_asset_pages_and_net_worth(client, db_factory) -> None:
    _seed(db_factory)
    with db_factory() as session:
        group = AssetGroupService(session).create(AssetGroupIn(name="Property"))
        house = AssetService(session).create(
            AssetIn(name="Flat", asset_group_id=group.id, value_cents=20_000_000)
        )
        AssetService(session).create(
            AssetIn(
                name="Mortgage",
                asset_group_id=group.id,
                is_liability=True,
                value_cents=15_000_000,
            )
        )
        house_id = house.id
        group_id = group.id

    body = client.get("/assets").text
    assert "Flat" in body
    assert "Mortgage" in body
    assert "50 000,00" in body

    assert client.get(f"/assets/{house_id}/edit").status_code == 200
    response = client.post(
        f"/asset-groups/{group_id}/delete",
        data={"csrf_token": generate_csrf_token()},
        follow_redirects=False,
    )
    assert response.status_code == 400


def test_dashboard_shows_budget_progress(client, db_factory) -> None:
    ids = _seed(db_factory)
    with db_factory() as session:
        BudgetService(session).upsert(
            BudgetIn(category_id=ids["category"], amount_cents=10_000)
        )

    body = client.get(f"/?as_of={AS_OF}").text

    assert "Budgets for March 2025" in body
    assert "75.0%" in body
