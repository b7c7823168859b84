import logging
from datetime import date
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from config import get_settings
from csrf import generate_csrf_token, validate_csrf_token
from csv_utils import export_transactions, parse_amount, parse_frequency
from database import get_db
from models import FREQUENCY_PRESETS, BudgetPeriod, TransactionType
from schemas import (
    AccountIn,
    AccountTypeIn,
    AssetGroupIn,
    AssetIn,
    BudgetIn,
    CategoryIn,
    CoverageReportOut,
    TransactionIn,
)
from scheduler import SchedulerManager
from services import (
    AccountService,
    AccountTypeService,
    AssetGroupService,
    AssetService,
    BudgetService,
    CategoryService,
    CoverageService,
    TransactionService,
    local_today,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent

app = FastAPI(title="Finances")
app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=BASE_DIR / "templates")


def format_currency(cents: int) -> str:
    return f"{cents / 100:,.2f}".replace(",", " ").replace(".", ",")


templates.env.filters["currency"] = format_currency
templates.env.globals["TransactionType"] = TransactionType
templates.env.globals["FREQUENCY_PRESETS"] = FREQUENCY_PRESETS
templates.env.globals["csrf_token"] = generate_csrf_token


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def render(request: Request, template: str, context: dict[str, object]) -> HTMLResponse:
    return templates.TemplateResponse(request, template, context)


async def checked_form(request: Request):
    form = await request.form()
    if not validate_csrf_token(str(form.get("csrf_token", ""))):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return form


def anchor_from_request(request: Request) -> date:
    raw = request.query_params.get("as_of")
    if not raw:
        return local_today()
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid as_of date") from exc


def account_payload_from_form(form) -> AccountIn:
    return AccountIn(
        name=str(form["name"]),
        account_type_id=int(form["account_type_id"]),
        currency=str(form.get("currency") or "EUR"),
        balance_cents=parse_amount(str(form.get("balance") or "0"), allow_negative=True),
        expected_transaction_frequency=parse_frequency(
            str(form.get("expected_transaction_frequency") or "")
        ),
    )


def month_from_request(request: Request, today: date) -> tuple[int, int]:
    raw = request.query_params.get("month")  # YYYY-MM
    if not raw:
        return today.year, today.month
    try:
        year_str, month_str = raw.split("-", 1)
        year, month = int(year_str), int(month_str)
        date(year, month, 1)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid month") from exc
    return year, month


def asset_payload_from_form(form) -> AssetIn:
    valued_raw = str(form.get("valued_on") or "").strip()
    return AssetIn(
        name=str(form["name"]),
        asset_group_id=int(form["asset_group_id"]),
        is_liability=form.get("is_liability") == "on",
        value_cents=parse_amount(str(form.get("value") or "0")),
        notes=str(form.get("notes") or "") or None,
        position=int(form.get("position") or 0),
        valued_on=date.fromisoformat(valued_raw) if valued_raw else None,
    )


@app.get("/", response_class=HTMLResponse)
def dashboard(request: Request, db: Session = Depends(get_db)):
    today = anchor_from_request(request)
    return render(
        request,
        "dashboard.html",
        {
            "today": today,
            "coverage_gaps": CoverageService(db).gaps_by_account(today),
            "budgets": BudgetService(db).progress_for_month(today.year, today.month),
            "net_worth": AssetService(db).net_worth(),
            "recent_transactions": TransactionService(db).recent(5),
        },
    )


@app.get("/accounts", response_class=HTMLResponse)
def accounts_page(request: Request, db: Session = Depends(get_db)):
    today = anchor_from_request(request)
    accounts = AccountService(db).list_all(include_archived=True)
    reports = CoverageService(db).reports_by_account(accounts, today)
    coverage_gaps = {
        account.id: reports[account.id]
        for account in accounts
        if not account.is_archived
        and reports[account.id] is not None
        and not reports[account.id].complete
    }
    return render(
        request,
        "accounts.html",
        {
            "accounts": accounts,
            "account_types": AccountTypeService(db).list_all(),
            "reports": reports,
            "coverage_gaps": coverage_gaps,
            "today": today,
        },
    )


@app.post("/accounts")
async def create_account(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = account_payload_from_form(form)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        account = AccountService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info(f"account_created: id={account.id}")
    return RedirectResponse(url="/accounts", status_code=303)


@app.get("/accounts/{account_id}/edit", response_class=HTMLResponse)
def edit_account_page(account_id: int, request: Request, db: Session = Depends(get_db)):
    try:
        account = AccountService(db).get(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return render(
        request,
        "account_form.html",
        {"account": account, "account_types": AccountTypeService(db).list_all()},
    )


@app.post("/accounts/{account_id}/edit")
async def update_account(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await checked_form(request)
    try:
        data = account_payload_from_form(form)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        AccountService(db).update(account_id, data)
    except ValueError as exc:
        status = 404 if "not found" in str(exc) else 400
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    return RedirectResponse(url="/accounts", status_code=303)


@app.post("/accounts/{account_id}/delete")
async def delete_account(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        AccountService(db).delete(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(url="/accounts", status_code=303)


@app.post("/accounts/{account_id}/archive")
async def archive_account(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        AccountService(db).archive(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(url="/accounts", status_code=303)


@app.post("/accounts/{account_id}/unarchive")
async def unarchive_account(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        AccountService(db).unarchive(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(url="/accounts", status_code=303)


@app.get("/accounts/{account_id}/coverage", response_class=HTMLResponse)
def account_coverage_page(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    today = anchor_from_request(request)
    try:
        account = AccountService(db).get(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    report = CoverageService(db).for_account(account, today)
    return render(
        request,
        "account_coverage.html",
        {"account": account, "report": report, "today": today},
    )


@app.get("/api/accounts/{account_id}/coverage", response_model=CoverageReportOut)
def api_account_coverage(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    today = anchor_from_request(request)
    try:
        account = AccountService(db).get(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    report = CoverageService(db).for_account(account, today)
    return CoverageReportOut.from_report(account.id, account.name, report)


@app.get("/api/coverage/gaps", response_model=list[CoverageReportOut])
def api_coverage_gaps(request: Request, db: Session = Depends(get_db)):
    today = anchor_from_request(request)
    reports = CoverageService(db).gaps_by_account(today)
    return [
        CoverageReportOut.from_report(account_id, report.entity.name, report)
        for account_id, report in reports.items()
    ]


@app.get("/accounts/{account_id}/transactions", response_class=HTMLResponse)
def account_transactions_page(
    account_id: int, request: Request, db: Session = Depends(get_db)
):
    try:
        account = AccountService(db).get(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        page = max(int(request.query_params.get("page") or 1), 1)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid page") from exc
    limit = 25
    items = TransactionService(db).list_for_account(
        account_id, limit=limit + 1, offset=(page - 1) * limit
    )
    has_more = len(items) > limit
    return render(
        request,
        "account_transactions.html",
        {
            "account": account,
            "transactions": items[:limit],
            "categories": CategoryService(db).list_all(),
            "page": page,
            "has_more": has_more,
            "today": local_today(),
        },
    )


@app.get("/accounts/{account_id}/transactions.csv")
def export_account_transactions(account_id: int, db: Session = Depends(get_db)):
    try:
        account = AccountService(db).get(account_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    content = export_transactions(TransactionService(db).all_for_account(account.id))
    filename = f"account-{account.id}-transactions.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/transactions")
async def create_transaction(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        category_id = int(form["category_id"])
        category = CategoryService(db).get(category_id)
        data = TransactionIn(
            account_id=int(form["account_id"]),
            category_id=category_id,
            date=date.fromisoformat(str(form["date"])),
            type=category.type,
            amount_cents=parse_amount(str(form["amount"])),
            description=str(form.get("description") or "") or None,
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return RedirectResponse(
        url=f"/accounts/{txn.account_id}/transactions", status_code=303
    )


@app.post("/transactions/{transaction_id}/delete")
async def delete_transaction(
    transaction_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    service = TransactionService(db)
    try:
        service.soft_delete(transaction_id)
        account_id = service.get(transaction_id).account_id
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(url=f"/accounts/{account_id}/transactions", status_code=303)


@app.get("/categories", response_class=HTMLResponse)
def categories_page(request: Request, db: Session = Depends(get_db)):
    categories = CategoryService(db).list_all(include_archived=True)
    return render(request, "categories.html", {"categories": categories})


@app.post("/categories")
async def create_category(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = CategoryIn(name=str(form["name"]), type=TransactionType(form["type"]))
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        CategoryService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return RedirectResponse(url="/categories", status_code=303)


@app.post("/categories/{category_id}/archive")
async def archive_category(
    category_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        CategoryService(db).archive(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(url="/categories", status_code=303)


@app.post("/categories/{category_id}/restore")
async def restore_category(
    category_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        CategoryService(db).restore(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(url="/categories", status_code=303)


@app.get("/budgets", response_class=HTMLResponse)
def budgets_page(request: Request, db: Session = Depends(get_db)):
    year, month = month_from_request(request, local_today())
    categories = [
        c for c in CategoryService(db).list_all() if c.type == TransactionType.expense
    ]
    return render(
        request,
        "budgets.html",
        {
            "year": year,
            "month": month,
            "month_value": f"{year:04d}-{month:02d}",
            "progress": BudgetService(db).progress_for_month(year, month),
            "categories": categories,
            "periods": list(BudgetPeriod),
        },
    )


@app.post("/budgets")
async def upsert_budget(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        starts_raw = str(form.get("starts_on") or "").strip()
        data = BudgetIn(
            category_id=int(form["category_id"]),
            period=BudgetPeriod(str(form.get("period") or "monthly")),
            amount_cents=parse_amount(str(form.get("amount") or "0")),
            starts_on=date.fromisoformat(starts_raw) if starts_raw else None,
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        budget = BudgetService(db).upsert(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info(f"budget_saved: id={budget.id} category_id={budget.category_id}")
    return RedirectResponse(url="/budgets", status_code=303)


@app.post("/budgets/{budget_id}/delete")
async def delete_budget(budget_id: int, request: Request, db: Session = Depends(get_db)):
    await checked_form(request)
    try:
        BudgetService(db).delete(budget_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(url="/budgets", status_code=303)


@app.get("/assets", response_class=HTMLResponse)
def assets_page(request: Request, db: Session = Depends(get_db)):
    groups_svc = AssetGroupService(db)
    groups = groups_svc.list_all()
    return render(
        request,
        "assets.html",
        {
            "groups": groups,
            "totals": {group.id: groups_svc.totals(group) for group in groups},
            "net_worth": AssetService(db).net_worth(),
        },
    )


@app.post("/assets")
async def create_asset(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = asset_payload_from_form(form)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        AssetService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return RedirectResponse(url="/assets", status_code=303)


@app.get("/assets/{asset_id}/edit", response_class=HTMLResponse)
def edit_asset_page(asset_id: int, request: Request, db: Session = Depends(get_db)):
    try:
        asset = AssetService(db).get(asset_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return render(
        request,
        "asset_form.html",
        {"asset": asset, "groups": AssetGroupService(db).list_all()},
    )


@app.post("/assets/{asset_id}/edit")
async def update_asset(asset_id: int, request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = asset_payload_from_form(form)
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        AssetService(db).update(asset_id, data)
    except ValueError as exc:
        status = 404 if str(exc) == "Asset not found" else 400
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    return RedirectResponse(url="/assets", status_code=303)


@app.post("/assets/{asset_id}/archive")
async def archive_asset(asset_id: int, request: Request, db: Session = Depends(get_db)):
    await checked_form(request)
    try:
        AssetService(db).archive(asset_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(url="/assets", status_code=303)


@app.post("/assets/{asset_id}/unarchive")
async def unarchive_asset(
    asset_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        AssetService(db).unarchive(asset_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(url="/assets", status_code=303)


@app.post("/assets/{asset_id}/delete")
async def delete_asset(asset_id: int, request: Request, db: Session = Depends(get_db)):
    await checked_form(request)
    try:
        AssetService(db).delete(asset_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RedirectResponse(url="/assets", status_code=303)


@app.post("/asset-groups")
async def create_asset_group(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = AssetGroupIn(
            name=str(form["name"]),
            description=str(form.get("description") or "") or None,
            position=int(form.get("position") or 0),
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        AssetGroupService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return RedirectResponse(url="/assets", status_code=303)


@app.post("/asset-groups/{group_id}/edit")
async def update_asset_group(
    group_id: int, request: Request, db: Session = Depends(get_db)
):
    form = await checked_form(request)
    try:
        data = AssetGroupIn(
            name=str(form["name"]),
            description=str(form.get("description") or "") or None,
            position=int(form.get("position") or 0),
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        AssetGroupService(db).update(group_id, data)
    except ValueError as exc:
        status = 404 if "not found" in str(exc) else 400
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    return RedirectResponse(url="/assets", status_code=303)


@app.post("/asset-groups/{group_id}/delete")
async def delete_asset_group(
    group_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        AssetGroupService(db).delete(group_id)
    except ValueError as exc:
        status = 404 if "not found" in str(exc) else 400
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    return RedirectResponse(url="/assets", status_code=303)


@app.get("/admin", response_class=HTMLResponse)
def admin_page(request: Request):
    settings = get_settings()
    return render(
        request,
        "admin.html",
        {
            "environment": settings.environment,
            "timezone": settings.timezone,
            "sweep_hour": settings.coverage_sweep_hour,
            "today": local_today(),
        },
    )


@app.get("/admin/account-types", response_class=HTMLResponse)
def admin_account_types_page(request: Request, db: Session = Depends(get_db)):
    return render(
        request,
        "admin_account_types.html",
        {"account_types": AccountTypeService(db).list_all()},
    )


@app.post("/admin/account-types")
async def create_account_type(request: Request, db: Session = Depends(get_db)):
    form = await checked_form(request)
    try:
        data = AccountTypeIn(
            name=str(form["name"]),
            invert_amounts_on_import=form.get("invert_amounts_on_import") == "on",
        )
    except Exception as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        AccountTypeService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return RedirectResponse(url="/admin/account-types", status_code=303)


@app.post("/admin/account-types/{account_type_id}/delete")
async def delete_account_type(
    account_type_id: int, request: Request, db: Session = Depends(get_db)
):
    await checked_form(request)
    try:
        AccountTypeService(db).delete(account_type_id)
    except ValueError as exc:
        status = 404 if "not found" in str(exc) else 400
        raise HTTPException(status_code=status, detail=str(exc)) from exc
    return RedirectResponse(url="/admin/account-types", status_code=303)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
