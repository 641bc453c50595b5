import json
from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from catalog import CategoryNotFound
from csv_utils import sanitize_csv_value
from models import TransactionType
from metrics import totals
from periods import Period, filter_by_month
from schemas import BudgetIn, CurrencyIn, GoalIn, RecurringPaymentIn, TransactionIn
from services import (
    BudgetService,
    ConfirmationRequired,
    DashboardService,
    DerivedTransactionLocked,
    DuplicateError,
    GoalService,
    NotFoundError,
    RecurringPaymentService,
    SettingsService,
    TransactionService,
)
from store import FinanceStore

TODAY = date(2025, 3, 10)


def _store() -> FinanceStore:
    return FinanceStore(materialize_history=False, clock=lambda: TODAY)


def _rent_in(**overrides) -> RecurringPaymentIn:
    fields = dict(
        title="Rent",
        type=TransactionType.expense,
        category="Rent",
        amount=Decimal("1000"),
        start_date=date(2025, 1, 5),
    )
    fields.update(overrides)
    return RecurringPaymentIn(**fields)


def test_transaction_input_validation() -> None:
    with pytest.raises(ValidationError):
        TransactionIn(date=date(2025, 3, 1), type="Expense", category="Rent", amount=0)
    with pytest.raises(ValidationError):
        TransactionIn(date=date(2025, 3, 1), type="Loan", category="Rent", amount=5)
    with pytest.raises(ValidationError):
        _rent_in(end_date=date(2024, 12, 31))
    with pytest.raises(ValidationError):
        CurrencyIn(currency="U$D")


def test_create_transaction_resolves_category() -> None:
    store = _store()
    service = TransactionService(store)

    txn = service.create(
        TransactionIn(date=date(2025, 3, 2), type="expense", category="Grocries", amount=42)
    )

    assert txn.category == "Groceries"
    assert txn.type == TransactionType.expense
    assert txn.is_recurrent is False
    assert service.list("2025-03") == [txn]
    assert service.list("2025-02") == []

    with pytest.raises(CategoryNotFound):
        service.create(
            TransactionIn(date=date(2025, 3, 2), type="Income", category="Rent", amount=1)
        )


def test_transaction_delete_requires_confirmation() -> None:
    store = _store()
    service = TransactionService(store)
    txn = service.create(
        TransactionIn(date=date(2025, 3, 2), type="Expense", category="Dining", amount=15)
    )

    with pytest.raises(ConfirmationRequired):
        service.delete(txn.id)
    assert len(store.state.transactions) == 1

    service.delete(txn.id, confirm=True)
    assert store.state.transactions == ()

    with pytest.raises(NotFoundError):
        service.delete(txn.id, confirm=True)


def test_derived_transactions_are_read_only() -> None:
    store = _store()
    RecurringPaymentService(store).create(_rent_in())
    [derived] = store.state.transactions
    service = TransactionService(store)

    with pytest.raises(DerivedTransactionLocked):
        service.delete(derived.id, confirm=True)
    with pytest.raises(DerivedTransactionLocked):
        service.update(
            derived.id,
            TransactionIn(date=date(2025, 3, 5), type="Expense", category="Rent", amount=1),
        )
    assert store.state.transactions == (derived,)


def test_recurring_titles_are_unique() -> None:
    service = RecurringPaymentService(_store())
    service.create(_rent_in())

    with pytest.raises(DuplicateError):
        service.create(_rent_in(title="rent"))

    service.create(_rent_in(title="Phone", category="Utilities", amount=Decimal("30")))
    with pytest.raises(DuplicateError):
        service.update("Phone", _rent_in())


def test_updating_definition_rematerializes_current_month() -> None:
    store = _store()
    service = RecurringPaymentService(store)
    service.create(_rent_in())

    service.update("Rent", _rent_in(amount=Decimal("1200")))

    assert [t.amount for t in store.state.transactions] == [Decimal("1200")]


def test_renaming_definition_keeps_one_instance_per_month() -> None:
    store = FinanceStore(materialize_history=True, clock=lambda: TODAY)
    service = RecurringPaymentService(store)
    service.create(_rent_in())

    service.update("Rent", _rent_in(title="House rent"))

    january = filter_by_month(store.state.transactions, "2025-01")
    assert [(t.recurrent_source_title, t.amount) for t in january] == [
        ("House rent", Decimal("1000"))
    ]
    assert totals(january).expense == Decimal("1000")
    assert len(store.state.transactions) == 3

    service.update("House rent", _rent_in(title="house rent"))

    assert [t.recurrent_source_title for t in store.state.transactions] == [
        "house rent",
        "house rent",
        "house rent",
    ]


def test_toggling_definition_controls_current_month() -> None:
    store = _store()
    service = RecurringPaymentService(store)
    service.create(_rent_in())

    service.set_active("rent", False)
    assert store.state.transactions == ()
    assert service.get("Rent").active is False

    service.set_active("Rent", True)
    assert len(store.state.transactions) == 1

    with pytest.raises(ConfirmationRequired):
        service.delete("Rent")
    service.delete("Rent", confirm=True)
    assert service.list() == []
    assert store.state.transactions == ()


def test_monthly_commitments_summarize_active_definitions() -> None:
    store = _store()
    service = RecurringPaymentService(store)
    service.create(_rent_in())
    service.create(_rent_in(title="Phone", category="Utilities", amount=Decimal("30")))
    service.create(
        _rent_in(title="Salary", type="Income", category="Salary", amount=Decimal("5000"))
    )
    service.create(_rent_in(title="Gym", category="Entertainment", active=False))

    stats = service.monthly_commitments()

    assert stats["period"] == "2025-03"
    assert stats["total_monthly_income"] == Decimal("5000")
    assert stats["total_monthly_expenses"] == Decimal("1030")
    assert stats["net_monthly"] == Decimal("3970")
    assert [row["name"] for row in stats["expense_breakdown"]] == ["Rent", "Utilities"]
    assert stats["counts"] == {"Income": 1, "Expense": 2, "Savings": 0}


def test_goal_achievement_is_only_set_explicitly() -> None:
    store = _store()
    goals = GoalService(store)
    goals.create(GoalIn(title="Emergency Fund", target_amount=1000, deadline=date(2025, 12, 31)))
    goals.create(GoalIn(title="Vacation", target_amount=500, deadline=date(2025, 1, 1)))
    TransactionService(store).create(
        TransactionIn(
            date=date(2025, 3, 2), type="Savings", category="Emergency Fund", amount=1500
        )
    )

    rows = {row["goal"]["title"]: row for row in goals.overview("2025-03", today=TODAY)}

    assert rows["Emergency Fund"]["progress"]["achieved"] is True
    assert rows["Emergency Fund"]["progress"]["percent"] == 100.0
    assert rows["Emergency Fund"]["status"] == "in_progress"
    assert rows["Emergency Fund"]["goal"]["achieved"] is False
    assert rows["Vacation"]["status"] == "overdue"
    assert rows["Vacation"]["progress"] is None

    goals.mark_achieved("emergency fund")
    assert goals.get("Emergency Fund").achieved is True

    goals.update(
        "Emergency Fund",
        GoalIn(title="Emergency Fund", target_amount=2000, deadline=date(2025, 12, 31)),
    )
    assert goals.get("Emergency Fund").achieved is True

    with pytest.raises(DuplicateError):
        goals.create(GoalIn(title="VACATION", target_amount=5, deadline=date(2025, 1, 1)))


def test_budget_upsert_and_delete() -> None:
    store = _store()
    budgets = BudgetService(store)
    budgets.upsert(BudgetIn(type="Expense", category="rent", limit=800))
    budgets.upsert(BudgetIn(type="Expense", category="Rent", limit=900))

    assert [(b.category, b.limit) for b in budgets.list()] == [("Rent", Decimal("900"))]

    RecurringPaymentService(store).create(_rent_in())
    [row] = budgets.progress("2025-03")
    assert row.spent == Decimal("1000")
    assert row.over_budget is True

    with pytest.raises(ConfirmationRequired):
        budgets.delete(TransactionType.expense, "Rent")
    budgets.delete(TransactionType.expense, "RENT", confirm=True)
    assert budgets.list() == []

    with pytest.raises(NotFoundError):
        budgets.delete(TransactionType.expense, "Rent", confirm=True)


def test_dashboard_summary_for_selected_month() -> None:
    store = _store()
    RecurringPaymentService(store).create(_rent_in())
    TransactionService(store).create(
        TransactionIn(date=date(2025, 3, 1), type="Income", category="Salary", amount=5000)
    )
    TransactionService(store).create(
        TransactionIn(date=date(2025, 2, 1), type="Income", category="Salary", amount=4000)
    )
    dashboard = DashboardService(store)

    dashboard.select_period("2025-03")
    summary = dashboard.summary(today=TODAY)

    assert summary["period"] == "2025-03"
    assert summary["totals"]["income"] == Decimal("5000")
    assert summary["totals"]["expense"] == Decimal("1000")
    assert summary["totals"]["balance"] == Decimal("4000")
    assert [row["category"] for row in summary["expense_by_category"]] == ["Rent"]
    assert len(summary["daily_series"]) == 3

    everything = dashboard.summary("", today=TODAY)
    assert everything["period"] is None
    assert everything["totals"]["income"] == Decimal("9000")


def test_report_uses_date_range() -> None:
    store = _store()
    service = TransactionService(store)
    service.create(
        TransactionIn(date=date(2025, 1, 15), type="Expense", category="Dining", amount=20)
    )
    service.create(
        TransactionIn(date=date(2025, 2, 15), type="Expense", category="Dining", amount=30)
    )

    report = DashboardService(store).report(
        Period("custom", date(2025, 2, 1), date(2025, 2, 28))
    )

    assert report["period"]["start"] == "2025-02-01"
    assert report["totals"]["expense"] == Decimal("30")
    assert [p["month"] for p in report["monthly_series"]] == ["2025-02"]


def test_clear_all_and_exports() -> None:
    store = _store()
    settings = SettingsService(store)
    settings.set_currency(CurrencyIn(currency="usd"))
    RecurringPaymentService(store).create(_rent_in())
    TransactionService(store).create(
        TransactionIn(date=date(2025, 3, 2), type="Expense", category="Dining", amount="12.5")
    )

    exported = json.loads(settings.export_json())
    assert set(exported) == {
        "transactions",
        "goals",
        "budgets",
        "recurrentPayments",
        "currency",
        "exportedAt",
    }
    assert exported["currency"] == "USD"
    assert exported["recurrentPayments"][0]["startDate"] == "2025-01-05"

    lines = settings.export_csv().splitlines()
    assert lines[0] == "Date,Type,Category,Amount,Recurring,Source"
    assert lines[1] == "2025-03-02,Expense,Dining,12.50,0,"
    assert lines[2] == "2025-03-05,Expense,Rent,1000.00,1,Rent"

    with pytest.raises(ConfirmationRequired):
        settings.clear_all()
    settings.clear_all(confirm=True)

    assert store.state.transactions == ()
    assert store.state.recurring_payments == ()
    assert settings.currency() == "USD"


def test_sanitize_csv_value_blocks_formulas() -> None:
    assert sanitize_csv_value("=SUM(A1)") == "\t=SUM(A1)"
    assert sanitize_csv_value("https://example.com") == "\thttps://example.com"
    assert sanitize_csv_value("  Rent ") == "Rent"
    assert sanitize_csv_value("") == ""
