from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from catalog import resolve_category
from csv_utils import export_transactions
from metrics import (
    BudgetProgress,
    as_dict,
    budget_progress,
    category_distribution,
    daily_series,
    goal_progress,
    goal_status,
    monthly_series,
    totals,
)
from models import (
    Budget,
    Goal,
    RecurringPayment,
    Transaction,
    TransactionType,
    new_transaction_id,
)
from periods import (
    Period,
    current_period_key,
    filter_by_date_range,
    filter_by_month,
    parse_period_key,
)
from recurrence import covers_period
from schemas import BudgetIn, CurrencyIn, GoalIn, RecurringPaymentIn, TransactionIn
from storage import dump_collection
from store import (
    BUDGET_DELETED,
    BUDGET_SAVED,
    CURRENCY_SET,
    DATA_CLEARED,
    GOAL_DELETED,
    GOAL_SAVED,
    PERIOD_SELECTED,
    RECURRING_DELETED,
    RECURRING_SAVED,
    TRANSACTION_ADDED,
    TRANSACTION_DELETED,
    TRANSACTION_UPDATED,
    FinanceState,
    FinanceStore,
)

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class DuplicateError(ValueError):
    pass


class ConfirmationRequired(ValueError):
    pass


class DerivedTransactionLocked(ValueError):
    pass


def _require_confirmation(confirm: bool, what: str) -> None:
    if not confirm:
        raise ConfirmationRequired(f"Deleting {what} requires confirmation")


def _scope(store: FinanceStore, month: Optional[str]) -> tuple[Optional[str], list[Transaction]]:
    if month is None:
        month = store.state.active_period
    if month:
        parse_period_key(month)
    return month, filter_by_month(store.state.transactions, month)


class TransactionService:
    def __init__(self, store: FinanceStore) -> None:
        self.store = store

    def list(self, month: Optional[str] = None) -> list[Transaction]:
        if month:
            parse_period_key(month)
        return filter_by_month(self.store.state.transactions, month)

    def get(self, transaction_id: str) -> Transaction:
        for txn in self.store.state.transactions:
            if txn.id == transaction_id:
                return txn
        raise NotFoundError("Transaction not found")

    def create(self, data: TransactionIn) -> Transaction:
        category = resolve_category(data.type, data.category)
        txn = Transaction(
            id=new_transaction_id(),
            date=data.date,
            type=data.type,
            category=category,
            amount=data.amount,
        )
        self.store.dispatch(TRANSACTION_ADDED, {"transaction": txn})
        logger.info(f"transaction_created: id={txn.id} type={txn.type.value} date={txn.date}")
        return txn

    def update(self, transaction_id: str, data: TransactionIn) -> Transaction:
        existing = self.get(transaction_id)
        if existing.is_recurrent:
            raise DerivedTransactionLocked(
                "Recurring transactions are managed by their recurring payment"
            )
        category = resolve_category(data.type, data.category)
        txn = Transaction(
            id=existing.id,
            date=data.date,
            type=data.type,
            category=category,
            amount=data.amount,
        )
        self.store.dispatch(TRANSACTION_UPDATED, {"transaction": txn})
        return txn

    def delete(self, transaction_id: str, *, confirm: bool = False) -> None:
        txn = self.get(transaction_id)
        if txn.is_recurrent:
            raise DerivedTransactionLocked(
                f"Deactivate recurring payment '{txn.recurrent_source_title}' instead"
            )
        _require_confirmation(confirm, "a transaction")
        self.store.dispatch(TRANSACTION_DELETED, {"id": txn.id})
        logger.info(f"transaction_deleted: id={txn.id}")


class RecurringPaymentService:
    def __init__(self, store: FinanceStore) -> None:
        self.store = store

    def list(self) -> list[RecurringPayment]:
        return list(self.store.state.recurring_payments)

    def _find(self, title: str) -> Optional[RecurringPayment]:
        wanted = title.strip().lower()
        for definition in self.store.state.recurring_payments:
            if definition.title.lower() == wanted:
                return definition
        return None

    def get(self, title: str) -> RecurringPayment:
        definition = self._find(title)
        if not definition:
            raise NotFoundError("Recurring payment not found")
        return definition

    def _build(self, data: RecurringPaymentIn) -> RecurringPayment:
        return RecurringPayment(
            title=data.title,
            type=data.type,
            category=resolve_category(data.type, data.category),
            amount=data.amount,
            start_date=data.start_date,
            end_date=data.end_date,
            active=data.active,
        )

    def create(self, data: RecurringPaymentIn) -> RecurringPayment:
        if self._find(data.title):
            raise DuplicateError(f"Recurring payment '{data.title}' already exists")
        definition = self._build(data)
        self.store.dispatch(RECURRING_SAVED, {"definition": definition})
        logger.info(f"recurring_created: title={definition.title!r}")
        return definition

    def update(self, title: str, data: RecurringPaymentIn) -> RecurringPayment:
        existing = self.get(title)
        clash = self._find(data.title)
        if clash and clash.title != existing.title:
            raise DuplicateError(f"Recurring payment '{data.title}' already exists")
        definition = self._build(data)
        self.store.dispatch(
            RECURRING_SAVED,
            {"definition": definition, "previous_title": existing.title},
        )
        return definition

    def set_active(self, title: str, active: bool) -> RecurringPayment:
        existing = self.get(title)
        definition = existing.model_copy(update={"active": active})
        self.store.dispatch(
            RECURRING_SAVED,
            {"definition": definition, "previous_title": existing.title},
        )
        logger.info(f"recurring_toggled: title={existing.title!r} active={active}")
        return definition

    def delete(self, title: str, *, confirm: bool = False) -> None:
        existing = self.get(title)
        _require_confirmation(confirm, "a recurring payment")
        self.store.dispatch(RECURRING_DELETED, {"title": existing.title})
        logger.info(f"recurring_deleted: title={existing.title!r}")

    def monthly_commitments(self, today: Optional[date] = None) -> dict[str, object]:
        period = current_period_key(today or self.store.clock())
        by_type: dict[TransactionType, dict[str, Decimal]] = {
            member: {} for member in TransactionType
        }
        counts = {member: 0 for member in TransactionType}
        for definition in self.store.state.recurring_payments:
            if not definition.active or not covers_period(definition, period):
                continue
            bucket = by_type[definition.type]
            bucket[definition.category] = (
                bucket.get(definition.category, Decimal("0")) + definition.amount
            )
            counts[definition.type] += 1

        def build_breakdown(by_category: dict[str, Decimal]) -> list[dict]:
            total = sum(by_category.values(), Decimal("0"))
            if total == 0:
                return []
            items = sorted(by_category.items(), key=lambda x: x[1], reverse=True)
            return [
                {
                    "name": name,
                    "amount": amount,
                    "percent": float(amount / total * 100),
                }
                for name, amount in items
            ]

        income = sum(by_type[TransactionType.income].values(), Decimal("0"))
        expenses = sum(by_type[TransactionType.expense].values(), Decimal("0"))
        savings = sum(by_type[TransactionType.savings].values(), Decimal("0"))
        return {
            "period": period,
            "total_monthly_income": income,
            "total_monthly_expenses": expenses,
            "total_monthly_savings": savings,
            "net_monthly": income - expenses,
            "expense_breakdown": build_breakdown(by_type[TransactionType.expense]),
            "income_breakdown": build_breakdown(by_type[TransactionType.income]),
            "counts": {member.value: counts[member] for member in TransactionType},
        }


class GoalService:
    def __init__(self, store: FinanceStore) -> None:
        self.store = store

    def list(self) -> list[Goal]:
        return list(self.store.state.goals)

    def _find(self, title: str) -> Optional[Goal]:
        wanted = title.strip().lower()
        for goal in self.store.state.goals:
            if goal.title.lower() == wanted:
                return goal
        return None

    def get(self, title: str) -> Goal:
        goal = self._find(title)
        if not goal:
            raise NotFoundError("Goal not found")
        return goal

    def create(self, data: GoalIn) -> Goal:
        if self._find(data.title):
            raise DuplicateError(f"Goal '{data.title}' already exists")
        goal = Goal(
            title=data.title,
            target_amount=data.target_amount,
            deadline=data.deadline,
            achieved=bool(data.achieved),
        )
        self.store.dispatch(GOAL_SAVED, {"goal": goal})
        return goal

    def update(self, title: str, data: GoalIn) -> Goal:
        existing = self.get(title)
        clash = self._find(data.title)
        if clash and clash.title != existing.title:
            raise DuplicateError(f"Goal '{data.title}' already exists")
        goal = Goal(
            title=data.title,
            target_amount=data.target_amount,
            deadline=data.deadline,
            achieved=existing.achieved if data.achieved is None else data.achieved,
        )
        self.store.dispatch(GOAL_SAVED, {"goal": goal, "previous_title": existing.title})
        return goal

    def mark_achieved(self, title: str) -> Goal:
        existing = self.get(title)
        goal = existing.model_copy(update={"achieved": True})
        self.store.dispatch(GOAL_SAVED, {"goal": goal, "previous_title": existing.title})
        logger.info(f"goal_achieved: title={goal.title!r}")
        return goal

    def delete(self, title: str, *, confirm: bool = False) -> None:
        existing = self.get(title)
        _require_confirmation(confirm, "a goal")
        self.store.dispatch(GOAL_DELETED, {"title": existing.title})

    def overview(
        self, month: Optional[str] = None, *, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        today = today or self.store.clock()
        _, scoped = _scope(self.store, month)
        rows: list[dict[str, object]] = []
        for goal in self.store.state.goals:
            progress = goal_progress(goal, scoped)
            rows.append(
                {
                    "goal": goal.model_dump(mode="json", by_alias=True),
                    "status": goal_status(goal, today).value,
                    "progress": as_dict(progress) if progress else None,
                }
            )
        return rows


class BudgetService:
    def __init__(self, store: FinanceStore) -> None:
        self.store = store

    def list(self) -> list[Budget]:
        return list(self.store.state.budgets)

    def upsert(self, data: BudgetIn) -> Budget:
        budget = Budget(
            type=data.type,
            category=resolve_category(data.type, data.category),
            limit=data.limit,
        )
        self.store.dispatch(BUDGET_SAVED, {"budget": budget})
        return budget

    def delete(
        self, transaction_type: TransactionType, category: str, *, confirm: bool = False
    ) -> None:
        key = (TransactionType(transaction_type), category.strip().lower())
        if not any(b.key == key for b in self.store.state.budgets):
            raise NotFoundError("Budget not found")
        _require_confirmation(confirm, "a budget")
        self.store.dispatch(BUDGET_DELETED, {"type": key[0], "category": key[1]})

    def progress(self, month: Optional[str] = None) -> list[BudgetProgress]:
        _, scoped = _scope(self.store, month)
        return budget_progress(self.store.state.budgets, scoped)


class SettingsService:
    def __init__(self, store: FinanceStore) -> None:
        self.store = store

    def currency(self) -> str:
        return self.store.state.currency

    def set_currency(self, data: CurrencyIn) -> str:
        self.store.dispatch(CURRENCY_SET, {"currency": data.currency})
        logger.info(f"currency_set: currency={data.currency}")
        return data.currency

    def clear_all(self, *, confirm: bool = False) -> None:
        _require_confirmation(confirm, "all data")
        self.store.dispatch(DATA_CLEARED)
        logger.info("data_cleared")

    def export_state(self) -> dict[str, object]:
        state = self.store.state
        return {
            "transactions": dump_collection(state.transactions),
            "goals": dump_collection(state.goals),
            "budgets": dump_collection(state.budgets),
            "recurrentPayments": dump_collection(state.recurring_payments),
            "currency": state.currency,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        }

    def export_json(self) -> str:
        return json.dumps(self.export_state(), indent=2)

    def export_csv(self) -> str:
        return export_transactions(self.store.state.transactions)


class DashboardService:
    def __init__(self, store: FinanceStore) -> None:
        self.store = store

    def select_period(self, month: Optional[str]) -> FinanceState:
        return self.store.dispatch(PERIOD_SELECTED, {"period": month or None})

    def summary(
        self, month: Optional[str] = None, *, today: Optional[date] = None
    ) -> dict[str, object]:
        state = self.store.state
        month, scoped = _scope(self.store, month)
        return {
            "period": month or None,
            "currency": state.currency,
            "totals": as_dict(totals(scoped)),
            "daily_series": [as_dict(p) for p in daily_series(state.transactions)],
            "expense_by_category": [
                as_dict(row)
                for row in category_distribution(scoped, TransactionType.expense)
            ],
            "income_by_category": [
                as_dict(row)
                for row in category_distribution(scoped, TransactionType.income)
            ],
            "savings_by_category": [
                as_dict(row)
                for row in category_distribution(scoped, TransactionType.savings)
            ],
            "budgets": [as_dict(row) for row in budget_progress(state.budgets, scoped)],
            "goals": GoalService(self.store).overview(month or "", today=today),
        }

    def report(self, period: Period) -> dict[str, object]:
        scoped = filter_by_date_range(self.store.state.transactions, period.start, period.end)
        return {
            "period": {
                "slug": period.slug,
                "start": period.start.isoformat(),
                "end": period.end.isoformat(),
            },
            "currency": self.store.state.currency,
            "totals": as_dict(totals(scoped)),
            "monthly_series": [as_dict(p) for p in monthly_series(scoped)],
            "expense_by_category": [
                as_dict(row)
                for row in category_distribution(scoped, TransactionType.expense)
            ],
        }
