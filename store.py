import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Callable, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from models import Budget, Goal, RecurringPayment, Transaction
from periods import current_period_key, local_today, parse_period_key
from recurrence import history_start, reconcile, reconcile_range, retitle_instances
from storage import (
    BUDGETS_KEY,
    CURRENCY_KEY,
    GOALS_KEY,
    RECURRING_KEY,
    TRANSACTIONS_KEY,
    BlobStore,
    load_collection,
    load_currency,
    save_collection,
    save_currency,
)

logger = logging.getLogger(__name__)

TRANSACTION_ADDED = "TRANSACTION_ADDED"
TRANSACTION_UPDATED = "TRANSACTION_UPDATED"
TRANSACTION_DELETED = "TRANSACTION_DELETED"
RECURRING_SAVED = "RECURRING_SAVED"
RECURRING_DELETED = "RECURRING_DELETED"
GOAL_SAVED = "GOAL_SAVED"
GOAL_DELETED = "GOAL_DELETED"
BUDGET_SAVED = "BUDGET_SAVED"
BUDGET_DELETED = "BUDGET_DELETED"
PERIOD_SELECTED = "PERIOD_SELECTED"
CURRENCY_SET = "CURRENCY_SET"
DATA_CLEARED = "DATA_CLEARED"
TRANSACTIONS_RECONCILED = "TRANSACTIONS_RECONCILED"

RECONCILE_TRIGGERS = frozenset({RECURRING_SAVED, RECURRING_DELETED, PERIOD_SELECTED})


class Action(NamedTuple):
    name: str
    payload: dict


@dataclass(frozen=True)
class FinanceState:
    transactions: tuple[Transaction, ...] = ()
    goals: tuple[Goal, ...] = ()
    budgets: tuple[Budget, ...] = ()
    recurring_payments: tuple[RecurringPayment, ...] = ()
    currency: str = "LKR"
    active_period: Optional[str] = None


def _by_date(transactions) -> tuple[Transaction, ...]:
    return tuple(sorted(transactions, key=lambda txn: txn.date))


def _transaction_added(state: FinanceState, payload: dict) -> FinanceState:
    return replace(
        state, transactions=_by_date(state.transactions + (payload["transaction"],))
    )


def _transaction_updated(state: FinanceState, payload: dict) -> FinanceState:
    updated: Transaction = payload["transaction"]
    return replace(
        state,
        transactions=_by_date(
            updated if t.id == updated.id else t for t in state.transactions
        ),
    )


def _transaction_deleted(state: FinanceState, payload: dict) -> FinanceState:
    return replace(
        state,
        transactions=tuple(t for t in state.transactions if t.id != payload["id"]),
    )


def _upsert_titled(items: tuple, item, previous_title: Optional[str]) -> tuple:
    match = previous_title or item.title
    if any(existing.title == match for existing in items):
        return tuple(item if existing.title == match else existing for existing in items)
    return items + (item,)


def _recurring_saved(state: FinanceState, payload: dict) -> FinanceState:
    definition: RecurringPayment = payload["definition"]
    previous_title = payload.get("previous_title")
    transactions = state.transactions
    if previous_title and previous_title != definition.title:
        transactions = tuple(
            retitle_instances(transactions, previous_title, definition.title)
        )
    return replace(
        state,
        transactions=transactions,
        recurring_payments=_upsert_titled(
            state.recurring_payments, definition, previous_title
        ),
    )


def _recurring_deleted(state: FinanceState, payload: dict) -> FinanceState:
    return replace(
        state,
        recurring_payments=tuple(
            d for d in state.recurring_payments if d.title != payload["title"]
        ),
    )


def _goal_saved(state: FinanceState, payload: dict) -> FinanceState:
    return replace(
        state,
        goals=_upsert_titled(state.goals, payload["goal"], payload.get("previous_title")),
    )


def _goal_deleted(state: FinanceState, payload: dict) -> FinanceState:
    return replace(
        state, goals=tuple(g for g in state.goals if g.title != payload["title"])
    )


def _budget_saved(state: FinanceState, payload: dict) -> FinanceState:
    budget: Budget = payload["budget"]
    if any(b.key == budget.key for b in state.budgets):
        budgets = tuple(budget if b.key == budget.key else b for b in state.budgets)
    else:
        budgets = state.budgets + (budget,)
    return replace(state, budgets=budgets)


def _budget_deleted(state: FinanceState, payload: dict) -> FinanceState:
    key = (payload["type"], payload["category"].lower())
    return replace(state, budgets=tuple(b for b in state.budgets if b.key != key))


def _period_selected(state: FinanceState, payload: dict) -> FinanceState:
    period = payload.get("period") or None
    if period is not None:
        parse_period_key(period)
    return replace(state, active_period=period)


def _currency_set(state: FinanceState, payload: dict) -> FinanceState:
    return replace(state, currency=payload["currency"])


def _data_cleared(state: FinanceState, payload: dict) -> FinanceState:
    return replace(
        state, transactions=(), goals=(), budgets=(), recurring_payments=()
    )


def _transactions_reconciled(state: FinanceState, payload: dict) -> FinanceState:
    return replace(state, transactions=tuple(payload["transactions"]))


_REDUCERS: dict[str, Callable[[FinanceState, dict], FinanceState]] = {
    TRANSACTION_ADDED: _transaction_added,
    TRANSACTION_UPDATED: _transaction_updated,
    TRANSACTION_DELETED: _transaction_deleted,
    RECURRING_SAVED: _recurring_saved,
    RECURRING_DELETED: _recurring_deleted,
    GOAL_SAVED: _goal_saved,
    GOAL_DELETED: _goal_deleted,
    BUDGET_SAVED: _budget_saved,
    BUDGET_DELETED: _budget_deleted,
    PERIOD_SELECTED: _period_selected,
    CURRENCY_SET: _currency_set,
    DATA_CLEARED: _data_cleared,
    TRANSACTIONS_RECONCILED: _transactions_reconciled,
}


def reduce(state: FinanceState, action: Action) -> FinanceState:
    handler = _REDUCERS.get(action.name)
    if handler is None:
        raise ValueError(f"Unknown action: {action.name}")
    return handler(state, action.payload)


Subscriber = Callable[[FinanceState, FinanceState, Action], None]


class FinanceStore:
    """Single source of truth for the finance collections.

    Every change goes through ``dispatch``. When the recurring definitions or
    the viewed period change, derived transactions are reconciled inside the
    same transition, so subscribers never observe a half-merged state.
    """

    def __init__(
        self,
        state: Optional[FinanceState] = None,
        *,
        materialize_history: Optional[bool] = None,
        clock: Callable[[], date] = local_today,
    ) -> None:
        self._state = state or FinanceState()
        if materialize_history is None:
            materialize_history = get_settings().materialize_history
        self.materialize_history = materialize_history
        self.clock = clock
        self._subscribers: list[Subscriber] = []

    @classmethod
    def load(cls, blobs: BlobStore, **kwargs) -> "FinanceStore":
        settings = get_settings()
        state = FinanceState(
            transactions=tuple(load_collection(blobs, TRANSACTIONS_KEY, Transaction)),
            goals=tuple(load_collection(blobs, GOALS_KEY, Goal)),
            budgets=tuple(load_collection(blobs, BUDGETS_KEY, Budget)),
            recurring_payments=tuple(
                load_collection(blobs, RECURRING_KEY, RecurringPayment)
            ),
            currency=load_currency(blobs, settings.default_currency),
        )
        store = cls(state, **kwargs)
        store.subscribe(PersistenceObserver(blobs))
        # Months may have rolled over since the blobs were written.
        store.reconcile_now()
        return store

    @property
    def state(self) -> FinanceState:
        return self._state

    def subscribe(self, handler: Subscriber) -> None:
        if handler not in self._subscribers:
            self._subscribers.append(handler)

    def unsubscribe(self, handler: Subscriber) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def dispatch(self, name: str, payload: Optional[dict] = None) -> FinanceState:
        action = Action(name, payload or {})
        previous = self._state
        state = reduce(previous, action)
        if action.name in RECONCILE_TRIGGERS:
            state = self._reconciled(state, action.name)
        self._state = state
        for handler in list(self._subscribers):
            handler(previous, state, action)
        return state

    def reconcile_now(self) -> FinanceState:
        reconciled = self._reconciled(self._state, "manual")
        return self.dispatch(
            TRANSACTIONS_RECONCILED, {"transactions": reconciled.transactions}
        )

    def _reconciled(self, state: FinanceState, trigger: str) -> FinanceState:
        today = self.clock()
        current = current_period_key(today)
        target = state.active_period or current
        definitions = state.recurring_payments
        transactions = list(state.transactions)

        covered = False
        if self.materialize_history:
            start = min(history_start(definitions) or current, current)
            transactions = reconcile_range(
                definitions, transactions, start, current, today=today
            )
            covered = start <= target <= current
        if not covered:
            transactions = reconcile(definitions, transactions, target, today=today)

        derived = sum(1 for txn in transactions if txn.is_recurrent)
        logger.info(
            f"reconcile_run: trigger={trigger} period={target} "
            f"history={self.materialize_history} derived={derived}"
        )
        return replace(state, transactions=tuple(transactions))


_PERSISTED_FIELDS = (
    (TRANSACTIONS_KEY, "transactions"),
    (GOALS_KEY, "goals"),
    (BUDGETS_KEY, "budgets"),
    (RECURRING_KEY, "recurring_payments"),
    (CURRENCY_KEY, "currency"),
)


class PersistenceObserver:
    """Writes each changed collection to its own blob."""

    def __init__(self, blobs: BlobStore) -> None:
        self.blobs = blobs

    def __call__(
        self, previous: FinanceState, current: FinanceState, action: Action
    ) -> None:
        for key, attr in _PERSISTED_FIELDS:
            after = getattr(current, attr)
            if getattr(previous, attr) == after:
                continue
            try:
                if key == CURRENCY_KEY:
                    save_currency(self.blobs, after)
                else:
                    save_collection(self.blobs, key, after)
            except SQLAlchemyError as exc:
                self.blobs.session.rollback()
                logger.error(
                    f"persist_failed: key={key} action={action.name} error={exc}"
                )
