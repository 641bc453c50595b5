from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from catalog import EMERGENCY_FUND_CATEGORY
from models import Budget, Goal, GoalStatus, Transaction, TransactionType

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Totals:
    income: Decimal
    expense: Decimal
    savings: Decimal
    balance: Decimal


@dataclass(frozen=True)
class DailyPoint:
    day: date
    income: Decimal
    expense: Decimal
    savings: Decimal


@dataclass(frozen=True)
class MonthlyPoint:
    month: str
    income: Decimal
    expense: Decimal
    savings: Decimal
    net: Decimal


@dataclass(frozen=True)
class CategoryAmount:
    category: str
    amount: Decimal
    percent: float


@dataclass(frozen=True)
class BudgetProgress:
    type: TransactionType
    category: str
    limit: Decimal
    spent: Decimal
    remaining: Decimal
    percent: float
    over_budget: bool


@dataclass(frozen=True)
class GoalProgress:
    title: str
    target: Decimal
    current: Decimal
    percent: float
    achieved: bool


def as_dict(row) -> dict[str, object]:
    return asdict(row)


def _clamped_percent(value: Decimal, limit: Decimal) -> float:
    if limit <= 0:
        return 0.0
    ratio = value / limit * HUNDRED
    return float(min(HUNDRED, max(ZERO, ratio)))


def _sum_by_type(transactions: Iterable[Transaction]) -> dict[TransactionType, Decimal]:
    sums = {member: ZERO for member in TransactionType}
    for txn in transactions:
        sums[txn.type] += txn.amount
    return sums


def totals(transactions: Iterable[Transaction]) -> Totals:
    sums = _sum_by_type(transactions)
    income = sums[TransactionType.income]
    expense = sums[TransactionType.expense]
    return Totals(
        income=income,
        expense=expense,
        savings=sums[TransactionType.savings],
        balance=income - expense,
    )


def daily_series(transactions: Iterable[Transaction]) -> list[DailyPoint]:
    by_day: dict[date, dict[TransactionType, Decimal]] = {}
    for txn in transactions:
        bucket = by_day.setdefault(txn.date, {member: ZERO for member in TransactionType})
        bucket[txn.type] += txn.amount
    return [
        DailyPoint(
            day=day,
            income=bucket[TransactionType.income],
            expense=bucket[TransactionType.expense],
            savings=bucket[TransactionType.savings],
        )
        for day, bucket in sorted(by_day.items())
    ]


def monthly_series(transactions: Iterable[Transaction]) -> list[MonthlyPoint]:
    by_month: dict[str, dict[TransactionType, Decimal]] = {}
    for txn in transactions:
        bucket = by_month.setdefault(
            txn.period_key, {member: ZERO for member in TransactionType}
        )
        bucket[txn.type] += txn.amount
    out: list[MonthlyPoint] = []
    for month, bucket in sorted(by_month.items()):
        income = bucket[TransactionType.income]
        expense = bucket[TransactionType.expense]
        out.append(
            MonthlyPoint(
                month=month,
                income=income,
                expense=expense,
                savings=bucket[TransactionType.savings],
                net=income - expense,
            )
        )
    return out


def category_distribution(
    transactions: Iterable[Transaction],
    transaction_type: Optional[TransactionType] = None,
) -> list[CategoryAmount]:
    amounts: dict[str, Decimal] = {}
    for txn in transactions:
        if transaction_type is not None and txn.type != transaction_type:
            continue
        amounts[txn.category] = amounts.get(txn.category, ZERO) + txn.amount

    rows = [(name, amount) for name, amount in amounts.items() if amount > 0]
    # sorted() is stable, so ties keep first-appearance order.
    rows.sort(key=lambda row: row[1], reverse=True)
    total = sum((amount for _, amount in rows), ZERO)
    return [
        CategoryAmount(
            category=name,
            amount=amount,
            percent=float(amount / total * HUNDRED) if total else 0.0,
        )
        for name, amount in rows
    ]


def budget_progress(
    budgets: Iterable[Budget], transactions: Sequence[Transaction]
) -> list[BudgetProgress]:
    spent_by_key: dict[tuple[TransactionType, str], Decimal] = {}
    for txn in transactions:
        key = (txn.type, txn.category.lower())
        spent_by_key[key] = spent_by_key.get(key, ZERO) + txn.amount

    progress: list[BudgetProgress] = []
    for budget in budgets:
        spent = spent_by_key.get(budget.key, ZERO)
        progress.append(
            BudgetProgress(
                type=budget.type,
                category=budget.category,
                limit=budget.limit,
                spent=spent,
                remaining=budget.limit - spent,
                percent=_clamped_percent(spent, budget.limit),
                over_budget=spent > budget.limit,
            )
        )
    return progress


def is_emergency_fund_goal(goal: Goal) -> bool:
    return "emergency fund" in goal.title.lower()


def goal_progress(
    goal: Goal, transactions: Iterable[Transaction]
) -> Optional[GoalProgress]:
    """Progress of a goal fed by savings transactions.

    Only emergency-fund goals have a contribution source; other goals return
    None. The computed ``achieved`` is advisory and never touches ``goal``.
    """
    if not is_emergency_fund_goal(goal):
        return None
    wanted = EMERGENCY_FUND_CATEGORY.lower()
    current = sum(
        (
            txn.amount
            for txn in transactions
            if txn.type == TransactionType.savings and txn.category.lower() == wanted
        ),
        ZERO,
    )
    return GoalProgress(
        title=goal.title,
        target=goal.target_amount,
        current=current,
        percent=_clamped_percent(current, goal.target_amount),
        achieved=current >= goal.target_amount,
    )


def goal_status(goal: Goal, today: date) -> GoalStatus:
    if goal.achieved:
        return GoalStatus.achieved
    if goal.deadline < today:
        return GoalStatus.overdue
    return GoalStatus.in_progress
