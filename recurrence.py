import hashlib
import json
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from models import RecurringPayment, Transaction, TransactionType
from periods import current_period_key, iter_period_keys, month_key, parse_period_key

logger = logging.getLogger(__name__)

DefinitionLike = Union[RecurringPayment, Mapping[str, Any]]


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def occurrence_date(start_date: date, period_key: str) -> date:
    """Day of month taken from ``start_date``, snapped to the end of short months."""
    year, month = parse_period_key(period_key)
    day = min(start_date.day, days_in_month(year, month))
    return date(year, month, day)


def _canonical_amount(amount: Decimal) -> str:
    return format(Decimal(amount).normalize(), "f")


def derived_transaction_id(
    title: str,
    transaction_type: TransactionType,
    category: str,
    amount: Decimal,
    on: date,
) -> str:
    payload = json.dumps(
        [
            title,
            TransactionType(transaction_type).value,
            category,
            _canonical_amount(amount),
            on.isoformat(),
        ],
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return "rec-" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


def coerce_definition(raw: DefinitionLike) -> Optional[RecurringPayment]:
    if isinstance(raw, RecurringPayment):
        return raw
    if not isinstance(raw, Mapping):
        logger.debug(f"recurrence_skip: reason=not_a_mapping value={raw!r}")
        return None
    try:
        return RecurringPayment.model_validate(raw)
    except ValidationError as exc:
        logger.debug(
            f"recurrence_skip: reason=malformed title={raw.get('title')!r} "
            f"errors={exc.error_count()}"
        )
        return None


def active_definitions(definitions: Iterable[DefinitionLike]) -> list[RecurringPayment]:
    active: list[RecurringPayment] = []
    for raw in definitions:
        definition = coerce_definition(raw)
        if definition is None or not definition.active:
            continue
        active.append(definition)
    return active


def covers_period(definition: RecurringPayment, period_key: str) -> bool:
    if month_key(definition.start_date) > period_key:
        return False
    if definition.end_date is not None and month_key(definition.end_date) < period_key:
        return False
    return True


def materialize(definition: RecurringPayment, period_key: str) -> Optional[Transaction]:
    if not definition.active or not covers_period(definition, period_key):
        return None
    on = occurrence_date(definition.start_date, period_key)
    if definition.end_date is not None and on > definition.end_date:
        return None
    return Transaction(
        id=derived_transaction_id(
            definition.title,
            definition.type,
            definition.category,
            definition.amount,
            on,
        ),
        date=on,
        type=definition.type,
        category=definition.category,
        amount=definition.amount,
        is_recurrent=True,
        recurrent_source_title=definition.title,
    )


def retitle_instances(
    transactions: Sequence[Transaction], old_title: str, new_title: str
) -> list[Transaction]:
    """Move derived instances of a renamed definition onto its new title."""
    if not old_title or old_title == new_title:
        return list(transactions)
    out: list[Transaction] = []
    for txn in transactions:
        if txn.is_recurrent and txn.recurrent_source_title == old_title:
            txn = txn.model_copy(
                update={
                    "recurrent_source_title": new_title,
                    "id": derived_transaction_id(
                        new_title, txn.type, txn.category, txn.amount, txn.date
                    ),
                }
            )
        out.append(txn)
    return out


def history_start(definitions: Iterable[DefinitionLike]) -> Optional[str]:
    starts = [month_key(d.start_date) for d in active_definitions(definitions)]
    return min(starts) if starts else None


def reconcile(
    definitions: Iterable[DefinitionLike],
    existing_transactions: Sequence[Transaction],
    period_key: Optional[str] = None,
    *,
    today: Optional[date] = None,
) -> list[Transaction]:
    """Merge freshly derived instances for one period into the transaction list.

    Manual transactions pass through untouched, as do derived ones from other
    periods. Inside the period, instances of active definitions are replaced by
    the recomputed set. Instances whose definition was deactivated or removed
    stay when the period already lies in the past and are dropped otherwise.

    Without ``today`` the date comes from ``local_today()``, which reads the
    configured timezone. The store and services always pass their clock.
    """
    period_key = period_key or current_period_key(today)
    parse_period_key(period_key)
    current = current_period_key(today)

    active = active_definitions(definitions)
    governed = {definition.title for definition in active}
    fresh: dict[str, Transaction] = {}
    for definition in active:
        txn = materialize(definition, period_key)
        if txn is not None:
            fresh[txn.id] = txn

    merged: list[Transaction] = []
    dropped = 0
    for txn in existing_transactions:
        if not txn.is_recurrent or txn.period_key != period_key:
            merged.append(txn)
            continue
        if txn.recurrent_source_title in governed:
            dropped += 1
            continue
        if period_key < current and txn.id not in fresh:
            merged.append(txn)
            continue
        dropped += 1

    merged.extend(fresh.values())
    merged.sort(key=lambda txn: txn.date)
    logger.debug(
        f"reconcile: period={period_key} definitions={len(active)} "
        f"derived={len(fresh)} replaced={dropped}"
    )
    return merged


def reconcile_range(
    definitions: Iterable[DefinitionLike],
    existing_transactions: Sequence[Transaction],
    start_key: str,
    end_key: str,
    *,
    today: Optional[date] = None,
) -> list[Transaction]:
    active = active_definitions(definitions)
    result = list(existing_transactions)
    for key in iter_period_keys(start_key, end_key):
        result = reconcile(active, result, key, today=today)
    return result
