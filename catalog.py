from typing import Optional

from rapidfuzz.distance import Levenshtein

from models import TransactionType


CATEGORY_CATALOG: dict[TransactionType, tuple[str, ...]] = {
    TransactionType.income: (
        "Salary",
        "Freelance",
        "Business",
        "Investments",
        "Gifts",
        "Other",
    ),
    TransactionType.expense: (
        "Rent",
        "Groceries",
        "Utilities",
        "Transport",
        "Dining",
        "Entertainment",
        "Healthcare",
        "Education",
        "Shopping",
        "Insurance",
        "Other",
    ),
    TransactionType.savings: (
        "Emergency Fund",
        "Retirement",
        "Investments",
        "Vacation",
        "Education",
        "Other",
    ),
}

EMERGENCY_FUND_CATEGORY = "Emergency Fund"


class CategoryNotFound(ValueError):
    pass


class CategoryAmbiguous(ValueError):
    pass


def categories_for(transaction_type: TransactionType) -> tuple[str, ...]:
    return CATEGORY_CATALOG.get(TransactionType(transaction_type), ())


def resolve_category(transaction_type: TransactionType, name: str) -> str:
    """Map user input onto the canonical catalog label for ``transaction_type``.

    Exact case-insensitive matches win. Otherwise a single label within one
    edit is accepted, so "Grocries" resolves to "Groceries".
    """
    raw = (name or "").strip()
    if not raw:
        raise CategoryNotFound("Category is required")
    labels = categories_for(transaction_type)
    input_lower = raw.lower()
    for label in labels:
        if label.lower() == input_lower:
            return label

    best_distance: Optional[int] = None
    best: list[str] = []
    for label in labels:
        dist = int(Levenshtein.distance(input_lower, label.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [label]
        elif dist == best_distance:
            best.append(label)

    if best_distance is not None and best_distance <= 1:
        if len(best) > 1:
            options = ", ".join(sorted(best))
            raise CategoryAmbiguous(
                f"Category '{raw}' is ambiguous; matches: {options}"
            )
        return best[0]
    raise CategoryNotFound(
        f"Category '{raw}' is not valid for {TransactionType(transaction_type).value}"
    )
