import json
import logging
from typing import Optional, Sequence, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from models import StoredBlob

logger = logging.getLogger(__name__)

TRANSACTIONS_KEY = "transactions"
GOALS_KEY = "goals"
BUDGETS_KEY = "budgets"
RECURRING_KEY = "recurrentPayments"
CURRENCY_KEY = "currency"

RecordT = TypeVar("RecordT", bound=BaseModel)


class BlobStore:
    """Key-value text blobs, one row per key."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, key: str) -> Optional[str]:
        blob = self.session.get(StoredBlob, key)
        return blob.value if blob else None

    def put(self, key: str, value: str) -> None:
        blob = self.session.get(StoredBlob, key)
        if blob:
            blob.value = value
        else:
            self.session.add(StoredBlob(key=key, value=value))
        self.session.commit()

    def delete(self, key: str) -> None:
        blob = self.session.get(StoredBlob, key)
        if blob:
            self.session.delete(blob)
            self.session.commit()

    def load_json(self, key: str, default: object) -> object:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"blob_corrupt: key={key} size={len(raw)}")
            return default


def load_collection(
    blobs: BlobStore, key: str, model: type[RecordT]
) -> list[RecordT]:
    data = blobs.load_json(key, [])
    if not isinstance(data, list):
        logger.warning(f"blob_unexpected_shape: key={key} type={type(data).__name__}")
        return []
    records: list[RecordT] = []
    skipped = 0
    for raw in data:
        try:
            records.append(model.model_validate(raw))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.warning(f"blob_records_skipped: key={key} skipped={skipped}")
    return records


def dump_collection(records: Sequence[BaseModel]) -> list[dict[str, object]]:
    return [record.model_dump(mode="json", by_alias=True) for record in records]


def save_collection(blobs: BlobStore, key: str, records: Sequence[BaseModel]) -> None:
    blobs.put(key, json.dumps(dump_collection(records)))


def load_currency(blobs: BlobStore, default: str) -> str:
    # The currency blob has always been a bare string, not JSON.
    raw = blobs.get(CURRENCY_KEY)
    if not raw:
        return default
    value = raw.strip().strip('"').upper()
    return value or default


def save_currency(blobs: BlobStore, code: str) -> None:
    blobs.put(CURRENCY_KEY, code)
