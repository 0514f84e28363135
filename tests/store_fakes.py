import copy
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "lambda") not in sys.path:
    sys.path.insert(0, str(ROOT / "lambda"))

from document_store import CARDS
from document_store import QUERY_INDEXES
from document_store import TABLE_ENV_VARS
from document_store import TASKS
from document_store import DuplicateDocumentError
from document_store import MissingDocumentError
from document_store import StoreError
from document_store import key_field

_SORT_FIELDS = {
    (CARDS, "boardId"): "createdAt",
    (TASKS, "cardId"): "order",
}


class MemoryDocumentStore:
    """In-memory stand-in for DynamoDocumentStore.

    ``fail_next(op, collection)`` makes the next matching call raise
    StoreError, to exercise partial cascades.
    """

    def __init__(self):
        self.docs: dict[str, dict[str, dict]] = {name: {} for name in TABLE_ENV_VARS}
        self.calls: list[tuple[str, str]] = []
        self._failures: list[tuple[str, str]] = []

    def fail_next(self, op: str, collection: str, times: int = 1) -> None:
        self._failures.extend([(op, collection)] * times)

    def _enter(self, op: str, collection: str) -> dict[str, dict]:
        self.calls.append((op, collection))
        if (op, collection) in self._failures:
            self._failures.remove((op, collection))
            raise StoreError(f"injected {op} failure on {collection}")
        return self.docs[collection]

    def seed(self, collection: str, doc: dict) -> dict:
        self.docs[collection][doc[key_field(collection)]] = copy.deepcopy(doc)
        return doc

    def get(self, collection, key):
        coll = self._enter("get", collection)
        doc = coll.get(key)
        return copy.deepcopy(doc) if doc is not None else None

    def create(self, collection, doc):
        coll = self._enter("create", collection)
        key = doc[key_field(collection)]
        if key in coll:
            raise DuplicateDocumentError(collection, key)
        coll[key] = copy.deepcopy(doc)
        return doc

    def put(self, collection, doc):
        coll = self._enter("put", collection)
        coll[doc[key_field(collection)]] = copy.deepcopy(doc)
        return doc

    def update(self, collection, key, fields, *, remove=()):
        coll = self._enter("update", collection)
        if key not in coll:
            raise MissingDocumentError(collection, key)
        coll[key].update(copy.deepcopy(fields))
        for field in remove:
            coll[key].pop(field, None)
        return copy.deepcopy(coll[key])

    def delete(self, collection, key):
        coll = self._enter("delete", collection)
        return coll.pop(key, None)

    def query(self, collection, field, value, *, descending=False):
        coll = self._enter("query", collection)
        if (collection, field) not in QUERY_INDEXES:
            raise StoreError(f"no query index for {collection}.{field}")
        out = [copy.deepcopy(d) for d in coll.values() if d.get(field) == value]
        sort_field = _SORT_FIELDS.get((collection, field))
        if sort_field:
            out.sort(key=lambda d: d.get(sort_field), reverse=descending)
        return out

    def scan_contains(self, collection, field, value):
        coll = self._enter("scan", collection)
        return [copy.deepcopy(d) for d in coll.values() if value in (d.get(field) or [])]

    def scan_all(self, collection):
        coll = self._enter("scan", collection)
        return [copy.deepcopy(d) for d in coll.values()]

    def append_unique(self, collection, key, field, value):
        coll = self._enter("append_unique", collection)
        doc = coll.get(key)
        if doc is None:
            raise MissingDocumentError(collection, key)
        values = doc.setdefault(field, [])
        if value in values:
            return False
        values.append(value)
        return True

    def create_and_increment(self, collection, doc, *, counter_collection, counter_key, counter_field):
        coll = self._enter("create_and_increment", collection)
        key = doc[key_field(collection)]
        if key in coll:
            raise DuplicateDocumentError(collection, key)
        coll[key] = copy.deepcopy(doc)
        counter = self.docs[counter_collection].get(counter_key)
        if counter is None:
            return False
        counter[counter_field] = int(counter.get(counter_field) or 0) + 1
        return True

    def delete_and_decrement(self, collection, key, *, counter_collection, counter_key, counter_field):
        coll = self._enter("delete_and_decrement", collection)
        if key not in coll:
            return False
        del coll[key]
        counter = self.docs[counter_collection].get(counter_key)
        if counter is None or int(counter.get(counter_field) or 0) < 1:
            return False
        counter[counter_field] = int(counter[counter_field]) - 1
        return True
