from __future__ import annotations

import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from core.errors import DocumentNotFoundError, IndexRequiredError

logger = logging.getLogger(__name__)

# Pseudo field name that matches against the document id instead of its data.
DOCUMENT_ID = "__id__"

_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "in": lambda a, b: a in b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
}

Document = dict[str, Any]
SnapshotCallback = Callable[[list[Document]], None]


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, doc: Document) -> bool:
        actual = doc.get("id") if self.field == DOCUMENT_ID else doc.get(self.field)
        return _OPERATORS[self.op](actual, self.value)


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


def eq(field: str, value: Any) -> Filter:
    return Filter(field, "==", value)


def is_in(field: str, values: Iterable[Any]) -> Filter:
    return Filter(field, "in", tuple(values))


def sort_documents(docs: list[Document], order_by: OrderBy) -> list[Document]:
    # Documents missing the field sort first ascending, last descending.
    def key(doc: Document):
        value = doc.get(order_by.field)
        return (value is not None, value)

    return sorted(docs, key=key, reverse=order_by.descending)


def apply_query(
    docs: Iterable[Document],
    filters: Sequence[Filter] = (),
    order_by: OrderBy | None = None,
    limit: int | None = None,
) -> list[Document]:
    result = [d for d in docs if all(f.matches(d) for f in filters)]
    if order_by is not None:
        result = sort_documents(result, order_by)
    if limit is not None:
        result = result[:limit]
    return result


def document_ids(filters: Sequence[Filter]) -> tuple[str, ...] | None:
    """Ids a query is restricted to by its document-id filter, or None when unrestricted."""
    for f in filters:
        if f.field != DOCUMENT_ID:
            continue
        if f.op == "==":
            return (f.value,)
        if f.op == "in":
            return tuple(dict.fromkeys(f.value))
    return None


def collection_name(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]


class Subscription:
    """
    A live query. The callback receives the full snapshot once on subscribe
    and again after every write to the collection, until unsubscribed.
    """

    def __init__(
        self,
        store: DocumentStore,
        path: str,
        callback: SnapshotCallback,
        filters: Sequence[Filter],
        order_by: OrderBy | None,
        limit: int | None,
    ):
        self.store = store
        self.path = path
        self.callback = callback
        self.filters = tuple(filters)
        self.order_by = order_by
        self.limit = limit
        self.active = True

    def deliver(self) -> None:
        if not self.active:
            return
        try:
            docs = self.store.query(self.path, self.filters, self.order_by, self.limit)
        except IndexRequiredError:
            docs = apply_query(self.store.query(self.path, self.filters), (), self.order_by, self.limit)
        try:
            self.callback(docs)
        except Exception:
            logger.exception("Snapshot listener on %s failed", self.path)

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.store._remove_subscription(self)


class DocumentStore(ABC):
    """
    Hierarchical document store. Collections are addressed by slash separated
    paths such as ``readings/{patient_id}/events``; each document is a JSON
    object and is returned with its ``id`` merged in.

    Updates merge field by field, last writer wins. There are no multi-document
    transactions.
    """

    def __init__(self, enforce_indexes: bool = False):
        self.enforce_indexes = enforce_indexes
        self._indexes: set[tuple[str, tuple[str, ...], str]] = set()
        self._subscriptions: list[Subscription] = []
        self._sub_lock = threading.Lock()

    # Backend primitives -------------------------------------------------

    @abstractmethod
    def _insert(self, path: str, doc_id: str, data: Document) -> None: ...

    @abstractmethod
    def _fetch(self, path: str, doc_id: str) -> Document | None: ...

    @abstractmethod
    def _merge(self, path: str, doc_id: str, fields: Document) -> bool:
        """Merge fields into an existing document; False when it does not exist."""

    @abstractmethod
    def _load_collection(self, path: str) -> list[Document]: ...

    def _fetch_many(self, path: str, doc_ids: Sequence[str]) -> list[Document]:
        docs = []
        for doc_id in doc_ids:
            data = self._fetch(path, doc_id)
            if data is not None:
                docs.append({**data, "id": doc_id})
        return docs

    def _candidates(
        self, path: str, filters: Sequence[Filter], order_by: OrderBy | None, limit: int | None
    ) -> list[Document]:
        """Documents a query is evaluated on. Backends may narrow this further."""
        ids = document_ids(filters)
        if ids is not None:
            return self._fetch_many(path, ids)
        return self._load_collection(path)

    # Public API ---------------------------------------------------------

    def declare_index(self, collection: str, fields: Sequence[str], order_field: str) -> None:
        self._indexes.add((collection, tuple(sorted(fields)), order_field))

    def create(self, path: str, data: Document, doc_id: str | None = None) -> str:
        doc_id = doc_id or uuid.uuid4().hex
        payload = copy.deepcopy({k: v for k, v in data.items() if k != "id"})
        self._insert(path, doc_id, payload)
        self._notify(path)
        return doc_id

    def set(self, path: str, doc_id: str, data: Document) -> None:
        payload = copy.deepcopy({k: v for k, v in data.items() if k != "id"})
        self._insert(path, doc_id, payload)
        self._notify(path)

    def get(self, path: str, doc_id: str) -> Document | None:
        data = self._fetch(path, doc_id)
        if data is None:
            return None
        return {**data, "id": doc_id}

    def query(
        self,
        path: str,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        if order_by is not None:
            self._check_index(path, filters, order_by)
        return apply_query(self._candidates(path, filters, order_by, limit), filters, order_by, limit)

    def update(self, path: str, doc_id: str, fields: Document) -> None:
        payload = copy.deepcopy({k: v for k, v in fields.items() if k != "id"})
        if not self._merge(path, doc_id, payload):
            raise DocumentNotFoundError(path, doc_id)
        self._notify(path)

    def subscribe(
        self,
        path: str,
        callback: SnapshotCallback,
        filters: Sequence[Filter] = (),
        order_by: OrderBy | None = None,
        limit: int | None = None,
    ) -> Subscription:
        sub = Subscription(self, path, callback, filters, order_by, limit)
        with self._sub_lock:
            self._subscriptions.append(sub)
        sub.deliver()
        return sub

    # Internals ----------------------------------------------------------

    def _check_index(self, path: str, filters: Sequence[Filter], order_by: OrderBy) -> None:
        if not self.enforce_indexes:
            return
        others = tuple(sorted({f.field for f in filters if f.field != order_by.field}))
        if not others:
            return
        name = collection_name(path)
        if (name, others, order_by.field) not in self._indexes:
            raise IndexRequiredError(name, others, order_by.field)

    def _remove_subscription(self, sub: Subscription) -> None:
        with self._sub_lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def _notify(self, path: str) -> None:
        with self._sub_lock:
            listeners = [s for s in self._subscriptions if s.path == path]
        for sub in listeners:
            sub.deliver()


class MemoryDocumentStore(DocumentStore):
    """In-process backend, used by tests and the ``memory`` store setting."""

    def __init__(self, enforce_indexes: bool = False):
        super().__init__(enforce_indexes=enforce_indexes)
        self._collections: dict[str, dict[str, Document]] = {}
        self._lock = threading.RLock()

    def _insert(self, path: str, doc_id: str, data: Document) -> None:
        with self._lock:
            self._collections.setdefault(path, {})[doc_id] = data

    def _fetch(self, path: str, doc_id: str) -> Document | None:
        with self._lock:
            data = self._collections.get(path, {}).get(doc_id)
            return copy.deepcopy(data) if data is not None else None

    def _merge(self, path: str, doc_id: str, fields: Document) -> bool:
        with self._lock:
            data = self._collections.get(path, {}).get(doc_id)
            if data is None:
                return False
            data.update(fields)
            return True

    def _load_collection(self, path: str) -> list[Document]:
        with self._lock:
            return [{**copy.deepcopy(d), "id": i} for i, d in self._collections.get(path, {}).items()]
