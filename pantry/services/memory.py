# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
In-process document store for tests and local development.

Every document carries a version number. A transaction remembers the
version of each document it read and validates its read and write sets at
commit time, so two transactions touching the same client or marker cannot
both commit from the same snapshot.
"""

import re
import copy
import logging
import threading
from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple
from opentelemetry import trace

from .store import DocumentStore, Transaction, TransactionConflict, SortSpec
from ..models.base import generate_object_id

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

_MISSING = object()


def _get_path(document: Dict[str, Any], path: str) -> Any:
    value: Any = document
    for part in path.split('.'):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set_path(document: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split('.')
    target = document
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _inc_path(document: Dict[str, Any], path: str, amount: int) -> None:
    current = _get_path(document, path)
    base = 0 if current is _MISSING or current is None else current
    _set_path(document, path, base + amount)


def _compare(value: Any, operator: str, operand: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    try:
        if operator == '$gt':
            return value > operand
        if operator == '$gte':
            return value >= operand
        if operator == '$lt':
            return value < operand
        if operator == '$lte':
            return value <= operand
    except TypeError:
        return False
    raise ValueError(f"Unsupported operator: {operator}")


def _match_condition(value: Any, condition: Any) -> bool:
    if not isinstance(condition, dict) or not any(k.startswith('$') for k in condition):
        if condition is None:
            return value is _MISSING or value is None
        return value is not _MISSING and value == condition

    for operator, operand in condition.items():
        if operator == '$eq':
            if not _match_condition(value, operand):
                return False
        elif operator == '$ne':
            if _match_condition(value, operand):
                return False
        elif operator == '$in':
            if not any(_match_condition(value, item) for item in operand):
                return False
        elif operator == '$nin':
            if any(_match_condition(value, item) for item in operand):
                return False
        elif operator == '$exists':
            if (value is not _MISSING) != bool(operand):
                return False
        elif operator == '$regex':
            if not isinstance(value, str):
                return False
            flags = re.IGNORECASE if 'i' in condition.get('$options', '') else 0
            if not re.search(operand, value, flags):
                return False
        elif operator == '$options':
            continue
        elif not _compare(value, operator, operand):
            return False
    return True


def matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    """Evaluate the subset of MongoDB query syntax the scoped layer emits."""
    for key, condition in query.items():
        if key == '$or':
            if not any(matches(document, sub) for sub in condition):
                return False
        elif key == '$and':
            if not all(matches(document, sub) for sub in condition):
                return False
        elif not _match_condition(_get_path(document, key), condition):
            return False
    return True


def _sort_documents(documents: List[Dict[str, Any]], sort: SortSpec) -> List[Dict[str, Any]]:
    # Stable sorts applied from the least significant key; nulls sort lowest.
    for field, direction in reversed(list(sort)):
        def sort_key(doc, field=field):
            value = _get_path(doc, field)
            if value is _MISSING or value is None:
                return (0, 0)
            return (1, value)
        documents.sort(key=sort_key, reverse=direction < 0)
    return documents


class _Record:
    __slots__ = ('version', 'document')

    def __init__(self, version: int, document: Dict[str, Any]):
        self.version = version
        self.document = document


class MemoryTransaction(Transaction):
    """Optimistic transaction validated against document versions at commit."""

    def __init__(self, store: "MemoryDocumentStore"):
        self._store = store
        self._reads: Dict[Tuple[str, str], Optional[int]] = {}
        self._writes: List[Tuple[str, str, str, Dict[str, Any], Dict[str, int]]] = []
        self._pending: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Transaction already finished")

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        self._check_open()
        key = (collection, doc_id)
        if key in self._pending:
            return copy.deepcopy(self._pending[key])

        version, document = self._store._read(collection, doc_id)
        self._reads.setdefault(key, version)
        return document

    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        self._check_open()
        doc_id = doc_id or document.get('id') or generate_object_id()
        body = copy.deepcopy({k: v for k, v in document.items() if k != 'id'})
        self._writes.append(('insert', collection, doc_id, body, {}))
        self._pending[(collection, doc_id)] = dict(body, id=doc_id)
        return doc_id

    def update(self, collection: str, doc_id: str, set_fields: Optional[Dict[str, Any]] = None,
               inc_fields: Optional[Dict[str, int]] = None) -> None:
        self._check_open()
        set_fields = copy.deepcopy(set_fields or {})
        inc_fields = dict(inc_fields or {})
        self._writes.append(('update', collection, doc_id, set_fields, inc_fields))

        key = (collection, doc_id)
        if key in self._pending:
            _apply_update(self._pending[key], set_fields, inc_fields)

    def commit(self) -> None:
        self._check_open()
        try:
            self._store._commit(self._reads, self._writes)
        finally:
            self._closed = True

    def abort(self) -> None:
        self._closed = True
        self._writes = []
        self._pending = {}


def _apply_update(document: Dict[str, Any], set_fields: Dict[str, Any], inc_fields: Dict[str, int]) -> None:
    for path, value in set_fields.items():
        _set_path(document, path, value)
    for path, amount in inc_fields.items():
        _inc_path(document, path, amount)


class MemoryDocumentStore(DocumentStore):
    """Thread-safe in-memory store with per-document versions."""

    def __init__(self, max_attempts: Optional[int] = None, backoff_ms: Optional[int] = None):
        super().__init__(max_attempts, backoff_ms)
        self._collections: Dict[str, Dict[str, _Record]] = defaultdict(dict)
        self._lock = threading.RLock()
        self._clock = 0
        logger.info("In-memory document store initialized")

    def _next_version(self) -> int:
        self._clock += 1
        return self._clock

    def _read(self, collection: str, doc_id: str) -> Tuple[Optional[int], Optional[Dict[str, Any]]]:
        with self._lock:
            record = self._collections[collection].get(doc_id)
            if record is None:
                return None, None
            return record.version, dict(copy.deepcopy(record.document), id=doc_id)

    def _commit(self, reads: Dict[Tuple[str, str], Optional[int]], writes) -> None:
        with self._lock:
            for (collection, doc_id), version in reads.items():
                record = self._collections[collection].get(doc_id)
                current = record.version if record else None
                if current != version:
                    raise TransactionConflict(f"{collection}/{doc_id} changed since it was read")

            staged: Dict[Tuple[str, str], Optional[Dict[str, Any]]] = {}
            for kind, collection, doc_id, fields, increments in writes:
                key = (collection, doc_id)
                if key not in staged:
                    record = self._collections[collection].get(doc_id)
                    staged[key] = copy.deepcopy(record.document) if record else None

                if kind == 'insert':
                    if staged[key] is not None:
                        raise TransactionConflict(f"{collection}/{doc_id} already exists")
                    staged[key] = copy.deepcopy(fields)
                else:
                    if staged[key] is None:
                        raise TransactionConflict(f"{collection}/{doc_id} does not exist")
                    _apply_update(staged[key], fields, increments)

            for (collection, doc_id), document in staged.items():
                self._collections[collection][doc_id] = _Record(self._next_version(), document)

    def find(self, collection: str, query: Dict[str, Any], sort: Optional[SortSpec] = None,
             limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with tracer.start_as_current_span("memory.find") as span:
            span.set_attribute("db.collection", collection)
            with self._lock:
                documents = [
                    dict(copy.deepcopy(record.document), id=doc_id)
                    for doc_id, record in self._collections[collection].items()
                    if matches(dict(record.document, _id=doc_id), query)
                ]
            if sort:
                documents = _sort_documents(documents, sort)
            if limit:
                documents = documents[:limit]
            span.set_attribute("db.returned_count", len(documents))
            return documents

    def count(self, collection: str, query: Dict[str, Any]) -> int:
        with self._lock:
            return sum(1 for doc_id, record in self._collections[collection].items()
                       if matches(dict(record.document, _id=doc_id), query))

    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        tx = self.begin()
        doc_id = tx.insert(collection, document, doc_id)
        try:
            tx.commit()
        except TransactionConflict:
            raise ValueError("Document with this identifier already exists")
        logger.debug(f"Created document in {collection}: {doc_id}")
        return doc_id

    def begin(self) -> MemoryTransaction:
        return MemoryTransaction(self)

    def health_check(self) -> Dict[str, Any]:
        with self._lock:
            counts = {name: len(docs) for name, docs in self._collections.items()}
        return {
            'status': 'healthy',
            'backend': 'memory',
            'collections': counts
        }
