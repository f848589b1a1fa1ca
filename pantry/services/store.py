# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Document store interface shared by the MongoDB and in-memory backends.

The domain layer never talks to a backend directly; it goes through
``domain.scope.TenantScopedStore``, which injects tenant filters before
delegating here.
"""

import os
import time
import random
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar
from opentelemetry import trace

from ..domain.errors import ContentionException

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

T = TypeVar('T')

CLIENTS = "clients"
VISITS = "visits"
ELIGIBILITY_MARKERS = "eligibility_markers"

SortSpec = Sequence[Tuple[str, int]]


class TransactionConflict(Exception):
    """A concurrent writer touched a document in this transaction's read or write set."""
    pass


class Transaction(ABC):
    """
    Read-then-write unit of work.

    Reads are point reads by key; writes are buffered or applied inside the
    backend's transaction and become visible only on ``commit``.
    """

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Read a document by key; ``None`` when absent."""

    @abstractmethod
    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        """Insert a new document; a key collision is a conflict."""

    @abstractmethod
    def update(self, collection: str, doc_id: str, set_fields: Optional[Dict[str, Any]] = None,
               inc_fields: Optional[Dict[str, int]] = None) -> None:
        """Apply ``$set``/``$inc`` style changes (dotted paths allowed)."""

    @abstractmethod
    def commit(self) -> None:
        """Make all writes visible atomically or raise ``TransactionConflict``."""

    @abstractmethod
    def abort(self) -> None:
        """Discard all writes. Safe to call more than once."""


class DocumentStore(ABC):
    """Backend-agnostic document store with bounded-retry transactions."""

    def __init__(self, max_attempts: Optional[int] = None, backoff_ms: Optional[int] = None):
        self.max_attempts = max_attempts or int(os.getenv('VISIT_TX_MAX_ATTEMPTS', '5'))
        self.backoff_ms = backoff_ms if backoff_ms is not None else int(os.getenv('VISIT_TX_BACKOFF_MS', '25'))

    # Queries

    @abstractmethod
    def find(self, collection: str, query: Dict[str, Any], sort: Optional[SortSpec] = None,
             limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Equality/range query; documents come back with ``id`` instead of ``_id``."""

    def find_one(self, collection: str, query: Dict[str, Any],
                 sort: Optional[SortSpec] = None) -> Optional[Dict[str, Any]]:
        """First document matching ``query`` under ``sort``."""
        documents = self.find(collection, query, sort=sort, limit=1)
        return documents[0] if documents else None

    @abstractmethod
    def count(self, collection: str, query: Dict[str, Any]) -> int:
        """Count documents matching ``query``."""

    @abstractmethod
    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        """Insert a single document outside any transaction."""

    # Transactions

    @abstractmethod
    def begin(self) -> Transaction:
        """Open a new transaction."""

    def run_transaction(self, fn: Callable[[Transaction], T], max_attempts: Optional[int] = None,
                        operation: str = "transaction") -> T:
        """
        Run ``fn`` inside a transaction, retrying the whole unit on conflict.

        Args:
            fn: Callback receiving the open transaction; its return value is
                returned after a successful commit
            max_attempts: Override for the retry budget
            operation: Name used in logs and spans

        Raises:
            ContentionException: when every attempt conflicted
        """
        attempts = max_attempts or self.max_attempts

        with tracer.start_as_current_span(f"store.{operation}") as span:
            span.set_attribute("tx.max_attempts", attempts)

            for attempt in range(1, attempts + 1):
                tx = self.begin()
                try:
                    result = fn(tx)
                    tx.commit()
                    span.set_attribute("tx.attempts", attempt)
                    if attempt > 1:
                        logger.info(
                            "Transaction committed after retry",
                            extra={"operation": operation, "attempt": attempt}
                        )
                    return result
                except TransactionConflict as e:
                    tx.abort()
                    logger.warning(
                        "Transaction conflict",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "max_attempts": attempts,
                            "error": str(e)
                        }
                    )
                    if attempt < attempts:
                        self._backoff(attempt)
                except Exception:
                    tx.abort()
                    raise

            span.set_attribute("tx.attempts", attempts)
            span.set_attribute("tx.result", "contention")
            logger.error(
                "Transaction retry budget exhausted",
                extra={"operation": operation, "attempts": attempts}
            )
            raise ContentionException(f"{operation} conflicted {attempts} times", attempts)

    def _backoff(self, attempt: int) -> None:
        if self.backoff_ms <= 0:
            return
        delay_ms = self.backoff_ms * attempt + random.uniform(0, self.backoff_ms)
        time.sleep(delay_ms / 1000.0)

    # Operations

    @abstractmethod
    def health_check(self) -> Dict[str, Any]:
        """Backend health summary."""

    def create_indexes(self) -> None:
        """Create indexes backing the scoped queries; no-op where not applicable."""

    def close(self) -> None:
        """Release backend resources."""
