# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB document store with connection pooling and multi-document transactions.

Transactions require a replica set (or sharded cluster). Write conflicts and
duplicate keys inside a transaction surface as ``TransactionConflict`` so
the caller's retry loop can re-run the whole unit.
"""

import os
import logging
from typing import List, Dict, Optional, Any
from pymongo import MongoClient, ASCENDING, DESCENDING
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError,
    PyMongoError
)
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import ReadPreference
from pymongo.write_concern import WriteConcern
from opentelemetry import trace

from .store import (
    DocumentStore, Transaction, TransactionConflict, SortSpec,
    CLIENTS, VISITS, ELIGIBILITY_MARKERS
)
from ..models.base import generate_object_id

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

MAX_COMMIT_RETRIES = 3


def _to_external(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Convert ``_id`` to a string ``id`` for the domain layer."""
    if document is None:
        return None
    if "_id" in document:
        document["id"] = str(document["_id"])
        del document["_id"]
    return document


def _is_transient(error: PyMongoError) -> bool:
    return error.has_error_label("TransientTransactionError")


class MongoTransaction(Transaction):
    """Snapshot-isolated transaction bound to one client session."""

    def __init__(self, store: "MongoDocumentStore"):
        self._store = store
        self._session: ClientSession = store.client.start_session()
        self._session.start_transaction(
            read_concern=ReadConcern("snapshot"),
            write_concern=WriteConcern("majority"),
            read_preference=ReadPreference.PRIMARY
        )
        self._finished = False

    def _raise_conflict_if_transient(self, error: PyMongoError, action: str) -> None:
        if isinstance(error, DuplicateKeyError) or _is_transient(error):
            raise TransactionConflict(f"{action}: {error}") from error

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            document = self._store.get_collection(collection).find_one(
                {"_id": doc_id}, session=self._session
            )
        except PyMongoError as e:
            self._raise_conflict_if_transient(e, f"read {collection}/{doc_id}")
            raise
        return _to_external(document)

    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        body = {k: v for k, v in document.items() if k != "id"}
        body["_id"] = doc_id or document.get("id") or generate_object_id()
        try:
            self._store.get_collection(collection).insert_one(body, session=self._session)
        except PyMongoError as e:
            self._raise_conflict_if_transient(e, f"insert {collection}/{body['_id']}")
            raise
        return body["_id"]

    def update(self, collection: str, doc_id: str, set_fields: Optional[Dict[str, Any]] = None,
               inc_fields: Optional[Dict[str, int]] = None) -> None:
        operations: Dict[str, Any] = {}
        if set_fields:
            operations["$set"] = set_fields
        if inc_fields:
            operations["$inc"] = inc_fields
        if not operations:
            return

        try:
            result = self._store.get_collection(collection).update_one(
                {"_id": doc_id}, operations, session=self._session
            )
        except PyMongoError as e:
            self._raise_conflict_if_transient(e, f"update {collection}/{doc_id}")
            raise
        if result.matched_count == 0:
            raise TransactionConflict(f"{collection}/{doc_id} disappeared during transaction")

    def commit(self) -> None:
        try:
            for attempt in range(1, MAX_COMMIT_RETRIES + 1):
                try:
                    self._session.commit_transaction()
                    return
                except PyMongoError as e:
                    if e.has_error_label("UnknownTransactionCommitResult") and attempt < MAX_COMMIT_RETRIES:
                        logger.warning(f"Retrying commit with unknown result: {e}")
                        continue
                    if _is_transient(e):
                        raise TransactionConflict(f"commit: {e}") from e
                    raise
        finally:
            self._finished = True
            self._session.end_session()

    def abort(self) -> None:
        if self._finished:
            return
        self._finished = True
        try:
            if self._session.in_transaction:
                self._session.abort_transaction()
        except PyMongoError as e:
            logger.warning(f"Abort failed, server will expire the transaction: {e}")
        finally:
            self._session.end_session()


class MongoDocumentStore(DocumentStore):
    """MongoDB store with connection pooling and retrying transactions."""

    def __init__(self, connection_string: str = None, database_name: str = None,
                 max_attempts: Optional[int] = None, backoff_ms: Optional[int] = None):
        """Initialize MongoDB store with connection pooling."""
        super().__init__(max_attempts, backoff_ms)
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/pantry_dev?replicaSet=rs0'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'pantry_dev')
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))

        logger.info(f"MongoDB store initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True,
                    tz_aware=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                self._client = None
                raise

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'backend': 'mongodb',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'backend': 'mongodb',
                'error': str(e),
                'database': self.database_name
            }

    # Queries

    def find(self, collection: str, query: Dict[str, Any], sort: Optional[SortSpec] = None,
             limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with tracer.start_as_current_span("mongodb.find") as span:
            span.set_attribute("db.system", "mongodb")
            span.set_attribute("db.collection", collection)
            try:
                cursor = self.get_collection(collection).find(query)
                if sort:
                    cursor = cursor.sort(list(sort))
                if limit:
                    cursor = cursor.limit(limit)
                documents = [_to_external(doc) for doc in cursor]
            except Exception as e:
                logger.error(f"Failed to find documents in {collection}: {e}")
                raise

            span.set_attribute("db.returned_count", len(documents))
            logger.debug(f"Found {len(documents)} documents in {collection}")
            return documents

    def count(self, collection: str, query: Dict[str, Any]) -> int:
        try:
            return self.get_collection(collection).count_documents(query)
        except Exception as e:
            logger.error(f"Failed to count documents in {collection}: {e}")
            raise

    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        body = {k: v for k, v in document.items() if k != "id"}
        body["_id"] = doc_id or document.get("id") or generate_object_id()
        try:
            self.get_collection(collection).insert_one(body)
        except DuplicateKeyError as e:
            logger.error(f"Duplicate key error in {collection}: {e}")
            raise ValueError("Document with this identifier already exists")
        except Exception as e:
            logger.error(f"Failed to create document in {collection}: {e}")
            raise

        logger.info(f"Created document in {collection}: {body['_id']}")
        return body["_id"]

    def begin(self) -> MongoTransaction:
        return MongoTransaction(self)

    # Index Management

    def create_indexes(self) -> None:
        """Create the indexes behind dedupe, search and report queries."""
        try:
            logger.info("Creating MongoDB indexes...")

            clients = self.get_collection(CLIENTS)
            clients.create_index([("organizationId", ASCENDING), ("locationId", ASCENDING),
                                  ("phoneDigits", ASCENDING), ("createdAt", DESCENDING)])
            clients.create_index([("organizationId", ASCENDING), ("locationId", ASCENDING),
                                  ("nameDobHash", ASCENDING)])
            clients.create_index([("organizationId", ASCENDING), ("locationId", ASCENDING),
                                  ("fullNameLower", ASCENDING)])
            clients.create_index([("organizationId", ASCENDING), ("inactive", ASCENDING)])

            visits = self.get_collection(VISITS)
            visits.create_index([("organizationId", ASCENDING), ("clientId", ASCENDING),
                                 ("visitAt", DESCENDING)])
            visits.create_index([("organizationId", ASCENDING), ("locationId", ASCENDING),
                                 ("monthKey", ASCENDING)])
            visits.create_index([("organizationId", ASCENDING), ("locationId", ASCENDING),
                                 ("dateKey", ASCENDING)])
            visits.create_index([("organizationId", ASCENDING), ("weekKey", ASCENDING)])

            markers = self.get_collection(ELIGIBILITY_MARKERS)
            markers.create_index([("organizationId", ASCENDING), ("monthKey", ASCENDING)])
            markers.create_index([("organizationId", ASCENDING), ("clientId", ASCENDING)])

            logger.info("MongoDB indexes created successfully")

        except Exception as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise
