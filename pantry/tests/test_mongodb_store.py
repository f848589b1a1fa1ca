# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Integration tests for the MongoDB store.

Transactions need a replica set; the tests are skipped when
``MONGODB_TEST_URI`` does not point at a reachable one.
"""

import os
import threading
import pytest
from unittest.mock import Mock
from pymongo import MongoClient
from pymongo.errors import OperationFailure, PyMongoError

from pantry.domain.errors import ContentionException
from pantry.domain.ledger import VisitLedger
from pantry.services.mongodb import MongoDocumentStore, MongoTransaction
from pantry.services.store import CLIENTS, ELIGIBILITY_MARKERS, VISITS, TransactionConflict

TEST_URI = os.getenv('MONGODB_TEST_URI', 'mongodb://localhost:27017/?replicaSet=rs0')
TEST_DATABASE = 'pantry_test'


def _replica_set_available() -> bool:
    client = MongoClient(TEST_URI, serverSelectionTimeoutMS=500)
    try:
        hello = client.admin.command('hello')
        return bool(hello.get('setName'))
    except PyMongoError:
        return False
    finally:
        client.close()


requires_mongodb = pytest.mark.skipif(
    not _replica_set_available(), reason="MongoDB replica set not reachable"
)


@pytest.fixture
def mongo_store():
    """MongoDB store on a clean test database."""
    store = MongoDocumentStore(TEST_URI, TEST_DATABASE, max_attempts=20, backoff_ms=5)
    store.client.drop_database(TEST_DATABASE)
    for collection in (CLIENTS, VISITS, ELIGIBILITY_MARKERS):
        store.database.create_collection(collection)
    store.create_indexes()
    yield store
    store.client.drop_database(TEST_DATABASE)
    store.close()


class TestMongoTransactionErrors:
    """Test error classification without a server."""

    def _transaction(self):
        tx = MongoTransaction.__new__(MongoTransaction)
        tx._session = Mock()
        tx._finished = False
        return tx

    def test_transient_error_is_conflict(self):
        tx = self._transaction()
        error = OperationFailure("WriteConflict", code=112)
        error._add_error_label("TransientTransactionError")

        with pytest.raises(TransactionConflict):
            tx._raise_conflict_if_transient(error, "update")

    def test_other_errors_pass_through(self):
        tx = self._transaction()

        tx._raise_conflict_if_transient(OperationFailure("Unauthorized", code=13), "update")

    def test_abort_after_commit_is_noop(self):
        tx = self._transaction()
        tx._finished = True

        tx.abort()

        tx._session.abort_transaction.assert_not_called()


@requires_mongodb
class TestMongoDocumentStore:
    """Test the MongoDB backend against a replica set."""

    def test_health_check(self, mongo_store):
        health = mongo_store.health_check()

        assert health['status'] == 'healthy'
        assert health['backend'] == 'mongodb'
        assert health['database'] == TEST_DATABASE

    def test_insert_find_and_duplicate(self, mongo_store):
        mongo_store.insert(CLIENTS, {"organizationId": "org1", "firstName": "Jane"}, doc_id="c1")

        assert mongo_store.find_one(CLIENTS, {"_id": "c1"}) == {"id": "c1", "organizationId": "org1",
                                                               "firstName": "Jane"}
        with pytest.raises(ValueError):
            mongo_store.insert(CLIENTS, {"organizationId": "org1"}, doc_id="c1")

    def test_transaction_commit_and_dotted_increment(self, mongo_store):
        mongo_store.insert(CLIENTS, {"visitCountLifetime": 0, "visitCountByMonth": {}}, doc_id="c1")

        def unit(tx):
            tx.get(CLIENTS, "c1")
            tx.insert(VISITS, {"clientId": "c1"}, doc_id="v1")
            tx.update(CLIENTS, "c1", inc_fields={"visitCountLifetime": 1, "visitCountByMonth.2024-03": 1})

        mongo_store.run_transaction(unit)

        client = mongo_store.find_one(CLIENTS, {"_id": "c1"})
        assert client["visitCountLifetime"] == 1
        assert client["visitCountByMonth"] == {"2024-03": 1}
        assert mongo_store.count(VISITS, {"clientId": "c1"}) == 1

    def test_failed_unit_rolls_back(self, mongo_store):
        def unit(tx):
            tx.insert(VISITS, {"clientId": "c1"}, doc_id="v1")
            raise KeyError("boom")

        with pytest.raises(KeyError):
            mongo_store.run_transaction(unit)

        assert mongo_store.count(VISITS, {}) == 0

    def test_update_of_missing_document_conflicts(self, mongo_store):
        with pytest.raises(ContentionException):
            mongo_store.run_transaction(lambda tx: tx.update(CLIENTS, "ghost", {"x": 1}), max_attempts=2)

    def test_concurrent_flagged_visits(self, mongo_store, volunteer_scope, sample_intake, clock):
        ledger = VisitLedger(mongo_store, clock=clock)
        client = ledger.registry.create(volunteer_scope, sample_intake)
        workers = 6
        barrier = threading.Barrier(workers)
        results, errors = [], []

        def worker():
            barrier.wait()
            try:
                results.append(ledger.log_visit(volunteer_scope, client.id, wants_eligibility_flag=True))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert sum(1 for visit in results if visit.usda_first_time_this_month) == 1
        assert mongo_store.count(ELIGIBILITY_MARKERS, {}) == 1
        assert mongo_store.count(VISITS, {}) == workers
        assert mongo_store.find_one(CLIENTS, {"_id": client.id})["visitCountLifetime"] == workers
