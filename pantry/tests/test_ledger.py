# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the visit ledger.
"""

import threading
import pytest
from datetime import datetime, timezone

from pantry.domain.errors import (
    ClientInactive, ClientNotFound, ContentionException, CrossTenant, MissingScope,
    ValidationException, VisitNotFound
)
from pantry.domain.ledger import VisitLedger
from pantry.domain.eligibility import marker_id
from pantry.services.memory import MemoryDocumentStore
from pantry.services.store import CLIENTS, ELIGIBILITY_MARKERS, VISITS, TransactionConflict

from .conftest import FIXED_NOW, LOCATION_ID, ORG_ID, OTHER_LOCATION_ID


class ConflictingStore(MemoryDocumentStore):
    """Memory store that fails a set number of commits with a conflict."""

    def __init__(self, failures=0, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.commit_calls = 0

    def _commit(self, reads, writes):
        self.commit_calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise TransactionConflict("injected conflict")
        super()._commit(reads, writes)


def _client_document(store, client_id):
    return store.find_one(CLIENTS, {"_id": client_id})


class TestLogVisit:
    """Test visit recording."""

    def test_log_visit_writes_snapshot_and_keys(self, store, registry, ledger, volunteer_scope, sample_intake):
        client = registry.create(volunteer_scope, sample_intake)

        visit = ledger.log_visit(volunteer_scope, client.id)

        assert visit.client_id == client.id
        assert visit.organization_id == ORG_ID
        assert visit.location_id == LOCATION_ID
        assert visit.client_first_name == "Jane"
        assert visit.client_last_name == "Doe"
        assert visit.client_address == "12 Elm St"
        assert visit.client_zip == "12345"
        assert visit.client_county == "Riverside"
        assert visit.household_size == 3
        assert visit.visit_at == FIXED_NOW
        assert visit.month_key == "2024-03"
        assert visit.date_key == "2024-03-15"
        assert visit.week_key == "2024-W11"
        assert visit.weekday == 5
        assert visit.usda_first_time_this_month is False
        assert visit.created_by_user_id == "user_volunteer"
        assert store.find_one(VISITS, {"_id": visit.id})["clientId"] == client.id

    def test_log_visit_updates_counters(self, store, registry, ledger, volunteer_scope, sample_intake):
        client = registry.create(volunteer_scope, sample_intake)

        ledger.log_visit(volunteer_scope, client.id)
        ledger.log_visit(volunteer_scope, client.id, visit_date="2024-02-10")

        stored = _client_document(store, client.id)
        assert stored["visitCountLifetime"] == 2
        assert stored["visitCountByMonth"] == {"2024-03": 1, "2024-02": 1}
        assert stored["lastVisitMonthKey"] == "2024-02"

    def test_log_visit_accepts_client_entity(self, registry, ledger, volunteer_scope, sample_intake):
        client = registry.create(volunteer_scope, sample_intake)

        assert ledger.log_visit(volunteer_scope, client).client_id == client.id

    @pytest.mark.parametrize("requested,stored", [(0, 1), (25, 20), (6, 6), ("junk", 1)])
    def test_household_size_is_clamped(self, registry, ledger, volunteer_scope, sample_intake,
                                       requested, stored):
        client = registry.create(volunteer_scope, sample_intake)

        assert ledger.log_visit(volunteer_scope, client.id, household_size=requested).household_size == stored

    def test_malformed_visit_date_means_today(self, registry, ledger, volunteer_scope, sample_intake):
        client = registry.create(volunteer_scope, sample_intake)

        visit = ledger.log_visit(volunteer_scope, client.id, visit_date="not-a-date")

        assert visit.date_key == "2024-03-15"

    def test_missing_client(self, ledger, volunteer_scope):
        with pytest.raises(ClientNotFound):
            ledger.log_visit(volunteer_scope, "missing")

    def test_inactive_client_rejected(self, store, registry, ledger, admin_scope, sample_intake):
        client = registry.create(admin_scope, sample_intake)
        registry.deactivate(admin_scope, client.id)

        with pytest.raises(ClientInactive):
            ledger.log_visit(admin_scope, client.id)

        assert store.count(VISITS, {}) == 0
        assert _client_document(store, client.id)["visitCountLifetime"] == 0

    def test_org_wide_scope_needs_concrete_location(self, registry, ledger, admin_all_scope, sample_intake):
        client = registry.create(admin_all_scope, sample_intake)

        with pytest.raises(MissingScope):
            ledger.log_visit(admin_all_scope, client.id)

    def test_cross_tenant_client_rejected(self, store, registry, ledger, volunteer_scope, other_org_scope,
                                          sample_intake):
        client = registry.create(other_org_scope, sample_intake)

        with pytest.raises(CrossTenant):
            ledger.log_visit(volunteer_scope, client.id)

        assert store.count(VISITS, {}) == 0

    def test_client_from_other_location_visits_here(self, store, registry, ledger, volunteer_scope,
                                                    east_volunteer_scope, sample_intake):
        client = registry.create(east_volunteer_scope, sample_intake)

        visit = ledger.log_visit(volunteer_scope, client.id, wants_eligibility_flag=True)

        stored = _client_document(store, client.id)
        assert visit.location_id == LOCATION_ID
        assert visit.usda_first_time_this_month is True
        assert stored["locationId"] == OTHER_LOCATION_ID
        assert stored["visitCountLifetime"] == 1
        marker = store.find_one(ELIGIBILITY_MARKERS, {"_id": marker_id(ORG_ID, client.id, "2024-03")})
        assert marker["locationId"] == LOCATION_ID

    def test_marker_from_other_location_counts_for_the_month(self, store, registry, ledger, volunteer_scope,
                                                             east_volunteer_scope, sample_intake):
        client = registry.create(east_volunteer_scope, sample_intake)
        ledger.log_visit(east_volunteer_scope, client.id, wants_eligibility_flag=True)

        visit = ledger.log_visit(volunteer_scope, client.id, wants_eligibility_flag=True)

        assert visit.usda_first_time_this_month is False
        assert store.count(ELIGIBILITY_MARKERS, {}) == 1
        assert _client_document(store, client.id)["visitCountByMonth"] == {"2024-03": 2}

    def test_client_without_location_gets_visits(self, store, registry, ledger, admin_all_scope, admin_scope,
                                                 volunteer_scope, sample_intake):
        client = registry.create(admin_all_scope, sample_intake)
        assert client.location_id is None

        ledger.log_visit(admin_scope, client.id)
        ledger.log_visit(volunteer_scope, client.id, wants_eligibility_flag=True)

        stored = _client_document(store, client.id)
        assert stored["locationId"] is None
        assert stored["visitCountLifetime"] == 2
        assert store.count(VISITS, {"clientId": client.id, "locationId": LOCATION_ID}) == 2


class TestEligibilityFlag:
    """Test the first-visit-of-month flag."""

    def test_first_flagged_visit_creates_marker(self, store, registry, ledger, volunteer_scope,
                                                sample_intake):
        client = registry.create(volunteer_scope, sample_intake)

        first = ledger.log_visit(volunteer_scope, client.id, wants_eligibility_flag=True)
        second = ledger.log_visit(volunteer_scope, client.id, wants_eligibility_flag=True)

        assert first.usda_first_time_this_month is True
        assert second.usda_first_time_this_month is False
        marker = store.find_one(ELIGIBILITY_MARKERS, {"_id": marker_id(ORG_ID, client.id, "2024-03")})
        assert marker["visitId"] == first.id
        assert _client_document(store, client.id)["visitCountLifetime"] == 2

    def test_unflagged_visit_leaves_marker_free(self, store, registry, ledger, volunteer_scope,
                                                sample_intake):
        client = registry.create(volunteer_scope, sample_intake)

        ledger.log_visit(volunteer_scope, client.id)
        flagged = ledger.log_visit(volunteer_scope, client.id, wants_eligibility_flag=True)

        assert flagged.usda_first_time_this_month is True

    def test_new_month_gets_new_marker(self, store, registry, ledger, volunteer_scope, sample_intake):
        client = registry.create(volunteer_scope, sample_intake)

        march = ledger.log_visit(volunteer_scope, client.id, wants_eligibility_flag=True)
        february = ledger.log_visit(volunteer_scope, client.id, visit_date="2024-02-20",
                                    wants_eligibility_flag=True)

        assert march.usda_first_time_this_month is True
        assert february.usda_first_time_this_month is True
        assert store.count(ELIGIBILITY_MARKERS, {}) == 2


class TestConflictsAndRetries:
    """Test atomicity under injected conflicts and real concurrency."""

    def _setup(self, store, clock, scope, intake):
        ledger = VisitLedger(store, clock=clock)
        client = ledger.registry.create(scope, intake)
        return ledger, client

    def test_conflicted_attempts_leave_no_partial_writes(self, clock, volunteer_scope, sample_intake):
        store = ConflictingStore(max_attempts=5, backoff_ms=0)
        ledger, client = self._setup(store, clock, volunteer_scope, sample_intake)
        store.failures = 3
        store.commit_calls = 0

        visit = ledger.log_visit(volunteer_scope, client.id, wants_eligibility_flag=True)

        assert store.commit_calls == 4
        assert store.count(VISITS, {}) == 1
        assert store.count(ELIGIBILITY_MARKERS, {}) == 1
        assert visit.usda_first_time_this_month is True
        assert store.find_one(VISITS, {})["id"] == visit.id
        assert _client_document(store, client.id)["visitCountLifetime"] == 1

    def test_exhausted_retries_raise_contention(self, clock, volunteer_scope, sample_intake):
        store = ConflictingStore(max_attempts=3, backoff_ms=0)
        ledger, client = self._setup(store, clock, volunteer_scope, sample_intake)
        store.failures = 100

        with pytest.raises(ContentionException) as exc_info:
            ledger.log_visit(volunteer_scope, client.id, wants_eligibility_flag=True)

        assert exc_info.value.attempts == 3
        assert store.count(VISITS, {}) == 0
        assert store.count(ELIGIBILITY_MARKERS, {}) == 0
        assert _client_document(store, client.id)["visitCountLifetime"] == 0

    def test_concurrent_flagged_visits(self, clock, volunteer_scope, sample_intake):
        store = MemoryDocumentStore(max_attempts=50, backoff_ms=1)
        ledger, client = self._setup(store, clock, volunteer_scope, sample_intake)
        workers = 8
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
        assert len(results) == workers
        assert sum(1 for visit in results if visit.usda_first_time_this_month) == 1
        assert store.count(ELIGIBILITY_MARKERS, {}) == 1
        assert store.count(VISITS, {}) == workers
        stored = _client_document(store, client.id)
        assert stored["visitCountLifetime"] == workers
        assert stored["visitCountByMonth"] == {"2024-03": workers}


class TestIntake:
    """Test the intake fast path."""

    def test_intake_creates_client_and_visit(self, store, ledger, volunteer_scope, sample_intake):
        result = ledger.create_client_and_log_visit(volunteer_scope, sample_intake, wants_eligibility_flag=True)

        assert result.dedupe_match is None
        assert result.client.visit_count_lifetime == 1
        assert result.client.visit_count_by_month == {"2024-03": 1}
        assert result.visit.client_id == result.client.id
        assert result.visit.usda_first_time_this_month is True

    def test_intake_returns_dedupe_match(self, store, ledger, volunteer_scope, sample_intake):
        first = ledger.create_client_and_log_visit(volunteer_scope, sample_intake)

        again = ledger.create_client_and_log_visit(volunteer_scope, dict(sample_intake, firstName="Janet"))

        assert again.dedupe_match.id == first.client.id
        assert again.client is None
        assert again.visit is None
        assert store.count(CLIENTS, {}) == 1
        assert store.count(VISITS, {}) == 1

    def test_force_create_skips_dedupe(self, store, ledger, volunteer_scope, sample_intake):
        ledger.create_client_and_log_visit(volunteer_scope, sample_intake)

        forced = ledger.create_client_and_log_visit(volunteer_scope, sample_intake, force_create=True)

        assert forced.client is not None
        assert store.count(CLIENTS, {}) == 2

    def test_intake_without_visit(self, store, ledger, admin_all_scope, sample_intake):
        result = ledger.create_client_and_log_visit(admin_all_scope, sample_intake, log_visit=False)

        assert result.visit is None
        assert result.client.visit_count_lifetime == 0
        assert store.count(VISITS, {}) == 0

    def test_intake_with_visit_needs_location(self, store, ledger, admin_all_scope, sample_intake):
        with pytest.raises(MissingScope):
            ledger.create_client_and_log_visit(admin_all_scope, sample_intake)

        assert store.count(CLIENTS, {}) == 0

    def test_intake_validation(self, store, ledger, volunteer_scope):
        with pytest.raises(ValidationException):
            ledger.create_client_and_log_visit(volunteer_scope, {"firstName": "Jane"})

        assert store.count(CLIENTS, {}) == 0


class TestVisitQueries:
    """Test visit lookup, history and snapshot edits."""

    def test_list_visits_newest_first(self, registry, ledger, volunteer_scope, sample_intake):
        client = registry.create(volunteer_scope, sample_intake)
        ledger.log_visit(volunteer_scope, client.id, visit_date="2024-01-05")
        ledger.log_visit(volunteer_scope, client.id, visit_date="2024-03-01")
        ledger.log_visit(volunteer_scope, client.id, visit_date="2024-02-01")

        visits = ledger.list_visits(volunteer_scope, client_id=client.id)

        assert [v.date_key for v in visits] == ["2024-03-01", "2024-02-01", "2024-01-05"]
        assert [v.date_key for v in ledger.list_visits(volunteer_scope, month_key="2024-02")] == ["2024-02-01"]
        assert [v.date_key for v in ledger.list_visits(volunteer_scope, date_key="2024-01-05")] == ["2024-01-05"]

    def test_visit_history_hidden_from_other_tenant(self, registry, ledger, volunteer_scope, other_org_scope,
                                                    sample_intake):
        client = registry.create(volunteer_scope, sample_intake)
        visit = ledger.log_visit(volunteer_scope, client.id)

        assert ledger.list_visits(other_org_scope) == []
        with pytest.raises(VisitNotFound):
            ledger.get_visit(other_org_scope, visit.id)

    def test_edit_visit_snapshot(self, store, registry, ledger, admin_scope, sample_intake):
        client = registry.create(admin_scope, sample_intake)
        visit = ledger.log_visit(admin_scope, client.id, wants_eligibility_flag=True)

        edited = ledger.edit_visit(admin_scope, visit.id, {"householdSize": 5, "county": "Hillcrest", "zip": "54321"})

        assert edited.household_size == 5
        assert edited.client_county == "Hillcrest"
        assert edited.client_zip == "54321"
        assert edited.edited_by_user_id == "user_admin"
        assert edited.edited_at == FIXED_NOW
        assert edited.usda_first_time_this_month is True
        assert ledger.get_visit(admin_scope, visit.id).household_size == 5
        assert _client_document(store, client.id)["visitCountLifetime"] == 1

    def test_edit_visit_cannot_set_eligibility_flag(self, registry, ledger, admin_scope, sample_intake):
        client = registry.create(admin_scope, sample_intake)
        visit = ledger.log_visit(admin_scope, client.id)

        with pytest.raises(ValidationException):
            ledger.edit_visit(admin_scope, visit.id, {"usdaFirstTimeThisMonth": True})

    def test_edit_missing_visit(self, ledger, admin_scope):
        with pytest.raises(VisitNotFound):
            ledger.edit_visit(admin_scope, "missing", {"householdSize": 2})
