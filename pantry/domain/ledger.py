# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Visit ledger: the transactional coordinator for visit recording.

One visit transaction re-reads the client, optionally claims the month's
eligibility marker, writes the visit with its client snapshot and bumps the
client's counters. Either all of it commits or none of it does; on
conflict the whole unit is retried under the store's retry budget.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Union
from opentelemetry import trace

from .clients import ClientRegistry
from .dedupe import DedupeIndex
from .eligibility import EligibilityMarkerStore
from .errors import ClientInactive, ClientNotFound, MissingScope, ValidationException, VisitNotFound
from .keys import (
    clamp_household_size, name_dob_hash, pantry_now, phone_digits,
    resolve_visit_time, visit_keys
)
from .scope import ScopedTransaction, TenantScopedStore, authorize_scope
from ..models.base import generate_object_id
from ..models.entities import Client, TenantScope, Visit
from ..models.requests import EditVisitRequest, IntakeRequest, parse_request
from ..services.store import DocumentStore, CLIENTS, VISITS

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

_EDITABLE_SNAPSHOT_FIELDS = {
    "household_size": "householdSize",
    "county": "clientCounty",
    "zip": "clientZip",
}


@dataclass
class IntakeResult:
    """Outcome of an intake submission.

    When ``dedupe_match`` is set nothing was created and the caller must
    choose: log against the match, force-create, or merge later.
    """
    client: Optional[Client] = None
    dedupe_match: Optional[Client] = None
    visit: Optional[Visit] = None


def require_visit_location(scope: TenantScope) -> None:
    """
    Visits are attributed to one physical location.

    Raises:
        ScopeViolation: for an invalid scope
        MissingScope: when the scope has no concrete location
    """
    authorize_scope(scope)
    if not scope.has_concrete_location:
        raise MissingScope(
            f"Logging a visit needs a concrete location, scope has {scope.location_id!r}"
        )


class VisitLedger:
    """Append-only visit records kept consistent with counters and markers."""

    def __init__(self, store: DocumentStore, registry: Optional[ClientRegistry] = None,
                 markers: Optional[EligibilityMarkerStore] = None, dedupe: Optional[DedupeIndex] = None,
                 clock: Callable[[], datetime] = pantry_now):
        self._store = store
        self._clock = clock
        self.registry = registry or ClientRegistry(store, clock)
        self.markers = markers or EligibilityMarkerStore(store)
        self.dedupe = dedupe or DedupeIndex(store)

    def log_visit(self, scope: TenantScope, client_ref: Union[str, Client],
                  visit_date: Optional[Union[str, date, datetime]] = None,
                  household_size: Optional[Any] = None,
                  wants_eligibility_flag: bool = False) -> Visit:
        """
        Record one visit for an existing client.

        The client may belong to any location of the caller's organization;
        the visit is recorded at the caller's location.

        Args:
            scope: Caller scope with a concrete location
            client_ref: Client id or client entity
            visit_date: Visit day; missing or malformed means now
            household_size: Clamped to [1, 20]; defaults to the client's
            wants_eligibility_flag: Try to claim the month's first-visit marker

        Raises:
            MissingScope: when the scope has no concrete location
            ClientNotFound: when the client does not exist
            CrossTenant: when the client belongs to another organization
            ClientInactive: when the client is deactivated
            ContentionException: when the retry budget is exhausted
        """
        require_visit_location(scope)
        client_id = client_ref.id if isinstance(client_ref, Client) else client_ref
        visit_at = resolve_visit_time(visit_date, self._clock)
        keys = visit_keys(visit_at)

        def unit(tx: ScopedTransaction) -> Visit:
            document = tx.get_in_organization(CLIENTS, client_id)
            if document is None:
                raise ClientNotFound(client_id)
            if document.get("inactive"):
                raise ClientInactive(client_id)

            size = clamp_household_size(
                household_size if household_size is not None else document.get("householdSize")
            )
            now = self._clock()
            visit_id = generate_object_id()

            first_time = False
            if wants_eligibility_flag:
                first_time = self.markers.ensure_marker_once(
                    tx,
                    scope.organization_id,
                    client_id,
                    keys["month_key"],
                    visit_id=visit_id,
                    client_first_name=document.get("firstName", ""),
                    client_last_name=document.get("lastName", ""),
                    created_at=now
                )

            visit = Visit(
                id=visit_id,
                organization_id=scope.organization_id,
                location_id=scope.location_id,
                client_id=client_id,
                client_first_name=document.get("firstName", ""),
                client_last_name=document.get("lastName", ""),
                client_address=document.get("address") or "",
                client_zip=document.get("zip") or "",
                client_county=document.get("county") or "",
                household_size=size,
                visit_at=visit_at,
                usda_first_time_this_month=first_time,
                created_at=now,
                created_by_user_id=scope.user_id,
                **keys
            )
            tx.insert(VISITS, visit.to_document(), doc_id=visit_id)
            self.registry.record_visit_counters(tx, client_id, keys["month_key"], visit_at)
            return visit

        with tracer.start_as_current_span("ledger.log_visit") as span:
            span.set_attribute("organization.id", scope.organization_id)
            span.set_attribute("client.id", client_id)
            span.set_attribute("visit.month_key", keys["month_key"])

            visit = TenantScopedStore(self._store, scope).run_transaction(unit, operation="log_visit")
            span.set_attribute("visit.usda_first_time", visit.usda_first_time_this_month)

        logger.info(
            "Visit logged",
            extra={
                "organization_id": scope.organization_id,
                "location_id": scope.location_id,
                "client_id": client_id,
                "visit_id": visit.id,
                "month_key": visit.month_key,
                "usda_first_time": visit.usda_first_time_this_month
            }
        )
        return visit

    def create_client_and_log_visit(self, scope: TenantScope,
                                    intake_payload: Union[IntakeRequest, Dict[str, Any]],
                                    wants_eligibility_flag: bool = False,
                                    force_create: bool = False,
                                    log_visit: bool = True,
                                    visit_date: Optional[Union[str, date, datetime]] = None) -> IntakeResult:
        """
        Intake fast path: dedupe, create, then log the first visit.

        Dedupe runs outside the visit transaction. A match is returned
        without creating anything unless ``force_create`` is set. Creating
        the client and logging the visit are two separate steps.

        Raises:
            ValidationException: on invalid intake fields
            MissingScope: when a visit is requested without a concrete location
            DedupeUnavailable: when the duplicate lookup fails
        """
        request = parse_request(IntakeRequest, intake_payload)
        if log_visit:
            require_visit_location(scope)
        else:
            authorize_scope(scope)

        if not force_create:
            match = self.dedupe.find_existing(
                scope,
                phone_digits(request.phone),
                name_dob_hash(request.first_name, request.last_name, request.dob)
            )
            if match is not None:
                logger.info(
                    "Possible duplicate found at intake",
                    extra={"organization_id": scope.organization_id, "match_id": match.id}
                )
                return IntakeResult(dedupe_match=match)

        client = self.registry.create(scope, request)
        if not log_visit:
            return IntakeResult(client=client)

        visit = self.log_visit(
            scope, client.id, visit_date, request.household_size, wants_eligibility_flag
        )
        return IntakeResult(client=self.registry.get(scope, client.id), visit=visit)

    def get_visit(self, scope: TenantScope, visit_id: str) -> Visit:
        """
        Raises:
            VisitNotFound: when the visit is absent or outside scope
        """
        document = TenantScopedStore(self._store, scope).find_one(VISITS, {"_id": visit_id})
        if document is None:
            raise VisitNotFound(visit_id)
        return Visit.from_document(document)

    def list_visits(self, scope: TenantScope, client_id: Optional[str] = None,
                    month_key: Optional[str] = None, date_key: Optional[str] = None,
                    limit: int = 100) -> List[Visit]:
        """Visit history within scope, newest first."""
        query: Dict[str, Any] = {}
        if client_id:
            query["clientId"] = client_id
        if month_key:
            query["monthKey"] = month_key
        if date_key:
            query["dateKey"] = date_key

        documents = TenantScopedStore(self._store, scope).find(
            VISITS, query, sort=[("visitAt", -1)], limit=limit
        )
        return [Visit.from_document(doc) for doc in documents]

    def edit_visit(self, scope: TenantScope, visit_id: str,
                   payload: Union[EditVisitRequest, Dict[str, Any]]) -> Visit:
        """
        Correct a visit's snapshot fields.

        Only household size, county and ZIP may change. The eligibility flag
        is not editable because the marker document is its source of truth,
        and counters are untouched because the visit still exists.

        Raises:
            ValidationException: when no editable field was supplied
            VisitNotFound: when the visit is absent
        """
        request = parse_request(EditVisitRequest, payload)
        changes = request.model_dump(exclude_none=True)
        if not changes:
            raise ValidationException("No editable visit fields supplied", [])

        def unit(tx: ScopedTransaction) -> Visit:
            document = tx.get(VISITS, visit_id)
            if document is None:
                raise VisitNotFound(visit_id)
            set_fields = {_EDITABLE_SNAPSHOT_FIELDS[name]: value for name, value in changes.items()}
            set_fields["editedAt"] = self._clock()
            set_fields["editedByUserId"] = scope.user_id
            tx.update(VISITS, visit_id, set_fields)
            return Visit.from_document(dict(document, **set_fields))

        visit = TenantScopedStore(self._store, scope).run_transaction(unit, operation="edit_visit")
        logger.info(
            "Visit edited",
            extra={"visit_id": visit_id, "fields": sorted(changes), "user_id": scope.user_id}
        )
        return visit
