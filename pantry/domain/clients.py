# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Client registry: intake, descriptive edits, lifecycle and visit counters.

Visit counters are only ever changed by ``record_visit_counters`` inside the
visit transaction, or rebuilt from the visit set by ``recount``.
"""

import re
import logging
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union
from opentelemetry import trace

from .errors import ClientNotFound, ScopeViolation, ValidationException
from .keys import full_name_lower, name_dob_hash, phone_digits, title_case_name
from .scope import ScopedTransaction, TenantScopedStore, require_capability
from ..models.base import utc_now
from ..models.entities import Client, TenantScope
from ..models.enums import Capability
from ..models.requests import IntakeRequest, UpdateClientRequest, parse_request
from ..services.store import DocumentStore, CLIENTS, VISITS

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

# Contact fields a merge may fill in on the surviving client.
MERGEABLE_FIELDS = ("phone", "dob", "address", "zip", "county")

_DESCRIPTIVE_FIELDS = {
    "first_name": "firstName",
    "last_name": "lastName",
    "phone": "phone",
    "dob": "dob",
    "address": "address",
    "zip": "zip",
    "county": "county",
    "household_size": "householdSize",
}


class ClientRegistry:
    """Creates and maintains client records within a tenant scope."""

    def __init__(self, store: DocumentStore, clock: Callable[[], datetime] = utc_now):
        self._store = store
        self._clock = clock

    def _scoped(self, scope: TenantScope) -> TenantScopedStore:
        return TenantScopedStore(self._store, scope)

    def _read_client(self, tx: ScopedTransaction, client_id: str) -> Dict[str, Any]:
        document = tx.get(CLIENTS, client_id)
        if document is None:
            raise ClientNotFound(client_id)
        return document

    def create(self, scope: TenantScope, payload: Union[IntakeRequest, Dict[str, Any]]) -> Client:
        """
        Register a new client in the caller's scope.

        Names are title-cased and the dedupe keys are computed here. Org-wide
        callers may pick a location (or none); location-scoped callers always
        create at their own location.

        Raises:
            ValidationException: on missing names/county or a malformed ZIP
            ScopeViolation: when a location-scoped caller targets another location
        """
        request = parse_request(IntakeRequest, payload)
        store = self._scoped(scope)

        if scope.is_all_locations:
            location_id = request.location_id
        else:
            if request.location_id and request.location_id != scope.location_id:
                raise ScopeViolation(
                    f"Cannot create client at location {request.location_id} from scope {scope.location_id}"
                )
            location_id = scope.location_id

        first_name = title_case_name(request.first_name)
        last_name = title_case_name(request.last_name)
        client = Client(
            organization_id=scope.organization_id,
            location_id=location_id,
            first_name=first_name,
            last_name=last_name,
            full_name_lower=full_name_lower(first_name, last_name),
            phone=request.phone,
            phone_digits=phone_digits(request.phone),
            dob=request.dob,
            address=request.address,
            zip=request.zip,
            county=request.county,
            household_size=request.household_size,
            name_dob_hash=name_dob_hash(first_name, last_name, request.dob),
            created_at=self._clock(),
            created_by_user_id=scope.user_id
        )

        with tracer.start_as_current_span("clients.create") as span:
            span.set_attribute("organization.id", scope.organization_id)
            store.insert(CLIENTS, client.to_document(), doc_id=client.id)
            span.set_attribute("client.id", client.id)

        logger.info(
            "Client created",
            extra={
                "organization_id": scope.organization_id,
                "location_id": location_id,
                "client_id": client.id,
                "user_id": scope.user_id
            }
        )
        return client

    def get(self, scope: TenantScope, client_id: str) -> Client:
        """
        Raises:
            ClientNotFound: when the client is absent or outside scope
        """
        document = self._scoped(scope).find_one(CLIENTS, {"_id": client_id})
        if document is None:
            raise ClientNotFound(client_id)
        return Client.from_document(document)

    def list_clients(self, scope: TenantScope, search: str = "", include_inactive: bool = False,
                     limit: int = 50) -> List[Client]:
        """
        Search clients for intake and the client list.

        Text with letters matches the start of the first or last name; text
        with only digits and phone punctuation matches phone digits.
        Deactivated and merged clients are hidden unless ``include_inactive``.
        """
        query: Dict[str, Any] = {}
        if not include_inactive:
            query["inactive"] = {"$ne": True}
            query["mergedIntoId"] = None

        term = (search or "").strip().lower()
        if term:
            if any(ch.isalpha() for ch in term):
                query["fullNameLower"] = {"$regex": r"(^|\s)" + re.escape(term)}
            else:
                digits = phone_digits(term)
                if digits:
                    query["phoneDigits"] = {"$regex": re.escape(digits)}

        documents = self._scoped(scope).find(
            CLIENTS, query, sort=[("lastName", 1), ("firstName", 1)], limit=limit
        )
        return [Client.from_document(doc) for doc in documents]

    def update(self, scope: TenantScope, client_id: str,
               payload: Union[UpdateClientRequest, Dict[str, Any]]) -> Client:
        """
        Edit descriptive fields; organization, location and counters are kept.

        Raises:
            ValidationException: when nothing valid was supplied
            ClientNotFound: when the client is absent
        """
        request = parse_request(UpdateClientRequest, payload)
        changes = request.model_dump(exclude_none=True)
        if not changes:
            raise ValidationException("No fields to update", [])

        def unit(tx: ScopedTransaction) -> Client:
            document = self._read_client(tx, client_id)
            set_fields = {_DESCRIPTIVE_FIELDS[name]: value for name, value in changes.items()}
            if "firstName" in set_fields:
                set_fields["firstName"] = title_case_name(set_fields["firstName"])
            if "lastName" in set_fields:
                set_fields["lastName"] = title_case_name(set_fields["lastName"])

            merged = dict(document, **set_fields)
            set_fields["fullNameLower"] = full_name_lower(merged["firstName"], merged["lastName"])
            set_fields["phoneDigits"] = phone_digits(merged.get("phone"))
            set_fields["nameDobHash"] = name_dob_hash(merged["firstName"], merged["lastName"], merged.get("dob"))
            set_fields["updatedAt"] = self._clock()
            set_fields["updatedByUserId"] = scope.user_id

            tx.update(CLIENTS, client_id, set_fields)
            return Client.from_document(dict(document, **set_fields))

        client = self._scoped(scope).run_transaction(unit, operation="update_client")
        logger.info("Client updated", extra={"client_id": client_id, "fields": sorted(changes)})
        return client

    def record_visit_counters(self, tx: ScopedTransaction, client_id: str, month_key: str,
                              visit_at: datetime) -> None:
        """
        Count one more visit on the client.

        Only valid inside the transaction that writes the visit, after the
        client has been read in that transaction.
        """
        tx.update(
            CLIENTS,
            client_id,
            set_fields={"lastVisitAt": visit_at, "lastVisitMonthKey": month_key},
            inc_fields={"visitCountLifetime": 1, f"visitCountByMonth.{month_key}": 1}
        )

    def _set_lifecycle(self, scope: TenantScope, client_id: str, operation: str,
                       build: Callable[[Dict[str, Any], datetime], Dict[str, Any]]) -> Client:
        def unit(tx: ScopedTransaction) -> Client:
            document = self._read_client(tx, client_id)
            now = self._clock()
            set_fields = build(document, now)
            set_fields["updatedAt"] = now
            set_fields["updatedByUserId"] = scope.user_id
            tx.update(CLIENTS, client_id, set_fields)
            return Client.from_document(dict(document, **set_fields))

        with tracer.start_as_current_span(f"clients.{operation}") as span:
            span.set_attribute("organization.id", scope.organization_id)
            span.set_attribute("client.id", client_id)
            client = self._scoped(scope).run_transaction(unit, operation=operation)

        logger.info(
            f"Client {operation} completed",
            extra={"client_id": client_id, "user_id": scope.user_id}
        )
        return client

    def deactivate(self, scope: TenantScope, client_id: str) -> Client:
        """Hide a client from intake search; history and counters are kept."""
        return self._set_lifecycle(
            scope, client_id, "deactivate",
            lambda document, now: {"inactive": True, "deactivatedAt": now, "deactivatedBy": scope.user_id}
        )

    def reactivate(self, scope: TenantScope, client_id: str) -> Client:
        return self._set_lifecycle(
            scope, client_id, "reactivate",
            lambda document, now: {"inactive": False, "reactivatedAt": now, "reactivatedBy": scope.user_id}
        )

    def merge_into(self, scope: TenantScope, source_id: str, target_id: str) -> Client:
        """
        Fill blank contact fields on ``target_id`` from ``source_id``.

        Populated target fields are never overwritten, visits are not moved,
        and the source is left untouched; call ``mark_merged`` afterwards.

        Raises:
            AuthorizationException: without the mergeClients capability
            ValidationException: when merging a client into itself or into a
                client that was itself merged away
        """
        require_capability(scope, Capability.MERGE_CLIENTS)
        if source_id == target_id:
            raise ValidationException(
                "Cannot merge a client into itself",
                [{"field": "targetId", "message": "Choose a different client", "type": "value_error",
                  "input": target_id}]
            )

        def unit(tx: ScopedTransaction) -> Client:
            source = self._read_client(tx, source_id)
            target = self._read_client(tx, target_id)
            if target.get("mergedIntoId"):
                raise ValidationException(
                    f"Client {target_id} was merged into {target['mergedIntoId']}",
                    [{"field": "targetId", "message": "Target was already merged", "type": "value_error",
                      "input": target_id}]
                )

            set_fields = {
                field: source[field]
                for field in MERGEABLE_FIELDS
                if not (target.get(field) or "").strip() and (source.get(field) or "").strip()
            }
            if not set_fields:
                return Client.from_document(target)

            if "phone" in set_fields:
                set_fields["phoneDigits"] = phone_digits(set_fields["phone"])
            if "dob" in set_fields:
                set_fields["nameDobHash"] = name_dob_hash(target["firstName"], target["lastName"], set_fields["dob"])
            set_fields["updatedAt"] = self._clock()
            set_fields["updatedByUserId"] = scope.user_id

            tx.update(CLIENTS, target_id, set_fields)
            return Client.from_document(dict(target, **set_fields))

        with tracer.start_as_current_span("clients.merge_into") as span:
            span.set_attribute("organization.id", scope.organization_id)
            span.set_attribute("client.id", target_id)
            client = self._scoped(scope).run_transaction(unit, operation="merge_clients")

        logger.info(
            "Clients merged",
            extra={"source_id": source_id, "target_id": target_id, "user_id": scope.user_id}
        )
        return client

    def mark_merged(self, scope: TenantScope, source_id: str, target_id: str) -> Client:
        """Flag the source of a merge as superseded and inactive."""
        require_capability(scope, Capability.MERGE_CLIENTS)

        def unit(tx: ScopedTransaction) -> Client:
            source = self._read_client(tx, source_id)
            self._read_client(tx, target_id)
            now = self._clock()
            set_fields = {
                "mergedIntoId": target_id,
                "inactive": True,
                "deactivatedAt": now,
                "deactivatedBy": scope.user_id,
                "updatedAt": now,
                "updatedByUserId": scope.user_id
            }
            tx.update(CLIENTS, source_id, set_fields)
            return Client.from_document(dict(source, **set_fields))

        return self._scoped(scope).run_transaction(unit, operation="mark_merged")

    def recount(self, scope: TenantScope, client_id: str) -> Client:
        """
        Rebuild a client's visit counters from its visits.

        The client is read first inside the transaction, so a visit logged
        while the visits are being counted makes the commit conflict and the
        count is redone.

        Raises:
            AuthorizationException: without the recountClients capability
            ScopeViolation: unless the scope covers all locations
        """
        require_capability(scope, Capability.RECOUNT_CLIENTS)
        if not scope.is_all_locations:
            raise ScopeViolation("Recount needs organization-wide scope to see every visit")
        store = self._scoped(scope)

        def unit(tx: ScopedTransaction) -> Client:
            document = self._read_client(tx, client_id)
            visits = store.find(VISITS, {"clientId": client_id})

            by_month = Counter(visit["monthKey"] for visit in visits)
            latest = max(visits, key=lambda visit: visit["visitAt"], default=None)
            set_fields = {
                "visitCountLifetime": len(visits),
                "visitCountByMonth": dict(by_month),
                "lastVisitAt": latest["visitAt"] if latest else None,
                "lastVisitMonthKey": latest["monthKey"] if latest else None,
            }
            tx.update(CLIENTS, client_id, set_fields)

            if document.get("visitCountLifetime", 0) != len(visits):
                logger.warning(
                    "Client counters drifted",
                    extra={
                        "client_id": client_id,
                        "stored": document.get("visitCountLifetime", 0),
                        "actual": len(visits)
                    }
                )
            return Client.from_document(dict(document, **set_fields))

        return store.run_transaction(unit, operation="recount_client")
