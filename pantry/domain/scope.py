# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tenant scope guard.

Pure predicates decide whether a scope may read or write a given
(organization, location) pair. ``TenantScopedStore`` applies them to every
query, insert and transactional read, and is the only way domain code
reaches the document store.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar
from opentelemetry import trace

from .errors import AuthorizationException, CrossTenant, ScopeViolation
from ..models.entities import TenantScope
from ..models.enums import ALL_LOCATIONS, Capability
from ..services.store import DocumentStore, Transaction, SortSpec

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

T = TypeVar('T')

_SCOPE_FIELDS = ("organizationId", "locationId")


def authorize_scope(scope: TenantScope) -> None:
    """
    Validate a scope before it is used for any query.

    Raises:
        ScopeViolation: when the organization is missing, or "ALL" is
            claimed by a role without org-wide location access
    """
    if scope is None or not scope.organization_id:
        raise ScopeViolation("Scope has no organization")
    if scope.location_id == ALL_LOCATIONS and not scope.has_capability(Capability.ALL_LOCATIONS):
        raise ScopeViolation(
            f"Role {scope.role} may not use organization-wide location scope"
        )


def check_write(scope: TenantScope, organization_id: Optional[str], location_id: Optional[str]) -> None:
    """
    Reject writes outside the caller's (organization, location).

    Raises:
        ScopeViolation: on organization mismatch, or location mismatch for a
            location-scoped caller
    """
    authorize_scope(scope)
    if organization_id != scope.organization_id:
        raise ScopeViolation(
            f"Write targets organization {organization_id}, scope is {scope.organization_id}"
        )
    if scope.is_all_locations:
        return
    if location_id != scope.location_id:
        raise ScopeViolation(
            f"Write targets location {location_id}, scope is {scope.location_id}"
        )


def read_filter(scope: TenantScope, organization_wide: bool = False) -> Dict[str, Any]:
    """
    Mandatory filter for every read issued under ``scope``.

    ``organization_wide`` drops the location filter for lookups that span
    the tenant's locations (duplicate checks); the organization filter is
    always present.
    """
    authorize_scope(scope)
    query = {"organizationId": scope.organization_id}
    if not scope.is_all_locations and not organization_wide:
        query["locationId"] = scope.location_id
    return query


def check_organization(scope: TenantScope, document: Dict[str, Any]) -> None:
    """
    Raises:
        CrossTenant: when the document belongs to another organization
    """
    if document.get("organizationId") != scope.organization_id:
        raise CrossTenant(document.get("id", "unknown"), scope.organization_id)


def check_read(scope: TenantScope, document: Dict[str, Any]) -> None:
    """
    Verify a document fetched by key belongs to the scope.

    Raises:
        CrossTenant: when the document belongs to another organization
        ScopeViolation: when it belongs to another location
    """
    check_organization(scope, document)
    if not scope.is_all_locations and document.get("locationId") != scope.location_id:
        raise ScopeViolation(
            f"Document {document.get('id')} is outside location {scope.location_id}"
        )


def require_capability(scope: TenantScope, capability: Capability) -> None:
    """
    Raises:
        AuthorizationException: when the scope's role lacks ``capability``
    """
    if not scope.has_capability(capability):
        raise AuthorizationException(
            f"Missing required capability: {capability.value}",
            user_message="Your role doesn't allow this action."
        )


class ScopedTransaction(Transaction):
    """Transaction wrapper that checks every key read and every write."""

    def __init__(self, tx: Transaction, scope: TenantScope):
        self._tx = tx
        self.scope = scope
        self._verified = set()

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document = self._tx.get(collection, doc_id)
        if document is not None:
            check_read(self.scope, document)
            self._verified.add((collection, doc_id))
        return document

    def get_in_organization(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """
        Read a document that may live at any location of the caller's organization.

        Clients are served at every location of their organization, and
        monthly markers are keyed per organization. Writes stay restricted
        to the caller's location; updates may only touch non-scope fields.

        Raises:
            CrossTenant: when the document belongs to another organization
        """
        document = self._tx.get(collection, doc_id)
        if document is not None:
            check_organization(self.scope, document)
            self._verified.add((collection, doc_id))
        return document

    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        check_write(self.scope, document.get("organizationId"), document.get("locationId"))
        doc_id = self._tx.insert(collection, document, doc_id)
        self._verified.add((collection, doc_id))
        return doc_id

    def update(self, collection: str, doc_id: str, set_fields: Optional[Dict[str, Any]] = None,
               inc_fields: Optional[Dict[str, int]] = None) -> None:
        if (collection, doc_id) not in self._verified:
            raise ScopeViolation(f"Update of {collection}/{doc_id} without a scoped read")
        for field in _SCOPE_FIELDS:
            if field in (set_fields or {}) or field in (inc_fields or {}):
                raise ScopeViolation(f"{field} cannot be changed")
        self._tx.update(collection, doc_id, set_fields, inc_fields)

    def commit(self) -> None:
        self._tx.commit()

    def abort(self) -> None:
        self._tx.abort()


class TenantScopedStore:
    """
    The single entry point for tenant data access.

    Every query gets the scope's read filter merged over the caller's
    filter, so ``organizationId`` can never be overridden. A location
    filter supplied by the caller is honoured only under "ALL" scope.
    With ``organization_wide`` reads span every location of the
    organization; inserts are still checked against the caller's location.
    """

    def __init__(self, store: DocumentStore, scope: TenantScope, organization_wide: bool = False):
        authorize_scope(scope)
        self._store = store
        self.scope = scope
        self.organization_wide = organization_wide

    def _scoped_query(self, query: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        scoped = dict(query or {})
        scoped.update(read_filter(self.scope, self.organization_wide))
        if self.scope.is_all_locations and query and "locationId" in query:
            scoped["locationId"] = query["locationId"]
        return scoped

    def find(self, collection: str, query: Optional[Dict[str, Any]] = None,
             sort: Optional[SortSpec] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with tracer.start_as_current_span("scoped.find") as span:
            span.set_attribute("organization.id", self.scope.organization_id)
            span.set_attribute("db.collection", collection)
            return self._store.find(collection, self._scoped_query(query), sort=sort, limit=limit)

    def find_one(self, collection: str, query: Optional[Dict[str, Any]] = None,
                 sort: Optional[SortSpec] = None) -> Optional[Dict[str, Any]]:
        return self._store.find_one(collection, self._scoped_query(query), sort=sort)

    def count(self, collection: str, query: Optional[Dict[str, Any]] = None) -> int:
        return self._store.count(collection, self._scoped_query(query))

    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        check_write(self.scope, document.get("organizationId"), document.get("locationId"))
        return self._store.insert(collection, document, doc_id)

    def run_transaction(self, fn: Callable[[ScopedTransaction], T], operation: str = "transaction",
                        max_attempts: Optional[int] = None) -> T:
        """Run ``fn`` with a scope-checked transaction under the store's retry policy."""
        return self._store.run_transaction(
            lambda tx: fn(ScopedTransaction(tx, self.scope)),
            max_attempts=max_attempts,
            operation=operation
        )
