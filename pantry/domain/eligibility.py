# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Eligibility marker store.

A marker exists at most once per (organization, client, month). Its key is
derived from those three values, so the store's key uniqueness inside a
transaction is what makes "first visit this month" race-free.
"""

import logging
from datetime import datetime
from typing import List, Optional

from .scope import ScopedTransaction, TenantScopedStore
from ..models.base import utc_now
from ..models.entities import EligibilityMarker, TenantScope
from ..services.store import DocumentStore, ELIGIBILITY_MARKERS

logger = logging.getLogger(__name__)


def marker_id(organization_id: str, client_id: str, month_key: str) -> str:
    return f"{organization_id}_{client_id}_{month_key}"


class EligibilityMarkerStore:
    """Create-once markers, written only from the visit transaction."""

    def __init__(self, store: DocumentStore):
        self._store = store

    def ensure_marker_once(self, tx: ScopedTransaction, organization_id: str, client_id: str,
                           month_key: str, visit_id: Optional[str] = None,
                           client_first_name: str = "", client_last_name: str = "",
                           created_at: Optional[datetime] = None) -> bool:
        """
        Create the month's marker if it does not exist yet.

        Args:
            tx: Open scoped transaction owned by the caller
            organization_id: Marker organization, must match the scope
            client_id: Client the marker belongs to
            month_key: 'YYYY-MM'
            visit_id: Visit being written in the same transaction

        Returns:
            True if this call created the marker, False if it already existed
        """
        key = marker_id(organization_id, client_id, month_key)
        if tx.get_in_organization(ELIGIBILITY_MARKERS, key) is not None:
            logger.debug(f"Eligibility marker {key} already exists")
            return False

        marker = EligibilityMarker(
            id=key,
            organization_id=organization_id,
            location_id=tx.scope.location_id,
            client_id=client_id,
            month_key=month_key,
            visit_id=visit_id,
            client_first_name=client_first_name,
            client_last_name=client_last_name,
            created_at=created_at or utc_now(),
            created_by_user_id=tx.scope.user_id
        )
        tx.insert(ELIGIBILITY_MARKERS, marker.to_document(), doc_id=key)
        logger.info(
            "Eligibility marker created",
            extra={"organization_id": organization_id, "client_id": client_id, "month_key": month_key}
        )
        return True

    def list_markers(self, scope: TenantScope, month_key: str,
                     client_id: Optional[str] = None) -> List[EligibilityMarker]:
        """Markers for a month within scope, oldest first."""
        query = {"monthKey": month_key}
        if client_id:
            query["clientId"] = client_id
        store = TenantScopedStore(self._store, scope)
        documents = store.find(ELIGIBILITY_MARKERS, query, sort=[("createdAt", 1)])
        return [EligibilityMarker.from_document(doc) for doc in documents]
