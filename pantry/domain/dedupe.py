# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Duplicate lookup run before a new client is created.

Matches are advisory: staff decide whether to log against the match,
create anyway, or merge later.
"""

import logging
from typing import Optional
from opentelemetry import trace

from .errors import DedupeUnavailable
from .scope import TenantScopedStore
from ..models.entities import Client, TenantScope
from ..services.store import DocumentStore, CLIENTS

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

# Merged-away clients are never offered as a match; deactivated ones are,
# so staff can reactivate instead of re-registering.
_NOT_MERGED = {"mergedIntoId": None}


class DedupeIndex:
    """Phone-first, then name+DOB lookup across the caller's organization."""

    def __init__(self, store: DocumentStore):
        self._store = store

    def find_existing(self, scope: TenantScope, phone_digits: str,
                      name_dob_hash: str) -> Optional[Client]:
        """
        Find an existing client that looks like the one being registered.

        A phone match (most recently created) wins over a name/DOB match.

        Raises:
            DedupeUnavailable: when the lookup itself fails
        """
        store = TenantScopedStore(self._store, scope, organization_wide=True)

        with tracer.start_as_current_span("dedupe.find_existing") as span:
            span.set_attribute("organization.id", store.scope.organization_id)
            try:
                if phone_digits:
                    document = store.find_one(
                        CLIENTS,
                        dict(_NOT_MERGED, phoneDigits=phone_digits),
                        sort=[("createdAt", -1)]
                    )
                    if document:
                        span.set_attribute("dedupe.match", "phone")
                        return Client.from_document(document)

                if name_dob_hash:
                    document = store.find_one(
                        CLIENTS,
                        dict(_NOT_MERGED, nameDobHash=name_dob_hash),
                        sort=[("createdAt", -1)]
                    )
                    if document:
                        span.set_attribute("dedupe.match", "name_dob")
                        return Client.from_document(document)
            except Exception as e:
                logger.error(
                    "Dedupe lookup failed",
                    extra={"organization_id": store.scope.organization_id, "error": str(e)}
                )
                raise DedupeUnavailable(f"Dedupe lookup failed: {e}") from e

            span.set_attribute("dedupe.match", "none")
            return None
