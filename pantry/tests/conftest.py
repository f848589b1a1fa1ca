# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pytest configuration and fixtures.
"""

import os
import jwt
import pytest
from datetime import datetime, timedelta, timezone

# Set test environment
os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'
os.environ['STORE_BACKEND'] = 'memory'

from pantry.app import create_app
from pantry.domain.clients import ClientRegistry
from pantry.domain.dedupe import DedupeIndex
from pantry.domain.eligibility import EligibilityMarkerStore
from pantry.domain.ledger import VisitLedger
from pantry.models.entities import TenantScope
from pantry.models.enums import ALL_LOCATIONS
from pantry.services.auth import generate_dev_key_pair
from pantry.services.memory import MemoryDocumentStore

ORG_ID = "org_riverside"
OTHER_ORG_ID = "org_hillcrest"
LOCATION_ID = "loc_main"
OTHER_LOCATION_ID = "loc_east"

FIXED_NOW = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """Clock frozen at Friday 2024-03-15 10:30 UTC."""
    return lambda: FIXED_NOW


@pytest.fixture
def store():
    """Empty in-memory store without retry backoff."""
    return MemoryDocumentStore(max_attempts=5, backoff_ms=0)


@pytest.fixture
def registry(store, clock):
    return ClientRegistry(store, clock)


@pytest.fixture
def markers(store):
    return EligibilityMarkerStore(store)


@pytest.fixture
def dedupe(store):
    return DedupeIndex(store)


@pytest.fixture
def ledger(store, registry, markers, dedupe, clock):
    return VisitLedger(store, registry=registry, markers=markers, dedupe=dedupe, clock=clock)


@pytest.fixture
def admin_scope():
    """Admin working at the main location."""
    return TenantScope.for_role(ORG_ID, LOCATION_ID, "admin", "user_admin")


@pytest.fixture
def admin_all_scope():
    """Admin with organization-wide scope."""
    return TenantScope.for_role(ORG_ID, ALL_LOCATIONS, "admin", "user_admin")


@pytest.fixture
def manager_all_scope():
    return TenantScope.for_role(ORG_ID, ALL_LOCATIONS, "manager", "user_manager")


@pytest.fixture
def volunteer_scope():
    return TenantScope.for_role(ORG_ID, LOCATION_ID, "volunteer", "user_volunteer")


@pytest.fixture
def east_volunteer_scope():
    return TenantScope.for_role(ORG_ID, OTHER_LOCATION_ID, "volunteer", "user_east")


@pytest.fixture
def other_org_scope():
    return TenantScope.for_role(OTHER_ORG_ID, LOCATION_ID, "admin", "user_other")


@pytest.fixture
def sample_intake():
    """Intake form payload as the frontend sends it."""
    return {
        "firstName": "jane",
        "lastName": "doe",
        "phone": "(555) 123-4567",
        "dob": "1980-05-17",
        "address": "12 Elm St",
        "zip": "12345",
        "county": "Riverside",
        "householdSize": 3
    }


@pytest.fixture(scope="session")
def key_pair():
    """RS256 key pair (private PEM, public PEM) shared by the test session."""
    return generate_dev_key_pair()


@pytest.fixture
def mint_token(key_pair):
    """Factory for signed access tokens."""
    private_pem, _ = key_pair

    def _mint(role="volunteer", org_id=ORG_ID, location_id=LOCATION_ID, sub="user_1",
              token_type="access", expires_in=900):
        now = datetime.now(timezone.utc)
        payload = {
            "sub": sub,
            "org_id": org_id,
            "location_id": location_id,
            "role": role,
            "type": token_type,
            "iat": now,
            "exp": now + timedelta(seconds=expires_in)
        }
        return jwt.encode(payload, private_pem, algorithm="RS256")

    return _mint


@pytest.fixture
def auth_headers(mint_token):
    """Factory for Authorization (and optional X-Location-Id) headers."""
    def _headers(location_header=None, **claims):
        headers = {"Authorization": f"Bearer {mint_token(**claims)}"}
        if location_header:
            headers["X-Location-Id"] = location_header
        return headers

    return _headers


@pytest.fixture
def app(store, key_pair):
    """Application wired to the in-memory store."""
    application = create_app({
        'ENVIRONMENT': 'test',
        'STORE_BACKEND': 'memory',
        'STORE': store,
        'JWT_PUBLIC_KEY': key_pair[1],
        'BASE_URL': 'http://localhost:5000',
        'OTEL_ENABLED': False
    })
    application.config['TESTING'] = True
    return application


@pytest.fixture
def test_client(app):
    return app.test_client()
