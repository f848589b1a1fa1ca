# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Fixtures for business rule acceptance tests.
"""

import os
import pytest
from datetime import datetime, timezone

os.environ['ENVIRONMENT'] = 'test'
os.environ['OTEL_ENABLED'] = 'false'

from pantry.domain.ledger import VisitLedger
from pantry.models.entities import TenantScope
from pantry.services.memory import MemoryDocumentStore


@pytest.fixture
def store():
    return MemoryDocumentStore(max_attempts=50, backoff_ms=1)


@pytest.fixture
def ledger(store):
    return VisitLedger(store, clock=lambda: datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def org1_loc1():
    """Volunteer at ORG1 / LOC1."""
    return TenantScope.for_role("ORG1", "LOC1", "volunteer", "vol_1")


@pytest.fixture
def org1_admin():
    return TenantScope.for_role("ORG1", "LOC1", "admin", "admin_1")


@pytest.fixture
def org2_loc1():
    return TenantScope.for_role("ORG2", "LOC1", "admin", "admin_2")


@pytest.fixture
def org1_loc2():
    """Volunteer at a second location of ORG1."""
    return TenantScope.for_role("ORG1", "LOC2", "volunteer", "vol_2")


@pytest.fixture
def org1_all():
    return TenantScope.for_role("ORG1", "ALL", "admin", "admin_1")
