# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for access token verification and scope resolution.
"""

import jwt
import pytest

from pantry.models.enums import ALL_LOCATIONS, Capability
from pantry.services.auth import ScopeResolver, TokenValidationError, generate_dev_key_pair

from .conftest import LOCATION_ID, ORG_ID, OTHER_LOCATION_ID


@pytest.fixture
def resolver(key_pair):
    return ScopeResolver(key_pair[1])


class TestScopeResolver:
    """Test token validation and scope building."""

    def test_resolve_location_scope(self, resolver, mint_token):
        scope = resolver.resolve(mint_token(role="volunteer", sub="u42"))

        assert scope.organization_id == ORG_ID
        assert scope.location_id == LOCATION_ID
        assert scope.user_id == "u42"
        assert scope.has_capability(Capability.LOG_VISITS)

    def test_org_wide_role_may_pick_location(self, resolver, mint_token):
        token = mint_token(role="manager", location_id=ALL_LOCATIONS)

        assert resolver.resolve(token).location_id == ALL_LOCATIONS
        assert resolver.resolve(token, OTHER_LOCATION_ID).location_id == OTHER_LOCATION_ID

    def test_location_bound_role_ignores_override(self, resolver, mint_token):
        scope = resolver.resolve(mint_token(role="volunteer"), OTHER_LOCATION_ID)

        assert scope.location_id == LOCATION_ID

    def test_expired_token(self, resolver, mint_token):
        with pytest.raises(TokenValidationError, match="expired"):
            resolver.validate_token(mint_token(expires_in=-60))

    def test_refresh_token_rejected(self, resolver, mint_token):
        with pytest.raises(TokenValidationError, match="type"):
            resolver.validate_token(mint_token(token_type="refresh"))

    def test_token_signed_by_other_key(self, resolver):
        other_private, _ = generate_dev_key_pair()
        token = jwt.encode({"sub": "u1", "org_id": ORG_ID, "type": "access"}, other_private, algorithm="RS256")

        with pytest.raises(TokenValidationError):
            resolver.validate_token(token)

    def test_missing_org_claim(self, resolver, key_pair):
        token = jwt.encode({"sub": "u1", "type": "access"}, key_pair[0], algorithm="RS256")

        with pytest.raises(TokenValidationError):
            resolver.validate_token(token)

    def test_dev_key_pair_generated_without_config(self, monkeypatch):
        monkeypatch.delenv("JWT_PUBLIC_KEY", raising=False)

        resolver = ScopeResolver()
        token = jwt.encode(
            {"sub": "u1", "org_id": ORG_ID, "location_id": LOCATION_ID, "role": "admin", "type": "access"},
            resolver.dev_private_key,
            algorithm="RS256"
        )

        assert resolver.resolve(token).role == "admin"
