# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for Pydantic models.
"""

import pytest
from datetime import datetime, timezone
from pydantic import ValidationError

from pantry.domain.errors import ValidationException
from pantry.models.entities import Client, TenantScope, Visit
from pantry.models.enums import ALL_LOCATIONS, AppRole, Capability, capabilities_for
from pantry.models.requests import (
    IntakeRequest, IntakeWithVisitRequest, LogVisitRequest, UpdateClientRequest, parse_request
)


class TestRoles:
    """Test role capability sets."""

    def test_admin_has_everything(self):
        assert capabilities_for("admin") == frozenset(Capability)

    def test_volunteer_capabilities(self):
        capabilities = capabilities_for(AppRole.VOLUNTEER)

        assert Capability.LOG_VISITS in capabilities
        assert Capability.MERGE_CLIENTS not in capabilities
        assert Capability.ALL_LOCATIONS not in capabilities

    def test_unknown_role_has_nothing(self):
        assert capabilities_for("intern") == frozenset()


class TestTenantScope:
    """Test the tenant scope value."""

    def test_for_role(self):
        scope = TenantScope.for_role("org1", "loc1", "volunteer", "u1")

        assert scope.has_capability(Capability.LOG_VISITS)
        assert scope.has_capability("createClients")
        assert not scope.has_capability(Capability.RECOUNT_CLIENTS)
        assert scope.has_concrete_location
        assert not scope.is_all_locations

    def test_all_locations(self):
        scope = TenantScope.for_role("org1", ALL_LOCATIONS, "manager")

        assert scope.is_all_locations
        assert not scope.has_concrete_location

    def test_empty_organization_rejected(self):
        with pytest.raises(ValidationError):
            TenantScope.for_role("  ", "loc1", "admin")

    def test_scope_is_immutable(self):
        scope = TenantScope.for_role("org1", "loc1", "volunteer")

        with pytest.raises(ValidationError):
            scope.location_id = "loc2"


class TestEntities:
    """Test entity serialization."""

    def test_client_document_round_trip_uses_camel_case(self):
        client = Client(organization_id="org1", first_name="Jane", last_name="Doe", household_size=2)

        document = client.to_document()

        assert "id" not in document
        assert document["organizationId"] == "org1"
        assert document["visitCountByMonth"] == {}
        assert Client.from_document(dict(document, id=client.id)) == client

    def test_client_household_bounds(self):
        with pytest.raises(ValidationError):
            Client(organization_id="org1", first_name="Jane", last_name="Doe", household_size=21)

    def test_visit_key_patterns(self):
        with pytest.raises(ValidationError):
            Visit(
                organization_id="org1", client_id="c1", household_size=1,
                visit_at=datetime(2024, 3, 15, tzinfo=timezone.utc),
                month_key="2024-3", date_key="2024-03-15", week_key="2024-W11", weekday=5
            )


class TestRequests:
    """Test request validation."""

    def test_intake_accepts_camel_and_snake_case(self):
        camel = IntakeRequest.model_validate({"firstName": " Jane ", "lastName": "Doe", "county": "R"})
        snake = IntakeRequest.model_validate({"first_name": "Jane", "last_name": "Doe", "county": "R"})

        assert camel.first_name == snake.first_name == "Jane"

    def test_intake_dob_must_be_iso_date(self):
        with pytest.raises(ValidationError):
            IntakeRequest.model_validate({"firstName": "Jane", "lastName": "Doe", "county": "R", "dob": "05/17/1980"})

    def test_intake_with_visit_defaults(self):
        request = IntakeWithVisitRequest.model_validate({"firstName": "Jane", "lastName": "Doe", "county": "R"})

        assert request.log_visit is True
        assert request.force_create is False
        assert request.wants_eligibility_flag is False

    def test_log_visit_request_does_not_range_check(self):
        request = LogVisitRequest.model_validate({"householdSize": 40, "visitDate": "whenever"})

        assert request.household_size == 40
        assert request.visit_date == "whenever"

    def test_update_request_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            UpdateClientRequest.model_validate({"firstName": "  "})

    def test_parse_request_collects_field_errors(self):
        with pytest.raises(ValidationException) as exc_info:
            parse_request(IntakeRequest, {"firstName": "Jane", "zip": "abc"})

        fields = {error["field"] for error in exc_info.value.validation_errors}
        assert {"lastName", "county", "zip"} <= fields

    def test_parse_request_rejects_non_object(self):
        with pytest.raises(ValidationException):
            parse_request(IntakeRequest, ["not", "an", "object"])

    def test_parse_request_passes_model_through(self):
        request = IntakeRequest(first_name="Jane", last_name="Doe", county="R")

        assert parse_request(IntakeRequest, request) is request
