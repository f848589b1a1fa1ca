# SPDX-License-Identifier: Apache-2.0

"""
Client intake and lifecycle endpoints.

Intake runs the dedupe check first; a possible duplicate is returned for
staff to decide (log against it, force-create, or merge later) instead of
silently creating a second record.
"""

from flask import request, jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging

from ..domain.keys import name_dob_hash, phone_digits
from ..models.entities import TenantScope
from ..models.enums import Capability
from ..models.requests import (
    ClientListParams, ClientPath, DedupeCheckRequest, IntakeWithVisitRequest,
    LogVisitRequest, MergeClientsRequest, UpdateClientRequest, parse_request
)
from ..models.responses import ClientResponse, ErrorResponse, IntakeResponse, VisitResponse
from ..middleware.auth import require_scope

# Set up logging and tracing
logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Create API blueprint
clients_tag = Tag(name="Clients", description="Client intake, lifecycle and visit logging")
clients_bp = APIBlueprint(
    'clients',
    __name__,
    url_prefix='/api/clients',
    abp_tags=[clients_tag],
    abp_responses={"400": ErrorResponse, "401": ErrorResponse, "403": ErrorResponse}
)


def _json_body():
    return request.get_json(silent=True) or {}


@clients_bp.get('', responses={"200": ClientResponse})
@require_scope()
def list_clients(scope: TenantScope):
    """
    Search clients.

    Searches by name prefix or phone digits. Deactivated and merged clients
    are hidden unless includeInactive=true.
    """
    params = parse_request(ClientListParams, request.args.to_dict())

    with tracer.start_as_current_span(
        "clients.list",
        attributes={"organization.id": scope.organization_id, "search.present": bool(params.search)}
    ) as span:
        clients = current_app.client_registry.list_clients(
            scope, params.search, params.include_inactive, params.limit
        )
        span.set_attribute("db.returned_count", len(clients))

    return jsonify(current_app.hal_formatter.format_client_collection(
        clients, scope,
        {"search": params.search, "includeInactive": str(params.include_inactive).lower(), "limit": params.limit}
    )), 200


@clients_bp.post('', responses={"200": IntakeResponse, "201": IntakeResponse})
@require_scope(Capability.CREATE_CLIENTS)
def create_client(scope: TenantScope):
    """
    Register a client, optionally logging the first visit.

    Returns 200 with dedupeMatch when a likely duplicate exists and
    forceCreate was not set; nothing is created in that case.
    """
    intake = parse_request(IntakeWithVisitRequest, _json_body())

    with tracer.start_as_current_span(
        "clients.intake",
        attributes={
            "organization.id": scope.organization_id,
            "intake.force_create": intake.force_create,
            "intake.log_visit": intake.log_visit
        }
    ) as span:
        result = current_app.visit_ledger.create_client_and_log_visit(
            scope,
            intake,
            wants_eligibility_flag=intake.wants_eligibility_flag,
            force_create=intake.force_create,
            log_visit=intake.log_visit,
            visit_date=intake.visit_date
        )

        if result.dedupe_match is not None:
            span.set_attribute("intake.result", "dedupe_match")
            status_code = 200
        else:
            span.set_attribute("intake.result", "created")
            span.set_attribute("client.id", result.client.id)
            status_code = 201
        span.set_status(Status(StatusCode.OK))

    return jsonify(current_app.hal_formatter.format_intake_result(result, scope)), status_code


@clients_bp.post('/dedupe-check', responses={"200": ClientResponse})
@require_scope(Capability.CREATE_CLIENTS)
def dedupe_check(scope: TenantScope):
    """Preflight duplicate lookup for the intake form."""
    check = parse_request(DedupeCheckRequest, _json_body())
    hash_value = ""
    if check.first_name or check.last_name:
        hash_value = name_dob_hash(check.first_name, check.last_name, check.dob)

    match = current_app.dedupe_index.find_existing(scope, phone_digits(check.phone), hash_value)
    body = {
        "match": current_app.hal_formatter.format_client(match, scope) if match else None
    }
    return jsonify(body), 200


@clients_bp.get('/<client_id>', responses={"200": ClientResponse, "404": ErrorResponse})
@require_scope()
def get_client(scope: TenantScope, path: ClientPath):
    """Get a client in scope."""
    client = current_app.client_registry.get(scope, path.client_id)
    return jsonify(current_app.hal_formatter.format_client(client, scope)), 200


@clients_bp.put('/<client_id>', responses={"200": ClientResponse, "404": ErrorResponse})
@require_scope(Capability.EDIT_CLIENTS)
def update_client(scope: TenantScope, path: ClientPath):
    """Edit descriptive fields. Counters and scope fields cannot be changed here."""
    changes = parse_request(UpdateClientRequest, _json_body())
    client = current_app.client_registry.update(scope, path.client_id, changes)
    return jsonify(current_app.hal_formatter.format_client(client, scope)), 200


@clients_bp.post('/<client_id>/deactivate', responses={"200": ClientResponse, "404": ErrorResponse})
@require_scope(Capability.DEACTIVATE_CLIENTS)
def deactivate_client(scope: TenantScope, path: ClientPath):
    """Deactivate a client. Visit history stays queryable."""
    client = current_app.client_registry.deactivate(scope, path.client_id)
    return jsonify(current_app.hal_formatter.format_client(client, scope)), 200


@clients_bp.post('/<client_id>/reactivate', responses={"200": ClientResponse, "404": ErrorResponse})
@require_scope(Capability.DEACTIVATE_CLIENTS)
def reactivate_client(scope: TenantScope, path: ClientPath):
    """Reactivate a deactivated client."""
    client = current_app.client_registry.reactivate(scope, path.client_id)
    return jsonify(current_app.hal_formatter.format_client(client, scope)), 200


@clients_bp.post('/<client_id>/merge', responses={"200": ClientResponse, "404": ErrorResponse})
@require_scope(Capability.MERGE_CLIENTS)
def merge_client(scope: TenantScope, path: ClientPath):
    """
    Merge this client into targetId.

    Blank contact fields on the target are filled from this client; visits
    stay where they are. Unless markSourceMerged=false, this client is then
    flagged as merged and deactivated.
    """
    merge = parse_request(MergeClientsRequest, _json_body())
    registry = current_app.client_registry

    with tracer.start_as_current_span(
        "clients.merge",
        attributes={"organization.id": scope.organization_id, "client.id": path.client_id}
    ):
        target = registry.merge_into(scope, path.client_id, merge.target_id)
        source = None
        if merge.mark_source_merged:
            source = registry.mark_merged(scope, path.client_id, merge.target_id)

    formatter = current_app.hal_formatter
    return jsonify({
        "target": formatter.format_client(target, scope),
        "source": formatter.format_client(source, scope) if source else None
    }), 200


@clients_bp.post('/<client_id>/recount', responses={"200": ClientResponse, "404": ErrorResponse})
@require_scope(Capability.RECOUNT_CLIENTS)
def recount_client(scope: TenantScope, path: ClientPath):
    """Rebuild the client's visit counters from its visits."""
    client = current_app.client_registry.recount(scope, path.client_id)
    return jsonify(current_app.hal_formatter.format_client(client, scope)), 200


@clients_bp.post(
    '/<client_id>/visits',
    responses={"201": VisitResponse, "404": ErrorResponse, "409": ErrorResponse, "503": ErrorResponse}
)
@require_scope(Capability.LOG_VISITS)
def log_visit(scope: TenantScope, path: ClientPath):
    """
    Log a visit for an existing client.

    Household size is clamped to 1-20 and a missing or malformed visitDate
    means today. Responds 409 for a deactivated client and 503 with
    Retry-After when the client is too busy to update.
    """
    visit_request = parse_request(LogVisitRequest, _json_body())

    with tracer.start_as_current_span(
        "visits.log",
        attributes={
            "organization.id": scope.organization_id,
            "client.id": path.client_id,
            "visit.wants_eligibility_flag": visit_request.wants_eligibility_flag
        }
    ) as span:
        visit = current_app.visit_ledger.log_visit(
            scope,
            path.client_id,
            visit_request.visit_date,
            visit_request.household_size,
            visit_request.wants_eligibility_flag
        )
        span.set_attribute("visit.id", visit.id)

    return jsonify(current_app.hal_formatter.format_visit(visit, scope)), 201
