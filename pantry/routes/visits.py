# SPDX-License-Identifier: Apache-2.0

"""
Visit history and snapshot correction endpoints.

Visits are created through POST /api/clients/<id>/visits and are never
deleted.
"""

from flask import request, jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
import logging

from ..models.entities import TenantScope
from ..models.enums import Capability
from ..models.requests import EditVisitRequest, VisitListParams, VisitPath, parse_request
from ..models.responses import ErrorResponse, VisitResponse
from ..middleware.auth import require_scope

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

visits_tag = Tag(name="Visits", description="Visit history")
visits_bp = APIBlueprint(
    'visits',
    __name__,
    url_prefix='/api/visits',
    abp_tags=[visits_tag],
    abp_responses={"400": ErrorResponse, "401": ErrorResponse, "403": ErrorResponse}
)


@visits_bp.get('', responses={"200": VisitResponse})
@require_scope()
def list_visits(scope: TenantScope):
    """List visits in scope, filtered by clientId, monthKey or dateKey, newest first."""
    params = parse_request(VisitListParams, request.args.to_dict())

    with tracer.start_as_current_span(
        "visits.list",
        attributes={"organization.id": scope.organization_id}
    ) as span:
        visits = current_app.visit_ledger.list_visits(
            scope, params.client_id, params.month_key, params.date_key, params.limit
        )
        span.set_attribute("db.returned_count", len(visits))

    return jsonify(current_app.hal_formatter.format_visit_collection(
        visits, scope,
        {"clientId": params.client_id, "monthKey": params.month_key, "dateKey": params.date_key}
    )), 200


@visits_bp.get('/<visit_id>', responses={"200": VisitResponse, "404": ErrorResponse})
@require_scope()
def get_visit(scope: TenantScope, path: VisitPath):
    """Get a visit in scope."""
    visit = current_app.visit_ledger.get_visit(scope, path.visit_id)
    return jsonify(current_app.hal_formatter.format_visit(visit, scope)), 200


@visits_bp.patch('/<visit_id>', responses={"200": VisitResponse, "404": ErrorResponse})
@require_scope(Capability.EDIT_VISITS)
def edit_visit(scope: TenantScope, path: VisitPath):
    """
    Correct household size, county or ZIP on a visit.

    The eligibility flag cannot be edited.
    """
    visit = current_app.visit_ledger.edit_visit(
        scope, path.visit_id, parse_request(EditVisitRequest, request.get_json(silent=True) or {})
    )
    logger.info(
        "Visit snapshot corrected",
        extra={"visit_id": visit.id, "organization_id": scope.organization_id, "user_id": scope.user_id}
    )
    return jsonify(current_app.hal_formatter.format_visit(visit, scope)), 200
