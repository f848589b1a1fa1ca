# SPDX-License-Identifier: Apache-2.0

"""
Health endpoint.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
import logging

from ..models.responses import HealthCheckResponse

logger = logging.getLogger(__name__)

health_tag = Tag(name="Health", description="System health and status")
health_bp = APIBlueprint('health', __name__, url_prefix='/api', abp_tags=[health_tag])


@health_bp.get('/health', responses={"200": HealthCheckResponse, "503": HealthCheckResponse})
def health_check():
    """Document store health and configuration status."""
    health_data = current_app.health_service.get_comprehensive_health()
    status_code = 200 if health_data["status"] == "healthy" else 503

    if status_code != 200:
        logger.warning("Health check degraded", extra={"health_status": health_data["status"]})

    links = {'self': current_app.hal_formatter.builder.link_builder.build_self_link("/api/health")}
    return jsonify(current_app.hal_formatter.builder.build_resource_response(health_data, links)), status_code
