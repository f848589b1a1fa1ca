# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Pantry Intake API - Flask Application Entry Point

This module builds the Flask application with OpenAPI 3.0 support, wires the
document store and domain services onto the app, and registers the routes
for multi-tenant client intake and visit tracking.
"""

import os
from typing import Any, Dict, Optional
from flask_openapi3 import OpenAPI, Info, Tag

from .observability.config import setup_observability
from .observability.middleware import add_observability_middleware
from .middleware.error_handler import ErrorHandlerMiddleware
from .services import create_document_store
from .services.auth import ScopeResolver
from .services.hal import create_hal_formatter
from .services.health import HealthCheckService
from .domain.clients import ClientRegistry
from .domain.dedupe import DedupeIndex
from .domain.eligibility import EligibilityMarkerStore
from .domain.ledger import VisitLedger

# OpenAPI info
info = Info(
    title="Pantry Intake API",
    version="1.0.0",
    description="Multi-tenant food pantry client intake and visit tracking API with HAL links"
)

# API tags for organization
tags = [
    Tag(name="Clients", description="Client intake, lifecycle and visit logging"),
    Tag(name="Visits", description="Visit history"),
    Tag(name="Health", description="System health and status")
]


def _load_config() -> Dict[str, Any]:
    """Read configuration from the environment."""
    environment = os.getenv('ENVIRONMENT', 'development')
    return {
        'ENVIRONMENT': environment,
        'DEBUG': environment == 'development',
        'STORE_BACKEND': os.getenv('STORE_BACKEND', 'mongodb'),
        'MONGODB_URI': os.getenv('MONGODB_URI', 'mongodb://localhost:27017/pantry_dev?replicaSet=rs0'),
        'MONGODB_DATABASE': os.getenv('MONGODB_DATABASE', 'pantry_dev'),
        'JWT_PUBLIC_KEY': os.getenv('JWT_PUBLIC_KEY'),
        'BASE_URL': os.getenv('BASE_URL', 'http://localhost:5000'),
        'OTEL_ENABLED': os.getenv('OTEL_ENABLED', 'true').lower() == 'true',
        'SERVICE_VERSION': os.getenv('SERVICE_VERSION', '1.0.0'),
    }


def create_app(config_overrides: Optional[Dict[str, Any]] = None) -> OpenAPI:
    """
    Create and configure the application.

    Args:
        config_overrides: Values replacing the environment configuration;
            a ``STORE`` entry supplies a ready document store instance

    Returns:
        Configured Flask application
    """
    config = _load_config()
    config.update(config_overrides or {})

    setup_observability(config['ENVIRONMENT'], config['OTEL_ENABLED'])

    app = OpenAPI(__name__, info=info)
    app.config.update(config)

    if config['OTEL_ENABLED']:
        add_observability_middleware(app)

    # Document store
    store = config.get('STORE')
    if store is None:
        store_kwargs = {}
        if config['STORE_BACKEND'] == 'mongodb':
            store_kwargs = {
                'connection_string': config['MONGODB_URI'],
                'database_name': config['MONGODB_DATABASE']
            }
        store = create_document_store(config['STORE_BACKEND'], **store_kwargs)

    # Domain services
    client_registry = ClientRegistry(store)
    dedupe_index = DedupeIndex(store)
    eligibility_markers = EligibilityMarkerStore(store)
    visit_ledger = VisitLedger(
        store,
        registry=client_registry,
        markers=eligibility_markers,
        dedupe=dedupe_index
    )

    hal_formatter = create_hal_formatter(config['BASE_URL'])
    ErrorHandlerMiddleware(app, hal_formatter)

    # Make services available to routes
    app.store = store
    app.scope_resolver = ScopeResolver(config['JWT_PUBLIC_KEY'])
    app.client_registry = client_registry
    app.dedupe_index = dedupe_index
    app.eligibility_markers = eligibility_markers
    app.visit_ledger = visit_ledger
    app.health_service = HealthCheckService(store, config['SERVICE_VERSION'])
    app.hal_formatter = hal_formatter

    # Register routes
    from .routes.clients import clients_bp
    from .routes.visits import visits_bp
    from .routes.health import health_bp

    app.register_api(clients_bp)
    app.register_api(visits_bp)
    app.register_api(health_bp)

    return app


if __name__ == '__main__':
    application = create_app()
    application.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', '5000')),
        debug=application.config['DEBUG']
    )
