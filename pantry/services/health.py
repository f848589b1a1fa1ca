# SPDX-License-Identifier: Apache-2.0

"""
Health Check Service

Reports document store health and the configuration the service runs with.
"""

import os
import time
from datetime import datetime, timezone
from typing import Dict, Any
from opentelemetry import trace

from .store import DocumentStore

tracer = trace.get_tracer(__name__)


class HealthCheckService:
    """Service for system health monitoring."""

    def __init__(self, store: DocumentStore, service_version: str = "1.0.0"):
        self.store = store
        self.service_version = service_version

    def get_comprehensive_health(self) -> Dict[str, Any]:
        """Get health status including the document store and configuration."""
        with tracer.start_as_current_span("health.comprehensive_check") as span:
            start_time = time.time()

            store_health = self._check_store_health()
            overall_status = self._determine_overall_status([store_health["status"]])
            response_time_ms = round((time.time() - start_time) * 1000, 2)

            health_data = {
                "status": overall_status,
                "service": "pantry-intake-api",
                "version": self.service_version,
                "environment": os.getenv('ENVIRONMENT', 'development'),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "response_time_ms": response_time_ms,
                "dependencies": {
                    "store": store_health
                },
                "configuration": self._get_configuration_status()
            }

            span.set_attributes({
                "health.overall_status": overall_status,
                "health.response_time_ms": response_time_ms,
                "health.store_status": store_health["status"]
            })

            return health_data

    def _check_store_health(self) -> Dict[str, Any]:
        """Check document store connectivity."""
        with tracer.start_as_current_span("health.store_check") as span:
            start_time = time.time()
            health_info = dict(self.store.health_check())
            health_info["response_time_ms"] = round((time.time() - start_time) * 1000, 2)
            health_info["last_check"] = datetime.now(timezone.utc).isoformat()

            span.set_attribute("store.status", health_info.get("status", "unknown"))
            return health_info

    def _get_configuration_status(self) -> Dict[str, Any]:
        """Get configuration validation status."""
        backend = os.getenv('STORE_BACKEND', 'mongodb')
        config_status = {
            "store_backend": backend,
            "mongodb_uri_configured": bool(os.getenv('MONGODB_URI')),
            "jwt_public_key_configured": bool(os.getenv('JWT_PUBLIC_KEY')),
            "visit_tx_max_attempts": self.store.max_attempts,
            "pantry_timezone": os.getenv('PANTRY_TIMEZONE', 'UTC'),
            "environment": os.getenv('ENVIRONMENT', 'development')
        }

        critical_configs = ['jwt_public_key_configured']
        if backend == 'mongodb':
            critical_configs.append('mongodb_uri_configured')
        config_status["all_critical_configured"] = all(
            config_status[config] for config in critical_configs
        )

        return config_status

    def _determine_overall_status(self, dependency_statuses: list) -> str:
        """Determine overall system status based on dependency health."""
        if all(status == "healthy" for status in dependency_statuses):
            return "healthy"
        elif any(status == "healthy" for status in dependency_statuses):
            return "degraded"
        else:
            return "unhealthy"
