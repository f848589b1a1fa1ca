# SPDX-License-Identifier: Apache-2.0

"""
Authentication middleware: bearer token to tenant scope.

Routes decorated with ``require_scope`` receive the caller's
``TenantScope`` as their first argument; the same scope is kept on
``flask.g.scope`` for logging.
"""

from functools import wraps
from flask import request, g, current_app
from typing import Optional, Callable
from opentelemetry import trace
import logging

from ..domain.errors import AuthenticationException, AuthorizationException
from ..domain.scope import authorize_scope
from ..models.enums import Capability
from ..services.auth import TokenValidationError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

LOCATION_HEADER = 'X-Location-Id'


def extract_token_from_request() -> Optional[str]:
    """
    Extract the bearer token from request headers.

    Returns:
        JWT token string or None if not found
    """
    auth_header = request.headers.get('Authorization', '')

    if not auth_header:
        return None

    if auth_header.startswith('Bearer '):
        return auth_header[7:]

    return auth_header


def require_scope(capability: Optional[Capability] = None) -> Callable:
    """
    Decorator requiring a valid token and, optionally, a capability.

    Args:
        capability: Capability the caller's role must hold

    Returns:
        Decorator function
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            with tracer.start_as_current_span("auth.middleware.resolve_scope") as span:
                token = extract_token_from_request()
                if not token:
                    span.set_attribute("auth.result", "missing_token")
                    logger.warning("Authentication failed: missing token")
                    raise AuthenticationException("Missing authorization token")

                try:
                    scope = current_app.scope_resolver.resolve(
                        token, request.headers.get(LOCATION_HEADER)
                    )
                except TokenValidationError as e:
                    span.set_attribute("auth.result", "invalid_token")
                    raise AuthenticationException(str(e))

                authorize_scope(scope)

                if capability is not None and not scope.has_capability(capability):
                    span.set_attribute("auth.permission_result", "denied")
                    logger.warning(
                        f"Authorization failed: missing capability '{capability.value}'",
                        extra={
                            "user_id": scope.user_id,
                            "organization_id": scope.organization_id,
                            "role": scope.role,
                            "required_capability": capability.value
                        }
                    )
                    raise AuthorizationException(
                        f"Missing required capability: {capability.value}",
                        user_message="Your role doesn't allow this action."
                    )

                g.scope = scope
                span.set_attributes({
                    "auth.result": "success",
                    "user.id": scope.user_id or "",
                    "organization.id": scope.organization_id
                })

            return f(scope, *args, **kwargs)

        return decorated_function
    return decorator
