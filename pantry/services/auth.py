# SPDX-License-Identifier: Apache-2.0

"""
Tenant scope resolution from RS256 access tokens.

Tokens are issued by the identity provider; this service only verifies them
and turns their claims into a ``TenantScope``.
"""

import os
import jwt
from typing import Optional, Dict, Any, Tuple
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from opentelemetry import trace
import logging

from ..models.entities import TenantScope
from ..models.enums import ALL_LOCATIONS, Capability, capabilities_for

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class TokenValidationError(Exception):
    """Raised when token validation fails."""
    pass


def generate_dev_key_pair() -> Tuple[str, str]:
    """Generate an RSA key pair (private PEM, public PEM) for development use."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('utf-8')

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')

    return private_pem, public_pem


class ScopeResolver:
    """
    Verifies access tokens and builds the caller's tenant scope.

    Expected claims: ``sub`` (user id), ``org_id``, ``location_id``
    (a location id or "ALL"), ``role`` and ``type`` == "access".
    """

    def __init__(self, public_key: Optional[str] = None):
        """
        Args:
            public_key: RS256 public key for token verification (PEM format)
        """
        self.dev_private_key: Optional[str] = None
        self.public_key = public_key or self._get_public_key()
        self.algorithm = "RS256"

    def _get_public_key(self) -> str:
        """Get public key from environment or generate for development."""
        public_key_env = os.getenv("JWT_PUBLIC_KEY")
        if public_key_env:
            return public_key_env

        logger.warning("No JWT_PUBLIC_KEY found, generating development key pair")
        self.dev_private_key, public_pem = generate_dev_key_pair()
        return public_pem

    def validate_token(self, token: str) -> Dict[str, Any]:
        """
        Validate and decode an access token.

        Raises:
            TokenValidationError: If token is invalid, expired or not an access token
        """
        with tracer.start_as_current_span("auth.validate_token") as span:
            span.set_attribute("auth.operation", "validate_token")

            try:
                payload = jwt.decode(
                    token,
                    self.public_key,
                    algorithms=[self.algorithm],
                    options={"verify_exp": True, "require": ["sub", "org_id"]}
                )
            except jwt.ExpiredSignatureError:
                span.set_attribute("auth.validation_result", "expired")
                logger.warning("Token validation failed: token expired")
                raise TokenValidationError("Token has expired")
            except jwt.InvalidTokenError as e:
                span.set_attribute("auth.validation_result", "invalid")
                logger.warning(f"Token validation failed: {str(e)}")
                raise TokenValidationError(f"Invalid token: {str(e)}")

            if payload.get("type") != "access":
                span.set_attribute("auth.validation_result", "wrong_type")
                raise TokenValidationError("Invalid token type. Expected access")

            span.set_attributes({
                "auth.validation_result": "success",
                "user.id": payload.get("sub"),
                "organization.id": payload.get("org_id")
            })
            return payload

    def resolve(self, token: str, location_override: Optional[str] = None) -> TenantScope:
        """
        Build a tenant scope from a verified token.

        Args:
            token: Bearer token
            location_override: Concrete location picked by an org-wide user
                (for example to log visits at one site); ignored for
                location-bound roles

        Raises:
            TokenValidationError: If the token is invalid
        """
        payload = self.validate_token(token)
        role = payload.get("role", "")
        location_id = payload.get("location_id")

        if location_override and Capability.ALL_LOCATIONS in capabilities_for(role):
            location_id = location_override
        elif location_override and location_override != location_id:
            logger.warning(
                "Ignoring location override for location-bound role",
                extra={"user_id": payload.get("sub"), "role": role, "requested_location": location_override}
            )

        scope = TenantScope.for_role(
            organization_id=payload["org_id"],
            location_id=location_id,
            role=role,
            user_id=payload.get("sub")
        )

        logger.debug(
            "Tenant scope resolved",
            extra={
                "user_id": scope.user_id,
                "organization_id": scope.organization_id,
                "location_id": scope.location_id,
                "org_wide": scope.location_id == ALL_LOCATIONS
            }
        )
        return scope
