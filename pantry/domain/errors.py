# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Application exception hierarchy.

Every exception carries an HTTP status, a machine-readable error type and a
human-readable ``user_message`` that is safe to show to staff.
"""

from typing import List, Optional, Dict, Any


class CustomException(Exception):
    """Base class for custom application exceptions."""

    default_user_message = "Something went wrong. Please try again."

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_type: str = "application-error",
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.user_message = user_message or self.default_user_message


class ValidationException(CustomException):
    """Exception for validation errors caught before any store call."""

    default_user_message = "Please correct the highlighted fields."

    def __init__(self, message: str, validation_errors: List[Dict[str, Any]] = None):
        super().__init__(message, 400, "validation-error")
        self.validation_errors = validation_errors or []


class AuthenticationException(CustomException):
    """Exception for missing or invalid credentials."""

    default_user_message = "Please sign in again."

    def __init__(self, message: str):
        super().__init__(message, 401, "authentication-required")


class AuthorizationException(CustomException):
    """Exception for missing capabilities."""

    default_user_message = "You don't have permission to do that."

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message, 403, "insufficient-permissions", user_message)


class NotFoundException(CustomException):
    """Exception for resource not found errors."""

    default_user_message = "That record could not be found."

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message, 404, "resource-not-found", user_message)


class ScopeViolation(CustomException):
    """Read or write outside the caller's organization/location scope."""

    default_user_message = "You don't have access to that location."

    def __init__(self, message: str):
        super().__init__(message, 403, "scope-violation")


class MissingScope(CustomException):
    """A concrete organization/location is required but not present."""

    default_user_message = "Choose a location before logging visits."

    def __init__(self, message: str):
        super().__init__(message, 400, "missing-scope")


class ClientNotFound(NotFoundException):
    """Client document does not exist (or is not visible in scope)."""

    default_user_message = "Client not found."

    def __init__(self, client_id: str):
        super().__init__(f"Client {client_id} not found")
        self.error_type = "client-not-found"
        self.client_id = client_id


class VisitNotFound(NotFoundException):
    """Visit document does not exist (or is not visible in scope)."""

    default_user_message = "Visit not found."

    def __init__(self, visit_id: str):
        super().__init__(f"Visit {visit_id} not found")
        self.error_type = "visit-not-found"
        self.visit_id = visit_id


class ClientInactive(CustomException):
    """Client is deactivated and must be reactivated first."""

    default_user_message = "This client is deactivated. Reactivate before logging a visit."

    def __init__(self, client_id: str):
        super().__init__(f"Client {client_id} is inactive", 409, "client-inactive")
        self.client_id = client_id


class CrossTenant(CustomException):
    """Client belongs to a different organization than the caller."""

    default_user_message = "Client belongs to a different organization."

    def __init__(self, client_id: str, organization_id: str):
        super().__init__(
            f"Client {client_id} is not part of organization {organization_id}",
            403,
            "cross-tenant"
        )
        self.client_id = client_id


class ContentionException(CustomException):
    """Transaction retry budget exhausted; safe for the user to retry."""

    default_user_message = "Too many people are updating this client right now. Please try again."

    def __init__(self, message: str, attempts: int):
        super().__init__(message, 503, "contention")
        self.attempts = attempts
        self.retryable = True


class DedupeUnavailable(CustomException):
    """The duplicate lookup itself failed; intake may retry or proceed."""

    default_user_message = "We couldn't check for duplicates. Retry, or create the client anyway."

    def __init__(self, message: str):
        super().__init__(message, 503, "dedupe-unavailable")
        self.retryable = True
