# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas for the pantry intake service.
"""

# Base models
from .base import BaseEntity, generate_object_id, utc_now

# Enumerations
from .enums import ALL_LOCATIONS, AppRole, Capability, capabilities_for

# Core entities
from .entities import Client, Visit, EligibilityMarker, TenantScope

# Request models
from .requests import (
    IntakeRequest,
    IntakeWithVisitRequest,
    UpdateClientRequest,
    DedupeCheckRequest,
    LogVisitRequest,
    EditVisitRequest,
    MergeClientsRequest,
    ClientListParams,
    VisitListParams,
    ClientPath,
    VisitPath,
    parse_request
)

# Response models
from .responses import (
    HalLink,
    ClientResponse,
    VisitResponse,
    IntakeResponse,
    HealthCheckResponse,
    ErrorResponse
)

__all__ = [
    "BaseEntity",
    "generate_object_id",
    "utc_now",

    "ALL_LOCATIONS",
    "AppRole",
    "Capability",
    "capabilities_for",

    "Client",
    "Visit",
    "EligibilityMarker",
    "TenantScope",

    "IntakeRequest",
    "IntakeWithVisitRequest",
    "UpdateClientRequest",
    "DedupeCheckRequest",
    "LogVisitRequest",
    "EditVisitRequest",
    "MergeClientsRequest",
    "ClientListParams",
    "VisitListParams",
    "ClientPath",
    "VisitPath",
    "parse_request",

    "HalLink",
    "ClientResponse",
    "VisitResponse",
    "IntakeResponse",
    "HealthCheckResponse",
    "ErrorResponse"
]
