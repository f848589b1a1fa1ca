# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Response models for API documentation and HAL formatting.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class HalLink(BaseModel):
    """HAL link representation."""

    href: str = Field(..., description="Link URL")
    method: Optional[str] = Field(None, description="HTTP method")
    type: Optional[str] = Field(None, description="Content type")
    title: Optional[str] = Field(None, description="Link title")
    templated: Optional[bool] = Field(None, description="Whether URL is templated")


class ResponseModel(BaseModel):
    """camelCase response body."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClientResponse(ResponseModel):
    """Client resource."""

    id: str
    organization_id: str
    location_id: Optional[str] = None
    first_name: str
    last_name: str
    phone: str = ""
    dob: str = ""
    address: str = ""
    zip: str = ""
    county: str = ""
    household_size: int
    inactive: bool = False
    merged_into_id: Optional[str] = None
    visit_count_lifetime: int = 0
    visit_count_by_month: Dict[str, int] = Field(default_factory=dict)
    last_visit_at: Optional[datetime] = None
    last_visit_month_key: Optional[str] = None
    created_at: datetime


class VisitResponse(ResponseModel):
    """Visit resource."""

    id: str
    organization_id: str
    location_id: Optional[str] = None
    client_id: str
    client_first_name: str = ""
    client_last_name: str = ""
    household_size: int
    visit_at: datetime
    month_key: str
    date_key: str
    week_key: str
    weekday: int
    usda_first_time_this_month: bool = False
    edited_at: Optional[datetime] = None


class IntakeResponse(ResponseModel):
    """Intake outcome; ``dedupe_match`` set means nothing was created."""

    client: Optional[ClientResponse] = None
    dedupe_match: Optional[ClientResponse] = None
    visit: Optional[VisitResponse] = None


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Overall health status")
    timestamp: datetime = Field(..., description="Check timestamp")
    version: str = Field(..., description="Application version")
    dependencies: Dict[str, Any] = Field(default_factory=dict, description="Dependency status")


class ErrorResponse(BaseModel):
    """Error response model following RFC 7807."""

    type: str = Field(..., description="Error type URI")
    title: str = Field(..., description="Error title")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Error detail")
    instance: str = Field(..., description="Request instance")
    user_message: Optional[str] = Field(None, alias="userMessage", description="Text safe to show staff")
    errors: Optional[List[Dict[str, Any]]] = Field(None, description="Validation errors")
