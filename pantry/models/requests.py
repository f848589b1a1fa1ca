# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for intake and visit operations.
"""

import re
from datetime import date
from typing import List, Optional, Dict, Any, Type, TypeVar
from pydantic import BaseModel, Field, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .entities import MIN_HOUSEHOLD_SIZE, MAX_HOUSEHOLD_SIZE
from ..domain.errors import ValidationException

ModelT = TypeVar('ModelT', bound=BaseModel)

_ZIP_PATTERN = re.compile(r'^\d{5}$')


class RequestModel(BaseModel):
    """Accepts both snake_case and camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True
    )


def _validate_dob(v: Optional[str]) -> str:
    if not v:
        return ""
    try:
        date.fromisoformat(v)
    except ValueError:
        raise ValueError('Date of birth must be YYYY-MM-DD')
    return v


def _validate_zip(v: Optional[str]) -> str:
    if not v:
        return ""
    if not _ZIP_PATTERN.match(v):
        raise ValueError('ZIP code must be exactly 5 digits')
    return v


class IntakeRequest(RequestModel):
    """Request model for registering a new client."""

    first_name: str = Field(..., min_length=1, max_length=100, description="First name")
    last_name: str = Field(..., min_length=1, max_length=100, description="Last name")
    phone: str = Field("", max_length=40, description="Phone number in any format")
    dob: str = Field("", description="Date of birth (YYYY-MM-DD)")
    address: str = Field("", max_length=300, description="Street address")
    zip: str = Field("", description="5-digit ZIP code")
    county: str = Field(..., min_length=1, max_length=100, description="County")
    household_size: int = Field(
        MIN_HOUSEHOLD_SIZE, ge=MIN_HOUSEHOLD_SIZE, le=MAX_HOUSEHOLD_SIZE,
        description="Household size"
    )
    location_id: Optional[str] = Field(
        None, description="Target location; only org-wide callers may choose"
    )

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, v):
        """Names cannot be blank."""
        if not v.strip():
            raise ValueError('Name cannot be empty')
        return v.strip()

    @field_validator('county')
    @classmethod
    def validate_county(cls, v):
        """County is required for new intakes."""
        if not v.strip():
            raise ValueError('County is required')
        return v.strip()

    @field_validator('dob')
    @classmethod
    def validate_dob(cls, v):
        return _validate_dob(v)

    @field_validator('zip')
    @classmethod
    def validate_zip(cls, v):
        return _validate_zip(v)


class IntakeWithVisitRequest(IntakeRequest):
    """Intake form submission, optionally logging the first visit."""

    log_visit: bool = Field(True, description="Record a visit right after creating the client")
    wants_eligibility_flag: bool = Field(False, description="First USDA visit this month")
    visit_date: Optional[str] = Field(None, description="Visit date (YYYY-MM-DD), defaults to today")
    force_create: bool = Field(False, description="Create even if a possible duplicate exists")


class UpdateClientRequest(RequestModel):
    """Request model for editing descriptive client fields."""

    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=40)
    dob: Optional[str] = None
    address: Optional[str] = Field(None, max_length=300)
    zip: Optional[str] = None
    county: Optional[str] = Field(None, max_length=100)
    household_size: Optional[int] = Field(None, ge=MIN_HOUSEHOLD_SIZE, le=MAX_HOUSEHOLD_SIZE)

    @field_validator('first_name', 'last_name')
    @classmethod
    def validate_name(cls, v):
        """Names cannot be blanked out."""
        if v is not None and not v.strip():
            raise ValueError('Name cannot be empty')
        return v

    @field_validator('dob')
    @classmethod
    def validate_dob(cls, v):
        return None if v is None else _validate_dob(v)

    @field_validator('zip')
    @classmethod
    def validate_zip(cls, v):
        return None if v is None else _validate_zip(v)


class DedupeCheckRequest(RequestModel):
    """Preflight duplicate lookup for the intake form."""

    first_name: str = Field("", description="First name")
    last_name: str = Field("", description="Last name")
    phone: str = Field("", description="Phone number in any format")
    dob: str = Field("", description="Date of birth (YYYY-MM-DD)")


class LogVisitRequest(RequestModel):
    """Request model for logging a visit against an existing client.

    ``household_size`` is clamped rather than rejected, and an unparseable
    ``visit_date`` falls back to today, so neither is range-validated here.
    """

    visit_date: Optional[str] = Field(None, description="Visit date (YYYY-MM-DD)")
    household_size: Optional[int] = Field(None, description="Household size for this visit")
    wants_eligibility_flag: bool = Field(False, description="First USDA visit this month")


class EditVisitRequest(RequestModel):
    """Snapshot corrections on an existing visit."""

    household_size: Optional[int] = Field(None, ge=MIN_HOUSEHOLD_SIZE, le=MAX_HOUSEHOLD_SIZE)
    county: Optional[str] = Field(None, max_length=100)
    zip: Optional[str] = None

    @field_validator('zip')
    @classmethod
    def validate_zip(cls, v):
        return None if v is None else _validate_zip(v)


class MergeClientsRequest(RequestModel):
    """Merge the path client into ``target_id``."""

    target_id: str = Field(..., min_length=1, description="Surviving client id")
    mark_source_merged: bool = Field(True, description="Flag the source as merged afterwards")


class ClientListParams(RequestModel):
    """Query parameters for client search."""

    search: str = Field("", description="Name prefix or phone digits")
    include_inactive: bool = Field(False, description="Include deactivated and merged clients")
    limit: int = Field(50, ge=1, le=200)


class VisitListParams(RequestModel):
    """Query parameters for visit history."""

    client_id: Optional[str] = None
    month_key: Optional[str] = Field(None, pattern=r'^\d{4}-\d{2}$')
    date_key: Optional[str] = Field(None, pattern=r'^\d{4}-\d{2}-\d{2}$')
    limit: int = Field(100, ge=1, le=500)


def format_validation_errors(validation_error: ValidationError) -> List[Dict[str, Any]]:
    """
    Format Pydantic validation errors for API responses.

    Args:
        validation_error: Pydantic ValidationError

    Returns:
        List of formatted error dictionaries
    """
    errors = []

    for error in validation_error.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field_path,
            "message": error["msg"],
            "type": error["type"],
            "input": error.get("input")
        })

    return errors


def parse_request(model_class: Type[ModelT], data: Any) -> ModelT:
    """
    Validate raw input against a request model.

    Raises:
        ValidationException: with per-field errors when validation fails
    """
    if isinstance(data, model_class):
        return data
    if data is None:
        data = {}
    if isinstance(data, BaseModel):
        data = data.model_dump()
    if not isinstance(data, dict):
        raise ValidationException(
            f"{model_class.__name__} expects an object",
            [{"field": "body", "message": "Expected a JSON object", "type": "type_error", "input": None}]
        )
    try:
        return model_class.model_validate(data)
    except ValidationError as e:
        raise ValidationException(
            f"Request validation failed for {model_class.__name__}",
            format_validation_errors(e)
        )


class ClientPath(BaseModel):
    """Path parameters for client routes."""

    client_id: str = Field(..., min_length=1, description="Client id")


class VisitPath(BaseModel):
    """Path parameters for visit routes."""

    visit_id: str = Field(..., min_length=1, description="Visit id")
