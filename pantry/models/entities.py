# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the pantry intake platform.
"""

from datetime import datetime
from typing import List, Optional, Dict
from pydantic import BaseModel, Field, field_validator, ConfigDict
from .base import BaseEntity
from .enums import ALL_LOCATIONS, Capability, capabilities_for

MIN_HOUSEHOLD_SIZE = 1
MAX_HOUSEHOLD_SIZE = 20


class Client(BaseEntity):
    """A person receiving services, with denormalized visit counters."""

    first_name: str = Field(..., min_length=1, max_length=100, description="First name")
    last_name: str = Field(..., min_length=1, max_length=100, description="Last name")
    full_name_lower: str = Field("", description="Lowercased 'first last' for search")
    phone: str = Field("", description="Phone as entered")
    phone_digits: str = Field("", description="Digits-only phone, dedupe key")
    dob: str = Field("", description="Date of birth (YYYY-MM-DD) or empty")
    address: str = Field("", description="Street address")
    zip: str = Field("", description="Postal code")
    county: str = Field("", description="County")
    household_size: int = Field(
        MIN_HOUSEHOLD_SIZE, ge=MIN_HOUSEHOLD_SIZE, le=MAX_HOUSEHOLD_SIZE,
        description="Household size"
    )
    name_dob_hash: str = Field("", description="Stable hash of name + DOB, dedupe key")

    inactive: bool = Field(default=False, description="Soft-delete flag")
    merged_into_id: Optional[str] = Field(None, description="Surviving client after a merge")

    visit_count_lifetime: int = Field(default=0, ge=0, description="Visits ever recorded")
    visit_count_by_month: Dict[str, int] = Field(default_factory=dict, description="Visits per YYYY-MM")
    last_visit_at: Optional[datetime] = Field(None, description="Most recent visit time")
    last_visit_month_key: Optional[str] = Field(None, description="Month of most recent visit")

    updated_at: Optional[datetime] = Field(None, description="Last update timestamp")
    updated_by_user_id: Optional[str] = Field(None, description="Last updater")
    deactivated_at: Optional[datetime] = None
    deactivated_by: Optional[str] = None
    reactivated_at: Optional[datetime] = None
    reactivated_by: Optional[str] = None


class Visit(BaseEntity):
    """One service event. Append-only apart from the edit audit stamp."""

    client_id: str = Field(..., description="Client who received service")

    client_first_name: str = Field("", description="Snapshot at visit time")
    client_last_name: str = Field("", description="Snapshot at visit time")
    client_address: str = Field("", description="Snapshot at visit time")
    client_zip: str = Field("", description="Snapshot at visit time")
    client_county: str = Field("", description="Snapshot at visit time")
    household_size: int = Field(
        ..., ge=MIN_HOUSEHOLD_SIZE, le=MAX_HOUSEHOLD_SIZE,
        description="Household size at visit time"
    )

    visit_at: datetime = Field(..., description="When the visit happened")
    month_key: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    date_key: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    week_key: str = Field(..., pattern=r"^\d{4}-W\d{2}$")
    weekday: int = Field(..., ge=0, le=6, description="0=Sunday .. 6=Saturday")

    usda_first_time_this_month: bool = Field(
        default=False, description="This visit created the month's eligibility marker"
    )

    edited_at: Optional[datetime] = Field(None, description="Audit stamp for snapshot edits")
    edited_by_user_id: Optional[str] = Field(None, description="Audit stamp for snapshot edits")


class EligibilityMarker(BaseEntity):
    """Once-per-(organization, client, month) first-visit sentinel."""

    client_id: str = Field(..., description="Client the marker belongs to")
    month_key: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    visit_id: Optional[str] = Field(None, description="Visit that created the marker")
    client_first_name: str = ""
    client_last_name: str = ""


class TenantScope(BaseModel):
    """Per-request capability: who is calling and where they may act."""

    model_config = ConfigDict(
        use_enum_values=True,
        frozen=True
    )

    organization_id: str = Field(..., description="Caller's organization")
    location_id: Optional[str] = Field(None, description="Concrete location id or 'ALL'")
    role: str = Field(..., description="Caller's role in the organization")
    user_id: Optional[str] = Field(None, description="Authenticated user id")
    capabilities: List[str] = Field(default_factory=list, description="Effective capabilities")

    @field_validator('organization_id')
    @classmethod
    def validate_organization_id(cls, v):
        """Organization id must be present."""
        if not v or not v.strip():
            raise ValueError('Organization id cannot be empty')
        return v.strip()

    @classmethod
    def for_role(cls, organization_id: str, location_id: Optional[str], role: str,
                 user_id: Optional[str] = None) -> "TenantScope":
        """Build a scope with the capabilities granted by ``role``."""
        return cls(
            organization_id=organization_id,
            location_id=location_id,
            role=role,
            user_id=user_id,
            capabilities=sorted(c.value for c in capabilities_for(role))
        )

    @property
    def is_all_locations(self) -> bool:
        return self.location_id == ALL_LOCATIONS

    @property
    def has_concrete_location(self) -> bool:
        return bool(self.location_id) and not self.is_all_locations

    def has_capability(self, capability) -> bool:
        value = capability.value if isinstance(capability, Capability) else capability
        return value in self.capabilities
