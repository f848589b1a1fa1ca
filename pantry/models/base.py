# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common fields and document conversion.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from bson import ObjectId


def generate_object_id() -> str:
    """Generate a new MongoDB ObjectId as string."""
    return str(ObjectId())


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class BaseEntity(BaseModel):
    """Base entity with common fields for all tenant-scoped documents.

    Attributes are snake_case in Python and camelCase in the store.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        validate_assignment=True,
        arbitrary_types_allowed=True
    )

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    organization_id: str = Field(..., description="Organization scope identifier")
    location_id: Optional[str] = Field(None, description="Location scope identifier")
    created_at: datetime = Field(default_factory=utc_now, description="Creation timestamp")
    created_by_user_id: Optional[str] = Field(None, description="User who created this entity")

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the persisted camelCase layout, without the id."""
        return self.model_dump(by_alias=True, exclude={"id"})

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        """Build an entity from a stored document (``id`` already unwrapped)."""
        return cls.model_validate(document)
