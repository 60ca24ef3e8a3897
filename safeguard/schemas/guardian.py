"""Guardian directory schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

E164_PATTERN = r"^\+[1-9]\d{6,14}$"


class GuardianPermissions(BaseModel):
    can_view_live_location: bool = True


class GuardianCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    phone: str = Field(pattern=E164_PATTERN)
    relationship: str | None = Field(default=None, max_length=50)
    priority: int = Field(default=1, ge=1)
    permissions: GuardianPermissions = Field(default_factory=GuardianPermissions)


class GuardianResponse(BaseModel):
    id: int
    name: str
    phone: str
    relationship: str | None = None
    priority: int
    is_verified: bool
    permissions: GuardianPermissions
    created_at: datetime

    @classmethod
    def from_model(cls, guardian) -> "GuardianResponse":
        return cls(
            id=guardian.id,
            name=guardian.name,
            phone=guardian.phone,
            relationship=guardian.relationship_tag,
            priority=guardian.priority,
            is_verified=guardian.is_verified,
            permissions=GuardianPermissions(can_view_live_location=guardian.can_view_live_location),
            created_at=guardian.created_at,
        )
