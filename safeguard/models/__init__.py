"""SQLAlchemy models."""

from __future__ import annotations

from safeguard.models.audit_entry import AuditEntry
from safeguard.models.guardian import Guardian
from safeguard.models.user import User

__all__ = [
    "User",
    "Guardian",
    "AuditEntry",
]
