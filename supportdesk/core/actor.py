"""
Caller Identity
===============

The authenticated caller as seen by the services. Authentication itself
happens upstream; the API layer builds an Actor from request headers.
"""

from dataclasses import dataclass
from typing import Optional

from supportdesk.config import (
    BusinessModel,
    SupportRole,
    PLATFORM_ROLES,
)


@dataclass(frozen=True)
class Actor:
    """User id, role and (business model, tenant) scope of a caller."""

    user_id: str
    role: SupportRole = SupportRole.USER
    business_model: Optional[BusinessModel] = None
    tenant_id: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        """Anyone who is not a plain end user."""
        return self.role != SupportRole.USER

    @property
    def is_platform(self) -> bool:
        """Platform-wide roles see every scope."""
        return self.role in PLATFORM_ROLES

    def in_scope(self, business_model: BusinessModel, tenant_id: Optional[str]) -> bool:
        """Check whether the actor's own scope matches the given one."""
        return self.business_model == business_model and self.tenant_id == tenant_id

    def can_administer(self, business_model: BusinessModel, tenant_id: Optional[str]) -> bool:
        """Platform roles, or an ADMIN working inside their own scope."""
        if self.is_platform:
            return True
        return self.role == SupportRole.ADMIN and self.in_scope(business_model, tenant_id)
