"""
Support Domain Entities
=======================

Pure Python domain objects for the support desk.

Persistent state (tickets, SLA records, messages) lives in the ORM models;
these are the values the services pass between layers.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supportdesk.config import BusinessModel, SupportRole, TicketCategory


@dataclass
class AgentCandidate:
    """
    An agent considered for assignment or escalation.

    Carries the live open-ticket count so selection needs no extra lookups.
    """

    user_id: str
    role: SupportRole
    open_tickets: int
    max_concurrent_tickets: int
    categories: List[TicketCategory] = field(default_factory=list)
    is_active: bool = True
    is_available: bool = True
    email: Optional[str] = None
    business_model: Optional[BusinessModel] = None
    tenant_id: Optional[str] = None

    @property
    def has_capacity(self) -> bool:
        """Check if agent can take one more ticket."""
        return self.open_tickets < self.max_concurrent_tickets

    @property
    def can_take_work(self) -> bool:
        return self.is_active and self.is_available and self.has_capacity

    def serves(self, business_model: BusinessModel, tenant_id: Optional[str]) -> bool:
        """Agents only work tickets of their own (business model, tenant) scope."""
        return (
            self.business_model is not None
            and BusinessModel(self.business_model) == BusinessModel(business_model)
            and self.tenant_id == tenant_id
        )


@dataclass(frozen=True)
class EscalationRecord:
    """
    One escalation step of a ticket.

    Append-only: created on the escalation transition, never edited.
    """

    reason: str
    target_user_id: str
    target_role: Optional[SupportRole]
    escalated_from: Optional[str] = None
    escalated_by: Optional[str] = None
    escalated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TicketEvent:
    """Lifecycle event broadcast on the support channel after a commit."""

    type: str
    ticket_id: str
    ticket_number: str
    data: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
