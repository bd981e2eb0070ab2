"""
Support Value Objects
=====================

Immutable value objects and pure policy for the support desk:
- The ticket status transition table
- SLA due-date arithmetic (SLACalculator)
- Resolved per-tenant support configuration
- Escalation hierarchy and least-loaded agent selection
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from supportdesk.config import (
    BusinessModel,
    SupportMode,
    SupportRole,
    TicketPriority,
    TicketStatus,
)
from supportdesk.core.exceptions import InvalidStatusTransitionException
from supportdesk.support.domain.entities import AgentCandidate


# Resolution window is a fixed multiple of the first-response window
RESOLUTION_SLA_MULTIPLIER = 4


# ========== Status Machine ==========

STATUS_TRANSITIONS: Dict[TicketStatus, FrozenSet[TicketStatus]] = {
    TicketStatus.OPEN: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.CLOSED}),
    TicketStatus.IN_PROGRESS: frozenset({
        TicketStatus.PENDING_USER,
        TicketStatus.RESOLVED,
        TicketStatus.ESCALATED,
    }),
    TicketStatus.PENDING_USER: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.CLOSED}),
    TicketStatus.PENDING_VENDOR: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.ESCALATED}),
    TicketStatus.ESCALATED: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED}),
    TicketStatus.RESOLVED: frozenset({TicketStatus.CLOSED, TicketStatus.OPEN}),
    TicketStatus.CLOSED: frozenset(),
}


def can_transition(from_status: TicketStatus, to_status: TicketStatus) -> bool:
    """Check a status move against the transition table."""
    return TicketStatus(to_status) in STATUS_TRANSITIONS[TicketStatus(from_status)]


def validate_transition(from_status: TicketStatus, to_status: TicketStatus) -> None:
    """
    Raise if the status move is not allowed.

    Raises:
        InvalidStatusTransitionException: move not in the table
    """
    if not can_transition(from_status, to_status):
        raise InvalidStatusTransitionException(TicketStatus(from_status), TicketStatus(to_status))


# ========== SLA ==========

@dataclass(frozen=True)
class SLASchedule:
    """Computed SLA windows and due timestamps for one ticket."""

    first_response_minutes: int
    resolution_minutes: int
    first_response_due: datetime
    resolution_due: datetime


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Every due timestamp is anchored to the ticket's creation time, so
    recomputing after a priority change never moves the anchor.
    """

    @staticmethod
    def schedule(
        created_at: datetime,
        priority: TicketPriority,
        sla_minutes: Mapping[TicketPriority, int]
    ) -> SLASchedule:
        """
        Calculate SLA windows for a ticket.

        Args:
            created_at: When the ticket was created
            priority: Current ticket priority
            sla_minutes: First-response minutes by priority

        Returns:
            SLASchedule with both due timestamps
        """
        minutes = int(sla_minutes[TicketPriority(priority)])
        resolution_minutes = minutes * RESOLUTION_SLA_MULTIPLIER
        return SLASchedule(
            first_response_minutes=minutes,
            resolution_minutes=resolution_minutes,
            first_response_due=created_at + timedelta(minutes=minutes),
            resolution_due=created_at + timedelta(minutes=resolution_minutes),
        )

    @staticmethod
    def is_breached(due: datetime, met: bool, now: datetime) -> bool:
        """A clock is breached once it is past due without being met."""
        return not met and now > due

    @staticmethod
    def overdue_minutes(due: datetime, stopped_at: Optional[datetime], now: datetime) -> int:
        """Whole minutes a clock ran past its due time (0 if it stopped in time)."""
        end = stopped_at or now
        if end <= due:
            return 0
        return int((end - due).total_seconds() // 60)


# ========== Configuration ==========

class BusinessHours(BaseModel):
    """Working hours of a support team."""
    start: str = Field(default="09:00", pattern=r"^\d{2}:\d{2}$")
    end: str = Field(default="17:00", pattern=r"^\d{2}:\d{2}$")
    days: List[str] = Field(
        default_factory=lambda: ["monday", "tuesday", "wednesday", "thursday", "friday"]
    )
    timezone: str = "UTC"


class RateLimits(BaseModel):
    """Ticket creation quotas per requester."""
    tickets_per_hour: int = Field(default=10, ge=1)
    tickets_per_day: int = Field(default=50, ge=1)
    max_concurrent_tickets: int = Field(default=10, ge=1)


class SupportConfigDefaults(BaseModel):
    """
    Support settings without a scope.

    Loaded from the policy YAML and used to seed new tenant configurations.
    """
    mode: SupportMode = SupportMode.INTERNAL
    escalation_enabled: bool = True
    chat_enabled: bool = True
    sla_tracking: bool = True
    sla_minutes: Dict[TicketPriority, int] = Field(
        default_factory=lambda: {
            TicketPriority.LOW: 1440,
            TicketPriority.MEDIUM: 480,
            TicketPriority.HIGH: 120,
            TicketPriority.URGENT: 30,
        },
        description="First-response SLA in minutes by priority"
    )
    business_hours: BusinessHours = Field(default_factory=BusinessHours)
    auto_assignment: bool = False
    round_robin: bool = False
    email_notifications: bool = True
    escalation_emails: bool = True
    rate_limits: RateLimits = Field(default_factory=RateLimits)

    @field_validator("sla_minutes")
    @classmethod
    def validate_sla_minutes(cls, v: Dict[TicketPriority, int]) -> Dict[TicketPriority, int]:
        """Fill missing priorities with the stock defaults."""
        defaults = {
            TicketPriority.LOW: 1440,
            TicketPriority.MEDIUM: 480,
            TicketPriority.HIGH: 120,
            TicketPriority.URGENT: 30,
        }
        for priority, minutes in defaults.items():
            v.setdefault(priority, minutes)
        for priority, minutes in v.items():
            if minutes <= 0:
                raise ValueError(f"SLA minutes for {priority.value} must be positive")
        return v


class SupportConfig(SupportConfigDefaults):
    """Support configuration resolved for one (business model, tenant) scope."""
    business_model: BusinessModel
    tenant_id: Optional[str] = None

    def sla_minutes_for(self, priority: TicketPriority) -> int:
        return self.sla_minutes[TicketPriority(priority)]


# ========== Escalation & Assignment ==========

DEFAULT_ESCALATION_HIERARCHY: Dict[BusinessModel, List[SupportRole]] = {
    BusinessModel.B2B_SALE: [SupportRole.VENDOR, SupportRole.PLATFORM_ADMIN],
    BusinessModel.SAAS_MULTITENANT: [SupportRole.SUPER_ADMIN, SupportRole.PLATFORM_ADMIN],
    BusinessModel.MARKETPLACE_PLATFORM: [SupportRole.PLATFORM_ADMIN, SupportRole.SUPER_ADMIN],
}


class SupportPolicy(BaseModel):
    """Support section of the policy file."""
    tenant_defaults: SupportConfigDefaults = Field(default_factory=SupportConfigDefaults)
    escalation_hierarchy: Dict[BusinessModel, List[SupportRole]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_ESCALATION_HIERARCHY.items()}
    )

    @field_validator("escalation_hierarchy")
    @classmethod
    def fill_hierarchy(
        cls, v: Dict[BusinessModel, List[SupportRole]]
    ) -> Dict[BusinessModel, List[SupportRole]]:
        """Business models missing from the file keep the built-in order."""
        for model, roles in DEFAULT_ESCALATION_HIERARCHY.items():
            v.setdefault(model, list(roles))
        return v

    def escalation_roles(self, business_model: BusinessModel) -> List[SupportRole]:
        return list(self.escalation_hierarchy.get(BusinessModel(business_model), []))


def select_least_loaded(candidates: Iterable[AgentCandidate]) -> Optional[AgentCandidate]:
    """
    Pick the agent with the fewest open tickets.

    Ties go to the lowest user id so the choice is deterministic.
    """
    ranked = sorted(candidates, key=lambda c: (c.open_tickets, c.user_id))
    return ranked[0] if ranked else None
