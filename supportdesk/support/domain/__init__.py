"""
Support Domain Layer
====================

Domain layer for the support desk module.

Contains:
- Entities: AgentCandidate, EscalationRecord, TicketEvent
- Value Objects: SupportConfig, SupportPolicy, SLASchedule
- Domain Services: SLACalculator, transition table, agent selection

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from supportdesk.support.domain.entities import AgentCandidate, EscalationRecord, TicketEvent
from supportdesk.support.domain.value_objects import (
    RESOLUTION_SLA_MULTIPLIER,
    STATUS_TRANSITIONS,
    DEFAULT_ESCALATION_HIERARCHY,
    BusinessHours,
    RateLimits,
    SLACalculator,
    SLASchedule,
    SupportConfig,
    SupportConfigDefaults,
    SupportPolicy,
    can_transition,
    select_least_loaded,
    validate_transition,
)

__all__ = [
    # Entities
    "AgentCandidate",
    "EscalationRecord",
    "TicketEvent",
    # Value Objects & Services
    "RESOLUTION_SLA_MULTIPLIER",
    "STATUS_TRANSITIONS",
    "DEFAULT_ESCALATION_HIERARCHY",
    "BusinessHours",
    "RateLimits",
    "SLACalculator",
    "SLASchedule",
    "SupportConfig",
    "SupportConfigDefaults",
    "SupportPolicy",
    "can_transition",
    "select_least_loaded",
    "validate_transition",
]
