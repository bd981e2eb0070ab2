"""
Support Infrastructure Layer
============================

Infrastructure implementations for the support desk:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer and the unit of work
"""

from supportdesk.support.infrastructure.models import (
    AgentProfileModel,
    AttachmentModel,
    EscalationRecordModel,
    MessageReadModel,
    SatisfactionSurveyModel,
    SLARecordModel,
    SupportConfigModel,
    TicketMessageModel,
    TicketModel,
)
from supportdesk.support.infrastructure.repositories import (
    SQLAlchemyAgentRepository,
    SQLAlchemyMessageRepository,
    SQLAlchemySatisfactionRepository,
    SQLAlchemySupportConfigRepository,
    SQLAlchemySupportUnitOfWork,
    SQLAlchemyTicketRepository,
)

__all__ = [
    "AgentProfileModel",
    "AttachmentModel",
    "EscalationRecordModel",
    "MessageReadModel",
    "SatisfactionSurveyModel",
    "SLARecordModel",
    "SupportConfigModel",
    "TicketMessageModel",
    "TicketModel",
    "SQLAlchemyAgentRepository",
    "SQLAlchemyMessageRepository",
    "SQLAlchemySatisfactionRepository",
    "SQLAlchemySupportConfigRepository",
    "SQLAlchemySupportUnitOfWork",
    "SQLAlchemyTicketRepository",
]
