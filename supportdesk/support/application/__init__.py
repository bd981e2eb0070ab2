"""
Support Application Layer
=========================

Application services, repository contracts and DTOs for the support desk.
"""

from supportdesk.support.application.dto import (
    AgentProfileDTO,
    AgentProfileResponse,
    AssignTicketDTO,
    AttachmentDTO,
    EscalateTicketDTO,
    MessageCreateDTO,
    MessageResponse,
    Pagination,
    PaginationInfo,
    SatisfactionDTO,
    SatisfactionResponse,
    SupportConfigResponse,
    SupportConfigUpdate,
    TicketCreateDTO,
    TicketFilters,
    TicketListResponse,
    TicketResponse,
    TicketSort,
    TicketUpdateDTO,
    UserStatsResponse,
)
from supportdesk.support.application.services import (
    SUPPORT_CHANNEL,
    AgentDirectoryService,
    AssignmentEngine,
    ConfigResolver,
    EscalationEngine,
    IAgentRepository,
    IMessageRepository,
    ISatisfactionRepository,
    ISupportConfigRepository,
    ISupportPolicyProvider,
    ISupportUnitOfWork,
    ITicketRepository,
    RateLimiter,
    SLATracker,
    TicketService,
    UnitOfWorkFactory,
    user_channel,
)

__all__ = [
    # DTOs
    "AgentProfileDTO",
    "AgentProfileResponse",
    "AssignTicketDTO",
    "AttachmentDTO",
    "EscalateTicketDTO",
    "MessageCreateDTO",
    "MessageResponse",
    "Pagination",
    "PaginationInfo",
    "SatisfactionDTO",
    "SatisfactionResponse",
    "SupportConfigResponse",
    "SupportConfigUpdate",
    "TicketCreateDTO",
    "TicketFilters",
    "TicketListResponse",
    "TicketResponse",
    "TicketSort",
    "TicketUpdateDTO",
    "UserStatsResponse",
    # Interfaces
    "IAgentRepository",
    "IMessageRepository",
    "ISatisfactionRepository",
    "ISupportConfigRepository",
    "ISupportPolicyProvider",
    "ISupportUnitOfWork",
    "ITicketRepository",
    "UnitOfWorkFactory",
    # Services
    "SUPPORT_CHANNEL",
    "AgentDirectoryService",
    "AssignmentEngine",
    "ConfigResolver",
    "EscalationEngine",
    "RateLimiter",
    "SLATracker",
    "TicketService",
    "user_channel",
]
