"""
Support Application DTOs
========================

Data Transfer Objects for the support desk API layer.

These Pydantic models handle validation of requests and serialization of
responses. Response DTOs are built from ORM models via `from_model`.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from supportdesk.config import (
    BusinessModel,
    SupportMode,
    SupportRole,
    TicketCategory,
    TicketPriority,
    TicketStatus,
)


SortField = Literal["created_at", "updated_at", "priority", "status", "ticket_number"]
SortOrder = Literal["asc", "desc"]


# ========== Request DTOs ==========

class AttachmentDTO(BaseModel):
    """Reference to a file uploaded elsewhere."""
    filename: str = Field(..., min_length=1, max_length=255)
    original_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1)
    size: int = Field(..., ge=0)
    url: str = Field(..., min_length=1)


class TicketCreateDTO(BaseModel):
    """DTO for opening a ticket."""
    subject: str = Field(..., min_length=1, max_length=500)
    description: str = Field(..., min_length=1)
    category: TicketCategory
    priority: TicketPriority = TicketPriority.MEDIUM
    order_id: Optional[str] = None
    product_id: Optional[str] = None
    vendor_id: Optional[str] = None
    requester_email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+$")
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    attachments: List[AttachmentDTO] = Field(default_factory=list)

    @field_validator("subject", "description")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class TicketUpdateDTO(BaseModel):
    """Partial ticket update; only set fields are applied."""
    subject: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = Field(None, min_length=1)
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None
    category: Optional[TicketCategory] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None


class MessageCreateDTO(BaseModel):
    """DTO for posting a message on a ticket."""
    content: str = Field(..., min_length=1)
    is_internal: bool = False
    attachments: List[AttachmentDTO] = Field(default_factory=list)


class EscalateTicketDTO(BaseModel):
    """DTO for escalating a ticket."""
    reason: str = Field(..., min_length=1)
    escalate_to: Optional[str] = Field(None, description="Explicit target user id")
    priority: Optional[TicketPriority] = None
    add_message: Optional[str] = Field(None, description="Internal note appended to the ticket")


class AssignTicketDTO(BaseModel):
    """DTO for assigning a ticket to an agent."""
    agent_id: str = Field(..., min_length=1)


class SatisfactionDTO(BaseModel):
    """Requester satisfaction survey."""
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = None
    response_time: Optional[int] = Field(None, ge=1, le=5)
    helpfulness: Optional[int] = Field(None, ge=1, le=5)
    professionalism: Optional[int] = Field(None, ge=1, le=5)
    resolution: Optional[int] = Field(None, ge=1, le=5)


class TicketFilters(BaseModel):
    """Filters for ticket listing."""
    status: Optional[List[TicketStatus]] = None
    priority: Optional[List[TicketPriority]] = None
    category: Optional[List[TicketCategory]] = None
    assigned_to: Optional[str] = None
    business_model: Optional[BusinessModel] = None
    tenant_id: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    search: Optional[str] = None


class TicketSort(BaseModel):
    field: SortField = "created_at"
    order: SortOrder = "desc"


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class SupportConfigUpdate(BaseModel):
    """Partial update of a tenant support configuration."""
    mode: Optional[SupportMode] = None
    escalation_enabled: Optional[bool] = None
    chat_enabled: Optional[bool] = None
    sla_tracking: Optional[bool] = None
    sla_minutes: Optional[Dict[TicketPriority, int]] = None
    business_hours_start: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    business_hours_end: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    business_days: Optional[List[str]] = None
    timezone: Optional[str] = None
    auto_assignment: Optional[bool] = None
    round_robin: Optional[bool] = None
    email_notifications: Optional[bool] = None
    escalation_emails: Optional[bool] = None
    max_tickets_per_hour: Optional[int] = Field(None, ge=1)
    max_tickets_per_day: Optional[int] = Field(None, ge=1)
    max_concurrent_tickets: Optional[int] = Field(None, ge=1)

    @field_validator("sla_minutes")
    @classmethod
    def validate_sla_minutes(
        cls, v: Optional[Dict[TicketPriority, int]]
    ) -> Optional[Dict[TicketPriority, int]]:
        if v is not None and any(minutes <= 0 for minutes in v.values()):
            raise ValueError("SLA minutes must be positive")
        return v


class AgentProfileDTO(BaseModel):
    """Create or update an agent directory entry."""
    user_id: str = Field(..., min_length=1)
    name: Optional[str] = None
    email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+$")
    role: SupportRole = SupportRole.ADMIN
    business_model: BusinessModel
    tenant_id: Optional[str] = None
    is_active: bool = True
    is_available: bool = True
    categories: List[TicketCategory] = Field(default_factory=list)
    max_concurrent_tickets: int = Field(default=10, ge=1)


# ========== Response DTOs ==========

class AttachmentResponse(BaseModel):
    id: str
    filename: str
    original_name: str
    mime_type: str
    size: int
    url: str
    uploaded_by_id: str
    created_at: datetime

    @classmethod
    def from_model(cls, model: Any) -> "AttachmentResponse":
        return cls(
            id=str(model.id),
            filename=model.filename,
            original_name=model.original_name,
            mime_type=model.mime_type,
            size=model.size,
            url=model.url,
            uploaded_by_id=model.uploaded_by_id,
            created_at=model.created_at,
        )


class SLAResponse(BaseModel):
    """SLA clocks of a ticket."""
    first_response_sla: int = Field(..., description="Minutes")
    resolution_sla: int = Field(..., description="Minutes")
    first_response_due: datetime
    resolution_due: datetime
    first_response_met: bool
    resolution_met: bool
    first_response_breach: bool
    resolution_breach: bool
    total_breach_time: int = Field(..., description="Minutes past due, both clocks")

    @classmethod
    def from_model(cls, model: Any) -> "SLAResponse":
        return cls(
            first_response_sla=model.first_response_sla,
            resolution_sla=model.resolution_sla,
            first_response_due=model.first_response_due,
            resolution_due=model.resolution_due,
            first_response_met=model.first_response_met,
            resolution_met=model.resolution_met,
            first_response_breach=model.first_response_breach,
            resolution_breach=model.resolution_breach,
            total_breach_time=model.total_breach_time,
        )


class EscalationResponse(BaseModel):
    escalated_at: datetime
    escalated_from: Optional[str] = None
    escalated_by: Optional[str] = None
    reason: str
    target_user_id: str
    target_role: Optional[SupportRole] = None

    @classmethod
    def from_model(cls, model: Any) -> "EscalationResponse":
        return cls(
            escalated_at=model.escalated_at,
            escalated_from=model.escalated_from,
            escalated_by=model.escalated_by,
            reason=model.reason,
            target_user_id=model.target_user_id,
            target_role=model.target_role,
        )


class SatisfactionResponse(BaseModel):
    rating: int
    feedback: Optional[str] = None
    response_time: Optional[int] = None
    helpfulness: Optional[int] = None
    professionalism: Optional[int] = None
    resolution: Optional[int] = None
    created_at: datetime

    @classmethod
    def from_model(cls, model: Any) -> "SatisfactionResponse":
        return cls(
            rating=model.rating,
            feedback=model.feedback,
            response_time=model.response_time,
            helpfulness=model.helpfulness,
            professionalism=model.professionalism,
            resolution=model.resolution,
            created_at=model.created_at,
        )


class TicketResponse(BaseModel):
    """Fully hydrated ticket."""
    id: str
    ticket_number: str
    subject: str
    description: str
    category: TicketCategory
    priority: TicketPriority
    status: TicketStatus
    business_model: BusinessModel
    tenant_id: Optional[str] = None
    user_id: str
    requester_email: Optional[str] = None
    assigned_to_id: Optional[str] = None
    vendor_id: Optional[str] = None
    order_id: Optional[str] = None
    product_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    first_response_at: Optional[datetime] = None
    last_response_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    sla: Optional[SLAResponse] = None
    escalations: List[EscalationResponse] = Field(default_factory=list)
    attachments: List[AttachmentResponse] = Field(default_factory=list)
    satisfaction: Optional[SatisfactionResponse] = None

    @classmethod
    def from_model(cls, model: Any) -> "TicketResponse":
        return cls(
            id=str(model.id),
            ticket_number=model.ticket_number,
            subject=model.subject,
            description=model.description,
            category=model.category,
            priority=model.priority,
            status=model.status,
            business_model=model.business_model,
            tenant_id=model.tenant_id,
            user_id=model.user_id,
            requester_email=model.requester_email,
            assigned_to_id=model.assigned_to_id,
            vendor_id=model.vendor_id,
            order_id=model.order_id,
            product_id=model.product_id,
            tags=list(model.tags or []),
            metadata=dict(model.metadata_ or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
            first_response_at=model.first_response_at,
            last_response_at=model.last_response_at,
            resolved_at=model.resolved_at,
            closed_at=model.closed_at,
            sla=SLAResponse.from_model(model.sla) if model.sla else None,
            escalations=[EscalationResponse.from_model(e) for e in model.escalations],
            attachments=[AttachmentResponse.from_model(a) for a in model.attachments],
            satisfaction=(
                SatisfactionResponse.from_model(model.satisfaction)
                if model.satisfaction else None
            ),
        )


class MessageResponse(BaseModel):
    id: str
    ticket_id: str
    author_id: str
    author_role: SupportRole
    content: str
    is_internal: bool
    created_at: datetime
    attachments: List[AttachmentResponse] = Field(default_factory=list)
    read_by: List[str] = Field(default_factory=list)

    @classmethod
    def from_model(cls, model: Any) -> "MessageResponse":
        return cls(
            id=str(model.id),
            ticket_id=str(model.ticket_id),
            author_id=model.author_id,
            author_role=model.author_role,
            content=model.content,
            is_internal=model.is_internal,
            created_at=model.created_at,
            attachments=[AttachmentResponse.from_model(a) for a in model.attachments],
            read_by=[r.user_id for r in model.reads],
        )


class PaginationInfo(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationInfo":
        total_pages = (total + limit - 1) // limit if total else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class TicketListResponse(BaseModel):
    tickets: List[TicketResponse]
    pagination: PaginationInfo


class UserStatsResponse(BaseModel):
    """Ticket statistics of one requester."""
    total_tickets: int
    open_tickets: int
    resolved_tickets: int
    avg_response_time_minutes: Optional[float] = None
    satisfaction_rating: Optional[float] = None


class SupportConfigResponse(BaseModel):
    business_model: BusinessModel
    tenant_id: Optional[str] = None
    mode: SupportMode
    escalation_enabled: bool
    chat_enabled: bool
    sla_tracking: bool
    sla_minutes: Dict[TicketPriority, int]
    business_hours_start: str
    business_hours_end: str
    business_days: List[str]
    timezone: str
    auto_assignment: bool
    round_robin: bool
    email_notifications: bool
    escalation_emails: bool
    max_tickets_per_hour: int
    max_tickets_per_day: int
    max_concurrent_tickets: int

    @classmethod
    def from_config(cls, config: Any) -> "SupportConfigResponse":
        """Build from a resolved `SupportConfig` value object."""
        return cls(
            business_model=config.business_model,
            tenant_id=config.tenant_id,
            mode=config.mode,
            escalation_enabled=config.escalation_enabled,
            chat_enabled=config.chat_enabled,
            sla_tracking=config.sla_tracking,
            sla_minutes=dict(config.sla_minutes),
            business_hours_start=config.business_hours.start,
            business_hours_end=config.business_hours.end,
            business_days=list(config.business_hours.days),
            timezone=config.business_hours.timezone,
            auto_assignment=config.auto_assignment,
            round_robin=config.round_robin,
            email_notifications=config.email_notifications,
            escalation_emails=config.escalation_emails,
            max_tickets_per_hour=config.rate_limits.tickets_per_hour,
            max_tickets_per_day=config.rate_limits.tickets_per_day,
            max_concurrent_tickets=config.rate_limits.max_concurrent_tickets,
        )


class AgentProfileResponse(BaseModel):
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: SupportRole
    business_model: BusinessModel
    tenant_id: Optional[str] = None
    is_active: bool
    is_available: bool
    categories: List[TicketCategory] = Field(default_factory=list)
    max_concurrent_tickets: int
    satisfaction_rating: float
    open_tickets: int = 0

    @classmethod
    def from_model(cls, model: Any, open_tickets: int = 0) -> "AgentProfileResponse":
        return cls(
            user_id=model.user_id,
            name=model.name,
            email=model.email,
            role=model.role,
            business_model=model.business_model,
            tenant_id=model.tenant_id,
            is_active=model.is_active,
            is_available=model.is_available,
            categories=list(model.categories or []),
            max_concurrent_tickets=model.max_concurrent_tickets,
            satisfaction_rating=model.satisfaction_rating,
            open_tickets=open_tickets,
        )
