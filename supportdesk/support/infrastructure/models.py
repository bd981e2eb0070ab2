"""
Support Infrastructure Models
=============================

SQLAlchemy ORM models for the support desk module.

Relationships load with "selectin" so a fetched ticket is fully hydrated
without lazy IO under asyncio.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from supportdesk.config import (
    BusinessModel,
    SupportMode,
    SupportRole,
    TicketCategory,
    TicketPriority,
    TicketStatus,
)
from supportdesk.infrastructure.database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketModel(Base):
    """
    Database model for a support ticket.

    Maps to the 'tickets' table. business_model and tenant_id are written
    once at creation.
    """
    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_number: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)

    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[TicketCategory] = mapped_column(String(50), nullable=False)
    priority: Mapped[TicketPriority] = mapped_column(String(50), nullable=False, default=TicketPriority.MEDIUM)
    status: Mapped[TicketStatus] = mapped_column(String(50), nullable=False, default=TicketStatus.OPEN, index=True)

    # Scope
    business_model: Mapped[BusinessModel] = mapped_column(String(50), nullable=False, index=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # Participants
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    requester_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    assigned_to_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    vendor_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Links
    order_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    product_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    first_response_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    last_response_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    sla: Mapped[Optional["SLARecordModel"]] = relationship(
        back_populates="ticket", uselist=False, lazy="selectin", cascade="all, delete-orphan"
    )
    escalations: Mapped[List["EscalationRecordModel"]] = relationship(
        lazy="selectin",
        order_by="EscalationRecordModel.escalated_at",
        cascade="all, delete-orphan",
    )
    attachments: Mapped[List["AttachmentModel"]] = relationship(
        lazy="selectin",
        primaryjoin="TicketModel.id == AttachmentModel.ticket_id",
        cascade="all, delete-orphan",
    )
    satisfaction: Mapped[Optional["SatisfactionSurveyModel"]] = relationship(
        uselist=False, lazy="selectin", cascade="all, delete-orphan"
    )


class SLARecordModel(Base):
    """
    SLA clocks of a ticket (one-to-one).

    Maps to the 'sla_records' table.
    """
    __tablename__ = "sla_records"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    first_response_sla: Mapped[int] = mapped_column(Integer, nullable=False)
    resolution_sla: Mapped[int] = mapped_column(Integer, nullable=False)
    first_response_due: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    resolution_due: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    first_response_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    first_response_breach: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution_breach: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Minutes
    total_breach_time: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    ticket: Mapped["TicketModel"] = relationship(back_populates="sla", lazy="selectin")


class TicketMessageModel(Base):
    """Conversation message on a ticket. Maps to 'ticket_messages'."""
    __tablename__ = "ticket_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_id: Mapped[str] = mapped_column(String(255), nullable=False)
    author_role: Mapped[SupportRole] = mapped_column(String(50), nullable=False, default=SupportRole.USER)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    attachments: Mapped[List["AttachmentModel"]] = relationship(
        lazy="selectin",
        primaryjoin="TicketMessageModel.id == AttachmentModel.message_id",
        cascade="all, delete-orphan",
    )
    reads: Mapped[List["MessageReadModel"]] = relationship(lazy="selectin", cascade="all, delete-orphan")


class MessageReadModel(Base):
    """Read receipt of a message by a user. Maps to 'message_reads'."""
    __tablename__ = "message_reads"
    __table_args__ = (UniqueConstraint("message_id", "user_id", name="uq_message_read"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    message_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("ticket_messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    read_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class AttachmentModel(Base):
    """
    Reference to an already-uploaded file.

    Linked either to a ticket or to a message. Maps to 'attachments'.
    """
    __tablename__ = "attachments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=True, index=True
    )
    message_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("ticket_messages.id", ondelete="CASCADE"), nullable=True, index=True
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    uploaded_by_id: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class SatisfactionSurveyModel(Base):
    """Requester rating of a finished ticket. Maps to 'satisfaction_surveys'."""
    __tablename__ = "satisfaction_surveys"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    response_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    helpfulness: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    professionalism: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    resolution: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class AgentProfileModel(Base):
    """Support agent directory entry. Maps to 'agent_profiles'."""
    __tablename__ = "agent_profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    role: Mapped[SupportRole] = mapped_column(String(50), nullable=False, default=SupportRole.ADMIN)

    business_model: Mapped[BusinessModel] = mapped_column(String(50), nullable=False, index=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    categories: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    max_concurrent_tickets: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    satisfaction_rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class EscalationRecordModel(Base):
    """Append-only escalation history. Maps to 'escalation_records'."""
    __tablename__ = "escalation_records"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    escalated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    escalated_from: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    escalated_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    target_user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_role: Mapped[Optional[SupportRole]] = mapped_column(String(50), nullable=True)


class SupportConfigModel(Base):
    """
    Support configuration of one (business model, tenant) scope.

    Maps to the 'support_configs' table.
    """
    __tablename__ = "support_configs"
    __table_args__ = (
        UniqueConstraint("business_model", "tenant_id", name="uq_support_config_scope"),
        # NULLs never collide in a unique constraint; one tenant-less row per business model
        Index(
            "uq_support_config_scope_no_tenant",
            "business_model",
            unique=True,
            postgresql_where=text("tenant_id IS NULL"),
            sqlite_where=text("tenant_id IS NULL"),
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    business_model: Mapped[BusinessModel] = mapped_column(String(50), nullable=False)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    mode: Mapped[SupportMode] = mapped_column(String(50), nullable=False, default=SupportMode.INTERNAL)
    escalation_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    chat_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sla_tracking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # First-response SLA minutes
    low_priority_sla: Mapped[int] = mapped_column(Integer, nullable=False, default=1440)
    medium_priority_sla: Mapped[int] = mapped_column(Integer, nullable=False, default=480)
    high_priority_sla: Mapped[int] = mapped_column(Integer, nullable=False, default=120)
    urgent_priority_sla: Mapped[int] = mapped_column(Integer, nullable=False, default=30)

    business_hours_start: Mapped[str] = mapped_column(String(5), nullable=False, default="09:00")
    business_hours_end: Mapped[str] = mapped_column(String(5), nullable=False, default="17:00")
    business_days: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    auto_assign_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    round_robin_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_notifications: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    escalation_emails: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    max_tickets_per_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_tickets_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    max_concurrent_tickets: Mapped[int] = mapped_column(Integer, nullable=False, default=10)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
