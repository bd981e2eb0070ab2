"""
Support Infrastructure Repositories
===================================

Concrete implementations of the support repository interfaces using
SQLAlchemy, plus the unit of work that binds them to one session.

This layer contains the data access logic - how we store and retrieve
tickets, messages, agents and tenant configuration.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from supportdesk.config import (
    BusinessModel,
    SupportRole,
    TicketPriority,
    TicketStatus,
    WORKLOAD_STATUSES,
)
from supportdesk.core import Actor
from supportdesk.support.application import (
    AgentProfileDTO,
    AttachmentDTO,
    IAgentRepository,
    IMessageRepository,
    ISatisfactionRepository,
    ISupportConfigRepository,
    ISupportUnitOfWork,
    ITicketRepository,
    SatisfactionDTO,
    TicketFilters,
    TicketSort,
)
from supportdesk.support.domain import (
    AgentCandidate,
    BusinessHours,
    EscalationRecord,
    RateLimits,
    SLASchedule,
    SupportConfig,
)
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

_PRIORITY_RANK = {
    TicketPriority.LOW.value: 1,
    TicketPriority.MEDIUM.value: 2,
    TicketPriority.HIGH.value: 3,
    TicketPriority.URGENT.value: 4,
}


def _parse_uuid(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _tenant_condition(column, tenant_id: Optional[str]):
    return column.is_(None) if tenant_id is None else column == tenant_id


def _attachment_models(attachments: List[AttachmentDTO], uploaded_by: str) -> List[AttachmentModel]:
    now = datetime.now(timezone.utc)
    return [
        AttachmentModel(
            filename=a.filename,
            original_name=a.original_name,
            mime_type=a.mime_type,
            size=a.size,
            url=a.url,
            uploaded_by_id=uploaded_by,
            created_at=now,
        )
        for a in attachments
    ]


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Visibility rules for listing and search are translated into SQL here.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, ticket_id: str, for_update: bool = False) -> Optional[Any]:
        """Get ticket by ID, optionally locking the row."""
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return None

        stmt = select(TicketModel).where(TicketModel.id == ticket_uuid)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        values: Dict[str, Any],
        schedule: SLASchedule,
        attachments: List[AttachmentDTO],
        uploaded_by: str
    ) -> Any:
        """Create ticket, SLA record and attachments in one flush."""
        created_at = values["created_at"]
        model = TicketModel(
            **{k: _enum_value(v) for k, v in values.items()},
            sla=SLARecordModel(
                first_response_sla=schedule.first_response_minutes,
                resolution_sla=schedule.resolution_minutes,
                first_response_due=schedule.first_response_due,
                resolution_due=schedule.resolution_due,
                first_response_met=False,
                resolution_met=False,
                first_response_breach=False,
                resolution_breach=False,
                total_breach_time=0,
                created_at=created_at,
                updated_at=created_at,
            ),
            attachments=_attachment_models(attachments, uploaded_by),
            escalations=[],
        )

        self._session.add(model)
        await self._session.flush()

        return model

    async def add_escalation(self, ticket: Any, record: EscalationRecord) -> None:
        ticket.escalations.append(
            EscalationRecordModel(
                escalated_at=record.escalated_at,
                escalated_from=record.escalated_from,
                escalated_by=record.escalated_by,
                reason=record.reason,
                target_user_id=record.target_user_id,
                target_role=_enum_value(record.target_role),
            )
        )
        await self._session.flush()

    async def count_created_between(self, start: datetime, end: datetime) -> int:
        stmt = select(func.count(TicketModel.id)).where(
            TicketModel.created_at >= start,
            TicketModel.created_at < end,
        )
        return (await self._session.execute(stmt)).scalar_one()

    async def count_by_user_since(self, user_id: str, since: datetime) -> int:
        stmt = select(func.count(TicketModel.id)).where(
            TicketModel.user_id == user_id,
            TicketModel.created_at >= since,
        )
        return (await self._session.execute(stmt)).scalar_one()

    @staticmethod
    def _visibility(actor: Actor) -> List[Any]:
        """Conditions limiting tickets to what the actor may see."""
        if actor.is_platform:
            return []

        if actor.role == SupportRole.USER:
            return [TicketModel.user_id == actor.user_id]

        visible = [
            TicketModel.user_id == actor.user_id,
            TicketModel.assigned_to_id == actor.user_id,
        ]
        if actor.role == SupportRole.VENDOR:
            visible.append(TicketModel.vendor_id == actor.user_id)
        if actor.business_model is not None:
            visible.append(and_(
                TicketModel.business_model == _enum_value(actor.business_model),
                _tenant_condition(TicketModel.tenant_id, actor.tenant_id),
            ))
        return [or_(*visible)]

    @staticmethod
    def _search_condition(query: str):
        pattern = f"%{query}%"
        return or_(
            TicketModel.subject.ilike(pattern),
            TicketModel.description.ilike(pattern),
            TicketModel.ticket_number.ilike(pattern),
        )

    async def list(
        self,
        actor: Actor,
        filters: TicketFilters,
        sort: TicketSort,
        offset: int = 0,
        limit: int = 20
    ) -> Tuple[List[Any], int]:
        """List tickets visible to the actor with filters."""
        conditions = self._visibility(actor)

        if filters.status:
            conditions.append(TicketModel.status.in_([_enum_value(s) for s in filters.status]))
        if filters.priority:
            conditions.append(TicketModel.priority.in_([_enum_value(p) for p in filters.priority]))
        if filters.category:
            conditions.append(TicketModel.category.in_([_enum_value(c) for c in filters.category]))
        if filters.assigned_to:
            conditions.append(TicketModel.assigned_to_id == filters.assigned_to)
        if filters.business_model:
            conditions.append(TicketModel.business_model == _enum_value(filters.business_model))
        if filters.tenant_id:
            conditions.append(TicketModel.tenant_id == filters.tenant_id)
        if filters.created_from:
            conditions.append(TicketModel.created_at >= filters.created_from)
        if filters.created_to:
            conditions.append(TicketModel.created_at <= filters.created_to)
        if filters.search and filters.search.strip():
            conditions.append(self._search_condition(filters.search.strip()))

        count_stmt = select(func.count(TicketModel.id))
        if conditions:
            count_stmt = count_stmt.where(and_(*conditions))
        total = (await self._session.execute(count_stmt)).scalar_one()

        if sort.field == "priority":
            sort_column = case(_PRIORITY_RANK, value=TicketModel.priority, else_=0)
        else:
            sort_column = getattr(TicketModel, sort.field)
        ordering = sort_column.asc() if sort.order == "asc" else sort_column.desc()

        stmt = select(TicketModel)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(ordering, TicketModel.created_at.desc(), TicketModel.id)
        stmt = stmt.limit(limit).offset(offset)

        result = await self._session.execute(stmt)
        return list(result.scalars().all()), total

    async def search(self, actor: Actor, query: str, limit: int = 20) -> List[Any]:
        conditions = self._visibility(actor)
        if query:
            conditions.append(self._search_condition(query))

        stmt = select(TicketModel)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(TicketModel.created_at.desc()).limit(limit)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_unclosed_with_sla(self) -> List[Any]:
        stmt = (
            select(TicketModel)
            .join(SLARecordModel, SLARecordModel.ticket_id == TicketModel.id)
            .where(TicketModel.status != TicketStatus.CLOSED.value)
            .order_by(TicketModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def status_counts_for_user(self, user_id: str) -> Dict[TicketStatus, int]:
        stmt = (
            select(TicketModel.status, func.count(TicketModel.id))
            .where(TicketModel.user_id == user_id)
            .group_by(TicketModel.status)
        )
        result = await self._session.execute(stmt)
        return {TicketStatus(status): count for status, count in result.all()}

    async def response_times_for_user(self, user_id: str) -> List[float]:
        stmt = select(TicketModel.created_at, TicketModel.first_response_at).where(
            TicketModel.user_id == user_id,
            TicketModel.first_response_at.is_not(None),
        )
        result = await self._session.execute(stmt)
        return [
            (first_response_at - created_at).total_seconds() / 60
            for created_at, first_response_at in result.all()
        ]


class SQLAlchemyMessageRepository(IMessageRepository):
    """SQLAlchemy implementation of ticket message repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self,
        ticket_id: str,
        author: Actor,
        content: str,
        is_internal: bool,
        attachments: List[AttachmentDTO],
        created_at: datetime
    ) -> Any:
        model = TicketMessageModel(
            ticket_id=_parse_uuid(ticket_id),
            author_id=author.user_id,
            author_role=_enum_value(author.role),
            content=content,
            is_internal=is_internal,
            created_at=created_at,
            updated_at=created_at,
            attachments=_attachment_models(attachments, author.user_id),
            reads=[],
        )
        self._session.add(model)
        await self._session.flush()
        return model

    async def get_by_id(self, message_id: str) -> Optional[Any]:
        message_uuid = _parse_uuid(message_id)
        if message_uuid is None:
            return None

        stmt = select(TicketMessageModel).where(TicketMessageModel.id == message_uuid)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_ticket(self, ticket_id: str, include_internal: bool) -> List[Any]:
        ticket_uuid = _parse_uuid(ticket_id)
        if ticket_uuid is None:
            return []

        stmt = select(TicketMessageModel).where(TicketMessageModel.ticket_id == ticket_uuid)
        if not include_internal:
            stmt = stmt.where(TicketMessageModel.is_internal.is_(False))
        stmt = stmt.order_by(TicketMessageModel.created_at.asc())

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(self, message_id: str, user_id: str, read_at: datetime) -> bool:
        message_uuid = _parse_uuid(message_id)
        stmt = select(MessageReadModel.id).where(
            MessageReadModel.message_id == message_uuid,
            MessageReadModel.user_id == user_id,
        )
        if (await self._session.execute(stmt)).scalar_one_or_none() is not None:
            return False

        self._session.add(MessageReadModel(message_id=message_uuid, user_id=user_id, read_at=read_at))
        await self._session.flush()
        return True


class SQLAlchemySatisfactionRepository(ISatisfactionRepository):
    """SQLAlchemy implementation of satisfaction survey repository."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, ticket: Any, survey: SatisfactionDTO) -> Any:
        model = SatisfactionSurveyModel(
            ticket_id=ticket.id,
            created_at=datetime.now(timezone.utc),
            **survey.model_dump(),
        )
        ticket.satisfaction = model
        await self._session.flush()
        return model

    async def average_for_agent(self, agent_id: str) -> Optional[float]:
        stmt = (
            select(func.avg(SatisfactionSurveyModel.rating))
            .join(TicketModel, TicketModel.id == SatisfactionSurveyModel.ticket_id)
            .where(TicketModel.assigned_to_id == agent_id)
        )
        value = (await self._session.execute(stmt)).scalar_one_or_none()
        return float(value) if value is not None else None

    async def average_for_user(self, user_id: str) -> Optional[float]:
        stmt = (
            select(func.avg(SatisfactionSurveyModel.rating))
            .join(TicketModel, TicketModel.id == SatisfactionSurveyModel.ticket_id)
            .where(TicketModel.user_id == user_id)
        )
        value = (await self._session.execute(stmt)).scalar_one_or_none()
        return float(value) if value is not None else None


class SQLAlchemyAgentRepository(IAgentRepository):
    """SQLAlchemy implementation of the agent directory."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_user_id(self, user_id: str) -> Optional[Any]:
        stmt = select(AgentProfileModel).where(AgentProfileModel.user_id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def open_ticket_counts(self, user_ids: List[str]) -> Dict[str, int]:
        if not user_ids:
            return {}
        stmt = (
            select(TicketModel.assigned_to_id, func.count(TicketModel.id))
            .where(
                TicketModel.assigned_to_id.in_(user_ids),
                TicketModel.status.in_([s.value for s in WORKLOAD_STATUSES]),
            )
            .group_by(TicketModel.assigned_to_id)
        )
        result = await self._session.execute(stmt)
        return {user_id: count for user_id, count in result.all()}

    @staticmethod
    def _to_candidate(model: Any, open_tickets: int) -> AgentCandidate:
        return AgentCandidate(
            user_id=model.user_id,
            role=SupportRole(model.role),
            open_tickets=open_tickets,
            max_concurrent_tickets=model.max_concurrent_tickets,
            categories=list(model.categories or []),
            is_active=model.is_active,
            is_available=model.is_available,
            email=model.email,
            business_model=BusinessModel(model.business_model),
            tenant_id=model.tenant_id,
        )

    async def get_candidate(self, user_id: str) -> Optional[AgentCandidate]:
        model = await self.get_by_user_id(user_id)
        if model is None:
            return None
        counts = await self.open_ticket_counts([user_id])
        return self._to_candidate(model, counts.get(user_id, 0))

    async def list_candidates(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        role: Optional[SupportRole] = None
    ) -> List[AgentCandidate]:
        stmt = select(AgentProfileModel).where(
            AgentProfileModel.business_model == _enum_value(business_model),
            _tenant_condition(AgentProfileModel.tenant_id, tenant_id),
        )
        if role is not None:
            stmt = stmt.where(AgentProfileModel.role == _enum_value(role))

        models = list((await self._session.execute(stmt)).scalars().all())
        counts = await self.open_ticket_counts([m.user_id for m in models])
        return [self._to_candidate(m, counts.get(m.user_id, 0)) for m in models]

    async def list(
        self,
        business_model: Optional[BusinessModel] = None,
        tenant_id: Optional[str] = None
    ) -> List[Any]:
        stmt = select(AgentProfileModel)
        if business_model is not None:
            stmt = stmt.where(AgentProfileModel.business_model == _enum_value(business_model))
        if tenant_id is not None:
            stmt = stmt.where(AgentProfileModel.tenant_id == tenant_id)
        stmt = stmt.order_by(AgentProfileModel.user_id)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def upsert(self, profile: AgentProfileDTO) -> Any:
        now = datetime.now(timezone.utc)
        model = await self.get_by_user_id(profile.user_id)
        if model is None:
            model = AgentProfileModel(user_id=profile.user_id, created_at=now, satisfaction_rating=0.0)
            self._session.add(model)

        model.name = profile.name
        model.email = profile.email
        model.role = profile.role.value
        model.business_model = profile.business_model.value
        model.tenant_id = profile.tenant_id
        model.is_active = profile.is_active
        model.is_available = profile.is_available
        model.categories = [c.value for c in profile.categories]
        model.max_concurrent_tickets = profile.max_concurrent_tickets
        model.updated_at = now

        await self._session.flush()
        return model

    async def set_satisfaction_rating(self, user_id: str, rating: float) -> None:
        model = await self.get_by_user_id(user_id)
        if model is None:
            return
        model.satisfaction_rating = round(rating, 2)
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()


class SQLAlchemySupportConfigRepository(ISupportConfigRepository):
    """
    SQLAlchemy implementation of tenant support configuration.

    Rows are flat columns; the domain sees a nested `SupportConfig`.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def _get_model(self, business_model: BusinessModel, tenant_id: Optional[str]) -> Optional[Any]:
        stmt = select(SupportConfigModel).where(
            SupportConfigModel.business_model == _enum_value(business_model),
            _tenant_condition(SupportConfigModel.tenant_id, tenant_id),
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _to_domain(model: Any) -> SupportConfig:
        return SupportConfig(
            business_model=model.business_model,
            tenant_id=model.tenant_id,
            mode=model.mode,
            escalation_enabled=model.escalation_enabled,
            chat_enabled=model.chat_enabled,
            sla_tracking=model.sla_tracking,
            sla_minutes={
                TicketPriority.LOW: model.low_priority_sla,
                TicketPriority.MEDIUM: model.medium_priority_sla,
                TicketPriority.HIGH: model.high_priority_sla,
                TicketPriority.URGENT: model.urgent_priority_sla,
            },
            business_hours=BusinessHours(
                start=model.business_hours_start,
                end=model.business_hours_end,
                days=list(model.business_days or []),
                timezone=model.timezone,
            ),
            auto_assignment=model.auto_assign_enabled,
            round_robin=model.round_robin_enabled,
            email_notifications=model.email_notifications,
            escalation_emails=model.escalation_emails,
            rate_limits=RateLimits(
                tickets_per_hour=model.max_tickets_per_hour,
                tickets_per_day=model.max_tickets_per_day,
                max_concurrent_tickets=model.max_concurrent_tickets,
            ),
        )

    async def get(self, business_model: BusinessModel, tenant_id: Optional[str]) -> Optional[SupportConfig]:
        model = await self._get_model(business_model, tenant_id)
        return self._to_domain(model) if model else None

    async def save(self, config: SupportConfig) -> SupportConfig:
        now = datetime.now(timezone.utc)
        model = await self._get_model(config.business_model, config.tenant_id)
        if model is None:
            model = SupportConfigModel(
                business_model=config.business_model.value,
                tenant_id=config.tenant_id,
                created_at=now,
            )
            self._session.add(model)

        model.mode = config.mode.value
        model.escalation_enabled = config.escalation_enabled
        model.chat_enabled = config.chat_enabled
        model.sla_tracking = config.sla_tracking
        model.low_priority_sla = config.sla_minutes_for(TicketPriority.LOW)
        model.medium_priority_sla = config.sla_minutes_for(TicketPriority.MEDIUM)
        model.high_priority_sla = config.sla_minutes_for(TicketPriority.HIGH)
        model.urgent_priority_sla = config.sla_minutes_for(TicketPriority.URGENT)
        model.business_hours_start = config.business_hours.start
        model.business_hours_end = config.business_hours.end
        model.business_days = list(config.business_hours.days)
        model.timezone = config.business_hours.timezone
        model.auto_assign_enabled = config.auto_assignment
        model.round_robin_enabled = config.round_robin
        model.email_notifications = config.email_notifications
        model.escalation_emails = config.escalation_emails
        model.max_tickets_per_hour = config.rate_limits.tickets_per_hour
        model.max_tickets_per_day = config.rate_limits.tickets_per_day
        model.max_concurrent_tickets = config.rate_limits.max_concurrent_tickets
        model.updated_at = now

        await self._session.flush()
        return self._to_domain(model)

    async def list_scopes(self) -> List[Tuple[BusinessModel, Optional[str]]]:
        stmt = select(SupportConfigModel.business_model, SupportConfigModel.tenant_id).order_by(
            SupportConfigModel.business_model, SupportConfigModel.tenant_id
        )
        result = await self._session.execute(stmt)
        return [(BusinessModel(bm), tenant_id) for bm, tenant_id in result.all()]


class SQLAlchemySupportUnitOfWork(ISupportUnitOfWork):
    """
    Unit of work over one AsyncSession.

    Usage:
        uow_factory = lambda: SQLAlchemySupportUnitOfWork(get_session_factory())
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemySupportUnitOfWork":
        self._session = self._session_factory()
        self.tickets = SQLAlchemyTicketRepository(self._session)
        self.messages = SQLAlchemyMessageRepository(self._session)
        self.surveys = SQLAlchemySatisfactionRepository(self._session)
        self.agents = SQLAlchemyAgentRepository(self._session)
        self.configs = SQLAlchemySupportConfigRepository(self._session)
        return self

    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        if self._session is not None:
            await self._session.rollback()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
