"""
Support Application Services
============================

Application services orchestrate the ticket lifecycle and coordinate
between domain policy and repositories.

Following SOLID principles:
- Single Responsibility: config resolution, rate limiting, SLA clocks,
  assignment and escalation each live in their own collaborator
- Dependency Inversion: services depend on repository and notification
  abstractions, never on SQLAlchemy or httpx directly

Every write runs inside one unit of work. Notifications go out only after
the commit succeeded and never undo it.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from supportdesk.config import (
    BusinessModel,
    NotificationPriority,
    SupportRole,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    PLATFORM_ROLES,
)
from supportdesk.core import (
    Actor,
    AgentNotAvailableException,
    ConfigMissingException,
    EscalationNotAllowedException,
    InvalidStatusTransitionException,
    RateLimitExceededException,
    SatisfactionAlreadySubmittedException,
    TicketNotFoundException,
    UnauthorizedAccessException,
)
from supportdesk.shared.application.notifications import (
    ChannelNotification,
    INotificationDispatcher,
)
from supportdesk.shared.infrastructure.logging import get_logger
from supportdesk.support.application.dto import (
    AgentProfileDTO,
    AssignTicketDTO,
    AttachmentDTO,
    EscalateTicketDTO,
    MessageCreateDTO,
    Pagination,
    PaginationInfo,
    SatisfactionDTO,
    SupportConfigUpdate,
    TicketCreateDTO,
    TicketFilters,
    TicketSort,
    TicketUpdateDTO,
)
from supportdesk.support.domain import (
    AgentCandidate,
    BusinessHours,
    EscalationRecord,
    RateLimits,
    SLACalculator,
    SLASchedule,
    SupportConfig,
    SupportPolicy,
    TicketEvent,
    select_least_loaded,
    validate_transition,
)

logger = get_logger(__name__)

SUPPORT_CHANNEL = "support"
SEARCH_LIMIT = 20


def user_channel(user_id: str) -> str:
    """Per-user broadcast channel."""
    return f"user:{user_id}"


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """Interface for ticket data access."""

    @abstractmethod
    async def get_by_id(self, ticket_id: str, for_update: bool = False) -> Optional[Any]:
        """Get a hydrated ticket; `for_update` locks the row until commit."""

    @abstractmethod
    async def create(
        self,
        values: Dict[str, Any],
        schedule: SLASchedule,
        attachments: List[AttachmentDTO],
        uploaded_by: str
    ) -> Any:
        """Insert a ticket together with its SLA record and attachments."""

    @abstractmethod
    async def add_escalation(self, ticket: Any, record: EscalationRecord) -> None:
        """Append an escalation record to a ticket."""

    @abstractmethod
    async def count_created_between(self, start: datetime, end: datetime) -> int:
        """Count tickets created in [start, end)."""

    @abstractmethod
    async def count_by_user_since(self, user_id: str, since: datetime) -> int:
        """Count tickets a requester created since a point in time."""

    @abstractmethod
    async def list(
        self,
        actor: Actor,
        filters: TicketFilters,
        sort: TicketSort,
        offset: int = 0,
        limit: int = 20
    ) -> Tuple[List[Any], int]:
        """List tickets visible to the actor. Returns (page, total)."""

    @abstractmethod
    async def search(self, actor: Actor, query: str, limit: int = SEARCH_LIMIT) -> List[Any]:
        """Free-text search over tickets visible to the actor."""

    @abstractmethod
    async def list_unclosed_with_sla(self) -> List[Any]:
        """Tickets whose SLA clocks may still change."""

    @abstractmethod
    async def status_counts_for_user(self, user_id: str) -> Dict[TicketStatus, int]:
        """Ticket counts by status for one requester."""

    @abstractmethod
    async def response_times_for_user(self, user_id: str) -> List[float]:
        """Minutes from creation to first response, for answered tickets of a requester."""


class IMessageRepository(ABC):
    """Interface for ticket message data access."""

    @abstractmethod
    async def create(
        self,
        ticket_id: str,
        author: Actor,
        content: str,
        is_internal: bool,
        attachments: List[AttachmentDTO],
        created_at: datetime
    ) -> Any:
        """Insert a message with its attachments."""

    @abstractmethod
    async def get_by_id(self, message_id: str) -> Optional[Any]:
        """Get message by ID."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: str, include_internal: bool) -> List[Any]:
        """Messages of a ticket, oldest first."""

    @abstractmethod
    async def mark_read(self, message_id: str, user_id: str, read_at: datetime) -> bool:
        """Record a read receipt. Returns False when it already existed."""


class ISatisfactionRepository(ABC):
    """Interface for satisfaction survey data access."""

    @abstractmethod
    async def create(self, ticket: Any, survey: SatisfactionDTO) -> Any:
        """Attach a survey to a ticket."""

    @abstractmethod
    async def average_for_agent(self, agent_id: str) -> Optional[float]:
        """Mean rating over tickets assigned to an agent."""

    @abstractmethod
    async def average_for_user(self, user_id: str) -> Optional[float]:
        """Mean rating a requester gave."""


class IAgentRepository(ABC):
    """Interface for agent directory access."""

    @abstractmethod
    async def get_by_user_id(self, user_id: str) -> Optional[Any]:
        """Get agent profile by user ID."""

    @abstractmethod
    async def get_candidate(self, user_id: str) -> Optional[AgentCandidate]:
        """Agent profile with its live open-ticket count."""

    @abstractmethod
    async def list_candidates(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        role: Optional[SupportRole] = None
    ) -> List[AgentCandidate]:
        """Agents of one scope with their live open-ticket counts."""

    @abstractmethod
    async def list(
        self,
        business_model: Optional[BusinessModel] = None,
        tenant_id: Optional[str] = None
    ) -> List[Any]:
        """Directory listing, optionally narrowed to one scope."""

    @abstractmethod
    async def open_ticket_counts(self, user_ids: List[str]) -> Dict[str, int]:
        """Workload (OPEN, IN_PROGRESS, PENDING_USER tickets) per agent."""

    @abstractmethod
    async def upsert(self, profile: AgentProfileDTO) -> Any:
        """Create or replace an agent profile."""

    @abstractmethod
    async def set_satisfaction_rating(self, user_id: str, rating: float) -> None:
        """Store an agent's average satisfaction rating."""


class ISupportConfigRepository(ABC):
    """Interface for per-tenant support configuration."""

    @abstractmethod
    async def get(
        self, business_model: BusinessModel, tenant_id: Optional[str]
    ) -> Optional[SupportConfig]:
        """Configuration of exactly this scope, or None."""

    @abstractmethod
    async def save(self, config: SupportConfig) -> SupportConfig:
        """Insert or update the configuration of its scope."""

    @abstractmethod
    async def list_scopes(self) -> List[Tuple[BusinessModel, Optional[str]]]:
        """Every configured (business model, tenant) pair."""


class ISupportUnitOfWork(ABC):
    """
    One transaction over all support repositories.

    Usage:
        async with uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
            ...
            await uow.commit()

    An exception inside the block rolls back; leaving it without commit
    discards the transaction when the session closes. Loaded objects stay
    usable (detached) after the block.
    """

    tickets: ITicketRepository
    messages: IMessageRepository
    surveys: ISatisfactionRepository
    agents: IAgentRepository
    configs: ISupportConfigRepository

    async def __aenter__(self) -> "ISupportUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.rollback()
        await self.close()

    @abstractmethod
    async def commit(self) -> None:
        """Commit the transaction."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard uncommitted changes."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying session."""


class ISupportPolicyProvider(ABC):
    """Interface for the support section of the policy file."""

    @abstractmethod
    def get_support_policy(self) -> SupportPolicy:
        """Get current support policy."""


UnitOfWorkFactory = Callable[[], ISupportUnitOfWork]


# ========== Collaborators ==========

class ConfigResolver:
    """Resolves and maintains per-(business model, tenant) support configuration."""

    def __init__(self, repository: ISupportConfigRepository, policy_provider: ISupportPolicyProvider):
        self._repo = repository
        self._policy_provider = policy_provider

    async def resolve(self, business_model: BusinessModel, tenant_id: Optional[str]) -> SupportConfig:
        """
        Get the configuration of a scope.

        Raises:
            ConfigMissingException: scope was never configured
        """
        config = await self._repo.get(business_model, tenant_id)
        if config is None:
            raise ConfigMissingException(business_model, tenant_id)
        return config

    async def update_config(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        patch: SupportConfigUpdate
    ) -> SupportConfig:
        """
        Upsert a scope's configuration.

        A new scope starts from the policy's tenant defaults; the patch is
        applied on top. SLA minutes are merged per priority.
        """
        current = await self._repo.get(business_model, tenant_id)
        if current is None:
            defaults = self._policy_provider.get_support_policy().tenant_defaults
            current = SupportConfig(
                business_model=business_model,
                tenant_id=tenant_id,
                **defaults.model_dump()
            )

        data = current.model_dump()
        changes = patch.model_dump(exclude_unset=True)

        if changes.get("sla_minutes"):
            data["sla_minutes"] = {**data["sla_minutes"], **changes.pop("sla_minutes")}
        else:
            changes.pop("sla_minutes", None)

        hours = dict(data["business_hours"])
        for field, key in (
            ("business_hours_start", "start"),
            ("business_hours_end", "end"),
            ("business_days", "days"),
            ("timezone", "timezone"),
        ):
            if changes.get(field) is not None:
                hours[key] = changes.pop(field)
            else:
                changes.pop(field, None)
        data["business_hours"] = BusinessHours(**hours)

        limits = dict(data["rate_limits"])
        for field, key in (
            ("max_tickets_per_hour", "tickets_per_hour"),
            ("max_tickets_per_day", "tickets_per_day"),
            ("max_concurrent_tickets", "max_concurrent_tickets"),
        ):
            if changes.get(field) is not None:
                limits[key] = changes.pop(field)
            else:
                changes.pop(field, None)
        data["rate_limits"] = RateLimits(**limits)

        data.update({k: v for k, v in changes.items() if v is not None})
        return await self._repo.save(SupportConfig(**data))

    async def list_scopes(self) -> List[Tuple[BusinessModel, Optional[str]]]:
        return await self._repo.list_scopes()


class RateLimiter:
    """Per-requester ticket creation quotas."""

    def __init__(self, repository: ITicketRepository):
        self._repo = repository

    async def check_rate_limits(
        self,
        user_id: str,
        config: SupportConfig,
        now: Optional[datetime] = None
    ) -> None:
        """
        Reject the request when a trailing-window quota is already used up.

        Raises:
            RateLimitExceededException: hourly or daily count reached the maximum
        """
        now = now or datetime.now(timezone.utc)
        limits = config.rate_limits

        hourly = await self._repo.count_by_user_since(user_id, now - timedelta(hours=1))
        if hourly >= limits.tickets_per_hour:
            raise RateLimitExceededException(user_id, "hour", limits.tickets_per_hour, hourly)

        daily = await self._repo.count_by_user_since(user_id, now - timedelta(days=1))
        if daily >= limits.tickets_per_day:
            raise RateLimitExceededException(user_id, "day", limits.tickets_per_day, daily)


class SLATracker:
    """
    Keeps a ticket's SLA record in step with its lifecycle.

    Due timestamps come from SLACalculator and are always anchored to
    ticket.created_at.
    """

    @staticmethod
    def schedule(created_at: datetime, priority: TicketPriority, config: SupportConfig) -> SLASchedule:
        return SLACalculator.schedule(created_at, priority, config.sla_minutes)

    def on_priority_change(self, ticket: Any, config: SupportConfig, now: datetime) -> None:
        """Recompute both windows for the new priority, from the original creation time."""
        sla = ticket.sla
        if sla is None:
            return
        schedule = self.schedule(ticket.created_at, ticket.priority, config)
        sla.first_response_sla = schedule.first_response_minutes
        sla.resolution_sla = schedule.resolution_minutes
        sla.first_response_due = schedule.first_response_due
        sla.resolution_due = schedule.resolution_due
        self._refresh_breaches(ticket, now)
        sla.updated_at = now

    def on_first_response(self, ticket: Any, at: datetime) -> None:
        sla = ticket.sla
        if sla is None:
            return
        sla.first_response_met = True
        if at > sla.first_response_due:
            sla.first_response_breach = True
        self._refresh_breaches(ticket, at)
        sla.updated_at = at

    def on_resolved(self, ticket: Any, at: datetime) -> None:
        sla = ticket.sla
        if sla is None:
            return
        sla.resolution_met = at <= sla.resolution_due
        if not sla.resolution_met:
            sla.resolution_breach = True
        self._refresh_breaches(ticket, at)
        sla.updated_at = at

    def on_reopened(self, ticket: Any, at: datetime) -> None:
        sla = ticket.sla
        if sla is None:
            return
        sla.resolution_met = False
        self._refresh_breaches(ticket, at)
        sla.updated_at = at

    def sweep(self, ticket: Any, now: datetime) -> bool:
        """
        Flag breached clocks and recompute accumulated breach minutes.

        Returns:
            True if the record changed
        """
        sla = ticket.sla
        if sla is None:
            return False
        before = (sla.first_response_breach, sla.resolution_breach, sla.total_breach_time)
        self._refresh_breaches(ticket, now)
        changed = before != (sla.first_response_breach, sla.resolution_breach, sla.total_breach_time)
        if changed:
            sla.updated_at = now
        return changed

    @staticmethod
    def _refresh_breaches(ticket: Any, now: datetime) -> None:
        sla = ticket.sla
        if SLACalculator.is_breached(sla.first_response_due, sla.first_response_met, now):
            sla.first_response_breach = True
        if SLACalculator.is_breached(sla.resolution_due, sla.resolution_met, now):
            sla.resolution_breach = True
        sla.total_breach_time = (
            SLACalculator.overdue_minutes(sla.first_response_due, ticket.first_response_at, now)
            + SLACalculator.overdue_minutes(sla.resolution_due, ticket.resolved_at, now)
        )


class AssignmentEngine:
    """Picks and validates agents for tickets."""

    def __init__(self, agents: IAgentRepository):
        self._agents = agents

    async def find_best_agent(
        self,
        category: TicketCategory,
        business_model: BusinessModel,
        tenant_id: Optional[str]
    ) -> Optional[AgentCandidate]:
        """
        Least-loaded agent of the scope who handles the category.

        Ties go to the lowest user id. None when nobody is eligible.
        """
        candidates = await self._agents.list_candidates(business_model, tenant_id)
        eligible = [
            c for c in candidates
            if c.can_take_work and TicketCategory(category) in c.categories
        ]
        return select_least_loaded(eligible)

    async def check_assignable(
        self,
        agent_id: str,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        category: TicketCategory
    ) -> AgentCandidate:
        """
        Raises:
            AgentNotAvailableException: unknown, out of scope, lacking the category,
                inactive, unavailable or at capacity
        """
        candidate = await self._agents.get_candidate(agent_id)
        if candidate is None:
            raise AgentNotAvailableException(f"Agent {agent_id} not found")
        if not candidate.serves(business_model, tenant_id):
            raise AgentNotAvailableException(f"Agent {agent_id} does not serve this scope")
        if TicketCategory(category) not in candidate.categories:
            raise AgentNotAvailableException(
                f"Agent {agent_id} does not handle {TicketCategory(category).value} tickets"
            )
        if not candidate.is_active or not candidate.is_available:
            raise AgentNotAvailableException(f"Agent {agent_id} is not available")
        if not candidate.has_capacity:
            raise AgentNotAvailableException(
                f"Agent {agent_id} is at capacity ({candidate.open_tickets}/{candidate.max_concurrent_tickets})"
            )
        return candidate


class EscalationEngine:
    """Finds escalation targets by walking the business model's role hierarchy."""

    def __init__(self, agents: IAgentRepository, policy: SupportPolicy):
        self._agents = agents
        self._policy = policy

    async def find_escalation_target(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str]
    ) -> Optional[AgentCandidate]:
        """First role in the hierarchy with an active, available agent wins."""
        for role in self._policy.escalation_roles(business_model):
            candidates = await self._agents.list_candidates(business_model, tenant_id, role=role)
            target = select_least_loaded(
                c for c in candidates if c.is_active and c.is_available
            )
            if target is not None:
                return target
        return None


# ========== Application Services ==========

class TicketService:
    """
    Ticket lifecycle manager.

    Owns the unit of work boundary for every ticket operation and emits
    lifecycle events once the transaction committed.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        dispatcher: INotificationDispatcher,
        policy_provider: ISupportPolicyProvider
    ):
        self._uow_factory = uow_factory
        self._dispatcher = dispatcher
        self._policy_provider = policy_provider
        self._sla = SLATracker()

    # ----- access -----

    @staticmethod
    def _can_access(ticket: Any, actor: Actor) -> bool:
        if actor.user_id in (ticket.user_id, ticket.assigned_to_id, ticket.vendor_id):
            return True
        return actor.can_administer(ticket.business_model, ticket.tenant_id)

    async def _get_accessible(
        self,
        uow: ISupportUnitOfWork,
        ticket_id: str,
        actor: Actor,
        for_update: bool = False
    ) -> Any:
        ticket = await uow.tickets.get_by_id(ticket_id, for_update=for_update)
        if ticket is None:
            raise TicketNotFoundException(ticket_id)
        if not self._can_access(ticket, actor):
            raise UnauthorizedAccessException(actor.user_id, f"ticket {ticket_id}")
        return ticket

    async def _reload(self, ticket_id: str) -> Any:
        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundException(ticket_id)
        return ticket

    # ----- lifecycle -----

    async def create_ticket(
        self,
        actor: Actor,
        payload: TicketCreateDTO,
        business_model: BusinessModel,
        tenant_id: Optional[str] = None
    ) -> Any:
        """
        Open a ticket.

        Resolves the scope's configuration, enforces rate limits, then writes
        ticket, SLA record, attachments and (when enabled) the auto-assignment
        in one transaction.

        Raises:
            ConfigMissingException: scope not configured
            RateLimitExceededException: requester quota used up
        """
        assignee: Optional[AgentCandidate] = None

        async with self._uow_factory() as uow:
            config = await ConfigResolver(uow.configs, self._policy_provider).resolve(
                business_model, tenant_id
            )
            await RateLimiter(uow.tickets).check_rate_limits(actor.user_id, config)

            now = datetime.now(timezone.utc)
            ticket_number = await self._generate_ticket_number(uow, now)
            schedule = self._sla.schedule(now, payload.priority, config)

            if config.auto_assignment:
                assignee = await AssignmentEngine(uow.agents).find_best_agent(
                    payload.category, business_model, tenant_id
                )

            values = {
                "ticket_number": ticket_number,
                "subject": payload.subject,
                "description": payload.description,
                "category": payload.category,
                "priority": payload.priority,
                "status": TicketStatus.IN_PROGRESS if assignee else TicketStatus.OPEN,
                "business_model": business_model,
                "tenant_id": tenant_id,
                "user_id": actor.user_id,
                "requester_email": payload.requester_email or actor.email,
                "assigned_to_id": assignee.user_id if assignee else None,
                "vendor_id": payload.vendor_id,
                "order_id": payload.order_id,
                "product_id": payload.product_id,
                "metadata_": dict(payload.metadata),
                "tags": list(payload.tags),
                "created_at": now,
                "updated_at": now,
            }
            ticket = await uow.tickets.create(values, schedule, payload.attachments, actor.user_id)
            ticket_id = str(ticket.id)
            await uow.commit()

        logger.info(
            "Ticket created",
            extra={
                "ticket_id": ticket_id,
                "ticket_number": ticket_number,
                "business_model": business_model.value,
                "tenant_id": tenant_id,
                "assigned_to": assignee.user_id if assignee else None,
            }
        )

        ticket = await self._reload(ticket_id)
        await self._notify_created(ticket, config, assignee)
        return ticket

    async def get_ticket(self, ticket_id: str, actor: Actor) -> Any:
        """
        Raises:
            TicketNotFoundException: unknown id
            UnauthorizedAccessException: caller may not see the ticket
        """
        async with self._uow_factory() as uow:
            return await self._get_accessible(uow, ticket_id, actor)

    async def list_tickets(
        self,
        actor: Actor,
        filters: Optional[TicketFilters] = None,
        sort: Optional[TicketSort] = None,
        pagination: Optional[Pagination] = None
    ) -> Tuple[List[Any], PaginationInfo]:
        """Tickets visible to the actor, filtered, sorted and paginated."""
        filters = filters or TicketFilters()
        sort = sort or TicketSort()
        pagination = pagination or Pagination()

        async with self._uow_factory() as uow:
            tickets, total = await uow.tickets.list(
                actor, filters, sort, offset=pagination.offset, limit=pagination.limit
            )
        return tickets, PaginationInfo.build(pagination.page, pagination.limit, total)

    async def search_tickets(self, actor: Actor, query: str) -> List[Any]:
        """Top matches on subject, description or ticket number, newest first."""
        async with self._uow_factory() as uow:
            return await uow.tickets.search(actor, query.strip(), limit=SEARCH_LIMIT)

    async def update_ticket(self, ticket_id: str, patch: TicketUpdateDTO, actor: Actor) -> Any:
        """
        Apply a partial update.

        Raises:
            InvalidStatusTransitionException: status move not allowed (nothing persisted)
            UnauthorizedAccessException: requester trying to change status or priority
        """
        changes = patch.model_dump(exclude_unset=True)

        async with self._uow_factory() as uow:
            ticket = await self._get_accessible(uow, ticket_id, actor, for_update=True)

            if not actor.is_staff and ({"status", "priority"} & changes.keys()):
                raise UnauthorizedAccessException(actor.user_id, f"ticket {ticket_id} status")

            now = datetime.now(timezone.utc)
            previous_status = TicketStatus(ticket.status)
            new_status = changes.get("status")

            if new_status is not None and TicketStatus(new_status) != previous_status:
                new_status = TicketStatus(new_status)
                validate_transition(previous_status, new_status)
                ticket.status = new_status

                if new_status == TicketStatus.RESOLVED:
                    ticket.resolved_at = now
                    self._sla.on_resolved(ticket, now)
                elif new_status == TicketStatus.CLOSED:
                    ticket.closed_at = now
                elif previous_status == TicketStatus.RESOLVED and new_status == TicketStatus.OPEN:
                    ticket.resolved_at = None
                    self._sla.on_reopened(ticket, now)

            for field in ("subject", "description", "category", "tags"):
                if changes.get(field) is not None:
                    setattr(ticket, field, changes[field])
            if changes.get("metadata") is not None:
                ticket.metadata_ = {**(ticket.metadata_ or {}), **changes["metadata"]}

            new_priority = changes.get("priority")
            if new_priority is not None and TicketPriority(new_priority) != TicketPriority(ticket.priority):
                ticket.priority = TicketPriority(new_priority)
                config = await ConfigResolver(uow.configs, self._policy_provider).resolve(
                    ticket.business_model, ticket.tenant_id
                )
                self._sla.on_priority_change(ticket, config, now)

            ticket.updated_at = now
            await uow.commit()

        ticket = await self._reload(ticket_id)
        await self._emit(
            TicketEvent(
                type="ticket_updated",
                ticket_id=ticket_id,
                ticket_number=ticket.ticket_number,
                data={"changes": sorted(changes.keys()), "status": TicketStatus(ticket.status).value},
                user_id=actor.user_id,
            ),
            recipients=[ticket.user_id, ticket.assigned_to_id],
            exclude=actor.user_id,
        )
        return ticket

    async def add_message(self, ticket_id: str, actor: Actor, payload: MessageCreateDTO) -> Any:
        """
        Post a message.

        The ticket row stays locked while last/first response stamps are
        written, so concurrent posts cannot both claim the first response.
        """
        if payload.is_internal and not actor.is_staff:
            raise UnauthorizedAccessException(actor.user_id, "internal notes")

        async with self._uow_factory() as uow:
            ticket = await self._get_accessible(uow, ticket_id, actor, for_update=True)
            now = datetime.now(timezone.utc)

            message = await uow.messages.create(
                ticket_id, actor, payload.content, payload.is_internal, payload.attachments, now
            )

            ticket.last_response_at = now
            ticket.updated_at = now
            if actor.user_id == ticket.assigned_to_id and ticket.first_response_at is None:
                ticket.first_response_at = now
                self._sla.on_first_response(ticket, now)

            message_id = str(message.id)
            recipients = [ticket.user_id, ticket.assigned_to_id]
            if payload.is_internal:
                recipients = [ticket.assigned_to_id]
            ticket_number = ticket.ticket_number
            await uow.commit()

        async with self._uow_factory() as uow:
            message = await uow.messages.get_by_id(message_id)

        await self._emit(
            TicketEvent(
                type="message_created",
                ticket_id=ticket_id,
                ticket_number=ticket_number,
                data={"message_id": message_id, "is_internal": payload.is_internal},
                user_id=actor.user_id,
            ),
            recipients=recipients,
            exclude=actor.user_id,
        )
        return message

    async def get_ticket_messages(
        self,
        ticket_id: str,
        actor: Actor,
        include_internal: bool = False
    ) -> List[Any]:
        """Internal notes are only returned to staff who ask for them."""
        async with self._uow_factory() as uow:
            await self._get_accessible(uow, ticket_id, actor)
            return await uow.messages.list_for_ticket(
                ticket_id, include_internal=include_internal and actor.is_staff
            )

    async def mark_message_read(self, message_id: str, actor: Actor) -> bool:
        """Idempotent read receipt. Returns True when newly recorded."""
        async with self._uow_factory() as uow:
            message = await uow.messages.get_by_id(message_id)
            if message is None:
                raise TicketNotFoundException(message_id)
            await self._get_accessible(uow, str(message.ticket_id), actor)
            created = await uow.messages.mark_read(
                message_id, actor.user_id, datetime.now(timezone.utc)
            )
            await uow.commit()
        return created

    async def escalate_ticket(self, ticket_id: str, actor: Actor, request: EscalateTicketDTO) -> Any:
        """
        Hand a ticket up the escalation hierarchy.

        Raises:
            EscalationNotAllowedException: escalation disabled for the scope
            AgentNotAvailableException: no target found
            InvalidStatusTransitionException: ticket cannot be escalated from its status
        """
        async with self._uow_factory() as uow:
            ticket = await self._get_accessible(uow, ticket_id, actor, for_update=True)
            config = await ConfigResolver(uow.configs, self._policy_provider).resolve(
                ticket.business_model, ticket.tenant_id
            )
            if not config.escalation_enabled:
                raise EscalationNotAllowedException(
                    f"Escalation is disabled for {ticket.business_model}/{ticket.tenant_id or '-'}"
                )

            validate_transition(TicketStatus(ticket.status), TicketStatus.ESCALATED)

            if request.escalate_to:
                target = await uow.agents.get_candidate(request.escalate_to)
                if target is None:
                    raise AgentNotAvailableException(f"Escalation target {request.escalate_to} not found")
                if not target.serves(ticket.business_model, ticket.tenant_id):
                    raise AgentNotAvailableException(
                        f"Escalation target {request.escalate_to} does not serve this scope"
                    )
                if not target.is_active or not target.is_available:
                    raise AgentNotAvailableException(
                        f"Escalation target {request.escalate_to} is not available"
                    )
            else:
                policy = self._policy_provider.get_support_policy()
                target = await EscalationEngine(uow.agents, policy).find_escalation_target(
                    ticket.business_model, ticket.tenant_id
                )
                if target is None:
                    raise AgentNotAvailableException("No escalation target available")

            now = datetime.now(timezone.utc)
            record = EscalationRecord(
                reason=request.reason,
                target_user_id=target.user_id,
                target_role=target.role,
                escalated_from=ticket.assigned_to_id,
                escalated_by=actor.user_id,
                escalated_at=now,
            )
            await uow.tickets.add_escalation(ticket, record)

            ticket.status = TicketStatus.ESCALATED
            ticket.assigned_to_id = target.user_id
            ticket.updated_at = now

            if request.priority is not None and TicketPriority(request.priority) != TicketPriority(ticket.priority):
                ticket.priority = TicketPriority(request.priority)
                self._sla.on_priority_change(ticket, config, now)

            if request.add_message:
                await uow.messages.create(
                    ticket_id,
                    actor,
                    f"Ticket escalated: {request.reason}\n\n{request.add_message}",
                    True,
                    [],
                    now,
                )

            await uow.commit()

        logger.info(
            "Ticket escalated",
            extra={
                "ticket_id": ticket_id,
                "target_user_id": target.user_id,
                "target_role": target.role,
                "escalated_by": actor.user_id,
            }
        )

        ticket = await self._reload(ticket_id)
        await self._notify_escalated(ticket, target, request.reason, config)
        return ticket

    async def assign_ticket(self, ticket_id: str, request: AssignTicketDTO, actor: Actor) -> Any:
        """
        Assign a ticket to a named agent and move it to IN_PROGRESS.

        Raises:
            UnauthorizedAccessException: caller is not staff
            AgentNotAvailableException: agent cannot take the ticket
        """
        if not actor.is_staff:
            raise UnauthorizedAccessException(actor.user_id, "ticket assignment")

        async with self._uow_factory() as uow:
            ticket = await self._get_accessible(uow, ticket_id, actor, for_update=True)
            agent = await AssignmentEngine(uow.agents).check_assignable(
                request.agent_id, ticket.business_model, ticket.tenant_id, ticket.category
            )

            if TicketStatus(ticket.status) != TicketStatus.IN_PROGRESS:
                validate_transition(TicketStatus(ticket.status), TicketStatus.IN_PROGRESS)
                ticket.status = TicketStatus.IN_PROGRESS

            ticket.assigned_to_id = agent.user_id
            ticket.updated_at = datetime.now(timezone.utc)
            await uow.commit()

        ticket = await self._reload(ticket_id)
        await self._notify_assigned(ticket, agent)
        return ticket

    async def submit_satisfaction(self, ticket_id: str, actor: Actor, survey: SatisfactionDTO) -> Any:
        """
        Rate a finished ticket and refresh the agent's average rating.

        Raises:
            TicketNotFoundException: not the caller's ticket, or not finished yet
            SatisfactionAlreadySubmittedException: second survey
        """
        async with self._uow_factory() as uow:
            ticket = await uow.tickets.get_by_id(ticket_id, for_update=True)
            if (
                ticket is None
                or ticket.user_id != actor.user_id
                or TicketStatus(ticket.status) not in (TicketStatus.RESOLVED, TicketStatus.CLOSED)
            ):
                raise TicketNotFoundException(ticket_id)
            if ticket.satisfaction is not None:
                raise SatisfactionAlreadySubmittedException(ticket_id)

            result = await uow.surveys.create(ticket, survey)

            agent_id = ticket.assigned_to_id
            if agent_id:
                average = await uow.surveys.average_for_agent(agent_id)
                if average is not None:
                    await uow.agents.set_satisfaction_rating(agent_id, average)

            ticket_number = ticket.ticket_number
            await uow.commit()

        await self._emit(
            TicketEvent(
                type="satisfaction_submitted",
                ticket_id=ticket_id,
                ticket_number=ticket_number,
                data={"rating": survey.rating},
                user_id=actor.user_id,
            ),
            recipients=[agent_id],
        )
        return result

    async def delete_ticket(self, ticket_id: str, actor: Actor) -> Any:
        """
        Soft delete: force the ticket to CLOSED.

        Admin-only, and deliberately outside the transition table so any
        open status can be closed.

        Raises:
            UnauthorizedAccessException: requester role
            InvalidStatusTransitionException: ticket already closed
        """
        if not actor.is_staff:
            raise UnauthorizedAccessException(actor.user_id, f"ticket {ticket_id} deletion")

        async with self._uow_factory() as uow:
            ticket = await self._get_accessible(uow, ticket_id, actor, for_update=True)
            if TicketStatus(ticket.status) == TicketStatus.CLOSED:
                raise InvalidStatusTransitionException(TicketStatus.CLOSED, TicketStatus.CLOSED)

            now = datetime.now(timezone.utc)
            ticket.status = TicketStatus.CLOSED
            ticket.closed_at = now
            ticket.updated_at = now
            await uow.commit()

        logger.info("Ticket closed by admin", extra={"ticket_id": ticket_id, "user_id": actor.user_id})
        return await self._reload(ticket_id)

    async def get_user_stats(self, actor: Actor) -> Dict[str, Any]:
        """Totals, open/resolved counts, mean first-response minutes and mean rating."""
        async with self._uow_factory() as uow:
            counts = await uow.tickets.status_counts_for_user(actor.user_id)
            response_times = await uow.tickets.response_times_for_user(actor.user_id)
            satisfaction = await uow.surveys.average_for_user(actor.user_id)

        return {
            "total_tickets": sum(counts.values()),
            "open_tickets": counts.get(TicketStatus.OPEN, 0) + counts.get(TicketStatus.IN_PROGRESS, 0),
            "resolved_tickets": counts.get(TicketStatus.RESOLVED, 0) + counts.get(TicketStatus.CLOSED, 0),
            "avg_response_time_minutes": (
                round(sum(response_times) / len(response_times), 1) if response_times else None
            ),
            "satisfaction_rating": round(satisfaction, 2) if satisfaction is not None else None,
        }

    async def get_config(
        self, business_model: BusinessModel, tenant_id: Optional[str] = None
    ) -> SupportConfig:
        async with self._uow_factory() as uow:
            return await ConfigResolver(uow.configs, self._policy_provider).resolve(
                business_model, tenant_id
            )

    async def update_config(
        self,
        actor: Actor,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        patch: SupportConfigUpdate
    ) -> SupportConfig:
        """Upsert a scope's configuration (scope admins and platform roles)."""
        if not actor.can_administer(business_model, tenant_id):
            raise UnauthorizedAccessException(actor.user_id, "support configuration")

        async with self._uow_factory() as uow:
            config = await ConfigResolver(uow.configs, self._policy_provider).update_config(
                business_model, tenant_id, patch
            )
            await uow.commit()

        logger.info(
            "Support configuration updated",
            extra={"business_model": business_model.value, "tenant_id": tenant_id}
        )
        return config

    async def sweep_sla_breaches(self, now: Optional[datetime] = None) -> int:
        """
        Flag overdue SLA clocks on every unclosed ticket.

        Scopes with SLA tracking switched off are skipped. Returns the number
        of SLA records that changed.
        """
        now = now or datetime.now(timezone.utc)
        updated = 0
        tracking: Dict[Tuple[str, Optional[str]], bool] = {}

        async with self._uow_factory() as uow:
            resolver = ConfigResolver(uow.configs, self._policy_provider)
            for ticket in await uow.tickets.list_unclosed_with_sla():
                scope = (ticket.business_model, ticket.tenant_id)
                if scope not in tracking:
                    try:
                        tracking[scope] = (await resolver.resolve(*scope)).sla_tracking
                    except ConfigMissingException:
                        logger.warning(
                            "No support configuration for ticket scope, skipping SLA sweep",
                            extra={"business_model": scope[0], "tenant_id": scope[1]}
                        )
                        tracking[scope] = False
                if tracking[scope] and self._sla.sweep(ticket, now):
                    updated += 1
            await uow.commit()

        if updated:
            logger.info("SLA sweep flagged breaches", extra={"updated": updated})
        return updated

    # ----- helpers -----

    @staticmethod
    async def _generate_ticket_number(uow: ISupportUnitOfWork, now: datetime) -> str:
        """SUP-YYYYMMDD-NNNN, numbered per UTC day."""
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        count = await uow.tickets.count_created_between(day_start, day_start + timedelta(days=1))
        return f"SUP-{now:%Y%m%d}-{count + 1:04d}"

    async def _emit(
        self,
        event: TicketEvent,
        recipients: List[Optional[str]],
        exclude: Optional[str] = None,
        title: Optional[str] = None,
        message: Optional[str] = None,
        priority: NotificationPriority = NotificationPriority.NORMAL
    ) -> None:
        """Broadcast a lifecycle event on the support channel and to each recipient."""
        data = {
            "ticket_id": event.ticket_id,
            "ticket_number": event.ticket_number,
            "user_id": event.user_id,
            "timestamp": event.timestamp.isoformat(),
            **event.data,
        }
        notification = ChannelNotification(
            type=event.type,
            title=title or event.type.replace("_", " ").capitalize(),
            message=message or f"Ticket {event.ticket_number}",
            priority=priority,
            data=data,
        )
        await self._dispatcher.send_to_channel(SUPPORT_CHANNEL, notification)

        for user_id in dict.fromkeys(r for r in recipients if r and r != exclude):
            await self._dispatcher.send_to_channel(user_channel(user_id), notification)

    async def _notify_created(
        self,
        ticket: Any,
        config: SupportConfig,
        assignee: Optional[AgentCandidate]
    ) -> None:
        await self._emit(
            TicketEvent(
                type="ticket_created",
                ticket_id=str(ticket.id),
                ticket_number=ticket.ticket_number,
                data={
                    "priority": TicketPriority(ticket.priority).value,
                    "category": TicketCategory(ticket.category).value,
                    "assigned_to": ticket.assigned_to_id,
                },
                user_id=ticket.user_id,
            ),
            recipients=[ticket.user_id, ticket.assigned_to_id],
            title="Support ticket created",
            message=f"Ticket {ticket.ticket_number}: {ticket.subject}",
        )

        if config.email_notifications and ticket.requester_email:
            await self._dispatcher.send_email(
                ticket.requester_email,
                f"Support Ticket Created - {ticket.ticket_number}",
                _ticket_created_html(ticket),
            )
        if assignee is not None and assignee.email:
            await self._dispatcher.send_email(
                assignee.email,
                f"New Ticket Assigned - {ticket.ticket_number}",
                _ticket_assigned_html(ticket),
            )

    async def _notify_assigned(self, ticket: Any, agent: AgentCandidate) -> None:
        await self._emit(
            TicketEvent(
                type="ticket_assigned",
                ticket_id=str(ticket.id),
                ticket_number=ticket.ticket_number,
                data={"assigned_to": agent.user_id},
            ),
            recipients=[agent.user_id, ticket.user_id],
            title="Ticket assigned",
            message=f"Ticket {ticket.ticket_number} assigned to {agent.user_id}",
        )
        if agent.email:
            await self._dispatcher.send_email(
                agent.email,
                f"New Ticket Assigned - {ticket.ticket_number}",
                _ticket_assigned_html(ticket),
            )

    async def _notify_escalated(
        self,
        ticket: Any,
        target: AgentCandidate,
        reason: str,
        config: SupportConfig
    ) -> None:
        await self._emit(
            TicketEvent(
                type="escalation",
                ticket_id=str(ticket.id),
                ticket_number=ticket.ticket_number,
                data={
                    "reason": reason,
                    "target_user_id": target.user_id,
                    "target_role": SupportRole(target.role).value,
                },
            ),
            recipients=[target.user_id, ticket.user_id],
            title="Ticket escalated",
            message=f"Ticket {ticket.ticket_number} escalated: {reason}",
            priority=NotificationPriority.HIGH,
        )
        if config.escalation_emails and target.email:
            await self._dispatcher.send_email(
                target.email,
                f"Ticket Escalated - {ticket.ticket_number}",
                _ticket_escalated_html(ticket, reason),
            )


class AgentDirectoryService:
    """Maintains agent profiles used for assignment and escalation."""

    def __init__(self, uow_factory: UnitOfWorkFactory):
        self._uow_factory = uow_factory

    async def upsert_agent(self, actor: Actor, profile: AgentProfileDTO) -> Tuple[Any, int]:
        """
        Create or replace an agent profile.

        Returns:
            (profile, open ticket count)
        """
        if not actor.can_administer(profile.business_model, profile.tenant_id):
            raise UnauthorizedAccessException(actor.user_id, "agent directory")
        if profile.role in PLATFORM_ROLES and not actor.is_platform:
            raise UnauthorizedAccessException(actor.user_id, "platform agent profiles")

        async with self._uow_factory() as uow:
            agent = await uow.agents.upsert(profile)
            counts = await uow.agents.open_ticket_counts([profile.user_id])
            await uow.commit()

        logger.info(
            "Agent profile saved",
            extra={"agent_id": profile.user_id, "role": profile.role.value}
        )
        return agent, counts.get(profile.user_id, 0)

    async def list_agents(
        self,
        actor: Actor,
        business_model: Optional[BusinessModel] = None,
        tenant_id: Optional[str] = None
    ) -> List[Tuple[Any, int]]:
        """Scope admins see their own scope; platform roles may pick any."""
        if not actor.is_platform:
            if actor.role != SupportRole.ADMIN:
                raise UnauthorizedAccessException(actor.user_id, "agent directory")
            business_model, tenant_id = actor.business_model, actor.tenant_id

        async with self._uow_factory() as uow:
            agents = await uow.agents.list(business_model, tenant_id)
            counts = await uow.agents.open_ticket_counts([a.user_id for a in agents])
        return [(agent, counts.get(agent.user_id, 0)) for agent in agents]


# ========== Email bodies ==========

def _ticket_created_html(ticket: Any) -> str:
    return f"""
    <h2>Your support ticket was created</h2>
    <p><strong>Ticket:</strong> {ticket.ticket_number}</p>
    <p><strong>Subject:</strong> {ticket.subject}</p>
    <p><strong>Priority:</strong> {TicketPriority(ticket.priority).value}</p>
    <p>We will get back to you as soon as possible.</p>
    """


def _ticket_assigned_html(ticket: Any) -> str:
    return f"""
    <h2>A ticket was assigned to you</h2>
    <p><strong>Ticket:</strong> {ticket.ticket_number}</p>
    <p><strong>Subject:</strong> {ticket.subject}</p>
    <p><strong>Category:</strong> {TicketCategory(ticket.category).value}</p>
    <p><strong>Priority:</strong> {TicketPriority(ticket.priority).value}</p>
    """


def _ticket_escalated_html(ticket: Any, reason: str) -> str:
    return f"""
    <h2>Ticket escalated to you</h2>
    <p><strong>Ticket:</strong> {ticket.ticket_number}</p>
    <p><strong>Subject:</strong> {ticket.subject}</p>
    <p><strong>Reason:</strong> {reason}</p>
    """
