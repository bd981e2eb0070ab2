from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from conftest import BM, TENANT, add_agent, add_open_tickets, configure_scope
from supportdesk.config import BusinessModel, SupportRole, TicketCategory, TicketPriority, TicketStatus
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
from supportdesk.support.application import (
    SUPPORT_CHANNEL,
    AssignTicketDTO,
    EscalateTicketDTO,
    MessageCreateDTO,
    SatisfactionDTO,
    SupportConfigUpdate,
    TicketCreateDTO,
    TicketFilters,
    TicketUpdateDTO,
    user_channel,
)
from supportdesk.support.domain import RateLimits
from supportdesk.support.infrastructure import SQLAlchemySupportConfigRepository, SupportConfigModel


def ticket_payload(**overrides):
    values = {
        "subject": "Cannot log in",
        "description": "The login page keeps spinning",
        "category": TicketCategory.TECHNICAL,
        "priority": TicketPriority.MEDIUM,
    }
    values.update(overrides)
    return TicketCreateDTO(**values)


async def open_ticket(service, actor, **overrides):
    return await service.create_ticket(actor, ticket_payload(**overrides), BM, TENANT)


def agent_actor(user_id, role=SupportRole.ADMIN):
    return Actor(user_id=user_id, role=role, business_model=BM, tenant_id=TENANT)


# ========== Creation ==========

async def test_create_ticket_without_config_fails(ticket_service, requester):
    with pytest.raises(ConfigMissingException):
        await open_ticket(ticket_service, requester)


async def test_create_ticket_sets_number_sla_and_broadcasts(
    session_factory, ticket_service, requester, dispatcher
):
    await configure_scope(session_factory)

    ticket = await open_ticket(ticket_service, requester, priority=TicketPriority.HIGH)

    assert ticket.ticket_number.startswith("SUP-")
    assert ticket.ticket_number.endswith("-0001")
    assert ticket.status == TicketStatus.OPEN
    assert ticket.assigned_to_id is None
    assert ticket.requester_email == "user-1@example.com"
    assert ticket.sla.first_response_due == ticket.created_at + timedelta(minutes=120)
    assert ticket.sla.resolution_due == ticket.created_at + timedelta(minutes=480)

    created = dispatcher.on_channel(SUPPORT_CHANNEL)
    assert [n.type for n in created] == ["ticket_created"]
    assert dispatcher.on_channel(user_channel("user-1"))
    assert dispatcher.emails[0][0] == "user-1@example.com"


async def test_ticket_numbers_increase_per_day(session_factory, ticket_service, requester):
    await configure_scope(session_factory)
    first = await open_ticket(ticket_service, requester)
    second = await open_ticket(ticket_service, requester)
    assert first.ticket_number[:-4] == second.ticket_number[:-4]
    assert second.ticket_number.endswith("-0002")


async def test_eleventh_ticket_in_an_hour_is_rejected(session_factory, ticket_service, requester):
    await configure_scope(session_factory, rate_limits=RateLimits(tickets_per_hour=10))

    for _ in range(10):
        await open_ticket(ticket_service, requester)

    with pytest.raises(RateLimitExceededException) as exc_info:
        await open_ticket(ticket_service, requester)

    assert exc_info.value.window == "hour"
    assert exc_info.value.limit == 10
    assert exc_info.value.count == 10


async def test_daily_limit(session_factory, ticket_service, requester):
    await configure_scope(
        session_factory,
        rate_limits=RateLimits(tickets_per_hour=100, tickets_per_day=3),
    )
    for _ in range(3):
        await open_ticket(ticket_service, requester)

    with pytest.raises(RateLimitExceededException) as exc_info:
        await open_ticket(ticket_service, requester)
    assert exc_info.value.window == "day"


async def test_auto_assignment_picks_least_loaded_agent(session_factory, ticket_service, requester):
    await configure_scope(session_factory, auto_assignment=True)
    await add_agent(session_factory, "agent-busy", categories=[TicketCategory.TECHNICAL])
    await add_agent(session_factory, "agent-light", categories=[TicketCategory.TECHNICAL])
    await add_open_tickets(session_factory, "agent-busy", 5)
    await add_open_tickets(session_factory, "agent-light", 2)

    ticket = await open_ticket(ticket_service, requester)

    assert ticket.assigned_to_id == "agent-light"
    assert ticket.status == TicketStatus.IN_PROGRESS


async def test_auto_assignment_ties_go_to_lowest_user_id(session_factory, ticket_service, requester):
    await configure_scope(session_factory, auto_assignment=True)
    await add_agent(session_factory, "agent-b", categories=[TicketCategory.TECHNICAL])
    await add_agent(session_factory, "agent-a", categories=[TicketCategory.TECHNICAL])

    ticket = await open_ticket(ticket_service, requester)
    assert ticket.assigned_to_id == "agent-a"


async def test_auto_assignment_skips_wrong_category_and_unavailable(
    session_factory, ticket_service, requester
):
    await configure_scope(session_factory, auto_assignment=True)
    await add_agent(session_factory, "agent-billing", categories=[TicketCategory.BILLING])
    await add_agent(session_factory, "agent-away", categories=[TicketCategory.TECHNICAL], is_available=False)

    ticket = await open_ticket(ticket_service, requester)

    assert ticket.assigned_to_id is None
    assert ticket.status == TicketStatus.OPEN


# ========== Updates ==========

async def test_invalid_transition_leaves_ticket_untouched(
    session_factory, ticket_service, requester, scope_admin
):
    await configure_scope(session_factory)
    ticket = await open_ticket(ticket_service, requester)

    with pytest.raises(InvalidStatusTransitionException):
        await ticket_service.update_ticket(
            str(ticket.id), TicketUpdateDTO(status=TicketStatus.RESOLVED, subject="Changed"), scope_admin
        )

    reloaded = await ticket_service.get_ticket(str(ticket.id), scope_admin)
    assert reloaded.status == TicketStatus.OPEN
    assert reloaded.subject == "Cannot log in"


async def test_requester_cannot_change_status(session_factory, ticket_service, requester):
    await configure_scope(session_factory)
    ticket = await open_ticket(ticket_service, requester)

    with pytest.raises(UnauthorizedAccessException):
        await ticket_service.update_ticket(
            str(ticket.id), TicketUpdateDTO(status=TicketStatus.CLOSED), requester
        )


async def test_other_users_cannot_see_ticket(session_factory, ticket_service, requester):
    await configure_scope(session_factory)
    ticket = await open_ticket(ticket_service, requester)
    stranger = Actor(user_id="user-2", business_model=BM, tenant_id=TENANT)

    with pytest.raises(UnauthorizedAccessException):
        await ticket_service.get_ticket(str(ticket.id), stranger)

    tickets, pagination = await ticket_service.list_tickets(stranger)
    assert tickets == []
    assert pagination.total == 0


async def test_unknown_ticket(ticket_service, scope_admin):
    with pytest.raises(TicketNotFoundException):
        await ticket_service.get_ticket("not-a-uuid", scope_admin)


async def test_priority_change_recomputes_sla_from_creation(
    session_factory, ticket_service, requester, scope_admin
):
    await configure_scope(session_factory)
    ticket = await open_ticket(ticket_service, requester, priority=TicketPriority.LOW)

    updated = await ticket_service.update_ticket(
        str(ticket.id), TicketUpdateDTO(priority=TicketPriority.URGENT), scope_admin
    )

    assert updated.priority == TicketPriority.URGENT
    assert updated.sla.first_response_sla == 30
    assert updated.sla.resolution_sla == 120
    assert updated.sla.first_response_due == ticket.created_at + timedelta(minutes=30)
    assert updated.sla.resolution_due == ticket.created_at + timedelta(minutes=120)


async def test_resolve_and_reopen(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    ticket = await open_ticket(ticket_service, requester)
    ticket_id = str(ticket.id)

    await ticket_service.update_ticket(ticket_id, TicketUpdateDTO(status=TicketStatus.IN_PROGRESS), scope_admin)
    resolved = await ticket_service.update_ticket(ticket_id, TicketUpdateDTO(status=TicketStatus.RESOLVED), scope_admin)
    assert resolved.resolved_at is not None
    assert resolved.sla.resolution_met is True

    reopened = await ticket_service.update_ticket(ticket_id, TicketUpdateDTO(status=TicketStatus.OPEN), scope_admin)
    assert reopened.resolved_at is None
    assert reopened.sla.resolution_met is False


async def test_closing_a_closed_ticket_is_rejected(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    ticket = await open_ticket(ticket_service, requester)

    closed = await ticket_service.delete_ticket(str(ticket.id), scope_admin)
    assert closed.status == TicketStatus.CLOSED
    assert closed.closed_at is not None

    with pytest.raises(InvalidStatusTransitionException):
        await ticket_service.delete_ticket(str(ticket.id), scope_admin)


# ========== Messages ==========

async def test_first_response_comes_from_assignee(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    await add_agent(session_factory, "agent-1")
    ticket = await open_ticket(ticket_service, requester)
    ticket_id = str(ticket.id)
    await ticket_service.assign_ticket(ticket_id, AssignTicketDTO(agent_id="agent-1"), scope_admin)

    await ticket_service.add_message(ticket_id, requester, MessageCreateDTO(content="Any news?"))
    after_requester = await ticket_service.get_ticket(ticket_id, requester)
    assert after_requester.first_response_at is None
    assert after_requester.last_response_at is not None

    await ticket_service.add_message(ticket_id, agent_actor("agent-1"), MessageCreateDTO(content="Looking into it"))
    answered = await ticket_service.get_ticket(ticket_id, requester)
    assert answered.first_response_at is not None
    assert answered.sla.first_response_met is True
    assert answered.sla.first_response_breach is False

    # Later replies keep the first stamp
    await ticket_service.add_message(ticket_id, agent_actor("agent-1"), MessageCreateDTO(content="Fixed"))
    again = await ticket_service.get_ticket(ticket_id, requester)
    assert again.first_response_at == answered.first_response_at


async def test_internal_notes_are_hidden_from_requester(
    session_factory, ticket_service, requester, scope_admin
):
    await configure_scope(session_factory)
    ticket = await open_ticket(ticket_service, requester)
    ticket_id = str(ticket.id)

    await ticket_service.add_message(ticket_id, scope_admin, MessageCreateDTO(content="VIP", is_internal=True))
    await ticket_service.add_message(ticket_id, scope_admin, MessageCreateDTO(content="Hello"))

    visible = await ticket_service.get_ticket_messages(ticket_id, requester, include_internal=True)
    assert [m.content for m in visible] == ["Hello"]

    staff_view = await ticket_service.get_ticket_messages(ticket_id, scope_admin, include_internal=True)
    assert len(staff_view) == 2

    with pytest.raises(UnauthorizedAccessException):
        await ticket_service.add_message(ticket_id, requester, MessageCreateDTO(content="x", is_internal=True))


async def test_mark_message_read_is_idempotent(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    ticket = await open_ticket(ticket_service, requester)
    message = await ticket_service.add_message(str(ticket.id), scope_admin, MessageCreateDTO(content="Hi"))

    assert await ticket_service.mark_message_read(str(message.id), requester) is True
    assert await ticket_service.mark_message_read(str(message.id), requester) is False


# ========== Assignment & Escalation ==========

async def test_assign_to_agent_at_capacity_fails(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    await add_agent(session_factory, "agent-full", max_concurrent_tickets=1)
    await add_open_tickets(session_factory, "agent-full", 1)
    ticket = await open_ticket(ticket_service, requester)

    with pytest.raises(AgentNotAvailableException):
        await ticket_service.assign_ticket(str(ticket.id), AssignTicketDTO(agent_id="agent-full"), scope_admin)


async def test_assign_to_agent_of_another_tenant_fails(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    await add_agent(session_factory, "foreign", tenant_id="other-tenant")
    ticket = await open_ticket(ticket_service, requester)

    with pytest.raises(AgentNotAvailableException):
        await ticket_service.assign_ticket(str(ticket.id), AssignTicketDTO(agent_id="foreign"), scope_admin)

    reloaded = await ticket_service.get_ticket(str(ticket.id), scope_admin)
    assert reloaded.assigned_to_id is None
    assert reloaded.status == TicketStatus.OPEN


async def test_assign_to_agent_of_another_business_model_fails(
    session_factory, ticket_service, requester, scope_admin
):
    await configure_scope(session_factory)
    await add_agent(session_factory, "saas-agent", business_model=BusinessModel.SAAS_MULTITENANT)
    ticket = await open_ticket(ticket_service, requester)

    with pytest.raises(AgentNotAvailableException):
        await ticket_service.assign_ticket(str(ticket.id), AssignTicketDTO(agent_id="saas-agent"), scope_admin)


async def test_assign_to_agent_without_the_category_fails(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    await add_agent(session_factory, "agent-billing", categories=[TicketCategory.BILLING])
    ticket = await open_ticket(ticket_service, requester)

    with pytest.raises(AgentNotAvailableException):
        await ticket_service.assign_ticket(str(ticket.id), AssignTicketDTO(agent_id="agent-billing"), scope_admin)


async def test_escalation_to_named_agent(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    await add_agent(session_factory, "agent-1")
    await add_agent(session_factory, "senior", role=SupportRole.PLATFORM_ADMIN)
    ticket = await open_ticket(ticket_service, requester)
    await ticket_service.assign_ticket(str(ticket.id), AssignTicketDTO(agent_id="agent-1"), scope_admin)

    escalated = await ticket_service.escalate_ticket(
        str(ticket.id), scope_admin, EscalateTicketDTO(reason="Refund", escalate_to="senior")
    )
    assert escalated.assigned_to_id == "senior"


@pytest.mark.parametrize("target", [
    {"tenant_id": "other-tenant"},
    {"is_active": False},
    {"is_available": False},
])
async def test_escalation_to_ineligible_named_agent_fails(
    session_factory, ticket_service, requester, scope_admin, target
):
    await configure_scope(session_factory)
    await add_agent(session_factory, "agent-1")
    await add_agent(session_factory, "ghost", role=SupportRole.PLATFORM_ADMIN, **target)
    ticket = await open_ticket(ticket_service, requester)
    await ticket_service.assign_ticket(str(ticket.id), AssignTicketDTO(agent_id="agent-1"), scope_admin)

    with pytest.raises(AgentNotAvailableException):
        await ticket_service.escalate_ticket(
            str(ticket.id), scope_admin, EscalateTicketDTO(reason="Help", escalate_to="ghost")
        )

    reloaded = await ticket_service.get_ticket(str(ticket.id), scope_admin)
    assert reloaded.status == TicketStatus.IN_PROGRESS
    assert reloaded.assigned_to_id == "agent-1"


async def test_escalation_falls_through_to_platform_admin(
    session_factory, ticket_service, requester, scope_admin, dispatcher
):
    await configure_scope(session_factory)
    await add_agent(session_factory, "agent-1")
    await add_agent(session_factory, "vendor-1", role=SupportRole.VENDOR, is_available=False)
    await add_agent(session_factory, "platform-1", role=SupportRole.PLATFORM_ADMIN)
    ticket = await open_ticket(ticket_service, requester)
    ticket_id = str(ticket.id)
    await ticket_service.assign_ticket(ticket_id, AssignTicketDTO(agent_id="agent-1"), scope_admin)

    escalated = await ticket_service.escalate_ticket(
        ticket_id, scope_admin, EscalateTicketDTO(reason="Needs platform access", add_message="See logs")
    )

    assert escalated.status == TicketStatus.ESCALATED
    assert escalated.assigned_to_id == "platform-1"
    assert len(escalated.escalations) == 1
    record = escalated.escalations[0]
    assert record.target_user_id == "platform-1"
    assert record.target_role == SupportRole.PLATFORM_ADMIN
    assert record.escalated_from == "agent-1"
    assert record.escalated_by == "admin-1"

    notes = await ticket_service.get_ticket_messages(ticket_id, scope_admin, include_internal=True)
    assert notes[-1].is_internal
    assert "Needs platform access" in notes[-1].content

    escalations = [n for n in dispatcher.on_channel(SUPPORT_CHANNEL) if n.type == "escalation"]
    assert escalations and escalations[0].data["target_role"] == "PLATFORM_ADMIN"


async def test_escalation_prefers_first_role_in_hierarchy(
    session_factory, ticket_service, requester, scope_admin
):
    await configure_scope(session_factory)
    await add_agent(session_factory, "agent-1")
    await add_agent(session_factory, "vendor-1", role=SupportRole.VENDOR)
    await add_agent(session_factory, "platform-1", role=SupportRole.PLATFORM_ADMIN)
    ticket = await open_ticket(ticket_service, requester)
    await ticket_service.assign_ticket(str(ticket.id), AssignTicketDTO(agent_id="agent-1"), scope_admin)

    escalated = await ticket_service.escalate_ticket(str(ticket.id), scope_admin, EscalateTicketDTO(reason="Refund"))
    assert escalated.assigned_to_id == "vendor-1"


async def test_escalation_without_target(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    await add_agent(session_factory, "agent-1")
    ticket = await open_ticket(ticket_service, requester)
    await ticket_service.assign_ticket(str(ticket.id), AssignTicketDTO(agent_id="agent-1"), scope_admin)

    with pytest.raises(AgentNotAvailableException):
        await ticket_service.escalate_ticket(str(ticket.id), scope_admin, EscalateTicketDTO(reason="Help"))

    reloaded = await ticket_service.get_ticket(str(ticket.id), scope_admin)
    assert reloaded.status == TicketStatus.IN_PROGRESS
    assert reloaded.escalations == []


async def test_escalation_disabled(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory, escalation_enabled=False)
    ticket = await open_ticket(ticket_service, requester)

    with pytest.raises(EscalationNotAllowedException):
        await ticket_service.escalate_ticket(str(ticket.id), scope_admin, EscalateTicketDTO(reason="Help"))


async def test_escalating_an_open_ticket_is_rejected(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    await add_agent(session_factory, "platform-1", role=SupportRole.PLATFORM_ADMIN)
    ticket = await open_ticket(ticket_service, requester)

    with pytest.raises(InvalidStatusTransitionException):
        await ticket_service.escalate_ticket(str(ticket.id), scope_admin, EscalateTicketDTO(reason="Help"))


# ========== Satisfaction ==========

async def _resolved_ticket(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    await add_agent(session_factory, "agent-1")
    ticket = await open_ticket(ticket_service, requester)
    ticket_id = str(ticket.id)
    await ticket_service.assign_ticket(ticket_id, AssignTicketDTO(agent_id="agent-1"), scope_admin)
    await ticket_service.update_ticket(ticket_id, TicketUpdateDTO(status=TicketStatus.RESOLVED), scope_admin)
    return ticket_id


async def test_second_satisfaction_survey_is_rejected(
    session_factory, ticket_service, agent_service, requester, scope_admin
):
    ticket_id = await _resolved_ticket(session_factory, ticket_service, requester, scope_admin)

    survey = await ticket_service.submit_satisfaction(ticket_id, requester, SatisfactionDTO(rating=4))
    assert survey.rating == 4

    with pytest.raises(SatisfactionAlreadySubmittedException):
        await ticket_service.submit_satisfaction(ticket_id, requester, SatisfactionDTO(rating=1))

    agents = await agent_service.list_agents(scope_admin)
    ratings = {model.user_id: model.satisfaction_rating for model, _ in agents}
    assert ratings["agent-1"] == 4.0


async def test_satisfaction_requires_finished_ticket(session_factory, ticket_service, requester):
    await configure_scope(session_factory)
    ticket = await open_ticket(ticket_service, requester)

    with pytest.raises(TicketNotFoundException):
        await ticket_service.submit_satisfaction(str(ticket.id), requester, SatisfactionDTO(rating=5))


async def test_user_stats(session_factory, ticket_service, requester, scope_admin):
    ticket_id = await _resolved_ticket(session_factory, ticket_service, requester, scope_admin)
    await open_ticket(ticket_service, requester)
    await ticket_service.submit_satisfaction(ticket_id, requester, SatisfactionDTO(rating=5))

    stats = await ticket_service.get_user_stats(requester)

    assert stats["total_tickets"] == 2
    assert stats["open_tickets"] == 1
    assert stats["resolved_tickets"] == 1
    assert stats["satisfaction_rating"] == 5.0


# ========== Listing, config, sweep ==========

async def test_list_filters_and_pagination(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    for priority in (TicketPriority.LOW, TicketPriority.HIGH, TicketPriority.HIGH):
        await open_ticket(ticket_service, requester, priority=priority)

    tickets, pagination = await ticket_service.list_tickets(
        scope_admin, TicketFilters(priority=[TicketPriority.HIGH])
    )
    assert len(tickets) == 2
    assert pagination.total == 2

    found = await ticket_service.search_tickets(requester, "spinning")
    assert len(found) == 3


async def test_update_config_merges_sla_minutes(ticket_service, scope_admin):
    config = await ticket_service.update_config(
        scope_admin, BM, TENANT, SupportConfigUpdate(sla_minutes={TicketPriority.URGENT: 15}, auto_assignment=True)
    )
    assert config.sla_minutes[TicketPriority.URGENT] == 15
    assert config.sla_minutes[TicketPriority.HIGH] == 120
    assert config.auto_assignment is True

    again = await ticket_service.get_config(BM, TENANT)
    assert again.sla_minutes[TicketPriority.URGENT] == 15


async def test_update_config_outside_own_scope(ticket_service, scope_admin):
    with pytest.raises(UnauthorizedAccessException):
        await ticket_service.update_config(scope_admin, BM, "other-tenant", SupportConfigUpdate())


async def test_tenantless_config_is_unique_per_business_model(session_factory):
    await configure_scope(session_factory, tenant_id=None, auto_assignment=False)
    await configure_scope(session_factory, tenant_id=None, auto_assignment=True)

    async with session_factory() as session:
        repository = SQLAlchemySupportConfigRepository(session)
        assert await repository.list_scopes() == [(BM, None)]
        assert (await repository.get(BM, None)).auto_assignment is True

        session.add(SupportConfigModel(business_model=BM.value, tenant_id=None))
        with pytest.raises(IntegrityError):
            await session.flush()


async def test_sla_sweep_flags_overdue_tickets(session_factory, ticket_service, requester, scope_admin):
    await configure_scope(session_factory)
    ticket = await open_ticket(ticket_service, requester, priority=TicketPriority.URGENT)

    later = ticket.created_at + timedelta(minutes=31)
    assert await ticket_service.sweep_sla_breaches(now=later) == 1
    assert await ticket_service.sweep_sla_breaches(now=later) == 0

    reloaded = await ticket_service.get_ticket(str(ticket.id), scope_admin)
    assert reloaded.sla.first_response_breach is True
    assert reloaded.sla.resolution_breach is False
    assert reloaded.sla.total_breach_time == 1


async def test_sla_sweep_respects_tracking_switch(session_factory, ticket_service, requester):
    await configure_scope(session_factory, sla_tracking=False)
    ticket = await open_ticket(ticket_service, requester, priority=TicketPriority.URGENT)

    assert await ticket_service.sweep_sla_breaches(now=ticket.created_at + timedelta(days=1)) == 0
