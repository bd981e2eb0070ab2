from datetime import datetime, timedelta, timezone

from conftest import BM, TENANT, add_agent, add_ticket_row, configure_scope
from supportdesk.alerting.infrastructure import SQLAlchemyMetricsProvider, SQLAlchemyScopeProvider
from supportdesk.config import BusinessModel, TicketPriority, TicketStatus
from supportdesk.support.infrastructure import SatisfactionSurveyModel, SLARecordModel


NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
HOUR_AGO = NOW - timedelta(hours=1)


def sla_record(created_at, minutes=30, **flags):
    return SLARecordModel(
        first_response_sla=minutes,
        resolution_sla=minutes * 4,
        first_response_due=created_at + timedelta(minutes=minutes),
        resolution_due=created_at + timedelta(minutes=minutes * 4),
        first_response_met=flags.get("first_response_met", False),
        resolution_met=flags.get("resolution_met", False),
        first_response_breach=flags.get("first_response_breach", False),
        resolution_breach=flags.get("resolution_breach", False),
        total_breach_time=flags.get("total_breach_time", 0),
        created_at=created_at,
        updated_at=created_at,
    )


async def seed(session_factory):
    """Three tickets in the last hour, one a day old and one in another tenant."""
    created = NOW - timedelta(minutes=40)
    await add_ticket_row(
        session_factory,
        created_at=created,
        status=TicketStatus.RESOLVED.value,
        assigned_to_id="agent-1",
        first_response_at=created + timedelta(minutes=10),
        resolved_at=created + timedelta(minutes=30),
        sla=sla_record(created, first_response_met=True, resolution_met=True),
        satisfaction=SatisfactionSurveyModel(rating=4, created_at=NOW),
    )
    created = NOW - timedelta(minutes=20)
    await add_ticket_row(
        session_factory,
        created_at=created,
        status=TicketStatus.IN_PROGRESS.value,
        priority=TicketPriority.URGENT.value,
        assigned_to_id="agent-1",
        first_response_at=created + timedelta(minutes=20),
        sla=sla_record(created, first_response_met=True, first_response_breach=True, total_breach_time=5),
    )
    created = NOW - timedelta(minutes=5)
    await add_ticket_row(
        session_factory,
        created_at=created,
        status=TicketStatus.PENDING_USER.value,
        sla=sla_record(created),
    )
    old = NOW - timedelta(days=1, hours=1)
    await add_ticket_row(session_factory, created_at=old, status=TicketStatus.OPEN.value, sla=sla_record(old))
    await add_ticket_row(session_factory, created_at=NOW - timedelta(minutes=1), tenant_id="globex")


async def test_overview(session_factory):
    await seed(session_factory)
    provider = SQLAlchemyMetricsProvider(session_factory)

    overview = await provider.overview(BM, TENANT, HOUR_AGO, NOW)

    assert overview.total_tickets == 3
    assert overview.open_tickets == 1
    assert overview.resolved_tickets == 1
    assert overview.avg_response_time == 15.0
    assert overview.avg_resolution_time == 30.0
    assert overview.satisfaction_rating == 4.0
    assert overview.sla_compliance == 33.3


async def test_sla_metrics(session_factory):
    await seed(session_factory)
    provider = SQLAlchemyMetricsProvider(session_factory)

    sla = await provider.sla_metrics(BM, TENANT, HOUR_AGO, NOW)

    assert sla.first_response_compliance == 66.7
    assert sla.resolution_compliance == 33.3
    assert sla.first_response_breaches == 1
    assert sla.total_breach_minutes == 5
    assert sla.critical_breaches == 1


async def test_sla_metrics_empty_window(session_factory):
    provider = SQLAlchemyMetricsProvider(session_factory)
    sla = await provider.sla_metrics(BusinessModel.SAAS_MULTITENANT, None, HOUR_AGO, NOW)
    assert sla.first_response_compliance == 0.0
    assert sla.first_response_breaches == 0


async def test_agent_performance(session_factory):
    await seed(session_factory)
    await add_agent(session_factory, "agent-2", max_concurrent_tickets=4)
    await add_agent(session_factory, "agent-1", max_concurrent_tickets=4)
    await add_agent(session_factory, "agent-off", is_active=False)
    provider = SQLAlchemyMetricsProvider(session_factory)

    performance = await provider.agent_performance(BM, TENANT, HOUR_AGO, NOW)

    assert [p.agent_id for p in performance] == ["agent-1", "agent-2"]
    first = performance[0]
    assert first.tickets_assigned == 2
    assert first.tickets_resolved == 1
    assert first.current_tickets == 1
    assert first.workload_score == 25.0
    assert first.satisfaction_rating == 4.0
    assert performance[1].workload_score == 0.0


async def test_live_metrics(session_factory):
    await seed(session_factory)
    await add_agent(session_factory, "agent-1")
    await add_agent(session_factory, "agent-away", is_available=False)
    provider = SQLAlchemyMetricsProvider(session_factory)

    live = await provider.current_live_metrics(BM, TENANT, NOW)

    assert live.online_agents == 1
    assert live.tickets_last_hour == 3
    # Open, in progress and pending-user tickets of any age
    assert live.pending_tickets == 3
    assert live.avg_wait_time == 15.0
    assert live.sla_breaches_today == 1
    assert live.last_update == NOW


async def test_scope_provider_lists_configured_scopes(session_factory):
    await configure_scope(session_factory)
    await configure_scope(session_factory, business_model=BusinessModel.SAAS_MULTITENANT, tenant_id=None)

    scopes = await SQLAlchemyScopeProvider(session_factory).list_scopes()

    assert set(scopes) == {(BM, TENANT), (BusinessModel.SAAS_MULTITENANT, None)}
