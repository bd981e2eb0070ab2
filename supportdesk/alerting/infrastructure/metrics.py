"""
Support Metrics Aggregation
===========================

SQL-backed metrics for the alert engine and dashboards.

Durations are averaged in Python from the raw timestamps so the queries stay
portable across PostgreSQL and SQLite.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from supportdesk.config import (
    BusinessModel,
    TicketPriority,
    DONE_STATUSES,
    OPEN_STATUSES,
    PENDING_STATUSES,
    WORKLOAD_STATUSES,
)
from supportdesk.alerting.application import IMetricsProvider, IScopeProvider
from supportdesk.alerting.domain import (
    AgentPerformance,
    LiveMetrics,
    OverviewMetrics,
    SLAMetricsSummary,
)
from supportdesk.support.infrastructure.models import (
    AgentProfileModel,
    SatisfactionSurveyModel,
    SLARecordModel,
    TicketModel,
)
from supportdesk.support.infrastructure.repositories import SQLAlchemySupportConfigRepository

Scope = Tuple[BusinessModel, Optional[str]]


def _values(statuses) -> List[str]:
    return [s.value for s in statuses]


def _average_minutes(pairs: Sequence[Tuple[datetime, Optional[datetime]]]) -> float:
    """Mean of (end - start) in whole minutes, 0 when empty."""
    durations = [(end - start).total_seconds() for start, end in pairs if end is not None]
    if not durations:
        return 0.0
    return float(round(sum(durations) / len(durations) / 60))


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


class SQLAlchemyMetricsProvider(IMetricsProvider):
    """
    Metrics over the support tables of one (business model, tenant) scope.

    Window-based figures count tickets created inside [start, end].
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _scope(business_model: BusinessModel, tenant_id: Optional[str]):
        tenant = TicketModel.tenant_id.is_(None) if tenant_id is None else TicketModel.tenant_id == tenant_id
        return and_(TicketModel.business_model == BusinessModel(business_model).value, tenant)

    def _window(self, business_model: BusinessModel, tenant_id: Optional[str], start: datetime, end: datetime):
        return and_(
            self._scope(business_model, tenant_id),
            TicketModel.created_at >= start,
            TicketModel.created_at <= end,
        )

    async def overview(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        start: datetime,
        end: datetime
    ) -> OverviewMetrics:
        window = self._window(business_model, tenant_id, start, end)

        async with self._session_factory() as session:
            total = await session.scalar(select(func.count(TicketModel.id)).where(window)) or 0
            open_count = await session.scalar(
                select(func.count(TicketModel.id)).where(
                    window, TicketModel.status.in_(_values(OPEN_STATUSES))
                )
            ) or 0
            resolved = await session.scalar(
                select(func.count(TicketModel.id)).where(
                    window, TicketModel.status.in_(_values(DONE_STATUSES))
                )
            ) or 0

            responses = (await session.execute(
                select(TicketModel.created_at, TicketModel.first_response_at).where(
                    window, TicketModel.first_response_at.is_not(None)
                )
            )).all()
            resolutions = (await session.execute(
                select(TicketModel.created_at, TicketModel.resolved_at).where(
                    window, TicketModel.resolved_at.is_not(None)
                )
            )).all()

            satisfaction = await session.scalar(
                select(func.avg(SatisfactionSurveyModel.rating))
                .join(TicketModel, SatisfactionSurveyModel.ticket_id == TicketModel.id)
                .where(window)
            )

            sla_rows = (await session.execute(
                select(SLARecordModel.first_response_met, SLARecordModel.resolution_met)
                .join(TicketModel, SLARecordModel.ticket_id == TicketModel.id)
                .where(window)
            )).all()

        compliant = sum(1 for fr_met, res_met in sla_rows if fr_met and res_met)
        return OverviewMetrics(
            total_tickets=total,
            open_tickets=open_count,
            resolved_tickets=resolved,
            avg_response_time=_average_minutes(responses),
            avg_resolution_time=_average_minutes(resolutions),
            satisfaction_rating=float(satisfaction or 0.0),
            sla_compliance=_percent(compliant, len(sla_rows)),
        )

    async def sla_metrics(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        start: datetime,
        end: datetime
    ) -> SLAMetricsSummary:
        async with self._session_factory() as session:
            rows = (await session.execute(
                select(SLARecordModel, TicketModel.priority)
                .join(TicketModel, SLARecordModel.ticket_id == TicketModel.id)
                .where(self._window(business_model, tenant_id, start, end))
            )).all()

        if not rows:
            return SLAMetricsSummary()

        records = [sla for sla, _ in rows]
        return SLAMetricsSummary(
            first_response_compliance=_percent(sum(1 for r in records if r.first_response_met), len(records)),
            first_response_breaches=sum(1 for r in records if r.first_response_breach),
            resolution_compliance=_percent(sum(1 for r in records if r.resolution_met), len(records)),
            resolution_breaches=sum(1 for r in records if r.resolution_breach),
            total_breach_minutes=sum(r.total_breach_time for r in records),
            critical_breaches=sum(
                1 for sla, priority in rows
                if sla.first_response_breach and priority == TicketPriority.URGENT.value
            ),
        )

    async def agent_performance(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        start: datetime,
        end: datetime
    ) -> List[AgentPerformance]:
        """
        Active agents of the scope.

        workload_score is the agent's current open load as a percentage of
        its capacity, regardless of the window.
        """
        tenant = (
            AgentProfileModel.tenant_id.is_(None) if tenant_id is None
            else AgentProfileModel.tenant_id == tenant_id
        )
        async with self._session_factory() as session:
            agents = (await session.execute(
                select(AgentProfileModel)
                .where(
                    AgentProfileModel.business_model == BusinessModel(business_model).value,
                    tenant,
                    AgentProfileModel.is_active.is_(True),
                )
                .order_by(AgentProfileModel.user_id)
            )).scalars().all()
            if not agents:
                return []

            user_ids = [a.user_id for a in agents]
            current = dict((await session.execute(
                select(TicketModel.assigned_to_id, func.count(TicketModel.id))
                .where(
                    TicketModel.assigned_to_id.in_(user_ids),
                    TicketModel.status.in_(_values(WORKLOAD_STATUSES)),
                )
                .group_by(TicketModel.assigned_to_id)
            )).all())

            in_window = and_(
                TicketModel.assigned_to_id.in_(user_ids),
                TicketModel.created_at >= start,
                TicketModel.created_at <= end,
            )
            assigned = dict((await session.execute(
                select(TicketModel.assigned_to_id, func.count(TicketModel.id))
                .where(in_window)
                .group_by(TicketModel.assigned_to_id)
            )).all())
            resolved = dict((await session.execute(
                select(TicketModel.assigned_to_id, func.count(TicketModel.id))
                .where(in_window, TicketModel.status.in_(_values(DONE_STATUSES)))
                .group_by(TicketModel.assigned_to_id)
            )).all())
            ratings = dict((await session.execute(
                select(TicketModel.assigned_to_id, func.avg(SatisfactionSurveyModel.rating))
                .join(TicketModel, SatisfactionSurveyModel.ticket_id == TicketModel.id)
                .where(in_window)
                .group_by(TicketModel.assigned_to_id)
            )).all())

        performance = []
        for agent in agents:
            open_now = current.get(agent.user_id, 0)
            capacity = agent.max_concurrent_tickets or 1
            performance.append(AgentPerformance(
                agent_id=agent.user_id,
                agent_name=agent.name,
                tickets_assigned=assigned.get(agent.user_id, 0),
                tickets_resolved=resolved.get(agent.user_id, 0),
                current_tickets=open_now,
                workload_score=float(round(open_now / capacity * 100)),
                satisfaction_rating=round(float(ratings.get(agent.user_id) or 0.0), 1),
            ))
        return performance

    async def current_live_metrics(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        now: datetime
    ) -> LiveMetrics:
        scope = self._scope(business_model, tenant_id)
        agent_tenant = (
            AgentProfileModel.tenant_id.is_(None) if tenant_id is None
            else AgentProfileModel.tenant_id == tenant_id
        )
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        async with self._session_factory() as session:
            online = await session.scalar(
                select(func.count(AgentProfileModel.id)).where(
                    AgentProfileModel.business_model == BusinessModel(business_model).value,
                    agent_tenant,
                    AgentProfileModel.is_active.is_(True),
                    AgentProfileModel.is_available.is_(True),
                )
            ) or 0
            last_hour = await session.scalar(
                select(func.count(TicketModel.id)).where(
                    scope,
                    TicketModel.created_at >= now - timedelta(hours=1),
                    TicketModel.created_at <= now,
                )
            ) or 0
            pending = await session.scalar(
                select(func.count(TicketModel.id)).where(
                    scope, TicketModel.status.in_(_values(PENDING_STATUSES))
                )
            ) or 0
            waits = (await session.execute(
                select(TicketModel.created_at, TicketModel.first_response_at).where(
                    scope,
                    TicketModel.created_at >= now - timedelta(days=1),
                    TicketModel.first_response_at.is_not(None),
                )
            )).all()
            breaches_today = await session.scalar(
                select(func.count(SLARecordModel.id))
                .join(TicketModel, SLARecordModel.ticket_id == TicketModel.id)
                .where(
                    scope,
                    TicketModel.created_at >= day_start,
                    or_(
                        SLARecordModel.first_response_breach.is_(True),
                        SLARecordModel.resolution_breach.is_(True),
                    ),
                )
            ) or 0

        return LiveMetrics(
            online_agents=online,
            tickets_last_hour=last_hour,
            pending_tickets=pending,
            avg_wait_time=_average_minutes(waits),
            sla_breaches_today=breaches_today,
            last_update=now,
        )


class SQLAlchemyScopeProvider(IScopeProvider):
    """Scopes are the persisted support configurations."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_scopes(self) -> List[Scope]:
        async with self._session_factory() as session:
            return await SQLAlchemySupportConfigRepository(session).list_scopes()
