"""
Alerting Infrastructure Repositories
====================================

SQLAlchemy implementations of the alert rule and alert history stores.

The engine outlives any request, so these repositories take a session
factory and open a short session per call.
"""

from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from supportdesk.config import AlertSeverity, AlertType, BusinessModel
from supportdesk.alerting.application import IAlertHistoryRepository, IAlertRuleRepository
from supportdesk.alerting.domain import (
    ActiveAlert,
    AlertActions,
    AlertCondition,
    AlertRule,
    ComparisonOperator,
    MetricKey,
)
from supportdesk.alerting.infrastructure.models import AlertHistoryModel, AlertRuleModel


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class SQLAlchemyAlertRuleRepository(IAlertRuleRepository):
    """SQLAlchemy implementation of the alert rule store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_all(self) -> List[AlertRule]:
        async with self._session_factory() as session:
            result = await session.execute(select(AlertRuleModel).order_by(AlertRuleModel.created_at))
            return [self._to_domain(m) for m in result.scalars().all()]

    async def save(self, rule: AlertRule) -> None:
        async with self._session_factory() as session:
            model = await session.get(AlertRuleModel, rule.id)
            if model is None:
                model = AlertRuleModel(id=rule.id, created_at=rule.created_at)
                session.add(model)
            model.name = rule.name
            model.type = _enum_value(rule.type)
            model.enabled = rule.enabled
            model.conditions = [c.to_dict() for c in rule.conditions]
            model.actions = rule.actions.to_dict()
            model.business_model = _enum_value(rule.business_model)
            model.tenant_id = rule.tenant_id
            model.updated_at = rule.updated_at
            await session.commit()

    async def delete(self, rule_id: str) -> bool:
        async with self._session_factory() as session:
            model = await session.get(AlertRuleModel, rule_id)
            if model is None:
                return False
            await session.delete(model)
            await session.commit()
            return True

    @staticmethod
    def _to_domain(model: AlertRuleModel) -> AlertRule:
        actions = model.actions or {}
        return AlertRule(
            id=model.id,
            name=model.name,
            type=AlertType(model.type),
            enabled=model.enabled,
            conditions=[
                AlertCondition(
                    metric=MetricKey(c["metric"]),
                    operator=ComparisonOperator(c["operator"]),
                    threshold=float(c["threshold"]),
                    time_window=int(c["time_window"]),
                )
                for c in model.conditions or []
            ],
            actions=AlertActions(
                email=list(actions.get("email") or []),
                webhook=actions.get("webhook"),
            ),
            business_model=BusinessModel(model.business_model),
            tenant_id=model.tenant_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class SQLAlchemyAlertHistoryRepository(IAlertHistoryRepository):
    """SQLAlchemy implementation of the alert history log."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, alert: ActiveAlert, rule_id: Optional[str] = None) -> None:
        async with self._session_factory() as session:
            model = await session.get(AlertHistoryModel, alert.id)
            if model is None:
                model = AlertHistoryModel(id=alert.id)
                session.add(model)
            model.rule_id = rule_id or alert.metadata.get("rule_id")
            model.type = _enum_value(alert.type)
            model.severity = _enum_value(alert.severity)
            model.title = alert.title
            model.message = alert.message
            model.business_model = _enum_value(alert.business_model)
            model.tenant_id = alert.tenant_id
            model.triggered_at = alert.triggered_at
            model.resolved_at = alert.resolved_at
            model.action_required = alert.action_required
            model.suggestions = list(alert.suggestions)
            model.metadata_ = dict(alert.metadata)
            await session.commit()

    async def list_recent(self, limit: int) -> List[ActiveAlert]:
        async with self._session_factory() as session:
            stmt = (
                select(AlertHistoryModel)
                .order_by(AlertHistoryModel.triggered_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [self._to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _to_domain(model: AlertHistoryModel) -> ActiveAlert:
        return ActiveAlert(
            id=model.id,
            type=AlertType(model.type),
            severity=AlertSeverity(model.severity),
            title=model.title,
            message=model.message,
            business_model=BusinessModel(model.business_model),
            tenant_id=model.tenant_id,
            triggered_at=model.triggered_at,
            resolved_at=model.resolved_at,
            action_required=model.action_required,
            suggestions=list(model.suggestions or []),
            metadata=dict(model.metadata_ or {}),
        )
