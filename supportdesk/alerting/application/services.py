"""
Alerting Application Services
=============================

The alert rule engine: evaluates rules per (business model, tenant) scope
against metric snapshots, deduplicates alerts and dispatches notifications.

The engine is the only writer of its rule and alert registries. One
asyncio.Lock guards both, so the check-then-create of alert deduplication
and admin rule edits never interleave with a running cycle.
"""

import asyncio
import html
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from supportdesk.config import (
    AlertSeverity,
    BusinessModel,
    NotificationPriority,
)
from supportdesk.core import (
    AlertAlreadyResolvedException,
    AlertNotFoundException,
    AlertRuleNotFoundException,
)
from supportdesk.shared.application.notifications import (
    ChannelNotification,
    INotificationDispatcher,
)
from supportdesk.shared.infrastructure.logging import get_logger
from supportdesk.alerting.application.dto import AlertRuleCreateDTO, AlertRuleUpdateDTO
from supportdesk.alerting.domain import (
    SEVERITY_PRIORITY,
    ActiveAlert,
    AgentPerformance,
    AlertingPolicy,
    AlertRule,
    LiveMetrics,
    MetricsSnapshot,
    OverviewMetrics,
    SLAMetricsSummary,
    dedup_key,
    format_alert_message,
    requires_action,
    suggestions_for,
)

logger = get_logger(__name__)

Scope = Tuple[BusinessModel, Optional[str]]

# Window of the snapshot pushed to dashboards after each scope
DASHBOARD_WINDOW_MINUTES = 60

SEVERITY_COLORS = {
    AlertSeverity.CRITICAL: "#dc3545",
    AlertSeverity.WARNING: "#ffc107",
    AlertSeverity.INFO: "#17a2b8",
}
DEFAULT_SEVERITY_COLOR = "#6c757d"


# ========== Repository & Provider Interfaces ==========

class IMetricsProvider(ABC):
    """Interface for operational metrics of one scope."""

    @abstractmethod
    async def overview(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        start: datetime,
        end: datetime
    ) -> OverviewMetrics:
        """Ticket counts and averages for tickets created in the window."""
        pass

    @abstractmethod
    async def sla_metrics(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        start: datetime,
        end: datetime
    ) -> SLAMetricsSummary:
        """SLA compliance for tickets created in the window."""
        pass

    @abstractmethod
    async def agent_performance(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        start: datetime,
        end: datetime
    ) -> List[AgentPerformance]:
        """Per-agent workload and satisfaction."""
        pass

    @abstractmethod
    async def current_live_metrics(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        now: datetime
    ) -> LiveMetrics:
        """Point-in-time figures independent of any window."""
        pass


class IScopeProvider(ABC):
    """Interface for enumerating configured (business model, tenant) scopes."""

    @abstractmethod
    async def list_scopes(self) -> List[Scope]:
        pass


class IAlertRuleRepository(ABC):
    """Interface for alert rule persistence."""

    @abstractmethod
    async def list_all(self) -> List[AlertRule]:
        pass

    @abstractmethod
    async def save(self, rule: AlertRule) -> None:
        pass

    @abstractmethod
    async def delete(self, rule_id: str) -> bool:
        pass


class IAlertHistoryRepository(ABC):
    """Interface for the alert history log."""

    @abstractmethod
    async def record(self, alert: ActiveAlert, rule_id: Optional[str] = None) -> None:
        """Insert or update an alert."""
        pass

    @abstractmethod
    async def list_recent(self, limit: int) -> List[ActiveAlert]:
        """Alerts ordered by trigger time, newest first."""
        pass


class IAlertingPolicyProvider(ABC):
    """Interface for the alerting section of the policy file."""

    @abstractmethod
    def get_alerting_policy(self) -> AlertingPolicy:
        pass


@dataclass
class CycleReport:
    """Counters of one evaluation cycle."""
    scopes: int = 0
    rules_evaluated: int = 0
    triggered: int = 0
    refreshed: int = 0
    failed_scopes: int = 0
    failed_rules: int = 0
    cleaned_up: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


# ========== Notification Rendering ==========

def render_alert_email(alert: ActiveAlert, rule: AlertRule) -> str:
    """HTML body of an alert email."""
    color = SEVERITY_COLORS.get(AlertSeverity(alert.severity), DEFAULT_SEVERITY_COLOR)
    suggestions = "".join(
        f"<li>{html.escape(s)}</li>" for s in alert.suggestions
    )
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <div style="background-color: {color}; color: white; padding: 20px; text-align: center;">
        <h1 style="margin: 0;">Support Alert</h1>
        <p style="margin: 10px 0 0 0; font-size: 18px;">{html.escape(alert.title)}</p>
      </div>
      <div style="padding: 20px; background-color: #f8f9fa;">
        <p><strong>Severity:</strong> {AlertSeverity(alert.severity).value.upper()}</p>
        <p><strong>Business Model:</strong> {BusinessModel(alert.business_model).value}</p>
        <p><strong>Tenant:</strong> {html.escape(alert.tenant_id or "All tenants")}</p>
        <p><strong>Message:</strong> {html.escape(alert.message)}</p>
        <p><strong>Triggered At:</strong> {alert.triggered_at.isoformat()}</p>
        <h3>Suggested Actions</h3>
        <ul>{suggestions}</ul>
      </div>
      <div style="padding: 10px 20px; font-size: 12px; color: #6c757d;">
        Rule: {html.escape(rule.name)} ({html.escape(rule.id)})
      </div>
    </div>
    """


def build_webhook_payload(alert: ActiveAlert) -> Dict[str, Any]:
    """Slack-compatible attachment payload."""
    severity = AlertSeverity(alert.severity)
    return {
        "text": f"*Support Alert: {alert.title}*",
        "attachments": [
            {
                "color": SEVERITY_COLORS.get(severity, DEFAULT_SEVERITY_COLOR),
                "fields": [
                    {"title": "Severity", "value": severity.value.upper(), "short": True},
                    {
                        "title": "Business Model",
                        "value": BusinessModel(alert.business_model).value,
                        "short": True,
                    },
                    {"title": "Message", "value": alert.message, "short": False},
                ],
                "footer": "Support Analytics System",
                "ts": int(alert.triggered_at.timestamp()),
            }
        ],
    }


# ========== Engine ==========

class AlertRuleEngine:
    """
    Periodic evaluator of alert rules.

    Each cycle walks every configured scope, evaluates the enabled rules that
    apply to it, raises or refreshes alerts, then drops alerts resolved longer
    ago than the retention period. One slow or failing scope never stops the
    rest of the cycle.
    """

    def __init__(
        self,
        metrics_provider: IMetricsProvider,
        scope_provider: IScopeProvider,
        dispatcher: INotificationDispatcher,
        rule_repository: Optional[IAlertRuleRepository] = None,
        history_repository: Optional[IAlertHistoryRepository] = None,
        policy_provider: Optional[IAlertingPolicyProvider] = None,
        admin_channel: str = "admin",
        dashboard_channel: str = "dashboard",
        scope_timeout: float = 30.0,
        retention_minutes: int = 60,
        broadcast_metrics: bool = True
    ):
        self._metrics = metrics_provider
        self._scopes = scope_provider
        self._dispatcher = dispatcher
        self._rule_repo = rule_repository
        self._history_repo = history_repository
        self._policy_provider = policy_provider
        self.admin_channel = admin_channel
        self.dashboard_channel = dashboard_channel
        self.scope_timeout = scope_timeout
        self.retention = timedelta(minutes=retention_minutes)
        self.broadcast_metrics = broadcast_metrics

        self._rules: Dict[str, AlertRule] = {}
        self._alerts: Dict[str, ActiveAlert] = {}
        self._lock = asyncio.Lock()

    @property
    def policy(self) -> AlertingPolicy:
        if self._policy_provider is None:
            return AlertingPolicy()
        return self._policy_provider.get_alerting_policy()

    # ----- rules -----

    async def load_rules(self) -> int:
        """
        Fill the registry from the rule store.

        An empty store is seeded with the policy's default rules, numbered
        default-rule-0, default-rule-1, ...
        """
        async with self._lock:
            rules: List[AlertRule] = []
            if self._rule_repo is not None:
                rules = await self._rule_repo.list_all()

            if not rules:
                for i, definition in enumerate(self.policy.default_rules):
                    rule = AlertRule.from_definition(f"default-rule-{i}", definition)
                    if self._rule_repo is not None:
                        await self._rule_repo.save(rule)
                    rules.append(rule)

            self._rules = {rule.id: rule for rule in rules}

        logger.info("Alert rules loaded", extra={"count": len(self._rules)})
        return len(self._rules)

    async def create_alert_rule(self, payload: AlertRuleCreateDTO) -> AlertRule:
        rule = AlertRule.from_definition(str(uuid4()), payload)
        async with self._lock:
            if self._rule_repo is not None:
                await self._rule_repo.save(rule)
            self._rules[rule.id] = rule

        logger.info("Alert rule created", extra={"rule_id": rule.id, "rule_name": rule.name})
        return rule

    async def update_alert_rule(self, rule_id: str, patch: AlertRuleUpdateDTO) -> AlertRule:
        """
        Apply a partial update.

        Raises:
            AlertRuleNotFoundException: unknown rule id
        """
        async with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise AlertRuleNotFoundException(rule_id)

            changes = patch.model_dump(exclude_unset=True)
            if "name" in changes and patch.name is not None:
                rule.name = patch.name
            if "type" in changes and patch.type is not None:
                rule.type = patch.type
            if "enabled" in changes and patch.enabled is not None:
                rule.enabled = patch.enabled
            if "conditions" in changes and patch.conditions is not None:
                rule.conditions = [c.to_condition() for c in patch.conditions]
            if "actions" in changes and patch.actions is not None:
                rule.actions = patch.actions.to_actions()
            if "business_model" in changes and patch.business_model is not None:
                rule.business_model = patch.business_model
            if "tenant_id" in changes:
                rule.tenant_id = patch.tenant_id
            rule.updated_at = datetime.now(timezone.utc)

            if self._rule_repo is not None:
                await self._rule_repo.save(rule)

        logger.info("Alert rule updated", extra={"rule_id": rule_id, "fields": sorted(changes)})
        return rule

    async def delete_alert_rule(self, rule_id: str) -> None:
        """
        Raises:
            AlertRuleNotFoundException: unknown rule id
        """
        async with self._lock:
            if rule_id not in self._rules:
                raise AlertRuleNotFoundException(rule_id)
            if self._rule_repo is not None:
                await self._rule_repo.delete(rule_id)
            del self._rules[rule_id]

        logger.info("Alert rule deleted", extra={"rule_id": rule_id})

    def get_alert_rules(self) -> List[AlertRule]:
        return list(self._rules.values())

    def get_alert_rule(self, rule_id: str) -> AlertRule:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise AlertRuleNotFoundException(rule_id)
        return rule

    # ----- alerts -----

    def get_active_alerts(self) -> List[ActiveAlert]:
        """Unresolved alerts, newest first."""
        alerts = [a for a in self._alerts.values() if not a.is_resolved]
        return sorted(alerts, key=lambda a: a.triggered_at, reverse=True)

    async def get_alert_history(self, limit: int = 50) -> List[ActiveAlert]:
        """Resolved and unresolved alerts, newest first."""
        if self._history_repo is not None:
            return await self._history_repo.list_recent(limit)
        alerts = sorted(self._alerts.values(), key=lambda a: a.triggered_at, reverse=True)
        return alerts[:limit]

    async def resolve_alert(
        self,
        alert_id: str,
        resolved_by: str,
        note: Optional[str] = None
    ) -> ActiveAlert:
        """
        Mark an alert resolved and broadcast a notice.

        Raises:
            AlertNotFoundException: unknown or already cleaned up alert
            AlertAlreadyResolvedException: alert was resolved before
        """
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise AlertNotFoundException(alert_id)
            if alert.is_resolved:
                raise AlertAlreadyResolvedException(alert_id)
            alert.resolve(resolved_by)
            if note:
                alert.metadata["resolution_note"] = note

        await self._record(alert)
        await self._dispatcher.send_to_channel(
            self.admin_channel,
            ChannelNotification(
                id=f"resolved-{alert.id}",
                type="SYSTEM_NOTIFICATION",
                title="Alert Resolved",
                message=f'Alert "{alert.title}" has been resolved',
                priority=NotificationPriority.LOW,
                data={"alert": alert.to_dict()},
            ),
        )
        logger.info("Alert resolved", extra={"alert_id": alert_id, "resolved_by": resolved_by})
        return alert

    async def cleanup_resolved_alerts(self, now: Optional[datetime] = None) -> int:
        """Drop alerts resolved longer ago than the retention period."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.retention
        async with self._lock:
            stale = [
                alert_id for alert_id, alert in self._alerts.items()
                if alert.resolved_at is not None and alert.resolved_at < cutoff
            ]
            for alert_id in stale:
                del self._alerts[alert_id]

        if stale:
            logger.info("Resolved alerts cleaned up", extra={"count": len(stale)})
        return len(stale)

    # ----- evaluation -----

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        """Evaluate every scope once, then clean up."""
        now = now or datetime.now(timezone.utc)
        report = CycleReport()

        try:
            scopes = await self._scopes.list_scopes()
        except Exception as e:
            logger.error("Failed to list support scopes", extra={"error": str(e)})
            scopes = []

        for business_model, tenant_id in scopes:
            report.scopes += 1
            deliveries: List[Tuple[ActiveAlert, AlertRule]] = []
            try:
                await asyncio.wait_for(
                    self.evaluate_scope(business_model, tenant_id, now, report, deliveries),
                    timeout=self.scope_timeout
                )
            except asyncio.TimeoutError:
                report.failed_scopes += 1
                logger.error(
                    "Alert evaluation timed out for scope",
                    extra={
                        "business_model": business_model,
                        "tenant_id": tenant_id,
                        "timeout_seconds": self.scope_timeout,
                    }
                )
            except Exception as e:
                report.failed_scopes += 1
                logger.error(
                    "Alert evaluation failed for scope",
                    extra={"business_model": business_model, "tenant_id": tenant_id, "error": str(e)}
                )
            # Outside the scope deadline so slow delivery cannot cut evaluation short
            await self._deliver(deliveries)

        report.cleaned_up = await self.cleanup_resolved_alerts(now)
        logger.info("Alert cycle finished", extra=report.to_dict())
        return report

    async def evaluate_scope(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        now: Optional[datetime] = None,
        report: Optional[CycleReport] = None,
        deliveries: Optional[List[Tuple[ActiveAlert, AlertRule]]] = None
    ) -> List[ActiveAlert]:
        """
        Evaluate the rules that apply to one scope.

        Snapshots are computed once per distinct window and shared between
        rules. A failing rule is logged and skipped.

        New alerts are appended to `deliveries` for the caller to notify;
        without that list they are notified before returning.
        """
        now = now or datetime.now(timezone.utc)
        report = report if report is not None else CycleReport()
        snapshots: Dict[int, MetricsSnapshot] = {}
        fired: List[ActiveAlert] = []
        pending = deliveries if deliveries is not None else []

        rules = [r for r in list(self._rules.values()) if r.applies_to(business_model, tenant_id)]
        for rule in rules:
            report.rules_evaluated += 1
            try:
                observed = await self._evaluate_rule(rule, business_model, tenant_id, now, snapshots)
                if observed is None:
                    continue
                alert, created = await self.trigger_alert(
                    rule, business_model, tenant_id, observed, now, notify=False
                )
                if created:
                    report.triggered += 1
                    pending.append((alert, rule))
                else:
                    report.refreshed += 1
                fired.append(alert)
            except Exception as e:
                report.failed_rules += 1
                logger.error(
                    "Failed to evaluate alert rule",
                    extra={
                        "rule_id": rule.id,
                        "rule_name": rule.name,
                        "business_model": business_model,
                        "tenant_id": tenant_id,
                        "error": str(e),
                    }
                )

        if self.broadcast_metrics:
            snapshot = await self._snapshot(business_model, tenant_id, DASHBOARD_WINDOW_MINUTES, now, snapshots)
            await self._dispatcher.send_to_channel(
                self.dashboard_channel,
                ChannelNotification(
                    type="metrics_update",
                    title="Metrics Update",
                    message=f"Metrics for {BusinessModel(business_model).value}",
                    priority=NotificationPriority.LOW,
                    data={
                        "business_model": BusinessModel(business_model).value,
                        "tenant_id": tenant_id,
                        "window_minutes": DASHBOARD_WINDOW_MINUTES,
                        "metrics": snapshot.flatten(),
                    },
                ),
            )
        if deliveries is None:
            await self._deliver(pending)
        return fired

    async def current_metrics(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        window_minutes: int = DASHBOARD_WINDOW_MINUTES
    ) -> Dict[str, float]:
        """Flattened metrics for one scope over a trailing window."""
        now = datetime.now(timezone.utc)
        snapshot = await self._snapshot(business_model, tenant_id, window_minutes, now, {})
        return snapshot.flatten()

    async def trigger_alert(
        self,
        rule: AlertRule,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        observed: List[Dict[str, Any]],
        now: Optional[datetime] = None,
        notify: bool = True
    ) -> Tuple[ActiveAlert, bool]:
        """
        Raise an alert for a passing rule or refresh the open one.

        Returns the alert and whether it was newly created. Notifications go
        out for new alerts only, and only when `notify` is set.
        """
        now = now or datetime.now(timezone.utc)
        policy = self.policy

        async with self._lock:
            existing = self._find_unresolved(rule, business_model, tenant_id)
            if existing is not None:
                existing.refresh(now, observed=observed)
                alert, created = existing, False
            else:
                value = float(observed[0]["value"]) if observed else 0.0
                alert = ActiveAlert(
                    id=f"{rule.id}-{uuid4().hex[:12]}",
                    type=rule.type,
                    severity=policy.severity_for(rule.type, value),
                    title=rule.name,
                    message=format_alert_message(rule.name, value, rule.conditions[0]),
                    business_model=business_model,
                    tenant_id=tenant_id,
                    triggered_at=now,
                    action_required=requires_action(rule.type),
                    suggestions=suggestions_for(rule.type),
                    metadata={
                        "rule_id": rule.id,
                        "conditions": [c.to_dict() for c in rule.conditions],
                        "observed": observed,
                    },
                )
                self._alerts[alert.id] = alert
                created = True

        await self._record(alert, rule.id)

        if created:
            logger.warning(
                "Alert triggered",
                extra={
                    "alert_id": alert.id,
                    "rule_id": rule.id,
                    "severity": alert.severity,
                    "business_model": business_model,
                    "tenant_id": tenant_id,
                }
            )
            if notify:
                await self._dispatch(alert, rule)
        return alert, created

    # ----- helpers -----

    def _find_unresolved(
        self,
        rule: AlertRule,
        business_model: BusinessModel,
        tenant_id: Optional[str]
    ) -> Optional[ActiveAlert]:
        key = dedup_key(rule.type, business_model, tenant_id)
        for alert in self._alerts.values():
            if not alert.is_resolved and alert.dedup_key == key:
                return alert
        return None

    async def _evaluate_rule(
        self,
        rule: AlertRule,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        now: datetime,
        snapshots: Dict[int, MetricsSnapshot]
    ) -> Optional[List[Dict[str, Any]]]:
        """Observed values of every condition when all pass, else None."""
        if not rule.conditions:
            return None

        observed: List[Dict[str, Any]] = []
        for condition in rule.conditions:
            snapshot = await self._snapshot(
                business_model, tenant_id, condition.time_window, now, snapshots
            )
            value = snapshot.value(condition.metric)
            if not condition.evaluate(value):
                return None
            observed.append({
                "metric": condition.metric.value,
                "time_window": condition.time_window,
                "value": value,
            })
        return observed

    async def _snapshot(
        self,
        business_model: BusinessModel,
        tenant_id: Optional[str],
        window_minutes: int,
        now: datetime,
        cache: Dict[int, MetricsSnapshot]
    ) -> MetricsSnapshot:
        if window_minutes in cache:
            return cache[window_minutes]

        start = now - timedelta(minutes=window_minutes)
        snapshot = MetricsSnapshot(
            overview=await self._metrics.overview(business_model, tenant_id, start, now),
            sla=await self._metrics.sla_metrics(business_model, tenant_id, start, now),
            agents=await self._metrics.agent_performance(business_model, tenant_id, start, now),
            live=await self._metrics.current_live_metrics(business_model, tenant_id, now),
        )
        cache[window_minutes] = snapshot
        return snapshot

    async def _record(self, alert: ActiveAlert, rule_id: Optional[str] = None) -> None:
        if self._history_repo is None:
            return
        try:
            await self._history_repo.record(alert, rule_id)
        except Exception as e:
            logger.error("Failed to record alert history", extra={"alert_id": alert.id, "error": str(e)})

    async def _deliver(self, deliveries: List[Tuple[ActiveAlert, AlertRule]]) -> None:
        for alert, rule in deliveries:
            try:
                await self._dispatch(alert, rule)
            except Exception as e:
                logger.error(
                    "Failed to deliver alert notifications",
                    extra={"alert_id": alert.id, "rule_id": rule.id, "error": str(e)}
                )

    async def _dispatch(self, alert: ActiveAlert, rule: AlertRule) -> None:
        """Admin broadcast always, email and webhook when configured."""
        await self._dispatcher.send_to_channel(
            self.admin_channel,
            ChannelNotification(
                type="SUPPORT_ALERT",
                title=alert.title,
                message=alert.message,
                priority=SEVERITY_PRIORITY.get(AlertSeverity(alert.severity), NotificationPriority.NORMAL),
                data={
                    "alert": alert.to_dict(),
                    "category": "ADMIN",
                    "suggestions": list(alert.suggestions),
                },
            ),
        )

        if rule.actions.email and self._dispatcher.email_enabled:
            body = render_alert_email(alert, rule)
            for address in rule.actions.email:
                await self._dispatcher.send_email(address, f"Support Alert: {alert.title}", body)

        if rule.actions.webhook:
            await self._dispatcher.send_webhook(rule.actions.webhook, build_webhook_payload(alert))
