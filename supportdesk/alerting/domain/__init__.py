"""
Alerting Domain Layer
=====================

Rules, alerts, metric keys and severity policy for the alert engine.
"""

from supportdesk.alerting.domain.entities import ActiveAlert, AlertRule, dedup_key
from supportdesk.alerting.domain.value_objects import (
    DEFAULT_SEVERITY_CUTOFFS,
    METRIC_EXTRACTORS,
    SEVERITY_PRIORITY,
    AgentPerformance,
    AlertActions,
    AlertActionsDefinition,
    AlertCondition,
    AlertConditionDefinition,
    AlertingPolicy,
    AlertRuleDefinition,
    ComparisonOperator,
    LiveMetrics,
    MetricKey,
    MetricsSnapshot,
    OverviewMetrics,
    SeverityCutoff,
    SLAMetricsSummary,
    format_alert_message,
    requires_action,
    suggestions_for,
)

__all__ = [
    "ActiveAlert",
    "AlertRule",
    "dedup_key",
    "DEFAULT_SEVERITY_CUTOFFS",
    "METRIC_EXTRACTORS",
    "SEVERITY_PRIORITY",
    "AgentPerformance",
    "AlertActions",
    "AlertActionsDefinition",
    "AlertCondition",
    "AlertConditionDefinition",
    "AlertingPolicy",
    "AlertRuleDefinition",
    "ComparisonOperator",
    "LiveMetrics",
    "MetricKey",
    "MetricsSnapshot",
    "OverviewMetrics",
    "SeverityCutoff",
    "SLAMetricsSummary",
    "format_alert_message",
    "requires_action",
    "suggestions_for",
]
