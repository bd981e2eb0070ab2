"""
Alerting Value Objects
======================

Metric keys, conditions, metric snapshots and the alerting policy.

Rules look metrics up through the closed MetricKey enum; every key has one
extractor in METRIC_EXTRACTORS so a snapshot always yields a number.
"""

import operator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from supportdesk.config import (
    AlertSeverity,
    AlertType,
    BusinessModel,
    NotificationPriority,
)


class MetricKey(str, Enum):
    """Operational metrics a rule condition can reference."""
    TICKETS_TOTAL = "tickets.total"
    TICKETS_OPEN = "tickets.open"
    TICKETS_RESOLVED = "tickets.resolved"
    RESPONSE_TIME_AVG = "response.time.avg"
    SATISFACTION_AVERAGE = "satisfaction.average"
    SLA_FIRST_RESPONSE_COMPLIANCE = "sla.firstResponseSLA.compliance"
    SLA_RESOLUTION_COMPLIANCE = "sla.resolutionSLA.compliance"
    SLA_BREACHES_TOTAL = "sla.breaches.total"
    AGENTS_WORKLOAD_AVERAGE = "agents.workload.average"
    AGENTS_SATISFACTION_AVERAGE = "agents.satisfaction.average"
    TICKETS_CREATED_HOURLY = "tickets.created.hourly"
    TICKETS_PENDING = "tickets.pending"
    AGENTS_ONLINE = "agents.online"
    WAIT_TIME_AVG = "wait.time.avg"


class ComparisonOperator(str, Enum):
    """Comparison applied between an observed value and a threshold."""
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "=="
    NE = "!="

    def compare(self, value: float, threshold: float) -> bool:
        return _OPERATORS[self](value, threshold)


_OPERATORS: Dict[ComparisonOperator, Callable[[float, float], bool]] = {
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.GTE: operator.ge,
    ComparisonOperator.LTE: operator.le,
    ComparisonOperator.EQ: operator.eq,
    ComparisonOperator.NE: operator.ne,
}


@dataclass(frozen=True)
class AlertCondition:
    """One threshold test over a metric computed for a trailing window."""

    metric: MetricKey
    operator: ComparisonOperator
    threshold: float
    time_window: int  # minutes

    def evaluate(self, value: float) -> bool:
        return self.operator.compare(value, self.threshold)

    def to_dict(self) -> Dict[str, object]:
        return {
            "metric": self.metric.value,
            "operator": self.operator.value,
            "threshold": self.threshold,
            "time_window": self.time_window,
        }


@dataclass
class AlertActions:
    """Delivery targets of a rule besides the admin broadcast."""

    email: List[str] = field(default_factory=list)
    webhook: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {"email": list(self.email), "webhook": self.webhook}


# ========== Metrics ==========

@dataclass
class OverviewMetrics:
    """Ticket counts and averages for a window."""
    total_tickets: int = 0
    open_tickets: int = 0
    resolved_tickets: int = 0
    avg_response_time: float = 0.0
    avg_resolution_time: float = 0.0
    satisfaction_rating: float = 0.0
    sla_compliance: float = 0.0


@dataclass
class SLAMetricsSummary:
    """SLA compliance (percent) and breach counts for a window."""
    first_response_compliance: float = 0.0
    first_response_breaches: int = 0
    resolution_compliance: float = 0.0
    resolution_breaches: int = 0
    total_breach_minutes: int = 0
    critical_breaches: int = 0


@dataclass
class AgentPerformance:
    """Per-agent figures; workload_score is open tickets over capacity in percent."""
    agent_id: str
    agent_name: Optional[str] = None
    tickets_assigned: int = 0
    tickets_resolved: int = 0
    current_tickets: int = 0
    workload_score: float = 0.0
    satisfaction_rating: float = 0.0


@dataclass
class LiveMetrics:
    """Point-in-time figures that ignore the rule window."""
    online_agents: int = 0
    tickets_last_hour: int = 0
    pending_tickets: int = 0
    avg_wait_time: float = 0.0
    sla_breaches_today: int = 0
    last_update: Optional[datetime] = None


@dataclass
class MetricsSnapshot:
    """Everything the metrics provider reports for one scope and window."""

    overview: OverviewMetrics = field(default_factory=OverviewMetrics)
    sla: SLAMetricsSummary = field(default_factory=SLAMetricsSummary)
    agents: List[AgentPerformance] = field(default_factory=list)
    live: LiveMetrics = field(default_factory=LiveMetrics)

    def value(self, key: MetricKey) -> float:
        return float(METRIC_EXTRACTORS[MetricKey(key)](self) or 0)

    def flatten(self) -> Dict[str, float]:
        """Metric key -> value for every known key."""
        return {key.value: self.value(key) for key in MetricKey}


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


METRIC_EXTRACTORS: Dict[MetricKey, Callable[[MetricsSnapshot], float]] = {
    MetricKey.TICKETS_TOTAL: lambda s: s.overview.total_tickets,
    MetricKey.TICKETS_OPEN: lambda s: s.overview.open_tickets,
    MetricKey.TICKETS_RESOLVED: lambda s: s.overview.resolved_tickets,
    MetricKey.RESPONSE_TIME_AVG: lambda s: s.overview.avg_response_time,
    MetricKey.SATISFACTION_AVERAGE: lambda s: s.overview.satisfaction_rating,
    MetricKey.SLA_FIRST_RESPONSE_COMPLIANCE: lambda s: s.sla.first_response_compliance,
    MetricKey.SLA_RESOLUTION_COMPLIANCE: lambda s: s.sla.resolution_compliance,
    MetricKey.SLA_BREACHES_TOTAL: (
        lambda s: s.sla.first_response_breaches + s.sla.resolution_breaches
    ),
    MetricKey.AGENTS_WORKLOAD_AVERAGE: (
        lambda s: _average([a.workload_score for a in s.agents])
    ),
    MetricKey.AGENTS_SATISFACTION_AVERAGE: (
        lambda s: _average([a.satisfaction_rating for a in s.agents])
    ),
    MetricKey.TICKETS_CREATED_HOURLY: lambda s: s.live.tickets_last_hour,
    MetricKey.TICKETS_PENDING: lambda s: s.live.pending_tickets,
    MetricKey.AGENTS_ONLINE: lambda s: s.live.online_agents,
    MetricKey.WAIT_TIME_AVG: lambda s: s.live.avg_wait_time,
}


# ========== Severity, Messages, Suggestions ==========

SEVERITY_PRIORITY: Dict[AlertSeverity, NotificationPriority] = {
    AlertSeverity.CRITICAL: NotificationPriority.URGENT,
    AlertSeverity.WARNING: NotificationPriority.HIGH,
    AlertSeverity.INFO: NotificationPriority.NORMAL,
}

ACTION_REQUIRED_TYPES = frozenset({
    AlertType.SLA_BREACH,
    AlertType.VOLUME_SPIKE,
    AlertType.AGENT_OVERLOAD,
})

DEFAULT_SUGGESTIONS = ["Review system performance and take appropriate action"]

SUGGESTIONS: Dict[AlertType, List[str]] = {
    AlertType.SLA_BREACH: [
        "Review agent capacity and workload distribution",
        "Consider implementing auto-assignment rules",
        "Check for bottlenecks in the resolution process",
        "Increase priority for urgent tickets",
    ],
    AlertType.VOLUME_SPIKE: [
        "Monitor for potential service issues causing increased tickets",
        "Consider activating additional support agents",
        "Review and activate emergency response procedures",
        "Implement temporary priority filtering",
    ],
    AlertType.SATISFACTION_DROP: [
        "Review recent agent interactions and feedback",
        "Conduct quality assurance audits",
        "Check for system issues affecting user experience",
        "Implement additional agent training",
    ],
    AlertType.AGENT_OVERLOAD: [
        "Redistribute workload among available agents",
        "Consider hiring additional support staff",
        "Implement priority-based task assignment",
        "Review and optimize support processes",
    ],
}


def suggestions_for(alert_type: AlertType) -> List[str]:
    return list(SUGGESTIONS.get(AlertType(alert_type), DEFAULT_SUGGESTIONS))


def requires_action(alert_type: AlertType) -> bool:
    return AlertType(alert_type) in ACTION_REQUIRED_TYPES


def format_alert_message(name: str, value: float, condition: AlertCondition) -> str:
    threshold = condition.threshold
    if float(threshold).is_integer():
        threshold = int(threshold)
    return f"{name}: Current value {value:.2f} {condition.operator.value} threshold {threshold}"


class SeverityCutoff(BaseModel):
    """Observed values passing this test make an alert critical instead of warning."""
    operator: ComparisonOperator
    threshold: float

    def is_critical(self, value: float) -> bool:
        return self.operator.compare(value, self.threshold)


DEFAULT_SEVERITY_CUTOFFS: Dict[AlertType, SeverityCutoff] = {
    AlertType.SLA_BREACH: SeverityCutoff(operator=ComparisonOperator.LT, threshold=70),
    AlertType.VOLUME_SPIKE: SeverityCutoff(operator=ComparisonOperator.GT, threshold=100),
    AlertType.SATISFACTION_DROP: SeverityCutoff(operator=ComparisonOperator.LT, threshold=2.5),
    AlertType.AGENT_OVERLOAD: SeverityCutoff(operator=ComparisonOperator.GT, threshold=90),
}


# ========== Rule Definitions & Policy ==========

class AlertConditionDefinition(BaseModel):
    """Serializable form of AlertCondition."""
    metric: MetricKey
    operator: ComparisonOperator
    threshold: float
    time_window: int = Field(default=60, ge=1, le=10080, description="Window in minutes")

    def to_condition(self) -> AlertCondition:
        return AlertCondition(
            metric=self.metric,
            operator=self.operator,
            threshold=self.threshold,
            time_window=self.time_window,
        )


class AlertActionsDefinition(BaseModel):
    """Serializable form of AlertActions."""
    email: List[str] = Field(default_factory=list)
    webhook: Optional[str] = None

    def to_actions(self) -> AlertActions:
        return AlertActions(email=list(self.email), webhook=self.webhook or None)


class AlertRuleDefinition(BaseModel):
    """A rule as written in the policy file or submitted through the API."""
    name: str = Field(..., min_length=1, max_length=200)
    type: AlertType
    enabled: bool = True
    conditions: List[AlertConditionDefinition] = Field(..., min_length=1)
    actions: AlertActionsDefinition = Field(default_factory=AlertActionsDefinition)
    business_model: BusinessModel
    tenant_id: Optional[str] = None


class AlertingPolicy(BaseModel):
    """Alerting section of the policy file."""
    severity_cutoffs: Dict[AlertType, SeverityCutoff] = Field(
        default_factory=lambda: dict(DEFAULT_SEVERITY_CUTOFFS)
    )
    default_rules: List[AlertRuleDefinition] = Field(default_factory=list)

    @field_validator("severity_cutoffs")
    @classmethod
    def fill_cutoffs(cls, v: Dict[AlertType, SeverityCutoff]) -> Dict[AlertType, SeverityCutoff]:
        for alert_type, cutoff in DEFAULT_SEVERITY_CUTOFFS.items():
            v.setdefault(alert_type, cutoff)
        return v

    def severity_for(self, alert_type: AlertType, value: float) -> AlertSeverity:
        """
        Two-tier severity for the built-in types, info for the rest.

        The observed value is compared against the type's cutoff.
        """
        cutoff = self.severity_cutoffs.get(AlertType(alert_type))
        if cutoff is None:
            return AlertSeverity.INFO
        return AlertSeverity.CRITICAL if cutoff.is_critical(value) else AlertSeverity.WARNING
