"""
Alerting Application Layer
==========================

The alert rule engine, its collaborator contracts and DTOs.
"""

from supportdesk.alerting.application.dto import (
    ActiveAlertResponse,
    AlertRuleCreateDTO,
    AlertRuleResponse,
    AlertRuleUpdateDTO,
    CycleReportResponse,
    ResolveAlertDTO,
)
from supportdesk.alerting.application.services import (
    AlertRuleEngine,
    CycleReport,
    IAlertHistoryRepository,
    IAlertingPolicyProvider,
    IAlertRuleRepository,
    IMetricsProvider,
    IScopeProvider,
    build_webhook_payload,
    render_alert_email,
)

__all__ = [
    "ActiveAlertResponse",
    "AlertRuleCreateDTO",
    "AlertRuleResponse",
    "AlertRuleUpdateDTO",
    "CycleReportResponse",
    "ResolveAlertDTO",
    "AlertRuleEngine",
    "CycleReport",
    "IAlertHistoryRepository",
    "IAlertingPolicyProvider",
    "IAlertRuleRepository",
    "IMetricsProvider",
    "IScopeProvider",
    "build_webhook_payload",
    "render_alert_email",
]
