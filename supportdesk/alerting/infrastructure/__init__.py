"""
Alerting Infrastructure Layer
=============================

- Models: alert rules and alert history tables
- Repositories: rule store and history log
- Metrics: SQL metrics aggregation and scope enumeration
- External: the APScheduler job wrapper
"""

from supportdesk.alerting.infrastructure.external import AlertScheduler
from supportdesk.alerting.infrastructure.metrics import (
    SQLAlchemyMetricsProvider,
    SQLAlchemyScopeProvider,
)
from supportdesk.alerting.infrastructure.models import AlertHistoryModel, AlertRuleModel
from supportdesk.alerting.infrastructure.repositories import (
    SQLAlchemyAlertHistoryRepository,
    SQLAlchemyAlertRuleRepository,
)

__all__ = [
    "AlertScheduler",
    "SQLAlchemyMetricsProvider",
    "SQLAlchemyScopeProvider",
    "AlertHistoryModel",
    "AlertRuleModel",
    "SQLAlchemyAlertHistoryRepository",
    "SQLAlchemyAlertRuleRepository",
]
