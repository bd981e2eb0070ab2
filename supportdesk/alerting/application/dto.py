"""
Alerting DTOs
=============

Request and response models for alert rules and alerts.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from supportdesk.config import AlertSeverity, AlertType, BusinessModel
from supportdesk.alerting.domain import (
    ActiveAlert,
    AlertActionsDefinition,
    AlertConditionDefinition,
    AlertRule,
    AlertRuleDefinition,
)


class AlertRuleCreateDTO(AlertRuleDefinition):
    """Payload for creating an alert rule."""


class AlertRuleUpdateDTO(BaseModel):
    """Partial update of an alert rule; unset fields are kept."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    type: Optional[AlertType] = None
    enabled: Optional[bool] = None
    conditions: Optional[List[AlertConditionDefinition]] = Field(None, min_length=1)
    actions: Optional[AlertActionsDefinition] = None
    business_model: Optional[BusinessModel] = None
    tenant_id: Optional[str] = None


class ResolveAlertDTO(BaseModel):
    """Optional note stored with the resolution."""
    note: Optional[str] = Field(None, max_length=2000)


class AlertConditionResponse(BaseModel):
    metric: str
    operator: str
    threshold: float
    time_window: int


class AlertRuleResponse(BaseModel):
    """Response model for an alert rule."""
    id: str
    name: str
    type: AlertType
    enabled: bool
    conditions: List[AlertConditionResponse]
    actions: Dict[str, Any]
    business_model: BusinessModel
    tenant_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_rule(cls, rule: AlertRule) -> "AlertRuleResponse":
        return cls(
            id=rule.id,
            name=rule.name,
            type=rule.type,
            enabled=rule.enabled,
            conditions=[
                AlertConditionResponse(**c.to_dict()) for c in rule.conditions
            ],
            actions=rule.actions.to_dict(),
            business_model=rule.business_model,
            tenant_id=rule.tenant_id,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


class ActiveAlertResponse(BaseModel):
    """Response model for a triggered alert."""
    id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    business_model: BusinessModel
    tenant_id: Optional[str] = None
    triggered_at: datetime
    resolved_at: Optional[datetime] = None
    action_required: bool
    suggestions: List[str]
    metadata: Dict[str, Any]

    @classmethod
    def from_alert(cls, alert: ActiveAlert) -> "ActiveAlertResponse":
        return cls(
            id=alert.id,
            type=alert.type,
            severity=alert.severity,
            title=alert.title,
            message=alert.message,
            business_model=alert.business_model,
            tenant_id=alert.tenant_id,
            triggered_at=alert.triggered_at,
            resolved_at=alert.resolved_at,
            action_required=alert.action_required,
            suggestions=list(alert.suggestions),
            metadata=dict(alert.metadata),
        )


class CycleReportResponse(BaseModel):
    """Outcome of one evaluation cycle."""
    scopes: int
    rules_evaluated: int
    triggered: int
    refreshed: int
    failed_scopes: int
    failed_rules: int
    cleaned_up: int
