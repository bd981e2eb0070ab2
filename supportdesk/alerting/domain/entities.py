"""
Alerting Domain Entities
========================

Alert rules and the alerts they raise.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from supportdesk.config import AlertSeverity, AlertType, BusinessModel
from supportdesk.alerting.domain.value_objects import (
    AlertActions,
    AlertCondition,
    AlertRuleDefinition,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dedup_key(
    alert_type: AlertType,
    business_model: BusinessModel,
    tenant_id: Optional[str]
) -> Tuple[str, str, Optional[str]]:
    """Identity of an unresolved alert: one per type and scope."""
    return AlertType(alert_type).value, BusinessModel(business_model).value, tenant_id


@dataclass
class AlertRule:
    """
    A scoped set of AND-combined threshold conditions.

    A rule without a tenant applies to every tenant of its business model.
    """

    id: str
    name: str
    type: AlertType
    conditions: List[AlertCondition]
    business_model: BusinessModel
    tenant_id: Optional[str] = None
    enabled: bool = True
    actions: AlertActions = field(default_factory=AlertActions)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_definition(cls, rule_id: str, definition: AlertRuleDefinition) -> "AlertRule":
        return cls(
            id=rule_id,
            name=definition.name,
            type=definition.type,
            enabled=definition.enabled,
            conditions=[c.to_condition() for c in definition.conditions],
            actions=definition.actions.to_actions(),
            business_model=definition.business_model,
            tenant_id=definition.tenant_id,
        )

    def applies_to(self, business_model: BusinessModel, tenant_id: Optional[str]) -> bool:
        return (
            self.enabled
            and self.business_model == business_model
            and (self.tenant_id is None or self.tenant_id == tenant_id)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": AlertType(self.type).value,
            "enabled": self.enabled,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": self.actions.to_dict(),
            "business_model": BusinessModel(self.business_model).value,
            "tenant_id": self.tenant_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ActiveAlert:
    """
    An alert raised by a rule for one scope.

    At most one unresolved alert exists per dedup_key; later triggers only
    refresh triggered_at.
    """

    id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    business_model: BusinessModel
    tenant_id: Optional[str] = None
    triggered_at: datetime = field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None
    action_required: bool = False
    suggestions: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> Tuple[str, str, Optional[str]]:
        return dedup_key(self.type, self.business_model, self.tenant_id)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def refresh(self, at: Optional[datetime] = None, observed: Optional[List[Dict[str, Any]]] = None) -> None:
        self.triggered_at = at or _utcnow()
        if observed is not None:
            self.metadata["observed"] = observed

    def resolve(self, resolved_by: str, at: Optional[datetime] = None) -> None:
        self.resolved_at = at or _utcnow()
        self.metadata["resolved_by"] = resolved_by

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": AlertType(self.type).value,
            "severity": AlertSeverity(self.severity).value,
            "title": self.title,
            "message": self.message,
            "business_model": BusinessModel(self.business_model).value,
            "tenant_id": self.tenant_id,
            "triggered_at": self.triggered_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "action_required": self.action_required,
            "suggestions": list(self.suggestions),
            "metadata": dict(self.metadata),
        }
