"""
Alerting Infrastructure Models
==============================

SQLAlchemy ORM models for alert rules and the alert history log.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from supportdesk.config import AlertSeverity, AlertType, BusinessModel
from supportdesk.infrastructure.database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertRuleModel(Base):
    """
    Database model for an alert rule.

    Conditions and actions are stored as JSON documents.
    """
    __tablename__ = "alert_rules"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[AlertType] = mapped_column(String(50), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    conditions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    actions: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    business_model: Mapped[BusinessModel] = mapped_column(String(50), nullable=False, index=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


class AlertHistoryModel(Base):
    """Every alert ever raised, with its resolution. Maps to 'alert_history'."""
    __tablename__ = "alert_history"

    id: Mapped[str] = mapped_column(String(150), primary_key=True)
    rule_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    type: Mapped[AlertType] = mapped_column(String(50), nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    business_model: Mapped[BusinessModel] = mapped_column(String(50), nullable=False, index=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    triggered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    action_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    suggestions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    metadata_: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
