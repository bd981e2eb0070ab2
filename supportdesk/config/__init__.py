"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="supportdesk", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/supportdesk",
        description="Database connection URL (async driver)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Support Policy ==========
    support_policy_path: Path = Field(
        default=Path("support_policy.yaml"),
        description="Path to support policy YAML (tenant defaults, escalation, alert rules)"
    )

    # ========== Alert Engine ==========
    alert_evaluation_interval: int = Field(
        default=300,
        description="Seconds between alert rule evaluation cycles (0 disables the scheduler)",
        ge=0
    )
    alert_scope_timeout_seconds: float = Field(
        default=30.0,
        description="Deadline for evaluating one (business model, tenant) scope",
        gt=0
    )
    resolved_alert_retention_minutes: int = Field(
        default=60,
        description="Resolved alerts older than this are dropped from the active registry",
        ge=0
    )
    admin_channel: str = Field(
        default="admin",
        description="Broadcast channel for administrative alert notifications"
    )
    sla_sweep_enabled: bool = Field(
        default=True,
        description="Run the SLA breach sweep together with each alert cycle"
    )

    # ========== Webhook Notifications ==========
    webhook_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for outgoing webhook calls",
        ge=0.1,
        le=30
    )

    # ========== Email Notifications ==========
    email_api_url: Optional[str] = Field(
        default=None,
        description="HTTP email API endpoint (Resend-compatible); email disabled when unset"
    )
    email_api_key: Optional[str] = Field(default=None, description="Email API key")
    email_from: str = Field(
        default="Support Desk <support@example.com>",
        description="Sender address for outgoing email"
    )
    email_timeout_seconds: float = Field(default=10.0, ge=0.1, le=60)

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class BusinessModel(str, Enum):
    """Business models a tenant can operate under."""
    B2B_SALE = "B2B_SALE"
    SAAS_MULTITENANT = "SAAS_MULTITENANT"
    MARKETPLACE_PLATFORM = "MARKETPLACE_PLATFORM"


class TicketPriority(str, Enum):
    """Ticket priority levels."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TicketCategory(str, Enum):
    """Ticket categories, matched against agent skills."""
    TECHNICAL = "TECHNICAL"
    BILLING = "BILLING"
    GENERAL = "GENERAL"
    ORDER = "ORDER"
    PRODUCT = "PRODUCT"
    ACCOUNT = "ACCOUNT"


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_USER = "PENDING_USER"
    PENDING_VENDOR = "PENDING_VENDOR"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class SupportRole(str, Enum):
    """Roles of support participants."""
    USER = "USER"
    ADMIN = "ADMIN"
    VENDOR = "VENDOR"
    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class SupportMode(str, Enum):
    """Who handles support for a tenant."""
    INTERNAL = "internal"
    VENDOR = "vendor"
    PLATFORM = "platform"


class AlertType(str, Enum):
    """Alert rule types."""
    SLA_BREACH = "sla_breach"
    VOLUME_SPIKE = "volume_spike"
    SATISFACTION_DROP = "satisfaction_drop"
    AGENT_OVERLOAD = "agent_overload"
    RESPONSE_TIME = "response_time"
    CUSTOM = "custom"


class AlertSeverity(str, Enum):
    """Severity of a triggered alert."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class NotificationPriority(str, Enum):
    """Priority attached to pushed notifications."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


# ========== Lists for validation ==========

# Statuses that count towards an agent's workload
WORKLOAD_STATUSES = [
    TicketStatus.OPEN,
    TicketStatus.IN_PROGRESS,
    TicketStatus.PENDING_USER,
]
# Statuses still waiting on support
PENDING_STATUSES = [
    TicketStatus.OPEN,
    TicketStatus.IN_PROGRESS,
    TicketStatus.PENDING_USER,
    TicketStatus.ESCALATED,
]
OPEN_STATUSES = [TicketStatus.OPEN, TicketStatus.IN_PROGRESS]
DONE_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]
STAFF_ROLES = [
    SupportRole.ADMIN,
    SupportRole.VENDOR,
    SupportRole.PLATFORM_ADMIN,
    SupportRole.SUPER_ADMIN,
]
PLATFORM_ROLES = [SupportRole.PLATFORM_ADMIN, SupportRole.SUPER_ADMIN]
