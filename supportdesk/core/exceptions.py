"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    code = "APPLICATION_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    code = "DOMAIN_ERROR"


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""

    code = "REPOSITORY_ERROR"


class ValidationException(ApplicationException):
    """Exception for validation errors."""

    code = "VALIDATION_ERROR"


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    code = "NOT_FOUND"

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""

    code = "CONFIGURATION_ERROR"


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


# ========== Support Desk ==========

class TicketNotFoundException(ResourceNotFoundException):
    """Ticket does not exist (or is not visible to the caller)."""

    code = "TICKET_NOT_FOUND"

    def __init__(self, ticket_id: Optional[str] = None):
        super().__init__("Ticket", ticket_id)


class UnauthorizedAccessException(DomainException):
    """Caller lacks the scope, ownership or role for the operation."""

    code = "UNAUTHORIZED_ACCESS"

    def __init__(self, user_id: str, resource: str, details: Optional[dict] = None):
        self.user_id = user_id
        super().__init__(
            f"User {user_id} is not allowed to access {resource}",
            details or {"user_id": user_id, "resource": resource}
        )


class InvalidStatusTransitionException(DomainException):
    """Requested status move is not in the transition table."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, from_status: Any, to_status: Any):
        self.from_status = from_status
        self.to_status = to_status
        from_value = getattr(from_status, "value", from_status)
        to_value = getattr(to_status, "value", to_status)
        super().__init__(
            f"Cannot move ticket from {from_value} to {to_value}",
            {"from": from_value, "to": to_value}
        )


class ConfigMissingException(ConfigurationException):
    """No support configuration exists for the (business model, tenant) pair."""

    code = "SLA_CONFIG_MISSING"

    def __init__(self, business_model: Any, tenant_id: Optional[str]):
        self.business_model = business_model
        self.tenant_id = tenant_id
        model_value = getattr(business_model, "value", business_model)
        super().__init__(
            f"No support configuration for {model_value}/{tenant_id or '-'}",
            {"business_model": model_value, "tenant_id": tenant_id}
        )


class AgentNotAvailableException(DomainException):
    """No eligible agent could take the ticket."""

    code = "AGENT_NOT_AVAILABLE"


class EscalationNotAllowedException(DomainException):
    """Escalation is disabled for the tenant."""

    code = "ESCALATION_NOT_ALLOWED"


class RateLimitExceededException(DomainException):
    """Requester reached the hourly or daily ticket quota."""

    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, user_id: str, window: str, limit: int, count: int):
        self.user_id = user_id
        self.window = window
        self.limit = limit
        self.count = count
        super().__init__(
            f"Ticket creation limit reached ({count}/{limit} per {window})",
            {"user_id": user_id, "window": window, "limit": limit, "count": count}
        )


class SatisfactionAlreadySubmittedException(DomainException):
    """A satisfaction survey already exists for the ticket."""

    code = "SATISFACTION_ALREADY_SUBMITTED"

    def __init__(self, ticket_id: str):
        self.ticket_id = ticket_id
        super().__init__(
            f"Satisfaction already submitted for ticket {ticket_id}",
            {"ticket_id": ticket_id}
        )


# ========== Alerting ==========

class AlertRuleNotFoundException(ResourceNotFoundException):
    """Alert rule id is unknown."""

    code = "ALERT_RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        super().__init__("Alert rule", rule_id)


class AlertNotFoundException(ResourceNotFoundException):
    """Alert id is unknown."""

    code = "ALERT_NOT_FOUND"

    def __init__(self, alert_id: str):
        super().__init__("Alert", alert_id)


class AlertAlreadyResolvedException(DomainException):
    """Alert was resolved before."""

    code = "ALERT_ALREADY_RESOLVED"

    def __init__(self, alert_id: str):
        self.alert_id = alert_id
        super().__init__(f"Alert {alert_id} is already resolved", {"alert_id": alert_id})
