"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from supportdesk.core.actor import Actor
from supportdesk.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    TicketNotFoundException,
    UnauthorizedAccessException,
    InvalidStatusTransitionException,
    ConfigMissingException,
    AgentNotAvailableException,
    EscalationNotAllowedException,
    RateLimitExceededException,
    SatisfactionAlreadySubmittedException,
    AlertRuleNotFoundException,
    AlertNotFoundException,
    AlertAlreadyResolvedException,
)

__all__ = [
    "Actor",
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "TicketNotFoundException",
    "UnauthorizedAccessException",
    "InvalidStatusTransitionException",
    "ConfigMissingException",
    "AgentNotAvailableException",
    "EscalationNotAllowedException",
    "RateLimitExceededException",
    "SatisfactionAlreadySubmittedException",
    "AlertRuleNotFoundException",
    "AlertNotFoundException",
    "AlertAlreadyResolvedException",
]
