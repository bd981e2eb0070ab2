"""
Support Desk Module
===================

Bounded context for multi-tenant support tickets.

Responsibilities:
- Ticket lifecycle (create, update, messages, satisfaction, soft close)
- SLA scheduling anchored to ticket creation, breach sweep
- Rate limiting, least-loaded assignment, role-based escalation
- Per-tenant support configuration
"""

__version__ = "1.0.0"
