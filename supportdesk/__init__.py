"""
Support Desk
============

Multi-tenant customer support: ticket lifecycle with SLA tracking,
load-balanced assignment and escalation, and a background alert rule
engine over live support metrics.
"""

__version__ = "1.0.0"
