"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded
contexts (Support Desk and Alerting).

Architecture Pattern: Modular Monolith
- Each module (support, alerting) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add ticket or alert business logic to the shared kernel.
"""

__version__ = "1.0.0"
