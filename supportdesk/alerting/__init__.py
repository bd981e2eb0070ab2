"""
Alerting Module
===============

Periodic alert rule evaluation over live support metrics.
"""
