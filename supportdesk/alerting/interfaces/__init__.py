"""
Alerting Interfaces Layer
=========================

HTTP and WebSocket routes for alerts.
"""

from supportdesk.alerting.interfaces.controllers import router

__all__ = ["router"]
