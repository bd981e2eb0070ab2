"""
Support Interfaces Layer
========================

HTTP and WebSocket routes for the support desk.
"""

from supportdesk.support.interfaces.controllers import router

__all__ = ["router"]
