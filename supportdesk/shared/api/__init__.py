"""
Shared API
==========

Middleware, exception handlers and request dependencies.
"""

from supportdesk.shared.api.dependencies import (
    get_actor,
    require_platform,
    require_scope,
    require_staff,
    stream_channel,
)
from supportdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    MetricsMiddleware,
    application_exception_handler,
    global_exception_handler,
    status_for,
)

__all__ = [
    "get_actor",
    "require_platform",
    "require_scope",
    "require_staff",
    "stream_channel",
    "CorrelationIDMiddleware",
    "LoggingMiddleware",
    "MetricsMiddleware",
    "application_exception_handler",
    "global_exception_handler",
    "status_for",
]
