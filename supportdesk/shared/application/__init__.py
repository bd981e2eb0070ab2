"""
Shared Application Contracts
============================

Interfaces shared by the bounded contexts. Implementations live in
`supportdesk.shared.infrastructure`.
"""

from supportdesk.shared.application.notifications import (
    ChannelNotification,
    INotificationDispatcher,
)

__all__ = [
    "ChannelNotification",
    "INotificationDispatcher",
]
