"""
UI service - notification sinks the UI shell hands to the chat core.
"""

from .notifications import (
    LoggingNotifier,
    NotificationLevel,
    Notifier,
    StreamlitNotifier,
)

__all__ = [
    'LoggingNotifier',
    'NotificationLevel',
    'Notifier',
    'StreamlitNotifier',
]
