"""
Notification sinks for user-visible warnings and errors raised by the chat core.
"""

from enum import Enum
from typing import Protocol

import streamlit as st

from utils.logging_config import get_logger


class NotificationLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notifier(Protocol):
    """Where the orchestrator reports rejected sends and failed turns"""

    def notify(self, title: str, description: str, level: NotificationLevel = NotificationLevel.INFO) -> None: ...


_TOAST_ICONS = {
    NotificationLevel.INFO: "ℹ️",
    NotificationLevel.WARNING: "⚠️",
    NotificationLevel.ERROR: "🚨",
}


class StreamlitNotifier:
    """Shows notifications as Streamlit toasts"""

    def notify(self, title: str, description: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        st.toast(f"**{title}**  \n{description}", icon=_TOAST_ICONS[NotificationLevel(level)])


class LoggingNotifier:
    """Writes notifications to the log; used outside the UI shell"""

    def __init__(self):
        self.logger = get_logger(__name__)

    def notify(self, title: str, description: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        level = NotificationLevel(level)
        if level is NotificationLevel.ERROR:
            self.logger.error(f"{title}: {description}")
        elif level is NotificationLevel.WARNING:
            self.logger.warning(f"{title}: {description}")
        else:
            self.logger.info(f"{title}: {description}")

