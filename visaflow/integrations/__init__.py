"""
Integrations package - File/folder and notification collaborators.
"""

from visaflow.integrations.files import FileService, HostFileService, InMemoryFileService
from visaflow.integrations.notifications import (
    InMemoryNotifier,
    LoggingNotifier,
    Notification,
    Notifier,
    notify_safely,
)

__all__ = [
    "FileService",
    "HostFileService",
    "InMemoryFileService",
    "InMemoryNotifier",
    "LoggingNotifier",
    "Notification",
    "Notifier",
    "notify_safely",
]
