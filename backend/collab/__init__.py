"""
Collaboration state shared across requests.

This module provides:
- EditingSessionRegistry: which branch each user edits a project on
- NotificationHub: long-poll and websocket fan-out of project updates
"""

from .sessions import EditingSessionRegistry, editing_sessions
from .notifications import NotificationHub, initialize_notification_hub

__all__ = [
    'EditingSessionRegistry',
    'editing_sessions',
    'NotificationHub',
    'initialize_notification_hub',
]
