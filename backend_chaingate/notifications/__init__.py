"""
Role/notification sink — role grants, direct messages, channel announcements.
"""

from backend_chaingate.notifications.messages import (
    Notification,
    verification_announcement,
    verified_direct_message,
)
from backend_chaingate.notifications.sink import (
    DiscordRoleSink,
    GrantResult,
    RoleNotificationSink,
)

__all__ = [
    "DiscordRoleSink",
    "GrantResult",
    "Notification",
    "RoleNotificationSink",
    "verification_announcement",
    "verified_direct_message",
]
