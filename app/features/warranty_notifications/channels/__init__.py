"""
Notification channels (email, SMS, log, composite).
"""

from .base import NotificationChannel, NotificationChannelError
from .composite import CompositeNotificationChannel
from .email import EmailNotificationChannel
from .factory import create_notification_channel
from .log import LogNotificationChannel
from .sms import SmsNotificationChannel

__all__ = [
    "CompositeNotificationChannel",
    "EmailNotificationChannel",
    "LogNotificationChannel",
    "NotificationChannel",
    "NotificationChannelError",
    "SmsNotificationChannel",
    "create_notification_channel",
]
