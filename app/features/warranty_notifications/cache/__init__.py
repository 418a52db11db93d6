from .notification_cache import (
    InMemoryNotificationCache,
    NotificationCache,
    NotificationCacheError,
    RedisNotificationCache,
    create_notification_cache,
)

__all__ = [
    "InMemoryNotificationCache",
    "NotificationCache",
    "NotificationCacheError",
    "RedisNotificationCache",
    "create_notification_cache",
]
