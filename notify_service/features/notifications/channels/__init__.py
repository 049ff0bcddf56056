"""Channel senders for notification deliveries."""

from notify_service.features.notifications.channels.base import (
    ChannelSender,
    DeliveryResult,
    SendContext,
)
from notify_service.features.notifications.channels.email import EmailChannelSender
from notify_service.features.notifications.channels.in_app import InAppChannelSender

__all__ = [
    "ChannelSender",
    "DeliveryResult",
    "EmailChannelSender",
    "InAppChannelSender",
    "SendContext",
]
