"""Message normalization and routing bus."""

from unibus.bus.manager import MessageBus
from unibus.bus.models import Author, ChannelSummary, DeliveryResult, UnifiedMessage
from unibus.bus.normalize import normalize_message

__all__ = [
    "Author",
    "ChannelSummary",
    "DeliveryResult",
    "MessageBus",
    "UnifiedMessage",
    "normalize_message",
]
