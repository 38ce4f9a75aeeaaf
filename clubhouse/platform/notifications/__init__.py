"""Member event publishing and dispatch."""

from .dispatcher import MemberEventDispatcher
from .publisher import MemberEventPublisher, make_channel, member_event_publisher

__all__ = [
    "MemberEventDispatcher",
    "MemberEventPublisher",
    "make_channel",
    "member_event_publisher",
]
