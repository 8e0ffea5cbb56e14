"""
MODULE OVERVIEW:
The event router: decoded events in, named categories out.

WHAT IS HAPPENING HERE:
Routing is a two-level lookup. The numeric `type` decides first:
  * 1..10 are messages (text, image, video, file, audio, markup, card ...).
  * 8 and 9 are overloaded: in a PERSON channel they mean a member went
    online/offline, anywhere else they are ordinary messages.
  * 255 is the system catch-all. It always yields `system-event`, and when the
    nested sub-type is in the catalog it also yields the specific category.
Anything else has no named category; consumers can still watch the raw
`event` category the session manager publishes for every event.
"""
from typing import Dict, List

from kook_gateway.shared.models import (
    SYSTEM_EVENT_TYPE_CODE,
    ChannelKind,
    Event,
    SystemEvent,
    SystemEventType,
)

RAW_EVENT = "event"
MESSAGE = "message"
SYSTEM_EVENT = "system-event"
MEMBER_ONLINE = "member-online"
MEMBER_OFFLINE = "member-offline"

MESSAGE_TYPE_RANGE = range(1, 11)

PRESENCE_CATEGORIES: Dict[int, str] = {
    8: MEMBER_ONLINE,
    9: MEMBER_OFFLINE,
}

SYSTEM_EVENT_CATEGORIES: Dict[SystemEventType, str] = {
    # Guild members
    SystemEventType.JOINED_GUILD: "member-joined",
    SystemEventType.EXITED_GUILD: "member-exited",
    SystemEventType.UPDATED_GUILD_MEMBER: "member-updated",
    SystemEventType.GUILD_MEMBER_ONLINE: MEMBER_ONLINE,
    SystemEventType.GUILD_MEMBER_OFFLINE: MEMBER_OFFLINE,

    # Guild
    SystemEventType.UPDATED_GUILD: "guild-updated",
    SystemEventType.DELETED_GUILD: "guild-deleted",
    SystemEventType.ADDED_BLOCK_LIST: "block-list-added",
    SystemEventType.DELETED_BLOCK_LIST: "block-list-removed",
    SystemEventType.ADDED_EMOJI: "emoji-added",
    SystemEventType.REMOVED_EMOJI: "emoji-removed",
    SystemEventType.UPDATED_EMOJI: "emoji-updated",

    # Channels
    SystemEventType.ADDED_CHANNEL: "channel-created",
    SystemEventType.UPDATED_CHANNEL: "channel-updated",
    SystemEventType.DELETED_CHANNEL: "channel-deleted",

    # Messages
    SystemEventType.UPDATED_MESSAGE: "message-updated",
    SystemEventType.DELETED_MESSAGE: "message-deleted",
    SystemEventType.PINNED_MESSAGE: "pinned-message",
    SystemEventType.UNPINNED_MESSAGE: "unpinned-message",
    SystemEventType.UPDATED_PRIVATE_MESSAGE: "private-message-updated",
    SystemEventType.DELETED_PRIVATE_MESSAGE: "private-message-deleted",

    # Reactions
    SystemEventType.ADDED_REACTION: "reaction-added",
    SystemEventType.DELETED_REACTION: "reaction-removed",
    SystemEventType.PRIVATE_ADDED_REACTION: "private-reaction-added",
    SystemEventType.PRIVATE_DELETED_REACTION: "private-reaction-removed",

    # Roles
    SystemEventType.ADDED_ROLE: "role-created",
    SystemEventType.DELETED_ROLE: "role-deleted",
    SystemEventType.UPDATED_ROLE: "role-updated",

    # Users
    SystemEventType.USER_UPDATED: "user-updated",
    SystemEventType.SELF_JOINED_GUILD: "self-joined-guild",
    SystemEventType.SELF_EXITED_GUILD: "self-exited-guild",

    # Voice channels
    SystemEventType.JOINED_CHANNEL: "voice-joined",
    SystemEventType.EXITED_CHANNEL: "voice-exited",

    # Card buttons
    SystemEventType.MESSAGE_BTN_CLICK: "button-clicked",
}

GENERIC_CATEGORIES = ("ready", "debug", "error", "stopped", "hello", "ping", "pong", "state")


def all_categories() -> List[str]:
    named = {MESSAGE, SYSTEM_EVENT, MEMBER_ONLINE, MEMBER_OFFLINE, *SYSTEM_EVENT_CATEGORIES.values()}
    return [*GENERIC_CATEGORIES, RAW_EVENT, *sorted(named)]


class EventRouter:
    def route(self, event: Event) -> List[str]:
        """Returns the named categories `event` should be published on, in emit order."""
        if event.type == SYSTEM_EVENT_TYPE_CODE:
            return self._route_system(event)

        if event.type in PRESENCE_CATEGORIES:
            if event.channel_type is ChannelKind.PERSON:
                return [PRESENCE_CATEGORIES[event.type]]
            return [MESSAGE]

        if event.type in MESSAGE_TYPE_RANGE:
            return [MESSAGE]

        return []

    def _route_system(self, event: Event) -> List[str]:
        categories = []
        if isinstance(event.system, SystemEvent):
            categories.append(SYSTEM_EVENT_CATEGORIES[event.system.sub_type])
        categories.append(SYSTEM_EVENT)
        return categories
