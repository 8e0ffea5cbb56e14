"""
MODULE OVERVIEW:
The strictly typed data structures of the gateway, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
A `Signal` is one frame on the wire: `{s, d, sn}`. The payload `d` is opaque
until the session manager looks at the signal type; HELLO payloads become
`HelloPayload`, EVENT payloads become `Event`.

System events (type 255) carry a nested `extra = {type, body}` envelope. We
resolve that envelope right at the decode boundary: a known sub-type becomes a
`SystemEvent` with a typed body, anything else becomes an
`UnrecognizedSystemEvent` that keeps the raw body instead of dropping it.
"""
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class SignalType(IntEnum):
    EVENT = 0
    HELLO = 1
    PING = 2
    PONG = 3
    RECONNECT = 4
    # Declared by the protocol but never sent by this client.
    RESUME = 5


class Signal(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    signal_type: int = Field(alias="s")
    payload: Any = Field(default=None, alias="d")
    sequence: int | None = Field(default=None, alias="sn")

    @property
    def kind(self) -> SignalType | None:
        """The known signal type, or None for codes this client does not handle."""
        try:
            return SignalType(self.signal_type)
        except ValueError:
            return None


class HelloPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: str
    heartbeat_interval: int = Field(default=30000, gt=0)
    code: int = 0


class ConnectionState(str, Enum):
    IDLE = "idle"
    RESOLVING_ENDPOINT = "resolving_endpoint"
    CONNECTING = "connecting"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    ESTABLISHED = "established"
    RECONNECTING = "reconnecting"
    CLOSING = "closing"
    FAILED = "failed"


class Session(BaseModel):
    session_id: str
    heartbeat_interval_ms: int
    last_sequence: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def advance(self, sequence: int) -> bool:
        """Moves `last_sequence` forward. Never moves it back."""
        if sequence > self.last_sequence:
            self.last_sequence = sequence
            return True
        return False


class ChannelKind(str, Enum):
    GROUP = "GROUP"
    PERSON = "PERSON"
    BROADCAST = "BROADCAST"


class SystemEventType(str, Enum):
    # Guild members
    JOINED_GUILD = "joined_guild"
    EXITED_GUILD = "exited_guild"
    UPDATED_GUILD_MEMBER = "updated_guild_member"
    GUILD_MEMBER_ONLINE = "guild_member_online"
    GUILD_MEMBER_OFFLINE = "guild_member_offline"

    # Guild
    UPDATED_GUILD = "updated_guild"
    DELETED_GUILD = "deleted_guild"
    ADDED_BLOCK_LIST = "added_block_list"
    DELETED_BLOCK_LIST = "deleted_block_list"
    ADDED_EMOJI = "added_emoji"
    REMOVED_EMOJI = "removed_emoji"
    UPDATED_EMOJI = "updated_emoji"

    # Channels
    ADDED_CHANNEL = "added_channel"
    UPDATED_CHANNEL = "updated_channel"
    DELETED_CHANNEL = "deleted_channel"

    # Messages
    UPDATED_MESSAGE = "updated_message"
    DELETED_MESSAGE = "deleted_message"
    PINNED_MESSAGE = "pinned_message"
    UNPINNED_MESSAGE = "unpinned_message"
    UPDATED_PRIVATE_MESSAGE = "updated_private_message"
    DELETED_PRIVATE_MESSAGE = "deleted_private_message"

    # Reactions
    ADDED_REACTION = "added_reaction"
    DELETED_REACTION = "deleted_reaction"
    PRIVATE_ADDED_REACTION = "private_added_reaction"
    PRIVATE_DELETED_REACTION = "private_deleted_reaction"

    # Roles
    ADDED_ROLE = "added_role"
    DELETED_ROLE = "deleted_role"
    UPDATED_ROLE = "updated_role"

    # Users
    USER_UPDATED = "user_updated"
    SELF_JOINED_GUILD = "self_joined_guild"
    SELF_EXITED_GUILD = "self_exited_guild"

    # Voice channels
    JOINED_CHANNEL = "joined_channel"
    EXITED_CHANNEL = "exited_channel"

    # Card buttons
    MESSAGE_BTN_CLICK = "message_btn_click"


# ==========================
# SYSTEM EVENT BODIES
# ==========================
# Every field is optional: the platform adds fields over time and a body we
# cannot fully describe is still worth delivering. Unknown keys are kept.

class SystemBody(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


class MemberBody(SystemBody):
    user_id: str | None = None
    joined_at: int | None = None
    exited_at: int | None = None


class MemberPresenceBody(SystemBody):
    user_id: str | None = None
    event_time: int | None = None
    guilds: list[str] | None = None


class MemberUpdateBody(SystemBody):
    user_id: str | None = None
    nickname: str | None = None


class GuildBody(SystemBody):
    id: str | None = None
    name: str | None = None
    user_id: str | None = None
    icon: str | None = None
    notify_type: int | None = None
    region: str | None = None
    enable_open: int | None = None
    open_id: str | None = None
    default_channel_id: str | None = None
    welcome_channel_id: str | None = None


class BlockListBody(SystemBody):
    operator_id: str | None = None
    remark: str | None = None
    user_id: list[str] | None = None


class EmojiBody(SystemBody):
    id: str | None = None
    name: str | None = None


class ChannelBody(SystemBody):
    id: str | None = None
    name: str | None = None
    type: int | None = None
    guild_id: str | None = None
    parent_id: str | None = None
    level: int | None = None
    limit_amount: int | None = None
    is_category: bool | None = None
    master_id: str | None = None
    permission_sync: int | None = None


class ChannelDeleteBody(SystemBody):
    id: str | None = None
    deleted_at: int | None = None
    type: int | None = None


class MessageUpdateBody(SystemBody):
    msg_id: str | None = None
    content: str | None = None
    channel_id: str | None = None
    mention: list[str] | None = None
    mention_all: bool | None = None
    mention_here: bool | None = None
    mention_roles: list[str] | None = None
    updated_at: int | None = None
    channel_type: int | None = None


class MessageDeleteBody(SystemBody):
    msg_id: str | None = None
    channel_id: str | None = None
    channel_type: int | None = None


class PrivateMessageUpdateBody(SystemBody):
    msg_id: str | None = None
    author_id: str | None = None
    target_id: str | None = None
    content: str | None = None
    chat_code: str | None = None
    updated_at: int | None = None


class PrivateMessageDeleteBody(SystemBody):
    msg_id: str | None = None
    author_id: str | None = None
    target_id: str | None = None
    chat_code: str | None = None
    deleted_at: int | None = None


class ReactionBody(SystemBody):
    msg_id: str | None = None
    user_id: str | None = None
    channel_id: str | None = None
    chat_code: str | None = None
    emoji: dict[str, Any] | None = None
    channel_type: int | None = None


class PinMessageBody(SystemBody):
    channel_id: str | None = None
    operator_id: str | None = None
    msg_id: str | None = None
    channel_type: int | None = None


class RoleBody(SystemBody):
    role_id: int | None = None
    name: str | None = None
    color: int | None = None
    position: int | None = None
    hoist: int | None = None
    mentionable: int | None = None
    permissions: int | None = None


class UserUpdateBody(SystemBody):
    user_id: str | None = None
    username: str | None = None
    avatar: str | None = None


class SelfGuildBody(SystemBody):
    guild_id: str | None = None
    state: str | None = None


class VoiceChannelBody(SystemBody):
    user_id: str | None = None
    channel_id: str | None = None
    joined_at: int | None = None
    exited_at: int | None = None


class ButtonClickBody(SystemBody):
    msg_id: str | None = None
    user_id: str | None = None
    value: str | None = None
    target_id: str | None = None
    user_info: dict[str, Any] | None = None


SYSTEM_BODY_MODELS: dict[SystemEventType, type[SystemBody]] = {
    SystemEventType.JOINED_GUILD: MemberBody,
    SystemEventType.EXITED_GUILD: MemberBody,
    SystemEventType.UPDATED_GUILD_MEMBER: MemberUpdateBody,
    SystemEventType.GUILD_MEMBER_ONLINE: MemberPresenceBody,
    SystemEventType.GUILD_MEMBER_OFFLINE: MemberPresenceBody,
    SystemEventType.UPDATED_GUILD: GuildBody,
    SystemEventType.DELETED_GUILD: GuildBody,
    SystemEventType.ADDED_BLOCK_LIST: BlockListBody,
    SystemEventType.DELETED_BLOCK_LIST: BlockListBody,
    SystemEventType.ADDED_EMOJI: EmojiBody,
    SystemEventType.REMOVED_EMOJI: EmojiBody,
    SystemEventType.UPDATED_EMOJI: EmojiBody,
    SystemEventType.ADDED_CHANNEL: ChannelBody,
    SystemEventType.UPDATED_CHANNEL: ChannelBody,
    SystemEventType.DELETED_CHANNEL: ChannelDeleteBody,
    SystemEventType.UPDATED_MESSAGE: MessageUpdateBody,
    SystemEventType.DELETED_MESSAGE: MessageDeleteBody,
    SystemEventType.PINNED_MESSAGE: PinMessageBody,
    SystemEventType.UNPINNED_MESSAGE: PinMessageBody,
    SystemEventType.UPDATED_PRIVATE_MESSAGE: PrivateMessageUpdateBody,
    SystemEventType.DELETED_PRIVATE_MESSAGE: PrivateMessageDeleteBody,
    SystemEventType.ADDED_REACTION: ReactionBody,
    SystemEventType.DELETED_REACTION: ReactionBody,
    SystemEventType.PRIVATE_ADDED_REACTION: ReactionBody,
    SystemEventType.PRIVATE_DELETED_REACTION: ReactionBody,
    SystemEventType.ADDED_ROLE: RoleBody,
    SystemEventType.DELETED_ROLE: RoleBody,
    SystemEventType.UPDATED_ROLE: RoleBody,
    SystemEventType.USER_UPDATED: UserUpdateBody,
    SystemEventType.SELF_JOINED_GUILD: SelfGuildBody,
    SystemEventType.SELF_EXITED_GUILD: SelfGuildBody,
    SystemEventType.JOINED_CHANNEL: VoiceChannelBody,
    SystemEventType.EXITED_CHANNEL: VoiceChannelBody,
    SystemEventType.MESSAGE_BTN_CLICK: ButtonClickBody,
}


class SystemEvent(BaseModel):
    sub_type: SystemEventType
    body: SystemBody
    # Set when the body did not fit its typed model; `body` then holds every
    # received key untyped.
    body_error: str | None = None


class UnrecognizedSystemEvent(BaseModel):
    sub_type: str
    body: Any = None


def parse_system_extra(extra: Any) -> SystemEvent | UnrecognizedSystemEvent:
    """Resolves the `{type, body}` envelope of a type-255 event."""
    if not isinstance(extra, dict):
        return UnrecognizedSystemEvent(sub_type="", body=extra)

    sub_type = extra.get("type", extra.get("subType"))
    body = extra.get("body")
    try:
        known = SystemEventType(sub_type)
    except ValueError:
        return UnrecognizedSystemEvent(sub_type=str(sub_type or ""), body=body)

    raw_body = body if isinstance(body, dict) else {}
    try:
        return SystemEvent(sub_type=known, body=SYSTEM_BODY_MODELS[known].model_validate(raw_body))
    except ValidationError as e:
        return SystemEvent(
            sub_type=known,
            body=SystemBody.model_validate(raw_body),
            body_error=f"{e.error_count()} field(s) did not match {SYSTEM_BODY_MODELS[known].__name__}",
        )


SYSTEM_EVENT_TYPE_CODE = 255


# WHAT IS HAPPENING HERE:
# The universal wrapper for one gateway event. `extra` stays as received;
# `system` is the resolved envelope and is only set for type 255.
class Event(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    channel_type: ChannelKind
    type: int
    target_id: str = ""
    author_id: str = ""
    content: str = ""
    extra: Any = None
    msg_id: str = ""
    msg_timestamp: int = 0
    nonce: str = ""
    verify_token: str | None = None
    system: SystemEvent | UnrecognizedSystemEvent | None = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def _resolve_system_envelope(self) -> "Event":
        if self.type == SYSTEM_EVENT_TYPE_CODE and self.system is None:
            self.system = parse_system_extra(self.extra)
        return self


class MockGatewayStats(BaseModel):
    active_connections: int
    total_events_dispatched: int
    uptime_s: float
    server_time: datetime
