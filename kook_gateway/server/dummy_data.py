"""
MODULE OVERVIEW:
Infinite background async generators that produce realistic gateway events.

WHAT IS HAPPENING HERE:
A real gateway pushes whatever happens on the platform. Here we simulate the
three shapes a bot sees most: channel messages, person-channel presence
changes (type 8/9, the overloaded codes) and system events (type 255 with a
`{type, body}` envelope), including sub-types the client does not know.
"""

import asyncio
import random
import time
import uuid

from kook_gateway.shared.models import ChannelKind, Event, SystemEventType


def _now_ms() -> int:
    return int(time.time() * 1000)


def _payload(event: Event) -> dict:
    return event.model_dump(mode="json", exclude_none=True)


async def message_generator(channel_id: str = "1000000000000001"):
    """Emits text and markup messages in a group channel every 1s - 3s."""
    lines = ["hello there", "anyone around?", "**deploy** finished", "(met)all(met) standup in 5", "gg"]

    while True:
        msg_type = random.choice([1, 9])
        event = Event(
            channel_type=ChannelKind.GROUP,
            type=msg_type,
            target_id=channel_id,
            author_id=str(random.randint(1000, 9999)),
            content=random.choice(lines),
            extra={"type": msg_type, "guild_id": "2000000000000001", "channel_name": "general"},
            msg_id=str(uuid.uuid4()),
            msg_timestamp=_now_ms(),
            nonce="",
        )
        yield _payload(event)
        await asyncio.sleep(random.uniform(1.0, 3.0))


async def presence_generator():
    """Emits person-channel online/offline events irregularly."""
    while True:
        code = random.choice([8, 9])
        event = Event(
            channel_type=ChannelKind.PERSON,
            type=code,
            target_id="bot",
            author_id=str(random.randint(1000, 9999)),
            content="",
            extra={},
            msg_id=str(uuid.uuid4()),
            msg_timestamp=_now_ms(),
        )
        yield _payload(event)
        await asyncio.sleep(random.uniform(4.0, 8.0))


SYSTEM_SAMPLES = [
    (SystemEventType.PINNED_MESSAGE, lambda: {"channel_id": "1000000000000001", "operator_id": "1001", "msg_id": str(uuid.uuid4())}),
    (SystemEventType.ADDED_REACTION, lambda: {"msg_id": str(uuid.uuid4()), "user_id": "1002", "emoji": {"id": "[#128077;]", "name": "[#128077;]"}}),
    (SystemEventType.ADDED_CHANNEL, lambda: {"id": str(random.randint(10**15, 10**16)), "name": "new-channel", "type": 1}),
    (SystemEventType.UPDATED_ROLE, lambda: {"role_id": random.randint(1, 50), "name": "moderator", "color": 0}),
    (SystemEventType.JOINED_CHANNEL, lambda: {"user_id": "1003", "channel_id": "3000000000000001", "joined_at": _now_ms()}),
    (SystemEventType.MESSAGE_BTN_CLICK, lambda: {"msg_id": str(uuid.uuid4()), "user_id": "1004", "value": "vote-yes"}),
]


async def system_event_generator(guild_id: str = "2000000000000001"):
    """Emits type-255 system events every 2s - 5s, now and then with an unknown sub-type."""
    while True:
        if random.random() < 0.15:
            extra = {"type": "added_sticker", "body": {"id": "s1"}}
        else:
            sub_type, body = random.choice(SYSTEM_SAMPLES)
            extra = {"type": sub_type.value, "body": body()}
        event = Event(
            channel_type=ChannelKind.GROUP,
            type=255,
            target_id=guild_id,
            author_id="1",
            content="[system message]",
            extra=extra,
            msg_id=str(uuid.uuid4()),
            msg_timestamp=_now_ms(),
        )
        yield _payload(event)
        await asyncio.sleep(random.uniform(2.0, 5.0))


def get_all_generators():
    return [
        message_generator(),
        presence_generator(),
        system_event_generator(),
    ]
