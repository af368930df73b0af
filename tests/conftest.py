"""Shared fixtures for cmdwire tests."""

import itertools
from typing import List, Optional, Sequence, Tuple

import pytest

from cmdwire.commands.registry import CommandRegistry
from cmdwire.models import DispatchSettings
from cmdwire.permissions import Actor, Permission
from cmdwire.transport import Mentions, MessageOrigin


class RecordingTransport:
    """In-memory Transport that records every request."""

    def __init__(self, fail_send: bool = False, fail_delete: bool = False):
        self.sent: List[Tuple[str, str]] = []
        self.deleted: List[Tuple[str, Tuple[str, ...]]] = []
        self.fail_send = fail_send
        self.fail_delete = fail_delete
        self._ids = itertools.count(1000)

    async def send_message(self, channel_id: str, text: str) -> Optional[str]:
        if self.fail_send:
            raise ConnectionError("send refused")
        self.sent.append((channel_id, text))
        return str(next(self._ids))

    async def delete_messages(self, channel_id: str, message_ids: Sequence[str]) -> None:
        if self.fail_delete:
            raise ConnectionError("delete refused")
        self.deleted.append((channel_id, tuple(message_ids)))


def make_origin(
    permissions=(),
    roles=(),
    actor_id: str = "user-1",
    channel_id: str = "chan-1",
    message_id: str = "msg-1",
    mentions: Mentions = Mentions(),
    guild_id: Optional[str] = "guild-1",
) -> MessageOrigin:
    return MessageOrigin(
        actor=Actor.of(actor_id, permissions=permissions, roles=roles),
        channel_id=channel_id,
        message_id=message_id,
        mentions=mentions,
        guild_id=guild_id,
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def registry():
    return CommandRegistry()


@pytest.fixture
def settings():
    """Dispatch settings without timed notice cleanup."""
    return DispatchSettings(prefix="!", notice_ttl=0, handler_timeout=5)


@pytest.fixture
def member_origin():
    return make_origin()


@pytest.fixture
def admin_origin():
    return make_origin(permissions=[Permission.ADMINISTRATOR, Permission.KICK_MEMBERS])
