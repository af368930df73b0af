"""Boundary types between cmdwire and the chat transport.

cmdwire owns no connection to the chat service. The transport that
receives message events hands each one to the dispatcher together with
a MessageOrigin, and receives reply/delete requests back through the
Transport protocol. Implementations are responsible for their own
concurrency safety.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, runtime_checkable

from .permissions import Actor


@dataclass(frozen=True)
class Mentions:
    """Counts of entities mentioned in the triggering message."""
    members: int = 0
    roles: int = 0
    channels: int = 0


@dataclass(frozen=True)
class MessageOrigin:
    """Where an incoming message came from and who sent it.

    Attributes:
        actor: The invoking member and their granted capabilities.
        channel_id: Channel or conversation reference.
        message_id: Reference to the triggering message (for deletion).
        mentions: Mention counts parsed by the transport.
        guild_id: Server reference, None for direct messages.
    """
    actor: Actor
    channel_id: str
    message_id: str
    mentions: Mentions = Mentions()
    guild_id: Optional[str] = None


@runtime_checkable
class Transport(Protocol):
    """Outgoing side effects the dispatcher requests from the chat service."""

    async def send_message(self, channel_id: str, text: str) -> Optional[str]:
        """Send ``text`` to a channel. Returns the new message id if known."""
        ...

    async def delete_messages(self, channel_id: str, message_ids: Sequence[str]) -> None:
        """Delete messages from a channel."""
        ...
