"""Permission tokens and authorization checks.

Permissions are opaque capability tokens owned by the chat platform.
cmdwire never computes a hierarchy between them: an actor either holds
the token a command requires or it does not. The only built-in rules
are the ones the command model itself relies on:

- ``MESSAGE_READ`` is held by everyone who can see the channel, so a
  command requiring it is open to all.
- ``ADMINISTRATOR`` bypasses role restrictions.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, AbstractSet, FrozenSet, Iterable

import structlog

from .exceptions import UnauthorizedError

if TYPE_CHECKING:
    from .commands.base import CommandDescriptor

logger = structlog.get_logger("cmdwire.security")


class Permission(str, Enum):
    """Capability tokens passed through from the chat platform."""
    MESSAGE_READ = "message_read"
    MESSAGE_WRITE = "message_write"
    MESSAGE_HISTORY = "message_history"
    MESSAGE_MANAGE = "message_manage"
    MESSAGE_MENTION_EVERYONE = "message_mention_everyone"
    NICKNAME_CHANGE = "nickname_change"
    NICKNAME_MANAGE = "nickname_manage"
    KICK_MEMBERS = "kick_members"
    BAN_MEMBERS = "ban_members"
    MANAGE_CHANNEL = "manage_channel"
    MANAGE_ROLES = "manage_roles"
    MANAGE_SERVER = "manage_server"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    ADMINISTRATOR = "administrator"

    @classmethod
    def parse(cls, value: "str | Permission") -> "Permission":
        """Accept a member, its value or its name (any case)."""
        if isinstance(value, Permission):
            return value
        text = str(value).strip()
        try:
            return cls(text.lower())
        except ValueError:
            pass
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"Unknown permission: {value!r}") from None


@dataclass(frozen=True)
class Actor:
    """The member invoking a command, as seen by the chat platform.

    Attributes:
        id: Platform user id.
        permissions: Capabilities granted to the actor in the channel.
        roles: Ids of roles the actor holds.
    """
    id: str
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def of(
        cls,
        id: str,
        permissions: Iterable["str | Permission"] = (),
        roles: Iterable[str] = (),
    ) -> "Actor":
        """Build an Actor from loose iterables."""
        return cls(
            id=str(id),
            permissions=frozenset(Permission.parse(p) for p in permissions),
            roles=frozenset(str(r) for r in roles),
        )

    @property
    def is_admin(self) -> bool:
        return Permission.ADMINISTRATOR in self.permissions


def has_permission(actor: Actor, required: Permission) -> bool:
    """Check whether an actor holds the capability a command requires."""
    if required is Permission.MESSAGE_READ:
        return True
    return required in actor.permissions


def has_role(actor: Actor, roles: AbstractSet[str]) -> bool:
    """Check a command's role restriction. Empty means unrestricted."""
    if not roles:
        return True
    if actor.is_admin:
        return True
    return not actor.roles.isdisjoint(roles)


def authorize(actor: Actor, descriptor: "CommandDescriptor") -> None:
    """Raise UnauthorizedError unless the actor may run the command."""
    if not has_permission(actor, descriptor.permission):
        logger.info(
            "permission_missing",
            actor=actor.id,
            command=descriptor.name,
            required=descriptor.permission.value,
        )
        raise UnauthorizedError(
            "Missing required permission",
            required=descriptor.permission.value,
            command=descriptor.name,
        )
    if not has_role(actor, descriptor.roles):
        logger.info(
            "role_missing",
            actor=actor.id,
            command=descriptor.name,
            roles=sorted(descriptor.roles),
        )
        raise UnauthorizedError(
            "Missing required role",
            command=descriptor.name,
        )
