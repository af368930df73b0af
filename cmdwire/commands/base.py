"""Command metadata and handler bindings.

A command is declared by building an immutable CommandDescriptor and
binding it to a handler, either explicitly::

    binding = HandlerBinding(CommandDescriptor(("ping", "p")), handle_ping)

or with the ``command`` decorator::

    @command("ping", "p", description="Check the bot is alive")
    async def ping(ctx):
        return "Pong!"

Handlers receive an InvocationContext and return an optional reply
string. They may be coroutine functions or plain callables.

Key classes:
    CommandDescriptor: Routing and authorization metadata.
    HandlerBinding: One descriptor paired with one handler.
    InvocationContext: Per-dispatch value passed to handlers.
    BaseCommandGroup: ABC for handlers that share collaborators.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Tuple,
    Union,
)

from ..permissions import Actor, Permission

if TYPE_CHECKING:
    from ..transport import MessageOrigin, Transport

# Type alias for command handlers: (ctx: InvocationContext) -> Optional[str]
CommandHandler = Callable[["InvocationContext"], Union[Awaitable[Optional[str]], Optional[str]]]

_NAME_PREFIXES = ("cmd_", "handle_", "command_")
_NAME_SUFFIXES = ("_command", "_cmd", "command")


def normalize_alias(alias: str) -> str:
    """Registry key for an alias. Matching is case-insensitive."""
    return alias.casefold()


def derive_alias(name: str) -> str:
    """Turn a handler's name into a default alias.

    ``ping_command`` -> ``ping``, ``cmd_ping`` -> ``ping``,
    ``PingCommand`` -> ``ping``.
    """
    alias = name.strip("_")
    lowered = alias.lower()
    for prefix in _NAME_PREFIXES:
        if lowered.startswith(prefix) and len(alias) > len(prefix):
            alias = alias[len(prefix):]
            lowered = alias.lower()
            break
    for suffix in _NAME_SUFFIXES:
        if lowered.endswith(suffix) and len(alias) > len(suffix):
            alias = alias[: -len(suffix)]
            break
    return alias.lower()


@dataclass(frozen=True)
class CommandDescriptor:
    """Immutable routing and authorization metadata for one command.

    Attributes:
        aliases: Invocation names. The first is canonical and is used in
            help and usage output.
        description: Free text shown in help listings.
        usage: Usage text without the prefix. Defaults to the canonical
            alias.
        permission: Capability the invoking actor must hold.
        autodelete: Delete the triggering message after a successful run.
        hidden: Exclude from help listings. Still invocable.
        roles: Role ids allowed to run the command. Empty means any role;
            administrators always pass.
        args: One regex per positional argument, matched in full. An
            empty pattern only requires the argument to be present.
        mentioned_members: Exact number of member mentions required.
        mentioned_roles: Exact number of role mentions required.
        mentioned_channels: Exact number of channel mentions required.
    """
    aliases: Tuple[str, ...]
    description: str = ""
    usage: str = ""
    permission: Permission = Permission.MESSAGE_READ
    autodelete: bool = False
    hidden: bool = False
    roles: FrozenSet[str] = frozenset()
    args: Tuple[str, ...] = ()
    mentioned_members: int = 0
    mentioned_roles: int = 0
    mentioned_channels: int = 0

    def __post_init__(self):
        if isinstance(self.aliases, str):
            aliases: Tuple[str, ...] = (self.aliases,)
        else:
            aliases = tuple(self.aliases)
        if not aliases:
            raise ValueError("A command needs at least one alias")

        seen = set()
        for alias in aliases:
            if not isinstance(alias, str) or not alias:
                raise ValueError(f"Invalid alias: {alias!r}")
            if any(ch.isspace() for ch in alias):
                raise ValueError(f"Alias must not contain whitespace: {alias!r}")
            key = normalize_alias(alias)
            if key in seen:
                raise ValueError(f"Alias listed twice: {alias!r}")
            seen.add(key)

        patterns = tuple(self.args)
        for pattern in patterns:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid argument pattern {pattern!r}: {e}") from None

        for name in ("mentioned_members", "mentioned_roles", "mentioned_channels"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

        # Frozen: normalize through object.__setattr__
        object.__setattr__(self, "aliases", aliases)
        object.__setattr__(self, "args", patterns)
        object.__setattr__(self, "roles", frozenset(str(r) for r in self.roles))
        object.__setattr__(self, "permission", Permission.parse(self.permission))
        if not self.usage:
            object.__setattr__(self, "usage", aliases[0])

    @property
    def name(self) -> str:
        """Canonical alias."""
        return self.aliases[0]

    @property
    def keys(self) -> Tuple[str, ...]:
        """Normalized aliases, as indexed by the registry."""
        return tuple(normalize_alias(a) for a in self.aliases)


@dataclass(frozen=True, eq=False)
class HandlerBinding:
    """Pairs one CommandDescriptor with exactly one handler.

    Identity-compared: two bindings are the same only if they are the
    same object. Calling the binding calls the handler.
    """
    descriptor: CommandDescriptor
    handler: CommandHandler

    def __post_init__(self):
        if not callable(self.handler):
            raise TypeError(f"Handler for {self.descriptor.name!r} is not callable")

    @property
    def name(self) -> str:
        return self.descriptor.name

    def __call__(self, ctx: "InvocationContext") -> Any:
        return self.handler(ctx)

    def __repr__(self) -> str:
        handler = getattr(self.handler, "__qualname__", type(self.handler).__name__)
        return f"HandlerBinding(name={self.name!r}, handler={handler})"


@dataclass(frozen=True)
class InvocationContext:
    """Everything a handler needs for one invocation.

    Created per incoming message and discarded after dispatch.

    Attributes:
        raw_text: The message text as received (after sanitization).
        prefix: Command prefix in effect.
        label: The alias the user typed, as registered.
        args: Whitespace-separated arguments after the command token.
        origin: Actor, channel and message references.
        descriptor: Metadata of the command being run.
        transport: Chat transport, for handlers that need more than a
            single reply.
    """
    raw_text: str
    prefix: str
    label: str
    args: Tuple[str, ...]
    origin: "MessageOrigin"
    descriptor: CommandDescriptor
    transport: Optional["Transport"] = field(default=None, repr=False, compare=False)

    @property
    def actor(self) -> Actor:
        return self.origin.actor

    @property
    def channel_id(self) -> str:
        return self.origin.channel_id

    @property
    def message_id(self) -> str:
        return self.origin.message_id

    @property
    def arg_text(self) -> str:
        """Arguments re-joined with single spaces."""
        return " ".join(self.args)

    async def reply(self, text: str) -> Optional[str]:
        """Send an extra message to the originating channel."""
        if self.transport is None:
            raise RuntimeError("No transport attached to this context")
        return await self.transport.send_message(self.origin.channel_id, text)


def command(
    *aliases: str,
    description: str = "",
    usage: str = "",
    permission: Union[Permission, str] = Permission.MESSAGE_READ,
    autodelete: bool = False,
    hidden: bool = False,
    roles: Iterable[str] = (),
    args: Iterable[str] = (),
    mentioned_members: int = 0,
    mentioned_roles: int = 0,
    mentioned_channels: int = 0,
) -> Callable[[CommandHandler], HandlerBinding]:
    """Decorator that binds a handler to a new CommandDescriptor.

    Without aliases, the alias is derived from the handler's name.
    """

    def decorator(handler: CommandHandler) -> HandlerBinding:
        names = aliases or (derive_alias(getattr(handler, "__name__", "")),)
        descriptor = CommandDescriptor(
            aliases=tuple(names),
            description=description,
            usage=usage,
            permission=Permission.parse(permission),
            autodelete=autodelete,
            hidden=hidden,
            roles=frozenset(roles),
            args=tuple(args),
            mentioned_members=mentioned_members,
            mentioned_roles=mentioned_roles,
            mentioned_channels=mentioned_channels,
        )
        return HandlerBinding(descriptor, handler)

    return decorator


class BaseCommandGroup(ABC):
    """Abstract base class for groups of related commands.

    Subclasses implement get_commands() to return the bindings they
    provide, usually built from bound methods so the handlers can reach
    shared collaborators through ``self``.
    """

    @abstractmethod
    def get_commands(self) -> List[HandlerBinding]:
        """Return the bindings this group contributes."""
        ...

    def bind(self, descriptor: CommandDescriptor, handler: CommandHandler) -> HandlerBinding:
        return HandlerBinding(descriptor, handler)
