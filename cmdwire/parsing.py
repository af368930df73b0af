"""Message tokenization and argument validation."""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from .commands.base import CommandDescriptor
from .exceptions import ArgumentError
from .transport import MessageOrigin


@dataclass(frozen=True)
class Tokens:
    """A message split into its command token and arguments."""
    command: str
    args: Tuple[str, ...] = ()


def tokenize(text: str, prefix: str) -> Optional[Tokens]:
    """Split ``text`` into a command token and arguments.

    Returns None when the text does not start with ``prefix``. The
    command token is everything between the prefix and the first
    whitespace, so ``"!"`` and ``"! ping"`` both yield an empty token.
    """
    if not text.startswith(prefix):
        return None
    rest = text[len(prefix):]
    if not rest or rest[0].isspace():
        return Tokens(command="")
    parts = rest.split()
    return Tokens(command=parts[0], args=tuple(parts[1:]))


def validate_arguments(
    descriptor: CommandDescriptor,
    args: Tuple[str, ...],
    origin: MessageOrigin,
) -> None:
    """Check mentions and positional arguments against a descriptor.

    Raises:
        ArgumentError: On the first requirement that is not met.
    """
    mentions = origin.mentions
    for required, actual, kind in (
        (descriptor.mentioned_members, mentions.members, "members"),
        (descriptor.mentioned_roles, mentions.roles, "roles"),
        (descriptor.mentioned_channels, mentions.channels, "channels"),
    ):
        if required > 0 and required != actual:
            raise ArgumentError(
                f"Expected {required} mentioned {kind}, got {actual}",
                command=descriptor.name,
            )

    for i, pattern in enumerate(descriptor.args):
        arg = args[i] if i < len(args) else None
        if pattern:
            if not re.fullmatch(pattern, arg or ""):
                raise ArgumentError(
                    f"Argument {i + 1} does not match {pattern!r}",
                    command=descriptor.name,
                    position=i,
                )
        elif arg is None:
            raise ArgumentError(
                f"Missing argument {i + 1}",
                command=descriptor.name,
                position=i,
            )
