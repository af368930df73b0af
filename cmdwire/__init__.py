"""cmdwire: declarative chat-bot commands with a registry and dispatcher."""

from .bot import CommandBot
from .commands import (
    BaseCommandGroup,
    CommandDescriptor,
    CommandRegistry,
    HandlerBinding,
    InvocationContext,
    command,
    help_binding,
)
from .dispatcher import DispatchResult, Dispatcher
from .exceptions import (
    ArgumentError,
    CmdwireError,
    ConfigurationError,
    DispatchError,
    DuplicateAliasError,
    HandlerExecutionError,
    NotFoundError,
    RegistrationClosedError,
    SideEffectError,
    UnauthorizedError,
)
from .models import DispatchOutcome, DispatchSettings
from .permissions import Actor, Permission
from .transport import Mentions, MessageOrigin, Transport

__version__ = "1.0.0"

__all__ = [
    "Actor",
    "ArgumentError",
    "BaseCommandGroup",
    "CmdwireError",
    "CommandBot",
    "CommandDescriptor",
    "CommandRegistry",
    "ConfigurationError",
    "DispatchError",
    "DispatchOutcome",
    "DispatchResult",
    "DispatchSettings",
    "Dispatcher",
    "DuplicateAliasError",
    "HandlerBinding",
    "HandlerExecutionError",
    "InvocationContext",
    "Mentions",
    "MessageOrigin",
    "NotFoundError",
    "Permission",
    "RegistrationClosedError",
    "SideEffectError",
    "Transport",
    "UnauthorizedError",
    "command",
    "help_binding",
]
