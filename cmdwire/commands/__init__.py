"""Command declaration and registry for cmdwire.

Provides CommandDescriptor and HandlerBinding for declaring commands,
the ``command`` decorator, BaseCommandGroup for grouping handlers, and
CommandRegistry for indexing them by alias.
"""

from .base import (
    BaseCommandGroup,
    CommandDescriptor,
    CommandHandler,
    HandlerBinding,
    InvocationContext,
    command,
)
from .help import HelpCommand, help_binding
from .registry import CommandRegistry, VisibleCommands

__all__ = [
    "BaseCommandGroup",
    "CommandDescriptor",
    "CommandHandler",
    "CommandRegistry",
    "HandlerBinding",
    "HelpCommand",
    "InvocationContext",
    "VisibleCommands",
    "command",
    "help_binding",
]
