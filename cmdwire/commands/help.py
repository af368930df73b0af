"""Built-in help command.

``help`` lists every visible command; ``help <alias>`` describes one
command, including hidden ones addressed by name.
"""

from typing import Optional

from ..permissions import Permission
from .base import CommandDescriptor, HandlerBinding, InvocationContext
from .registry import CommandRegistry

HELP_DESCRIPTOR = CommandDescriptor(
    aliases=("help", "commands"),
    description="List available commands, or show details for one",
    usage="help [command]",
)


def format_listing(registry: CommandRegistry, prefix: str) -> str:
    """Render one line per visible command."""
    lines = ["**Available commands:**"]
    for descriptor in registry.list_visible():
        line = f"`{prefix}{descriptor.usage}`"
        if descriptor.description:
            line += f" - {descriptor.description}"
        lines.append(line)
    if len(lines) == 1:
        lines.append("No commands registered.")
    return "\n".join(lines)


def format_detail(descriptor: CommandDescriptor, prefix: str) -> str:
    """Render a single command's metadata."""
    lines = [f"**Command:** `{prefix}{descriptor.name}`"]
    if descriptor.description:
        lines.append(f"**Description:** {descriptor.description}")
    lines.append(f"**Usage:** `{prefix}{descriptor.usage}`")
    if len(descriptor.aliases) > 1:
        aliases = ", ".join(f"`{a}`" for a in descriptor.aliases[1:])
        lines.append(f"**Aliases:** {aliases}")
    if descriptor.permission is not Permission.MESSAGE_READ:
        lines.append(f"**Requires:** {descriptor.permission.value}")
    return "\n".join(lines)


class HelpCommand:
    """Handler that renders help from a registry."""

    def __init__(self, registry: CommandRegistry):
        self.registry = registry

    async def __call__(self, ctx: InvocationContext) -> Optional[str]:
        if ctx.args:
            binding = self.registry.get(ctx.args[0].removeprefix(ctx.prefix))
            if binding is None:
                return f"Unknown command: `{ctx.args[0]}`"
            return format_detail(binding.descriptor, ctx.prefix)
        return format_listing(self.registry, ctx.prefix)


def help_binding(
    registry: CommandRegistry, descriptor: CommandDescriptor = HELP_DESCRIPTOR
) -> HandlerBinding:
    """Build a help command bound to ``registry``."""
    return HandlerBinding(descriptor, HelpCommand(registry))
