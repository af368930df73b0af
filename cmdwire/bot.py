"""Bot facade for cmdwire.

Wires a Config, a CommandRegistry and a Dispatcher to a chat transport.
The transport's event loop calls ``on_message`` for every incoming
message; everything after that is handled here.

Typical startup::

    bot = CommandBot(transport, config)
    bot.register_commands(ping, kick)
    bot.register_help_command()
    await bot.start()
    ...
    await bot.on_message(text, origin)

Key classes:
    CommandBot: Owns the registry and dispatcher lifecycle.
"""

from typing import Optional

import structlog

from .commands.base import BaseCommandGroup, HandlerBinding
from .commands.help import help_binding
from .commands.registry import CommandRegistry
from .config import Config, get_config
from .dispatcher import DispatchResult, Dispatcher
from .exceptions import DispatchError
from .models import DispatchOutcome
from .transport import MessageOrigin, Transport

logger = structlog.get_logger("cmdwire.dispatch")


class CommandBot:
    """Registers commands at startup and dispatches messages afterwards.

    Args:
        transport: Chat transport for replies and deletions.
        config: Config instance. Defaults to the global config.
        registry: Registry to fill. A new one is created when omitted.
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[Config] = None,
        registry: Optional[CommandRegistry] = None,
    ):
        self.config = config or get_config()
        self.transport = transport
        self.registry = registry if registry is not None else CommandRegistry()
        self.dispatcher = Dispatcher(
            self.registry, transport, self.config.dispatch_settings
        )
        self.running = False

    @property
    def prefix(self) -> str:
        return self.dispatcher.prefix

    def register_commands(self, *bindings: HandlerBinding) -> None:
        """Register command bindings. Raises DuplicateAliasError on collision."""
        self.registry.register_all(*bindings)

    def register_group(self, group: BaseCommandGroup) -> None:
        self.registry.register_group(group)

    def register_help_command(self) -> HandlerBinding:
        """Register the built-in ``help`` command."""
        return self.registry.register(help_binding(self.registry))

    async def start(self) -> None:
        """End the registration phase."""
        self.registry.seal()
        self.running = True
        logger.info(
            "bot_started",
            prefix=self.prefix,
            commands=sorted(self.registry.command_names),
        )

    async def on_message(self, text: str, origin: MessageOrigin) -> DispatchResult:
        """Entry point for the transport's message events.

        Never raises for a single bad message: anything the dispatcher
        did not contain is logged and reported as FAILED. Cancelling the
        calling task still propagates CancelledError.
        """
        if not self.running:
            logger.warning("message_before_start", channel=origin.channel_id)
        try:
            return await self.dispatcher.dispatch(text, origin)
        except Exception as e:
            logger.error(
                "dispatch_error",
                channel=origin.channel_id,
                error=str(e),
                exc_type=type(e).__name__,
                exc_info=e,
            )
            return DispatchResult(
                DispatchOutcome.FAILED,
                error=DispatchError(f"Dispatch crashed: {type(e).__name__}"),
            )

    async def stop(self) -> None:
        """Cancel pending notice cleanups."""
        self.running = False
        await self.dispatcher.aclose()
        logger.info("bot_stopped")
