"""Command dispatch for cmdwire.

Routes one incoming message through tokenize -> resolve -> authorize ->
validate -> invoke -> post-process. Every per-message failure is
contained here: the caller's event loop only ever sees a DispatchResult.

Key classes:
    Dispatcher: Runs dispatches against a sealed CommandRegistry.
    DispatchResult: What happened to one message.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Optional, Set

import structlog

from .commands.base import HandlerBinding, InvocationContext
from .commands.registry import CommandRegistry
from .exceptions import (
    ArgumentError,
    CmdwireError,
    HandlerExecutionError,
    NotFoundError,
    SideEffectError,
    UnauthorizedError,
)
from .models import DispatchOutcome, DispatchSettings
from .parsing import tokenize, validate_arguments
from .permissions import authorize
from .security import RateLimiter, sanitize_input
from .transport import MessageOrigin, Transport

logger = structlog.get_logger("cmdwire.dispatch")


def log_task_exception(task: asyncio.Task):
    """Log exceptions from fire-and-forget tasks instead of silently swallowing them."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc:
        logger.error("background_task_failed", error=str(exc), exc_type=type(exc).__name__)


def _is_async_handler(handler: Any) -> bool:
    if inspect.iscoroutinefunction(handler):
        return True
    call = getattr(handler, "__call__", None)
    return call is not None and inspect.iscoroutinefunction(call)


@dataclass
class DispatchResult:
    """Outcome of a single dispatch.

    Attributes:
        outcome: Terminal state reached.
        command: Canonical name of the resolved command, if any.
        error: The contained error for DENIED, INVALID_ARGUMENTS,
            RATE_LIMITED and FAILED outcomes.
        side_effect_errors: Reply or deletion failures. These never
            change the outcome.
        replied: A reply from the handler was sent.
        deleted: The triggering message was deleted (autodelete).
    """
    outcome: DispatchOutcome
    command: Optional[str] = None
    error: Optional[CmdwireError] = None
    side_effect_errors: tuple = ()
    replied: bool = False
    deleted: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome is DispatchOutcome.SUCCEEDED


class Dispatcher:
    """Dispatches incoming messages to registered command handlers.

    Holds no per-message state, so dispatches for different messages
    may run concurrently on the same event loop. The first dispatch
    seals the registry.

    Args:
        registry: Commands to route to.
        transport: Chat transport used for replies, notices and deletions.
        settings: Prefix, timeout and notice texts. Defaults apply when
            omitted.
        rate_limiter: Per-actor limiter. Built from settings.rate_limit
            when omitted and enabled there.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        transport: Transport,
        settings: Optional[DispatchSettings] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.registry = registry
        self.transport = transport
        self.settings = settings or DispatchSettings()
        if rate_limiter is None and self.settings.rate_limit.enabled:
            rate_limiter = RateLimiter(
                window_seconds=self.settings.rate_limit.window_seconds,
                max_requests=self.settings.rate_limit.max_requests,
            )
        self.rate_limiter = rate_limiter
        self._cleanup_tasks: Set[asyncio.Task] = set()

    @property
    def prefix(self) -> str:
        return self.settings.prefix

    async def dispatch(self, raw_text: str, origin: MessageOrigin) -> DispatchResult:
        """Route one message.

        Args:
            raw_text: Message text as received from the transport.
            origin: Actor, channel and message references.

        Returns:
            DispatchResult describing the terminal state. Never raises
            for per-message failures.
        """
        self.registry.seal()

        if self.settings.ignore_direct_messages and origin.guild_id is None:
            return DispatchResult(DispatchOutcome.NO_COMMAND)

        text = sanitize_input(raw_text.strip(), self.settings.max_input_length)
        tokens = tokenize(text, self.prefix)
        if tokens is None:
            return DispatchResult(DispatchOutcome.NO_COMMAND)

        try:
            binding = self.registry.resolve(tokens.command)
        except NotFoundError:
            logger.debug("command_unresolved", token=tokens.command[:50])
            return DispatchResult(DispatchOutcome.UNRESOLVED)

        descriptor = binding.descriptor
        actor = origin.actor

        if self.rate_limiter is not None and not self.rate_limiter.check(actor.id):
            errors = await self._send_notice(origin, self.settings.rate_limited_message)
            return DispatchResult(
                DispatchOutcome.RATE_LIMITED,
                command=descriptor.name,
                side_effect_errors=errors,
            )

        try:
            authorize(actor, descriptor)
        except UnauthorizedError as e:
            logger.info(
                "command_denied",
                command=descriptor.name,
                actor=actor.id,
                channel=origin.channel_id,
                reason=e.message,
            )
            errors = await self._send_notice(origin, self.settings.denied_message)
            return DispatchResult(
                DispatchOutcome.DENIED,
                command=descriptor.name,
                error=e,
                side_effect_errors=errors,
            )

        try:
            validate_arguments(descriptor, tokens.args, origin)
        except ArgumentError as e:
            logger.info(
                "command_invalid_arguments",
                command=descriptor.name,
                actor=actor.id,
                reason=e.message,
            )
            notice = self.settings.invalid_arguments_message.format(
                prefix=self.prefix, usage=descriptor.usage
            )
            errors = await self._send_notice(origin, notice)
            return DispatchResult(
                DispatchOutcome.INVALID_ARGUMENTS,
                command=descriptor.name,
                error=e,
                side_effect_errors=errors,
            )

        ctx = InvocationContext(
            raw_text=text,
            prefix=self.prefix,
            label=self.registry.label_for(tokens.command) or descriptor.name,
            args=tokens.args,
            origin=origin,
            descriptor=descriptor,
            transport=self.transport,
        )

        logger.debug("command_executing", command=descriptor.name, actor=actor.id)
        start = time.monotonic()
        try:
            response = await self._invoke(binding, ctx)
        except HandlerExecutionError as e:
            logger.error(
                "command_failed",
                command=descriptor.name,
                actor=actor.id,
                channel=origin.channel_id,
                timed_out=e.timed_out,
                error=str(e.__cause__ or e),
                exc_type=type(e.__cause__).__name__ if e.__cause__ else None,
                exc_info=e.__cause__,
            )
            errors = await self._send_notice(origin, self.settings.failure_message)
            return DispatchResult(
                DispatchOutcome.FAILED,
                command=descriptor.name,
                error=e,
                side_effect_errors=errors,
            )

        logger.info(
            "command_completed",
            command=descriptor.name,
            actor=actor.id,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        result = DispatchResult(DispatchOutcome.SUCCEEDED, command=descriptor.name)
        errors = []

        if isinstance(response, str) and response:
            try:
                await self.transport.send_message(origin.channel_id, response)
                result.replied = True
            except Exception as e:
                errors.append(self._side_effect_failed("reply", descriptor.name, origin, e))

        if descriptor.autodelete:
            try:
                await self.transport.delete_messages(origin.channel_id, [origin.message_id])
                result.deleted = True
            except Exception as e:
                errors.append(self._side_effect_failed("delete", descriptor.name, origin, e))

        result.side_effect_errors = tuple(errors)
        return result

    async def _invoke(self, binding: HandlerBinding, ctx: InvocationContext) -> Any:
        """Run a handler under the timeout and failure boundary.

        The handler runs in its own task; plain callables run in a worker
        thread so a blocking handler cannot stall other dispatches. Only
        cancellation of the dispatching task itself propagates.

        Raises:
            HandlerExecutionError: Wrapping whatever the handler raised,
                or marking a timeout.
        """
        async def run():
            if _is_async_handler(binding.handler):
                result = binding(ctx)
            else:
                result = await asyncio.to_thread(binding, ctx)
            if inspect.isawaitable(result):
                result = await result
            return result

        timeout = self.settings.handler_timeout
        task = asyncio.ensure_future(run())
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            task.cancel()
            task.add_done_callback(log_task_exception)
            raise HandlerExecutionError(
                f"Handler timed out after {timeout}s",
                timed_out=True,
                command=binding.name,
            )

        try:
            return task.result()
        except asyncio.CancelledError as e:
            raise HandlerExecutionError(
                "Handler was cancelled",
                command=binding.name,
            ) from e
        except Exception as e:
            raise HandlerExecutionError(
                f"Handler raised {type(e).__name__}",
                command=binding.name,
            ) from e

    async def _send_notice(self, origin: MessageOrigin, text: str) -> tuple:
        """Send a user-visible notice and schedule its removal.

        Returns:
            Tuple of SideEffectErrors (empty on success).
        """
        try:
            notice_id = await self.transport.send_message(origin.channel_id, text)
        except Exception as e:
            return (self._side_effect_failed("notice", None, origin, e),)

        ttl = self.settings.notice_ttl
        if ttl > 0 and notice_id:
            ids = [notice_id]
            if self.settings.delete_trigger_with_notice:
                ids.append(origin.message_id)
            task = asyncio.create_task(self._delete_later(origin.channel_id, ids, ttl))
            self._cleanup_tasks.add(task)
            task.add_done_callback(self._cleanup_tasks.discard)
            task.add_done_callback(log_task_exception)
        return ()

    async def _delete_later(self, channel_id: str, message_ids: list, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            await self.transport.delete_messages(channel_id, message_ids)
        except Exception as e:
            logger.warning(
                "notice_cleanup_failed",
                channel=channel_id,
                error=str(e),
                exc_type=type(e).__name__,
            )

    def _side_effect_failed(
        self, operation: str, command: Optional[str], origin: MessageOrigin, exc: Exception
    ) -> SideEffectError:
        logger.warning(
            "side_effect_failed",
            operation=operation,
            command=command,
            channel=origin.channel_id,
            error=str(exc),
            exc_type=type(exc).__name__,
        )
        error = SideEffectError(
            f"{operation} failed: {exc}", operation=operation, command=command
        )
        error.__cause__ = exc
        return error

    @property
    def pending_cleanups(self) -> int:
        return len(self._cleanup_tasks)

    async def aclose(self) -> None:
        """Cancel pending notice cleanups."""
        tasks = list(self._cleanup_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._cleanup_tasks.clear()
