"""Tests for the dispatcher."""

import asyncio
import threading
import time
from unittest.mock import AsyncMock

import pytest

from cmdwire.commands.base import CommandDescriptor, HandlerBinding, command
from cmdwire.dispatcher import Dispatcher
from cmdwire.exceptions import (
    ArgumentError,
    HandlerExecutionError,
    SideEffectError,
    UnauthorizedError,
)
from cmdwire.models import DispatchOutcome, DispatchSettings, RateLimitSettings
from cmdwire.permissions import Permission
from cmdwire.security import RateLimiter
from cmdwire.transport import Mentions

from conftest import RecordingTransport, make_origin


class Recorder:
    """Handler that records invocations and returns a fixed reply."""

    def __init__(self, reply="ok", exc=None):
        self.calls = []
        self.reply = reply
        self.exc = exc

    async def __call__(self, ctx):
        self.calls.append(ctx)
        if self.exc is not None:
            raise self.exc
        return self.reply


def _register(registry, *aliases, handler=None, **fields):
    handler = handler or Recorder()
    registry.register(HandlerBinding(CommandDescriptor(aliases, **fields), handler))
    return handler


@pytest.fixture
def dispatcher(registry, transport, settings):
    return Dispatcher(registry, transport, settings)


# -------------------------------------------------------------------
# Routing
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ping_scenario(registry, transport, dispatcher, member_origin):
    """Register ping/p; exact, upper-case and unknown tokens."""
    ping = _register(registry, "ping", "p", handler=Recorder(reply="Pong!"))

    result = await dispatcher.dispatch("!ping", member_origin)
    assert result.outcome is DispatchOutcome.SUCCEEDED
    assert len(ping.calls) == 1
    assert transport.sent == [("chan-1", "Pong!")]
    assert transport.deleted == []

    result = await dispatcher.dispatch("!PING", member_origin)
    assert result.succeeded
    assert len(ping.calls) == 2

    result = await dispatcher.dispatch("!unknown", member_origin)
    assert result.outcome is DispatchOutcome.UNRESOLVED
    assert result.error is None
    assert len(ping.calls) == 2
    assert len(transport.sent) == 2
    assert transport.deleted == []


@pytest.mark.asyncio
async def test_plain_chat_is_ignored(registry, transport, dispatcher, member_origin):
    ping = _register(registry, "ping")
    result = await dispatcher.dispatch("just chatting about ping", member_origin)
    assert result.outcome is DispatchOutcome.NO_COMMAND
    assert result.outcome.is_silent
    assert ping.calls == []
    assert transport.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["!", "!   ", "! ping"])
async def test_prefix_without_command_is_silent(registry, transport, dispatcher, member_origin, text):
    ping = _register(registry, "ping")
    result = await dispatcher.dispatch(text, member_origin)
    assert result.outcome is DispatchOutcome.UNRESOLVED
    assert ping.calls == []
    assert transport.sent == []


@pytest.mark.asyncio
async def test_prefix_of_alias_does_not_resolve(registry, transport, dispatcher, member_origin):
    status = _register(registry, "status")
    result = await dispatcher.dispatch("!stat", member_origin)
    assert result.outcome is DispatchOutcome.UNRESOLVED
    assert status.calls == []


@pytest.mark.asyncio
async def test_context_carries_args_and_label(registry, dispatcher, member_origin):
    echo = _register(registry, "echo", "Say")
    await dispatcher.dispatch("  !SAY hello   world  ", member_origin)
    (ctx,) = echo.calls
    assert ctx.label == "Say"
    assert ctx.args == ("hello", "world")
    assert ctx.arg_text == "hello world"
    assert ctx.prefix == "!"
    assert ctx.actor.id == "user-1"
    assert ctx.channel_id == "chan-1"
    assert ctx.message_id == "msg-1"
    assert ctx.descriptor.name == "echo"


@pytest.mark.asyncio
async def test_control_characters_are_stripped(registry, dispatcher, member_origin):
    ping = _register(registry, "ping")
    result = await dispatcher.dispatch("!pi\x00ng", member_origin)
    assert result.succeeded
    assert len(ping.calls) == 1


@pytest.mark.asyncio
async def test_sync_handler_is_supported(registry, transport, dispatcher, member_origin):
    registry.register(HandlerBinding(CommandDescriptor(("sync",)), lambda ctx: "sync reply"))
    result = await dispatcher.dispatch("!sync", member_origin)
    assert result.succeeded
    assert transport.sent == [("chan-1", "sync reply")]


@pytest.mark.asyncio
async def test_none_reply_sends_nothing(registry, transport, dispatcher, member_origin):
    _register(registry, "quiet", handler=Recorder(reply=None))
    result = await dispatcher.dispatch("!quiet", member_origin)
    assert result.succeeded
    assert result.replied is False
    assert transport.sent == []


@pytest.mark.asyncio
async def test_handler_can_reply_through_context(registry, transport, dispatcher, member_origin):
    @command("multi")
    async def multi(ctx):
        await ctx.reply("one")
        return "two"

    registry.register(multi)
    await dispatcher.dispatch("!multi", member_origin)
    assert [text for _, text in transport.sent] == ["one", "two"]


@pytest.mark.asyncio
async def test_first_dispatch_seals_registry(registry, dispatcher, member_origin):
    assert not registry.sealed
    await dispatcher.dispatch("hello", member_origin)
    assert registry.sealed


# -------------------------------------------------------------------
# Authorization
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_denied_actor_never_invokes_handler(registry, transport, dispatcher, member_origin):
    kick = _register(registry, "kick", permission=Permission.KICK_MEMBERS, autodelete=True)

    result = await dispatcher.dispatch("!kick someone", member_origin)

    assert result.outcome is DispatchOutcome.DENIED
    assert isinstance(result.error, UnauthorizedError)
    assert kick.calls == []
    assert transport.sent == [("chan-1", DispatchSettings().denied_message)]
    assert transport.deleted == []


@pytest.mark.asyncio
async def test_granted_actor_invokes_handler(registry, dispatcher, admin_origin):
    kick = _register(registry, "kick", permission=Permission.KICK_MEMBERS)
    result = await dispatcher.dispatch("!kick someone", admin_origin)
    assert result.succeeded
    assert len(kick.calls) == 1


@pytest.mark.asyncio
async def test_role_restricted_command(registry, dispatcher):
    event = _register(registry, "event", roles=frozenset({"staff"}))
    denied = await dispatcher.dispatch("!event", make_origin(roles=["guest"]))
    allowed = await dispatcher.dispatch("!event", make_origin(roles=["staff"]))
    assert denied.outcome is DispatchOutcome.DENIED
    assert allowed.succeeded
    assert len(event.calls) == 1


# -------------------------------------------------------------------
# Arguments
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_invalid_arguments_send_usage(registry, transport, dispatcher, member_origin):
    purge = _register(registry, "purge", usage="purge <count>", args=(r"\d+",))

    result = await dispatcher.dispatch("!purge lots", member_origin)

    assert result.outcome is DispatchOutcome.INVALID_ARGUMENTS
    assert isinstance(result.error, ArgumentError)
    assert purge.calls == []
    (_, notice), = transport.sent
    assert "`!purge <count>`" in notice


@pytest.mark.asyncio
async def test_mention_requirement(registry, dispatcher):
    warn = _register(registry, "warn", mentioned_members=1)
    missing = await dispatcher.dispatch("!warn", make_origin())
    present = await dispatcher.dispatch("!warn @x", make_origin(mentions=Mentions(members=1)))
    assert missing.outcome is DispatchOutcome.INVALID_ARGUMENTS
    assert present.succeeded
    assert len(warn.calls) == 1


# -------------------------------------------------------------------
# Failure isolation
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_failing_handler_does_not_break_next_dispatch(registry, transport, dispatcher, member_origin):
    boom = _register(registry, "boom", handler=Recorder(exc=RuntimeError("secret detail")), autodelete=True)
    ping = _register(registry, "ping", handler=Recorder(reply="Pong!"))

    failed = await dispatcher.dispatch("!boom", member_origin)
    ok = await dispatcher.dispatch("!ping", member_origin)

    assert failed.outcome is DispatchOutcome.FAILED
    assert isinstance(failed.error, HandlerExecutionError)
    assert isinstance(failed.error.__cause__, RuntimeError)
    assert len(boom.calls) == 1
    assert ok.succeeded
    assert len(ping.calls) == 1
    failure_notice = transport.sent[0][1]
    assert failure_notice == DispatchSettings().failure_message
    assert "secret detail" not in failure_notice
    assert transport.deleted == []


@pytest.mark.asyncio
async def test_handler_timeout_counts_as_failure(registry, transport, member_origin):
    async def slow(ctx):
        await asyncio.sleep(10)

    registry.register(HandlerBinding(CommandDescriptor(("slow",)), slow))
    dispatcher = Dispatcher(
        registry, transport, DispatchSettings(handler_timeout=0.05, notice_ttl=0)
    )

    result = await dispatcher.dispatch("!slow", member_origin)

    assert result.outcome is DispatchOutcome.FAILED
    assert result.error.timed_out is True


@pytest.mark.asyncio
async def test_no_timeout_when_disabled(registry, transport, member_origin):
    handler = AsyncMock(return_value="done")
    registry.register(HandlerBinding(CommandDescriptor(("work",)), handler))
    dispatcher = Dispatcher(
        registry, transport, DispatchSettings(handler_timeout=None, notice_ttl=0)
    )
    result = await dispatcher.dispatch("!work", member_origin)
    assert result.succeeded
    handler.assert_awaited_once()


@pytest.mark.asyncio
async def test_concurrent_dispatches_are_independent(registry, transport, dispatcher):
    gate = asyncio.Event()

    async def waiter(ctx):
        await gate.wait()
        return "released"

    async def opener(ctx):
        gate.set()
        return "opened"

    registry.register(HandlerBinding(CommandDescriptor(("wait",)), waiter))
    registry.register(HandlerBinding(CommandDescriptor(("open",)), opener))

    results = await asyncio.gather(
        dispatcher.dispatch("!wait", make_origin(channel_id="a")),
        dispatcher.dispatch("!open", make_origin(channel_id="b")),
    )
    assert all(r.succeeded for r in results)
    assert sorted(transport.sent) == [("a", "released"), ("b", "opened")]


@pytest.mark.asyncio
async def test_blocking_sync_handler_times_out(registry, transport, member_origin):
    def blocking(ctx):
        time.sleep(0.5)
        return "late"

    registry.register(HandlerBinding(CommandDescriptor(("block",)), blocking))
    dispatcher = Dispatcher(
        registry, transport, DispatchSettings(handler_timeout=0.05, notice_ttl=0)
    )

    start = time.monotonic()
    result = await dispatcher.dispatch("!block", member_origin)
    elapsed = time.monotonic() - start

    assert result.outcome is DispatchOutcome.FAILED
    assert result.error.timed_out is True
    assert elapsed < 0.4
    assert ("chan-1", "late") not in transport.sent


@pytest.mark.asyncio
async def test_sync_handler_does_not_block_other_dispatches(registry, transport, dispatcher):
    gate = threading.Event()

    def waiter(ctx):
        return "released" if gate.wait(2) else "stuck"

    async def opener(ctx):
        gate.set()
        return "opened"

    registry.register(HandlerBinding(CommandDescriptor(("wait",)), waiter))
    registry.register(HandlerBinding(CommandDescriptor(("open",)), opener))

    results = await asyncio.gather(
        dispatcher.dispatch("!wait", make_origin(channel_id="a")),
        dispatcher.dispatch("!open", make_origin(channel_id="b")),
    )
    assert all(r.succeeded for r in results)
    assert sorted(transport.sent) == [("a", "released"), ("b", "opened")]


@pytest.mark.asyncio
async def test_sync_handler_returning_coroutine_is_awaited(registry, transport, dispatcher, member_origin):
    async def reply():
        return "deferred"

    registry.register(HandlerBinding(CommandDescriptor(("defer",)), lambda ctx: reply()))
    result = await dispatcher.dispatch("!defer", member_origin)
    assert result.replied is True
    assert transport.sent == [("chan-1", "deferred")]


@pytest.mark.asyncio
async def test_handler_raising_cancelled_error_is_contained(registry, transport, dispatcher, member_origin):
    _register(registry, "quit", handler=Recorder(exc=asyncio.CancelledError()))
    ping = _register(registry, "ping")

    failed = await dispatcher.dispatch("!quit", member_origin)
    ok = await dispatcher.dispatch("!ping", member_origin)

    assert failed.outcome is DispatchOutcome.FAILED
    assert failed.error.timed_out is False
    assert isinstance(failed.error.__cause__, asyncio.CancelledError)
    assert transport.sent[0] == ("chan-1", DispatchSettings().failure_message)
    assert ok.succeeded
    assert len(ping.calls) == 1


@pytest.mark.asyncio
async def test_cancelling_dispatch_cancels_handler(registry, transport, dispatcher, member_origin):
    started = asyncio.Event()
    finished = asyncio.Event()
    seen = []

    async def slow(ctx):
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            seen.append("cancelled")
            raise
        finally:
            finished.set()

    registry.register(HandlerBinding(CommandDescriptor(("slow",)), slow))

    task = asyncio.create_task(dispatcher.dispatch("!slow", member_origin))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await asyncio.wait_for(finished.wait(), 1)
    assert seen == ["cancelled"]
    assert transport.sent == []


@pytest.mark.asyncio
async def test_handler_timeout_error_is_not_a_dispatch_timeout(registry, transport, dispatcher, member_origin):
    _register(registry, "fetch", handler=Recorder(exc=TimeoutError("upstream api")))

    result = await dispatcher.dispatch("!fetch", member_origin)

    assert result.outcome is DispatchOutcome.FAILED
    assert result.error.timed_out is False
    assert isinstance(result.error.__cause__, TimeoutError)
    assert "TimeoutError" in result.error.message


# -------------------------------------------------------------------
# Autodelete and side effects
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_autodelete_requests_exactly_one_deletion(registry, transport, dispatcher, member_origin):
    _register(registry, "clean", autodelete=True)
    result = await dispatcher.dispatch("!clean", member_origin)
    assert result.succeeded
    assert result.deleted is True
    assert transport.deleted == [("chan-1", ("msg-1",))]


@pytest.mark.asyncio
async def test_deletion_failure_does_not_change_outcome(registry, member_origin, settings):
    transport = RecordingTransport(fail_delete=True)
    dispatcher = Dispatcher(registry, transport, settings)
    _register(registry, "clean", autodelete=True)

    result = await dispatcher.dispatch("!clean", member_origin)

    assert result.succeeded
    assert result.deleted is False
    (error,) = result.side_effect_errors
    assert isinstance(error, SideEffectError)
    assert error.operation == "delete"


@pytest.mark.asyncio
async def test_reply_failure_does_not_change_outcome(registry, member_origin, settings):
    transport = RecordingTransport(fail_send=True)
    dispatcher = Dispatcher(registry, transport, settings)
    _register(registry, "ping", autodelete=True)

    result = await dispatcher.dispatch("!ping", member_origin)

    assert result.succeeded
    assert result.replied is False
    assert result.deleted is True
    assert [e.operation for e in result.side_effect_errors] == ["reply"]


@pytest.mark.asyncio
async def test_denial_notice_failure_is_reported(registry, member_origin, settings):
    transport = RecordingTransport(fail_send=True)
    dispatcher = Dispatcher(registry, transport, settings)
    _register(registry, "ban", permission=Permission.BAN_MEMBERS)

    result = await dispatcher.dispatch("!ban", member_origin)

    assert result.outcome is DispatchOutcome.DENIED
    assert result.side_effect_errors[0].operation == "notice"


# -------------------------------------------------------------------
# Notice cleanup and rate limiting
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_notice_is_deleted_after_ttl(registry, transport, member_origin):
    dispatcher = Dispatcher(registry, transport, DispatchSettings(notice_ttl=0.01))
    _register(registry, "ban", permission=Permission.BAN_MEMBERS)

    await dispatcher.dispatch("!ban", member_origin)
    assert dispatcher.pending_cleanups == 1
    await asyncio.sleep(0.05)

    assert dispatcher.pending_cleanups == 0
    assert transport.deleted == [("chan-1", ("1000",))]


@pytest.mark.asyncio
async def test_notice_cleanup_can_include_trigger(registry, transport, member_origin):
    dispatcher = Dispatcher(
        registry,
        transport,
        DispatchSettings(notice_ttl=0.01, delete_trigger_with_notice=True),
    )
    _register(registry, "ban", permission=Permission.BAN_MEMBERS)

    await dispatcher.dispatch("!ban", member_origin)
    await asyncio.sleep(0.05)

    assert transport.deleted == [("chan-1", ("1000", "msg-1"))]


@pytest.mark.asyncio
async def test_aclose_cancels_pending_cleanups(registry, transport, member_origin):
    dispatcher = Dispatcher(registry, transport, DispatchSettings(notice_ttl=60))
    _register(registry, "ban", permission=Permission.BAN_MEMBERS)

    await dispatcher.dispatch("!ban", member_origin)
    assert dispatcher.pending_cleanups == 1
    await dispatcher.aclose()

    assert dispatcher.pending_cleanups == 0
    assert transport.deleted == []


@pytest.mark.asyncio
async def test_rate_limited_actor(registry, transport, member_origin):
    ping = _register(registry, "ping")
    dispatcher = Dispatcher(
        registry,
        transport,
        DispatchSettings(notice_ttl=0),
        rate_limiter=RateLimiter(window_seconds=60, max_requests=2),
    )

    outcomes = [
        (await dispatcher.dispatch("!ping", member_origin)).outcome for _ in range(3)
    ]

    assert outcomes == [
        DispatchOutcome.SUCCEEDED,
        DispatchOutcome.SUCCEEDED,
        DispatchOutcome.RATE_LIMITED,
    ]
    assert len(ping.calls) == 2


@pytest.mark.asyncio
async def test_unknown_commands_do_not_count_against_rate_limit(registry, transport, member_origin):
    _register(registry, "ping")
    dispatcher = Dispatcher(
        registry,
        transport,
        DispatchSettings(
            notice_ttl=0,
            rate_limit=RateLimitSettings(enabled=True, max_requests=1),
        ),
    )
    await dispatcher.dispatch("!nope", member_origin)
    await dispatcher.dispatch("hello", member_origin)
    result = await dispatcher.dispatch("!ping", member_origin)
    assert result.succeeded


# -------------------------------------------------------------------
# Direct messages
# -------------------------------------------------------------------

@pytest.mark.asyncio
async def test_direct_messages_ignored_when_configured(registry, transport, member_origin):
    ping = _register(registry, "ping")
    dispatcher = Dispatcher(
        registry,
        transport,
        DispatchSettings(notice_ttl=0, ignore_direct_messages=True),
    )

    dm = await dispatcher.dispatch("!ping", make_origin(guild_id=None))
    in_guild = await dispatcher.dispatch("!ping", member_origin)

    assert dm.outcome is DispatchOutcome.NO_COMMAND
    assert in_guild.succeeded
    assert len(ping.calls) == 1
    assert transport.sent == [("chan-1", "ok")]


@pytest.mark.asyncio
async def test_direct_messages_handled_by_default(registry, dispatcher):
    ping = _register(registry, "ping")
    result = await dispatcher.dispatch("!ping", make_origin(guild_id=None))
    assert result.succeeded
    assert len(ping.calls) == 1
