"""Exception hierarchy for cmdwire.

Registration errors are raised at startup and are meant to halt it.
Dispatch errors are raised inside a single message's dispatch and are
contained there by the Dispatcher; they never reach the event loop.

Registration:
    RegistryError, DuplicateAliasError, RegistrationClosedError,
    NotFoundError

Dispatch:
    DispatchError, UnauthorizedError, ArgumentError,
    HandlerExecutionError, SideEffectError
"""

from typing import Any, Optional, Sequence


class CmdwireError(Exception):
    """Base exception for all cmdwire errors.

    Attributes:
        message: Human-readable error description.
        module: Originating module name (e.g. "registry").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.module = module
        self.context = context
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return f"{cls}({self.message!r}, module={self.module!r})"


# ---------------------------------------------------------------------------
# Configuration exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(CmdwireError):
    """Invalid or missing configuration."""

    def __init__(
        self,
        message: str = "",
        *,
        setting_name: Optional[str] = None,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.setting_name = setting_name
        super().__init__(message, module=module or "config", **context)


# ---------------------------------------------------------------------------
# Registry exceptions
# ---------------------------------------------------------------------------

class RegistryError(CmdwireError):
    """Error raised by the command registry."""

    def __init__(
        self,
        message: str = "",
        *,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(message, module=module or "registry", **context)


class DuplicateAliasError(RegistryError):
    """An alias is already bound to a different command.

    Attributes:
        aliases: The conflicting aliases (normalized).
        command: Canonical name of the command being registered.
        existing: Canonical name of the command already owning the alias.
    """

    def __init__(
        self,
        message: str = "",
        *,
        aliases: Sequence[str] = (),
        command: Optional[str] = None,
        existing: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.aliases = tuple(aliases)
        self.command = command
        self.existing = existing
        super().__init__(message, **context)


class RegistrationClosedError(RegistryError):
    """Registration attempted after the registry was sealed."""


class NotFoundError(RegistryError):
    """No command is registered under the given alias."""

    def __init__(self, message: str = "", *, token: str = "", **context: Any) -> None:
        self.token = token
        super().__init__(message, **context)


# ---------------------------------------------------------------------------
# Dispatch exceptions
# ---------------------------------------------------------------------------

class DispatchError(CmdwireError):
    """Error contained within a single dispatch."""

    def __init__(
        self,
        message: str = "",
        *,
        command: Optional[str] = None,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.command = command
        super().__init__(message, module=module or "dispatch", **context)


class UnauthorizedError(DispatchError):
    """The invoking actor lacks the permission or role a command requires.

    Attributes:
        required: The permission token that was missing, if any.
    """

    def __init__(
        self,
        message: str = "",
        *,
        required: Optional[str] = None,
        command: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.required = required
        super().__init__(message, command=command, **context)


class ArgumentError(DispatchError):
    """Arguments or mentions do not match what the command declares."""


class HandlerExecutionError(DispatchError):
    """A handler raised or timed out.

    Attributes:
        timed_out: True when the handler exceeded the configured timeout.
    """

    def __init__(
        self,
        message: str = "",
        *,
        timed_out: bool = False,
        command: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.timed_out = timed_out
        super().__init__(message, command=command, **context)


class SideEffectError(DispatchError):
    """A transport side effect (reply, deletion) failed.

    Attributes:
        operation: The side effect that failed (e.g. "reply", "delete").
    """

    def __init__(
        self,
        message: str = "",
        *,
        operation: Optional[str] = None,
        command: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.operation = operation
        super().__init__(message, command=command, **context)
