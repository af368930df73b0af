"""Alias index for registered commands.

The registry is filled during startup and sealed before the first
dispatch. After sealing it is read-only, so concurrent dispatches read
it without locking.
"""

import threading
from typing import Dict, Iterator, List, Optional

import structlog

from ..exceptions import DuplicateAliasError, NotFoundError, RegistrationClosedError
from .base import (
    BaseCommandGroup,
    CommandDescriptor,
    CommandHandler,
    HandlerBinding,
    normalize_alias,
)

logger = structlog.get_logger("cmdwire.registry")


class VisibleCommands:
    """Lazy view over non-hidden descriptors in registration order.

    Each iteration walks the registry's current state, so the view can
    be kept around and iterated again after more registrations.
    """

    def __init__(self, registry: "CommandRegistry"):
        self._registry = registry

    def __iter__(self) -> Iterator[CommandDescriptor]:
        for binding in self._registry.bindings():
            if not binding.descriptor.hidden:
                yield binding.descriptor

    def __repr__(self) -> str:
        return f"VisibleCommands({[d.name for d in self]!r})"


class CommandRegistry:
    """Maps aliases to handler bindings.

    Registration is all-or-nothing: if any alias of a binding collides
    with an alias owned by a different binding, nothing is inserted.
    """

    def __init__(self):
        self._index: Dict[str, HandlerBinding] = {}
        self._bindings: List[HandlerBinding] = []
        self._lock = threading.Lock()
        self._sealed = False

    def register(self, binding: HandlerBinding) -> HandlerBinding:
        """Index a binding under every alias of its descriptor.

        Args:
            binding: The binding to add. Registering the same binding
                object again is a no-op.

        Returns:
            The binding, so this can be used as a decorator.

        Raises:
            DuplicateAliasError: An alias already maps to another binding.
            RegistrationClosedError: The registry has been sealed.
        """
        with self._lock:
            if self._sealed:
                raise RegistrationClosedError(
                    "Registry is sealed; commands must be registered at startup",
                    command=binding.name,
                )

            keys = binding.descriptor.keys
            conflicts = [
                key for key in keys
                if key in self._index and self._index[key] is not binding
            ]
            if conflicts:
                existing = self._index[conflicts[0]].name
                logger.error(
                    "command_alias_conflict",
                    command=binding.name,
                    existing=existing,
                    aliases=conflicts,
                )
                raise DuplicateAliasError(
                    f"Alias already registered: {', '.join(conflicts)}",
                    aliases=conflicts,
                    command=binding.name,
                    existing=existing,
                )

            if any(self._index.get(key) is binding for key in keys):
                return binding

            for key in keys:
                self._index[key] = binding
            self._bindings.append(binding)

        logger.debug(
            "command_registered",
            command=binding.name,
            aliases=list(binding.descriptor.aliases),
            handler=getattr(binding.handler, "__qualname__", repr(binding.handler)),
        )
        return binding

    def add(self, descriptor: CommandDescriptor, handler: CommandHandler) -> HandlerBinding:
        """Bind a handler to a descriptor and register it."""
        return self.register(HandlerBinding(descriptor, handler))

    def register_all(self, *bindings: HandlerBinding) -> None:
        """Register several bindings in order.

        Each binding is atomic on its own; a collision stops at the
        offending binding and leaves earlier ones registered.
        """
        for binding in bindings:
            self.register(binding)

    def register_group(self, group: BaseCommandGroup) -> None:
        """Register all bindings provided by a BaseCommandGroup."""
        self.register_all(*group.get_commands())

    def resolve(self, token: str) -> HandlerBinding:
        """Look up a single alias, ignoring case.

        Raises:
            NotFoundError: No command owns the alias.
        """
        binding = self._index.get(normalize_alias(token))
        if binding is None:
            raise NotFoundError(f"Unknown command: {token!r}", token=token)
        return binding

    def get(self, token: str) -> Optional[HandlerBinding]:
        """Look up an alias, returning None when unknown."""
        return self._index.get(normalize_alias(token))

    def label_for(self, token: str) -> Optional[str]:
        """Return the alias as registered for a typed token."""
        binding = self.get(token)
        if binding is None:
            return None
        key = normalize_alias(token)
        for alias in binding.descriptor.aliases:
            if normalize_alias(alias) == key:
                return alias
        return None

    def list_visible(self) -> VisibleCommands:
        """Descriptors with ``hidden == False``, in registration order."""
        return VisibleCommands(self)

    def bindings(self) -> List[HandlerBinding]:
        """All bindings in registration order."""
        return list(self._bindings)

    def seal(self) -> None:
        """End the registration phase. Idempotent."""
        with self._lock:
            if self._sealed:
                return
            self._sealed = True
        logger.info(
            "command_registry_sealed",
            commands=len(self._bindings),
            aliases=len(self._index),
        )

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def command_names(self) -> frozenset:
        """Canonical names of all registered commands."""
        return frozenset(b.name for b in self._bindings)

    def __contains__(self, token: object) -> bool:
        return isinstance(token, str) and normalize_alias(token) in self._index

    def __len__(self) -> int:
        return len(self._bindings)
