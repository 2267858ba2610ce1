"""Named commands and the registry that dispatches them."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any


class CommandError(Exception):
    """A command could not be run or failed while running."""


@dataclass(frozen=True)
class Command:
    """A command name with the arguments given to it."""

    name: str
    args: Sequence[str] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))


Handler = Callable[[Any, Command], None]


class Commands:
    """A registry mapping command names to their handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def register(self, name: str, handler: Handler) -> None:
        """Bind *handler* to *name*, replacing any earlier binding."""
        self._handlers[name] = handler

    def run(self, state: Any, cmd: Command) -> None:
        """Run the handler registered for ``cmd.name``."""
        try:
            handler = self._handlers[cmd.name]
        except KeyError:
            raise CommandError("command not found") from None
        handler(state, cmd)