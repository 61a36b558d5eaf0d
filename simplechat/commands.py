"""Console command parsing and dispatch shared by server and client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from .constants import COMMAND_PREFIX
from .errors import ConfigurationError, StateGuardError, TransportError

Handler = Callable[[list[str]], str | None]
Guard = Callable[[], str | None]


@dataclass(frozen=True)
class Command:
    """One console command.

    ``guard`` returns a violation message when the command is not allowed in
    the current state, or None. ``handler`` receives the positional
    arguments and may return a line to show the operator.
    """

    name: str
    handler: Handler
    min_args: int = 0
    usage: str | None = None
    guard: Guard | None = None


def parse_command(line: str) -> tuple[str, list[str]]:
    """Split ``#Name arg1 arg2`` into ``("name", ["arg1", "arg2"])``."""
    parts = line.split()
    if not parts:
        return "", []
    name = parts[0].lower()
    if name.startswith(COMMAND_PREFIX):
        name = name[len(COMMAND_PREFIX) :]
    return name, parts[1:]


class CommandDispatcher:
    """Routes ``#`` lines to registered commands and reports the outcome."""

    def __init__(self, display: Callable[[str], None]) -> None:
        self.display = display
        self.log = logging.getLogger("simplechat.console")
        self._commands: dict[str, Command] = {}

    def register(self, command: Command) -> None:
        self._commands[command.name.lower()] = command

    def add(
        self,
        name: str,
        handler: Handler,
        *,
        min_args: int = 0,
        usage: str | None = None,
        guard: Guard | None = None,
    ) -> None:
        self.register(
            Command(name=name, handler=handler, min_args=min_args, usage=usage, guard=guard)
        )

    def names(self) -> list[str]:
        return sorted(self._commands)

    def dispatch(self, line: str) -> bool:
        """Run one command line. Returns False for unknown commands."""
        name, args = parse_command(line)
        command = self._commands.get(name)
        if command is None:
            self.display(f"unknown command: {COMMAND_PREFIX}{name}")
            return False

        if len(args) < command.min_args:
            self.display(f"usage: {command.usage or COMMAND_PREFIX + command.name}")
            return True

        if command.guard is not None:
            violation = command.guard()
            if violation:
                self.display(violation)
                return True

        try:
            reply = command.handler(args)
        except (ConfigurationError, StateGuardError) as e:
            self.display(str(e))
            return True
        except (TransportError, OSError) as e:
            self.log.warning("Command failed cmd=%s err=%s", name, e)
            self.display(f"command failed: {e}")
            return True

        if reply:
            self.display(reply)
        return True
