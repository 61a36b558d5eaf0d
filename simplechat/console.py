from __future__ import annotations

import logging
import threading
from typing import Callable

from .commands import CommandDispatcher
from .constants import COMMAND_PREFIX


def console_display(message: str) -> None:
    print(f"> {message}", flush=True)


class ConsoleLoop:
    """
    Operator input loop.

    Reads one line per iteration: ``#`` lines go to the dispatcher, anything
    else is handed to ``on_data``. The loop ends when ``shutdown`` is set. End
    of input runs ``eof_command`` (``#quit`` by default) so resources are
    released the same way as an explicit quit.
    """

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        on_data: Callable[[str], object],
        shutdown: threading.Event,
        *,
        read_line: Callable[[], str] = input,
        eof_command: str = "#quit",
    ) -> None:
        self.dispatcher = dispatcher
        self.on_data = on_data
        self.shutdown = shutdown
        self.read_line = read_line
        self.eof_command = eof_command
        self.log = logging.getLogger("simplechat.console")

    def handle_line(self, line: str) -> None:
        if line.startswith(COMMAND_PREFIX):
            self.dispatcher.dispatch(line.strip())
        else:
            self.on_data(line)

    def run(self) -> None:
        while not self.shutdown.is_set():
            try:
                line = self.read_line()
            except EOFError:
                self.log.debug("Console input closed; running %s", self.eof_command)
                self.dispatcher.dispatch(self.eof_command)
                break
            self.handle_line(line)
