from __future__ import annotations

import enum
import logging
import threading
from typing import Callable

from .commands import CommandDispatcher
from .config import ServerRuntimeConfig
from .console import console_display
from .errors import StartupError, TransportError
from .session import SessionRegistry
from .transport import ServerTransport
from .util import parse_port


class ServerState(enum.Enum):
    CLOSED = "closed"
    LISTENING = "listening"
    STOPPED = "stopped"


class ServerService:
    """
    Server control plane.

    Owns the lifecycle state (CLOSED, LISTENING, STOPPED), wires the
    transport callbacks to the session registry, and implements the operator
    commands ``#start``, ``#stop``, ``#close``, ``#setport``, ``#getport``
    and ``#quit``.
    """

    def __init__(
        self,
        config: ServerRuntimeConfig,
        transport: ServerTransport,
        *,
        display: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.display = display or console_display
        self.log = logging.getLogger("simplechat.server")

        # Lifecycle state is written from transport callbacks and read from
        # the console thread.
        self._state_lock = threading.RLock()
        self._state = ServerState.CLOSED

        self._shutdown = threading.Event()

        self.registry = SessionRegistry(
            transport, login_id_max_chars=config.login_id_max_chars
        )
        self.dispatcher = self._build_dispatcher()
        self._attach_transport()

    @property
    def state(self) -> ServerState:
        with self._state_lock:
            return self._state

    @property
    def shutdown_event(self) -> threading.Event:
        return self._shutdown

    def _attach_transport(self) -> None:
        t = self.transport
        t.set_listen_started_callback(self._on_listen_started)
        t.set_listen_stopped_callback(self._on_listen_stopped)
        t.set_fully_closed_callback(self._on_fully_closed)
        t.set_connect_callback(self.registry.on_connect)
        t.set_disconnect_callback(self.registry.on_disconnect)
        t.set_exception_callback(self.registry.on_exception)
        t.set_message_callback(self.registry.on_message)

    def _build_dispatcher(self) -> CommandDispatcher:
        d = CommandDispatcher(self.display)
        d.add("quit", self._cmd_quit)
        d.add("stop", self._cmd_stop, guard=self._guard_listening)
        d.add("close", self._cmd_close)
        d.add(
            "setport",
            self._cmd_setport,
            min_args=1,
            usage="#setport <port>",
            guard=self._guard_closed,
        )
        d.add("start", self._cmd_start, guard=self._guard_not_listening)
        d.add("getport", self._cmd_getport)
        return d

    # Transport lifecycle callbacks

    def _on_listen_started(self) -> None:
        with self._state_lock:
            self._state = ServerState.LISTENING
        self.log.debug("State -> listening port=%s", self.transport.get_port())
        self.display(f"Server listening for connections on port {self.transport.get_port()}")

    def _on_listen_stopped(self) -> None:
        with self._state_lock:
            if self._state is ServerState.LISTENING:
                self._state = ServerState.STOPPED
        self.log.debug("State -> stopped")
        self.display("Server has stopped listening for connections.")

    def _on_fully_closed(self) -> None:
        with self._state_lock:
            self._state = ServerState.CLOSED
        self.log.debug("State -> closed")
        self.display("Server closed.")

    # Startup / shutdown

    def start(self) -> None:
        """Open the initial listener. Raises StartupError on failure."""
        try:
            self.transport.listen()
        except (TransportError, OSError) as e:
            raise StartupError(f"could not listen for clients: {e}") from e

    def quit(self) -> None:
        """Close the server and signal the console loop to end."""
        try:
            self.transport.close()
        finally:
            self._shutdown.set()

    def handle_operator_message(self, text: str) -> None:
        self.display(self.registry.on_operator_message(text))

    # Guards

    def _guard_listening(self) -> str | None:
        if not self.transport.is_listening():
            return "server is already stopped"
        return None

    def _guard_not_listening(self) -> str | None:
        if self.transport.is_listening():
            return "server is already listening"
        return None

    def _guard_closed(self) -> str | None:
        if self.state is not ServerState.CLOSED:
            return "must close the server before changing port"
        return None

    # Commands

    def _cmd_quit(self, args: list[str]) -> str | None:
        self.quit()
        return None

    def _cmd_stop(self, args: list[str]) -> str | None:
        self.transport.stop_listening()
        return None

    def _cmd_close(self, args: list[str]) -> str | None:
        if self.state is ServerState.CLOSED:
            return "server is already closed"
        self.transport.close()
        return None

    def _cmd_setport(self, args: list[str]) -> str | None:
        port = parse_port(args[0])
        self.transport.set_port(port)
        return f"Port set to {self.transport.get_port()}"

    def _cmd_start(self, args: list[str]) -> str | None:
        self.transport.listen()
        return None

    def _cmd_getport(self, args: list[str]) -> str | None:
        return f"Current port: {self.transport.get_port()}"
