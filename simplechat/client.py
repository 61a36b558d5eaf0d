from __future__ import annotations

import enum
import logging
import threading
from typing import Callable

from .commands import CommandDispatcher
from .config import ClientRuntimeConfig
from .console import console_display
from .constants import LOGIN_COMMAND
from .errors import ConfigurationError, InvalidLoginIdError, StartupError, TransportError
from .transport import ClientTransport
from .util import normalize_login_id, parse_port


class ClientState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class ClientService:
    """
    Client control plane.

    Drives the connection to the server and implements ``#quit``,
    ``#logoff``, ``#sethost``, ``#setport``, ``#login``, ``#gethost`` and
    ``#getport``. Every (re)connect re-announces the configured login id.
    """

    def __init__(
        self,
        config: ClientRuntimeConfig,
        transport: ClientTransport,
        *,
        display: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.display = display or console_display
        self.log = logging.getLogger("simplechat.client")

        try:
            self.login_id = normalize_login_id(
                config.login_id, max_chars=config.login_id_max_chars
            )
        except InvalidLoginIdError as e:
            raise ConfigurationError(f"invalid login id: {e}") from e

        self._shutdown = threading.Event()
        self._closing_lock = threading.Lock()
        self._closing_locally = False

        self.dispatcher = self._build_dispatcher()
        self._attach_transport()

    @property
    def state(self) -> ClientState:
        if self.transport.is_connected():
            return ClientState.CONNECTED
        return ClientState.DISCONNECTED

    @property
    def shutdown_event(self) -> threading.Event:
        return self._shutdown

    def _attach_transport(self) -> None:
        self.transport.set_message_callback(self._on_inbound_message)
        self.transport.set_closed_callback(self._on_connection_closed)
        self.transport.set_exception_callback(self._on_connection_exception)

    def _build_dispatcher(self) -> CommandDispatcher:
        d = CommandDispatcher(self.display)
        d.add("quit", self._cmd_quit)
        d.add("logoff", self._cmd_logoff)
        d.add(
            "sethost",
            self._cmd_sethost,
            min_args=1,
            usage="#sethost <host>",
            guard=lambda: self._guard_disconnected("host"),
        )
        d.add(
            "setport",
            self._cmd_setport,
            min_args=1,
            usage="#setport <port>",
            guard=lambda: self._guard_disconnected("port"),
        )
        d.add("login", self._cmd_login, guard=self._guard_not_connected)
        d.add("gethost", self._cmd_gethost)
        d.add("getport", self._cmd_getport)
        return d

    # Transport callbacks

    def _on_inbound_message(self, msg: str) -> None:
        self.display(msg)

    def _on_connection_closed(self) -> None:
        with self._closing_lock:
            local = self._closing_locally
        if local:
            self.log.debug("Connection closed locally")
            return
        self.log.info("Connection closed by server")
        self.display("Connection to server closed.")

    def _on_connection_exception(self, err: BaseException) -> None:
        self.log.warning("Connection lost err=%s", err)
        self.display(f"Connection to server lost: {err}")

    # Connection management

    def _open_and_announce(self) -> None:
        self.transport.open_connection()
        if self.login_id:
            self.transport.send_to_server(f"{LOGIN_COMMAND} {self.login_id}")

    def _close(self) -> None:
        with self._closing_lock:
            self._closing_locally = True
        try:
            self.transport.close_connection()
        finally:
            with self._closing_lock:
                self._closing_locally = False

    def connect(self) -> None:
        """Open the initial connection. Raises StartupError on failure."""
        try:
            self._open_and_announce()
        except (TransportError, OSError) as e:
            raise StartupError(str(e)) from e
        self.log.info(
            "Connected host=%s port=%s login_id=%r",
            self.transport.get_host(),
            self.transport.get_port(),
            self.login_id,
        )

    def quit(self) -> None:
        """Close the connection if open and signal the console loop to end."""
        try:
            if self.transport.is_connected():
                self._close()
        finally:
            self._shutdown.set()

    def send_message(self, text: str) -> None:
        try:
            self.transport.send_to_server(text)
        except TransportError as e:
            self.log.debug("Delivery failed err=%s", e)
            self.display(f"delivery failed: {e}")

    # Guards

    def _guard_disconnected(self, what: str) -> str | None:
        if self.transport.is_connected():
            return f"must log off before setting {what}"
        return None

    def _guard_not_connected(self) -> str | None:
        if self.transport.is_connected():
            return "already connected"
        return None

    # Commands

    def _cmd_quit(self, args: list[str]) -> str | None:
        self.quit()
        return None

    def _cmd_logoff(self, args: list[str]) -> str | None:
        if not self.transport.is_connected():
            return "already logged off"
        self._close()
        return "logged off"

    def _cmd_sethost(self, args: list[str]) -> str | None:
        self.transport.set_host(args[0])
        return f"Host set to {self.transport.get_host()}"

    def _cmd_setport(self, args: list[str]) -> str | None:
        self.transport.set_port(parse_port(args[0]))
        return f"Port set to {self.transport.get_port()}"

    def _cmd_login(self, args: list[str]) -> str | None:
        self._open_and_announce()
        return f"Connected to {self.transport.get_host()}:{self.transport.get_port()}"

    def _cmd_gethost(self, args: list[str]) -> str | None:
        return f"Current host: {self.transport.get_host()}"

    def _cmd_getport(self, args: list[str]) -> str | None:
        return f"Current port: {self.transport.get_port()}"
