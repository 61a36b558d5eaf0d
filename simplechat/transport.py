"""Capability surface of the transport collaborators.

The core never subclasses a transport. It calls the methods below and
registers plain callables through the ``set_*_callback`` setters, the same
way a link or destination takes its packet and close callbacks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol

# Opaque per-connection identity assigned by the transport at accept time.
Handle = int


@dataclass(frozen=True)
class HostInfo:
    """Resolved peer address. ``host_name`` is None if reverse lookup failed."""

    host_name: str | None
    address: str | None


class ServerTransport(Protocol):
    def listen(self) -> None: ...

    def stop_listening(self) -> None: ...

    def close(self) -> None: ...

    def is_listening(self) -> bool: ...

    def get_port(self) -> int: ...

    def set_port(self, port: int) -> None: ...

    def send_to_client(self, handle: Handle, msg: str) -> None: ...

    def send_to_all_clients(self, msg: str) -> None: ...

    def close_client(self, handle: Handle) -> None: ...

    def set_listen_started_callback(self, cb: Callable[[], None]) -> None: ...

    def set_listen_stopped_callback(self, cb: Callable[[], None]) -> None: ...

    def set_fully_closed_callback(self, cb: Callable[[], None]) -> None: ...

    def set_connect_callback(self, cb: Callable[[Handle, HostInfo], None]) -> None: ...

    def set_disconnect_callback(self, cb: Callable[[Handle], None]) -> None: ...

    def set_exception_callback(
        self, cb: Callable[[Handle, BaseException], None]
    ) -> None: ...

    def set_message_callback(self, cb: Callable[[Handle, str], None]) -> None: ...


class ClientTransport(Protocol):
    def open_connection(self) -> None: ...

    def close_connection(self) -> None: ...

    def is_connected(self) -> bool: ...

    def get_host(self) -> str: ...

    def set_host(self, host: str) -> None: ...

    def get_port(self) -> int: ...

    def set_port(self, port: int) -> None: ...

    def send_to_server(self, msg: str) -> None: ...

    def set_message_callback(self, cb: Callable[[str], None]) -> None: ...

    def set_closed_callback(self, cb: Callable[[], None]) -> None: ...

    def set_exception_callback(self, cb: Callable[[BaseException], None]) -> None: ...
