from __future__ import annotations

from typing import Any, Callable

import pytest

from simplechat.client import ClientService
from simplechat.config import ClientRuntimeConfig, ServerRuntimeConfig
from simplechat.errors import TransportError
from simplechat.service import ServerService
from simplechat.transport import HostInfo


def _noop(*_args: Any) -> None:
    return None


class FakeServerTransport:
    """In-memory stand-in for the server transport.

    ``inbox`` keeps every message sent to a handle, even after it closes.
    """

    def __init__(self, port: int = 5555) -> None:
        self.port = port
        self.open = False
        self.listening = False
        self.live: set[int] = set()
        self.inbox: dict[int, list[str]] = {}
        self.closed_handles: list[int] = []
        self.fail_listen: Exception | None = None
        self.fail_close: Exception | None = None

        self.on_listen_started: Callable[[], None] = _noop
        self.on_listen_stopped: Callable[[], None] = _noop
        self.on_fully_closed: Callable[[], None] = _noop
        self.on_connect: Callable[..., None] = _noop
        self.on_disconnect: Callable[..., None] = _noop
        self.on_exception: Callable[..., None] = _noop
        self.on_message: Callable[..., None] = _noop

    def set_listen_started_callback(self, cb) -> None:
        self.on_listen_started = cb

    def set_listen_stopped_callback(self, cb) -> None:
        self.on_listen_stopped = cb

    def set_fully_closed_callback(self, cb) -> None:
        self.on_fully_closed = cb

    def set_connect_callback(self, cb) -> None:
        self.on_connect = cb

    def set_disconnect_callback(self, cb) -> None:
        self.on_disconnect = cb

    def set_exception_callback(self, cb) -> None:
        self.on_exception = cb

    def set_message_callback(self, cb) -> None:
        self.on_message = cb

    def listen(self) -> None:
        if self.fail_listen is not None:
            raise self.fail_listen
        if self.listening:
            return
        self.open = True
        self.listening = True
        self.on_listen_started()

    def stop_listening(self) -> None:
        if not self.listening:
            return
        self.listening = False
        self.on_listen_stopped()

    def close(self) -> None:
        if self.fail_close is not None:
            raise self.fail_close
        if not self.open:
            return
        self.stop_listening()
        self.open = False
        for handle in sorted(self.live):
            self.close_client(handle)
        self.on_fully_closed()

    def is_listening(self) -> bool:
        return self.listening

    def get_port(self) -> int:
        return self.port

    def set_port(self, port: int) -> None:
        self.port = port

    def send_to_client(self, handle: int, msg: str) -> None:
        if handle not in self.live:
            raise TransportError(f"no such connection: {handle}")
        self.inbox[handle].append(msg)

    def send_to_all_clients(self, msg: str) -> None:
        for handle in sorted(self.live):
            self.inbox[handle].append(msg)

    def close_client(self, handle: int) -> None:
        if handle not in self.live:
            return
        self.live.discard(handle)
        self.closed_handles.append(handle)
        self.on_disconnect(handle)

    # Test drivers

    def connect(self, handle: int, host_info: HostInfo | None = None) -> None:
        if host_info is None:
            host_info = HostInfo(host_name="localhost", address="127.0.0.1")
        self.live.add(handle)
        self.inbox[handle] = []
        self.on_connect(handle, host_info)

    def deliver(self, handle: int, text: str) -> None:
        self.on_message(handle, text)


class FakeClientTransport:
    def __init__(self, host: str = "localhost", port: int = 5555) -> None:
        self.host = host
        self.port = port
        self.connected = False
        self.sent: list[str] = []
        self.opens = 0
        self.fail_open: Exception | None = None

        self.on_message: Callable[..., None] = _noop
        self.on_closed: Callable[[], None] = _noop
        self.on_exception: Callable[..., None] = _noop

    def set_message_callback(self, cb) -> None:
        self.on_message = cb

    def set_closed_callback(self, cb) -> None:
        self.on_closed = cb

    def set_exception_callback(self, cb) -> None:
        self.on_exception = cb

    def open_connection(self) -> None:
        if self.fail_open is not None:
            raise self.fail_open
        self.connected = True
        self.opens += 1

    def close_connection(self) -> None:
        if not self.connected:
            return
        self.connected = False
        self.on_closed()

    def is_connected(self) -> bool:
        return self.connected

    def get_host(self) -> str:
        return self.host

    def set_host(self, host: str) -> None:
        self.host = host

    def get_port(self) -> int:
        return self.port

    def set_port(self, port: int) -> None:
        self.port = port

    def send_to_server(self, msg: str) -> None:
        if not self.connected:
            raise TransportError("not connected")
        self.sent.append(msg)

    # Test drivers

    def drop(self) -> None:
        self.connected = False
        self.on_closed()


@pytest.fixture
def display_lines() -> list[str]:
    return []


@pytest.fixture
def server_transport() -> FakeServerTransport:
    return FakeServerTransport()


@pytest.fixture
def server(server_transport: FakeServerTransport, display_lines: list[str]) -> ServerService:
    return ServerService(ServerRuntimeConfig(), server_transport, display=display_lines.append)


@pytest.fixture
def client_transport() -> FakeClientTransport:
    return FakeClientTransport()


@pytest.fixture
def client(client_transport: FakeClientTransport, display_lines: list[str]) -> ClientService:
    cfg = ClientRuntimeConfig(login_id="alice")
    return ClientService(cfg, client_transport, display=display_lines.append)
