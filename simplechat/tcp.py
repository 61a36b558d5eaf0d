"""TCP implementations of the transport collaborators.

Each connection is a stream of length-prefixed CBOR envelopes. Both
transports run their blocking reads on daemon threads and report events
through the registered callbacks; callbacks are always invoked without the
transport lock held.
"""

from __future__ import annotations

import itertools
import logging
import socket
import threading
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable

from .codec import decode, encode, pack_frame, read_frame
from .constants import DEFAULT_HOST, DEFAULT_PORT, K_BODY, K_T, MAX_FRAME_BYTES, T_MSG
from .envelope import make_envelope, validate_envelope
from .errors import TransportError
from .transport import Handle, HostInfo


def _noop(*_args: Any) -> None:
    return None


def _frame(msg: str, max_bytes: int) -> bytes:
    try:
        return pack_frame(encode(make_envelope(msg)), max_bytes=max_bytes)
    except ValueError as e:
        raise TransportError(str(e)) from e


def _read_message(rfile: BinaryIO, max_bytes: int) -> dict | None:
    payload = read_frame(rfile, max_bytes=max_bytes)
    if payload is None:
        return None
    env = decode(payload)
    validate_envelope(env)
    return env


def _shutdown_socket(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        sock.close()
    except OSError:
        pass


@dataclass
class _Connection:
    handle: Handle
    sock: socket.socket
    host_info: HostInfo
    write_lock: threading.Lock = field(default_factory=threading.Lock)
    terminated: bool = False


class TcpServerTransport:
    """
    Accepts TCP connections and relays framed text messages.

    This class is responsible for:
    - Binding the listening socket and running the accept loop
    - Assigning an integer handle to every accepted connection
    - One reader thread per connection
    - Delivering exactly one terminal notification per handle
    - Unicast and broadcast sends
    """

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        *,
        bind_host: str = "",
        max_frame_bytes: int = MAX_FRAME_BYTES,
        resolve_hosts: bool = True,
        accept_poll_s: float = 0.25,
    ) -> None:
        self.log = logging.getLogger("simplechat.tcp")
        self._lock = threading.RLock()
        # Orders on_connect before the snapshot close() disconnects.
        self._connect_gate = threading.Lock()

        self._port = int(port)
        self._bind_host = bind_host
        self._max_frame_bytes = int(max_frame_bytes)
        self._resolve_hosts = resolve_hosts
        self._accept_poll_s = float(accept_poll_s)

        self._server_sock: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._accept_stop: threading.Event | None = None

        self._connections: dict[Handle, _Connection] = {}
        self._handles = itertools.count(1)

        self._on_listen_started: Callable[[], None] = _noop
        self._on_listen_stopped: Callable[[], None] = _noop
        self._on_fully_closed: Callable[[], None] = _noop
        self._on_connect: Callable[[Handle, HostInfo], None] = _noop
        self._on_disconnect: Callable[[Handle], None] = _noop
        self._on_exception: Callable[[Handle, BaseException], None] = _noop
        self._on_message: Callable[[Handle, str], None] = _noop

    # Callback registration

    def set_listen_started_callback(self, cb: Callable[[], None]) -> None:
        self._on_listen_started = cb

    def set_listen_stopped_callback(self, cb: Callable[[], None]) -> None:
        self._on_listen_stopped = cb

    def set_fully_closed_callback(self, cb: Callable[[], None]) -> None:
        self._on_fully_closed = cb

    def set_connect_callback(self, cb: Callable[[Handle, HostInfo], None]) -> None:
        self._on_connect = cb

    def set_disconnect_callback(self, cb: Callable[[Handle], None]) -> None:
        self._on_disconnect = cb

    def set_exception_callback(self, cb: Callable[[Handle, BaseException], None]) -> None:
        self._on_exception = cb

    def set_message_callback(self, cb: Callable[[Handle, str], None]) -> None:
        self._on_message = cb

    # Lifecycle

    def get_port(self) -> int:
        return self._port

    def set_port(self, port: int) -> None:
        with self._lock:
            if self._server_sock is not None:
                raise TransportError("cannot change port while the listening socket is open")
            self._port = int(port)

    def is_listening(self) -> bool:
        with self._lock:
            return self._accept_thread is not None

    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def listen(self) -> None:
        with self._lock:
            if self._accept_thread is not None:
                return

            if self._server_sock is None:
                sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                try:
                    sock.bind((self._bind_host, self._port))
                    sock.listen()
                except OSError as e:
                    sock.close()
                    raise TransportError(f"could not listen on port {self._port}: {e}") from e
                sock.settimeout(self._accept_poll_s)
                self._server_sock = sock
                # Port 0 asks the OS for a free port; report the real one.
                self._port = sock.getsockname()[1]

            stop = threading.Event()
            thread = threading.Thread(
                target=self._accept_loop,
                args=(self._server_sock, stop),
                name="simplechat-accept",
                daemon=True,
            )
            self._accept_stop = stop
            self._accept_thread = thread
            thread.start()

        self._on_listen_started()

    def stop_listening(self) -> None:
        with self._lock:
            thread = self._accept_thread
            stop = self._accept_stop
            if thread is None or stop is None:
                return
            stop.set()
            self._accept_thread = None
            self._accept_stop = None

        if thread is not threading.current_thread():
            thread.join(timeout=self._accept_poll_s * 4)

        self._on_listen_stopped()

    def close(self) -> None:
        with self._lock:
            if self._server_sock is None:
                return

        self.stop_listening()

        with self._connect_gate, self._lock:
            sock = self._server_sock
            self._server_sock = None
            conns = list(self._connections.values())

        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass

        for conn in conns:
            self.close_client(conn.handle)

        self._on_fully_closed()

    # Connections

    def _accept_loop(self, sock: socket.socket, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                conn_sock, addr = sock.accept()
            except TimeoutError:
                continue
            except OSError as e:
                if stop.is_set() or sock.fileno() == -1:
                    break
                self.log.warning("Accept failed port=%s err=%s", self._port, e)
                stop.wait(self._accept_poll_s)
                continue

            conn_sock.settimeout(None)
            threading.Thread(
                target=self._serve,
                args=(sock, conn_sock, addr),
                name="simplechat-conn",
                daemon=True,
            ).start()

    def _resolve(self, addr: Any) -> HostInfo:
        address = str(addr[0]) if addr else None
        host_name = None
        if self._resolve_hosts and address:
            try:
                host_name = socket.gethostbyaddr(address)[0]
            except OSError:
                host_name = None
        return HostInfo(host_name=host_name, address=address)

    def _serve(self, listen_sock: socket.socket, conn_sock: socket.socket, addr: Any) -> None:
        # Name lookup can be slow, so it runs here rather than on the accept thread.
        conn = _Connection(
            handle=next(self._handles),
            sock=conn_sock,
            host_info=self._resolve(addr),
        )
        with self._connect_gate:
            with self._lock:
                # close() may have run while we were resolving.
                registered = self._server_sock is listen_sock
                if registered:
                    self._connections[conn.handle] = conn
            if registered:
                self._on_connect(conn.handle, conn.host_info)

        if not registered:
            self.log.debug("Dropping connection accepted before close handle=%s", conn.handle)
            _shutdown_socket(conn_sock)
            return
        self._read_loop(conn)

    def _read_loop(self, conn: _Connection) -> None:
        rfile = conn.sock.makefile("rb")
        try:
            while True:
                env = _read_message(rfile, self._max_frame_bytes)
                if env is None:
                    break
                if env[K_T] != T_MSG:
                    self.log.debug("Ignoring frame handle=%s t=%s", conn.handle, env[K_T])
                    continue
                self._on_message(conn.handle, env[K_BODY])
        except Exception as e:
            if self._finish(conn):
                _shutdown_socket(conn.sock)
                self._on_exception(conn.handle, e)
            return
        finally:
            try:
                rfile.close()
            except OSError:
                pass

        if self._finish(conn):
            _shutdown_socket(conn.sock)
            self._on_disconnect(conn.handle)

    def _finish(self, conn: _Connection) -> bool:
        """Mark a connection terminated. True only for the first caller."""
        with self._lock:
            if conn.terminated:
                return False
            conn.terminated = True
            self._connections.pop(conn.handle, None)
        return True

    def close_client(self, handle: Handle) -> None:
        with self._lock:
            conn = self._connections.get(handle)
        if conn is None:
            return
        if self._finish(conn):
            _shutdown_socket(conn.sock)
            self._on_disconnect(handle)

    def _send(self, conn: _Connection, frame: bytes) -> None:
        try:
            with conn.write_lock:
                conn.sock.sendall(frame)
        except OSError as e:
            raise TransportError(f"send to connection {conn.handle} failed: {e}") from e

    def send_to_client(self, handle: Handle, msg: str) -> None:
        with self._lock:
            conn = self._connections.get(handle)
        if conn is None:
            raise TransportError(f"no such connection: {handle}")
        self._send(conn, _frame(msg, self._max_frame_bytes))

    def send_to_all_clients(self, msg: str) -> None:
        frame = _frame(msg, self._max_frame_bytes)
        with self._lock:
            conns = list(self._connections.values())

        for conn in conns:
            try:
                self._send(conn, frame)
            except TransportError as e:
                # The reader thread notices the dead socket and reports it.
                self.log.warning("Broadcast send failed handle=%s err=%s", conn.handle, e)


class TcpClientTransport:
    """Single outbound TCP connection to a chat server."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        *,
        connect_timeout_s: float = 10.0,
        max_frame_bytes: int = MAX_FRAME_BYTES,
    ) -> None:
        self.log = logging.getLogger("simplechat.tcp")
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()

        self._host = host
        self._port = int(port)
        self._connect_timeout_s = float(connect_timeout_s)
        self._max_frame_bytes = int(max_frame_bytes)

        self._sock: socket.socket | None = None

        self._on_message: Callable[[str], None] = _noop
        self._on_closed: Callable[[], None] = _noop
        self._on_exception: Callable[[BaseException], None] = _noop

    def set_message_callback(self, cb: Callable[[str], None]) -> None:
        self._on_message = cb

    def set_closed_callback(self, cb: Callable[[], None]) -> None:
        self._on_closed = cb

    def set_exception_callback(self, cb: Callable[[BaseException], None]) -> None:
        self._on_exception = cb

    def get_host(self) -> str:
        return self._host

    def set_host(self, host: str) -> None:
        self._host = host

    def get_port(self) -> int:
        return self._port

    def set_port(self, port: int) -> None:
        self._port = int(port)

    def is_connected(self) -> bool:
        with self._lock:
            return self._sock is not None

    def open_connection(self) -> None:
        with self._lock:
            if self._sock is not None:
                return
            try:
                sock = socket.create_connection(
                    (self._host, self._port), timeout=self._connect_timeout_s
                )
            except OSError as e:
                raise TransportError(
                    f"could not connect to {self._host}:{self._port}: {e}"
                ) from e
            sock.settimeout(None)
            self._sock = sock

        threading.Thread(
            target=self._read_loop,
            args=(sock,),
            name="simplechat-client-reader",
            daemon=True,
        ).start()

    def close_connection(self) -> None:
        with self._lock:
            sock = self._sock
            self._sock = None
        if sock is None:
            return
        _shutdown_socket(sock)
        self._on_closed()

    def send_to_server(self, msg: str) -> None:
        frame = _frame(msg, self._max_frame_bytes)
        with self._lock:
            sock = self._sock
        if sock is None:
            raise TransportError("not connected")
        try:
            with self._write_lock:
                sock.sendall(frame)
        except OSError as e:
            raise TransportError(f"send failed: {e}") from e

    def _read_loop(self, sock: socket.socket) -> None:
        rfile = sock.makefile("rb")
        error: BaseException | None = None
        try:
            while True:
                env = _read_message(rfile, self._max_frame_bytes)
                if env is None:
                    break
                if env[K_T] != T_MSG:
                    self.log.debug("Ignoring frame t=%s", env[K_T])
                    continue
                self._on_message(env[K_BODY])
        except Exception as e:
            error = e
        finally:
            try:
                rfile.close()
            except OSError:
                pass

        with self._lock:
            if self._sock is not sock:
                # Closed locally; close_connection already reported it.
                return
            self._sock = None

        _shutdown_socket(sock)
        if error is not None:
            self._on_exception(error)
        else:
            self._on_closed()
