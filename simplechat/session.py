from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

from .constants import ANON, LOGIN_COMMAND, LOGIN_ID_MAX_CHARS, SERVER_MSG_PREFIX
from .errors import DuplicateLoginError, MissingLoginIdError, ProtocolError, TransportError
from .transport import Handle, HostInfo, ServerTransport
from .util import normalize_login_id


@dataclass
class Session:
    """Per-connection state: display label and the login id once bound."""

    label: str
    login_id: str | None = None


def make_label(handle: Handle, host_info: HostInfo | None) -> str:
    address = host_info.address if host_info is not None else None
    if not address:
        return f"connection-{handle}"
    host_name = host_info.host_name if host_info is not None else None
    return f"{host_name or address} ({address})"


def is_login_command(text: str) -> bool:
    parts = text.split(maxsplit=1)
    return bool(parts) and parts[0].lower() == LOGIN_COMMAND


class SessionRegistry:
    """
    Tracks live connections on the server side.

    This class is responsible for:
    - Creating a session (label, no login id) on connect
    - Removing the session on disconnect or exception, exactly once
    - The one-shot ``#login <id>`` handshake
    - Prefixing chat lines with the sender's login id and fanning them out

    All session mutations happen under ``_state_lock``. Sends are issued
    after the lock is released; the transport snapshots its own connection
    set for broadcasts.
    """

    def __init__(
        self,
        transport: ServerTransport,
        *,
        login_id_max_chars: int = LOGIN_ID_MAX_CHARS,
    ) -> None:
        self.transport = transport
        self.login_id_max_chars = int(login_id_max_chars)
        self.log = logging.getLogger("simplechat.session")
        self._state_lock = threading.RLock()
        self.sessions: dict[Handle, Session] = {}

    def on_connect(self, handle: Handle, host_info: HostInfo | None = None) -> str:
        label = make_label(handle, host_info)
        with self._state_lock:
            self.sessions[handle] = Session(label=label)
        self.log.info("Client connected handle=%s label=%s", handle, label)
        return label

    def on_disconnect(self, handle: Handle) -> Session | None:
        with self._state_lock:
            sess = self.sessions.pop(handle, None)
        if sess is None:
            return None
        self.log.info(
            "Client disconnected handle=%s label=%s login_id=%r",
            handle,
            sess.label,
            sess.login_id,
        )
        return sess

    def on_exception(self, handle: Handle, cause: BaseException) -> Session | None:
        with self._state_lock:
            sess = self.sessions.pop(handle, None)

        self.log.warning(
            "Client exception handle=%s label=%s err=%s",
            handle,
            sess.label if sess is not None else "-",
            cause,
        )

        try:
            self.transport.close_client(handle)
        except Exception:
            self.log.debug("Close after exception failed handle=%s", handle, exc_info=True)
        return sess

    def bind_login(self, handle: Handle, text: str) -> str:
        """Bind the login id carried by a ``#login <id>`` line.

        Raises DuplicateLoginError if the connection already has a login id,
        MissingLoginIdError if the id is blank, and InvalidLoginIdError for
        ids that cannot be displayed safely.
        """
        parts = text.strip().split(maxsplit=1)
        arg = parts[1] if len(parts) > 1 else ""

        with self._state_lock:
            sess = self.sessions.get(handle)
            if sess is None:
                raise ProtocolError(f"unknown connection {handle}")
            if sess.login_id is not None:
                raise DuplicateLoginError(sess.login_id)
            login_id = normalize_login_id(arg, max_chars=self.login_id_max_chars)
            if login_id is None:
                raise MissingLoginIdError()
            sess.login_id = login_id

        self.log.info("Login bound handle=%s login_id=%r", handle, login_id)
        return login_id

    def on_message(self, handle: Handle, text: str) -> None:
        with self._state_lock:
            sess = self.sessions.get(handle)
            label = sess.label if sess is not None else None
            prefix = (sess.login_id or ANON) if sess is not None else None

        if sess is None:
            self.log.debug("Message from unknown handle=%s dropped", handle)
            return

        self.log.info("Message received handle=%s from=%s text=%r", handle, label, text)

        if is_login_command(text):
            try:
                login_id = self.bind_login(handle, text)
            except ProtocolError as e:
                self._reject(handle, e)
                return
            self._reply(handle, f"{SERVER_MSG_PREFIX}login accepted for '{login_id}'")
            return

        try:
            self.transport.send_to_all_clients(f"{prefix}> {text}")
        except TransportError as e:
            self.log.warning("Broadcast failed handle=%s err=%s", handle, e)

    def on_operator_message(self, text: str) -> str:
        formatted = f"{SERVER_MSG_PREFIX}{text}"
        try:
            self.transport.send_to_all_clients(formatted)
        except TransportError as e:
            self.log.warning("Operator broadcast failed err=%s", e)
        return formatted

    def _reply(self, handle: Handle, msg: str) -> None:
        try:
            self.transport.send_to_client(handle, msg)
        except TransportError as e:
            self.log.warning("Reply failed handle=%s err=%s", handle, e)

    def _reject(self, handle: Handle, err: ProtocolError) -> None:
        self.log.warning("Login rejected handle=%s err=%s", handle, err)
        self._reply(handle, f"{SERVER_MSG_PREFIX}ERROR: {err}")
        try:
            self.transport.close_client(handle)
        except Exception:
            self.log.debug("Close after rejected login failed handle=%s", handle, exc_info=True)

    def get_session(self, handle: Handle) -> Session | None:
        with self._state_lock:
            return self.sessions.get(handle)

    def login_id(self, handle: Handle) -> str | None:
        sess = self.get_session(handle)
        return sess.login_id if sess is not None else None

    def get_stats(self) -> dict[str, Any]:
        with self._state_lock:
            total = len(self.sessions)
            logged_in = sum(1 for s in self.sessions.values() if s.login_id is not None)
        return {"total": total, "logged_in": logged_in}
