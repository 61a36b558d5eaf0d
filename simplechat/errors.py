"""Exception hierarchy for simplechat.

Operator-facing errors carry a single-line message that the console shows
verbatim.
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for simplechat errors."""


class ConfigurationError(ChatError):
    """Bad operator input: invalid port literal, missing argument, bad config."""


class StateGuardError(ChatError):
    """A command was issued in a lifecycle state that does not allow it."""


class ProtocolError(ChatError):
    """A connection broke the login handshake rules."""


class DuplicateLoginError(ProtocolError):
    def __init__(self, login_id: str) -> None:
        super().__init__(f"already logged in as {login_id!r}")
        self.login_id = login_id


class MissingLoginIdError(ProtocolError):
    def __init__(self) -> None:
        super().__init__("missing login id")


class InvalidLoginIdError(ProtocolError):
    pass


class TransportError(ChatError):
    """The transport collaborator failed to send, connect or listen."""


class StartupError(ChatError):
    """The initial listener or connection could not be established."""
