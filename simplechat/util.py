from __future__ import annotations

import os

from .constants import LOGIN_ID_MAX_CHARS
from .errors import ConfigurationError, InvalidLoginIdError


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def parse_port(value) -> int:
    """Parse a TCP port literal, raising ConfigurationError when invalid."""
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        raise ConfigurationError(f"port must be an integer, got {value!r}") from None
    if port < 0 or port > 65535:
        raise ConfigurationError(f"port out of range: {port}")
    return port


def normalize_login_id(value, *, max_chars: int = LOGIN_ID_MAX_CHARS) -> str | None:
    """Return the cleaned login id, or None when it is missing or blank.

    Raises InvalidLoginIdError for identifiers that are present but unusable.
    """
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars > 0 and len(s) > int(max_chars):
        raise InvalidLoginIdError(f"login id longer than {max_chars} characters")

    # Embedded newlines or NUL break console and log formatting.
    if "\n" in s or "\r" in s or "\x00" in s:
        raise InvalidLoginIdError("login id contains control characters")

    return s
