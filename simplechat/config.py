from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, replace
from typing import TypeVar

from .constants import DEFAULT_HOST, DEFAULT_PORT, LOGIN_ID_MAX_CHARS, MAX_FRAME_BYTES

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"


@dataclass(frozen=True)
class ServerRuntimeConfig:
    config_path: str | None = None
    bind_host: str = ""
    port: int = DEFAULT_PORT
    login_id_max_chars: int = LOGIN_ID_MAX_CHARS
    max_frame_bytes: int = MAX_FRAME_BYTES
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = _LOG_FORMAT
    log_datefmt: str | None = None


@dataclass(frozen=True)
class ClientRuntimeConfig:
    config_path: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    login_id: str | None = None
    login_id_max_chars: int = LOGIN_ID_MAX_CHARS
    connect_timeout_s: float = 10.0
    max_frame_bytes: int = MAX_FRAME_BYTES
    log_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = _LOG_FORMAT
    log_datefmt: str | None = None


RuntimeConfig = TypeVar("RuntimeConfig", ServerRuntimeConfig, ClientRuntimeConfig)

# Keys where an empty string in the file means "unset".
_OPTIONAL_KEYS = ("log_file", "log_datefmt", "login_id")


def load_toml(path: str) -> dict:
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RuntimeConfig, data: dict, *, section: str) -> RuntimeConfig:
    """Overlay a parsed TOML document onto a runtime config.

    Top-level keys, the ``[<section>]`` table and the ``[logging]`` table are
    merged in that order. Unknown keys are ignored.
    """
    table = data.get(section) if isinstance(data, dict) else None
    if isinstance(table, dict):
        data = {**data, **table}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key in ("level", "console", "file", "format", "datefmt"):
            if key in log_table:
                mapped[f"log_{key}"] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _OPTIONAL_KEYS:
        if key in updates and updates[key] == "":
            updates[key] = None

    return replace(base, **updates) if updates else base
