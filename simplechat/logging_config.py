from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any, TextIO

from .config import ClientRuntimeConfig, ServerRuntimeConfig

_FALLBACK_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_level(value: Any, default: int) -> int:
    """Accept a level name ("warn", "INFO"), a numeric string or an int."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    text = str(value).strip().upper()
    if not text:
        return default
    if text == "WARN":
        text = "WARNING"

    named = logging.getLevelNamesMapping().get(text)
    if named is not None:
        return named

    try:
        return int(text)
    except ValueError:
        return default


def _clean_optional(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value)
    return s if s.strip() else None


def _file_handler(path_text: str) -> logging.Handler:
    p = Path(os.path.expanduser(path_text))
    p.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(p, encoding="utf-8")
    try:
        # Chat logs contain message text; keep them private.
        os.chmod(p, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: ServerRuntimeConfig | ClientRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
    stream: TextIO | None = None,
) -> None:
    """Install simplechat's root log handlers.

    Console logs go to ``stream`` (stderr by default) so they never mix
    with chat output on stdout. Calling this again replaces the handlers.
    """
    level = parse_level(override_level or cfg.log_level, logging.INFO)

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler(stream or sys.stderr))

    log_file = _clean_optional(override_file) if override_file is not None else None
    if log_file is None:
        log_file = _clean_optional(cfg.log_file)
    if log_file:
        handlers.append(_file_handler(log_file))

    formatter = logging.Formatter(
        fmt=_clean_optional(cfg.log_format) or _FALLBACK_FORMAT,
        datefmt=_clean_optional(cfg.log_datefmt),
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        h.setFormatter(formatter)
        root.addHandler(h)
    root.setLevel(level)

    logging.captureWarnings(True)
