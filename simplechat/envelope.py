from __future__ import annotations

import time

from .constants import CHAT_VERSION, K_BODY, K_T, K_TS, K_V, T_MSG


def now_ms() -> int:
    return int(time.time() * 1000)


def make_envelope(body: str, *, msg_type: int = T_MSG, ts: int | None = None) -> dict:
    return {
        K_V: CHAT_VERSION,
        K_T: int(msg_type),
        K_TS: now_ms() if ts is None else int(ts),
        K_BODY: body,
    }


def validate_envelope(env: dict) -> None:
    if not isinstance(env, dict):
        raise TypeError("envelope must be a CBOR map (dict)")

    for k in env.keys():
        if not isinstance(k, int):
            raise TypeError("envelope keys must be integers")
        if k < 0:
            raise ValueError("envelope keys must be unsigned integers")

    for k in (K_V, K_T, K_TS, K_BODY):
        if k not in env:
            raise ValueError(f"missing envelope key {k}")

    v = env[K_V]
    if not isinstance(v, int):
        raise TypeError("protocol version must be an integer")
    if v != CHAT_VERSION:
        raise ValueError(f"unsupported version {v}")

    t = env[K_T]
    if not isinstance(t, int):
        raise TypeError("message type must be an integer")

    ts = env[K_TS]
    if not isinstance(ts, int):
        raise TypeError("timestamp must be an integer")
    if ts < 0:
        raise ValueError("timestamp must be unsigned")

    if not isinstance(env[K_BODY], str):
        raise TypeError("message body must be a string")
