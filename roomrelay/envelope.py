"""Wire envelope: a CBOR map with small integer keys.

Every packet on a relay link is one envelope carrying an event name and an
optional body. The first envelope a client sends must be ``hello``.
"""

from __future__ import annotations

import os
import time
from typing import Any

import cbor2

from .constants import ENVELOPE_VERSION, K_BODY, K_EVENT, K_ID, K_TS, K_V

# key -> (accepted types, what the field is called in error messages)
_REQUIRED: dict[int, tuple[tuple[type, ...], str]] = {
    K_V: ((int,), "envelope version"),
    K_EVENT: ((str,), "event name"),
    K_ID: ((bytes, bytearray), "message id"),
    K_TS: ((int,), "timestamp"),
}


def encode(obj: Any) -> bytes:
    return cbor2.dumps(obj)


def decode(data: bytes) -> Any:
    return cbor2.loads(data)


def now_ms() -> int:
    return int(time.time() * 1000)


def msg_id() -> bytes:
    return os.urandom(8)


def make_envelope(
    event: str,
    *,
    body: Any = None,
    mid: bytes | None = None,
    ts: int | None = None,
) -> dict[int, Any]:
    env: dict[int, Any] = {
        K_V: ENVELOPE_VERSION,
        K_EVENT: str(event),
        K_ID: mid or msg_id(),
        K_TS: now_ms() if ts is None else ts,
    }
    if body is not None:
        env[K_BODY] = body
    return env


def validate_envelope(env: Any) -> None:
    """Raise TypeError/ValueError unless ``env`` is a well-formed envelope.

    Unknown integer keys are allowed so newer clients can add fields.
    """
    if not isinstance(env, dict):
        raise TypeError("envelope must be a CBOR map (dict)")
    if any(not isinstance(k, int) for k in env):
        raise TypeError("envelope keys must be integers")
    if any(k < 0 for k in env):
        raise ValueError("envelope keys must be unsigned integers")

    for key, (types, what) in _REQUIRED.items():
        if key not in env:
            raise ValueError(f"missing {what} (key {key})")
        value = env[key]
        # bool is an int subclass; it is never a valid number here.
        if isinstance(value, bool) or not isinstance(value, types):
            raise TypeError(f"{what} has the wrong type: {type(value).__name__}")

    if env[K_V] != ENVELOPE_VERSION:
        raise ValueError(f"unsupported envelope version {env[K_V]}")
    if not env[K_EVENT]:
        raise ValueError("event name must not be empty")
    if env[K_TS] < 0:
        raise ValueError("timestamp must not be negative")
