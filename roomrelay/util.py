from __future__ import annotations

import os

from .constants import NICK_MAX_CHARS, ROOM_NAME_MAX_CHARS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def _clean_text(value, max_chars: int) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars > 0 and len(s) > int(max_chars):
        return None

    # Embedded newlines or NUL break chat transcripts and log lines.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    try:
        s.encode("utf-8", "strict")
    except UnicodeError:
        return None

    return s


def normalize_nick(value, *, max_chars: int = NICK_MAX_CHARS) -> str | None:
    return _clean_text(value, max_chars)


def normalize_team(value, *, max_chars: int = NICK_MAX_CHARS) -> str | None:
    return _clean_text(value, max_chars)


def normalize_room(value, *, max_chars: int = ROOM_NAME_MAX_CHARS) -> str | None:
    # Room names are caller-supplied keys; case is preserved.
    return _clean_text(value, max_chars)


def numeric_part(name: str) -> str:
    return "".join(ch for ch in str(name) if ch.isdigit())
