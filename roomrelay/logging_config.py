from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from .config import RelayRuntimeConfig

_FALLBACK_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def parse_level(value: Any, default: int) -> int:
    """Accept a level name ("debug", "WARN"), a number, or a numeric string."""
    if isinstance(value, int):
        return value
    name = str(value or "").strip().upper()
    if not name:
        return default
    known = logging.getLevelNamesMapping()
    if name in known:
        return known[name]
    return int(name) if name.isdigit() else default


def _open_log_file(path: str) -> logging.FileHandler:
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(target, encoding="utf-8")
    try:
        os.chmod(target, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(
    cfg: RelayRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Install the relay's log handlers, replacing any already on the root logger.

    ``override_file=""`` turns file logging off regardless of the config.
    """
    log_file = cfg.log_file if override_file is None else override_file
    log_file = (log_file or "").strip()

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    if log_file:
        handlers.append(_open_log_file(log_file))

    logging.basicConfig(
        level=parse_level(override_level or cfg.log_level, logging.INFO),
        format=(cfg.log_format or "").strip() or _FALLBACK_FORMAT,
        datefmt=(cfg.log_datefmt or "").strip() or None,
        handlers=handlers or [logging.NullHandler()],
        force=True,
    )

    # Reticulum is chatty at INFO; it gets its own threshold.
    logging.getLogger("RNS").setLevel(parse_level(cfg.log_rns_level, logging.WARNING))
    logging.captureWarnings(True)
