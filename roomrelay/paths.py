from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

HOME_ENV = "ROOMRELAY_HOME"

log = logging.getLogger("roomrelay.paths")


def default_relay_dir() -> Path:
    """``$ROOMRELAY_HOME`` if set, else ``~/.roomrelay``."""
    return Path(os.environ.get(HOME_ENV) or Path.home() / ".roomrelay")


def default_config_path() -> Path:
    return default_relay_dir() / "roomrelay.toml"


def default_identity_path() -> Path:
    # Private key behind the destination hash clients link to; losing it
    # moves the relay to a new address.
    return default_relay_dir() / "relay_identity"


def ensure_private_dir(path: Path) -> Path:
    """Create ``path`` if needed and make sure only the owner can read it."""
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    # mkdir's mode is masked by the umask and ignored for existing dirs.
    if stat.S_IMODE(path.stat().st_mode) & 0o077:
        try:
            path.chmod(0o700)
        except OSError as e:
            log.warning("Could not restrict permissions on %s: %s", path, e)
    return path
