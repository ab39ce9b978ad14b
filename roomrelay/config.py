from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import (
    IDLE_BUDGET_S,
    IDLE_CAP_S,
    IDLE_EXTENSION_S,
    NICK_MAX_CHARS,
    ROOM_NAME_MAX_CHARS,
    STARTUP_NOTICE_DELAY_S,
)


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    configdir: str | None = None
    identity_path: str | None = None
    dest_name: str = "roomrelay.hub"
    announce_on_start: bool = True
    announce_period_s: float = 0.0
    relay_name: str = "roomrelay"
    idle_budget_s: float = float(IDLE_BUDGET_S)
    idle_extension_s: float = float(IDLE_EXTENSION_S)
    idle_cap_s: float = float(IDLE_CAP_S)
    startup_notice_delay_s: float = STARTUP_NOTICE_DELAY_S
    startup_notice: str | None = (
        "The relay server has restarted. Rooms and hosts are being rebuilt "
        "as clients reconnect."
    )
    nick_max_chars: int = NICK_MAX_CHARS
    max_room_name_len: int = ROOM_NAME_MAX_CHARS
    log_level: str = "INFO"
    log_rns_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    """Merge a parsed TOML document onto ``base``.

    Keys may sit at the top level or under ``[relay]``; ``[logging]`` keys map
    onto the ``log_*`` fields. Unknown keys are ignored.
    """
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key in ("level", "rns_level", "console", "file", "format", "datefmt"):
            if key in log_table:
                mapped[f"log_{key}"] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the file came from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    if "idle_minutes" in data and "idle_budget_s" not in updates:
        try:
            updates["idle_budget_s"] = float(data["idle_minutes"]) * 60.0
        except (TypeError, ValueError):
            pass

    for key in ("idle_budget_s", "idle_extension_s", "idle_cap_s", "startup_notice_delay_s"):
        if key in updates:
            updates[key] = float(updates[key])

    for key in ("configdir", "startup_notice", "log_file", "log_datefmt"):
        if key in updates and updates[key] == "":
            updates[key] = None

    if not updates:
        return base
    return validate_config(replace(base, **updates))


def validate_config(cfg: RelayRuntimeConfig) -> RelayRuntimeConfig:
    """Reject negative idle timings. Returns ``cfg``.

    An ``idle_extension_s`` of 0 is allowed and means hosts are never kept
    past their budget.
    """
    for key in ("idle_budget_s", "idle_extension_s", "idle_cap_s", "startup_notice_delay_s"):
        if getattr(cfg, key) < 0:
            raise ValueError(f"{key} must not be negative")
    return cfg
