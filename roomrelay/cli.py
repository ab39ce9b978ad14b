from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import RNS

from .config import RelayRuntimeConfig, apply_config_data, load_toml, validate_config
from .logging_config import configure_logging
from .paths import default_config_path, default_identity_path, ensure_private_dir
from .service import RelayService
from .transport import RNSTransport

_DEFAULT_CONFIG = """\
# roomrelayd settings. Review them, then start roomrelayd again.

[relay]

# Reticulum config directory; empty means Reticulum's own default.
configdir = ""

# Reticulum identity the relay destination is derived from.
identity_path = {identity_path!r}

# Clients open links to this destination ("app.aspect...").
dest_name = "roomrelay.hub"

# Announce once at startup, and every announce_period_s seconds if > 0.
announce_on_start = true
announce_period_s = 0.0
relay_name = "roomrelay"

# Idle handling, in seconds (0 turns it off). Warned at half the budget,
# dropped at the full budget. Hosts with company get idle_extension_s more
# at a time until idle_cap_s.
idle_budget_s = 2400.0
idle_extension_s = 300.0
idle_cap_s = 10800.0

# Chat line sent once to everyone connected shortly after a restart.
# Empty disables it.
startup_notice_delay_s = 5.0
startup_notice = "The relay server has restarted. Rooms and hosts are being rebuilt as clients reconnect."

# Upper bounds for nickname/team and room name lengths.
nick_max_chars = 32
max_room_name_len = 64

[logging]
level = "INFO"
rns_level = "WARNING"
console = true
# Empty disables file logging.
file = ""
format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""
"""


def _create_config(config_path: Path, identity_path: Path) -> None:
    ensure_private_dir(config_path.parent)
    config_path.write_text(
        _DEFAULT_CONFIG.format(identity_path=str(identity_path)), encoding="utf-8"
    )


def _create_identity(identity_path: Path) -> None:
    ensure_private_dir(identity_path.parent)
    RNS.Identity().to_file(str(identity_path))
    try:
        os.chmod(identity_path, 0o600)
    except OSError:
        pass


def first_run_setup(config_path: Path, identity_path: Path) -> list[Path]:
    """Create whichever of the config file and identity are missing."""
    created: list[Path] = []
    if not config_path.exists():
        _create_config(config_path, identity_path)
        created.append(config_path)
    if not identity_path.exists():
        _create_identity(identity_path)
        created.append(identity_path)
    return created


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="roomrelayd",
        description="Relay chat, input and signaling between a room host and its clients over Reticulum",
    )
    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="TOML settings file (written with defaults if missing)",
    )
    p.add_argument("--configdir", help="Reticulum configuration directory")
    p.add_argument(
        "--identity",
        default=str(default_identity_path()),
        help="Relay identity file (generated if missing)",
    )
    p.add_argument("--dest-name", help="Destination name clients link to")
    p.add_argument(
        "--no-announce", action="store_true", help="Skip the announce at startup"
    )
    p.add_argument(
        "--idle-minutes",
        type=float,
        help="Minutes without chat before a connection is dropped; 0 disables",
    )
    p.add_argument("--log-level", help="Override the configured log level")
    p.add_argument(
        "--log-file", help="Override the configured log file; empty string disables it"
    )
    return p


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    """Defaults, then the config file, then command-line flags."""
    cfg = RelayRuntimeConfig(config_path=str(args.config), identity_path=str(args.identity))
    if os.path.exists(args.config):
        cfg = apply_config_data(cfg, load_toml(args.config))

    overrides: dict[str, object] = {}
    if args.configdir is not None:
        overrides["configdir"] = args.configdir
    if args.dest_name is not None:
        overrides["dest_name"] = args.dest_name
    if args.no_announce:
        overrides["announce_on_start"] = False
    if args.idle_minutes is not None:
        overrides["idle_budget_s"] = float(args.idle_minutes) * 60.0
    if args.log_level is not None:
        overrides["log_level"] = str(args.log_level)
    if args.log_file is not None:
        overrides["log_file"] = str(args.log_file) or None
    return validate_config(replace(cfg, **overrides)) if overrides else cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(argv)

    created = first_run_setup(Path(args.config), Path(args.identity))
    if created:
        listing = "\n".join(f"  {p}" for p in created)
        print(
            f"roomrelayd created:\n{listing}\nReview the settings and run roomrelayd again.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)
    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    service = RelayService(cfg, RNSTransport(cfg))
    service.start()
    service.run_forever()


if __name__ == "__main__":
    main()
