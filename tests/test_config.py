import argparse
import os
import stat

import pytest

from roomrelay.cli import build_config
from roomrelay.config import RelayRuntimeConfig, apply_config_data
from roomrelay.paths import default_config_path, default_identity_path, ensure_private_dir
from roomrelay.session import ConnectHints


def test_apply_config_data_reads_relay_and_logging_tables() -> None:
    cfg = apply_config_data(
        RelayRuntimeConfig(config_path="/etc/roomrelay.toml"),
        {
            "relay": {
                "dest_name": "games.relay",
                "idle_budget_s": 600,
                "startup_notice": "",
                "config_path": "/elsewhere.toml",
            },
            "logging": {"level": "DEBUG", "file": ""},
            "unknown": 1,
        },
    )

    assert cfg.dest_name == "games.relay"
    assert cfg.idle_budget_s == 600.0
    assert isinstance(cfg.idle_budget_s, float)
    assert cfg.startup_notice is None
    assert cfg.log_level == "DEBUG"
    assert cfg.log_file is None
    assert cfg.config_path == "/etc/roomrelay.toml"


def test_idle_minutes_alias() -> None:
    cfg = apply_config_data(RelayRuntimeConfig(), {"relay": {"idle_minutes": 10}})
    assert cfg.idle_budget_s == 600.0

    cfg = apply_config_data(
        RelayRuntimeConfig(), {"idle_minutes": 10, "idle_budget_s": 60}
    )
    assert cfg.idle_budget_s == 60.0


def test_empty_document_keeps_defaults() -> None:
    base = RelayRuntimeConfig()
    assert apply_config_data(base, {}) is base


def test_cli_overrides_file_values(tmp_path) -> None:
    path = tmp_path / "roomrelay.toml"
    path.write_text(
        '[relay]\ndest_name = "from.file"\nidle_budget_s = 1200.0\n', encoding="utf-8"
    )
    args = argparse.Namespace(
        config=str(path),
        identity=str(tmp_path / "relay_identity"),
        configdir=None,
        dest_name="from.cli",
        no_announce=True,
        idle_minutes=5,
        log_level=None,
        log_file="",
    )

    cfg = build_config(args)

    assert cfg.dest_name == "from.cli"
    assert cfg.idle_budget_s == 300.0
    assert cfg.announce_on_start is False
    assert cfg.log_file is None
    assert cfg.config_path == str(path)


def test_connect_hints_from_body() -> None:
    hints = ConnectHints.from_body(
        {"mode": "re-connect", "currentName": " u4 ", "nickName": "Alice", "teamName": "Red"}
    )
    assert hints.wants_reattach
    assert hints.current_name == "u4"
    assert hints.nick_name == "Alice"
    assert hints.team_name == "Red"

    assert ConnectHints.from_body({"mode": "sideways"}).mode == "normal"
    assert not ConnectHints.from_body({"mode": "re-connect"}).wants_reattach
    assert ConnectHints.from_body(None) == ConnectHints()


@pytest.mark.parametrize("key", ["idle_budget_s", "idle_extension_s", "idle_cap_s"])
def test_negative_idle_timings_are_rejected(key) -> None:
    with pytest.raises(ValueError, match=key):
        apply_config_data(RelayRuntimeConfig(), {"relay": {key: -1}})


def test_zero_idle_extension_is_accepted() -> None:
    cfg = apply_config_data(RelayRuntimeConfig(), {"relay": {"idle_extension_s": 0}})
    assert cfg.idle_extension_s == 0.0


def test_relay_home_override(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("ROOMRELAY_HOME", str(tmp_path))
    assert default_config_path() == tmp_path / "roomrelay.toml"
    assert default_identity_path() == tmp_path / "relay_identity"


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_ensure_private_dir_tightens_an_open_directory(tmp_path) -> None:
    target = tmp_path / "relay"
    target.mkdir(mode=0o755)
    target.chmod(0o755)

    assert ensure_private_dir(target) == target
    assert stat.S_IMODE(target.stat().st_mode) == 0o700

    nested = ensure_private_dir(tmp_path / "a" / "b")
    assert nested.is_dir()
