from pathlib import Path

import pytest
import yaml

from keyring_relay.config import (
    AppConfig,
    DEFAULT_CONFIG,
    DEFAULT_PREFIX,
    TierConfig,
    apply_overrides,
    dump_default_config,
    load_config,
    split_addr,
)
from keyring_relay.errors import ConfigError


def test_defaults() -> None:
    config = AppConfig()
    assert config.wan.addr == "127.0.0.1:7374"
    assert config.lan.addr == "127.0.0.1:7373"
    assert config.relay.prefix == DEFAULT_PREFIX == "ether:"
    assert config.wan.timeout == 0
    assert config.logging.normalized_level() == "INFO"


def test_load_explicit_file(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "wan": {"addr": "10.0.0.1:7374", "auth_key": "secret", "timeout": 2.5},
                "relay": {"prefix": "dc1:"},
                "logging": {"level": "debug"},
            }
        ),
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.wan.host_port() == ("10.0.0.1", 7374)
    assert config.wan.auth_key == "secret"
    assert config.wan.timeout == 2.5
    assert config.lan.addr == "127.0.0.1:7373"
    assert config.relay.prefix == "dc1:"
    assert config.logging.normalized_level() == "DEBUG"


def test_local_config_is_found(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    local = tmp_path / ".keyring-relay" / "config.yaml"
    local.parent.mkdir()
    local.write_text("lan:\n  addr: 192.168.1.5:7373\n", encoding="utf-8")
    assert load_config().lan.host_port() == ("192.168.1.5", 7373)


def test_missing_explicit_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml")


@pytest.mark.parametrize(
    "body",
    [
        "wan:\n  addr: no-port\n",
        "wan:\n  addr: host:99999\n",
        "lan:\n  addr: 127.0.0.1:7373\n  timeout: -1\n",
        "relay:\n  prefix: ''\n",
    ],
)
def test_invalid_file_names_the_file(tmp_path: Path, body: str) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError) as excinfo:
        load_config(path)
    assert str(path) in str(excinfo.value)


def test_overrides_skip_unset_flags() -> None:
    config = apply_overrides(
        AppConfig(),
        {"wan.addr": "[::1]:8000", "lan.auth_key": "k", "relay.prefix": None, "lan.timeout": 1.0},
    )
    assert config.wan.host_port() == ("::1", 8000)
    assert config.lan.auth_key == "k"
    assert config.lan.timeout == 1.0
    assert config.relay.prefix == DEFAULT_PREFIX


def test_invalid_override() -> None:
    with pytest.raises(ConfigError):
        apply_overrides(AppConfig(), {"lan.addr": "nope"})


def test_split_addr() -> None:
    assert split_addr("localhost:7373") == ("localhost", 7373)
    assert split_addr("[fe80::1]:1") == ("fe80::1", 1)
    with pytest.raises(ValueError):
        split_addr(":7373")
    with pytest.raises(ValueError):
        TierConfig(addr="host:port")


def test_dump_default_config_round_trips(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "config.yaml"
    dump_default_config(target)
    assert load_config(target) == AppConfig()


def test_module_default_matches_fresh_config() -> None:
    assert DEFAULT_CONFIG == AppConfig()
    assert load_config.__module__ == "keyring_relay.config"
