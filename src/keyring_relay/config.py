"""Configuration loading utilities for keyring-relay."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError
from .paths import local_config_path, runtime_config_dir

DEFAULT_PREFIX = "ether:"


class TierConfig(BaseModel):
    """Connection settings for one Serf agent RPC endpoint."""

    addr: str = Field(description="Agent RPC address as host:port")
    auth_key: str = Field(default="", description="The RPC auth key")
    timeout: float = Field(default=0.0, ge=0, description="RPC timeout in seconds, 0 disables it")

    @field_validator("addr")
    @classmethod
    def _validate_addr(cls, value: str) -> str:
        host, port = split_addr(value)
        if ":" in host:
            return f"[{host}]:{port}"
        return f"{host}:{port}"

    def host_port(self) -> tuple[str, int]:
        return split_addr(self.addr)


class RelaySettings(BaseModel):
    prefix: str = Field(default=DEFAULT_PREFIX, description="The serf event prefix")

    @field_validator("prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        if not value:
            raise ValueError("prefix must not be empty")
        return value


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", description="Logging verbosity level")

    def normalized_level(self) -> str:
        return self.level.upper()


class AppConfig(BaseModel):
    wan: TierConfig = Field(default_factory=lambda: TierConfig(addr="127.0.0.1:7374"))
    lan: TierConfig = Field(default_factory=lambda: TierConfig(addr="127.0.0.1:7373"))
    relay: RelaySettings = Field(default_factory=RelaySettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def split_addr(value: str) -> tuple[str, int]:
    """Split ``host:port`` (``[v6]:port`` accepted) into its parts."""

    host, sep, port_text = value.strip().rpartition(":")
    if not sep or not host:
        raise ValueError(f"Address '{value}' must be host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Address '{value}' has a non-numeric port") from None
    if not 1 <= port <= 65535:
        raise ValueError(f"Address '{value}' has an out of range port")
    return host, port


DEFAULT_CONFIG = AppConfig()


def config_search_paths(explicit: Optional[Path] = None) -> Iterable[Path]:
    if explicit:
        yield explicit
    yield local_config_path()
    yield runtime_config_dir() / "config.yaml"


def load_config(path: Optional[Path] = None) -> AppConfig:
    if path is not None and not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")
    for candidate in config_search_paths(path):
        if candidate.is_file():
            with candidate.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
            try:
                return AppConfig.model_validate(data)
            except ValidationError as exc:
                raise ConfigError(f"Invalid configuration in {candidate}: {exc}") from exc
    return DEFAULT_CONFIG.model_copy(deep=True)


def apply_overrides(config: AppConfig, overrides: Mapping[str, Any]) -> AppConfig:
    """Return a copy of ``config`` with dotted-path overrides applied.

    ``None`` values are skipped so unset command line flags keep the file value,
    e.g. ``{"wan.addr": "10.0.0.1:7374", "relay.prefix": None}``.
    """

    data = config.model_dump()
    for dotted, value in overrides.items():
        if value is None:
            continue
        section, _, key = dotted.partition(".")
        data.setdefault(section, {})[key] = value
    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid command line override: {exc}") from exc


def dump_default_config(target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(DEFAULT_CONFIG.model_dump(mode="json"), handle, sort_keys=False)


__all__ = [
    "AppConfig",
    "TierConfig",
    "RelaySettings",
    "LoggingConfig",
    "DEFAULT_CONFIG",
    "DEFAULT_PREFIX",
    "split_addr",
    "config_search_paths",
    "load_config",
    "apply_overrides",
    "dump_default_config",
]
