"""Persisted configuration management."""

from __future__ import annotations

import json
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

from .connectivity import build_base_url
from .errors import ConfigError
from .models import Config

APP_DIR = Path.home() / ".fluency"
CONFIG_PATH = (APP_DIR / "config.json").expanduser()

__all__ = ["CONFIG_PATH", "ConfigError", "load_config", "save_config", "update_config"]


def load_config() -> Config:
    if not CONFIG_PATH.exists():
        return Config()
    try:
        payload = json.loads(CONFIG_PATH.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
    known = {f.name for f in fields(Config)}
    return Config(**{k: v for k, v in payload.items() if k in known})


def save_config(config: Config) -> None:
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    data = {k: v for k, v in asdict(config).items() if v is not None}
    CONFIG_PATH.write_text(json.dumps(data, indent=2))


def update_config(**kwargs: Any) -> Config:
    config = load_config()
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ConfigError(f"Unknown configuration key: {key}")
    if config.server_address is not None and not config.server_address.strip():
        config.server_address = None
    if config.server_address is not None:
        try:
            build_base_url(config.server_address)
        except ValueError as exc:
            raise ConfigError(f"Invalid server address: {config.server_address}") from exc
    save_config(config)
    return config
