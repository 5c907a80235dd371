"""Deployment settings: frozen dataclasses loaded from YAML.

String values may reference the environment as ``${NAME}`` or
``${NAME:-fallback}``; an unset variable without a fallback is an error.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")


def _expand(value: Any) -> Any:
    """Substitute environment references in every string of a YAML tree."""
    if isinstance(value, dict):
        return {key: _expand(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item) for item in value]
    if not isinstance(value, str):
        return value

    def _lookup(match: re.Match) -> str:
        name, fallback = match.group("name"), match.group("fallback")
        resolved = os.environ.get(name, fallback)
        if resolved is None:
            raise ConfigError(f"Environment variable '{name}' is not set")
        return resolved

    return _ENV_REF.sub(_lookup, value)


@dataclass(frozen=True)
class AzureConfig:
    subscription_id: str = ""
    resource_group: str = ""
    storage_account: str = ""
    virtual_network: str = ""
    subnet: str = "default"
    credential_type: str = "default"  # "default" uses DefaultAzureCredential, "cli" uses AzureCliCredential


@dataclass(frozen=True)
class ImagesConfig:
    family: str = "*WindowsServer 2022-datacenter*"
    publisher: str = ""  # wildcard, e.g. "Microsoft*"; empty means any publisher
    publishers: list[str] = field(default_factory=lambda: ["MicrosoftWindowsServer", "Canonical"])


@dataclass(frozen=True)
class AdminConfig:
    username: str = "azureuser"
    password: str = ""  # empty prompts interactively


@dataclass(frozen=True)
class ProvisioningConfig:
    default_instance_count: int = 6
    direct_port_base: int = 30000
    boot_poll_seconds: int = 10
    boot_timeout_seconds: int = 900


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"  # "json" or "text"


@dataclass(frozen=True)
class AppConfig:
    azure: AzureConfig = field(default_factory=AzureConfig)
    images: ImagesConfig = field(default_factory=ImagesConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    provisioning: ProvisioningConfig = field(default_factory=ProvisioningConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTIONS = {
    "azure": AzureConfig,
    "images": ImagesConfig,
    "admin": AdminConfig,
    "provisioning": ProvisioningConfig,
    "logging": LoggingConfig,
}


def _section(name: str, cls: type, data: Any) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    try:
        return cls(**{key: value for key, value in data.items() if key in known})
    except TypeError as exc:
        raise ConfigError(f"Invalid '{name}' section: {exc}") from exc


def load_config(path: str | Path) -> AppConfig:
    """Read, expand, and validate a configuration file. Unknown keys are ignored."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must be a YAML mapping")

    raw = _expand(raw)
    config = AppConfig(**{name: _section(name, cls, raw.get(name)) for name, cls in _SECTIONS.items()})
    _validate(config)
    return config


def _validate(config: AppConfig) -> None:
    """Validate configuration values."""
    if not config.azure.subscription_id:
        raise ConfigError("azure.subscription_id is required")

    if not config.azure.resource_group:
        raise ConfigError("azure.resource_group is required")

    if not config.azure.storage_account:
        raise ConfigError("azure.storage_account is required")

    if config.azure.credential_type not in ("default", "cli"):
        raise ConfigError("azure.credential_type must be 'default' or 'cli'")

    if not config.images.family:
        raise ConfigError("images.family must not be empty")

    if config.provisioning.default_instance_count < 1:
        raise ConfigError("provisioning.default_instance_count must be >= 1")

    if not 1024 <= config.provisioning.direct_port_base <= 65000:
        raise ConfigError("provisioning.direct_port_base must be between 1024 and 65000")

    if config.provisioning.boot_poll_seconds < 1:
        raise ConfigError("provisioning.boot_poll_seconds must be >= 1")

    if config.logging.format not in ("json", "text"):
        raise ConfigError("logging.format must be 'json' or 'text'")
