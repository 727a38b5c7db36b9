# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/config/loader.py

import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from .models import TalosVMConfig

log = logging.getLogger("talosvm")

# env var -> (section, key)
ENV_OVERRIDES = {
    "TALOSVM_VM_HOST": ("vm", "host"),
    "TALOSVM_VM_USER": ("vm", "user"),
    "TALOSVM_VM_SSH_PRIVATE_KEY": ("vm", "ssh_private_key"),
    "TALOSVM_CLUSTER_STATE_DIR": ("cluster", "state_dir"),
}

HOME_PATHS = (
    ("vm", "ssh_private_key"),
    ("vm", "known_hosts_file"),
    ("cluster", "state_dir"),
    ("cluster", "mount_src"),
)


class ConfigError(ValueError):
    """Config could not be read, parsed or validated."""


def expand_home(path: str) -> str:
    """Expand a leading ``~`` or ``~/``; anything else is returned unchanged."""
    p = path.strip()
    if p == "~" or p.startswith("~/"):
        return os.path.expanduser(p)
    return path


def format_validation_error(e: ValidationError) -> str:
    msgs = []
    for err in e.errors():
        msg = str(err.get("msg", ""))
        # pydantic prefixes ValueError text with "Value error, "
        msg = msg.removeprefix("Value error, ")
        if err.get("type") != "value_error":
            loc = ".".join(str(x) for x in err.get("loc", ()))
            msg = f"{loc}: {msg}" if loc else msg
        msgs.append(msg)
    return "; ".join(msgs)


def _load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    try:
        raw = path.read_text()
    except OSError as e:
        raise ConfigError(f"read config {path}: {e}") from e
    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"parse config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"parse config {path}: top level must be a mapping")
    return data


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    for env, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env)
        if value:
            log.debug("config override from %s", env)
            sect = data.get(section)
            if not isinstance(sect, dict):
                sect = data[section] = {}
            sect[key] = value


def _expand_home_paths(data: Dict[str, Any]) -> None:
    for section, key in HOME_PATHS:
        sect = data.get(section)
        if isinstance(sect, dict) and isinstance(sect.get(key), str):
            sect[key] = expand_home(sect[key])


def validate_config(data: Dict[str, Any]) -> TalosVMConfig:
    try:
        return TalosVMConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(format_validation_error(e)) from e


def load_config(path: str | Path) -> TalosVMConfig:
    """
    Load and validate a bootstrap YAML config.

    ``${ENV_VAR}`` placeholders are resolved with ``os.path.expandvars``.
    Afterwards the ``TALOSVM_*`` variables override the matching keys, and
    ``~`` is expanded in the key, known_hosts, state and mount paths.
    """
    path = Path(path)
    data = _load_yaml(path)
    _apply_env_overrides(data)
    _expand_home_paths(data)
    return validate_config(data)
