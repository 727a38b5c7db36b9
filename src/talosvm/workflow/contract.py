# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/workflow/contract.py

from __future__ import annotations

import json
import logging
import os
import subprocess
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import BaseModel, ValidationError

from talosvm.config.loader import ConfigError, format_validation_error, validate_config
from talosvm.config.models import TalosVMConfig

log = logging.getLogger("talosvm")


class ContractError(RuntimeError):
    """Bootstrap contract could not be read, validated or written."""


class BootstrapContract(BaseModel):
    """
    Connection facts for a freshly created VM, handed over by the VM
    creation step. Connection fields here win over the bootstrap config.
    """

    vm_name: str = ""
    ip: str = ""
    ssh_user: str = ""
    ssh_key_path: str = ""
    ssh_port: int = 22
    ssh_host_fingerprint: str = ""

    def validate_required(self) -> "BootstrapContract":
        for field in ("vm_name", "ip", "ssh_user", "ssh_key_path"):
            if not getattr(self, field).strip():
                raise ContractError(f"bootstrap result: {field} is required")
        if self.ssh_port <= 0:
            self.ssh_port = 22
        if self.ssh_port > 65535:
            raise ContractError("bootstrap result: ssh_port must be in range 1..65535")
        return self


def _is_json(path: Path) -> bool:
    return path.suffix.lower() == ".json"


def load_bootstrap_contract(path: str | Path) -> BootstrapContract:
    path = Path(path)
    try:
        raw = path.read_text()
    except OSError as e:
        raise ContractError(f"read bootstrap result {path}: {e}") from e
    try:
        data = json.loads(raw) if _is_json(path) else (yaml.safe_load(raw) or {})
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ContractError(f"parse bootstrap result {path}: {e}") from e
    if not isinstance(data, dict):
        raise ContractError(f"parse bootstrap result {path}: top level must be a mapping")
    try:
        contract = BootstrapContract.model_validate(data)
    except ValidationError as e:
        raise ContractError(f"parse bootstrap result {path}: {format_validation_error(e)}") from e
    return contract.validate_required()


def save_bootstrap_contract(path: str | Path, contract: BootstrapContract) -> None:
    """Rewrite the whole contract file (JSON for .json, YAML otherwise)."""
    path = Path(path)
    contract.validate_required()
    data = contract.model_dump()
    text = json.dumps(data, indent=2) + "\n" if _is_json(path) else yaml.safe_dump(data, sort_keys=False)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    except OSError as e:
        raise ContractError(f"write bootstrap result {path}: {e}") from e


# ------------------ VM creation config import ------------------

def _read_vm_config(path: str) -> str:
    if ".sops." in path.lower():
        try:
            cp = subprocess.run(["sops", "-d", path], capture_output=True, text=True, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            detail = getattr(e, "stderr", "") or str(e)
            raise ContractError(f"decrypt vm config {path}: {detail.strip()}") from e
        return cp.stdout.strip()
    try:
        return Path(path).read_text()
    except OSError as e:
        raise ContractError(f"read vm config {path}: {e}") from e


def resolve_ssh_private_key_path(path: str) -> str:
    """
    Normalise a key path from a VM config: expand ``~``, make absolute,
    and swap a ``.pub`` path for its private sibling when that exists.
    """
    p = path.strip()
    if not p:
        return ""
    p = os.path.abspath(os.path.expanduser(p))
    if p.lower().endswith(".pub"):
        priv = p[: -len(".pub")]
        if os.path.isfile(priv):
            return priv
    return p


def load_contract_from_vm_config(path: str) -> BootstrapContract:
    raw = _read_vm_config(path)
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise ContractError(f"parse vm config {path}: {e}") from e
    vm: Dict[str, Any] = (data.get("vm") if isinstance(data, dict) else None) or {}

    try:
        ssh_port = int(vm.get("ssh_port") or 22)
    except (TypeError, ValueError) as e:
        raise ContractError(f"parse vm config {path}: ssh_port must be a number, got {vm.get('ssh_port')!r}") from e

    contract = BootstrapContract(
        vm_name=str(vm.get("name") or "").strip(),
        ip=str(vm.get("ip_address") or "").strip(),
        ssh_user=str(vm.get("username") or "").strip(),
        ssh_key_path=resolve_ssh_private_key_path(str(vm.get("ssh_key_path") or "")),
        ssh_port=ssh_port,
        ssh_host_fingerprint=str(vm.get("ssh_host_fingerprint") or "").strip(),
    )
    return contract.validate_required()


# ------------------ merge ------------------

def merge_contract_into_config(cfg: TalosVMConfig, contract: BootstrapContract) -> TalosVMConfig:
    """Apply contract connection fields onto a copy of ``cfg`` and re-validate."""
    contract.validate_required()

    data = cfg.model_dump()
    vm = data["vm"]
    vm["host"] = contract.ip
    vm["user"] = contract.ssh_user
    vm["ssh_private_key"] = contract.ssh_key_path
    if contract.ssh_port > 0:
        vm["port"] = contract.ssh_port
    if contract.ssh_host_fingerprint.strip():
        vm["ssh_host_fingerprint"] = contract.ssh_host_fingerprint

    try:
        return validate_config(data)
    except ConfigError as e:
        raise ContractError(f"merged config invalid: {e}") from e
