# src/talosvm/config/models.py

from __future__ import annotations

import re
from typing import List

from pydantic import BaseModel, Field, field_validator, model_validator

from talosvm.ssh.models import TrustMode

SAFE_VERSION_RE = re.compile(r"^[A-Za-z0-9._+-]+$")
SHA256_HEX_RE = re.compile(r"^[a-fA-F0-9]{64}$")
SSH_FINGERPRINT_RE = re.compile(r"^SHA256:[A-Za-z0-9+/]+$")


class VMConfig(BaseModel):
    host: str = ""
    port: int = 22
    user: str = ""
    ssh_private_key: str = ""
    known_hosts_file: str = ""
    known_hosts_mode: str = TrustMode.STRICT.value
    ssh_host_fingerprint: str = ""

    @field_validator("known_hosts_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v):
        # YAML reads bare yes/on/off as booleans
        mode = TrustMode.parse(v) if v is None or isinstance(v, str) else None
        if mode is None:
            raise ValueError("vm.known_hosts_mode must be one of: strict, prompt, accept-new, auto-refresh")
        return mode.value

    @model_validator(mode="after")
    def _check(self) -> "VMConfig":
        if not self.host.strip():
            raise ValueError("vm.host is required")
        if self.port <= 0 or self.port > 65535:
            raise ValueError("vm.port must be in range 1..65535")
        if not self.user.strip():
            raise ValueError("vm.user is required")
        key = self.ssh_private_key.strip()
        if not key:
            raise ValueError("vm.ssh_private_key is required")
        if key.lower().endswith(".pub"):
            raise ValueError("vm.ssh_private_key must point to a private key, not a .pub file")

        fp = self.ssh_host_fingerprint.strip()
        if fp:
            if not SSH_FINGERPRINT_RE.match(fp):
                raise ValueError("vm.ssh_host_fingerprint must be in SHA256:... format")
            if not self.known_hosts_file.strip():
                raise ValueError("vm.known_hosts_file is required when vm.ssh_host_fingerprint is set")
        mode = TrustMode.normalize(self.known_hosts_mode)
        if mode.recovers_mismatch and not self.known_hosts_file.strip():
            raise ValueError(f"vm.known_hosts_file is required when vm.known_hosts_mode is {mode.value}")
        return self


class HardeningConfig(BaseModel):
    enabled: bool = True
    allow_password_ssh: bool = False
    enable_ufw: bool = True
    allow_tcp_ports: List[int] = Field(default_factory=lambda: [22])

    @field_validator("allow_tcp_ports")
    @classmethod
    def _ports_in_range(cls, ports: List[int]) -> List[int]:
        for p in ports:
            if p <= 0 or p > 65535:
                raise ValueError(f"hardening.allow_tcp_ports entries must be in range 1..65535 (got {p})")
        return ports


class DockerConfig(BaseModel):
    version: str = ""

    @model_validator(mode="after")
    def _check(self) -> "DockerConfig":
        if not self.version.strip():
            raise ValueError("docker.version is required")
        if not SAFE_VERSION_RE.match(self.version):
            raise ValueError("docker.version has invalid characters")
        return self


class TalosConfig(BaseModel):
    version: str = ""
    sha256_checksum: str = ""

    @model_validator(mode="after")
    def _check(self) -> "TalosConfig":
        if not self.version.strip():
            raise ValueError("talos.version is required")
        if not SAFE_VERSION_RE.match(self.version):
            raise ValueError("talos.version has invalid characters")
        if not self.sha256_checksum.strip():
            raise ValueError("talos.sha256_checksum is required")
        if not SHA256_HEX_RE.match(self.sha256_checksum):
            raise ValueError("talos.sha256_checksum must be a valid SHA256 hex digest")
        return self


class ClusterConfig(BaseModel):
    name: str = ""
    state_dir: str = ""
    mount_src: str = ""
    mount_dst: str = ""

    @model_validator(mode="after")
    def _check(self) -> "ClusterConfig":
        for field in ("name", "state_dir", "mount_src", "mount_dst"):
            if not getattr(self, field).strip():
                raise ValueError(f"cluster.{field} is required")
        return self

    @property
    def kubeconfig_path(self) -> str:
        return self.state_dir.rstrip("/") + "/kubeconfig"


class TimeoutsConfig(BaseModel):
    ssh_connect_seconds: int = 5
    ssh_retries: int = 12
    ssh_retry_delay_seconds: int = 10
    total_minutes: int = 20

    @model_validator(mode="after")
    def _check(self) -> "TimeoutsConfig":
        for field in ("ssh_connect_seconds", "ssh_retries", "ssh_retry_delay_seconds", "total_minutes"):
            if getattr(self, field) <= 0:
                raise ValueError(f"timeouts.{field} must be > 0")
        return self

    @property
    def total_seconds(self) -> float:
        return float(self.total_minutes * 60)


class TalosVMConfig(BaseModel):
    """Root of the bootstrap YAML config."""

    vm: VMConfig = Field(default_factory=dict, validate_default=True)
    hardening: HardeningConfig = Field(default_factory=dict, validate_default=True)
    docker: DockerConfig = Field(default_factory=dict, validate_default=True)
    talos: TalosConfig = Field(default_factory=dict, validate_default=True)
    cluster: ClusterConfig = Field(default_factory=dict, validate_default=True)
    timeouts: TimeoutsConfig = Field(default_factory=dict, validate_default=True)
