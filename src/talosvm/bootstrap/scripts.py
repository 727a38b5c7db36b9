# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/bootstrap/scripts.py

from __future__ import annotations

import re
import shlex
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from talosvm.config.models import TalosVMConfig

from .errors import ScriptParameterError

TEMPLATES_DIR = Path(__file__).parent / "templates"

VERSION_RE = re.compile(r"^[A-Za-z0-9._+-]+$")
SHA256_RE = re.compile(r"^[a-f0-9]{64}$")
USER_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
CLUSTER_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
ABS_PATH_RE = re.compile(r"^/[A-Za-z0-9._/@+-]*$")


def _require(name: str, value: str, pattern: re.Pattern) -> None:
    if not pattern.match(value):
        raise ScriptParameterError(f"{name} has invalid value: {value!r}")


@dataclass(frozen=True)
class HardeningParams:
    allow_password_ssh: bool = False
    enable_ufw: bool = True
    allow_tcp_ports: List[int] = field(default_factory=lambda: [22])

    def context(self) -> Dict[str, Any]:
        for p in self.allow_tcp_ports:
            if not isinstance(p, int) or isinstance(p, bool) or not 0 < p <= 65535:
                raise ScriptParameterError(f"allow_tcp_ports has invalid value: {p!r}")
        return {
            "password_auth": "yes" if self.allow_password_ssh else "no",
            "enable_ufw": "true" if self.enable_ufw else "false",
            "allow_tcp_ports": list(self.allow_tcp_ports),
        }


@dataclass(frozen=True)
class DockerParams:
    version: str
    user: str

    def context(self) -> Dict[str, Any]:
        _require("docker.version", self.version, VERSION_RE)
        _require("vm.user", self.user, USER_RE)
        return asdict(self)


@dataclass(frozen=True)
class TalosctlParams:
    version: str
    sha256: str

    def context(self) -> Dict[str, Any]:
        sha = self.sha256.lower()
        _require("talos.version", self.version, VERSION_RE)
        _require("talos.sha256_checksum", sha, SHA256_RE)
        return {"version": self.version, "sha256": sha}


@dataclass(frozen=True)
class ClusterParams:
    user: str
    cluster_name: str
    state_dir: str
    mount_src: str
    mount_dst: str

    def context(self) -> Dict[str, Any]:
        _require("vm.user", self.user, USER_RE)
        _require("cluster.name", self.cluster_name, CLUSTER_NAME_RE)
        _require("cluster.state_dir", self.state_dir, ABS_PATH_RE)
        _require("cluster.mount_src", self.mount_src, ABS_PATH_RE)
        _require("cluster.mount_dst", self.mount_dst, ABS_PATH_RE)
        return asdict(self)


class ScriptRenderer:
    """Renders the remote bash scripts shipped under ``templates/``."""

    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
        )
        # every interpolated value goes through shquote in the templates
        self.env.filters["shquote"] = lambda v: shlex.quote(str(v))

    def render(self, template_name: str, params) -> str:
        tmpl = self.env.get_template(template_name)
        return tmpl.render(**params.context())

    def os_hardening(self, params: HardeningParams) -> str:
        return self.render("os_hardening.sh.j2", params)

    def docker_install(self, params: DockerParams) -> str:
        return self.render("docker_install.sh.j2", params)

    def talosctl_install(self, params: TalosctlParams) -> str:
        return self.render("talosctl_install.sh.j2", params)

    def cluster_create(self, params: ClusterParams) -> str:
        return self.render("cluster_create.sh.j2", params)

    def cluster_status(self, params: ClusterParams) -> str:
        return self.render("cluster_status.sh.j2", params)

    def kubeconfig_export(self, params: ClusterParams) -> str:
        return self.render("kubeconfig_export.sh.j2", params)

    def mount_check(self, params: ClusterParams) -> str:
        return self.render("mount_check.sh.j2", params)


# ------------------ config -> params ------------------

def hardening_params(cfg: TalosVMConfig) -> HardeningParams:
    h = cfg.hardening
    return HardeningParams(
        allow_password_ssh=h.allow_password_ssh,
        enable_ufw=h.enable_ufw,
        allow_tcp_ports=list(h.allow_tcp_ports),
    )


def docker_params(cfg: TalosVMConfig) -> DockerParams:
    return DockerParams(version=cfg.docker.version, user=cfg.vm.user)


def talosctl_params(cfg: TalosVMConfig) -> TalosctlParams:
    return TalosctlParams(version=cfg.talos.version, sha256=cfg.talos.sha256_checksum)


def cluster_params(cfg: TalosVMConfig) -> ClusterParams:
    c = cfg.cluster
    return ClusterParams(
        user=cfg.vm.user,
        cluster_name=c.name,
        state_dir=c.state_dir,
        mount_src=c.mount_src,
        mount_dst=c.mount_dst,
    )
