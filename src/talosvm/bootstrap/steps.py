# src/talosvm/bootstrap/steps.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from talosvm.config.models import TalosVMConfig
from talosvm.ssh.executor import RemoteExecutor
from talosvm.ssh.models import ExecConfig, PromptFn, RemoteOutput
from talosvm.utils.execution import Deadline

from .scripts import (
    ScriptRenderer,
    cluster_params,
    docker_params,
    hardening_params,
    talosctl_params,
)

log = logging.getLogger("talosvm")


@dataclass(frozen=True)
class StepSpec:
    name: str
    description: str


SSH_CONNECTIVITY = StepSpec("ssh_connectivity", "Check SSH TCP reachability")
OS_HARDENING = StepSpec("os_hardening", "Apply idempotent OS hardening baseline")
DOCKER_INSTALL = StepSpec("docker_install", "Install pinned Docker version")
TALOSCTL_INSTALL = StepSpec("talosctl_install", "Install pinned talosctl and verify checksum")
CLUSTER_CREATE = StepSpec("cluster_create", "Create Talos-in-Docker cluster if missing")

STEPS: List[StepSpec] = [
    SSH_CONNECTIVITY,
    OS_HARDENING,
    DOCKER_INSTALL,
    TALOSCTL_INSTALL,
    CLUSTER_CREATE,
]


def build_exec_config(cfg: TalosVMConfig, prompt: Optional[PromptFn] = None) -> ExecConfig:
    vm = cfg.vm
    return ExecConfig(
        host=vm.host,
        port=vm.port,
        user=vm.user,
        private_key_path=vm.ssh_private_key,
        known_hosts_file=vm.known_hosts_file,
        known_hosts_mode=vm.known_hosts_mode,
        expected_fingerprint=vm.ssh_host_fingerprint,
        prompt=prompt,
        connect_timeout=float(cfg.timeouts.ssh_connect_seconds),
    )


class StepActions(Protocol):
    """The remote half of each bootstrap step after connectivity."""

    def os_hardening(self, cfg: TalosVMConfig, deadline: Deadline) -> None: ...
    def docker_install(self, cfg: TalosVMConfig, deadline: Deadline) -> None: ...
    def talosctl_install(self, cfg: TalosVMConfig, deadline: Deadline) -> None: ...
    def cluster_create(self, cfg: TalosVMConfig, deadline: Deadline) -> None: ...


class RemoteStepActions:
    """StepActions that render a script and pipe it to ``sudo -n bash -s``."""

    def __init__(
        self,
        executor: Optional[RemoteExecutor] = None,
        renderer: Optional[ScriptRenderer] = None,
        prompt: Optional[PromptFn] = None,
    ):
        self.executor = executor or RemoteExecutor()
        self.renderer = renderer or ScriptRenderer()
        self.prompt = prompt

    def _run(self, cfg: TalosVMConfig, step: str, script: str, deadline: Deadline) -> RemoteOutput:
        out = self.executor.run_script(build_exec_config(cfg, self.prompt), script, deadline)
        if out.stdout.strip():
            log.debug("%s stdout: %s", step, out.stdout.strip())
        if out.stderr.strip():
            log.debug("%s stderr: %s", step, out.stderr.strip())
        return out

    def os_hardening(self, cfg: TalosVMConfig, deadline: Deadline) -> None:
        if not cfg.hardening.enabled:
            log.info("os_hardening disabled by config")
            return
        self._run(cfg, OS_HARDENING.name, self.renderer.os_hardening(hardening_params(cfg)), deadline)

    def docker_install(self, cfg: TalosVMConfig, deadline: Deadline) -> None:
        self._run(cfg, DOCKER_INSTALL.name, self.renderer.docker_install(docker_params(cfg)), deadline)

    def talosctl_install(self, cfg: TalosVMConfig, deadline: Deadline) -> None:
        self._run(cfg, TALOSCTL_INSTALL.name, self.renderer.talosctl_install(talosctl_params(cfg)), deadline)

    def cluster_create(self, cfg: TalosVMConfig, deadline: Deadline) -> None:
        self._run(cfg, CLUSTER_CREATE.name, self.renderer.cluster_create(cluster_params(cfg)), deadline)
