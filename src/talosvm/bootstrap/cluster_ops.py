# src/talosvm/bootstrap/cluster_ops.py

from __future__ import annotations

import logging
from typing import Optional

from talosvm.config.models import TalosVMConfig
from talosvm.ssh.executor import RemoteExecutor
from talosvm.ssh.models import PromptFn
from talosvm.utils.execution import Deadline

from .errors import UserError
from .scripts import ScriptRenderer, cluster_params
from .steps import build_exec_config

log = logging.getLogger("talosvm")

NO_CLUSTER_MARKER = "No Talos-in-Docker cluster found on remote VM."


class ClusterOps:
    """Read-mostly operations against an already bootstrapped VM."""

    def __init__(
        self,
        executor: Optional[RemoteExecutor] = None,
        renderer: Optional[ScriptRenderer] = None,
        prompt: Optional[PromptFn] = None,
    ):
        self.executor = executor or RemoteExecutor()
        self.renderer = renderer or ScriptRenderer()
        self.prompt = prompt

    def _run(self, cfg: TalosVMConfig, op: str, script: str, deadline: Optional[Deadline]) -> str:
        out = self.executor.run_script(build_exec_config(cfg, self.prompt), script, deadline)
        if out.stderr.strip():
            log.debug("%s stderr: %s", op, out.stderr.strip())
        return out.stdout

    def cluster_status(self, cfg: TalosVMConfig, deadline: Optional[Deadline] = None) -> str:
        script = self.renderer.cluster_status(cluster_params(cfg))
        return self._run(cfg, "cluster_status", script, deadline).strip()

    def kubeconfig_export(self, cfg: TalosVMConfig, deadline: Optional[Deadline] = None) -> str:
        """Return the remote kubeconfig, regenerating it first when missing."""
        script = self.renderer.kubeconfig_export(cluster_params(cfg))
        return self._run(cfg, "kubeconfig_export", script, deadline)

    def mount_check(self, cfg: TalosVMConfig, deadline: Optional[Deadline] = None) -> str:
        script = self.renderer.mount_check(cluster_params(cfg))
        return self._run(cfg, "mount_check", script, deadline).strip()


def explain_cluster_error(err: Exception, cfg: TalosVMConfig) -> Exception:
    """Map well-known remote failures to a UserError with a next step."""
    msg = str(err)
    if NO_CLUSTER_MARKER in msg:
        return UserError(
            f"no remote Talos cluster found on {cfg.vm.host}",
            hint="Run: talosvm bootstrap --config <config>",
        )
    if "exit status 255" in msg:
        return UserError(
            f"ssh connection to {cfg.vm.user}@{cfg.vm.host}:{cfg.vm.port} failed",
            hint="Verify VM reachability and credentials, then run: talosvm bootstrap --config <config>",
        )
    return err
