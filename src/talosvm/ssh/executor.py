# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/ssh/executor.py

from __future__ import annotations

import logging
from typing import List, Optional

from talosvm.execution.runner import CommandRunner, Runner
from talosvm.ssh.errors import HostTrustError, RemoteCommandError, SSHError
from talosvm.ssh.known_hosts import HostTrustManager
from talosvm.ssh.models import HOST_KEY_ALGORITHM, ExecConfig, RemoteOutput, TrustMode
from talosvm.utils.execution import Deadline

log = logging.getLogger("talosvm")

SCRIPT_COMMAND = "sudo -n bash -s"
DEFAULT_CONNECT_TIMEOUT = 5

MAX_SUMMARY_LEN = 360
_PROGRESS_MARKERS = ("% Total", "Dload", "--:--:--")


def summarize_stderr(stderr: str) -> str:
    """
    Reduce ssh stderr to something that fits in one error line.
    curl progress meters are dropped; at most the last two lines survive.
    """
    lines = [
        ln.strip()
        for ln in stderr.splitlines()
        if ln.strip() and not any(m in ln for m in _PROGRESS_MARKERS)
    ]
    if not lines:
        summary = stderr.strip()
    elif len(lines) == 1:
        summary = lines[0]
    else:
        summary = " | ".join(lines[-2:])
    if len(summary) > MAX_SUMMARY_LEN:
        summary = summary[:MAX_SUMMARY_LEN] + "..."
    return summary


def is_host_key_changed(stderr: str) -> bool:
    s = stderr.lower()
    if "host key verification failed" not in s:
        return False
    return "host identification has changed" in s or "offending" in s


def build_ssh_args(cfg: ExecConfig, remote_command: str) -> List[str]:
    timeout = int(cfg.connect_timeout) if cfg.connect_timeout and cfg.connect_timeout > 0 else DEFAULT_CONNECT_TIMEOUT
    strict = "accept-new" if cfg.mode is TrustMode.ACCEPT_NEW else "yes"

    args = [
        "-o", "BatchMode=yes",
        "-o", "IdentitiesOnly=yes",
        "-o", f"HostKeyAlgorithms={HOST_KEY_ALGORITHM}",
        "-o", f"ConnectTimeout={timeout}",
        "-p", str(cfg.port),
        "-i", cfg.private_key_path,
        "-o", f"StrictHostKeyChecking={strict}",
    ]
    if cfg.known_hosts_file.strip():
        args += ["-o", f"UserKnownHostsFile={cfg.known_hosts_file}"]
    args += [f"{cfg.user}@{cfg.host}", remote_command]
    return args


class RemoteExecutor:
    """
    Runs commands and scripts on the VM through the local ``ssh`` binary.
    Host trust is settled before every invocation.
    """

    def __init__(
        self,
        runner: Optional[Runner] = None,
        trust: Optional[HostTrustManager] = None,
    ):
        self.runner = runner or CommandRunner(label="ssh")
        self.trust = trust or HostTrustManager()

    def run_script(
        self,
        cfg: ExecConfig,
        script: str,
        deadline: Optional[Deadline] = None,
        remote_command: str = SCRIPT_COMMAND,
    ) -> RemoteOutput:
        return self._run(cfg, remote_command, script, "ssh run script failed", deadline)

    def run_command(
        self,
        cfg: ExecConfig,
        remote_command: str,
        deadline: Optional[Deadline] = None,
    ) -> RemoteOutput:
        return self._run(cfg, remote_command, None, "ssh run command failed", deadline)

    def _run(
        self,
        cfg: ExecConfig,
        remote_command: str,
        stdin: Optional[str],
        prefix: str,
        deadline: Optional[Deadline],
    ) -> RemoteOutput:
        self.trust.ensure_trust(cfg, deadline)

        argv = ["ssh", *build_ssh_args(cfg, remote_command)]
        cp = self.runner.run(argv, input=stdin, deadline=deadline)
        if cp.returncode != 0 and self._should_refresh(cfg, cp.stderr or ""):
            if self._refresh(cfg, deadline):
                log.info("retrying on %s with refreshed host key", cfg.known_hosts_target)
                cp = self.runner.run(argv, input=stdin, deadline=deadline)

        stdout, stderr = cp.stdout or "", cp.stderr or ""
        if cp.returncode != 0:
            raise RemoteCommandError(
                prefix,
                cp.returncode,
                summarize_stderr(stderr),
                stdout=stdout,
                stderr=stderr,
            )
        return RemoteOutput(stdout=stdout, stderr=stderr)

    # ------------------ host key rotation ------------------

    def _should_refresh(self, cfg: ExecConfig, stderr: str) -> bool:
        if not cfg.known_hosts_file.strip():
            return False
        if not cfg.mode.recovers_mismatch:
            return False
        if not is_host_key_changed(stderr):
            return False

        if cfg.mode is TrustMode.PROMPT:
            if cfg.prompt is None:
                return False
            try:
                return bool(cfg.prompt("SSH host key changed. Accept new host key?"))
            except Exception as e:
                raise HostTrustError(f"known_hosts prompt failed: {e}") from e
        return True

    def _refresh(self, cfg: ExecConfig, deadline: Optional[Deadline]) -> bool:
        try:
            self.trust.refresh_entry(cfg, deadline)
        except SSHError as e:
            # the first ssh failure is what gets reported
            log.warning("known_hosts refresh for %s failed: %s", cfg.known_hosts_target, e)
            return False
        return True
