# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/ssh/known_hosts.py

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Protocol

import paramiko

from talosvm.execution.runner import CommandRunner, Runner
from talosvm.ssh.errors import (
    HostKeyMismatchError,
    HostKeyScanError,
    HostKeyUnstableError,
    HostTrustError,
)
from talosvm.ssh.models import KEYSCAN_TYPE, ExecConfig, HostIdentity, IdentityScan, TrustMode
from talosvm.utils.execution import Deadline, DeadlineExceeded

log = logging.getLogger("talosvm")

# Pause between the two scans of the stabilization check.
STABILIZE_DELAY = 0.8


def fingerprint_sha256(key_blob: bytes) -> str:
    """OpenSSH-style fingerprint: SHA256:<unpadded base64 of sha256(blob)>."""
    digest = hashlib.sha256(key_blob).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def parse_keyscan_line(line: str) -> Optional[HostIdentity]:
    """
    Parse one ``ssh-keyscan`` output line (``host keytype keydata``).
    Returns None for comments, short lines and keys paramiko cannot load.
    """
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    fields = line.split()
    if len(fields) < 3:
        return None
    key_type, key_data = fields[1], fields[2]
    try:
        blob = base64.b64decode(key_data, validate=True)
    except (binascii.Error, ValueError):
        return None
    try:
        paramiko.PKey.from_type_string(key_type, blob)
    except Exception:
        # unknown type or malformed blob; such lines are skipped
        log.debug("skipping unparseable %s key from ssh-keyscan", key_type)
        return None
    return HostIdentity(
        fingerprint=fingerprint_sha256(blob),
        raw_entry=line + "\n",
        key_line=f"{key_type} {key_data}",
    )


def parse_keyscan_output(output: str, target: str) -> IdentityScan:
    by_fp: Dict[str, HostIdentity] = {}
    primary: Optional[HostIdentity] = None
    for line in output.splitlines():
        ident = parse_keyscan_line(line)
        if ident is None:
            continue
        by_fp[ident.fingerprint] = ident
        if primary is None:
            primary = ident
    if primary is None:
        raise HostKeyScanError(f"no valid host key found for {target}")
    return IdentityScan(primary=primary, by_fingerprint=by_fp)


class Scanner(Protocol):
    def scan(self, cfg: ExecConfig, deadline: Optional[Deadline] = None) -> IdentityScan: ...


class KeyscanScanner:
    """Discovers host identity keys with ``ssh-keyscan -H -t ed25519``."""

    def __init__(self, runner: Optional[Runner] = None):
        self.runner = runner or CommandRunner(label="ssh-keyscan")

    def scan(self, cfg: ExecConfig, deadline: Optional[Deadline] = None) -> IdentityScan:
        target = cfg.known_hosts_target
        argv = ["ssh-keyscan", "-H", "-t", KEYSCAN_TYPE, *cfg.keyscan_args()]
        cp = self.runner.run(argv, deadline=deadline)
        if cp.returncode != 0:
            detail = (cp.stderr or "").strip() or f"exit status {cp.returncode}"
            raise HostKeyScanError(f"ssh-keyscan {target}: {detail}")
        return parse_keyscan_output(cp.stdout or "", target)


class HostTrustManager:
    """
    Decides whether a host's presented identity is acceptable and keeps the
    known_hosts file in line with that decision.
    """

    def __init__(
        self,
        scanner: Optional[Scanner] = None,
        runner: Optional[Runner] = None,
        stabilize_delay: float = STABILIZE_DELAY,
    ):
        self.runner = runner or CommandRunner(label="ssh-keygen")
        self.scanner = scanner or KeyscanScanner(self.runner)
        self.stabilize_delay = stabilize_delay

    # ------------------ scanning ------------------

    def scan(self, cfg: ExecConfig, deadline: Optional[Deadline] = None) -> IdentityScan:
        return self.scanner.scan(cfg, deadline)

    def scan_fingerprint(self, host: str, port: int = 22, deadline: Optional[Deadline] = None) -> str:
        if not host.strip():
            raise HostKeyScanError("host is empty")
        return self.scan(ExecConfig(host=host, port=port), deadline).fingerprint

    # ------------------ trust decisions ------------------

    def ensure_trust(self, cfg: ExecConfig, deadline: Optional[Deadline] = None) -> None:
        expected = cfg.expected_fingerprint.strip()
        if not expected:
            return
        if not cfg.known_hosts_file.strip():
            raise HostTrustError("known_hosts_file is required when expected host fingerprint is set")

        scan = self.scan(cfg, deadline)
        pinned = scan.find(expected)
        if pinned is not None:
            self.write_entry(cfg, pinned.raw_entry)
            return

        observed = scan.fingerprint
        mode = cfg.mode
        if not mode.recovers_mismatch:
            raise HostKeyMismatchError(expected, observed)

        if mode is TrustMode.PROMPT:
            if cfg.prompt is None:
                raise HostKeyMismatchError(expected, observed)
            try:
                allow = cfg.prompt(
                    f"SSH host key changed (expected {expected}, got {observed}). Accept new host key?"
                )
            except Exception as e:
                raise HostTrustError(f"known_hosts prompt failed: {e}") from e
            if not allow:
                raise HostKeyMismatchError(expected, observed)

        log.info(
            "host key for %s differs from pinned fingerprint; verifying stability before trusting",
            cfg.known_hosts_target,
        )
        stable = self._ensure_stable(cfg, scan.primary, deadline)
        self.write_entry(cfg, stable.raw_entry)

    def _ensure_stable(
        self,
        cfg: ExecConfig,
        first: HostIdentity,
        deadline: Optional[Deadline],
    ) -> HostIdentity:
        """Rescan after a short pause; refuse a key that is still rotating."""
        deadline = deadline or Deadline()
        if deadline.wait(self.stabilize_delay):
            raise DeadlineExceeded(deadline.reason())

        second = self.scan(cfg, deadline).primary
        if not first.fingerprint.strip() or not second.fingerprint.strip():
            raise HostKeyScanError("ssh host fingerprint scan returned empty value")
        if first.fingerprint != second.fingerprint:
            raise HostKeyUnstableError(first.fingerprint, second.fingerprint)
        if not second.raw_entry.strip():
            raise HostKeyScanError("ssh host key entry is empty after verification")
        return second

    # ------------------ trust store ------------------

    def forget(self, cfg: ExecConfig, known_hosts: str, deadline: Optional[Deadline] = None) -> None:
        # best-effort: the entry may not exist
        cp = self.runner.run(
            ["ssh-keygen", "-f", known_hosts, "-R", cfg.known_hosts_target],
            deadline=deadline,
        )
        if cp.returncode != 0:
            log.debug("ssh-keygen -R %s: %s", cfg.known_hosts_target, (cp.stderr or "").strip())

    def write_entry(self, cfg: ExecConfig, raw_entry: str, deadline: Optional[Deadline] = None) -> None:
        known_hosts = cfg.known_hosts_file.strip()
        if not known_hosts:
            raise HostTrustError("known_hosts path is empty")
        _ensure_parent(known_hosts)
        self.forget(cfg, known_hosts, deadline)
        _append(known_hosts, raw_entry if raw_entry.endswith("\n") else raw_entry + "\n")
        log.debug("trusted host key for %s in %s", cfg.known_hosts_target, known_hosts)

    def refresh_entry(self, cfg: ExecConfig, deadline: Optional[Deadline] = None) -> None:
        """
        Replace the stored key with whatever the host presents now.
        No stabilization check: this path is for a known host whose key rotated.
        """
        host = cfg.host.strip()
        known_hosts = cfg.known_hosts_file.strip()
        if not host or not known_hosts:
            raise HostTrustError("known_hosts refresh requires host and known_hosts path")
        _ensure_parent(known_hosts)
        self.forget(cfg, known_hosts, deadline)
        scan = self.scan(cfg, deadline)
        _append(known_hosts, "".join(i.raw_entry for i in scan.by_fingerprint.values()))


def _ensure_parent(path: str) -> None:
    parent = Path(path).parent
    try:
        parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    except OSError as e:
        raise HostTrustError(f"create known_hosts dir: {e}") from e


def _append(path: str, data: str) -> None:
    try:
        fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(data)
    except OSError as e:
        raise HostTrustError(f"append known_hosts {path}: {e}") from e
