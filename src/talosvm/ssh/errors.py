# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/ssh/errors.py

from __future__ import annotations


class SSHError(RuntimeError):
    """Base class for remote trust and execution failures."""


class ConnectivityError(SSHError):
    """TCP reachability probe exhausted its attempts."""

    def __init__(self, message: str, *, attempts: int, elapsed: float):
        super().__init__(message)
        self.attempts = attempts
        self.elapsed = elapsed


class ConnectivityCancelled(ConnectivityError):
    """The invocation deadline fired while waiting for the port."""


class HostTrustError(SSHError):
    """The remote host identity could not be established or trusted."""


class HostKeyScanError(HostTrustError):
    """ssh-keyscan failed or returned nothing usable."""


class HostKeyMismatchError(HostTrustError):
    def __init__(self, expected: str, observed: str):
        super().__init__(f"ssh host fingerprint mismatch (expected {expected}, got {observed})")
        self.expected = expected
        self.observed = observed


class HostKeyUnstableError(HostTrustError):
    """Two scans disagreed; the host is probably still regenerating keys."""

    def __init__(self, first: str, second: str):
        super().__init__(
            f"ssh host fingerprint changed during verification ({first} -> {second}); "
            "retry after VM stabilizes"
        )
        self.first = first
        self.second = second


class RemoteCommandError(SSHError):
    def __init__(
        self,
        prefix: str,
        returncode: int,
        summary: str,
        *,
        stdout: str = "",
        stderr: str = "",
    ):
        msg = f"{prefix}: exit status {returncode}"
        if summary:
            msg = f"{msg} ({summary})"
        super().__init__(msg)
        self.prefix = prefix
        self.returncode = returncode
        self.summary = summary
        self.stdout = stdout
        self.stderr = stderr
