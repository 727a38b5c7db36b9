# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/ssh/probe.py

from __future__ import annotations

import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from talosvm.ssh.errors import ConnectivityCancelled, ConnectivityError
from talosvm.utils.execution import Deadline

Connect = Callable[..., socket.socket]


@dataclass(frozen=True)
class ProbeStats:
    attempts: int
    elapsed: float


class Prober(Protocol):
    def wait_for_port(
        self,
        host: str,
        port: int,
        *,
        attempts: int,
        connect_timeout: float,
        retry_delay: float,
        deadline: Optional[Deadline] = None,
    ) -> ProbeStats: ...


def _fmt_elapsed(seconds: float) -> str:
    return f"{seconds:.3f}s"


class TCPProber:
    """Polls host:port until a TCP connection succeeds."""

    def __init__(self, connect: Connect = socket.create_connection):
        self._connect = connect

    def wait_for_port(
        self,
        host: str,
        port: int,
        *,
        attempts: int,
        connect_timeout: float,
        retry_delay: float,
        deadline: Optional[Deadline] = None,
    ) -> ProbeStats:
        deadline = deadline or Deadline()
        started = time.monotonic()
        last_err: Optional[OSError] = None
        used = 0

        for i in range(attempts):
            used = i + 1
            try:
                conn = self._connect((host, port), timeout=deadline.bound(connect_timeout))
            except OSError as e:
                last_err = e
            else:
                conn.close()
                return ProbeStats(attempts=used, elapsed=time.monotonic() - started)

            if used == attempts:
                break
            if deadline.wait(retry_delay):
                elapsed = time.monotonic() - started
                raise ConnectivityCancelled(
                    f"ssh connectivity canceled after {used} attempts in "
                    f"{_fmt_elapsed(elapsed)}: {deadline.reason()}",
                    attempts=used,
                    elapsed=elapsed,
                ) from last_err

        elapsed = time.monotonic() - started
        raise ConnectivityError(
            f"ssh connectivity failed after {used} attempts in {_fmt_elapsed(elapsed)}: {last_err}",
            attempts=used,
            elapsed=elapsed,
        ) from last_err
