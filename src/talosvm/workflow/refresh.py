# src/talosvm/workflow/refresh.py

from __future__ import annotations

import logging
from typing import Callable, Optional

from talosvm.ssh.known_hosts import HostTrustManager
from talosvm.utils.execution import Deadline, DeadlineExceeded

from .contract import BootstrapContract, ContractError, save_bootstrap_contract

log = logging.getLogger("talosvm")

REQUIRED_CONSECUTIVE = 2
PROBE_INTERVAL = 0.9
REFRESH_TIMEOUT = 25.0

ScanFn = Callable[[str, int, Deadline], str]


def default_scan(host: str, port: int, deadline: Deadline) -> str:
    return HostTrustManager().scan_fingerprint(host, port, deadline)


def stabilize_host_fingerprint(
    host: str,
    port: int,
    deadline: Deadline,
    *,
    scan: ScanFn = default_scan,
    required_consecutive: int = REQUIRED_CONSECUTIVE,
    probe_interval: float = PROBE_INTERVAL,
) -> str:
    """
    Scan until the same fingerprint is seen ``required_consecutive`` times
    in a row. A freshly booted VM may still be regenerating its host keys.
    """
    prev = ""
    consecutive = 0
    last_err: Optional[Exception] = None

    while True:
        if deadline.done():
            msg = f"stabilize ssh host fingerprint: {deadline.reason()}"
            if last_err is not None:
                raise DeadlineExceeded(f"{msg} (last probe error: {last_err})") from last_err
            raise DeadlineExceeded(msg)

        try:
            fp = scan(host, port, deadline).strip()
        except Exception as e:
            last_err = e
            log.debug("fingerprint probe %s:%d failed: %s", host, port, e)
            deadline.wait(probe_interval)
            continue

        if not fp:
            deadline.wait(probe_interval)
            continue

        if fp == prev:
            consecutive += 1
        else:
            prev = fp
            consecutive = 1

        if consecutive >= required_consecutive:
            return fp
        deadline.wait(probe_interval)


def refresh_bootstrap_fingerprint(
    path: str,
    contract: Optional[BootstrapContract],
    *,
    scan: ScanFn = default_scan,
    timeout: float = REFRESH_TIMEOUT,
    probe_interval: float = PROBE_INTERVAL,
    deadline: Optional[Deadline] = None,
) -> bool:
    """
    Re-check the VM's host fingerprint until stable and record it in the
    contract file. Returns True when the file was rewritten.

    The scan budget is ``timeout`` seconds, cut short by ``deadline``.
    """
    if contract is None:
        raise ContractError("bootstrap result is nil")
    if not path.strip():
        return False
    host = contract.ip.strip()
    if not host:
        return False
    port = contract.ssh_port if contract.ssh_port > 0 else 22

    budget = deadline.child(timeout) if deadline is not None else Deadline.after(timeout)
    fp = stabilize_host_fingerprint(host, port, budget, scan=scan, probe_interval=probe_interval)
    if not fp or fp == contract.ssh_host_fingerprint:
        return False

    previous = contract.ssh_host_fingerprint
    contract.ssh_host_fingerprint = fp
    try:
        save_bootstrap_contract(path, contract)
    except ContractError as e:
        raise ContractError(f"update bootstrap result: {e}") from e
    log.info("ssh host fingerprint for %s updated: %s -> %s", host, previous or "<none>", fp)
    return True
