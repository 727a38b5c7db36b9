# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/workflow/orchestrator.py

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from talosvm.bootstrap.models import BootstrapResult
from talosvm.bootstrap.orchestrator import BootstrapOrchestrator
from talosvm.config.models import TalosVMConfig
from talosvm.observers.dispatcher import EventBus
from talosvm.observers.events import FingerprintRefreshed, WorkflowPhase, new_ctx, now_ts
from talosvm.ssh.models import PromptFn, TrustMode
from talosvm.utils.execution import Deadline

from .contract import (
    BootstrapContract,
    ContractError,
    load_bootstrap_contract,
    load_contract_from_vm_config,
    merge_contract_into_config,
)
from .refresh import ScanFn, default_scan, refresh_bootstrap_fingerprint

log = logging.getLogger("talosvm")

OrchestratorFactory = Callable[..., BootstrapOrchestrator]


def resolve_contract(bootstrap_result: Optional[str], vm_config: Optional[str]) -> BootstrapContract:
    """Load the contract from exactly one of a result file or a VM config."""
    bootstrap_result = (bootstrap_result or "").strip()
    vm_config = (vm_config or "").strip()
    if bootstrap_result and vm_config:
        raise ContractError("use either --bootstrap-result or --vm-config, not both")
    if vm_config:
        return load_contract_from_vm_config(vm_config)
    if not bootstrap_result:
        raise ContractError("bootstrap result is required (set --bootstrap-result or --vm-config)")
    return load_bootstrap_contract(bootstrap_result)


def enforce_strict_trust(cfg: TalosVMConfig) -> TalosVMConfig:
    """Copy of ``cfg`` with known_hosts verification pinned to strict."""
    if cfg.vm.known_hosts_mode == TrustMode.STRICT.value:
        return cfg
    cfg = cfg.model_copy(deep=True)
    cfg.vm.known_hosts_mode = TrustMode.STRICT.value
    log.debug("known_hosts mode set to strict for bootstrap after fingerprint stabilization")
    return cfg


PHASES = (
    "Acquire VM bootstrap result",
    "Stabilize SSH host trust",
    "Run Talos bootstrap",
)


def provision_and_bootstrap(
    cfg: TalosVMConfig,
    contract: BootstrapContract,
    *,
    contract_path: Optional[str] = None,
    stabilize_fingerprint: bool = False,
    dry_run: bool = False,
    bus: Optional[EventBus] = None,
    prompt: Optional[PromptFn] = None,
    event_ctx: Optional[Dict[str, Any]] = None,
    deadline: Optional[Deadline] = None,
    scan: ScanFn = default_scan,
    orchestrator_factory: OrchestratorFactory = BootstrapOrchestrator,
) -> BootstrapResult:
    """
    Contract -> (optional fingerprint stabilization) -> merged config -> bootstrap run.

    Each of PHASES is announced on the bus as a WorkflowPhase event.
    Raises StepFailedError from the bootstrap run like ``BootstrapOrchestrator.run``.
    """
    bus = bus or EventBus()
    if deadline is None and not dry_run:
        deadline = Deadline.after(cfg.timeouts.total_seconds)
    ctx = event_ctx or new_ctx(contract.ip, cfg.cluster.name)

    def phase(index: int, status: str, detail: Optional[str] = None) -> None:
        bus.emit(WorkflowPhase(
            **{**ctx, "ts": now_ts()},
            name=PHASES[index - 1],
            index=index,
            total=len(PHASES),
            status=status,
            detail=detail,
        ))

    phase(1, "success", contract_path or contract.vm_name or contract.ip)

    if stabilize_fingerprint and not dry_run and contract_path:
        phase(2, "started")
        previous = contract.ssh_host_fingerprint
        try:
            changed = refresh_bootstrap_fingerprint(contract_path, contract, scan=scan, deadline=deadline)
        except Exception as e:
            phase(2, "failed", str(e))
            raise
        if changed:
            bus.emit(FingerprintRefreshed(
                **{**ctx, "ts": now_ts()},
                path=contract_path,
                previous=previous,
                current=contract.ssh_host_fingerprint,
            ))
        cfg = enforce_strict_trust(cfg)
        phase(2, "success", contract.ssh_host_fingerprint or None)
    else:
        phase(2, "skipped")

    merged = merge_contract_into_config(cfg, contract)
    log.info(
        "merged bootstrap result into config vm_name=%s ip=%s ssh_user=%s",
        contract.vm_name, contract.ip, contract.ssh_user,
    )

    phase(3, "started")
    orch = orchestrator_factory(merged, bus=bus, prompt=prompt, event_ctx=ctx)
    try:
        res = orch.run(dry_run=dry_run, deadline=deadline)
    except Exception as e:
        phase(3, "failed", str(e))
        raise
    phase(3, "success", res.status.value)
    return res
