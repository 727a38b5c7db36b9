# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/bootstrap/orchestrator.py

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from talosvm.config.models import TalosVMConfig
from talosvm.observers.dispatcher import EventBus
from talosvm.observers.events import (
    RunFinished,
    RunPlanned,
    RunStarted,
    StepFailed,
    StepHeartbeat,
    StepStarted,
    StepSucceeded,
    new_ctx,
    now_ts,
)
from talosvm.ssh.models import PromptFn
from talosvm.ssh.probe import Prober, TCPProber
from talosvm.utils.execution import Deadline

from .errors import StepFailedError
from .models import BootstrapResult, RunStatus, StepResult, StepStatus
from .steps import (
    CLUSTER_CREATE,
    DOCKER_INSTALL,
    OS_HARDENING,
    SSH_CONNECTIVITY,
    STEPS,
    TALOSCTL_INSTALL,
    RemoteStepActions,
    StepActions,
    StepSpec,
)

log = logging.getLogger("talosvm")

HEARTBEAT_INTERVAL = 5.0

StepFn = Callable[[Deadline], None]


class _Heartbeat:
    """Emits StepHeartbeat on a daemon thread until stopped."""

    def __init__(self, emit: Callable[[float], None], interval: float):
        self._emit = emit
        self._interval = interval
        self._stop = threading.Event()
        self._started = time.monotonic()
        self._thread = threading.Thread(target=self._loop, name="talosvm-heartbeat", daemon=True)

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            self._emit(time.monotonic() - self._started)

    def __enter__(self) -> "_Heartbeat":
        self._thread.start()
        return self

    def __exit__(self, *exc) -> None:
        self._stop.set()
        self._thread.join()


class BootstrapOrchestrator:
    """
    Runs the five bootstrap steps in order against one VM.

    Fail-fast: the first failing step ends the run; the partial result
    travels on the raised StepFailedError.
    """

    def __init__(
        self,
        cfg: TalosVMConfig,
        *,
        prober: Optional[Prober] = None,
        steps: Optional[StepActions] = None,
        bus: Optional[EventBus] = None,
        prompt: Optional[PromptFn] = None,
        event_ctx: Optional[Dict[str, Any]] = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
    ):
        self.cfg = cfg
        self.prober = prober or TCPProber()
        self.steps = steps or RemoteStepActions(prompt=prompt)
        self.bus = bus or EventBus()
        self.event_ctx = event_ctx or new_ctx(cfg.vm.host, cfg.cluster.name)
        self.heartbeat_interval = heartbeat_interval

    def _ctx(self) -> Dict[str, Any]:
        return {**self.event_ctx, "ts": now_ts()}

    def _new_result(self, dry_run: bool) -> BootstrapResult:
        return BootstrapResult(
            vm_host=self.cfg.vm.host,
            vm_user=self.cfg.vm.user,
            cluster=self.cfg.cluster.name,
            kubeconfig_path=self.cfg.cluster.kubeconfig_path,
            dry_run=dry_run,
        )

    def plan(self) -> BootstrapResult:
        """Dry run: report the steps without touching the VM."""
        res = self._new_result(dry_run=True)
        for spec in STEPS:
            res.add(StepResult(name=spec.name, status=StepStatus.PLANNED, message=spec.description))
        res.finish(RunStatus.PLANNED)
        self.bus.emit(RunPlanned(**self._ctx(), steps=[s.name for s in STEPS]))
        self.bus.emit(RunFinished(**self._ctx(), status=res.status.value, duration_s=0.0))
        return res

    def _check_connectivity(self, deadline: Deadline) -> None:
        t = self.cfg.timeouts
        log.debug(
            "ssh connectivity probe host=%s port=%s connect_timeout=%ss retries=%s retry_delay=%ss",
            self.cfg.vm.host, self.cfg.vm.port, t.ssh_connect_seconds, t.ssh_retries, t.ssh_retry_delay_seconds,
        )
        stats = self.prober.wait_for_port(
            self.cfg.vm.host,
            self.cfg.vm.port,
            attempts=t.ssh_retries,
            connect_timeout=float(t.ssh_connect_seconds),
            retry_delay=float(t.ssh_retry_delay_seconds),
            deadline=deadline,
        )
        log.debug("ssh connectivity ready attempts_used=%d elapsed=%.3fs", stats.attempts, stats.elapsed)

    def _pipeline(self) -> List[Tuple[StepSpec, StepFn]]:
        cfg = self.cfg
        return [
            (SSH_CONNECTIVITY, self._check_connectivity),
            (OS_HARDENING, lambda d: self.steps.os_hardening(cfg, d)),
            (DOCKER_INSTALL, lambda d: self.steps.docker_install(cfg, d)),
            (TALOSCTL_INSTALL, lambda d: self.steps.talosctl_install(cfg, d)),
            (CLUSTER_CREATE, lambda d: self.steps.cluster_create(cfg, d)),
        ]

    def run(self, dry_run: bool = False, deadline: Optional[Deadline] = None) -> BootstrapResult:
        if dry_run:
            return self.plan()

        if deadline is None:
            deadline = Deadline.after(self.cfg.timeouts.total_seconds)

        res = self._new_result(dry_run=False)
        pipeline = self._pipeline()
        total = len(pipeline)
        run_started = time.monotonic()
        self.bus.emit(RunStarted(**self._ctx(), total_steps=total, dry_run=False))

        for index, (spec, action) in enumerate(pipeline, start=1):
            self.bus.emit(StepStarted(
                **self._ctx(),
                name=spec.name,
                description=spec.description,
                index=index,
                total=total,
                percent=(index - 1) * 100 // total,
            ))
            log.debug("step start %s: %s", spec.name, spec.description)

            started = time.monotonic()
            try:
                with _Heartbeat(
                    lambda elapsed, name=spec.name: self.bus.emit(
                        StepHeartbeat(**self._ctx(), name=name, elapsed_s=elapsed)
                    ),
                    self.heartbeat_interval,
                ):
                    action(deadline)
            except Exception as e:
                duration = time.monotonic() - started
                res.add(StepResult(name=spec.name, status=StepStatus.FAILED, duration=duration, message=str(e)))
                error = f"step {spec.name} failed: {e}"
                res.finish(RunStatus.FAILED, error)
                self.bus.emit(StepFailed(
                    **self._ctx(), name=spec.name, index=index, total=total, duration_s=duration, error=str(e),
                ))
                self.bus.emit(RunFinished(
                    **self._ctx(), status=res.status.value, duration_s=time.monotonic() - run_started, error=error,
                ))
                log.debug(error)
                raise StepFailedError(spec.name, res, error) from e

            duration = time.monotonic() - started
            res.add(StepResult(name=spec.name, status=StepStatus.SUCCESS, duration=duration))
            self.bus.emit(StepSucceeded(
                **self._ctx(),
                name=spec.name,
                index=index,
                total=total,
                percent=index * 100 // total,
                duration_s=duration,
            ))
            log.debug("step success %s in %.3fs [%d/%d]", spec.name, duration, index, total)

        res.finish(RunStatus.SUCCESS)
        self.bus.emit(RunFinished(**self._ctx(), status=res.status.value, duration_s=time.monotonic() - run_started))
        return res
