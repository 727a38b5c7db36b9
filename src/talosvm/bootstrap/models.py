# src/talosvm/bootstrap/models.py

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class StepStatus(str, Enum):
    PLANNED = "planned"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    IN_PROGRESS = "in_progress"


class RunStatus(str, Enum):
    RUNNING = "running"
    PLANNED = "planned"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    name: str
    status: StepStatus
    duration: float = 0.0          # seconds
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "duration": round(self.duration, 6),
        }
        if self.message:
            d["message"] = self.message
        return d


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BootstrapResult:
    """Outcome of one bootstrap invocation; also the machine-readable report."""

    vm_host: str
    vm_user: str
    cluster: str
    kubeconfig_path: str
    dry_run: bool = False
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    steps: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (RunStatus.SUCCESS, RunStatus.PLANNED)

    def add(self, step: StepResult) -> None:
        self.steps.append(step)

    def finish(self, status: RunStatus, error: Optional[str] = None) -> None:
        self.status = status
        self.error = error
        self.ended_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "vm_host": self.vm_host,
            "vm_user": self.vm_user,
            "cluster": self.cluster,
            "kubeconfig_path": self.kubeconfig_path,
            "dry_run": self.dry_run,
            "steps": [s.to_dict() for s in self.steps],
        }
        if self.error:
            d["error"] = self.error
        return d

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
