# src/talosvm/observers/console.py
from __future__ import annotations

import sys
from typing import Optional, TextIO

import typer

from .events import (
    BaseEvent,
    FingerprintRefreshed,
    RunFinished,
    RunPlanned,
    RunStarted,
    StepFailed,
    StepHeartbeat,
    StepStarted,
    StepSucceeded,
    WorkflowPhase,
)


def step_label(name: str) -> str:
    return name.replace("_", "-")


def fmt_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.3f}s"
    m, s = divmod(int(seconds), 60)
    return f"{m}m{s}s"


class ConsoleObserver:
    """Human progress lines for interactive runs."""

    def __init__(self, stream: Optional[TextIO] = None, color: bool = True):
        self.stream = stream
        self.color = color

    def _style(self, text: str, **kw) -> str:
        return typer.style(text, **kw) if self.color else text

    def _print(self, line: str) -> None:
        print(line, file=self.stream or sys.stdout, flush=True)

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, RunStarted):
            self._print(self._style(f"bootstrap {event.host} ({event.total_steps} steps)", bold=True))
        elif isinstance(event, StepStarted):
            self._print(
                f"{self._style(f'[{event.index}/{event.total}]', fg=typer.colors.CYAN)} "
                f"{self._style(step_label(event.name), bold=True)} "
                f"{self._style(f'({event.percent}%)', dim=True)}"
            )
            self._print(f"  {self._style(event.description, dim=True)}")
        elif isinstance(event, StepHeartbeat):
            self._print(f"  {self._style(f'... {step_label(event.name)} running ({int(event.elapsed_s)}s)', dim=True)}")
        elif isinstance(event, StepSucceeded):
            self._print(
                f"  {self._style('✓ done', fg=typer.colors.GREEN)} in {fmt_duration(event.duration_s)} "
                f"{self._style(f'[{event.index}/{event.total} {event.percent}%]', dim=True)}"
            )
        elif isinstance(event, StepFailed):
            self._print(f"  {self._style('✗ failed', fg=typer.colors.RED)} in {fmt_duration(event.duration_s)}")
        elif isinstance(event, RunPlanned):
            for name in event.steps:
                self._print(f"  planned: {step_label(name)}")
        elif isinstance(event, RunFinished):
            colour = typer.colors.RED if event.status == "failed" else typer.colors.GREEN
            self._print(self._style(f"bootstrap {event.status} in {fmt_duration(event.duration_s)}", fg=colour, bold=True))
        elif isinstance(event, FingerprintRefreshed):
            self._print(f"host fingerprint updated in {event.path}: {event.previous or '<none>'} -> {event.current}")
        elif isinstance(event, WorkflowPhase):
            colour = {"failed": typer.colors.RED, "success": typer.colors.GREEN}.get(event.status)
            line = f"phase {event.index}/{event.total} {event.name}: {self._style(event.status, fg=colour)}"
            if event.detail and event.status != "started":
                line += f" ({event.detail})"
            self._print(self._style(line, bold=event.status == "started"))
