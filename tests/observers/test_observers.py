import io
import json
import logging
import threading

from talosvm.observers.console import ConsoleObserver, fmt_duration, step_label
from talosvm.observers.dispatcher import EventBus
from talosvm.observers.events import (
    FingerprintRefreshed,
    RunFinished,
    RunPlanned,
    RunStarted,
    StepFailed,
    StepHeartbeat,
    StepStarted,
    StepSucceeded,
    WorkflowPhase,
    new_ctx,
)
from talosvm.observers.jsonfile import JsonFileObserver
from talosvm.observers.logger import LoggerObserver

CTX = new_ctx("10.0.0.5", "lab", run_id="run-1")


def _started():
    return StepStarted(**CTX, name="docker_install", description="Install pinned Docker version", index=3, total=5, percent=40)


class Boom:
    def notify(self, event):
        raise RuntimeError("observer broke")


class Keep:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


def test_bus_isolates_failing_observers():
    keep = Keep()
    bus = EventBus([Boom()])
    bus.subscribe(keep)
    bus.emit(_started())
    assert len(keep.events) == 1


def test_ctx_defaults_to_fresh_run_id():
    a, b = new_ctx("h", None), new_ctx("h", None)
    assert a["run_id"] != b["run_id"]
    assert a["ts"].endswith("Z")


def test_duration_format():
    assert fmt_duration(1.23456) == "1.235s"
    assert fmt_duration(125) == "2m5s"
    assert step_label("talosctl_install") == "talosctl-install"


def test_console_progress_lines():
    out = io.StringIO()
    obs = ConsoleObserver(stream=out, color=False)
    obs.notify(_started())
    obs.notify(StepSucceeded(**CTX, name="docker_install", index=3, total=5, percent=60, duration_s=2.5))
    obs.notify(RunFinished(**CTX, status="success", duration_s=75.0))

    lines = out.getvalue().splitlines()
    assert lines == [
        "[3/5] docker-install (40%)",
        "  Install pinned Docker version",
        "  ✓ done in 2.500s [3/5 60%]",
        "bootstrap success in 1m15s",
    ]


def test_console_plan_and_fingerprint():
    out = io.StringIO()
    obs = ConsoleObserver(stream=out, color=False)
    obs.notify(RunPlanned(**CTX, steps=["ssh_connectivity", "os_hardening"]))
    obs.notify(FingerprintRefreshed(**CTX, path="/r.json", previous="", current="SHA256:n"))
    assert out.getvalue().splitlines() == [
        "  planned: ssh-connectivity",
        "  planned: os-hardening",
        "host fingerprint updated in /r.json: <none> -> SHA256:n",
    ]


def test_logger_observer_levels(caplog):
    logger = logging.getLogger("observer-test")
    obs = LoggerObserver(logger, level=logging.INFO)
    with caplog.at_level(logging.DEBUG, logger="observer-test"):
        obs.notify(_started())
        obs.notify(StepHeartbeat(**CTX, name="docker_install", elapsed_s=5.0))

    started, beat = [r for r in caplog.records if r.name == "observer-test"]
    assert started.levelno == logging.INFO
    assert "[EVENT] StepStarted" in started.getMessage()
    assert "name=docker_install" in started.getMessage()
    assert beat.levelno == logging.DEBUG


def test_json_file_observer_appends_lines(tmp_path):
    path = tmp_path / "events" / "run-1.jsonl"
    obs = JsonFileObserver(path)
    obs.notify(_started())
    obs.notify(RunFinished(**CTX, status="failed", duration_s=1.0, error="step x failed: y"))

    records = [json.loads(line) for line in path.read_text().splitlines()]
    assert [r["type"] for r in records] == ["StepStarted", "RunFinished"]
    assert records[0]["run_id"] == "run-1"
    assert records[1]["error"] == "step x failed: y"


def test_json_file_observer_keeps_lines_whole_across_threads(tmp_path):
    path = tmp_path / "run-2.jsonl"
    obs = JsonFileObserver(path)

    def beat(i):
        for n in range(50):
            obs.notify(StepHeartbeat(**CTX, name=f"step_{i}", elapsed_s=float(n)))

    threads = [threading.Thread(target=beat, args=(i,)) for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    records = [json.loads(line) for line in path.read_text().splitlines()]
    assert len(records) == 200
    assert {r["type"] for r in records} == {"StepHeartbeat"}
    assert sorted(r["name"] for r in records)[::50] == ["step_0", "step_1", "step_2", "step_3"]


def test_console_phase_lines():
    out = io.StringIO()
    obs = ConsoleObserver(stream=out, color=False)
    obs.notify(WorkflowPhase(**CTX, name="Stabilize SSH host trust", index=2, total=3, status="started"))
    obs.notify(WorkflowPhase(**CTX, name="Stabilize SSH host trust", index=2, total=3, status="success", detail="SHA256:n"))
    obs.notify(WorkflowPhase(**CTX, name="Run Talos bootstrap", index=3, total=3, status="failed", detail="step x failed"))
    assert out.getvalue().splitlines() == [
        "phase 2/3 Stabilize SSH host trust: started",
        "phase 2/3 Stabilize SSH host trust: success (SHA256:n)",
        "phase 3/3 Run Talos bootstrap: failed (step x failed)",
    ]


def test_console_prints_every_event_type():
    events = [
        RunStarted(**CTX, total_steps=5, dry_run=False),
        RunPlanned(**CTX, steps=["ssh_connectivity"]),
        _started(),
        StepHeartbeat(**CTX, name="docker_install", elapsed_s=5.0),
        StepSucceeded(**CTX, name="docker_install", index=3, total=5, percent=60, duration_s=1.0),
        StepFailed(**CTX, name="docker_install", index=3, total=5, duration_s=1.0, error="boom"),
        RunFinished(**CTX, status="failed", duration_s=1.0, error="boom"),
        FingerprintRefreshed(**CTX, path="/r.json", previous="a", current="b"),
        WorkflowPhase(**CTX, name="Run Talos bootstrap", index=3, total=3, status="started"),
    ]
    for event in events:
        out = io.StringIO()
        ConsoleObserver(stream=out, color=False).notify(event)
        assert out.getvalue().strip(), type(event).__name__
