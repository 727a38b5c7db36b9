# src/talosvm/observers/jsonfile.py

from __future__ import annotations
import json
import threading
from pathlib import Path
from .interface import Observer
from .events import BaseEvent


class JsonFileObserver(Observer):
    """Appends one JSON object per event to ``<log_dir>/<run_id>.jsonl``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def record(self, event: BaseEvent) -> str:
        return json.dumps({"type": event.__class__.__name__, **event.dict()}, sort_keys=True)

    def notify(self, event: BaseEvent) -> None:
        line = self.record(event) + "\n"
        # heartbeats arrive from a second thread; keep lines whole
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
