from __future__ import annotations
import logging
from .events import BaseEvent, StepHeartbeat


class LoggerObserver:
    def __init__(self, logger: logging.Logger, level: int = logging.INFO):
        self.logger = logger
        self.level = level

    def notify(self, event: BaseEvent) -> None:
        d = event.dict()
        etype = event.__class__.__name__
        msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts",))

        # heartbeats only go to the trace
        level = logging.DEBUG if isinstance(event, StepHeartbeat) else self.level
        self.logger.log(level, f"[EVENT] {etype}: {msg}")
