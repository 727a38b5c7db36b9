# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/observers/interface.py

from __future__ import annotations
from typing import Protocol
from .events import BaseEvent


class Observer(Protocol):
    """
    Receiver of run events. ``notify`` is called from the bootstrap thread
    and, for StepHeartbeat, from the heartbeat thread.
    """

    def notify(self, event: BaseEvent) -> None: ...
