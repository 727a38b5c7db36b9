# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/talosvm/bootstrap/errors.py

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import BootstrapResult


class BootstrapError(RuntimeError):
    pass


class StepFailedError(BootstrapError):
    """A bootstrap step failed; ``result`` holds the partial run report."""

    def __init__(self, step: str, result: "BootstrapResult", message: str):
        super().__init__(message)
        self.step = step
        self.result = result


class ScriptParameterError(BootstrapError, ValueError):
    """A value destined for a remote script failed its allow-list check."""


class UserError(BootstrapError):
    """Failure with a short operator-facing hint."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint
