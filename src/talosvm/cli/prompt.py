# src/talosvm/cli/prompt.py
from __future__ import annotations

from typing import Optional

import typer

from talosvm.config.models import TalosVMConfig
from talosvm.ssh.models import PromptFn, TrustMode


def confirm_host_key(message: str) -> bool:
    return typer.confirm(typer.style(f"⚠ {message}", fg=typer.colors.YELLOW), default=False)


def host_key_prompt(cfg: TalosVMConfig, interactive: bool) -> Optional[PromptFn]:
    """Confirmation callback for prompt mode, only when a human is attached."""
    if not interactive:
        return None
    if TrustMode.normalize(cfg.vm.known_hosts_mode) is not TrustMode.PROMPT:
        return None
    return confirm_host_key
