from __future__ import annotations

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from talosvm.utils.execution import Deadline, DeadlineExceeded

log = logging.getLogger("talosvm")


class Runner(Protocol):
    """Runs a local program (ssh, ssh-keyscan, ssh-keygen, sops)."""

    def run(
        self,
        cmd: Sequence[str],
        *,
        input: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> subprocess.CompletedProcess: ...


@dataclass
class CommandRunner:
    label: Optional[str] = None

    def run(
        self,
        cmd: Sequence[str],
        *,
        input: Optional[str] = None,
        deadline: Optional[Deadline] = None,
    ) -> subprocess.CompletedProcess:
        """
        Execute a local command, capturing stdout/stderr as text.

        Never raises on a non-zero exit; callers inspect ``returncode``.
        Raises DeadlineExceeded if the deadline fires before the command ends.
        """
        label = self.label or cmd[0]
        argv = [str(c) for c in cmd]
        log.debug("[%s] $ %s", label, shlex.join(argv))

        timeout = None
        if deadline is not None:
            deadline.check()
            timeout = deadline.remaining()

        start = time.monotonic()
        try:
            result = subprocess.run(
                argv,
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout,
                # ssh reads stdin when no script is piped
                stdin=subprocess.DEVNULL if input is None else None,
            )
        except subprocess.TimeoutExpired as e:
            raise DeadlineExceeded(
                f"{label} interrupted after {time.monotonic() - start:.1f}s: context deadline exceeded"
            ) from e

        log.debug("[%s][exit %d] (%.2fs)", label, result.returncode, time.monotonic() - start)
        return result
