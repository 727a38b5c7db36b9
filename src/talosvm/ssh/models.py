# src/talosvm/ssh/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional

HOST_KEY_ALGORITHM = "ssh-ed25519"
KEYSCAN_TYPE = "ed25519"

PromptFn = Callable[[str], bool]


class TrustMode(str, Enum):
    STRICT = "strict"
    PROMPT = "prompt"
    ACCEPT_NEW = "accept-new"
    AUTO_REFRESH = "auto-refresh"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["TrustMode"]:
        """Return the mode for a config spelling, or None when unrecognised."""
        v = ("" if value is None else str(value)).strip().lower()
        if v == "":
            return cls.STRICT
        v = v.replace("_", "-")
        for mode in cls:
            if mode.value == v:
                return mode
        return None

    @classmethod
    def normalize(cls, value: Optional[str]) -> "TrustMode":
        return cls.parse(value) or cls.STRICT

    @property
    def recovers_mismatch(self) -> bool:
        return self in (TrustMode.PROMPT, TrustMode.AUTO_REFRESH)


@dataclass(frozen=True)
class ExecConfig:
    """
    Everything the executor needs to reach one host.
    Read-only; built from the validated config by the caller.
    """
    host: str
    user: str = ""
    port: int = 22
    private_key_path: str = ""
    known_hosts_file: str = ""
    known_hosts_mode: str = TrustMode.STRICT.value
    expected_fingerprint: str = ""
    prompt: Optional[PromptFn] = None
    connect_timeout: float = 5.0

    @property
    def mode(self) -> TrustMode:
        return TrustMode.normalize(self.known_hosts_mode)

    @property
    def known_hosts_target(self) -> str:
        """Name under which the host is stored in known_hosts."""
        host = self.host.strip()
        if self.port <= 0 or self.port == 22:
            return host
        return f"[{host}]:{self.port}"

    def keyscan_args(self) -> list[str]:
        host = self.host.strip()
        if self.port <= 0 or self.port == 22:
            return [host]
        return ["-p", str(self.port), host]


@dataclass(frozen=True)
class HostIdentity:
    fingerprint: str
    raw_entry: str      # full ssh-keyscan line, newline terminated
    key_line: str       # "<type> <base64>"


@dataclass(frozen=True)
class IdentityScan:
    primary: HostIdentity
    by_fingerprint: Dict[str, HostIdentity] = field(default_factory=dict)

    @property
    def fingerprint(self) -> str:
        return self.primary.fingerprint

    def find(self, fingerprint: str) -> Optional[HostIdentity]:
        return self.by_fingerprint.get(fingerprint)


@dataclass(frozen=True)
class RemoteOutput:
    stdout: str
    stderr: str
