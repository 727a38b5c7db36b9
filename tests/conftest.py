import base64
import struct
import subprocess

import pytest


def ed25519_blob(seed: int) -> bytes:
    name = b"ssh-ed25519"
    key = bytes([(seed + i) % 256 for i in range(32)])
    return struct.pack(">I", len(name)) + name + struct.pack(">I", len(key)) + key


def keyscan_line(seed: int, host: str = "|1|hashedhost=|salt=") -> str:
    data = base64.b64encode(ed25519_blob(seed)).decode()
    return f"{host} ssh-ed25519 {data}"


def cp(rc=0, out="", err=""):
    return subprocess.CompletedProcess(args=[], returncode=rc, stdout=out, stderr=err)


class FakeRunner:
    """Records argv/stdin; answers from a handler or a fixed queue of results."""

    def __init__(self, handler=None, results=None):
        self.calls = []
        self.handler = handler
        self.results = list(results or [])

    def run(self, cmd, *, input=None, deadline=None):
        self.calls.append({"argv": list(cmd), "input": input, "deadline": deadline})
        if self.handler is not None:
            return self.handler(list(cmd), input)
        if self.results:
            return self.results.pop(0)
        return cp(0)


@pytest.fixture
def host_key():
    return keyscan_line


@pytest.fixture
def fake_runner():
    return FakeRunner


@pytest.fixture
def completed():
    return cp


@pytest.fixture
def key_blob():
    return ed25519_blob


def config_dict(**sections):
    data = {
        "vm": {
            "host": "10.0.0.5",
            "port": 22,
            "user": "ubuntu",
            "ssh_private_key": "/keys/id_ed25519",
        },
        "docker": {"version": "27.3.1"},
        "talos": {"version": "1.8.3", "sha256_checksum": "ab" * 32},
        "cluster": {
            "name": "lab",
            "state_dir": "/home/ubuntu/.talos/clusters/lab",
            "mount_src": "/srv/data",
            "mount_dst": "/var/mnt/data",
        },
    }
    for name, values in sections.items():
        data.setdefault(name, {}).update(values)
    return data


@pytest.fixture
def raw_config():
    return config_dict


@pytest.fixture
def talos_config():
    from talosvm.config.loader import validate_config

    def build(**sections):
        return validate_config(config_dict(**sections))

    return build
