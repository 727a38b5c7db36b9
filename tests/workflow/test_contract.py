import json
import subprocess
import textwrap

import pytest
import yaml

from talosvm.workflow import contract as contract_mod
from talosvm.workflow.contract import (
    BootstrapContract,
    ContractError,
    load_bootstrap_contract,
    load_contract_from_vm_config,
    merge_contract_into_config,
    resolve_ssh_private_key_path,
    save_bootstrap_contract,
)

RESULT = {
    "vm_name": "talos-lab",
    "ip": "192.168.122.40",
    "ssh_user": "ops",
    "ssh_key_path": "/keys/ops_ed25519",
    "ssh_port": 22,
    "ssh_host_fingerprint": "SHA256:abcDEF123",
}


def test_load_json_and_yaml(tmp_path):
    j = tmp_path / "result.json"
    j.write_text(json.dumps(RESULT))
    y = tmp_path / "result.yaml"
    y.write_text(yaml.safe_dump(RESULT))

    assert load_bootstrap_contract(j) == load_bootstrap_contract(y)
    assert load_bootstrap_contract(j).ip == "192.168.122.40"


def test_missing_port_defaults_to_22(tmp_path):
    p = tmp_path / "result.json"
    p.write_text(json.dumps({**RESULT, "ssh_port": 0}))
    assert load_bootstrap_contract(p).ssh_port == 22


@pytest.mark.parametrize("field", ["vm_name", "ip", "ssh_user", "ssh_key_path"])
def test_required_fields(tmp_path, field):
    p = tmp_path / "result.json"
    p.write_text(json.dumps({**RESULT, field: "  "}))
    with pytest.raises(ContractError, match=f"{field} is required"):
        load_bootstrap_contract(p)


def test_unreadable_and_malformed_files(tmp_path):
    with pytest.raises(ContractError, match="read bootstrap result"):
        load_bootstrap_contract(tmp_path / "nope.json")
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ContractError, match="parse bootstrap result"):
        load_bootstrap_contract(bad)


def test_save_preserves_format(tmp_path):
    c = BootstrapContract(**RESULT)
    j = tmp_path / "out" / "result.json"
    save_bootstrap_contract(j, c)
    assert json.loads(j.read_text())["vm_name"] == "talos-lab"

    y = tmp_path / "result.yml"
    save_bootstrap_contract(y, c)
    assert yaml.safe_load(y.read_text())["ssh_host_fingerprint"] == "SHA256:abcDEF123"


# ------------------ VM creation config ------------------

VM_CONFIG = textwrap.dedent("""
    vm:
      name: talos-lab
      ip_address: 192.168.122.40
      username: ops
      ssh_key_path: {key}
      ssh_port: 2222
""")


def test_contract_from_cleartext_vm_config(tmp_path):
    priv = tmp_path / "id_ed25519"
    priv.write_text("PRIVATE")
    (tmp_path / "id_ed25519.pub").write_text("PUBLIC")
    p = tmp_path / "vm.yaml"
    p.write_text(VM_CONFIG.format(key=str(priv) + ".pub"))

    c = load_contract_from_vm_config(str(p))
    assert c.vm_name == "talos-lab"
    assert c.ssh_port == 2222
    # .pub is swapped for the private key next to it
    assert c.ssh_key_path == str(priv)
    assert c.ssh_host_fingerprint == ""


def test_contract_from_sops_vm_config(monkeypatch):
    seen = {}

    def fake_run(argv, capture_output, text, check):
        seen["argv"] = argv
        return subprocess.CompletedProcess(argv, 0, stdout=VM_CONFIG.format(key="/keys/k"), stderr="")

    monkeypatch.setattr(contract_mod.subprocess, "run", fake_run)
    c = load_contract_from_vm_config("/secrets/vm.sops.yaml")
    assert seen["argv"] == ["sops", "-d", "/secrets/vm.sops.yaml"]
    assert c.ip == "192.168.122.40"


def test_sops_failure_is_reported(monkeypatch):
    def fake_run(argv, capture_output, text, check):
        raise subprocess.CalledProcessError(1, argv, output="", stderr="no key to decrypt\n")

    monkeypatch.setattr(contract_mod.subprocess, "run", fake_run)
    with pytest.raises(ContractError, match="decrypt vm config /s/vm.sops.yaml: no key to decrypt"):
        load_contract_from_vm_config("/s/vm.sops.yaml")


def test_vm_config_missing_fields(tmp_path):
    p = tmp_path / "vm.yaml"
    p.write_text("vm:\n  name: x\n")
    with pytest.raises(ContractError, match="ip is required"):
        load_contract_from_vm_config(str(p))


def test_key_path_resolution(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    assert resolve_ssh_private_key_path("") == ""
    assert resolve_ssh_private_key_path("~/k") == str(tmp_path / "k")
    # no private sibling: the .pub path is kept
    assert resolve_ssh_private_key_path("~/only.pub") == str(tmp_path / "only.pub")


# ------------------ merge ------------------

def test_merge_overrides_connection_fields(talos_config):
    cfg = talos_config(vm={"known_hosts_file": "/tmp/kh"})
    merged = merge_contract_into_config(cfg, BootstrapContract(**{**RESULT, "ssh_port": 2200}))

    assert merged.vm.host == "192.168.122.40"
    assert merged.vm.user == "ops"
    assert merged.vm.ssh_private_key == "/keys/ops_ed25519"
    assert merged.vm.port == 2200
    assert merged.vm.ssh_host_fingerprint == "SHA256:abcDEF123"
    # input config untouched
    assert cfg.vm.host == "10.0.0.5"


def test_merge_keeps_config_fingerprint_when_contract_has_none(talos_config):
    cfg = talos_config(vm={"known_hosts_file": "/tmp/kh", "ssh_host_fingerprint": "SHA256:cfg"})
    merged = merge_contract_into_config(cfg, BootstrapContract(**{**RESULT, "ssh_host_fingerprint": ""}))
    assert merged.vm.ssh_host_fingerprint == "SHA256:cfg"


def test_merge_revalidates(talos_config):
    # a fingerprint without a known_hosts file is not a valid config
    with pytest.raises(ContractError, match="merged config invalid: vm.known_hosts_file is required"):
        merge_contract_into_config(talos_config(), BootstrapContract(**RESULT))


def test_vm_config_non_numeric_port(tmp_path):
    p = tmp_path / "vm.yaml"
    p.write_text(VM_CONFIG.format(key="/keys/k").replace("ssh_port: 2222", "ssh_port: abc"))
    with pytest.raises(ContractError, match=r"parse vm config .*vm.yaml: ssh_port must be a number, got 'abc'"):
        load_contract_from_vm_config(str(p))
