import json
import time

import pytest

from talosvm.utils.execution import Deadline, DeadlineExceeded
from talosvm.workflow.contract import BootstrapContract, ContractError, load_bootstrap_contract
from talosvm.workflow.refresh import refresh_bootstrap_fingerprint, stabilize_host_fingerprint


def sequence_scan(values):
    """Scan stub returning (or raising) the given values in order, repeating the last."""
    calls = []

    def scan(host, port, deadline):
        calls.append((host, port))
        value = values[min(len(calls), len(values)) - 1]
        if isinstance(value, Exception):
            raise value
        return value

    scan.calls = calls
    return scan


def _contract(**kw):
    base = dict(vm_name="vm1", ip="10.0.0.5", ssh_user="ubuntu", ssh_key_path="/keys/id", ssh_port=22)
    base.update(kw)
    return BootstrapContract(**base)


def test_stabilize_waits_for_two_matching_reads():
    scan = sequence_scan(["SHA256:A", "SHA256:B", "SHA256:B"])
    assert stabilize_host_fingerprint("h", 22, Deadline.after(5), scan=scan, probe_interval=0) == "SHA256:B"
    assert len(scan.calls) == 3


def test_stabilize_restarts_count_on_change():
    scan = sequence_scan(["SHA256:A", "SHA256:B", "SHA256:C", "SHA256:C"])
    assert stabilize_host_fingerprint("h", 22, Deadline.after(5), scan=scan, probe_interval=0) == "SHA256:C"


def test_stabilize_tolerates_probe_errors_and_blanks():
    scan = sequence_scan([OSError("refused"), "", "SHA256:A", "SHA256:A"])
    assert stabilize_host_fingerprint("h", 2222, Deadline.after(5), scan=scan, probe_interval=0) == "SHA256:A"
    assert scan.calls[0] == ("h", 2222)


def test_stabilize_gives_up_when_key_keeps_changing():
    counter = iter(range(10**6))
    scan = lambda host, port, deadline: f"SHA256:K{next(counter)}"
    with pytest.raises(DeadlineExceeded, match="context deadline exceeded"):
        stabilize_host_fingerprint("h", 22, Deadline.after(0.2), scan=scan, probe_interval=0.01)


def test_stabilize_reports_last_probe_error():
    scan = sequence_scan([OSError("connection refused")])
    with pytest.raises(DeadlineExceeded, match="last probe error: connection refused"):
        stabilize_host_fingerprint("h", 22, Deadline.after(0.1), scan=scan, probe_interval=0.01)


def test_refresh_rewrites_contract_when_fingerprint_changed(tmp_path):
    path = tmp_path / "bootstrap-result.json"
    contract = _contract(ssh_host_fingerprint="SHA256:old")
    path.write_text(json.dumps(contract.model_dump()))

    changed = refresh_bootstrap_fingerprint(
        str(path), contract, scan=sequence_scan(["SHA256:new"]), probe_interval=0,
    )

    assert changed
    assert contract.ssh_host_fingerprint == "SHA256:new"
    assert load_bootstrap_contract(path).ssh_host_fingerprint == "SHA256:new"


def test_refresh_leaves_file_alone_when_unchanged(tmp_path):
    path = tmp_path / "bootstrap-result.yaml"
    path.write_text("untouched\n")
    contract = _contract(ssh_host_fingerprint="SHA256:same")

    assert not refresh_bootstrap_fingerprint(str(path), contract, scan=sequence_scan(["SHA256:same"]), probe_interval=0)
    assert path.read_text() == "untouched\n"


def test_refresh_noops_without_path_or_ip():
    scan = sequence_scan(["SHA256:x"])
    assert not refresh_bootstrap_fingerprint("", _contract(), scan=scan)
    assert not refresh_bootstrap_fingerprint("/tmp/x.json", _contract(ip=" "), scan=scan)
    assert scan.calls == []


def test_refresh_requires_contract():
    with pytest.raises(ContractError, match="bootstrap result is nil"):
        refresh_bootstrap_fingerprint("/tmp/x.json", None)


def test_refresh_uses_contract_port(tmp_path):
    scan = sequence_scan(["SHA256:n"])
    refresh_bootstrap_fingerprint(str(tmp_path / "r.json"), _contract(ssh_port=2222), scan=scan, probe_interval=0)
    assert scan.calls[0] == ("10.0.0.5", 2222)


def test_refresh_stops_on_cancelled_invocation(tmp_path):
    path = tmp_path / "r.json"
    path.write_text("untouched\n")
    deadline = Deadline()
    deadline.cancel()
    scan = sequence_scan(["SHA256:new"])

    with pytest.raises(DeadlineExceeded, match="context canceled"):
        refresh_bootstrap_fingerprint(str(path), _contract(), scan=scan, deadline=deadline)

    assert scan.calls == []
    assert path.read_text() == "untouched\n"


def test_refresh_budget_never_outlives_invocation(tmp_path):
    counter = iter(range(10**6))
    scan = lambda host, port, deadline: f"SHA256:K{next(counter)}"
    start = time.monotonic()

    with pytest.raises(DeadlineExceeded, match="context deadline exceeded"):
        refresh_bootstrap_fingerprint(
            str(tmp_path / "r.json"), _contract(), scan=scan,
            timeout=25.0, probe_interval=0.01, deadline=Deadline.after(0.2),
        )

    assert time.monotonic() - start < 5
