# src/talosvm/cli/app.py
from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

import typer

from talosvm.bootstrap.cluster_ops import ClusterOps, explain_cluster_error
from talosvm.bootstrap.errors import BootstrapError, StepFailedError, UserError
from talosvm.bootstrap.models import BootstrapResult, RunStatus
from talosvm.bootstrap.orchestrator import BootstrapOrchestrator
from talosvm.cli.prompt import host_key_prompt
from talosvm.config.loader import ConfigError, load_config
from talosvm.config.models import TalosVMConfig
from talosvm.logging.log import DEFAULT_LOG_DIR, init_logging
from talosvm.observers.console import ConsoleObserver, fmt_duration
from talosvm.observers.dispatcher import EventBus
from talosvm.observers.events import new_ctx
from talosvm.observers.jsonfile import JsonFileObserver
from talosvm.observers.logger import LoggerObserver
from talosvm.ssh.errors import SSHError
from talosvm.utils.execution import Deadline, DeadlineExceeded
from talosvm.workflow.contract import ContractError
from talosvm.workflow.orchestrator import provision_and_bootstrap, resolve_contract


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Harden a remote Ubuntu VM and bring up a Talos-in-Docker cluster")

EXPECTED_ERRORS = (
    ConfigError,
    ContractError,
    SSHError,
    BootstrapError,
    DeadlineExceeded,
)


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _print_error(err: Exception) -> None:
    typer.secho("Error: ", fg=typer.colors.RED, err=True, nl=False)
    typer.echo(str(err), err=True)
    hint = getattr(err, "hint", None)
    if hint:
        typer.secho("Hint: ", fg=typer.colors.YELLOW, err=True, nl=False)
        typer.secho(hint, fg=typer.colors.CYAN, err=True)


@contextmanager
def _cli_errors(json_out: bool = False, report: Optional[BootstrapResult] = None) -> Iterator[None]:
    """
    Turn expected failures into a one-line error and exit status 1.
    With --json the failed run report goes to stdout instead.
    """
    try:
        yield
    except StepFailedError as e:
        if json_out:
            typer.echo(e.result.to_json())
        else:
            _print_error(e)
        raise typer.Exit(code=1)
    except EXPECTED_ERRORS as e:
        if json_out and report is not None:
            report.finish(RunStatus.FAILED, str(e))
            typer.echo(report.to_json())
        else:
            _print_error(e)
        raise typer.Exit(code=1)


def _init(verbose: bool, json_out: bool) -> Tuple[str, EventBus]:
    """
    Logging plus the observer set for one invocation.
    Human runs get progress lines on stdout; JSON runs keep stdout for the report.
    """
    logger, run_id, _ = init_logging(verbose=verbose)
    observers = [
        LoggerObserver(logger, level=logging.INFO if json_out else logging.DEBUG),
        JsonFileObserver(DEFAULT_LOG_DIR / f"{run_id}.jsonl"),
    ]
    if not json_out:
        observers.insert(0, ConsoleObserver())
    return run_id, EventBus(observers=observers)


def _load(config: str) -> TalosVMConfig:
    with _cli_errors():
        return load_config(config)


def _report(cfg: TalosVMConfig, dry_run: bool, host: str = "", user: str = "") -> BootstrapResult:
    """Empty run report for failures that happen before any step runs."""
    return BootstrapResult(
        vm_host=host or cfg.vm.host,
        vm_user=user or cfg.vm.user,
        cluster=cfg.cluster.name,
        kubeconfig_path=cfg.cluster.kubeconfig_path,
        dry_run=dry_run,
    )


def _print_summary(title: str, res: BootstrapResult) -> None:
    total = time.time() - res.started_at.timestamp()
    typer.echo("")
    typer.secho(f"✓ {title}", fg=typer.colors.GREEN)
    typer.echo(f"  VM:      {typer.style(res.vm_host, fg=typer.colors.CYAN)}")
    typer.echo(f"  Cluster: {typer.style(res.cluster, fg=typer.colors.CYAN)}")
    typer.echo(f"  Total:   {typer.style(fmt_duration(total), fg=typer.colors.CYAN)}")


def _finish(title: str, res: BootstrapResult, json_out: bool) -> None:
    if json_out:
        typer.echo(res.to_json())
    elif res.dry_run:
        for step in res.steps:
            typer.echo(f"  {step.name:<18} {step.message}")
    else:
        _print_summary(title, res)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def bootstrap(
    config: str = typer.Option(..., "--config", help="Path to YAML config file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate and print planned operations without changes"),
    json_out: bool = typer.Option(False, "--json", help="Print machine-readable result JSON"),
    verbose: bool = typer.Option(False, "--verbose"),
):
    """Run the bootstrap steps on an existing Ubuntu VM."""
    cfg = _load(config)
    run_id, bus = _init(verbose, json_out)

    orch = BootstrapOrchestrator(
        cfg,
        bus=bus,
        prompt=host_key_prompt(cfg, interactive=not json_out),
        event_ctx=new_ctx(cfg.vm.host, cfg.cluster.name, run_id=run_id),
    )
    with _cli_errors(json_out, _report(cfg, dry_run)):
        res = orch.run(dry_run=dry_run)
    _finish("bootstrap completed", res, json_out)


@app.command("provision-and-bootstrap")
def provision_and_bootstrap_cmd(
    config: str = typer.Option(..., "--config", help="Path to bootstrap YAML config file"),
    bootstrap_result: Optional[str] = typer.Option(
        None, "--bootstrap-result", help="Path to bootstrap result JSON/YAML"
    ),
    vm_config: Optional[str] = typer.Option(
        None, "--vm-config", help="Path to VM creation config (SOPS or cleartext)"
    ),
    stabilize_fingerprint: bool = typer.Option(
        False,
        "--stabilize-fingerprint",
        help="Wait for the VM host key to settle and record it in --bootstrap-result first",
    ),
    dry_run: bool = typer.Option(False, "--dry-run"),
    json_out: bool = typer.Option(False, "--json"),
    verbose: bool = typer.Option(False, "--verbose"),
):
    """Merge a VM bootstrap contract into the config, then run the bootstrap."""
    cfg = _load(config)
    with _cli_errors(json_out, _report(cfg, dry_run)):
        contract = resolve_contract(bootstrap_result, vm_config)
        if stabilize_fingerprint and not bootstrap_result:
            raise ContractError("--stabilize-fingerprint requires --bootstrap-result")
    run_id, bus = _init(verbose, json_out)

    with _cli_errors(json_out, _report(cfg, dry_run, contract.ip, contract.ssh_user)):
        res = provision_and_bootstrap(
            cfg,
            contract,
            contract_path=bootstrap_result,
            stabilize_fingerprint=stabilize_fingerprint,
            dry_run=dry_run,
            bus=bus,
            prompt=host_key_prompt(cfg, interactive=not json_out),
            event_ctx=new_ctx(contract.ip, cfg.cluster.name, run_id=run_id),
        )
    _finish("workflow completed", res, json_out)


def _cluster_op(config: str, verbose: bool):
    cfg = _load(config)
    init_logging(verbose=verbose)
    ops = ClusterOps(prompt=host_key_prompt(cfg, interactive=True))
    return cfg, ops, Deadline.after(cfg.timeouts.total_seconds)


@contextmanager
def _explained(cfg: TalosVMConfig) -> Iterator[None]:
    with _cli_errors():
        try:
            yield
        except SSHError as e:
            err = explain_cluster_error(e, cfg)
            if err is e:
                raise
            raise err from e


@app.command("cluster-status")
def cluster_status(
    config: str = typer.Option(..., "--config", help="Path to YAML config file"),
    verbose: bool = typer.Option(False, "--verbose"),
):
    """Show the Talos-in-Docker cluster on the remote VM."""
    cfg, ops, deadline = _cluster_op(config, verbose)
    with _explained(cfg):
        out = ops.cluster_status(cfg, deadline)
    typer.echo(out)


@app.command("kubeconfig-export")
def kubeconfig_export(
    config: str = typer.Option(..., "--config", help="Path to YAML config file"),
    output: Path = typer.Option(..., "--output", "--out", "-o", help="Local output path for kubeconfig"),
    verbose: bool = typer.Option(False, "--verbose"),
):
    """Export the cluster kubeconfig from the remote VM."""
    cfg, ops, deadline = _cluster_op(config, verbose)
    with _explained(cfg):
        content = ops.kubeconfig_export(cfg, deadline)

    with _cli_errors():
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(output, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(content)
        except OSError as e:
            raise UserError(f"write kubeconfig {output}: {e}") from e
    typer.echo(f"Kubeconfig exported: {output}")


app.command("kubeconfig", hidden=True)(kubeconfig_export)


@app.command("mount-check")
def mount_check(
    config: str = typer.Option(..., "--config", help="Path to YAML config file"),
    verbose: bool = typer.Option(False, "--verbose"),
):
    """Verify the configured mount is visible inside the Talos node."""
    cfg, ops, deadline = _cluster_op(config, verbose)
    with _explained(cfg):
        out = ops.mount_check(cfg, deadline)
    typer.echo(out)


if __name__ == "__main__":
    app()
