# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netharness/cli/app.py
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, List, Optional

import click
import typer

from netharness.artifacts.distributor import ArtifactDistributor, ArtifactSource
from netharness.config.loader import load_config
from netharness.config.models import NetConfig
from netharness.deploy.orchestrator import DeploymentOrchestrator
from netharness.errors import DeploymentError, HarnessError, SanityError
from netharness.lifecycle.controller import LifecycleController
from netharness.logging.log import init_logging
from netharness.observers.console import ConsoleObserver
from netharness.observers.dispatcher import EventBus
from netharness.observers.events import new_ctx
from netharness.observers.jsonfile import JsonFileObserver
from netharness.observers.logger import LoggerObserver
from netharness.sanity.checker import SANITY_FLAGS, SanityChecker, SanityOptions


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="netharness - deploy, check and tear down a test network")

# Local builds run from here (scripts/cargo-install-all.sh must exist under it)
SOURCE_ROOT = Path(os.environ.get("NETHARNESS_SOURCE_ROOT", Path.cwd()))

ConfigOpt = typer.Option(Path("net.yaml"), "--config", "-c", help="Cluster definition YAML")
DebugOpt = typer.Option(False, "--debug", help="Log DEBUG to the console")
TarballOpt = typer.Option(None, "-T", "--tarball", help="Deploy this release tarball")
ReleaseOpt = typer.Option(None, "-t", "--release", help="Download and deploy edge|beta|stable or a vX.Y.Z tag")
FeaturesOpt = typer.Option("", "-f", "--features", help="Extra cargo features for a local build")
ReuseOpt = typer.Option(False, "-r", "--reuse", help="Keep each node's identity and ledger from the last run")
ProgramsOpt = typer.Option(None, "-D", "--programs", help="Directory of custom programs to build and deploy")
OptionOpt = typer.Option(
    [],
    "-o",
    "--option",
    help=f"Sanity option, repeatable: {', '.join(SANITY_FLAGS)}",
)


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def fail(message: str) -> None:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def build_orchestrator(cfg: NetConfig, *, debug: bool) -> DeploymentOrchestrator:
    logger, run_id, log_path = init_logging(base_dir=cfg.log_dir, verbose=debug)
    net_log_dir = log_path.parent

    typer.echo("")
    typer.secho(f"netharness: {cfg.name}", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {net_log_dir}")
    typer.echo("")

    bus = EventBus(
        observers=[
            ConsoleObserver(),
            LoggerObserver(logger),
            JsonFileObserver(net_log_dir / "events.jsonl"),
        ]
    )
    run_ctx = new_ctx(network=cfg.name, run_id=run_id)

    distributor = ArtifactDistributor(SOURCE_ROOT)
    controller = LifecycleController(cfg, distributor, bus=bus, run_ctx=run_ctx)
    checker = SanityChecker(cfg, bus=bus, run_ctx=run_ctx)
    return DeploymentOrchestrator(
        cfg,
        distributor=distributor,
        controller=controller,
        sanity_checker=checker,
        net_log_dir=net_log_dir,
        bus=bus,
        run_ctx=run_ctx,
    )


def sanity_options(option: List[str]) -> SanityOptions:
    try:
        return SanityOptions.from_flags(option)
    except ValueError as exc:
        fail(str(exc))


def artifact_source(
    tarball: Optional[Path],
    release: Optional[str],
    features: str,
    programs: Optional[Path],
) -> ArtifactSource:
    if features and (tarball or release):
        fail("--features only applies to a local build")
    return ArtifactSource(tarball=tarball, channel=release, features=features, programs=programs)


def run(config: Path, debug: bool, action: Callable[[DeploymentOrchestrator], None]) -> None:
    """Load the cluster, wire the orchestrator and turn every harness failure into exit code 1."""
    try:
        cfg = load_config(config)
        orch = build_orchestrator(cfg, debug=debug)
        action(orch)
    except DeploymentError as exc:
        if exc.logs:
            typer.echo(exc.logs, err=True)
        fail(str(exc))
    except SanityError as exc:
        fail(f"{exc} (nodes left running for inspection)")
    except HarnessError as exc:
        fail(str(exc))


def _report(report) -> None:
    typer.echo("")
    typer.secho(report.summary(), bold=True)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def start(
    config: Path = ConfigOpt,
    tarball: Optional[Path] = TarballOpt,
    release: Optional[str] = ReleaseOpt,
    features: str = FeaturesOpt,
    reuse: bool = ReuseOpt,
    programs: Optional[Path] = ProgramsOpt,
    option: List[str] = OptionOpt,
    debug: bool = DebugOpt,
):
    """Deploy and start the network."""
    opts = sanity_options(option)

    def action(orch: DeploymentOrchestrator) -> None:
        source = artifact_source(tarball, release, features, programs)
        _report(orch.start(source, reuse=reuse, sanity=opts))

    run(config, debug, action)


@app.command()
def restart(
    config: Path = ConfigOpt,
    tarball: Optional[Path] = TarballOpt,
    release: Optional[str] = ReleaseOpt,
    features: str = FeaturesOpt,
    reuse: bool = ReuseOpt,
    programs: Optional[Path] = ProgramsOpt,
    option: List[str] = OptionOpt,
    debug: bool = DebugOpt,
):
    """Stop every node, then start the network again."""
    opts = sanity_options(option)

    def action(orch: DeploymentOrchestrator) -> None:
        source = artifact_source(tarball, release, features, programs)
        _report(orch.restart(source, reuse=reuse, sanity=opts))

    run(config, debug, action)


@app.command()
def update(
    config: Path = ConfigOpt,
    tarball: Optional[Path] = TarballOpt,
    release: Optional[str] = ReleaseOpt,
    features: str = FeaturesOpt,
    programs: Optional[Path] = ProgramsOpt,
    option: List[str] = OptionOpt,
    debug: bool = DebugOpt,
):
    """Replace the running software node by node (needs leader rotation)."""
    opts = sanity_options(option)

    def action(orch: DeploymentOrchestrator) -> None:
        source = artifact_source(tarball, release, features, programs)
        _report(orch.update(source, sanity=opts))

    run(config, debug, action)


@app.command()
def stop(config: Path = ConfigOpt, debug: bool = DebugOpt):
    """Stop every node. Unreachable nodes are reported and skipped."""
    run(config, debug, lambda orch: orch.stop())


@app.command()
def sanity(
    config: Path = ConfigOpt,
    option: List[str] = OptionOpt,
    debug: bool = DebugOpt,
):
    """Run the sanity battery against the bootstrap leader."""
    opts = sanity_options(option)

    def action(orch: DeploymentOrchestrator) -> None:
        report = orch.sanity(opts)
        for name, status in report.summary().items():
            typer.echo(f"  {name:<14} {status}")

    run(config, debug, action)


@app.command()
def logs(config: Path = ConfigOpt, debug: bool = DebugOpt):
    """Fetch remote node logs into the run's log directory."""

    def action(orch: DeploymentOrchestrator) -> None:
        fetched = orch.fetch_logs()
        for path in fetched:
            typer.echo(f"  {path}")
        typer.echo(f"Fetched {len(fetched)} log(s) into {orch.net_log_dir}")

    run(config, debug, action)


def main() -> None:
    """Console entry point. Usage errors exit with 1 like every other failure."""
    try:
        rc = app(standalone_mode=False)
    except click.ClickException as exc:
        exc.show()
        rc = 1
    except click.exceptions.Abort:
        rc = 1
    sys.exit(rc if isinstance(rc, int) else 0)


if __name__ == "__main__":
    main()
