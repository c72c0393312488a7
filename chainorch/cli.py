"""
CLI interface for the chainorch deployment orchestrator.

Provides commands to plan and run tagged deployment steps against the
configured network, and to inspect the per-network record store.

Steps are loaded from a "module:attribute" reference (--steps); records
live in <paths.deployments>/<network.name>/<Name>.json.
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.table import Table

from chainorch import __version__
from chainorch.catalog import BuildCatalog
from chainorch.config import (
    CONFIG_FILENAME,
    ChainorchConfig,
    ConfigError,
    default_config,
    get_chainorch_home,
    load_config,
)
from chainorch.engine import DeployEngine
from chainorch.errors import ChainorchError
from chainorch.record_store import FileRecordStore
from chainorch.remote import RemoteEnvironment
from chainorch.runner import Orchestrator
from chainorch.scheduler import Scheduler
from chainorch.schemas import RecordKind
from chainorch.steps import StepLoadError, load_steps
from chainorch.utils import console, setup_logging, short_address


@click.group()
@click.version_option(version=__version__, prog_name="chainorch")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="CHAINORCH_CONFIG",
    help=f"Config file (default: $CHAINORCH_HOME/{CONFIG_FILENAME})",
)
@click.pass_context
def main(ctx, config_path: Optional[Path]):
    """
    chainorch - Deployment orchestrator for interdependent on-chain components.

    Plans tagged steps and deploys, upgrades or migrates each target exactly
    once per change.
    """
    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config(config_path)
    except ConfigError as e:
        # init runs without a config; other commands check ctx.obj
        ctx.obj["config_error"] = str(e)


# =============================================================================
# Helpers
# =============================================================================


def _require_config(ctx) -> ChainorchConfig:
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'chainorch init' to create a configuration file.", err=True)
        raise SystemExit(1)
    config = ctx.obj["config"]
    if not ctx.obj.get("logging_ready"):
        setup_logging(
            log_file=config.get_log_file_path(),
            log_level=config.get_log_level(),
            log_format=config.get_log_format(),
            console_output=config.should_log_to_console(),
        )
        ctx.obj["logging_ready"] = True
    return config


def _store(config: ChainorchConfig) -> FileRecordStore:
    return FileRecordStore(config.get_records_dir())


def _build_remote(config: ChainorchConfig, catalog: BuildCatalog) -> RemoteEnvironment:
    """JSON-RPC environment for the configured node."""
    from chainorch.rpc import JsonRpcEnvironment

    if not config.rpc_url:
        raise ConfigError("rpc.url is required (or set CHAINORCH_RPC_URL)")
    if not config.deployer:
        raise ConfigError("rpc.deployer is required")
    return JsonRpcEnvironment(
        url=config.rpc_url,
        deployer=config.deployer,
        catalog=catalog,
        timeout=config.rpc_timeout,
        confirmation_timeout=config.confirmation_timeout,
    )


def _build_engine(config: ChainorchConfig) -> DeployEngine:
    catalog = BuildCatalog(config.artifacts_dir)
    return DeployEngine(
        store=_store(config),
        remote=_build_remote(config, catalog),
        catalog=catalog,
        retry=config.get_retry_policy(),
        on_missing_code=config.get_missing_code_policy(),
    )


def _load_scheduler(steps_ref: str) -> Scheduler:
    try:
        return Scheduler(load_steps(steps_ref))
    except (StepLoadError, ChainorchError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)


def _print_plan(plan) -> None:
    table = Table(title="Plan")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Tags")
    table.add_column("Depends on")
    table.add_column("State")
    for planned in plan:
        table.add_row(
            str(planned.position + 1),
            planned.name,
            ", ".join(sorted(planned.tags)),
            ", ".join(sorted(planned.step.dependency_tags)),
            "[yellow]skip[/yellow]" if planned.skipped else "run",
        )
    console.print(table)


# =============================================================================
# Plan / Run
# =============================================================================


@main.command("plan")
@click.argument("tags", nargs=-1)
@click.option("--steps", "steps_ref", required=True, help="Step set as module:attribute")
@click.pass_context
def plan_cmd(ctx, tags: tuple[str, ...], steps_ref: str):
    """
    Show the ordered steps a tag request would run.

    TAGS default to every step.

    Examples:

        chainorch plan Core --steps deploy.steps:STEPS
    """
    config = _require_config(ctx)
    scheduler = _load_scheduler(steps_ref)
    try:
        plan = scheduler.plan(list(tags), config.get_environment())
    except ChainorchError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    _print_plan(plan)


@main.command("run")
@click.argument("tags", nargs=-1)
@click.option("--steps", "steps_ref", required=True, help="Step set as module:attribute")
@click.option("--dry-run", is_flag=True, help="Print the plan without running any step")
@click.pass_context
def run_cmd(ctx, tags: tuple[str, ...], steps_ref: str, dry_run: bool):
    """
    Run the steps producing TAGS (and everything they depend on).

    Examples:

        chainorch run Core --steps deploy.steps:STEPS

        chainorch run --steps deploy/steps.py:build_steps --dry-run
    """
    config = _require_config(ctx)
    scheduler = _load_scheduler(steps_ref)
    environment = config.get_environment()

    if dry_run:
        click.echo("=" * 50)
        click.echo("=== DRY RUN MODE === (nothing is deployed)")
        click.echo("=" * 50)
        try:
            plan = scheduler.plan(list(tags), environment)
        except ChainorchError as e:
            click.echo(f"✗ {e}", err=True)
            raise SystemExit(1)
        _print_plan(plan)
        return

    try:
        engine = _build_engine(config)
        result = Orchestrator(scheduler, engine, environment).run(list(tags))
    except (ConfigError, ChainorchError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    for outcome in result.outcomes:
        click.echo(f"  {outcome.status.value:<10} {outcome.step}")

    if not result.success:
        click.echo(f"✗ {result.failed_step} failed: {result.error}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ {len(result.outcomes)} step(s) on {environment.name}")


# =============================================================================
# Status
# =============================================================================


@main.command("status")
@click.argument("name")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in RecordKind]),
    default=None,
    help="Also show what ensure would do for this kind",
)
@click.option("--artifact", "artifact_ref", default=None, help="Build to compare against")
@click.pass_context
def status_cmd(ctx, name: str, kind: Optional[str], artifact_ref: Optional[str]):
    """Classify NAME against the latest build."""
    config = _require_config(ctx)
    try:
        engine = _build_engine(config)
        verdict = engine.classify(name, artifact_ref)
        action = engine.preview(name, kind, artifact_ref) if kind else None
    except (ConfigError, ChainorchError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    click.echo(f"{name}: {verdict.classification.value}")
    if verdict.record is not None:
        click.echo(f"  address:   {verdict.record.address}")
        click.echo(f"  kind:      {verdict.record.kind.value}")
    if verdict.installed_fingerprint:
        click.echo(f"  installed: {verdict.installed_fingerprint}")
    if verdict.build_fingerprint:
        click.echo(f"  build:     {verdict.build_fingerprint}")
    if verdict.stale:
        click.echo("  (recorded address has no code)")
    if action is not None:
        click.echo(f"  ensure({kind}) would: {action.value}")


# =============================================================================
# Records
# =============================================================================


@main.group("records")
def records_group():
    """Inspect and edit the deployment record store."""
    pass


@records_group.command("list")
@click.pass_context
def records_list(ctx):
    """List records for the configured network."""
    config = _require_config(ctx)
    store = _store(config)
    names = store.names()
    if not names:
        click.echo(f"No records for {config.network_name}.")
        return

    table = Table(title=f"Records ({config.network_name})")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Address")
    table.add_column("Fingerprint")
    for name in names:
        record = store.get(name)
        table.add_row(
            name,
            record.kind.value,
            record.address,
            short_address(record.fingerprint) if record.fingerprint else "-",
        )
    console.print(table)


@records_group.command("show")
@click.argument("name")
@click.pass_context
def records_show(ctx, name: str):
    """Show a record as JSON."""
    config = _require_config(ctx)
    record = _store(config).get_or_none(name)
    if record is None:
        click.echo(f"✗ No record for {name}", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(record.to_dict(), indent=2))


@records_group.command("delete")
@click.argument("name")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def records_delete(ctx, name: str, yes: bool):
    """Delete a record (the deployed instance is left alone)."""
    config = _require_config(ctx)
    store = _store(config)
    if not store.exists(name):
        click.echo(f"✗ No record for {name}", err=True)
        raise SystemExit(1)
    if not yes:
        click.confirm(f"Delete record {name} on {config.network_name}?", abort=True)
    store.delete(name)
    click.echo(f"Deleted {name}")


@main.command("pending")
@click.pass_context
def pending_cmd(ctx):
    """List Direct replacements staged but not yet promoted."""
    from chainorch.swap import is_shadow_name, canonical_name

    config = _require_config(ctx)
    store = _store(config)
    pending = [n for n in store.names() if is_shadow_name(n)]
    if not pending:
        click.echo("No pending migrations.")
        return
    for shadow in pending:
        record = store.get(shadow)
        click.echo(f"{canonical_name(shadow)}: staged at {record.address} ({shadow})")


# =============================================================================
# Init
# =============================================================================


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@click.option("--network", default="localhost", show_default=True, help="Network name")
def init(force: bool, network: str):
    """Initialize chainorch configuration."""
    home = get_chainorch_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / CONFIG_FILENAME
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg_path.write_text(yaml.safe_dump(default_config(network), sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# CHAINORCH_RPC_URL=...\n# CHAINORCH_NETWORK=...\n")

    click.echo(f"Initialized chainorch config at {cfg_path}")


if __name__ == "__main__":
    sys.exit(main())
