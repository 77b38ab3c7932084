"""
CLI interface for the shipwright pipeline orchestrator.

Provides commands to discover, inspect, plan and run pipelines, inspect
past runs and prune old artifacts.

Pipelines are defined as YAML or JSON files in a definitions directory
(default: the packaged shipwright/definitions) or passed as a file path.
"""

import json
import signal
from pathlib import Path
from typing import Optional

import click

from shipwright import __version__
from shipwright.errors import PipelineDefinitionError, ShipwrightError


# Packaged pipeline definitions
DEFINITIONS_DIR = Path(__file__).parent / "definitions"

EXIT_CODES = {"succeeded": 0, "failed": 1, "cancelled": 2}

STATUS_MARKS = {
    "succeeded": "✓",
    "failed": "✗",
    "skipped": "-",
}


def _registry(definitions_dir: Optional[str]):
    from shipwright.registry import PipelineRegistry

    return PipelineRegistry(Path(definitions_dir) if definitions_dir else DEFINITIONS_DIR)


def _load_pipeline(pipeline: str, definitions_dir: Optional[str]):
    """Load a pipeline by path or ID, exiting with status 1 on errors."""
    try:
        return _registry(definitions_dir).resolve(pipeline)
    except ShipwrightError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)


def _trigger(ref: str, event: Optional[str]):
    from shipwright.schemas import TriggerContext

    try:
        return TriggerContext.from_ref(ref, event)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--ref/--event")


definitions_option = click.option(
    "--definitions-dir",
    type=click.Path(file_okay=False),
    help="Directory containing pipeline definitions",
)


@click.group()
@click.version_option(version=__version__, prog_name="shipwright")
@click.pass_context
def main(ctx):
    """
    shipwright - Multi-platform build/test/package/release orchestrator.

    Expands jobs across platform matrices, runs them over a dependency
    graph, and publishes a draft release on version tags.
    """
    from shipwright.config import ConfigError, ShipwrightConfig, load_config

    ctx.ensure_object(dict)
    try:
        ctx.obj["config"] = load_config()
    except FileNotFoundError:
        # No config file yet: run with defaults; `init` writes one
        ctx.obj["config"] = ShipwrightConfig()
    except ConfigError as e:
        # Reported by commands that need the config
        ctx.obj["config_error"] = str(e)


def _config(ctx):
    """Return the loaded config, exiting with status 1 if it is invalid."""
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Fix config.yaml or run 'shipwright init --force'.", err=True)
        raise SystemExit(1)
    return ctx.obj["config"]


@main.command("run")
@click.argument("pipeline")
@click.option("--ref", required=True, help="Git ref that triggered the run, e.g. refs/tags/v1.2.3")
@click.option(
    "--event",
    type=click.Choice(["push", "tag", "pull_request"]),
    help="Trigger event kind (default: inferred from --ref)",
)
@click.option("--workers", type=int, help="Concurrency limit for job instances")
@click.option("--source", type=click.Path(exists=True, file_okay=False), help="Source tree to check out")
@definitions_option
@click.pass_context
def run(ctx, pipeline: str, ref: str, event: Optional[str], workers: Optional[int],
        source: Optional[str], definitions_dir: Optional[str]):
    """
    Run a pipeline.

    PIPELINE is a definition file path or a pipeline ID.

    Examples:

        shipwright run ci --ref refs/heads/master

        shipwright run ci --ref refs/tags/v1.2.3

        shipwright run ./ci.yaml --ref refs/tags/v1.2.3 --workers 2
    """
    from dataclasses import replace

    from shipwright.pipeline import PipelineRun
    from shipwright.utils import setup_logging

    config = _config(ctx)
    if source:
        config = replace(config, source_dir=source)

    setup_logging(
        log_file=Path(config.log_file).expanduser() if config.log_file else None,
        log_level=config.log_level,
        log_format=config.log_format,
        console_output=config.log_console,
    )

    pipeline_def = _load_pipeline(pipeline, definitions_dir)
    trigger = _trigger(ref, event)

    def progress(event_name: str, **kwargs):
        if event_name == "job_fail":
            error = kwargs.get("error") or {}
            click.echo(f"  ✗ {kwargs['instance_id']}: {error.get('message') or 'failed'}", err=True)

    try:
        pipeline_run = PipelineRun(
            pipeline_def,
            trigger,
            config=config,
            max_workers=workers,
            progress_callback=progress,
        )
    except (ShipwrightError, OSError) as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    previous = signal.signal(signal.SIGINT, lambda signum, frame: pipeline_run.cancel())
    try:
        result = pipeline_run.execute()
    except PipelineDefinitionError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)
    finally:
        signal.signal(signal.SIGINT, previous)

    click.echo(f"Run {result.run_id} ({pipeline_def.pipeline_id} @ {trigger.ref})")
    for instance in result.instances:
        status = instance.status.value
        suffix = f" ({instance.skip_reason.value})" if instance.skip_reason else ""
        click.echo(f"  {STATUS_MARKS.get(status, '?')} {instance.instance_id}: {status}{suffix}")

    if result.gate is not None:
        click.echo(f"Release: {result.gate.state.value}")
        if result.gate.record is not None:
            record = result.gate.record
            click.echo(f"  {record.title} (tag {record.tag}, draft)")
            for asset in record.assets:
                click.echo(f"    {asset.name} [{asset.content_type}] <- {asset.source_artifact_key}")

    mark = "✓" if result.success else "✗"
    click.echo(f"{mark} {result.status.value} in {result.duration_ms}ms")
    raise SystemExit(EXIT_CODES[result.status.value])


@main.command("plan")
@click.argument("pipeline")
@click.option("--ref", default="refs/heads/main", show_default=True, help="Git ref to expand against")
@click.option("--event", type=click.Choice(["push", "tag", "pull_request"]), help="Trigger event kind")
@definitions_option
def plan(pipeline: str, ref: str, event: Optional[str], definitions_dir: Optional[str]):
    """
    Show the expanded job graph without running anything.

    Example:

        shipwright plan ci --ref refs/tags/v1.2.3
    """
    from shipwright.matrix import expand_all
    from shipwright.scheduler import topological_order

    pipeline_def = _load_pipeline(pipeline, definitions_dir)
    trigger = _trigger(ref, event)

    try:
        order = topological_order(pipeline_def.jobs)
        instances = expand_all(pipeline_def.jobs, trigger)
    except PipelineDefinitionError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Pipeline: {pipeline_def.pipeline_id} (version {pipeline_def.version})")
    for name in order:
        template = pipeline_def.get_job(name)
        deps = f" <- {', '.join(sorted(template.depends_on))}" if template.depends_on else ""
        policy = "" if template.fail_fast else " [fail_fast: false]"
        click.echo(f"{name}{deps}{policy}")
        if template.is_release:
            click.echo(f"  release: {template.release.title} ({len(template.release.assets)} assets)")
            continue
        for instance in instances[name]:
            click.echo(f"  {instance.instance_id}")
            for step in instance.steps:
                flags = []
                if step.compiled_skip:
                    flags.append("skip")
                if step.best_effort:
                    flags.append("best-effort")
                flag_text = f" ({', '.join(flags)})" if flags else ""
                click.echo(f"    {step.step_id}: {step.action.value}{flag_text}")


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize shipwright configuration."""
    import yaml

    from shipwright.config import ShipwrightConfig, get_shipwright_home

    home = get_shipwright_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = ShipwrightConfig(env_file=str(home / ".env")).to_dict()
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# Variables made available to shell.run steps\n")

    click.echo(f"Initialized shipwright config at {cfg_path}")


@main.command("prune")
@click.option("--older-than", "older_than", type=int, help="Retention window in days (default: config)")
@click.pass_context
def prune(ctx, older_than: Optional[int]):
    """Delete run artifacts older than the retention window."""
    from shipwright.artifacts import prune_runs

    config = _config(ctx)
    days = older_than if older_than is not None else config.artifact_retention_days
    removed = prune_runs(config.path("artifact_root"), days)
    for run_id in removed:
        click.echo(f"  pruned {run_id}")
    click.echo(f"Pruned {len(removed)} run(s) older than {days} days")


@main.group("pipelines")
def pipelines_group():
    """Inspect pipeline definitions."""
    pass


@pipelines_group.command("list")
@definitions_option
def list_pipelines(definitions_dir: Optional[str]):
    """List available pipelines."""
    pipeline_ids = _registry(definitions_dir).list_pipelines()
    if not pipeline_ids:
        click.echo("No pipeline definitions found.")
        return
    for pipeline_id in pipeline_ids:
        click.echo(pipeline_id)


@pipelines_group.command("show")
@click.argument("pipeline")
@definitions_option
def show_pipeline(pipeline: str, definitions_dir: Optional[str]):
    """Show a pipeline definition."""
    from shipwright.registry import PipelineRegistry

    pipeline_def = _load_pipeline(pipeline, definitions_dir)
    click.echo(f"Pipeline: {pipeline_def.pipeline_id}")
    click.echo(f"Version: {pipeline_def.version}")
    click.echo(f"SHA256: {PipelineRegistry.compute_hash(pipeline_def)}")
    click.echo()
    click.echo(json.dumps(pipeline_def.to_dict(), indent=2))


@main.group("runs")
def runs_group():
    """Inspect past runs."""
    pass


def _run_store(ctx):
    from shipwright.run_store import FileRunStore

    return FileRunStore(_config(ctx).path("run_root"))


@runs_group.command("list")
@click.option("--pipeline", "pipeline_id", help="Only runs of this pipeline")
@click.option("--limit", default=20, show_default=True, type=int)
@click.pass_context
def list_runs(ctx, pipeline_id: Optional[str], limit: int):
    """List recent runs, newest first."""
    runs = _run_store(ctx).list_runs(pipeline_id)[:limit]
    if not runs:
        click.echo("No runs found.")
        return
    for record in runs:
        click.echo(
            f"{record.run_id}  {record.pipeline_id:<16} {record.status.value:<10} "
            f"{record.trigger.ref}"
        )


@runs_group.command("show")
@click.argument("run_id")
@click.pass_context
def show_run(ctx, run_id: str):
    """Show a run record as JSON."""
    record = _run_store(ctx).get_run(run_id)
    if record is None:
        click.echo(f"✗ Unknown run: {run_id}", err=True)
        raise SystemExit(1)
    click.echo(json.dumps(record.to_dict(), indent=2))


if __name__ == "__main__":
    main()
