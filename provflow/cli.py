"""Command line interface for running provflow workers."""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
from pathlib import Path
from typing import Optional

import typer

from provflow import (
    StepRunner,
    StepServices,
    StepWorker,
    WorkflowLauncher,
    default_registry,
    get_repository,
    get_transport,
    load_config,
)
from provflow.registry import WorkflowTemplate
from provflow.scheduler import pending_ticks

app = typer.Typer(help="CLI for provflow workflows")

# Command groups
instance_app = typer.Typer(help="Commands for inspecting workflow instances")
worker_app = typer.Typer(help="Commands for running workers")
template_app = typer.Typer(help="Commands for workflow templates")

app.add_typer(instance_app, name="instance")
app.add_typer(worker_app, name="worker")
app.add_typer(template_app, name="template")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v")) -> None:
    """provflow CLI entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_services(spec: str) -> StepServices:
    """Call the ``module:factory`` named by ``spec`` and return its services."""
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter("services must look like 'package.module:factory'")
    factory = getattr(importlib.import_module(module_name), attr)
    services = factory()
    if not isinstance(services, StepServices):
        raise typer.BadParameter(f"{spec} returned {type(services).__name__}, not StepServices")
    return services


@instance_app.command("list")
def instance_list() -> None:
    """
    List all workflow instances with their current status.

    Example:
        provflow instance list
        # Output: 3f1c...    provision-account    RUNNING
    """
    repo = get_repository()
    instances = asyncio.run(repo.list_instances())
    if not instances:
        typer.echo("No instances found")
        return
    for instance in instances:
        typer.echo(
            f"{instance.instance_id}\t{','.join(instance.step_ids)}\t{instance.status.value}"
        )


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """
    Show detailed information for a specific instance.

    Displays status, pending wait decision, failure and the step history.

    Example:
        provflow instance show 3f1c...
    """
    repo = get_repository()
    instance = asyncio.run(repo.get_instance(instance_id))
    if instance is None:
        typer.echo("Instance not found")
        raise typer.Exit(code=1)
    typer.echo(f"Instance {instance.instance_id}: {instance.status.value}")
    typer.echo(f"Current step: {instance.current_step or '-'}")
    pending = instance.loop.pending
    if pending is not None:
        typer.echo(
            f"Waiting: {pending.seconds}s check={pending.check} then_call={pending.then_call} "
            f"attempts={instance.loop.attempts}/{pending.max_attempts or '-'}"
        )
    if instance.loop.due_at is not None and not instance.status.is_terminal:
        typer.echo(f"Next tick: {instance.loop.due_at} (generation {instance.loop.generation})")
    if instance.failure is not None:
        typer.echo(f"Failure: {instance.failure.error_type}: {instance.failure.message}")
    if instance.state:
        typer.echo(f"State: {json.dumps(instance.state, sort_keys=True)}")
    for step in instance.steps:
        typer.echo(
            f"- {step.step_name}: {step.status or 'running'}"
            + (
                f" ({step.started_at} -> {step.completed_at})"
                if step.started_at or step.completed_at
                else ""
            )
            + (f" error={step.error}" if step.error else "")
        )


@instance_app.command("launch")
def instance_launch(
    workflow: str,
    payload_file: Optional[Path] = typer.Option(None, "--payload", help="JSON payload file"),
) -> None:
    """Launch a workflow template and publish its first tick."""
    payload = json.loads(payload_file.read_text()) if payload_file else {}
    config = load_config()
    launcher = WorkflowLauncher(
        get_repository(),
        default_registry(),
        transport=get_transport(),
        topic=config.scheduler.tick_topic,
    )
    instance_id = asyncio.run(launcher.launch(workflow, payload))
    typer.echo(instance_id)


@instance_app.command("resume")
def instance_resume(
    instance_id: Optional[str] = typer.Argument(None, help="Resume only this instance"),
) -> None:
    """
    Republish the current tick of RUNNING instances from their persisted state.

    Use after a worker crashed or a broker lost messages. Ticks that duplicate
    one still queued are dropped by the worker.

    Example:
        provflow instance resume
        provflow instance resume 3f1c...
    """
    config = load_config()
    transport = get_transport(config=config)

    async def _resume() -> int:
        ticks = await pending_ticks(get_repository(config=config), instance_id)
        for tick in ticks:
            await transport.publish(config.scheduler.tick_topic, tick)
        return len(ticks)

    try:
        count = asyncio.run(_resume())
    except LookupError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Republished {count} ticks")


@worker_app.command("start")
def worker_start(
    services: str = typer.Option(..., help="'module:factory' returning StepServices"),
    lifespan: Optional[float] = None,
    recover: bool = typer.Option(
        False, "--recover", help="Resume stranded instances before consuming"
    ),
) -> None:
    """
    Run a worker that advances workflow instances from the tick topic.

    Example:
        provflow worker start --services myapp.wiring:build_services --lifespan 300
    """
    config = load_config()
    runner = StepRunner(
        get_repository(config=config),
        default_registry(),
        load_services(services),
        settings=config.settings,
        fuzz_band=config.scheduler.fuzz_band,
    )
    worker = StepWorker(get_transport(config=config), runner, topic=config.scheduler.tick_topic)
    typer.echo(f"Starting worker on {config.scheduler.tick_topic}")
    asyncio.run(worker.start(lifespan=lifespan, recover=recover))


@template_app.command("list")
def template_list() -> None:
    """List registered steps and templates."""
    snapshot = default_registry().snapshot()
    for step in snapshot.steps:
        typer.echo(f"step\t{step.name}\t{step.version}")
    for template in snapshot.templates:
        typer.echo(f"template\t{template.id}\t{' -> '.join(template.step_ids)}")


@template_app.command("show")
def template_show(
    template: str,
    path: Optional[Path] = typer.Option(None, help="Load the template from a YAML file"),
) -> None:
    """Show the steps of a workflow template and their continuations."""
    registry = default_registry()
    try:
        wf = WorkflowTemplate.load(str(path)) if path else registry.template(template)
        descriptors = [registry.describe(step_id) for step_id in wf.step_ids]
    except LookupError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Template {wf.id}: {wf.title or ''}".rstrip())
    for descriptor in descriptors:
        typer.echo(f"- {descriptor.name} {descriptor.version}")
        for continuation in descriptor.continuations:
            typer.echo(f"    {continuation}")


if __name__ == "__main__":
    app()
