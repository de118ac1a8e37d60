# cli.py
from __future__ import annotations

import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click

from sdkcompat.config import PipelineConfig
from sdkcompat.model import SdkJobSpec, TriggerKind
from sdkcompat.notify import build_notifier
from sdkcompat.resolver import resolve
from sdkcompat.runner import PipelineInterrupted, load_workflow, run_pipeline, select_sdks
from sdkcompat.ui.console import Console, get_console, set_console


DEFAULT_WORKFLOW = "sdk_workflow.py"

TRIGGER_CHOICE = click.Choice([t.value for t in TriggerKind])


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  sdkcompat run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_WORKFLOW}",
                "  *_workflow.py",
            ],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}\n\nOr specify a workflow explicitly:\n  sdkcompat run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1 and workflow_files[0].name != DEFAULT_WORKFLOW:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  sdkcompat run --workflow {workflow_files[0]}",
        )
        sys.exit(1)

    return workflow_files[0]


def _load_specs(ctx, workflow: str | None, sdk_names: tuple[str, ...] = ()) -> tuple[Path, list[SdkJobSpec]]:
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        specs = select_sdks(load_workflow(workflow_path), sdk_names)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)
    return workflow_path, specs


def _build_config(
    work_dir: Optional[str],
    workers: Optional[int],
    notify_url: Optional[str],
    summary_out: Optional[str],
    readiness_timeout: Optional[float],
    port: Optional[int],
) -> PipelineConfig:
    config = PipelineConfig.from_env()
    service = config.service
    if readiness_timeout is not None:
        service = replace(service, readiness_timeout=readiness_timeout)
    if port is not None:
        service = replace(service, port=port)
    return replace(
        config,
        service=service,
        work_dir=Path(work_dir) if work_dir else config.work_dir,
        max_workers=workers if workers is not None else config.max_workers,
        notify_url=notify_url or config.notify_url,
        summary_path=Path(summary_out) if summary_out else config.summary_path,
    )


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and captured step output)",
)
@click.pass_context
def cli(ctx, debug):
    """sdkcompat: run every SDK's test suite against one search-server image."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--trigger", type=TRIGGER_CHOICE, default=TriggerKind.MANUAL.value, show_default=True, help="How this run was triggered")
@click.option("--docker-image", default=None, help="Server image tag to test (manual trigger only; defaults to nightly)")
@click.option("--sdk", "sdk_names", multiple=True, help="Only run these SDKs (repeatable)")
@click.option("--workers", default=None, type=int, help="Number of SDK jobs run in parallel (defaults to all)")
@click.option("--work-dir", default=None, help="Directory for SDK checkouts")
@click.option("--summary-out", default=None, help="Where to write the JSON summary")
@click.option("--notify-url", default=None, help="Webhook notified when any SDK fails")
@click.option("--readiness-timeout", default=None, type=float, help="Seconds to wait for the server to become ready")
@click.option("--port", default=None, type=int, help="Host port the server is bound to")
@click.pass_context
def run(ctx, workflow, trigger, docker_image, sdk_names, workers, work_dir, summary_out, notify_url, readiness_timeout, port):
    """Run every SDK's test suite against a server image."""
    console = get_console()
    workflow_path, specs = _load_specs(ctx, workflow, sdk_names)
    config = _build_config(work_dir, workers, notify_url, summary_out, readiness_timeout, port)
    notifier = build_notifier(config.notify_url)
    cancel = threading.Event()

    def _terminate(signum, frame):
        console.print_info(f"\nReceived signal {signum}, cancelling SDK jobs...")
        cancel.set()

    previous = signal.signal(signal.SIGTERM, _terminate)
    try:
        summary = run_pipeline(
            specs,
            trigger=trigger,
            docker_image=docker_image,
            config=config,
            notifier=notifier,
            cancel=cancel,
            workflow_name=workflow_path.name,
        )
    except PipelineInterrupted as e:
        console.print_summary(e.summary)
        if config.summary_path:
            e.summary.write(config.summary_path)
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        signal.signal(signal.SIGTERM, previous)

    console.print_summary(summary)
    if config.summary_path:
        path = summary.write(config.summary_path)
        console.print_info(f"Summary written to {path}")

    if cancel.is_set():
        console.print_info("\nTerminated")
        sys.exit(143)
    if summary.failed:
        sys.exit(1)


@cli.command(name="list")
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.pass_context
def list_sdks(ctx, workflow):
    """List the SDK jobs a workflow defines."""
    console = get_console()
    workflow_path, specs = _load_specs(ctx, workflow)
    console.print_header(f"{workflow_path.name}: {len(specs)} SDK(s)")
    for spec in specs:
        ref = spec.ref or "default branch"
        console.print_info(f"{spec.name} [{spec.toolchain.value}] {spec.repository} ({ref})")
        for index, step in enumerate(spec.steps, start=1):
            console.print_info(f"  {index}. [{step.phase.value}] {step.name}: {step.run}")


@cli.command(name="resolve")
@click.option("--trigger", type=TRIGGER_CHOICE, default=TriggerKind.MANUAL.value, show_default=True)
@click.option("--docker-image", default=None, help="Override tag (manual trigger only)")
def resolve_image(trigger, docker_image):
    """Print the server image a run would test."""
    config = PipelineConfig.from_env()
    image = resolve(trigger, docker_image, default=config.default_tag, repository=config.service.image_repository)
    click.echo(image.image)


@cli.command()
@click.option("--api", required=True, help="API base URL (e.g., http://localhost:8000)")
@click.option("--docker-image", default=None, help="Server image tag to test (defaults to nightly)")
@click.option("--trigger", type=TRIGGER_CHOICE, default=TriggerKind.MANUAL.value, show_default=True)
@click.option("--sdk", "sdk_names", multiple=True, help="Only run these SDKs (repeatable)")
@click.pass_context
def submit(ctx, api, docker_image, trigger, sdk_names):
    """Queue a pipeline run on the control plane."""
    from sdkcompat.agent.api_client import APIClient, APIError

    console = get_console()
    client = APIClient(api)
    try:
        result = client.dispatch_run(docker_image=docker_image, trigger=trigger, sdks=list(sdk_names))
    except APIError as e:
        console.print_error(
            "API request failed",
            str(e),
            suggestion=f"Verify the API URL is correct and the API at {client.base_url} is running.",
        )
        sys.exit(1)

    run_id = result.get("run_id")
    if not run_id:
        console.print_error(
            "Empty API response",
            "Received no run id from API.",
            suggestion=f"Check if the API at {client.base_url} is running correctly.",
        )
        sys.exit(1)

    console.print_info(f"\nSuccessfully queued run on {client.base_url}")
    console.print_info(f"  Run ID: {run_id}")
    console.print_info(f"  Image: {result.get('image')}")
    console.print_info("\nMonitor progress by running agents or checking the API.")


@cli.command()
@click.option("--api", required=True, help="API base URL (e.g., http://localhost:8000)")
@click.option("--agent-id", default=None, help="Unique agent identifier (defaults to hostname)")
@click.option("--poll-interval", default=5, type=int, help="Polling interval in seconds when no runs are queued")
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--work-dir", default=None, help="Directory for SDK checkouts")
@click.option("--notify-url", default=None, help="Webhook notified when any SDK fails")
@click.pass_context
def agent(ctx, api, agent_id, poll_interval, workflow, work_dir, notify_url):
    """Poll the control plane for queued runs and execute them."""
    import socket
    from sdkcompat.agent.agent import run_agent

    console = get_console()
    workflow_path = discover_workflow(workflow)
    config = _build_config(work_dir, None, notify_url, None, None, None)
    # The control plane stores summaries; no local file per run
    config = replace(config, summary_path=None)

    if not agent_id:
        agent_id = socket.gethostname()

    try:
        run_agent(api, agent_id, workflow_path, poll_interval, config, build_notifier(config.notify_url))
    except KeyboardInterrupt:
        console.print_info("\nAgent stopped by user")
        sys.exit(0)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)")
@click.option("--work-dir", default=None, help="Directory for SDK checkouts")
@click.option("--summary-out", default=None, help="Where to write the JSON summary")
@click.option("--notify-url", default=None, help="Webhook notified when any SDK fails")
@click.pass_context
def schedule(ctx, workflow, work_dir, summary_out, notify_url):
    """Run the pipeline every Monday at 06:00 UTC against the default image."""
    from sdkcompat.scheduler import WeeklyScheduler

    console = get_console()
    workflow_path = discover_workflow(workflow)
    config = _build_config(work_dir, None, notify_url, summary_out, None, None)
    notifier = build_notifier(config.notify_url)

    def scheduled_run(cancel: threading.Event):
        # Reload each week so workflow edits are picked up
        specs = load_workflow(workflow_path)
        summary = run_pipeline(
            specs,
            trigger=TriggerKind.SCHEDULED,
            config=config,
            notifier=notifier,
            cancel=cancel,
            workflow_name=workflow_path.name,
        )
        console.print_summary(summary)
        if config.summary_path:
            summary.write(config.summary_path)

    scheduler = WeeklyScheduler(scheduled_run)
    scheduler.install_signal_handlers()
    scheduler.run()


if __name__ == "__main__":
    cli()
