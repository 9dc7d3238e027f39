# cli.py
from __future__ import annotations

import json
import signal
import sys
from contextlib import contextmanager
from pathlib import Path

import click

from pipelane.config import RunConfig
from pipelane.errors import (
    EXIT_CONFIG_ERROR,
    EXIT_INTERNAL_ERROR,
    ConfigError,
    DuplicateArtifactError,
    MissingArtifactError,
)
from pipelane.pipeline import load_pipeline
from pipelane.platforms import default_registry
from pipelane.report import RunReport
from pipelane.runner import run_pipeline
from pipelane.scheduler import Scheduler
from pipelane.ui.console import Console, get_console, set_console


@contextmanager
def _cancel_on_signals():
    """
    Route SIGINT/SIGTERM to Scheduler.cancel() for the duration of a run.
    Yields the hook passed to run_pipeline(on_scheduler=...).
    """
    console = get_console()
    previous = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}

    def install(scheduler: Scheduler) -> None:
        def handler(signum, frame):
            console.print_info(f"\nReceived signal {signum}, cancelling (running jobs will finish)...")
            scheduler.cancel()

        for sig in previous:
            signal.signal(sig, handler)

    try:
        yield install
    finally:
        for sig, h in previous.items():
            signal.signal(sig, h)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """pipelane: build/test pipeline orchestrator for multi-platform CI."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("pipeline_file", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Number of parallel workers (default: one per platform)")
@click.option("--source", "source_root", default=None, type=click.Path(file_okay=False, path_type=Path), help="Source tree copied into each job workspace (default: .)")
@click.option("--work-dir", "work_root", default=None, type=click.Path(file_okay=False, path_type=Path), help="Job workspace directory")
@click.option("--artifact-dir", "artifact_root", default=None, type=click.Path(file_okay=False, path_type=Path), help="Artifact store directory")
@click.option("--shell", default=None, help="Shell used to run job commands")
@click.option("--keep-artifacts", is_flag=True, default=False, help="Do not release artifacts after the run")
@click.option("--report", "report_path", default=None, type=click.Path(dir_okay=False, path_type=Path), help="Write the JSON run report here")
def run(pipeline_file, workers, source_root, work_root, artifact_root, shell, keep_artifacts, report_path):
    """Run a pipeline file."""
    console = get_console()

    try:
        config = RunConfig.from_env(
            source_root=source_root,
            work_root=work_root,
            artifact_root=artifact_root,
            max_workers=workers,
            shell=shell,
            keep_artifacts=keep_artifacts or None,
        )
        pipeline = load_pipeline(pipeline_file)
        with _cancel_on_signals() as install:
            report = run_pipeline(pipeline, config, console=console, on_scheduler=install)
    except ConfigError as e:
        console.print_error(
            "Invalid pipeline",
            str(e),
            suggestion=f"Check the pipeline with:\n  pipelane validate {pipeline_file}",
        )
        sys.exit(EXIT_CONFIG_ERROR)
    except (MissingArtifactError, DuplicateArtifactError) as e:
        console.print_error("Internal consistency error", str(e))
        console.print_exception(e)
        sys.exit(EXIT_INTERNAL_ERROR)
    except Exception as e:
        console.print_error("Internal error", f"{type(e).__name__}: {e}")
        console.print_exception(e)
        sys.exit(EXIT_INTERNAL_ERROR)

    console.print_results(report)
    if report_path is not None:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(report.to_json(), encoding="utf-8")
        console.print_info(f"Report written to {report_path}")
    sys.exit(report.exit_code)


@cli.command()
@click.argument("pipeline_file", type=click.Path(dir_okay=False, path_type=Path))
def validate(pipeline_file):
    """Validate a pipeline file and print its plan without running anything."""
    console = get_console()
    try:
        pipeline = load_pipeline(pipeline_file)
        graph = pipeline.graph()
    except ConfigError as e:
        console.print_error("Invalid pipeline", str(e))
        sys.exit(1)
    except Exception as e:
        console.print_error("Internal error", f"{type(e).__name__}: {e}")
        console.print_exception(e)
        sys.exit(EXIT_INTERNAL_ERROR)

    console.print_info(f"{pipeline.name}: valid ({len(graph)} jobs, {len(graph.lanes())} platforms)")
    console.print_plan(
        graph.levels(),
        {platform: [n.id for n in nodes] for platform, nodes in graph.lanes().items()},
    )


@cli.command()
def platforms():
    """List the registered platforms and their library path variable."""
    get_console().print_platforms(list(default_registry()))


@cli.command()
@click.argument("report_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def summarize(report_file):
    """Re-print a saved JSON run report; exits with the run's exit code."""
    console = get_console()
    try:
        report = RunReport.from_json(report_file.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, KeyError, ValueError) as e:
        console.print_error("Invalid report", f"Could not read {report_file}", details=[str(e)])
        sys.exit(EXIT_CONFIG_ERROR)
    console.print_results(report)
    sys.exit(report.exit_code)


if __name__ == "__main__":
    cli()
