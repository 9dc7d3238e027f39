# runner.py
from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

from .artifacts import ArtifactStore
from .config import RunConfig
from .dag import DependencyGraph
from .executor import Executor
from .pipeline import Pipeline, load_pipeline
from .report import RunReport
from .scheduler import Scheduler
from .ui.console import Console, get_console
from .workspace import WorkspaceManager


def make_scheduler(
    pipeline: Pipeline,
    config: RunConfig,
    *,
    executor: Optional[Executor] = None,
    console: Optional[Console] = None,
) -> Scheduler:
    return Scheduler(
        executor or Executor(shell=config.shell),
        ArtifactStore(config.artifact_root),
        WorkspaceManager(config.source_root, config.work_root),
        environment=pipeline.environment,
        base_env=config.base_env,
        max_workers=config.max_workers,
        console=console,
    )


def run_pipeline(
    pipeline: Pipeline | str | Path,
    config: Optional[RunConfig] = None,
    *,
    executor: Optional[Executor] = None,
    console: Optional[Console] = None,
    on_scheduler: Optional[Callable[[Scheduler], None]] = None,
) -> RunReport:
    """
    Validate, schedule and execute a pipeline; return the final report.

    The graph is fully validated before anything runs (ConfigError otherwise).
    Artifacts are released once the report is final unless
    `config.keep_artifacts` is set. `on_scheduler` receives the scheduler
    before the run starts (the CLI uses it to wire signal handling).
    """
    console = console or get_console()
    config = config or RunConfig.from_env()
    if not isinstance(pipeline, Pipeline):
        pipeline = load_pipeline(pipeline)

    graph: DependencyGraph = pipeline.graph()
    console.print_run_started(
        pipeline=pipeline.name,
        job_count=len(graph),
        platform_count=len(graph.lanes()),
    )

    scheduler = make_scheduler(pipeline, config, executor=executor, console=console)
    if on_scheduler is not None:
        on_scheduler(scheduler)

    try:
        report = scheduler.run(graph)
    finally:
        if not config.keep_artifacts:
            scheduler.store.release()
    return report
