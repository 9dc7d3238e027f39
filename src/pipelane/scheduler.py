# scheduler.py
from __future__ import annotations

import os
import tarfile
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set

from .artifacts import ArtifactHandle, ArtifactStore
from .dag import DependencyGraph
from .errors import DuplicateArtifactError, ExecutionError
from .executor import EnvironmentSettings, Executor, compose_env
from .model import ExecutionResult, JobNode, JobState, Stage
from .report import RunReport
from .ui.console import Console, get_console
from .workspace import WorkspaceManager

CANCELLED = "cancelled"


@dataclass
class LaneOutcome:
    """What a lane thread hands back: the process result and any artifacts it archived."""

    result: ExecutionResult
    published: Dict[str, ArtifactHandle] = field(default_factory=dict)
    publish_error: Optional[str] = None


class Scheduler:
    """
    Walks a DependencyGraph to completion.

    - Every ready node is dispatched to the thread pool as soon as its lane
      (platform) is idle; lanes never wait on each other.
    - A failed node turns its dependents SKIPPED; they never reach the executor.
    - Successful BUILD output is archived on the lane thread that ran it.
    - Node state is only changed from the thread calling run().
    """

    def __init__(
        self,
        executor: Executor,
        store: ArtifactStore,
        workspaces: WorkspaceManager,
        *,
        environment: EnvironmentSettings = EnvironmentSettings(),
        base_env: Optional[Mapping[str, str]] = None,
        max_workers: Optional[int] = None,
        console: Optional[Console] = None,
        poll_interval: float = 0.1,
    ):
        self.executor = executor
        self.store = store
        self.workspaces = workspaces
        self.environment = environment
        self.base_env = base_env
        self.max_workers = max_workers
        self.console = console or get_console()
        self.poll_interval = poll_interval
        self._cancel = threading.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """
        Request cooperative cancellation: pending jobs are skipped, running
        jobs are marked failed and their processes are left to finish.
        """
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def run(self, graph: DependencyGraph) -> RunReport:
        workers = self.max_workers or max(1, len(graph.lanes()))
        in_flight: Dict[Future, JobNode] = {}
        busy: Set[str] = set()
        cancelled = False

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pipelane-lane") as pool:
            while not graph.is_finished():
                if self._cancel.is_set():
                    self._apply_cancel(graph)
                    cancelled = True
                    break

                for node in graph.ready_nodes():
                    lane = node.platform.name
                    if lane in busy:
                        continue
                    handles = self.store.resolve(node)
                    node.transition(JobState.RUNNING)
                    busy.add(lane)
                    self.console.print_job_start(node)
                    in_flight[pool.submit(self._run_node, node, handles)] = node

                if not in_flight:
                    stuck = [n.id for n in graph if not n.state.is_terminal]
                    raise RuntimeError(f"scheduler stalled with unfinished jobs: {stuck}")

                done, _ = wait(list(in_flight), timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for fut in done:
                    node = in_flight.pop(fut)
                    busy.discard(node.platform.name)
                    self._complete(graph, node, fut)

            # leaving the pool waits for in-flight jobs; after a cancel their
            # results are discarded since the nodes are already terminal

        return RunReport.from_graph(graph, cancelled=cancelled)

    # ------------------------------------------------------------------
    # Lane worker (runs in the pool)
    # ------------------------------------------------------------------

    def _run_node(self, node: JobNode, handles: Mapping[str, ArtifactHandle]) -> LaneOutcome:
        ws = self.workspaces.prepare(node)
        self.console.print_debug(f"{node.id}: workspace {ws}")
        if handles:
            restored = self.store.restore(handles, ws)
            self.console.print_debug(f"{node.id}: restored {', '.join(restored)} from '{node.upstream.id}'")

        base = self.base_env if self.base_env is not None else os.environ
        env = compose_env(base, node.platform, ws, self.environment, node.spec.env, node=node)
        result = self.executor.execute(node, env, cwd=ws)
        log = self.workspaces.write_log(node, result.stdout, result.stderr)
        self.console.print_debug(f"{node.id}: exit={result.exit_code}, log {log}")

        outcome = LaneOutcome(result=result)
        if not result.ok or _missing_artifacts(node, result):
            return outcome

        # archiving happens here so a large tree only holds up its own lane
        try:
            for path in result.produced_paths:
                outcome.published[path] = self.store.publish(node, path, ws / path)
        except (OSError, tarfile.TarError) as e:
            outcome.publish_error = f"artifact publish failed: {type(e).__name__}: {e}"
        return outcome

    # ------------------------------------------------------------------
    # Completion handling (scheduler thread)
    # ------------------------------------------------------------------

    def _complete(self, graph: DependencyGraph, node: JobNode, fut: Future) -> None:
        try:
            outcome = fut.result()
        except DuplicateArtifactError:
            raise
        except Exception as e:
            err = ExecutionError(job_id=node.id, exit_code=None, detail=f"{type(e).__name__}: {e}")
            self._fail(graph, node, err.reason)
            return

        result = outcome.result
        node.result = result
        if not result.ok:
            err = ExecutionError(job_id=node.id, exit_code=result.exit_code, command=result.failed_command)
            self._fail(graph, node, err.reason, result.stdout + result.stderr)
            return

        missing = _missing_artifacts(node, result)
        if missing:
            self._fail(graph, node, f"declared artifact not produced: {', '.join(missing)}")
            return

        if outcome.publish_error is not None:
            self._fail(graph, node, outcome.publish_error)
            return

        node.transition(JobState.SUCCEEDED)
        node.artifacts.update(outcome.published)
        self.console.print_job_success(node)
        self.console.print_artifacts(node)

    def _fail(self, graph: DependencyGraph, node: JobNode, reason: str, output: str = "") -> None:
        node.transition(JobState.FAILED, reason=reason)
        self.console.print_job_failure(node, output)
        self._skip_dependents(graph, node)

    def _skip_dependents(self, graph: DependencyGraph, failed: JobNode) -> None:
        queue = list(graph.dependents_of(failed))
        while queue:
            dep = queue.pop(0)
            if dep.state is not JobState.PENDING:
                continue
            dep.transition(JobState.SKIPPED, reason=f"upstream '{dep.upstream.id}' {dep.upstream.state.value}")
            self.console.print_job_skipped(dep)
            queue.extend(graph.dependents_of(dep))

    def _apply_cancel(self, graph: DependencyGraph) -> None:
        for node in graph:
            if node.state is JobState.PENDING:
                node.transition(JobState.SKIPPED, reason=CANCELLED)
                self.console.print_job_skipped(node)
            elif node.state is JobState.RUNNING:
                node.transition(JobState.FAILED, reason=CANCELLED)
                self.console.print_job_failure(node)


def _missing_artifacts(node: JobNode, result: ExecutionResult) -> List[str]:
    """Declared BUILD artifacts the job did not produce. TEST artifacts are optional."""
    if node.spec.stage is not Stage.BUILD:
        return []
    return [p for p in node.spec.produces_artifacts if p not in result.produced_paths]
