"""Shared fixtures: a recording fake executor, scheduler factory and sample pipelines."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest
from click.testing import CliRunner

from pipelane import dsl
from pipelane.artifacts import ArtifactStore
from pipelane.model import ExecutionResult, JobNode, JobSpec
from pipelane.platforms import DEFAULT_PLATFORMS
from pipelane.scheduler import Scheduler
from pipelane.ui.console import Console
from pipelane.workspace import WorkspaceManager

PLATFORM_NAMES = [p.name for p in DEFAULT_PLATFORMS]


class FakeExecutor:
    """
    Stands in for the process-spawning Executor.

    On success it writes every declared artifact into the workspace (a
    directory holding `out.txt`), unless the job is listed in `no_artifacts`.
    """

    def __init__(
        self,
        exit_codes: Optional[Dict[str, int]] = None,
        no_artifacts: Iterable[str] = (),
        raises: Optional[Dict[str, Exception]] = None,
        on_execute: Optional[Callable[[JobNode], None]] = None,
    ):
        self.exit_codes = exit_codes or {}
        self.no_artifacts = set(no_artifacts)
        self.raises = raises or {}
        self.on_execute = on_execute
        self.calls: List[str] = []
        self.envs: Dict[str, Dict[str, str]] = {}
        self.workspaces: Dict[str, Path] = {}
        self._lock = threading.Lock()

    def execute(self, node: JobNode, env, cwd=".") -> ExecutionResult:
        with self._lock:
            self.calls.append(node.id)
            self.envs[node.id] = dict(env)
            self.workspaces[node.id] = Path(cwd)
        if self.on_execute is not None:
            self.on_execute(node)
        if node.id in self.raises:
            raise self.raises[node.id]

        code = self.exit_codes.get(node.id, 0)
        root = Path(cwd)
        if code == 0 and node.id not in self.no_artifacts:
            for p in node.spec.produces_artifacts:
                (root / p).mkdir(parents=True, exist_ok=True)
                (root / p / "out.txt").write_text(node.id, encoding="utf-8")
        produced = tuple(p for p in node.spec.produces_artifacts if (root / p).exists())
        return ExecutionResult(exit_code=code, stdout=f"ran {node.id}\n", produced_paths=produced)


def two_stage(platforms: Iterable[str], artifacts=("bin",)) -> List[JobSpec]:
    """One build + one test job per platform, like the observed CI configuration."""
    platforms = list(platforms)
    return dsl.jobs(
        dsl.matrix(platforms).jobs(
            lambda p: dsl.build_job(f"build:{p}", p, "make install", artifacts=artifacts)
        ),
        dsl.matrix(platforms).jobs(
            lambda p: dsl.test_job(f"test:{p}", p, "ctest -V", depends_on=f"build:{p}")
        ),
    )


@pytest.fixture
def two_stage_specs():
    return two_stage


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    src = tmp_path / "source"
    src.mkdir()
    (src / "CMakeLists.txt").write_text("project(demo)\n", encoding="utf-8")
    (src / "data").mkdir()
    (src / "data" / "species.xml").write_text("<species/>\n", encoding="utf-8")
    return src


@pytest.fixture
def store(tmp_path: Path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def make_scheduler(tmp_path: Path, source_dir: Path, store: ArtifactStore):
    default_store = store

    def factory(executor, store: Optional[ArtifactStore] = None, **kwargs) -> Scheduler:
        kwargs.setdefault("base_env", {"PATH": "/usr/bin:/bin"})
        kwargs.setdefault("console", Console())
        kwargs.setdefault("poll_interval", 0.01)
        return Scheduler(
            executor,
            store or default_store,
            WorkspaceManager(source_dir, tmp_path / "work"),
            **kwargs,
        )

    return factory


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()
