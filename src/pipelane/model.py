# model.py
from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from .errors import ConfigError

if TYPE_CHECKING:
    from .artifacts import ArtifactHandle


# Dynamic-library search-path variables a platform may use.
LIBRARY_PATH_VARS = frozenset({"LD_LIBRARY_PATH", "DYLD_LIBRARY_PATH"})


class Stage(str, enum.Enum):
    BUILD = "build"
    TEST = "test"

    @property
    def order(self) -> int:
        return 0 if self is Stage.BUILD else 1


class JobState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.SKIPPED)


_TRANSITIONS = {
    JobState.PENDING: {JobState.RUNNING, JobState.SKIPPED},
    JobState.RUNNING: {JobState.SUCCEEDED, JobState.FAILED},
}


@dataclass(frozen=True)
class PlatformTarget:
    """A named execution environment (runner tag) and its library-path convention."""
    name: str
    library_path_var: str = "LD_LIBRARY_PATH"
    tag: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("platform name must not be empty")
        if self.library_path_var not in LIBRARY_PATH_VARS:
            raise ConfigError(
                f"platform '{self.name}' uses unknown library path variable "
                f"'{self.library_path_var}' (expected one of {sorted(LIBRARY_PATH_VARS)})"
            )
        if self.tag is None:
            object.__setattr__(self, "tag", self.name)


def normalize_artifact_path(path: str, job_id: Optional[str] = None) -> str:
    """
    Normalize a declared artifact path to a relative POSIX path.

    "build/" and "./build" both become "build". Paths that would escape the
    job workspace are rejected.
    """
    raw = str(path).strip().replace("\\", "/")
    if not raw:
        raise ConfigError("artifact path must not be empty", job_id=job_id)
    p = PurePosixPath(raw)
    if p.is_absolute() or ".." in p.parts:
        raise ConfigError(f"artifact path '{path}' must stay inside the workspace", job_id=job_id)
    norm = str(p)
    if norm in ("", "."):
        raise ConfigError(f"artifact path '{path}' names the workspace itself", job_id=job_id)
    return norm


@dataclass(frozen=True)
class JobSpec:
    """
    A declared unit of work.

    `depends_on` is the id of the upstream job whose artifacts this job
    consumes (TEST jobs only).
    """
    id: str
    stage: Stage
    platform: PlatformTarget
    commands: Tuple[str, ...]
    produces_artifacts: Tuple[str, ...] = ()
    depends_on: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigError("job id must not be empty")
        object.__setattr__(self, "stage", Stage(self.stage))
        object.__setattr__(self, "commands", tuple(self.commands))
        seen: Dict[str, None] = {}
        for p in self.produces_artifacts:
            seen.setdefault(normalize_artifact_path(p, job_id=self.id), None)
        object.__setattr__(self, "produces_artifacts", tuple(seen))
        object.__setattr__(self, "env", {str(k): str(v) for k, v in (self.env or {}).items()})


@dataclass
class ExecutionResult:
    """Outcome of running one job's command sequence."""
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    produced_paths: Tuple[str, ...] = ()
    failed_command: Optional[str] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(eq=False)
class JobNode:
    """Runtime instance of a JobSpec. Only the scheduler changes its state."""
    spec: JobSpec
    state: JobState = JobState.PENDING
    upstream: Optional["JobNode"] = None
    artifacts: Dict[str, "ArtifactHandle"] = field(default_factory=dict)
    result: Optional[ExecutionResult] = None
    reason: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def id(self) -> str:
        return self.spec.id

    @property
    def platform(self) -> PlatformTarget:
        return self.spec.platform

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def transition(self, state: JobState, reason: Optional[str] = None) -> None:
        if state not in _TRANSITIONS.get(self.state, set()):
            raise ValueError(f"[{self.id}] illegal transition {self.state.value} -> {state.value}")
        now = time.monotonic()
        if state is JobState.RUNNING:
            self.started_at = now
        else:
            self.finished_at = now
        self.state = state
        if reason is not None:
            self.reason = reason
