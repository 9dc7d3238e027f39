from .artifacts import ArtifactHandle, ArtifactStore
from .config import RunConfig
from .dag import DependencyGraph, build_graph
from .dsl import build_job, test_job, matrix, jobs, register_platform
from .errors import ConfigError, DuplicateArtifactError, ExecutionError, MissingArtifactError
from .executor import EnvironmentSettings, Executor, compose_env
from .model import ExecutionResult, JobNode, JobSpec, JobState, PlatformTarget, Stage
from .pipeline import Pipeline, load_pipeline
from .platforms import DEFAULT_PLATFORMS, PlatformRegistry, default_registry
from .report import NodeReport, RunReport
from .runner import run_pipeline
from .scheduler import Scheduler

__all__ = [
    "ArtifactHandle", "ArtifactStore", "RunConfig", "DependencyGraph", "build_graph",
    "build_job", "test_job", "matrix", "jobs", "register_platform",
    "ConfigError", "DuplicateArtifactError", "ExecutionError", "MissingArtifactError",
    "EnvironmentSettings", "Executor", "compose_env",
    "ExecutionResult", "JobNode", "JobSpec", "JobState", "PlatformTarget", "Stage",
    "Pipeline", "load_pipeline", "DEFAULT_PLATFORMS", "PlatformRegistry", "default_registry",
    "NodeReport", "RunReport", "run_pipeline", "Scheduler",
]
