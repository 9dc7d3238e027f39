# pipeline.py
from __future__ import annotations

import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .dag import DependencyGraph, build_graph
from .dsl import matrix, using_registry
from .errors import ConfigError
from .executor import EnvironmentSettings
from .model import JobSpec, PlatformTarget, Stage
from .platforms import PlatformRegistry, default_registry

PLATFORM_PLACEHOLDER = "{platform}"

# Top-level GitLab CI keys that are not jobs.
GITLAB_KEYWORDS = {
    "stages", "variables", "before_script", "after_script", "image",
    "services", "cache", "default", "include", "workflow",
}


# ---------------------------------------------------------------------
# Native document schema
# ---------------------------------------------------------------------

class PlatformRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str = Field(min_length=1)
    library_path_var: str = Field(default="LD_LIBRARY_PATH", alias="libraryPathVar")
    tag: Optional[str] = None


class EnvironmentRecord(BaseModel):
    model_config = ConfigDict(extra="forbid")

    install_dir: str = "install"
    data_dir: str = "data"
    data_dir_var: Optional[str] = None


class JobRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, coerce_numbers_to_str=True)

    id: str = Field(min_length=1)
    stage: Stage
    platform: Optional[str] = None
    matrix: Optional[List[str]] = None
    commands: List[str] = Field(min_length=1)
    artifacts: List[str] = Field(default_factory=list)
    depends_on: Optional[str] = Field(default=None, alias="dependsOn")
    env: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _one_platform_source(self) -> "JobRecord":
        if (self.platform is None) == (self.matrix is None):
            raise ValueError("declare exactly one of 'platform' or 'matrix'")
        if self.matrix is not None:
            if not self.matrix:
                raise ValueError("'matrix' must list at least one platform")
            if len(self.matrix) > 1 and PLATFORM_PLACEHOLDER not in self.id:
                raise ValueError(f"matrix job id must contain '{PLATFORM_PLACEHOLDER}'")
        return self


class PipelineDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    platforms: List[PlatformRecord] = Field(default_factory=list)
    environment: EnvironmentRecord = Field(default_factory=EnvironmentRecord)
    jobs: List[JobRecord] = Field(min_length=1)


@dataclass
class Pipeline:
    """A loaded pipeline: registry, validated job specs and environment settings."""
    name: str
    registry: PlatformRegistry
    jobs: List[JobSpec]
    environment: EnvironmentSettings = field(default_factory=EnvironmentSettings)

    def graph(self) -> DependencyGraph:
        return build_graph(self.jobs)


# ---------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------

def format_validation_error(err: ValidationError) -> str:
    """
    Format a pydantic ValidationError as one readable block:

        Validation failed:
          - jobs.1.commands: List should have at least 1 item after validation, not 0
    """
    lines = ["Validation failed:"]
    for e in err.errors():
        loc = ".".join(str(x) for x in e["loc"])
        lines.append(f"  - {loc}: {e['msg']}")
    return "\n".join(lines)


def _job_id_for(err: ValidationError, data: Dict[str, Any]) -> Optional[str]:
    raw_jobs = data.get("jobs")
    for e in err.errors():
        loc = e["loc"]
        if len(loc) >= 2 and loc[0] == "jobs" and isinstance(loc[1], int) and isinstance(raw_jobs, list):
            if loc[1] < len(raw_jobs) and isinstance(raw_jobs[loc[1]], dict):
                job_id = raw_jobs[loc[1]].get("id")
                return str(job_id) if job_id is not None else f"jobs[{loc[1]}]"
    return None


# ---------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------

def load_pipeline(path: str | Path, registry: Optional[PlatformRegistry] = None) -> Pipeline:
    """
    Load a pipeline description from:
      - a native YAML file (top-level `jobs:` list),
      - a GitLab-style CI YAML file (top-level job mappings),
      - a Python file defining pipeline() -> List[JobSpec] or JOBS = [...].

    Job-level problems raise ConfigError; the dependency graph itself is
    validated by build_graph.
    """
    p = Path(path).expanduser()
    if not p.exists():
        raise ConfigError(f"pipeline file not found: {p}")

    registry = registry if registry is not None else default_registry()
    if p.suffix == ".py":
        return _load_python(p, registry)

    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {p.name}: {e}") from None
    return parse_pipeline(data, registry=registry, name=p.name)


def parse_pipeline(data: Any, registry: Optional[PlatformRegistry] = None, name: str = "<pipeline>") -> Pipeline:
    if not isinstance(data, dict):
        raise ConfigError(f"{name}: pipeline must be a mapping at the top level")
    registry = registry if registry is not None else default_registry()
    if "jobs" in data:
        return _from_document(data, registry, name)
    return _from_gitlab(data, registry, name)


def _from_document(data: Dict[str, Any], registry: PlatformRegistry, name: str) -> Pipeline:
    try:
        doc = PipelineDocument.model_validate(data)
    except ValidationError as e:
        raise ConfigError(format_validation_error(e), job_id=_job_id_for(e, data)) from None

    for rec in doc.platforms:
        registry.register(PlatformTarget(rec.name, rec.library_path_var, tag=rec.tag))

    specs: List[JobSpec] = []
    for rec in doc.jobs:
        names = rec.matrix if rec.matrix is not None else [rec.platform]
        specs.extend(matrix(names).jobs(lambda platform, rec=rec: _spec_from_record(rec, platform, registry)))

    env = doc.environment
    return Pipeline(
        name=name,
        registry=registry,
        jobs=specs,
        environment=EnvironmentSettings(
            install_dir=env.install_dir,
            data_dir=env.data_dir,
            data_dir_var=env.data_dir_var,
        ),
    )


def _spec_from_record(rec: JobRecord, platform: str, registry: PlatformRegistry) -> JobSpec:
    job_id = rec.id.replace(PLATFORM_PLACEHOLDER, platform)
    dep = rec.depends_on.replace(PLATFORM_PLACEHOLDER, platform) if rec.depends_on else None
    return JobSpec(
        id=job_id,
        stage=rec.stage,
        platform=registry.get(platform, job_id=job_id),
        commands=tuple(rec.commands),
        produces_artifacts=tuple(rec.artifacts),
        depends_on=dep,
        env=dict(rec.env),
    )


def _as_list(value: Any, job_id: Optional[str] = None) -> List[str]:
    if value is None:
        return []
    if isinstance(value, dict):
        raise ConfigError("expected a string or a list, got a mapping", job_id=job_id)
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


def _mapping(value: Any, what: str, job_id: Optional[str] = None) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{what}' must be a mapping, got {type(value).__name__}", job_id=job_id)
    return value


def _needs(value: Any, job_id: str) -> List[str]:
    out = []
    for n in value if isinstance(value, list) else [value]:
        if isinstance(n, dict):
            if "job" not in n:
                raise ConfigError("'needs' entries must name a 'job'", job_id=job_id)
            n = n["job"]
        out.append(str(n))
    return out


def _from_gitlab(data: Dict[str, Any], registry: PlatformRegistry, name: str) -> Pipeline:
    """
    Read a GitLab CI style file. `only`/`except` branch filters are ignored:
    deciding whether a pipeline runs at all is up to whoever invokes us.
    """
    default = _mapping(data.get("default"), "default")
    global_before = _as_list(default.get("before_script", data.get("before_script")))
    global_vars = {str(k): str(v) for k, v in _mapping(data.get("variables"), "variables").items()}

    specs: List[JobSpec] = []
    for job_id, body in data.items():
        if job_id in GITLAB_KEYWORDS or str(job_id).startswith("."):
            continue
        if not isinstance(body, dict) or "script" not in body:
            continue
        job_id = str(job_id)

        stage = body.get("stage", "test")
        if stage not in (Stage.BUILD.value, Stage.TEST.value):
            raise ConfigError(f"unsupported stage '{stage}' (expected build or test)", job_id=job_id)

        tags = _as_list(body.get("tags"), job_id)
        platform = next((t for t in (registry.by_tag(tag) for tag in tags) if t is not None), None)
        if platform is None:
            raise ConfigError(
                f"no registered platform matches tags {tags}. Known platforms: {registry.names()}",
                job_id=job_id,
            )

        deps = _as_list(body.get("dependencies"), job_id)
        if not deps and body.get("needs"):
            deps = _needs(body["needs"], job_id)
        if len(deps) > 1:
            raise ConfigError(f"at most one dependency is supported, got {deps}", job_id=job_id)

        before = _as_list(body["before_script"], job_id) if "before_script" in body else global_before
        artifacts = _mapping(body.get("artifacts"), "artifacts", job_id)
        env = dict(global_vars)
        env.update({str(k): str(v) for k, v in _mapping(body.get("variables"), "variables", job_id).items()})

        specs.append(
            JobSpec(
                id=job_id,
                stage=Stage(stage),
                platform=platform,
                commands=tuple(before + _as_list(body["script"], job_id)),
                produces_artifacts=tuple(_as_list(artifacts.get("paths"), job_id)),
                depends_on=deps[0] if deps else None,
                env=env,
            )
        )

    if not specs:
        raise ConfigError(f"{name}: no jobs found (expected a 'jobs:' list or GitLab-style job mappings)")
    return Pipeline(name=name, registry=registry, jobs=specs)


def _load_python(path: Path, registry: PlatformRegistry) -> Pipeline:
    """
    Run a Python pipeline file. It must define either:
      - pipeline() -> List[JobSpec]
      - JOBS = [JobSpec, ...]
    and may define PLATFORMS (registered names or extra PlatformTargets) and
    ENVIRONMENT (EnvironmentSettings or a dict of its fields).

    Platform names in job helpers resolve against `registry`, so pipeline()
    can name anything listed in PLATFORMS. Module-level JOBS run before
    PLATFORMS is read and must use register_platform() instead.
    """
    module_name = f"pipelane_pipeline_{path.stem}"
    try:
        with using_registry(registry):
            globals_dict = runpy.run_path(str(path.resolve()), run_name=module_name)

            for target in globals_dict.get("PLATFORMS", []) or []:
                if isinstance(target, str):
                    registry.get(target)
                else:
                    registry.ensure(target)

            jobs = None
            if callable(globals_dict.get("pipeline")):
                jobs = globals_dict["pipeline"]()
            elif "JOBS" in globals_dict:
                jobs = globals_dict["JOBS"]
    except ConfigError:
        raise
    except Exception as e:
        raise ConfigError(f"{path.name} failed to load: {type(e).__name__}: {e}") from e

    if not isinstance(jobs, list) or not all(isinstance(j, JobSpec) for j in jobs):
        raise ConfigError(
            f"{path.name} must define pipeline() -> List[JobSpec] or JOBS = [JobSpec, ...]"
        )

    for j in jobs:
        if j.platform.name not in registry:
            raise ConfigError(f"unknown platform '{j.platform.name}'", job_id=j.id)

    environment = globals_dict.get("ENVIRONMENT") or EnvironmentSettings()
    if isinstance(environment, dict):
        try:
            environment = EnvironmentSettings(**environment)
        except TypeError as e:
            raise ConfigError(f"{path.name}: invalid ENVIRONMENT: {e}") from None
    return Pipeline(name=path.name, registry=registry, jobs=jobs, environment=environment)
