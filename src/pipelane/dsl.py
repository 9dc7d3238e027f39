# src/pipelane/dsl.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from .model import JobSpec, PlatformTarget, Stage
from .platforms import PlatformRegistry, default_registry

PlatformRef = Union[str, PlatformTarget]

# Registry platform names resolve against when no registry= is passed.
# The pipeline loader installs its own while a .py pipeline file runs.
_registry: Optional[PlatformRegistry] = None


def get_registry() -> PlatformRegistry:
    """The active registry, or a fresh default one outside of pipeline loading."""
    if _registry is None:
        return default_registry()
    return _registry


@contextmanager
def using_registry(registry: PlatformRegistry) -> Iterator[PlatformRegistry]:
    global _registry
    previous = _registry
    _registry = registry
    try:
        yield registry
    finally:
        _registry = previous


def register_platform(
    name: str,
    library_path_var: str = "LD_LIBRARY_PATH",
    tag: Optional[str] = None,
) -> PlatformTarget:
    """
    Add a platform to the active registry so jobs can name it:

        register_platform("freebsd", tag="fbsd13")
        JOBS = [build_job("build:freebsd", "freebsd", "gmake")]

    Only useful inside a pipeline file; elsewhere the registry is discarded.
    """
    return get_registry().ensure(PlatformTarget(name, library_path_var, tag=tag))


def _platform(ref: PlatformRef, registry: Optional[PlatformRegistry], job_id: str) -> PlatformTarget:
    if isinstance(ref, PlatformTarget):
        return ref
    if registry is None:
        registry = get_registry()
    return registry.get(ref, job_id=job_id)


# ---------------------------------------------------------------------
# Job helpers
# ---------------------------------------------------------------------

def build_job(
    id: str,
    platform: PlatformRef,
    *commands: str,
    artifacts: Iterable[str] = (),
    env: Optional[Dict[str, str]] = None,
    registry: Optional[PlatformRegistry] = None,
) -> JobSpec:
    """Create a BUILD job: build_job("build:debian", "debian", "make", artifacts=["install/"])."""
    return JobSpec(
        id=id,
        stage=Stage.BUILD,
        platform=_platform(platform, registry, id),
        commands=tuple(commands),
        produces_artifacts=tuple(artifacts),
        env=env or {},
    )


def test_job(
    id: str,
    platform: PlatformRef,
    *commands: str,
    depends_on: str,
    artifacts: Iterable[str] = (),
    env: Optional[Dict[str, str]] = None,
    registry: Optional[PlatformRegistry] = None,
) -> JobSpec:
    """Create a TEST job consuming the artifacts of `depends_on`."""
    return JobSpec(
        id=id,
        stage=Stage.TEST,
        platform=_platform(platform, registry, id),
        commands=tuple(commands),
        produces_artifacts=tuple(artifacts),
        depends_on=depends_on,
        env=env or {},
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    One job template per platform.

    Example:
        matrix("debian", "macos").jobs(
            lambda p: build_job(f"build:{p}", p, "make install", artifacts=["install/"])
        )
    """
    def __init__(self, platforms: Iterable[Any]):
        self.platforms = list(platforms)

    def jobs(self, builder: Callable[[Any], Union[JobSpec, Iterable[JobSpec]]]) -> List[JobSpec]:
        out: List[JobSpec] = []
        for p in self.platforms:
            made = builder(p)
            if isinstance(made, JobSpec):
                out.append(made)
            else:
                out.extend(made)
        return out


def matrix(*platforms: Any) -> Matrix:
    if len(platforms) == 1 and not isinstance(platforms[0], (str, PlatformTarget)):
        return Matrix(platforms[0])
    return Matrix(platforms)


# ---------------------------------------------------------------------
# Pipeline helper
# ---------------------------------------------------------------------

def pipeline(*jobs: Union[JobSpec, Iterable[JobSpec]]) -> List[JobSpec]:
    """
    Flatten jobs and matrix expansions into one list. Pipeline files that
    define their own pipeline() use the `jobs` alias:

        from pipelane.dsl import jobs, matrix

        def pipeline():
            return jobs(
                matrix(PLATFORMS).jobs(build),
                matrix(PLATFORMS).jobs(test),
            )
    """
    out: List[JobSpec] = []
    for j in jobs:
        if isinstance(j, JobSpec):
            out.append(j)
        else:
            out.extend(j)
    return out


jobs = pipeline  # alias so a pipeline file can define its own pipeline()
