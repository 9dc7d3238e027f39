# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Optional

from .artifacts import DEFAULT_ARTIFACT_DIR
from .errors import ConfigError
from .executor import DEFAULT_SHELL
from .workspace import DEFAULT_WORK_DIR


@dataclass(frozen=True)
class RunConfig:
    """
    Settings for one orchestrator run.

    Defaults can be overridden through PIPELANE_* environment variables
    (see from_env); CLI options override both.
    """
    source_root: Path = Path(".")
    work_root: Path = Path(DEFAULT_WORK_DIR)
    artifact_root: Path = Path(DEFAULT_ARTIFACT_DIR)
    max_workers: Optional[int] = None
    shell: str = DEFAULT_SHELL
    keep_artifacts: bool = False
    base_env: Optional[Dict[str, str]] = field(default=None, compare=False)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides) -> RunConfig:
        env = os.environ if environ is None else environ
        cfg = cls(
            source_root=Path(env.get("PIPELANE_SOURCE_DIR", ".")),
            work_root=Path(env.get("PIPELANE_WORK_DIR", DEFAULT_WORK_DIR)),
            artifact_root=Path(env.get("PIPELANE_ARTIFACT_DIR", DEFAULT_ARTIFACT_DIR)),
            max_workers=_int_or_none(env.get("PIPELANE_WORKERS"), "PIPELANE_WORKERS"),
            shell=env.get("PIPELANE_SHELL", DEFAULT_SHELL),
            keep_artifacts=env.get("PIPELANE_KEEP_ARTIFACTS", "").lower() in ("1", "true", "yes"),
        )
        # None means "not given on the command line"
        given = {k: v for k, v in overrides.items() if v is not None}
        return replace(cfg, **given)


def _int_or_none(value: Optional[str], name: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        n = int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if n < 1:
        raise ConfigError(f"{name} must be >= 1, got {n}")
    return n
