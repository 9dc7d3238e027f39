# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

# Exit codes for the CLI
EXIT_SUCCESS = 0
EXIT_JOB_FAILED = 1       # any node FAILED or SKIPPED
EXIT_CONFIG_ERROR = 2     # pipeline description invalid (run); validate uses 1
EXIT_INTERNAL_ERROR = 3   # artifact consistency violated or unexpected crash
EXIT_CANCELLED = 130


class PipelaneError(Exception):
    """Base class for every error raised by pipelane."""


@dataclass(eq=False)
class ConfigError(PipelaneError):
    """
    Malformed or contradictory pipeline description.

    Always raised before anything executes. `job_id` names the offending job
    when the problem can be pinned to one.
    """
    message: str
    job_id: Optional[str] = None

    def __str__(self) -> str:
        if self.job_id:
            return f"[{self.job_id}] {self.message}"
        return self.message


@dataclass(eq=False)
class ExecutionError(PipelaneError):
    """A job's command sequence exited nonzero (or could not be started)."""
    job_id: str
    exit_code: Optional[int]
    command: Optional[str] = None
    detail: Optional[str] = None

    @property
    def reason(self) -> str:
        parts = ["job failed"]
        if self.exit_code is not None:
            parts.append(f"(exit={self.exit_code})")
        if self.command:
            parts.append(f"at: {self.command}")
        if self.detail:
            parts.append(f"- {self.detail}")
        return " ".join(parts)

    def __str__(self) -> str:
        return f"[{self.job_id}] {self.reason}"


@dataclass(eq=False)
class MissingArtifactError(PipelaneError):
    job_id: str
    upstream_id: str
    missing: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"[{self.job_id}] artifacts of '{self.upstream_id}' not available: "
            f"{', '.join(self.missing)}"
        )


@dataclass(eq=False)
class DuplicateArtifactError(PipelaneError):
    job_id: str
    path: str

    def __str__(self) -> str:
        return f"[{self.job_id}] artifact '{self.path}' already published"
