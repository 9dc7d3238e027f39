"""Console output formatting utilities for pipelane."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from ..model import JobNode, PlatformTarget
    from ..report import RunReport


class Console:
    """Centralized console output formatting. Safe to call from worker threads."""

    def __init__(self, debug: bool = False, tail_lines: int = 40):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            tail_lines: How many lines of job output to show on failure
        """
        self.debug = debug
        self.tail_lines = tail_lines
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(self, pipeline: str, job_count: int, platform_count: int) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Jobs: {job_count}",
            f"Platforms: {platform_count}",
            "",
        )

    def print_plan(self, levels: List[List[str]], lanes: Dict[str, List[str]]) -> None:
        """Print execution plan: topological levels and per-platform lanes."""
        self.print_header("PLAN")
        for idx, level in enumerate(levels):
            self._out(f"  level {idx + 1}: {', '.join(level)}")
        self.print_header("LANES")
        for platform, jobs in lanes.items():
            self._out(f"  {platform}: {' -> '.join(jobs)}")

    def print_platforms(self, platforms: List["PlatformTarget"]) -> None:
        self.print_header("PLATFORMS")
        for p in platforms:
            self._out(f"  {p.name:<12} tag={p.tag:<12} {p.library_path_var}")

    def print_job_start(self, node: "JobNode") -> None:
        """Print job start message."""
        self._out(f"JOB STARTED: {node.id} [{node.platform.name}]")

    def print_job_success(self, node: "JobNode") -> None:
        duration = f" in {node.duration:.1f}s" if node.duration is not None else ""
        self._out(f"JOB SUCCEEDED: {node.id}{duration}")

    def print_job_failure(self, node: "JobNode", output_tail: str = "") -> None:
        """Print failure message, with the tail of the job output."""
        lines = [f"JOB FAILED: {node.id}"]
        if node.result is not None:
            lines.append(f"Exit code: {node.result.exit_code}")
            if node.result.failed_command:
                lines.append(f"Command: {node.result.failed_command}")
        if node.reason:
            lines.append(f"Reason: {node.reason}")
        if output_tail:
            tail = output_tail.splitlines()[-self.tail_lines:]
            lines.append("Output (tail):")
            lines.extend(f"  | {line}" for line in tail)
        self._out(*lines)

    def print_job_skipped(self, node: "JobNode") -> None:
        """Print job skipped message."""
        self._out(f"JOB SKIPPED: {node.id} ({node.reason or 'skipped'})")

    def print_artifacts(self, node: "JobNode") -> None:
        if node.artifacts:
            self._out(f"ARTIFACTS: {node.id} -> {', '.join(node.artifacts)}")

    def print_results(self, report: "RunReport") -> None:
        """Print final results summary, one line per job."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        lines.extend(f"  {line}" for line in report.summary_lines())
        if report.cancelled:
            lines.append("  (run cancelled)")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[List[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
