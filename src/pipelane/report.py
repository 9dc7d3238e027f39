# report.py
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .dag import DependencyGraph
from .errors import EXIT_CANCELLED, EXIT_JOB_FAILED, EXIT_SUCCESS
from .model import JobState, Stage


@dataclass(frozen=True)
class NodeReport:
    job_id: str
    platform: str
    stage: Stage
    state: JobState
    exit_code: Optional[int] = None
    duration: Optional[float] = None
    reason: Optional[str] = None
    artifacts: List[str] = field(default_factory=list)

    def summary_line(self) -> str:
        line = f"{self.job_id} [{self.platform}/{self.stage.value}]: {self.state.value.upper()}"
        if self.exit_code not in (None, 0):
            line += f" (exit={self.exit_code})"
        if self.reason and self.state is not JobState.SUCCEEDED:
            line += f" - {self.reason}"
        return line

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["stage"] = self.stage.value
        d["state"] = self.state.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> NodeReport:
        return cls(
            job_id=data["job_id"],
            platform=data["platform"],
            stage=Stage(data["stage"]),
            state=JobState(data["state"]),
            exit_code=data.get("exit_code"),
            duration=data.get("duration"),
            reason=data.get("reason"),
            artifacts=list(data.get("artifacts") or []),
        )


@dataclass
class RunReport:
    """Final state of every node of a run. Built only from a finished graph."""
    nodes: List[NodeReport]
    cancelled: bool = False

    @classmethod
    def from_graph(cls, graph: DependencyGraph, cancelled: bool = False) -> RunReport:
        pending = [n.id for n in graph if not n.state.is_terminal]
        if pending:
            raise ValueError(f"cannot report a run with non-terminal jobs: {pending}")

        nodes = []
        for n in graph:
            nodes.append(
                NodeReport(
                    job_id=n.id,
                    platform=n.platform.name,
                    stage=n.spec.stage,
                    state=n.state,
                    exit_code=n.result.exit_code if n.result is not None else None,
                    duration=round(n.duration, 3) if n.duration is not None else None,
                    reason=n.reason,
                    artifacts=list(n.artifacts),
                )
            )
        return cls(nodes=nodes, cancelled=cancelled)

    def states(self) -> Dict[str, JobState]:
        return {n.job_id: n.state for n in self.nodes}

    def by_platform(self) -> Dict[str, List[NodeReport]]:
        out: Dict[str, List[NodeReport]] = {}
        for n in self.nodes:
            out.setdefault(n.platform, []).append(n)
        return out

    @property
    def succeeded(self) -> bool:
        return all(n.state is JobState.SUCCEEDED for n in self.nodes)

    @property
    def exit_code(self) -> int:
        if self.cancelled:
            return EXIT_CANCELLED
        return EXIT_SUCCESS if self.succeeded else EXIT_JOB_FAILED

    def summary_lines(self) -> List[str]:
        return [n.summary_line() for n in self.nodes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cancelled": self.cancelled,
            "exit_code": self.exit_code,
            "nodes": [n.to_dict() for n in self.nodes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RunReport:
        return cls(
            nodes=[NodeReport.from_dict(n) for n in data.get("nodes", [])],
            cancelled=bool(data.get("cancelled", False)),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str) -> RunReport:
        return cls.from_dict(json.loads(text))
