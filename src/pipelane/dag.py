# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from .errors import ConfigError
from .model import JobNode, JobSpec, JobState, Stage


@dataclass
class DependencyGraph:
    """
    Job nodes keyed by id (declaration order) plus the derived edge relation.

    Every node has at most one upstream (`node.upstream`), always a BUILD node
    on the same platform, so the graph is acyclic by construction.
    """
    nodes: Dict[str, JobNode]
    dependents: Dict[str, Set[str]] = field(default_factory=dict)

    def get(self, job_id: str) -> JobNode:
        return self.nodes[job_id]

    def __iter__(self):
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def depends_on(self, node: JobNode) -> Set[JobNode]:
        return {node.upstream} if node.upstream is not None else set()

    def dependents_of(self, node: JobNode) -> List[JobNode]:
        return [self.nodes[n] for n in sorted(self.dependents.get(node.id, ()))]

    def ready_nodes(self) -> List[JobNode]:
        """PENDING nodes with no upstream or a SUCCEEDED upstream. No side effects."""
        return [
            n for n in self.nodes.values()
            if n.state is JobState.PENDING
            and (n.upstream is None or n.upstream.state is JobState.SUCCEEDED)
        ]

    def is_finished(self) -> bool:
        return all(n.state.is_terminal for n in self.nodes.values())

    def lanes(self) -> Dict[str, List[JobNode]]:
        """Nodes grouped by platform, in declaration order."""
        out: Dict[str, List[JobNode]] = {}
        for n in self.nodes.values():
            out.setdefault(n.platform.name, []).append(n)
        return out

    def levels(self) -> List[List[str]]:
        """
        Topological "levels": every job in a level can run once the previous
        levels are done.
        """
        indeg = {name: (0 if n.upstream is None else 1) for name, n in self.nodes.items()}
        q = deque(name for name, d in indeg.items() if d == 0)

        levels: List[List[str]] = []
        processed = 0
        while q:
            level: List[str] = []
            for _ in range(len(q)):
                name = q.popleft()
                level.append(name)
                processed += 1
                for child in sorted(self.dependents.get(name, ())):
                    indeg[child] -= 1
                    if indeg[child] == 0:
                        q.append(child)
            levels.append(level)

        if processed != len(indeg):
            stuck = sorted(n for n, d in indeg.items() if d > 0)
            raise ConfigError(f"dependency cycle between jobs: {stuck}")
        return levels


def build_graph(specs: Iterable[JobSpec]) -> DependencyGraph:
    """
    Validate job specs and build the dependency graph.

    Raises ConfigError (naming the offending job) on duplicate ids, missing or
    dangling `depends_on`, edges to a non-BUILD job or across platforms, and
    jobs without commands.
    """
    specs = list(specs)
    nodes: Dict[str, JobNode] = {}
    for spec in specs:
        if spec.id in nodes:
            raise ConfigError(f"duplicate job id '{spec.id}'", job_id=spec.id)
        if not spec.commands:
            raise ConfigError("job must have at least one command", job_id=spec.id)
        nodes[spec.id] = JobNode(spec=spec)

    dependents: Dict[str, Set[str]] = {name: set() for name in nodes}
    tested_platforms: Dict[str, str] = {}

    for spec in specs:
        node = nodes[spec.id]
        dep = spec.depends_on

        if dep is None:
            if spec.stage is Stage.TEST:
                raise ConfigError("test job must declare dependsOn (its build job)", job_id=spec.id)
            continue

        if dep not in nodes:
            raise ConfigError(
                f"dependsOn references missing job '{dep}'. Known jobs: {sorted(nodes)}",
                job_id=spec.id,
            )
        upstream = nodes[dep]
        if upstream.spec.stage.order >= spec.stage.order:
            raise ConfigError(
                f"{spec.stage.value} job cannot depend on {upstream.spec.stage.value} job '{dep}'",
                job_id=spec.id,
            )
        if upstream.platform.name != spec.platform.name:
            raise ConfigError(
                f"dependsOn '{dep}' runs on platform '{upstream.platform.name}', "
                f"not '{spec.platform.name}'",
                job_id=spec.id,
            )
        other = tested_platforms.get(spec.platform.name)
        if other is not None:
            raise ConfigError(
                f"platform '{spec.platform.name}' already has a test job ('{other}')",
                job_id=spec.id,
            )
        tested_platforms[spec.platform.name] = spec.id

        node.upstream = upstream
        dependents[dep].add(spec.id)

    graph = DependencyGraph(nodes=nodes, dependents=dependents)
    graph.levels()  # acyclicity check
    return graph
