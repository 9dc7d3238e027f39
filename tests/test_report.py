"""Tests for the run report."""

import pytest

from pipelane.dag import build_graph
from pipelane.errors import EXIT_CANCELLED, EXIT_JOB_FAILED, EXIT_SUCCESS
from pipelane.model import ExecutionResult, JobState, Stage
from pipelane.report import NodeReport, RunReport


def _finish(graph, node_id, state, exit_code=None, reason=None):
    node = graph.get(node_id)
    if state is JobState.SKIPPED:
        node.transition(state, reason=reason)
        return
    node.transition(JobState.RUNNING)
    if exit_code is not None:
        node.result = ExecutionResult(exit_code=exit_code)
    node.transition(state, reason=reason)


@pytest.fixture
def finished_graph(two_stage_specs):
    graph = build_graph(two_stage_specs(["debian", "fedora"]))
    _finish(graph, "build:debian", JobState.SUCCEEDED, 0)
    _finish(graph, "test:debian", JobState.SUCCEEDED, 0)
    _finish(graph, "build:fedora", JobState.FAILED, 2, reason="job failed (exit=2)")
    _finish(graph, "test:fedora", JobState.SKIPPED, reason="upstream 'build:fedora' failed")
    return graph


class TestFromGraph:
    def test_rejects_unfinished_graph(self, two_stage_specs):
        graph = build_graph(two_stage_specs(["debian"]))
        with pytest.raises(ValueError, match="non-terminal"):
            RunReport.from_graph(graph)

    def test_states_and_exit_code(self, finished_graph):
        report = RunReport.from_graph(finished_graph)
        assert report.states() == {
            "build:debian": JobState.SUCCEEDED,
            "build:fedora": JobState.FAILED,
            "test:debian": JobState.SUCCEEDED,
            "test:fedora": JobState.SKIPPED,
        }
        assert not report.succeeded
        assert report.exit_code == EXIT_JOB_FAILED

    def test_cancelled_exit_code(self, finished_graph):
        assert RunReport.from_graph(finished_graph, cancelled=True).exit_code == EXIT_CANCELLED

    def test_by_platform(self, finished_graph):
        lanes = RunReport.from_graph(finished_graph).by_platform()
        assert [n.job_id for n in lanes["fedora"]] == ["build:fedora", "test:fedora"]

    def test_summary_lines(self, finished_graph):
        lines = RunReport.from_graph(finished_graph).summary_lines()
        assert "build:debian [debian/build]: SUCCEEDED" in lines
        assert "build:fedora [fedora/build]: FAILED (exit=2) - job failed (exit=2)" in lines
        assert "test:fedora [fedora/test]: SKIPPED - upstream 'build:fedora' failed" in lines


class TestSerialization:
    def test_json_round_trip(self, finished_graph):
        report = RunReport.from_graph(finished_graph)
        loaded = RunReport.from_json(report.to_json())
        assert loaded.states() == report.states()
        assert loaded.exit_code == report.exit_code
        assert loaded.nodes == report.nodes

    def test_dict_uses_plain_values(self, finished_graph):
        data = RunReport.from_graph(finished_graph).to_dict()
        assert data["exit_code"] == EXIT_JOB_FAILED
        assert data["nodes"][0]["state"] == "succeeded"
        assert data["nodes"][0]["stage"] == "build"

    def test_all_succeeded(self):
        node = NodeReport("build:macos", "macos", Stage.BUILD, JobState.SUCCEEDED, exit_code=0)
        report = RunReport(nodes=[node])
        assert report.exit_code == EXIT_SUCCESS
        assert node.summary_line() == "build:macos [macos/build]: SUCCEEDED"
