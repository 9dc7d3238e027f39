"""End-to-end tests for the pipelane CLI, running real shell jobs."""

import json
import textwrap

import pytest

from pipelane.cli import cli
from pipelane.errors import EXIT_CONFIG_ERROR, EXIT_INTERNAL_ERROR, EXIT_JOB_FAILED, EXIT_SUCCESS

PIPELINE = """
jobs:
  - id: "build:{platform}"
    stage: build
    matrix: [debian, fedora, macos]
    commands:
      - test "$PIPELANE_PLATFORM" != "$FAIL_ON"
      - mkdir -p install/lib build
      - echo "$PIPELANE_PLATFORM" > install/lib/platform.txt
    artifacts: [build/, install/]
    env:
      FAIL_ON: "%(fail_on)s"

  - id: "test:{platform}"
    stage: test
    matrix: [debian, fedora, macos]
    dependsOn: "build:{platform}"
    commands:
      - test -d build
      - grep -x "$PIPELANE_PLATFORM" install/lib/platform.txt
"""


def _pipeline(tmp_path, fail_on="none"):
    path = tmp_path / "pipelane.yml"
    path.write_text(textwrap.dedent(PIPELINE % {"fail_on": fail_on}), encoding="utf-8")
    return path


def _gitlab_list_artifacts(tmp_path):
    path = tmp_path / ".gitlab-ci.yml"
    path.write_text(
        textwrap.dedent(
            """
            build:debian8:
              stage: build
              script: [make install]
              artifacts: [install/]
              tags: [debian8]
            """
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def run_args(tmp_path, source_dir):
    def args(pipeline, *extra):
        return [
            "run",
            str(pipeline),
            "--source", str(source_dir),
            "--work-dir", str(tmp_path / "work"),
            "--artifact-dir", str(tmp_path / "artifacts"),
            *extra,
        ]
    return args


class TestRun:
    def test_all_platforms_green(self, cli_runner, tmp_path, run_args):
        report_path = tmp_path / "report.json"
        result = cli_runner.invoke(cli, run_args(_pipeline(tmp_path), "--report", str(report_path)))
        assert result.exit_code == EXIT_SUCCESS, result.output
        assert "test:macos [macos/test]: SUCCEEDED" in result.output

        report = json.loads(report_path.read_text())
        assert report["exit_code"] == 0
        assert {n["state"] for n in report["nodes"]} == {"succeeded"}
        # released after the run
        assert not (tmp_path / "artifacts").exists()

    def test_one_platform_fails(self, cli_runner, tmp_path, run_args):
        report_path = tmp_path / "report.json"
        result = cli_runner.invoke(
            cli, run_args(_pipeline(tmp_path, fail_on="fedora"), "--report", str(report_path))
        )
        assert result.exit_code == EXIT_JOB_FAILED
        states = {n["job_id"]: n["state"] for n in json.loads(report_path.read_text())["nodes"]}
        assert states == {
            "build:debian": "succeeded",
            "build:fedora": "failed",
            "build:macos": "succeeded",
            "test:debian": "succeeded",
            "test:fedora": "skipped",
            "test:macos": "succeeded",
        }
        assert "Command: test \"$PIPELANE_PLATFORM\" != \"$FAIL_ON\"" in result.output

    def test_keep_artifacts(self, cli_runner, tmp_path, run_args):
        result = cli_runner.invoke(cli, run_args(_pipeline(tmp_path), "--keep-artifacts"))
        assert result.exit_code == EXIT_SUCCESS, result.output
        manifest = json.loads((tmp_path / "artifacts" / "manifest.json").read_text())
        assert set(manifest["build:debian"]) == {"build", "install"}

    def test_invalid_pipeline_exits_2(self, cli_runner, tmp_path, run_args):
        path = tmp_path / "bad.yml"
        path.write_text("jobs:\n  - id: x\n    stage: deploy\n    platform: debian\n    commands: [a]\n")
        result = cli_runner.invoke(cli, run_args(path))
        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "Invalid pipeline" in result.output
        assert "[x]" in result.output

    def test_bad_worker_env(self, cli_runner, tmp_path, run_args):
        result = cli_runner.invoke(cli, run_args(_pipeline(tmp_path)), env={"PIPELANE_WORKERS": "many"})
        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "PIPELANE_WORKERS" in result.output

    def test_malformed_gitlab_file_exits_2(self, cli_runner, tmp_path, run_args):
        result = cli_runner.invoke(cli, run_args(_gitlab_list_artifacts(tmp_path)))
        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "[build:debian8]" in result.output
        assert "'artifacts' must be a mapping" in result.output

    def test_unexpected_error_exits_3(self, cli_runner, tmp_path, run_args, monkeypatch):
        def explode(path):
            raise RuntimeError("disk vanished")

        monkeypatch.setattr("pipelane.cli.load_pipeline", explode)
        result = cli_runner.invoke(cli, run_args(_pipeline(tmp_path)))
        assert result.exit_code == EXIT_INTERNAL_ERROR
        assert "RuntimeError: disk vanished" in result.output


class TestValidate:
    def test_valid(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["validate", str(_pipeline(tmp_path))])
        assert result.exit_code == 0
        assert "valid (6 jobs, 3 platforms)" in result.output
        assert "fedora: build:fedora -> test:fedora" in result.output

    def test_missing_dependency(self, cli_runner, tmp_path):
        path = tmp_path / "pipe.yml"
        path.write_text(
            textwrap.dedent(
                """
                jobs:
                  - id: "test:debian"
                    stage: test
                    platform: debian
                    dependsOn: "build:debian"
                    commands: [ctest]
                """
            )
        )
        result = cli_runner.invoke(cli, ["validate", str(path)])
        assert result.exit_code == 1
        assert "test:debian" in result.output
        assert "build:debian" in result.output

    def test_missing_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["validate", str(tmp_path / "nope.yml")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_malformed_gitlab_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["validate", str(_gitlab_list_artifacts(tmp_path))])
        assert result.exit_code == 1
        assert isinstance(result.exception, SystemExit)
        assert "[build:debian8]" in result.output
        assert "Traceback" not in result.output

    def test_unexpected_error_exits_3(self, cli_runner, tmp_path, monkeypatch):
        def explode(path):
            raise RuntimeError("disk vanished")

        monkeypatch.setattr("pipelane.cli.load_pipeline", explode)
        result = cli_runner.invoke(cli, ["validate", str(_pipeline(tmp_path))])
        assert result.exit_code == EXIT_INTERNAL_ERROR
        assert isinstance(result.exception, SystemExit)


def test_platforms(cli_runner):
    result = cli_runner.invoke(cli, ["platforms"])
    assert result.exit_code == 0
    for name in ("debian", "ubuntu", "fedora", "centos", "macos"):
        assert name in result.output
    assert "DYLD_LIBRARY_PATH" in result.output


class TestSummarize:
    def test_reprints_report(self, cli_runner, tmp_path, run_args):
        report_path = tmp_path / "report.json"
        cli_runner.invoke(cli, run_args(_pipeline(tmp_path, fail_on="macos"), "--report", str(report_path)))

        result = cli_runner.invoke(cli, ["summarize", str(report_path)])
        assert result.exit_code == EXIT_JOB_FAILED
        assert "test:macos [macos/test]: SKIPPED" in result.output

    def test_invalid_report(self, cli_runner, tmp_path):
        path = tmp_path / "report.json"
        path.write_text("{not json")
        result = cli_runner.invoke(cli, ["summarize", str(path)])
        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "Invalid report" in result.output
