# executor.py
from __future__ import annotations

import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .model import ExecutionResult, JobNode, PlatformTarget

DEFAULT_SHELL = "/bin/sh"
CMD_MARKER = "$ "


@dataclass(frozen=True)
class EnvironmentSettings:
    """
    Where a job's build installs to, relative to its workspace.

    `data_dir_var`, when set, is exported pointing at `<workspace>/<data_dir>`
    (e.g. MPP_DATA_DIRECTORY=$PWD/data).
    """
    install_dir: str = "install"
    data_dir: str = "data"
    data_dir_var: Optional[str] = None


def _prepend(entry: str, current: Optional[str]) -> str:
    if not current:
        return entry
    return f"{entry}{os.pathsep}{current}"


def compose_env(
    base: Mapping[str, str],
    platform: PlatformTarget,
    workspace: str | Path,
    settings: EnvironmentSettings = EnvironmentSettings(),
    overrides: Optional[Mapping[str, str]] = None,
    node: Optional[JobNode] = None,
) -> Dict[str, str]:
    """
    Build the environment for one job.

    PATH and the platform's library-path variable get the workspace install
    directories prepended; everything else in `base` passes through as is.
    Per-job overrides are applied last.
    """
    ws = Path(workspace).resolve()
    install = ws / settings.install_dir

    env = dict(base)
    env["PATH"] = _prepend(str(install / "bin"), env.get("PATH"))
    env[platform.library_path_var] = _prepend(str(install / "lib"), env.get(platform.library_path_var))
    if settings.data_dir_var:
        env[settings.data_dir_var] = str(ws / settings.data_dir)

    env["PIPELANE_PLATFORM"] = platform.name
    if node is not None:
        env["PIPELANE_JOB_ID"] = node.id
        env["PIPELANE_STAGE"] = node.spec.stage.value

    env.update(overrides or {})
    return env


def _script(commands: List[str]) -> str:
    lines = []
    for cmd in commands:
        lines.append(f"printf '%s\\n' {shlex.quote(CMD_MARKER + cmd)}")
        lines.append(cmd)
    return "\n".join(lines) + "\n"


def _last_announced(stdout: str, commands: List[str]) -> Optional[str]:
    announced = {CMD_MARKER + c: c for c in commands}
    for line in reversed(stdout.splitlines()):
        if line in announced:
            return announced[line]
    return None


class Executor:
    """
    Runs a job's commands in sequence inside one shell, so `cd` and `export`
    carry over between commands, exactly like a CI job script.

    The shell runs with -e: the first failing command ends the job and its
    exit status becomes the job's exit code.
    """

    def __init__(self, shell: str = DEFAULT_SHELL):
        self.shell = shell

    def execute(
        self,
        node: JobNode,
        env: Mapping[str, str],
        cwd: str | Path = ".",
    ) -> ExecutionResult:
        commands = list(node.spec.commands)
        started = time.monotonic()

        proc = subprocess.run(
            [self.shell, "-e", "-c", _script(commands)],
            cwd=str(cwd),
            env=dict(env),
            text=True,
            capture_output=True,
        )

        root = Path(cwd)
        produced = tuple(
            p for p in node.spec.produces_artifacts
            if (root / p).exists() or (root / p).is_symlink()
        )
        failed = None
        if proc.returncode != 0:
            failed = _last_announced(proc.stdout, commands)

        return ExecutionResult(
            exit_code=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
            produced_paths=produced,
            failed_command=failed,
            duration=time.monotonic() - started,
        )
