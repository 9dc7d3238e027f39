# workspace.py
from __future__ import annotations

import shutil
from pathlib import Path
from typing import Callable, List

from .artifacts import safe_name
from .model import JobNode

DEFAULT_WORK_DIR = ".pipelane/work"

# Never copied into a job workspace.
EXCLUDED_NAMES = {".git", ".pipelane"}


def ensure_clean_dir(path: str | Path) -> None:
    p = Path(path)
    if p.exists():
        shutil.rmtree(p)
    p.mkdir(parents=True, exist_ok=True)


class WorkspaceManager:
    """
    Per-job working copies of the source tree:
      work_root/
        <job>/        fresh copy of source_root for each job
        logs/<job>.log
    """

    def __init__(self, source_root: str | Path = ".", work_root: str | Path = DEFAULT_WORK_DIR):
        self.source_root = Path(source_root).resolve()
        self.work_root = Path(work_root).resolve()

    def path_for(self, node: JobNode) -> Path:
        return self.work_root / safe_name(node.id)

    def log_path(self, node: JobNode) -> Path:
        return self.work_root / "logs" / f"{safe_name(node.id)}.log"

    def prepare(self, node: JobNode) -> Path:
        """Create a clean copy of the source tree for `node` and return its path."""
        ws = self.path_for(node)
        ensure_clean_dir(ws)
        shutil.copytree(self.source_root, ws, symlinks=True, ignore=self._ignore(), dirs_exist_ok=True)
        return ws

    def write_log(self, node: JobNode, stdout: str, stderr: str) -> Path:
        path = self.log_path(node)
        path.parent.mkdir(parents=True, exist_ok=True)
        text = stdout
        if stderr:
            text += "\n--- stderr ---\n" + stderr
        path.write_text(text, encoding="utf-8")
        return path

    def _ignore(self) -> Callable[[str, List[str]], List[str]]:
        work_root = self.work_root

        def ignore(directory: str, names: List[str]) -> List[str]:
            skipped = []
            for name in names:
                if name in EXCLUDED_NAMES or (Path(directory) / name).resolve() == work_root:
                    skipped.append(name)
            return skipped

        return ignore
