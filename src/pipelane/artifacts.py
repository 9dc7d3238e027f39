# artifacts.py
from __future__ import annotations

import hashlib
import io
import json
import re
import shutil
import tarfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Set, Tuple, Union

from .errors import DuplicateArtifactError, MissingArtifactError
from .model import JobNode, normalize_artifact_path

# ---------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------
#   root/
#     <safe_name(job_id)>/
#       <sha256>.tar.gz          one archive per published path
#     manifest.json              path -> handle, rewritten on each publish
#
# Archives store the artifact under its declared relative path, so restoring
# into a fresh workspace puts "install/lib/..." back where the build left it.
# ---------------------------------------------------------------------

DEFAULT_ARTIFACT_DIR = ".pipelane/artifacts"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_name(job_id: str) -> str:
    """
    Filesystem-safe, collision-free form of a job id
    ("build:fedora" -> "build_fedora-<8 hex>").

    The digest of the raw id keeps "x:y" and "x_y" apart, and no job can
    land on a fixed name such as "logs".
    """
    digest = hashlib.sha256(job_id.encode("utf-8")).hexdigest()[:8]
    return f"{_UNSAFE.sub('_', job_id).strip('_') or 'job'}-{digest}"


@dataclass(frozen=True)
class ArtifactHandle:
    job_id: str
    path: str
    archive: Path
    sha256: str
    size: int

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "path": self.path,
            "archive": str(self.archive),
            "sha256": self.sha256,
            "size": self.size,
        }


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


class ArtifactStore:
    """
    Run-scoped artifact store.

    BUILD nodes publish, the scheduler resolves on behalf of TEST nodes. The
    registry is the only state shared between lanes; a single lock guards
    every insert and lookup. Archives are never modified after publish.
    """

    def __init__(self, root: str | Path = DEFAULT_ARTIFACT_DIR):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._handles: Dict[str, Dict[str, ArtifactHandle]] = {}
        self._reserved: Set[Tuple[str, str]] = set()

    def publish(self, node: JobNode, path: str, data: Union[bytes, Path]) -> ArtifactHandle:
        """
        Archive `data` (raw bytes, or a file/directory on disk) as artifact
        `path` of `node`.

        Raises DuplicateArtifactError if `path` was already published for
        this node. Safe to call from lane threads; the node itself is not
        touched, the caller attaches the returned handle.
        """
        path = normalize_artifact_path(path, job_id=node.id)
        key = (node.id, path)

        with self._lock:
            if key in self._reserved or path in self._handles.get(node.id, {}):
                raise DuplicateArtifactError(job_id=node.id, path=path)
            self._reserved.add(key)

        try:
            is_bytes = isinstance(data, (bytes, bytearray))
            if not is_bytes:
                src = Path(data)
                if not src.exists() and not src.is_symlink():
                    raise FileNotFoundError(f"[{node.id}] artifact source not found: {src}")

            job_dir = self.root / safe_name(node.id)
            job_dir.mkdir(parents=True, exist_ok=True)
            tmp = job_dir / f".{safe_name(path)}.{threading.get_ident()}.tmp"
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                if is_bytes:
                    info = tarfile.TarInfo(name=path)
                    info.size = len(data)
                    info.mtime = int(time.time())
                    tar.addfile(info, fileobj=io.BytesIO(bytes(data)))
                else:
                    # symlinks (libfoo.so -> libfoo.so.1) are kept as links
                    tar.add(str(src), arcname=path, recursive=True)

            digest = _hash_file_contents(tmp)
            archive = job_dir / f"{digest}.tar.gz"
            tmp.replace(archive)
            handle = ArtifactHandle(
                job_id=node.id,
                path=path,
                archive=archive,
                sha256=digest,
                size=archive.stat().st_size,
            )
        except BaseException:
            with self._lock:
                self._reserved.discard(key)
            raise

        with self._lock:
            self._handles.setdefault(node.id, {})[path] = handle
            self._reserved.discard(key)
            self._write_manifest()
        return handle

    def resolve(self, consumer: JobNode) -> Dict[str, ArtifactHandle]:
        """
        Artifacts of the consumer's upstream node, exactly its declared paths.

        Raises MissingArtifactError if any declared path was not published.
        """
        upstream = consumer.upstream
        if upstream is None:
            return {}

        with self._lock:
            published = dict(self._handles.get(upstream.id, {}))

        declared = list(upstream.spec.produces_artifacts)
        missing = [p for p in declared if p not in published]
        if missing:
            raise MissingArtifactError(job_id=consumer.id, upstream_id=upstream.id, missing=missing)
        return {p: published[p] for p in declared}

    def handles_for(self, job_id: str) -> Dict[str, ArtifactHandle]:
        with self._lock:
            return dict(self._handles.get(job_id, {}))

    def restore(self, handles: Mapping[str, ArtifactHandle], dest: str | Path) -> List[str]:
        """Extract handles into `dest` (a job workspace). Read-only on the store."""
        dest_p = Path(dest)
        dest_p.mkdir(parents=True, exist_ok=True)
        restored: List[str] = []
        for path, handle in handles.items():
            with tarfile.open(str(handle.archive), mode="r:gz") as tar:
                tar.extractall(path=str(dest_p), filter="data")
            restored.append(path)
        return restored

    def manifest(self) -> Dict[str, Dict[str, dict]]:
        with self._lock:
            return {
                job: {p: h.to_dict() for p, h in paths.items()}
                for job, paths in self._handles.items()
            }

    def release(self) -> None:
        """Drop every artifact of the run. Call only once the report is final."""
        with self._lock:
            self._handles.clear()
            self._reserved.clear()
            if self.root.exists():
                shutil.rmtree(self.root)

    def _write_manifest(self) -> None:
        # caller holds the lock
        data = {
            job: {p: h.to_dict() for p, h in paths.items()}
            for job, paths in self._handles.items()
        }
        (self.root / "manifest.json").write_text(
            json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
