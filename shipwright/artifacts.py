"""
ArtifactStore - Write-once blob storage scoped to a single run.

Artifacts are keyed by (matrix label, artifact name) and treated as
opaque bytes plus a content-type label. put() is an atomic
insert-if-absent: two concurrent writers of the same key cannot both
succeed. get() only ever sees fully written artifacts.

Storage backends:
- In-memory (for testing and single-process runs)
- File-based (one directory per run under an artifact root)
"""

import json
import logging
import os
import shutil
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shipwright.errors import ArtifactNotFoundError, DuplicateArtifactError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

BLOB_FILENAME = "blob"
META_FILENAME = "meta.json"


@dataclass(frozen=True)
class ArtifactKey:
    """
    Key of an artifact within one run.

    Attributes:
        label: Matrix label of the producing instance
        name: Artifact name
    """
    label: str
    name: str

    def __post_init__(self):
        for part, value in (("label", self.label), ("name", self.name)):
            if not value:
                raise ValueError(f"Artifact key {part} must not be empty")
            if "/" in value or "\\" in value or value in (".", ".."):
                raise ValueError(f"Invalid artifact key {part}: {value!r}")

    def __str__(self) -> str:
        return f"{self.label}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "ArtifactKey":
        """Parse "label/name"."""
        label, sep, name = value.partition("/")
        if not sep:
            raise ValueError(f"Artifact key must be 'label/name', got {value!r}")
        return cls(label=label, name=name)


@dataclass(frozen=True)
class Artifact:
    """An immutable published artifact."""
    key: ArtifactKey
    blob: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.blob)


class ArtifactStore(ABC):
    """
    Abstract base class for run-scoped artifact storage.

    Implementations must make put() an atomic check-and-insert.
    """

    def __init__(self, run_id: str):
        self.run_id = run_id

    @abstractmethod
    def put(self, key: ArtifactKey, blob: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> Artifact:
        """
        Publish an artifact.

        Raises:
            DuplicateArtifactError: If the key already exists (the original is kept)
        """
        pass

    @abstractmethod
    def get(self, key: ArtifactKey) -> Artifact:
        """
        Read a published artifact.

        Raises:
            ArtifactNotFoundError: If the key has not been published
        """
        pass

    @abstractmethod
    def keys(self) -> list[ArtifactKey]:
        """List published keys."""
        pass

    def exists(self, key: ArtifactKey) -> bool:
        try:
            self.get(key)
        except ArtifactNotFoundError:
            return False
        return True


class InMemoryArtifactStore(ArtifactStore):
    """
    In-memory implementation of ArtifactStore.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self, run_id: str):
        super().__init__(run_id)
        self._artifacts: dict[ArtifactKey, Artifact] = {}
        self._lock = threading.Lock()

    def put(self, key: ArtifactKey, blob: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> Artifact:
        artifact = Artifact(key=key, blob=bytes(blob), content_type=content_type)
        with self._lock:
            existing = self._artifacts.setdefault(key, artifact)
        if existing is not artifact:
            raise DuplicateArtifactError(key)
        logger.debug(f"Published artifact {key} ({artifact.size} bytes)")
        return artifact

    def get(self, key: ArtifactKey) -> Artifact:
        with self._lock:
            artifact = self._artifacts.get(key)
        if artifact is None:
            raise ArtifactNotFoundError(key)
        return artifact

    def keys(self) -> list[ArtifactKey]:
        with self._lock:
            return list(self._artifacts)


class FileArtifactStore(ArtifactStore):
    """
    File-based implementation of ArtifactStore.

    Layout:
        artifact_root/
            {run_id}/
                {label}/
                    {name}/
                        blob
                        meta.json

    Each artifact is written into a temporary directory and renamed into
    place; the rename fails if the target already exists, which makes
    put() an atomic insert-if-absent and keeps readers from seeing partial
    writes.
    """

    def __init__(self, artifact_root: Path | str, run_id: str):
        super().__init__(run_id)
        self._run_dir = Path(artifact_root) / run_id
        self._run_dir.mkdir(parents=True, exist_ok=True)

    @property
    def run_dir(self) -> Path:
        return self._run_dir

    def _artifact_dir(self, key: ArtifactKey) -> Path:
        return self._run_dir / key.label / key.name

    def put(self, key: ArtifactKey, blob: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> Artifact:
        label_dir = self._run_dir / key.label
        label_dir.mkdir(parents=True, exist_ok=True)
        final_dir = self._artifact_dir(key)

        tmp_dir = Path(tempfile.mkdtemp(prefix=f".{key.name}.", dir=label_dir))
        try:
            (tmp_dir / BLOB_FILENAME).write_bytes(blob)
            (tmp_dir / META_FILENAME).write_text(json.dumps({
                "label": key.label,
                "name": key.name,
                "content_type": content_type,
                "size": len(blob),
            }))
            try:
                os.rename(tmp_dir, final_dir)
            except OSError as e:
                if final_dir.exists():
                    raise DuplicateArtifactError(key) from e
                raise
        finally:
            if tmp_dir.exists():
                shutil.rmtree(tmp_dir, ignore_errors=True)

        logger.debug(f"Published artifact {key} ({len(blob)} bytes) to {final_dir}")
        return Artifact(key=key, blob=bytes(blob), content_type=content_type)

    def get(self, key: ArtifactKey) -> Artifact:
        artifact_dir = self._artifact_dir(key)
        blob_path = artifact_dir / BLOB_FILENAME
        meta_path = artifact_dir / META_FILENAME
        if not blob_path.exists() or not meta_path.exists():
            raise ArtifactNotFoundError(key)
        meta = json.loads(meta_path.read_text())
        return Artifact(
            key=key,
            blob=blob_path.read_bytes(),
            content_type=meta.get("content_type", DEFAULT_CONTENT_TYPE),
        )

    def keys(self) -> list[ArtifactKey]:
        result = []
        for meta_path in sorted(self._run_dir.glob(f"*/*/{META_FILENAME}")):
            artifact_dir = meta_path.parent
            if artifact_dir.name.startswith("."):
                continue
            result.append(ArtifactKey(label=artifact_dir.parent.name, name=artifact_dir.name))
        return result


def prune_runs(
    artifact_root: Path | str,
    retention_days: int,
    now: Optional[float] = None,
) -> list[str]:
    """
    Delete run artifact directories older than the retention window.

    Args:
        artifact_root: Root holding one directory per run
        retention_days: Age in days after which a run's artifacts are removed
        now: Reference timestamp (defaults to time.time())

    Returns:
        Run ids whose artifacts were removed
    """
    root = Path(artifact_root)
    if not root.exists():
        return []

    cutoff = (now if now is not None else time.time()) - retention_days * 86400
    removed = []
    for run_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        if run_dir.stat().st_mtime < cutoff:
            shutil.rmtree(run_dir)
            removed.append(run_dir.name)
            logger.info(f"Pruned artifacts for run {run_dir.name}")
    return removed
