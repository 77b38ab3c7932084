"""
RunStore - Persist RunRecords.

Storage backends:
- In-memory (for testing)
- File-based (one JSON file per run)
"""

import json
import random
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from shipwright.schemas import RunRecord


def generate_ulid() -> str:
    """
    Generate a ULID (Universally Unique Lexicographically Sortable Identifier).

    ULIDs are 26 characters, encoding:
    - 48 bits of timestamp (milliseconds since Unix epoch)
    - 80 bits of randomness
    """
    # Crockford's Base32 alphabet (excludes I, L, O, U)
    alphabet = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"

    timestamp_ms = int(time.time() * 1000)
    timestamp_chars = []
    for _ in range(10):
        timestamp_chars.append(alphabet[timestamp_ms & 0x1F])
        timestamp_ms >>= 5
    timestamp_part = "".join(reversed(timestamp_chars))

    random_part = "".join(random.choice(alphabet) for _ in range(16))

    return timestamp_part + random_part


class RunStore(ABC):
    """Abstract base class for run record storage."""

    @abstractmethod
    def save_run(self, run: RunRecord) -> None:
        """
        Create or update a run record.

        Args:
            run: The RunRecord to store
        """
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[RunRecord]:
        """
        Retrieve a run record by ID.

        Returns:
            The RunRecord if found, None otherwise
        """
        pass

    @abstractmethod
    def list_runs(self, pipeline_id: Optional[str] = None) -> list[RunRecord]:
        """
        List run records, newest first.

        Args:
            pipeline_id: Only runs of this pipeline
        """
        pass


class InMemoryRunStore(RunStore):
    """
    In-memory implementation of RunStore for testing.

    All data is lost when the instance is garbage collected.
    """

    def __init__(self):
        self._runs: dict[str, RunRecord] = {}
        self._lock = threading.Lock()

    def save_run(self, run: RunRecord) -> None:
        with self._lock:
            self._runs[run.run_id] = run

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        with self._lock:
            return self._runs.get(run_id)

    def list_runs(self, pipeline_id: Optional[str] = None) -> list[RunRecord]:
        with self._lock:
            runs = list(self._runs.values())
        if pipeline_id is not None:
            runs = [r for r in runs if r.pipeline_id == pipeline_id]
        return sorted(runs, key=lambda r: r.run_id, reverse=True)

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        with self._lock:
            self._runs.clear()


class FileRunStore(RunStore):
    """
    File-based implementation of RunStore.

    Stores records as JSON files:
        store_dir/
            runs/
                {run_id}.json
    """

    def __init__(self, store_dir: Path | str):
        self._runs_dir = Path(store_dir) / "runs"
        self._runs_dir.mkdir(parents=True, exist_ok=True)

    def save_run(self, run: RunRecord) -> None:
        run_path = self._runs_dir / f"{run.run_id}.json"
        tmp_path = run_path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(run.to_dict(), f, indent=2)
        tmp_path.replace(run_path)

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        run_path = self._runs_dir / f"{run_id}.json"
        if not run_path.exists():
            return None
        with open(run_path) as f:
            data = json.load(f)
        return RunRecord.from_dict(data)

    def list_runs(self, pipeline_id: Optional[str] = None) -> list[RunRecord]:
        runs = []
        for run_path in sorted(self._runs_dir.glob("*.json"), reverse=True):
            with open(run_path) as f:
                run = RunRecord.from_dict(json.load(f))
            if pipeline_id is None or run.pipeline_id == pipeline_id:
                runs.append(run)
        return runs
